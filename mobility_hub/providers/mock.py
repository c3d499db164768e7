"""
In-memory transport for testing and demos.

Serves canned options and bookings per provider without any network I/O.
Latency, per-item delays and failures are configurable per provider, and
every call is recorded so tests can assert how many requests were sent and
which ones were abandoned.

Usage:
    from mobility_hub.providers.mock import MockTransport

    transport = MockTransport(
        options={"bike-co": [{"id": "b1", "mode": "BICYCLE"}]},
        latency_ms={"bike-co": 50},
        failures={"car-co": ProviderUnreachable("down")},
    )
    registry = ProviderRegistry.from_services(services, transport)
"""

import asyncio
import copy
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from mobility_hub.exceptions import ProviderError, ProviderReportedError
from mobility_hub.models.capabilities import Api, MobilityService, MobilityType, Mode


@dataclass
class MockCall:
    """One request received by the mock transport."""

    provider_id: str
    path: str
    params: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)


class MockTransport:
    """ProviderTransport serving canned responses.

    Attributes:
        calls: Every request received, in dispatch order
        cancelled: Provider ids whose stream was abandoned before its end
        completed: Provider ids whose stream ran to its natural end
    """

    def __init__(
        self,
        options: Mapping[str, list[dict[str, Any]]] | None = None,
        bookings: Mapping[str, dict[str, Any]] | None = None,
        *,
        latency_ms: float | Mapping[str, float] = 0.0,
        item_delay_ms: float | Mapping[str, float] = 0.0,
        failures: Mapping[str, ProviderError] | None = None,
        fail_after: Mapping[str, int] | None = None,
    ):
        """Initialize mock transport.

        Args:
            options: Option items per provider id
            bookings: Booking payload per provider id
            latency_ms: Delay before the first byte, globally or per provider
            item_delay_ms: Delay before each streamed item
            failures: Error to raise per provider id
            fail_after: Raise the provider's failure only after this many
                items have been streamed
        """
        self._options = {k: list(v) for k, v in (options or {}).items()}
        self._bookings = dict(bookings or {})
        self._latency_ms = latency_ms
        self._item_delay_ms = item_delay_ms
        self._failures = dict(failures or {})
        self._fail_after = dict(fail_after or {})
        self.calls: list[MockCall] = []
        self.cancelled: set[str] = set()
        self.completed: set[str] = set()

    @staticmethod
    def _delay(setting: float | Mapping[str, float], provider_id: str) -> float:
        if isinstance(setting, Mapping):
            return setting.get(provider_id, 0.0) / 1000
        return setting / 1000

    def _record(
        self,
        service: MobilityService,
        path: str,
        params: Mapping[str, Any] | None,
        headers: Mapping[str, str] | None,
    ) -> None:
        self.calls.append(
            MockCall(
                provider_id=service.id,
                path=path,
                params=dict(params or {}),
                headers=dict(headers or {}),
            )
        )

    def calls_for(self, provider_id: str) -> list[MockCall]:
        """Calls received for one provider."""
        return [c for c in self.calls if c.provider_id == provider_id]

    @property
    def call_count(self) -> int:
        """Total number of requests received."""
        return len(self.calls)

    async def stream_json(
        self,
        service: MobilityService,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> AsyncIterator[Any]:
        """Stream the canned option items of ``service``."""
        self._record(service, path, params, headers)
        finished = False
        try:
            await asyncio.sleep(self._delay(self._latency_ms, service.id))

            failure = self._failures.get(service.id)
            fail_after = self._fail_after.get(service.id, 0)
            if failure is not None and fail_after == 0:
                raise failure

            for index, item in enumerate(self._options.get(service.id, [])):
                if failure is not None and index == fail_after:
                    raise failure
                await asyncio.sleep(self._delay(self._item_delay_ms, service.id))
                yield copy.deepcopy(item)

            finished = True
            self.completed.add(service.id)
        except ProviderError:
            finished = True
            raise
        finally:
            if not finished:
                self.cancelled.add(service.id)

    async def fetch_json(
        self,
        service: MobilityService,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        """Return the canned booking of ``service``."""
        self._record(service, path, params, headers)
        await asyncio.sleep(self._delay(self._latency_ms, service.id))

        failure = self._failures.get(service.id)
        if failure is not None:
            raise failure
        if service.id not in self._bookings:
            raise ProviderReportedError(
                "No booking found", status_code=404, provider_id=service.id
            )
        return copy.deepcopy(self._bookings[service.id])


DEMO_SERVICES = [
    MobilityService(
        id="bike-share",
        name="City Bike Share",
        base_url="https://bikes.example.com",
        modes={Mode.BICYCLE},
        mobility_types={MobilityType.FREE_RIDE},
        apis={Api.OPTIONS_API},
    ),
    MobilityService(
        id="car-share",
        name="Car Share",
        base_url="https://cars.example.com",
        modes={Mode.CAR},
        mobility_types={MobilityType.FREE_RIDE, MobilityType.ROUND_TRIP},
        apis={Api.OPTIONS_API, Api.BOOKING_API},
    ),
    MobilityService(
        id="ride-hail",
        name="Ride Hail",
        base_url="https://rides.example.com",
        modes={Mode.TAXI, Mode.CAR},
        mobility_types={MobilityType.ON_DEMAND},
        apis={Api.OPTIONS_API, Api.BOOKING_API},
    ),
]


def create_demo_transport() -> MockTransport:
    """Transport with a few canned options and bookings for DEMO_SERVICES."""
    return MockTransport(
        options={
            "bike-share": [
                {"id": f"bike-{i}", "mode": "BICYCLE", "mobilityType": "FREE_RIDE"}
                for i in range(4)
            ],
            "car-share": [
                {"id": f"car-{i}", "mode": "CAR", "mobilityType": "FREE_RIDE", "priceClass": "MEDIUM"}
                for i in range(3)
            ],
            "ride-hail": [
                {"id": f"ride-{i}", "mode": "TAXI", "mobilityType": "ON_DEMAND", "priceClass": "HIGH"}
                for i in range(2)
            ],
        },
        bookings={
            "car-share": {"id": "cb-1", "state": "BOOKED"},
            "ride-hail": {"id": "rb-7", "state": "STARTED"},
        },
        latency_ms={"bike-share": 20, "car-share": 60, "ride-hail": 120},
        item_delay_ms=5,
    )
