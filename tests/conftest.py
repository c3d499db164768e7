"""
Pytest configuration and shared fixtures.

Provides a small set of mobility services, an in-memory transport serving
canned options and bookings, and a registry built from both.
"""

import pytest

from mobility_hub.config import clear_config
from mobility_hub.models import Api, Coordinates, MobilityService, MobilityType, Mode, OptionQuery
from mobility_hub.providers import MockTransport, ProviderRegistry


def _items(prefix: str, count: int, mode: str = "BICYCLE") -> list[dict]:
    return [
        {"id": f"{prefix}-{i}", "mode": mode, "mobilityType": "FREE_RIDE"} for i in range(count)
    ]


@pytest.fixture
def make_items():
    """Factory for canned option payloads ``{prefix}-0`` .. ``{prefix}-{count-1}``."""
    return _items


@pytest.fixture(autouse=True)
def reset_config():
    """Clear cached configuration around each test."""
    clear_config()
    yield
    clear_config()


@pytest.fixture
def service_a() -> MobilityService:
    """Bike provider with options API only."""
    return MobilityService(
        id="A",
        base_url="https://a.example.com",
        modes={Mode.BICYCLE},
        mobility_types={MobilityType.FREE_RIDE},
        apis={Api.OPTIONS_API},
    )


@pytest.fixture
def service_b() -> MobilityService:
    """Car provider with options and booking APIs."""
    return MobilityService(
        id="B",
        base_url="https://b.example.com",
        modes={Mode.CAR},
        mobility_types={MobilityType.FREE_RIDE},
        apis={Api.OPTIONS_API, Api.BOOKING_API},
    )


@pytest.fixture
def service_c() -> MobilityService:
    """On-demand taxi provider with options and booking APIs."""
    return MobilityService(
        id="C",
        base_url="https://c.example.com",
        modes={Mode.TAXI},
        mobility_types={MobilityType.ON_DEMAND},
        apis={Api.OPTIONS_API, Api.BOOKING_API},
    )


@pytest.fixture
def services(service_a, service_b, service_c) -> list[MobilityService]:
    """All test services in registration order."""
    return [service_a, service_b, service_c]


@pytest.fixture
def transport() -> MockTransport:
    """In-memory transport with a few options and bookings."""
    return MockTransport(
        options={
            "A": _items("a", 4),
            "B": _items("b", 3, mode="CAR"),
            "C": _items("c", 2, mode="TAXI"),
        },
        bookings={
            "B": {"id": "booking-b", "state": "BOOKED"},
            "C": {"id": "booking-c", "state": "STARTED"},
        },
        item_delay_ms=1,
    )


@pytest.fixture
def registry(services, transport) -> ProviderRegistry:
    """Registry holding A, B and C backed by the mock transport."""
    return ProviderRegistry.from_services(services, transport)


@pytest.fixture
def query() -> OptionQuery:
    """A simple options query."""
    return OptionQuery(
        origin=Coordinates(48.74, 9.31),
        destination=Coordinates(48.78, 9.18),
        radius_meters=500,
    )
