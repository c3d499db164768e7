"""Tests for concurrent booking lookups."""

import asyncio
import threading

import pytest

from mobility_hub.aggregator import QueryAggregator
from mobility_hub.exceptions import ProviderUnreachable, TokenResolutionFailed
from mobility_hub.models import Booking, FailureKind
from mobility_hub.providers import MockTransport, ProviderRegistry


@pytest.fixture
def booking_proxies(registry):
    """Proxies of the booking-capable providers B and C."""
    return [registry.get_one("B"), registry.get_one("C")]


class TestGetBookings:
    """Tests for QueryAggregator.get_bookings."""

    @pytest.mark.asyncio
    async def test_all_succeed(self, booking_proxies, transport):
        """Test that every provider's booking is returned under its id."""
        results = await QueryAggregator().get_bookings(booking_proxies, lambda pid: f"tok-{pid}")

        assert results.bookings == {
            "B": Booking("B", "booking-b", "BOOKED"),
            "C": Booking("C", "booking-c", "STARTED"),
        }
        assert results.failures == {}
        assert transport.calls_for("B")[0].headers["Authorization"] == "Bearer tok-B"
        assert transport.calls_for("C")[0].headers["Authorization"] == "Bearer tok-C"

    @pytest.mark.asyncio
    async def test_async_resolver(self, booking_proxies):
        """Test that coroutine resolvers are awaited."""

        async def resolve(provider_id: str) -> str:
            await asyncio.sleep(0)
            return f"async-{provider_id}"

        results = await QueryAggregator().get_bookings(booking_proxies, resolve)

        assert results.succeeded == {"B", "C"}

    @pytest.mark.asyncio
    async def test_sync_resolver_runs_off_loop(self, booking_proxies):
        """Test that blocking resolvers do not run on the event loop thread."""
        loop_thread = threading.get_ident()
        seen = []

        def resolve(provider_id: str) -> str:
            seen.append(threading.get_ident())
            return "tok"

        await QueryAggregator().get_bookings(booking_proxies, resolve)

        assert len(seen) == 2
        assert loop_thread not in seen

    @pytest.mark.asyncio
    async def test_resolver_fails_for_one(self, booking_proxies, transport):
        """Test that one unresolvable token leaves the other lookups intact."""

        def resolve(provider_id: str) -> str:
            if provider_id == "C":
                raise KeyError(provider_id)
            return "tok"

        results = await QueryAggregator().get_bookings(booking_proxies, resolve)

        assert results.succeeded == {"B"}
        assert results.failed == {"C"}
        failure = results.failures["C"]
        assert failure.kind is FailureKind.TOKEN_RESOLUTION
        assert isinstance(failure.error, TokenResolutionFailed)
        assert isinstance(failure.error.__cause__, KeyError)
        assert transport.calls_for("C") == []

    @pytest.mark.asyncio
    async def test_empty_token_is_failure(self, booking_proxies):
        """Test that a resolver returning nothing counts as a failure."""
        results = await QueryAggregator().get_bookings(
            booking_proxies, lambda pid: "" if pid == "B" else "tok"
        )

        assert results.failures["B"].kind is FailureKind.TOKEN_RESOLUTION
        assert results.succeeded == {"C"}

    @pytest.mark.asyncio
    async def test_missing_booking_is_provider_error(self, services):
        """Test that a provider-reported 404 is recorded, not raised."""
        transport = MockTransport(bookings={"C": {"id": "bk", "state": "BOOKED"}})
        registry = ProviderRegistry.from_services(services, transport)

        results = await QueryAggregator().get_bookings(
            [registry.get_one("B"), registry.get_one("C")], lambda pid: "tok"
        )

        assert results.failures["B"].kind is FailureKind.PROVIDER_ERROR
        assert results.failures["B"].error.status_code == 404
        assert results.succeeded == {"C"}

    @pytest.mark.asyncio
    async def test_unreachable_provider(self, services):
        """Test that transport failures are classified."""
        transport = MockTransport(
            bookings={"C": {"id": "bk"}},
            failures={"B": ProviderUnreachable("down", provider_id="B")},
        )
        registry = ProviderRegistry.from_services(services, transport)

        results = await QueryAggregator().get_bookings(registry.get_all()[1:], lambda pid: "tok")

        assert results.failures["B"].kind is FailureKind.UNREACHABLE
        assert "C" in results.bookings

    @pytest.mark.asyncio
    async def test_timeout(self, services):
        """Test that a slow provider times out without delaying the others."""
        transport = MockTransport(
            bookings={"B": {"id": "b"}, "C": {"id": "c"}},
            latency_ms={"B": 5_000, "C": 0},
        )
        registry = ProviderRegistry.from_services(services, transport)

        results = await asyncio.wait_for(
            QueryAggregator().get_bookings(
                registry.get_all()[1:], lambda pid: "tok", timeout=0.05
            ),
            timeout=2.0,
        )

        assert results.failures["B"].kind is FailureKind.TIMEOUT
        assert results.failures["B"].error.timeout_seconds == 0.05
        assert results.succeeded == {"C"}

    @pytest.mark.asyncio
    async def test_default_timeout_from_aggregator(self, services):
        """Test that the aggregator's booking timeout applies by default."""
        transport = MockTransport(bookings={"B": {"id": "b"}}, latency_ms=5_000)
        registry = ProviderRegistry.from_services(services, transport)

        results = await asyncio.wait_for(
            QueryAggregator(booking_timeout=0.05).get_bookings(
                [registry.get_one("B")], lambda pid: "tok"
            ),
            timeout=2.0,
        )

        assert results.failed == {"B"}

    @pytest.mark.asyncio
    async def test_every_proxy_accounted_for(self, booking_proxies):
        """Test that each proxy lands in exactly one result map."""
        results = await QueryAggregator().get_bookings(
            booking_proxies, lambda pid: "tok" if pid == "B" else None
        )

        assert results.succeeded | results.failed == {"B", "C"}
        assert not results.succeeded & results.failed

    @pytest.mark.asyncio
    async def test_no_proxies(self):
        """Test that an empty selection gives empty results."""
        results = await QueryAggregator().get_bookings([], lambda pid: "tok")

        assert len(results) == 0
