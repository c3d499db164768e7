"""Tests for ProviderRegistry."""

import itertools

import pytest

from mobility_hub.exceptions import ProviderNotFoundError
from mobility_hub.models import Api, MobilityService, MobilityType, Mode, QueryFilter
from mobility_hub.providers import MockTransport, ProviderProxy, ProviderRegistry

ALL_API_SETS = [
    set(combo)
    for size in range(1, len(Api) + 1)
    for combo in itertools.combinations(list(Api), size)
]


def _ids(proxies: list[ProviderProxy]) -> list[str]:
    return [p.id for p in proxies]


class TestRegistration:
    """Tests for registering services."""

    def test_from_services_keeps_order(self, registry):
        """Test that registration order is preserved."""
        assert registry.list_providers() == ["A", "B", "C"]
        assert len(registry) == 3

    def test_duplicate_rejected(self, registry, service_a):
        """Test that entries cannot be replaced once registered."""
        with pytest.raises(ValueError, match="already registered"):
            registry.register(service_a)

    def test_contains(self, registry):
        """Test membership checks."""
        assert "A" in registry
        assert registry.has_provider("B")
        assert not registry.has_provider("Z")

    def test_iterates_services(self, registry, services):
        """Test iteration over registered entries."""
        assert list(registry) == services


class TestGetAll:
    """Tests for get_all."""

    def test_one_proxy_per_service(self, registry):
        """Test that every service gets a proxy."""
        proxies = registry.get_all()

        assert _ids(proxies) == ["A", "B", "C"]
        assert all(isinstance(p, ProviderProxy) for p in proxies)

    def test_stable_order(self, registry):
        """Test that repeated calls return the same order."""
        assert _ids(registry.get_all()) == _ids(registry.get_all())

    def test_empty_registry(self):
        """Test that an empty registry returns an empty list."""
        assert ProviderRegistry(MockTransport()).get_all() == []


class TestGetByFilter:
    """Tests for get_by_filter."""

    def test_empty_filter_equals_get_all(self, registry):
        """Test that an unconstrained filter selects every provider."""
        assert set(_ids(registry.get_by_filter(QueryFilter()))) == set(_ids(registry.get_all()))

    def test_scenario_options_api(self, registry):
        """Test bikes-or-cars, free-floating, options API selects A and B."""
        proxies = registry.get_by_filter(
            QueryFilter(
                modes={Mode.BICYCLE, Mode.CAR},
                mobility_types={MobilityType.FREE_RIDE},
                apis={Api.OPTIONS_API},
            )
        )

        assert _ids(proxies) == ["A", "B"]

    def test_scenario_booking_api(self, registry):
        """Test that requiring the booking API drops A."""
        proxies = registry.get_by_filter(
            QueryFilter(
                modes={Mode.BICYCLE, Mode.CAR},
                mobility_types={MobilityType.FREE_RIDE},
                apis={Api.BOOKING_API},
            )
        )

        assert _ids(proxies) == ["B"]

    @pytest.mark.parametrize("apis", ALL_API_SETS, ids=lambda s: "+".join(sorted(a.value for a in s)))
    def test_required_apis_are_subset(self, registry, apis):
        """Test that no partial API match survives."""
        for proxy in registry.get_by_filter(QueryFilter(apis=apis)):
            assert proxy.service.apis >= apis

    def test_service_ids(self, registry):
        """Test selection by explicit ids."""
        proxies = registry.get_by_filter(QueryFilter(service_ids={"C", "A"}))

        assert _ids(proxies) == ["A", "C"]

    def test_unknown_id_is_not_an_error(self, registry):
        """Test that unknown ids simply match nothing."""
        assert registry.get_by_filter(QueryFilter(service_ids={"nope"})) == []

    def test_no_match_returns_empty(self, registry):
        """Test that an empty selection is a valid result."""
        assert registry.get_by_filter(QueryFilter(modes={Mode.TRAIN})) == []


class TestGetOne:
    """Tests for get_one and require."""

    def test_known_id(self, registry, service_b):
        """Test lookup of a registered provider."""
        proxy = registry.get_one("B")

        assert proxy is not None
        assert proxy.service == service_b

    def test_unknown_id_returns_none(self, registry):
        """Test that absence is reported as None."""
        assert registry.get_one("Z") is None

    def test_require_unknown_raises(self, registry):
        """Test that require raises for unknown ids."""
        with pytest.raises(ProviderNotFoundError) as exc_info:
            registry.require("Z")

        assert exc_info.value.provider_id == "Z"
        assert "A, B, C" in str(exc_info.value)

    def test_require_known(self, registry):
        """Test that require returns the proxy for known ids."""
        assert registry.require("A").id == "A"

    def test_get_service(self, registry, service_c):
        """Test access to the registered entry."""
        assert registry.get_service("C") == service_c
        assert registry.get_service("Z") is None


class TestProxyDerivation:
    """Tests for proxies handed out by the registry."""

    def test_proxies_share_transport(self, registry, transport):
        """Test that proxies use the registry's transport."""
        proxy = registry.get_one("A")

        assert proxy._transport is transport

    def test_auth_header_passed_on(self, services, transport):
        """Test that the configured auth header reaches the proxies."""
        registry = ProviderRegistry.from_services(services, transport, auth_header="x-credentials")

        assert registry.get_one("B")._auth_header == "x-credentials"

    def test_many_services(self):
        """Test selection over a larger generated registry."""
        services = [
            MobilityService(
                id=f"svc-{i}",
                base_url=f"https://svc{i}.example.com",
                modes={list(Mode)[i % len(Mode)]},
                apis={Api.OPTIONS_API} if i % 2 else {Api.OPTIONS_API, Api.BOOKING_API},
            )
            for i in range(20)
        ]
        registry = ProviderRegistry.from_services(services, MockTransport())

        booking = registry.get_by_filter(QueryFilter(apis={Api.BOOKING_API}))

        assert _ids(booking) == [f"svc-{i}" for i in range(0, 20, 2)]
