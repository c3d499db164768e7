"""
Provider Registry.

Directory of the known mobility services and their declared capabilities.
Filled once by a bootstrap collaborator (a YAML file or a service
directory), then only read: lookups return ProviderProxy objects derived on
demand from the registered entries.

Usage:
    from mobility_hub.providers import ProviderRegistry

    registry = ProviderRegistry.from_services(services, transport)

    # All providers, in registration order
    for proxy in registry.get_all():
        print(proxy.id)

    # Providers offering bikes or cars, free-floating, with an options API
    proxies = registry.get_by_filter(
        QueryFilter(
            modes={Mode.BICYCLE, Mode.CAR},
            mobility_types={MobilityType.FREE_RIDE},
            apis={Api.OPTIONS_API},
        )
    )

    # One provider, or None
    proxy = registry.get_one("car-share")
"""

import logging
from collections.abc import Iterable, Iterator

from mobility_hub.exceptions import ProviderNotFoundError
from mobility_hub.models.capabilities import MobilityService, QueryFilter
from mobility_hub.providers.proxy import ProviderProxy
from mobility_hub.providers.transport import ProviderTransport

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry of mobility services.

    Entries are immutable once registered and keep their registration
    order, so ``get_all()`` and ``get_by_filter()`` return proxies in a
    stable order for the lifetime of the registry.
    """

    def __init__(self, transport: ProviderTransport, *, auth_header: str = "Authorization"):
        """Initialize an empty registry.

        Args:
            transport: Transport shared by every proxy the registry hands out
            auth_header: Header proxies use for per-call tokens
        """
        self._transport = transport
        self._auth_header = auth_header
        self._services: dict[str, MobilityService] = {}

    @classmethod
    def from_services(
        cls,
        services: Iterable[MobilityService],
        transport: ProviderTransport,
        *,
        auth_header: str = "Authorization",
    ) -> "ProviderRegistry":
        """Build a registry holding ``services`` in the given order."""
        registry = cls(transport, auth_header=auth_header)
        for service in services:
            registry.register(service)
        return registry

    def register(self, service: MobilityService) -> None:
        """Add a service. Only bootstrap code should call this.

        Raises:
            ValueError: If a service with the same id is already registered
        """
        if service.id in self._services:
            raise ValueError(f"Service already registered: {service.id}")

        self._services[service.id] = service
        logger.info(
            f"Registered mobility service: {service.id} ({service.base_url})",
            extra={"provider_id": service.id},
        )

    def _proxy(self, service: MobilityService) -> ProviderProxy:
        return ProviderProxy(service, self._transport, auth_header=self._auth_header)

    def get_all(self) -> list[ProviderProxy]:
        """Proxies for every registered service, in registration order."""
        return [self._proxy(s) for s in self._services.values()]

    def get_by_filter(self, query_filter: QueryFilter) -> list[ProviderProxy]:
        """Proxies for the services matching ``query_filter``.

        An empty result is a valid answer, not an error. Ids in the filter
        that are not registered simply match nothing.
        """
        proxies = [self._proxy(s) for s in self._services.values() if query_filter.matches(s)]
        if not proxies:
            logger.info(f"No provider matches filter {query_filter}")
        return proxies

    def get_one(self, service_id: str) -> ProviderProxy | None:
        """Proxy for ``service_id``, or None if no such service is registered."""
        service = self._services.get(service_id)
        if service is None:
            return None
        return self._proxy(service)

    def require(self, service_id: str) -> ProviderProxy:
        """Proxy for ``service_id``.

        Raises:
            ProviderNotFoundError: If no such service is registered
        """
        proxy = self.get_one(service_id)
        if proxy is None:
            raise ProviderNotFoundError(service_id, available=self.list_providers())
        return proxy

    def get_service(self, service_id: str) -> MobilityService | None:
        """The registered entry for ``service_id``, or None."""
        return self._services.get(service_id)

    def list_services(self) -> list[MobilityService]:
        """All registered entries, in registration order."""
        return list(self._services.values())

    def list_providers(self) -> list[str]:
        """All registered service ids, in registration order."""
        return list(self._services)

    def has_provider(self, service_id: str) -> bool:
        """Check if a service is registered."""
        return service_id in self._services

    def __contains__(self, service_id: object) -> bool:
        return service_id in self._services

    def __len__(self) -> int:
        return len(self._services)

    def __iter__(self) -> Iterator[MobilityService]:
        return iter(self.list_services())
