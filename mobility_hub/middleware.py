"""
Middleware facade.

One entry point combining the provider registry and the query aggregator:
select providers by capability, query options from all matching providers
as one stream, and collect bookings from several providers at once.

Usage:
    from mobility_hub import MiddlewareService

    middleware = await MiddlewareService.from_config()

    # Providers supporting bikes or cars, with an options API
    proxies = middleware.get_providers(
        modes={Mode.BICYCLE, Mode.CAR}, apis={Api.OPTIONS_API}
    )

    # Options from every matching provider, first five only
    async with middleware.get_options((48.74, 9.31), limit=5) as stream:
        async for option in stream:
            print(option.provider_id, option.option_id)

    # Current bookings, one token per provider
    results = await middleware.get_bookings({"car-share"}, token_store.get)
"""

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from mobility_hub.aggregator import (
    CancellationToken,
    OptionPredicate,
    OptionStream,
    QueryAggregator,
    TokenResolver,
)
from mobility_hub.config import MiddlewareConfig, get_config
from mobility_hub.exceptions import (
    InvalidQueryError,
    ProviderNotFoundError,
    ProviderProtocolError,
)
from mobility_hub.models.capabilities import Api, MobilityType, Mode, QueryFilter
from mobility_hub.models.options import (
    BookingResults,
    Coordinates,
    FailureKind,
    OptionQuery,
    ProviderFailure,
)
from mobility_hub.providers.directory import ServiceDirectoryClient, load_services
from mobility_hub.providers.proxy import ProviderProxy
from mobility_hub.providers.registry import ProviderRegistry
from mobility_hub.providers.transport import HttpxTransport, ProviderTransport

logger = logging.getLogger(__name__)


def _coordinates(value: Coordinates | tuple[float, float] | None, field: str) -> Coordinates | None:
    if value is None or isinstance(value, Coordinates):
        return value
    try:
        lat, lon = value
    except (TypeError, ValueError) as e:
        raise InvalidQueryError(
            f"{field} must be Coordinates or a (lat, lon) pair", field=field, value=value
        ) from e
    return Coordinates(float(lat), float(lon))


class MiddlewareService:
    """Entry point for querying many mobility providers at once.

    Attributes:
        registry: The provider registry
        aggregator: The query aggregator used for multi-provider calls
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        aggregator: QueryAggregator | None = None,
    ):
        """Initialize the middleware.

        Args:
            registry: Bootstrapped provider registry
            aggregator: Aggregator to use (a default one if omitted)
        """
        self.registry = registry
        self.aggregator = aggregator or QueryAggregator()

    @classmethod
    async def from_config(
        cls,
        config: MiddlewareConfig | None = None,
        *,
        transport: ProviderTransport | None = None,
    ) -> "MiddlewareService":
        """Bootstrap registry, transport and aggregator from configuration.

        Services come from ``services_file`` if set, otherwise from the
        service directory; with neither, the registry starts empty.
        """
        config = config or get_config()
        transport = transport or HttpxTransport(
            timeout=config.provider_timeout_seconds,
            max_retries=config.provider_max_retries,
        )

        if config.services_file:
            services = load_services(config.services_file)
        elif config.service_directory_url:
            directory = ServiceDirectoryClient(
                config.service_directory_url, timeout=config.provider_timeout_seconds
            )
            services = await directory.get_all()
        else:
            services = []

        registry = ProviderRegistry.from_services(
            services, transport, auth_header=config.auth_header
        )
        aggregator = QueryAggregator(
            max_concurrency=config.max_concurrent_providers,
            booking_timeout=config.booking_timeout_seconds,
        )
        logger.info(f"Middleware ready with {len(registry)} providers")
        return cls(registry, aggregator)

    # ========================================================================
    # PROVIDER SELECTION
    # ========================================================================

    def get_providers(
        self,
        modes: Iterable[Mode | str] | None = None,
        mobility_types: Iterable[MobilityType | str] | None = None,
        apis: Iterable[Api | str] | None = None,
        *,
        service_ids: Iterable[str] | None = None,
    ) -> list[ProviderProxy]:
        """Proxies of providers matching the given capabilities.

        Without arguments every provider is returned. Providers must
        support at least one of ``modes``, at least one of
        ``mobility_types`` and all of ``apis``; empty or omitted arguments
        do not filter.

        Raises:
            InvalidQueryError: If an argument names an unknown capability
        """
        query_filter = QueryFilter(
            modes=modes or (),
            mobility_types=mobility_types or (),
            apis=apis or (),
            service_ids=service_ids or (),
        )
        if query_filter.is_empty:
            return self.registry.get_all()
        return self.registry.get_by_filter(query_filter)

    def get_provider(self, service_id: str) -> ProviderProxy | None:
        """Proxy of one provider, or None if it is not registered."""
        return self.registry.get_one(service_id)

    # ========================================================================
    # MULTI-PROVIDER QUERIES
    # ========================================================================

    def get_options(
        self,
        origin: Coordinates | tuple[float, float],
        destination: Coordinates | tuple[float, float] | None = None,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        radius_meters: int | None = None,
        sharing_allowed: bool | None = None,
        modes: Iterable[Mode | str] | None = None,
        mobility_types: Iterable[MobilityType | str] | None = None,
        limit_to: int | None = None,
        provider_options: Mapping[str, Any] | None = None,
        *,
        limit: int | None = None,
        predicate: OptionPredicate | None = None,
        token: CancellationToken | None = None,
        auth: Mapping[str, str] | None = None,
    ) -> OptionStream:
        """Stream options from every provider able to answer the query.

        Providers are selected by their options API and the requested
        modes and mobility types. Requests are sent when the stream is
        first pulled; options arrive in provider response order.

        Args:
            origin: Start position
            destination: End position
            start_time: Earliest start (open-ended if None)
            end_time: Latest end (open-ended if None)
            radius_meters: Search radius around the origin
            sharing_allowed: Whether shared rides are acceptable
            modes: Acceptable transport modes
            mobility_types: Acceptable mobility types
            limit_to: Maximum options per provider
            provider_options: Provider-specific parameters, passed through
            limit: Maximum options in total
            predicate: Stream ends at the first option it rejects
            token: External stop signal
            auth: Per-provider tokens for the option calls

        Raises:
            InvalidQueryError: If the query is malformed (before any
                provider is contacted)
        """
        query = OptionQuery(
            origin=_coordinates(origin, "origin"),
            destination=_coordinates(destination, "destination"),
            start_time=start_time,
            end_time=end_time,
            radius_meters=radius_meters,
            sharing_allowed=sharing_allowed,
            modes=modes or (),
            mobility_types=mobility_types or (),
            limit_to=limit_to,
            provider_options=provider_options or {},
        )
        proxies = self.registry.get_by_filter(
            QueryFilter(
                modes=query.modes,
                mobility_types=query.mobility_types,
                apis={Api.OPTIONS_API},
            )
        )
        return self.aggregator.get_options(
            proxies, query, limit=limit, predicate=predicate, token=token, auth=auth
        )

    async def get_bookings(
        self,
        service_ids: Iterable[str],
        token_getter: TokenResolver,
        *,
        timeout: float | None = None,
    ) -> BookingResults:
        """Fetch the current booking from each of ``service_ids``.

        Every requested id is accounted for: unknown providers and providers
        without a booking API are reported as failures without resolving a
        token for them.

        Args:
            service_ids: Providers to ask
            token_getter: Maps a provider id to its token
            timeout: Per-provider timeout

        Returns:
            BookingResults keyed by provider id
        """
        proxies: list[ProviderProxy] = []
        skipped: dict[str, ProviderFailure] = {}

        for service_id in dict.fromkeys(service_ids):
            proxy = self.registry.get_one(service_id)
            if proxy is None:
                error: Exception = ProviderNotFoundError(
                    service_id, available=self.registry.list_providers()
                )
            elif Api.BOOKING_API not in proxy.service.apis:
                error = ProviderProtocolError(
                    "Service does not offer BOOKING_API", provider_id=service_id
                )
            else:
                proxies.append(proxy)
                continue
            skipped[service_id] = ProviderFailure(
                provider_id=service_id,
                kind=FailureKind.PROTOCOL,
                message=str(error),
                error=error,
            )

        results = await self.aggregator.get_bookings(proxies, token_getter, timeout=timeout)
        results.failures.update(skipped)
        return results
