"""
Provider proxy: the local adapter for one mobility provider.

A proxy marshals queries for its provider, attaches per-call credentials and
unmarshals the provider's answers. It holds no per-query state, so one proxy
can serve any number of concurrent calls.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import aclosing

from mobility_hub.exceptions import ProviderProtocolError
from mobility_hub.models.capabilities import Api, MobilityService
from mobility_hub.models.options import Booking, Option, OptionQuery
from mobility_hub.providers.transport import ProviderTransport

logger = logging.getLogger(__name__)

OPTIONS_PATH = "/api/options"
BOOKING_PATH = "/api/bookings/current"


class ProviderProxy:
    """Adapter for the options and booking APIs of one provider.

    Every call makes exactly one request through the transport. Failures
    are raised as ProviderError subclasses tagged with the provider id and
    stay confined to the awaiting task.

    Example:
        proxy = registry.get_one("car-share")
        async for option in proxy.get_options(query):
            print(option.option_id)

        booking = await proxy.get_booking(token)
    """

    def __init__(
        self,
        service: MobilityService,
        transport: ProviderTransport,
        *,
        auth_header: str = "Authorization",
    ):
        """Initialize proxy.

        Args:
            service: The registry entry this proxy is bound to
            transport: Network collaborator used for every call
            auth_header: Header carrying the per-call token
        """
        self._service = service
        self._transport = transport
        self._auth_header = auth_header

    @property
    def service(self) -> MobilityService:
        """The registry entry this proxy is bound to."""
        return self._service

    @property
    def id(self) -> str:
        """Id of the bound provider."""
        return self._service.id

    def __repr__(self) -> str:
        return f"ProviderProxy(id={self.id!r}, base_url={self._service.base_url!r})"

    def _headers(self, token: str | None) -> dict[str, str]:
        headers = {"Accept": "application/x-ndjson, application/json"}
        if token:
            if self._auth_header.lower() == "authorization":
                headers[self._auth_header] = f"Bearer {token}"
            else:
                headers[self._auth_header] = token
        return headers

    def _require_api(self, api: Api) -> None:
        if api not in self._service.apis:
            raise ProviderProtocolError(
                f"Service does not offer {api.value}", provider_id=self.id
            )

    async def get_options(
        self, query: OptionQuery, token: str | None = None
    ) -> AsyncIterator[Option]:
        """Stream the provider's options for ``query``.

        Nothing is sent until iteration starts. Items are yielded as the
        transport delivers them.

        Args:
            query: The option query
            token: Optional credentials for this call

        Yields:
            Option items in the provider's order

        Raises:
            ProviderError: If the call fails or the service has no options API
        """
        self._require_api(Api.OPTIONS_API)
        logger.debug(f"Requesting options from {self.id}", extra={"provider_id": self.id})

        count = 0
        items = self._transport.stream_json(
            self._service,
            OPTIONS_PATH,
            params=query.to_params(),
            headers=self._headers(token),
        )
        async with aclosing(items):
            async for item in items:
                count += 1
                yield Option.from_dict(self.id, item)

        logger.debug(
            f"Options stream from {self.id} finished with {count} items",
            extra={"provider_id": self.id},
        )

    async def get_booking(self, token: str) -> Booking:
        """Fetch the booking the provider holds for ``token``'s owner.

        Raises:
            ProviderError: If the call fails or the service has no booking API
        """
        self._require_api(Api.BOOKING_API)
        data = await self._transport.fetch_json(
            self._service, BOOKING_PATH, headers=self._headers(token)
        )
        return Booking.from_dict(self.id, data)
