"""
Transport layer between provider proxies and provider APIs.

Proxies never talk HTTP themselves. They hand a service, a path and
parameters to a ProviderTransport, which owns connection handling, per-call
timeouts and retries, and translates every low-level failure into one of
the typed ProviderError subclasses.

The default implementation, HttpxTransport, uses httpx for async HTTP and
tenacity for exponential-backoff retries of connection errors and timeouts.

Example:
    >>> transport = HttpxTransport(timeout=5.0, max_retries=2)
    >>> async for item in transport.stream_json(service, "/api/options", params=...):
    ...     print(item["id"])
"""

import json
import logging
from collections.abc import AsyncIterator, Iterator, Mapping
from contextlib import asynccontextmanager, contextmanager
from typing import Any, Protocol, runtime_checkable

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from mobility_hub.exceptions import (
    ProviderProtocolError,
    ProviderReportedError,
    ProviderTimeout,
    ProviderUnreachable,
)
from mobility_hub.models.capabilities import MobilityService

logger = logging.getLogger(__name__)

NDJSON_CONTENT_TYPES = ("application/x-ndjson", "application/jsonl", "application/json-seq")


@runtime_checkable
class ProviderTransport(Protocol):
    """What a provider proxy needs from the network layer.

    Implementations must raise ProviderTimeout, ProviderUnreachable,
    ProviderProtocolError or ProviderReportedError instead of returning
    empty results, and must stop all work when the awaiting task is
    cancelled or the returned iterator is closed.
    """

    def stream_json(
        self,
        service: MobilityService,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> AsyncIterator[Any]:
        """Yield JSON items of a list response as they arrive."""
        ...

    async def fetch_json(
        self,
        service: MobilityService,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        """Return the parsed JSON body of a single response."""
        ...


@contextmanager
def translate_errors(provider_id: str) -> Iterator[None]:
    """Translate httpx exceptions raised inside the block into ProviderErrors."""
    try:
        yield
    except httpx.TimeoutException as e:
        raise ProviderTimeout(f"Request timed out: {e}", provider_id=provider_id) from e
    except (httpx.ProtocolError, httpx.DecodingError) as e:
        raise ProviderProtocolError(
            f"Malformed response: {e}", provider_id=provider_id
        ) from e
    except httpx.TransportError as e:
        raise ProviderUnreachable(
            f"Provider unreachable: {type(e).__name__}: {e}", provider_id=provider_id
        ) from e


def decode_json(payload: str | bytes, provider_id: str) -> Any:
    """Parse a JSON document from a provider.

    Raises:
        ProviderProtocolError: If the payload is not valid JSON
    """
    try:
        return json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProviderProtocolError(f"Invalid JSON: {e}", provider_id=provider_id) from e


def _list_items(data: Any, provider_id: str) -> list[Any]:
    """Extract the item list from a buffered JSON response."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ("items", "options", "data"):
            if isinstance(data.get(key), list):
                return data[key]
    raise ProviderProtocolError(
        f"Expected a JSON list, got {type(data).__name__}", provider_id=provider_id
    )


class HttpxTransport:
    """ProviderTransport over HTTP using httpx.

    Features:
    - Streams NDJSON responses line by line
    - Falls back to parsing JSON array responses once they are complete
    - Retries connection errors and timeouts with exponential backoff,
      but never re-sends a stream that has already produced items
    - Closes the connection as soon as the consumer stops iterating

    Attributes:
        timeout: Per-request timeout in seconds
        max_retries: Attempts per request (1 disables retries)
        backoff_min: Minimum wait between attempts in seconds
        backoff_max: Maximum wait between attempts in seconds
    """

    def __init__(
        self,
        timeout: float = 10.0,
        max_retries: int = 3,
        *,
        backoff_min: float = 0.5,
        backoff_max: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the transport.

        Args:
            timeout: Per-request timeout in seconds
            max_retries: Attempts per request (1 disables retries)
            backoff_min: Minimum wait between attempts in seconds
            backoff_max: Maximum wait between attempts in seconds
            client: Shared httpx client; a short-lived client is created
                per call when omitted
        """
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_min = backoff_min
        self.backoff_max = backoff_max
        self._client = client

    @asynccontextmanager
    async def _client_context(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            wait=wait_exponential(multiplier=1, min=self.backoff_min, max=self.backoff_max),
            stop=stop_after_attempt(self.max_retries),
            retry=retry_if_exception_type((ProviderUnreachable, ProviderTimeout)),
            reraise=True,
        )

    @staticmethod
    def _check_status(response: httpx.Response, provider_id: str) -> None:
        if response.status_code >= 400:
            raise ProviderReportedError(
                f"Provider returned an error: {response.text[:200]}",
                status_code=response.status_code,
                provider_id=provider_id,
            )

    async def fetch_json(
        self,
        service: MobilityService,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        """Send one GET request and return the parsed JSON body.

        Raises:
            ProviderTimeout: If all attempts timed out
            ProviderUnreachable: If the provider could not be reached
            ProviderReportedError: If the provider answered with 4xx/5xx
            ProviderProtocolError: If the body is not valid JSON
        """
        url = f"{service.base_url}{path}"
        async for attempt in self._retrying():
            with attempt:
                logger.debug(
                    f"GET {url} (attempt {attempt.retry_state.attempt_number})",
                    extra={"provider_id": service.id},
                )
                async with self._client_context() as client:
                    with translate_errors(service.id):
                        response = await client.get(
                            url,
                            params=dict(params or {}),
                            headers=dict(headers or {}),
                            timeout=self.timeout,
                        )
                self._check_status(response, service.id)
                if response.status_code == 204 or not response.content:
                    return None
                return decode_json(response.content, service.id)

    async def _open_stream(
        self,
        client: httpx.AsyncClient,
        request: httpx.Request,
        provider_id: str,
    ) -> httpx.Response:
        async for attempt in self._retrying():
            with attempt:
                with translate_errors(provider_id):
                    return await client.send(request, stream=True)

    async def stream_json(
        self,
        service: MobilityService,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> AsyncIterator[Any]:
        """Send one GET request and yield the items of the list response.

        NDJSON bodies are yielded line by line while the response is still
        arriving; other bodies are parsed as a JSON list (or an object
        wrapping one under ``items``/``options``/``data``).
        """
        url = f"{service.base_url}{path}"
        async with self._client_context() as client:
            request = client.build_request(
                "GET",
                url,
                params=dict(params or {}),
                headers=dict(headers or {}),
                timeout=self.timeout,
            )
            logger.debug(f"GET {url} (streaming)", extra={"provider_id": service.id})
            response = await self._open_stream(client, request, service.id)
            try:
                if response.status_code >= 400:
                    with translate_errors(service.id):
                        await response.aread()
                    self._check_status(response, service.id)

                content_type = response.headers.get("content-type", "").lower()
                if content_type.startswith(NDJSON_CONTENT_TYPES):
                    with translate_errors(service.id):
                        async for line in response.aiter_lines():
                            line = line.strip()
                            if line:
                                yield decode_json(line, service.id)
                else:
                    with translate_errors(service.id):
                        body = await response.aread()
                    for item in _list_items(decode_json(body, service.id), service.id):
                        yield item
            finally:
                await response.aclose()
