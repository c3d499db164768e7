"""Tests for HttpxTransport."""

import json

import httpx
import pytest

from mobility_hub.exceptions import (
    ProviderProtocolError,
    ProviderReportedError,
    ProviderTimeout,
    ProviderUnreachable,
)
from mobility_hub.models import MobilityService
from mobility_hub.providers.transport import (
    HttpxTransport,
    ProviderTransport,
    decode_json,
    translate_errors,
)

# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def service():
    """Provider service used for every request."""
    return MobilityService(id="P", base_url="https://p.example.com", apis={"OPTIONS_API"})


def make_transport(handler, max_retries=3) -> tuple[HttpxTransport, list[httpx.Request]]:
    """Transport backed by an httpx mock handler, recording requests."""
    requests: list[httpx.Request] = []

    def recording(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(recording))
    transport = HttpxTransport(
        timeout=1.0, max_retries=max_retries, backoff_min=0, backoff_max=0, client=client
    )
    return transport, requests


def ndjson(*items) -> httpx.Response:
    body = "\n".join(json.dumps(item) for item in items) + "\n"
    return httpx.Response(200, content=body.encode(), headers={"content-type": "application/x-ndjson"})


# ============================================================================
# HELPERS
# ============================================================================


class TestHelpers:
    """Tests for module-level helpers."""

    def test_implements_protocol(self):
        """Test that HttpxTransport satisfies ProviderTransport."""
        assert isinstance(HttpxTransport(), ProviderTransport)

    def test_decode_json_invalid(self):
        """Test that invalid JSON is a protocol error."""
        with pytest.raises(ProviderProtocolError) as exc_info:
            decode_json(b"{nope", "P")

        assert exc_info.value.provider_id == "P"

    @pytest.mark.parametrize(
        "error,expected",
        [
            (httpx.ReadTimeout("slow"), ProviderTimeout),
            (httpx.ConnectError("refused"), ProviderUnreachable),
            (httpx.RemoteProtocolError("garbled"), ProviderProtocolError),
        ],
    )
    def test_translate_errors(self, error, expected):
        """Test the mapping of httpx errors to provider errors."""
        with pytest.raises(expected) as exc_info:
            with translate_errors("P"):
                raise error

        assert exc_info.value.__cause__ is error

    def test_min_one_attempt(self):
        """Test that retries cannot be disabled below one attempt."""
        assert HttpxTransport(max_retries=0).max_retries == 1


# ============================================================================
# STREAMING
# ============================================================================


class TestStreamJson:
    """Tests for stream_json."""

    @pytest.mark.asyncio
    async def test_ndjson(self, service):
        """Test that NDJSON lines are yielded in order."""
        transport, requests = make_transport(lambda r: ndjson({"id": 1}, {"id": 2}, {"id": 3}))

        items = [i async for i in transport.stream_json(service, "/api/options")]

        assert items == [{"id": 1}, {"id": 2}, {"id": 3}]
        assert len(requests) == 1
        assert str(requests[0].url) == "https://p.example.com/api/options"

    @pytest.mark.asyncio
    async def test_params_and_headers(self, service):
        """Test that params and headers reach the request."""
        transport, requests = make_transport(lambda r: ndjson())

        [
            i
            async for i in transport.stream_json(
                service,
                "/api/options",
                params={"from": "1.0,2.0", "limitTo": 5},
                headers={"Authorization": "Bearer t"},
            )
        ]

        request = requests[0]
        assert request.url.params["from"] == "1.0,2.0"
        assert request.url.params["limitTo"] == "5"
        assert request.headers["Authorization"] == "Bearer t"

    @pytest.mark.asyncio
    async def test_json_array(self, service):
        """Test the buffered JSON array fallback."""
        transport, _ = make_transport(lambda r: httpx.Response(200, json=[{"id": "a"}, {"id": "b"}]))

        items = [i async for i in transport.stream_json(service, "/api/options")]

        assert items == [{"id": "a"}, {"id": "b"}]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", ["items", "options", "data"])
    async def test_wrapped_array(self, service, key):
        """Test that lists wrapped in an object are unwrapped."""
        transport, _ = make_transport(lambda r: httpx.Response(200, json={key: [{"id": "a"}]}))

        items = [i async for i in transport.stream_json(service, "/api/options")]

        assert items == [{"id": "a"}]

    @pytest.mark.asyncio
    async def test_not_a_list(self, service):
        """Test that a non-list body is a protocol error."""
        transport, _ = make_transport(lambda r: httpx.Response(200, json={"id": "a"}))

        with pytest.raises(ProviderProtocolError):
            [i async for i in transport.stream_json(service, "/api/options")]

    @pytest.mark.asyncio
    async def test_invalid_ndjson_line(self, service):
        """Test that a malformed line fails after the good ones."""
        transport, _ = make_transport(
            lambda r: httpx.Response(
                200,
                content=b'{"id": 1}\n{broken\n',
                headers={"content-type": "application/x-ndjson"},
            )
        )
        received = []

        with pytest.raises(ProviderProtocolError):
            async for item in transport.stream_json(service, "/api/options"):
                received.append(item)

        assert received == [{"id": 1}]

    @pytest.mark.asyncio
    async def test_error_status(self, service):
        """Test that 5xx answers raise ProviderReportedError without retry."""
        transport, requests = make_transport(lambda r: httpx.Response(503, text="maintenance"))

        with pytest.raises(ProviderReportedError) as exc_info:
            [i async for i in transport.stream_json(service, "/api/options")]

        assert exc_info.value.status_code == 503
        assert exc_info.value.provider_id == "P"
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_connect_error_retried(self, service):
        """Test that connection errors are retried and then surface typed."""

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        transport, requests = make_transport(handler, max_retries=3)

        with pytest.raises(ProviderUnreachable):
            [i async for i in transport.stream_json(service, "/api/options")]

        assert len(requests) == 3

    @pytest.mark.asyncio
    async def test_recovers_after_retry(self, service):
        """Test that a transient failure is hidden by a successful retry."""
        attempts = {"n": 0}

        def handler(request):
            attempts["n"] += 1
            if attempts["n"] == 1:
                raise httpx.ConnectError("refused", request=request)
            return ndjson({"id": 1})

        transport, requests = make_transport(handler)

        items = [i async for i in transport.stream_json(service, "/api/options")]

        assert items == [{"id": 1}]
        assert len(requests) == 2

    @pytest.mark.asyncio
    async def test_timeout(self, service):
        """Test that timeouts surface as ProviderTimeout."""

        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        transport, requests = make_transport(handler, max_retries=1)

        with pytest.raises(ProviderTimeout):
            [i async for i in transport.stream_json(service, "/api/options")]

        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_early_close(self, service):
        """Test that closing the iterator early is clean."""
        transport, _ = make_transport(lambda r: ndjson(*({"id": i} for i in range(100))))

        items = transport.stream_json(service, "/api/options")
        first = await anext(items)
        await items.aclose()

        assert first == {"id": 0}


# ============================================================================
# SINGLE RESPONSES
# ============================================================================


class TestFetchJson:
    """Tests for fetch_json."""

    @pytest.mark.asyncio
    async def test_success(self, service):
        """Test fetching a JSON object."""
        transport, requests = make_transport(lambda r: httpx.Response(200, json={"id": "bk"}))

        data = await transport.fetch_json(
            service, "/api/bookings/current", headers={"Authorization": "Bearer t"}
        )

        assert data == {"id": "bk"}
        assert requests[0].headers["Authorization"] == "Bearer t"

    @pytest.mark.asyncio
    async def test_no_content(self, service):
        """Test that 204 yields None."""
        transport, _ = make_transport(lambda r: httpx.Response(204))

        assert await transport.fetch_json(service, "/api/bookings/current") is None

    @pytest.mark.asyncio
    async def test_not_found(self, service):
        """Test that 404 raises ProviderReportedError."""
        transport, requests = make_transport(lambda r: httpx.Response(404, json={"error": "none"}))

        with pytest.raises(ProviderReportedError) as exc_info:
            await transport.fetch_json(service, "/api/bookings/current")

        assert exc_info.value.status_code == 404
        assert "HTTP 404" in str(exc_info.value)
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_invalid_json(self, service):
        """Test that an unparseable body is a protocol error."""
        transport, _ = make_transport(lambda r: httpx.Response(200, content=b"<html>"))

        with pytest.raises(ProviderProtocolError):
            await transport.fetch_json(service, "/api/bookings/current")

    @pytest.mark.asyncio
    async def test_unreachable_after_retries(self, service):
        """Test that fetch retries connection errors."""

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        transport, requests = make_transport(handler, max_retries=2)

        with pytest.raises(ProviderUnreachable):
            await transport.fetch_json(service, "/api/bookings/current")

        assert len(requests) == 2
