"""
Multi-provider query aggregation.

Fans one query out to many provider proxies at once and merges their answers
into a single lazily consumed stream.

Architecture:
    ┌────────────────────────────────────────────────────────────┐
    │                       OptionStream                         │
    │  ┌──────────┐ ┌──────────┐ ┌──────────┐                    │
    │  │ task: A  │ │ task: B  │ │ task: C  │  one per provider  │
    │  └────┬─────┘ └────┬─────┘ └────┬─────┘                    │
    │       └────────────┼────────────┘                          │
    │                    ↓                                       │
    │          asyncio.Queue (first arrival)                     │
    │                    ↓                                       │
    │   limit / predicate / CancellationToken checks             │
    │                    ↓                                       │
    │               caller's async for                           │
    └────────────────────────────────────────────────────────────┘

Ordering: items from different providers come out in arrival order, so the
merged order differs from run to run. Each provider's own order is kept.

Failures: a failing provider never stops the stream. Its failure is
recorded in ``OptionStream.failures`` (and logged) while the remaining
providers keep delivering.

Example:
    >>> aggregator = QueryAggregator()
    >>> token = CancellationToken()
    >>> async with aggregator.get_options(proxies, query, limit=5, token=token) as stream:
    ...     async for option in stream:
    ...         show(option)
    >>> stream.failures
    [ProviderFailure(provider_id='car-share', kind=<FailureKind.TIMEOUT: 'timeout'>, ...)]
"""

import asyncio
import inspect
import logging
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Mapping
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any

from mobility_hub.exceptions import (
    InvalidQueryError,
    ProviderError,
    ProviderTimeout,
    QueryCancelled,
    TokenResolutionFailed,
)
from mobility_hub.models.options import (
    BookingResults,
    Option,
    OptionQuery,
    ProviderFailure,
    QueryState,
)
from mobility_hub.providers.proxy import ProviderProxy

logger = logging.getLogger(__name__)

TokenResolver = Callable[[str], str | Awaitable[str]]
OptionPredicate = Callable[[Option], bool] | Callable[[], bool]

_POSITIONAL = (
    inspect.Parameter.POSITIONAL_ONLY,
    inspect.Parameter.POSITIONAL_OR_KEYWORD,
    inspect.Parameter.VAR_POSITIONAL,
)


def _takes_option(predicate: OptionPredicate) -> bool:
    """True if ``predicate`` expects the option as its argument."""
    try:
        parameters = inspect.signature(predicate).parameters.values()
    except (TypeError, ValueError):
        return True
    return any(p.kind in _POSITIONAL for p in parameters)


class CancellationToken:
    """Stop signal for a running option stream.

    Any task may call ``cancel()``; the stream checks the token before every
    emission and wakes up a consumer that is waiting for the next item.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        """Request the stream to stop."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """True once ``cancel()`` has been called."""
        return self._event.is_set()

    async def wait(self) -> None:
        """Block until ``cancel()`` is called."""
        await self._event.wait()


@dataclass(frozen=True)
class _ProviderDone:
    """Queue marker: one provider task has ended."""

    provider_id: str


def _unique_proxies(proxies: Iterable[ProviderProxy]) -> list[ProviderProxy]:
    unique: dict[str, ProviderProxy] = {}
    for proxy in proxies:
        if proxy.id in unique:
            logger.debug(f"Ignoring duplicate proxy for {proxy.id}")
            continue
        unique[proxy.id] = proxy
    return list(unique.values())


class OptionStream:
    """Merged, lazily consumed stream of options from many providers.

    Requests are only dispatched when the first item is pulled. Pending
    provider calls are cancelled when the consumer stops early: on leaving
    an ``async for`` loop, an ``async with`` block, or on ``aclose()``.

    The predicate comes in two forms. ``predicate(option)`` is checked
    right before each emission. A zero-argument ``predicate()`` is checked
    there too, and is also polled every ``predicate_poll_interval`` seconds
    while the consumer waits, so a flag flipped from another task ends the
    wait without waiting for the slowest provider. Only the zero-argument
    form and the CancellationToken wake a waiting consumer.

    Attributes:
        query: The query sent to every provider
        query_id: Short id used to correlate log records
        states: Lifecycle state per provider id
        failures: Failures of individual providers, in arrival order
        emitted: Number of options handed to the consumer so far
        stop_reason: Why the stream ended ("exhausted", "limit",
            "predicate", "cancelled", "closed") or None while running
    """

    def __init__(
        self,
        proxies: Iterable[ProviderProxy],
        query: OptionQuery,
        *,
        limit: int | None = None,
        predicate: OptionPredicate | None = None,
        token: CancellationToken | None = None,
        auth: Mapping[str, str] | None = None,
        max_concurrency: int | None = None,
        predicate_poll_interval: float = 0.05,
    ):
        """Initialize the stream. Nothing is dispatched yet.

        Args:
            proxies: Providers to query, typically from the registry
            query: Query sent unchanged to every provider
            limit: Stop after this many options in total
            predicate: Re-evaluated before each emission; the stream ends
                at the first option it rejects
            token: External stop signal
            auth: Per-provider tokens attached to the option calls
            max_concurrency: Maximum provider calls in flight at once
            predicate_poll_interval: Seconds between checks of a
                zero-argument predicate while waiting for the next item
        """
        self._proxies = _unique_proxies(proxies)
        self.query = query
        self.query_id = uuid.uuid4().hex[:12]
        self._limit = limit
        self._predicate = predicate
        self._watches_predicate = predicate is not None and not _takes_option(predicate)
        self._poll_interval = predicate_poll_interval
        self._token = token or CancellationToken()
        self._own_token = CancellationToken()
        self._auth = dict(auth or {})
        self._semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency else None

        self._queue: asyncio.Queue[Option | _ProviderDone] = asyncio.Queue()
        self._tasks: dict[str, asyncio.Task] = {}
        self._active = 0
        self._started = False
        self._shut_down = False

        self.states: dict[str, QueryState] = {p.id: QueryState.PENDING for p in self._proxies}
        self.failures: list[ProviderFailure] = []
        self.emitted = 0
        self.stop_reason: str | None = None

        if limit == 0:
            self.stop_reason = "limit"

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def _start(self) -> None:
        self._started = True
        logger.info(
            f"Dispatching options query to {len(self._proxies)} providers",
            extra={"query_id": self.query_id},
        )
        for proxy in self._proxies:
            self._tasks[proxy.id] = asyncio.create_task(
                self._produce(proxy), name=f"options:{self.query_id}:{proxy.id}"
            )
        self._active = len(self._tasks)

    async def _produce(self, proxy: ProviderProxy) -> None:
        provider_id = proxy.id
        try:
            if self._semaphore is not None:
                async with self._semaphore:
                    await self._pump(proxy)
            else:
                await self._pump(proxy)
        except asyncio.CancelledError:
            self.states[provider_id] = QueryState.CANCELLED
            raise
        except Exception as e:
            failure = ProviderFailure.from_exception(provider_id, e)
            self.failures.append(failure)
            self.states[provider_id] = QueryState.FAILED
            logger.warning(
                f"Provider {provider_id} failed ({failure.kind.value}): {failure.message}",
                exc_info=not isinstance(e, ProviderError),
                extra={"query_id": self.query_id, "provider_id": provider_id},
            )
        else:
            self.states[provider_id] = QueryState.COMPLETED
        finally:
            self._queue.put_nowait(_ProviderDone(provider_id))

    async def _pump(self, proxy: ProviderProxy) -> None:
        options = proxy.get_options(self.query, self._auth.get(proxy.id))
        async with aclosing(options):
            async for option in options:
                self.states[proxy.id] = QueryState.DELIVERING
                self._queue.put_nowait(option)

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def __aiter__(self) -> AsyncIterator[Option]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Option]:
        """Iterator for ``async for``; closing it (or dropping it) stops the stream."""
        try:
            while True:
                try:
                    option = await self.__anext__()
                except StopAsyncIteration:
                    return
                yield option
        finally:
            self._stop("closed")
            await self._shutdown()

    async def __anext__(self) -> Option:
        while True:
            if self.stop_reason is None:
                if self._stop_requested():
                    self._stop("cancelled")
                elif self._watches_predicate and not self._accepts(None):
                    self._stop("predicate")
            if self.stop_reason is None and not self._started:
                self._start()
            if self.stop_reason is None and self._active == 0 and self._queue.empty():
                self._stop("exhausted")
            if self.stop_reason is not None:
                await self._shutdown()
                raise StopAsyncIteration

            try:
                item = await self._next_item()
            except asyncio.CancelledError:
                self._stop("closed")
                await self._shutdown()
                raise

            if item is None:
                continue
            if isinstance(item, _ProviderDone):
                self._active -= 1
                continue

            # No await between these checks and the return, so a stop
            # requested before this point is never overtaken by an emission.
            if self._stop_requested():
                self._stop("cancelled")
                continue
            if self._predicate is not None and not self._accepts(item):
                self._stop("predicate")
                continue

            self.emitted += 1
            if self._limit is not None and self.emitted >= self._limit:
                self._stop("limit")
            return item

    def _stop_requested(self) -> bool:
        return self._token.cancelled or self._own_token.cancelled

    def _accepts(self, option: Option | None) -> bool:
        try:
            if self._watches_predicate:
                return bool(self._predicate())
            return bool(self._predicate(option))
        except Exception:
            self._stop("closed")
            raise

    async def _watch_predicate(self) -> None:
        """Return once a zero-argument predicate no longer holds."""
        while True:
            await asyncio.sleep(self._poll_interval)
            try:
                if not self._predicate():
                    return
            except Exception:
                # Raised again by the consumer loop's own check
                return

    async def _next_item(self) -> Option | _ProviderDone | None:
        """Next queued item, or None if the wait ended for a possible stop."""
        if not self._queue.empty():
            return self._queue.get_nowait()

        getter = asyncio.ensure_future(self._queue.get())
        stoppers = [
            asyncio.ensure_future(self._token.wait()),
            asyncio.ensure_future(self._own_token.wait()),
        ]
        if self._watches_predicate:
            stoppers.append(asyncio.ensure_future(self._watch_predicate()))
        try:
            await asyncio.wait([getter, *stoppers], return_when=asyncio.FIRST_COMPLETED)
        finally:
            for stopper in stoppers:
                stopper.cancel()
            if not getter.done():
                getter.cancel()

        if getter.done() and not getter.cancelled():
            return getter.result()
        return None

    def _stop(self, reason: str) -> None:
        """Record why the stream ends and cancel every pending provider call."""
        if self.stop_reason is None:
            self.stop_reason = reason
            logger.info(
                f"Options stream stopping ({reason}) after {self.emitted} options",
                extra={"query_id": self.query_id},
            )
        for task in self._tasks.values():
            if not task.done():
                task.cancel()

    async def _shutdown(self) -> None:
        if self._shut_down:
            return
        self._shut_down = True

        pending = [t for t in self._tasks.values() if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        while not self._queue.empty():
            self._queue.get_nowait()

        for provider_id, state in self.states.items():
            if not state.is_terminal:
                self.states[provider_id] = QueryState.CANCELLED

        if pending:
            logger.info(
                f"Cancelled {len(pending)} pending provider calls",
                extra={"query_id": self.query_id},
            )

    # ------------------------------------------------------------------
    # Public controls
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Stop the stream from any task; the consumer sees its end."""
        self._own_token.cancel()
        for task in self._tasks.values():
            if not task.done():
                task.cancel()

    async def aclose(self) -> None:
        """End the stream and cancel every pending provider call."""
        self._stop("closed")
        await self._shutdown()

    @property
    def closed(self) -> bool:
        """True once the stream has ended for any reason."""
        return self._shut_down

    @property
    def cancelled(self) -> bool:
        """True if the stream ended before every provider finished."""
        return self.stop_reason not in (None, "exhausted")

    async def collect(self, *, strict: bool = False) -> list[Option]:
        """Drain the stream into a list and close it.

        Args:
            strict: Raise QueryCancelled if the stream was stopped through
                its cancellation token instead of ending normally

        Raises:
            QueryCancelled: In strict mode, when the stream was cancelled
        """
        options: list[Option] = []
        try:
            async for option in self:
                options.append(option)
        finally:
            await self.aclose()

        if strict and self.stop_reason == "cancelled":
            raise QueryCancelled(
                f"Options query {self.query_id} cancelled after {len(options)} options"
            )
        return options

    async def __aenter__(self) -> "OptionStream":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


class QueryAggregator:
    """Runs one query against many providers concurrently.

    Stateless between calls: every ``get_options`` call owns its own merge
    queue and tasks, and every ``get_bookings`` call its own fan-out.

    Attributes:
        max_concurrency: Maximum provider calls in flight per query
            (None = one per provider)
        booking_timeout: Default per-provider timeout for booking lookups
        predicate_poll_interval: Seconds between checks of a zero-argument
            predicate while a stream waits for its next item
    """

    def __init__(
        self,
        max_concurrency: int | None = None,
        booking_timeout: float | None = None,
        predicate_poll_interval: float = 0.05,
    ):
        """Initialize QueryAggregator.

        Args:
            max_concurrency: Maximum provider calls in flight per query
            booking_timeout: Default per-provider timeout for booking lookups
            predicate_poll_interval: Poll interval for zero-argument predicates
        """
        if max_concurrency is not None and max_concurrency < 1:
            raise ValueError("max_concurrency must be positive")
        self.max_concurrency = max_concurrency
        self.booking_timeout = booking_timeout
        self.predicate_poll_interval = predicate_poll_interval

    def get_options(
        self,
        proxies: Iterable[ProviderProxy],
        query: OptionQuery,
        *,
        limit: int | None = None,
        predicate: OptionPredicate | None = None,
        token: CancellationToken | None = None,
        auth: Mapping[str, str] | None = None,
    ) -> OptionStream:
        """Create a merged options stream over ``proxies``.

        Args:
            proxies: Providers to query
            query: Query sent to every provider
            limit: Stop after this many options in total
            predicate: Stream ends at the first option it rejects, or as
                soon as a zero-argument predicate returns False
            token: External stop signal
            auth: Per-provider tokens for the option calls

        Returns:
            An OptionStream; requests go out on the first pull

        Raises:
            InvalidQueryError: If the query or the limit is malformed
        """
        if not isinstance(query, OptionQuery):
            raise InvalidQueryError(
                f"Expected an OptionQuery, got {type(query).__name__}", field="query"
            )
        if limit is not None and limit < 0:
            raise InvalidQueryError("limit must not be negative", field="limit", value=limit)

        return OptionStream(
            proxies,
            query,
            limit=limit,
            predicate=predicate,
            token=token,
            auth=auth,
            max_concurrency=self.max_concurrency,
            predicate_poll_interval=self.predicate_poll_interval,
        )

    async def get_bookings(
        self,
        proxies: Iterable[ProviderProxy],
        token_resolver: TokenResolver,
        *,
        timeout: float | None = None,
    ) -> BookingResults:
        """Look up the current booking at every provider concurrently.

        The token of each provider is resolved inside that provider's task
        right before its request. Synchronous resolvers run in a worker
        thread so a blocking credential store does not stall other lookups.

        Args:
            proxies: Providers to ask
            token_resolver: Maps a provider id to its token (sync or async)
            timeout: Per-provider timeout (defaults to ``booking_timeout``)

        Returns:
            Bookings and failures keyed by provider id; every proxy appears
            in exactly one of the two
        """
        proxies = _unique_proxies(proxies)
        timeout = timeout if timeout is not None else self.booking_timeout
        results = BookingResults()

        async def lookup(proxy: ProviderProxy) -> None:
            try:
                async with asyncio.timeout(timeout):
                    token = await self._resolve_token(token_resolver, proxy.id)
                    results.bookings[proxy.id] = await proxy.get_booking(token)
                return
            except ProviderError as e:
                error: Exception = e
            except TimeoutError:
                error = ProviderTimeout(
                    f"Booking lookup exceeded {timeout}s",
                    timeout_seconds=timeout,
                    provider_id=proxy.id,
                )
            except Exception as e:
                error = e

            failure = ProviderFailure.from_exception(proxy.id, error)
            results.failures[proxy.id] = failure
            logger.warning(
                f"Booking lookup failed for {proxy.id} ({failure.kind.value}): {failure.message}",
                extra={"provider_id": proxy.id},
            )

        await asyncio.gather(*(lookup(p) for p in proxies))
        logger.info(
            f"Booking lookup finished: {len(results.bookings)} succeeded, "
            f"{len(results.failures)} failed"
        )
        return results

    @staticmethod
    async def _resolve_token(token_resolver: TokenResolver, provider_id: str) -> str:
        try:
            if inspect.iscoroutinefunction(token_resolver):
                token = await token_resolver(provider_id)
            else:
                token = await asyncio.to_thread(token_resolver, provider_id)
                if inspect.isawaitable(token):
                    token = await token
        except Exception as e:
            raise TokenResolutionFailed(
                f"Token resolution failed: {type(e).__name__}: {e}", provider_id=provider_id
            ) from e

        if not token:
            raise TokenResolutionFailed("Token resolver returned no token", provider_id=provider_id)
        return token
