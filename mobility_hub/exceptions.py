"""
Exception hierarchy for mobility-hub.

Every error raised by the registry, the provider proxies and the transport
derives from MobilityHubError, so callers can catch the whole family with a
single except clause.

Usage:
    from mobility_hub.exceptions import (
        InvalidQueryError,
        ProviderError,
        ProviderTimeout,
    )

    try:
        booking = await proxy.get_booking(token)
    except ProviderTimeout:
        # Only this provider was slow
        ...
    except ProviderError as e:
        logger.warning(f"{e.provider_id} failed: {e}")

Per-provider failures (ProviderError subclasses) never escape the aggregator:
they are converted to ProviderFailure records. Only InvalidQueryError is
raised to the caller, and always before any provider is contacted.
"""

from typing import Any


class MobilityHubError(Exception):
    """Base exception for all mobility-hub errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dict with additional error context.
        provider_id: Id of the provider involved, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        provider_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.provider_id = provider_id

    def __str__(self) -> str:
        if self.provider_id:
            return f"[{self.provider_id}] {self.message}"
        return self.message


class InvalidQueryError(MobilityHubError):
    """A filter or query could not be constructed.

    Raised when:
    - A filter names an unknown mode, mobility type or API
    - Coordinates are out of range
    - A time window ends before it starts

    Attributes:
        field: Name of the field that failed validation.
        value: The invalid value (truncated).
    """

    def __init__(
        self,
        message: str = "Invalid query",
        *,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.field = field
        self.value = str(value)[:100] if value is not None else None


class ProviderNotFoundError(MobilityHubError):
    """No provider is registered under the requested id."""

    def __init__(self, provider_id: str, *, available: list[str] | None = None) -> None:
        shown = ", ".join(available or []) or "none"
        super().__init__(
            f"Provider not found: {provider_id}. Available: {shown}",
            provider_id=provider_id,
        )


class ConfigurationError(MobilityHubError):
    """Configuration is invalid or missing.

    Raised when:
    - An environment variable holds an unparseable value
    - A services bootstrap file is malformed
    """

    pass


# ============================================================================
# PER-PROVIDER FAILURES
# ============================================================================


class ProviderError(MobilityHubError):
    """Base exception for failures confined to a single provider."""

    pass


class ProviderUnreachable(ProviderError):
    """The provider could not be reached (DNS, connect, network errors)."""

    pass


class ProviderProtocolError(ProviderError):
    """The provider answered with something we cannot interpret.

    Also raised when a proxy is asked for an API its service does not
    declare.
    """

    pass


class ProviderTimeout(ProviderError):
    """A provider call exceeded its timeout.

    Attributes:
        timeout_seconds: The timeout that was exceeded, if known.
    """

    def __init__(
        self,
        message: str = "Provider call timed out",
        *,
        timeout_seconds: float | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.timeout_seconds = timeout_seconds


class ProviderReportedError(ProviderError):
    """The provider answered with an error status.

    Attributes:
        status_code: HTTP status code returned by the provider.
    """

    def __init__(
        self,
        message: str = "Provider reported an error",
        *,
        status_code: int | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.status_code = status_code

    def __str__(self) -> str:
        text = super().__str__()
        if self.status_code:
            return f"{text} (HTTP {self.status_code})"
        return text


class TokenResolutionFailed(ProviderError):
    """The caller-supplied token resolver failed for one provider."""

    pass


# ============================================================================
# CANCELLATION
# ============================================================================


class QueryCancelled(MobilityHubError):
    """A multi-provider query was stopped by the caller or by a limit.

    Cancellation is a normal terminal state, not a failure. This is only
    raised when a caller explicitly asks for strict collection of a stream
    that was cancelled.
    """

    def __init__(self, message: str = "Query cancelled", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


__all__ = [
    "MobilityHubError",
    "InvalidQueryError",
    "ProviderNotFoundError",
    "ConfigurationError",
    "ProviderError",
    "ProviderUnreachable",
    "ProviderProtocolError",
    "ProviderTimeout",
    "ProviderReportedError",
    "TokenResolutionFailed",
    "QueryCancelled",
]
