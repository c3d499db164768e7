"""
Query and result types exchanged with providers.

OptionQuery is what a caller asks every selected provider; Option and
Booking are what providers send back. The core only needs enough of an
option to identify, filter and count it, so the full provider payload is
kept verbatim in ``raw``.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

from mobility_hub.exceptions import (
    InvalidQueryError,
    ProviderError,
    ProviderProtocolError,
    ProviderReportedError,
    ProviderTimeout,
    ProviderUnreachable,
    TokenResolutionFailed,
)
from mobility_hub.models.capabilities import MobilityType, Mode

logger = logging.getLogger(__name__)


def _parse_time(value: Any) -> datetime | None:
    """Parse an ISO 8601 timestamp from a provider payload."""
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        logger.debug(f"Ignoring unparseable timestamp: {value!r}")
        return None


def _parse_enum(enum_cls: type[Enum], value: Any) -> Any:
    """Parse an enum from a provider payload, ``None`` if unknown."""
    if value is None:
        return None
    try:
        return enum_cls.parse(value)
    except InvalidQueryError:
        return None


@dataclass(frozen=True)
class Coordinates:
    """A WGS84 position."""

    lat: float
    lon: float

    def __post_init__(self) -> None:
        if not -90.0 <= self.lat <= 90.0:
            raise InvalidQueryError("Latitude out of range", field="lat", value=self.lat)
        if not -180.0 <= self.lon <= 180.0:
            raise InvalidQueryError("Longitude out of range", field="lon", value=self.lon)

    def to_param(self) -> str:
        """Format as the ``lat,lon`` query parameter."""
        return f"{self.lat},{self.lon}"


@dataclass(frozen=True)
class OptionQuery:
    """A request for travel options, sent unchanged to every provider.

    Attributes:
        origin: Where the trip starts
        destination: Where the trip ends (optional for free-floating search)
        start_time: Earliest start; open-ended when None
        end_time: Latest end; open-ended when None
        radius_meters: Search radius around the origin
        sharing_allowed: Whether shared rides are acceptable
        modes: Acceptable transport modes (empty = any)
        mobility_types: Acceptable mobility types (empty = any)
        limit_to: Maximum number of options each provider should return
        provider_options: Provider-specific parameters, passed through as-is
    """

    origin: Coordinates
    destination: Coordinates | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    radius_meters: int | None = None
    sharing_allowed: bool | None = None
    modes: frozenset[Mode] = field(default_factory=frozenset)
    mobility_types: frozenset[MobilityType] = field(default_factory=frozenset)
    limit_to: int | None = None
    provider_options: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        if self.radius_meters is not None and self.radius_meters < 0:
            raise InvalidQueryError(
                "Radius must not be negative", field="radius_meters", value=self.radius_meters
            )
        if self.limit_to is not None and self.limit_to < 1:
            raise InvalidQueryError(
                "limit_to must be positive", field="limit_to", value=self.limit_to
            )
        if self.start_time and self.end_time and self.end_time < self.start_time:
            raise InvalidQueryError(
                "end_time is before start_time", field="end_time", value=self.end_time
            )
        object.__setattr__(self, "modes", Mode.parse_all(self.modes))
        object.__setattr__(
            self, "mobility_types", MobilityType.parse_all(self.mobility_types)
        )
        object.__setattr__(
            self, "provider_options", MappingProxyType(dict(self.provider_options or {}))
        )

    def to_params(self) -> dict[str, Any]:
        """Marshal to query-string parameters for a provider's options API.

        Unset fields are omitted so each provider applies its own defaults.
        """
        params: dict[str, Any] = {"from": self.origin.to_param()}
        if self.destination is not None:
            params["to"] = self.destination.to_param()
        if self.start_time is not None:
            params["startTime"] = self.start_time.isoformat()
        if self.end_time is not None:
            params["endTime"] = self.end_time.isoformat()
        if self.radius_meters is not None:
            params["radiusMeter"] = self.radius_meters
        if self.sharing_allowed is not None:
            params["sharingAllowed"] = str(self.sharing_allowed).lower()
        if self.modes:
            params["modesAllowed"] = ",".join(sorted(m.value for m in self.modes))
        if self.mobility_types:
            params["mobilityTypesAllowed"] = ",".join(
                sorted(t.value for t in self.mobility_types)
            )
        if self.limit_to is not None:
            params["limitTo"] = self.limit_to

        for key, value in self.provider_options.items():
            params[key] = value
        return params


@dataclass(frozen=True)
class Option:
    """A single travel option returned by one provider."""

    provider_id: str
    option_id: str
    mode: Mode | None = None
    mobility_type: MobilityType | None = None
    price_class: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def key(self) -> tuple[str, str]:
        """Identity of the option across providers."""
        return (self.provider_id, self.option_id)

    @classmethod
    def from_dict(cls, provider_id: str, data: Mapping[str, Any]) -> "Option":
        """Unmarshal one item of a provider's options response.

        Raises:
            ProviderProtocolError: If the item is not an object or has no id
        """
        if not isinstance(data, Mapping):
            raise ProviderProtocolError(
                f"Option item is not an object: {type(data).__name__}",
                provider_id=provider_id,
            )
        option_id = data.get("id", data.get("optionId"))
        if option_id is None:
            raise ProviderProtocolError(
                "Option item has no id", provider_id=provider_id, details={"item": dict(data)}
            )

        return cls(
            provider_id=provider_id,
            option_id=str(option_id),
            mode=_parse_enum(Mode, data.get("mode")),
            mobility_type=_parse_enum(MobilityType, data.get("mobilityType")),
            price_class=data.get("priceClass"),
            start_time=_parse_time(data.get("startTime")),
            end_time=_parse_time(data.get("endTime")),
            raw=MappingProxyType(dict(data)),
        )


@dataclass(frozen=True)
class Booking:
    """A booking held by one provider for the token's owner."""

    provider_id: str
    booking_id: str
    state: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @classmethod
    def from_dict(cls, provider_id: str, data: Any) -> "Booking":
        """Unmarshal a provider's booking response.

        Raises:
            ProviderProtocolError: If the response is not a booking object
        """
        if not isinstance(data, Mapping):
            raise ProviderProtocolError(
                f"Booking response is not an object: {type(data).__name__}",
                provider_id=provider_id,
            )
        booking_id = data.get("id", data.get("bookingId"))
        if booking_id is None:
            raise ProviderProtocolError("Booking has no id", provider_id=provider_id)

        return cls(
            provider_id=provider_id,
            booking_id=str(booking_id),
            state=data.get("state"),
            raw=MappingProxyType(dict(data)),
        )


# ============================================================================
# FAILURES AND RESULTS
# ============================================================================


class FailureKind(str, Enum):
    """Category of a per-provider failure."""

    UNREACHABLE = "unreachable"
    PROTOCOL = "protocol"
    TIMEOUT = "timeout"
    PROVIDER_ERROR = "provider_error"
    TOKEN_RESOLUTION = "token_resolution"
    UNEXPECTED = "unexpected"


_FAILURE_KINDS: list[tuple[type[Exception], FailureKind]] = [
    (ProviderTimeout, FailureKind.TIMEOUT),
    (ProviderUnreachable, FailureKind.UNREACHABLE),
    (ProviderProtocolError, FailureKind.PROTOCOL),
    (ProviderReportedError, FailureKind.PROVIDER_ERROR),
    (TokenResolutionFailed, FailureKind.TOKEN_RESOLUTION),
]


@dataclass(frozen=True)
class ProviderFailure:
    """Record of one provider failing during a multi-provider call.

    Attributes:
        provider_id: The provider that failed
        kind: Failure category
        message: Human-readable description
        error: The exception that caused the failure
    """

    provider_id: str
    kind: FailureKind
    message: str
    error: BaseException | None = field(default=None, compare=False)

    @classmethod
    def from_exception(cls, provider_id: str, error: BaseException) -> "ProviderFailure":
        """Classify ``error`` into a failure record for ``provider_id``."""
        kind = FailureKind.UNEXPECTED
        for exc_type, exc_kind in _FAILURE_KINDS:
            if isinstance(error, exc_type):
                kind = exc_kind
                break

        if isinstance(error, ProviderError):
            message = error.message
        else:
            message = f"{type(error).__name__}: {error}"
        return cls(provider_id=provider_id, kind=kind, message=message, error=error)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "provider_id": self.provider_id,
            "kind": self.kind.value,
            "message": self.message,
        }


@dataclass
class BookingResults:
    """Outcome of a multi-provider booking lookup.

    Every requested provider appears in exactly one of ``bookings`` and
    ``failures``.
    """

    bookings: dict[str, Booking] = field(default_factory=dict)
    failures: dict[str, ProviderFailure] = field(default_factory=dict)

    @property
    def succeeded(self) -> set[str]:
        """Ids of providers that returned a booking."""
        return set(self.bookings)

    @property
    def failed(self) -> set[str]:
        """Ids of providers that failed."""
        return set(self.failures)

    def __len__(self) -> int:
        return len(self.bookings) + len(self.failures)


class QueryState(str, Enum):
    """Lifecycle of one provider call within a multi-provider query."""

    PENDING = "pending"
    DELIVERING = "delivering"
    CANCELLED = "cancelled"
    FAILED = "failed"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        """True for states a provider call never leaves."""
        return self in (QueryState.CANCELLED, QueryState.FAILED, QueryState.COMPLETED)
