"""
Capability model for mobility services.

Describes what a provider supports (transport modes, mobility types, API
surfaces) and what a provider selection asks for. Used by the registry to
select providers and by proxies to refuse calls a service does not declare.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from mobility_hub.exceptions import InvalidQueryError


class _ParsableEnum(str, Enum):
    """String enum that parses case-insensitive member names."""

    @classmethod
    def parse(cls, value: Any) -> "_ParsableEnum":
        """Return the member for ``value``.

        Args:
            value: A member, or a member name in any case. API names may
                omit the ``_API`` suffix ("options" -> OPTIONS_API).

        Raises:
            InvalidQueryError: If ``value`` names no member
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().upper()
            for candidate in (key, f"{key}_API"):
                if candidate in cls.__members__:
                    return cls.__members__[candidate]
        raise InvalidQueryError(
            f"Unknown {cls.__name__}: {value!r}", field=cls.__name__, value=value
        )

    @classmethod
    def parse_all(cls, values: Iterable[Any] | None) -> frozenset:
        """Parse an iterable of names into a frozenset of members."""
        if values is None:
            return frozenset()
        if isinstance(values, (str, Enum)):
            values = [values]
        return frozenset(cls.parse(v) for v in values)


class Mode(_ParsableEnum):
    """Transport mode offered by a provider."""

    BICYCLE = "BICYCLE"
    CAR = "CAR"
    BUS = "BUS"
    TRAIN = "TRAIN"
    TRAM = "TRAM"
    SUBWAY = "SUBWAY"
    SCOOTER = "SCOOTER"
    TAXI = "TAXI"
    WALK = "WALK"


class MobilityType(_ParsableEnum):
    """How a vehicle is picked up and returned."""

    FREE_RIDE = "FREE_RIDE"
    ROUND_TRIP = "ROUND_TRIP"
    A_TO_B = "A_TO_B"
    ON_DEMAND = "ON_DEMAND"


class Api(_ParsableEnum):
    """API surface a provider exposes."""

    OPTIONS_API = "OPTIONS_API"
    BOOKING_API = "BOOKING_API"
    CREDENTIALS_API = "CREDENTIALS_API"
    PLANNING_API = "PLANNING_API"


@dataclass(frozen=True)
class MobilityService:
    """A registered mobility provider and its declared capabilities.

    Attributes:
        id: Unique, stable identifier of the service
        base_url: Address of the provider's API
        name: Display name
        modes: Supported transport modes
        mobility_types: Supported mobility types
        apis: Supported API surfaces
    """

    id: str
    base_url: str
    name: str = ""
    modes: frozenset[Mode] = field(default_factory=frozenset)
    mobility_types: frozenset[MobilityType] = field(default_factory=frozenset)
    apis: frozenset[Api] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if not self.id:
            raise InvalidQueryError("Service id must not be empty", field="id")
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))
        object.__setattr__(self, "modes", Mode.parse_all(self.modes))
        object.__setattr__(
            self, "mobility_types", MobilityType.parse_all(self.mobility_types)
        )
        object.__setattr__(self, "apis", Api.parse_all(self.apis))
        if not self.name:
            object.__setattr__(self, "name", self.id)

    def supports_any_mode(self, modes: Iterable[Mode]) -> bool:
        """True if the service supports at least one of ``modes``."""
        return not self.modes.isdisjoint(modes)

    def supports_any_mobility_type(self, mobility_types: Iterable[MobilityType]) -> bool:
        """True if the service supports at least one of ``mobility_types``."""
        return not self.mobility_types.isdisjoint(mobility_types)

    def supports_all_apis(self, apis: Iterable[Api]) -> bool:
        """True if the service supports every API in ``apis``."""
        return self.apis.issuperset(apis)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MobilityService":
        """Build a service from a directory or bootstrap-file entry.

        Accepts both snake_case and the camelCase keys used by service
        directories (``baseUrl``, ``mobilityTypes``).
        """
        try:
            service_id = data["id"]
            base_url = data.get("base_url") or data["baseUrl"]
        except KeyError as e:
            raise InvalidQueryError(
                f"Service entry is missing {e.args[0]!r}", field=e.args[0], value=data
            ) from e

        return cls(
            id=str(service_id),
            base_url=str(base_url),
            name=str(data.get("name") or ""),
            modes=data.get("modes") or (),
            mobility_types=data.get("mobility_types") or data.get("mobilityTypes") or (),
            apis=data.get("apis") or data.get("api") or (),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "base_url": self.base_url,
            "modes": sorted(m.value for m in self.modes),
            "mobility_types": sorted(t.value for t in self.mobility_types),
            "apis": sorted(a.value for a in self.apis),
        }


@dataclass(frozen=True)
class QueryFilter:
    """Provider selection filter.

    A service matches if all of the following hold:

    - ``service_ids`` is empty, or the service id is in it
    - ``modes`` is empty, or the service supports at least one of them
    - ``mobility_types`` is empty, or the service supports at least one
    - the service supports every API in ``apis``

    An empty set never means "match nothing": it disables filtering on that
    dimension. Inputs may be enum members or their names; anything else
    raises InvalidQueryError at construction time.
    """

    modes: frozenset[Mode] = field(default_factory=frozenset)
    mobility_types: frozenset[MobilityType] = field(default_factory=frozenset)
    apis: frozenset[Api] = field(default_factory=frozenset)
    service_ids: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        object.__setattr__(self, "modes", Mode.parse_all(self.modes))
        object.__setattr__(
            self, "mobility_types", MobilityType.parse_all(self.mobility_types)
        )
        object.__setattr__(self, "apis", Api.parse_all(self.apis))

        ids = self.service_ids or ()
        if isinstance(ids, str):
            ids = [ids]
        for service_id in ids:
            if not isinstance(service_id, str) or not service_id:
                raise InvalidQueryError(
                    "Service ids must be non-empty strings",
                    field="service_ids",
                    value=service_id,
                )
        object.__setattr__(self, "service_ids", frozenset(ids))

    @property
    def is_empty(self) -> bool:
        """True if the filter places no constraint at all."""
        return not (self.modes or self.mobility_types or self.apis or self.service_ids)

    def matches(self, service: MobilityService) -> bool:
        """Check whether ``service`` satisfies this filter."""
        if self.service_ids and service.id not in self.service_ids:
            return False
        if self.modes and not service.supports_any_mode(self.modes):
            return False
        if self.mobility_types and not service.supports_any_mobility_type(
            self.mobility_types
        ):
            return False
        return service.supports_all_apis(self.apis)
