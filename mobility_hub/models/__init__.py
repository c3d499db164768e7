"""
Data model for mobility-hub.

Capabilities describe providers and provider selection; options and
bookings are what providers return.
"""

from mobility_hub.models.capabilities import (
    Api,
    MobilityService,
    MobilityType,
    Mode,
    QueryFilter,
)
from mobility_hub.models.options import (
    Booking,
    BookingResults,
    Coordinates,
    FailureKind,
    Option,
    OptionQuery,
    ProviderFailure,
    QueryState,
)

__all__ = [
    "Api",
    "Booking",
    "BookingResults",
    "Coordinates",
    "FailureKind",
    "MobilityService",
    "MobilityType",
    "Mode",
    "Option",
    "OptionQuery",
    "ProviderFailure",
    "QueryFilter",
    "QueryState",
]
