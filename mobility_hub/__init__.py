"""mobility-hub - aggregation layer over independent mobility providers.

Select providers by capability, fan option queries out to all of them
concurrently and consume the answers as one stream that can be stopped at
any time.

Use explicit imports for anything beyond the names re-exported here:
`from mobility_hub.providers.transport import HttpxTransport`
"""

from mobility_hub.aggregator import CancellationToken, OptionStream, QueryAggregator
from mobility_hub.middleware import MiddlewareService
from mobility_hub.models import (
    Api,
    Booking,
    BookingResults,
    Coordinates,
    FailureKind,
    MobilityService,
    MobilityType,
    Mode,
    Option,
    OptionQuery,
    ProviderFailure,
    QueryFilter,
    QueryState,
)
from mobility_hub.providers import ProviderProxy, ProviderRegistry

__version__ = "0.1.0"

__all__ = [
    "Api",
    "Booking",
    "BookingResults",
    "CancellationToken",
    "Coordinates",
    "FailureKind",
    "MiddlewareService",
    "MobilityService",
    "MobilityType",
    "Mode",
    "Option",
    "OptionQuery",
    "OptionStream",
    "ProviderFailure",
    "ProviderProxy",
    "ProviderRegistry",
    "QueryAggregator",
    "QueryFilter",
    "QueryState",
]
