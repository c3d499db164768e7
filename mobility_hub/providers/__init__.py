"""
Provider access layer.

The registry hands out one ProviderProxy per registered mobility service;
every proxy talks to its provider through a ProviderTransport.

Architecture:
    Application / QueryAggregator
         ↓
    ProviderRegistry  →  ProviderProxy (one per service)
         ↓
    ProviderTransport (HttpxTransport, MockTransport)
         ↓
    Provider APIs

Usage:
    from mobility_hub.providers import HttpxTransport, ProviderRegistry, load_services

    registry = ProviderRegistry.from_services(load_services("services.yaml"), HttpxTransport())
    proxy = registry.get_one("car-share")
"""

from mobility_hub.providers.directory import (
    ServiceDirectoryClient,
    ServiceDirectoryError,
    load_services,
)
from mobility_hub.providers.mock import MockTransport
from mobility_hub.providers.proxy import ProviderProxy
from mobility_hub.providers.registry import ProviderRegistry
from mobility_hub.providers.transport import HttpxTransport, ProviderTransport

__all__ = [
    "HttpxTransport",
    "MockTransport",
    "ProviderProxy",
    "ProviderRegistry",
    "ProviderTransport",
    "ServiceDirectoryClient",
    "ServiceDirectoryError",
    "load_services",
]
