"""
Registry bootstrap sources.

Two ways to obtain the MobilityService entries a ProviderRegistry is built
from:

- ``load_services(path)`` reads a YAML file with a ``services:`` list
- ``ServiceDirectoryClient`` queries a remote service directory over HTTP

Example:
    >>> services = load_services("config/services.yaml")
    >>> registry = ProviderRegistry.from_services(services, HttpxTransport())
    >>>
    >>> directory = ServiceDirectoryClient("https://directory.example.com")
    >>> bikes = await directory.search(
    ...     mobility_types={MobilityType.FREE_RIDE},
    ...     modes={Mode.BICYCLE},
    ...     apis={Api.OPTIONS_API},
    ... )
"""

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import httpx
import yaml
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from mobility_hub.exceptions import (
    ConfigurationError,
    InvalidQueryError,
    MobilityHubError,
)
from mobility_hub.models.capabilities import Api, MobilityService, MobilityType, Mode

logger = logging.getLogger(__name__)


def _parse_services(entries: Any, source: str) -> list[MobilityService]:
    if not isinstance(entries, list):
        raise ConfigurationError(f"Expected a list of services in {source}")

    services = []
    seen: set[str] = set()
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ConfigurationError(f"Service #{index} in {source} is not a mapping")
        try:
            service = MobilityService.from_dict(entry)
        except InvalidQueryError as e:
            raise ConfigurationError(
                f"Invalid service #{index} in {source}: {e.message}"
            ) from e
        if service.id in seen:
            raise ConfigurationError(f"Duplicate service id in {source}: {service.id}")
        seen.add(service.id)
        services.append(service)
    return services


def load_services(path: str | Path) -> list[MobilityService]:
    """Load mobility services from a YAML bootstrap file.

    Expected format::

        services:
          - id: bike-share
            base_url: https://bikes.example.com
            modes: [BICYCLE]
            mobility_types: [FREE_RIDE]
            apis: [OPTIONS_API]

    Args:
        path: Path to the YAML file

    Returns:
        Services in file order

    Raises:
        ConfigurationError: If the file is missing or malformed
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Services file not found: {path}")

    try:
        with open(path) as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(config, dict):
        raise ConfigurationError(f"Expected a mapping at the top of {path}")

    services = _parse_services(config.get("services", []), str(path))
    logger.info(f"Loaded {len(services)} mobility services from {path}")
    return services


class ServiceDirectoryError(MobilityHubError):
    """The service directory could not be queried."""

    pass


class ServiceDirectoryClient:
    """Client for a remote mobility service directory.

    Attributes:
        base_url: Directory URL (e.g., "https://directory.example.com")
        timeout: Request timeout in seconds
    """

    def __init__(self, base_url: str, timeout: float = 10.0):
        """Initialize service directory client.

        Args:
            base_url: Directory URL
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=10),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        reraise=True,
    )
    async def _request(self, endpoint: str, params: dict[str, Any] | None) -> httpx.Response:
        """GET a directory endpoint with retry logic."""
        async with httpx.AsyncClient() as client:
            return await client.get(
                f"{self.base_url}/api{endpoint}",
                params=params,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )

    async def _get(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        """GET a directory endpoint and decode its JSON body.

        Raises:
            ServiceDirectoryError: For transport errors, HTTP errors or invalid JSON
        """
        try:
            response = await self._request(endpoint, params)
        except httpx.HTTPError as e:
            raise ServiceDirectoryError(
                f"Service directory unreachable: {type(e).__name__}: {e}",
                details={"endpoint": endpoint},
            ) from e

        if response.status_code >= 400:
            raise ServiceDirectoryError(
                f"Service directory error: HTTP {response.status_code}",
                details={"endpoint": endpoint},
            )
        try:
            return response.json()
        except ValueError as e:
            raise ServiceDirectoryError(f"Invalid directory response: {e}") from e

    async def get_all(self) -> list[MobilityService]:
        """All services currently listed in the directory."""
        data = await self._get("/services")
        return self._to_services(data)

    async def search(
        self,
        mobility_types: Iterable[MobilityType | str] | None = None,
        modes: Iterable[Mode | str] | None = None,
        apis: Iterable[Api | str] | None = None,
    ) -> list[MobilityService]:
        """Services matching the given capabilities.

        Args:
            mobility_types: Accept services with at least one of these
            modes: Accept services with at least one of these
            apis: Require all of these

        Returns:
            Matching services, in directory order
        """
        params: dict[str, str] = {}
        for key, values, enum_cls in (
            ("mobilityTypes", mobility_types, MobilityType),
            ("modes", modes, Mode),
            ("apis", apis, Api),
        ):
            parsed = enum_cls.parse_all(values)
            if parsed:
                params[key] = ",".join(sorted(v.value for v in parsed))

        data = await self._get("/services/search", params=params)
        return self._to_services(data)

    def _to_services(self, data: Any) -> list[MobilityService]:
        try:
            return _parse_services(data, self.base_url)
        except ConfigurationError as e:
            raise ServiceDirectoryError(e.message) from e
