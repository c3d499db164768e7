"""
Configuration management for mobility-hub.

Loads settings from environment variables.
"""

import logging
import os
from dataclasses import dataclass

from mobility_hub.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class MiddlewareConfig:
    """mobility-hub configuration.

    Attributes:
        services_file: YAML file the registry is bootstrapped from
        service_directory_url: Remote service directory, used when no
            services file is configured
        provider_timeout_seconds: Per-request timeout for provider calls
        provider_max_retries: Attempts per provider request
        max_concurrent_providers: Provider calls in flight per query
            (None = unbounded)
        booking_timeout_seconds: Per-provider timeout for booking lookups
        auth_header: Header carrying per-call provider tokens
        log_level: Root log level
    """

    services_file: str | None = None
    service_directory_url: str | None = None
    provider_timeout_seconds: float = 10.0
    provider_max_retries: int = 3
    max_concurrent_providers: int | None = None
    booking_timeout_seconds: float | None = None
    auth_header: str = "Authorization"
    log_level: str = "INFO"


def _env_number(name: str, cast: type, default: float | int | None) -> float | int | None:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {raw!r}")
    return value


_config: MiddlewareConfig | None = None


def get_config() -> MiddlewareConfig:
    """
    Load configuration from the environment.

    Returns:
        MiddlewareConfig (cached after the first call)

    Raises:
        ConfigurationError: If a numeric setting cannot be parsed
    """
    global _config

    if _config is not None:
        return _config

    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
    if log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ConfigurationError(f"Unknown LOG_LEVEL: {log_level}")

    _config = MiddlewareConfig(
        services_file=os.environ.get("MOBILITY_SERVICES_FILE") or None,
        service_directory_url=os.environ.get("SERVICE_DIRECTORY_URL") or None,
        provider_timeout_seconds=_env_number("PROVIDER_TIMEOUT_SECONDS", float, 10.0),
        provider_max_retries=_env_number("PROVIDER_MAX_RETRIES", int, 3),
        max_concurrent_providers=_env_number("MAX_CONCURRENT_PROVIDERS", int, None),
        booking_timeout_seconds=_env_number("BOOKING_TIMEOUT_SECONDS", float, None),
        auth_header=os.environ.get("PROVIDER_AUTH_HEADER", "Authorization"),
        log_level=log_level,
    )

    if not _config.services_file and not _config.service_directory_url:
        logger.warning(
            "Neither MOBILITY_SERVICES_FILE nor SERVICE_DIRECTORY_URL is set; "
            "the provider registry will start empty"
        )

    return _config


def clear_config() -> None:
    """Clear cached configuration (for testing)."""
    global _config
    _config = None
