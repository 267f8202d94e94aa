"""Context configuration loaded from environment variables.

All configuration values have sensible defaults.  ``from_env()`` raises
``ConfigValidationError`` if any value is out of its valid range so bad
configuration is caught when a ``Context`` is created rather than in the
middle of a transformation.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from coordshift.core.constants import (
    DEFAULT_CACHE_MAX_SIZE_MB,
    DEFAULT_CACHE_TTL_S,
    DEFAULT_ENDPOINT_URL,
    DEFAULT_HTTP_TIMEOUT_S,
    DEFAULT_REGISTRY_NAME,
)
from coordshift.core.exceptions import CoordShiftError

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", ""})


class ConfigValidationError(CoordShiftError):
    """Raised when configuration values are out of valid range.

    Attributes:
        key: The configuration key that failed validation.
        value: The invalid value.
        message: Human-readable description of the valid range.
    """

    default_stage = "config"
    default_code = "CONFIG_VALIDATION_FAILED"

    def __init__(self, key: str, value: object, message: str) -> None:
        self.key = key
        self.value = value
        super().__init__(f"Invalid configuration {key}={value!r}: {message}")


@dataclass(frozen=True, slots=True)
class ContextConfig:
    """Immutable context configuration.

    Attributes:
        network_enabled: Whether grids may be fetched from ``endpoint_url``.
        endpoint_url: Base URL of the grid CDN.
        grid_directories: Local directories searched for grid files.
        cache_enabled: Whether fetched grid bytes are cached.
        cache_max_size_mb: Maximum size of the grid byte cache in megabytes.
        cache_ttl_s: Time-to-live of cached grid bytes in seconds.
        cache_directory: Directory for downloaded grids (empty = memory only).
        registry_name: Name of the registry to load (see ``registry.factory``).
        http_timeout_s: Timeout for each network request in seconds.
    """

    network_enabled: bool = False
    endpoint_url: str = DEFAULT_ENDPOINT_URL
    grid_directories: tuple[str, ...] = ()
    cache_enabled: bool = True
    cache_max_size_mb: int = DEFAULT_CACHE_MAX_SIZE_MB
    cache_ttl_s: int = DEFAULT_CACHE_TTL_S
    cache_directory: str = ""
    registry_name: str = DEFAULT_REGISTRY_NAME
    http_timeout_s: float = DEFAULT_HTTP_TIMEOUT_S

    @classmethod
    def from_env(cls) -> ContextConfig:
        """Load and validate configuration from environment variables.

        Raises:
            ConfigValidationError: If a value is out of range or a boolean
                flag is not recognisable.
            ValueError: If a numeric environment variable cannot be
                parsed (e.g. ``COORDSHIFT_CACHE_TTL_S=abc``).
        """
        grid_dirs_raw = os.getenv("COORDSHIFT_GRID_DIRS", "")
        config = cls(
            network_enabled=_parse_bool(
                "COORDSHIFT_NETWORK_ENABLED", os.getenv("COORDSHIFT_NETWORK_ENABLED", "false")
            ),
            endpoint_url=os.getenv("COORDSHIFT_ENDPOINT", DEFAULT_ENDPOINT_URL),
            grid_directories=tuple(p for p in grid_dirs_raw.split(os.pathsep) if p),
            cache_enabled=_parse_bool(
                "COORDSHIFT_CACHE_ENABLED", os.getenv("COORDSHIFT_CACHE_ENABLED", "true")
            ),
            cache_max_size_mb=int(
                os.getenv("COORDSHIFT_CACHE_MAX_SIZE_MB", str(DEFAULT_CACHE_MAX_SIZE_MB))
            ),
            cache_ttl_s=int(os.getenv("COORDSHIFT_CACHE_TTL_S", str(DEFAULT_CACHE_TTL_S))),
            cache_directory=os.getenv("COORDSHIFT_CACHE_DIR", ""),
            registry_name=os.getenv("COORDSHIFT_REGISTRY", DEFAULT_REGISTRY_NAME),
            http_timeout_s=float(
                os.getenv("COORDSHIFT_HTTP_TIMEOUT_S", str(DEFAULT_HTTP_TIMEOUT_S))
            ),
        )
        validate_config(config)
        return config


def _parse_bool(key: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigValidationError(key, raw, "must be a boolean (true/false, 1/0, yes/no, on/off)")


def validate_config(config: ContextConfig) -> None:
    """Validate configuration ranges.  Raises ``ConfigValidationError``."""
    if config.cache_max_size_mb < 0:
        raise ConfigValidationError(
            "COORDSHIFT_CACHE_MAX_SIZE_MB",
            config.cache_max_size_mb,
            "must be >= 0 (megabytes)",
        )

    if config.cache_ttl_s < 0:
        raise ConfigValidationError(
            "COORDSHIFT_CACHE_TTL_S",
            config.cache_ttl_s,
            "must be >= 0 (seconds)",
        )

    if config.http_timeout_s <= 0:
        raise ConfigValidationError(
            "COORDSHIFT_HTTP_TIMEOUT_S",
            config.http_timeout_s,
            "must be > 0 (seconds)",
        )

    if config.network_enabled and not config.endpoint_url:
        raise ConfigValidationError(
            "COORDSHIFT_ENDPOINT",
            config.endpoint_url,
            "must not be empty when network access is enabled",
        )

    if not config.registry_name:
        raise ConfigValidationError(
            "COORDSHIFT_REGISTRY",
            config.registry_name,
            "must not be empty",
        )
