"""Registry factory: selects the active registry by name.

The factory maintains a table of known registries. New registries are
plugged in with ``register_registry``.

Usage::

    from coordshift.registry.factory import get_registry

    registry = get_registry("builtin")
    wkt = registry.lookup_definition("EPSG", "4326")

The registry name is read from the ``COORDSHIFT_REGISTRY`` environment
variable via ``ContextConfig.registry_name``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from coordshift.core.constants import DEFAULT_REGISTRY_NAME
from coordshift.core.exceptions import RegistryError

if TYPE_CHECKING:
    from collections.abc import Callable

    from coordshift.registry.base import Registry

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Lazy-import registry table
# ---------------------------------------------------------------------------

# Each entry maps a registry name to a zero-argument callable returning a
# ready registry, so data files are only read when that registry is selected.

_REGISTRY_LOADERS: dict[str, Callable[[], Registry]] = {}


def _register_builtin_registries() -> None:
    """Register the built-in registry (called once, on first use)."""

    def _builtin() -> Registry:
        from coordshift.registry.yaml_registry import YamlRegistry

        return YamlRegistry()

    _REGISTRY_LOADERS[DEFAULT_REGISTRY_NAME] = _builtin


def _ensure_loaders() -> None:
    """Initialise the loader table once (idempotent)."""
    if not _REGISTRY_LOADERS:
        _register_builtin_registries()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def register_registry(name: str, loader: Callable[[], Registry]) -> None:
    """Register a custom registry.

    Args:
        name: Registry name (e.g. ``"site_catalogue"``).
        loader: A zero-argument callable returning the registry instance.

    Raises:
        ValueError: If the name is empty.
    """
    if not name:
        msg = "Registry name must be non-empty"
        raise ValueError(msg)
    _ensure_loaders()
    _REGISTRY_LOADERS[name] = loader
    logger.debug("Registered registry: %s", name)


def get_registry(name: str = DEFAULT_REGISTRY_NAME) -> Registry:
    """Create and return the named registry.

    Raises:
        RegistryError: If the name is not registered.
    """
    _ensure_loaders()
    loader = _REGISTRY_LOADERS.get(name)
    if loader is None:
        available = ", ".join(sorted(_REGISTRY_LOADERS))
        msg = f"Unknown registry: {name!r}. Available: {available}"
        raise RegistryError(msg)
    logger.info("Creating registry: %s", name)
    return loader()


def list_registries() -> list[str]:
    """Return the names of all registered registries."""
    _ensure_loaders()
    return sorted(_REGISTRY_LOADERS)
