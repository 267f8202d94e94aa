"""Execution context: configuration, error state and collaborator handles.

A ``Context`` is owned by one logical thread of work.  It carries the
default ``ResolutionPolicy``, the numeric error state written by the
executor, the grid byte cache, and lazily created ``Registry`` and
``GridProvider`` handles.  ``clone()`` copies the configuration only, so a
clone can be handed to another thread.

Usage::

    with Context() as ctx:
        ops = resolve_operations(src, dst, context=ctx)
        result = apply(ops[0], Direction.FORWARD, coord, context=ctx)
        if result.is_error:
            print(ctx.errno_string())
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from coordshift.core.config import ContextConfig
from coordshift.core.exceptions import ErrorCode
from coordshift.models.policy import ResolutionPolicy
from coordshift.resources.base import ProviderError, strip_optional
from coordshift.resources.cache import CachePolicy

if TYPE_CHECKING:
    from types import TracebackType

    from coordshift.registry.base import Registry
    from coordshift.resources.base import GridProvider
    from coordshift.resources.grids import Grid

logger = logging.getLogger(__name__)

_BYTES_PER_MB = 1024 * 1024

_thread_state = threading.local()


class Context:
    """Per-thread configuration, error state and collaborator handles.

    Args:
        config: Configuration; ``ContextConfig.from_env()`` when omitted.
        registry: Registry to use; created from ``config.registry_name`` on
            first use when omitted.
        grid_provider: Grid provider to use; a local-then-network chain is
            created on first use when omitted (and closed by ``close()``).
        policy: Default resolution policy.
    """

    def __init__(
        self,
        config: ContextConfig | None = None,
        registry: Registry | None = None,
        grid_provider: GridProvider | None = None,
        policy: ResolutionPolicy | None = None,
    ) -> None:
        self.config = config if config is not None else ContextConfig.from_env()
        self.policy = policy if policy is not None else ResolutionPolicy()
        self.grid_cache = CachePolicy(
            enabled=self.config.cache_enabled,
            max_size_bytes=self.config.cache_max_size_mb * _BYTES_PER_MB,
            ttl_s=self.config.cache_ttl_s,
        )
        self._network_enabled = self.config.network_enabled
        self._registry = registry
        self._grid_provider = grid_provider
        self._owns_provider = grid_provider is None
        self._grids: dict[str, Grid] = {}
        self._lock = threading.Lock()
        self._errno = ErrorCode.NONE

    # ------------------------------------------------------------------
    # Error state
    # ------------------------------------------------------------------

    @property
    def errno(self) -> ErrorCode:
        """The error code recorded by the last failing call (``NONE`` if none)."""
        return self._errno

    def set_errno(self, code: ErrorCode | int) -> None:
        self._errno = ErrorCode(code)

    def reset_errno(self) -> None:
        self._errno = ErrorCode.NONE

    def errno_string(self, code: ErrorCode | int | None = None) -> str:
        """Human-readable message for *code* (default: the current errno)."""
        return ErrorCode(self._errno if code is None else code).describe()

    # ------------------------------------------------------------------
    # Network toggle
    # ------------------------------------------------------------------

    @property
    def network_enabled(self) -> bool:
        return self._network_enabled

    @network_enabled.setter
    def network_enabled(self, value: bool) -> None:
        self._network_enabled = bool(value)
        logger.info("Network grid access %s", "enabled" if value else "disabled")

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    @property
    def registry(self) -> Registry:
        if self._registry is None:
            from coordshift.registry.factory import get_registry

            self._registry = get_registry(self.config.registry_name)
        return self._registry

    @property
    def grid_provider(self) -> GridProvider:
        if self._grid_provider is None:
            self._grid_provider = self._default_provider()
        return self._grid_provider

    def _default_provider(self) -> GridProvider:
        from coordshift.resources.chained import ChainedGridProvider
        from coordshift.resources.local import LocalGridProvider
        from coordshift.resources.network import NetworkGridProvider

        directories = list(self.config.grid_directories)
        if self.config.cache_directory:
            directories.append(self.config.cache_directory)
        network = NetworkGridProvider(
            self.config.endpoint_url,
            cache_policy=self.grid_cache,
            timeout_s=self.config.http_timeout_s,
        )
        logger.info(
            "Creating grid provider | directories=%d | endpoint=%s",
            len(directories),
            self.config.endpoint_url,
        )
        return ChainedGridProvider(
            LocalGridProvider(directories), network, lambda: self._network_enabled
        )

    # ------------------------------------------------------------------
    # Grids
    # ------------------------------------------------------------------

    def is_grid_available(self, grid_name: str) -> bool:
        """Ask the provider; provider failures count as "not available"."""
        try:
            return self.grid_provider.is_available(grid_name)
        except ProviderError as exc:
            logger.warning("Grid availability check failed | grid=%s | error=%s", grid_name, exc)
            return False

    def load_grid(self, grid_name: str) -> Grid:
        """Open, decode and memoise *grid_name*.

        Failures are not memoised, so a later call retries.

        Raises:
            ProviderError: If the grid cannot be opened or decoded.
        """
        from coordshift.resources.grids import load_grid

        key, _ = strip_optional(grid_name)
        with self._lock:
            cached = self._grids.get(key)
        if cached is not None:
            return cached
        try:
            with self.grid_provider.open_for_read(key) as handle:
                grid = load_grid(handle)
        except ProviderError as exc:
            logger.warning("Grid load failed | grid=%s | error=%s", key, exc)
            raise
        with self._lock:
            self._grids.setdefault(key, grid)
        logger.debug("Loaded grid | grid=%s", key)
        return grid

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def clone(self) -> Context:
        """Return a context with the same configuration and no shared state.

        The registry is read-only and is shared; the grid provider, the
        grid memo and the error state are not.
        """
        twin = Context(config=self.config, registry=self._registry, policy=self.policy)
        twin._network_enabled = self._network_enabled
        twin.grid_cache.enabled = self.grid_cache.enabled
        twin.grid_cache.max_size_bytes = self.grid_cache.max_size_bytes
        twin.grid_cache.ttl_s = self.grid_cache.ttl_s
        return twin

    def close(self) -> None:
        """Release the grid provider (when owned) and the grid memo."""
        with self._lock:
            self._grids.clear()
        if self._grid_provider is not None and self._owns_provider:
            self._grid_provider.close()
            self._grid_provider = None

    def __enter__(self) -> Context:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @classmethod
    def current(cls) -> Context:
        """The calling thread's default context, created on first use."""
        ctx = getattr(_thread_state, "context", None)
        if ctx is None:
            ctx = cls()
            _thread_state.context = ctx
        return ctx

    @classmethod
    def set_current(cls, context: Context | None) -> None:
        """Install (or with ``None`` drop) the calling thread's default context."""
        _thread_state.context = context
