"""Provider trying local directories first, then the network."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from coordshift.resources.base import GridNotFoundError, GridProvider

if TYPE_CHECKING:
    from collections.abc import Callable

    from coordshift.resources.base import GridHandle
    from coordshift.resources.cache import CachePolicy
    from coordshift.resources.local import LocalGridProvider
    from coordshift.resources.network import NetworkGridProvider

logger = logging.getLogger(__name__)


class ChainedGridProvider(GridProvider):
    """Local grids first; the network provider only while *network_enabled* says so."""

    name = "chained"

    def __init__(
        self,
        local: LocalGridProvider,
        network: NetworkGridProvider | None = None,
        network_enabled: Callable[[], bool] = lambda: True,
    ) -> None:
        self.local = local
        self.network = network
        self._network_enabled = network_enabled

    def _use_network(self) -> bool:
        return self.network is not None and self._network_enabled()

    def is_available(self, grid_name: str) -> bool:
        if self.local.is_available(grid_name):
            return True
        if self._use_network():
            return self.network.is_available(grid_name)  # type: ignore[union-attr]
        return False

    def open_for_read(self, grid_name: str) -> GridHandle:
        if self.local.is_available(grid_name):
            return self.local.open_for_read(grid_name)
        if self._use_network():
            logger.debug("Grid not found locally, trying network | grid=%s", grid_name)
            return self.network.open_for_read(grid_name)  # type: ignore[union-attr]
        raise GridNotFoundError(self.name, grid_name)

    @property
    def cache_policy(self) -> CachePolicy:
        if self.network is not None:
            return self.network.cache_policy
        return self.local.cache_policy

    def close(self) -> None:
        self.local.close()
        if self.network is not None:
            self.network.close()
