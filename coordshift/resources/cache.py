"""Bounded LRU + TTL cache for fetched grid byte ranges."""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from typing import TYPE_CHECKING

from coordshift.core.constants import DEFAULT_CACHE_MAX_SIZE_MB, DEFAULT_CACHE_TTL_S

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

CacheKey = tuple[str, int, int]


class CachePolicy:
    """Cache settings plus the byte store they govern.

    Eviction policy:
        Least-recently-used.  On insert, entries are evicted oldest first
        until the total stored bytes fit ``max_size_bytes``.  Entries older
        than ``ttl_s`` are dropped on access (``ttl_s == 0`` never expires).
        Disabling the cache clears it.
    """

    def __init__(
        self,
        enabled: bool = True,
        max_size_bytes: int = DEFAULT_CACHE_MAX_SIZE_MB * 1024 * 1024,
        ttl_s: float = DEFAULT_CACHE_TTL_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._enabled = enabled
        self._max_size_bytes = max_size_bytes
        self._ttl_s = ttl_s
        self._clock = clock
        self._data: OrderedDict[CacheKey, tuple[float, bytes]] = OrderedDict()
        self._size = 0
        self._eviction_count = 0
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        self._enabled = value
        if not value:
            self.clear()

    @property
    def max_size_bytes(self) -> int:
        return self._max_size_bytes

    @max_size_bytes.setter
    def max_size_bytes(self, value: int) -> None:
        if value < 0:
            msg = f"max_size_bytes must be >= 0, got {value}"
            raise ValueError(msg)
        with self._lock:
            self._max_size_bytes = value
            self._evict_locked()

    @property
    def ttl_s(self) -> float:
        return self._ttl_s

    @ttl_s.setter
    def ttl_s(self, value: float) -> None:
        if value < 0:
            msg = f"ttl_s must be >= 0, got {value}"
            raise ValueError(msg)
        self._ttl_s = value

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    def get(self, key: CacheKey) -> bytes | None:
        if not self._enabled:
            return None
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            stored_at, payload = entry
            if self._ttl_s and self._clock() - stored_at > self._ttl_s:
                del self._data[key]
                self._size -= len(payload)
                logger.debug("Grid cache expiry | key=%s", key)
                return None
            self._data.move_to_end(key)
            return payload

    def put(self, key: CacheKey, payload: bytes) -> None:
        if not self._enabled or len(payload) > self._max_size_bytes:
            return
        with self._lock:
            previous = self._data.pop(key, None)
            if previous is not None:
                self._size -= len(previous[1])
            self._data[key] = (self._clock(), payload)
            self._size += len(payload)
            self._evict_locked()

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
            self._size = 0

    def _evict_locked(self) -> None:
        while self._data and self._size > self._max_size_bytes:
            evicted_key, (_, payload) = self._data.popitem(last=False)
            self._size -= len(payload)
            self._eviction_count += 1
            logger.debug(
                "Grid cache eviction | key=%s | size=%d | total_evictions=%d",
                evicted_key,
                self._size,
                self._eviction_count,
            )

    @property
    def size_bytes(self) -> int:
        return self._size

    @property
    def eviction_count(self) -> int:
        """Total number of entries evicted since construction."""
        return self._eviction_count

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data
