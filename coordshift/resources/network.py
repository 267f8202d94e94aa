"""Grid provider fetching grids from a CDN over HTTP.

Availability is probed with ``HEAD``; reads are ``Range`` requests whose
bodies are kept in the provider's ``CachePolicy``.  ``download`` streams a
whole grid to a local directory.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

import httpx

from coordshift.core.constants import DEFAULT_ENDPOINT_URL, DEFAULT_HTTP_TIMEOUT_S
from coordshift.resources.base import (
    GridHandle,
    GridNotFoundError,
    GridProvider,
    NetworkAccessError,
    strip_optional,
)
from coordshift.resources.cache import CachePolicy

logger = logging.getLogger(__name__)

NETWORK = "network"

_HTTP_NOT_FOUND = 404
_HTTP_PARTIAL_CONTENT = 206


class NetworkGridHandle(GridHandle):
    """A remote grid read through range requests."""

    def __init__(self, provider: NetworkGridProvider, name: str, size: int) -> None:
        super().__init__(name)
        self._provider = provider
        self._size = size

    @property
    def size(self) -> int:
        return self._size

    def read(self, offset: int, size: int) -> bytes:
        if self.closed:
            raise NetworkAccessError(NETWORK, "Handle is closed", resource=self.name, retryable=False)
        return self._provider.read_range(self.name, offset, size)


class NetworkGridProvider(GridProvider):
    """HTTP grid provider.

    Args:
        endpoint: Base URL grids are resolved against.
        client: Optional pre-configured ``httpx.Client`` (owned by the caller).
        cache_policy: Cache for fetched byte ranges.
        timeout_s: Per-request timeout when the provider creates its client.
    """

    name = NETWORK

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT_URL,
        *,
        client: httpx.Client | None = None,
        cache_policy: CachePolicy | None = None,
        timeout_s: float = DEFAULT_HTTP_TIMEOUT_S,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout_s, follow_redirects=True)
        self._cache_policy = cache_policy if cache_policy is not None else CachePolicy()
        self._sizes: dict[str, int | None] = {}
        self._lock = threading.Lock()

    def url_for(self, grid_name: str) -> str:
        bare, _ = strip_optional(grid_name)
        if bare.startswith(("http://", "https://")):
            return bare
        return f"{self.endpoint}/{bare}"

    # ------------------------------------------------------------------
    # GridProvider
    # ------------------------------------------------------------------

    def is_available(self, grid_name: str) -> bool:
        return self._probe(grid_name) is not None

    def open_for_read(self, grid_name: str) -> NetworkGridHandle:
        size = self._probe(grid_name)
        if size is None:
            raise GridNotFoundError(self.name, grid_name)
        return NetworkGridHandle(self, strip_optional(grid_name)[0], size)

    @property
    def cache_policy(self) -> CachePolicy:
        return self._cache_policy

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
        with self._lock:
            self._sizes.clear()

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _probe(self, grid_name: str) -> int | None:
        """Return the grid size in bytes, or ``None`` when it does not exist."""
        bare, _ = strip_optional(grid_name)
        with self._lock:
            if bare in self._sizes:
                return self._sizes[bare]
        url = self.url_for(bare)
        try:
            response = self._client.head(url)
        except httpx.HTTPError as exc:
            msg = f"HEAD {url} failed: {exc}"
            raise NetworkAccessError(self.name, msg, resource=bare) from exc
        if response.status_code == _HTTP_NOT_FOUND:
            size: int | None = None
        elif response.is_success:
            size = int(response.headers.get("content-length", "0"))
        else:
            msg = f"HEAD {url} returned HTTP {response.status_code}"
            raise NetworkAccessError(self.name, msg, resource=bare)
        with self._lock:
            self._sizes[bare] = size
        logger.debug("Probed remote grid | grid=%s | size=%s", bare, size)
        return size

    def read_range(self, grid_name: str, offset: int, size: int) -> bytes:
        """Fetch ``size`` bytes at ``offset``, consulting the cache first."""
        key = (grid_name, offset, size)
        cached = self._cache_policy.get(key)
        if cached is not None:
            return cached
        url = self.url_for(grid_name)
        headers = {"Range": f"bytes={offset}-{offset + size - 1}"} if size else {}
        try:
            response = self._client.get(url, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            msg = f"GET {url} failed: {exc}"
            raise NetworkAccessError(self.name, msg, resource=grid_name) from exc
        payload = response.content
        if response.status_code != _HTTP_PARTIAL_CONTENT:
            payload = payload[offset : offset + size]
        if len(payload) != size:
            msg = f"GET {url} returned {len(payload)} bytes, expected {size}"
            raise NetworkAccessError(self.name, msg, resource=grid_name)
        self._cache_policy.put(key, payload)
        return payload

    def download(self, grid_name: str, directory: str | Path) -> Path:
        """Stream a whole grid into *directory* and return the file path.

        Uses streaming so large grids are never held in memory at once.
        """
        bare, _ = strip_optional(grid_name)
        target_dir = Path(directory)
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / Path(bare).name
        partial = target.with_name(target.name + ".part")
        url = self.url_for(bare)
        try:
            with self._client.stream("GET", url) as response:
                if response.status_code == _HTTP_NOT_FOUND:
                    raise GridNotFoundError(self.name, bare)
                response.raise_for_status()
                size = 0
                with partial.open("wb") as fh:
                    for chunk in response.iter_bytes():
                        fh.write(chunk)
                        size += len(chunk)
        except httpx.HTTPError as exc:
            partial.unlink(missing_ok=True)
            msg = f"Download of {url} failed: {exc}"
            raise NetworkAccessError(self.name, msg, resource=bare) from exc
        partial.replace(target)
        logger.info("Downloaded grid | grid=%s | bytes=%d | path=%s", bare, size, target)
        return target
