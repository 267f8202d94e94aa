"""Tests for grid providers and the grid byte cache.

Covers:
- CachePolicy LRU eviction, TTL expiry, size accounting and toggling
- LocalGridProvider lookup, optional-grid markers and range reads
- ChainedGridProvider local-first lookup and the network toggle
- NetworkGridProvider HEAD probes, range reads, caching and downloads
  (driven through ``httpx.MockTransport``)
"""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from coordshift.resources.base import (
    GridNotFoundError,
    NetworkAccessError,
    ProviderError,
    strip_optional,
)
from coordshift.resources.cache import CachePolicy
from coordshift.resources.chained import ChainedGridProvider
from coordshift.resources.local import LocalGridProvider
from coordshift.resources.network import NetworkGridProvider

ENDPOINT = "https://grids.example.org"
PAYLOAD = bytes(range(256)) * 4


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


# ---------------------------------------------------------------------------
# CachePolicy
# ---------------------------------------------------------------------------


class TestCachePolicy:
    """Bounded LRU + TTL behaviour."""

    def test_put_and_get(self) -> None:
        cache = CachePolicy(max_size_bytes=100)
        cache.put(("g", 0, 3), b"abc")
        assert cache.get(("g", 0, 3)) == b"abc"
        assert ("g", 0, 3) in cache
        assert len(cache) == 1
        assert cache.size_bytes == 3

    def test_lru_eviction(self) -> None:
        cache = CachePolicy(max_size_bytes=10)
        cache.put(("a", 0, 4), b"aaaa")
        cache.put(("b", 0, 4), b"bbbb")
        cache.get(("a", 0, 4))  # a becomes most recent
        cache.put(("c", 0, 4), b"cccc")
        assert ("b", 0, 4) not in cache
        assert ("a", 0, 4) in cache
        assert ("c", 0, 4) in cache
        assert cache.eviction_count == 1
        assert cache.size_bytes == 8

    def test_oversized_payload_not_stored(self) -> None:
        cache = CachePolicy(max_size_bytes=2)
        cache.put(("a", 0, 3), b"abc")
        assert len(cache) == 0

    def test_replacing_key_updates_size(self) -> None:
        cache = CachePolicy(max_size_bytes=100)
        cache.put(("a", 0, 3), b"abc")
        cache.put(("a", 0, 3), b"abcdef")
        assert cache.size_bytes == 6
        assert len(cache) == 1

    def test_ttl_expiry(self) -> None:
        clock = FakeClock()
        cache = CachePolicy(max_size_bytes=100, ttl_s=10, clock=clock)
        cache.put(("a", 0, 1), b"a")
        clock.now = 5.0
        assert cache.get(("a", 0, 1)) == b"a"
        clock.now = 20.0
        assert cache.get(("a", 0, 1)) is None
        assert cache.size_bytes == 0

    def test_zero_ttl_never_expires(self) -> None:
        clock = FakeClock()
        cache = CachePolicy(max_size_bytes=100, ttl_s=0, clock=clock)
        cache.put(("a", 0, 1), b"a")
        clock.now = 1e9
        assert cache.get(("a", 0, 1)) == b"a"

    def test_disabled_cache_stores_nothing(self) -> None:
        cache = CachePolicy(enabled=False)
        cache.put(("a", 0, 1), b"a")
        assert cache.get(("a", 0, 1)) is None
        assert len(cache) == 0

    def test_disabling_clears(self) -> None:
        cache = CachePolicy(max_size_bytes=100)
        cache.put(("a", 0, 1), b"a")
        cache.enabled = False
        assert len(cache) == 0
        assert cache.size_bytes == 0

    def test_shrinking_evicts(self) -> None:
        cache = CachePolicy(max_size_bytes=100)
        cache.put(("a", 0, 4), b"aaaa")
        cache.put(("b", 0, 4), b"bbbb")
        cache.max_size_bytes = 4
        assert len(cache) == 1
        assert ("b", 0, 4) in cache

    def test_negative_settings_rejected(self) -> None:
        cache = CachePolicy()
        with pytest.raises(ValueError, match="max_size_bytes"):
            cache.max_size_bytes = -1
        with pytest.raises(ValueError, match="ttl_s"):
            cache.ttl_s = -1


# ---------------------------------------------------------------------------
# LocalGridProvider
# ---------------------------------------------------------------------------


@pytest.fixture()
def local_dir(tmp_path: Path) -> Path:
    (tmp_path / "sample.gtx").write_bytes(PAYLOAD)
    return tmp_path


class TestStripOptional:
    def test_marker(self) -> None:
        assert strip_optional("@egm96_15.gtx") == ("egm96_15.gtx", True)

    def test_plain(self) -> None:
        assert strip_optional("conus") == ("conus", False)


class TestLocalGridProvider:
    """Directory lookup and range reads."""

    def test_available(self, local_dir: Path) -> None:
        provider = LocalGridProvider([str(local_dir)])
        assert provider.is_available("sample.gtx")
        assert provider.is_available("@sample.gtx")
        assert not provider.is_available("missing.gtx")

    def test_absolute_path(self, local_dir: Path) -> None:
        provider = LocalGridProvider()
        assert provider.is_available(str(local_dir / "sample.gtx"))

    def test_first_directory_wins(self, tmp_path: Path) -> None:
        first, second = tmp_path / "a", tmp_path / "b"
        first.mkdir()
        second.mkdir()
        (first / "g").write_bytes(b"first")
        (second / "g").write_bytes(b"second")
        provider = LocalGridProvider([str(first), str(second)])
        assert provider.find("g") == first / "g"

    def test_read_range(self, local_dir: Path) -> None:
        with LocalGridProvider([str(local_dir)]) as provider:
            handle = provider.open_for_read("sample.gtx")
            assert handle.size == len(PAYLOAD)
            assert handle.read(10, 4) == PAYLOAD[10:14]
            assert handle.read_all() == PAYLOAD

    def test_read_outside_file(self, local_dir: Path) -> None:
        provider = LocalGridProvider([str(local_dir)])
        with provider.open_for_read("sample.gtx") as handle:
            with pytest.raises(ProviderError, match="outside file"):
                handle.read(len(PAYLOAD) - 2, 10)

    def test_read_after_close(self, local_dir: Path) -> None:
        provider = LocalGridProvider([str(local_dir)])
        handle = provider.open_for_read("sample.gtx")
        provider.close()
        assert handle.closed
        with pytest.raises(ProviderError, match="closed"):
            handle.read(0, 1)

    def test_missing_grid_raises(self, local_dir: Path) -> None:
        provider = LocalGridProvider([str(local_dir)])
        with pytest.raises(GridNotFoundError) as exc_info:
            provider.open_for_read("missing.gtx")
        assert exc_info.value.retryable is False
        assert exc_info.value.resource == "missing.gtx"

    def test_cache_disabled(self) -> None:
        assert LocalGridProvider().cache_policy.enabled is False


# ---------------------------------------------------------------------------
# NetworkGridProvider
# ---------------------------------------------------------------------------


class GridServer:
    """``httpx.MockTransport`` handler serving one grid and recording requests."""

    def __init__(self, grids: dict[str, bytes] | None = None) -> None:
        self.grids = grids if grids is not None else {"sample.gtx": PAYLOAD}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        name = request.url.path.lstrip("/")
        body = self.grids.get(name)
        if body is None:
            return httpx.Response(404)
        if request.method == "HEAD":
            return httpx.Response(200, headers={"content-length": str(len(body))})
        range_header = request.headers.get("range")
        if range_header:
            start, end = (int(v) for v in range_header.removeprefix("bytes=").split("-"))
            return httpx.Response(206, content=body[start : end + 1])
        return httpx.Response(200, content=body)

    def count(self, method: str) -> int:
        return sum(1 for r in self.requests if r.method == method)


def _provider(server: GridServer, **kwargs: object) -> NetworkGridProvider:
    client = httpx.Client(transport=httpx.MockTransport(server))
    return NetworkGridProvider(ENDPOINT, client=client, **kwargs)  # type: ignore[arg-type]


class TestNetworkGridProvider:
    """HTTP probing, range reads and downloads."""

    def test_url_for(self) -> None:
        provider = _provider(GridServer())
        assert provider.url_for("@sample.gtx") == f"{ENDPOINT}/sample.gtx"
        assert provider.url_for("https://other.org/g.tif") == "https://other.org/g.tif"

    def test_available_probes_once(self) -> None:
        server = GridServer()
        provider = _provider(server)
        assert provider.is_available("sample.gtx")
        assert provider.is_available("sample.gtx")
        assert server.count("HEAD") == 1

    def test_missing_grid(self) -> None:
        provider = _provider(GridServer())
        assert not provider.is_available("missing.gtx")
        with pytest.raises(GridNotFoundError):
            provider.open_for_read("missing.gtx")

    def test_server_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        provider = NetworkGridProvider(ENDPOINT, client=client)
        with pytest.raises(NetworkAccessError) as exc_info:
            provider.is_available("sample.gtx")
        assert exc_info.value.retryable is True

    def test_transport_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        provider = NetworkGridProvider(ENDPOINT, client=client)
        with pytest.raises(NetworkAccessError, match="HEAD"):
            provider.is_available("sample.gtx")

    def test_range_read(self) -> None:
        server = GridServer()
        provider = _provider(server)
        handle = provider.open_for_read("sample.gtx")
        assert handle.size == len(PAYLOAD)
        assert handle.read(100, 8) == PAYLOAD[100:108]
        ranges = [r.headers["range"] for r in server.requests if r.method == "GET"]
        assert ranges == ["bytes=100-107"]

    def test_range_read_is_cached(self) -> None:
        server = GridServer()
        provider = _provider(server, cache_policy=CachePolicy(max_size_bytes=1024))
        handle = provider.open_for_read("sample.gtx")
        handle.read(0, 16)
        handle.read(0, 16)
        assert server.count("GET") == 1
        assert ("sample.gtx", 0, 16) in provider.cache_policy

    def test_range_read_ignored_by_server(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "HEAD":
                return httpx.Response(200, headers={"content-length": str(len(PAYLOAD))})
            return httpx.Response(200, content=PAYLOAD)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        provider = NetworkGridProvider(ENDPOINT, client=client)
        assert provider.read_range("sample.gtx", 4, 4) == PAYLOAD[4:8]

    def test_closed_handle(self) -> None:
        provider = _provider(GridServer())
        handle = provider.open_for_read("sample.gtx")
        handle.close()
        with pytest.raises(NetworkAccessError, match="closed"):
            handle.read(0, 1)

    def test_download(self, tmp_path: Path) -> None:
        provider = _provider(GridServer())
        path = provider.download("@sample.gtx", tmp_path / "cache")
        assert path == tmp_path / "cache" / "sample.gtx"
        assert path.read_bytes() == PAYLOAD
        assert not (tmp_path / "cache" / "sample.gtx.part").exists()

    def test_download_missing(self, tmp_path: Path) -> None:
        provider = _provider(GridServer())
        with pytest.raises(GridNotFoundError):
            provider.download("missing.gtx", tmp_path)

    def test_download_failure_removes_partial(self, tmp_path: Path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        provider = NetworkGridProvider(ENDPOINT, client=client)
        with pytest.raises(NetworkAccessError):
            provider.download("sample.gtx", tmp_path)
        assert list(tmp_path.iterdir()) == []


# ---------------------------------------------------------------------------
# ChainedGridProvider
# ---------------------------------------------------------------------------


class TestChainedGridProvider:
    """Local first, network only when enabled."""

    def test_local_first(self, local_dir: Path) -> None:
        server = GridServer()
        chained = ChainedGridProvider(LocalGridProvider([str(local_dir)]), _provider(server))
        assert chained.is_available("sample.gtx")
        with chained.open_for_read("sample.gtx") as handle:
            assert handle.read(0, 2) == PAYLOAD[:2]
        assert server.requests == []

    def test_falls_back_to_network(self, tmp_path: Path) -> None:
        server = GridServer()
        chained = ChainedGridProvider(LocalGridProvider([str(tmp_path)]), _provider(server))
        assert chained.is_available("sample.gtx")
        assert chained.open_for_read("sample.gtx").size == len(PAYLOAD)

    def test_network_toggle(self, tmp_path: Path) -> None:
        enabled = {"value": False}
        server = GridServer()
        chained = ChainedGridProvider(
            LocalGridProvider([str(tmp_path)]), _provider(server), lambda: enabled["value"]
        )
        assert not chained.is_available("sample.gtx")
        with pytest.raises(GridNotFoundError):
            chained.open_for_read("sample.gtx")
        assert server.requests == []
        enabled["value"] = True
        assert chained.is_available("sample.gtx")

    def test_without_network(self, tmp_path: Path) -> None:
        local = LocalGridProvider([str(tmp_path)])
        chained = ChainedGridProvider(local)
        assert not chained.is_available("sample.gtx")
        assert chained.cache_policy is local.cache_policy
