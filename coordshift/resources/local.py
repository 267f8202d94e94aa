"""Grid provider reading files from local directories."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import BinaryIO

from coordshift.resources.base import (
    GridHandle,
    GridNotFoundError,
    GridProvider,
    ProviderError,
    strip_optional,
)
from coordshift.resources.cache import CachePolicy

logger = logging.getLogger(__name__)

LOCAL = "local"


class FileGridHandle(GridHandle):
    """A grid file opened from disk."""

    def __init__(self, name: str, path: Path) -> None:
        super().__init__(name)
        self.path = path
        try:
            self._file: BinaryIO = path.open("rb")
            self._size = os.fstat(self._file.fileno()).st_size
        except OSError as exc:
            raise ProviderError(LOCAL, f"Cannot open {path}: {exc}", resource=name) from exc

    @property
    def size(self) -> int:
        return self._size

    def read(self, offset: int, size: int) -> bytes:
        if self.closed:
            raise ProviderError(LOCAL, "Handle is closed", resource=self.name, retryable=False)
        if offset < 0 or size < 0 or offset + size > self._size:
            raise ProviderError(
                LOCAL,
                f"Range {offset}+{size} outside file of {self._size} bytes",
                resource=self.name,
                retryable=False,
            )
        try:
            self._file.seek(offset)
            return self._file.read(size)
        except OSError as exc:
            raise ProviderError(LOCAL, f"Read failed: {exc}", resource=self.name) from exc

    def close(self) -> None:
        if not self.closed:
            self._file.close()
        super().close()


class LocalGridProvider(GridProvider):
    """Finds grids by name under a list of directories.

    Absolute paths are accepted as-is.  Local reads are not cached, so the
    cache policy is disabled.
    """

    name = LOCAL

    def __init__(self, directories: tuple[str, ...] | list[str] = ()) -> None:
        self.directories = tuple(Path(d) for d in directories)
        self._cache_policy = CachePolicy(enabled=False)
        self._handles: list[FileGridHandle] = []

    def find(self, grid_name: str) -> Path | None:
        bare, _ = strip_optional(grid_name)
        candidate = Path(bare)
        if candidate.is_absolute():
            return candidate if candidate.is_file() else None
        for directory in self.directories:
            path = directory / bare
            if path.is_file():
                return path
        return None

    def is_available(self, grid_name: str) -> bool:
        return self.find(grid_name) is not None

    def open_for_read(self, grid_name: str) -> FileGridHandle:
        path = self.find(grid_name)
        if path is None:
            raise GridNotFoundError(self.name, grid_name)
        handle = FileGridHandle(strip_optional(grid_name)[0], path)
        self._handles.append(handle)
        logger.debug("Opened local grid | grid=%s | path=%s", grid_name, path)
        return handle

    @property
    def cache_policy(self) -> CachePolicy:
        return self._cache_policy

    def close(self) -> None:
        for handle in self._handles:
            handle.close()
        self._handles.clear()
