"""GridProvider abstract base class and provider exceptions.

A grid provider supplies correction grids on demand.  The resolver asks
``is_available`` while ranking candidates; the executor calls
``open_for_read`` when a grid-based step first runs.  Providers may be
slow or fallible: every failure is raised as a ``ProviderError`` and the
core turns it into the per-coordinate outside-grid failure.

The interface is exactly:

- ``is_available(name)``   whether a grid can be opened.
- ``open_for_read(name)``  a byte-range readable ``GridHandle``.
- ``cache_policy``         the provider's ``CachePolicy``.
- ``close()``              release handles and connections.
"""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING

from coordshift.core.exceptions import ErrorCode, ResourceUnavailableError

if TYPE_CHECKING:
    from types import TracebackType

    from coordshift.resources.cache import CachePolicy


# ---------------------------------------------------------------------------
# Handles
# ---------------------------------------------------------------------------


class GridHandle(abc.ABC):
    """A read-only, byte-range addressable grid resource."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._closed = False

    @property
    @abc.abstractmethod
    def size(self) -> int:
        """Total size of the resource in bytes."""

    @abc.abstractmethod
    def read(self, offset: int, size: int) -> bytes:
        """Read *size* bytes starting at *offset*.

        Raises:
            ProviderError: If the range cannot be read.
        """

    def read_all(self) -> bytes:
        return self.read(0, self.size)

    def close(self) -> None:
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> GridHandle:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------


class GridProvider(abc.ABC):
    """Abstract base class for grid providers."""

    name: str = "grid"

    @abc.abstractmethod
    def is_available(self, grid_name: str) -> bool:
        """Return whether *grid_name* can be opened.

        Raises:
            ProviderError: If availability cannot be determined.
        """

    @abc.abstractmethod
    def open_for_read(self, grid_name: str) -> GridHandle:
        """Open *grid_name* for byte-range reading.

        Raises:
            GridNotFoundError: If the grid does not exist.
            ProviderError: On any other access failure.
        """

    @property
    @abc.abstractmethod
    def cache_policy(self) -> CachePolicy:
        """The cache settings governing fetched bytes."""

    @abc.abstractmethod
    def close(self) -> None:
        """Release every handle and connection held by the provider."""

    def __enter__(self) -> GridProvider:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


def strip_optional(grid_name: str) -> tuple[str, bool]:
    """Split the ``@`` optional-grid marker from a grid name."""
    if grid_name.startswith("@"):
        return grid_name[1:], True
    return grid_name, False


# ---------------------------------------------------------------------------
# Provider exceptions
# ---------------------------------------------------------------------------


class ProviderError(ResourceUnavailableError):
    """Base exception for grid provider errors.

    Attributes:
        provider: Name of the provider that raised the error.
        message: Human-readable error description.
        retryable: Whether the caller should retry the operation.
    """

    default_stage = "provider"
    default_code = "PROVIDER_ERROR"

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        resource: str = "",
        retryable: bool = True,
    ) -> None:
        self.provider = provider
        super().__init__(
            resource or provider,
            message,
            retryable=retryable,
            code=self.default_code,
            stage=self.default_stage,
        )

    def __str__(self) -> str:
        return f"[{self.provider}] {self.message}"


class GridNotFoundError(ProviderError):
    """The grid is unknown to the provider."""

    default_code = "GRID_NOT_FOUND"
    errno = ErrorCode.INVALID_OP_FILE_NOT_FOUND_OR_INVALID

    def __init__(self, provider: str, grid_name: str) -> None:
        super().__init__(
            provider, f"Grid not found: {grid_name}", resource=grid_name, retryable=False
        )


class GridFormatError(ProviderError):
    """The grid bytes do not decode as a supported format."""

    default_code = "GRID_FORMAT_INVALID"
    errno = ErrorCode.INVALID_OP_FILE_NOT_FOUND_OR_INVALID

    def __init__(self, grid_name: str, message: str) -> None:
        super().__init__("grid_reader", message, resource=grid_name, retryable=False)


class NetworkAccessError(ProviderError):
    """A network request for a grid failed."""

    default_code = "NETWORK_ERROR"
    errno = ErrorCode.OTHER_NETWORK_ERROR
