"""Pipeline steps acting on blocks of coordinates.

Every step works in place on an ``(n, 4)`` float64 array holding
``x, y, z, t`` rows and may return an ``(n,)`` array of ``ErrorCode``
values (0 for rows that succeeded).  ``Pipeline.run`` only hands a step
the rows that are still healthy, so steps never see a failed row.

Canonical space between steps:
    geographic  longitude/latitude in radians (Greenwich), height in metres
    projected   easting/northing in metres
    geocentric  X/Y/Z in metres
    vertical    height in metres, positive up, in ``z``
"""

from __future__ import annotations

import abc
import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

from coordshift.core.constants import (
    HALF_PI,
    HGRID_INVERSE_MAX_ITERATIONS,
    HGRID_INVERSE_TOLERANCE_RAD,
    LATITUDE_EPSILON,
)
from coordshift.core.exceptions import ErrorCode, OperationInvalidError
from coordshift.resources.base import GridFormatError, NetworkAccessError, ProviderError, strip_optional

if TYPE_CHECKING:
    from coordshift.core.context import Context
    from coordshift.resources.grids import Grid

logger = logging.getLogger(__name__)

_OK = int(ErrorCode.NONE)
_OUTSIDE_GRID = int(ErrorCode.COORD_TRANSFM_OUTSIDE_GRID)


def _codes(n: int) -> np.ndarray:
    return np.zeros(n, dtype=np.int64)


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------


class Step(abc.ABC):
    """One stage of a compiled pipeline.

    Subclasses implement ``forward`` and, when ``invertible``, ``inverse``.
    Both receive a block of healthy rows and the acting context.
    """

    invertible: bool = True

    @abc.abstractmethod
    def forward(self, block: np.ndarray, ctx: Context) -> np.ndarray | None:
        """Transform *block* in place; return per-row error codes or ``None``."""

    def inverse(self, block: np.ndarray, ctx: Context) -> np.ndarray | None:
        raise OperationInvalidError(f"{type(self).__name__} has no inverse")

    def describe(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class Identity(Step):
    def forward(self, block: np.ndarray, ctx: Context) -> None:
        return None

    def inverse(self, block: np.ndarray, ctx: Context) -> None:
        return None


# ---------------------------------------------------------------------------
# Axis, unit and meridian handling
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AxisSwap(Step):
    """Reorder (and flip) the first three components.

    ``order`` is signed and 1-based: output slot *j* takes input component
    ``abs(order[j]) - 1``, negated when ``order[j] < 0``.
    """

    order: tuple[int, int, int]

    def __post_init__(self) -> None:
        if sorted(abs(o) for o in self.order) != [1, 2, 3]:
            raise OperationInvalidError(f"Invalid axis order {self.order}")

    def forward(self, block: np.ndarray, ctx: Context) -> None:
        source = block[:, :3].copy()
        for slot, entry in enumerate(self.order):
            block[:, slot] = source[:, abs(entry) - 1] * (1.0 if entry > 0 else -1.0)

    def inverse(self, block: np.ndarray, ctx: Context) -> None:
        source = block[:, :3].copy()
        for slot, entry in enumerate(self.order):
            block[:, abs(entry) - 1] = source[:, slot] * (1.0 if entry > 0 else -1.0)

    @property
    def is_identity(self) -> bool:
        return self.order == (1, 2, 3)


@dataclass(frozen=True)
class UnitConvert(Step):
    """Scale ``x, y, z`` from native units to SI base units (forward)."""

    factors: tuple[float, float, float]

    def forward(self, block: np.ndarray, ctx: Context) -> None:
        block[:, :3] *= np.asarray(self.factors)

    def inverse(self, block: np.ndarray, ctx: Context) -> None:
        block[:, :3] /= np.asarray(self.factors)

    @property
    def is_identity(self) -> bool:
        return self.factors == (1.0, 1.0, 1.0)


@dataclass(frozen=True)
class PrimeMeridianShift(Step):
    """Refer longitudes to Greenwich (forward) or to the CRS meridian (inverse)."""

    offset: float  # radians

    def forward(self, block: np.ndarray, ctx: Context) -> None:
        block[:, 0] += self.offset

    def inverse(self, block: np.ndarray, ctx: Context) -> None:
        block[:, 0] -= self.offset


@dataclass(frozen=True)
class LongitudeWrap(Step):
    """Bring longitudes back into [-pi, pi]."""

    def forward(self, block: np.ndarray, ctx: Context) -> None:
        lon = block[:, 0]
        outside = np.abs(lon) > np.pi
        if outside.any():
            block[outside, 0] = np.mod(lon[outside] + np.pi, 2.0 * np.pi) - np.pi

    inverse = forward


@dataclass(frozen=True)
class LatitudeCheck(Step):
    """Reject non-finite input and latitudes beyond the poles."""

    def forward(self, block: np.ndarray, ctx: Context) -> np.ndarray:
        codes = _codes(block.shape[0])
        bad = ~np.isfinite(block[:, :3]).all(axis=1)
        bad |= np.abs(np.nan_to_num(block[:, 1])) > HALF_PI + LATITUDE_EPSILON
        codes[bad] = int(ErrorCode.COORD_TRANSFM_INVALID_COORD)
        return codes

    inverse = forward


# ---------------------------------------------------------------------------
# Geodetic <-> geocentric and Helmert
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Cart(Step):
    """Geodetic longitude/latitude/height to geocentric X/Y/Z (forward)."""

    semi_major: float
    es: float  # first eccentricity squared

    def forward(self, block: np.ndarray, ctx: Context) -> None:
        lon, lat, h = block[:, 0], block[:, 1], block[:, 2]
        sin_lat = np.sin(lat)
        n = self.semi_major / np.sqrt(1.0 - self.es * sin_lat * sin_lat)
        cos_lat = np.cos(lat)
        x = (n + h) * cos_lat * np.cos(lon)
        y = (n + h) * cos_lat * np.sin(lon)
        z = (n * (1.0 - self.es) + h) * sin_lat
        block[:, 0], block[:, 1], block[:, 2] = x, y, z

    def inverse(self, block: np.ndarray, ctx: Context) -> None:
        # Bowring's closed form; sub-millimetre for terrestrial heights.
        x, y, z = block[:, 0], block[:, 1], block[:, 2]
        a = self.semi_major
        b = a * np.sqrt(1.0 - self.es)
        ep2 = (a * a - b * b) / (b * b)
        p = np.hypot(x, y)
        theta = np.arctan2(z * a, p * b)
        sin_t, cos_t = np.sin(theta), np.cos(theta)
        lat = np.arctan2(z + ep2 * b * sin_t**3, p - self.es * a * cos_t**3)
        lon = np.arctan2(y, x)
        sin_lat, cos_lat = np.sin(lat), np.cos(lat)
        n = a / np.sqrt(1.0 - self.es * sin_lat * sin_lat)
        with np.errstate(divide="ignore", invalid="ignore"):
            h = np.where(
                np.abs(cos_lat) > 1e-10,
                p / cos_lat - n,
                np.abs(z) - b,
            )
        block[:, 0], block[:, 1], block[:, 2] = lon, lat, h


@dataclass(frozen=True)
class Helmert(Step):
    """Seven-parameter similarity transform in geocentric space.

    Rotations are radians and ``scale`` a unitless difference.  The
    ``coordinate_frame`` convention uses the transposed rotation matrix.
    """

    translation: tuple[float, float, float]
    rotation: tuple[float, float, float] = (0.0, 0.0, 0.0)
    scale: float = 0.0
    convention: str = "position_vector"
    _matrix: np.ndarray = field(init=False, repr=False, compare=False)
    _inverse: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        rx, ry, rz = self.rotation
        if self.convention == "coordinate_frame":
            rx, ry, rz = -rx, -ry, -rz
        rotation = np.array([[1.0, -rz, ry], [rz, 1.0, -rx], [-ry, rx, 1.0]])
        matrix = (1.0 + self.scale) * rotation
        object.__setattr__(self, "_matrix", matrix)
        object.__setattr__(self, "_inverse", np.linalg.inv(matrix))

    def forward(self, block: np.ndarray, ctx: Context) -> None:
        block[:, :3] = block[:, :3] @ self._matrix.T + np.asarray(self.translation)

    def inverse(self, block: np.ndarray, ctx: Context) -> None:
        block[:, :3] = (block[:, :3] - np.asarray(self.translation)) @ self._inverse.T


@dataclass(frozen=True)
class GeographicOffset(Step):
    """Constant longitude/latitude (radians) and height (metres) offsets."""

    dlon: float = 0.0
    dlat: float = 0.0
    dh: float = 0.0

    def forward(self, block: np.ndarray, ctx: Context) -> None:
        block[:, 0] += self.dlon
        block[:, 1] += self.dlat
        block[:, 2] += self.dh

    def inverse(self, block: np.ndarray, ctx: Context) -> None:
        block[:, 0] -= self.dlon
        block[:, 1] -= self.dlat
        block[:, 2] -= self.dh


# ---------------------------------------------------------------------------
# Grid shifts
# ---------------------------------------------------------------------------


def _load_grids(names: tuple[str, ...], ctx: Context, kind: type) -> list[Grid]:
    """Load the named grids; ``@``-prefixed grids may be missing.

    Raises:
        ProviderError: If a required grid cannot be loaded, or no grid at
            all could be loaded.
    """
    grids: list[Grid] = []
    last_error: ProviderError | None = None
    for raw in names:
        name, optional = strip_optional(raw)
        try:
            grid = ctx.load_grid(name)
            if not isinstance(grid, kind):
                raise GridFormatError(name, f"Grid is not a {kind.__name__}")
        except ProviderError as exc:
            if not optional:
                raise
            last_error = exc
            continue
        grids.append(grid)
    if not grids:
        if last_error is not None:
            raise last_error
        raise GridFormatError(",".join(names), "No grid names given")
    return grids


@dataclass(frozen=True)
class HorizontalGridShift(Step):
    """NTv2 longitude/latitude corrections; the inverse iterates."""

    grids: tuple[str, ...]

    def _shifts(self, grids: list[Grid], lon: np.ndarray, lat: np.ndarray):
        n = lon.shape[0]
        dlon = np.zeros(n)
        dlat = np.zeros(n)
        codes = np.full(n, _OUTSIDE_GRID, dtype=np.int64)
        pending = np.ones(n, dtype=bool)
        for grid in grids:
            if not pending.any():
                break
            idx = np.flatnonzero(pending)
            g_lon, g_lat, g_codes = grid.shifts(lon[idx], lat[idx])
            hit = g_codes != _OUTSIDE_GRID
            dlon[idx[hit]] = np.nan_to_num(g_lon[hit])
            dlat[idx[hit]] = np.nan_to_num(g_lat[hit])
            codes[idx[hit]] = g_codes[hit]
            pending[idx[hit]] = False
        return dlon, dlat, codes

    def forward(self, block: np.ndarray, ctx: Context) -> np.ndarray:
        from coordshift.resources.grids import HorizontalGrid

        grids = _load_grids(self.grids, ctx, HorizontalGrid)
        dlon, dlat, codes = self._shifts(grids, block[:, 0], block[:, 1])
        ok = codes == _OK
        block[ok, 0] += dlon[ok]
        block[ok, 1] += dlat[ok]
        return codes

    def inverse(self, block: np.ndarray, ctx: Context) -> np.ndarray:
        from coordshift.resources.grids import HorizontalGrid

        grids = _load_grids(self.grids, ctx, HorizontalGrid)
        lon, lat = block[:, 0].copy(), block[:, 1].copy()
        dlon, dlat, codes = self._shifts(grids, lon, lat)
        guess_lon, guess_lat = lon - dlon, lat - dlat
        for _ in range(HGRID_INVERSE_MAX_ITERATIONS):
            dlon, dlat, codes = self._shifts(grids, guess_lon, guess_lat)
            next_lon, next_lat = lon - dlon, lat - dlat
            delta = np.maximum(np.abs(next_lon - guess_lon), np.abs(next_lat - guess_lat))
            guess_lon, guess_lat = next_lon, next_lat
            if not (delta[codes == _OK] > HGRID_INVERSE_TOLERANCE_RAD).any():
                break
        ok = codes == _OK
        block[ok, 0] = guess_lon[ok]
        block[ok, 1] = guess_lat[ok]
        return codes


@dataclass(frozen=True)
class VerticalGridShift(Step):
    """Geoid/offset grid applied to heights: ``z + multiplier * N``."""

    grids: tuple[str, ...]
    multiplier: float = 1.0

    def _offsets(self, ctx: Context, block: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        from coordshift.resources.grids import VerticalGrid

        grids = _load_grids(self.grids, ctx, VerticalGrid)
        n = block.shape[0]
        values = np.zeros(n)
        codes = np.full(n, _OUTSIDE_GRID, dtype=np.int64)
        pending = np.ones(n, dtype=bool)
        for grid in grids:
            if not pending.any():
                break
            idx = np.flatnonzero(pending)
            offsets, g_codes = grid.offsets(block[idx, 0], block[idx, 1])
            hit = g_codes != _OUTSIDE_GRID
            values[idx[hit]] = np.nan_to_num(offsets[hit])
            codes[idx[hit]] = g_codes[hit]
            pending[idx[hit]] = False
        return values, codes

    def forward(self, block: np.ndarray, ctx: Context) -> np.ndarray:
        values, codes = self._offsets(ctx, block)
        ok = codes == _OK
        block[ok, 2] += self.multiplier * values[ok]
        return codes

    def inverse(self, block: np.ndarray, ctx: Context) -> np.ndarray:
        values, codes = self._offsets(ctx, block)
        ok = codes == _OK
        block[ok, 2] -= self.multiplier * values[ok]
        return codes


# ---------------------------------------------------------------------------
# Projection (pyproj)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Projection(Step):
    """A map projection run by pyproj from a proj-string definition.

    pyproj transformers are not thread-safe, so each thread builds its own.
    """

    definition: str
    _local: threading.local = field(default_factory=threading.local, repr=False, compare=False)

    def __post_init__(self) -> None:
        self._transformer()

    def _transformer(self):
        transformer = getattr(self._local, "transformer", None)
        if transformer is None:
            from pyproj import Transformer
            from pyproj.exceptions import ProjError

            try:
                transformer = Transformer.from_pipeline(self.definition)
            except ProjError as exc:
                raise OperationInvalidError(
                    f"Projection {self.definition!r} is not valid: {exc}"
                ) from exc
            self._local.transformer = transformer
        return transformer

    @property
    def invertible(self) -> bool:  # type: ignore[override]
        return bool(self._transformer().has_inverse)

    def _run(self, block: np.ndarray, inverse: bool) -> np.ndarray:
        from pyproj.enums import TransformDirection

        direction = TransformDirection.INVERSE if inverse else TransformDirection.FORWARD
        x, y = self._transformer().transform(
            block[:, 0], block[:, 1], radians=True, errcheck=False, direction=direction
        )
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        codes = _codes(block.shape[0])
        bad = ~(np.isfinite(x) & np.isfinite(y))
        codes[bad] = int(ErrorCode.COORD_TRANSFM_OUTSIDE_PROJECTION_DOMAIN)
        block[:, 0], block[:, 1] = x, y
        return codes

    def forward(self, block: np.ndarray, ctx: Context) -> np.ndarray:
        return self._run(block, inverse=False)

    def inverse(self, block: np.ndarray, ctx: Context) -> np.ndarray:
        if not self.invertible:
            raise OperationInvalidError(f"Projection {self.definition!r} has no inverse")
        return self._run(block, inverse=True)

    def describe(self) -> str:
        return f"Projection({self.definition})"


# ---------------------------------------------------------------------------
# Pipelines
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Pipeline:
    """An ordered list of ``(step, forward)`` stages."""

    stages: tuple[tuple[Step, bool], ...] = ()
    name: str = ""

    @property
    def invertible(self) -> bool:
        return all(step.invertible for step, _ in self.stages)

    def inverted(self) -> Pipeline:
        """Reverse the stages and flip their directions.

        Raises:
            OperationInvalidError: If a stage cannot run backwards.
        """
        for step, _ in self.stages:
            if not step.invertible:
                raise OperationInvalidError(
                    f"Pipeline {self.name!r} cannot be inverted: {step.describe()} has no inverse"
                )
        stages = tuple((step, not forward) for step, forward in reversed(self.stages))
        return Pipeline(stages, self.name)

    def then(self, other: Pipeline) -> Pipeline:
        return Pipeline(self.stages + other.stages, self.name or other.name)

    def run(self, coords: np.ndarray, ctx: Context) -> np.ndarray:
        """Run every stage over *coords* in place and return per-row codes."""
        codes = _codes(coords.shape[0])
        for step, forward in self.stages:
            active = np.flatnonzero(codes == _OK)
            if active.size == 0:
                break
            block = coords[active]
            try:
                result = step.forward(block, ctx) if forward else step.inverse(block, ctx)
            except ProviderError as exc:
                if isinstance(exc, NetworkAccessError):
                    logger.error("Network grid access failed | step=%s | error=%s", step.describe(), exc)
                else:
                    logger.warning("Grid unavailable | step=%s | error=%s", step.describe(), exc)
                codes[active] = _OUTSIDE_GRID
                continue
            coords[active] = block
            if result is not None:
                codes[active] = result
        return codes


@dataclass(frozen=True)
class KeepHeight(Step):
    """Run a horizontal sub-pipeline with ``z`` zeroed, then restore ``z``."""

    pipeline: Pipeline

    @property
    def invertible(self) -> bool:  # type: ignore[override]
        return self.pipeline.invertible

    def _run(self, block: np.ndarray, ctx: Context, pipeline: Pipeline) -> np.ndarray:
        height = block[:, 2].copy()
        block[:, 2] = 0.0
        codes = pipeline.run(block, ctx)
        block[:, 2] = height
        return codes

    def forward(self, block: np.ndarray, ctx: Context) -> np.ndarray:
        return self._run(block, ctx, self.pipeline)

    def inverse(self, block: np.ndarray, ctx: Context) -> np.ndarray:
        return self._run(block, ctx, self.pipeline.inverted())

    def describe(self) -> str:
        return f"KeepHeight({', '.join(step.describe() for step, _ in self.pipeline.stages)})"
