"""Apply operations to coordinates.

Numeric and resource failures never raise: the failing coordinate comes
back with every component set to infinity and the first failure's
``ErrorCode`` is stored on the acting ``Context``.  Misuse (no operation,
a bad direction, the inverse of a non-invertible operation) raises at
once.

Coordinates are read and written in the axis order and units of the CRS
on the input/output side of the requested direction; nothing is
reordered implicitly.  ``normalize_for_visualization`` derives an
operation working in longitude/latitude, easting/northing order.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from typing import TYPE_CHECKING, cast

import numpy as np

from coordshift.core.constants import DEFAULT_DENSIFY_POINTS, HUGE_VAL
from coordshift.core.exceptions import ApiMisuseError, ErrorCode, OperationInvalidError
from coordshift.models.coordinate import Coordinate
from coordshift.models.crs import GeographicCrs
from coordshift.models.operation import Conversion, Direction, Operation, concatenate
from coordshift.operations.compiler import compile_operation
from coordshift.parsing import catalog

if TYPE_CHECKING:
    from coordshift.core.context import Context
    from coordshift.models.crs import Crs
    from coordshift.operations.steps import Pipeline

logger = logging.getLogger(__name__)

_INVALID_COORD = int(ErrorCode.COORD_TRANSFM_INVALID_COORD)


def _context(context: Context | None) -> Context:
    if context is not None:
        return context
    from coordshift.core.context import Context

    return Context.current()


def _direction(direction: Direction | int) -> Direction:
    if isinstance(direction, Direction):
        return direction
    try:
        return Direction(direction)
    except ValueError as exc:
        raise ApiMisuseError(f"Invalid direction {direction!r}") from exc


def _pipeline(operation: Operation, direction: Direction, ctx: Context) -> Pipeline:
    """The compiled pipeline for *direction* (never IDENTITY).

    Raises:
        ApiMisuseError: If *operation* is not an ``Operation``.
        OperationInvalidError: If the operation cannot be compiled or has
            no inverse; the context errno is set first.
    """
    if not isinstance(operation, Operation):
        ctx.set_errno(ErrorCode.OTHER_API_MISUSE)
        raise ApiMisuseError(f"Expected an Operation, got {type(operation).__name__}")
    try:
        pipeline = compile_operation(operation)
    except OperationInvalidError:
        ctx.set_errno(ErrorCode.INVALID_OP)
        raise
    if direction is Direction.FORWARD:
        return pipeline
    try:
        if not operation.has_inverse:
            raise OperationInvalidError(f"Operation {operation.name!r} has no inverse")
        return pipeline.inverted()
    except OperationInvalidError:
        ctx.set_errno(ErrorCode.OTHER_NO_INVERSE_OP)
        raise


def _run(pipeline: Pipeline, coords: np.ndarray, ctx: Context) -> np.ndarray:
    """Run *pipeline* over an ``(n, 4)`` array in place; return the failure mask."""
    codes = pipeline.run(coords, ctx)
    codes[(codes == 0) & ~np.isfinite(coords).all(axis=1)] = _INVALID_COORD
    failed = codes != 0
    if failed.any():
        coords[failed] = HUGE_VAL
        first = int(codes[np.flatnonzero(failed)[0]])
        ctx.set_errno(first)
        logger.debug(
            "Coordinates failed | operation=%s | failed=%d | errno=%s",
            pipeline.name,
            int(failed.sum()),
            ErrorCode(first).name,
        )
    return failed


# ---------------------------------------------------------------------------
# Single coordinates and batches
# ---------------------------------------------------------------------------


def apply(
    operation: Operation,
    direction: Direction | int,
    coord: Coordinate | Sequence[float],
    context: Context | None = None,
) -> Coordinate:
    """Apply *operation* to one coordinate.

    Returns an all-infinity ``Coordinate`` on numeric or grid failure,
    with the reason on ``context.errno``.

    Raises:
        ApiMisuseError: If the operation, direction or coordinate is invalid.
        OperationInvalidError: If the operation cannot run in *direction*.
    """
    ctx = _context(context)
    ctx.reset_errno()
    if operation is None:
        ctx.set_errno(ErrorCode.OTHER_API_MISUSE)
        raise ApiMisuseError("An operation is required")
    direction = _direction(direction)
    point = coord if isinstance(coord, Coordinate) else Coordinate.from_array(coord)
    if direction is Direction.IDENTITY:
        return point
    pipeline = _pipeline(operation, direction, ctx)
    coords = np.array([point], dtype=np.float64)
    _run(pipeline, coords, ctx)
    return Coordinate(*(float(v) for v in coords[0]))


def apply_batch(
    operation: Operation,
    direction: Direction | int,
    coords: Sequence[Coordinate] | np.ndarray,
    context: Context | None = None,
) -> tuple[list[Coordinate] | np.ndarray, bool]:
    """Apply *operation* to many coordinates.

    *coords* is a sequence of ``Coordinate`` (a list is returned) or an
    ``(n, 2..4)`` array (an array of the same shape is returned).  Output
    order matches input order; the flag is true when any element failed.

    Raises:
        ApiMisuseError: If the operation, direction or input shape is invalid.
        OperationInvalidError: If the operation cannot run in *direction*.
    """
    ctx = _context(context)
    ctx.reset_errno()
    if operation is None:
        ctx.set_errno(ErrorCode.OTHER_API_MISUSE)
        raise ApiMisuseError("An operation is required")
    direction = _direction(direction)

    if isinstance(coords, np.ndarray):
        array = np.asarray(coords, dtype=np.float64)
        if array.ndim != 2 or not 2 <= array.shape[1] <= 4:
            raise ApiMisuseError(f"Expected an (n, 2..4) array, got shape {array.shape}")
        width = array.shape[1]
        block = np.zeros((array.shape[0], 4), dtype=np.float64)
        block[:, :width] = array
        if direction is Direction.IDENTITY or block.shape[0] == 0:
            return block[:, :width], False
        failed = _run(_pipeline(operation, direction, ctx), block, ctx)
        return block[:, :width], bool(failed.any())

    points = [c if isinstance(c, Coordinate) else Coordinate.from_array(c) for c in coords]
    if direction is Direction.IDENTITY or not points:
        return points, False
    block = np.array(points, dtype=np.float64)
    failed = _run(_pipeline(operation, direction, ctx), block, ctx)
    return [Coordinate(*(float(v) for v in row)) for row in block], bool(failed.any())


def round_trip(
    operation: Operation,
    direction: Direction | int,
    n: int,
    coord: Coordinate | Sequence[float],
    context: Context | None = None,
) -> float:
    """Apply *operation* there and back *n* times; return the drift.

    The drift is the Euclidean distance between the original and final
    ``x, y, z``, in the units of the starting side.  A failure on the way
    returns infinity.

    Raises:
        ApiMisuseError: If *n* < 1.
        OperationInvalidError: If the operation has no inverse.
    """
    ctx = _context(context)
    ctx.reset_errno()
    if n < 1:
        ctx.set_errno(ErrorCode.OTHER_API_MISUSE)
        raise ApiMisuseError(f"round_trip needs n >= 1, got {n}")
    direction = _direction(direction)
    point = coord if isinstance(coord, Coordinate) else Coordinate.from_array(coord)
    if direction is Direction.IDENTITY:
        return 0.0
    there = _pipeline(operation, direction, ctx)
    back = _pipeline(
        operation, Direction.INVERSE if direction is Direction.FORWARD else Direction.FORWARD, ctx
    )
    start = np.array([point], dtype=np.float64)
    coords = start.copy()
    for _ in range(n):
        if _run(there, coords, ctx).any() or _run(back, coords, ctx).any():
            return HUGE_VAL
    return float(np.linalg.norm(coords[0, :3] - start[0, :3]))


def transform_bounds(
    operation: Operation,
    direction: Direction | int,
    bounds: Sequence[float],
    densify_points: int = DEFAULT_DENSIFY_POINTS,
    context: Context | None = None,
) -> tuple[float, float, float, float]:
    """Transform a ``(xmin, ymin, xmax, ymax)`` box, sampling its edges.

    Each edge is densified with *densify_points* intermediate points and
    the result is the envelope of every point that transformed.  When no
    point transforms, every bound is infinity.

    Raises:
        ApiMisuseError: If *bounds* is malformed or *densify_points* < 0.
    """
    if len(bounds) != 4:
        raise ApiMisuseError(f"bounds must be (xmin, ymin, xmax, ymax), got {bounds!r}")
    if densify_points < 0:
        raise ApiMisuseError(f"densify_points must be >= 0, got {densify_points}")
    xmin, ymin, xmax, ymax = (float(v) for v in bounds)
    if not all(math.isfinite(v) for v in (xmin, ymin, xmax, ymax)):
        raise ApiMisuseError(f"bounds must be finite, got {bounds!r}")
    count = densify_points + 2
    xs = np.linspace(xmin, xmax, count)
    ys = np.linspace(ymin, ymax, count)
    edges = np.concatenate(
        [
            np.column_stack([xs, np.full(count, ymin)]),
            np.column_stack([np.full(count, xmax), ys]),
            np.column_stack([xs[::-1], np.full(count, ymax)]),
            np.column_stack([np.full(count, xmin), ys[::-1]]),
        ]
    )
    result, _ = apply_batch(operation, direction, edges, context)
    result = cast(np.ndarray, result)
    finite = np.isfinite(result).all(axis=1)
    if not finite.any():
        return (HUGE_VAL, HUGE_VAL, HUGE_VAL, HUGE_VAL)
    good = result[finite]
    return (
        float(good[:, 0].min()),
        float(good[:, 1].min()),
        float(good[:, 0].max()),
        float(good[:, 1].max()),
    )


# ---------------------------------------------------------------------------
# Visualization order
# ---------------------------------------------------------------------------


def _axis_order_change(source: Crs, target: Crs, name: str) -> Conversion:
    three_d = isinstance(source, GeographicCrs) and source.axis_count == 3
    spec = catalog.AXIS_ORDER_REVERSAL_3D if three_d else catalog.AXIS_ORDER_REVERSAL_2D
    return Conversion(
        name=name,
        method=catalog.method_ref(spec),
        source_crs=source,
        target_crs=target,
        accuracy=0.0,
    )


def normalize_for_visualization(operation: Operation) -> Operation:
    """Derive an operation reading and writing lon/lat (easting/northing) order.

    Axis-order conversions are chained before and after *operation* where
    its source or target CRS is not already in that order.  Operations
    without CRSs are returned unchanged.
    """
    if operation is None:
        raise ApiMisuseError("An operation is required")
    source, target = operation.source_crs, operation.target_crs
    if source is None or target is None:
        return operation
    steps: list[Operation] = []
    normalized_source = source.with_normalized_axes()
    if normalized_source != source:
        steps.append(_axis_order_change(normalized_source, source, "Axis order change"))
    steps.append(operation)
    normalized_target = target.with_normalized_axes()
    if normalized_target != target:
        steps.append(_axis_order_change(target, normalized_target, "Axis order change"))
    if len(steps) == 1:
        return operation
    logger.debug(
        "Normalized for visualization | operation=%s | steps=%d", operation.name, len(steps)
    )
    return concatenate(steps, name=operation.name)
