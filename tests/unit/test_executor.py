"""Tests for ``coordshift.operations.executor``.

Covers:
- apply: forward/inverse/identity, grid shifts, geoid heights, compound targets
- Failure reporting: infinity coordinates plus context errno
- apply_batch: arrays and coordinate lists, partial failure
- round_trip drift and transform_bounds densification
- normalize_for_visualization
- API misuse
"""

from __future__ import annotations

import math
from typing import ClassVar

import numpy as np
import pytest

from coordshift.core.exceptions import ApiMisuseError, ErrorCode, OperationInvalidError
from coordshift.models.coordinate import Coordinate
from coordshift.models.operation import ConcatenatedOperation, Conversion, Direction, MethodRef, Transformation
from coordshift.operations.executor import (
    apply,
    apply_batch,
    normalize_for_visualization,
    round_trip,
    transform_bounds,
)
from coordshift.operations.resolver import create_operation
from coordshift.parsing import parse_crs, parse_operation
from tests.gridfiles import CONUS_DLAT_SECONDS, CONUS_DLON_SECONDS, GEOID_UNDULATION_M

UTM32 = (
    "+proj=pipeline +step +proj=unitconvert +xy_in=deg +xy_out=rad "
    "+step +proj=utm +zone=32 +ellps=WGS84"
)


@pytest.fixture()
def utm_op():
    return parse_operation(UTM32)


@pytest.fixture()
def wgs84_to_utm(offline_context):
    op = create_operation("EPSG:4326", "EPSG:32632", context=offline_context)
    assert op is not None
    return op


# ---------------------------------------------------------------------------
# apply
# ---------------------------------------------------------------------------


class TestApply:
    def test_proj_pipeline_forward(self, utm_op, offline_context) -> None:
        result = apply(utm_op, Direction.FORWARD, Coordinate(9.0, 0.0), offline_context)
        assert result.x == pytest.approx(500000.0, abs=1e-6)
        assert result.y == pytest.approx(0.0, abs=1e-6)
        assert offline_context.errno is ErrorCode.NONE

    def test_proj_pipeline_inverse(self, utm_op, offline_context) -> None:
        result = apply(utm_op, Direction.INVERSE, (500000.0, 0.0), offline_context)
        assert result.x == pytest.approx(9.0)
        assert result.y == pytest.approx(0.0, abs=1e-9)

    def test_integer_direction(self, utm_op, offline_context) -> None:
        result = apply(utm_op, 1, (9.0, 0.0), offline_context)
        assert result.x == pytest.approx(500000.0, abs=1e-6)

    def test_identity_returns_input(self, utm_op, offline_context) -> None:
        result = apply(utm_op, Direction.IDENTITY, (1.0, 2.0, 3.0), offline_context)
        assert result == Coordinate(1.0, 2.0, 3.0, 0.0)

    def test_epsg_axis_order(self, wgs84_to_utm, offline_context) -> None:
        result = apply(wgs84_to_utm, Direction.FORWARD, Coordinate(0.0, 9.0), offline_context)
        assert result.x == pytest.approx(500000.0, abs=1e-6)
        assert result.y == pytest.approx(0.0, abs=1e-6)

    def test_time_passes_through(self, wgs84_to_utm, offline_context) -> None:
        result = apply(wgs84_to_utm, Direction.FORWARD, Coordinate(45.0, 9.0, 10.0, 2024.5), offline_context)
        assert result.t == 2024.5

    def test_ntv2_shift(self, context) -> None:
        op = parse_operation("EPSG:1241", context)
        result = apply(op, Direction.FORWARD, Coordinate(40.0, -100.0), context)
        assert result.x == pytest.approx(40.0 + CONUS_DLAT_SECONDS / 3600.0, abs=1e-10)
        assert result.y == pytest.approx(-100.0 + CONUS_DLON_SECONDS / 3600.0, abs=1e-10)

    def test_ntv2_inverse(self, context) -> None:
        op = parse_operation("EPSG:1241", context)
        shifted = Coordinate(40.0 + CONUS_DLAT_SECONDS / 3600.0, -100.0 + CONUS_DLON_SECONDS / 3600.0)
        result = apply(op, Direction.INVERSE, shifted, context)
        assert result.x == pytest.approx(40.0, abs=1e-10)
        assert result.y == pytest.approx(-100.0, abs=1e-10)

    def test_geoid_height(self, context) -> None:
        op = parse_operation("EPSG:10084", context)
        result = apply(op, Direction.FORWARD, Coordinate(45.0, 9.0, 100.0), context)
        assert result.z == pytest.approx(100.0 - GEOID_UNDULATION_M)

    def test_compound_target(self, context) -> None:
        op = create_operation("EPSG:4979", "EPSG:4326+5773", context=context)
        assert op is not None
        result = apply(op, Direction.FORWARD, Coordinate(45.0, 9.0, 100.0), context)
        assert result.x == pytest.approx(45.0)
        assert result.y == pytest.approx(9.0)
        assert result.z == pytest.approx(100.0 - GEOID_UNDULATION_M)

    def test_bound_crs_source(self, offline_context) -> None:
        source = parse_crs("+proj=longlat +ellps=clrk66 +towgs84=-8,160,176 +type=crs")
        op = create_operation(source, "EPSG:4326", context=offline_context)
        assert op is not None
        result = apply(op, Direction.FORWARD, Coordinate(-100.0, 40.0), offline_context)
        assert result.x == pytest.approx(40.0, abs=0.01)
        assert result.y == pytest.approx(-100.0, abs=0.01)
        assert (result.x, result.y) != (40.0, -100.0)

    def test_bound_crs_target(self, offline_context) -> None:
        target = parse_crs("+proj=longlat +ellps=clrk66 +towgs84=-8,160,176 +type=crs")
        op = create_operation("EPSG:4326", target, context=offline_context)
        assert op is not None
        assert op.target_crs == target
        result = apply(op, Direction.FORWARD, Coordinate(40.0, -100.0), offline_context)
        assert result.x == pytest.approx(-100.0, abs=0.01)
        assert result.y == pytest.approx(40.0, abs=0.01)
        assert (result.x, result.y) != (-100.0, 40.0)


class TestApplyFailures:
    def test_missing_grid_gives_infinity(self, offline_context) -> None:
        op = parse_operation("EPSG:1241", offline_context)
        result = apply(op, Direction.FORWARD, Coordinate(40.0, -100.0), offline_context)
        assert result.is_error
        assert all(math.isinf(v) for v in result)
        assert offline_context.errno is ErrorCode.COORD_TRANSFM_OUTSIDE_GRID

    def test_invalid_latitude(self, wgs84_to_utm, offline_context) -> None:
        result = apply(wgs84_to_utm, Direction.FORWARD, Coordinate(95.0, 9.0), offline_context)
        assert result.is_error
        assert offline_context.errno is ErrorCode.COORD_TRANSFM_INVALID_COORD

    def test_errno_reset_on_success(self, wgs84_to_utm, offline_context) -> None:
        apply(wgs84_to_utm, Direction.FORWARD, Coordinate(95.0, 9.0), offline_context)
        apply(wgs84_to_utm, Direction.FORWARD, Coordinate(45.0, 9.0), offline_context)
        assert offline_context.errno is ErrorCode.NONE

    def test_missing_operation(self, offline_context) -> None:
        with pytest.raises(ApiMisuseError, match="An operation is required"):
            apply(None, Direction.FORWARD, (0.0, 0.0), offline_context)
        assert offline_context.errno is ErrorCode.OTHER_API_MISUSE

    def test_not_an_operation(self, offline_context) -> None:
        with pytest.raises(ApiMisuseError, match="Expected an Operation"):
            apply("EPSG:1241", Direction.FORWARD, (0.0, 0.0), offline_context)
        assert offline_context.errno is ErrorCode.OTHER_API_MISUSE

    def test_invalid_direction(self, utm_op, offline_context) -> None:
        with pytest.raises(ApiMisuseError, match="Invalid direction"):
            apply(utm_op, 5, (0.0, 0.0), offline_context)

    def test_bad_coordinate_length(self, utm_op, offline_context) -> None:
        with pytest.raises(ApiMisuseError):
            apply(utm_op, Direction.FORWARD, (1.0,), offline_context)

    def test_uncompilable_operation(self, offline_context) -> None:
        crs = parse_crs("EPSG:4326", offline_context)
        op = Transformation(name="mystery", method=MethodRef("Made-up method"), source_crs=crs, target_crs=crs)
        with pytest.raises(OperationInvalidError):
            apply(op, Direction.FORWARD, (0.0, 0.0), offline_context)
        assert offline_context.errno is ErrorCode.INVALID_OP

    def test_no_inverse(self, offline_context) -> None:
        crs = parse_crs("EPSG:4326", offline_context)
        op = Conversion(name="one-way", method=MethodRef("Made-up method"), source_crs=crs, target_crs=crs)
        with pytest.raises(OperationInvalidError, match="has no inverse"):
            apply(op, Direction.INVERSE, (0.0, 0.0), offline_context)
        assert offline_context.errno is ErrorCode.OTHER_NO_INVERSE_OP


# ---------------------------------------------------------------------------
# apply_batch
# ---------------------------------------------------------------------------


class TestApplyBatch:
    def test_array_shape_preserved(self, utm_op, offline_context) -> None:
        coords = np.array([[9.0, 0.0], [9.0, 10.0]])
        result, failed = apply_batch(utm_op, Direction.FORWARD, coords, offline_context)
        assert isinstance(result, np.ndarray)
        assert result.shape == (2, 2)
        assert not failed
        assert result[0, 0] == pytest.approx(500000.0, abs=1e-6)
        assert result[1, 1] > 1_000_000.0

    def test_input_not_modified(self, utm_op, offline_context) -> None:
        coords = np.array([[9.0, 0.0, 1.0]])
        apply_batch(utm_op, Direction.FORWARD, coords, offline_context)
        assert coords.tolist() == [[9.0, 0.0, 1.0]]

    def test_partial_failure(self, wgs84_to_utm, offline_context) -> None:
        coords = np.array([[45.0, 9.0], [95.0, 9.0], [-45.0, 9.0]])
        result, failed = apply_batch(wgs84_to_utm, Direction.FORWARD, coords, offline_context)
        assert failed
        assert np.isinf(result[1]).all()
        assert np.isfinite(result[[0, 2]]).all()
        assert offline_context.errno is ErrorCode.COORD_TRANSFM_INVALID_COORD

    def test_coordinate_list(self, utm_op, offline_context) -> None:
        result, failed = apply_batch(
            utm_op, Direction.FORWARD, [Coordinate(9.0, 0.0), (9.0, 0.0, 5.0)], offline_context
        )
        assert isinstance(result, list)
        assert all(isinstance(c, Coordinate) for c in result)
        assert result[1].z == 5.0
        assert not failed

    def test_empty_inputs(self, utm_op, offline_context) -> None:
        result, failed = apply_batch(utm_op, Direction.FORWARD, np.zeros((0, 3)), offline_context)
        assert result.shape == (0, 3)
        assert not failed
        assert apply_batch(utm_op, Direction.FORWARD, [], offline_context) == ([], False)

    @pytest.mark.parametrize("shape", [(3,), (2, 1), (2, 5)])
    def test_bad_shape(self, utm_op, offline_context, shape: tuple[int, ...]) -> None:
        with pytest.raises(ApiMisuseError, match="Expected an"):
            apply_batch(utm_op, Direction.FORWARD, np.zeros(shape), offline_context)

    def test_missing_operation(self, offline_context) -> None:
        with pytest.raises(ApiMisuseError):
            apply_batch(None, Direction.FORWARD, np.zeros((1, 2)), offline_context)


# ---------------------------------------------------------------------------
# round_trip and transform_bounds
# ---------------------------------------------------------------------------


class TestRoundTrip:
    def test_small_drift(self, utm_op, offline_context) -> None:
        drift = round_trip(utm_op, Direction.FORWARD, 10, Coordinate(9.5, 45.0), offline_context)
        assert 0.0 <= drift < 1e-9

    def test_inverse_direction_in_metres(self, utm_op, offline_context) -> None:
        drift = round_trip(utm_op, Direction.INVERSE, 3, (500000.0, 5000000.0), offline_context)
        assert drift < 1e-6

    def test_identity_is_zero(self, utm_op, offline_context) -> None:
        assert round_trip(utm_op, Direction.IDENTITY, 1, (1.0, 2.0), offline_context) == 0.0

    def test_failure_is_infinite(self, offline_context) -> None:
        op = parse_operation("EPSG:1241", offline_context)
        assert math.isinf(round_trip(op, Direction.FORWARD, 1, (40.0, -100.0), offline_context))

    @pytest.mark.parametrize("n", [0, -3])
    def test_needs_positive_count(self, utm_op, offline_context, n: int) -> None:
        with pytest.raises(ApiMisuseError, match="n >= 1"):
            round_trip(utm_op, Direction.FORWARD, n, (9.0, 0.0), offline_context)


class TestTransformBounds:
    def test_envelope(self, utm_op, offline_context) -> None:
        xmin, ymin, xmax, ymax = transform_bounds(
            utm_op, Direction.FORWARD, (6.0, 0.0, 12.0, 10.0), context=offline_context
        )
        assert xmin < 500000.0 < xmax
        assert ymin == pytest.approx(0.0, abs=1e-6)
        assert ymax > 1_000_000.0

    def test_densify_catches_curved_edges(self, utm_op, offline_context) -> None:
        bounds = (6.0, 40.0, 12.0, 50.0)
        corners = transform_bounds(utm_op, Direction.FORWARD, bounds, densify_points=0, context=offline_context)
        dense = transform_bounds(utm_op, Direction.FORWARD, bounds, densify_points=50, context=offline_context)
        assert dense[1] < corners[1]

    def test_nothing_transforms(self, offline_context) -> None:
        op = parse_operation("EPSG:1241", offline_context)
        result = transform_bounds(op, Direction.FORWARD, (30.0, -110.0, 40.0, -100.0), context=offline_context)
        assert all(math.isinf(v) for v in result)

    BAD_BOUNDS: ClassVar[list[tuple[tuple[float, ...], int, str]]] = [
        ((0.0, 0.0, 1.0), 21, "bounds must be"),
        ((0.0, 0.0, 1.0, 1.0), -1, "densify_points"),
        ((0.0, math.nan, 1.0, 1.0), 21, "finite"),
    ]

    @pytest.mark.parametrize(("bounds", "densify", "message"), BAD_BOUNDS)
    def test_rejects(
        self, utm_op, offline_context, bounds: tuple[float, ...], densify: int, message: str
    ) -> None:
        with pytest.raises(ApiMisuseError, match=message):
            transform_bounds(utm_op, Direction.FORWARD, bounds, densify, offline_context)


# ---------------------------------------------------------------------------
# normalize_for_visualization
# ---------------------------------------------------------------------------


class TestNormalizeForVisualization:
    def test_lat_first_source_wrapped(self, wgs84_to_utm, offline_context) -> None:
        normalized = normalize_for_visualization(wgs84_to_utm)
        assert isinstance(normalized, ConcatenatedOperation)
        assert len(normalized.steps) == 2
        assert normalized.name == wgs84_to_utm.name
        result = apply(normalized, Direction.FORWARD, Coordinate(9.0, 0.0), offline_context)
        assert result.x == pytest.approx(500000.0, abs=1e-6)

    def test_both_sides_wrapped(self, offline_context) -> None:
        op = parse_operation("EPSG:1241", offline_context)
        normalized = normalize_for_visualization(op)
        assert len(normalized.steps) == 3
        assert normalized.source_crs is not None and normalized.source_crs.cs.is_east_first()
        assert normalized.target_crs is not None and normalized.target_crs.cs.is_east_first()

    def test_operation_without_crs_unchanged(self, utm_op) -> None:
        assert normalize_for_visualization(utm_op) is utm_op

    def test_already_normalized_unchanged(self, wgs84_to_utm) -> None:
        once = normalize_for_visualization(wgs84_to_utm)
        assert normalize_for_visualization(once) is once

    def test_missing_operation(self) -> None:
        with pytest.raises(ApiMisuseError):
            normalize_for_visualization(None)
