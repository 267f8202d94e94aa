"""Tests for ``coordshift.operations.compiler``.

Covers:
- CRS normalisation stages (axis order, units, prime meridian)
- Method cores: NTv2, GTX, Helmert, offsets, conversions
- Inverted and concatenated operations
- proj-string pipelines and their errors
- Compilation errors for unbound and unsupported operations
"""

from __future__ import annotations

from typing import ClassVar

import pytest

from coordshift.core.constants import ARCSEC_TO_RAD, DEG_TO_RAD
from coordshift.core.exceptions import OperationInvalidError
from coordshift.models.operation import Conversion, MethodRef, Transformation, concatenate
from coordshift.models.units import ARC_SECOND
from coordshift.operations.compiler import (
    compile_operation,
    compile_proj_string,
    compile_to_lonlat,
    normalize,
    to_geodetic,
)
from coordshift.operations.steps import (
    AxisSwap,
    Cart,
    GeographicOffset,
    Helmert,
    HorizontalGridShift,
    Identity,
    KeepHeight,
    LatitudeCheck,
    LongitudeWrap,
    PrimeMeridianShift,
    Projection,
    UnitConvert,
    VerticalGridShift,
)
from coordshift.parsing import catalog, parse_crs, parse_operation


def _kinds(pipeline) -> list[str]:
    return [type(step).__name__ for step, _ in pipeline.stages]


def _core_stage(pipeline, kind: type):
    return next((step, forward) for step, forward in pipeline.stages if isinstance(step, kind))


# ---------------------------------------------------------------------------
# CRS stages
# ---------------------------------------------------------------------------


class TestNormalize:
    def test_lat_first_geographic(self, offline_context) -> None:
        pipeline = normalize(parse_crs("EPSG:4326", offline_context))
        assert _kinds(pipeline) == ["AxisSwap", "UnitConvert", "LatitudeCheck", "LongitudeWrap"]
        swap = pipeline.stages[0][0]
        assert swap == AxisSwap((2, 1, 3))
        scale = pipeline.stages[1][0]
        assert scale.factors == pytest.approx((DEG_TO_RAD, DEG_TO_RAD, 1.0))

    def test_lon_first_with_prime_meridian(self) -> None:
        crs = parse_crs("+proj=longlat +ellps=clrk80ign +pm=paris +type=crs")
        pipeline = normalize(crs)
        assert _kinds(pipeline) == ["UnitConvert", "LatitudeCheck", "PrimeMeridianShift", "LongitudeWrap"]
        shift = pipeline.stages[2][0]
        assert isinstance(shift, PrimeMeridianShift)
        assert shift.offset == pytest.approx(2.33722917 * DEG_TO_RAD)

    def test_projected_metres_need_nothing(self, offline_context) -> None:
        assert normalize(parse_crs("EPSG:32632", offline_context)).stages == ()

    def test_vertical_feet(self) -> None:
        crs = parse_crs(
            'VERTCRS["NGVD29 height (ftUS)",VDATUM["National Geodetic Vertical Datum 1929"],'
            'CS[vertical,1],AXIS["gravity-related height (H)",up,'
            'LENGTHUNIT["US survey foot",0.304800609601219]]]'
        )
        pipeline = normalize(crs)
        assert _kinds(pipeline) == ["UnitConvert"]
        assert pipeline.stages[0][0].factors[2] == pytest.approx(0.304800609601219)

    def test_compound_combines_components(self, offline_context) -> None:
        pipeline = normalize(parse_crs("EPSG:4326+5773", offline_context))
        assert _kinds(pipeline)[:4] == ["AxisSwap", "UnitConvert", "LatitudeCheck", "LongitudeWrap"]


class TestToGeodetic:
    def test_geographic_is_empty(self, offline_context) -> None:
        assert to_geodetic(parse_crs("EPSG:4326", offline_context)).stages == ()

    def test_geocentric_runs_cart_backwards(self, offline_context) -> None:
        (step, forward), = to_geodetic(parse_crs("EPSG:4978", offline_context)).stages
        assert isinstance(step, Cart)
        assert step.semi_major == 6378137.0
        assert forward is False

    def test_projected_runs_projection_backwards(self, offline_context) -> None:
        (step, forward), = to_geodetic(parse_crs("EPSG:32632", offline_context)).stages
        assert isinstance(step, Projection)
        assert forward is False

    def test_compile_to_lonlat(self, offline_context) -> None:
        pipeline = compile_to_lonlat(parse_crs("EPSG:32632", offline_context))
        assert _kinds(pipeline) == ["Projection"]


# ---------------------------------------------------------------------------
# Method cores
# ---------------------------------------------------------------------------


class TestOperationCores:
    def test_ntv2(self, offline_context) -> None:
        pipeline = compile_operation(parse_operation("EPSG:1241", offline_context))
        step, forward = _core_stage(pipeline, HorizontalGridShift)
        assert step.grids == ("conus",)
        assert forward is True
        assert pipeline.name == "NAD27 to NAD83 (1)"

    def test_gtx_subtracts_undulation(self, offline_context) -> None:
        pipeline = compile_operation(parse_operation("EPSG:10084", offline_context))
        step, _ = _core_stage(pipeline, VerticalGridShift)
        assert step.grids == ("egm96_15.gtx",)
        assert step.multiplier == -1.0

    def test_geocentric_translation_keeps_height(self, offline_context) -> None:
        pipeline = compile_operation(parse_operation("EPSG:1173", offline_context))
        step, _ = _core_stage(pipeline, KeepHeight)
        kinds = [type(s).__name__ for s, _ in step.pipeline.stages]
        assert kinds == ["Cart", "Helmert", "Cart"]
        helmert = step.pipeline.stages[1][0]
        assert helmert.translation == (-8.0, 160.0, 176.0)

    def test_coordinate_frame_rotation_units(self, offline_context) -> None:
        pipeline = compile_operation(parse_operation("EPSG:1240", offline_context))
        keep, _ = _core_stage(pipeline, KeepHeight)
        helmert = keep.pipeline.stages[1][0]
        assert isinstance(helmert, Helmert)
        assert helmert.convention == "coordinate_frame"
        assert helmert.rotation[0] == pytest.approx(0.23 * ARCSEC_TO_RAD)
        assert helmert.scale == pytest.approx(0.0983e-6)

    def test_position_vector_convention(self, offline_context) -> None:
        pipeline = compile_operation(parse_operation("EPSG:1650", offline_context))
        keep, _ = _core_stage(pipeline, KeepHeight)
        assert keep.pipeline.stages[1][0].convention == "position_vector"

    def test_inverted_operation(self, offline_context) -> None:
        op = parse_operation("EPSG:1241", offline_context).inverse()
        pipeline = compile_operation(op)
        _, forward = _core_stage(pipeline, HorizontalGridShift)
        assert forward is False
        assert pipeline.name == op.name

    def test_geographic_offsets(self, offline_context) -> None:
        crs = parse_crs("EPSG:4326", offline_context)
        spec = catalog.GEOGRAPHIC_2D_OFFSETS
        op = Transformation(
            name="offset",
            method=catalog.method_ref(spec),
            parameters=(
                catalog.parameter(catalog.LATITUDE_OFFSET, 3600.0, ARC_SECOND),
                catalog.parameter(catalog.LONGITUDE_OFFSET, -1800.0, ARC_SECOND),
            ),
            source_crs=crs,
            target_crs=crs,
        )
        step, _ = _core_stage(compile_operation(op), GeographicOffset)
        assert step.dlat == pytest.approx(DEG_TO_RAD)
        assert step.dlon == pytest.approx(-0.5 * DEG_TO_RAD)

    def test_conversion_has_no_core(self, offline_context) -> None:
        geographic = parse_crs("EPSG:4326", offline_context)
        op = Conversion(
            name="swap",
            method=catalog.method_ref(catalog.AXIS_ORDER_REVERSAL_2D),
            source_crs=geographic,
            target_crs=geographic.with_normalized_axes(),
        )
        kinds = _kinds(compile_operation(op))
        assert "HorizontalGridShift" not in kinds
        assert kinds.count("AxisSwap") == 1

    def test_compiled_pipelines_are_cached(self, offline_context) -> None:
        op = parse_operation("EPSG:1241", offline_context)
        assert compile_operation(op) is compile_operation(op)


class TestConcatenated:
    def test_chains_step_pipelines(self, offline_context) -> None:
        first = parse_operation("EPSG:1241", offline_context)
        second = parse_operation("EPSG:1188", offline_context)
        pipeline = compile_operation(concatenate([first, second]))
        kinds = _kinds(pipeline)
        assert kinds.index("HorizontalGridShift") < kinds.index("KeepHeight")
        assert pipeline.name == "NAD27 to NAD83 (1) + NAD83 to WGS 84 (1)"


class TestCompileErrors:
    def test_unbound_operation(self) -> None:
        op = Transformation(name="loose", method=catalog.method_ref(catalog.NTV2))
        with pytest.raises(OperationInvalidError, match="is not bound to source and target CRSs"):
            compile_operation(op)

    def test_unknown_method(self, offline_context) -> None:
        crs = parse_crs("EPSG:4326", offline_context)
        op = Transformation(name="mystery", method=MethodRef("Made-up method"), source_crs=crs, target_crs=crs)
        with pytest.raises(OperationInvalidError, match="is not supported"):
            compile_operation(op)

    def test_projection_method_as_transformation(self, offline_context) -> None:
        crs = parse_crs("EPSG:4326", offline_context)
        op = Transformation(
            name="odd",
            method=catalog.method_ref(catalog.TRANSVERSE_MERCATOR),
            source_crs=crs,
            target_crs=crs,
        )
        with pytest.raises(OperationInvalidError, match="cannot be executed"):
            compile_operation(op)


# ---------------------------------------------------------------------------
# proj-string pipelines
# ---------------------------------------------------------------------------


class TestCompileProjString:
    def test_axisswap_and_unitconvert(self) -> None:
        pipeline = compile_proj_string(
            "+proj=pipeline +step +proj=axisswap +order=2,1 "
            "+step +proj=unitconvert +xy_in=deg +xy_out=rad"
        )
        (swap, _), (scale, _) = pipeline.stages
        assert swap == AxisSwap((2, 1, 3))
        assert scale.factors == pytest.approx((DEG_TO_RAD, DEG_TO_RAD, 1.0))

    def test_inverse_step(self) -> None:
        pipeline = compile_proj_string(
            "+proj=pipeline +step +inv +proj=unitconvert +xy_in=deg +xy_out=rad +step +proj=noop"
        )
        (scale, forward), (noop, _) = pipeline.stages
        assert isinstance(scale, UnitConvert)
        assert forward is False
        assert isinstance(noop, Identity)

    def test_helmert_units(self) -> None:
        (step, _), = compile_proj_string("+proj=helmert +x=1 +y=2 +z=3 +rz=1 +s=2").stages
        assert isinstance(step, Helmert)
        assert step.translation == (1.0, 2.0, 3.0)
        assert step.rotation[2] == pytest.approx(ARCSEC_TO_RAD)
        assert step.scale == pytest.approx(2e-6)
        assert step.convention == "position_vector"

    def test_grid_steps(self) -> None:
        pipeline = compile_proj_string(
            "+proj=pipeline +step +proj=hgridshift +grids=@a.gsb,b.gsb "
            "+step +proj=vgridshift +grids=egm96_15.gtx +multiplier=-1"
        )
        (hgrid, _), (vgrid, _) = pipeline.stages
        assert hgrid.grids == ("@a.gsb", "b.gsb")
        assert vgrid.multiplier == -1.0

    def test_geogoffset_arc_seconds(self) -> None:
        (step, _), = compile_proj_string("+proj=geogoffset +dlat=3600 +dh=5").stages
        assert step.dlat == pytest.approx(DEG_TO_RAD)
        assert step.dh == 5.0

    def test_cart(self) -> None:
        (step, _), = compile_proj_string("+proj=cart +ellps=GRS80").stages
        assert step.semi_major == 6378137.0

    def test_other_steps_become_projections(self) -> None:
        (step, _), = compile_proj_string("+proj=merc +ellps=WGS84").stages
        assert isinstance(step, Projection)

    def test_latitude_check_not_added(self) -> None:
        pipeline = compile_proj_string("+proj=unitconvert +xy_in=deg +xy_out=rad")
        assert not any(isinstance(step, LatitudeCheck | LongitudeWrap) for step, _ in pipeline.stages)

    ERRORS: ClassVar[list[tuple[str, str]]] = [
        ("+proj=hgridshift", "requires \\+grids"),
        ("+proj=unitconvert +xy_in=furlong", "unknown unit"),
        ("+proj=axisswap +order=1", "2 or 3 entries"),
        ("+proj=pipeline", "Invalid proj-string"),
    ]

    @pytest.mark.parametrize(("definition", "message"), ERRORS)
    def test_errors(self, definition: str, message: str) -> None:
        with pytest.raises(OperationInvalidError, match=message):
            compile_proj_string(definition)

    def test_proj_operation_compiles_from_definition(self) -> None:
        op = parse_operation("+proj=pipeline +step +proj=unitconvert +xy_in=deg +xy_out=rad")
        assert _kinds(compile_operation(op)) == ["UnitConvert"]
