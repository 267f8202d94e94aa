"""Compile operations into executable pipelines.

A single operation compiles to::

    normalize(source) + to_geodetic(source) + core(method)
        + from_geodetic(target) + denormalize(target)

``normalize`` brings the source CRS's axis order, units and prime meridian
into canonical space; ``to_geodetic`` unprojects (or converts geocentric
X/Y/Z) to longitude/latitude radians.  Conversions have an empty core:
their work is done entirely by the CRS stages.  Concatenations chain the
pipelines of their steps.  Operations defined by a proj-string run the
string's own steps on raw input.
"""

from __future__ import annotations

import functools
import logging
from typing import TYPE_CHECKING

from coordshift.core.exceptions import CrsValidationError, OperationInvalidError, ParseError
from coordshift.models.crs import (
    BoundCrs,
    CompoundCrs,
    EngineeringCrs,
    GeocentricCrs,
    GeographicCrs,
    ProjectedCrs,
    VerticalCrs,
)
from coordshift.models.operation import ConcatenatedOperation, Conversion
from coordshift.models.units import ARC_SECOND, get_unit
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
    Pipeline,
    PrimeMeridianShift,
    Projection,
    UnitConvert,
    VerticalGridShift,
)
from coordshift.parsing import catalog

if TYPE_CHECKING:
    from coordshift.models.crs import Crs
    from coordshift.models.operation import Operation
    from coordshift.parsing.proj_string import ProjStep

logger = logging.getLogger(__name__)

_EMPTY = Pipeline()

# Geographic offsets whose parameters map straight onto GeographicOffset.
_OFFSET_METHODS = frozenset(
    {
        catalog.GEOGRAPHIC_2D_OFFSETS.code,
        catalog.GEOGRAPHIC_3D_OFFSETS.code,
        catalog.VERTICAL_OFFSET_METHOD.code,
        catalog.LONGITUDE_ROTATION.code,
    }
)

# Sign applied to the geoid undulation: H = h - N.
_GTX_MULTIPLIER = -1.0


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def compile_operation(op: Operation) -> Pipeline:
    """Return the pipeline running *op* forward.

    Raises:
        OperationInvalidError: If the method is unsupported, a parameter is
            malformed, or a stage that must run backwards has no inverse.
    """
    try:
        hash(op)
    except TypeError:
        return _compile(op)
    return _compile_cached(op)


def compile_to_lonlat(crs: Crs) -> Pipeline:
    """Pipeline taking coordinates of *crs* to Greenwich lon/lat radians."""
    return _checked(normalize(crs).then(to_geodetic(crs)), crs.name)


@functools.lru_cache(maxsize=256)
def _compile_cached(op: Operation) -> Pipeline:
    return _compile(op)


def _compile(op: Operation) -> Pipeline:
    if isinstance(op, ConcatenatedOperation):
        pipeline = Pipeline(name=op.name)
        previous = None
        for step in op.steps:
            # Steps chain on equivalent CRSs; read each step in the CRS the
            # previous step actually wrote.
            if previous is not None and previous.target_crs is not None and step.source_crs is not None:
                if step.source_crs != previous.target_crs:
                    step = step.replace(source_crs=previous.target_crs)
            pipeline = pipeline.then(compile_operation(step))
            previous = step
        return pipeline

    if op.method.name == catalog.PROJ_STRING_METHOD:
        definition = op.param("definition")
        if definition is None or not isinstance(definition.value, str):
            raise OperationInvalidError(f"Operation {op.name!r} has no proj-string definition")
        pipeline = compile_proj_string(definition.value)
        return pipeline.inverted() if op.inverted else pipeline

    source, target = op.source_crs, op.target_crs
    if source is None or target is None:
        raise OperationInvalidError(f"Operation {op.name!r} is not bound to source and target CRSs")

    if op.inverted:
        forward = op.inverse()
        core = _core(forward, forward.source_crs, forward.target_crs).inverted()
    else:
        core = _core(op, source, target)

    pipeline = (
        normalize(source)
        .then(to_geodetic(source))
        .then(core)
        .then(_reverse(to_geodetic(target)))
        .then(_reverse(normalize(target)))
    )
    logger.debug("Compiled operation | name=%s | stages=%d", op.name, len(pipeline.stages))
    return _checked(Pipeline(pipeline.stages, op.name), op.name)


def _reverse(pipeline: Pipeline) -> Pipeline:
    return Pipeline(tuple((step, not forward) for step, forward in reversed(pipeline.stages)))


def _checked(pipeline: Pipeline, name: str) -> Pipeline:
    for step, forward in pipeline.stages:
        if not forward and not step.invertible:
            raise OperationInvalidError(f"Operation {name!r} needs the inverse of {step.describe()}")
    return pipeline


# ---------------------------------------------------------------------------
# CRS stages
# ---------------------------------------------------------------------------


def _slot_factors(crs_cs, order: tuple[int, ...]) -> tuple[float, float, float]:
    axes = crs_cs.axes
    factors = []
    for entry in order:
        index = abs(entry) - 1
        factors.append(axes[index].unit.factor if index < len(axes) else 1.0)
    return tuple(factors)  # type: ignore[return-value]


def _axis_stages(cs) -> list[tuple]:
    order = cs.canonical_axis_order()
    stages: list[tuple] = []
    swap = AxisSwap(order)
    if not swap.is_identity:
        stages.append((swap, True))
    scale = UnitConvert(_slot_factors(cs, order))
    if not scale.is_identity:
        stages.append((scale, True))
    return stages


def _vertical_stages(crs: VerticalCrs) -> list[tuple]:
    order = crs.cs.canonical_axis_order()
    stages: list[tuple] = []
    swap = AxisSwap(order)
    if not swap.is_identity:
        stages.append((swap, True))
    scale = UnitConvert((1.0, 1.0, crs.cs.axes[0].unit.factor))
    if not scale.is_identity:
        stages.append((scale, True))
    return stages


def normalize(crs: Crs) -> Pipeline:
    """Stages bringing native coordinates of *crs* into canonical space."""
    if isinstance(crs, GeographicCrs):
        stages = _axis_stages(crs.cs)
        stages.append((LatitudeCheck(), True))
        pm = crs.prime_meridian
        if pm is not None and not pm.is_greenwich:
            stages.append((PrimeMeridianShift(pm.longitude * pm.unit.factor), True))
        stages.append((LongitudeWrap(), True))
        return Pipeline(tuple(stages))
    if isinstance(crs, GeocentricCrs | ProjectedCrs | EngineeringCrs):
        return Pipeline(tuple(_axis_stages(crs.cs)))
    if isinstance(crs, VerticalCrs):
        return Pipeline(tuple(_vertical_stages(crs)))
    if isinstance(crs, CompoundCrs):
        pipeline = normalize(crs.components[0])
        vertical_crs = crs.vertical_crs
        if vertical_crs is not None:
            pipeline = pipeline.then(Pipeline(tuple(_vertical_stages(vertical_crs))))
        return pipeline
    if isinstance(crs, BoundCrs):
        return normalize(crs.base_crs)
    return _EMPTY


def to_geodetic(crs: Crs) -> Pipeline:
    """Stages from canonical native space to canonical geographic space."""
    if isinstance(crs, GeocentricCrs):
        return Pipeline(((_cart(crs), False),))
    if isinstance(crs, ProjectedCrs):
        return Pipeline(((_projection(crs), False),))
    if isinstance(crs, BoundCrs):
        return to_geodetic(crs.base_crs)
    if isinstance(crs, CompoundCrs):
        return to_geodetic(crs.components[0])
    return _EMPTY


def _cart(crs: Crs) -> Cart:
    ellipsoid = crs.ellipsoid
    if ellipsoid is None:
        raise OperationInvalidError(f"CRS {crs.name!r} has no ellipsoid")
    return Cart(ellipsoid.semi_major, ellipsoid.eccentricity_squared)


@functools.lru_cache(maxsize=128)
def _projection_for(definition: str) -> Projection:
    return Projection(definition)


def _projection(crs: ProjectedCrs) -> Projection:
    from coordshift.parsing.proj_string import projection_definition

    try:
        definition = projection_definition(crs)
    except CrsValidationError as exc:
        raise OperationInvalidError(f"Projection of {crs.name!r} is not supported: {exc}") from exc
    return _projection_for(definition)


# ---------------------------------------------------------------------------
# Method cores
# ---------------------------------------------------------------------------


def _core(op: Operation, source: Crs, target: Crs) -> Pipeline:
    if isinstance(op, Conversion):
        return _EMPTY
    spec = catalog.method_spec(op.method)
    if spec is None:
        raise OperationInvalidError(f"Method {op.method.name!r} of {op.name!r} is not supported")
    if spec.proj_name == "helmert":
        return _helmert_core(op, spec, source, target)
    if spec.code == catalog.NTV2.code:
        return Pipeline(((HorizontalGridShift(_grid_names(op, "8656")), True),))
    if spec.code == catalog.GTX.code:
        return Pipeline(((VerticalGridShift(_grid_names(op, "8666"), _GTX_MULTIPLIER), True),))
    if spec.code in _OFFSET_METHODS:
        return Pipeline(
            (
                (
                    GeographicOffset(
                        dlon=_value(op, "8602"), dlat=_value(op, "8601"), dh=_value(op, "8603")
                    ),
                    True,
                ),
            )
        )
    raise OperationInvalidError(f"Method {spec.name!r} of {op.name!r} cannot be executed")


def _value(op: Operation, code: str) -> float:
    parameter = op.param(code)
    return parameter.base_value if parameter is not None else 0.0


def _grid_names(op: Operation, code: str) -> tuple[str, ...]:
    parameter = op.param(code)
    if parameter is not None and isinstance(parameter.value, str) and parameter.value:
        return tuple(name.strip() for name in parameter.value.split(",") if name.strip())
    if op.grids:
        return tuple(grid.name for grid in op.grids)
    raise OperationInvalidError(f"Operation {op.name!r} names no grid")


def _helmert_core(op: Operation, spec: catalog.MethodSpec, source: Crs, target: Crs) -> Pipeline:
    helmert = Helmert(
        translation=(_value(op, "8605"), _value(op, "8606"), _value(op, "8607")),
        rotation=(_value(op, "8608"), _value(op, "8609"), _value(op, "8610")),
        scale=_value(op, "8611"),
        convention="coordinate_frame" if spec.convention == "coordinate_frame" else "position_vector",
    )
    inner = Pipeline(((_cart(source), True), (helmert, True), (_cart(target), False)))
    keep_height = spec.domain == "geog2D" or isinstance(source, CompoundCrs) or isinstance(
        target, CompoundCrs
    )
    if keep_height:
        return Pipeline(((KeepHeight(inner), True),))
    return inner


# ---------------------------------------------------------------------------
# proj-string operations
# ---------------------------------------------------------------------------


def compile_proj_string(definition: str) -> Pipeline:
    """Compile an operation proj-string; input and output are raw numbers.

    Raises:
        OperationInvalidError: If the string is malformed or a step is unknown.
    """
    from coordshift.parsing.proj_string import parse_pipeline

    try:
        steps = parse_pipeline(definition)
        stages = tuple(_proj_step(step) for step in steps)
    except ParseError as exc:
        raise OperationInvalidError(f"Invalid proj-string {definition!r}: {exc}") from exc
    return Pipeline(stages, definition)


def _proj_step(step: ProjStep) -> tuple:
    from coordshift.parsing.proj_string import step_ellipsoid

    name = step.name
    forward = not step.inverse
    if name in ("noop", "longlat", "latlong", "lonlat", "latlon"):
        return (Identity(), forward)
    if name == "axisswap":
        order = [int(v) for v in step.numbers("order")]
        if not 2 <= len(order) <= 3:
            raise OperationInvalidError("axisswap requires +order with 2 or 3 entries")
        order += [3] if len(order) == 2 else []
        return (AxisSwap(tuple(order)), forward)  # type: ignore[arg-type]
    if name == "unitconvert":
        xy = _unit_factor(step, "xy_in") / _unit_factor(step, "xy_out")
        z = _unit_factor(step, "z_in") / _unit_factor(step, "z_out")
        return (UnitConvert((xy, xy, z)), forward)
    if name == "cart":
        ellipsoid = step_ellipsoid(step)
        return (Cart(ellipsoid.semi_major, ellipsoid.eccentricity_squared), forward)
    if name == "helmert":
        helmert = Helmert(
            translation=(step.number("x", 0.0), step.number("y", 0.0), step.number("z", 0.0)),  # type: ignore[arg-type]
            rotation=tuple(  # type: ignore[arg-type]
                (step.number(key, 0.0) or 0.0) * ARC_SECOND.factor for key in ("rx", "ry", "rz")
            ),
            scale=(step.number("s", 0.0) or 0.0) * 1e-6,
            convention=step.get("convention") or "position_vector",
        )
        return (helmert, forward)
    if name == "hgridshift":
        return (HorizontalGridShift(_step_grids(step)), forward)
    if name == "vgridshift":
        multiplier = step.number("multiplier", 1.0)
        return (VerticalGridShift(_step_grids(step), multiplier), forward)  # type: ignore[arg-type]
    if name == "geogoffset":
        return (
            GeographicOffset(
                dlon=(step.number("dlon", 0.0) or 0.0) * ARC_SECOND.factor,
                dlat=(step.number("dlat", 0.0) or 0.0) * ARC_SECOND.factor,
                dh=step.number("dh", 0.0) or 0.0,
            ),
            forward,
        )
    from coordshift.parsing.proj_string import ProjStep as _Step

    return (_projection_for(_Step(name, step.params).to_string()), forward)


def _unit_factor(step: ProjStep, key: str) -> float:
    name = step.get(key)
    if not name:
        return 1.0
    unit = get_unit(name)
    if unit is None:
        raise OperationInvalidError(f"unitconvert: unknown unit +{key}={name}")
    return unit.factor


def _step_grids(step: ProjStep) -> tuple[str, ...]:
    grids = step.get("grids")
    if not grids:
        raise OperationInvalidError(f"{step.name} requires +grids")
    return tuple(name.strip() for name in grids.split(",") if name.strip())
