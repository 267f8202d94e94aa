"""proj-string parsing and serialisation.

A proj-string is a whitespace separated list of ``+key=value`` and
``+flag`` tokens (the leading ``+`` is optional).  With ``+type=crs`` it
describes a CRS; without it, an operation, possibly a
``+proj=pipeline +step ... +step ...`` chain.

Parsing a CRS yields ``ProjParseResult(crs, warnings)``: grammar errors
(unknown datum or ellipsoid, missing UTM zone, malformed tokens) raise
``ParseError``; recoverable issues are collected as warnings.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, NamedTuple

from coordshift.core.exceptions import CrsValidationError, ParseError
from coordshift.models.coordinate_system import (
    AxisDirection,
    AxisInfo,
    CoordinateSystem,
    CsType,
    cartesian_3d_geocentric,
    ellipsoidal_2d,
)
from coordshift.models.crs import (
    BoundCrs,
    CompoundCrs,
    GeocentricCrs,
    GeographicCrs,
    ProjectedCrs,
    VerticalCrs,
    wgs84_geographic,
)
from coordshift.models.datum import (
    GeodeticDatum,
    ProjDatum,
    find_proj_datum,
    get_proj_datum,
)
from coordshift.models.ellipsoid import (
    Ellipsoid,
    PrimeMeridian,
    get_ellipsoid,
    get_prime_meridian,
    list_ellipsoids,
)
from coordshift.models.operation import Conversion, MethodRef, Parameter
from coordshift.models.units import DEGREE, METRE, Unit, UnitKind, get_unit, unit_from_factor
from coordshift.parsing import catalog

if TYPE_CHECKING:
    from coordshift.models.crs import Crs
    from coordshift.models.operation import Operation

logger = logging.getLogger(__name__)

GEOGRAPHIC_NAMES = frozenset({"longlat", "latlong", "lonlat", "latlon"})
GEOCENTRIC_NAMES = frozenset({"geocent", "cart"})

PROJ_OPERATION_NAME = "PROJ-based coordinate operation"
UNKNOWN = "unknown"

# Keys describing the CRS itself rather than projection parameters.
_CRS_KEYS = frozenset(
    {
        "proj", "type", "datum", "ellps", "a", "b", "rf", "f", "R", "es", "e",
        "pm", "units", "to_meter", "vunits", "vto_meter", "axis", "towgs84",
        "nadgrids", "no_defs", "wktext", "over", "geoc", "zone", "south",
        "geoidgrids", "lon_wrap", "title",
    }
)  # fmt: skip

_UTM_SCALE = 0.9996
_UTM_FALSE_EASTING = 500000.0
_UTM_FALSE_NORTHING_SOUTH = 10000000.0


# ---------------------------------------------------------------------------
# Tokens and pipelines
# ---------------------------------------------------------------------------


Token = tuple[str, "str | None"]


def tokenize(text: str) -> list[Token]:
    """Split a proj-string into ``(key, value)`` tokens (``value`` None for flags)."""
    tokens: list[Token] = []
    for raw in text.split():
        item = raw[1:] if raw.startswith("+") else raw
        if not item:
            continue
        key, sep, value = item.partition("=")
        if not key:
            raise ParseError(grammar_errors=[f"Malformed proj-string token {raw!r}"])
        tokens.append((key, value if sep else None))
    if not tokens:
        raise ParseError(grammar_errors=["Empty proj-string"])
    return tokens


def is_proj_string(text: str) -> bool:
    return any(key == "proj" for key, _ in _safe_tokens(text))


def is_crs_definition(text: str) -> bool:
    return ("type", "crs") in _safe_tokens(text)


def _safe_tokens(text: str) -> list[Token]:
    try:
        return tokenize(text)
    except ParseError:
        return []


@dataclass(frozen=True, slots=True)
class ProjStep:
    """One step of a proj pipeline: an operation name, its parameters and direction."""

    name: str
    params: tuple[Token, ...] = ()
    inverse: bool = False

    def get(self, key: str, default: str | None = None) -> str | None:
        for name, value in self.params:
            if name == key:
                return value if value is not None else ""
        return default

    def has(self, key: str) -> bool:
        return any(name == key for name, _ in self.params)

    def number(self, key: str, default: float | None = None) -> float | None:
        value = self.get(key)
        if value is None or value == "":
            return default
        try:
            return float(value)
        except ValueError as exc:
            raise ParseError(
                grammar_errors=[f"+{key}={value} is not a number in step {self.name!r}"]
            ) from exc

    def numbers(self, key: str) -> tuple[float, ...]:
        value = self.get(key)
        if not value:
            return ()
        try:
            return tuple(float(v) for v in value.split(","))
        except ValueError as exc:
            raise ParseError(grammar_errors=[f"+{key}={value} is not a number list"]) from exc

    def toggled(self) -> ProjStep:
        return ProjStep(self.name, self.params, not self.inverse)

    def to_string(self) -> str:
        parts = [f"+proj={self.name}"]
        if self.inverse:
            parts.append("+inv")
        parts.extend(_format_token(k, v) for k, v in self.params)
        return " ".join(parts)


def _format_token(key: str, value: str | None) -> str:
    return f"+{key}" if value is None else f"+{key}={value}"


def parse_pipeline(text: str) -> list[ProjStep]:
    """Parse an operation proj-string into its steps.

    A pipeline's global options (tokens before the first ``+step``) are
    appended to every step.  A top-level ``+inv`` reverses the pipeline.

    Raises:
        ParseError: On malformed tokens, a missing ``+proj``, ``+step``
            outside a pipeline or a nested pipeline.
    """
    tokens = tokenize(text)
    proj = next((value for key, value in tokens if key == "proj"), None)
    if proj != "pipeline":
        if any(key == "step" for key, _ in tokens):
            raise ParseError(grammar_errors=["+step is only allowed in a pipeline"])
        return [_make_step(tokens, ())]

    chunks: list[list[Token]] = [[]]
    for token in tokens:
        if token[0] == "step":
            chunks.append([])
        else:
            chunks[-1].append(token)
    head = [t for t in chunks[0] if t != ("proj", "pipeline")]
    pipeline_inverse = any(key == "inv" for key, _ in head)
    globals_ = tuple(t for t in head if t[0] not in ("inv", "type"))
    if len(chunks) < 2:
        raise ParseError(grammar_errors=["Pipeline has no +step"])
    steps = [_make_step(chunk, globals_) for chunk in chunks[1:]]
    if pipeline_inverse:
        steps = [step.toggled() for step in reversed(steps)]
    return steps


def _make_step(tokens: list[Token], globals_: tuple[Token, ...]) -> ProjStep:
    names = [value for key, value in tokens if key == "proj"]
    if len(names) != 1 or not names[0]:
        raise ParseError(grammar_errors=["Each step needs exactly one +proj=<name>"])
    name = names[0]
    if name == "pipeline":
        raise ParseError(grammar_errors=["Nested pipelines are not supported"])
    inverse = any(key == "inv" for key, _ in tokens)
    own = [t for t in tokens if t[0] not in ("proj", "inv")]
    own_keys = {key for key, _ in own}
    params = tuple(own) + tuple(t for t in globals_ if t[0] not in own_keys)
    return ProjStep(name, params, inverse)


def pipeline_has_inverse(text: str) -> bool:
    try:
        steps = parse_pipeline(text)
    except ParseError:
        return False
    return all(step.name not in catalog.NON_INVERTIBLE_PROJECTIONS for step in steps)


def parse_proj_operation(text: str) -> Operation:
    """Parse an operation proj-string into a ``Conversion`` holding its definition."""
    steps = parse_pipeline(text)
    if len(steps) == 1:
        definition = steps[0].to_string()
    else:
        definition = " ".join(["+proj=pipeline", *(f"+step {s.to_string()}" for s in steps)])
    return Conversion(
        name=PROJ_OPERATION_NAME,
        method=MethodRef(catalog.PROJ_STRING_METHOD),
        parameters=(Parameter("definition", definition),),
    )


# ---------------------------------------------------------------------------
# CRS parsing
# ---------------------------------------------------------------------------


class ProjParseResult(NamedTuple):
    crs: Crs
    warnings: list[str]


@dataclass
class _CrsBuilder:
    step: ProjStep
    warnings: list[str] = field(default_factory=list)
    _datum: tuple[GeodeticDatum, ProjDatum | None] | None = None

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    # -- datum ----------------------------------------------------------------

    def ellipsoid(self) -> Ellipsoid:
        step = self.step
        if step.has("R"):
            return Ellipsoid.sphere(UNKNOWN, _positive(step, "R"))
        if step.has("a"):
            a = _positive(step, "a")
            if step.has("b"):
                return Ellipsoid(UNKNOWN, a, semi_minor=_positive(step, "b"))
            if step.has("rf"):
                return Ellipsoid(UNKNOWN, a, inverse_flattening=step.number("rf"))
            if step.has("f"):
                f = step.number("f") or 0.0
                return Ellipsoid(UNKNOWN, a, inverse_flattening=0.0 if f == 0 else 1.0 / f)
            self.warn("+a given without +b, +rf or +f: assuming a sphere")
            return Ellipsoid.sphere(UNKNOWN, a)
        ellps = step.get("ellps")
        if ellps:
            ellipsoid = get_ellipsoid(ellps)
            if ellipsoid is None:
                raise ParseError(grammar_errors=[f"Unknown ellipsoid +ellps={ellps}"])
            return ellipsoid
        self.warn("No ellipsoid given: assuming GRS80")
        return get_ellipsoid("GRS80")  # type: ignore[return-value]

    def prime_meridian(self) -> PrimeMeridian:
        from coordshift.models.ellipsoid import GREENWICH

        pm = self.step.get("pm")
        if not pm:
            return GREENWICH
        known = get_prime_meridian(pm)
        if known is not None:
            return known
        try:
            return PrimeMeridian(UNKNOWN, float(pm))
        except ValueError as exc:
            raise ParseError(grammar_errors=[f"Unknown prime meridian +pm={pm}"]) from exc

    def datum(self) -> tuple[GeodeticDatum, ProjDatum | None]:
        if self._datum is None:
            self._datum = self._build_datum()
        return self._datum

    def _build_datum(self) -> tuple[GeodeticDatum, ProjDatum | None]:
        name = self.step.get("datum")
        pm = self.prime_meridian()
        if name:
            entry = get_proj_datum(name)
            if entry is None:
                raise ParseError(grammar_errors=[f"Unknown datum +datum={name}"])
            return GeodeticDatum(entry.name, entry.ellipsoid, pm), entry
        ellipsoid = self.ellipsoid()
        label = ellipsoid.name if ellipsoid.name != UNKNOWN else "unknown"
        return GeodeticDatum(f"Unknown based on {label} ellipsoid", ellipsoid, pm), None

    # -- coordinate systems ---------------------------------------------------------

    def linear_unit(self, unit_key: str, factor_key: str) -> Unit:
        factor = self.step.number(factor_key)
        if factor is not None:
            if factor <= 0:
                raise ParseError(grammar_errors=[f"+{factor_key} must be positive"])
            return unit_from_factor(UNKNOWN, UnitKind.LINEAR, factor)
        name = self.step.get(unit_key)
        if not name:
            return METRE
        unit = get_unit(name)
        if unit is None or unit.kind is not UnitKind.LINEAR:
            raise ParseError(grammar_errors=[f"Unknown unit +{unit_key}={name}"])
        return unit

    def axis_letters(self, default: str) -> str:
        axis = self.step.get("axis") or default
        if len(axis) != 3 or any(c not in "ewnsud" for c in axis):
            raise ParseError(grammar_errors=[f"Invalid +axis={axis}"])
        return axis

    # -- CRS variants ---------------------------------------------------------

    def geographic(self) -> GeographicCrs:
        datum, _ = self.datum()
        letters = self.axis_letters("enu")
        height_unit = self.linear_unit("vunits", "vto_meter") if self._has_vertical() else None
        axes = [_geographic_axis(c) for c in letters[:2]]
        if height_unit is not None:
            axes.append(_height_axis(letters[2], height_unit))
        cs = CoordinateSystem(CsType.ELLIPSOIDAL, tuple(axes))
        return GeographicCrs(UNKNOWN, datum, cs)

    def _has_vertical(self) -> bool:
        return self.step.has("vunits") or self.step.has("vto_meter")

    def geocentric(self) -> GeocentricCrs:
        datum, _ = self.datum()
        return GeocentricCrs(UNKNOWN, datum, cartesian_3d_geocentric(self.linear_unit("units", "to_meter")))

    def projected(self) -> ProjectedCrs:
        datum, _ = self.datum()
        base = GeographicCrs(UNKNOWN, datum, ellipsoidal_2d(lat_first=False))
        unit = self.linear_unit("units", "to_meter")
        letters = self.axis_letters("enu")
        axes = [_projected_axis(c, unit) for c in letters[:2]]
        if self._has_vertical():
            axes.append(_height_axis(letters[2], self.linear_unit("vunits", "vto_meter")))
        cs = CoordinateSystem(CsType.CARTESIAN, tuple(axes))
        conversion = self.conversion()
        return ProjectedCrs(UNKNOWN, base, conversion, cs)

    def conversion(self) -> Conversion:
        step = self.step
        if step.name == "utm":
            return self._utm()
        spec = _projection_spec(step)
        if spec is None:
            params = tuple(
                Parameter(key, _maybe_number(value)) if value is not None else Parameter(key, "")
                for key, value in step.params
                if key not in _CRS_KEYS
            )
            return Conversion(
                name=UNKNOWN,
                method=MethodRef(step.name, catalog.PROJ_AUTHORITY, step.name),
                parameters=params,
            )
        parameters = []
        for param in spec.params:
            value = step.number(param.proj_key)
            if value is None and param.proj_key == "k_0":
                value = step.number("k")
            if value is None:
                value = param.default if param.default is not None else 0.0
            parameters.append(catalog.parameter(param, value))
        for key, _ in step.params:
            if key not in _CRS_KEYS and spec.param(key) is None and key != "k":
                self.warn(f"Unknown parameter +{key} ignored")
        return Conversion(name=UNKNOWN, method=catalog.method_ref(spec), parameters=tuple(parameters))

    def _utm(self) -> Conversion:
        zone = self.step.number("zone")
        if zone is None or not 1 <= zone <= 60 or zone != int(zone):
            raise ParseError(grammar_errors=["+proj=utm requires +zone=1..60"])
        return utm_conversion(int(zone), south=self.step.has("south"))

    def bound(self, crs: Crs, datum_entry: ProjDatum | None) -> Crs:
        towgs84 = self.step.numbers("towgs84")
        nadgrids = self.step.get("nadgrids")
        if not towgs84 and not nadgrids and datum_entry is not None:
            towgs84 = datum_entry.towgs84
            nadgrids = datum_entry.nadgrids or None
        if nadgrids:
            transformation = catalog.nadgrids_transformation(nadgrids)
        elif towgs84:
            if len(towgs84) not in (3, 7):
                raise ParseError(grammar_errors=[f"+towgs84 needs 3 or 7 values, got {len(towgs84)}"])
            if not any(towgs84):
                return crs
            transformation = catalog.towgs84_transformation(towgs84)
        else:
            return crs
        hub = wgs84_geographic()
        name = f"Transformation from {crs.name} to WGS84"
        return BoundCrs(crs, hub, transformation.replace(name=name))  # type: ignore[arg-type]


def _positive(step: ProjStep, key: str) -> float:
    value = step.number(key)
    if value is None or not math.isfinite(value) or value <= 0:
        raise ParseError(grammar_errors=[f"+{key} must be a positive number"])
    return value


def _maybe_number(value: str) -> float | str:
    try:
        return float(value)
    except ValueError:
        return value


def _geographic_axis(letter: str) -> AxisInfo:
    if letter in "ew":
        direction = AxisDirection.EAST if letter == "e" else AxisDirection.WEST
        return AxisInfo("Longitude", "lon", direction, DEGREE)
    if letter in "ns":
        direction = AxisDirection.NORTH if letter == "n" else AxisDirection.SOUTH
        return AxisInfo("Latitude", "lat", direction, DEGREE)
    raise ParseError(grammar_errors=[f"Axis letter {letter!r} is not horizontal"])


def _projected_axis(letter: str, unit: Unit) -> AxisInfo:
    if letter in "ew":
        direction = AxisDirection.EAST if letter == "e" else AxisDirection.WEST
        return AxisInfo("Easting", "E", direction, unit)
    if letter in "ns":
        direction = AxisDirection.NORTH if letter == "n" else AxisDirection.SOUTH
        return AxisInfo("Northing", "N", direction, unit)
    raise ParseError(grammar_errors=[f"Axis letter {letter!r} is not horizontal"])


def _height_axis(letter: str, unit: Unit) -> AxisInfo:
    direction = AxisDirection.DOWN if letter == "d" else AxisDirection.UP
    return AxisInfo("Ellipsoidal height", "h", direction, unit)


def _projection_spec(step: ProjStep) -> catalog.MethodSpec | None:
    """Pick the catalogue method a ``+proj`` name and its parameters denote."""
    name = step.name
    if name == "merc":
        variant_b = step.has("lat_ts") and not (step.has("k") or step.has("k_0"))
        return catalog.find_method(code="9805" if variant_b else "9804")
    if name == "lcc":
        lat_1 = step.number("lat_1")
        lat_2 = step.number("lat_2", lat_1)
        lat_0 = step.number("lat_0", lat_1)
        one_sp = lat_1 is None or (lat_1 == lat_2 and lat_0 == lat_1)
        return catalog.find_method(code="9801" if one_sp else "9802")
    if name == "stere":
        lat_0 = step.number("lat_0", 0.0)
        if lat_0 is not None and abs(lat_0) == 90.0:
            return catalog.find_method(code="9810")
        return None
    return catalog.find_projection(name)


def utm_conversion(zone: int, south: bool = False) -> Conversion:
    """The Transverse Mercator conversion of a UTM zone."""
    tm = catalog.TRANSVERSE_MERCATOR
    values = (
        0.0,
        zone * 6.0 - 183.0,
        _UTM_SCALE,
        _UTM_FALSE_EASTING,
        _UTM_FALSE_NORTHING_SOUTH if south else 0.0,
    )
    return Conversion(
        name=f"UTM zone {zone}{'S' if south else 'N'}",
        method=catalog.method_ref(tm),
        parameters=tuple(catalog.parameter(p, v) for p, v in zip(tm.params, values)),
    )


def parse_proj_crs(text: str) -> ProjParseResult:
    """Parse a CRS proj-string.

    Raises:
        ParseError: On grammar errors (see module docstring).
    """
    steps = parse_pipeline(text)
    if len(steps) != 1:
        raise ParseError(grammar_errors=["A pipeline does not describe a CRS"])
    builder = _CrsBuilder(steps[0])
    step = builder.step
    for key, value in step.params:
        if key == "geoc":
            builder.warn("+geoc (geocentric latitude) is not supported and was ignored")
        elif key == "geoidgrids":
            builder.warn("+geoidgrids is not supported and was ignored")
        elif key == "type" and value != "crs":
            raise ParseError(grammar_errors=[f"Unsupported +type={value}"])
    try:
        _, datum_entry = builder.datum()
        if step.name in GEOGRAPHIC_NAMES:
            crs: Crs = builder.geographic()
        elif step.name in GEOCENTRIC_NAMES:
            crs = builder.geocentric()
        else:
            crs = builder.projected()
        crs = builder.bound(crs, datum_entry)
    except CrsValidationError as exc:
        raise ParseError(grammar_errors=[exc.message], warnings=builder.warnings) from exc
    except ParseError as exc:
        exc.warnings = builder.warnings + exc.warnings
        raise
    for message in builder.warnings:
        logger.warning("proj-string warning | %s", message)
    return ProjParseResult(crs, builder.warnings)


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------


def _fmt(value: float) -> str:
    text = format(value, ".16g")
    return "0" if text == "-0" else text


def _datum_tokens(crs: Crs, bound: bool = False) -> list[str]:
    datum = crs.datum
    ellipsoid = crs.ellipsoid
    tokens: list[str] = []
    entry = find_proj_datum(datum) if datum is not None else None
    if entry is not None and (bound or (not entry.towgs84 and not entry.nadgrids)):
        tokens.append(f"+datum={entry.proj_id}")
    elif ellipsoid is not None:
        tokens.extend(_ellipsoid_tokens(ellipsoid))
    tokens.extend(_meridian_tokens(crs))
    return tokens


def _ellipsoid_tokens(ellipsoid: Ellipsoid) -> list[str]:
    known = next((e for e in list_ellipsoids() if e.is_equivalent_to(ellipsoid)), None)
    if known is not None and known.proj_id:
        return [f"+ellps={known.proj_id}"]
    if ellipsoid.is_sphere:
        return [f"+R={_fmt(ellipsoid.semi_major)}"]
    return [f"+a={_fmt(ellipsoid.semi_major)}", f"+rf={_fmt(ellipsoid.inverse_flattening or 0.0)}"]


def _meridian_tokens(crs: Crs) -> list[str]:
    pm = crs.prime_meridian
    if pm is not None and not pm.is_greenwich:
        return [f"+pm={pm.proj_id or _fmt(pm.longitude_degrees)}"]
    return []


def _unit_tokens(unit: Unit, key: str = "units", factor_key: str = "to_meter") -> list[str]:
    if unit.proj_id:
        return [f"+{key}={unit.proj_id}"]
    return [f"+{factor_key}={_fmt(unit.factor)}"]


def _conversion_tokens(conversion: Conversion) -> list[str]:
    method = conversion.method
    if method.authority.upper() == catalog.PROJ_AUTHORITY:
        tokens = [f"+proj={method.code or method.name}"]
        for p in conversion.parameters:
            tokens.append(f"+{p.name}" if p.value == "" else f"+{p.name}={_param_text(p)}")
        return tokens
    spec = catalog.method_spec(method)
    if spec is None or spec.kind is not catalog.MethodKind.PROJECTION:
        raise CrsValidationError(f"Method {method.name!r} has no proj-string equivalent")
    values = {}
    for param in spec.params:
        found = conversion.param(param.code) or conversion.param(param.name)
        if found is None:
            values[param.proj_key] = param.default if param.default is not None else 0.0
        elif param.kind is UnitKind.ANGULAR:
            values[param.proj_key] = found.base_value / DEGREE.factor
        else:
            values[param.proj_key] = found.base_value
    if spec.code == catalog.TRANSVERSE_MERCATOR.code:
        zone = _utm_zone(values)
        if zone is not None:
            south = values["y_0"] == _UTM_FALSE_NORTHING_SOUTH
            return [f"+proj=utm +zone={zone}" + (" +south" if south else "")]
    if spec.code == "9801":
        values = {"lat_1": values["lat_0"], **values}
    if spec.code == "9810":
        values = {"lat_0": 90.0 if values["lat_0"] >= 0 else -90.0, **values}
    tokens = [f"+proj={spec.proj_name}"]
    tokens.extend(f"+{key}={_fmt(value)}" for key, value in values.items())
    return tokens


def _param_text(p: Parameter) -> str:
    return str(p.value) if isinstance(p.value, str) else _fmt(float(p.value))


def _utm_zone(values: dict[str, float]) -> int | None:
    if values["lat_0"] != 0.0 or not math.isclose(values["k_0"], _UTM_SCALE):
        return None
    if values["x_0"] != _UTM_FALSE_EASTING or values["y_0"] not in (0.0, _UTM_FALSE_NORTHING_SOUTH):
        return None
    zone = (values["lon_0"] + 183.0) / 6.0
    nearest = round(zone)
    if math.isclose(zone, nearest, abs_tol=1e-9) and 1 <= nearest <= 60:
        return nearest
    return None


def _crs_tokens(crs: Crs, bound: bool = False) -> list[str]:
    if isinstance(crs, GeographicCrs):
        tokens = ["+proj=longlat", *_datum_tokens(crs, bound)]
        vertical_unit = crs.cs.vertical_unit()
        if vertical_unit is not None:
            tokens.extend(_unit_tokens(vertical_unit, "vunits", "vto_meter"))
        return tokens
    if isinstance(crs, GeocentricCrs):
        return ["+proj=geocent", *_datum_tokens(crs, bound), *_unit_tokens(crs.cs.horizontal_unit())]
    if isinstance(crs, ProjectedCrs):
        tokens = [*_conversion_tokens(crs.conversion), *_datum_tokens(crs, bound)]
        tokens.extend(_unit_tokens(crs.cs.horizontal_unit()))
        if not crs.cs.is_east_first():
            tokens.append("+axis=neu")
        vertical_unit = crs.cs.vertical_unit()
        if vertical_unit is not None:
            tokens.extend(_unit_tokens(vertical_unit, "vunits", "vto_meter"))
        return tokens
    if isinstance(crs, VerticalCrs):
        return _unit_tokens(crs.cs.axes[0].unit, "vunits", "vto_meter")
    if isinstance(crs, CompoundCrs):
        tokens = _crs_tokens(crs.components[0], bound)
        for component in crs.components[1:]:
            tokens.extend(_crs_tokens(component, bound))
        return tokens
    if isinstance(crs, BoundCrs):
        return _bound_tokens(crs)
    raise CrsValidationError(f"{crs.kind.value} CRS {crs.name!r} has no proj-string equivalent")


def _bound_tokens(crs: BoundCrs) -> list[str]:
    transformation = crs.transformation
    grids = transformation.param("8656")
    datum = crs.datum
    entry = find_proj_datum(datum) if datum is not None else None
    if grids is not None and entry is not None and entry.nadgrids == grids.value:
        return _crs_tokens(crs.base_crs, bound=True)
    tokens = _crs_tokens(crs.base_crs)
    if grids is not None:
        tokens.append(f"+nadgrids={grids.value}")
        return tokens
    spec = catalog.method_spec(transformation.method)
    if spec is None or spec.proj_name != "helmert" or spec.domain != "geog2D":
        raise CrsValidationError(
            f"Transformation {transformation.name!r} has no +towgs84 equivalent"
        )
    values = []
    for param in catalog.HELMERT_PARAMS_7:
        found = transformation.param(param.code)
        unit = catalog.HELMERT_UNITS.get(param.code)
        if found is None:
            values.append(0.0)
        elif unit is not None:
            sign = -1.0 if spec.convention == "coordinate_frame" and param.kind is UnitKind.ANGULAR else 1.0
            values.append(sign * found.base_value / unit.factor)
        else:
            values.append(found.base_value)
    if not any(values[3:]):
        values = values[:3]
    tokens.append("+towgs84=" + ",".join(_fmt(v) for v in values))
    return tokens


def crs_to_proj_string(crs: Crs) -> str:
    """Serialise *crs* as a ``+type=crs`` proj-string.

    Raises:
        CrsValidationError: If the CRS kind or its method has no
            proj-string form.
    """
    return " ".join([*_crs_tokens(crs), "+no_defs", "+type=crs"])


def projection_definition(crs: ProjectedCrs) -> str:
    """The bare projection of *crs* as an operation proj-string.

    The result maps Greenwich longitude/latitude in radians to
    easting/northing in metres; axis order and units are left to the
    surrounding pipeline.

    Raises:
        CrsValidationError: If the projection method has no proj-string form.
    """
    ellipsoid = crs.ellipsoid
    tokens = _conversion_tokens(crs.conversion)
    if ellipsoid is not None:
        tokens.extend(_ellipsoid_tokens(ellipsoid))
    tokens.extend(_meridian_tokens(crs))
    tokens.append("+units=m")
    return " ".join(tokens)


def step_ellipsoid(step: ProjStep) -> Ellipsoid:
    """The ellipsoid named by a step's ``+ellps``/``+datum``/``+a``... keys."""
    datum, _ = _CrsBuilder(step).datum()
    return datum.ellipsoid
