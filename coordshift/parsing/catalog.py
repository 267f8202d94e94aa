"""Catalogue of supported operation methods and their parameters.

Each ``MethodSpec`` ties together the names a method goes by (EPSG name
and code, WKT1 projection name, proj-string name), its parameters and
whether it can be inverted.  Parsers use it to build ``Conversion`` and
``Transformation`` objects; the compiler uses it to choose pipeline steps.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING

from coordshift.models.ellipsoid import normalize_name
from coordshift.models.units import ARC_SECOND, DEGREE, METRE, PARTS_PER_MILLION, UNITY, UnitKind

if TYPE_CHECKING:
    from coordshift.models.operation import MethodRef, Parameter, Transformation
    from coordshift.models.units import Unit

PROJ_AUTHORITY = "PROJ"
PROJ_STRING_METHOD = "PROJ string"

# Projections the external projection library can only run forward.
NON_INVERTIBLE_PROJECTIONS = frozenset({"airy", "apian", "august", "bacon", "ortel", "wag7"})


class MethodKind(enum.Enum):
    CONVERSION = "conversion"
    PROJECTION = "projection"
    TRANSFORMATION = "transformation"


@dataclass(frozen=True, slots=True)
class ParamSpec:
    """A method parameter.

    Attributes:
        name: EPSG parameter name.
        code: EPSG parameter code.
        proj_key: proj-string key (``lat_0``, ``x``), if any.
        kind: Quantity measured; decides the default unit.
        default: Value assumed when the parameter is missing.
        wkt1: WKT1 ``PARAMETER`` names accepted as aliases.
    """

    name: str
    code: str
    proj_key: str = ""
    kind: UnitKind = UnitKind.LINEAR
    default: float | None = None
    wkt1: tuple[str, ...] = ()

    @property
    def default_unit(self) -> Unit:
        return {
            UnitKind.ANGULAR: DEGREE,
            UnitKind.LINEAR: METRE,
            UnitKind.SCALE: UNITY,
        }.get(self.kind, UNITY)

    def matches(self, key: str) -> bool:
        wanted = normalize_name(key)
        return (
            key == self.code
            or wanted == normalize_name(self.name)
            or (bool(self.proj_key) and key == self.proj_key)
            or any(wanted == normalize_name(alias) for alias in self.wkt1)
        )


@dataclass(frozen=True, slots=True)
class MethodSpec:
    """A supported operation method."""

    name: str
    code: str
    kind: MethodKind
    proj_name: str = ""
    params: tuple[ParamSpec, ...] = ()
    invertible: bool = True
    convention: str = ""
    domain: str = ""
    wkt1: tuple[str, ...] = ()

    def param(self, key: str) -> ParamSpec | None:
        for spec in self.params:
            if spec.matches(key):
                return spec
        return None

    def matches(self, name: str) -> bool:
        wanted = normalize_name(name)
        return wanted == normalize_name(self.name) or any(
            wanted == normalize_name(alias) for alias in self.wkt1
        )


# ---------------------------------------------------------------------------
# Parameters
# ---------------------------------------------------------------------------

_ANG = UnitKind.ANGULAR
_LIN = UnitKind.LINEAR
_SCALE = UnitKind.SCALE

LAT_NATURAL_ORIGIN = ParamSpec(
    "Latitude of natural origin", "8801", "lat_0", _ANG, 0.0, ("latitude_of_origin", "latitude_of_center")
)
LON_NATURAL_ORIGIN = ParamSpec(
    "Longitude of natural origin", "8802", "lon_0", _ANG, 0.0, ("central_meridian", "longitude_of_center")
)
SCALE_NATURAL_ORIGIN = ParamSpec(
    "Scale factor at natural origin", "8805", "k_0", _SCALE, 1.0, ("scale_factor",)
)
FALSE_EASTING = ParamSpec("False easting", "8806", "x_0", _LIN, 0.0, ("false_easting",))
FALSE_NORTHING = ParamSpec("False northing", "8807", "y_0", _LIN, 0.0, ("false_northing",))
LAT_FALSE_ORIGIN = ParamSpec(
    "Latitude of false origin", "8821", "lat_0", _ANG, 0.0, ("latitude_of_origin", "latitude_of_center")
)
LON_FALSE_ORIGIN = ParamSpec(
    "Longitude of false origin", "8822", "lon_0", _ANG, 0.0, ("central_meridian", "longitude_of_center")
)
LAT_1ST_PARALLEL = ParamSpec(
    "Latitude of 1st standard parallel", "8823", "lat_1", _ANG, None, ("standard_parallel_1",)
)
LAT_2ND_PARALLEL = ParamSpec(
    "Latitude of 2nd standard parallel", "8824", "lat_2", _ANG, None, ("standard_parallel_2",)
)
EASTING_FALSE_ORIGIN = ParamSpec("Easting at false origin", "8826", "x_0", _LIN, 0.0, ("false_easting",))
NORTHING_FALSE_ORIGIN = ParamSpec(
    "Northing at false origin", "8827", "y_0", _LIN, 0.0, ("false_northing",)
)
LAT_STD_PARALLEL = ParamSpec(
    "Latitude of 1st standard parallel", "8823", "lat_ts", _ANG, 0.0, ("standard_parallel_1",)
)

X_TRANSLATION = ParamSpec("X-axis translation", "8605", "x", _LIN, 0.0, ("dx",))
Y_TRANSLATION = ParamSpec("Y-axis translation", "8606", "y", _LIN, 0.0, ("dy",))
Z_TRANSLATION = ParamSpec("Z-axis translation", "8607", "z", _LIN, 0.0, ("dz",))
X_ROTATION = ParamSpec("X-axis rotation", "8608", "rx", _ANG, 0.0, ("ex",))
Y_ROTATION = ParamSpec("Y-axis rotation", "8609", "ry", _ANG, 0.0, ("ey",))
Z_ROTATION = ParamSpec("Z-axis rotation", "8610", "rz", _ANG, 0.0, ("ez",))
SCALE_DIFFERENCE = ParamSpec("Scale difference", "8611", "s", _SCALE, 0.0, ("ppm",))

LAT_LON_DIFFERENCE_FILE = ParamSpec(
    "Latitude and longitude difference file", "8656", "grids", UnitKind.SCALE
)
GEOID_FILE = ParamSpec("Geoid (height correction) model file", "8666", "grids", UnitKind.SCALE)
VERTICAL_OFFSET = ParamSpec("Vertical Offset", "8603", "dh", _LIN, 0.0)
LATITUDE_OFFSET = ParamSpec("Latitude offset", "8601", "dlat", _ANG, 0.0)
LONGITUDE_OFFSET = ParamSpec("Longitude offset", "8602", "dlon", _ANG, 0.0)

HELMERT_PARAMS_3 = (X_TRANSLATION, Y_TRANSLATION, Z_TRANSLATION)
HELMERT_PARAMS_7 = (*HELMERT_PARAMS_3, X_ROTATION, Y_ROTATION, Z_ROTATION, SCALE_DIFFERENCE)

# Units in which Helmert rotations and scale are usually published.
HELMERT_UNITS: dict[str, Unit] = {
    "8608": ARC_SECOND,
    "8609": ARC_SECOND,
    "8610": ARC_SECOND,
    "8611": PARTS_PER_MILLION,
}

# ---------------------------------------------------------------------------
# Methods
# ---------------------------------------------------------------------------

_CONV = MethodKind.CONVERSION
_PROJ = MethodKind.PROJECTION
_TRANS = MethodKind.TRANSFORMATION

_TM_PARAMS = (
    LAT_NATURAL_ORIGIN,
    LON_NATURAL_ORIGIN,
    SCALE_NATURAL_ORIGIN,
    FALSE_EASTING,
    FALSE_NORTHING,
)
_NATURAL_ORIGIN_NO_SCALE = (LAT_NATURAL_ORIGIN, LON_NATURAL_ORIGIN, FALSE_EASTING, FALSE_NORTHING)
_FALSE_ORIGIN_2SP = (
    LAT_FALSE_ORIGIN,
    LON_FALSE_ORIGIN,
    LAT_1ST_PARALLEL,
    LAT_2ND_PARALLEL,
    EASTING_FALSE_ORIGIN,
    NORTHING_FALSE_ORIGIN,
)

TRANSVERSE_MERCATOR = MethodSpec(
    "Transverse Mercator", "9807", _PROJ, "tmerc", _TM_PARAMS, wkt1=("Transverse_Mercator",)
)
GEOCENTRIC_CONVERSION = MethodSpec("Geographic/geocentric conversions", "9602", _CONV)
GEOGRAPHIC_3D_TO_2D = MethodSpec("Geographic3D to 2D conversion", "9659", _CONV)
AXIS_ORDER_REVERSAL_2D = MethodSpec("Axis Order Reversal (2D)", "9843", _CONV)
AXIS_ORDER_REVERSAL_3D = MethodSpec("Axis Order Reversal (Geographic3D horizontal)", "9844", _CONV)
HEIGHT_DEPTH_REVERSAL = MethodSpec("Height Depth Reversal", "1068", _CONV)
CHANGE_OF_VERTICAL_UNIT = MethodSpec("Change of Vertical Unit", "1069", _CONV)
LONGITUDE_ROTATION = MethodSpec("Longitude rotation", "9601", _TRANS, params=(LONGITUDE_OFFSET,))
GEOGRAPHIC_2D_OFFSETS = MethodSpec(
    "Geographic2D offsets", "9619", _TRANS, params=(LATITUDE_OFFSET, LONGITUDE_OFFSET)
)
GEOGRAPHIC_3D_OFFSETS = MethodSpec(
    "Geographic3D offsets",
    "9660",
    _TRANS,
    params=(LATITUDE_OFFSET, LONGITUDE_OFFSET, VERTICAL_OFFSET),
)
VERTICAL_OFFSET_METHOD = MethodSpec("Vertical Offset", "9616", _TRANS, params=(VERTICAL_OFFSET,))
NTV2 = MethodSpec("NTv2", "9615", _TRANS, "hgridshift", (LAT_LON_DIFFERENCE_FILE,))
GTX = MethodSpec(
    "Geographic3D to GravityRelatedHeight (gtx)", "9665", _TRANS, "vgridshift", (GEOID_FILE,)
)


def _helmert(name: str, code: str, convention: str, domain: str) -> MethodSpec:
    params = HELMERT_PARAMS_3 if convention == "translation" else HELMERT_PARAMS_7
    return MethodSpec(name, code, _TRANS, "helmert", params, convention=convention, domain=domain)


_METHODS: tuple[MethodSpec, ...] = (
    TRANSVERSE_MERCATOR,
    MethodSpec(
        "Mercator (variant A)", "9804", _PROJ, "merc", _TM_PARAMS, wkt1=("Mercator_1SP", "Mercator")
    ),
    MethodSpec(
        "Mercator (variant B)",
        "9805",
        _PROJ,
        "merc",
        (LAT_STD_PARALLEL, LON_NATURAL_ORIGIN, FALSE_EASTING, FALSE_NORTHING),
        wkt1=("Mercator_2SP",),
    ),
    MethodSpec(
        "Popular Visualisation Pseudo Mercator",
        "1024",
        _PROJ,
        "webmerc",
        _NATURAL_ORIGIN_NO_SCALE,
        wkt1=("Popular_Visualisation_Pseudo_Mercator", "Mercator_Auxiliary_Sphere"),
    ),
    MethodSpec(
        "Lambert Conic Conformal (1SP)",
        "9801",
        _PROJ,
        "lcc",
        _TM_PARAMS,
        wkt1=("Lambert_Conformal_Conic_1SP",),
    ),
    MethodSpec(
        "Lambert Conic Conformal (2SP)",
        "9802",
        _PROJ,
        "lcc",
        _FALSE_ORIGIN_2SP,
        wkt1=("Lambert_Conformal_Conic_2SP", "Lambert_Conformal_Conic"),
    ),
    MethodSpec(
        "Polar Stereographic (variant A)",
        "9810",
        _PROJ,
        "stere",
        _TM_PARAMS,
        wkt1=("Polar_Stereographic",),
    ),
    MethodSpec(
        "Oblique Stereographic",
        "9809",
        _PROJ,
        "sterea",
        _TM_PARAMS,
        wkt1=("Oblique_Stereographic",),
    ),
    MethodSpec(
        "Lambert Azimuthal Equal Area",
        "9820",
        _PROJ,
        "laea",
        _NATURAL_ORIGIN_NO_SCALE,
        wkt1=("Lambert_Azimuthal_Equal_Area",),
    ),
    MethodSpec(
        "Albers Equal Area", "9822", _PROJ, "aea", _FALSE_ORIGIN_2SP, wkt1=("Albers_Conic_Equal_Area",)
    ),
    MethodSpec(
        "Equidistant Cylindrical",
        "1028",
        _PROJ,
        "eqc",
        (LAT_STD_PARALLEL, LON_NATURAL_ORIGIN, FALSE_EASTING, FALSE_NORTHING),
        wkt1=("Equirectangular", "Equidistant_Cylindrical"),
    ),
    GEOCENTRIC_CONVERSION,
    GEOGRAPHIC_3D_TO_2D,
    AXIS_ORDER_REVERSAL_2D,
    AXIS_ORDER_REVERSAL_3D,
    HEIGHT_DEPTH_REVERSAL,
    CHANGE_OF_VERTICAL_UNIT,
    _helmert("Geocentric translations (geog2D domain)", "9603", "translation", "geog2D"),
    _helmert("Geocentric translations (geocentric domain)", "1031", "translation", "geocentric"),
    _helmert("Geocentric translations (geog3D domain)", "1035", "translation", "geog3D"),
    _helmert("Position Vector transformation (geog2D domain)", "9606", "position_vector", "geog2D"),
    _helmert(
        "Position Vector transformation (geocentric domain)", "1033", "position_vector", "geocentric"
    ),
    _helmert("Position Vector transformation (geog3D domain)", "1037", "position_vector", "geog3D"),
    _helmert("Coordinate Frame rotation (geog2D domain)", "9607", "coordinate_frame", "geog2D"),
    _helmert(
        "Coordinate Frame rotation (geocentric domain)", "1032", "coordinate_frame", "geocentric"
    ),
    _helmert("Coordinate Frame rotation (geog3D domain)", "1038", "coordinate_frame", "geog3D"),
    NTV2,
    GTX,
    VERTICAL_OFFSET_METHOD,
    GEOGRAPHIC_2D_OFFSETS,
    GEOGRAPHIC_3D_OFFSETS,
    LONGITUDE_ROTATION,
)

_BY_CODE: dict[str, MethodSpec] = {m.code: m for m in _METHODS}


def list_methods() -> list[MethodSpec]:
    return list(_METHODS)


def find_method(name: str = "", code: str = "") -> MethodSpec | None:
    """Find a method by EPSG code, then by (normalised) EPSG or WKT1 name."""
    if code and code in _BY_CODE:
        return _BY_CODE[code]
    if name:
        for method in _METHODS:
            if method.matches(name):
                return method
    return None


def find_projection(proj_name: str) -> MethodSpec | None:
    """The preferred catalogue projection for a proj-string ``+proj`` name."""
    for method in _METHODS:
        if method.kind is MethodKind.PROJECTION and method.proj_name == proj_name:
            return method
    return None


def method_spec(method: MethodRef) -> MethodSpec | None:
    if method.authority and method.authority.upper() not in ("EPSG", ""):
        return None
    return find_method(method.name, method.code)


def method_has_inverse(method: MethodRef, parameters: tuple[Parameter, ...] = ()) -> bool:
    """Whether an operation using *method* can be inverted."""
    if method.name == PROJ_STRING_METHOD:
        from coordshift.parsing.proj_string import pipeline_has_inverse

        definition = next((p.value for p in parameters if isinstance(p.value, str)), "")
        return pipeline_has_inverse(str(definition))
    if method.authority.upper() == PROJ_AUTHORITY:
        return (method.code or method.name) not in NON_INVERTIBLE_PROJECTIONS
    spec = method_spec(method)
    return spec.invertible if spec is not None else False


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def method_ref(spec: MethodSpec) -> MethodRef:
    from coordshift.models.operation import MethodRef

    return MethodRef(spec.name, "EPSG", spec.code)


def parameter(spec: ParamSpec, value: float | str, unit: Unit | None = None) -> Parameter:
    from coordshift.models.operation import Parameter

    if isinstance(value, str):
        return Parameter(spec.name, value, None, spec.code)
    return Parameter(spec.name, float(value), unit or spec.default_unit, spec.code)


def towgs84_transformation(values: tuple[float, ...] | list[float], name: str = "") -> Transformation:
    """The Helmert transformation behind ``+towgs84`` / ``TOWGS84``.

    Three values give geocentric translations, seven a position-vector
    transformation (rotations in arc-seconds, scale in ppm).
    """
    from coordshift.core.exceptions import CrsValidationError
    from coordshift.models.operation import Transformation

    if len(values) not in (3, 7):
        raise CrsValidationError(f"towgs84 needs 3 or 7 values, got {len(values)}")
    if len(values) == 7 and not any(values[3:]):
        values = tuple(values[:3])
    code = "9603" if len(values) == 3 else "9606"
    spec = _BY_CODE[code]
    parameters = tuple(
        parameter(param, value, HELMERT_UNITS.get(param.code)) for param, value in zip(spec.params, values)
    )
    return Transformation(
        name=name or "Transformation from unknown to WGS84",
        method=method_ref(spec),
        parameters=parameters,
    )


def nadgrids_transformation(grids: str, name: str = "") -> Transformation:
    """The NTv2 grid transformation behind ``+nadgrids``."""
    from coordshift.models.operation import GridRef, Transformation

    names = [g.strip() for g in grids.split(",") if g.strip()]
    return Transformation(
        name=name or "Transformation from unknown to WGS84",
        method=method_ref(NTV2),
        parameters=(parameter(LAT_LON_DIFFERENCE_FILE, ",".join(names)),),
        grids=tuple(GridRef(n.lstrip("@")) for n in names),
    )
