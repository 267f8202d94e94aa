"""WKT1 and WKT2 CRS parsing, and WKT2:2019 output.

Parsing runs in two passes:

1. A tokenizer and recursive-descent parser turn the text into a tree of
   ``WktNode`` (keyword plus ordered arguments).  Both ``[]`` and ``()``
   delimiters are accepted, as long as each pair matches.
2. A builder walks the tree and constructs the ``Crs``.

Problems are split in two classes.  Grammar errors (unbalanced
delimiters, unterminated strings, unknown root keyword, missing mandatory
children, non-numeric numbers, trailing text) abort construction with a
``ParseError`` carrying both the grammar errors and the warnings collected
so far.  Semantic issues (parameter missing so a default was assumed,
missing unit, missing axes, unknown parameter) are ordered, human-readable
warnings returned alongside the CRS in a ``WktResult``.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import NamedTuple, Union

from coordshift.core.exceptions import CrsValidationError, ParseError
from coordshift.models.area import Area
from coordshift.models.coordinate_system import (
    AxisDirection,
    AxisInfo,
    CoordinateSystem,
    CsType,
    cartesian_2d,
    cartesian_3d_geocentric,
    ellipsoidal_2d,
    temporal,
    vertical,
)
from coordshift.models.crs import (
    BoundCrs,
    CompoundCrs,
    Crs,
    EngineeringCrs,
    GeocentricCrs,
    GeographicCrs,
    ProjectedCrs,
    TemporalCrs,
    VerticalCrs,
    wgs84_geographic,
)
from coordshift.models.datum import DatumEnsemble, GeodeticDatum, VerticalDatum
from coordshift.models.ellipsoid import (
    GREENWICH,
    Ellipsoid,
    PrimeMeridian,
    list_prime_meridians,
    normalize_name,
)
from coordshift.models.identifier import Identifier
from coordshift.models.operation import Conversion, GridRef, MethodRef, Parameter, Transformation
from coordshift.models.units import DEGREE, METRE, UNITY, YEAR, Unit, UnitKind, unit_from_factor
from coordshift.models.validation import ModelValidationError
from coordshift.parsing import catalog

logger = logging.getLogger(__name__)


class Ident(str):
    """A bare (unquoted) WKT word such as ``north`` or ``ellipsoidal``."""


WktValue = Union["WktNode", str, float]


@dataclass
class WktNode:
    """A ``KEYWORD[arg, arg, ...]`` element."""

    keyword: str
    args: list[WktValue] = field(default_factory=list)

    def children(self, *keywords: str) -> list[WktNode]:
        return [a for a in self.args if isinstance(a, WktNode) and a.keyword in keywords]

    def child(self, *keywords: str) -> WktNode | None:
        found = self.children(*keywords)
        return found[0] if found else None

    @property
    def scalars(self) -> list[str | float]:
        return [a for a in self.args if not isinstance(a, WktNode)]


class WktResult(NamedTuple):
    crs: Crs
    warnings: list[str]


class _GrammarError(Exception):
    pass


# ---------------------------------------------------------------------------
# Keywords
# ---------------------------------------------------------------------------

GEOGRAPHIC_KEYWORDS = ("GEOGCRS", "GEOGRAPHICCRS", "BASEGEOGCRS")
GEODETIC_KEYWORDS = ("GEODCRS", "GEODETICCRS", "BASEGEODCRS")
PROJECTED_KEYWORDS = ("PROJCRS", "PROJECTEDCRS")
VERTICAL_KEYWORDS = ("VERTCRS", "VERTICALCRS")
ENGINEERING_KEYWORDS = ("ENGCRS", "ENGINEERINGCRS")
TEMPORAL_KEYWORDS = ("TIMECRS",)
WKT1_KEYWORDS = ("GEOGCS", "PROJCS", "GEOCCS", "VERT_CS", "COMPD_CS", "LOCAL_CS")

CRS_KEYWORDS = (
    *GEOGRAPHIC_KEYWORDS,
    *GEODETIC_KEYWORDS,
    *PROJECTED_KEYWORDS,
    *VERTICAL_KEYWORDS,
    *ENGINEERING_KEYWORDS,
    *TEMPORAL_KEYWORDS,
    "COMPOUNDCRS",
    "BOUNDCRS",
    *WKT1_KEYWORDS,
)

_DATUM_KEYWORDS = ("DATUM", "TRF", "GEODETICDATUM")
_VDATUM_KEYWORDS = ("VDATUM", "VERTICALDATUM", "VRF", "VERT_DATUM")
_ID_KEYWORDS = ("ID", "AUTHORITY")
_UNIT_KINDS = {
    "ANGLEUNIT": UnitKind.ANGULAR,
    "LENGTHUNIT": UnitKind.LINEAR,
    "SCALEUNIT": UnitKind.SCALE,
    "TIMEUNIT": UnitKind.TIME,
    "TEMPORALQUANTITY": UnitKind.TIME,
}
_UNIT_KEYWORDS = (*_UNIT_KINDS, "UNIT")
_CLOSERS = {"[": "]", "(": ")"}

# ---------------------------------------------------------------------------
# Tokenizer and parser
# ---------------------------------------------------------------------------

_TOKEN_RE = re.compile(
    r"""\s*(?:
        (?P<open>[\[(])
      | (?P<close>[\])])
      | (?P<comma>,)
      | (?P<string>"(?:[^"]|"")*")
      | (?P<word>[^\s\[\](),"]+)
      | (?P<bad>")
    )""",
    re.VERBOSE,
)


def _tokenize(text: str) -> list[tuple[str, str, int]]:
    tokens = []
    pos = 0
    end = len(text.rstrip())
    while pos < end:
        match = _TOKEN_RE.match(text, pos)
        if match is None or match.lastgroup is None:
            raise _GrammarError(f"Unexpected character at offset {pos}")
        kind = match.lastgroup
        if kind == "bad":
            raise _GrammarError(f"Unterminated string starting at offset {match.start(kind)}")
        tokens.append((kind, match.group(kind), match.start(kind)))
        pos = match.end()
    return tokens


class _Parser:
    def __init__(self, text: str) -> None:
        self.tokens = _tokenize(text)
        self.index = 0

    def _peek(self) -> tuple[str, str, int] | None:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def _next(self, expected: str) -> tuple[str, str, int]:
        token = self._peek()
        if token is None:
            raise _GrammarError(f"Unexpected end of text, expected {expected}")
        self.index += 1
        return token

    def parse(self) -> WktNode:
        root = self._node()
        extra = self._peek()
        if extra is not None:
            raise _GrammarError(f"Unexpected trailing text at offset {extra[2]}: {extra[1]!r}")
        return root

    def _node(self) -> WktNode:
        kind, text, pos = self._next("a keyword")
        if kind != "word":
            raise _GrammarError(f"Expected a keyword at offset {pos}, got {text!r}")
        return self._node_body(text.upper())

    def _node_body(self, keyword: str) -> WktNode:
        kind, opener, pos = self._next(f"'[' after {keyword}")
        if kind != "open":
            raise _GrammarError(f"Expected '[' after {keyword} at offset {pos}")
        node = WktNode(keyword)
        token = self._peek()
        if token is not None and token[0] == "close":
            self.index += 1
            self._check_closer(keyword, opener, token)
            return node
        while True:
            node.args.append(self._value(keyword))
            kind, text, pos = self._next(f"',' or closing delimiter in {keyword}")
            if kind == "comma":
                continue
            if kind == "close":
                self._check_closer(keyword, opener, (kind, text, pos))
                return node
            raise _GrammarError(f"Expected ',' or closing delimiter in {keyword} at offset {pos}")

    @staticmethod
    def _check_closer(keyword: str, opener: str, token: tuple[str, str, int]) -> None:
        if token[1] != _CLOSERS[opener]:
            raise _GrammarError(
                f"Unbalanced delimiters in {keyword}: {opener!r} closed by {token[1]!r} "
                f"at offset {token[2]}"
            )

    def _value(self, parent: str) -> WktValue:
        kind, text, pos = self._next(f"a value in {parent}")
        if kind == "string":
            return text[1:-1].replace('""', '"')
        if kind == "word":
            following = self._peek()
            if following is not None and following[0] == "open":
                return self._node_body(text.upper())
            try:
                return float(text)
            except ValueError:
                return Ident(text)
        raise _GrammarError(f"Unexpected {text!r} in {parent} at offset {pos}")


def parse_tree(text: str) -> WktNode:
    """Parse WKT text into its node tree.

    Raises:
        ParseError: On any grammar error.
    """
    try:
        return _Parser(text).parse()
    except _GrammarError as exc:
        raise ParseError(grammar_errors=[str(exc)]) from exc


def is_wkt(text: str) -> bool:
    match = re.match(r"\s*([A-Za-z_]+)\s*[\[(]", text)
    return bool(match) and match.group(1).upper() in CRS_KEYWORDS


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


@dataclass
class _Builder:
    warnings: list[str] = field(default_factory=list)

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    # -- scalar access --------------------------------------------------------

    @staticmethod
    def text(node: WktNode, index: int, what: str) -> str:
        scalars = node.scalars
        if index >= len(scalars) or not isinstance(scalars[index], str):
            raise _GrammarError(f"{node.keyword} is missing its {what}")
        return str(scalars[index])

    @staticmethod
    def number(node: WktNode, index: int, what: str) -> float:
        scalars = node.scalars
        if index >= len(scalars):
            raise _GrammarError(f"{node.keyword} is missing its {what}")
        value = scalars[index]
        if isinstance(value, str):
            raise _GrammarError(f"{node.keyword} {what} is not a number: {value!r}")
        return float(value)

    # -- common elements ------------------------------------------------------

    def identifier(self, node: WktNode) -> Identifier | None:
        id_node = node.child(*_ID_KEYWORDS)
        if id_node is None:
            return None
        authority = self.text(id_node, 0, "authority name")
        scalars = id_node.scalars
        if len(scalars) < 2:
            raise _GrammarError(f"{id_node.keyword} is missing its code")
        code = scalars[1]
        if isinstance(code, float):
            code = str(int(code)) if code.is_integer() else repr(code)
        return Identifier(authority.upper(), str(code))

    def area(self, node: WktNode) -> Area | None:
        holder = node.child("USAGE") or node
        bbox = holder.child("BBOX")
        description = holder.child("AREA")
        if bbox is None:
            return None
        south, west, north, east = (self.number(bbox, i, "bound") for i in range(4))
        name = self.text(description, 0, "description") if description is not None else ""
        try:
            return Area(west, south, east, north, name)
        except ModelValidationError as exc:
            self.warn(f"Invalid BBOX ignored: {exc}")
            return None

    def remarks(self, node: WktNode) -> str:
        remark = node.child("REMARK")
        return self.text(remark, 0, "text") if remark is not None else ""

    def unit(self, node: WktNode | None, kind: UnitKind) -> Unit | None:
        if node is None:
            return None
        unit_node = node.child(*_UNIT_KEYWORDS)
        if unit_node is None:
            return None
        kind = _UNIT_KINDS.get(unit_node.keyword, kind)
        name = self.text(unit_node, 0, "unit name")
        if len(unit_node.scalars) < 2:
            if kind is UnitKind.TIME:
                return YEAR if normalize_name(name) == "year" else unit_from_factor(name, kind, 1.0)
            raise _GrammarError(f"{unit_node.keyword}[{name!r}] is missing its conversion factor")
        factor = self.number(unit_node, 1, "conversion factor")
        if factor <= 0:
            raise _GrammarError(f"{unit_node.keyword}[{name!r}] conversion factor must be positive")
        return unit_from_factor(name, kind, factor)

    # -- datum ----------------------------------------------------------------

    def ellipsoid(self, node: WktNode) -> Ellipsoid:
        ell = node.child("ELLIPSOID", "SPHEROID")
        if ell is None:
            raise _GrammarError(f"{node.keyword} is missing ELLIPSOID")
        name = self.text(ell, 0, "name")
        a = self.number(ell, 1, "semi-major axis")
        rf = self.number(ell, 2, "inverse flattening")
        unit = self.unit(ell, UnitKind.LINEAR) or METRE
        try:
            return Ellipsoid(name, a * unit.factor, inverse_flattening=rf)
        except CrsValidationError as exc:
            raise _GrammarError(exc.message) from exc

    def prime_meridian(self, node: WktNode, angular: Unit) -> PrimeMeridian:
        pm_node = node.child("PRIMEM", "PRIMEMERIDIAN")
        if pm_node is None:
            return GREENWICH
        name = self.text(pm_node, 0, "name")
        longitude = self.number(pm_node, 1, "longitude")
        unit = self.unit(pm_node, UnitKind.ANGULAR) or angular
        degrees = longitude * unit.factor / DEGREE.factor
        if degrees == 0.0:
            return GREENWICH
        for known in list_prime_meridians():
            if normalize_name(known.name) == normalize_name(name) and math.isclose(
                known.longitude_degrees, degrees, abs_tol=1e-9
            ):
                return known
        return PrimeMeridian(name, degrees)

    def geodetic_datum(
        self, node: WktNode, angular: Unit
    ) -> tuple[GeodeticDatum | DatumEnsemble, WktNode | None]:
        """Return the datum of a geodetic CRS node plus any WKT1 ``TOWGS84`` node."""
        pm = self.prime_meridian(node, angular)
        epoch = None
        dynamic = node.child("DYNAMIC")
        if dynamic is not None:
            frame_epoch = dynamic.child("FRAMEEPOCH")
            if frame_epoch is not None:
                epoch = self.number(frame_epoch, 0, "epoch")
        ensemble = node.child("ENSEMBLE")
        if ensemble is not None:
            return self.ensemble(ensemble, pm), None
        datum_node = node.child(*_DATUM_KEYWORDS)
        if datum_node is None:
            raise _GrammarError(f"{node.keyword} is missing DATUM or ENSEMBLE")
        datum = GeodeticDatum(
            self.text(datum_node, 0, "name"),
            self.ellipsoid(datum_node),
            pm,
            epoch,
            self.identifier(datum_node),
        )
        return datum, datum_node.child("TOWGS84")

    def ensemble(self, node: WktNode, pm: PrimeMeridian | None = None) -> DatumEnsemble:
        name = self.text(node, 0, "name")
        members = [self.text(m, 0, "name") for m in node.children("MEMBER")]
        if not members:
            raise _GrammarError(f"ENSEMBLE[{name!r}] has no MEMBER")
        accuracy_node = node.child("ENSEMBLEACCURACY")
        if accuracy_node is None:
            self.warn(f"ENSEMBLE[{name!r}] has no ENSEMBLEACCURACY: assuming 0")
            accuracy = 0.0
        else:
            accuracy = self.number(accuracy_node, 0, "accuracy")
        if node.child("ELLIPSOID", "SPHEROID") is None:
            vertical_members = tuple(VerticalDatum(m) for m in members)
            return DatumEnsemble(name, vertical_members, accuracy, identifier=self.identifier(node))
        ellipsoid = self.ellipsoid(node)
        pm = pm or GREENWICH
        geodetic_members = tuple(GeodeticDatum(m, ellipsoid, pm) for m in members)
        return DatumEnsemble(
            name, geodetic_members, accuracy, ellipsoid, pm, self.identifier(node)
        )

    # -- coordinate systems ---------------------------------------------------

    def axis(self, node: WktNode, index: int, default_unit: Unit | None, cs_type: CsType) -> AxisInfo:
        label = self.text(node, 0, "name")
        scalars = node.scalars
        if len(scalars) < 2 or not isinstance(scalars[1], str):
            raise _GrammarError(f"AXIS[{label!r}] is missing its direction")
        direction_text = str(scalars[1])
        if direction_text.upper() == "OTHER" and cs_type is CsType.CARTESIAN:
            direction = (
                AxisDirection.GEOCENTRIC_X,
                AxisDirection.GEOCENTRIC_Y,
                AxisDirection.GEOCENTRIC_Z,
            )[min(index, 2)]
        else:
            try:
                direction = AxisDirection.from_text(direction_text)
            except CrsValidationError as exc:
                raise _GrammarError(exc.message) from exc
        match = re.match(r"^(.*?)\s*\(([^)]*)\)\s*$", label)
        name, abbreviation = (match.group(1), match.group(2)) if match else (label, "")
        kind = _axis_unit_kind(direction, cs_type)
        unit = self.unit(node, kind)
        if unit is None and default_unit is not None and default_unit.kind is kind:
            unit = default_unit
        elif unit is None:
            unit = _default_unit(kind)
            if default_unit is None:
                self.warn(f"AXIS[{label!r}] has no unit: assuming {unit.name}")
        return AxisInfo(name or label, abbreviation, direction, unit)

    def cs(
        self,
        node: WktNode,
        fallback: CoordinateSystem,
        *,
        warn_missing: bool = True,
    ) -> CoordinateSystem:
        """Coordinate system of a WKT2 CRS node (``CS`` + sibling ``AXIS``)."""
        cs_node = node.child("CS")
        cs_unit = self.unit(node, UnitKind.ANGULAR if fallback.cs_type is CsType.ELLIPSOIDAL else UnitKind.LINEAR)
        if cs_node is None:
            if warn_missing:
                self.warn(f"{node.keyword} has no CS: assuming default axes")
            return _with_unit(fallback, cs_unit)
        if not cs_node.scalars or not isinstance(cs_node.scalars[0], str):
            raise _GrammarError("CS is missing its type")
        type_text = str(cs_node.scalars[0])
        cs_type = next((t for t in CsType if t.value.lower() == type_text.lower()), None)
        if cs_type is None:
            if type_text.lower() in ("temporal", "temporalcount", "temporalmeasure"):
                cs_type = CsType.TEMPORAL
            else:
                raise _GrammarError(f"Unknown CS type {type_text!r}")
        dimension = int(self.number(cs_node, 1, "dimension"))
        axis_nodes = node.children("AXIS")
        if not axis_nodes:
            self.warn(f"{node.keyword} has no AXIS: assuming default axes")
            return _with_unit(fallback, cs_unit)
        if len(axis_nodes) != dimension:
            raise _GrammarError(f"CS declares {dimension} axes but {len(axis_nodes)} AXIS given")
        ordered = sorted(enumerate(axis_nodes), key=lambda item: _axis_order(item[1], item[0]))
        axes = tuple(self.axis(a, i, cs_unit, cs_type) for i, (_, a) in enumerate(ordered))
        try:
            return CoordinateSystem(cs_type, axes)
        except CrsValidationError as exc:
            raise _GrammarError(exc.message) from exc

    def wkt1_cs(
        self, node: WktNode, cs_type: CsType, unit: Unit, fallback: CoordinateSystem
    ) -> CoordinateSystem:
        axis_nodes = node.children("AXIS")
        if not axis_nodes:
            self.warn(f"{node.keyword} has no AXIS: assuming default axes")
            return _with_unit(fallback, unit)
        axes = tuple(self.axis(a, i, unit, cs_type) for i, a in enumerate(axis_nodes))
        try:
            return CoordinateSystem(cs_type, axes)
        except CrsValidationError as exc:
            raise _GrammarError(exc.message) from exc

    # -- CRS variants ---------------------------------------------------------

    def crs(self, node: WktNode) -> Crs:
        keyword = node.keyword
        if keyword in GEOGRAPHIC_KEYWORDS or keyword in GEODETIC_KEYWORDS:
            return self.geodetic(node)
        if keyword in PROJECTED_KEYWORDS:
            return self.projected(node)
        if keyword in VERTICAL_KEYWORDS:
            return self.vertical(node)
        if keyword == "COMPOUNDCRS" or keyword == "COMPD_CS":
            return self.compound(node)
        if keyword == "BOUNDCRS":
            return self.bound(node)
        if keyword in ENGINEERING_KEYWORDS or keyword == "LOCAL_CS":
            return self.engineering(node)
        if keyword in TEMPORAL_KEYWORDS:
            return self.temporal(node)
        if keyword == "GEOGCS":
            return self.wkt1_geographic(node)
        if keyword == "GEOCCS":
            return self.wkt1_geocentric(node)
        if keyword == "PROJCS":
            return self.wkt1_projected(node)
        if keyword == "VERT_CS":
            return self.wkt1_vertical(node)
        raise _GrammarError(f"Unknown CRS keyword {keyword}")

    def geodetic(self, node: WktNode, *, is_base: bool = False) -> GeographicCrs | GeocentricCrs:
        name = self.text(node, 0, "name")
        angular = self.unit(node, UnitKind.ANGULAR)
        datum, _ = self.geodetic_datum(node, angular if angular and angular.kind is UnitKind.ANGULAR else DEGREE)
        is_geographic = node.keyword in GEOGRAPHIC_KEYWORDS
        cs_node = node.child("CS")
        cartesian = bool(cs_node and cs_node.scalars) and str(cs_node.scalars[0]).lower() == "cartesian"
        fallback = cartesian_3d_geocentric() if cartesian else ellipsoidal_2d()
        cs = self.cs(node, fallback, warn_missing=not is_base)
        common = {
            "identifier": self.identifier(node),
            "area_of_use": self.area(node),
            "remarks": self.remarks(node),
        }
        try:
            if cs.cs_type is CsType.CARTESIAN and not is_geographic:
                return GeocentricCrs(name, datum, cs, **common)
            return GeographicCrs(name, datum, cs, **common)
        except CrsValidationError as exc:
            raise _GrammarError(exc.message) from exc

    def projected(self, node: WktNode) -> ProjectedCrs:
        name = self.text(node, 0, "name")
        base_node = node.child("BASEGEOGCRS", "BASEGEODCRS", "GEOGCRS", "GEOGCS")
        if base_node is None:
            raise _GrammarError(f"{node.keyword}[{name!r}] is missing BASEGEOGCRS")
        if base_node.keyword == "GEOGCS":
            base = self.wkt1_geographic(base_node)
        else:
            base = self.geodetic(base_node, is_base=True)
        if isinstance(base, BoundCrs):
            base = base.base_crs
        if not isinstance(base, GeographicCrs):
            raise _GrammarError(f"{node.keyword}[{name!r}] base CRS is not geographic")
        conversion_node = node.child("CONVERSION", "DERIVINGCONVERSION")
        if conversion_node is None:
            raise _GrammarError(f"{node.keyword}[{name!r}] is missing CONVERSION")
        conversion = self.conversion(conversion_node)
        cs = self.cs(node, cartesian_2d())
        try:
            return ProjectedCrs(
                name,
                base,
                conversion,
                cs,
                identifier=self.identifier(node),
                area_of_use=self.area(node),
                remarks=self.remarks(node),
            )
        except CrsValidationError as exc:
            raise _GrammarError(exc.message) from exc

    def conversion(self, node: WktNode) -> Conversion:
        name = self.text(node, 0, "name")
        method_node = node.child("METHOD", "PROJECTION")
        if method_node is None:
            raise _GrammarError(f"CONVERSION[{name!r}] is missing METHOD")
        method, spec = self.method(method_node)
        parameters = self.parameters(node, spec, method.name, None, None)
        return Conversion(name=name, method=method, parameters=parameters, identifier=self.identifier(node))

    def method(self, node: WktNode) -> tuple[MethodRef, catalog.MethodSpec | None]:
        method_name = self.text(node, 0, "name")
        method_id = self.identifier(node)
        code = method_id.code if method_id is not None and method_id.authority == "EPSG" else ""
        spec = catalog.find_method(method_name, code)
        if spec is None:
            self.warn(f"Unknown method {method_name!r}: kept without parameter validation")
            return MethodRef(method_name, *(method_id or ("", ""))), None
        return catalog.method_ref(spec), spec

    def parameters(
        self,
        node: WktNode,
        spec: catalog.MethodSpec | None,
        method_name: str,
        angular: Unit | None,
        linear: Unit | None,
    ) -> tuple[Parameter, ...]:
        """Collect ``PARAMETER``/``PARAMETERFILE`` children against the method's specs.

        *angular* and *linear* are the WKT1 context units; ``None`` means
        each parameter must carry its own unit (WKT2).
        """
        found: dict[str, Parameter] = {}
        extra: list[Parameter] = []
        for param_node in node.children("PARAMETER", "PARAMETERFILE"):
            param_name = self.text(param_node, 0, "name")
            param_id = self.identifier(param_node)
            key = param_id.code if param_id is not None else param_name
            param_spec = spec.param(key) or spec.param(param_name) if spec is not None else None
            if param_node.keyword == "PARAMETERFILE":
                value: float | str = self.text(param_node, 1, "file name")
            else:
                value = self.number(param_node, 1, "value")
            if spec is not None and param_spec is None:
                self.warn(f"Unknown parameter {param_name!r} of {method_name!r} ignored")
                continue
            unit = None
            if isinstance(value, float):
                kind = param_spec.kind if param_spec is not None else UnitKind.SCALE
                unit = self.unit(param_node, kind)
                if unit is None and angular is not None:
                    unit = {UnitKind.ANGULAR: angular, UnitKind.LINEAR: linear}.get(kind, UNITY)
                if unit is None and param_spec is not None:
                    unit = catalog.HELMERT_UNITS.get(param_spec.code, param_spec.default_unit)
                    self.warn(f"Parameter {param_name!r} has no unit: assuming {unit.name}")
            if param_spec is None:
                extra.append(Parameter(param_name, value, unit, param_id.code if param_id else ""))
            else:
                found[param_spec.code + param_spec.proj_key] = catalog.parameter(param_spec, value, unit)
        if spec is None:
            return tuple(extra)
        parameters = []
        for param_spec in spec.params:
            parameter = found.get(param_spec.code + param_spec.proj_key)
            if parameter is None:
                if param_spec.default is None and param_spec.kind is UnitKind.SCALE:
                    raise _GrammarError(f"{method_name!r} requires parameter {param_spec.name!r}")
                default = param_spec.default if param_spec.default is not None else 0.0
                self.warn(f"Parameter {param_spec.name!r} missing: assuming {default:g}")
                parameter = catalog.parameter(param_spec, default)
            parameters.append(parameter)
        return tuple(parameters)

    def vertical(self, node: WktNode) -> VerticalCrs:
        name = self.text(node, 0, "name")
        ensemble = node.child("ENSEMBLE")
        if ensemble is not None:
            datum: VerticalDatum | DatumEnsemble = self.ensemble(ensemble)
        else:
            datum_node = node.child(*_VDATUM_KEYWORDS)
            if datum_node is None:
                raise _GrammarError(f"{node.keyword}[{name!r}] is missing VDATUM")
            datum = VerticalDatum(self.text(datum_node, 0, "name"), identifier=self.identifier(datum_node))
        cs = self.cs(node, vertical())
        try:
            return VerticalCrs(
                name,
                datum,
                cs,
                identifier=self.identifier(node),
                area_of_use=self.area(node),
                remarks=self.remarks(node),
            )
        except CrsValidationError as exc:
            raise _GrammarError(exc.message) from exc

    def compound(self, node: WktNode) -> CompoundCrs:
        name = self.text(node, 0, "name")
        components = tuple(self.crs(child) for child in node.args if isinstance(child, WktNode) and child.keyword in CRS_KEYWORDS)
        try:
            return CompoundCrs(
                name,
                components,
                identifier=self.identifier(node),
                area_of_use=self.area(node),
                remarks=self.remarks(node),
            )
        except CrsValidationError as exc:
            raise _GrammarError(exc.message) from exc

    def bound(self, node: WktNode) -> BoundCrs:
        source = node.child("SOURCECRS")
        target = node.child("TARGETCRS")
        transformation_node = node.child("ABRIDGEDTRANSFORMATION")
        if source is None or target is None or transformation_node is None:
            raise _GrammarError("BOUNDCRS needs SOURCECRS, TARGETCRS and ABRIDGEDTRANSFORMATION")
        base = self._single_crs(source)
        hub = self._single_crs(target)
        name = self.text(transformation_node, 0, "name")
        method_node = transformation_node.child("METHOD")
        if method_node is None:
            raise _GrammarError(f"ABRIDGEDTRANSFORMATION[{name!r}] is missing METHOD")
        method, spec = self.method(method_node)
        parameters = self.parameters(transformation_node, spec, method.name, None, None)
        grids = tuple(
            GridRef(g.lstrip("@"))
            for p in parameters
            if isinstance(p.value, str)
            for g in p.value.split(",")
            if g
        )
        transformation = Transformation(
            name=name,
            method=method,
            parameters=parameters,
            identifier=self.identifier(transformation_node),
            grids=grids,
        )
        try:
            return BoundCrs(base, hub, transformation)
        except CrsValidationError as exc:
            raise _GrammarError(exc.message) from exc

    def _single_crs(self, holder: WktNode) -> Crs:
        inner = [a for a in holder.args if isinstance(a, WktNode) and a.keyword in CRS_KEYWORDS]
        if len(inner) != 1:
            raise _GrammarError(f"{holder.keyword} must hold exactly one CRS")
        return self.crs(inner[0])

    def engineering(self, node: WktNode) -> EngineeringCrs:
        name = self.text(node, 0, "name")
        datum_node = node.child("EDATUM", "ENGINEERINGDATUM", "LOCAL_DATUM")
        if datum_node is None:
            raise _GrammarError(f"{node.keyword}[{name!r}] is missing EDATUM")
        if node.keyword == "LOCAL_CS":
            unit = self.unit(node, UnitKind.LINEAR) or METRE
            cs = self.wkt1_cs(node, CsType.CARTESIAN, unit, cartesian_2d(unit))
        else:
            cs = self.cs(node, cartesian_2d())
        try:
            return EngineeringCrs(
                name,
                self.text(datum_node, 0, "name"),
                cs,
                identifier=self.identifier(node),
                area_of_use=self.area(node),
                remarks=self.remarks(node),
            )
        except CrsValidationError as exc:
            raise _GrammarError(exc.message) from exc

    def temporal(self, node: WktNode) -> TemporalCrs:
        name = self.text(node, 0, "name")
        datum_node = node.child("TDATUM", "TIMEDATUM")
        if datum_node is None:
            raise _GrammarError(f"{node.keyword}[{name!r}] is missing TDATUM")
        origin_node = datum_node.child("TIMEORIGIN")
        origin = str(origin_node.scalars[0]) if origin_node is not None and origin_node.scalars else ""
        cs = self.cs(node, temporal())
        try:
            return TemporalCrs(
                name,
                self.text(datum_node, 0, "name"),
                cs,
                origin,
                identifier=self.identifier(node),
                area_of_use=self.area(node),
                remarks=self.remarks(node),
            )
        except CrsValidationError as exc:
            raise _GrammarError(exc.message) from exc

    # -- WKT1 -----------------------------------------------------------------

    def _wkt1_unit(self, node: WktNode, kind: UnitKind) -> Unit:
        unit = self.unit(node, kind)
        if unit is None:
            unit = _default_unit(kind)
            self.warn(f"{node.keyword} has no UNIT: assuming {unit.name}")
        return unit

    def wkt1_geographic(self, node: WktNode) -> Crs:
        name = self.text(node, 0, "name")
        angular = self._wkt1_unit(node, UnitKind.ANGULAR)
        datum, towgs84 = self.geodetic_datum(node, angular)
        cs = self.wkt1_cs(node, CsType.ELLIPSOIDAL, angular, ellipsoidal_2d(lat_first=False))
        try:
            crs: Crs = GeographicCrs(name, datum, cs, identifier=self.identifier(node))
        except CrsValidationError as exc:
            raise _GrammarError(exc.message) from exc
        return self._bind_towgs84(crs, towgs84)

    def wkt1_geocentric(self, node: WktNode) -> Crs:
        name = self.text(node, 0, "name")
        linear = self._wkt1_unit(node, UnitKind.LINEAR)
        datum, towgs84 = self.geodetic_datum(node, DEGREE)
        cs = self.wkt1_cs(node, CsType.CARTESIAN, linear, cartesian_3d_geocentric(linear))
        try:
            crs: Crs = GeocentricCrs(name, datum, cs, identifier=self.identifier(node))
        except CrsValidationError as exc:
            raise _GrammarError(exc.message) from exc
        return self._bind_towgs84(crs, towgs84)

    def wkt1_projected(self, node: WktNode) -> Crs:
        name = self.text(node, 0, "name")
        base_node = node.child("GEOGCS")
        if base_node is None:
            raise _GrammarError(f"PROJCS[{name!r}] is missing GEOGCS")
        base = self.wkt1_geographic(base_node)
        bound = base if isinstance(base, BoundCrs) else None
        geographic = bound.base_crs if bound is not None else base
        if not isinstance(geographic, GeographicCrs):
            raise _GrammarError(f"PROJCS[{name!r}] base CRS is not geographic")
        projection = node.child("PROJECTION")
        if projection is None:
            raise _GrammarError(f"PROJCS[{name!r}] is missing PROJECTION")
        linear = self._wkt1_unit(node, UnitKind.LINEAR)
        method, spec = self.method(projection)
        angular = geographic.cs.horizontal_unit()
        parameters = self.parameters(node, spec, method.name, angular, linear)
        conversion = Conversion(name="unnamed", method=method, parameters=parameters)
        cs = self.wkt1_cs(node, CsType.CARTESIAN, linear, cartesian_2d(linear))
        try:
            crs: Crs = ProjectedCrs(name, geographic, conversion, cs, identifier=self.identifier(node))
        except CrsValidationError as exc:
            raise _GrammarError(exc.message) from exc
        if bound is not None:
            return BoundCrs(crs, bound.hub_crs, bound.transformation)
        return crs

    def wkt1_vertical(self, node: WktNode) -> VerticalCrs:
        name = self.text(node, 0, "name")
        datum_node = node.child("VERT_DATUM")
        if datum_node is None:
            raise _GrammarError(f"VERT_CS[{name!r}] is missing VERT_DATUM")
        linear = self._wkt1_unit(node, UnitKind.LINEAR)
        cs = self.wkt1_cs(node, CsType.VERTICAL, linear, vertical(linear))
        datum = VerticalDatum(self.text(datum_node, 0, "name"), identifier=self.identifier(datum_node))
        try:
            return VerticalCrs(name, datum, cs, identifier=self.identifier(node))
        except CrsValidationError as exc:
            raise _GrammarError(exc.message) from exc

    def _bind_towgs84(self, crs: Crs, towgs84: WktNode | None) -> Crs:
        if towgs84 is None:
            return crs
        values = [self.number(towgs84, i, "value") for i in range(len(towgs84.scalars))]
        if len(values) not in (3, 7):
            raise _GrammarError(f"TOWGS84 needs 3 or 7 values, got {len(values)}")
        if not any(values):
            return crs
        transformation = catalog.towgs84_transformation(
            values, name=f"Transformation from {crs.name} to WGS84"
        )
        return BoundCrs(crs, wgs84_geographic(), transformation)


def _axis_order(node: WktNode, position: int) -> int:
    order = node.child("ORDER")
    if order is not None and order.scalars and isinstance(order.scalars[0], float):
        return int(order.scalars[0])
    return position + 1


def _axis_unit_kind(direction: AxisDirection, cs_type: CsType) -> UnitKind:
    if cs_type is CsType.TEMPORAL:
        return UnitKind.TIME
    if cs_type is CsType.ELLIPSOIDAL and direction not in (AxisDirection.UP, AxisDirection.DOWN):
        return UnitKind.ANGULAR
    return UnitKind.LINEAR


def _default_unit(kind: UnitKind) -> Unit:
    return {UnitKind.ANGULAR: DEGREE, UnitKind.LINEAR: METRE, UnitKind.TIME: YEAR}.get(kind, UNITY)


def _with_unit(cs: CoordinateSystem, unit: Unit | None) -> CoordinateSystem:
    if unit is None:
        return cs
    axes = tuple(
        AxisInfo(a.name, a.abbreviation, a.direction, unit) if a.unit.kind is unit.kind else a
        for a in cs.axes
    )
    return CoordinateSystem(cs.cs_type, axes)


def parse_wkt(text: str) -> WktResult:
    """Parse a WKT1 or WKT2 CRS definition.

    Raises:
        ParseError: On any grammar error; ``warnings`` holds the semantic
            warnings collected before the failure.
    """
    root = parse_tree(text)
    if root.keyword not in CRS_KEYWORDS:
        raise ParseError(grammar_errors=[f"Unknown root keyword {root.keyword}"])
    builder = _Builder()
    try:
        crs = builder.crs(root)
    except _GrammarError as exc:
        raise ParseError(grammar_errors=[str(exc)], warnings=builder.warnings) from exc
    for message in builder.warnings:
        logger.warning("WKT warning | %s", message)
    return WktResult(crs, builder.warnings)


# ---------------------------------------------------------------------------
# WKT2:2019 output
# ---------------------------------------------------------------------------


def _quote(text: str) -> str:
    return '"' + text.replace('"', '""') + '"'


def _number(value: float) -> str:
    if float(value).is_integer() and abs(value) < 1e15:
        return str(int(value))
    return format(value, ".16g")


def render(node: WktNode, depth: int = 0) -> str:
    """Render a node tree with one nested element per line."""
    parts: list[str] = []
    indent = "    " * (depth + 1)
    for index, arg in enumerate(node.args):
        if isinstance(arg, WktNode):
            text = render(arg, depth + 1)
            parts.append(("\n" + indent if index else "") + text)
        elif isinstance(arg, Ident):
            parts.append(str(arg))
        elif isinstance(arg, str):
            parts.append(_quote(arg))
        else:
            parts.append(_number(arg))
    return f"{node.keyword}[{','.join(parts)}]"


_UNIT_KEYWORD_BY_KIND = {
    UnitKind.ANGULAR: "ANGLEUNIT",
    UnitKind.LINEAR: "LENGTHUNIT",
    UnitKind.SCALE: "SCALEUNIT",
    UnitKind.TIME: "TIMEUNIT",
}


def _unit_node(unit: Unit) -> WktNode:
    return WktNode(_UNIT_KEYWORD_BY_KIND[unit.kind], [unit.name, unit.factor])


def _id_node(identifier: Identifier | None) -> list[WktNode]:
    if identifier is None:
        return []
    code: str | float = float(identifier.code) if identifier.code.isdigit() else identifier.code
    return [WktNode("ID", [identifier.authority, code])]


def _usage_nodes(crs: Crs) -> list[WktNode]:
    area = crs.area_of_use
    if area is None:
        return []
    usage = WktNode(
        "USAGE",
        [
            WktNode("SCOPE", ["unknown"]),
            WktNode("AREA", [area.name or "unknown"]),
            WktNode("BBOX", [area.south, area.west, area.north, area.east]),
        ],
    )
    return [usage]


def _ellipsoid_node(ellipsoid: Ellipsoid) -> WktNode:
    return WktNode(
        "ELLIPSOID",
        [ellipsoid.name, ellipsoid.semi_major, ellipsoid.inverse_flattening or 0.0, _unit_node(METRE)],
    )


def _datum_nodes(datum: GeodeticDatum | DatumEnsemble | VerticalDatum) -> list[WktNode]:
    if isinstance(datum, DatumEnsemble):
        args: list[WktValue] = [datum.name]
        args.extend(WktNode("MEMBER", [m.name]) for m in datum.members)
        if datum.ellipsoid is not None:
            args.append(_ellipsoid_node(datum.ellipsoid))
        args.append(WktNode("ENSEMBLEACCURACY", [datum.accuracy]))
        args.extend(_id_node(datum.identifier))
        return [WktNode("ENSEMBLE", args)]
    if isinstance(datum, VerticalDatum):
        return [WktNode("VDATUM", [datum.name, *_id_node(datum.identifier)])]
    nodes = []
    if datum.frame_reference_epoch is not None:
        nodes.append(WktNode("DYNAMIC", [WktNode("FRAMEEPOCH", [datum.frame_reference_epoch])]))
    nodes.append(
        WktNode("DATUM", [datum.name, _ellipsoid_node(datum.ellipsoid), *_id_node(datum.identifier)])
    )
    return nodes


def _primem_node(pm: PrimeMeridian) -> WktNode:
    return WktNode("PRIMEM", [pm.name, pm.longitude_degrees, _unit_node(DEGREE)])


def _cs_nodes(cs: CoordinateSystem) -> list[WktNode]:
    type_name = Ident(cs.cs_type.value)
    nodes = [WktNode("CS", [type_name, float(cs.axis_count)])]
    for order, axis in enumerate(cs.axes, start=1):
        label = f"{axis.name} ({axis.abbreviation})" if axis.abbreviation else axis.name
        nodes.append(
            WktNode(
                "AXIS",
                [label, Ident(axis.direction.value), WktNode("ORDER", [float(order)]), _unit_node(axis.unit)],
            )
        )
    return nodes


def _method_node(method: MethodRef) -> WktNode:
    args: list[WktValue] = [method.name]
    if method.authority and method.code:
        code = float(method.code) if method.code.isdigit() else method.code
        args.append(WktNode("ID", [method.authority, code]))
    return WktNode("METHOD", args)


def _parameter_nodes(parameters: tuple[Parameter, ...]) -> list[WktNode]:
    nodes = []
    for p in parameters:
        if isinstance(p.value, str):
            nodes.append(WktNode("PARAMETERFILE", [p.name, p.value]))
            continue
        args: list[WktValue] = [p.name, float(p.value)]
        if p.unit is not None:
            args.append(_unit_node(p.unit))
        if p.code:
            args.append(WktNode("ID", ["EPSG", float(p.code)]))
        nodes.append(WktNode("PARAMETER", args))
    return nodes


def _crs_node(crs: Crs) -> WktNode:
    trailer = [*_usage_nodes(crs), *_id_node(crs.identifier)]
    if crs.remarks:
        trailer.append(WktNode("REMARK", [crs.remarks]))
    if isinstance(crs, GeographicCrs | GeocentricCrs):
        keyword = "GEOGCRS" if isinstance(crs, GeographicCrs) else "GEODCRS"
        return WktNode(
            keyword,
            [crs.name, *_datum_nodes(crs.datum), _primem_node(crs.prime_meridian or GREENWICH), *_cs_nodes(crs.cs), *trailer],
        )
    if isinstance(crs, ProjectedCrs):
        base = crs.base_crs
        base_node = WktNode(
            "BASEGEOGCRS",
            [
                base.name,
                *_datum_nodes(base.datum),
                _primem_node(base.prime_meridian or GREENWICH),
                _unit_node(base.cs.horizontal_unit()),
                *_id_node(base.identifier),
            ],
        )
        conversion = crs.conversion
        conversion_node = WktNode(
            "CONVERSION",
            [
                conversion.name,
                _method_node(conversion.method),
                *_parameter_nodes(conversion.parameters),
                *_id_node(conversion.identifier),
            ],
        )
        return WktNode("PROJCRS", [crs.name, base_node, conversion_node, *_cs_nodes(crs.cs), *trailer])
    if isinstance(crs, VerticalCrs):
        return WktNode("VERTCRS", [crs.name, *_datum_nodes(crs.datum), *_cs_nodes(crs.cs), *trailer])
    if isinstance(crs, CompoundCrs):
        return WktNode("COMPOUNDCRS", [crs.name, *(_crs_node(c) for c in crs.components), *trailer])
    if isinstance(crs, BoundCrs):
        transformation = crs.transformation
        abridged = WktNode(
            "ABRIDGEDTRANSFORMATION",
            [
                transformation.name,
                _method_node(transformation.method),
                *_parameter_nodes(transformation.parameters),
                *_id_node(transformation.identifier),
            ],
        )
        return WktNode(
            "BOUNDCRS",
            [
                WktNode("SOURCECRS", [_crs_node(crs.base_crs)]),
                WktNode("TARGETCRS", [_crs_node(crs.hub_crs)]),
                abridged,
            ],
        )
    if isinstance(crs, EngineeringCrs):
        return WktNode("ENGCRS", [crs.name, WktNode("EDATUM", [crs.datum_name]), *_cs_nodes(crs.cs), *trailer])
    if isinstance(crs, TemporalCrs):
        datum_args: list[WktValue] = [crs.datum_name]
        if crs.origin:
            datum_args.append(WktNode("TIMEORIGIN", [crs.origin]))
        return WktNode("TIMECRS", [crs.name, WktNode("TDATUM", datum_args), *_cs_nodes(crs.cs), *trailer])
    raise CrsValidationError(f"{crs.kind.value} CRS {crs.name!r} has no WKT representation")


def crs_to_wkt(crs: Crs) -> str:
    """Serialise *crs* as WKT2:2019."""
    return render(_crs_node(crs))
