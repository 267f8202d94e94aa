"""Coordinate reference systems.

``Crs`` is a closed sum type: one frozen dataclass per kind.  Each variant
validates its axis-count invariant at construction and raises
``CrsValidationError`` on violation.  Callers dispatch with ``isinstance``
or on ``crs.kind``.
"""

from __future__ import annotations

import abc
import enum
import math
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, cast

from coordshift.core.exceptions import CrsValidationError
from coordshift.models.coordinate_system import (
    AxisDirection,
    AxisInfo,
    CoordinateSystem,
    CsType,
    cartesian_2d,
    cartesian_3d_geocentric,
    temporal,
    vertical,
)
from coordshift.models.datum import (
    Datum,
    DatumEnsemble,
    GeodeticDatum,
    VerticalDatum,
    datum_ellipsoid,
    datum_prime_meridian,
    datums_equivalent,
)
from coordshift.models.ellipsoid import normalize_name
from coordshift.models.units import METRE

if TYPE_CHECKING:
    from coordshift.models.area import Area
    from coordshift.models.ellipsoid import Ellipsoid, PrimeMeridian
    from coordshift.models.identifier import Identifier
    from coordshift.models.operation import Conversion, Operation, Transformation
    from coordshift.registry.base import Registry


class CrsKind(enum.Enum):
    GEOGRAPHIC_2D = "geographic 2D"
    GEOGRAPHIC_3D = "geographic 3D"
    GEOCENTRIC = "geocentric"
    PROJECTED = "projected"
    VERTICAL = "vertical"
    COMPOUND = "compound"
    BOUND = "bound"
    ENGINEERING = "engineering"
    TEMPORAL = "temporal"
    OTHER = "other"


class ComparisonCriterion(enum.Enum):
    """Strictness levels of ``Crs.is_equivalent_to``.

    STRICT compares every attribute, names included.  EQUIVALENT allows
    cosmetic differences: normalised names, numeric tolerance, identifiers
    ignored.  EQUIVALENT_EXCEPT_AXIS_ORDER_GEOGCRS additionally ignores the
    axis order of geographic CRSs and may consult a registry for aliases.
    """

    STRICT = "strict"
    EQUIVALENT = "equivalent"
    EQUIVALENT_EXCEPT_AXIS_ORDER_GEOGCRS = "equivalent_except_axis_order_geogcrs"


class Crs(abc.ABC):
    """Behaviour shared by every CRS variant."""

    __slots__ = ()

    name: str
    identifier: Identifier | None
    area_of_use: Area | None
    remarks: str

    @property
    @abc.abstractmethod
    def kind(self) -> CrsKind:
        """The variant's kind."""

    @property
    def geodetic_crs(self) -> GeographicCrs | GeocentricCrs | None:
        """The underlying geographic or geocentric CRS, if any."""
        return None

    @property
    def horizontal_crs(self) -> Crs | None:
        return None

    @property
    def vertical_crs(self) -> VerticalCrs | None:
        return None

    @property
    def datum(self) -> Datum | None:
        return None

    @property
    def ellipsoid(self) -> Ellipsoid | None:
        datum = self.datum
        return datum_ellipsoid(datum) if datum is not None else None

    @property
    def prime_meridian(self) -> PrimeMeridian | None:
        datum = self.datum
        if datum is None or datum_ellipsoid(datum) is None:
            return None
        return datum_prime_meridian(datum)

    @property
    def axis_count(self) -> int:
        return 0

    def promote_to_3d(self) -> Crs:
        return self

    def demote_to_2d(self) -> Crs:
        return self

    def with_normalized_axes(self) -> Crs:
        """Return the variant whose axes are in visualization order."""
        return self

    def replace(self, **changes: object) -> Crs:
        return replace(self, **changes)  # type: ignore[type-var]

    def to_proj_string(self) -> str:
        from coordshift.parsing.proj_string import crs_to_proj_string

        return crs_to_proj_string(self)

    def to_wkt(self) -> str:
        from coordshift.parsing.wkt import crs_to_wkt

        return crs_to_wkt(self)

    def is_equivalent_to(
        self,
        other: Crs,
        criterion: ComparisonCriterion = ComparisonCriterion.EQUIVALENT,
        registry: Registry | None = None,
    ) -> bool:
        return crs_equivalent(self, other, criterion, registry)

    def __str__(self) -> str:
        if self.identifier is not None:
            return f"{self.name} ({self.identifier})"
        return self.name


def _require_cs(crs: str, cs: CoordinateSystem, cs_type: CsType, counts: tuple[int, ...]) -> None:
    if cs.cs_type is not cs_type or cs.axis_count not in counts:
        raise CrsValidationError(
            f"{crs} requires a {cs_type.value} coordinate system with "
            f"{' or '.join(map(str, counts))} axes, got {cs.cs_type.value} with {cs.axis_count}"
        )


def _geodetic_datum(crs: str, datum: object) -> None:
    if isinstance(datum, GeodeticDatum):
        return
    if isinstance(datum, DatumEnsemble) and not datum.is_vertical:
        return
    raise CrsValidationError(f"{crs} requires a geodetic datum or ensemble")


_ELLIPSOIDAL_HEIGHT_NAME = "Ellipsoidal height"


# ---------------------------------------------------------------------------
# Variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class GeographicCrs(Crs):
    """Latitude/longitude (and optionally ellipsoidal height) on a datum."""

    name: str
    datum: GeodeticDatum | DatumEnsemble = field()
    cs: CoordinateSystem
    identifier: Identifier | None = None
    area_of_use: Area | None = None
    remarks: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        _geodetic_datum("GeographicCrs", self.datum)
        _require_cs("GeographicCrs", self.cs, CsType.ELLIPSOIDAL, (2, 3))

    @property
    def kind(self) -> CrsKind:
        return CrsKind.GEOGRAPHIC_3D if self.cs.axis_count == 3 else CrsKind.GEOGRAPHIC_2D

    @property
    def geodetic_crs(self) -> GeographicCrs:
        return self

    @property
    def horizontal_crs(self) -> GeographicCrs:
        return self

    @property
    def axis_count(self) -> int:
        return self.cs.axis_count

    def promote_to_3d(self) -> GeographicCrs:
        if self.cs.axis_count == 3:
            return self
        height = AxisInfo(_ELLIPSOIDAL_HEIGHT_NAME, "h", AxisDirection.UP, METRE)
        cs = CoordinateSystem(CsType.ELLIPSOIDAL, (*self.cs.axes, height))
        return replace(self, cs=cs, identifier=None)

    def demote_to_2d(self) -> GeographicCrs:
        if self.cs.axis_count == 2:
            return self
        axes = tuple(a for a in self.cs.axes if a.direction not in (AxisDirection.UP, AxisDirection.DOWN))
        return replace(self, cs=CoordinateSystem(CsType.ELLIPSOIDAL, axes), identifier=None)

    def with_normalized_axes(self) -> GeographicCrs:
        cs = self.cs.normalized()
        return self if cs == self.cs else replace(self, cs=cs, identifier=None)


@dataclass(frozen=True, slots=True)
class GeocentricCrs(Crs):
    """Earth-centred Cartesian X/Y/Z on a datum."""

    name: str
    datum: GeodeticDatum | DatumEnsemble = field()
    cs: CoordinateSystem = field(default_factory=cartesian_3d_geocentric)
    identifier: Identifier | None = None
    area_of_use: Area | None = None
    remarks: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        _geodetic_datum("GeocentricCrs", self.datum)
        _require_cs("GeocentricCrs", self.cs, CsType.CARTESIAN, (3,))

    @property
    def kind(self) -> CrsKind:
        return CrsKind.GEOCENTRIC

    @property
    def geodetic_crs(self) -> GeocentricCrs:
        return self

    @property
    def horizontal_crs(self) -> GeocentricCrs:
        return self

    @property
    def axis_count(self) -> int:
        return 3


@dataclass(frozen=True, slots=True)
class ProjectedCrs(Crs):
    """A map projection of a base geographic CRS."""

    name: str
    base_crs: GeographicCrs
    conversion: Conversion
    cs: CoordinateSystem = field(default_factory=cartesian_2d)
    identifier: Identifier | None = None
    area_of_use: Area | None = None
    remarks: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.base_crs, GeographicCrs):
            raise CrsValidationError("ProjectedCrs requires a geographic base CRS")
        _require_cs("ProjectedCrs", self.cs, CsType.CARTESIAN, (2, 3))

    @property
    def kind(self) -> CrsKind:
        return CrsKind.PROJECTED

    @property
    def geodetic_crs(self) -> GeographicCrs:
        return self.base_crs

    @property
    def horizontal_crs(self) -> ProjectedCrs:
        return self

    @property
    def datum(self) -> GeodeticDatum | DatumEnsemble:
        return self.base_crs.datum

    @property
    def axis_count(self) -> int:
        return self.cs.axis_count

    def promote_to_3d(self) -> ProjectedCrs:
        if self.cs.axis_count == 3:
            return self
        height = AxisInfo(_ELLIPSOIDAL_HEIGHT_NAME, "h", AxisDirection.UP, METRE)
        cs = CoordinateSystem(CsType.CARTESIAN, (*self.cs.axes, height))
        return replace(self, cs=cs, base_crs=self.base_crs.promote_to_3d(), identifier=None)

    def demote_to_2d(self) -> ProjectedCrs:
        if self.cs.axis_count == 2:
            return self
        axes = tuple(a for a in self.cs.axes if a.direction not in (AxisDirection.UP, AxisDirection.DOWN))
        return replace(
            self,
            cs=CoordinateSystem(CsType.CARTESIAN, axes),
            base_crs=self.base_crs.demote_to_2d(),
            identifier=None,
        )

    def with_normalized_axes(self) -> ProjectedCrs:
        cs = self.cs.normalized()
        return self if cs == self.cs else replace(self, cs=cs, identifier=None)

    def conversion_operation(self) -> Conversion:
        """The defining conversion bound to its base and this CRS."""
        return self.conversion.replace(  # type: ignore[return-value]
            source_crs=self.base_crs, target_crs=self, area_of_use=self.area_of_use
        )


@dataclass(frozen=True, slots=True)
class VerticalCrs(Crs):
    """Gravity-related heights or depths."""

    name: str
    datum: VerticalDatum | DatumEnsemble = field()
    cs: CoordinateSystem = field(default_factory=vertical)
    identifier: Identifier | None = None
    area_of_use: Area | None = None
    remarks: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.datum, VerticalDatum) and not (
            isinstance(self.datum, DatumEnsemble) and self.datum.is_vertical
        ):
            raise CrsValidationError("VerticalCrs requires a vertical datum or ensemble")
        _require_cs("VerticalCrs", self.cs, CsType.VERTICAL, (1,))

    @property
    def kind(self) -> CrsKind:
        return CrsKind.VERTICAL

    @property
    def vertical_crs(self) -> VerticalCrs:
        return self

    @property
    def axis_count(self) -> int:
        return 1


@dataclass(frozen=True, slots=True)
class CompoundCrs(Crs):
    """A horizontal CRS followed by a vertical (or other) CRS."""

    name: str
    components: tuple[Crs, ...]
    identifier: Identifier | None = None
    area_of_use: Area | None = None
    remarks: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        if len(self.components) < 2:
            raise CrsValidationError("CompoundCrs requires at least two components")
        if any(isinstance(c, CompoundCrs) for c in self.components):
            raise CrsValidationError("CompoundCrs components must not be compound")
        head = self.components[0]
        base = head.base_crs if isinstance(head, BoundCrs) else head
        if isinstance(base, VerticalCrs) or (
            isinstance(base, GeographicCrs) and base.axis_count == 3
        ):
            raise CrsValidationError("CompoundCrs must start with a 2D horizontal component")
        if sum(c.axis_count for c in self.components) > 4:
            raise CrsValidationError("CompoundCrs has more than four axes")

    @property
    def kind(self) -> CrsKind:
        return CrsKind.COMPOUND

    @property
    def geodetic_crs(self) -> GeographicCrs | GeocentricCrs | None:
        return self.components[0].geodetic_crs

    @property
    def horizontal_crs(self) -> Crs:
        return self.components[0]

    @property
    def vertical_crs(self) -> VerticalCrs | None:
        for component in self.components[1:]:
            vertical_crs = component.vertical_crs
            if vertical_crs is not None:
                return vertical_crs
        return None

    @property
    def datum(self) -> Datum | None:
        return self.components[0].datum

    @property
    def axis_count(self) -> int:
        return sum(c.axis_count for c in self.components)

    def demote_to_2d(self) -> Crs:
        return self.components[0]

    def with_normalized_axes(self) -> CompoundCrs:
        components = tuple(c.with_normalized_axes() for c in self.components)
        if components == self.components:
            return self
        return replace(self, components=components, identifier=None)


@dataclass(frozen=True, slots=True)
class BoundCrs(Crs):
    """A CRS bound to a hub CRS through a transformation (``+towgs84``, ``+nadgrids``)."""

    base_crs: Crs
    hub_crs: Crs
    transformation: Transformation
    name: str = ""
    identifier: Identifier | None = None
    area_of_use: Area | None = None
    remarks: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        if isinstance(self.base_crs, BoundCrs | CompoundCrs):
            raise CrsValidationError("BoundCrs base must be a simple CRS")
        if not self.name:
            object.__setattr__(self, "name", self.base_crs.name)
        if self.area_of_use is None and self.base_crs.area_of_use is not None:
            object.__setattr__(self, "area_of_use", self.base_crs.area_of_use)

    @property
    def kind(self) -> CrsKind:
        return CrsKind.BOUND

    @property
    def geodetic_crs(self) -> GeographicCrs | GeocentricCrs | None:
        return self.base_crs.geodetic_crs

    @property
    def horizontal_crs(self) -> Crs | None:
        return self if self.base_crs.horizontal_crs is not None else None

    @property
    def vertical_crs(self) -> VerticalCrs | None:
        return self.base_crs.vertical_crs

    @property
    def datum(self) -> Datum | None:
        return self.base_crs.datum

    @property
    def axis_count(self) -> int:
        return self.base_crs.axis_count

    def hub_operation(self) -> Operation:
        """The binding transformation with its CRSs set to this base and hub."""
        return self.transformation.replace(source_crs=self.base_crs, target_crs=self.hub_crs)

    def _with_base(self, base: Crs) -> BoundCrs:
        if base == self.base_crs:
            return self
        return replace(self, base_crs=base, identifier=None)

    def promote_to_3d(self) -> BoundCrs:
        return self._with_base(self.base_crs.promote_to_3d())

    def demote_to_2d(self) -> BoundCrs:
        return self._with_base(self.base_crs.demote_to_2d())

    def with_normalized_axes(self) -> BoundCrs:
        return self._with_base(self.base_crs.with_normalized_axes())


@dataclass(frozen=True, slots=True)
class EngineeringCrs(Crs):
    """A local (engineering) CRS."""

    name: str
    datum_name: str
    cs: CoordinateSystem = field(default_factory=cartesian_2d)
    identifier: Identifier | None = None
    area_of_use: Area | None = None
    remarks: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        if not 1 <= self.cs.axis_count <= 3:
            raise CrsValidationError("EngineeringCrs requires 1 to 3 axes")

    @property
    def kind(self) -> CrsKind:
        return CrsKind.ENGINEERING

    @property
    def horizontal_crs(self) -> EngineeringCrs:
        return self

    @property
    def axis_count(self) -> int:
        return self.cs.axis_count


@dataclass(frozen=True, slots=True)
class TemporalCrs(Crs):
    """A time axis anchored at an origin."""

    name: str
    datum_name: str
    cs: CoordinateSystem = field(default_factory=temporal)
    origin: str = ""
    identifier: Identifier | None = None
    area_of_use: Area | None = None
    remarks: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        _require_cs("TemporalCrs", self.cs, CsType.TEMPORAL, (1,))

    @property
    def kind(self) -> CrsKind:
        return CrsKind.TEMPORAL

    @property
    def axis_count(self) -> int:
        return 1


@dataclass(frozen=True, slots=True)
class OtherCrs(Crs):
    """A CRS kind this library can describe but not transform."""

    name: str
    description: str = ""
    identifier: Identifier | None = None
    area_of_use: Area | None = None
    remarks: str = field(default="", compare=False)

    @property
    def kind(self) -> CrsKind:
        return CrsKind.OTHER


# ---------------------------------------------------------------------------
# Equivalence
# ---------------------------------------------------------------------------


def crs_equivalent(
    a: Crs,
    b: Crs,
    criterion: ComparisonCriterion = ComparisonCriterion.EQUIVALENT,
    registry: Registry | None = None,
) -> bool:
    """Compare two CRSs at the given strictness level."""
    if criterion is ComparisonCriterion.STRICT:
        return a == b
    if type(a) is not type(b):
        return False
    lax = criterion is ComparisonCriterion.EQUIVALENT_EXCEPT_AXIS_ORDER_GEOGCRS
    aliases = registry if lax else None

    if isinstance(a, GeographicCrs | GeocentricCrs):
        return datums_equivalent(a.datum, b.datum, aliases) and a.cs.is_equivalent_to(  # type: ignore[attr-defined]
            b.cs, ignore_axis_order=lax and isinstance(a, GeographicCrs)  # type: ignore[attr-defined]
        )
    if isinstance(a, ProjectedCrs):
        b = cast(ProjectedCrs, b)
        return (
            crs_equivalent(
                a.base_crs,
                b.base_crs,
                ComparisonCriterion.EQUIVALENT_EXCEPT_AXIS_ORDER_GEOGCRS,
                aliases,
            )
            and conversions_equivalent(a.conversion, b.conversion)
            and a.cs.is_equivalent_to(b.cs)
        )
    if isinstance(a, VerticalCrs):
        b = cast(VerticalCrs, b)
        return datums_equivalent(a.datum, b.datum, aliases) and a.cs.is_equivalent_to(b.cs)
    if isinstance(a, CompoundCrs):
        b = cast(CompoundCrs, b)
        return len(a.components) == len(b.components) and all(
            crs_equivalent(x, y, criterion, registry) for x, y in zip(a.components, b.components)
        )
    if isinstance(a, BoundCrs):
        b = cast(BoundCrs, b)
        return (
            crs_equivalent(a.base_crs, b.base_crs, criterion, registry)
            and crs_equivalent(a.hub_crs, b.hub_crs, criterion, registry)
            and conversions_equivalent(a.transformation, b.transformation)
        )
    if isinstance(a, EngineeringCrs | TemporalCrs):
        return normalize_name(a.datum_name) == normalize_name(b.datum_name) and a.cs.is_equivalent_to(  # type: ignore[attr-defined]
            b.cs  # type: ignore[attr-defined]
        )
    return normalize_name(a.name) == normalize_name(b.name)


def conversions_equivalent(a: Operation, b: Operation) -> bool:
    """Compare two single operations by method and parameter values."""
    same_method = (a.method.code and a.method.code == b.method.code) or normalize_name(
        a.method.name
    ) == normalize_name(b.method.name)
    if not same_method or len(a.parameters) != len(b.parameters):
        return False
    for parameter in a.parameters:
        other = b.param(parameter.code) if parameter.code else None
        if other is None:
            other = b.param(parameter.name)
        if other is None:
            return False
        if parameter.is_numeric != other.is_numeric:
            return False
        if not parameter.is_numeric:
            if str(parameter.value) != str(other.value):
                return False
        elif not math.isclose(parameter.base_value, other.base_value, rel_tol=1e-10, abs_tol=1e-12):
            return False
    return True


# ---------------------------------------------------------------------------
# Well-known CRSs
# ---------------------------------------------------------------------------


def wgs84_geographic(lat_first: bool = True) -> GeographicCrs:
    """WGS 84 (EPSG:4326 when *lat_first*), the hub of ``+towgs84`` bindings."""
    from coordshift.models.coordinate_system import ellipsoidal_2d
    from coordshift.models.ellipsoid import WGS84_ELLIPSOID
    from coordshift.models.identifier import Identifier

    return GeographicCrs(
        "WGS 84",
        GeodeticDatum("World Geodetic System 1984", WGS84_ELLIPSOID),
        ellipsoidal_2d(lat_first=lat_first),
        identifier=Identifier("EPSG", "4326") if lat_first else None,
    )
