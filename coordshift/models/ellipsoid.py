"""Reference ellipsoids and prime meridians.

Both are immutable value types.  An ellipsoid is defined by its semi-major
axis plus *either* its semi-minor axis *or* its inverse flattening; the
other quantity is derived and ``computed`` records which one that was.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from coordshift.core.exceptions import CrsValidationError
from coordshift.models.units import DEGREE, GRAD, Unit


@dataclass(frozen=True, slots=True)
class Ellipsoid:
    """A reference ellipsoid.

    Attributes:
        name: Ellipsoid name (e.g. ``"WGS 84"``).
        semi_major: Semi-major axis in metres.
        semi_minor: Semi-minor axis in metres (derived when not given).
        inverse_flattening: Inverse flattening (0 for a sphere, derived when not given).
        computed: The derived quantity, ``"semi_minor"`` or ``"inverse_flattening"``.
        proj_id: proj-string ellipsoid id (``"WGS84"``, ``"clrk66"``), if known.
    """

    name: str
    semi_major: float
    semi_minor: float | None = None
    inverse_flattening: float | None = None
    computed: str = field(default="", compare=False)
    proj_id: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        if not math.isfinite(self.semi_major) or self.semi_major <= 0:
            raise CrsValidationError(
                f"Ellipsoid {self.name!r}: semi-major axis must be > 0, got {self.semi_major}"
            )
        if self.semi_minor is None and self.inverse_flattening is None:
            raise CrsValidationError(
                f"Ellipsoid {self.name!r}: semi-minor axis or inverse flattening is required"
            )
        if self.semi_minor is None:
            rf = self.inverse_flattening
            if rf is None or rf < 0 or (0 < rf <= 1):
                raise CrsValidationError(
                    f"Ellipsoid {self.name!r}: inverse flattening must be 0 or > 1, got {rf}"
                )
            b = self.semi_major if rf == 0 else self.semi_major * (1.0 - 1.0 / rf)
            object.__setattr__(self, "semi_minor", b)
            object.__setattr__(self, "computed", "semi_minor")
        elif self.inverse_flattening is None:
            b = self.semi_minor
            if b <= 0 or b > self.semi_major:
                raise CrsValidationError(
                    f"Ellipsoid {self.name!r}: semi-minor axis must be in (0, a], got {b}"
                )
            rf = 0.0 if b == self.semi_major else self.semi_major / (self.semi_major - b)
            object.__setattr__(self, "inverse_flattening", rf)
            object.__setattr__(self, "computed", "inverse_flattening")

    @classmethod
    def sphere(cls, name: str, radius: float) -> Ellipsoid:
        return cls(name, radius, inverse_flattening=0.0)

    @property
    def is_sphere(self) -> bool:
        return self.inverse_flattening == 0.0

    @property
    def flattening(self) -> float:
        rf = self.inverse_flattening or 0.0
        return 0.0 if rf == 0.0 else 1.0 / rf

    @property
    def eccentricity_squared(self) -> float:
        f = self.flattening
        return f * (2.0 - f)

    def is_equivalent_to(self, other: Ellipsoid, rel_tol: float = 1e-10) -> bool:
        """Compare the figures of two ellipsoids, ignoring names."""
        return math.isclose(self.semi_major, other.semi_major, rel_tol=rel_tol) and math.isclose(
            self.inverse_flattening or 0.0, other.inverse_flattening or 0.0, rel_tol=rel_tol
        )

    def __str__(self) -> str:
        return self.proj_id or self.name


@dataclass(frozen=True, slots=True)
class PrimeMeridian:
    """Longitude of a prime meridian relative to Greenwich.

    Attributes:
        name: Meridian name (e.g. ``"Paris"``).
        longitude: Offset from Greenwich, expressed in ``unit``.
        unit: Angular unit of ``longitude``.
        proj_id: proj-string id (``"paris"``), if known.
    """

    name: str
    longitude: float = 0.0
    unit: Unit = DEGREE
    proj_id: str = field(default="", compare=False)

    @property
    def longitude_degrees(self) -> float:
        return self.longitude * self.unit.factor / DEGREE.factor

    @property
    def is_greenwich(self) -> bool:
        return self.longitude == 0.0

    def __str__(self) -> str:
        return self.proj_id or self.name


# ---------------------------------------------------------------------------
# Catalogues
# ---------------------------------------------------------------------------

_ELLIPSOIDS: dict[str, Ellipsoid] = {
    e.proj_id: e
    for e in (
        Ellipsoid("WGS 84", 6378137.0, inverse_flattening=298.257223563, proj_id="WGS84"),
        Ellipsoid("GRS 1980", 6378137.0, inverse_flattening=298.257222101, proj_id="GRS80"),
        Ellipsoid("WGS 72", 6378135.0, inverse_flattening=298.26, proj_id="WGS72"),
        Ellipsoid("Clarke 1866", 6378206.4, semi_minor=6356583.8, proj_id="clrk66"),
        Ellipsoid("Clarke 1880 (RGS)", 6378249.145, inverse_flattening=293.465, proj_id="clrk80"),
        Ellipsoid("Clarke 1880 (IGN)", 6378249.2, semi_minor=6356515.0, proj_id="clrk80ign"),
        Ellipsoid("International 1924", 6378388.0, inverse_flattening=297.0, proj_id="intl"),
        Ellipsoid("Bessel 1841", 6377397.155, inverse_flattening=299.1528128, proj_id="bessel"),
        Ellipsoid("Airy 1830", 6377563.396, semi_minor=6356256.910, proj_id="airy"),
        Ellipsoid("Airy Modified 1849", 6377340.189, semi_minor=6356034.446, proj_id="mod_airy"),
        Ellipsoid(
            "Australian National Spheroid", 6378160.0, inverse_flattening=298.25, proj_id="aust_SA"
        ),
        Ellipsoid("Krassowsky 1940", 6378245.0, inverse_flattening=298.3, proj_id="krass"),
        Ellipsoid("GRS 1967", 6378160.0, inverse_flattening=298.247167427, proj_id="GRS67"),
        Ellipsoid("Normal Sphere (r=6370997)", 6370997.0, inverse_flattening=0.0, proj_id="sphere"),
    )
}

_PRIME_MERIDIANS: dict[str, PrimeMeridian] = {
    pm.proj_id: pm
    for pm in (
        PrimeMeridian("Greenwich", 0.0, proj_id="greenwich"),
        PrimeMeridian("Lisbon", -9.131906111111, proj_id="lisbon"),
        PrimeMeridian("Paris", 2.5969213, GRAD, proj_id="paris"),
        PrimeMeridian("Bogota", -74.080916666667, proj_id="bogota"),
        PrimeMeridian("Madrid", -3.687938888889, proj_id="madrid"),
        PrimeMeridian("Rome", 12.452333333333, proj_id="rome"),
        PrimeMeridian("Bern", 7.439583333333, proj_id="bern"),
        PrimeMeridian("Jakarta", 106.807719444444, proj_id="jakarta"),
        PrimeMeridian("Ferro", -17.666666666667, proj_id="ferro"),
        PrimeMeridian("Brussels", 4.367975, proj_id="brussels"),
        PrimeMeridian("Stockholm", 18.058277777778, proj_id="stockholm"),
        PrimeMeridian("Athens", 23.7163375, proj_id="athens"),
        PrimeMeridian("Oslo", 10.722916666667, proj_id="oslo"),
    )
}

GREENWICH = _PRIME_MERIDIANS["greenwich"]
WGS84_ELLIPSOID = _ELLIPSOIDS["WGS84"]
GRS80_ELLIPSOID = _ELLIPSOIDS["GRS80"]


def list_ellipsoids() -> list[Ellipsoid]:
    """Return the built-in ellipsoids sorted by proj id."""
    return [_ELLIPSOIDS[k] for k in sorted(_ELLIPSOIDS)]


def get_ellipsoid(proj_id: str) -> Ellipsoid | None:
    return _ELLIPSOIDS.get(proj_id)


def find_ellipsoid(name: str) -> Ellipsoid | None:
    """Find a built-in ellipsoid by proj id or (normalised) name."""
    if name in _ELLIPSOIDS:
        return _ELLIPSOIDS[name]
    wanted = normalize_name(name)
    for ellipsoid in _ELLIPSOIDS.values():
        if normalize_name(ellipsoid.name) == wanted or normalize_name(ellipsoid.proj_id) == wanted:
            return ellipsoid
    return None


def list_prime_meridians() -> list[PrimeMeridian]:
    """Return the built-in prime meridians sorted by proj id."""
    return [_PRIME_MERIDIANS[k] for k in sorted(_PRIME_MERIDIANS)]


def get_prime_meridian(proj_id: str) -> PrimeMeridian | None:
    return _PRIME_MERIDIANS.get(proj_id.lower())


def normalize_name(name: str) -> str:
    """Normalise an object name for cosmetic-insensitive comparison.

    Lower-cases, drops non-alphanumerics and the ``d_`` prefix used by
    ESRI datum names.
    """
    lowered = name.lower()
    if lowered.startswith("d_"):
        lowered = lowered[2:]
    return "".join(ch for ch in lowered if ch.isalnum())
