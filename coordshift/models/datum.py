"""Geodetic and vertical datums, datum ensembles and the proj datum table."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Union

from coordshift.core.exceptions import CrsValidationError
from coordshift.models.ellipsoid import (
    GREENWICH,
    Ellipsoid,
    PrimeMeridian,
    get_ellipsoid,
    normalize_name,
)

if TYPE_CHECKING:
    from coordshift.models.identifier import Identifier
    from coordshift.registry.base import Registry


@dataclass(frozen=True, slots=True)
class GeodeticDatum:
    """A geodetic reference frame.

    A datum with a ``frame_reference_epoch`` is dynamic.
    """

    name: str
    ellipsoid: Ellipsoid
    prime_meridian: PrimeMeridian = GREENWICH
    frame_reference_epoch: float | None = None
    identifier: Identifier | None = field(default=None, compare=False)

    @property
    def is_dynamic(self) -> bool:
        return self.frame_reference_epoch is not None


@dataclass(frozen=True, slots=True)
class VerticalDatum:
    """A vertical reference frame."""

    name: str
    frame_reference_epoch: float | None = None
    identifier: Identifier | None = field(default=None, compare=False)

    @property
    def is_dynamic(self) -> bool:
        return self.frame_reference_epoch is not None


@dataclass(frozen=True, slots=True)
class DatumEnsemble:
    """Datums treated as interchangeable within ``accuracy`` metres.

    Geodetic ensembles take their ellipsoid and prime meridian from the
    first member unless given explicitly.
    """

    name: str
    members: tuple[GeodeticDatum | VerticalDatum, ...]
    accuracy: float
    ellipsoid: Ellipsoid | None = None
    prime_meridian: PrimeMeridian | None = None
    identifier: Identifier | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not self.members:
            raise CrsValidationError(f"Datum ensemble {self.name!r} must have at least one member")
        if not math.isfinite(self.accuracy) or self.accuracy < 0:
            raise CrsValidationError(
                f"Datum ensemble {self.name!r}: accuracy must be >= 0, got {self.accuracy}"
            )
        kinds = {type(m) for m in self.members}
        if len(kinds) > 1:
            raise CrsValidationError(
                f"Datum ensemble {self.name!r} mixes geodetic and vertical members"
            )
        first = self.members[0]
        if isinstance(first, GeodeticDatum):
            if self.ellipsoid is None:
                object.__setattr__(self, "ellipsoid", first.ellipsoid)
            if self.prime_meridian is None:
                object.__setattr__(self, "prime_meridian", first.prime_meridian)

    @property
    def count(self) -> int:
        return len(self.members)

    def __getitem__(self, index: int) -> GeodeticDatum | VerticalDatum:
        return self.members[index]

    def __len__(self) -> int:
        return len(self.members)

    @property
    def is_vertical(self) -> bool:
        return isinstance(self.members[0], VerticalDatum)

    @property
    def is_dynamic(self) -> bool:
        return False


Datum = Union[GeodeticDatum, VerticalDatum, DatumEnsemble]


# ---------------------------------------------------------------------------
# Equivalence
# ---------------------------------------------------------------------------


def datum_names(datum: Datum, registry: Registry | None = None) -> set[str]:
    """Return the normalised names a datum is known by.

    Ensembles answer to their own name, to it without the trailing
    ``ensemble`` word and to every member name.  With a *registry*, its
    aliases are added.
    """
    names = {normalize_name(datum.name)}
    if isinstance(datum, DatumEnsemble):
        stripped = normalize_name(datum.name)
        if stripped.endswith("ensemble"):
            names.add(stripped[: -len("ensemble")])
        names.update(normalize_name(m.name) for m in datum.members)
    if registry is not None:
        for name in list(names) + [datum.name]:
            names.update(normalize_name(alias) for alias in registry.aliases(name))
    return names


def datums_equivalent(a: Datum, b: Datum, registry: Registry | None = None) -> bool:
    """Semantic datum comparison: names normalised, figures compared numerically."""
    if _is_vertical(a) != _is_vertical(b):
        return False
    if not datum_names(a, registry) & datum_names(b, registry):
        return False
    if _is_vertical(a):
        return True
    ell_a, ell_b = datum_ellipsoid(a), datum_ellipsoid(b)
    if ell_a is not None and ell_b is not None and not ell_a.is_equivalent_to(ell_b):
        return False
    pm_a, pm_b = datum_prime_meridian(a), datum_prime_meridian(b)
    return math.isclose(pm_a.longitude_degrees, pm_b.longitude_degrees, abs_tol=1e-9)


def datum_ellipsoid(datum: Datum) -> Ellipsoid | None:
    if isinstance(datum, GeodeticDatum):
        return datum.ellipsoid
    if isinstance(datum, DatumEnsemble):
        return datum.ellipsoid
    return None


def datum_prime_meridian(datum: Datum) -> PrimeMeridian:
    if isinstance(datum, GeodeticDatum):
        return datum.prime_meridian
    if isinstance(datum, DatumEnsemble) and datum.prime_meridian is not None:
        return datum.prime_meridian
    return GREENWICH


def _is_vertical(datum: Datum) -> bool:
    return isinstance(datum, VerticalDatum) or (
        isinstance(datum, DatumEnsemble) and datum.is_vertical
    )


# ---------------------------------------------------------------------------
# proj-string datum table
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ProjDatum:
    """An entry of the ``+datum=`` table.

    Attributes:
        proj_id: Value accepted by ``+datum=``.
        name: Datum name used in WKT output.
        ellipsoid_id: proj id of the ellipsoid.
        towgs84: Helmert parameters to WGS 84 (3 or 7 values), if any.
        nadgrids: Comma-separated grid list to WGS 84, if any.
    """

    proj_id: str
    name: str
    ellipsoid_id: str
    towgs84: tuple[float, ...] = ()
    nadgrids: str = ""

    @property
    def ellipsoid(self) -> Ellipsoid:
        ellipsoid = get_ellipsoid(self.ellipsoid_id)
        if ellipsoid is None:
            raise CrsValidationError(f"Unknown ellipsoid {self.ellipsoid_id!r}")
        return ellipsoid

    def to_datum(self) -> GeodeticDatum:
        return GeodeticDatum(self.name, self.ellipsoid)


_PROJ_DATUMS: dict[str, ProjDatum] = {
    d.proj_id: d
    for d in (
        ProjDatum("WGS84", "World Geodetic System 1984", "WGS84"),
        ProjDatum("NAD83", "North American Datum 1983", "GRS80"),
        ProjDatum(
            "NAD27",
            "North American Datum 1927",
            "clrk66",
            nadgrids="@conus,@alaska,@ntv2_0.gsb,@ntv1_can.dat",
        ),
        ProjDatum(
            "GGRS87",
            "Greek Geodetic Reference System 1987",
            "GRS80",
            towgs84=(-199.87, 74.79, 246.62),
        ),
        ProjDatum(
            "potsdam",
            "Deutsches Hauptdreiecksnetz",
            "bessel",
            towgs84=(598.1, 73.7, 418.2, 0.202, 0.045, -2.455, 6.7),
        ),
        ProjDatum("carthage", "Carthage", "clrk80ign", towgs84=(-263.0, 6.0, 431.0)),
        ProjDatum(
            "hermannskogel",
            "Militar-Geographische Institut",
            "bessel",
            towgs84=(577.326, 90.129, 463.919, 5.137, 1.474, 5.297, 2.4232),
        ),
        ProjDatum(
            "ire65",
            "TM65",
            "mod_airy",
            towgs84=(482.530, -130.596, 564.557, -1.042, -0.214, -0.631, 8.15),
        ),
        ProjDatum(
            "nzgd49",
            "New Zealand Geodetic Datum 1949",
            "intl",
            towgs84=(59.47, -5.04, 187.44, 0.47, -0.1, 1.024, -4.5993),
        ),
        ProjDatum(
            "OSGB36",
            "Ordnance Survey of Great Britain 1936",
            "airy",
            towgs84=(446.448, -125.157, 542.060, 0.1502, 0.2470, 0.8421, -20.4894),
        ),
    )
}


def get_proj_datum(proj_id: str) -> ProjDatum | None:
    """Look up a ``+datum=`` value (case-insensitive)."""
    if proj_id in _PROJ_DATUMS:
        return _PROJ_DATUMS[proj_id]
    lowered = proj_id.lower()
    for key, entry in _PROJ_DATUMS.items():
        if key.lower() == lowered:
            return entry
    return None


def find_proj_datum(datum: Datum) -> ProjDatum | None:
    """Return the table entry whose name and ellipsoid match *datum*."""
    names = datum_names(datum)
    ellipsoid = datum_ellipsoid(datum)
    for entry in _PROJ_DATUMS.values():
        if normalize_name(entry.name) not in names:
            continue
        if ellipsoid is None or entry.ellipsoid.is_equivalent_to(ellipsoid):
            return entry
    return None
