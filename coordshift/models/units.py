"""Units of measure used by axes, parameters and prime meridians."""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass


class UnitKind(enum.Enum):
    """Physical quantity measured by a unit."""

    ANGULAR = "angular"
    LINEAR = "linear"
    SCALE = "scale"
    TIME = "time"


@dataclass(frozen=True, slots=True)
class Unit:
    """A unit of measure.

    Attributes:
        name: Unit name as written in WKT (e.g. ``"metre"``, ``"degree"``).
        kind: Quantity measured.
        factor: Conversion factor to the SI base (metre, radian, unity, second).
        proj_id: Short proj-string identifier (``"m"``, ``"us-ft"``), if any.
    """

    name: str
    kind: UnitKind
    factor: float
    proj_id: str = ""

    def to_base(self, value: float) -> float:
        return value * self.factor

    def from_base(self, value: float) -> float:
        return value / self.factor


METRE = Unit("metre", UnitKind.LINEAR, 1.0, "m")
KILOMETRE = Unit("kilometre", UnitKind.LINEAR, 1000.0, "km")
FOOT = Unit("foot", UnitKind.LINEAR, 0.3048, "ft")
US_SURVEY_FOOT = Unit("US survey foot", UnitKind.LINEAR, 1200.0 / 3937.0, "us-ft")
DEGREE = Unit("degree", UnitKind.ANGULAR, math.pi / 180.0, "deg")
RADIAN = Unit("radian", UnitKind.ANGULAR, 1.0, "rad")
GRAD = Unit("grad", UnitKind.ANGULAR, math.pi / 200.0, "grad")
ARC_SECOND = Unit("arc-second", UnitKind.ANGULAR, math.pi / 648000.0, "")
UNITY = Unit("unity", UnitKind.SCALE, 1.0, "")
PARTS_PER_MILLION = Unit("parts per million", UnitKind.SCALE, 1e-6, "")
YEAR = Unit("year", UnitKind.TIME, 31_556_925.445, "")

_BUILTIN_UNITS = (
    METRE,
    KILOMETRE,
    FOOT,
    US_SURVEY_FOOT,
    DEGREE,
    RADIAN,
    GRAD,
    ARC_SECOND,
    UNITY,
    PARTS_PER_MILLION,
    YEAR,
)

_ALIASES: dict[str, Unit] = {
    "meter": METRE,
    "metre": METRE,
    "m": METRE,
    "km": KILOMETRE,
    "kilometre": KILOMETRE,
    "kilometer": KILOMETRE,
    "ft": FOOT,
    "foot": FOOT,
    "international foot": FOOT,
    "us-ft": US_SURVEY_FOOT,
    "us survey foot": US_SURVEY_FOOT,
    "foot_us": US_SURVEY_FOOT,
    "deg": DEGREE,
    "degree": DEGREE,
    "degrees": DEGREE,
    "rad": RADIAN,
    "radian": RADIAN,
    "grad": GRAD,
    "gon": GRAD,
    "arc-second": ARC_SECOND,
    "arcsecond": ARC_SECOND,
    "unity": UNITY,
    "scale unity": UNITY,
    "parts per million": PARTS_PER_MILLION,
    "year": YEAR,
}


def list_units() -> list[Unit]:
    """Return the built-in units."""
    return list(_BUILTIN_UNITS)


def get_unit(name: str) -> Unit | None:
    """Look up a built-in unit by WKT name or proj short id (case-insensitive)."""
    return _ALIASES.get(name.strip().lower())


def unit_from_factor(name: str, kind: UnitKind, factor: float) -> Unit:
    """Return the built-in unit matching *factor*, else an ad-hoc unit."""
    for unit in _BUILTIN_UNITS:
        if unit.kind is kind and math.isclose(unit.factor, factor, rel_tol=1e-12):
            return unit
    return Unit(name, kind, factor)
