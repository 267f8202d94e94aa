"""Coordinate systems: ordered axes with directions and units.

Axis order is never assumed.  ``canonical_axis_order`` reports how each
axis maps onto the east/north/up slots used inside compiled pipelines.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass

from coordshift.core.exceptions import CrsValidationError
from coordshift.models.units import DEGREE, METRE, YEAR, Unit


class CsType(enum.Enum):
    ELLIPSOIDAL = "ellipsoidal"
    CARTESIAN = "Cartesian"
    VERTICAL = "vertical"
    TEMPORAL = "TemporalDateTime"
    ORDINAL = "ordinal"


class AxisDirection(enum.Enum):
    NORTH = "north"
    SOUTH = "south"
    EAST = "east"
    WEST = "west"
    UP = "up"
    DOWN = "down"
    GEOCENTRIC_X = "geocentricX"
    GEOCENTRIC_Y = "geocentricY"
    GEOCENTRIC_Z = "geocentricZ"
    FUTURE = "future"
    PAST = "past"
    UNSPECIFIED = "unspecified"

    @classmethod
    def from_text(cls, text: str) -> AxisDirection:
        wanted = text.strip().lower()
        for member in cls:
            if member.value.lower() == wanted:
                return member
        raise CrsValidationError(f"Unknown axis direction {text!r}")


# direction -> (canonical slot, sign)
_SLOTS: dict[AxisDirection, tuple[int, int]] = {
    AxisDirection.EAST: (0, 1),
    AxisDirection.WEST: (0, -1),
    AxisDirection.NORTH: (1, 1),
    AxisDirection.SOUTH: (1, -1),
    AxisDirection.UP: (2, 1),
    AxisDirection.DOWN: (2, -1),
    AxisDirection.GEOCENTRIC_X: (0, 1),
    AxisDirection.GEOCENTRIC_Y: (1, 1),
    AxisDirection.GEOCENTRIC_Z: (2, 1),
    AxisDirection.FUTURE: (3, 1),
    AxisDirection.PAST: (3, -1),
}


@dataclass(frozen=True, slots=True)
class AxisInfo:
    """One axis of a coordinate system."""

    name: str
    abbreviation: str
    direction: AxisDirection
    unit: Unit


@dataclass(frozen=True, slots=True)
class CoordinateSystem:
    """An ordered list of axes of one CS type."""

    cs_type: CsType
    axes: tuple[AxisInfo, ...]

    def __post_init__(self) -> None:
        if not 1 <= len(self.axes) <= 3:
            raise CrsValidationError(
                f"{self.cs_type.value} coordinate system must have 1 to 3 axes, got {len(self.axes)}"
            )
        slots = [_SLOTS.get(axis.direction, (None, 1))[0] for axis in self.axes]
        known = [s for s in slots if s is not None]
        if len(known) != len(set(known)):
            raise CrsValidationError(
                f"Coordinate system has repeated axis directions: "
                f"{[a.direction.value for a in self.axes]}"
            )

    @property
    def axis_count(self) -> int:
        return len(self.axes)

    def horizontal_order(self) -> str:
        """``"east_north"`` when the first axis is east/longitude, else ``"north_east"``."""
        first = _SLOTS.get(self.axes[0].direction, (0, 1))[0]
        return "east_north" if first == 0 else "north_east"

    def is_east_first(self) -> bool:
        return self.horizontal_order() == "east_north"

    def swapped_horizontal(self) -> CoordinateSystem:
        """Return this CS with its first two axes exchanged."""
        if len(self.axes) < 2:
            return self
        axes = (self.axes[1], self.axes[0], *self.axes[2:])
        return CoordinateSystem(self.cs_type, axes)

    def normalized(self) -> CoordinateSystem:
        """Return the east/north (lon/lat) ordered variant."""
        if len(self.axes) >= 2 and not self.is_east_first():
            return self.swapped_horizontal()
        return self

    def canonical_axis_order(self) -> tuple[int, ...]:
        """Return a signed 1-based axis order mapping this CS onto slots x, y, z.

        Entry *j* names the input axis (negative when the direction is
        reversed) that feeds canonical slot *j*; unused slots map to
        themselves.
        """
        if self.cs_type is CsType.VERTICAL:
            # A lone vertical axis always travels in the z component.
            return (1, 2, _SLOTS.get(self.axes[0].direction, (2, 1))[1] * 3)
        order: list[int | None] = [None, None, None]
        for index, axis in enumerate(self.axes):
            slot, sign = _SLOTS.get(axis.direction, (index, 1))
            if slot > 2 or order[slot] is not None:
                continue
            order[slot] = sign * (index + 1)
        taken = {abs(o) for o in order if o is not None}
        spare = [i for i in (1, 2, 3) if i not in taken]
        return tuple(o if o is not None else spare.pop(0) for o in order)

    def horizontal_unit(self) -> Unit:
        return self.axes[0].unit

    def vertical_unit(self) -> Unit | None:
        for axis in self.axes:
            if axis.direction in (AxisDirection.UP, AxisDirection.DOWN):
                return axis.unit
        return None

    def is_equivalent_to(self, other: CoordinateSystem, ignore_axis_order: bool = False) -> bool:
        """Compare axis directions and units, ignoring axis names."""
        if self.cs_type != other.cs_type or len(self.axes) != len(other.axes):
            return False
        mine = [(a.direction, a.unit.factor) for a in self.axes]
        theirs = [(a.direction, a.unit.factor) for a in other.axes]
        if ignore_axis_order:
            mine.sort(key=lambda item: item[0].value)
            theirs.sort(key=lambda item: item[0].value)
        return all(
            da == db and math.isclose(fa, fb, rel_tol=1e-12)
            for (da, fa), (db, fb) in zip(mine, theirs)
        )


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def ellipsoidal_2d(lat_first: bool = True, unit: Unit = DEGREE) -> CoordinateSystem:
    lat = AxisInfo("Geodetic latitude", "Lat", AxisDirection.NORTH, unit)
    lon = AxisInfo("Geodetic longitude", "Lon", AxisDirection.EAST, unit)
    return CoordinateSystem(CsType.ELLIPSOIDAL, (lat, lon) if lat_first else (lon, lat))


def ellipsoidal_3d(
    lat_first: bool = True, unit: Unit = DEGREE, height_unit: Unit = METRE
) -> CoordinateSystem:
    horizontal = ellipsoidal_2d(lat_first, unit).axes
    height = AxisInfo("Ellipsoidal height", "h", AxisDirection.UP, height_unit)
    return CoordinateSystem(CsType.ELLIPSOIDAL, (*horizontal, height))


def cartesian_2d(unit: Unit = METRE, northing_first: bool = False) -> CoordinateSystem:
    easting = AxisInfo("Easting", "E", AxisDirection.EAST, unit)
    northing = AxisInfo("Northing", "N", AxisDirection.NORTH, unit)
    axes = (northing, easting) if northing_first else (easting, northing)
    return CoordinateSystem(CsType.CARTESIAN, axes)


def cartesian_3d_geocentric(unit: Unit = METRE) -> CoordinateSystem:
    return CoordinateSystem(
        CsType.CARTESIAN,
        (
            AxisInfo("Geocentric X", "X", AxisDirection.GEOCENTRIC_X, unit),
            AxisInfo("Geocentric Y", "Y", AxisDirection.GEOCENTRIC_Y, unit),
            AxisInfo("Geocentric Z", "Z", AxisDirection.GEOCENTRIC_Z, unit),
        ),
    )


def vertical(unit: Unit = METRE, up: bool = True) -> CoordinateSystem:
    if up:
        axis = AxisInfo("Gravity-related height", "H", AxisDirection.UP, unit)
    else:
        axis = AxisInfo("Gravity-related depth", "D", AxisDirection.DOWN, unit)
    return CoordinateSystem(CsType.VERTICAL, (axis,))


def temporal(unit: Unit = YEAR) -> CoordinateSystem:
    return CoordinateSystem(
        CsType.TEMPORAL, (AxisInfo("Time", "T", AxisDirection.FUTURE, unit),)
    )
