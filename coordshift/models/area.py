"""Geographic areas of use.

An ``Area`` is a longitude/latitude rectangle in degrees.  ``west > east``
encodes a rectangle crossing the antimeridian; its geometry is then two
boxes, one each side of ±180°.  Geometry predicates are delegated to
shapely.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from coordshift.models.validation import ModelValidationError, check_range

if TYPE_CHECKING:
    from shapely.geometry.base import BaseGeometry

_EDGE_TOLERANCE = 1e-9


@dataclass(frozen=True, slots=True)
class Area:
    """Bounding rectangle of an area of use.

    Attributes:
        west: Western longitude in degrees [-180, 180].
        south: Southern latitude in degrees [-90, 90].
        east: Eastern longitude in degrees [-180, 180].
        north: Northern latitude in degrees [-90, 90].
        name: Human-readable description (e.g. ``"USA - CONUS - onshore"``).
    """

    west: float
    south: float
    east: float
    north: float
    name: str = ""

    def __post_init__(self) -> None:
        check_range("Area", "west", self.west, -180.0, 180.0)
        check_range("Area", "east", self.east, -180.0, 180.0)
        check_range("Area", "south", self.south, -90.0, 90.0)
        check_range("Area", "north", self.north, -90.0, 90.0)
        if self.south > self.north:
            raise ModelValidationError("Area", "south", self.south, "must be <= north")

    @property
    def crosses_antimeridian(self) -> bool:
        return self.west > self.east

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """``(west, south, east, north)``."""
        return (self.west, self.south, self.east, self.north)

    @property
    def geometry(self) -> BaseGeometry:
        from shapely.geometry import MultiPolygon, box

        if self.crosses_antimeridian:
            return MultiPolygon(
                [
                    box(self.west, self.south, 180.0, self.north),
                    box(-180.0, self.south, self.east, self.north),
                ]
            )
        return box(self.west, self.south, self.east, self.north)

    @property
    def measure(self) -> float:
        """Area in square degrees; smaller means more specific."""
        return float(self.geometry.area)

    def contains(self, other: Area) -> bool:
        """Whether *other* lies entirely within this area (boundaries included)."""
        return bool(self.geometry.buffer(_EDGE_TOLERANCE).covers(other.geometry))

    def intersects(self, other: Area) -> bool:
        """Whether the two areas share more than a boundary."""
        return self.geometry.intersection(other.geometry).area > 0.0

    def intersection(self, other: Area) -> Area | None:
        """Return the common area, or ``None`` when the areas are disjoint."""
        common = self.geometry.intersection(other.geometry)
        if common.is_empty or common.area <= 0.0:
            return None
        parts = list(getattr(common, "geoms", [common]))
        parts = [p for p in parts if p.area > 0.0]
        name = self.name if self.name == other.name else ""
        east_side = [p for p in parts if p.bounds[2] >= 180.0 - _EDGE_TOLERANCE]
        west_side = [p for p in parts if p.bounds[0] <= -180.0 + _EDGE_TOLERANCE]
        minx, miny, maxx, maxy = common.bounds
        if east_side and west_side and len(parts) > 1:
            west = min(p.bounds[0] for p in east_side)
            east = max(p.bounds[2] for p in west_side)
            if west > east:
                return Area(west, miny, east, maxy, name)
        return Area(minx, miny, maxx, maxy, name)

    def contains_point(self, longitude: float, latitude: float) -> bool:
        """Whether the point (degrees) lies inside the area."""
        from shapely.geometry import Point

        if not -90.0 <= latitude <= 90.0:
            return False
        lon = ((longitude + 180.0) % 360.0) - 180.0
        if lon == -180.0 and longitude > 0:
            lon = 180.0
        return bool(self.geometry.buffer(_EDGE_TOLERANCE).covers(Point(lon, latitude)))


WORLD = Area(-180.0, -90.0, 180.0, 90.0, "World")


def intersect_all(areas: list[Area | None]) -> Area | None:
    """Intersect several areas; ``None`` entries mean "whole world".

    Returns ``WORLD`` when every entry is ``None`` and ``None`` when the
    areas are disjoint.
    """
    result = WORLD
    for area in areas:
        if area is None:
            continue
        if result is WORLD:
            result = area
            continue
        common = result.intersection(area)
        if common is None:
            return None
        result = common
    return result
