"""Search policy controlling operation resolution.

Defaults reproduce the usual behaviour: any authority ranked by the
registry's preference table, no accuracy floor, ballpark fallback allowed,
strict spatial containment, operations with missing grids discarded,
pivots only when no direct operation exists, superseded operations
discarded.
"""

from __future__ import annotations

import dataclasses
import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING

from coordshift.core.exceptions import ParseError
from coordshift.models.identifier import Identifier
from coordshift.models.validation import ModelValidationError, check_min

if TYPE_CHECKING:
    from collections.abc import Iterable

    from coordshift.models.area import Area

ANY_AUTHORITY = "any"


class SpatialCriterion(enum.Enum):
    """How an operation's area of use is compared with the area of interest."""

    STRICT_CONTAINMENT = "strict_containment"
    PARTIAL_INTERSECTION = "partial_intersection"


class GridAvailabilityUse(enum.Enum):
    """How grid availability influences candidate selection.

    Values:
        IGNORED: Never consult the grid provider.
        DISCARD_OPERATION_IF_MISSING_GRID: Drop operations with an unavailable grid.
        USE_REGARDLESS: Consult the provider but keep every operation.
    """

    IGNORED = "ignored"
    DISCARD_OPERATION_IF_MISSING_GRID = "discard_operation_if_missing_grid"
    USE_REGARDLESS = "use_regardless"


class IntermediateCrsUse(enum.Enum):
    """When pivot (hub) CRSs are searched."""

    NEVER = "never"
    IF_NO_DIRECT_TRANSFORMATION = "if_no_direct_transformation"
    ALWAYS = "always"


class CrsExtentUse(enum.Enum):
    """How source/target CRS areas form the area of interest.

    Values:
        NONE: Ignore CRS areas.
        BOTH: Operations must satisfy the criterion against both areas.
        INTERSECTION: Use the intersection of both areas.
        SMALLEST: Use the smaller of both areas.
    """

    NONE = "none"
    BOTH = "both"
    INTERSECTION = "intersection"
    SMALLEST = "smallest"


@dataclass(frozen=True, slots=True)
class ResolutionPolicy:
    """Immutable resolution policy.

    Attributes:
        authority: ``None`` for any authority ranked by preference,
            ``"any"`` for any authority without preference, or one or more
            comma-separated authority names that candidates must come from.
        desired_accuracy: Accuracy floor in metres (0 disables the filter).
        allow_ballpark: Whether a ballpark operation may be synthesised.
        spatial_criterion: Containment or intersection test.
        grid_availability: Handling of operations needing grids.
        intermediate_crs_use: When pivot CRSs are searched.
        allowed_intermediate_crs: Explicit pivot allow-list (empty = registry hubs).
        discard_superseded: Drop operations superseded by another candidate.
        area_of_interest: Explicit area of interest (degrees).
        crs_extent_use: How CRS areas form the area of interest.
        allow_deprecated: Whether deprecated registry operations are candidates.
    """

    authority: str | None = None
    desired_accuracy: float = 0.0
    allow_ballpark: bool = True
    spatial_criterion: SpatialCriterion = SpatialCriterion.STRICT_CONTAINMENT
    grid_availability: GridAvailabilityUse = GridAvailabilityUse.DISCARD_OPERATION_IF_MISSING_GRID
    intermediate_crs_use: IntermediateCrsUse = IntermediateCrsUse.IF_NO_DIRECT_TRANSFORMATION
    allowed_intermediate_crs: tuple[Identifier, ...] = ()
    discard_superseded: bool = True
    area_of_interest: Area | None = None
    crs_extent_use: CrsExtentUse = CrsExtentUse.INTERSECTION
    allow_deprecated: bool = False

    def __post_init__(self) -> None:
        check_min("ResolutionPolicy", "desired_accuracy", self.desired_accuracy, 0)
        if self.authority is not None and not self.authority.strip():
            raise ModelValidationError(
                "ResolutionPolicy", "authority", self.authority, "must be None or non-empty"
            )
        for name, enum_type in (
            ("spatial_criterion", SpatialCriterion),
            ("grid_availability", GridAvailabilityUse),
            ("intermediate_crs_use", IntermediateCrsUse),
            ("crs_extent_use", CrsExtentUse),
        ):
            value = getattr(self, name)
            if not isinstance(value, enum_type):
                raise ModelValidationError(
                    "ResolutionPolicy", name, value, f"must be a {enum_type.__name__}"
                )
        object.__setattr__(
            self,
            "allowed_intermediate_crs",
            _coerce_identifiers(self.allowed_intermediate_crs),
        )

    def replace(self, **changes: object) -> ResolutionPolicy:
        return dataclasses.replace(self, **changes)  # type: ignore[arg-type]

    @property
    def authorities(self) -> tuple[str, ...]:
        """Authorities candidates are restricted to (empty = any)."""
        if self.authority is None or self.authority.lower() == ANY_AUTHORITY:
            return ()
        return tuple(a.strip().upper() for a in self.authority.split(",") if a.strip())

    @property
    def uses_authority_preference(self) -> bool:
        return self.authority is None


def _coerce_identifiers(values: Iterable[object]) -> tuple[Identifier, ...]:
    """Accept identifiers, ``AUTH:CODE`` strings, pairs, or a flat auth/code list."""
    items = list(values)
    flat = (
        items
        and len(items) % 2 == 0
        and all(isinstance(v, str) and ":" not in v for v in items)
    )
    if flat:
        return tuple(
            Identifier(str(items[i]).upper(), str(items[i + 1])) for i in range(0, len(items), 2)
        )
    try:
        return tuple(Identifier.coerce(v) for v in items)  # type: ignore[arg-type]
    except (TypeError, ValueError, ParseError) as exc:
        raise ModelValidationError(
            "ResolutionPolicy", "allowed_intermediate_crs", items, "must hold AUTH:CODE identifiers"
        ) from exc
