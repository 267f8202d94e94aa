"""Operation resolver: find, filter and rank operations between two CRSs.

Resolution decomposes the endpoints until it reaches geodetic (or
vertical) CRSs the registry knows, then asks the registry for stored
operations between them:

1. Equivalent endpoints give a single conversion.
2. A bound CRS goes through its transformation to the hub CRS.
3. Compound and vertical CRSs are split into vertical and horizontal legs.
4. A projected CRS goes through the inverse of its conversion to the base.
5. Geodetic CRSs on one datum give a conversion; otherwise registry
   operations, then pivot (hub) CRSs, then a ballpark fallback.

Candidates are filtered by area of interest, accuracy, supersession and
grid availability, then ranked.  An empty result is a valid answer.

Usage::

    ops = resolve_operations("EPSG:4267", "EPSG:4269")
    if ops:
        result = apply(ops[0], Direction.FORWARD, Coordinate(40.0, -100.0))
"""

from __future__ import annotations

import dataclasses
import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, cast

import numpy as np

from coordshift.core.constants import RAD_TO_DEG, UNKNOWN_ACCURACY
from coordshift.core.exceptions import ApiMisuseError, OperationInvalidError, RegistryError
from coordshift.models.area import WORLD
from coordshift.models.coordinate import Coordinate
from coordshift.models.coordinate_system import ellipsoidal_3d
from coordshift.models.crs import (
    BoundCrs,
    ComparisonCriterion,
    CompoundCrs,
    Crs,
    GeocentricCrs,
    GeographicCrs,
    ProjectedCrs,
    VerticalCrs,
)
from coordshift.models.datum import datums_equivalent
from coordshift.models.operation import (
    BALLPARK_GEOGRAPHIC_PREFIX,
    ConcatenatedOperation,
    Conversion,
    Direction,
    Transformation,
    concatenate,
)
from coordshift.models.policy import (
    CrsExtentUse,
    GridAvailabilityUse,
    IntermediateCrsUse,
    SpatialCriterion,
)
from coordshift.parsing import catalog
from coordshift.resources.base import strip_optional

if TYPE_CHECKING:
    from coordshift.core.context import Context
    from coordshift.models.area import Area
    from coordshift.models.identifier import Identifier
    from coordshift.models.operation import Operation
    from coordshift.models.policy import ResolutionPolicy
    from coordshift.registry.records import OperationRecord

logger = logging.getLogger(__name__)

_LAX = ComparisonCriterion.EQUIVALENT_EXCEPT_AXIS_ORDER_GEOGCRS

BALLPARK_VERTICAL_NAME = "Ballpark vertical transformation"
AXIS_ORDER_CHANGE_NAME = "Axis order change"

# Conversions that only relabel axes, units or dimensionality; a chain can
# drop them by rebasing the neighbouring operation onto their CRS.
_RELABEL_CODES = frozenset(
    {
        catalog.AXIS_ORDER_REVERSAL_2D.code,
        catalog.AXIS_ORDER_REVERSAL_3D.code,
        catalog.GEOGRAPHIC_3D_TO_2D.code,
        catalog.GEOCENTRIC_CONVERSION.code,
        catalog.HEIGHT_DEPTH_REVERSAL.code,
        catalog.CHANGE_OF_VERTICAL_UNIT.code,
    }
)

_GRID_PARAMETER_CODES = (catalog.LAT_LON_DIFFERENCE_FILE.code, catalog.GEOID_FILE.code)


def _context(context: Context | None) -> Context:
    if context is not None:
        return context
    from coordshift.core.context import Context

    return Context.current()


def _is_geographic_3d(crs: Crs) -> bool:
    return isinstance(crs, GeographicCrs) and crs.axis_count == 3


def _is_relabel(op: Operation) -> bool:
    return (
        isinstance(op, Conversion)
        and op.identifier is None
        and op.method.code in _RELABEL_CODES
        and op.source_crs is not None
        and op.target_crs is not None
    )


def _area_of(crs: Crs) -> Area | None:
    if crs.area_of_use is None and isinstance(crs, CompoundCrs):
        return crs.components[0].area_of_use
    return crs.area_of_use


def _common_area(source: Crs, target: Crs) -> Area | None:
    a, b = _area_of(source), _area_of(target)
    if a is None or b is None:
        return a or b
    return a.intersection(b)


# ---------------------------------------------------------------------------
# Search state
# ---------------------------------------------------------------------------


@dataclass
class _Search:
    """State of one ``resolve`` call.

    Attributes:
        policy: The policy in force.
        areas: Areas every candidate is checked against (empty = no check).
        top_level: ``False`` while resolving pivot legs: only grids are
            filtered, and neither pivots nor ballparks are produced.
        ids: Memo of registry identifiers per CRS.
        grids: Memo of grid availability per grid name.
    """

    policy: ResolutionPolicy
    areas: list[Area]
    top_level: bool = True
    ids: dict[Crs, list[Identifier]] = field(default_factory=dict)
    grids: dict[str, bool] = field(default_factory=dict)

    def for_legs(self) -> _Search:
        return _Search(self.policy, [], False, self.ids, self.grids)


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class Resolver:
    """Resolve candidate operations between two CRSs.

    Args:
        context: Supplies the registry, the grid provider and the default policy.
    """

    def __init__(self, context: Context) -> None:
        self.context = context
        self.registry = context.registry

    def resolve(
        self, source: Crs, target: Crs, policy: ResolutionPolicy | None = None
    ) -> list[Operation]:
        """Return candidate operations, best first (possibly empty).

        Raises:
            ApiMisuseError: If an endpoint is missing or not a ``Crs``.
        """
        for label, crs in (("source", source), ("target", target)):
            if not isinstance(crs, Crs):
                raise ApiMisuseError(f"The {label} CRS is required, got {type(crs).__name__}")
        policy = policy or self.context.policy
        state = _Search(policy, self._areas_of_interest(source, target, policy))
        candidates = self._search(source, target, state)
        ranked = sorted(candidates, key=self._rank_key(policy))
        logger.info(
            "Resolved operations | source=%s | target=%s | candidates=%d | first=%s",
            source.name,
            target.name,
            len(ranked),
            ranked[0].name if ranked else "-",
        )
        return ranked

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _search(self, source: Crs, target: Crs, state: _Search) -> list[Operation]:
        if source.is_equivalent_to(target, _LAX, self.registry):
            return [self._conversion(source, target)]
        if isinstance(source, BoundCrs) or isinstance(target, BoundCrs):
            return self._through_bound(source, target, state)
        if isinstance(source, CompoundCrs | VerticalCrs) or isinstance(target, CompoundCrs | VerticalCrs):
            return self._with_heights(source, target, state)
        if isinstance(source, ProjectedCrs) or isinstance(target, ProjectedCrs):
            return self._through_projection(source, target, state)
        if isinstance(source, GeographicCrs | GeocentricCrs) and isinstance(
            target, GeographicCrs | GeocentricCrs
        ):
            return self._geodetic(source, target, state)
        logger.debug("No path between kinds | source=%s | target=%s", source.kind.value, target.kind.value)
        return []

    def _join(self, heads: list[Operation], tails: list[Operation]) -> list[Operation]:
        """Chain every head with every tail, dropping relabelling conversions."""
        joined: list[Operation] = []
        for head in heads:
            for tail in tails:
                if _is_relabel(head):
                    joined.append(tail.replace(source_crs=head.source_crs))
                elif _is_relabel(tail):
                    joined.append(head.replace(target_crs=tail.target_crs))
                else:
                    joined.append(concatenate([head, tail]))
        return joined

    # ------------------------------------------------------------------
    # Conversions
    # ------------------------------------------------------------------

    def _conversion(self, source: Crs, target: Crs) -> Conversion:
        """A conversion between CRSs that differ only in axes, units or dimension."""
        name = f"Conversion from {source.name} to {target.name}"
        if isinstance(source, GeographicCrs) and isinstance(target, GeographicCrs):
            if source.axis_count != target.axis_count:
                spec = catalog.GEOGRAPHIC_3D_TO_2D
            else:
                three_d = source.axis_count == 3
                spec = catalog.AXIS_ORDER_REVERSAL_3D if three_d else catalog.AXIS_ORDER_REVERSAL_2D
                if source.cs.is_east_first() != target.cs.is_east_first():
                    name = AXIS_ORDER_CHANGE_NAME
        elif isinstance(source, GeographicCrs | GeocentricCrs) and isinstance(
            target, GeographicCrs | GeocentricCrs
        ):
            spec = catalog.GEOCENTRIC_CONVERSION
        elif isinstance(source, VerticalCrs) and isinstance(target, VerticalCrs):
            flipped = source.cs.canonical_axis_order() != target.cs.canonical_axis_order()
            spec = catalog.HEIGHT_DEPTH_REVERSAL if flipped else catalog.CHANGE_OF_VERTICAL_UNIT
        else:
            spec = catalog.AXIS_ORDER_REVERSAL_2D
        return Conversion(
            name=name,
            method=catalog.method_ref(spec),
            source_crs=source,
            target_crs=target,
            accuracy=0.0,
            area_of_use=_common_area(source, target),
        )

    # ------------------------------------------------------------------
    # Decomposition
    # ------------------------------------------------------------------

    def _through_bound(self, source: Crs, target: Crs, state: _Search) -> list[Operation]:
        if isinstance(source, BoundCrs):
            hub_op = source.hub_operation().replace(source_crs=source)
            usable = self._filter_grids([hub_op], state)
            if not usable:
                logger.debug("Bound transformation unusable | crs=%s", source.name)
                return self._search(source.base_crs, target, state)
            return self._join(usable, self._search(source.hub_crs, target, state))
        target = cast(BoundCrs, target)
        hub_op = target.hub_operation()
        if not hub_op.has_inverse:
            return self._search(source, target.base_crs, state)
        back = hub_op.inverse().replace(target_crs=target)
        usable = self._filter_grids([back], state)
        if not usable:
            logger.debug("Bound transformation unusable | crs=%s", target.name)
            return self._search(source, target.base_crs, state)
        return self._join(self._search(source, target.hub_crs, state), usable)

    def _through_projection(self, source: Crs, target: Crs, state: _Search) -> list[Operation]:
        if isinstance(source, ProjectedCrs):
            forward = source.conversion_operation()
            if not forward.has_inverse:
                logger.debug("Projection has no inverse | crs=%s", source.name)
                return []
            return self._join([forward.inverse()], self._search(source.base_crs, target, state))
        target = cast(ProjectedCrs, target)
        return self._join(self._search(source, target.base_crs, state), [target.conversion_operation()])

    def _with_heights(self, source: Crs, target: Crs, state: _Search) -> list[Operation]:
        """Paths involving vertical or compound CRSs."""
        if isinstance(source, GeocentricCrs):
            twin = _geographic_twin(source)
            return self._join([self._conversion(source, twin)], self._with_heights(twin, target, state))
        if isinstance(target, GeocentricCrs):
            twin = _geographic_twin(target)
            return self._join(self._with_heights(source, twin, state), [self._conversion(twin, target)])

        if isinstance(source, VerticalCrs) and isinstance(target, VerticalCrs):
            return self._vertical(source, target, state)
        if _is_geographic_3d(source) and isinstance(target, VerticalCrs):
            return self._vertical(source, target, state)
        if isinstance(source, VerticalCrs) and _is_geographic_3d(target):
            return _invertible(self._vertical(target, source, state))
        if isinstance(source, VerticalCrs) or isinstance(target, VerticalCrs):
            return []

        if isinstance(source, CompoundCrs) and isinstance(target, CompoundCrs):
            return self._compound_to_compound(source, target, state)
        if isinstance(target, CompoundCrs):
            if _is_geographic_3d(source):
                return self._geographic_3d_to_compound(source, target, state)
            return [
                op.replace(target_crs=target)
                for op in self._search(source, target.horizontal_crs, state)
            ]
        source = cast(CompoundCrs, source)
        if _is_geographic_3d(target):
            return _invertible(self._geographic_3d_to_compound(target, source, state))
        return [
            op.replace(source_crs=source) for op in self._search(source.horizontal_crs, target, state)
        ]

    def _geographic_3d_to_compound(
        self, source: GeographicCrs, target: CompoundCrs, state: _Search
    ) -> list[Operation]:
        vertical_crs = target.vertical_crs
        if vertical_crs is None:
            return [op.replace(target_crs=target) for op in self._search(source, target.horizontal_crs, state)]
        horizontal = source.demote_to_2d()
        middle = CompoundCrs(f"{horizontal.name} + {vertical_crs.name}", (horizontal, vertical_crs))
        verticals = [op.replace(target_crs=middle) for op in self._vertical(source, vertical_crs, state)]
        horizontals = [
            op.replace(source_crs=middle, target_crs=target)
            for op in self._search(horizontal, target.horizontal_crs, state)
        ]
        return self._join(verticals, horizontals)

    def _compound_to_compound(
        self, source: CompoundCrs, target: CompoundCrs, state: _Search
    ) -> list[Operation]:
        source_v, target_v = source.vertical_crs, target.vertical_crs
        if source_v is None or target_v is None or datums_equivalent(
            source_v.datum, target_v.datum, self.registry
        ):
            return [
                op.replace(source_crs=source, target_crs=target)
                for op in self._search(source.horizontal_crs, target.horizontal_crs, state)
            ]
        horizontal = source.horizontal_crs
        middle = CompoundCrs(f"{horizontal.name} + {target_v.name}", (horizontal, target_v))
        verticals = [
            op.replace(source_crs=source, target_crs=middle)
            for op in self._vertical(source_v, target_v, state)
        ]
        horizontals = [
            op.replace(source_crs=middle, target_crs=target)
            for op in self._search(horizontal, target.horizontal_crs, state)
        ]
        return self._join(verticals, horizontals)

    def _vertical(self, source: Crs, target: VerticalCrs, state: _Search) -> list[Operation]:
        """Vertical-to-vertical or ellipsoidal-to-gravity-related height operations."""
        if isinstance(source, VerticalCrs) and datums_equivalent(source.datum, target.datum, self.registry):
            return [self._conversion(source, target)]
        ops = self._filter(self._registry_operations(source, target, state), state)
        if state.top_level and state.policy.allow_ballpark and not any(not op.ballpark for op in ops):
            ops.append(_ballpark_vertical(source, target))
        return ops

    # ------------------------------------------------------------------
    # Geodetic CRSs
    # ------------------------------------------------------------------

    def _geodetic(self, source: Crs, target: Crs, state: _Search) -> list[Operation]:
        if datums_equivalent(source.datum, target.datum, self.registry):  # type: ignore[arg-type]
            return [self._conversion(source, target)]
        if isinstance(source, GeocentricCrs) or isinstance(target, GeocentricCrs):
            direct = self._filter(self._registry_operations(source, target, state), state)
            if direct:
                return direct
            src_twin = _geographic_twin(source) if isinstance(source, GeocentricCrs) else source
            tgt_twin = _geographic_twin(target) if isinstance(target, GeocentricCrs) else target
            ops = self._geodetic(src_twin, tgt_twin, state)
            if src_twin is not source:
                ops = self._join([self._conversion(source, src_twin)], ops)
            if tgt_twin is not target:
                ops = self._join(ops, [self._conversion(tgt_twin, target)])
            return ops

        policy = state.policy
        ops = self._filter(self._registry_operations(source, target, state), state)
        use = policy.intermediate_crs_use
        if state.top_level and use is not IntermediateCrsUse.NEVER:
            if use is IntermediateCrsUse.ALWAYS or not ops:
                ops.extend(self._filter(self._pivot_operations(source, target, state), state))
        if state.top_level and policy.allow_ballpark and not any(not op.ballpark for op in ops):
            ops.append(_ballpark_geographic(source, target))
        return ops

    def _registry_operations(self, source: Crs, target: Crs, state: _Search) -> list[Operation]:
        """Stored operations between the registry identities of two CRSs."""
        ops: list[Operation] = []
        seen: set[Identifier] = set()
        for source_id in self._ids(source, state):
            for target_id in self._ids(target, state):
                for record in self.registry.find_operations(source_id, target_id):
                    if record.identifier in seen or not self._record_allowed(record, state.policy):
                        continue
                    seen.add(record.identifier)
                    op = self._record_operation(record, source_id, source, target)
                    if op is not None:
                        ops.append(op)
        logger.debug(
            "Registry operations | source=%s | target=%s | count=%d", source.name, target.name, len(ops)
        )
        return ops

    def _record_operation(
        self, record: OperationRecord, source_id: Identifier, source: Crs, target: Crs
    ) -> Operation | None:
        grids = {name: info for name in record.grids if (info := self.registry.grid_info(name))}
        if record.source_id == source_id:
            return record.to_operation(source, target, grids)
        stored = record.to_operation(target, source, grids)
        if not stored.has_inverse:
            logger.debug("Skipping non-invertible reversed record | id=%s", record.identifier)
            return None
        return stored.inverse()

    @staticmethod
    def _record_allowed(record: OperationRecord, policy: ResolutionPolicy) -> bool:
        if record.deprecated and not policy.allow_deprecated:
            return False
        authorities = policy.authorities
        return not authorities or record.authority.upper() in authorities

    def _ids(self, crs: Crs, state: _Search) -> list[Identifier]:
        cached = state.ids.get(crs)
        if cached is not None:
            return cached
        ids: list[Identifier] = []
        for candidate in (crs, crs.demote_to_2d()):
            crs_id = self.registry.identify(candidate, _LAX)
            if crs_id is not None and crs_id not in ids:
                ids.append(crs_id)
        state.ids[crs] = ids
        return ids

    def _pivot_operations(self, source: Crs, target: Crs, state: _Search) -> list[Operation]:
        """Two-step chains through one intermediate CRS."""
        source_ids = self._ids(source, state)
        target_ids = self._ids(target, state)
        allowed = state.policy.allowed_intermediate_crs
        if allowed:
            pivots = list(allowed)
        else:
            around_source: set[Identifier] = set()
            around_target: set[Identifier] = set()
            for crs_id in source_ids:
                around_source |= self.registry.neighbours(crs_id)
            for crs_id in target_ids:
                around_target |= self.registry.neighbours(crs_id)
            pivots = sorted(around_source & around_target)
        pivots = [p for p in pivots if p not in source_ids and p not in target_ids]

        legs_state = state.for_legs()
        chains: list[Operation] = []
        for pivot_id in pivots:
            try:
                pivot = self.registry.crs(pivot_id)
            except RegistryError as exc:
                logger.warning("Pivot CRS unavailable | id=%s | error=%s", pivot_id, exc)
                continue
            firsts = self._search(source, pivot, legs_state)
            seconds = self._search(pivot, target, legs_state) if firsts else []
            for first in firsts:
                for second in seconds:
                    chain = self._pivot_chain(first, second, pivot)
                    if chain is not None:
                        chains.append(chain)
        logger.debug(
            "Pivot operations | source=%s | target=%s | pivots=%d | chains=%d",
            source.name,
            target.name,
            len(pivots),
            len(chains),
        )
        return chains

    def _pivot_chain(self, first: Operation, second: Operation, pivot: Crs) -> Operation | None:
        """Chain two legs through *pivot*; ``None`` when their areas are disjoint.

        Raises:
            OperationInvalidError: If a leg does not end (or start) at the pivot.
        """
        for leg, crs in ((first, first.target_crs), (second, second.source_crs)):
            if crs is None or not crs.is_equivalent_to(pivot, _LAX, self.registry):
                raise OperationInvalidError(
                    f"Leg {leg.name!r} does not meet pivot CRS {pivot.name!r}"
                )
        chain = concatenate([first, second])
        if chain.area_of_use is None:
            logger.debug("Pivot legs do not overlap | chain=%s", chain.name)
            return None
        return chain

    # ------------------------------------------------------------------
    # Filters
    # ------------------------------------------------------------------

    def _areas_of_interest(self, source: Crs, target: Crs, policy: ResolutionPolicy) -> list[Area]:
        if policy.area_of_interest is not None:
            return [policy.area_of_interest]
        use = policy.crs_extent_use
        areas = [a for a in (_area_of(source), _area_of(target)) if a is not None]
        if use is CrsExtentUse.NONE or not areas:
            return []
        if use is CrsExtentUse.BOTH:
            return areas
        if use is CrsExtentUse.SMALLEST:
            return [min(areas, key=lambda area: area.measure)]
        if len(areas) == 1:
            return areas
        common = areas[0].intersection(areas[1])
        return [common] if common is not None else []

    def _filter(self, ops: list[Operation], state: _Search) -> list[Operation]:
        if state.top_level:
            policy = state.policy
            ops = [op for op in ops if self._spatially_usable(op, state)]
            if policy.desired_accuracy > 0:
                ops = [
                    op for op in ops if 0 <= op.accuracy <= policy.desired_accuracy
                ]
            if policy.discard_superseded:
                present = {op.identifier for op in ops if op.identifier is not None}
                ops = [op for op in ops if not any(s in present for s in op.superseded_by)]
        return self._filter_grids(ops, state)

    @staticmethod
    def _spatially_usable(op: Operation, state: _Search) -> bool:
        area = op.area_of_use or WORLD
        strict = state.policy.spatial_criterion is SpatialCriterion.STRICT_CONTAINMENT
        for interest in state.areas:
            if strict and not area.contains(interest):
                return False
            if not strict and not area.intersects(interest):
                return False
        return True

    def _filter_grids(self, ops: list[Operation], state: _Search) -> list[Operation]:
        use = state.policy.grid_availability
        if use is GridAvailabilityUse.IGNORED:
            return list(ops)
        kept: list[Operation] = []
        for op in ops:
            annotated, usable = self._annotate_grids(op, state)
            if usable or use is GridAvailabilityUse.USE_REGARDLESS:
                kept.append(annotated)
            else:
                logger.debug("Dropping operation with missing grid | operation=%s", op.name)
        return kept

    def _annotate_grids(self, op: Operation, state: _Search) -> tuple[Operation, bool]:
        """Record grid availability on *op*; report whether it can run."""
        if isinstance(op, ConcatenatedOperation):
            results = [self._annotate_grids(step, state) for step in op.steps]
            steps = tuple(step for step, _ in results)
            usable = all(ok for _, ok in results)
            if steps != op.steps:
                op = op.replace(steps=steps)
            return op, usable
        if not op.grids:
            return op, True
        names = _raw_grid_names(op)
        available: dict[str, bool] = {}
        required_ok = True
        optional_seen = optional_ok = False
        for raw in names:
            name, optional = strip_optional(raw)
            ok = self._grid_available(name, state)
            available[name] = ok
            if optional:
                optional_seen = True
                optional_ok = optional_ok or ok
            elif not ok:
                required_ok = False
        has_required = any(not strip_optional(raw)[1] for raw in names)
        usable = required_ok and (has_required or not optional_seen or optional_ok)
        grids = tuple(dataclasses.replace(g, available=available.get(g.name, False)) for g in op.grids)
        return op.replace(grids=grids), usable

    def _grid_available(self, name: str, state: _Search) -> bool:
        cached = state.grids.get(name)
        if cached is None:
            cached = self.context.is_grid_available(name)
            state.grids[name] = cached
        return cached

    # ------------------------------------------------------------------
    # Ranking
    # ------------------------------------------------------------------

    def _rank_key(self, policy: ResolutionPolicy):
        def key(op: Operation) -> tuple:
            area = op.area_of_use or WORLD
            accuracy = op.accuracy if op.accuracy >= 0 else math.inf
            authority = _authority(op)
            rank = self.registry.authority_rank(authority) if policy.uses_authority_preference else 0
            return (op.ballpark, area.measure, accuracy, rank, op.name)

        return key


def _authority(op: Operation) -> str:
    if op.identifier is not None:
        return op.identifier.authority
    if isinstance(op, ConcatenatedOperation):
        for step in op.steps:
            if step.identifier is not None:
                return step.identifier.authority
    return ""


def _raw_grid_names(op: Operation) -> list[str]:
    for code in _GRID_PARAMETER_CODES:
        parameter = op.param(code)
        if parameter is not None and isinstance(parameter.value, str) and parameter.value:
            return [name.strip() for name in parameter.value.split(",") if name.strip()]
    return [grid.name for grid in op.grids]


def _invertible(ops: list[Operation]) -> list[Operation]:
    return [op.inverse() for op in ops if op.has_inverse]


def _geographic_twin(crs: GeocentricCrs) -> GeographicCrs:
    """The geographic 3D CRS sharing a geocentric CRS's datum."""
    return GeographicCrs(
        crs.name,
        crs.datum,
        ellipsoidal_3d(lat_first=False),
        area_of_use=crs.area_of_use,
    )


def _ballpark_geographic(source: Crs, target: Crs) -> Transformation:
    three_d = source.axis_count == 3 and target.axis_count == 3
    spec = catalog.GEOGRAPHIC_3D_OFFSETS if three_d else catalog.GEOGRAPHIC_2D_OFFSETS
    parameters = tuple(catalog.parameter(p, 0.0) for p in spec.params)
    return Transformation(
        name=f"{BALLPARK_GEOGRAPHIC_PREFIX}{source.name} to {target.name}",
        method=catalog.method_ref(spec),
        parameters=parameters,
        source_crs=source,
        target_crs=target,
        accuracy=UNKNOWN_ACCURACY,
        area_of_use=_common_area(source, target),
        ballpark=True,
    )


def _ballpark_vertical(source: Crs, target: Crs) -> Transformation:
    spec = catalog.VERTICAL_OFFSET_METHOD
    return Transformation(
        name=BALLPARK_VERTICAL_NAME,
        method=catalog.method_ref(spec),
        parameters=(catalog.parameter(catalog.VERTICAL_OFFSET, 0.0),),
        source_crs=source,
        target_crs=target,
        accuracy=UNKNOWN_ACCURACY,
        area_of_use=_common_area(source, target),
        ballpark=True,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def _coerce_crs(value: Crs | str, ctx: Context) -> Crs:
    if isinstance(value, str):
        from coordshift.parsing import parse_crs

        return parse_crs(value, ctx)
    return value


def resolve_operations(
    source: Crs | str,
    target: Crs | str,
    policy: ResolutionPolicy | None = None,
    context: Context | None = None,
) -> list[Operation]:
    """Candidate operations from *source* to *target*, best first.

    Endpoints may be ``Crs`` objects or definitions accepted by
    ``parse_crs``.  An empty list means no usable path.

    Raises:
        ApiMisuseError: If an endpoint is missing.
        ParseError: If a definition string cannot be parsed.
    """
    ctx = _context(context)
    if source is None or target is None:
        raise ApiMisuseError("Both source and target CRSs are required")
    return Resolver(ctx).resolve(_coerce_crs(source, ctx), _coerce_crs(target, ctx), policy)


def create_operation(
    source: Crs | str,
    target: Crs | str,
    policy: ResolutionPolicy | None = None,
    context: Context | None = None,
) -> Operation | None:
    """The best operation from *source* to *target*, or ``None``."""
    ops = resolve_operations(source, target, policy, context)
    return ops[0] if ops else None


def suggested_operation(
    operations: list[Operation],
    direction: Direction | int,
    coord: Coordinate | tuple[float, ...],
    context: Context | None = None,
) -> int:
    """Index of the first operation whose area of use contains *coord*.

    *coord* is expressed in the source CRS of the operations for
    ``FORWARD`` and in their target CRS for ``INVERSE``.  Defaults to 0.

    Raises:
        ApiMisuseError: If *operations* is empty.
    """
    from coordshift.operations.compiler import compile_to_lonlat

    if not operations:
        raise ApiMisuseError("suggested_operation needs at least one operation")
    ctx = _context(context)
    direction = direction if isinstance(direction, Direction) else Direction(direction)
    point = coord if isinstance(coord, Coordinate) else Coordinate.from_array(coord)
    lonlat_cache: dict[Crs, tuple[float, float] | None] = {}

    for index, op in enumerate(operations):
        if op.area_of_use is None:
            return index
        crs = op.target_crs if direction is Direction.INVERSE else op.source_crs
        if crs is None or crs.geodetic_crs is None:
            continue
        if crs not in lonlat_cache:
            try:
                pipeline = compile_to_lonlat(crs)
            except OperationInvalidError:
                lonlat_cache[crs] = None
            else:
                coords = np.array([point], dtype=np.float64)
                codes = pipeline.run(coords, ctx)
                lonlat_cache[crs] = (
                    (float(coords[0, 0]) * RAD_TO_DEG, float(coords[0, 1]) * RAD_TO_DEG)
                    if codes[0] == 0
                    else None
                )
        lonlat = lonlat_cache[crs]
        if lonlat is not None and op.area_of_use.contains_point(*lonlat):
            return index
    return 0
