"""Coordinate operations: compile, apply and resolve.

Modules:
    steps: Vectorised pipeline steps over ``(n, 4)`` coordinate blocks.
    compiler: Operation -> step pipeline, memoised.
    executor: ``apply``, ``apply_batch``, ``round_trip``, ``transform_bounds``.
    resolver: Candidate operations between two CRSs, filtered and ranked.
"""

from coordshift.operations.executor import (
    apply,
    apply_batch,
    normalize_for_visualization,
    round_trip,
    transform_bounds,
)
from coordshift.operations.resolver import (
    create_operation,
    resolve_operations,
    suggested_operation,
)

__all__ = [
    "apply",
    "apply_batch",
    "create_operation",
    "normalize_for_visualization",
    "resolve_operations",
    "round_trip",
    "suggested_operation",
    "transform_bounds",
]
