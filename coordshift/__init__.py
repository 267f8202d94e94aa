"""Coordinate reference systems and coordinate operations.

Parses CRS definitions (authority codes, WKT, proj-strings), resolves the
candidate coordinate operations between two CRSs, and applies a chosen
operation to coordinates with well-defined failure semantics.
"""

__version__ = "0.1.0"

from coordshift.core.context import Context
from coordshift.core.exceptions import (
    ApiMisuseError,
    CoordinateDomainError,
    CoordShiftError,
    CrsValidationError,
    ErrorCode,
    OperationInvalidError,
    ParseError,
    RegistryError,
    ResourceUnavailableError,
)
from coordshift.models.area import WORLD, Area
from coordshift.models.coordinate import Coordinate
from coordshift.models.crs import ComparisonCriterion, Crs, CrsKind
from coordshift.models.operation import (
    ConcatenatedOperation,
    Conversion,
    Direction,
    Operation,
    Transformation,
)
from coordshift.models.policy import (
    CrsExtentUse,
    GridAvailabilityUse,
    IntermediateCrsUse,
    ResolutionPolicy,
    SpatialCriterion,
)
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
from coordshift.parsing import parse_crs, parse_operation

__all__ = [
    "WORLD",
    "ApiMisuseError",
    "Area",
    "ComparisonCriterion",
    "ConcatenatedOperation",
    "Context",
    "Conversion",
    "CoordShiftError",
    "Coordinate",
    "CoordinateDomainError",
    "Crs",
    "CrsExtentUse",
    "CrsKind",
    "CrsValidationError",
    "Direction",
    "ErrorCode",
    "GridAvailabilityUse",
    "IntermediateCrsUse",
    "Operation",
    "OperationInvalidError",
    "ParseError",
    "RegistryError",
    "ResolutionPolicy",
    "ResourceUnavailableError",
    "SpatialCriterion",
    "Transformation",
    "apply",
    "apply_batch",
    "create_operation",
    "normalize_for_visualization",
    "parse_crs",
    "parse_operation",
    "resolve_operations",
    "round_trip",
    "suggested_operation",
    "transform_bounds",
]
