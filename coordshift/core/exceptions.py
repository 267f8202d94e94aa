"""Unified exception taxonomy and numeric error codes.

Every domain exception inherits from ``CoordShiftError`` and carries
structured context fields so callers can make consistent decisions about
retries and diagnostics.

Taxonomy categories
-------------------
- ``ValidationError``:   malformed input or model invariant violation.
- ``TransientError``:    temporary failures (network, slow provider), retryable.
- ``PermanentError``:    unrecoverable domain failures, not retryable.
- ``ContractError``:     data drift between collaborators (registry records).

Per-coordinate failures (domain exceeded, outside grid, provider down) are
*not* raised from ``apply``/``apply_batch``: they are encoded as infinity in
the returned coordinate plus an ``ErrorCode`` stored on the acting
``Context``.  The exception classes for those failures exist for providers
and for callers who want to turn the error state into an exception.

Every exception exposes ``to_error_dict()`` for a stable structured
error payload suitable for logging.
"""

from __future__ import annotations

import enum


class ErrorCode(enum.IntEnum):
    """Numeric error state recorded on a ``Context``.

    Values follow the PROJ error numbering so diagnostics line up with
    the wider ecosystem.
    """

    NONE = 0
    INVALID_OP = 1024
    INVALID_OP_WRONG_SYNTAX = 1025
    INVALID_OP_MISSING_ARG = 1026
    INVALID_OP_ILLEGAL_ARG_VALUE = 1027
    INVALID_OP_MUTUALLY_EXCLUSIVE_ARGS = 1028
    INVALID_OP_FILE_NOT_FOUND_OR_INVALID = 1029
    COORD_TRANSFM = 2048
    COORD_TRANSFM_INVALID_COORD = 2049
    COORD_TRANSFM_OUTSIDE_PROJECTION_DOMAIN = 2050
    COORD_TRANSFM_NO_OPERATION = 2051
    COORD_TRANSFM_OUTSIDE_GRID = 2052
    COORD_TRANSFM_GRID_AT_NODATA = 2053
    OTHER = 4096
    OTHER_API_MISUSE = 4097
    OTHER_NO_INVERSE_OP = 4098
    OTHER_NETWORK_ERROR = 4099

    def describe(self) -> str:
        """Return a human-readable message for this code."""
        return _ERROR_MESSAGES.get(self, self.name.replace("_", " ").lower())

    @property
    def is_coordinate_failure(self) -> bool:
        """Whether the code belongs to the per-coordinate failure class."""
        return ErrorCode.COORD_TRANSFM <= self < ErrorCode.OTHER


_ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.NONE: "no error",
    ErrorCode.INVALID_OP: "invalid coordinate operation",
    ErrorCode.INVALID_OP_WRONG_SYNTAX: "invalid pipeline structure or syntax",
    ErrorCode.INVALID_OP_MISSING_ARG: "missing required operation parameter",
    ErrorCode.INVALID_OP_ILLEGAL_ARG_VALUE: "illegal operation parameter value",
    ErrorCode.INVALID_OP_MUTUALLY_EXCLUSIVE_ARGS: "mutually exclusive arguments",
    ErrorCode.INVALID_OP_FILE_NOT_FOUND_OR_INVALID: "file not found or invalid",
    ErrorCode.COORD_TRANSFM: "coordinate transformation failed",
    ErrorCode.COORD_TRANSFM_INVALID_COORD: "invalid coordinate",
    ErrorCode.COORD_TRANSFM_OUTSIDE_PROJECTION_DOMAIN: "coordinate outside projection domain",
    ErrorCode.COORD_TRANSFM_NO_OPERATION: "no operation found",
    ErrorCode.COORD_TRANSFM_OUTSIDE_GRID: "point outside of grid",
    ErrorCode.COORD_TRANSFM_GRID_AT_NODATA: "point falls in a nodata grid cell",
    ErrorCode.OTHER: "unspecified error",
    ErrorCode.OTHER_API_MISUSE: "API misuse",
    ErrorCode.OTHER_NO_INVERSE_OP: "no inverse operation available",
    ErrorCode.OTHER_NETWORK_ERROR: "network resource access failed",
}


class CoordShiftError(Exception):
    """Base exception for all coordshift errors.

    Attributes:
        message: Human-readable error description.
        stage: Component where the error occurred
            (e.g. ``"parse_wkt"``, ``"resolve"``, ``"grid"``).
        code: Machine-readable error code (e.g. ``"WKT_GRAMMAR"``).
        retryable: Whether retrying the call may succeed.
        correlation_id: Caller-supplied correlation identifier.
    """

    #: Default stage for subclasses (override via class attribute or kwarg).
    default_stage: str = ""
    #: Default code for subclasses (override via class attribute or kwarg).
    default_code: str = ""
    #: Numeric error code mirrored onto the Context when relevant.
    errno: ErrorCode = ErrorCode.OTHER

    def __init__(
        self,
        message: str = "",
        *,
        stage: str = "",
        code: str = "",
        retryable: bool = False,
        correlation_id: str = "",
    ) -> None:
        self.message = message
        self.stage = stage or self.default_stage
        self.code = code or self.default_code
        self.retryable = retryable
        self.correlation_id = correlation_id
        super().__init__(message)

    @property
    def category(self) -> str:
        """Return the error category based on concrete class."""
        if isinstance(self, ContractError):
            return "contract"
        if isinstance(self, ValidationError):
            return "validation"
        if isinstance(self, TransientError):
            return "transient"
        if isinstance(self, PermanentError):
            return "permanent"
        return "transient" if self.retryable else "permanent"

    def to_error_dict(self) -> dict[str, object]:
        """Return a structured error payload with stable keys."""
        return {
            "category": self.category,
            "code": self.code,
            "stage": self.stage,
            "message": self.message,
            "retryable": self.retryable,
            "correlation_id": self.correlation_id,
            "errno": int(self.errno),
        }


# ---------------------------------------------------------------------------
# Category base classes
# ---------------------------------------------------------------------------


class ValidationError(CoordShiftError):
    """Input or domain-model validation failure. Never retryable."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class TransientError(CoordShiftError):
    """Temporary failure that may succeed on retry."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", True)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class PermanentError(CoordShiftError):
    """Unrecoverable domain failure. Not retryable."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class ContractError(CoordShiftError):
    """Collaborator data does not match the expected schema. Never retryable."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Domain exceptions
# ---------------------------------------------------------------------------


class ParseError(ValidationError):
    """A CRS or operation definition could not be parsed.

    Grammar errors are fatal and abort construction; warnings are the
    non-fatal semantic diagnostics collected up to the failure point.

    Attributes:
        grammar_errors: Ordered human-readable grammar error messages.
        warnings: Ordered human-readable semantic warnings.
    """

    default_stage = "parse"
    default_code = "PARSE_FAILED"
    errno = ErrorCode.INVALID_OP_WRONG_SYNTAX

    def __init__(
        self,
        message: str = "",
        *,
        grammar_errors: list[str] | None = None,
        warnings: list[str] | None = None,
        **kwargs: object,
    ) -> None:
        self.grammar_errors = list(grammar_errors or [])
        self.warnings = list(warnings or [])
        if not message:
            message = ". ".join(self.grammar_errors) or "unparseable definition"
        super().__init__(message, **kwargs)

    def to_error_dict(self) -> dict[str, object]:
        payload = super().to_error_dict()
        payload["grammar_errors"] = list(self.grammar_errors)
        payload["warnings"] = list(self.warnings)
        return payload


class CrsValidationError(ValidationError):
    """A CRS, datum, ellipsoid or coordinate system violates an invariant."""

    default_stage = "model"
    default_code = "CRS_INVALID"
    errno = ErrorCode.INVALID_OP_ILLEGAL_ARG_VALUE


class ApiMisuseError(ValidationError):
    """Programmer error, e.g. a required argument is missing."""

    default_stage = "api"
    default_code = "API_MISUSE"
    errno = ErrorCode.OTHER_API_MISUSE


class OperationInvalidError(PermanentError):
    """An operation cannot be used as requested.

    Raised for the inverse of a non-invertible operation and for
    concatenations whose steps do not chain.
    """

    default_stage = "operation"
    default_code = "OPERATION_INVALID"
    errno = ErrorCode.INVALID_OP


class CoordinateDomainError(PermanentError):
    """A coordinate lies outside a method's valid domain."""

    default_stage = "execute"
    default_code = "COORDINATE_DOMAIN"
    errno = ErrorCode.COORD_TRANSFM_INVALID_COORD


class ResourceUnavailableError(TransientError):
    """A grid or network resource could not be read.

    Attributes:
        resource: Name of the resource (grid short name or URL).
    """

    default_stage = "resource"
    default_code = "RESOURCE_UNAVAILABLE"
    errno = ErrorCode.COORD_TRANSFM_OUTSIDE_GRID

    def __init__(self, resource: str, message: str, **kwargs: object) -> None:
        self.resource = resource
        super().__init__(message, **kwargs)

    def __str__(self) -> str:
        return f"[{self.resource}] {self.message}"


class RegistryError(PermanentError):
    """An authority code is unknown to the registry."""

    default_stage = "registry"
    default_code = "REGISTRY_LOOKUP_FAILED"
    errno = ErrorCode.INVALID_OP_ILLEGAL_ARG_VALUE
