"""Coordinate operations: conversions, transformations and concatenations.

``Operation`` is a closed sum type over three frozen variants:

- ``Conversion``: no change of reference frame (projections, axis and
  unit changes, geographic/geocentric conversions).
- ``Transformation``: a change of reference frame, possibly grid based.
- ``ConcatenatedOperation``: an ordered, validated chain of the above.

Operations are immutable once built.  ``inverse()`` derives a new
operation; asking for the inverse of a non-invertible method raises
``OperationInvalidError``.
"""

from __future__ import annotations

import dataclasses
import enum
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from coordshift.core.constants import UNKNOWN_ACCURACY
from coordshift.core.exceptions import ApiMisuseError, OperationInvalidError
from coordshift.models.area import intersect_all
from coordshift.models.ellipsoid import normalize_name
from coordshift.models.validation import ModelValidationError

if TYPE_CHECKING:
    from coordshift.models.area import Area
    from coordshift.models.crs import Crs
    from coordshift.models.identifier import Identifier
    from coordshift.models.units import Unit

_INVERSE_PREFIX = "Inverse of "
BALLPARK_GEOGRAPHIC_PREFIX = "Ballpark geographic offset from "


class Direction(enum.Enum):
    """Direction in which an operation is applied."""

    FORWARD = 1
    INVERSE = -1
    IDENTITY = 0


@dataclass(frozen=True, slots=True)
class MethodRef:
    """Identity of an operation method (e.g. ``Transverse Mercator``, EPSG 9807)."""

    name: str
    authority: str = ""
    code: str = ""


@dataclass(frozen=True, slots=True)
class Parameter:
    """A method parameter value.

    ``value`` is numeric for measured parameters and a string for
    file-name parameters (grids) or textual definitions.
    """

    name: str
    value: float | str
    unit: Unit | None = None
    code: str = ""

    @property
    def is_numeric(self) -> bool:
        return not isinstance(self.value, str)

    @property
    def base_value(self) -> float:
        """Numeric value in SI base units (metre, radian, unity)."""
        if isinstance(self.value, str):
            raise ApiMisuseError(f"Parameter {self.name!r} is not numeric")
        return float(self.value) * (self.unit.factor if self.unit is not None else 1.0)


@dataclass(frozen=True, slots=True)
class GridRef:
    """A grid file needed by an operation."""

    name: str
    full_name: str = ""
    package_name: str = ""
    url: str = ""
    direct_download: bool = False
    open_license: bool = False
    available: bool = False


class Operation:
    """Behaviour shared by every operation variant."""

    __slots__ = ()

    name: str
    method: MethodRef
    parameters: tuple[Parameter, ...]
    source_crs: Crs | None
    target_crs: Crs | None
    identifier: Identifier | None
    accuracy: float
    area_of_use: Area | None
    deprecated: bool
    grids: tuple[GridRef, ...]
    ballpark: bool
    superseded_by: tuple[Identifier, ...]
    inverted: bool

    @property
    def is_ballpark(self) -> bool:
        return self.ballpark

    @property
    def method_name(self) -> str:
        return self.method.name

    @property
    def grid_count(self) -> int:
        return len(self.grids)

    def grid(self, index: int) -> GridRef:
        if not 0 <= index < len(self.grids):
            raise ApiMisuseError(
                f"Grid index {index} out of range for {self.name!r} ({len(self.grids)} grids)"
            )
        return self.grids[index]

    def param(self, key: str) -> Parameter | None:
        """Look a parameter up by EPSG code or (normalised) name."""
        wanted = normalize_name(key)
        for parameter in self.parameters:
            if parameter.code == key or normalize_name(parameter.name) == wanted:
                return parameter
        return None

    @property
    def has_inverse(self) -> bool:
        from coordshift.parsing.catalog import method_has_inverse

        return method_has_inverse(self.method, self.parameters)

    def inverse(self) -> Operation:
        """Return the operation mapping target to source.

        Raises:
            OperationInvalidError: If the method has no inverse.
        """
        if not self.has_inverse:
            raise OperationInvalidError(
                f"Operation {self.name!r} (method {self.method.name!r}) has no inverse"
            )
        return dataclasses.replace(
            self,  # type: ignore[type-var]
            name=_inverse_name(self),
            source_crs=self.target_crs,
            target_crs=self.source_crs,
            inverted=not self.inverted,
        )

    def replace(self, **changes: object) -> Operation:
        return dataclasses.replace(self, **changes)  # type: ignore[type-var]

    @property
    def kind(self) -> str:
        return type(self).__name__

    def __str__(self) -> str:
        return self.name


def _check_accuracy(model: str, accuracy: float) -> None:
    if not math.isfinite(accuracy) or (accuracy < 0 and accuracy != UNKNOWN_ACCURACY):
        raise ModelValidationError(model, "accuracy", accuracy, "must be >= 0 or exactly -1")


def _inverse_name(op: Operation) -> str:
    source, target = op.source_crs, op.target_crs
    if op.ballpark and op.name.startswith(BALLPARK_GEOGRAPHIC_PREFIX) and source and target:
        return f"{BALLPARK_GEOGRAPHIC_PREFIX}{target.name} to {source.name}"
    if op.name.startswith(_INVERSE_PREFIX) and " + " not in op.name:
        return op.name[len(_INVERSE_PREFIX) :]
    return f"{_INVERSE_PREFIX}{op.name}"


@dataclass(frozen=True, slots=True)
class Conversion(Operation):
    """An operation without change of reference frame."""

    name: str
    method: MethodRef
    parameters: tuple[Parameter, ...] = ()
    source_crs: Crs | None = None
    target_crs: Crs | None = None
    identifier: Identifier | None = None
    accuracy: float = 0.0
    area_of_use: Area | None = None
    deprecated: bool = False
    grids: tuple[GridRef, ...] = ()
    ballpark: bool = False
    superseded_by: tuple[Identifier, ...] = ()
    inverted: bool = False
    remarks: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        _check_accuracy("Conversion", self.accuracy)


@dataclass(frozen=True, slots=True)
class Transformation(Operation):
    """An operation changing the reference frame."""

    name: str
    method: MethodRef
    parameters: tuple[Parameter, ...] = ()
    source_crs: Crs | None = None
    target_crs: Crs | None = None
    identifier: Identifier | None = None
    accuracy: float = UNKNOWN_ACCURACY
    area_of_use: Area | None = None
    deprecated: bool = False
    grids: tuple[GridRef, ...] = ()
    ballpark: bool = False
    superseded_by: tuple[Identifier, ...] = ()
    inverted: bool = False
    remarks: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        _check_accuracy("Transformation", self.accuracy)


_CONCATENATED_METHOD = MethodRef("Concatenated operation")


@dataclass(frozen=True, slots=True)
class ConcatenatedOperation(Operation):
    """An ordered chain of operations applied one after the other.

    The target CRS of step *i* must be equivalent (axis order aside) to the
    source CRS of step *i + 1*.  Source/target CRS, area, grids and the
    ballpark flag are derived from the steps; accuracy is the sum of step
    accuracies unless one is unknown.
    """

    steps: tuple[Operation, ...]
    name: str = ""
    identifier: Identifier | None = None
    accuracy: float | None = None
    deprecated: bool = False
    superseded_by: tuple[Identifier, ...] = ()
    inverted: bool = False
    remarks: str = field(default="", compare=False)
    source_crs: Crs | None = field(init=False, default=None)
    target_crs: Crs | None = field(init=False, default=None)
    area_of_use: Area | None = field(init=False, default=None)
    grids: tuple[GridRef, ...] = field(init=False, default=())
    ballpark: bool = field(init=False, default=False)

    method = _CONCATENATED_METHOD
    parameters: tuple[Parameter, ...] = field(init=False, default=())

    def __post_init__(self) -> None:
        if not self.steps:
            raise OperationInvalidError("A concatenated operation needs at least one step")
        _check_chain(self.steps)
        if not self.name:
            object.__setattr__(self, "name", " + ".join(step.name for step in self.steps))
        if self.accuracy is None:
            accuracies = [step.accuracy for step in self.steps]
            total = UNKNOWN_ACCURACY if any(a < 0 for a in accuracies) else sum(accuracies)
            object.__setattr__(self, "accuracy", total)
        _check_accuracy("ConcatenatedOperation", self.accuracy)
        object.__setattr__(self, "source_crs", self.steps[0].source_crs)
        object.__setattr__(self, "target_crs", self.steps[-1].target_crs)
        object.__setattr__(
            self, "area_of_use", intersect_all([step.area_of_use for step in self.steps])
        )
        grids: dict[str, GridRef] = {}
        for step in self.steps:
            for grid in step.grids:
                grids.setdefault(grid.name, grid)
        object.__setattr__(self, "grids", tuple(grids.values()))
        object.__setattr__(self, "ballpark", any(step.ballpark for step in self.steps))

    @property
    def has_inverse(self) -> bool:
        return all(step.has_inverse for step in self.steps)

    def inverse(self) -> ConcatenatedOperation:
        for step in self.steps:
            if not step.has_inverse:
                raise OperationInvalidError(
                    f"Operation {self.name!r} cannot be inverted: step {step.name!r} has no inverse"
                )
        return ConcatenatedOperation(
            steps=tuple(step.inverse() for step in reversed(self.steps)),
            name=_inverse_name(self),
            identifier=self.identifier,
            accuracy=self.accuracy,
            deprecated=self.deprecated,
            inverted=not self.inverted,
        )

    def replace(self, **changes: object) -> ConcatenatedOperation:
        """Replace init fields; ``source_crs``/``target_crs`` rebase the end steps."""
        steps = list(changes.pop("steps", self.steps))  # type: ignore[arg-type]
        if "source_crs" in changes:
            steps[0] = steps[0].replace(source_crs=changes.pop("source_crs"))
        if "target_crs" in changes:
            steps[-1] = steps[-1].replace(target_crs=changes.pop("target_crs"))
        return dataclasses.replace(self, steps=tuple(steps), **changes)  # type: ignore[arg-type]


def _check_chain(steps: tuple[Operation, ...]) -> None:
    from coordshift.models.crs import ComparisonCriterion

    for index, (first, second) in enumerate(zip(steps, steps[1:])):
        out_crs, in_crs = first.target_crs, second.source_crs
        if out_crs is None or in_crs is None:
            continue
        if not out_crs.is_equivalent_to(in_crs, ComparisonCriterion.EQUIVALENT_EXCEPT_AXIS_ORDER_GEOGCRS):
            raise OperationInvalidError(
                f"Step {index} target CRS {out_crs.name!r} does not match "
                f"step {index + 1} source CRS {in_crs.name!r}"
            )


def concatenate(operations: list[Operation], name: str = "") -> Operation:
    """Chain *operations*, flattening nested concatenations.

    A single operation is returned unchanged unless a *name* is given.
    """
    steps: list[Operation] = []
    for op in operations:
        if isinstance(op, ConcatenatedOperation):
            steps.extend(op.steps)
        else:
            steps.append(op)
    if len(steps) == 1 and not name:
        return steps[0]
    return ConcatenatedOperation(steps=tuple(steps), name=name)
