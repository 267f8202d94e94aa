"""Validated records of the registry data file.

The YAML document is loaded into ``RegistryDocument`` so that malformed
entries fail at load time with a pydantic ``ValidationError`` naming the
offending field, rather than later inside resolution.

Areas may be given inline or as a key into the document's ``areas``
table; keys are resolved by ``RegistryDocument`` after validation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from coordshift.core.constants import UNKNOWN_ACCURACY
from coordshift.models.area import Area
from coordshift.models.identifier import Identifier
from coordshift.models.operation import Conversion, GridRef, MethodRef, Parameter, Transformation
from coordshift.models.units import get_unit

if TYPE_CHECKING:
    from coordshift.models.crs import Crs
    from coordshift.models.operation import Operation

__all__ = [
    "AreaRecord",
    "CrsRecord",
    "DefinitionRecord",
    "GridRecord",
    "OperationRecord",
    "ParameterRecord",
    "RegistryDocument",
]

CrsKindName = Literal[
    "geographic 2D",
    "geographic 3D",
    "geocentric",
    "projected",
    "vertical",
    "compound",
    "engineering",
    "temporal",
]


# =============================================================================
# Identifier Validation
# =============================================================================


def _normalize_id(value: str) -> str:
    """Upper-case the authority of an ``AUTH:CODE`` string."""
    if not isinstance(value, str):
        raise TypeError(f"Identifier must be a string, got {type(value).__name__}")
    authority, sep, code = value.strip().partition(":")
    if not sep or not authority or not code:
        raise ValueError(f"{value!r} is not an AUTHORITY:CODE identifier")
    return f"{authority.upper()}:{code}"


class _Record(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


# =============================================================================
# Areas
# =============================================================================


class AreaRecord(_Record):
    """Bounding box in degrees; ``west > east`` crosses the antimeridian."""

    west: float = Field(..., ge=-180.0, le=180.0)
    south: float = Field(..., ge=-90.0, le=90.0)
    east: float = Field(..., ge=-180.0, le=180.0)
    north: float = Field(..., ge=-90.0, le=90.0)
    name: str = ""

    @model_validator(mode="after")
    def _south_below_north(self) -> AreaRecord:
        if self.south > self.north:
            raise ValueError(f"south ({self.south}) must be <= north ({self.north})")
        return self

    def to_area(self) -> Area:
        return Area(self.west, self.south, self.east, self.north, self.name)


# =============================================================================
# CRS and object definitions
# =============================================================================


class CrsRecord(_Record):
    """A registered CRS: metadata plus its WKT definition."""

    authority: str
    code: str
    name: str
    kind: CrsKindName
    definition: str = Field(..., min_length=1)
    area: AreaRecord | str | None = None
    deprecated: bool = False

    @field_validator("authority")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.upper()

    @field_validator("code", mode="before")
    @classmethod
    def _code_text(cls, value: object) -> str:
        return str(value)

    @property
    def identifier(self) -> Identifier:
        return Identifier(self.authority, self.code)

    @property
    def area_of_use(self) -> Area | None:
        return self.area.to_area() if isinstance(self.area, AreaRecord) else None


class DefinitionRecord(_Record):
    """A datum or ellipsoid definition (WKT fragment)."""

    authority: str
    code: str
    category: Literal["datum", "ellipsoid"]
    name: str
    definition: str

    @field_validator("code", mode="before")
    @classmethod
    def _code_text(cls, value: object) -> str:
        return str(value)


# =============================================================================
# Operations
# =============================================================================


class ParameterRecord(_Record):
    """One method parameter; ``unit`` is a unit name known to ``get_unit``."""

    code: str = ""
    name: str = ""
    value: float | str
    unit: str | None = None

    @field_validator("code", mode="before")
    @classmethod
    def _code_text(cls, value: object) -> str:
        return str(value)

    @field_validator("unit")
    @classmethod
    def _known_unit(cls, value: str | None) -> str | None:
        if value is not None and get_unit(value) is None:
            raise ValueError(f"Unknown unit {value!r}")
        return value


class OperationRecord(_Record):
    """A registered coordinate operation between two registered CRSs.

    Records are stored in one direction only; ``find_operations`` answers
    for both and the resolver inverts reversed records.
    """

    authority: str
    code: str
    name: str
    type: Literal["transformation", "conversion"] = "transformation"
    source: str
    target: str
    method: str = Field(..., description="EPSG method code")
    parameters: list[ParameterRecord] = Field(default_factory=list)
    accuracy: float | None = None
    area: AreaRecord | str | None = None
    grids: list[str] = Field(default_factory=list)
    superseded_by: list[str] = Field(default_factory=list)
    deprecated: bool = False

    @field_validator("authority")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.upper()

    @field_validator("code", "method", mode="before")
    @classmethod
    def _code_text(cls, value: object) -> str:
        return str(value)

    @field_validator("source", "target")
    @classmethod
    def _endpoint(cls, value: str) -> str:
        return _normalize_id(value)

    @field_validator("superseded_by")
    @classmethod
    def _superseders(cls, value: list[str]) -> list[str]:
        return [_normalize_id(v) for v in value]

    @field_validator("accuracy")
    @classmethod
    def _accuracy(cls, value: float | None) -> float | None:
        if value is not None and value < 0:
            raise ValueError(f"accuracy must be >= 0, got {value}")
        return value

    @property
    def identifier(self) -> Identifier:
        return Identifier(self.authority, self.code)

    @property
    def source_id(self) -> Identifier:
        return Identifier.parse(self.source)

    @property
    def target_id(self) -> Identifier:
        return Identifier.parse(self.target)

    def to_operation(
        self,
        source_crs: Crs | None = None,
        target_crs: Crs | None = None,
        grid_info: dict[str, GridRef] | None = None,
    ) -> Operation:
        """Build the model operation, bound to the given endpoint CRSs."""
        from coordshift.parsing import catalog

        spec = catalog.find_method(code=self.method)
        method = catalog.method_ref(spec) if spec is not None else MethodRef(self.method, "EPSG", self.method)
        parameters = []
        for record in self.parameters:
            param_spec = spec.param(record.code or record.name) if spec is not None else None
            unit = get_unit(record.unit) if record.unit else None
            if param_spec is not None:
                parameters.append(catalog.parameter(param_spec, record.value, unit))
            else:
                parameters.append(Parameter(record.name or record.code, record.value, unit, record.code))
        known = grid_info or {}
        grids = tuple(known.get(name, GridRef(name)) for name in self.grids)
        common = {
            "name": self.name,
            "method": method,
            "parameters": tuple(parameters),
            "source_crs": source_crs,
            "target_crs": target_crs,
            "identifier": self.identifier,
            "area_of_use": self.area.to_area() if isinstance(self.area, AreaRecord) else None,
            "deprecated": self.deprecated,
            "grids": grids,
            "superseded_by": tuple(Identifier.parse(s) for s in self.superseded_by),
        }
        accuracy = self.accuracy if self.accuracy is not None else UNKNOWN_ACCURACY
        if self.type == "conversion":
            return Conversion(accuracy=self.accuracy or 0.0, **common)
        return Transformation(accuracy=accuracy, **common)


class GridRecord(_Record):
    """Metadata of a grid file known to the registry."""

    name: str
    full_name: str = ""
    package_name: str = ""
    url: str = ""
    direct_download: bool = False
    open_license: bool = False

    def to_grid_ref(self) -> GridRef:
        return GridRef(
            name=self.name,
            full_name=self.full_name,
            package_name=self.package_name,
            url=self.url,
            direct_download=self.direct_download,
            open_license=self.open_license,
        )


# =============================================================================
# Document
# =============================================================================


class RegistryDocument(BaseModel):
    """The whole registry data file."""

    model_config = ConfigDict(extra="forbid")

    authority_preference: list[str] = Field(default_factory=lambda: ["EPSG"])
    aliases: list[list[str]] = Field(default_factory=list)
    areas: dict[str, AreaRecord] = Field(default_factory=dict)
    crs: list[CrsRecord] = Field(default_factory=list)
    objects: list[DefinitionRecord] = Field(default_factory=list)
    operations: list[OperationRecord] = Field(default_factory=list)
    grids: list[GridRecord] = Field(default_factory=list)

    @model_validator(mode="after")
    def _resolve_area_keys(self) -> RegistryDocument:
        def resolve(area: AreaRecord | str | None, owner: str) -> AreaRecord | None:
            if area is None or isinstance(area, AreaRecord):
                return area
            if area not in self.areas:
                raise ValueError(f"{owner}: unknown area key {area!r}")
            return self.areas[area]

        self.crs = [
            r.model_copy(update={"area": resolve(r.area, f"{r.authority}:{r.code}")}) for r in self.crs
        ]
        self.operations = [
            r.model_copy(update={"area": resolve(r.area, f"{r.authority}:{r.code}")})
            for r in self.operations
        ]
        return self

    @model_validator(mode="after")
    def _unique_codes(self) -> RegistryDocument:
        seen: set[tuple[str, str]] = set()
        for record in [*self.crs, *self.operations]:
            key = (record.authority, record.code)
            if key in seen:
                raise ValueError(f"Duplicate registry code {key[0]}:{key[1]}")
            seen.add(key)
        return self
