"""Registry backed by a YAML data file.

The built-in data file ``registry/data/registry.yaml`` carries a small
catalogue of EPSG CRSs and operations (WGS 84, NAD27/NAD83, ETRS89,
ED50, RGF93, AGD84, UTM zones, Pseudo-Mercator and two vertical CRSs).
Another file with the same layout can be passed as *path*.
"""

from __future__ import annotations

import functools
import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING

import yaml
from pydantic import ValidationError

from coordshift.core.exceptions import ParseError, RegistryError
from coordshift.models.crs import ComparisonCriterion, CompoundCrs
from coordshift.models.ellipsoid import normalize_name
from coordshift.models.identifier import Identifier
from coordshift.registry.base import Category, Registry
from coordshift.registry.records import RegistryDocument

if TYPE_CHECKING:
    from coordshift.models.crs import Crs
    from coordshift.models.operation import GridRef
    from coordshift.registry.records import CrsRecord, DefinitionRecord, OperationRecord

logger = logging.getLogger(__name__)

DEFAULT_DATA_FILE = Path(__file__).parent / "data" / "registry.yaml"


@functools.lru_cache(maxsize=8)
def load_document(path: Path) -> RegistryDocument:
    """Read and validate a registry data file (memoised per path).

    Raises:
        RegistryError: If the file is missing, is not YAML, or fails validation.
    """
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise RegistryError(f"Cannot read registry file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise RegistryError(f"Registry file {path} is not valid YAML: {exc}") from exc
    try:
        document = RegistryDocument.model_validate(raw or {})
    except ValidationError as exc:
        raise RegistryError(f"Registry file {path} is invalid: {exc}") from exc
    logger.info(
        "Loaded registry | path=%s | crs=%d | operations=%d | grids=%d",
        path.name,
        len(document.crs),
        len(document.operations),
        len(document.grids),
    )
    return document


def _code_key(code: str) -> tuple[int, int, str]:
    """Sort numeric codes numerically, ahead of the others."""
    return (0, int(code), code) if code.isdigit() else (1, 0, code)


class YamlRegistry(Registry):
    """Read-only registry over a validated ``RegistryDocument``.

    Args:
        path: Data file; the built-in catalogue when omitted.
        document: An already validated document (takes precedence over *path*).
    """

    name = "builtin"

    def __init__(self, path: Path | str | None = None, document: RegistryDocument | None = None) -> None:
        if document is None:
            document = load_document(Path(path) if path is not None else DEFAULT_DATA_FILE)
        self._document = document
        self._crs: dict[Identifier, CrsRecord] = {r.identifier: r for r in document.crs}
        self._operations: dict[Identifier, OperationRecord] = {
            r.identifier: r for r in document.operations
        }
        self._objects: dict[tuple[str, Identifier], DefinitionRecord] = {
            (r.category, Identifier(r.authority.upper(), r.code)): r for r in document.objects
        }
        self._by_pair: dict[frozenset[Identifier], list[OperationRecord]] = {}
        self._neighbours: dict[Identifier, set[Identifier]] = {}
        for record in document.operations:
            source, target = record.source_id, record.target_id
            self._by_pair.setdefault(frozenset((source, target)), []).append(record)
            self._neighbours.setdefault(source, set()).add(target)
            self._neighbours.setdefault(target, set()).add(source)
        self._aliases: dict[str, set[str]] = {}
        for group in document.aliases:
            for name in group:
                self._aliases.setdefault(normalize_name(name), set()).update(group)
        self._grids = {g.name: g.to_grid_ref() for g in document.grids}
        self._parsed: dict[Identifier, Crs] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def lookup_definition(
        self, authority: str, code: str, category: Category | str = Category.CRS
    ) -> str:
        category = Category(category)
        key = Identifier(authority.upper(), str(code))
        if category is Category.CRS:
            return self.lookup_crs_metadata(authority, code).definition
        if category is Category.OPERATION:
            return self.lookup_operation(authority, code).model_dump_json()
        record = self._objects.get((category.value, key))
        if record is None:
            raise RegistryError(f"Unknown {category.value} {key}")
        return record.definition

    def lookup_crs_metadata(self, authority: str, code: str) -> CrsRecord:
        key = Identifier(authority.upper(), str(code))
        record = self._crs.get(key)
        if record is None:
            raise RegistryError(f"Unknown CRS {key}")
        return record

    def lookup_operation(self, authority: str, code: str) -> OperationRecord:
        key = Identifier(authority.upper(), str(code))
        record = self._operations.get(key)
        if record is None:
            raise RegistryError(f"Unknown operation {key}")
        return record

    def find_operations(self, source: Identifier, target: Identifier) -> list[OperationRecord]:
        return list(self._by_pair.get(frozenset((source, target)), ()))

    def neighbours(self, crs_id: Identifier) -> set[Identifier]:
        return set(self._neighbours.get(crs_id, ()))

    def authority_preference(self) -> list[str]:
        return list(self._document.authority_preference)

    def grid_info(self, name: str) -> GridRef | None:
        return self._grids.get(name)

    def grid_refs(self) -> dict[str, GridRef]:
        return dict(self._grids)

    def aliases(self, name: str) -> set[str]:
        return set(self._aliases.get(normalize_name(name), ())) - {name}

    def crs_ids(self) -> list[Identifier]:
        return list(self._crs)

    def authorities(self) -> list[str]:
        ids = [*self._crs, *self._operations, *(key for _, key in self._objects)]
        return sorted({i.authority for i in ids})

    def codes(
        self,
        authority: str,
        category: Category | str = Category.CRS,
        allow_deprecated: bool = False,
    ) -> list[str]:
        category = Category(category)
        authority = authority.upper()
        records: dict[Identifier, CrsRecord] | dict[Identifier, OperationRecord]
        if category is Category.CRS:
            records = self._crs
        elif category is Category.OPERATION:
            records = self._operations
        else:
            found = (
                key.code
                for kind, key in self._objects
                if kind == category.value and key.authority == authority
            )
            return sorted(found, key=_code_key)
        return sorted(
            (
                key.code
                for key, record in records.items()
                if key.authority == authority and (allow_deprecated or not record.deprecated)
            ),
            key=_code_key,
        )

    # ------------------------------------------------------------------
    # CRS objects
    # ------------------------------------------------------------------

    def crs(self, crs_id: Identifier) -> Crs:
        """Parse (and memoise) a registered CRS, with registry identifier and area."""
        with self._lock:
            cached = self._parsed.get(crs_id)
        if cached is not None:
            return cached
        record = self.lookup_crs_metadata(crs_id.authority, crs_id.code)
        try:
            crs = super().crs(crs_id)
        except ParseError as exc:
            raise RegistryError(f"Registered definition of {crs_id} is invalid: {exc}") from exc
        crs = crs.replace(identifier=record.identifier, area_of_use=record.area_of_use or crs.area_of_use)
        with self._lock:
            self._parsed.setdefault(crs_id, crs)
        return crs

    def identify(self, crs: Crs, criterion: ComparisonCriterion | None = None) -> Identifier | None:
        if crs.identifier is not None and crs.identifier in self._crs:
            return crs.identifier
        if isinstance(crs, CompoundCrs):
            return None
        criterion = criterion or ComparisonCriterion.EQUIVALENT_EXCEPT_AXIS_ORDER_GEOGCRS
        for crs_id, record in self._crs.items():
            if record.deprecated:
                continue
            candidate = self.crs(crs_id)
            if type(candidate) is type(crs) and candidate.axis_count == crs.axis_count:
                if candidate.is_equivalent_to(crs, criterion, registry=self):
                    logger.debug("Identified CRS | name=%s | id=%s", crs.name, crs_id)
                    return crs_id
        return None
