"""Registry abstract base class.

A registry is the read-only catalogue the resolver consults: CRS and
object definitions by ``(authority, code, category)``, candidate
operations between two CRSs, the authority preference order, grid
metadata and name aliases.

Lifecycle:
    1. ``lookup_definition(auth, code, category)``: definition text.
    2. ``find_operations(source_id, target_id)``: stored operation records,
       whichever direction they were registered in.
    3. ``neighbours(crs_id)``: CRSs one registered operation away, used to
       discover pivot CRSs.

``YamlRegistry`` is the built-in implementation; others are plugged in
through ``coordshift.registry.factory.register_registry``.
"""

from __future__ import annotations

import abc
import enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from coordshift.models.crs import ComparisonCriterion, Crs
    from coordshift.models.identifier import Identifier
    from coordshift.models.operation import GridRef
    from coordshift.registry.records import CrsRecord, OperationRecord


class Category(enum.Enum):
    """Object categories accepted by ``lookup_definition``."""

    CRS = "crs"
    OPERATION = "operation"
    DATUM = "datum"
    ELLIPSOID = "ellipsoid"


class Registry(abc.ABC):
    """Abstract base class for registries.

    Example usage::

        registry = get_registry("builtin")
        wkt = registry.lookup_definition("EPSG", "4326")
        records = registry.find_operations(Identifier("EPSG", "4267"), Identifier("EPSG", "4269"))
    """

    name: str = ""

    # ------------------------------------------------------------------
    # Abstract methods
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def lookup_definition(
        self, authority: str, code: str, category: Category | str = Category.CRS
    ) -> str:
        """Return the definition text of a registered object.

        CRS, datum and ellipsoid definitions are WKT; operation definitions
        are the JSON form of their ``OperationRecord``.

        Raises:
            RegistryError: If the object is unknown.
        """

    @abc.abstractmethod
    def lookup_crs_metadata(self, authority: str, code: str) -> CrsRecord:
        """Return name, kind, area and deprecation of a registered CRS.

        Raises:
            RegistryError: If the CRS is unknown.
        """

    @abc.abstractmethod
    def lookup_operation(self, authority: str, code: str) -> OperationRecord:
        """Return a registered operation record.

        Raises:
            RegistryError: If the operation is unknown.
        """

    @abc.abstractmethod
    def find_operations(self, source: Identifier, target: Identifier) -> list[OperationRecord]:
        """Return the operations registered between *source* and *target*.

        Records registered from *target* to *source* are included; callers
        compare ``record.source_id`` with *source* to detect them.
        """

    @abc.abstractmethod
    def neighbours(self, crs_id: Identifier) -> set[Identifier]:
        """Return the CRSs sharing at least one registered operation with *crs_id*."""

    @abc.abstractmethod
    def authority_preference(self) -> list[str]:
        """Authorities in decreasing order of preference."""

    @abc.abstractmethod
    def grid_info(self, name: str) -> GridRef | None:
        """Metadata of a known grid, or ``None``."""

    @abc.abstractmethod
    def aliases(self, name: str) -> set[str]:
        """Other names an object called *name* is known by (may be empty)."""

    @abc.abstractmethod
    def authorities(self) -> list[str]:
        """Authorities with at least one registered object, sorted."""

    @abc.abstractmethod
    def codes(
        self,
        authority: str,
        category: Category | str = Category.CRS,
        allow_deprecated: bool = False,
    ) -> list[str]:
        """Codes registered under *authority* for one category, sorted.

        Deprecated CRSs and operations are left out unless
        *allow_deprecated* is set.  An unknown authority gives an empty list.
        """

    @abc.abstractmethod
    def identify(
        self, crs: Crs, criterion: ComparisonCriterion | None = None
    ) -> Identifier | None:
        """Return the identifier of a registered CRS equivalent to *crs*."""

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def crs(self, crs_id: Identifier) -> Crs:
        """Parse a registered CRS definition.

        Raises:
            RegistryError: If the CRS is unknown.
            ParseError: If the stored definition is invalid.
        """
        from coordshift.parsing.wkt import parse_wkt

        return parse_wkt(self.lookup_definition(crs_id.authority, crs_id.code)).crs

    def authority_rank(self, authority: str) -> int:
        """Position of *authority* in the preference order (unknown sorts last)."""
        preference = [a.upper() for a in self.authority_preference()]
        try:
            return preference.index(authority.upper())
        except ValueError:
            return len(preference)
