"""Parsers for CRS and operation definitions.

- catalog: supported operation methods and their parameters
- proj_string: ``+proj=...`` CRS and operation strings
- wkt: WKT1 and WKT2 CRS definitions

``parse_crs`` and ``parse_operation`` pick the parser from the shape of
the definition; authority codes are answered by the context's registry.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from coordshift.core.exceptions import ParseError

if TYPE_CHECKING:
    from coordshift.core.context import Context
    from coordshift.models.crs import Crs
    from coordshift.models.identifier import Identifier
    from coordshift.models.operation import Operation
    from coordshift.registry.base import Registry

logger = logging.getLogger(__name__)

_CODE_RE = re.compile(r"^[A-Za-z][\w.-]*:[\w.+-]+$")
_URN_PREFIX = "urn:ogc:def:"


def looks_like_identifier(text: str) -> bool:
    """Whether *text* is ``AUTH:CODE``, ``AUTH:CODE+CODE`` or an OGC URN."""
    text = text.strip()
    return text.lower().startswith(_URN_PREFIX) or bool(_CODE_RE.match(text))


def _context(context: Context | None) -> Context:
    if context is not None:
        return context
    from coordshift.core.context import Context

    return Context.current()


def parse_crs(definition: str, context: Context | None = None) -> Crs:
    """Build a CRS from an authority code, a WKT string or a proj-string.

    ``AUTH:CODE+CODE`` builds a compound CRS from two registered CRSs.

    Raises:
        ParseError: If the definition is not recognised or is malformed.
        RegistryError: If an authority code is unknown.
    """
    if not isinstance(definition, str) or not definition.strip():
        raise ParseError(grammar_errors=["Empty CRS definition"])
    text = definition.strip()

    if looks_like_identifier(text):
        from coordshift.models.identifier import Identifier

        return registry_crs(Identifier.parse(text), _context(context).registry)

    from coordshift.parsing.proj_string import is_proj_string, parse_proj_crs
    from coordshift.parsing.wkt import is_wkt, parse_wkt

    if is_wkt(text):
        return parse_wkt(text).crs
    if is_proj_string(text):
        return parse_proj_crs(text).crs
    raise ParseError(grammar_errors=[f"Unrecognised CRS definition: {text[:60]!r}"])


def registry_crs(crs_id: Identifier, registry: Registry) -> Crs:
    """A registered CRS, or the compound of ``AUTH:H+V`` components."""
    from coordshift.core.exceptions import RegistryError
    from coordshift.models.crs import CompoundCrs
    from coordshift.models.identifier import Identifier

    try:
        return registry.crs(crs_id)
    except RegistryError:
        if "+" not in crs_id.code:
            raise
    codes = [code for code in crs_id.code.split("+") if code]
    components = tuple(registry.crs(Identifier(crs_id.authority, code)) for code in codes)
    name = " + ".join(component.name for component in components)
    logger.debug("Built compound CRS | id=%s | name=%s", crs_id, name)
    return CompoundCrs(name, components, identifier=crs_id, area_of_use=components[0].area_of_use)


def parse_operation(definition: str, context: Context | None = None) -> Operation:
    """Build an operation from a proj-string or a registered operation code.

    Raises:
        ParseError: If the definition is not recognised or is malformed.
        RegistryError: If an operation code is unknown.
    """
    if not isinstance(definition, str) or not definition.strip():
        raise ParseError(grammar_errors=["Empty operation definition"])
    text = definition.strip()

    if looks_like_identifier(text):
        from coordshift.models.identifier import Identifier

        registry = _context(context).registry
        op_id = Identifier.parse(text)
        record = registry.lookup_operation(op_id.authority, op_id.code)
        grids = {name: info for name in record.grids if (info := registry.grid_info(name))}
        return record.to_operation(
            registry_crs(record.source_id, registry),
            registry_crs(record.target_id, registry),
            grids,
        )

    from coordshift.parsing.proj_string import is_crs_definition, is_proj_string, parse_proj_operation

    if not is_proj_string(text):
        raise ParseError(grammar_errors=[f"Unrecognised operation definition: {text[:60]!r}"])
    if is_crs_definition(text):
        raise ParseError(grammar_errors=["+type=crs describes a CRS, not an operation"])
    return parse_proj_operation(text)
