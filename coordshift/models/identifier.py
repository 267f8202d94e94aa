"""Authority identifiers such as ``EPSG:4326``."""

from __future__ import annotations

import re
from typing import NamedTuple

from coordshift.core.exceptions import ParseError

_URN_RE = re.compile(r"^urn:ogc:def:(?P<cat>[a-z-]+):(?P<auth>[^:]+):[^:]*:(?P<code>.+)$", re.I)


class Identifier(NamedTuple):
    """An ``(authority, code)`` pair; the authority is stored upper-case."""

    authority: str
    code: str

    def __str__(self) -> str:
        return f"{self.authority}:{self.code}"

    @classmethod
    def parse(cls, text: str) -> Identifier:
        """Parse ``AUTH:CODE`` or ``urn:ogc:def:<cat>:AUTH:<version>:CODE``.

        Raises:
            ParseError: If *text* is not an identifier.
        """
        text = text.strip()
        match = _URN_RE.match(text)
        if match:
            return cls(match["auth"].upper(), match["code"])
        authority, sep, code = text.partition(":")
        if not sep or not authority or not code or ":" in code:
            raise ParseError(grammar_errors=[f"{text!r} is not an AUTHORITY:CODE identifier"])
        return cls(authority.upper(), code)

    @classmethod
    def coerce(cls, value: Identifier | tuple[str, str] | str) -> Identifier:
        """Accept an ``Identifier``, an ``(auth, code)`` tuple or a string."""
        if isinstance(value, Identifier):
            return value
        if isinstance(value, str):
            return cls.parse(value)
        authority, code = value
        return cls(str(authority).upper(), str(code))
