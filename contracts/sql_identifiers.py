"""Identifier and literal handling for generated SQL.

DuckDB does not accept prepared parameters in DDL (CREATE VIEW, COPY ... TO,
read_csv_auto arguments inside a view body). Values that must appear in such
statements go through this module:

- identifiers (relation and column names) are checked against an allow-list
  pattern and double-quoted;
- string literals are single-quoted with embedded quotes doubled.

Everything else (filter values in SELECT/INSERT) is bound as ``?`` parameters.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_SANITIZE_RE = re.compile(r"[^A-Za-z0-9_]+")

MAX_IDENTIFIER_LENGTH = 128


class InvalidIdentifierError(ValueError):
    """Raised when a relation or column name is not a safe SQL identifier."""


def is_safe_identifier(name: Any) -> bool:
    return (
        isinstance(name, str)
        and len(name) <= MAX_IDENTIFIER_LENGTH
        and bool(_IDENTIFIER_RE.match(name))
    )


def validate_identifier(name: Any, *, kind: str = "identifier") -> str:
    """Return ``name`` unchanged if it is a safe identifier, else raise."""
    if not is_safe_identifier(name):
        raise InvalidIdentifierError(
            f"Invalid {kind} {name!r}: expected letters, digits and underscores, "
            f"not starting with a digit (max {MAX_IDENTIFIER_LENGTH} chars)"
        )
    return name


def quote_identifier(name: str, *, kind: str = "identifier") -> str:
    """Validate and double-quote an identifier for interpolation."""
    return '"' + validate_identifier(name, kind=kind) + '"'


def quote_identifiers(names: Iterable[str], *, kind: str = "column") -> str:
    return ", ".join(quote_identifier(n, kind=kind) for n in names)


def sanitize_identifier(raw: str) -> str:
    """
    Turn an arbitrary label (typically a file stem) into a safe identifier.

    ``"neurocog-2024 v2"`` -> ``"neurocog_2024_v2"``; a leading digit gets an
    underscore prefix. Raises if nothing usable remains.
    """
    text = _SANITIZE_RE.sub("_", str(raw).strip()).strip("_")
    if text and text[0].isdigit():
        text = f"_{text}"
    text = text[:MAX_IDENTIFIER_LENGTH]
    if not text:
        raise InvalidIdentifierError(f"Cannot derive an identifier from {raw!r}")
    return text


def quote_literal(value: str) -> str:
    """Single-quote a string literal for statements that cannot take parameters."""
    return "'" + str(value).replace("'", "''") + "'"


def render_option_value(value: Any) -> str:
    """Render a reader option value (read_csv_auto, COPY) as a SQL literal."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(render_option_value(v) for v in value) + "]"
    if value is None:
        return "NULL"
    return quote_literal(str(value))


__all__ = [
    "InvalidIdentifierError",
    "MAX_IDENTIFIER_LENGTH",
    "is_safe_identifier",
    "quote_identifier",
    "quote_identifiers",
    "quote_literal",
    "render_option_value",
    "sanitize_identifier",
    "validate_identifier",
]
