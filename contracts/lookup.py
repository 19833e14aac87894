"""Master lookup contract.

The lookup maps test identifiers (scale / test / test_name) to the
domain / subdomain / narrow taxonomy, per stream. It is always injected by the
caller (an Arrow table, a list of row mappings, or a file loaded with
:func:`load_lookup_file`); nothing here searches for it.

Join-key rule (mirrored in SQL by :func:`join_key_sql`):

    first non-empty of lower(trim(scale)), lower(trim(test)), lower(trim(test_name))
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Union

import pyarrow as pa
import pyarrow.csv as pa_csv
import pyarrow.feather as feather
import pyarrow.parquet as pq

from contracts.source_formats import SourceFormat, format_for_path
from contracts.sql_identifiers import quote_identifier, validate_identifier

REQUIRED_COLUMNS: tuple[str, ...] = ("stream", "domain", "subdomain", "narrow")
IDENTIFIER_COLUMNS: tuple[str, ...] = ("scale", "test", "test_name")
COGNITIVE_COLUMNS: tuple[str, ...] = ("pass", "verbal", "timed")
CLASSIFICATION_COLUMNS: tuple[str, ...] = ("domain", "subdomain", "narrow") + COGNITIVE_COLUMNS

# Input order of each lookup row; drives the last-registered-wins synonym policy.
ORDINAL_COLUMN = "lookup_ordinal"
JOIN_KEY_COLUMN = "join_key"

LookupSource = Union[pa.Table, Sequence[Mapping[str, Any]]]


class LookupContractError(ValueError):
    """Raised when the lookup dataset does not satisfy the column contract."""


def normalize_join_key(
    scale: Any = None,
    test: Any = None,
    test_name: Any = None,
) -> str | None:
    """
    Python twin of the SQL join-key expression.

    Only spaces are trimmed, like DuckDB's ``trim()``; tabs and newlines are
    part of the key.
    """
    for value in (scale, test, test_name):
        if value is None:
            continue
        text = str(value).strip(" ").lower()
        if text:
            return text
    return None


def join_key_sql(alias: str | None = None, columns: Sequence[str] = IDENTIFIER_COLUMNS) -> str:
    """
    Normalized COALESCE join-key expression over ``columns``.

    Example: join_key_sql("c") ->
      COALESCE(NULLIF(lower(trim(CAST(c."scale" AS VARCHAR))), ''), ...)

    Returns a typed NULL when no identifier column is available.
    """
    prefix = f"{validate_identifier(alias, kind='alias')}." if alias else ""
    parts = [
        f"NULLIF(lower(trim(CAST({prefix}{quote_identifier(col, kind='column')} AS VARCHAR))), '')"
        for col in columns
    ]
    if not parts:
        return "CAST(NULL AS VARCHAR)"
    if len(parts) == 1:
        return parts[0]
    return "COALESCE(" + ", ".join(parts) + ")"


def _table_from_rows(rows: Sequence[Mapping[str, Any]]) -> pa.Table:
    columns: dict[str, list[Any]] = {}
    for row in rows:
        for key in row:
            columns.setdefault(str(key), [])
    for name in columns:
        columns[name] = [row.get(name) for row in rows]
    return pa.table(columns)


def as_arrow_table(source: LookupSource) -> pa.Table:
    if isinstance(source, pa.Table):
        return source
    if isinstance(source, (str, bytes)) or not isinstance(source, Sequence):
        raise LookupContractError(
            f"Lookup must be a pyarrow.Table or a sequence of row mappings, got {type(source).__name__}"
        )
    for i, row in enumerate(source):
        if not isinstance(row, Mapping):
            raise LookupContractError(f"Lookup row {i} is not a mapping: {type(row).__name__}")
    return _table_from_rows(source)


def missing_required_columns(names: Sequence[str]) -> list[str]:
    """Required columns absent from ``names`` (identifiers count as one group)."""
    present = set(names)
    missing = [c for c in REQUIRED_COLUMNS if c not in present]
    if not any(c in present for c in IDENTIFIER_COLUMNS):
        missing.append("scale|test|test_name")
    return missing


def prepare_lookup_table(source: LookupSource) -> pa.Table:
    """
    Validate the lookup and fill the optional columns.

    - missing required columns -> LookupContractError naming them
    - absent identifier columns -> all-null strings
    - absent cognitive columns (pass/verbal/timed) -> all-null booleans
    - an input ordinal column is appended for the synonym policy
    - a pre-computed join_key is discarded (it is always derived)
    """
    table = as_arrow_table(source)

    missing = missing_required_columns(table.column_names)
    if missing:
        raise LookupContractError(
            "Lookup dataset is missing required columns: " + ", ".join(missing)
        )

    for name in table.column_names:
        validate_identifier(name, kind="lookup column")

    n = table.num_rows
    for col in IDENTIFIER_COLUMNS:
        if col not in table.column_names:
            table = table.append_column(col, pa.nulls(n, type=pa.string()))
        elif pa.types.is_null(table.schema.field(col).type):
            table = table.set_column(
                table.schema.get_field_index(col), col, table.column(col).cast(pa.string())
            )
    for col in COGNITIVE_COLUMNS:
        if col not in table.column_names:
            table = table.append_column(col, pa.nulls(n, type=pa.bool_()))
        elif pa.types.is_null(table.schema.field(col).type):
            table = table.set_column(
                table.schema.get_field_index(col), col, table.column(col).cast(pa.bool_())
            )

    derived = [c for c in (ORDINAL_COLUMN, JOIN_KEY_COLUMN) if c in table.column_names]
    if derived:
        table = table.drop_columns(derived)
    return table.append_column(ORDINAL_COLUMN, pa.array(range(n), type=pa.int64()))


def load_lookup_file(path: str | Path) -> pa.Table:
    """Read a lookup export (CSV/TSV/TXT, Parquet, Arrow/Feather) into Arrow."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Lookup file not found: {p}")

    fmt = format_for_path(p)
    if fmt is SourceFormat.PARQUET:
        return pq.read_table(p)
    if fmt is SourceFormat.ARROW:
        return feather.read_table(p)
    if fmt is SourceFormat.ROW_TEXT:
        delimiter = "\t" if p.suffix.lower() == ".tsv" else ","
        return pa_csv.read_csv(p, parse_options=pa_csv.ParseOptions(delimiter=delimiter))
    raise LookupContractError(f"Unsupported lookup file format: {p.name}")


__all__ = [
    "CLASSIFICATION_COLUMNS",
    "COGNITIVE_COLUMNS",
    "IDENTIFIER_COLUMNS",
    "JOIN_KEY_COLUMN",
    "LookupContractError",
    "LookupSource",
    "ORDINAL_COLUMN",
    "REQUIRED_COLUMNS",
    "as_arrow_table",
    "join_key_sql",
    "load_lookup_file",
    "missing_required_columns",
    "normalize_join_key",
    "prepare_lookup_table",
]
