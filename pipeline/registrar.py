"""Register export files as named DuckDB relations.

Each relation is a view backed by exactly one file:

    <name>  ->  read_parquet('<path>')         (Parquet, needs `parquet`)
    <name>  ->  Arrow table read with pyarrow   (Arrow/Feather, needs `arrow`)
    <name>  ->  read_csv_auto('<path>', ...)    (row text, always available)

Directory scans register the fastest representation of each dataset: formats
are scanned in strict priority order and a stem registered by a higher-priority
format is never re-registered by a lower-priority one.

DuckDB does not take prepared parameters inside CREATE VIEW, so file paths are
embedded as escaped literals and names are validated identifiers.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import duckdb
import pyarrow as pa
import pyarrow.feather as feather

from contracts.source_formats import (
    DEFAULT_SCAN_ORDER,
    SourceFormat,
    by_priority,
    row_text_sibling,
)
from contracts.sql_identifiers import (
    quote_identifier,
    quote_literal,
    render_option_value,
    sanitize_identifier,
    validate_identifier,
)
from infra.pipeline_paths import sql_path
from pipeline.connection import ConnectionManager
from pipeline.query_duckdb import QueryError, QueryRunner

logger = logging.getLogger(__name__)


class RegistrationError(RuntimeError):
    """Raised when a file cannot be registered and no fallback applies."""


@dataclass(frozen=True)
class Relation:
    name: str
    source_path: Path
    source_format: SourceFormat
    registered_at: datetime


def relation_name_for(path: str | Path) -> str:
    """Default relation name: the file stem, sanitized to a safe identifier."""
    return sanitize_identifier(Path(path).stem)


class RelationRegistrar:
    """Maps files to named relations on the managed connection."""

    def __init__(self, manager: ConnectionManager) -> None:
        self._manager = manager
        self._runner = QueryRunner(manager)
        # Keyed by the case-folded name; DuckDB resolves relation names case-insensitively.
        self._relations: dict[str, Relation] = {}
        # Names backed by con.register(); these must be unregistered, not dropped.
        self._arrow_objects: dict[str, str] = {}

    @property
    def relations(self) -> Mapping[str, Relation]:
        return {r.name: r for r in self._relations.values()}

    def get(self, name: str) -> Relation | None:
        return self._relations.get(name.lower())

    def reset(self) -> None:
        """Forget session state (call after the connection was re-opened)."""
        self._relations.clear()
        self._arrow_objects.clear()

    # -------------------------
    # Single-file registration
    # -------------------------

    def register_row_text(
        self,
        path: str | Path,
        name: str | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> Relation:
        """Create or replace a view over a delimited text file (schema auto-detected)."""
        p = Path(path)
        if not p.exists():
            raise FileNotFoundError(f"File not found: {p}")
        rel_name = self._resolve_name(p, name)

        option_sql = ""
        if options:
            option_sql = "".join(
                f", {validate_identifier(k, kind='reader option')}={render_option_value(v)}"
                for k, v in options.items()
            )
        sql = (
            f"CREATE OR REPLACE VIEW {quote_identifier(rel_name)} AS "
            f"SELECT * FROM read_csv_auto({quote_literal(sql_path(p))}{option_sql})"
        )
        self._replace_with_view(rel_name, sql)
        return self._record(rel_name, p, SourceFormat.ROW_TEXT)

    def register_columnar_binary(self, path: str | Path, name: str | None = None) -> Relation:
        """Create or replace a view over a Parquet file, falling back to a row-text sibling."""
        p = Path(path)
        rel_name = self._resolve_name(p, name)

        if not p.exists():
            return self._fallback_or_raise(
                p, rel_name, FileNotFoundError(f"File not found: {p}")
            )
        if not self._manager.has_capability("parquet"):
            return self._fallback_or_raise(
                p, rel_name, RegistrationError("parquet capability is not available")
            )

        sql = (
            f"CREATE OR REPLACE VIEW {quote_identifier(rel_name)} AS "
            f"SELECT * FROM read_parquet({quote_literal(sql_path(p))})"
        )
        try:
            self._replace_with_view(rel_name, sql)
        except QueryError as exc:
            return self._fallback_or_raise(p, rel_name, exc)
        return self._record(rel_name, p, SourceFormat.PARQUET)

    def register_arrow(self, path: str | Path, name: str | None = None) -> Relation:
        """Register an Arrow IPC / Feather file read through pyarrow."""
        p = Path(path)
        rel_name = self._resolve_name(p, name)

        if not p.exists():
            return self._fallback_or_raise(
                p, rel_name, FileNotFoundError(f"File not found: {p}")
            )
        if not self._manager.has_capability("arrow"):
            return self._fallback_or_raise(
                p, rel_name, RegistrationError("arrow capability is not available")
            )

        try:
            table = feather.read_table(p)
            self._drop_existing(rel_name)
            self._manager.con.register(rel_name, table)
        except (pa.ArrowException, OSError, duckdb.Error) as exc:
            return self._fallback_or_raise(p, rel_name, exc)

        self._arrow_objects[rel_name.lower()] = rel_name
        return self._record(rel_name, p, SourceFormat.ARROW)

    def register(self, path: str | Path, name: str | None = None) -> Relation:
        """Dispatch on the file extension."""
        p = Path(path)
        suffix = p.suffix.lower()
        if suffix in SourceFormat.PARQUET.extensions:
            return self.register_columnar_binary(p, name)
        if suffix in SourceFormat.ARROW.extensions:
            return self.register_arrow(p, name)
        if suffix in SourceFormat.ROW_TEXT.extensions:
            return self.register_row_text(p, name)
        raise RegistrationError(f"Unsupported file type: {p.name}")

    def unregister(self, name: str) -> bool:
        """Drop a relation registered by this registrar. Returns False if unknown."""
        if name.lower() not in self._relations:
            return False
        self._drop_existing(name)
        del self._relations[name.lower()]
        logger.info("Unregistered %s", name)
        return True

    # -------------------------
    # Directory scan
    # -------------------------

    def register_all_in_directory(
        self,
        directory: str | Path,
        formats: Sequence[SourceFormat | str] = DEFAULT_SCAN_ORDER,
    ) -> list[Relation]:
        """
        Register every supported file in ``directory``.

        Formats are scanned parquet -> arrow -> row text whatever order the
        caller passes. Failures are logged and skipped.
        """
        base = Path(directory)
        if not base.is_dir():
            logger.warning("Data directory does not exist, nothing registered: %s", base)
            return []

        seen: set[str] = set()
        registered: list[Relation] = []

        for fmt in by_priority(list(formats)):
            if fmt.capability and not self._manager.has_capability(fmt.capability):
                logger.info("Skipping %s files: %s capability not available", fmt.value, fmt.capability)
                continue

            files = sorted(
                f for f in base.iterdir() if f.is_file() and f.suffix.lower() in fmt.extensions
            )
            for file in files:
                try:
                    rel_name = relation_name_for(file)
                except ValueError as exc:
                    logger.warning("Skipping %s: %s", file.name, exc)
                    continue
                if rel_name.lower() in seen:
                    logger.debug("Skipping %s: %s already registered from a preferred format", file.name, rel_name)
                    continue
                try:
                    relation = self.register(file, rel_name)
                except (FileNotFoundError, RegistrationError, QueryError, ValueError) as exc:
                    logger.warning("Failed to register %s from %s: %s", rel_name, file.name, exc)
                    continue
                seen.add(rel_name.lower())
                registered.append(relation)

        logger.info("Registered %d relation(s) from %s", len(registered), base)
        return registered

    # -------------------------
    # Internal helpers
    # -------------------------

    def _resolve_name(self, path: Path, name: str | None) -> str:
        if name is None:
            return relation_name_for(path)
        return validate_identifier(name, kind="relation name")

    def _drop_existing(self, name: str) -> None:
        arrow_name = self._arrow_objects.pop(name.lower(), None)
        if arrow_name is not None:
            self._manager.con.unregister(arrow_name)
            return
        kind = self._runner.catalog_kind(name)
        if kind == "view":
            self._runner.execute(f"DROP VIEW IF EXISTS {quote_identifier(name)}")
        elif kind == "table":
            raise RegistrationError(f"Refusing to replace table {name!r} with a file-backed view")

    def _replace_with_view(self, name: str, create_sql: str) -> None:
        if name.lower() in self._arrow_objects:
            self._drop_existing(name)
        elif self._runner.catalog_kind(name) == "table":
            raise RegistrationError(f"Refusing to replace table {name!r} with a file-backed view")
        self._runner.execute(create_sql)

    def _fallback_or_raise(self, path: Path, name: str, error: Exception) -> Relation:
        sibling = row_text_sibling(path)
        if sibling is None:
            if isinstance(error, (FileNotFoundError, RegistrationError)):
                raise error
            raise RegistrationError(f"Failed to register {name} from {path.name}: {error}") from error

        logger.warning(
            "Could not register %s from %s (%s); falling back to %s",
            name,
            path.name,
            error,
            sibling.name,
        )
        return self.register_row_text(sibling, name)

    def _record(self, name: str, path: Path, fmt: SourceFormat) -> Relation:
        relation = Relation(
            name=name,
            source_path=path,
            source_format=fmt,
            registered_at=datetime.now(UTC),
        )
        self._relations[name.lower()] = relation
        logger.info("Registered %s from %s (%s)", name, path.name, fmt.value)
        return relation
