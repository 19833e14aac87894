"""Parquet export of registered relations.

This is the storage boundary for derived data (enriched views, summaries):

- with the ``parquet`` capability, DuckDB streams the relation with
  ``COPY (SELECT * FROM <relation>) TO '<path>' (FORMAT PARQUET, ...)``;
- without it, the relation is fetched as Arrow and written with pyarrow.

Either way the output is a single file and the row count is reported back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import duckdb
import pyarrow as pa
import pyarrow.parquet as pq

from contracts.sql_identifiers import quote_identifier, quote_literal
from infra.pipeline_paths import sql_path
from pipeline.connection import ConnectionManager
from pipeline.query_duckdb import QueryError, QueryRunner

logger = logging.getLogger(__name__)

ALLOWED_COMPRESSIONS: tuple[str, ...] = ("zstd", "snappy", "gzip", "lz4", "brotli", "uncompressed")


class ParquetExportError(RuntimeError):
    """Raised when Parquet export fails."""


@dataclass(frozen=True)
class ExportResult:
    path: Path
    rows: int
    engine: str = "duckdb"


def _normalize_compression(compression: str) -> str:
    value = str(compression or "").strip().lower()
    if value == "none":
        value = "uncompressed"
    if value not in ALLOWED_COMPRESSIONS:
        raise ParquetExportError(
            f"Unsupported compression {compression!r}; expected one of {', '.join(ALLOWED_COMPRESSIONS)}"
        )
    return value


def export_to_parquet(
    manager: ConnectionManager,
    relation: str,
    output_path: str | Path,
    compression: str = "zstd",
) -> ExportResult:
    """
    Write every row of ``relation`` to ``output_path`` as Parquet.

    Parent directories are created. An existing file is overwritten.
    """
    runner = QueryRunner(manager)
    codec = _normalize_compression(compression)
    rel_sql = quote_identifier(relation, kind="relation name")

    if not runner.relation_exists(relation):
        raise ParquetExportError(f"Relation not found: {relation}")

    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)

    if manager.has_capability("parquet"):
        sql = (
            f"COPY (SELECT * FROM {rel_sql}) TO {quote_literal(sql_path(out))} "
            f"(FORMAT PARQUET, COMPRESSION {quote_literal(codec)})"
        )
        try:
            runner.execute(sql)
        except QueryError as exc:
            raise ParquetExportError(f"Failed to export {relation} to {out}: {exc}") from exc
        rows = int(runner.scalar(f"SELECT COUNT(*) FROM {rel_sql}") or 0)
        engine = "duckdb"
    else:
        logger.warning("parquet capability not available; exporting %s through pyarrow", relation)
        try:
            table = runner.query_arrow(f"SELECT * FROM {rel_sql}")
            pq.write_table(
                table,
                out,
                compression=None if codec == "uncompressed" else codec,
                use_dictionary=True,
                write_statistics=True,
            )
        except (QueryError, pa.ArrowException, OSError, duckdb.Error) as exc:
            raise ParquetExportError(f"Failed to export {relation} to {out}: {exc}") from exc
        rows = table.num_rows
        engine = "pyarrow"

    logger.info("Exported %d row(s) from %s to %s (%s)", rows, relation, out, codec)
    return ExportResult(path=out, rows=rows, engine=engine)
