"""Thin query layer around the managed DuckDB connection.

Kept separate so higher-level pipeline modules depend on a small surface area
(parameterized reads, statements, relation introspection) and report failures
the same way: a :class:`QueryError` carrying the offending SQL text.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import duckdb
import pyarrow as pa

from contracts.sql_identifiers import quote_identifier
from pipeline.connection import ConnectionManager


class QueryError(RuntimeError):
    """Raised when DuckDB rejects or fails a query; includes the SQL text."""

    def __init__(self, message: str, sql: str) -> None:
        super().__init__(f"Query failed: {message}\nQuery: {sql.strip()}")
        self.sql = sql


def _rows_as_dicts(cur: duckdb.DuckDBPyConnection) -> list[dict[str, Any]]:
    cols = [d[0] for d in (cur.description or [])]
    return [dict(zip(cols, r, strict=False)) for r in cur.fetchall()]


class QueryRunner:
    """
    Parameterized query helpers over a :class:`ConnectionManager`.

    Values are always bound with ``?`` placeholders. Identifiers that must be
    interpolated go through :mod:`contracts.sql_identifiers` first.
    """

    def __init__(self, manager: ConnectionManager) -> None:
        self._manager = manager

    def _run(self, sql: str, params: Sequence[Any] | None) -> duckdb.DuckDBPyConnection:
        con = self._manager.con
        try:
            if params:
                return con.execute(sql, list(params))
            return con.execute(sql)
        except duckdb.Error as exc:
            raise QueryError(str(exc), sql) from exc

    def query(self, sql: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        """Execute a read query and return rows as dicts."""
        cur = self._run(sql, params)
        try:
            return _rows_as_dicts(cur)
        except duckdb.Error as exc:
            raise QueryError(str(exc), sql) from exc

    def query_arrow(self, sql: str, params: Sequence[Any] | None = None) -> pa.Table:
        """Execute a read query and return an Arrow table."""
        cur = self._run(sql, params)
        try:
            return cur.fetch_arrow_table()
        except duckdb.Error as exc:
            raise QueryError(str(exc), sql) from exc

    def scalar(self, sql: str, params: Sequence[Any] | None = None) -> Any:
        row = self._run(sql, params).fetchone()
        return None if row is None else row[0]

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> None:
        """Execute a statement that returns no rows (DDL/DML)."""
        self._run(sql, params)

    def execute_many(self, sql: str, seq_of_params: Sequence[Sequence[Any]]) -> None:
        if not seq_of_params:
            return
        con = self._manager.con
        try:
            con.executemany(sql, [list(p) for p in seq_of_params])
        except duckdb.Error as exc:
            raise QueryError(str(exc), sql) from exc

    # -------------------------
    # Introspection
    # -------------------------

    def relation_exists(self, name: str) -> bool:
        """True if ``name`` resolves to a queryable table or view."""
        sql = f"SELECT * FROM {quote_identifier(name, kind='relation name')} LIMIT 0"
        try:
            self._manager.con.execute(sql)
        except duckdb.Error:
            return False
        return True

    def relation_columns(self, name: str) -> dict[str, str]:
        """Column name -> DuckDB type for a table or view, in declared order."""
        rows = self.query(f"DESCRIBE SELECT * FROM {quote_identifier(name, kind='relation name')}")
        return {str(r["column_name"]): str(r["column_type"]) for r in rows}

    def catalog_kind(self, name: str) -> str | None:
        """'table', 'view' or None, looking at user objects only (names match case-insensitively)."""
        if self.scalar(
            "SELECT COUNT(*) FROM duckdb_views() WHERE lower(view_name) = lower(?) AND NOT internal",
            [name],
        ):
            return "view"
        if self.scalar("SELECT COUNT(*) FROM duckdb_tables() WHERE lower(table_name) = lower(?)", [name]):
            return "table"
        return None
