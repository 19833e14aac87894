"""Master lookup bootstrap.

Two artifacts are created from the injected lookup dataset:

- ``lookup_neuropsych_scales_mem``: a materialized copy of the lookup (plus the
  input ordinal column), owned by the engine so views do not depend on a
  Python object staying alive;
- ``lookup_neuropsych_scales``: a view adding the normalized ``join_key`` and
  keeping one row per (join_key, stream). When several lookup rows share a
  key in the same stream, the row registered last wins.

Rows without any identifier keep a NULL key. They are never matched but remain
visible to the domain reference.
"""

from __future__ import annotations

import logging
from typing import Any

import pyarrow as pa

from contracts.lookup import (
    JOIN_KEY_COLUMN,
    ORDINAL_COLUMN,
    LookupContractError,
    LookupSource,
    join_key_sql,
    prepare_lookup_table,
)
from contracts.sql_identifiers import quote_identifier
from pipeline.connection import ConnectionManager
from pipeline.query_duckdb import QueryRunner

logger = logging.getLogger(__name__)

LOOKUP_TABLE = "lookup_neuropsych_scales_mem"
LOOKUP_VIEW = "lookup_neuropsych_scales"
_STAGING_NAME = "lookup_neuropsych_scales_staging"


def _keyed_lookup_sql() -> str:
    return (
        f"SELECT m.*, {join_key_sql('m')} AS {JOIN_KEY_COLUMN} "
        f"FROM {quote_identifier(LOOKUP_TABLE)} m"
    )


class LookupBootstrapper:
    """
    Registers the lookup table and its keyed view on the managed connection.

    ``lookup`` may be None when the database already holds the lookup view
    (file-backed sessions); any rebuild then fails with LookupContractError.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        lookup: LookupSource | None,
        *,
        max_examples: int = 10,
    ) -> None:
        self._manager = manager
        self._runner = QueryRunner(manager)
        self._source = lookup
        self._prepared: pa.Table | None = None
        self._max_examples = max_examples

    @property
    def manager(self) -> ConnectionManager:
        return self._manager

    @property
    def prepared_table(self) -> pa.Table:
        """The validated lookup (optional columns filled, ordinal appended)."""
        if self._prepared is None:
            if self._source is None:
                raise LookupContractError(
                    f"No lookup dataset was provided and {LOOKUP_VIEW} is not registered"
                )
            self._prepared = prepare_lookup_table(self._source)
        return self._prepared

    def is_registered(self) -> bool:
        return self._runner.relation_exists(LOOKUP_VIEW)

    def ensure_lookup_registered(self, force: bool = False) -> bool:
        """
        Create the lookup table and view unless they already exist.

        Returns True when the artifacts were (re)built, False on a no-op.
        """
        if not force and self.is_registered():
            logger.debug("%s already registered", LOOKUP_VIEW)
            return False

        table = self.prepared_table
        self._materialize(table)
        self._create_view()
        self._log_stats()
        return True

    # -------------------------
    # Internal helpers
    # -------------------------

    def _materialize(self, table: pa.Table) -> None:
        con = self._manager.con
        con.register(_STAGING_NAME, table)
        try:
            self._runner.execute(
                f"CREATE OR REPLACE TABLE {quote_identifier(LOOKUP_TABLE)} AS "
                f"SELECT * FROM {quote_identifier(_STAGING_NAME)}"
            )
        finally:
            con.unregister(_STAGING_NAME)

    def _create_view(self) -> None:
        # ROW_NUMBER over the input ordinal implements last-registered-wins.
        sql = f"""
            CREATE OR REPLACE VIEW {quote_identifier(LOOKUP_VIEW)} AS
            WITH keyed AS (
                {_keyed_lookup_sql()}
            ),
            ranked AS (
                SELECT
                    keyed.*,
                    ROW_NUMBER() OVER (
                        PARTITION BY {JOIN_KEY_COLUMN}, stream
                        ORDER BY {ORDINAL_COLUMN} DESC
                    ) AS synonym_rank
                FROM keyed
            )
            SELECT * EXCLUDE (synonym_rank)
            FROM ranked
            WHERE {JOIN_KEY_COLUMN} IS NULL OR synonym_rank = 1
        """
        self._runner.execute(sql)

    def _log_stats(self) -> None:
        keyed = _keyed_lookup_sql()
        totals: Any = self._runner.query(
            f"""
            SELECT
                COUNT(*) AS n_rows,
                COUNT(*) FILTER (WHERE {JOIN_KEY_COLUMN} IS NULL) AS n_unkeyed
            FROM ({keyed}) k
            """
        )[0]
        conflicts = self._runner.query(
            f"""
            SELECT {JOIN_KEY_COLUMN}, stream, COUNT(*) AS n
            FROM ({keyed}) k
            WHERE {JOIN_KEY_COLUMN} IS NOT NULL
            GROUP BY {JOIN_KEY_COLUMN}, stream
            HAVING COUNT(*) > 1
            ORDER BY {JOIN_KEY_COLUMN}, stream
            """
        )

        logger.info(
            "Registered %s: %d lookup row(s), %d without identifier",
            LOOKUP_VIEW,
            int(totals["n_rows"]),
            int(totals["n_unkeyed"]),
        )
        if conflicts:
            examples = ", ".join(
                f"{r[JOIN_KEY_COLUMN]}@{r['stream']}" for r in conflicts[: self._max_examples]
            )
            logger.warning(
                "%d lookup key(s) defined more than once per stream; last registered row wins. Examples: %s",
                len(conflicts),
                examples,
            )
