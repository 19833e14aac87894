"""Enriched stream views and the unmapped-key log.

For every configured stream whose source relation is registered:

    <stream>_enriched = source rows
                        LEFT JOIN lookup_neuropsych_scales
                          ON (join_key, stream)
                        + domain, subdomain, narrow, pass, verbal, timed, stream

Rows that find no lookup entry are kept with NULL classification. Their keys
are counted per stream, appended to the unmapped log table and reported with a
single WARNING per stream. Unmatched keys never fail a refresh.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Sequence

from contracts.lookup import (
    CLASSIFICATION_COLUMNS,
    COGNITIVE_COLUMNS,
    IDENTIFIER_COLUMNS,
    JOIN_KEY_COLUMN,
    join_key_sql,
)
from contracts.sql_identifiers import quote_identifier, quote_literal, validate_identifier
from contracts.streams import StreamSpec, default_streams
from pipeline.lookup_bootstrap import LOOKUP_VIEW, LookupBootstrapper
from pipeline.query_duckdb import QueryRunner

logger = logging.getLogger(__name__)

DEFAULT_UNMAPPED_LOG_TABLE = "unmapped_tests_log"

# Source columns replaced by lookup values (or by the stream literal) in the view.
_REPLACED_COLUMNS: tuple[str, ...] = CLASSIFICATION_COLUMNS + ("stream", JOIN_KEY_COLUMN)


@dataclass(frozen=True)
class EnrichmentReport:
    stream: str
    view_name: str
    total_rows: int
    unmapped_keys: int = 0
    unmapped_rows: int = 0
    examples: tuple[str, ...] = field(default_factory=tuple)

    @property
    def fully_mapped(self) -> bool:
        return self.unmapped_keys == 0


class EnrichmentViewBuilder:
    """(Re)creates ``<stream>_enriched`` views and records unmatched keys."""

    def __init__(
        self,
        bootstrapper: LookupBootstrapper,
        *,
        streams: Sequence[StreamSpec] | None = None,
        unmapped_log_table: str = DEFAULT_UNMAPPED_LOG_TABLE,
        max_examples: int = 10,
    ) -> None:
        self._bootstrapper = bootstrapper
        self._runner = QueryRunner(bootstrapper.manager)
        self.streams: tuple[StreamSpec, ...] = tuple(streams) if streams is not None else default_streams()
        self.unmapped_log_table = validate_identifier(unmapped_log_table, kind="log table name")
        self._max_examples = max_examples

    def existing_views(self) -> list[StreamSpec]:
        """Configured streams whose enriched view is currently queryable."""
        return [s for s in self.streams if self._runner.relation_exists(s.enriched_view)]

    def refresh_enriched_views(self) -> list[EnrichmentReport]:
        """Rebuild every enriched view that has a source; returns one report per view."""
        self._bootstrapper.ensure_lookup_registered()
        lookup_types = self._runner.relation_columns(LOOKUP_VIEW)

        # One timestamp per refresh, shared by every stream's log rows.
        ts = datetime.now(UTC).replace(tzinfo=None)
        reports: list[EnrichmentReport] = []

        for spec in self.streams:
            if not self._runner.relation_exists(spec.source_relation):
                logger.info(
                    "Source relation %s not registered; skipping %s",
                    spec.source_relation,
                    spec.enriched_view,
                )
                self._drop_stale_view(spec.enriched_view)
                continue

            key_columns = self._build_view(spec, lookup_types)
            reports.append(self._diagnose(spec, key_columns, ts))

        return reports

    # -------------------------
    # View construction
    # -------------------------

    def _build_view(self, spec: StreamSpec, lookup_types: dict[str, str]) -> list[str]:
        src_cols = self._runner.relation_columns(spec.source_relation)
        key_columns = [c for c in IDENTIFIER_COLUMNS if c in src_cols]
        if not key_columns:
            logger.warning(
                "%s has none of the identifier columns (%s); every row will be unmapped",
                spec.source_relation,
                ", ".join(IDENTIFIER_COLUMNS),
            )

        replaced = [c for c in _REPLACED_COLUMNS if c in src_cols]
        exclude = f" EXCLUDE ({', '.join(quote_identifier(c) for c in replaced)})" if replaced else ""
        stream_lit = quote_literal(spec.name)

        select_cols = [f"l.{quote_identifier(c)}" for c in ("domain", "subdomain", "narrow")]
        for col in COGNITIVE_COLUMNS:
            if spec.cognitive:
                select_cols.append(f"l.{quote_identifier(col)}")
            else:
                select_cols.append(
                    f"CAST(NULL AS {lookup_types.get(col, 'BOOLEAN')}) AS {quote_identifier(col)}"
                )
        select_cols.append(f"{stream_lit} AS stream")

        sql = f"""
            CREATE OR REPLACE VIEW {quote_identifier(spec.enriched_view)} AS
            WITH src AS (
                SELECT s.*{exclude}, {join_key_sql('s', key_columns)} AS {JOIN_KEY_COLUMN}
                FROM {quote_identifier(spec.source_relation)} s
            )
            SELECT
                src.* EXCLUDE ({JOIN_KEY_COLUMN}),
                {", ".join(select_cols)}
            FROM src
            LEFT JOIN {quote_identifier(LOOKUP_VIEW)} l
              ON l.{JOIN_KEY_COLUMN} = src.{JOIN_KEY_COLUMN}
             AND l.stream = {stream_lit}
        """
        self._runner.execute(sql)
        logger.info("Refreshed %s from %s", spec.enriched_view, spec.source_relation)
        return key_columns

    def _drop_stale_view(self, view_name: str) -> None:
        if self._runner.catalog_kind(view_name) == "view":
            self._runner.execute(f"DROP VIEW IF EXISTS {quote_identifier(view_name)}")
            logger.info("Dropped stale view %s", view_name)

    # -------------------------
    # Unmapped-key diagnostics
    # -------------------------

    def _ensure_log_table(self) -> None:
        self._runner.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {quote_identifier(self.unmapped_log_table)} (
                ts TIMESTAMP,
                stream VARCHAR,
                join_key VARCHAR,
                n_rows BIGINT
            )
            """
        )

    def _diagnose(self, spec: StreamSpec, key_columns: list[str], ts: datetime) -> EnrichmentReport:
        view = quote_identifier(spec.enriched_view)
        total = int(self._runner.scalar(f"SELECT COUNT(*) FROM {view}") or 0)

        # Keys are recomputed; the view does not expose them.
        unmapped = self._runner.query(
            f"""
            WITH src AS (
                SELECT domain, {join_key_sql('e', key_columns)} AS key_norm
                FROM {view} e
            )
            SELECT key_norm AS join_key, COUNT(*) AS n_rows
            FROM src
            WHERE domain IS NULL AND key_norm IS NOT NULL
            GROUP BY key_norm
            ORDER BY n_rows DESC, key_norm
            """
        )

        if not unmapped:
            logger.debug("%s: all %d row(s) mapped", spec.enriched_view, total)
            return EnrichmentReport(stream=spec.name, view_name=spec.enriched_view, total_rows=total)

        self._ensure_log_table()
        self._runner.execute_many(
            f"INSERT INTO {quote_identifier(self.unmapped_log_table)} VALUES (?, ?, ?, ?)",
            [(ts, spec.name, r["join_key"], int(r["n_rows"])) for r in unmapped],
        )

        examples = tuple(str(r["join_key"]) for r in unmapped[: self._max_examples])
        logger.warning(
            "[%s] %d unmapped key(s). Examples: %s. See table '%s'.",
            spec.name,
            len(unmapped),
            ", ".join(examples),
            self.unmapped_log_table,
        )
        return EnrichmentReport(
            stream=spec.name,
            view_name=spec.enriched_view,
            total_rows=total,
            unmapped_keys=len(unmapped),
            unmapped_rows=sum(int(r["n_rows"]) for r in unmapped),
            examples=examples,
        )
