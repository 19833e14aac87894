"""Category-level statistics over the enriched streams.

Reads only; nothing here creates or replaces relations. All filter values are
bound parameters, and interpolated names are validated identifiers.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from contracts.sql_identifiers import quote_identifier, quote_identifiers
from contracts.streams import StreamSpec, default_streams
from pipeline.connection import ConnectionManager
from pipeline.domains_ref import DOMAINS_REF_TABLE
from pipeline.query_duckdb import QueryRunner

logger = logging.getLogger(__name__)

SUMMARY_LEVELS: tuple[str, ...] = ("domain", "subdomain", "narrow")
SUMMARY_COLUMNS: tuple[str, ...] = (
    "n_tests",
    "mean_percentile",
    "mean_z",
    "sd_z",
    "min_percentile",
    "max_percentile",
)

_EMPTY_DATA_SQL = (
    "SELECT CAST(NULL AS VARCHAR) AS level_key, CAST(NULL AS VARCHAR) AS stream, "
    "CAST(NULL AS DOUBLE) AS pct, CAST(NULL AS DOUBLE) AS z WHERE false"
)


class SummaryError(RuntimeError):
    """Raised when a summary cannot be computed (no enriched data, bad level)."""


class SummaryEngine:
    def __init__(self, manager: ConnectionManager, *, streams: Sequence[StreamSpec] | None = None) -> None:
        self._runner = QueryRunner(manager)
        self.streams: tuple[StreamSpec, ...] = tuple(streams) if streams is not None else default_streams()

    # -------------------------
    # Domain summary
    # -------------------------

    def get_domain_summary(
        self,
        level: str = "domain",
        by_stream: bool = False,
        include_all: bool = True,
    ) -> list[dict[str, Any]]:
        """
        Aggregate percentile and z statistics per category.

        Rows without a numeric percentile and rows without a category at
        ``level`` (unmapped keys) are left out. With ``include_all`` and a
        ``domains_ref`` table, every reference category is returned, empty
        ones with ``n_tests = 0`` and NULL statistics.

        Ordered by mean_percentile DESC NULLS LAST, then category, then stream.
        """
        if level not in SUMMARY_LEVELS:
            raise SummaryError(f"Unknown summary level {level!r}; expected one of {', '.join(SUMMARY_LEVELS)}")

        views = [s for s in self.streams if self._runner.relation_exists(s.enriched_view)]
        if not views:
            raise SummaryError(
                "No enriched views are present: "
                + ", ".join(s.enriched_view for s in self.streams)
            )

        data_sql = self._union_sql(views, level)
        group_cols = ["level_key", "stream"] if by_stream else ["level_key"]
        group_sql = ", ".join(group_cols)

        agg_sql = f"""
            SELECT
                {group_sql},
                COUNT(*)          AS n_tests,
                AVG(pct)          AS mean_percentile,
                AVG(z)            AS mean_z,
                STDDEV_SAMP(z)    AS sd_z,
                MIN(pct)          AS min_percentile,
                MAX(pct)          AS max_percentile
            FROM all_rows
            WHERE pct IS NOT NULL AND level_key IS NOT NULL
            GROUP BY {group_sql}
        """

        use_ref = include_all and self._runner.relation_exists(DOMAINS_REF_TABLE)
        if include_all and not use_ref:
            logger.info("%s not present; summary lists only categories with data", DOMAINS_REF_TABLE)

        level_col = quote_identifier(level)
        stats_sql = ", ".join(f"agg.{c}" for c in SUMMARY_COLUMNS[1:])
        if use_ref:
            ref_stream = ", CAST(stream AS VARCHAR) AS stream" if by_stream else ""
            join_on = "ref.level_key = agg.level_key" + (" AND ref.stream = agg.stream" if by_stream else "")
            body = f"""
                SELECT
                    ref.level_key AS {level_col}{', ref.stream' if by_stream else ''},
                    COALESCE(agg.n_tests, 0) AS n_tests,
                    {stats_sql}
                FROM ref
                LEFT JOIN agg ON {join_on}
            """
            ctes = f"""
                all_rows AS ({data_sql}),
                agg AS ({agg_sql}),
                ref AS (
                    SELECT DISTINCT CAST({level_col} AS VARCHAR) AS level_key{ref_stream}
                    FROM {quote_identifier(DOMAINS_REF_TABLE)}
                    WHERE {level_col} IS NOT NULL
                )
            """
        else:
            body = f"""
                SELECT
                    agg.level_key AS {level_col}{', agg.stream' if by_stream else ''},
                    agg.n_tests,
                    {stats_sql}
                FROM agg
            """
            ctes = f"""
                all_rows AS ({data_sql}),
                agg AS ({agg_sql})
            """

        order_sql = f"mean_percentile DESC NULLS LAST, {level_col} ASC" + (", stream ASC" if by_stream else "")
        sql = f"WITH {ctes} SELECT * FROM ({body}) s ORDER BY {order_sql}"
        return self._runner.query(sql)

    def _union_sql(self, views: Sequence[StreamSpec], level: str) -> str:
        parts: list[str] = []
        for spec in views:
            cols = self._runner.relation_columns(spec.enriched_view)
            if "percentile" not in cols:
                logger.warning("%s has no percentile column; left out of the summary", spec.enriched_view)
                continue
            z_expr = "TRY_CAST(z AS DOUBLE)" if "z" in cols else "CAST(NULL AS DOUBLE)"
            parts.append(
                f"SELECT CAST({quote_identifier(level)} AS VARCHAR) AS level_key, "
                f"CAST(stream AS VARCHAR) AS stream, "
                f"TRY_CAST(percentile AS DOUBLE) AS pct, {z_expr} AS z "
                f"FROM {quote_identifier(spec.enriched_view)}"
            )
        if not parts:
            return _EMPTY_DATA_SQL
        return "\nUNION ALL\n".join(parts)

    # -------------------------
    # Row-level access
    # -------------------------

    def resolve_stream_relation(self, stream: str) -> str:
        """Enriched view of ``stream`` when present, else its raw source relation."""
        spec = next((s for s in self.streams if s.name == stream), None) or StreamSpec(name=stream)
        for candidate in (spec.enriched_view, spec.source_relation):
            if self._runner.relation_exists(candidate):
                return candidate
        raise SummaryError(f"No relation found for stream {stream!r}")

    def process_domain(
        self,
        domain: str,
        stream: str = "neurocog",
        scales: Sequence[str] | None = None,
    ) -> list[dict[str, Any]]:
        """Rows of one domain for a stream, highest percentile first."""
        relation = self.resolve_stream_relation(stream)
        if scales is not None and len(scales) == 0:
            return []

        cols = self._runner.relation_columns(relation)
        params: list[Any] = [domain]
        sql = f"SELECT * FROM {quote_identifier(relation)} WHERE domain = ?"
        if scales is not None:
            if isinstance(scales, str):
                scales = [scales]
            sql += f" AND scale IN ({', '.join('?' for _ in scales)})"
            params.extend(scales)
        if "percentile" in cols:
            sql += " ORDER BY TRY_CAST(percentile AS DOUBLE) DESC NULLS LAST"
        return self._runner.query(sql, params)

    def calculate_z_stats(self, relation: str, group_vars: Sequence[str]) -> list[dict[str, Any]]:
        """mean_z / sd_z / n per group over rows with a non-null z."""
        if isinstance(group_vars, str):
            group_vars = [group_vars]
        if not self._runner.relation_exists(relation):
            raise SummaryError(f"Relation not found: {relation}")

        cols = self._runner.relation_columns(relation)
        missing = [g for g in group_vars if g not in cols]
        if "z" not in cols:
            missing.append("z")
        if missing:
            raise SummaryError(f"{relation} is missing column(s): {', '.join(missing)}")

        group_sql = quote_identifiers(group_vars)
        select_prefix = f"{group_sql}, " if group_vars else ""
        tail = f" GROUP BY {group_sql} ORDER BY {group_sql}" if group_vars else ""
        sql = f"""
            SELECT
                {select_prefix}AVG(TRY_CAST(z AS DOUBLE)) AS mean_z,
                STDDEV_SAMP(TRY_CAST(z AS DOUBLE)) AS sd_z,
                COUNT(*) AS n
            FROM {quote_identifier(relation)}
            WHERE TRY_CAST(z AS DOUBLE) IS NOT NULL{tail}
        """
        return self._runner.query(sql)
