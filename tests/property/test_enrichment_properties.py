"""Property-based tests for enrichment completeness and attribute isolation."""

from __future__ import annotations

from typing import Any

import pytest

pytest.importorskip("hypothesis")
from hypothesis import given, settings  # type: ignore  # noqa: E402
from hypothesis import strategies as st

from pipeline.enrichment import EnrichmentViewBuilder
from pipeline.lookup_bootstrap import LookupBootstrapper
from pipeline.query_duckdb import QueryRunner
from tests.factories import default_lookup_rows, offline_manager

_SCALES = st.sampled_from(
    ["Digit Span", " coding ", "Story Memory", "Hyperactivity", "Anxiety", "Unknown", "", None]
)
_PCT = st.one_of(st.none(), st.floats(min_value=0.1, max_value=99.9, allow_nan=False))
_SCORE_ROWS = st.lists(st.tuples(_SCALES, _PCT), min_size=0, max_size=15)


def _load_stream(runner: QueryRunner, name: str, rows: list[tuple[Any, Any]]) -> None:
    runner.execute(f"CREATE TABLE {name} (scale VARCHAR, percentile DOUBLE)")
    runner.execute_many(f"INSERT INTO {name} VALUES (?, ?)", rows)


@settings(max_examples=40, deadline=None, database=None)
@given(cog=_SCORE_ROWS, behav=_SCORE_ROWS)
def test_every_source_row_survives_enrichment(cog: list[tuple[Any, Any]], behav: list[tuple[Any, Any]]) -> None:
    """Left-join semantics: each enriched view has exactly as many rows as its source."""
    with offline_manager() as manager:
        runner = QueryRunner(manager)
        _load_stream(runner, "neurocog", cog)
        _load_stream(runner, "neurobehav", behav)
        reports = EnrichmentViewBuilder(LookupBootstrapper(manager, default_lookup_rows())).refresh_enriched_views()

        n_cog = runner.scalar("SELECT COUNT(*) FROM neurocog_enriched")
        n_behav = runner.scalar("SELECT COUNT(*) FROM neurobehav_enriched")
        leaked = runner.scalar(
            'SELECT COUNT(*) FROM neurobehav_enriched WHERE "pass" IS NOT NULL OR verbal IS NOT NULL OR timed IS NOT NULL'
        )

    assert (n_cog, n_behav) == (len(cog), len(behav))
    assert [r.total_rows for r in reports] == [len(cog), len(behav)]
    assert leaked == 0


@settings(max_examples=40, deadline=None, database=None)
@given(cog=_SCORE_ROWS)
def test_unmapped_rows_are_accounted_for(cog: list[tuple[Any, Any]]) -> None:
    """Rows with a key but no match are exactly the rows counted in the report."""
    with offline_manager() as manager:
        runner = QueryRunner(manager)
        _load_stream(runner, "neurocog", cog)
        report = EnrichmentViewBuilder(LookupBootstrapper(manager, default_lookup_rows())).refresh_enriched_views()[0]

    # Behavioral scales do not match in the cognitive stream.
    unmatched = [s for s, _ in cog if s is not None and s.strip() and s.strip().lower() not in {
        "digit span", "coding", "story memory",
    }]
    assert report.unmapped_rows == len(unmatched)
    assert report.unmapped_keys == len({s.strip().lower() for s in unmatched})
