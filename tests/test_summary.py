"""Tests for domain summaries, process_domain and z statistics."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from pipeline.connection import ConnectionManager
from pipeline.domains_ref import DomainReferenceBuilder
from pipeline.enrichment import EnrichmentViewBuilder
from pipeline.lookup_bootstrap import LookupBootstrapper
from pipeline.registrar import RelationRegistrar
from pipeline.summary import SummaryEngine, SummaryError
from tests.factories import default_lookup_rows, make_score_row, offline_manager, write_csv, write_default_exports


def _bootstrap(manager: ConnectionManager, data_dir: Path, *, with_ref: bool = True) -> SummaryEngine:
    RelationRegistrar(manager).register_all_in_directory(data_dir)
    boot = LookupBootstrapper(manager, default_lookup_rows())
    if with_ref:
        DomainReferenceBuilder(boot).ensure_domains_ref()
    EnrichmentViewBuilder(boot).refresh_enriched_views()
    return SummaryEngine(manager)


def test_summary_includes_empty_reference_categories(tmp_path: Path) -> None:
    with offline_manager() as manager:
        summary = _bootstrap(manager, write_default_exports(tmp_path)).get_domain_summary()

    by_domain = {r["domain"]: r for r in summary}
    assert set(by_domain) == {
        "ADHD/Executive Function",
        "Attention/Executive",
        "Emotional/Behavioral/Social/Personality",
        "Memory",
        "Visual Perception/Construction",
    }
    empty = by_domain["Visual Perception/Construction"]
    assert empty["n_tests"] == 0
    assert empty["mean_percentile"] is None
    assert empty["mean_z"] is None

    attention = by_domain["Attention/Executive"]
    assert attention["n_tests"] == 2
    assert attention["mean_percentile"] == pytest.approx(44.0)
    assert attention["min_percentile"] == pytest.approx(25.0)
    assert attention["max_percentile"] == pytest.approx(63.0)
    assert attention["sd_z"] == pytest.approx(0.7071, abs=1e-3)

    # mean_percentile DESC NULLS LAST
    assert [r["domain"] for r in summary] == [
        "ADHD/Executive Function",
        "Memory",
        "Emotional/Behavioral/Social/Personality",
        "Attention/Executive",
        "Visual Perception/Construction",
    ]


def test_summary_without_reference_lists_only_categories_with_data(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    with offline_manager() as manager:
        engine = _bootstrap(manager, write_default_exports(tmp_path), with_ref=False)
        with caplog.at_level(logging.INFO, logger="pipeline.summary"):
            summary = engine.get_domain_summary(include_all=True)

    assert "Visual Perception/Construction" not in {r["domain"] for r in summary}
    assert all(r["n_tests"] > 0 for r in summary)
    assert any("domains_ref not present" in r.getMessage() for r in caplog.records)


def test_summary_by_stream_and_level(tmp_path: Path) -> None:
    with offline_manager() as manager:
        engine = _bootstrap(manager, write_default_exports(tmp_path))
        by_stream = engine.get_domain_summary(by_stream=True, include_all=False)
        subdomains = engine.get_domain_summary(level="subdomain")

    assert {(r["domain"], r["stream"]) for r in by_stream} == {
        ("ADHD/Executive Function", "neurobehav"),
        ("Emotional/Behavioral/Social/Personality", "neurobehav"),
        ("Attention/Executive", "neurocog"),
        ("Memory", "neurocog"),
    }
    assert "subdomain" in subdomains[0]
    zero = [r["subdomain"] for r in subdomains if r["n_tests"] == 0]
    assert zero == ["Construction"]


def test_summary_ties_break_on_category_name(tmp_path: Path) -> None:
    rows = [
        make_score_row(scale="Story Memory", test="rbans", percentile=50.0),
        make_score_row(scale="Digit Span", percentile=50.0),
    ]
    write_csv(tmp_path / "neurocog.csv", rows)
    with offline_manager() as manager:
        summary = _bootstrap(manager, tmp_path).get_domain_summary(include_all=False)

    assert [r["domain"] for r in summary] == ["Attention/Executive", "Memory"]


def test_summary_ignores_non_numeric_percentiles(tmp_path: Path) -> None:
    path = tmp_path / "neurocog.csv"
    path.write_text(
        "scale,percentile,z\nDigit Span,n/a,0.5\nDigit Span,40,-0.25\nCoding,,1.0\n",
        encoding="utf-8",
    )
    with offline_manager() as manager:
        summary = _bootstrap(manager, tmp_path).get_domain_summary(include_all=False)

    assert summary == [
        {
            "domain": "Attention/Executive",
            "n_tests": 1,
            "mean_percentile": 40.0,
            "mean_z": -0.25,
            "sd_z": None,
            "min_percentile": 40.0,
            "max_percentile": 40.0,
        }
    ]


def test_summary_requires_enriched_views() -> None:
    with offline_manager() as manager:
        with pytest.raises(SummaryError):
            SummaryEngine(manager).get_domain_summary()


def test_summary_rejects_unknown_level(tmp_path: Path) -> None:
    with offline_manager() as manager:
        engine = _bootstrap(manager, write_default_exports(tmp_path))
        with pytest.raises(SummaryError):
            engine.get_domain_summary(level="domain; DROP TABLE domains_ref")


def test_process_domain_filters_and_orders(tmp_path: Path) -> None:
    with offline_manager() as manager:
        engine = _bootstrap(manager, write_default_exports(tmp_path))
        rows = engine.process_domain("Attention/Executive")
        only_span = engine.process_domain("Attention/Executive", scales=["Digit Span"])
        none = engine.process_domain("Attention/Executive", scales=[])
        behav = engine.process_domain("Memory", stream="neurobehav")

    assert [r["percentile"] for r in rows] == [63.0, 25.0]
    assert [r["scale"] for r in only_span] == ["Digit Span"]
    assert none == []
    assert behav == []


def test_process_domain_binds_values(tmp_path: Path) -> None:
    with offline_manager() as manager:
        engine = _bootstrap(manager, write_default_exports(tmp_path))
        assert engine.process_domain("x' OR '1'='1") == []


def test_process_domain_falls_back_to_raw_relation(tmp_path: Path) -> None:
    write_csv(tmp_path / "validity.csv", [make_score_row(domain="Validity", percentile=p) for p in (5.0, 75.0)])
    with offline_manager() as manager:
        RelationRegistrar(manager).register_all_in_directory(tmp_path)
        engine = SummaryEngine(manager)
        rows = engine.process_domain("Validity", stream="validity")
        with pytest.raises(SummaryError):
            engine.process_domain("Validity", stream="missing_stream")

    assert [r["percentile"] for r in rows] == [75.0, 5.0]


def test_calculate_z_stats(tmp_path: Path) -> None:
    with offline_manager() as manager:
        engine = _bootstrap(manager, write_default_exports(tmp_path))
        stats = engine.calculate_z_stats("neurocog_enriched", ["domain"])
        overall = engine.calculate_z_stats("neurobehav_enriched", [])

        with pytest.raises(SummaryError):
            engine.calculate_z_stats("neurocog_enriched", ["no_such_column"])
        with pytest.raises(SummaryError):
            engine.calculate_z_stats("nope", ["domain"])

    by_domain = {r["domain"]: r for r in stats}
    assert by_domain["Memory"]["n"] == 1
    assert by_domain["Memory"]["mean_z"] == pytest.approx(1.0)
    assert by_domain[None]["n"] == 2
    assert overall[0]["n"] == 2
    assert overall[0]["mean_z"] == pytest.approx(0.75)
