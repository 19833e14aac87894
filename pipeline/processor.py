"""High-level processor: one DuckDB session over the scoring-pipeline exports.

Typical use:

    with DuckDBProcessor(lookup, data_dir="data") as proc:
        proc.get_domain_summary()
        rows = proc.process_domain("Memory")

Construction connects, registers every export in the data directory (Parquet
preferred over Arrow over row text), then bootstraps the lookup, the domain
reference and the enriched views. Any failure on the way closes the
connection before the exception propagates.
"""

from __future__ import annotations

import logging
from pathlib import Path
from types import TracebackType
from typing import Any, Mapping, Sequence

import pyarrow as pa

from contracts.lookup import LookupSource, load_lookup_file
from contracts.source_formats import DEFAULT_SCAN_ORDER, SourceFormat
from contracts.streams import default_streams
from infra.config import Settings, get_settings
from infra.logging_config import clear_log_context, set_log_context
from infra.pipeline_paths import DataPaths
from pipeline.connection import ConnectionManager
from pipeline.domains_ref import DomainReferenceBuilder
from pipeline.enrichment import EnrichmentReport, EnrichmentViewBuilder
from pipeline.lookup_bootstrap import LookupBootstrapper
from pipeline.query_duckdb import QueryRunner
from pipeline.registrar import Relation, RelationRegistrar
from pipeline.summary import SummaryEngine
from pipeline.writer_parquet import ExportResult, export_to_parquet

logger = logging.getLogger(__name__)


class DuckDBProcessor:
    def __init__(
        self,
        lookup: LookupSource | None = None,
        *,
        settings: Settings | None = None,
        database: str | Path | None = None,
        data_dir: str | Path | None = None,
        auto_register: bool | None = None,
        setup: bool = True,
        force_lookup: bool = False,
        force_domains_ref: bool = False,
        refresh_views: bool = True,
    ) -> None:
        self.settings = settings or get_settings()
        engine = self.settings.engine
        enrichment = self.settings.enrichment

        self.paths = DataPaths.with_overrides(
            data_dir=data_dir if data_dir is not None else engine.data_dir,
            lookup_path=engine.lookup_path,
        )
        self.auto_register = engine.auto_register if auto_register is None else auto_register

        if lookup is None and self.paths.lookup_path() is not None:
            lookup = load_lookup_file(self.paths.lookup_path())

        self.manager = ConnectionManager(
            database if database is not None else engine.database,
            threads=engine.threads,
            install_extensions=engine.install_extensions,
        )
        streams = default_streams(enrichment.cognitive_stream, enrichment.behavioral_stream)

        self._runner = QueryRunner(self.manager)
        self.registrar = RelationRegistrar(self.manager)
        self.lookup = LookupBootstrapper(
            self.manager, lookup, max_examples=enrichment.max_unmapped_examples
        )
        self.domains = DomainReferenceBuilder(self.lookup, streams=streams)
        self.enrichment = EnrichmentViewBuilder(
            self.lookup,
            streams=streams,
            unmapped_log_table=enrichment.unmapped_log_table,
            max_examples=enrichment.max_unmapped_examples,
        )
        self.summary = SummaryEngine(self.manager, streams=streams)
        self.last_reports: list[EnrichmentReport] = []

        try:
            self.connect()
            if setup:
                self.setup(
                    force_lookup=force_lookup,
                    force_domains_ref=force_domains_ref,
                    refresh_views=refresh_views,
                )
        except BaseException:
            self.close()
            raise

    # -------------------------
    # Lifecycle
    # -------------------------

    def connect(self) -> "DuckDBProcessor":
        self.registrar.reset()
        self.manager.connect()
        set_log_context(database=self.manager.database)

        data_dir = self.paths.data_dir()
        if self.auto_register:
            if data_dir.is_dir():
                self.registrar.register_all_in_directory(data_dir)
            else:
                logger.info("Data directory %s not found; no files auto-registered", data_dir)
        return self

    def setup(
        self,
        *,
        force_lookup: bool = False,
        force_domains_ref: bool = False,
        refresh_views: bool = True,
    ) -> list[EnrichmentReport]:
        """Bootstrap lookup -> domains_ref -> enriched views."""
        self.lookup.ensure_lookup_registered(force=force_lookup)
        self.domains.ensure_domains_ref(force=force_domains_ref or force_lookup)
        if refresh_views:
            self.last_reports = self.enrichment.refresh_enriched_views()
        return self.last_reports

    def close(self) -> None:
        self.manager.disconnect()
        self.registrar.reset()
        clear_log_context()

    disconnect = close

    def __enter__(self) -> "DuckDBProcessor":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # -------------------------
    # Introspection
    # -------------------------

    @property
    def is_connected(self) -> bool:
        return self.manager.is_connected

    @property
    def capabilities(self) -> tuple[str, ...]:
        return self.manager.capabilities

    @property
    def relations(self) -> Mapping[str, Relation]:
        return self.registrar.relations

    # -------------------------
    # Query surface
    # -------------------------

    def query(self, sql: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        return self._runner.query(sql, params)

    def query_arrow(self, sql: str, params: Sequence[Any] | None = None) -> pa.Table:
        return self._runner.query_arrow(sql, params)

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> None:
        self._runner.execute(sql, params)

    # -------------------------
    # Registration
    # -------------------------

    def register_row_text(
        self,
        path: str | Path,
        name: str | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> Relation:
        return self.registrar.register_row_text(path, name, options)

    def register_columnar_binary(self, path: str | Path, name: str | None = None) -> Relation:
        return self.registrar.register_columnar_binary(path, name)

    def register_arrow(self, path: str | Path, name: str | None = None) -> Relation:
        return self.registrar.register_arrow(path, name)

    def register_all_in_directory(
        self,
        directory: str | Path | None = None,
        formats: Sequence[SourceFormat | str] = DEFAULT_SCAN_ORDER,
    ) -> list[Relation]:
        return self.registrar.register_all_in_directory(
            directory if directory is not None else self.paths.data_dir(), formats
        )

    # -------------------------
    # Bootstrap steps
    # -------------------------

    def ensure_lookup_registered(self, force: bool = False) -> bool:
        return self.lookup.ensure_lookup_registered(force=force)

    def ensure_domains_ref(self, force: bool = False) -> bool:
        return self.domains.ensure_domains_ref(force=force)

    def refresh_enriched_views(self) -> list[EnrichmentReport]:
        self.last_reports = self.enrichment.refresh_enriched_views()
        return self.last_reports

    # -------------------------
    # Summaries and exports
    # -------------------------

    def get_domain_summary(
        self,
        level: str = "domain",
        by_stream: bool = False,
        include_all: bool = True,
    ) -> list[dict[str, Any]]:
        return self.summary.get_domain_summary(level=level, by_stream=by_stream, include_all=include_all)

    def process_domain(
        self,
        domain: str,
        stream: str | None = None,
        scales: Sequence[str] | None = None,
    ) -> list[dict[str, Any]]:
        return self.summary.process_domain(
            domain,
            stream=stream or self.settings.enrichment.cognitive_stream,
            scales=scales,
        )

    def calculate_z_stats(self, relation: str, group_vars: Sequence[str]) -> list[dict[str, Any]]:
        return self.summary.calculate_z_stats(relation, group_vars)

    def export_to_parquet(
        self,
        relation: str,
        output_path: str | Path | None = None,
        compression: str = "zstd",
    ) -> ExportResult:
        out = output_path if output_path is not None else self.paths.parquet_export_path(relation)
        return export_to_parquet(self.manager, relation, out, compression=compression)


def process_with_duckdb(
    lookup: LookupSource | None = None,
    data_dir: str | Path = "data",
    domain: str | None = None,
    *,
    stream: str | None = None,
    scales: Sequence[str] | None = None,
    level: str = "domain",
    by_stream: bool = False,
    include_all: bool = True,
    settings: Settings | None = None,
    database: str | Path | None = None,
) -> list[dict[str, Any]]:
    """
    One-shot helper: rows of ``domain`` when given, else the domain summary.

    The connection is always released before returning.
    """
    with DuckDBProcessor(lookup, settings=settings, database=database, data_dir=data_dir) as proc:
        if domain is not None:
            return proc.process_domain(domain, stream=stream, scales=scales)
        return proc.get_domain_summary(level=level, by_stream=by_stream, include_all=include_all)
