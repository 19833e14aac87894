"""Tests for the DuckDB connection owner and the query layer."""

from __future__ import annotations

import logging
from pathlib import Path

import duckdb
import pyarrow as pa
import pytest

from pipeline.connection import ConnectionManager, ExtensionSpec, NotConnectedError
from pipeline.query_duckdb import QueryError, QueryRunner
from tests.factories import offline_manager


def test_con_requires_connect() -> None:
    manager = offline_manager()
    assert manager.is_connected is False
    with pytest.raises(NotConnectedError):
        _ = manager.con


def test_context_manager_connects_and_always_disconnects() -> None:
    manager = offline_manager()
    with pytest.raises(RuntimeError, match="boom"):
        with manager:
            assert manager.is_connected
            raise RuntimeError("boom")
    assert manager.is_connected is False
    assert manager.capabilities == ()


def test_disconnect_is_idempotent() -> None:
    manager = offline_manager().connect()
    manager.disconnect()
    manager.disconnect()
    manager.close()
    assert manager.is_connected is False


def test_reconnect_replaces_handle() -> None:
    with offline_manager() as manager:
        first = manager.con
        manager.connect()
        assert manager.con is not first
        assert manager.con.execute("SELECT 1").fetchone() == (1,)


def test_capabilities_include_parquet_and_arrow() -> None:
    with offline_manager() as manager:
        assert manager.has_capability("parquet")
        assert manager.has_capability("arrow")
        # The probe relation must not leak into the session.
        assert QueryRunner(manager).relation_exists("arrow_probe") is False


def test_missing_optional_extension_is_not_fatal(caplog: pytest.LogCaptureFixture) -> None:
    extensions = (
        ExtensionSpec("parquet", required=True),
        ExtensionSpec("no_such_extension_xyz", required=False),
    )
    caplog.set_level(logging.INFO, logger="pipeline.connection")
    with ConnectionManager(extensions=extensions, install_extensions=False) as manager:
        assert manager.has_capability("parquet")
        assert not manager.has_capability("no_such_extension_xyz")

    records = [r for r in caplog.records if "no_such_extension_xyz" in r.getMessage()]
    assert records and all(r.levelno == logging.INFO for r in records)


def test_missing_required_extension_warns_and_degrades(caplog: pytest.LogCaptureFixture) -> None:
    extensions = (ExtensionSpec("no_such_required_ext", required=True),)
    with caplog.at_level(logging.WARNING, logger="pipeline.connection"):
        with ConnectionManager(extensions=extensions, install_extensions=False) as manager:
            assert manager.is_connected
            assert manager.capabilities == ("arrow",)

    assert any("no_such_required_ext" in r.getMessage() for r in caplog.records)


def test_file_database_creates_parent_directory(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "neuro.duckdb"
    with offline_manager(db_path) as manager:
        manager.con.execute("CREATE TABLE t AS SELECT 42 AS x")
    assert db_path.exists()

    with offline_manager(db_path) as manager:
        assert QueryRunner(manager).scalar("SELECT x FROM t") == 42


def test_version_info() -> None:
    with offline_manager() as manager:
        info = manager.version_info()
    assert info.version != "unknown"
    assert info.full.startswith("v") or info.version in info.full


def test_query_error_includes_sql_text() -> None:
    with offline_manager() as manager:
        runner = QueryRunner(manager)
        with pytest.raises(QueryError) as excinfo:
            runner.query("SELECT * FROM table_that_does_not_exist")

    message = str(excinfo.value)
    assert "table_that_does_not_exist" in message
    assert "Query: SELECT * FROM table_that_does_not_exist" in message
    assert isinstance(excinfo.value.__cause__, duckdb.Error)


def test_query_helpers_bind_parameters() -> None:
    with offline_manager() as manager:
        runner = QueryRunner(manager)
        runner.execute("CREATE TABLE scores (scale VARCHAR, percentile DOUBLE)")
        runner.execute_many(
            "INSERT INTO scores VALUES (?, ?)",
            [("Digit Span", 50.0), ("o'brien", 12.5)],
        )

        rows = runner.query("SELECT * FROM scores WHERE scale = ?", ["o'brien"])
        table = runner.query_arrow("SELECT * FROM scores ORDER BY percentile")

        assert rows == [{"scale": "o'brien", "percentile": 12.5}]
        assert isinstance(table, pa.Table)
        assert table.column("scale").to_pylist() == ["o'brien", "Digit Span"]
        assert runner.relation_columns("scores") == {"scale": "VARCHAR", "percentile": "DOUBLE"}
        assert runner.catalog_kind("scores") == "table"
        assert runner.catalog_kind("missing") is None

        runner.execute("CREATE VIEW v AS SELECT * FROM scores")
        assert runner.catalog_kind("v") == "view"
        assert runner.relation_exists("v")
        assert runner.relation_exists("nope") is False
