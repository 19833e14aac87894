"""Unit tests for centralized configuration parsing and validation."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from infra.config import Settings, ValidationError, clear_settings_cache, get_settings


def test_settings_defaults_without_env() -> None:
    """An empty environment yields an in-memory engine with default streams."""
    settings = Settings.from_env(env={}, env_file=".missing.env")

    assert settings.engine.database == ":memory:"
    assert settings.engine.threads == 4
    assert settings.engine.data_dir == "data"
    assert settings.engine.auto_register is True
    assert settings.engine.lookup_path is None
    assert settings.enrichment.cognitive_stream == "neurocog"
    assert settings.enrichment.behavioral_stream == "neurobehav"
    assert settings.enrichment.unmapped_log_table == "unmapped_tests_log"
    assert settings.enrichment.max_unmapped_examples == 10
    assert settings.logging.level == "INFO"


def test_settings_reads_legacy_env_keys() -> None:
    """Legacy flat env keys should map to nested settings models."""
    env = {
        "DUCKDB_PATH": "data/neuro.duckdb",
        "DUCKDB_THREADS": "8",
        "DATA_DIR": "exports",
        "AUTO_REGISTER": "no",
        "LOOKUP_PATH": "lookup/neuropsych_lookup.csv",
        "NEURO_LOG_LEVEL": "debug",
        "NEURO_LOG_JSON": "1",
    }
    settings = Settings.from_env(env=env, env_file=".missing.env")

    assert settings.engine.database == "data/neuro.duckdb"
    assert settings.engine.threads == 8
    assert settings.engine.data_dir == "exports"
    assert settings.engine.auto_register is False
    assert settings.engine.lookup_path == "lookup/neuropsych_lookup.csv"
    assert settings.logging.level == "DEBUG"
    assert settings.logging.json_logs is True


def test_settings_nested_keys_win_over_legacy_keys() -> None:
    """Nested env keys should be supported with `__` delimiter and take precedence."""
    env = {
        "ENGINE__DATABASE": "nested.duckdb",
        "DUCKDB_PATH": "legacy.duckdb",
        "ENGINE__INSTALL_EXTENSIONS": "off",
        "ENRICHMENT__COGNITIVE_STREAM": "cog",
        "ENRICHMENT__MAX_UNMAPPED_EXAMPLES": "3",
    }
    settings = Settings.from_env(env=env, env_file=".missing.env")

    assert settings.engine.database == "nested.duckdb"
    assert settings.engine.install_extensions is False
    assert settings.enrichment.cognitive_stream == "cog"
    assert settings.enrichment.max_unmapped_examples == 3


def test_settings_reads_dotenv_and_env_overrides_it(tmp_path: Path) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text(
        "# comment\nDUCKDB_THREADS=2\nDATA_DIR='from_dotenv'\nnot a pair\n",
        encoding="utf-8",
    )
    settings = Settings.from_env(env={"DUCKDB_THREADS": "6"}, env_file=str(env_file))

    assert settings.engine.threads == 6
    assert settings.engine.data_dir == "from_dotenv"


@pytest.mark.parametrize(
    "env",
    [
        {"DUCKDB_THREADS": "0"},
        {"DUCKDB_THREADS": "65"},
        {"ENRICHMENT__MAX_UNMAPPED_EXAMPLES": "0"},
        {"ENRICHMENT__BEHAVIORAL_STREAM": "neuro-behav"},
        {"UNMAPPED_LOG_TABLE": "log; DROP TABLE x"},
        {"ENRICHMENT__UNMAPPED_LOG_TABLE": "t" * 129},
    ],
)
def test_settings_invalid_values_raise_validation_error(env: dict[str, str]) -> None:
    """Invalid constrained values should fail schema validation."""
    with pytest.raises(ValidationError):
        Settings.from_env(env=env, env_file=".missing.env")


def test_settings_invalid_log_level_falls_back_to_info() -> None:
    settings = Settings.from_env(env={"NEURO_LOG_LEVEL": "chatty"}, env_file=".missing.env")
    assert settings.logging.level == "INFO"


def test_settings_are_frozen() -> None:
    settings = Settings.from_env(env={}, env_file=".missing.env")
    with pytest.raises(ValidationError):
        settings.engine.threads = 2  # type: ignore[misc]


def test_get_settings_reload_rebuilds_cache(monkeypatch: Any) -> None:
    """Reload should rebuild cached settings from current process env."""
    clear_settings_cache()
    monkeypatch.setenv("DUCKDB_PATH", "first.duckdb")
    first = get_settings(reload=True)

    monkeypatch.setenv("DUCKDB_PATH", "second.duckdb")
    cached = get_settings()
    second = get_settings(reload=True)

    assert first.engine.database == "first.duckdb"
    assert cached is first
    assert second.engine.database == "second.duckdb"
    clear_settings_cache()
