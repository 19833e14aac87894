"""Centralized application configuration with schema validation.

This module is intentionally compatibility-first:
- Supports flat environment names (for example ``DUCKDB_PATH``).
- Supports nested names (for example ``ENGINE__DATABASE``) for consistency.
- Optionally reads a local ``.env`` file before process env values.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from threading import Lock

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from contracts.sql_identifiers import is_safe_identifier


def _parse_flag(value: object, default: bool) -> bool:
    if value is None or isinstance(value, bool):
        return default if value is None else value
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off"}:
        return False
    return default


class EngineConfig(BaseModel):
    """DuckDB engine and data discovery settings."""

    model_config = ConfigDict(frozen=True)

    database: str = Field(default=":memory:", description="DuckDB file path or :memory:")
    threads: int = Field(default=4, ge=1, le=64)
    data_dir: str = Field(default="data")
    auto_register: bool = Field(default=True)
    install_extensions: bool = Field(default=True)
    lookup_path: str | None = Field(default=None)

    @field_validator("database", mode="before")
    @classmethod
    def _normalize_database(cls, value: object) -> str:
        text = str(value or "").strip()
        return text or ":memory:"

    @field_validator("data_dir", mode="before")
    @classmethod
    def _normalize_data_dir(cls, value: object) -> str:
        text = str(value or "").strip()
        return text or "data"

    @field_validator("auto_register", "install_extensions", mode="before")
    @classmethod
    def _normalize_flags(cls, value: object) -> bool:
        return _parse_flag(value, True)

    @field_validator("lookup_path", mode="before")
    @classmethod
    def _normalize_optional_text(cls, value: object) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text or None


class EnrichmentConfig(BaseModel):
    """Stream names and diagnostics for the enrichment views."""

    model_config = ConfigDict(frozen=True)

    cognitive_stream: str = Field(default="neurocog")
    behavioral_stream: str = Field(default="neurobehav")
    unmapped_log_table: str = Field(default="unmapped_tests_log")
    max_unmapped_examples: int = Field(default=10, ge=1, le=100)

    @field_validator("cognitive_stream", "behavioral_stream", "unmapped_log_table")
    @classmethod
    def _require_identifier(cls, value: str) -> str:
        text = str(value or "").strip()
        if not is_safe_identifier(text):
            raise ValueError(f"not a safe SQL identifier: {value!r}")
        return text


class LoggingSettings(BaseModel):
    """Repository-wide logging settings."""

    model_config = ConfigDict(frozen=True)

    level: str = Field(default="INFO")
    json_logs: bool = Field(default=False)
    override_root_handlers: bool = Field(default=False)

    @field_validator("level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        text = str(value or "").strip().upper()
        if text in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            return text
        return "INFO"

    @field_validator("json_logs", "override_root_handlers", mode="before")
    @classmethod
    def _normalize_flags(cls, value: object) -> bool:
        return _parse_flag(value, False)


class Settings(BaseModel):
    """Top-level settings model."""

    model_config = ConfigDict(frozen=True)

    engine: EngineConfig = Field(default_factory=EngineConfig)
    enrichment: EnrichmentConfig = Field(default_factory=EnrichmentConfig)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def from_env(
        cls,
        *,
        env: Mapping[str, str] | None = None,
        env_file: str = ".env",
    ) -> Settings:
        """Build settings from `.env` then environment variables."""
        runtime_env = os.environ if env is None else env
        merged_env = _merge_env(_load_dotenv(Path(env_file)), runtime_env)
        payload = _build_payload(merged_env)
        return cls.model_validate(payload)


def _load_dotenv(path: Path) -> dict[str, str]:
    """Parse a minimal `.env` file format."""
    if not path.exists() or not path.is_file():
        return {}

    values: dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, raw_value = line.split("=", 1)
        key_clean = key.strip()
        value = raw_value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        if key_clean:
            values[key_clean] = value
    return values


def _merge_env(dotenv_values: Mapping[str, str], runtime_env: Mapping[str, str]) -> dict[str, str]:
    """Return env map where process env overrides `.env` values."""
    merged = {str(k): str(v) for k, v in dotenv_values.items()}
    for key, value in runtime_env.items():
        merged[str(key)] = str(value)
    return merged


def _first_non_empty(env: Mapping[str, str], *keys: str) -> str | None:
    """Return the first non-empty value for the provided keys."""
    for key in keys:
        value = str(env.get(key, "")).strip()
        if value:
            return value
    return None


def _build_payload(env: Mapping[str, str]) -> dict[str, object]:
    """Build nested settings payload from env values."""
    engine = {
        "database": _first_non_empty(env, "ENGINE__DATABASE", "DUCKDB_PATH"),
        "threads": _first_non_empty(env, "ENGINE__THREADS", "DUCKDB_THREADS"),
        "data_dir": _first_non_empty(env, "ENGINE__DATA_DIR", "DATA_DIR"),
        "auto_register": _first_non_empty(env, "ENGINE__AUTO_REGISTER", "AUTO_REGISTER"),
        "install_extensions": _first_non_empty(
            env, "ENGINE__INSTALL_EXTENSIONS", "DUCKDB_INSTALL_EXTENSIONS"
        ),
        "lookup_path": _first_non_empty(env, "ENGINE__LOOKUP_PATH", "LOOKUP_PATH"),
    }
    enrichment = {
        "cognitive_stream": _first_non_empty(env, "ENRICHMENT__COGNITIVE_STREAM"),
        "behavioral_stream": _first_non_empty(env, "ENRICHMENT__BEHAVIORAL_STREAM"),
        "unmapped_log_table": _first_non_empty(
            env, "ENRICHMENT__UNMAPPED_LOG_TABLE", "UNMAPPED_LOG_TABLE"
        ),
        "max_unmapped_examples": _first_non_empty(env, "ENRICHMENT__MAX_UNMAPPED_EXAMPLES"),
    }
    logging_settings = {
        "level": _first_non_empty(env, "LOGGING__LEVEL", "NEURO_LOG_LEVEL"),
        "json_logs": _first_non_empty(env, "LOGGING__JSON_LOGS", "NEURO_LOG_JSON"),
        "override_root_handlers": _first_non_empty(
            env, "LOGGING__OVERRIDE_ROOT_HANDLERS", "NEURO_LOG_OVERRIDE"
        ),
    }
    return {
        "engine": {k: v for k, v in engine.items() if v is not None},
        "enrichment": {k: v for k, v in enrichment.items() if v is not None},
        "logging": {k: v for k, v in logging_settings.items() if v is not None},
    }


_SETTINGS_LOCK = Lock()
_SETTINGS_CACHE: Settings | None = None


def get_settings(*, reload: bool = False) -> Settings:
    """Return cached settings, optionally forcing reload from env."""
    global _SETTINGS_CACHE
    with _SETTINGS_LOCK:
        if reload or _SETTINGS_CACHE is None:
            _SETTINGS_CACHE = Settings.from_env()
        return _SETTINGS_CACHE


def clear_settings_cache() -> None:
    """Clear in-process settings cache."""
    global _SETTINGS_CACHE
    with _SETTINGS_LOCK:
        _SETTINGS_CACHE = None


__all__ = [
    "EngineConfig",
    "EnrichmentConfig",
    "LoggingSettings",
    "Settings",
    "get_settings",
    "clear_settings_cache",
    "ValidationError",
]
