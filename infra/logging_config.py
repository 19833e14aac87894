"""Centralized logging configuration.

The repository supports both human-friendly text logs and structured JSON logs.
Library modules only call ``logging.getLogger(__name__)``; applications (or
tests) call :func:`setup_logging` once. Existing root handlers are left in place
unless an override is requested (Jupyter and report renderers install their own).
"""

from __future__ import annotations

import json
import logging
import sys
import time
from collections.abc import Mapping
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from infra.config import get_settings

# Context that follows a processing session through the system
# Use set_log_context() to populate, clear_log_context() to reset
log_ctx: ContextVar[dict[str, Any] | None] = ContextVar("log_ctx", default=None)


def set_log_context(**kwargs: Any) -> None:
    """Set context values that will be included in all subsequent JSON log entries."""
    current = log_ctx.get()
    if current is None:
        current = {}
    else:
        current = dict(current)
    current.update(kwargs)
    log_ctx.set(current)


def clear_log_context() -> None:
    """Clear the logging context (typically when a session closes)."""
    log_ctx.set({})


def get_log_context() -> dict[str, Any]:
    """Get a copy of the current logging context."""
    ctx = log_ctx.get()
    return dict(ctx) if ctx else {}


def _utc_iso8601() -> str:
    # Example: 2026-01-24T18:03:12.123Z
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class JsonFormatter(logging.Formatter):
    """
    Safe JSON formatter:
      - Always outputs valid JSON (message escaped via json.dumps)
      - Includes `extra={...}` fields and the current log context
      - Includes exception info when present
    """

    _STANDARD_ATTRS = frozenset(
        {
            "name", "msg", "args", "levelname", "levelno", "pathname", "filename", "module",
            "exc_info", "exc_text", "stack_info", "lineno", "funcName", "created", "msecs",
            "relativeCreated", "thread", "threadName", "processName", "process", "taskName",
        }
    )

    def __init__(self, *, extra_fields: Mapping[str, Any] | None = None) -> None:
        super().__init__()
        self._extra_fields = dict(extra_fields or {})

    def format(self, record: logging.LogRecord) -> str:
        base: dict[str, Any] = {
            "timestamp": _utc_iso8601(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "func": record.funcName,
            "line": record.lineno,
        }

        for k, v in record.__dict__.items():
            if k not in self._STANDARD_ATTRS and k not in base:
                base[k] = v

        for k, v in self._extra_fields.items():
            base.setdefault(k, v)

        if record.exc_info:
            base["exception"] = self.formatException(record.exc_info)

        for k, v in get_log_context().items():
            base.setdefault(k, v)

        return json.dumps(base, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """
    Human-friendly logs, but UTC timestamps.
    """
    converter = time.gmtime  # UTC

    def __init__(self) -> None:
        super().__init__("%(asctime)sZ | %(levelname)s | %(name)s | %(message)s")


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    json_logs: bool = False
    override_root_handlers: bool = False
    extra_fields: Mapping[str, Any] | None = None


def setup_logging(
    *,
    level: str | None = None,
    json_logs: bool | None = None,
    override_root_handlers: bool | None = None,
    extra_fields: Mapping[str, Any] | None = None,
) -> logging.Handler | None:
    """
    Central logging setup for the repo.

    Env vars:
      - NEURO_LOG_LEVEL: DEBUG|INFO|WARNING|ERROR (default INFO)
      - NEURO_LOG_JSON:  1/0 (default 0)
      - NEURO_LOG_OVERRIDE: 1/0 (default 0)
         If 1, replaces any pre-configured root handlers.
         If 0, only configures logging if root has no handlers.

    Returns the installed handler, or None when an existing handler was kept.
    """
    config = get_settings(reload=True).logging

    cfg = LoggingConfig(
        level=(level or config.level).upper(),
        json_logs=json_logs if json_logs is not None else bool(config.json_logs),
        override_root_handlers=override_root_handlers
        if override_root_handlers is not None
        else bool(config.override_root_handlers),
        extra_fields=extra_fields,
    )

    root = logging.getLogger()
    root.setLevel(getattr(logging, cfg.level, logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    if cfg.json_logs:
        handler.setFormatter(JsonFormatter(extra_fields=cfg.extra_fields))
    else:
        handler.setFormatter(TextFormatter())

    if cfg.override_root_handlers:
        for h in list(root.handlers):
            root.removeHandler(h)
        root.addHandler(handler)
        return handler

    if not root.handlers:
        root.addHandler(handler)
        return handler
    return None
