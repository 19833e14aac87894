"""Unit tests for logging setup and formatters."""

from __future__ import annotations

import json
import logging
import sys
from typing import Any

from infra.logging_config import (
    JsonFormatter,
    TextFormatter,
    clear_log_context,
    get_log_context,
    set_log_context,
    setup_logging,
)


def _record(msg: str = "hello %s", args: tuple[Any, ...] = ("world",), **extra: Any) -> logging.LogRecord:
    record = logging.LogRecord("pipeline.enrichment", logging.WARNING, __file__, 10, msg, args, None)
    for k, v in extra.items():
        setattr(record, k, v)
    return record


def test_json_formatter_includes_extras_and_context() -> None:
    clear_log_context()
    set_log_context(database=":memory:")
    try:
        payload = json.loads(JsonFormatter(extra_fields={"service": "neurodata"}).format(_record(stream="neurocog")))
    finally:
        clear_log_context()

    assert payload["message"] == "hello world"
    assert payload["level"] == "WARNING"
    assert payload["logger"] == "pipeline.enrichment"
    assert payload["stream"] == "neurocog"
    assert payload["service"] == "neurodata"
    assert payload["database"] == ":memory:"
    assert payload["timestamp"].endswith("Z")


def test_json_formatter_includes_exception() -> None:
    try:
        raise ValueError("bad lookup")
    except ValueError:
        record = _record()
        record.exc_info = sys.exc_info()

    payload = json.loads(JsonFormatter().format(record))
    assert "ValueError: bad lookup" in payload["exception"]


def test_log_context_is_copied_and_cleared() -> None:
    clear_log_context()
    set_log_context(a=1)
    set_log_context(b=2)
    ctx = get_log_context()
    ctx["c"] = 3

    assert get_log_context() == {"a": 1, "b": 2}
    clear_log_context()
    assert get_log_context() == {}


def test_text_formatter_layout() -> None:
    line = TextFormatter().format(_record())
    assert "Z | WARNING | pipeline.enrichment | hello world" in line


def test_setup_logging_keeps_existing_handlers_unless_overridden(monkeypatch: Any) -> None:
    monkeypatch.delenv("NEURO_LOG_OVERRIDE", raising=False)
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    sentinel = logging.NullHandler()
    root.addHandler(sentinel)
    try:
        assert setup_logging(level="DEBUG", override_root_handlers=False) is None
        assert sentinel in root.handlers

        handler = setup_logging(level="WARNING", json_logs=True, override_root_handlers=True)
        assert handler is not None
        assert root.handlers == [handler]
        assert isinstance(handler.formatter, JsonFormatter)
        assert root.level == logging.WARNING
    finally:
        for h in list(root.handlers):
            root.removeHandler(h)
        for h in saved_handlers:
            root.addHandler(h)
        root.setLevel(saved_level)
