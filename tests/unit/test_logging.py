"""Tests for logging setup."""

from __future__ import annotations

import io
import json
import logging
import sys

import pytest

from stampede._internal.logging import (
    _JsonFormatter,
    get_logger,
    run_context,
    setup_logging,
)


def _record(msg: str, *args: object, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="stampede.engine.scheduler",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=args,
        exc_info=None,
    )
    record.__dict__.update(extra)
    return record


def test_get_logger_is_namespaced():
    assert get_logger("engine.scheduler").name == "stampede.engine.scheduler"


def test_setup_logging_is_idempotent():
    logger = setup_logging(logging.WARNING)
    handlers = list(logger.handlers)

    again = setup_logging(logging.DEBUG)
    assert again is logger
    assert again.handlers == handlers
    assert again.level == logging.DEBUG
    assert not again.propagate


def test_setup_logging_switches_format_in_place():
    logger = setup_logging(logging.INFO, json_format=True)
    assert isinstance(logger.handlers[0].formatter, _JsonFormatter)

    logger = setup_logging(logging.INFO)
    assert len(logger.handlers) == 1
    assert not isinstance(logger.handlers[0].formatter, _JsonFormatter)


def test_handler_writes_to_current_stderr(monkeypatch: pytest.MonkeyPatch):
    """Records go to sys.stderr as it is when they are emitted."""
    setup_logging(logging.INFO)
    replacement = io.StringIO()
    monkeypatch.setattr(sys, "stderr", replacement)

    get_logger("engine.runner").info("run started")
    assert "run started" in replacement.getvalue()


def test_json_formatter_emits_one_object_per_record():
    entry = json.loads(_JsonFormatter().format(_record("%s did not stop", "user 3")))
    assert entry["level"] == "WARNING"
    assert entry["logger"] == "stampede.engine.scheduler"
    assert entry["message"] == "user 3 did not stop"
    assert "timestamp" in entry
    assert "scenario" not in entry
    assert "vu_id" not in entry


def test_json_formatter_includes_run_context():
    record = _record("abandoned", **run_context("signup", vu_id=3))
    entry = json.loads(_JsonFormatter().format(record))
    assert entry["scenario"] == "signup"
    assert entry["vu_id"] == 3


def test_run_context_without_user():
    record = _record("starting", **run_context("signup"))
    entry = json.loads(_JsonFormatter().format(record))
    assert entry["scenario"] == "signup"
    assert "vu_id" not in entry
