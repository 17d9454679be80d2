"""Logging for Stampede runs.

Everything logs under the ``stampede`` namespace. Run-level records carry
the scenario name and, for per-user records, the virtual user id as
``extra`` fields, so JSON output can be filtered per run or per user::

    logger.warning("user stalled", extra=run_context("signup", vu_id=3))
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

_ROOT_LOGGER = "stampede"
_CONTEXT_FIELDS = ("scenario", "vu_id")
_TEXT_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s"
_TEXT_DATEFMT = "%Y-%m-%d %H:%M:%S"


class _CurrentStderrHandler(logging.StreamHandler):  # type: ignore[type-arg]
    """Writes to whatever ``sys.stderr`` is at emit time.

    Test runners swap ``sys.stderr`` while a command runs; a
    handler bound once at setup would keep writing to a closed stream.
    """

    def __init__(self, level: int = logging.NOTSET) -> None:
        logging.Handler.__init__(self, level)

    @property
    def stream(self) -> Any:  # type: ignore[override]
        return sys.stderr


class _JsonFormatter(logging.Formatter):
    """One JSON object per line.

    Keys: timestamp, level, logger, message, plus ``scenario`` and
    ``vu_id`` when the record carries them, and ``exception`` on errors.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Render a log record as a single JSON line.

        Args:
            record: The log record to format.

        Returns:
            The JSON-encoded record.
        """
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in _CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def run_context(scenario: str, vu_id: int | None = None) -> dict[str, Any]:
    """Build the ``extra`` mapping for a run-scoped log record.

    Args:
        scenario: Name of the running scenario.
        vu_id: Virtual user id, for per-user records.

    Returns:
        Mapping to pass as ``extra=`` to a logging call.
    """
    return {"scenario": scenario, "vu_id": vu_id}


def setup_logging(
    level: int = logging.INFO,
    *,
    json_format: bool = False,
) -> logging.Logger:
    """Configure and return the ``stampede`` root logger.

    Safe to call once per command invocation: the level and the output
    format are updated in place and the handler is never duplicated.

    Args:
        level: Logging level (e.g., ``logging.DEBUG``). Defaults to INFO.
        json_format: Emit one JSON object per line instead of plain text.

    Returns:
        The configured ``stampede`` logger.
    """
    logger = logging.getLogger(_ROOT_LOGGER)
    logger.setLevel(level)
    logger.propagate = False

    handler = next(
        (h for h in logger.handlers if isinstance(h, _CurrentStderrHandler)),
        None,
    )
    if handler is None:
        handler = _CurrentStderrHandler()
        logger.addHandler(handler)

    handler.setLevel(level)
    if json_format:
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT, datefmt=_TEXT_DATEFMT))
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a child logger under the ``stampede`` namespace.

    Args:
        name: Dotted suffix, e.g. ``"engine.scheduler"`` gives
            ``logging.getLogger("stampede.engine.scheduler")``.

    Returns:
        The child logger.
    """
    return logging.getLogger(f"{_ROOT_LOGGER}.{name}")
