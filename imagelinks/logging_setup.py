"""
Logging setup: JSON-formatted structured logs on stderr, plus an optional change log
that records every rewritten reference as one JSON line.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from .models import ChangeEvent

QUIET_LOGGERS = ("watchdog", "markdown_it")
CHANGE_LOGGER = "imagelinks.changes"


class JsonLogFormatter(logging.Formatter):
    """One JSON object per record; `extra_payload` fields are merged in at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        log_payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_payload["exc_info"] = self.formatException(record.exc_info)

        extra_payload = getattr(record, "extra_payload", None)
        if isinstance(extra_payload, dict):
            log_payload.update(extra_payload)
        return json.dumps(log_payload, ensure_ascii=False, default=str)


def configure_logging(log_level: str) -> None:
    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())
    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    library_level = os.environ.get("LIB_LOG_LEVEL", "WARNING")
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(library_level)


def configure_change_log(path: Path) -> logging.Handler:
    """Append change events to `path`; the file is created on first use."""
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8", delay=True)
    handler.setFormatter(JsonLogFormatter())

    change_logger = logging.getLogger(CHANGE_LOGGER)
    change_logger.setLevel(logging.INFO)
    change_logger.addHandler(handler)
    return handler


def log_change_event(event: ChangeEvent) -> None:
    """Change listener: forward a `ChangeEvent` to the change log."""
    logging.getLogger(CHANGE_LOGGER).info(
        "Image reference changed",
        extra={"extra_payload": event.model_dump(mode="json")},
    )
