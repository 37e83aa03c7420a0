from __future__ import annotations

import json
import logging
from logging.config import dictConfig
from typing import Any, Dict

# Attributes every LogRecord carries; anything else came in through `extra=`.
_STANDARD_RECORD_KEYS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}
_RUN_KEYS = ("run_id", "command")


class JSONFormatter(logging.Formatter):
    """One JSON object per record: run id and command at the top, `extra=` fields under `context`."""

    def format(self, record: logging.LogRecord) -> str:
        data: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _RUN_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                data[key] = value
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)

        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_RECORD_KEYS and key not in _RUN_KEYS and value is not None
        }
        if extras:
            data["context"] = extras
        return json.dumps(data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """
    Configure global logging to emit JSON lines on stderr.
    Safe to call multiple times.
    """

    resolved = (level or "INFO").upper()
    config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": "mediasync.logging_utils.JSONFormatter",
                "datefmt": "%Y-%m-%dT%H:%M:%S%z",
            }
        },
        "filters": {
            "run_context": {
                "()": "mediasync.logging_context.RunContextFilter",
            }
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stderr",
                "formatter": "json",
                "filters": ["run_context"],
                "level": resolved,
            }
        },
        "root": {
            "handlers": ["default"],
            "level": resolved,
        },
        "loggers": {
            # Per-request lines from httpx drown the reconciliation log at INFO.
            "httpx": {"level": "WARNING"},
            "httpcore": {"level": "WARNING"},
        },
    }
    dictConfig(config)
