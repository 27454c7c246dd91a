"""Structured logging for the messenger core.

Delivery code logs message, user and session ids through ``extra``; the
JSON formatter lifts those to top-level keys so log lines can be filtered
by conversation participant without parsing the message text.
"""

import json
import logging
import logging.config
import os
from datetime import datetime, timezone
from pathlib import Path

from .config import DEFAULT_LOG_PATH

# Record attributes promoted to top-level JSON keys when present
DELIVERY_FIELDS = ("message_id", "user_id", "session_id", "group_id", "event")

# Third-party loggers that are too chatty at DEBUG
QUIET_LOGGERS = ("aiosqlite", "uvicorn.access", "httpx")


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        for name in DELIVERY_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str, ensure_ascii=False)


def build_logging_config(log_level: str, log_file: str, console_json: bool) -> dict:
    """dictConfig for a rotating JSON file plus a console stream."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": "messenger.logging_config.JSONFormatter"},
            "plain": {"format": "%(asctime)s %(levelname)-7s %(name)s: %(message)s"},
        },
        "handlers": {
            "file": {
                "class": "logging.handlers.RotatingFileHandler",
                "filename": log_file,
                "maxBytes": 10 * 1024 * 1024,
                "backupCount": 5,
                "formatter": "json",
                "encoding": "utf-8",
            },
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "json" if console_json else "plain",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {name: {"level": "WARNING"} for name in QUIET_LOGGERS},
        "root": {
            "level": log_level.upper(),
            "handlers": ["file", "console"],
        },
    }


def setup_logging(
    log_level: str | None = None,
    log_file: str | None = None,
) -> None:
    """
    Configure logging for the service process.

    Args:
        log_level: Root level. Defaults to the LOG_LEVEL env var or INFO.
        log_file: Rotating JSON log. Defaults to 04_logs/app.log.

    LOG_CONSOLE_JSON=1 switches the console handler to JSON as well.
    """
    log_level = log_level or os.getenv("LOG_LEVEL", "INFO")
    log_file = log_file or str(DEFAULT_LOG_PATH)
    console_json = os.getenv("LOG_CONSOLE_JSON", "0") == "1"

    Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    logging.config.dictConfig(build_logging_config(log_level, log_file, console_json))


def get_logger(name: str) -> logging.Logger:
    """Module logger, typically get_logger(__name__)."""
    return logging.getLogger(name)
