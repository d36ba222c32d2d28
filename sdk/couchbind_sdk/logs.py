"""
Logging setup for applications built on the couchbind SDK.

The SDK modules only create loggers and attach context through ``extra``
(database, id, since, attempt...). Handlers and formats are configured here,
by the CLI or by the embedding application:

- json: one JSON object per record, context fields at the top level
- text: the classic one-line format with context appended as key=value

Handlers write to stderr so CLI output on stdout stays machine readable.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import json_log_formatter

from .config import Settings

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

NOISY_LOGGERS = ("httpx", "httpcore")


def context_of(record: logging.LogRecord) -> dict[str, Any]:
    """Fields passed through ``extra`` on a record."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in json_log_formatter.BUILTIN_ATTRS and not key.startswith("_")
    }


class JSONFormatter(json_log_formatter.JSONFormatter):
    """JSON records carrying level and logger name next to the context."""

    def json_record(
        self, message: str, extra: dict[str, Any], record: logging.LogRecord
    ) -> dict[str, Any]:
        extra = super().json_record(message, extra, record)
        extra["level"] = record.levelname
        extra["logger"] = record.name
        return extra


class TextFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__(TEXT_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = context_of(record)
        if not context:
            return line
        fields = " ".join(f"{key}={value!r}" for key, value in sorted(context.items()))
        # Keep tracebacks last
        head, sep, tail = line.partition("\n")
        return f"{head} [{fields}]{sep}{tail}"


def setup_logging(settings: Settings) -> None:
    """Configure the root logger.

    Args:
        settings: Client settings (log_level, log_format)
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = TextFormatter()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
