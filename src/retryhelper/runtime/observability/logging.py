"""Logging setup for retry loops.

Every module logs through the stdlib logger hierarchy under "retryhelper"
(retryhelper.retry, retryhelper.retry.options, ...). Nothing is emitted
until the application configures handlers; configure_logging() is a
convenience for doing that with a human or JSON Lines format.

Quick Start:
    >>> from retryhelper.runtime.observability import configure_logging
    >>> configure_logging(format="text", level="DEBUG")
    >>> # or driven by RETRYHELPER_LOG_* environment variables:
    >>> configure_logging()
"""

from __future__ import annotations

import logging
import sys
from datetime import UTC, datetime
from typing import TextIO

import orjson

from retryhelper.foundation.config import LoggingSettings, get_settings

ROOT_LOGGER = "retryhelper"
_TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_TEXT_FORMAT_NO_TS = "[%(levelname)s] %(name)s: %(message)s"

# Attributes every LogRecord has; anything else came in through `extra=`
_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """JSON Lines output for log aggregation.

    Each record is a single JSON object. Values passed through `extra=`
    are included as top-level keys.
    """

    def __init__(self, *, include_timestamps: bool = True) -> None:
        super().__init__()
        self.include_timestamps = include_timestamps

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, object] = {}
        if self.include_timestamps:
            data["timestamp"] = datetime.fromtimestamp(record.created, UTC).isoformat()
        data |= {"level": record.levelname.lower(), "logger": record.name, "event": record.getMessage()}
        data |= {k: v for k, v in vars(record).items() if k not in _RESERVED}
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)
        return orjson.dumps(data, default=str, option=orjson.OPT_NON_STR_KEYS).decode()


def configure_logging(
    format: str | None = None,  # noqa: A002 - shadows builtin but matches stdlib
    level: str | None = None,
    *,
    output: TextIO | None = None,
    settings: LoggingSettings | None = None,
) -> logging.Logger:
    """Configure the "retryhelper" logger.

    Replaces handlers previously installed on that logger. Arguments left
    as None fall back to LoggingSettings (RETRYHELPER_LOG_* variables).

    Args:
        format: "text" (human), "json" (machine), or "none" (silence)
        level: Minimum log level - DEBUG, INFO, WARNING, ERROR
        output: Output stream (default: stderr)
        settings: Logging settings (default: get_settings().logging)

    Returns:
        The configured "retryhelper" logger
    """
    s = settings or get_settings().logging
    fmt = (format or s.format).lower()
    level_int = getattr(logging, (level or s.level).upper(), logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level_int)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler: logging.Handler
    if fmt == "text":
        handler = logging.StreamHandler(output or sys.stderr)
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT if s.include_timestamps else _TEXT_FORMAT_NO_TS))
    elif fmt == "json":
        handler = logging.StreamHandler(output or sys.stderr)
        handler.setFormatter(JsonFormatter(include_timestamps=s.include_timestamps))
    elif fmt == "none":
        handler = logging.NullHandler()
    else:
        raise ValueError(f"Unknown format: {fmt}. Use 'text', 'json', or 'none'")

    handler.setLevel(level_int)
    logger.addHandler(handler)
    logger.propagate = False
    return logger
