"""
Structured logging utilities for the US Census metadata loader.

Modules log through `get_logger(__name__)` and attach context (endpoint id,
URL, record counts) with `extra=`. Both formatters surface that context: the
console formatter appends it as `key=value` pairs, the JSON formatter promotes
it to top-level keys (useful when the loader runs under a scheduler).

Usage:
    from us_census.utils.logging import configure_logging, get_logger

    configure_logging(level="INFO", json_logs=False)
    log = get_logger(__name__)
    log.info("Ingested endpoint", extra={"api_path_id": 12, "variables": 2000})
"""

from __future__ import annotations

import json
import logging
import logging.config
from typing import Any, Dict, Optional

# Attributes every LogRecord carries; anything else was passed via `extra=`.
_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}

# requests logs every connection at DEBUG/INFO through urllib3
_NOISY_LOGGERS = ("urllib3",)


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Collect the context attached to `record` through `extra=`."""
    return {key: value for key, value in vars(record).items() if key not in _STANDARD_ATTRS}


def _json_formatter(record: logging.LogRecord) -> str:
    """Render a log record as JSON string."""
    payload: Dict[str, Any] = {
        "level": record.levelname,
        "logger": record.name,
        "message": record.getMessage(),
    }
    if record.exc_info:
        payload["exc_info"] = logging.Formatter().formatException(record.exc_info)
    if record.stack_info:
        payload["stack_info"] = record.stack_info
    payload.update(_extra_fields(record))
    return json.dumps(payload, default=str)


class JsonFormatter(logging.Formatter):
    """Minimal JSON formatter for structured logs."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        return _json_formatter(record)


class ConsoleFormatter(logging.Formatter):
    """Human-readable line followed by the record's `extra` context."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = _extra_fields(record)
        if not fields:
            return line
        context = " ".join(f"{key}={value}" for key, value in fields.items())
        head, sep, tail = line.partition("\n")
        return f"{head} | {context}{sep}{tail}"


def configure_logging(
    level: str = "INFO",
    json_logs: bool = False,
) -> None:
    """
    Configure root logging.

    Parameters
    ----------
    level : str
        Logging level name (e.g., "DEBUG", "INFO", "WARNING").
    json_logs : bool
        Whether to emit logs as JSON. If False, uses the console formatter.

    Notes
    -----
    urllib3 is capped at WARNING unless `level` is DEBUG.
    """
    formatter_name = "json" if json_logs else "console"
    noisy_level = "DEBUG" if level.upper() == "DEBUG" else "WARNING"

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "console": {
                    "class": f"{__name__}.ConsoleFormatter",
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
                "json": {
                    "()": JsonFormatter,
                },
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": formatter_name,
                    "level": level,
                }
            },
            "loggers": {name: {"level": noisy_level} for name in _NOISY_LOGGERS},
            "root": {
                "handlers": ["default"],
                "level": level,
            },
        }
    )


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Get a logger with the given name. If name is None, returns the root logger.
    """
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "ConsoleFormatter", "JsonFormatter"]
