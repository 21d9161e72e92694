"""Structured logging helpers.

Every module gets its logger through ``get_enhanced_logger(__name__)`` and can
attach structured context to a record::

    logger.info("Posted to RT", extra_fields={"queue": "help", "action": "comment"})

``setup_logging()`` is called once at startup and installs either a JSON line
formatter (default) or a plain text formatter on the root logger.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("LOG_FORMAT", "json").lower()

_TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class JsonFormatter(logging.Formatter):
    """Render records as one JSON object per line, merging ``extra_fields``."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            payload.update(extra_fields)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class TextFormatter(logging.Formatter):
    """Plain formatter that appends ``key=value`` pairs from ``extra_fields``."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            line += " " + " ".join(f"{k}={v}" for k, v in extra_fields.items())
        return line


class EnhancedLogger:
    """Thin wrapper over ``logging.Logger`` accepting ``extra_fields``."""

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)

    @property
    def name(self) -> str:
        return self._logger.name

    def _log(
        self,
        level: int,
        msg: str,
        *args: Any,
        extra_fields: dict[str, Any] | None = None,
        exc_info: Any = None,
    ) -> None:
        if not self._logger.isEnabledFor(level):
            return
        self._logger.log(
            level,
            msg,
            *args,
            extra={"extra_fields": extra_fields or {}},
            exc_info=exc_info,
            stacklevel=3,
        )

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("exc_info", True)
        self._log(logging.ERROR, msg, *args, **kwargs)


def get_enhanced_logger(name: str) -> EnhancedLogger:
    return EnhancedLogger(name)


def setup_logging(level: str = LOG_LEVEL, fmt: str = LOG_FORMAT) -> None:
    """Configure the root logger once at process start.

    Args:
        level: Log level name (DEBUG, INFO, ...)
        fmt: "json" for JSON lines, anything else for plain text
    """
    handler = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(TextFormatter(_TEXT_FORMAT))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)
