"""Structured logging helpers for the router runtime."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Dict, Protocol

import orjson


class Logger(Protocol):
    """Subset of :class:`logging.Logger` the router and binder call."""

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None: ...


# Attributes every LogRecord carries; anything else arrived through ``extra``.
_STANDARD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}


def _fallback(obj: Any) -> Any:
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    if isinstance(obj, type):
        return obj.__name__
    return repr(obj)


class JsonFormatter(logging.Formatter):
    """Render records as one JSON object per line.

    Fields passed through ``extra=`` (``topic``, ``pattern``, ...) are
    emitted as top-level keys next to the timestamp, level and message.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = self.formatStack(record.stack_info)

        return orjson.dumps(payload, default=_fallback).decode()


def configure_logging(level: str = "INFO", *, name: str = "mqttroute") -> logging.Logger:
    """Install a JSON stream handler on the root logger and return *name*'s logger."""

    root = logging.getLogger()
    root.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)
    root.setLevel(level.upper())
    return logging.getLogger(name)


__all__ = ["Logger", "JsonFormatter", "configure_logging"]
