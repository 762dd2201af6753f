"""
Structured Logging: JSON-Formatted with Request Context

Provides:
- JSON-formatted log output
- Context propagation (bucket, key, upload_id...) via contextvars
- Loggers carrying default fields

Designed for centralized log aggregation (ELK, Loki).
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Optional, TextIO


class LogLevel(IntEnum):
    """Log level enumeration."""
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50

    @classmethod
    def from_name(cls, name: str) -> LogLevel:
        """Parse a level name ("info", "WARNING"...). Raises KeyError if unknown."""
        return cls[name.strip().upper()]


# Context variable for request-scoped fields
_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})

# Attributes every logging.LogRecord carries; anything else is an extra
_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename",
    "funcName", "levelname", "levelno", "lineno",
    "module", "msecs", "pathname", "process",
    "processName", "relativeCreated", "stack_info",
    "exc_info", "exc_text", "thread", "threadName",
    "taskName", "message",
})


@dataclass
class LogRecord:
    """Structured log record."""
    timestamp: str
    level: str
    message: str
    logger_name: str
    extra: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        data = {
            "@timestamp": self.timestamp,
            "level": self.level,
            "message": self.message,
            "logger": self.logger_name,
        }
        data.update(self.extra)
        return json.dumps(data, default=str)


class JsonFormatter(logging.Formatter):
    """
    JSON log formatter.

    Merges the active log context with the record's `extra` fields;
    record fields win on conflict.
    """

    def format(self, record: logging.LogRecord) -> str:
        extra = dict(_log_context.get())

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                extra[key] = value

        if record.exc_info:
            extra["exception"] = self.formatException(record.exc_info)

        log_record = LogRecord(
            timestamp=datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            level=record.levelname,
            message=record.getMessage(),
            logger_name=record.name,
            extra=extra,
        )
        return log_record.to_json()


class StructuredLogger:
    """
    Structured logger with default fields and context propagation.

    Usage:
        logger = StructuredLogger("blobmesh.storage.multipart")
        upload_log = logger.with_extra(upload_id="abc", key="video.mp4")
        upload_log.info("Part uploaded", part_number=1)

        with StructuredLogger.context(bucket="media"):
            upload_log.info("Upload complete")
    """

    __slots__ = ("_logger", "_default_extra")

    def __init__(
        self,
        name: str,
        level: Optional[LogLevel] = None,
    ) -> None:
        self._logger = logging.getLogger(name)
        if level is not None:
            self._logger.setLevel(level.value)
        self._default_extra: dict[str, Any] = {}

    @property
    def name(self) -> str:
        return self._logger.name

    @property
    def fields(self) -> dict[str, Any]:
        """Default fields attached to every record."""
        return dict(self._default_extra)

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log(LogLevel.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log(LogLevel.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log(LogLevel.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log(LogLevel.ERROR, message, **kwargs)

    def critical(self, message: str, **kwargs: Any) -> None:
        self._log(LogLevel.CRITICAL, message, **kwargs)

    def _log(self, level: LogLevel, message: str, **kwargs: Any) -> None:
        exc_info = kwargs.pop("exc_info", None)
        extra = {**self._default_extra, **kwargs}
        self._logger.log(level.value, message, extra=extra, exc_info=exc_info)

    def with_extra(self, **kwargs: Any) -> StructuredLogger:
        """Create child logger with additional default fields."""
        child = StructuredLogger(self._logger.name)
        child._default_extra = {**self._default_extra, **kwargs}
        return child

    @staticmethod
    def context(**kwargs: Any) -> _LogContext:
        """Context manager for request-scoped fields."""
        return _LogContext(kwargs)


class _LogContext:
    """Context manager for adding fields to all logs."""

    __slots__ = ("_fields", "_token")

    def __init__(self, fields: dict[str, Any]) -> None:
        self._fields = fields
        self._token = None

    def __enter__(self) -> _LogContext:
        new_context = {**_log_context.get(), **self._fields}
        self._token = _log_context.set(new_context)
        return self

    def __exit__(self, *args: Any) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None


def setup_logging(
    level: LogLevel = LogLevel.INFO,
    json_output: bool = True,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Configure root logger for structured logging.

    Args:
        level: Minimum log level
        json_output: Use JSON formatting
        stream: Output stream (default: stderr)
    """
    root = logging.getLogger()
    root.setLevel(level.value)
    root.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level.value)

    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        ))

    root.addHandler(handler)

    # botocore logs every request at DEBUG
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
