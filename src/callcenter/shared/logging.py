"""
Structured JSON logging configuration.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

from callcenter.config import get_settings

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Context variable for correlation ID
correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)

# Keys whose values must never reach a log sink.
SENSITIVE_KEYS = frozenset(
    {
        "auth_token",
        "api_key",
        "api_secret",
        "webhook_secret",
        "credentials",
        "backup_credentials",
        "password",
    }
)


def _redact(key: str, value: Any) -> Any:
    if key in SENSITIVE_KEYS:
        return "***"
    return value


class StructuredFormatter(logging.Formatter):
    """JSON-like structured log formatter."""

    _RESERVED = {
        # standard LogRecord attributes
        "name", "msg", "args", "levelname", "levelno", "pathname", "filename",
        "module", "exc_info", "exc_text", "stack_info", "lineno", "funcName",
        "created", "msecs", "relativeCreated", "thread", "threadName",
        "processName", "process", "message", "taskName",
    }

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = correlation_id_var.get()
        if correlation_id:
            log_data["correlation_id"] = correlation_id

        # 1) Custom extra_data (from log_with_context)
        if hasattr(record, "extra_data") and isinstance(record.extra_data, dict):  # type: ignore[attr-defined]
            for k, v in record.extra_data.items():  # type: ignore[attr-defined]
                log_data[k] = _redact(k, v)

        # 2) Standard logging extra=... fields: include any non-reserved attributes
        for k, v in record.__dict__.items():
            if k in self._RESERVED or k == "extra_data":
                continue
            if k in log_data:
                log_data[f"extra_{k}"] = _redact(k, v)
            else:
                log_data[k] = _redact(k, v)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def get_logger(name: str) -> logging.Logger:
    """Get a configured logger instance.

    Args:
        name: Logger name (typically __name__).

    Returns:
        Configured logger instance.
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)
        logger.propagate = False

    logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))

    return logger


def setup_logging() -> None:
    """Configure structured JSON logging on the root logger."""
    settings = get_settings()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level.upper())
    root_logger.handlers = [handler]

    # SQLAlchemy noise control: opt-in verbose via SQLALCHEMY_LOG_LEVEL=INFO/DEBUG
    sqlalchemy_level = os.getenv("SQLALCHEMY_LOG_LEVEL", "").strip().upper() or "WARNING"
    logging.getLogger("sqlalchemy.engine").setLevel(sqlalchemy_level)
    logging.getLogger("sqlalchemy.pool").setLevel(sqlalchemy_level)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    **extra: Any,
) -> None:
    """Log a message with extra context data."""
    record = logger.makeRecord(
        logger.name,
        level,
        "",
        0,
        message,
        (),
        None,
    )
    record.extra_data = extra  # type: ignore[attr-defined]
    logger.handle(record)
