"""
Structured JSON logging configuration.

Phone numbers are PII: every E.164-looking value that reaches a log record,
whether in the message or in ``extra`` fields, is masked to its last four digits.
"""

import json
import logging
import os
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

from leadcatcher.config import get_settings

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)

_PHONE_RE = re.compile(r"\+\d{7,15}")


def redact_phone_numbers(value: str) -> str:
    """Mask every E.164-looking number in ``value`` to its last four digits."""
    return _PHONE_RE.sub(lambda m: "+" + "*" * (len(m.group(0)) - 5) + m.group(0)[-4:], value)


def _redact(value: Any) -> Any:
    if isinstance(value, str):
        return redact_phone_numbers(value)
    if isinstance(value, dict):
        return {k: _redact(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_redact(v) for v in value]
    return value


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter with phone-number redaction."""

    _RESERVED = {
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
            "message": redact_phone_numbers(record.getMessage()),
        }

        correlation_id = correlation_id_var.get()
        if correlation_id:
            log_data["correlation_id"] = correlation_id

        for k, v in record.__dict__.items():
            if k in self._RESERVED:
                continue
            key = f"extra_{k}" if k in log_data else k
            log_data[key] = _redact(v)

        if record.exc_info:
            log_data["exception"] = redact_phone_numbers(self.formatException(record.exc_info))

        return json.dumps(log_data, default=str)


def get_logger(name: str) -> logging.Logger:
    """Get a configured logger instance.

    Args:
        name: Logger name (typically __name__).

    Returns:
        Configured logger instance.
    """
    logger = logging.getLogger(name)
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

    sqlalchemy_level = os.getenv("SQLALCHEMY_LOG_LEVEL", "").strip().upper() or "WARNING"
    for name in ("sqlalchemy.engine", "sqlalchemy.pool", "sqlalchemy.dialects"):
        logging.getLogger(name).setLevel(sqlalchemy_level)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("python_multipart").setLevel(logging.WARNING)
    logging.getLogger("python_multipart.multipart").setLevel(logging.WARNING)
