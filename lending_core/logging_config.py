"""
Structured Logging Module

JSON log records for engine events (disbursements, repayments, rejections).
A correlation id set with correlation_scope() is attached to every record
logged inside the scope, so one unit of work can be traced end to end.
"""

import logging
import json
import contextvars
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# Correlation id of the unit of work running in the current context
_correlation_id = contextvars.ContextVar('lending_correlation_id', default=None)

_RECORD_FIELDS = ("correlation_id", "action", "resource", "extra")


def current_correlation_id() -> Optional[str]:
    return _correlation_id.get()


@contextmanager
def correlation_scope(correlation_id: Optional[str] = None):
    """
    Tag log records in this block with a correlation id. Reuses the enclosing
    scope's id when none is given, and generates one otherwise.
    """
    scope_id = correlation_id or _correlation_id.get() or str(uuid.uuid4())
    token = _correlation_id.set(scope_id)
    try:
        yield scope_id
    finally:
        _correlation_id.reset(token)


class JSONFormatter(logging.Formatter):
    """One JSON object per record"""

    def format(self, record):
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in _RECORD_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", logger_name: str = "lending_core",
                  log_format: str = "json", log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the engine logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Logger to configure; child loggers inherit its handler
        log_format: "json" for structured output, anything else for plain text
        log_file: Append to this file instead of writing to stderr

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler()
    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    return logger


def get_logger(name: str = "lending_core") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               action: Optional[str] = None, resource: Optional[str] = None,
               correlation_id: Optional[str] = None, extra: Optional[dict] = None):
    """
    Log an engine event with structured fields.

    Args:
        logger: Logger instance
        level: Log level name (info, warning, error, ...)
        message: Human-readable message
        action: Event name, e.g. "loan_disbursed"
        resource: Affected entity, e.g. "loan:<id>"
        correlation_id: Overrides the id from the current correlation_scope()
        extra: Additional structured data
    """
    levelno = getattr(logging, level.upper())
    if not logger.isEnabledFor(levelno):
        return

    fields = {
        "action": action,
        "resource": resource,
        "correlation_id": correlation_id or current_correlation_id(),
        "extra": extra or None,
    }
    logger.log(levelno, message, extra={k: v for k, v in fields.items() if v is not None})
