"""
Structured Logging Configuration Module

JSON (or plain text) logging for ledger operations. Records may carry
action, resource, correlation_id and extra fields; correlation_scope()
stamps a correlation id on every record logged inside it.
"""

import logging
import json
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Iterator, Optional

LOGGER_NAME = "core_accounting"
TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
STRUCTURED_FIELDS = ('correlation_id', 'action', 'resource', 'extra')

_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def current_correlation_id() -> Optional[str]:
    return _correlation_id.get()


@contextmanager
def correlation_scope(correlation_id: Optional[str] = None) -> Iterator[str]:
    """Tag records logged in this block (and this context) with one id"""
    correlation_id = correlation_id or uuid.uuid4().hex
    token = _correlation_id.set(correlation_id)
    try:
        yield correlation_id
    finally:
        _correlation_id.reset(token)


class CorrelationFilter(logging.Filter):
    """Copy the active correlation id onto records as they are handled"""

    def filter(self, record):
        if getattr(record, 'correlation_id', None) is None:
            correlation_id = current_correlation_id()
            if correlation_id is not None:
                record.correlation_id = correlation_id
        return True


def _structured(record: logging.LogRecord) -> dict:
    fields = {name: getattr(record, name, None) for name in STRUCTURED_FIELDS}
    if fields['correlation_id'] is None:
        fields['correlation_id'] = current_correlation_id()
    return {k: v for k, v in fields.items() if v is not None}


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_entry.update(_structured(record))

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class TextFormatter(logging.Formatter):
    """Plain log lines with structured fields appended as key=value"""

    def __init__(self):
        super().__init__(TEXT_FORMAT)

    def format(self, record):
        line = super().format(record)
        fields = _structured(record)
        if fields:
            line += " " + " ".join(f"{k}={v}" for k, v in fields.items())
        return line


def setup_logging(level: str = "INFO", log_format: str = "json",
                  log_file: Optional[str] = None,
                  logger_name: str = LOGGER_NAME) -> logging.Logger:
    """
    Setup logging for the ledger package.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: "json" for structured output, "text" for plain lines
        log_file: Optional file path; stderr when omitted
        logger_name: Name of the root package logger

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)

    # Remove existing handlers to avoid duplicates
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if log_format == "json" else TextFormatter())
    handler.addFilter(CorrelationFilter())

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    return logger


def setup_logging_from_config(config) -> logging.Logger:
    """Setup logging from a LedgerConfig"""
    return setup_logging(level=config.log_level, log_format=config.log_format,
                         log_file=config.log_file)


def get_logger(name: str = LOGGER_NAME) -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               action: Optional[str] = None, resource: Optional[str] = None,
               correlation_id: Optional[str] = None,
               extra: Optional[dict] = None):
    """
    Log an action with structured data.

    Args:
        logger: Logger instance
        level: Log level (info, warning, error, etc.)
        message: Log message
        action: Action being performed
        resource: Resource being acted upon
        correlation_id: Overrides the id of the enclosing correlation_scope
        extra: Additional structured data
    """
    fields = {'action': action, 'resource': resource,
              'correlation_id': correlation_id, 'extra': extra}
    logger.log(getattr(logging, level.upper()), message,
               extra={k: v for k, v in fields.items() if v})
