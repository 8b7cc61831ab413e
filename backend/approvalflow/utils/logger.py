"""Structured JSON Logging with Correlation ID Support

Every line is one JSON object. A correlation id ties together the lines
of one HTTP call or one scheduler job run; it lives in a ContextVar so it
follows the call into worker threads started with asyncio.to_thread.
"""
import json
import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Iterator, Optional

from ..config.settings import settings


correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Fields copied from `extra=` into the JSON line
EXTRA_FIELDS = (
    "tenant_id",
    "request_id",
    "approval_id",
    "approver_id",
    "configuration_id",
    "escalation_id",
    "instance_id",
    "job_id",
    "status",
    "action",
    "count",
    "error_type",
)

_MAX_LOG_BYTES = 10 * 1024 * 1024
_LOG_BACKUPS = 5


class JsonFormatter(logging.Formatter):
    """One JSON object per record, with the engine's identifiers lifted to top level"""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = getattr(record, "correlation_id", None) or correlation_id_var.get()
        if correlation_id:
            log_obj["correlation_id"] = correlation_id

        log_obj.update({
            field: getattr(record, field) for field in EXTRA_FIELDS if hasattr(record, field)
        })

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, default=str)


def _rotating_handler(path: str, formatter: logging.Formatter, level: int = logging.NOTSET) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=_MAX_LOG_BYTES, backupCount=_LOG_BACKUPS, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(level: Optional[str] = None) -> None:
    """
    Route every logger through JSON handlers

    Writes to stdout, approvalflow.log and approvalflow-error.log (ERROR
    and above) under settings.logs_path. Calling it again replaces the
    handlers instead of stacking them.
    """
    os.makedirs(settings.logs_path, exist_ok=True)
    formatter = JsonFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, (level or settings.log_level).upper(), logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(_rotating_handler(os.path.join(settings.logs_path, "approvalflow.log"), formatter))
    root_logger.addHandler(
        _rotating_handler(os.path.join(settings.logs_path, "approvalflow-error.log"), formatter, logging.ERROR)
    )

    # Third-party chatter
    for name, third_party_level in (
        ("uvicorn", logging.INFO),
        ("uvicorn.access", logging.WARNING),
        ("apscheduler", logging.WARNING),
        ("pymongo", logging.WARNING),
    ):
        logging.getLogger(name).setLevel(third_party_level)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name"""
    return logging.getLogger(name)


def get_correlation_id() -> Optional[str]:
    """Get correlation ID from context"""
    return correlation_id_var.get()


@contextmanager
def correlation_scope(correlation_id: str) -> Iterator[str]:
    """Bind a correlation id for the duration of the block, then restore the previous one"""
    token = correlation_id_var.set(correlation_id)
    try:
        yield correlation_id
    finally:
        correlation_id_var.reset(token)
