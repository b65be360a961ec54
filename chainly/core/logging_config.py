"""
Structured Logging Configuration for Chainly

Provides JSON-formatted logging for production with:
- Run ID and request ID tracking across async calls
- Structured fields (timestamp, level, message, context)
- Console and optional file handlers
"""

import logging
import json
import sys
from datetime import datetime
from typing import Any, Dict, Optional
from contextvars import ContextVar
import os

# Context variables shared by every log line emitted inside a run or request
run_id_var: ContextVar[Optional[str]] = ContextVar('run_id', default=None)
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)

_RESERVED_ATTRS = frozenset([
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'message', 'pathname', 'process', 'processName', 'relativeCreated',
    'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info', 'taskName',
])


def _tracking_fields() -> Dict[str, str]:
    fields = {}
    run_id = run_id_var.get()
    if run_id:
        fields["run_id"] = run_id
    request_id = request_id_var.get()
    if request_id:
        fields["request_id"] = request_id
    return fields


class JSONFormatter(logging.Formatter):
    """
    Formatter that outputs one JSON object per log line.

    Extra fields passed via ``logger.info("msg", extra={...})`` are
    collected under ``context``.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_data.update(_tracking_fields())

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_fields = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS
        }
        if extra_fields:
            log_data["context"] = extra_fields

        return json.dumps(log_data, ensure_ascii=True, default=str)


class StandardFormatter(logging.Formatter):
    """
    Human-readable formatter for development.

    Format: [TIMESTAMP] LEVEL - logger - message (run_id=..., request_id=...)
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.utcnow().strftime("%Y-%m-%d %H:%M:%S")
        base = f"[{timestamp}] {record.levelname:8s} - {record.name} - {record.getMessage()}"

        tracking = _tracking_fields()
        if tracking:
            base += " (" + ", ".join(f"{k}={v}" for k, v in tracking.items()) + ")"

        if record.exc_info:
            base += "\n" + self.formatException(record.exc_info)

        return base


def setup_logging(
    level: str = "INFO",
    json_logs: bool = False,
    log_file: Optional[str] = None
) -> None:
    """
    Configure root logging for Chainly processes (API and workers).

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: If True, use JSON formatter (production), else standard formatter (dev)
        log_file: Optional file path to write logs to

    Environment Variables:
        LOG_LEVEL: Override log level (default: INFO)
        JSON_LOGS: If "true", enable JSON logging (default: false)
        LOG_FILE: File path for log output
    """
    level = os.getenv("LOG_LEVEL", level).upper()
    json_logs = os.getenv("JSON_LOGS", "true" if json_logs else "false").lower() == "true"
    log_file = os.getenv("LOG_FILE", log_file)

    numeric_level = getattr(logging, level, logging.INFO)
    formatter = JSONFormatter() if json_logs else StandardFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    logging.getLogger(__name__).info(
        "Logging configured",
        extra={
            "level": level,
            "json_logs": json_logs,
            "log_file": log_file or "none"
        }
    )


def set_run_id(run_id: Optional[str]) -> None:
    """Tag every subsequent log line in this async context with ``run_id``."""
    run_id_var.set(run_id)


def clear_run_id() -> None:
    run_id_var.set(None)


def get_run_id() -> Optional[str]:
    return run_id_var.get()


def set_request_id(request_id: str) -> None:
    """
    Set request ID for current async context.

    Called by the HTTP middleware at the start of each request.
    """
    request_id_var.set(request_id)


def clear_request_id() -> None:
    request_id_var.set(None)


def get_request_id() -> Optional[str]:
    return request_id_var.get()
