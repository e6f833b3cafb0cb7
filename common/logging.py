from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping


RESERVED_RECORD_ATTRS = {
    "args",
    "asctime",
    "created",
    "exc_info",
    "exc_text",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "msg",
    "name",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "taskName",
    "thread",
    "threadName",
}

# Context keys whose values are credentials or bearer secrets.
SENSITIVE_KEYS = frozenset(
    {
        "password",
        "new_password",
        "current_password",
        "confirm_password",
        "password_hash",
        "token",
        "reset_token",
        "csrf_token",
        "session_id",
    }
)

REDACTED = "[redacted]"

DEFAULT_LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def redact(value: Any) -> Any:
    """Return ``value`` with sensitive mapping keys masked, recursively."""
    if isinstance(value, Mapping):
        return {
            key: REDACTED if key in SENSITIVE_KEYS else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    return value


class StructuredLogFormatter(logging.Formatter):
    """Formats log records into a single-line JSON document."""

    def __init__(self, component: str) -> None:
        super().__init__()
        self._component = component

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        payload: dict[str, Any] = {
            "timestamp": timestamp,
            "level": record.levelname,
            "component": getattr(record, "component", None) or record.name or self._component,
            "event": getattr(record, "event", None),
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
        }

        context: dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key in RESERVED_RECORD_ATTRS or key in {"component", "event", "request_id"}:
                continue
            if key == "context" and isinstance(value, Mapping):
                context.update(value)
            elif key not in payload:
                context[key] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        if context:
            payload["context"] = redact(context)

        compact_payload = {k: v for k, v in payload.items() if v is not None}
        return json.dumps(compact_payload, separators=(",", ":"), default=str)


def configure_structured_logging(component: str, *, level: str | int | None = None) -> logging.Logger:
    """Configure and return a logger that emits structured JSON logs."""

    log_level = level or DEFAULT_LOG_LEVEL
    if isinstance(log_level, str):
        log_level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(component)
    logger.setLevel(log_level)
    logger.propagate = False

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(StructuredLogFormatter(component=component))

    logger.handlers.clear()
    logger.addHandler(handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a logger whose root component carries the structured handler."""

    parent_name = name.split(".")[0]
    parent = logging.getLogger(parent_name)
    if not parent.handlers:
        configure_structured_logging(parent_name)
    return logging.getLogger(name)


def log_schema_fields() -> Iterable[str]:
    """Expose schema field names for documentation or validation."""

    return (
        "timestamp",
        "level",
        "component",
        "event",
        "message",
        "request_id",
        "context",
        "exception",
    )
