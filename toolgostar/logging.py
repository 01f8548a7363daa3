from __future__ import annotations

import json
import logging
import os
import re
import sys
from datetime import datetime, timezone
from typing import Any

from toolgostar.context import get_actor_id, get_correlation_id


_CONTEXT_ATTRS = ("correlation_id", "actor_id")

# Only these extras are rendered; anything else passed through ``extra=`` stays out of the stream.
STRUCTURED_FIELDS = (
    "method",
    "path",
    "status_code",
    "duration_ms",
    "tier",
    "client_key",
    "retry_after",
    "error_code",
    "entity_type",
    "entity_id",
    "permission",
    "role",
    "form_type",
    "event_name",
    "status",
    "error",
)

MAX_ERROR_LENGTH = 500
_EMAIL_RE = re.compile(r"([A-Za-z0-9._%+\-])[A-Za-z0-9._%+\-]*@([A-Za-z0-9.\-]+\.[A-Za-z]{2,})")


def mask_emails(text: str) -> str:
    """Reduce addresses in free text to their first character and domain."""
    return _EMAIL_RE.sub(r"\1***@\2", text)


def _stamp_context(record: logging.LogRecord) -> None:
    if not getattr(record, "correlation_id", None):
        record.correlation_id = get_correlation_id()
    if not getattr(record, "actor_id", None):
        record.actor_id = get_actor_id()


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        _stamp_context(record)
        return True


_default_factory = logging.getLogRecordFactory()


def _context_record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _default_factory(*args, **kwargs)
    # Records created inside a request carry its correlation id even when a handler has no filter.
    if not getattr(record, "correlation_id", None):
        record.correlation_id = get_correlation_id()
    return record


def structured_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields = {name: record.__dict__[name] for name in STRUCTURED_FIELDS if name in record.__dict__}
    error = fields.get("error")
    if isinstance(error, str):
        fields["error"] = mask_emails(error)[:MAX_ERROR_LENGTH]
    return fields


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": mask_emails(record.getMessage()),
        }
        for attr in _CONTEXT_ATTRS:
            value = getattr(record, attr, None)
            if value or attr == "correlation_id":
                payload[attr] = value

        fields = structured_fields(record)
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)
        payload["fields"] = fields
        return json.dumps(payload, default=str)


class ConsoleLogFormatter(logging.Formatter):
    """Single-line human readable output for local runs (``LOG_FORMAT=console``)."""

    def format(self, record: logging.LogRecord) -> str:
        fields = " ".join(f"{key}={value}" for key, value in structured_fields(record).items())
        line = f"{record.levelname:<8} {record.name} {mask_emails(record.getMessage())}"
        correlation_id = getattr(record, "correlation_id", None)
        if correlation_id:
            line = f"{line} [{correlation_id}]"
        if fields:
            line = f"{line} {fields}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging() -> None:
    root_logger = logging.getLogger()
    if getattr(root_logger, "_toolgostar_configured", False):
        return

    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    formatter: logging.Formatter
    if os.getenv("LOG_FORMAT", "json").lower() == "console":
        formatter = ConsoleLogFormatter()
    else:
        formatter = JsonLogFormatter()

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(RequestContextFilter())

    root_logger.handlers.clear()
    root_logger.filters.clear()
    root_logger.setLevel(level)
    logging.setLogRecordFactory(_context_record_factory)
    root_logger.addHandler(handler)
    # Uvicorn's own access log would duplicate http.request lines.
    logging.getLogger("uvicorn.access").disabled = True
    root_logger._toolgostar_configured = True  # type: ignore[attr-defined]
