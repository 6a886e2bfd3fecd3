"""
Structured Logging Configuration for LeadFlow

Two output styles share one setup:
- JSON lines (production, Celery workers): one object per record with the
  correlation id and any extra= fields under "context"
- Plain lines (development): workflow context inline, e.g.
  "[lead=7 progress=42 step=sms]"

The correlation id is an HTTP request id in the API (X-Request-ID) and the
Celery task id during a scheduler pass.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

# Correlation id for the current request or scheduler pass
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)

# Attributes every LogRecord has; anything else came in through extra=
_RESERVED_RECORD_FIELDS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}

# (record attribute, label) pairs shown inline by StandardFormatter
WORKFLOW_CONTEXT_FIELDS = (
    ("lead_id", "lead"),
    ("progress_id", "progress"),
    ("step_type", "step"),
)

# Chatty third-party loggers, capped regardless of LOG_LEVEL
LIBRARY_LOG_LEVELS = {
    "sqlalchemy.engine": logging.WARNING,
    "urllib3": logging.WARNING,
    "kombu": logging.WARNING,
}


def _utc_timestamp() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_RECORD_FIELDS
    }


class JSONFormatter(logging.Formatter):
    """
    One JSON object per record.

    Keys: timestamp, level, logger, message, plus request_id, exception and
    context (extra= fields such as lead_id, progress_id, step_type) when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": _utc_timestamp().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = request_id_var.get()
        if correlation_id:
            entry["request_id"] = correlation_id

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        context = _extra_fields(record)
        if context:
            entry["context"] = context

        return json.dumps(entry, ensure_ascii=True, default=str)


class StandardFormatter(logging.Formatter):
    """
    Human-readable lines for local runs.

    Format: [TIMESTAMP] LEVEL - logger - message [lead=.. progress=.. step=..] (request_id=..)
    """

    def format(self, record: logging.LogRecord) -> str:
        line = (
            f"[{_utc_timestamp():%Y-%m-%d %H:%M:%S}] {record.levelname:8s} - "
            f"{record.name} - {record.getMessage()}"
        )

        workflow_context = " ".join(
            f"{label}={getattr(record, field)}"
            for field, label in WORKFLOW_CONTEXT_FIELDS
            if getattr(record, field, None) is not None
        )
        if workflow_context:
            line += f" [{workflow_context}]"

        correlation_id = request_id_var.get()
        if correlation_id:
            line += f" (request_id={correlation_id})"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)

        return line


def setup_logging(
    level: str = "INFO",
    json_logs: bool = False,
    log_file: Optional[str] = None
) -> None:
    """
    Configure the root logger (replaces any existing handlers).

    The LOG_LEVEL, JSON_LOGS and LOG_FILE environment variables take
    precedence over the arguments, so a deployment can switch formats
    without code changes.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_logs: JSON lines instead of plain lines
        log_file: Also append to this file
    """
    level = os.getenv("LOG_LEVEL", level).upper()
    json_logs = os.getenv("JSON_LOGS", str(json_logs)).lower() == "true"
    log_file = os.getenv("LOG_FILE", log_file)

    numeric_level = getattr(logging, level, logging.INFO)
    formatter = JSONFormatter() if json_logs else StandardFormatter()

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()
    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    for library, library_level in LIBRARY_LOG_LEVELS.items():
        logging.getLogger(library).setLevel(max(library_level, numeric_level))

    logging.getLogger(__name__).info(
        "Logging configured",
        extra={"level": level, "json_logs": json_logs, "log_file": log_file or "none"}
    )


def step_log_context(progress, step=None) -> Dict[str, Any]:
    """extra= fields for engine logs about one enrollment (and its step)"""
    return {
        "lead_id": progress.lead_id,
        "progress_id": progress.id,
        "step_type": step.step_type if step is not None else None,
    }


def set_request_id(request_id: str) -> None:
    """Tag every log record in the current context with request_id"""
    request_id_var.set(request_id)


def clear_request_id() -> None:
    request_id_var.set(None)


def get_request_id() -> Optional[str]:
    return request_id_var.get()
