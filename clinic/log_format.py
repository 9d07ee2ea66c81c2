"""
Structured JSON log output.

Enabled through ``HMS_LOG_JSON=1``; every record becomes one line of
JSON carrying the request ID set by
:class:`clinic.middleware.RequestLogMiddleware`:

    {"timestamp": "2024-01-15T10:30:00.000Z", "level": "INFO",
     "logger": "clinic.services.billing", "message": "payment recorded",
     "request_id": "6f1c...", "extra": {"invoice": "INV24010001"}}
"""
import json
import logging
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

_STANDARD_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "taskName", "message",
}


def get_request_id() -> Optional[str]:
    return request_id_var.get()


class JSONFormatter(logging.Formatter):
    """Single-line JSON formatter with UTC timestamps."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        request_id = get_request_id()
        if request_id:
            log_entry["request_id"] = request_id
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRS and not key.startswith("_")
        }
        if extra:
            log_entry["extra"] = extra
        return json.dumps(log_entry, default=str, ensure_ascii=False)
