"""
Structured logging for tutorgate.

- JSON lines in production, one readable line per record elsewhere.
- request_id travels in a ContextVar set by RequestIdMiddleware and is stamped
  on every record by RequestIdFilter.
- log_event() attaches the identifiers we search by (user, subscription, event
  type) as top-level keys and any other details under "fields".
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Dict, Mapping, Optional

LOGGER_NAME = "tutorgate"
MAX_FIELD_LENGTH = 500

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

_TOP_LEVEL_FIELDS = (
    "request_id",
    "user_id",
    "subscription_id",
    "event_type",
    "error_code",
    "method",
    "path",
    "status",
    "latency_bucket",
)


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    rid = request_id_ctx_var.get()
    return default if rid is None else rid


def latency_bucket_ms(latency_ms: Optional[float]) -> str:
    if latency_ms is None:
        return "unknown"
    for limit, label in ((10, "<10ms"), (100, "10-100ms"), (500, "100-500ms"), (1000, "500-1000ms")):
        if latency_ms < limit:
            return label
    return ">=1000ms"


def _timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _clip(value: object) -> object:
    """Keep JSON scalars as-is; stringify and clip everything else."""
    if value is None or isinstance(value, (bool, int, float)):
        return value
    text = str(value)
    if len(text) > MAX_FIELD_LENGTH:
        return text[:MAX_FIELD_LENGTH] + "...<truncated>"
    return text


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, object] = {
            "timestamp": _timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in _TOP_LEVEL_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value
        fields = getattr(record, "fields", None)
        if fields:
            payload["fields"] = fields
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class PrettyFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        tags = "".join(
            f" [{label}={getattr(record, name)}]"
            for name, label in (("request_id", "rid"), ("user_id", "user"), ("event_type", "event"))
            if getattr(record, name, None)
        )
        details = " ".join(f"{key}={value}" for key, value in (getattr(record, "fields", None) or {}).items())
        line = f"{_timestamp(record)} {record.levelname} [{LOGGER_NAME}]{tags} {record.getMessage()}"
        if details:
            line = f"{line} {details}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(env: str = "development") -> logging.Logger:
    """Install a single stdout handler on the tutorgate logger (idempotent)."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if env.lower() == "production" else PrettyFormatter())
    handler.addFilter(RequestIdFilter())
    logger.handlers = [handler]
    logger.propagate = True

    logging.getLogger("uvicorn").propagate = False
    logging.getLogger("uvicorn.error").propagate = False
    return logger


def log_event(
    level: str,
    msg: str,
    *,
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
    subscription_id: Optional[int] = None,
    event_type: Optional[str] = None,
    error_code: Optional[str] = None,
    extra: Optional[Mapping[str, object]] = None,
) -> None:
    """Log `msg` on the tutorgate logger with identifiers and clipped detail fields."""
    record_extra = {
        "request_id": request_id or get_request_id(),
        "user_id": user_id,
        "subscription_id": subscription_id,
        "event_type": event_type,
        "error_code": error_code,
        "fields": {key: _clip(value) for key, value in (extra or {}).items()},
    }
    logger = logging.getLogger(LOGGER_NAME)
    getattr(logger, level, logger.info)(msg, extra=record_extra)
