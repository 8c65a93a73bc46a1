"""Structured JSON logging for the session API.

Each log line is one JSON object. Fields bound to the current request context
(request id, the coach's gym, the session being acted on) are stamped on every
line logged while handling that request; explicit ``extra=`` fields win over
bound ones.
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import time
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4


_CONTEXT_FIELDS: dict[str, contextvars.ContextVar[Optional[str]]] = {
    "request_id": contextvars.ContextVar("request_id", default=None),
    "gym_slug": contextvars.ContextVar("gym_slug", default=None),
    "session_id": contextvars.ContextVar("session_id", default=None),
}
_logging_configured = False
_STANDARD_LOG_RECORD_FIELDS = set(logging.makeLogRecord({}).__dict__.keys()) | {"message", "asctime"}

# Loggers that would otherwise flood the output at the tick rate of every poller.
_NOISY_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore")


def get_request_id() -> Optional[str]:
    return _CONTEXT_FIELDS["request_id"].get()


def set_request_id(value: Optional[str]):
    return _CONTEXT_FIELDS["request_id"].set(value)


def reset_request_id(token) -> None:
    _CONTEXT_FIELDS["request_id"].reset(token)


def new_request_id() -> str:
    return uuid4().hex


def bind_gym(gym_slug: Optional[str]) -> None:
    _CONTEXT_FIELDS["gym_slug"].set(gym_slug)


def bind_session(session_id: Optional[str]) -> None:
    _CONTEXT_FIELDS["session_id"].set(session_id)


def current_log_context() -> dict[str, str]:
    return {name: var.get() for name, var in _CONTEXT_FIELDS.items() if var.get()}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_LOG_RECORD_FIELDS and not key.startswith("_") and key not in payload
        }
        for key, value in current_log_context().items():
            extras.setdefault(key, value)
        payload.update(extras)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, separators=(",", ":"))


def configure_logging(level: str = "INFO") -> None:
    global _logging_configured
    if _logging_configured:
        return

    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    root.handlers.clear()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)

    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logger = logging.getLogger(logger_name)
        logger.handlers.clear()
        logger.propagate = True
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    _logging_configured = True


def request_log_fields(*, method: str, path: str, status_code: int, duration_ms: float, client_ip: Optional[str]) -> dict[str, object]:
    return {
        "method": method,
        "path": path,
        "status_code": int(status_code),
        "duration_ms": round(float(duration_ms), 2),
        "client_ip": client_ip or "",
    }


def monotonic_ms() -> float:
    return time.perf_counter() * 1000.0
