"""Rate limiting for deadline checks.

Every connected coach client polls roughly once per ``AUTO_ADVANCE_POLL_MS``.
The limit is keyed per client *and* session, so one misbehaving poller cannot
starve the other screens of the same gym.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from core.config import get_settings


def limiter_enabled() -> bool:
    settings = get_settings()
    return not settings.is_test and settings.rate_limit_enabled


def tick_rate_limit() -> str:
    return get_settings().tick_rate_limit


def poller_key(request: Request) -> str:
    session_id = request.path_params.get("session_id") or "gym"
    return f"{get_remote_address(request)}:{session_id}"


limiter = Limiter(
    key_func=poller_key,
    storage_uri=get_settings().rate_limit_storage_uri,
    enabled=limiter_enabled(),
    headers_enabled=False,
)


def rate_limit_exceeded_handler(request: Request, exc: Exception) -> JSONResponse:
    retry_after: Optional[str] = getattr(exc, "retry_after", None) if isinstance(exc, RateLimitExceeded) else None
    return JSONResponse(
        status_code=429,
        content={
            "detail": {
                "code": "RATE_LIMITED",
                "message": "Too many deadline checks; slow the poller down",
                "poll_interval_ms": get_settings().auto_advance_poll_ms,
            }
        },
        headers={"Retry-After": str(retry_after)} if retry_after is not None else None,
    )
