from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from api.observability import (
    configure_logging,
    monotonic_ms,
    new_request_id,
    request_log_fields,
    reset_request_id,
    set_request_id,
)
from api.ratelimit import limiter, limiter_enabled, rate_limit_exceeded_handler
from api.realtime import manager
from api.routes import router
from core.config import get_settings
from core.services.session_errors import SessionConflict, SessionError
from core.services.session_operations import utcnow

logger = logging.getLogger(__name__)


def session_error_body(exc: SessionError) -> dict[str, object]:
    detail: dict[str, object] = {"code": exc.code, "message": str(exc)}
    if isinstance(exc, SessionConflict):
        detail["expected_version"] = exc.expected_version
        detail["actual_version"] = exc.actual_version
    return {"detail": detail}


def session_error_handler(request: Request, exc: Exception) -> JSONResponse:
    if not isinstance(exc, SessionError):
        raise exc
    logger.info("session_request_rejected", extra={"code": exc.code, "path": request.url.path})
    return JSONResponse(status_code=exc.http_status, content=session_error_body(exc))


def _log_http(request: Request, status_code: int, started_ms: float, *, failed: bool = False) -> None:
    fields = request_log_fields(
        method=request.method,
        path=request.url.path,
        status_code=status_code,
        duration_ms=monotonic_ms() - started_ms,
        client_ip=getattr(request.client, "host", None),
    )
    if failed:
        logger.exception("http_request_error", extra=fields)
    else:
        logger.info("http_request", extra=fields)


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "api_started",
            extra={"app_env": settings.app_env, "rate_limited": limiter.enabled, "tick_rate_limit": settings.tick_rate_limit},
        )
        try:
            yield
        finally:
            logger.info("api_stopped", extra={"display_channels": len(manager.connections)})

    app = FastAPI(title="Gym Session Control API", version="1.0.0", lifespan=lifespan)
    limiter.enabled = limiter_enabled()
    app.state.limiter = limiter
    app.state.clock = utcnow
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(SessionError, session_error_handler)
    app.include_router(router)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    header_name = settings.request_id_header_name or "X-Request-ID"

    @app.middleware("http")
    async def request_context_and_logging(request: Request, call_next: Callable) -> Response:
        request_id = (request.headers.get(header_name) or "").strip() or new_request_id()
        token = set_request_id(request_id)
        started_ms = monotonic_ms()
        try:
            response = await call_next(request)
        except Exception:
            _log_http(request, 500, started_ms, failed=True)
            raise
        else:
            response.headers[header_name] = request_id
            _log_http(request, response.status_code, started_ms)
            return response
        finally:
            reset_request_id(token)

    return app


app = create_app()
