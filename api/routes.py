import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect

from api.auth import CoachPrincipal, require_coach
from api.deps import get_clock, session_service
from api.observability import bind_session
from api.ratelimit import limiter, tick_rate_limit
from api.realtime import SESSION_UPDATED, manager
from api.schemas import (
    CurrentSessionOut,
    DisplayFrameOut,
    HealthOut,
    SessionOut,
    StartSessionIn,
    SweepOut,
    TickIn,
    TickOut,
    VersionIn,
)
from core.db import get_query_stats
from core.services.observation import build_display_frame
from core.services.session_operations import SessionService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1")

Coach = Annotated[CoachPrincipal, Depends(require_coach)]


def _visible(service: SessionService, gym_slug: str) -> Optional[SessionOut]:
    """What a display poll of the gym would return right now."""
    state = service.get_current(gym_slug)
    return SessionOut.from_state(state) if state is not None else None


async def _publish(visible: Optional[SessionOut], gym_slug: str) -> None:
    await manager.publish_session(gym_slug, visible.push_payload() if visible is not None else None)


async def _transition(request: Request, coach: CoachPrincipal, session_id: str, operation: str, body: Optional[VersionIn]) -> SessionOut:
    bind_session(session_id)
    expected_version = body.expected_version if body is not None else None
    with session_service(get_clock(request), coach.gym_slug) as service:
        state = getattr(service, operation)(session_id, expected_version)
        out = SessionOut.from_state(state)
        visible = _visible(service, coach.gym_slug)
    await _publish(visible, coach.gym_slug)
    return out


@router.get("/health", response_model=HealthOut, tags=["ops"])
def health():
    stats = get_query_stats()
    return HealthOut(status="ok", queries=stats.total, slow_queries=stats.slow)


# -- coach --


@router.post("/coach/sessions/start", response_model=SessionOut, status_code=201, tags=["sessions"])
async def start_session(request: Request, body: StartSessionIn, coach: Coach):
    template = body.template.model_dump() if body.template is not None else None
    with session_service(get_clock(request), coach.gym_slug) as service:
        state = service.start(coach.gym_slug, template=template, template_id=body.template_id)
        out = SessionOut.from_state(state)
        visible = _visible(service, coach.gym_slug)
    await _publish(visible, coach.gym_slug)
    return out


@router.get("/coach/sessions/current", response_model=CurrentSessionOut, tags=["sessions"])
def current_session(request: Request, coach: Coach):
    with session_service(get_clock(request), coach.gym_slug) as service:
        state = service.get_current(coach.gym_slug)
        return CurrentSessionOut(session=SessionOut.from_state(state) if state is not None else None)


@router.get("/coach/sessions/{session_id}", response_model=SessionOut, tags=["sessions"])
def get_session(request: Request, session_id: str, coach: Coach):
    with session_service(get_clock(request), coach.gym_slug) as service:
        return SessionOut.from_state(service.get(session_id))


@router.post("/coach/sessions/{session_id}/pause", response_model=SessionOut, tags=["sessions"])
async def pause_session(request: Request, session_id: str, coach: Coach, body: Optional[VersionIn] = None):
    return await _transition(request, coach, session_id, "pause", body)


@router.post("/coach/sessions/{session_id}/resume", response_model=SessionOut, tags=["sessions"])
async def resume_session(request: Request, session_id: str, coach: Coach, body: Optional[VersionIn] = None):
    return await _transition(request, coach, session_id, "resume", body)


@router.post("/coach/sessions/{session_id}/stop", response_model=SessionOut, tags=["sessions"])
async def stop_session(request: Request, session_id: str, coach: Coach, body: Optional[VersionIn] = None):
    return await _transition(request, coach, session_id, "stop", body)


@router.post("/coach/sessions/{session_id}/next-step", response_model=SessionOut, tags=["sessions"])
async def next_step(request: Request, session_id: str, coach: Coach, body: Optional[VersionIn] = None):
    return await _transition(request, coach, session_id, "next_step", body)


@router.post("/coach/sessions/{session_id}/prev-step", response_model=SessionOut, tags=["sessions"])
async def prev_step(request: Request, session_id: str, coach: Coach, body: Optional[VersionIn] = None):
    return await _transition(request, coach, session_id, "prev_step", body)


@router.post("/coach/sessions/{session_id}/next-block", response_model=SessionOut, tags=["sessions"])
async def next_block(request: Request, session_id: str, coach: Coach, body: Optional[VersionIn] = None):
    return await _transition(request, coach, session_id, "next_block", body)


@router.post("/coach/sessions/{session_id}/prev-block", response_model=SessionOut, tags=["sessions"])
async def prev_block(request: Request, session_id: str, coach: Coach, body: Optional[VersionIn] = None):
    return await _transition(request, coach, session_id, "prev_block", body)


@router.post("/coach/sessions/{session_id}/tick", response_model=TickOut, tags=["sessions"])
@limiter.limit(tick_rate_limit)
async def auto_advance_tick(request: Request, session_id: str, body: TickIn, coach: Coach):
    bind_session(session_id)
    with session_service(get_clock(request), coach.gym_slug) as service:
        result = service.auto_advance_check(session_id, body.expected_version)
        out = TickOut.from_result(result)
        visible = _visible(service, coach.gym_slug) if result.advanced else None
    if result.advanced:
        await _publish(visible, coach.gym_slug)
    return out


@router.post("/coach/sessions/sweep", response_model=SweepOut, tags=["sessions"])
@limiter.limit(tick_rate_limit)
async def sweep_sessions(request: Request, coach: Coach):
    with session_service(get_clock(request), coach.gym_slug) as service:
        advanced = [SessionOut.from_state(s) for s in service.sweep_gym(coach.gym_slug)]
        visible = _visible(service, coach.gym_slug)
    if advanced:
        await _publish(visible, coach.gym_slug)
    return SweepOut(gym_slug=coach.gym_slug, advanced=advanced)


# -- display (read-only) --


@router.get("/display/{gym_slug}/current-session", response_model=Optional[SessionOut], tags=["display"])
def display_current_session(request: Request, gym_slug: str):
    with session_service(get_clock(request)) as service:
        state = service.get_current(gym_slug)
        return SessionOut.from_state(state) if state is not None else None


@router.get("/display/{gym_slug}/frame", response_model=DisplayFrameOut, tags=["display"])
def display_frame(request: Request, gym_slug: str):
    clock = get_clock(request)
    with session_service(clock) as service:
        state = service.get_current(gym_slug)
    now = clock()
    if state is None:
        return DisplayFrameOut(server_time=now)
    return DisplayFrameOut.from_frame(build_display_frame(state, now))


@router.websocket("/ws/display/{gym_slug}")
async def display_ws(websocket: WebSocket, gym_slug: str):
    await manager.connect(gym_slug, websocket)
    try:
        with session_service() as service:
            state = service.get_current(gym_slug)
        await manager.send(websocket, SESSION_UPDATED, SessionOut.from_state(state).push_payload() if state is not None else None)
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(gym_slug, websocket)
        logger.debug("display_disconnected", extra={"gym_slug": gym_slug})
