"""Observation channel for display screens.

Displays never mutate a session. They poll the current record and recompute
the countdown locally from the absolute deadline, so the poll interval has no
effect on timer accuracy. ``SessionObserver`` turns polling into a change feed
that only emits when a new ``(id, state_version)`` appears.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from core.services.session_engine import SessionState, SessionStatus, ms_until
from core.services.snapshot import StepSnapshot

Listener = Callable[[Optional[SessionState]], None]

_UNSET = object()


def countdown_ms(session: SessionState, now: datetime) -> int | None:
    """Remaining time of the current unit as a display would show it.

    Running sessions count down to the active deadline; paused sessions show
    the frozen ``remaining_ms``. Untimed units and finished sessions give None.
    """
    if session.status == SessionStatus.RUNNING:
        deadline = session.active_deadline
        if deadline is None:
            return None
        return ms_until(deadline, now)
    if session.status == SessionStatus.PAUSED:
        if session.current_unit_duration_ms is None:
            return None
        return max(0, session.remaining_ms or 0)
    return None


def format_countdown(ms: int | None) -> str:
    if ms is None:
        return "--:--"
    total_seconds = ms // 1000
    return f"{total_seconds // 60:02d}:{total_seconds % 60:02d}"


@dataclass(frozen=True)
class StepPreview:
    block_name: str
    step: StepSnapshot


def next_step_preview(session: SessionState) -> StepPreview | None:
    """The step that follows the current one: next in block, else first of the next block."""
    if session.current_step_index is None:
        return None
    blocks = session.template_snapshot.blocks
    block = session.current_block
    following = session.current_step_index + 1
    if following < len(block.steps):
        return StepPreview(block.name, block.steps[following])
    next_index = session.current_block_index + 1
    if next_index < len(blocks) and blocks[next_index].steps:
        return StepPreview(blocks[next_index].name, blocks[next_index].steps[0])
    return None


@dataclass(frozen=True)
class DisplayFrame:
    session_id: str
    state_version: int
    status: SessionStatus
    view_mode: str
    block_name: str
    block_position: tuple[int, int]
    step: StepSnapshot | None
    block_steps: tuple[StepSnapshot, ...]
    next_step: StepPreview | None
    countdown_ms: int | None
    countdown: str
    deadline: datetime | None
    server_time: datetime


def build_display_frame(session: SessionState, now: datetime) -> DisplayFrame:
    block = session.current_block
    remaining = countdown_ms(session, now)
    return DisplayFrame(
        session_id=session.id,
        state_version=session.state_version,
        status=session.status,
        view_mode=session.view_mode.value,
        block_name=block.name,
        block_position=(session.current_block_index + 1, len(session.template_snapshot.blocks)),
        step=session.current_step,
        # Block modes show every step of the block as an informational list.
        block_steps=() if session.follows_steps else block.steps,
        next_step=next_step_preview(session),
        countdown_ms=remaining,
        countdown=format_countdown(remaining),
        deadline=session.active_deadline,
        server_time=now,
    )


class SessionObserver:
    """Poll-driven change feed for one gym's current session."""

    def __init__(self, fetch_current: Callable[[], Optional[SessionState]]) -> None:
        self._fetch_current = fetch_current
        self._listeners: list[Listener] = []
        self._last_key: object = _UNSET
        self.last_seen: Optional[SessionState] = None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def poll(self) -> bool:
        """Fetch once; notify listeners and return True only if something changed."""
        current = self._fetch_current()
        visible = current if current is not None and current.is_active else None
        key = (visible.id, visible.state_version) if visible is not None else None
        if key == self._last_key:
            return False
        self._last_key = key
        self.last_seen = visible
        for listener in list(self._listeners):
            listener(visible)
        return True
