"""Keyed, versioned storage for live sessions.

``SessionStore`` is the only persistence contract the session engine needs:
read by id, insert, and a single-row conditional write that succeeds only
when the stored ``state_version`` still equals the caller's expectation.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from core.models import GymSession
from core.services.session_engine import ACTIVE_STATUSES, SessionState, SessionStatus
from core.services.session_errors import SessionConflict, SessionNotFound
from core.services.snapshot import BlockMode, TemplateSnapshot


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def state_to_row_values(state: SessionState) -> dict[str, Any]:
    return {
        "id": state.id,
        "gym_slug": state.gym_slug,
        "status": state.status.value,
        "view_mode": state.view_mode.value,
        "current_block_index": state.current_block_index,
        "current_step_index": state.current_step_index,
        "step_end_time": state.step_end_time,
        "block_end_time": state.block_end_time,
        "remaining_ms": state.remaining_ms,
        "state_version": state.state_version,
        "template_snapshot": state.template_snapshot.to_dict(),
        "created_at": state.created_at,
        "updated_at": state.updated_at,
    }


def state_from_row(row: GymSession) -> SessionState:
    return SessionState(
        id=row.id,
        gym_slug=row.gym_slug,
        status=SessionStatus(row.status),
        view_mode=BlockMode(row.view_mode or BlockMode.FOLLOW_STEPS.value),
        current_block_index=row.current_block_index,
        current_step_index=row.current_step_index,
        step_end_time=_as_utc(row.step_end_time),
        block_end_time=_as_utc(row.block_end_time),
        remaining_ms=row.remaining_ms,
        state_version=row.state_version,
        template_snapshot=TemplateSnapshot.from_dict(row.template_snapshot),
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
    )


class SessionStore(ABC):
    @abstractmethod
    def get(self, session_id: str) -> SessionState:
        """Return the stored session or raise ``SessionNotFound``."""

    @abstractmethod
    def insert(self, state: SessionState) -> SessionState:
        """Persist a brand-new session."""

    @abstractmethod
    def conditional_write(self, session_id: str, expected_version: int, new_state: SessionState) -> SessionState:
        """Replace the session only if its version is still ``expected_version``.

        Raises ``SessionConflict`` when another writer got there first.
        """

    @abstractmethod
    def find_current(self, gym_slug: str) -> SessionState | None:
        """Most recently created running/paused session of a gym."""

    @abstractmethod
    def list_running(self, gym_slug: str) -> list[SessionState]:
        """All running sessions of a gym, oldest first."""


class SqlSessionStore(SessionStore):
    """SQLAlchemy-backed store; the conditional write is one guarded UPDATE."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _load(self, session_id: str) -> GymSession | None:
        stmt = select(GymSession).where(GymSession.id == session_id).execution_options(populate_existing=True)
        return self.db.execute(stmt).scalar_one_or_none()

    def get(self, session_id: str) -> SessionState:
        row = self._load(session_id)
        if row is None:
            raise SessionNotFound(f"Session {session_id} not found")
        return state_from_row(row)

    def insert(self, state: SessionState) -> SessionState:
        row = GymSession(**state_to_row_values(state))
        self.db.add(row)
        self.db.flush()
        return state_from_row(row)

    def conditional_write(self, session_id: str, expected_version: int, new_state: SessionState) -> SessionState:
        if new_state.id != session_id:
            raise ValueError("new_state.id does not match session_id")
        values = state_to_row_values(new_state)
        for key in ("id", "gym_slug", "created_at"):
            values.pop(key)
        stmt = (
            update(GymSession)
            .where(GymSession.id == session_id, GymSession.state_version == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        if result.rowcount != 1:
            current = self._load(session_id)
            if current is None:
                raise SessionNotFound(f"Session {session_id} not found")
            raise SessionConflict(session_id, expected_version, current.state_version)
        return self.get(session_id)

    def find_current(self, gym_slug: str) -> SessionState | None:
        stmt = (
            select(GymSession)
            .where(
                GymSession.gym_slug == gym_slug,
                GymSession.status.in_([s.value for s in ACTIVE_STATUSES]),
            )
            .order_by(GymSession.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        row = self.db.execute(stmt).scalar_one_or_none()
        return state_from_row(row) if row is not None else None

    def list_running(self, gym_slug: str) -> list[SessionState]:
        stmt = (
            select(GymSession)
            .where(GymSession.gym_slug == gym_slug, GymSession.status == SessionStatus.RUNNING.value)
            .order_by(GymSession.created_at)
            .execution_options(populate_existing=True)
        )
        return [state_from_row(r) for r in self.db.execute(stmt).scalars().all()]


class InMemorySessionStore(SessionStore):
    """Process-local store guarded by a lock; used by tests and single-node demos."""

    def __init__(self) -> None:
        self._rows: dict[str, SessionState] = {}
        self._lock = threading.Lock()

    def get(self, session_id: str) -> SessionState:
        with self._lock:
            state = self._rows.get(session_id)
        if state is None:
            raise SessionNotFound(f"Session {session_id} not found")
        return state

    def insert(self, state: SessionState) -> SessionState:
        with self._lock:
            if state.id in self._rows:
                raise ValueError(f"Session {state.id} already exists")
            self._rows[state.id] = state
        return state

    def conditional_write(self, session_id: str, expected_version: int, new_state: SessionState) -> SessionState:
        if new_state.id != session_id:
            raise ValueError("new_state.id does not match session_id")
        with self._lock:
            current = self._rows.get(session_id)
            if current is None:
                raise SessionNotFound(f"Session {session_id} not found")
            if current.state_version != expected_version:
                raise SessionConflict(session_id, expected_version, current.state_version)
            self._rows[session_id] = new_state
        return new_state

    def find_current(self, gym_slug: str) -> SessionState | None:
        with self._lock:
            candidates = [s for s in self._rows.values() if s.gym_slug == gym_slug and s.status in ACTIVE_STATUSES]
        if not candidates:
            return None
        return max(candidates, key=lambda s: s.created_at)

    def list_running(self, gym_slug: str) -> list[SessionState]:
        with self._lock:
            rows = [s for s in self._rows.values() if s.gym_slug == gym_slug and s.status == SessionStatus.RUNNING]
        return sorted(rows, key=lambda s: s.created_at)
