"""Caller-facing session operations.

``SessionService`` runs every operation as one read / decide / conditional
write cycle against a ``SessionStore``. Manual operations surface a lost race
as ``SessionConflict``; the auto-advance check absorbs it and reports the
session as stale instead, since many pollers fire it redundantly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from core.services import session_engine as engine
from core.services.session_engine import AutoAdvanceOutcome, SessionState, SessionStatus
from core.services.session_errors import InvalidTemplate, SessionConflict, SessionNotFound
from core.services.session_store import SessionStore
from core.services.snapshot import resolve_snapshot
from core.services.templates import TemplateProvider

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Transition = Callable[[SessionState, datetime], SessionState]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TickResult:
    outcome: AutoAdvanceOutcome
    session: Optional[SessionState]

    @property
    def advanced(self) -> bool:
        return self.outcome == AutoAdvanceOutcome.ADVANCED


class SessionService:
    def __init__(
        self,
        store: SessionStore,
        templates: Optional[TemplateProvider] = None,
        clock: Clock = utcnow,
        gym_slug: Optional[str] = None,
    ) -> None:
        self.store = store
        self.templates = templates
        self.clock = clock
        # When set, id-based operations only see sessions of this gym.
        self.gym_slug = gym_slug

    # -- reads --

    def get(self, session_id: str) -> SessionState:
        state = self.store.get(session_id)
        if self.gym_slug is not None and state.gym_slug != self.gym_slug:
            raise SessionNotFound(f"Session {session_id} not found")
        return state

    def get_current(self, gym_slug: str) -> Optional[SessionState]:
        return self.store.find_current(gym_slug)

    # -- start --

    def start(self, gym_slug: str, *, template: Any = None, template_id: Optional[str] = None) -> SessionState:
        if template is None:
            if template_id is None:
                raise InvalidTemplate("Either a template payload or a template_id is required")
            if self.templates is None:
                raise InvalidTemplate("No template provider configured for template_id lookups")
            template = self.templates.get_template(template_id, gym_slug)

        snapshot = resolve_snapshot(template)
        state = engine.start_session(snapshot, gym_slug=gym_slug, now=self.clock())
        stored = self.store.insert(state)
        logger.info(
            "session_started",
            extra={
                "session_id": stored.id,
                "gym_slug": gym_slug,
                "view_mode": stored.view_mode.value,
                "blocks": len(snapshot.blocks),
            },
        )
        return stored

    # -- manual transitions --

    def _apply(self, operation: str, session_id: str, transition: Transition, expected_version: Optional[int]) -> SessionState:
        current = self.get(session_id)
        if expected_version is not None and current.state_version != expected_version:
            logger.warning(
                "session_conflict",
                extra={"session_id": session_id, "operation": operation, "expected_version": expected_version, "actual_version": current.state_version},
            )
            raise SessionConflict(session_id, expected_version, current.state_version)

        updated = transition(current, self.clock())
        if updated is current:
            return current

        try:
            stored = self.store.conditional_write(session_id, current.state_version, updated)
        except SessionConflict as exc:
            logger.warning(
                "session_conflict",
                extra={"session_id": session_id, "operation": operation, "expected_version": current.state_version, "actual_version": exc.actual_version},
            )
            raise
        self._log_transition(operation, current, stored)
        return stored

    def pause(self, session_id: str, expected_version: Optional[int] = None) -> SessionState:
        return self._apply("pause", session_id, engine.pause, expected_version)

    def resume(self, session_id: str, expected_version: Optional[int] = None) -> SessionState:
        return self._apply("resume", session_id, engine.resume, expected_version)

    def stop(self, session_id: str, expected_version: Optional[int] = None) -> SessionState:
        return self._apply("stop", session_id, engine.stop, expected_version)

    def next_step(self, session_id: str, expected_version: Optional[int] = None) -> SessionState:
        return self._apply("next_step", session_id, lambda s, now: engine.advance_step(s, 1, now), expected_version)

    def prev_step(self, session_id: str, expected_version: Optional[int] = None) -> SessionState:
        return self._apply("prev_step", session_id, lambda s, now: engine.advance_step(s, -1, now), expected_version)

    def next_block(self, session_id: str, expected_version: Optional[int] = None) -> SessionState:
        return self._apply("next_block", session_id, lambda s, now: engine.advance_block(s, 1, now), expected_version)

    def prev_block(self, session_id: str, expected_version: Optional[int] = None) -> SessionState:
        return self._apply("prev_block", session_id, lambda s, now: engine.advance_block(s, -1, now), expected_version)

    # -- deadline-driven --

    def auto_advance_check(self, session_id: str, expected_version: int) -> TickResult:
        """Advance once if the observed version is current and its deadline passed.

        Safe to call from many pollers at once: exactly one caller holding the
        current version wins the conditional write, the rest get ``STALE``
        together with the record as it now stands.
        """
        current = self.get(session_id)
        outcome, updated = engine.auto_advance(current, expected_version, self.clock())

        if outcome == AutoAdvanceOutcome.STALE:
            logger.debug(
                "auto_advance_stale",
                extra={"session_id": session_id, "expected_version": expected_version, "actual_version": current.state_version},
            )
            return TickResult(outcome, current)
        if outcome != AutoAdvanceOutcome.ADVANCED:
            return TickResult(outcome, None)

        try:
            stored = self.store.conditional_write(session_id, current.state_version, updated)
        except SessionConflict:
            logger.debug("auto_advance_lost_race", extra={"session_id": session_id, "expected_version": expected_version})
            return TickResult(AutoAdvanceOutcome.STALE, self.store.get(session_id))

        self._log_transition("auto_advance", current, stored)
        return TickResult(AutoAdvanceOutcome.ADVANCED, stored)

    def sweep_gym(self, gym_slug: str) -> list[SessionState]:
        """Run the auto-advance check for every running session of a gym."""
        advanced: list[SessionState] = []
        for state in self.store.list_running(gym_slug):
            result = self.auto_advance_check(state.id, state.state_version)
            if result.advanced and result.session is not None:
                advanced.append(result.session)
        return advanced

    def _log_transition(self, operation: str, before: SessionState, after: SessionState) -> None:
        logger.info(
            "session_transition",
            extra={
                "session_id": after.id,
                "operation": operation,
                "state_version": after.state_version,
                "status": after.status.value,
                "from_position": [before.current_block_index, before.current_step_index],
                "to_position": [after.current_block_index, after.current_step_index],
            },
        )
        if after.status == SessionStatus.ENDED and before.status != SessionStatus.ENDED:
            logger.info("session_ended", extra={"session_id": after.id, "gym_slug": after.gym_slug})
