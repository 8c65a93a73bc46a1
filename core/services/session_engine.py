"""Session transition engine.

Pure decision logic for a live gym session: every function takes the current
``SessionState`` plus the wall-clock ``now`` and returns the next state (or
raises a ``SessionError`` leaving the input untouched). Nothing here touches
storage; ``SessionService`` does the read / decide / conditional-write cycle.

Timers are stored as absolute deadlines (``step_end_time`` in follow_steps
mode, ``block_end_time`` otherwise) so any display can recompute the
countdown locally. While paused the frozen countdown lives in ``remaining_ms``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from uuid import uuid4

from core.services.session_errors import (
    BeforeFirstStep,
    BeyondFirstBlock,
    BeyondLastBlock,
    EmptyBlock,
    EmptyFirstBlock,
    InvalidTemplate,
    MissingRemaining,
    NotApplicable,
    NotPaused,
    NotRunning,
    SessionNotActive,
)
from core.services.snapshot import BlockMode, BlockSnapshot, StepSnapshot, TemplateSnapshot


class SessionStatus(str, Enum):
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    ENDED = "ended"


ACTIVE_STATUSES = frozenset({SessionStatus.RUNNING, SessionStatus.PAUSED})
TERMINAL_STATUSES = frozenset({SessionStatus.STOPPED, SessionStatus.ENDED})


class AutoAdvanceOutcome(str, Enum):
    ADVANCED = "advanced"
    STALE = "stale"
    NOT_RUNNING = "not_running"
    UNTIMED = "untimed"
    NOT_DUE = "not_due"


@dataclass(frozen=True)
class SessionState:
    id: str
    gym_slug: str
    status: SessionStatus
    view_mode: BlockMode
    current_block_index: int
    current_step_index: int | None
    step_end_time: datetime | None
    block_end_time: datetime | None
    remaining_ms: int | None
    state_version: int
    template_snapshot: TemplateSnapshot
    created_at: datetime
    updated_at: datetime

    @property
    def follows_steps(self) -> bool:
        return self.view_mode == BlockMode.FOLLOW_STEPS

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def current_block(self) -> BlockSnapshot:
        return self.template_snapshot.blocks[self.current_block_index]

    @property
    def current_step(self) -> StepSnapshot | None:
        if self.current_step_index is None:
            return None
        steps = self.current_block.steps
        if 0 <= self.current_step_index < len(steps):
            return steps[self.current_step_index]
        return None

    @property
    def active_deadline(self) -> datetime | None:
        return self.step_end_time if self.follows_steps else self.block_end_time

    @property
    def current_unit_duration_ms(self) -> int | None:
        """Full duration of the current step (follow_steps) or block, None if untimed."""
        if self.follows_steps:
            step = self.current_step
            return step.timed_duration_ms if step else None
        return self.current_block.timed_duration_ms


def _after(now: datetime, ms: int) -> datetime:
    return now + timedelta(milliseconds=ms)


def ms_until(deadline: datetime, now: datetime) -> int:
    """Whole milliseconds left before ``deadline``, never negative."""
    return max(0, int((deadline - now) / timedelta(milliseconds=1)))


def _bump(state: SessionState, now: datetime, **changes) -> SessionState:
    return replace(state, state_version=state.state_version + 1, updated_at=now, **changes)


def _check_direction(direction: int) -> None:
    if direction not in (1, -1):
        raise ValueError("direction must be +1 or -1")


def _require_active(state: SessionState) -> None:
    if state.status not in ACTIVE_STATUSES:
        raise SessionNotActive(f"Session is {state.status.value}; navigation needs a running or paused session")


def _land(state: SessionState, block_index: int, step_index: int, now: datetime) -> SessionState:
    """Move to ``(block_index, step_index)`` and restart that unit's full duration.

    The block's own mode becomes the view mode. A running session gets a fresh
    deadline; a paused one stays paused with the full duration as remaining.
    """
    block = state.template_snapshot.blocks[block_index]
    if block.follows_steps:
        if not block.steps:
            raise EmptyBlock(f"Block {block_index} ({block.name!r}) has no steps in follow_steps mode")
        landed_step: int | None = step_index
        duration = block.steps[step_index].timed_duration_ms
    else:
        landed_step = None
        duration = block.timed_duration_ms

    if state.status == SessionStatus.RUNNING:
        deadline = _after(now, duration) if duration else None
        remaining = None
    else:
        deadline = None
        remaining = duration or 0

    return _bump(
        state,
        now,
        view_mode=block.block_mode,
        current_block_index=block_index,
        current_step_index=landed_step,
        step_end_time=deadline if block.follows_steps else None,
        block_end_time=None if block.follows_steps else deadline,
        remaining_ms=remaining,
    )


def _end(state: SessionState, now: datetime) -> SessionState:
    return _bump(
        state,
        now,
        status=SessionStatus.ENDED,
        step_end_time=None,
        block_end_time=None,
        remaining_ms=None,
    )


def start_session(
    snapshot: TemplateSnapshot,
    *,
    gym_slug: str,
    now: datetime,
    session_id: str | None = None,
) -> SessionState:
    """Build the initial RUNNING state at version 1 on the first block."""
    if not snapshot.blocks:
        raise InvalidTemplate("Template must have at least one block")

    first = snapshot.blocks[0]
    step_index: int | None = None
    step_end_time = None
    block_end_time = None

    if first.follows_steps:
        if not first.steps:
            raise EmptyFirstBlock()
        step_index = 0
        duration = first.steps[0].timed_duration_ms
        if duration:
            step_end_time = _after(now, duration)
    elif first.timed_duration_ms:
        block_end_time = _after(now, first.timed_duration_ms)

    return SessionState(
        id=session_id or uuid4().hex,
        gym_slug=gym_slug,
        status=SessionStatus.RUNNING,
        view_mode=first.block_mode,
        current_block_index=0,
        current_step_index=step_index,
        step_end_time=step_end_time,
        block_end_time=block_end_time,
        remaining_ms=None,
        state_version=1,
        template_snapshot=snapshot,
        created_at=now,
        updated_at=now,
    )


def pause(state: SessionState, now: datetime) -> SessionState:
    if state.status != SessionStatus.RUNNING:
        raise NotRunning("Session must be running to pause")
    deadline = state.active_deadline
    remaining = ms_until(deadline, now) if deadline is not None else 0
    return _bump(
        state,
        now,
        status=SessionStatus.PAUSED,
        remaining_ms=remaining,
        step_end_time=None,
        block_end_time=None,
    )


def resume(state: SessionState, now: datetime) -> SessionState:
    if state.status != SessionStatus.PAUSED:
        raise NotPaused("Session must be paused to resume")
    if state.remaining_ms is None:
        raise MissingRemaining("Session must have remaining_ms to resume")

    # An untimed unit keeps no deadline even though remaining_ms is 0.
    deadline = _after(now, state.remaining_ms) if state.current_unit_duration_ms else None
    return _bump(
        state,
        now,
        status=SessionStatus.RUNNING,
        remaining_ms=None,
        step_end_time=deadline if state.follows_steps else None,
        block_end_time=None if state.follows_steps else deadline,
    )


def stop(state: SessionState, now: datetime) -> SessionState:
    """Stop from any state. Stopping an already stopped session returns it unchanged."""
    if state.status == SessionStatus.STOPPED:
        return state
    return _bump(
        state,
        now,
        status=SessionStatus.STOPPED,
        step_end_time=None,
        block_end_time=None,
        remaining_ms=None,
    )


def advance_step(state: SessionState, direction: int, now: datetime) -> SessionState:
    """Walk one step forward or backward across block boundaries.

    Forward past the last step of the last block ends the session. Backward
    before the very first step raises ``BeforeFirstStep``.
    """
    _check_direction(direction)
    _require_active(state)
    if not state.follows_steps or state.current_step_index is None:
        raise NotApplicable("Step navigation only works in follow_steps mode; use block navigation")

    blocks = state.template_snapshot.blocks
    block_index = state.current_block_index
    step_index = state.current_step_index + direction

    if direction > 0 and step_index >= len(blocks[block_index].steps):
        block_index += 1
        step_index = 0
        if block_index >= len(blocks):
            return _end(state, now)
    elif direction < 0 and step_index < 0:
        block_index -= 1
        if block_index < 0:
            raise BeforeFirstStep("Cannot go before first step")
        step_index = max(0, len(blocks[block_index].steps) - 1)

    return _land(state, block_index, step_index, now)


def advance_block(state: SessionState, direction: int, now: datetime) -> SessionState:
    """Jump to the first step of the adjacent block, restarting its full duration."""
    _check_direction(direction)
    _require_active(state)

    target = state.current_block_index + direction
    if target < 0:
        raise BeyondFirstBlock("Cannot go before first block")
    if target >= len(state.template_snapshot.blocks):
        raise BeyondLastBlock("Cannot go beyond last block")
    return _land(state, target, 0, now)


def expire(state: SessionState, now: datetime) -> SessionState:
    """Transition taken when the active deadline has passed.

    Leaving a block skips follow_steps blocks without steps; when none of the
    remaining blocks can be entered the session ends.
    """
    if state.follows_steps and state.current_step_index is not None:
        if state.current_step_index + 1 < len(state.current_block.steps):
            return advance_step(state, 1, now)
    blocks = state.template_snapshot.blocks
    following = range(state.current_block_index + 1, len(blocks))
    target = next((i for i in following if blocks[i].landable), None)
    if target is None:
        return _end(state, now)
    return _land(state, target, 0, now)


def auto_advance(state: SessionState, expected_version: int, now: datetime) -> tuple[AutoAdvanceOutcome, SessionState]:
    """Decide whether a poller observing ``expected_version`` should advance.

    Returns ``(ADVANCED, next_state)`` when the deadline has passed, otherwise
    the no-op outcome together with the unchanged ``state``.
    """
    if state.state_version != expected_version:
        return AutoAdvanceOutcome.STALE, state
    if state.status != SessionStatus.RUNNING:
        return AutoAdvanceOutcome.NOT_RUNNING, state
    deadline = state.active_deadline
    if deadline is None:
        return AutoAdvanceOutcome.UNTIMED, state
    if now < deadline:
        return AutoAdvanceOutcome.NOT_DUE, state
    return AutoAdvanceOutcome.ADVANCED, expire(state, now)


def invariant_violations(state: SessionState) -> list[str]:
    """List every global invariant the state breaks (empty when consistent)."""
    problems: list[str] = []
    blocks = state.template_snapshot.blocks
    if not 0 <= state.current_block_index < len(blocks):
        return [f"current_block_index {state.current_block_index} out of range"]

    block = blocks[state.current_block_index]
    if state.follows_steps:
        if state.current_step_index is None or not 0 <= state.current_step_index < len(block.steps):
            problems.append(f"current_step_index {state.current_step_index} invalid for follow_steps")
    elif state.current_step_index is not None:
        problems.append("current_step_index must be null outside follow_steps")

    if state.state_version < 1:
        problems.append("state_version must start at 1")

    if state.status == SessionStatus.RUNNING:
        if state.remaining_ms is not None:
            problems.append("remaining_ms must be null while running")
        if state.follows_steps and state.block_end_time is not None:
            problems.append("block_end_time set in follow_steps mode")
        if not state.follows_steps and state.step_end_time is not None:
            problems.append("step_end_time set outside follow_steps mode")
    elif state.status == SessionStatus.PAUSED:
        if state.step_end_time is not None or state.block_end_time is not None:
            problems.append("deadlines must be null while paused")
        if state.remaining_ms is None or state.remaining_ms < 0:
            problems.append("remaining_ms must be >= 0 while paused")
    elif any(v is not None for v in (state.step_end_time, state.block_end_time, state.remaining_ms)):
        problems.append(f"timer fields must be null when {state.status.value}")
    return problems
