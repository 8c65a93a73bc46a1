"""Tests for the pure session transition engine."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from core.services import session_engine as engine
from core.services.session_engine import AutoAdvanceOutcome, SessionStatus
from core.services.session_errors import (
    BeforeFirstStep,
    BeyondFirstBlock,
    BeyondLastBlock,
    EmptyBlock,
    EmptyFirstBlock,
    MissingRemaining,
    NotApplicable,
    NotPaused,
    NotRunning,
    SessionNotActive,
)
from core.services.snapshot import BlockMode, resolve_snapshot

T0 = datetime(2026, 10, 18, 9, 0, 0, tzinfo=timezone.utc)


def _ms(n: int) -> timedelta:
    return timedelta(milliseconds=n)


def _scenario_snapshot():
    return resolve_snapshot(
        {
            "blocks": [
                {
                    "name": "A",
                    "steps": [
                        {"title": "A1", "step_kind": "time", "duration": 1000},
                        {"title": "A2", "step_kind": "time", "duration": 2000},
                    ],
                },
                {"name": "B", "steps": [{"title": "B1", "step_kind": "time", "duration": 500}]},
            ]
        }
    )


def _mixed_snapshot():
    return resolve_snapshot(
        {
            "blocks": [
                {
                    "name": "Warm-up",
                    "steps": [
                        {"title": "Jog", "step_kind": "time", "duration": 60000},
                        {"title": "Brief", "step_kind": "note"},
                    ],
                },
                {
                    "name": "AMRAP",
                    "block_mode": "amrap",
                    "block_duration_seconds": 300,
                    "steps": [{"title": "Burpees", "step_kind": "reps", "reps": 10}],
                },
                {"name": "Strength", "block_mode": "strength_sets", "block_sets": 5},
                {"name": "Cool-down", "steps": [{"title": "Stretch", "step_kind": "time", "duration": 30000}]},
            ]
        }
    )


def _start(snapshot=None, now=T0):
    return engine.start_session(snapshot or _scenario_snapshot(), gym_slug="iron-temple", now=now, session_id="s1")


# -- start --


def test_start_follow_steps_sets_first_step_deadline():
    s = _start()
    assert s.status == SessionStatus.RUNNING
    assert s.state_version == 1
    assert (s.current_block_index, s.current_step_index) == (0, 0)
    assert s.view_mode == BlockMode.FOLLOW_STEPS
    assert s.step_end_time == T0 + _ms(1000)
    assert s.block_end_time is None
    assert s.remaining_ms is None
    assert engine.invariant_violations(s) == []


def test_start_block_mode_sets_block_deadline():
    snap = resolve_snapshot({"blocks": [{"name": "EMOM", "block_mode": "emom", "block_duration_seconds": 600}]})
    s = _start(snap)
    assert s.view_mode == BlockMode.EMOM
    assert s.current_step_index is None
    assert s.step_end_time is None
    assert s.block_end_time == T0 + timedelta(seconds=600)


def test_start_untimed_first_step_has_no_deadline():
    snap = resolve_snapshot({"blocks": [{"name": "Intro", "steps": [{"title": "Welcome"}]}]})
    s = _start(snap)
    assert s.step_end_time is None and s.block_end_time is None
    assert engine.invariant_violations(s) == []


def test_start_rejects_empty_follow_steps_first_block():
    snap = resolve_snapshot({"blocks": [{"name": "Empty", "steps": []}]})
    with pytest.raises(EmptyFirstBlock):
        _start(snap)


def test_start_generates_id_when_missing():
    a = engine.start_session(_scenario_snapshot(), gym_slug="g", now=T0)
    b = engine.start_session(_scenario_snapshot(), gym_slug="g", now=T0)
    assert a.id and b.id and a.id != b.id


# -- pause / resume --


def test_pause_freezes_remaining_time():
    s = _start()
    paused = engine.pause(s, T0 + _ms(400))
    assert paused.status == SessionStatus.PAUSED
    assert paused.remaining_ms == 600
    assert paused.step_end_time is None and paused.block_end_time is None
    assert paused.state_version == 2
    assert engine.invariant_violations(paused) == []


def test_pause_after_deadline_clamps_to_zero():
    paused = engine.pause(_start(), T0 + _ms(5000))
    assert paused.remaining_ms == 0


def test_pause_untimed_step_stores_zero():
    snap = resolve_snapshot({"blocks": [{"name": "Intro", "steps": [{"title": "Welcome"}]}]})
    paused = engine.pause(_start(snap), T0 + _ms(10))
    assert paused.remaining_ms == 0


def test_pause_requires_running():
    paused = engine.pause(_start(), T0)
    with pytest.raises(NotRunning):
        engine.pause(paused, T0)


def test_resume_round_trip_keeps_position_and_shifts_deadline():
    s = _start()
    paused = engine.pause(s, T0 + _ms(300))
    resume_at = T0 + _ms(60000)
    resumed = engine.resume(paused, resume_at)
    assert resumed.status == SessionStatus.RUNNING
    assert (resumed.current_block_index, resumed.current_step_index) == (s.current_block_index, s.current_step_index)
    assert resumed.step_end_time == resume_at + _ms(700)
    assert resumed.remaining_ms is None
    assert resumed.state_version == 3


def test_resume_block_mode_sets_block_deadline():
    snap = resolve_snapshot({"blocks": [{"name": "AMRAP", "block_mode": "amrap", "block_duration_seconds": 60}]})
    paused = engine.pause(_start(snap), T0 + timedelta(seconds=20))
    assert paused.remaining_ms == 40000
    resumed = engine.resume(paused, T0 + timedelta(seconds=100))
    assert resumed.block_end_time == T0 + timedelta(seconds=140)
    assert resumed.step_end_time is None


def test_resume_untimed_step_keeps_no_deadline():
    snap = resolve_snapshot({"blocks": [{"name": "Intro", "steps": [{"title": "Welcome"}]}]})
    paused = engine.pause(_start(snap), T0)
    resumed = engine.resume(paused, T0 + _ms(50))
    assert resumed.step_end_time is None and resumed.block_end_time is None


def test_resume_requires_paused():
    with pytest.raises(NotPaused):
        engine.resume(_start(), T0)


def test_resume_requires_remaining():
    from dataclasses import replace

    broken = replace(engine.pause(_start(), T0), remaining_ms=None)
    with pytest.raises(MissingRemaining):
        engine.resume(broken, T0)


# -- stop --


def test_stop_clears_timers_from_any_active_state():
    s = _start()
    stopped = engine.stop(s, T0 + _ms(10))
    assert stopped.status == SessionStatus.STOPPED
    assert stopped.state_version == 2
    assert (stopped.step_end_time, stopped.block_end_time, stopped.remaining_ms) == (None, None, None)

    paused_then_stopped = engine.stop(engine.pause(s, T0), T0)
    assert paused_then_stopped.remaining_ms is None
    assert engine.invariant_violations(paused_then_stopped) == []


def test_stop_on_stopped_session_is_a_no_op():
    stopped = engine.stop(_start(), T0)
    again = engine.stop(stopped, T0 + _ms(100))
    assert again is stopped
    assert again.state_version == 2


def test_stop_on_ended_session_moves_to_stopped():
    snap = resolve_snapshot({"blocks": [{"name": "Only", "steps": [{"title": "x"}]}]})
    ended = engine.advance_step(_start(snap), 1, T0)
    stopped = engine.stop(ended, T0)
    assert stopped.status == SessionStatus.STOPPED
    assert stopped.state_version == ended.state_version + 1


# -- step navigation --


def test_next_step_within_block_restarts_duration():
    moved = engine.advance_step(_start(), 1, T0 + _ms(200))
    assert (moved.current_block_index, moved.current_step_index) == (0, 1)
    assert moved.step_end_time == T0 + _ms(2200)
    assert moved.state_version == 2


def test_next_step_crosses_block_boundary():
    s = engine.advance_step(_start(), 1, T0)
    s = engine.advance_step(s, 1, T0 + _ms(10))
    assert (s.current_block_index, s.current_step_index) == (1, 0)
    assert s.step_end_time == T0 + _ms(510)


def test_next_step_from_last_step_ends_session():
    s = _start()
    for _ in range(2):
        s = engine.advance_step(s, 1, T0)
    ended = engine.advance_step(s, 1, T0 + _ms(5))
    assert ended.status == SessionStatus.ENDED
    assert (ended.step_end_time, ended.block_end_time, ended.remaining_ms) == (None, None, None)
    assert (ended.current_block_index, ended.current_step_index) == (1, 0)
    assert ended.state_version == s.state_version + 1
    assert engine.invariant_violations(ended) == []


def test_prev_step_before_first_step_fails_and_leaves_state():
    s = _start()
    with pytest.raises(BeforeFirstStep):
        engine.advance_step(s, -1, T0)
    assert s.state_version == 1
    assert (s.current_block_index, s.current_step_index) == (0, 0)


def test_prev_step_lands_on_last_step_of_previous_block_with_full_duration():
    s = engine.advance_block(_start(), 1, T0)
    back = engine.advance_step(s, -1, T0 + _ms(100))
    assert (back.current_block_index, back.current_step_index) == (0, 1)
    assert back.step_end_time == T0 + _ms(2100)


def test_step_navigation_while_paused_restarts_remaining():
    paused = engine.pause(_start(), T0 + _ms(900))
    moved = engine.advance_step(paused, 1, T0 + _ms(1000))
    assert moved.status == SessionStatus.PAUSED
    assert moved.remaining_ms == 2000
    assert moved.step_end_time is None
    assert engine.invariant_violations(moved) == []


def test_step_navigation_onto_untimed_step_clears_stale_deadline():
    s = _start(_mixed_snapshot())
    moved = engine.advance_step(s, 1, T0)
    assert moved.current_step_index == 1
    assert moved.step_end_time is None


def test_paused_step_navigation_onto_untimed_step_keeps_zero_remaining():
    paused = engine.pause(_start(_mixed_snapshot()), T0)
    moved = engine.advance_step(paused, 1, T0)
    assert moved.remaining_ms == 0


def test_step_navigation_into_block_mode_adopts_block_mode():
    s = engine.advance_step(_start(_mixed_snapshot()), 1, T0)
    landed = engine.advance_step(s, 1, T0 + _ms(10))
    assert landed.view_mode == BlockMode.AMRAP
    assert landed.current_block_index == 1
    assert landed.current_step_index is None
    assert landed.block_end_time == T0 + _ms(10) + timedelta(seconds=300)
    assert landed.step_end_time is None
    assert engine.invariant_violations(landed) == []


def test_step_navigation_rejected_outside_follow_steps():
    s = engine.advance_block(_start(_mixed_snapshot()), 1, T0)
    with pytest.raises(NotApplicable):
        engine.advance_step(s, 1, T0)


def test_navigation_rejected_on_terminal_sessions():
    stopped = engine.stop(_start(), T0)
    with pytest.raises(SessionNotActive):
        engine.advance_step(stopped, 1, T0)
    with pytest.raises(SessionNotActive):
        engine.advance_block(stopped, 1, T0)


def test_invalid_direction_rejected():
    with pytest.raises(ValueError):
        engine.advance_step(_start(), 2, T0)


# -- block navigation --


def test_next_block_lands_on_first_step():
    s = engine.advance_step(_start(), 1, T0)
    moved = engine.advance_block(s, 1, T0 + _ms(50))
    assert (moved.current_block_index, moved.current_step_index) == (1, 0)
    assert moved.step_end_time == T0 + _ms(550)


def test_prev_block_lands_on_first_step_not_last():
    s = engine.advance_block(_start(), 1, T0)
    back = engine.advance_block(s, -1, T0)
    assert (back.current_block_index, back.current_step_index) == (0, 0)


def test_block_bounds():
    s = _start()
    with pytest.raises(BeyondFirstBlock):
        engine.advance_block(s, -1, T0)
    last = engine.advance_block(s, 1, T0)
    with pytest.raises(BeyondLastBlock):
        engine.advance_block(last, 1, T0)
    assert last.status == SessionStatus.RUNNING


def test_block_navigation_into_untimed_block_mode():
    s = engine.advance_block(engine.advance_block(_start(_mixed_snapshot()), 1, T0), 1, T0)
    assert s.view_mode == BlockMode.STRENGTH_SETS
    assert s.block_end_time is None and s.step_end_time is None
    assert s.current_step_index is None


def test_block_navigation_while_paused_sets_block_remaining():
    paused = engine.pause(_start(_mixed_snapshot()), T0)
    moved = engine.advance_block(paused, 1, T0)
    assert moved.status == SessionStatus.PAUSED
    assert moved.remaining_ms == 300000
    assert moved.block_end_time is None


def test_navigation_onto_empty_follow_steps_block_fails():
    snap = resolve_snapshot({"blocks": [{"name": "A", "steps": [{"title": "a"}]}, {"name": "Empty"}]})
    s = _start(snap)
    with pytest.raises(EmptyBlock):
        engine.advance_block(s, 1, T0)
    with pytest.raises(EmptyBlock):
        engine.advance_step(s, 1, T0)


# -- auto-advance --


def test_auto_advance_scenario():
    s = _start()
    assert s.step_end_time == T0 + _ms(1000)

    outcome, s1 = engine.auto_advance(s, 1, T0 + _ms(1100))
    assert outcome == AutoAdvanceOutcome.ADVANCED
    assert (s1.current_block_index, s1.current_step_index) == (0, 1)
    assert s1.step_end_time == T0 + _ms(1100) + _ms(2000)

    outcome, same = engine.auto_advance(s1, 1, T0 + _ms(1150))
    assert outcome == AutoAdvanceOutcome.STALE
    assert same is s1

    outcome, s2 = engine.auto_advance(s1, s1.state_version, s1.step_end_time)
    assert outcome == AutoAdvanceOutcome.ADVANCED
    assert (s2.current_block_index, s2.current_step_index) == (1, 0)

    outcome, s3 = engine.auto_advance(s2, s2.state_version, s2.step_end_time + _ms(1))
    assert outcome == AutoAdvanceOutcome.ADVANCED
    assert s3.status == SessionStatus.ENDED


def test_auto_advance_not_due_and_untimed():
    s = _start()
    assert engine.auto_advance(s, 1, T0 + _ms(999))[0] == AutoAdvanceOutcome.NOT_DUE

    snap = resolve_snapshot({"blocks": [{"name": "Intro", "steps": [{"title": "Welcome"}]}]})
    untimed = _start(snap)
    assert engine.auto_advance(untimed, 1, T0 + timedelta(hours=1))[0] == AutoAdvanceOutcome.UNTIMED


def test_auto_advance_ignores_paused_session():
    paused = engine.pause(_start(), T0)
    outcome, same = engine.auto_advance(paused, paused.state_version, T0 + timedelta(hours=1))
    assert outcome == AutoAdvanceOutcome.NOT_RUNNING
    assert same is paused


def test_auto_advance_in_block_mode_moves_to_next_block_then_ends():
    snap = resolve_snapshot(
        {
            "blocks": [
                {"name": "AMRAP", "block_mode": "amrap", "block_duration_seconds": 60},
                {"name": "EMOM", "block_mode": "emom", "block_duration_seconds": 120},
            ]
        }
    )
    s = _start(snap)
    outcome, s1 = engine.auto_advance(s, 1, T0 + timedelta(seconds=61))
    assert outcome == AutoAdvanceOutcome.ADVANCED
    assert s1.current_block_index == 1
    assert s1.view_mode == BlockMode.EMOM
    assert s1.block_end_time == T0 + timedelta(seconds=181)

    outcome, s2 = engine.auto_advance(s1, s1.state_version, T0 + timedelta(seconds=200))
    assert outcome == AutoAdvanceOutcome.ADVANCED
    assert s2.status == SessionStatus.ENDED


def test_every_transition_bumps_version_by_one():
    s = _start(_mixed_snapshot())
    steps = [
        lambda x: engine.pause(x, T0),
        lambda x: engine.resume(x, T0),
        lambda x: engine.advance_step(x, 1, T0),
        lambda x: engine.advance_step(x, 1, T0),
        lambda x: engine.advance_block(x, 1, T0),
        lambda x: engine.advance_block(x, -1, T0),
        lambda x: engine.stop(x, T0),
    ]
    for step in steps:
        nxt = step(s)
        assert nxt.state_version == s.state_version + 1
        assert engine.invariant_violations(nxt) == []
        s = nxt


def test_invariant_checker_flags_inconsistent_state():
    from dataclasses import replace

    s = _start()
    assert engine.invariant_violations(replace(s, remaining_ms=5))
    assert engine.invariant_violations(replace(s, current_step_index=None))
    assert engine.invariant_violations(replace(s, current_block_index=9))
