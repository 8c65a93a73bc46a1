from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from core.services.observation import DisplayFrame
from core.services.session_engine import SessionState
from core.services.session_operations import TickResult

BlockModeLiteral = Literal["follow_steps", "amrap", "emom", "for_time", "strength_sets"]
StepKindLiteral = Literal["note", "reps", "time", "load"]


class StepIn(BaseModel):
    title: str = ""
    step_kind: StepKindLiteral = "note"
    duration: Optional[int] = Field(default=None, ge=0, description="Milliseconds, used when step_kind=time")
    reps: Optional[int] = Field(default=None, ge=0)
    exercise_id: Optional[str] = None
    description: Optional[str] = None


class BlockIn(BaseModel):
    name: str = ""
    block_mode: BlockModeLiteral = "follow_steps"
    block_duration_seconds: Optional[int] = Field(default=None, ge=0)
    block_sets: Optional[int] = Field(default=None, ge=0)
    block_rest_seconds: Optional[int] = Field(default=None, ge=0)
    steps: list[StepIn] = Field(default_factory=list)


class TemplateIn(BaseModel):
    name: Optional[str] = None
    blocks: list[BlockIn] = Field(default_factory=list)


class StartSessionIn(BaseModel):
    template_id: Optional[str] = None
    template: Optional[TemplateIn] = None

    @model_validator(mode="after")
    def _exactly_one_source(self):
        if (self.template_id is None) == (self.template is None):
            raise ValueError("Provide exactly one of template_id or template")
        return self


class VersionIn(BaseModel):
    expected_version: Optional[int] = Field(default=None, ge=1)


class TickIn(BaseModel):
    expected_version: int = Field(ge=1)


class StepOut(BaseModel):
    title: str
    step_kind: StepKindLiteral
    duration: Optional[int] = None
    reps: Optional[int] = None
    exercise_id: Optional[str] = None
    description: Optional[str] = None


class BlockOut(BaseModel):
    name: str
    block_mode: BlockModeLiteral
    block_duration_seconds: Optional[int] = None
    block_sets: Optional[int] = None
    block_rest_seconds: Optional[int] = None
    steps: list[StepOut]


class TemplateSnapshotOut(BaseModel):
    blocks: list[BlockOut]


class SessionOut(BaseModel):
    id: str
    gym_slug: str
    status: Literal["running", "paused", "stopped", "ended"]
    view_mode: BlockModeLiteral
    current_block_index: int
    current_step_index: Optional[int] = None
    step_end_time: Optional[datetime] = None
    block_end_time: Optional[datetime] = None
    remaining_ms: Optional[int] = None
    state_version: int
    template_snapshot: TemplateSnapshotOut
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_state(cls, state: SessionState) -> "SessionOut":
        return cls(
            id=state.id,
            gym_slug=state.gym_slug,
            status=state.status.value,
            view_mode=state.view_mode.value,
            current_block_index=state.current_block_index,
            current_step_index=state.current_step_index,
            step_end_time=state.step_end_time,
            block_end_time=state.block_end_time,
            remaining_ms=state.remaining_ms,
            state_version=state.state_version,
            template_snapshot=TemplateSnapshotOut.model_validate(state.template_snapshot.to_dict()),
            created_at=state.created_at,
            updated_at=state.updated_at,
        )

    def push_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class CurrentSessionOut(BaseModel):
    session: Optional[SessionOut] = None


class TickOut(BaseModel):
    outcome: Literal["advanced", "stale", "not_running", "untimed", "not_due"]
    session: Optional[SessionOut] = None

    @classmethod
    def from_result(cls, result: TickResult) -> "TickOut":
        return cls(
            outcome=result.outcome.value,
            session=SessionOut.from_state(result.session) if result.session is not None else None,
        )


class SweepOut(BaseModel):
    gym_slug: str
    advanced: list[SessionOut]


class StepPreviewOut(BaseModel):
    block_name: str
    step: StepOut


class DisplayFrameOut(BaseModel):
    session_id: Optional[str] = None
    state_version: Optional[int] = None
    status: Optional[str] = None
    view_mode: Optional[str] = None
    block_name: Optional[str] = None
    block_number: Optional[int] = None
    block_count: Optional[int] = None
    step: Optional[StepOut] = None
    block_steps: list[StepOut] = Field(default_factory=list)
    next_step: Optional[StepPreviewOut] = None
    countdown_ms: Optional[int] = None
    countdown: str = "--:--"
    deadline: Optional[datetime] = None
    server_time: datetime

    @classmethod
    def from_frame(cls, frame: DisplayFrame) -> "DisplayFrameOut":
        return cls(
            session_id=frame.session_id,
            state_version=frame.state_version,
            status=frame.status.value,
            view_mode=frame.view_mode,
            block_name=frame.block_name,
            block_number=frame.block_position[0],
            block_count=frame.block_position[1],
            step=StepOut.model_validate(frame.step.to_dict()) if frame.step else None,
            block_steps=[StepOut.model_validate(s.to_dict()) for s in frame.block_steps],
            next_step=(
                StepPreviewOut(block_name=frame.next_step.block_name, step=StepOut.model_validate(frame.next_step.step.to_dict()))
                if frame.next_step
                else None
            ),
            countdown_ms=frame.countdown_ms,
            countdown=frame.countdown,
            deadline=frame.deadline,
            server_time=frame.server_time,
        )


class HealthOut(BaseModel):
    status: str
    queries: int
    slow_queries: int
