"""Template snapshot resolver.

Freezes a mutable template definition (ORM row, request payload or plain
mapping) into an immutable ``TemplateSnapshot`` at session start. The snapshot
is built from a deep copy of the source and stores tuples of frozen
dataclasses, so later edits to the template are never visible through it.
"""

from __future__ import annotations

from collections.abc import Mapping
from copy import deepcopy
from dataclasses import dataclass
from enum import Enum
from typing import Any

from core.services.session_errors import InvalidTemplate


class BlockMode(str, Enum):
    FOLLOW_STEPS = "follow_steps"
    AMRAP = "amrap"
    EMOM = "emom"
    FOR_TIME = "for_time"
    STRENGTH_SETS = "strength_sets"


class StepKind(str, Enum):
    NOTE = "note"
    REPS = "reps"
    TIME = "time"
    LOAD = "load"


@dataclass(frozen=True)
class StepSnapshot:
    title: str
    step_kind: StepKind = StepKind.NOTE
    duration: int | None = None  # milliseconds, only meaningful for TIME
    reps: int | None = None  # only meaningful for REPS
    exercise_id: str | None = None
    description: str | None = None

    @property
    def timed_duration_ms(self) -> int | None:
        """Full duration of the step when it runs on a timer, else None."""
        if self.step_kind == StepKind.TIME and self.duration and self.duration > 0:
            return int(self.duration)
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "step_kind": self.step_kind.value,
            "duration": self.duration,
            "reps": self.reps,
            "exercise_id": self.exercise_id,
            "description": self.description,
        }


@dataclass(frozen=True)
class BlockSnapshot:
    name: str
    block_mode: BlockMode = BlockMode.FOLLOW_STEPS
    steps: tuple[StepSnapshot, ...] = ()
    block_duration_seconds: int | None = None
    block_sets: int | None = None
    block_rest_seconds: int | None = None

    @property
    def follows_steps(self) -> bool:
        return self.block_mode == BlockMode.FOLLOW_STEPS

    @property
    def landable(self) -> bool:
        """A follow_steps block needs at least one step to stand on."""
        return bool(self.steps) or not self.follows_steps

    @property
    def timed_duration_ms(self) -> int | None:
        if self.block_duration_seconds and self.block_duration_seconds > 0:
            return int(self.block_duration_seconds) * 1000
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "block_mode": self.block_mode.value,
            "block_duration_seconds": self.block_duration_seconds,
            "block_sets": self.block_sets,
            "block_rest_seconds": self.block_rest_seconds,
            "steps": [s.to_dict() for s in self.steps],
        }


@dataclass(frozen=True)
class TemplateSnapshot:
    blocks: tuple[BlockSnapshot, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"blocks": [b.to_dict() for b in self.blocks]}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TemplateSnapshot":
        return resolve_snapshot(data)


def _optional_int(value: Any, field_name: str, where: str) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise InvalidTemplate(f"{where}: {field_name} must be a number")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidTemplate(f"{where}: {field_name} must be a number") from exc
    if number < 0:
        raise InvalidTemplate(f"{where}: {field_name} must be >= 0")
    return number


def _step_from_raw(raw: Any, where: str) -> StepSnapshot:
    if not isinstance(raw, Mapping):
        raise InvalidTemplate(f"{where}: step must be an object")
    try:
        kind = StepKind(raw.get("step_kind") or StepKind.NOTE.value)
    except ValueError as exc:
        raise InvalidTemplate(f"{where}: unknown step_kind {raw.get('step_kind')!r}") from exc
    exercise_id = raw.get("exercise_id")
    return StepSnapshot(
        title=str(raw.get("title") or ""),
        step_kind=kind,
        duration=_optional_int(raw.get("duration"), "duration", where),
        reps=_optional_int(raw.get("reps"), "reps", where),
        exercise_id=str(exercise_id) if exercise_id is not None else None,
        description=raw.get("description"),
    )


def _block_from_raw(raw: Any, index: int) -> BlockSnapshot:
    where = f"blocks[{index}]"
    if not isinstance(raw, Mapping):
        raise InvalidTemplate(f"{where}: block must be an object")
    try:
        mode = BlockMode(raw.get("block_mode") or BlockMode.FOLLOW_STEPS.value)
    except ValueError as exc:
        raise InvalidTemplate(f"{where}: unknown block_mode {raw.get('block_mode')!r}") from exc
    raw_steps = raw.get("steps") or []
    if not isinstance(raw_steps, (list, tuple)):
        raise InvalidTemplate(f"{where}: steps must be a list")
    return BlockSnapshot(
        name=str(raw.get("name") or ""),
        block_mode=mode,
        steps=tuple(_step_from_raw(s, f"{where}.steps[{i}]") for i, s in enumerate(raw_steps)),
        block_duration_seconds=_optional_int(raw.get("block_duration_seconds"), "block_duration_seconds", where),
        block_sets=_optional_int(raw.get("block_sets"), "block_sets", where),
        block_rest_seconds=_optional_int(raw.get("block_rest_seconds"), "block_rest_seconds", where),
    )


def resolve_snapshot(template: Any) -> TemplateSnapshot:
    """Freeze ``template`` into a self-contained snapshot.

    Accepts a mapping with a ``blocks`` key, any object exposing ``.blocks``
    (e.g. a ``WorkoutTemplate`` row) or an existing ``TemplateSnapshot``.
    Raises ``InvalidTemplate`` when there are no blocks or a field is malformed.
    """
    if isinstance(template, TemplateSnapshot):
        return template
    if isinstance(template, Mapping):
        blocks = template.get("blocks")
    else:
        blocks = getattr(template, "blocks", None)
    raw_blocks = deepcopy(blocks) if blocks else []
    if not isinstance(raw_blocks, (list, tuple)) or not raw_blocks:
        raise InvalidTemplate("Template must have at least one block")
    raw_blocks = [b.model_dump() if hasattr(b, "model_dump") else b for b in raw_blocks]
    return TemplateSnapshot(blocks=tuple(_block_from_raw(b, i) for i, b in enumerate(raw_blocks)))
