"""Template provider for session start.

Templates are owned by the editor/library side of the product; the session
core only needs to look one up by id. Global demo templates have no gym.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from core.models import WorkoutTemplate
from core.services.session_errors import TemplateNotFound

MINUTE_MS = 60 * 1000
SECOND_MS = 1000


class TemplateProvider(ABC):
    @abstractmethod
    def get_template(self, template_id: str, gym_slug: str | None = None) -> WorkoutTemplate:
        """Return a template visible to ``gym_slug`` or raise ``TemplateNotFound``."""


class SqlTemplateProvider(TemplateProvider):
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_template(self, template_id: str, gym_slug: str | None = None) -> WorkoutTemplate:
        stmt = select(WorkoutTemplate).where(WorkoutTemplate.id == template_id)
        if gym_slug is not None:
            stmt = stmt.where(or_(WorkoutTemplate.gym_slug == gym_slug, WorkoutTemplate.gym_slug.is_(None)))
        template = self.db.execute(stmt).scalar_one_or_none()
        if template is None:
            raise TemplateNotFound(f"Template {template_id} not found")
        return template


def _timed(title: str, ms: int, exercise_id: str | None = None) -> dict[str, Any]:
    step: dict[str, Any] = {"title": title, "step_kind": "time", "duration": ms}
    if exercise_id:
        step["exercise_id"] = exercise_id
    return step


def _reps(title: str, reps: int, exercise_id: str | None = None) -> dict[str, Any]:
    step: dict[str, Any] = {"title": title, "step_kind": "reps", "reps": reps}
    if exercise_id:
        step["exercise_id"] = exercise_id
    return step


# Seeded as global demo templates by db/seed.py.
BUILTIN_TEMPLATES: list[dict[str, Any]] = [
    {
        "id": "warmup-strength",
        "name": "Warm-up + Strength",
        "description": "Standard warm-up followed by squat sets",
        "blocks": [
            {
                "name": "Warm-up",
                "steps": [
                    _timed("Easy jog", 5 * MINUTE_MS),
                    _timed("Dynamic stretching", 3 * MINUTE_MS),
                    _timed("Activation", 2 * MINUTE_MS),
                ],
            },
            {
                "name": "Strength",
                "steps": [
                    _timed("Squats", 45 * SECOND_MS, "squat"),
                    _timed("Rest", 15 * SECOND_MS),
                    _timed("Squats", 45 * SECOND_MS, "squat"),
                    _timed("Rest", 15 * SECOND_MS),
                    _timed("Squats", 45 * SECOND_MS, "squat"),
                    _timed("Rest", 15 * SECOND_MS),
                ],
            },
            {
                "name": "Cool-down",
                "steps": [_timed("Stretching", 5 * MINUTE_MS)],
            },
        ],
    },
    {
        "id": "hiit-cardio",
        "name": "HIIT Cardio",
        "description": "High-intensity interval training",
        "blocks": [
            {
                "name": "Warm-up",
                "steps": [_timed("Easy jog", 3 * MINUTE_MS), _timed("Dynamic movement", 2 * MINUTE_MS)],
            },
            {
                "name": "HIIT intervals",
                "steps": [
                    step
                    for _ in range(5)
                    for step in (_timed("Sprint", 30 * SECOND_MS, "sprint"), _timed("Rest", 30 * SECOND_MS))
                ],
            },
            {
                "name": "Cool-down",
                "steps": [_timed("Easy jog", 3 * MINUTE_MS), _timed("Stretching", 5 * MINUTE_MS)],
            },
        ],
    },
    {
        "id": "amrap-emom-finisher",
        "name": "AMRAP + EMOM Finisher",
        "description": "Coached intro, a 12 minute AMRAP and a 10 minute EMOM",
        "blocks": [
            {
                "name": "Briefing",
                "steps": [{"title": "Coach briefing", "step_kind": "note", "description": "Explain movements and scaling"}],
            },
            {
                "name": "AMRAP 12",
                "block_mode": "amrap",
                "block_duration_seconds": 12 * 60,
                "steps": [_reps("Burpees", 10, "burpee"), _reps("Air squats", 15, "air-squat"), _reps("Sit-ups", 20, "sit-up")],
            },
            {
                "name": "EMOM 10",
                "block_mode": "emom",
                "block_duration_seconds": 10 * 60,
                "steps": [_reps("Kettlebell swings", 12, "kb-swing")],
            },
            {
                "name": "Back squat 5x5",
                "block_mode": "strength_sets",
                "block_sets": 5,
                "block_rest_seconds": 120,
                "steps": [{"title": "Back squat", "step_kind": "load", "reps": 5, "exercise_id": "back-squat"}],
            },
        ],
    },
]
