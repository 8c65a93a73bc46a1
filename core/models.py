from __future__ import annotations

import datetime as dt
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class Base(DeclarativeBase):
    pass


class WorkoutTemplate(Base):
    __tablename__ = "workout_templates"
    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=lambda: uuid4().hex)
    gym_slug: Mapped[str | None] = mapped_column(String(80), index=True)
    name: Mapped[str] = mapped_column(String(180))
    description: Mapped[str | None] = mapped_column(Text)
    is_demo: Mapped[bool] = mapped_column(Boolean, default=False)
    blocks: Mapped[list[dict[str, Any]]] = mapped_column(JSON)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class GymSession(Base):
    __tablename__ = "gym_sessions"
    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    gym_slug: Mapped[str] = mapped_column(String(80), index=True)
    status: Mapped[str] = mapped_column(String(16))
    view_mode: Mapped[str] = mapped_column(String(20), default="follow_steps")
    current_block_index: Mapped[int] = mapped_column(Integer, default=0)
    current_step_index: Mapped[int | None] = mapped_column(Integer)
    step_end_time: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))
    block_end_time: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))
    remaining_ms: Mapped[int | None] = mapped_column(Integer)
    state_version: Mapped[int] = mapped_column(Integer, default=1)
    template_snapshot: Mapped[dict[str, Any]] = mapped_column(JSON)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    __table_args__ = (
        CheckConstraint("state_version >= 1", name="ck_gym_sessions_state_version"),
        CheckConstraint("remaining_ms IS NULL OR remaining_ms >= 0", name="ck_gym_sessions_remaining_ms"),
        CheckConstraint("status in ('running', 'paused', 'stopped', 'ended')", name="ck_gym_sessions_status"),
        Index("ix_gym_sessions_gym_status_created", "gym_slug", "status", "created_at"),
    )
