from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Optional

from fastapi import Request

from core.db import session_scope
from core.services.session_operations import Clock, SessionService, utcnow
from core.services.session_store import SqlSessionStore
from core.services.templates import SqlTemplateProvider


def get_clock(request: Request) -> Clock:
    return getattr(request.app.state, "clock", utcnow)


@contextmanager
def session_service(clock: Clock = utcnow, gym_slug: Optional[str] = None) -> Iterator[SessionService]:
    """One unit of work: the transaction commits when the block exits cleanly."""
    with session_scope() as db:
        yield SessionService(SqlSessionStore(db), SqlTemplateProvider(db), clock=clock, gym_slug=gym_slug)
