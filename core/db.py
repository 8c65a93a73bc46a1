from __future__ import annotations

import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from core.config import get_settings

SLOW_QUERY_MS = 250.0
_SAMPLE_WINDOW = 1000


@dataclass
class QueryStats:
    total: int = 0
    slow: int = 0
    p50_ms: float = 0.0
    p95_ms: float = 0.0


_query_samples: deque[float] = deque(maxlen=_SAMPLE_WINDOW)
_samples_lock = threading.Lock()
_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def _time_queries(engine: Engine) -> None:
    @event.listens_for(engine, "before_cursor_execute")
    def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        context._query_start_time = time.perf_counter()

    @event.listens_for(engine, "after_cursor_execute")
    def after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        elapsed_ms = (time.perf_counter() - context._query_start_time) * 1000
        with _samples_lock:
            _query_samples.append(elapsed_ms)


def _configure_sqlite(engine: Engine) -> None:
    # Concurrent deadline checks write the same row; wait for the lock instead of failing.
    @event.listens_for(engine, "connect")
    def set_busy_timeout(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA busy_timeout = 5000")
        cursor.close()


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        url = get_settings().database_url
        is_sqlite = url.startswith("sqlite")
        _engine = create_engine(
            url,
            pool_pre_ping=True,
            connect_args={"check_same_thread": False} if is_sqlite else {},
        )
        _time_queries(_engine)
        if is_sqlite:
            _configure_sqlite(_engine)
    return _engine


def get_session_factory() -> sessionmaker:
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)
    return _SessionLocal


def reset_engine() -> None:
    """Drop the cached engine so the next call picks up a new DATABASE_URL."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None
    with _samples_lock:
        _query_samples.clear()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Unit of work: commit on clean exit, roll back on any exception."""
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_query_stats() -> QueryStats:
    with _samples_lock:
        ordered = sorted(_query_samples)
    if not ordered:
        return QueryStats()
    return QueryStats(
        total=len(ordered),
        slow=sum(1 for ms in ordered if ms > SLOW_QUERY_MS),
        p50_ms=round(ordered[int(len(ordered) * 0.5)], 2),
        p95_ms=round(ordered[int(len(ordered) * 0.95)], 2),
    )
