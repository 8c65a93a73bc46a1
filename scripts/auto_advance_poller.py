"""Coach-side auto-advance poller.

Watches the gym's current session and, once the active deadline has passed,
asks the server to advance it with the version it observed. Any number of
pollers may run for the same gym; the server's conditional write makes sure
only one of them moves the session per deadline.

Usage:
    COACH_TOKEN=... python -m scripts.auto_advance_poller
"""
from __future__ import annotations

import logging
import os
import time
from datetime import datetime, timezone
from typing import Any

import httpx

from api.observability import configure_logging
from core.config import get_settings

logger = logging.getLogger(__name__)


def _parse_time(raw: str | None) -> datetime | None:
    if not raw:
        return None
    parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def deadline_of(session: dict[str, Any]) -> datetime | None:
    if session.get("view_mode") == "follow_steps":
        return _parse_time(session.get("step_end_time"))
    return _parse_time(session.get("block_end_time"))


def is_due(session: dict[str, Any] | None, now: datetime) -> bool:
    if not session or session.get("status") != "running":
        return False
    deadline = deadline_of(session)
    return deadline is not None and now >= deadline


def poll_once(client: httpx.Client, now: datetime | None = None) -> str | None:
    """One observation cycle. Returns the tick outcome, or None when no tick was sent."""
    resp = client.get("/api/v1/coach/sessions/current")
    resp.raise_for_status()
    session = resp.json().get("session")
    if not is_due(session, now or datetime.now(timezone.utc)):
        return None
    tick = client.post(
        f"/api/v1/coach/sessions/{session['id']}/tick",
        json={"expected_version": session["state_version"]},
    )
    tick.raise_for_status()
    outcome = tick.json()["outcome"]
    logger.info(
        "auto_advance_tick",
        extra={"session_id": session["id"], "expected_version": session["state_version"], "outcome": outcome},
    )
    return outcome


def main() -> int:
    settings = get_settings()
    configure_logging(settings.log_level)
    token = os.getenv("COACH_TOKEN")
    if not token:
        print("COACH_TOKEN is required")
        return 1
    interval = max(settings.auto_advance_poll_ms, 100) / 1000
    with httpx.Client(
        base_url=settings.api_base_url,
        headers={"Authorization": f"Bearer {token}"},
        timeout=10,
    ) as client:
        while True:
            try:
                poll_once(client)
            except httpx.HTTPError as exc:
                logger.warning("auto_advance_poll_failed", extra={"error": str(exc)})
            time.sleep(interval)


if __name__ == "__main__":
    raise SystemExit(main())
