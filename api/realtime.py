"""Optional push delivery of session changes to display screens.

Same payload as the polling endpoint, one channel per gym. A stopped or ended
session is pushed as ``null`` ("no active session"), matching what a poll
would return. A channel remembers the last ``(id, state_version)`` it pushed
and skips repeats, so screens see each change once.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)

SESSION_UPDATED = "session.updated"
_NOTHING_PUSHED = object()


def _frame(event: str, payload: Optional[dict[str, Any]]) -> str:
    return json.dumps({"event": event, "payload": payload}, default=str)


@dataclass
class GymChannel:
    sockets: set[WebSocket] = field(default_factory=set)
    last_key: object = _NOTHING_PUSHED


class ConnectionManager:
    def __init__(self) -> None:
        self.connections: dict[str, GymChannel] = {}

    async def connect(self, gym_slug: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self.connections.setdefault(gym_slug, GymChannel()).sockets.add(websocket)

    def disconnect(self, gym_slug: str, websocket: WebSocket) -> None:
        # The channel outlives its sockets so a reconnecting screen is not sent a version it already has.
        channel = self.connections.get(gym_slug)
        if channel is not None:
            channel.sockets.discard(websocket)

    async def send(self, websocket: WebSocket, event: str, payload: Optional[dict[str, Any]]) -> None:
        await websocket.send_text(_frame(event, payload))

    async def broadcast(self, gym_slug: str, event: str, payload: Optional[dict[str, Any]]) -> int:
        channel = self.connections.get(gym_slug)
        if channel is None:
            return 0
        text = _frame(event, payload)
        delivered = 0
        for ws in list(channel.sockets):
            try:
                await ws.send_text(text)
            except Exception as exc:
                logger.debug("display_push_failed", extra={"gym_slug": gym_slug, "error": str(exc)})
                self.disconnect(gym_slug, ws)
            else:
                delivered += 1
        return delivered

    async def publish_session(self, gym_slug: str, session: Optional[dict[str, Any]]) -> int:
        """Push the gym's visible session; returns how many screens received it."""
        active = session if session is not None and session.get("status") in {"running", "paused"} else None
        key = (active["id"], active["state_version"]) if active is not None else None
        channel = self.connections.get(gym_slug)
        if channel is None or channel.last_key == key:
            return 0
        channel.last_key = key
        return await self.broadcast(gym_slug, SESSION_UPDATED, active)


manager = ConnectionManager()
