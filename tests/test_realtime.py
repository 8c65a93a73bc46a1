from __future__ import annotations

import asyncio
import json

from api.realtime import SESSION_UPDATED, ConnectionManager


class FakeWebSocket:
    def __init__(self, fail: bool = False) -> None:
        self.accepted = False
        self.sent: list[dict] = []
        self.fail = fail

    async def accept(self) -> None:
        self.accepted = True

    async def send_text(self, text: str) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(text))


def test_publish_running_session_to_gym_channel():
    manager = ConnectionManager()
    ws = FakeWebSocket()
    other = FakeWebSocket()

    async def scenario():
        await manager.connect("iron-temple", ws)
        await manager.connect("other-gym", other)
        return await manager.publish_session("iron-temple", {"id": "s1", "status": "running", "state_version": 2})

    assert asyncio.run(scenario()) == 1
    assert ws.accepted
    assert ws.sent == [{"event": SESSION_UPDATED, "payload": {"id": "s1", "status": "running", "state_version": 2}}]
    assert other.sent == []


def test_finished_session_published_as_no_session():
    manager = ConnectionManager()
    ws = FakeWebSocket()

    async def scenario():
        await manager.connect("iron-temple", ws)
        await manager.publish_session("iron-temple", {"id": "s1", "status": "ended", "state_version": 7})

    asyncio.run(scenario())
    assert ws.sent == [{"event": SESSION_UPDATED, "payload": None}]


def test_broken_sockets_are_dropped():
    manager = ConnectionManager()
    broken = FakeWebSocket(fail=True)

    async def scenario():
        await manager.connect("iron-temple", broken)
        return await manager.broadcast("iron-temple", SESSION_UPDATED, None)

    assert asyncio.run(scenario()) == 0
    assert manager.connections["iron-temple"].sockets == set()


def test_broadcast_to_empty_channel():
    assert asyncio.run(ConnectionManager().broadcast("nobody", SESSION_UPDATED, None)) == 0


def test_repeated_version_is_pushed_once():
    manager = ConnectionManager()
    ws = FakeWebSocket()
    running = {"id": "s1", "status": "running", "state_version": 3}

    async def scenario():
        await manager.connect("iron-temple", ws)
        first = await manager.publish_session("iron-temple", running)
        again = await manager.publish_session("iron-temple", dict(running))
        bumped = await manager.publish_session("iron-temple", {**running, "state_version": 4})
        return first, again, bumped

    assert asyncio.run(scenario()) == (1, 0, 1)
    assert [m["payload"]["state_version"] for m in ws.sent] == [3, 4]


def test_publish_without_screens_is_a_no_op():
    manager = ConnectionManager()
    assert asyncio.run(manager.publish_session("iron-temple", None)) == 0
    assert manager.connections == {}


def test_reconnected_screen_is_not_sent_a_version_it_already_has():
    manager = ConnectionManager()
    first, second = FakeWebSocket(), FakeWebSocket()
    running = {"id": "s1", "status": "running", "state_version": 5}

    async def scenario():
        await manager.connect("iron-temple", first)
        await manager.publish_session("iron-temple", running)
        manager.disconnect("iron-temple", first)
        await manager.connect("iron-temple", second)
        return await manager.publish_session("iron-temple", dict(running))

    assert asyncio.run(scenario()) == 0
    assert second.sent == []
