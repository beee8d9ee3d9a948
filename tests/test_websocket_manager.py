import uuid

import pytest

from conftest import FakeWebSocket
from supportdesk.core.websocket import ConnectionManager, SessionState

SESSION = "5b7a3c2e-1d4f-4a6b-9c8d-0e1f2a3b4c5d"


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.mark.asyncio
async def test_session_state_follows_connect_bind_disconnect():
    manager = ConnectionManager()
    ws = FakeWebSocket()
    ticket_id = uuid.uuid4()

    assert manager.session_state(SESSION) == SessionState.DISCONNECTED
    await manager.connect(ws, SESSION)
    assert ws.accepted
    assert manager.session_state(SESSION) == SessionState.CONNECTED

    await manager.bind(SESSION, ticket_id)
    assert manager.session_state(SESSION) == SessionState.LINKED
    assert manager.get_ticket_id(SESSION) == ticket_id

    await manager.disconnect(ws, SESSION)
    assert manager.session_state(SESSION) == SessionState.DISCONNECTED
    assert manager.get_ticket_id(SESSION) is None


@pytest.mark.asyncio
async def test_send_to_ticket_reaches_every_tab_of_bound_sessions():
    manager = ConnectionManager()
    ticket_id = uuid.uuid4()
    tab_one, tab_two, stranger = FakeWebSocket(), FakeWebSocket(), FakeWebSocket()
    await manager.connect(tab_one, SESSION)
    await manager.connect(tab_two, SESSION)
    await manager.connect(stranger, "other-session")
    await manager.bind(SESSION, ticket_id)

    delivered = await manager.send_to_ticket(ticket_id, "status", {"status": "IN_PROGRESS"})

    assert delivered == 2
    assert tab_one.sent == [{"type": "status", "data": {"status": "IN_PROGRESS"}}]
    assert tab_two.sent == tab_one.sent
    assert stranger.sent == []


@pytest.mark.asyncio
async def test_broken_socket_is_dropped_on_send():
    manager = ConnectionManager()
    healthy, broken = FakeWebSocket(), FakeWebSocket()
    broken.broken = True
    await manager.connect(healthy, SESSION)
    await manager.connect(broken, SESSION)

    assert await manager.send_to_session(SESSION, "ping", {}) == 1
    assert manager.get_connected_count(SESSION) == 1


@pytest.mark.asyncio
async def test_send_without_sockets_delivers_nothing():
    manager = ConnectionManager()
    assert await manager.send_to_session(SESSION, "message", {"text": "hi"}) == 0
    assert await manager.send_to_ticket(uuid.uuid4(), "message", {"text": "hi"}) == 0


@pytest.mark.asyncio
async def test_sweep_closes_silent_sockets_only():
    clock = FakeClock()
    manager = ConnectionManager(clock=clock)
    silent, chatty = FakeWebSocket(), FakeWebSocket()
    await manager.connect(silent, SESSION)
    await manager.connect(chatty, "other-session")

    clock.now += 200
    manager.touch(chatty)
    clock.now += 200

    assert await manager.sweep_inactive(300) == 1
    assert silent.closed_code == 1001
    assert chatty.closed_code is None
    assert manager.get_total_connections() == 1


@pytest.mark.asyncio
async def test_ping_all_sends_ping_frames():
    manager = ConnectionManager()
    ws = FakeWebSocket()
    await manager.connect(ws, SESSION)

    assert await manager.ping_all() == 1
    assert ws.frames("ping") == [{}]
