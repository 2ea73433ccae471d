"""Tests for the WebSocket connection manager and endpoint."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from starlette.websockets import WebSocketDisconnect

from appsynth.auth import create_token
from appsynth.ws_manager import MAX_CONNECTIONS_PER_USER, ConnectionManager
from tests.conftest import USER_ID


def _ws():
    ws = MagicMock()
    ws.send_text = AsyncMock()
    ws.send_json = AsyncMock()
    ws.close = AsyncMock()
    return ws


@pytest.mark.asyncio
async def test_send_to_user_reaches_every_connection():
    mgr = ConnectionManager()
    a, b = _ws(), _ws()
    await mgr.connect("u1", a)
    await mgr.connect("u1", b)

    await mgr.send_to_user("u1", {"type": "chunk_completed", "payload": {"revision": 1}})

    a.send_text.assert_awaited_once()
    b.send_text.assert_awaited_once()
    assert '"revision": 1' in a.send_text.await_args.args[0]


@pytest.mark.asyncio
async def test_failed_connection_is_pruned():
    mgr = ConnectionManager()
    good, bad = _ws(), _ws()
    bad.send_text.side_effect = RuntimeError("closed")
    await mgr.connect("u1", good)
    await mgr.connect("u1", bad)

    await mgr.send_to_user("u1", {"type": "x"})

    assert mgr.connection_count("u1") == 1


@pytest.mark.asyncio
async def test_oldest_connection_evicted_at_limit():
    mgr = ConnectionManager()
    conns = [_ws() for _ in range(MAX_CONNECTIONS_PER_USER + 1)]
    for ws in conns:
        await mgr.connect("u1", ws)
    assert mgr.connection_count("u1") == MAX_CONNECTIONS_PER_USER
    conns[0].close.assert_awaited_once()


@pytest.mark.asyncio
async def test_disconnect_forgets_user():
    mgr = ConnectionManager()
    ws = _ws()
    await mgr.connect("u1", ws)
    await mgr.disconnect("u1", ws)
    assert mgr.connection_count("u1") == 0


def test_ws_rejects_missing_token(test_client):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with test_client.websocket_connect("/ws") as ws:
            ws.receive_text()
    assert exc_info.value.code == 4001


def test_ws_answers_ping(test_client):
    token = create_token(USER_ID, "dev@example.com")
    with test_client.websocket_connect(f"/ws?token={token}") as ws:
        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}
