import asyncio

import pytest
from aiohttp import WSMsgType, web

from conftest import make_config
from race_server.app import create_app


async def _recv_until(ws, msg_type, timeout=2.0):
    while True:
        msg = await ws.receive_json(timeout=timeout)
        if msg["type"] == msg_type:
            return msg


async def _joined_pair(client, room="r1"):
    """Two joined sessions with every setup message already consumed."""
    a = await client.ws_connect("/", params={"roomId": room})
    a_init = await a.receive_json(timeout=2)
    await a.send_json({"type": "join", "name": "Alice", "carColors": "f00"})

    b = await client.ws_connect("/", params={"roomId": room})
    b_init = await b.receive_json(timeout=2)
    await b.send_json({"type": "join", "name": "Bob", "carColors": "0f0"})
    await _recv_until(a, "playerJoined")

    # Flush b: a's announcement may or may not have reached it before init.
    await a.send_json({"type": "chat", "text": "sync"})
    await _recv_until(b, "chat")
    return a, a_init["id"], b, b_init["id"]


async def test_init_assigns_session_ids(client):
    a = await client.ws_connect("/")
    assert await a.receive_json(timeout=2) == {"type": "init", "id": 1, "players": []}
    await a.send_json({"type": "join", "name": "Alice", "carColors": "f00"})

    b = await client.ws_connect("/ws")
    b_init = await b.receive_json(timeout=2)
    assert b_init["id"] == 2
    await a.close()
    await b.close()


async def test_chat_truncated_between_two_sessions(client):
    a, a_id, b, _ = await _joined_pair(client)
    await a.send_json({"type": "chat", "text": "z" * 250})
    msg = await _recv_until(b, "chat")
    assert msg == {"type": "chat", "id": a_id, "text": "z" * 200}
    await a.close()
    await b.close()


async def test_disconnect_sends_exactly_one_player_left(client):
    a, a_id, b, _ = await _joined_pair(client)
    await a.close()

    assert await b.receive_json(timeout=2) == {"type": "playerLeft", "id": a_id}
    with pytest.raises(asyncio.TimeoutError):
        await b.receive(timeout=0.3)
    await b.close()


async def test_update_and_finish_relay(client):
    a, a_id, b, b_id = await _joined_pair(client)
    await b.send_json({"type": "update", "state": "opaque-blob"})
    assert await a.receive_json(timeout=2) == {"type": "playerUpdate", "state": "opaque-blob", "id": b_id}

    await a.send_json({"type": "finish", "frames": 3600})
    assert await b.receive_json(timeout=2) == {"type": "playerFinished", "id": a_id, "frames": 3600}
    await a.close()
    await b.close()


async def test_rooms_are_isolated(client):
    a, _, b, _ = await _joined_pair(client, room="one")
    c = await client.ws_connect("/", params={"roomId": "two"})
    assert (await c.receive_json(timeout=2))["players"] == []

    await a.send_json({"type": "chat", "text": "only room one"})
    await _recv_until(b, "chat")
    with pytest.raises(asyncio.TimeoutError):
        await c.receive(timeout=0.3)

    rooms = await (await client.get("/rooms")).json()
    assert sorted(r["roomId"] for r in rooms["rooms"]) == ["one", "two"]
    for ws in (a, b, c):
        await ws.close()


async def test_malformed_payload_is_dropped_silently(client):
    a, _, b, _ = await _joined_pair(client)
    await a.send_str("{{{ nope")
    await a.send_json({"type": "chat", "text": "after"})
    assert (await b.receive_json(timeout=2))["text"] == "after"
    await a.close()
    await b.close()


async def test_empty_room_is_released(client):
    svc = client.server.app["svc"]
    a = await client.ws_connect("/", params={"roomId": "temp"})
    await a.receive_json(timeout=2)
    assert "temp" in svc.rooms
    await a.close()

    for _ in range(50):
        if "temp" not in svc.rooms:
            break
        await asyncio.sleep(0.02)
    assert "temp" not in svc.rooms


async def test_room_capacity_refuses_upgrade(aiohttp_client):
    client = await aiohttp_client(create_app(make_config(max_rooms=1)))
    a = await client.ws_connect("/", params={"roomId": "first"})
    await a.receive_json(timeout=2)

    res = await client.get("/", params={"roomId": "second"}, headers={"Upgrade": "websocket"})
    assert res.status == 429
    await a.close()


async def test_idle_session_is_closed(aiohttp_client):
    client = await aiohttp_client(create_app(make_config(idle_timeout_sec=0.2)))
    a = await client.ws_connect("/", autoping=True)
    await a.receive_json(timeout=2)
    msg = await a.receive(timeout=2)
    assert msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSED, WSMsgType.CLOSING)


async def test_room_capacity_rechecked_after_handshake(aiohttp_client, monkeypatch):
    client = await aiohttp_client(create_app(make_config(max_rooms=1)))
    svc = client.server.app["svc"]
    original_prepare = web.WebSocketResponse.prepare

    async def prepare_while_another_room_opens(self, request):
        svc.get_or_create_room("other")
        return await original_prepare(self, request)

    monkeypatch.setattr(web.WebSocketResponse, "prepare", prepare_while_another_room_opens)

    ws = await client.ws_connect("/", params={"roomId": "mine"})
    assert await ws.receive_json(timeout=2) == {"type": "error", "message": "server at room capacity"}
    assert (await ws.receive(timeout=2)).type in (WSMsgType.CLOSE, WSMsgType.CLOSED, WSMsgType.CLOSING)
    assert list(svc.rooms) == ["other"]
