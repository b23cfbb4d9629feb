"""WebSocket handler: turns connection activity into room events."""

from __future__ import annotations

import asyncio

import structlog
from aiohttp import WSMsgType, web

from race_server.relay import protocol
from race_server.relay.rate_limit import TokenBucket
from race_server.relay.room import EventKind, Session

logger = structlog.get_logger()

ROOM_ID_MAX_LEN = 64


def is_upgrade(request: web.Request) -> bool:
    return request.headers.get("Upgrade", "").strip().lower() == "websocket"


class WsHub:
    def __init__(self, svc):
        self.svc = svc

    async def handle(self, request: web.Request) -> web.StreamResponse:
        cfg = self.svc.config
        room_id = (request.query.get("roomId") or cfg.default_room_id)[:ROOM_ID_MAX_LEN]
        if not self.svc.has_room_capacity(room_id):
            raise web.HTTPTooManyRequests(text="server at room capacity")

        ws = web.WebSocketResponse(
            heartbeat=cfg.ws_heartbeat_sec or None,
            receive_timeout=cfg.idle_timeout_sec or None,
            max_msg_size=cfg.max_msg_size,
        )
        await ws.prepare(request)

        # Checked again: other upgrades may have opened rooms during prepare().
        # Nothing awaits between this check and get_or_create_room.
        if not self.svc.has_room_capacity(room_id):
            logger.warning("room capacity reached during handshake", room_id=room_id)
            await ws.send_str(protocol.dumps("error", {"message": "server at room capacity"}))
            await ws.close()
            return ws

        session = Session(ws=ws, chat_bucket=TokenBucket(cfg.chat_rate_per_sec, cfg.chat_burst))
        # Looked up after prepare(): the room may have shut down meanwhile.
        room = self.svc.get_or_create_room(room_id)
        room.post(EventKind.OPEN, session)

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    room.post(EventKind.MESSAGE, session, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    logger.info("websocket error", room_id=room_id, error=repr(ws.exception()))
                    break
        except asyncio.TimeoutError:
            logger.info("idle websocket timed out", room_id=room_id, session_id=session.session_id)
        finally:
            room.post(EventKind.CLOSE, session)
            if not ws.closed:
                await ws.close()
        return ws
