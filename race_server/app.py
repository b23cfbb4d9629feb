"""HTTP + WebSocket entrypoint.

Leaderboard/profile API and the realtime room relay share one aiohttp app.
Any request carrying `Upgrade: websocket` goes to the relay regardless of path.
"""

from __future__ import annotations

import sqlite3
import time
from typing import Any

import structlog
from aiohttp import web

from race_server.api import leaderboard, users, verify
from race_server.api.forms import FormError
from race_server.config import ServerConfig
from race_server.logs import configure_logging
from race_server.relay.room import Room
from race_server.relay.ws import WsHub, is_upgrade
from race_server.storage.memory import MemoryStore
from race_server.storage.sqlite import SqliteStore

logger = structlog.get_logger()


class RaceService:
    def __init__(self, config: ServerConfig):
        self.config = config
        self.start_time = time.time()

        self.store = SqliteStore(self.config.sqlite_path) if self.config.sqlite_enabled else MemoryStore()
        self.hub = WsHub(self)
        self.rooms: dict[str, Room] = {}

    async def start(self) -> None:
        self.store.init()
        logger.info("service started", store=type(self.store).__name__, version=self.config.server_version)

    async def stop(self) -> None:
        for room in list(self.rooms.values()):
            await room.stop()
        self.rooms.clear()
        self.store.close()

    def has_room_capacity(self, room_id: str) -> bool:
        return room_id in self.rooms or len(self.rooms) < self.config.max_rooms

    def get_or_create_room(self, room_id: str) -> Room:
        room = self.rooms.get(room_id)
        if room and room.running:
            return room

        room = Room(room_id=room_id, config=self.config, on_empty=self._drop_room)
        self.rooms[room_id] = room
        room.start()
        logger.info("room created", room_id=room_id, rooms=len(self.rooms))
        return room

    def _drop_room(self, room: Room) -> None:
        if self.rooms.get(room.room_id) is room:
            del self.rooms[room.room_id]

    def version_payload(self) -> dict[str, Any]:
        return {"service": "race-server", "serverVersion": self.config.server_version}


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except FormError as e:
        raise web.HTTPBadRequest(text=str(e))
    except sqlite3.Error as e:
        logger.exception("storage failure", path=request.path)
        return web.json_response({"error": str(e)}, status=500)


@web.middleware
async def upgrade_middleware(request: web.Request, handler):
    if is_upgrade(request):
        return await request.app["svc"].hub.handle(request)
    return await handler(request)


def create_app(config: ServerConfig) -> web.Application:
    app = web.Application(middlewares=[error_middleware, upgrade_middleware])
    svc = RaceService(config)

    app["config"] = config
    app["svc"] = svc

    async def on_startup(_: web.Application):
        await svc.start()

    async def on_cleanup(_: web.Application):
        await svc.stop()

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)

    async def root(_: web.Request):
        return web.json_response(
            {
                "ok": True,
                **svc.version_payload(),
                "endpoints": {
                    "health": "/health",
                    "rooms": "/rooms",
                    "leaderboard": "/leaderboard",
                    "recordings": "/recordings",
                    "user": "/user",
                    "verifyRecordings": "/verifyRecordings",
                },
            }
        )

    async def health(_: web.Request):
        return web.json_response(
            {
                "ok": True,
                "uptimeSec": time.time() - svc.start_time,
                "rooms": len(svc.rooms),
                "sessions": sum(r.session_count for r in svc.rooms.values()),
                **svc.version_payload(),
            }
        )

    async def rooms(_: web.Request):
        return web.json_response({"rooms": [r.public_info() for r in svc.rooms.values()]})

    app.router.add_get("/", root)
    app.router.add_get("/health", health)
    app.router.add_get("/rooms", rooms)
    app.router.add_get("/leaderboard", leaderboard.get_leaderboard)
    app.router.add_post("/leaderboard", leaderboard.submit_leaderboard)
    app.router.add_get("/recordings", leaderboard.get_recordings)
    app.router.add_get("/user", users.get_user)
    app.router.add_post("/user", users.update_user)
    app.router.add_get("/verifyRecordings", verify.list_unverified)
    app.router.add_post("/verifyRecordings", verify.submit_verifications)

    return app


def main() -> None:
    config = ServerConfig.from_env()
    configure_logging(config.log_level, json=config.log_json)
    app = create_app(config)
    web.run_app(app, host=config.host, port=config.port, print=None)


if __name__ == "__main__":
    main()
