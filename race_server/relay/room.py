"""Room actor: one task per room owns its session registry.

Every connection event (open, message, close) is queued on the room and
handled one at a time in arrival order, so the registry is only ever touched
from the room's own task.
"""

from __future__ import annotations

import asyncio
import enum
import itertools
from dataclasses import dataclass
from typing import Any, Callable, Iterator

import structlog
from aiohttp import WSCloseCode

from race_server.config import ServerConfig
from race_server.relay import protocol
from race_server.relay.broadcast import broadcast, deliver
from race_server.relay.rate_limit import TokenBucket

logger = structlog.get_logger()


class SessionState(enum.Enum):
    CONNECTING = "connecting"
    JOINED = "joined"
    CLOSED = "closed"


@dataclass(eq=False)
class Session:
    ws: Any
    chat_bucket: TokenBucket
    session_id: int | None = None
    state: SessionState = SessionState.CONNECTING
    player: protocol.PlayerInfo | None = None

    def public_info(self) -> dict[str, Any]:
        return {"id": self.session_id, **(self.player.to_json() if self.player else {})}


class SessionRegistry:
    def __init__(self):
        self._sessions: dict[int, Session] = {}
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def get(self, session_id: int | None) -> Session | None:
        if session_id is None:
            return None
        return self._sessions.get(session_id)

    def add(self, session: Session) -> int:
        session.session_id = next(self._ids)
        session.state = SessionState.CONNECTING
        self._sessions[session.session_id] = session
        return session.session_id

    def remove(self, session_id: int) -> Session | None:
        s = self._sessions.pop(session_id, None)
        if s:
            s.state = SessionState.CLOSED
        return s

    def joined(self) -> list[Session]:
        return [s for s in self._sessions.values() if s.state is SessionState.JOINED]


class EventKind(enum.Enum):
    OPEN = "open"
    MESSAGE = "message"
    CLOSE = "close"


@dataclass
class RoomEvent:
    kind: EventKind
    session: Session
    text: str | None = None


class Room:
    def __init__(self, room_id: str, config: ServerConfig, on_empty: Callable[["Room"], None] | None = None):
        self.room_id = room_id
        self.config = config
        self.registry = SessionRegistry()
        self._on_empty = on_empty
        self._queue: asyncio.Queue[RoomEvent] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._closing: set[asyncio.Task] = set()

    @property
    def session_count(self) -> int:
        return len(self.registry)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def public_info(self) -> dict[str, Any]:
        return {
            "roomId": self.room_id,
            "sessions": len(self.registry),
            "players": len(self.registry.joined()),
            "maxSessions": self.config.max_sessions_per_room,
        }

    def start(self) -> None:
        self._task = asyncio.create_task(self._run(), name=f"room:{self.room_id}")

    def post(self, kind: EventKind, session: Session, text: str | None = None) -> None:
        self._queue.put_nowait(RoomEvent(kind=kind, session=session, text=text))

    async def drain(self) -> None:
        """Wait until every queued event has been handled."""
        await self._queue.join()
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        for s in self.registry:
            self.registry.remove(s.session_id)
            await s.ws.close(code=WSCloseCode.GOING_AWAY, message=b"server shutdown")
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)

    async def _run(self) -> None:
        structlog.contextvars.bind_contextvars(room_id=self.room_id)
        while True:
            ev = await self._queue.get()
            try:
                await self._dispatch(ev)
            except Exception:
                # One bad event must not take the whole room down.
                logger.exception("room event failed", kind=ev.kind.value, session_id=ev.session.session_id)
            finally:
                self._queue.task_done()

            if not self.registry and self._queue.empty():
                logger.info("room empty, shutting down")
                if self._on_empty:
                    self._on_empty(self)
                return

    async def _dispatch(self, ev: RoomEvent) -> None:
        if ev.kind is EventKind.OPEN:
            await self._on_open(ev.session)
        elif ev.kind is EventKind.MESSAGE:
            await self._on_message(ev.session, ev.text or "")
        elif ev.kind is EventKind.CLOSE:
            if ev.session.session_id is not None:
                await self._leave(ev.session.session_id, reason="closed")

    async def _send(self, session: Session, msg_type: str, data: dict[str, Any]) -> bool:
        return await deliver(session, protocol.dumps(msg_type, data), self.config.send_timeout_sec)

    async def _broadcast(self, msg_type: str, data: dict[str, Any], exclude: int | None = None) -> None:
        failed = await broadcast(
            self.registry,
            protocol.dumps(msg_type, data),
            exclude=exclude,
            timeout=self.config.send_timeout_sec,
        )
        for sid in failed:
            await self._leave(sid, reason="delivery failed")

    def _close_later(self, session: Session) -> None:
        # Closing waits on the peer's close frame; never block the room on it.
        if session.ws.closed:
            return
        task = asyncio.create_task(session.ws.close())
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def _on_open(self, session: Session) -> None:
        if len(self.registry) >= self.config.max_sessions_per_room:
            logger.warning("room full, rejecting connection")
            await deliver(session, protocol.dumps("error", {"message": "room full"}), self.config.send_timeout_sec)
            self._close_later(session)
            return

        sid = self.registry.add(session)
        logger.info("session connected", session_id=sid, sessions=len(self.registry))
        players = [s.public_info() for s in self.registry.joined()]
        if not await self._send(session, "init", {"id": sid, "players": players}):
            await self._leave(sid, reason="init delivery failed")

    async def _on_message(self, session: Session, text: str) -> None:
        sid = session.session_id
        if self.registry.get(sid) is not session:
            return

        try:
            msg_type, data = protocol.loads(text)
        except protocol.ProtocolError as e:
            logger.debug("dropped malformed message", session_id=sid, error=str(e))
            return

        if msg_type not in protocol.VALID_C2S:
            return

        if msg_type == "join":
            session.player = protocol.PlayerInfo.parse(data)
            session.state = SessionState.JOINED
            logger.info("session joined", session_id=sid, name=session.player.name)
            await self._broadcast("playerJoined", session.public_info(), exclude=sid)
            return

        if self.config.require_join and session.state is not SessionState.JOINED:
            return

        if msg_type == "update":
            # Opaque state, relayed as-is.
            await self._broadcast("playerUpdate", {**data, "id": sid}, exclude=sid)
            return

        try:
            if msg_type == "finish":
                fin = protocol.Finish.parse(data)
                await self._broadcast("playerFinished", {"id": sid, "frames": fin.frames}, exclude=sid)
            elif msg_type == "chat":
                if not session.chat_bucket.allow():
                    return
                chat = protocol.Chat.parse(data, self.config.chat_max_len)
                await self._broadcast("chat", {"id": sid, "text": chat.text}, exclude=sid)
        except protocol.ProtocolError as e:
            logger.debug("dropped invalid message", session_id=sid, type=msg_type, error=str(e))

    async def _leave(self, session_id: int, reason: str) -> None:
        session = self.registry.remove(session_id)
        if not session:
            return
        logger.info("session left", session_id=session_id, reason=reason, sessions=len(self.registry))
        self._close_later(session)
        if session.player is not None:
            await self._broadcast("playerLeft", {"id": session_id})
