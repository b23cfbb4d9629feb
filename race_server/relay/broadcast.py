"""Fan-out of one serialized message to the sessions of a room."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Iterable

import structlog

if TYPE_CHECKING:
    from race_server.relay.room import Session

logger = structlog.get_logger()

SEND_ERRORS = (ConnectionError, RuntimeError, asyncio.TimeoutError)


async def deliver(session: "Session", payload: str, timeout: float | None) -> bool:
    """Send to one session; False when the transport is gone or too slow."""
    if session.ws.closed:
        return False
    try:
        await asyncio.wait_for(session.ws.send_str(payload), timeout)
    except SEND_ERRORS as e:
        logger.info("delivery failed", session_id=session.session_id, error=repr(e))
        return False
    return True


async def broadcast(
    sessions: Iterable["Session"],
    payload: str,
    exclude: int | None = None,
    timeout: float | None = None,
) -> list[int]:
    """Deliver `payload` to every session except `exclude`.

    A failed recipient does not stop the pass. Returns the ids that failed so
    the caller can run its normal leave path for them.
    """
    failed: list[int] = []
    # Snapshot: the caller may mutate the registry once we return.
    for s in list(sessions):
        if s.session_id == exclude:
            continue
        if not await deliver(s, payload, timeout):
            failed.append(s.session_id)
    return failed
