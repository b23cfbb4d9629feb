"""In-memory store used when persistence is disabled (and in tests)."""

from __future__ import annotations

import itertools
import time
from typing import Any, Iterable

from race_server.storage.models import DEFAULT_NICKNAME, LeaderboardPage, SubmitResult
from race_server.storage.ranking import rank_of


class MemoryStore:
    def __init__(self):
        self._players: dict[str, dict[str, Any]] = {}
        # (track_id, token_hash) -> entry
        self._entries: dict[tuple[str, str], dict[str, Any]] = {}
        self._ids = itertools.count(1)

    def init(self) -> None:
        pass

    def close(self) -> None:
        pass

    def upsert_player(self, token_hash: str, nickname: str, car_colors: str) -> None:
        self._players[token_hash] = {"tokenHash": token_hash, "nickname": nickname, "carColors": car_colors}

    def get_player(self, token_hash: str) -> dict[str, Any] | None:
        p = self._players.get(token_hash)
        return dict(p) if p else None

    def _track(self, track_id: str, only_verified: bool = False) -> list[dict[str, Any]]:
        out = [e for (t, _), e in self._entries.items() if t == track_id]
        if only_verified:
            out = [e for e in out if e["verified"]]
        return out

    def rank(self, track_id: str, frames: int, only_verified: bool = False) -> int:
        return rank_of(int(frames), (e["frames"] for e in self._track(track_id, only_verified)))

    def submit(self, track_id: str, token_hash: str, frames: int, recording: str) -> SubmitResult:
        # No await in here, so this runs atomically on the event loop.
        key = (track_id, token_hash)
        cur = self._entries.get(key)
        if cur and cur["frames"] <= frames:
            return SubmitResult(entry_id=cur["id"], new_rank=None)
        if not cur:
            cur = {"id": next(self._ids), "trackId": track_id, "userTokenHash": token_hash}
            self._entries[key] = cur
        cur.update(frames=int(frames), recording=recording, verified=False, createdAt=time.time())
        return SubmitResult(entry_id=cur["id"], new_rank=self.rank(track_id, frames))

    def query(
        self,
        track_id: str,
        skip: int,
        amount: int,
        only_verified: bool,
        requesting_hash: str | None = None,
    ) -> LeaderboardPage:
        rows = sorted(self._track(track_id, only_verified), key=lambda e: (e["frames"], e["id"]))
        entries = []
        for e in rows[int(skip): int(skip) + int(amount)]:
            p = self._players.get(e["userTokenHash"]) or {}
            entries.append(
                {
                    "id": e["id"],
                    "userId": e["userTokenHash"],
                    "name": p.get("nickname", DEFAULT_NICKNAME),
                    "frames": e["frames"],
                    "carColors": p.get("carColors", ""),
                }
            )

        user_entry = None
        mine = self._entries.get((track_id, requesting_hash)) if requesting_hash else None
        if mine and (mine["verified"] or not only_verified):
            user_entry = {
                "id": mine["id"],
                "frames": mine["frames"],
                "position": self.rank(track_id, mine["frames"], only_verified),
            }
        return LeaderboardPage(total=len(rows), entries=entries, user_entry=user_entry)

    def _by_id(self) -> dict[int, dict[str, Any]]:
        return {e["id"]: e for e in self._entries.values()}

    def get_recordings(self, entry_ids: Iterable[int]) -> list[dict[str, Any] | None]:
        by_id = self._by_id()
        out: list[dict[str, Any] | None] = []
        for i in entry_ids:
            e = by_id.get(int(i))
            if not e:
                out.append(None)
                continue
            p = self._players.get(e["userTokenHash"]) or {}
            out.append(
                {
                    "recording": e["recording"],
                    "frames": e["frames"],
                    "verified": e["verified"],
                    "carColors": p.get("carColors", ""),
                }
            )
        return out

    def unverified(self, limit: int) -> list[dict[str, Any]]:
        rows = sorted((e for e in self._entries.values() if not e["verified"]), key=lambda e: (e["createdAt"], e["id"]))
        return [
            {"id": e["id"], "trackId": e["trackId"], "frames": e["frames"], "recording": e["recording"]}
            for e in rows[: int(limit)]
        ]

    def mark_verified(self, entry_id: int, frames: int) -> bool:
        e = self._by_id().get(int(entry_id))
        if not e or e["frames"] != int(frames):
            return False
        e["verified"] = True
        return True

    def get_entry(self, track_id: str, token_hash: str) -> dict[str, Any] | None:
        e = self._entries.get((track_id, token_hash))
        if not e:
            return None
        return {k: e[k] for k in ("id", "frames", "recording", "verified", "createdAt")}
