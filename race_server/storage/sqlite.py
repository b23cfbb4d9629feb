"""SQLite persistence for players and best-time leaderboard entries."""

from __future__ import annotations

import sqlite3
import time
from typing import Any, Iterable

from race_server.storage.models import DEFAULT_NICKNAME, LeaderboardPage, SubmitResult
from race_server.storage.ranking import rank_sql


SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
  token_hash  TEXT PRIMARY KEY,
  nickname    TEXT NOT NULL DEFAULT 'Anonymous',
  car_colors  TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS leaderboard_entries (
  id              INTEGER PRIMARY KEY AUTOINCREMENT,
  track_id        TEXT NOT NULL,
  user_token_hash TEXT NOT NULL,
  frames          INTEGER NOT NULL,
  recording       TEXT NOT NULL,
  verified        INTEGER NOT NULL DEFAULT 0,
  created_at      REAL NOT NULL,
  UNIQUE(track_id, user_token_hash)
);

CREATE INDEX IF NOT EXISTS idx_leaderboard_track ON leaderboard_entries(track_id, frames ASC);
CREATE INDEX IF NOT EXISTS idx_leaderboard_user ON leaderboard_entries(user_token_hash);
"""


class SqliteStore:
    def __init__(self, path: str):
        self.path = path
        self.conn: sqlite3.Connection | None = None

    def init(self) -> None:
        self.conn = sqlite3.connect(self.path, check_same_thread=False)
        self.conn.executescript(SCHEMA)
        self.conn.commit()

    def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None

    def _db(self) -> sqlite3.Connection:
        if not self.conn:
            raise sqlite3.ProgrammingError("store is not open")
        return self.conn

    # -- players -----------------------------------------------------------

    def upsert_player(self, token_hash: str, nickname: str, car_colors: str) -> None:
        db = self._db()
        with db:
            db.execute(
                """
                INSERT INTO users (token_hash, nickname, car_colors)
                VALUES (?, ?, ?)
                ON CONFLICT(token_hash) DO UPDATE SET
                  nickname=excluded.nickname,
                  car_colors=excluded.car_colors
                """,
                (token_hash, nickname, car_colors),
            )

    def get_player(self, token_hash: str) -> dict[str, Any] | None:
        row = self._db().execute(
            "SELECT token_hash, nickname, car_colors FROM users WHERE token_hash = ?",
            (token_hash,),
        ).fetchone()
        if not row:
            return None
        return {"tokenHash": row[0], "nickname": row[1], "carColors": row[2]}

    # -- entries -----------------------------------------------------------

    def submit(self, track_id: str, token_hash: str, frames: int, recording: str) -> SubmitResult:
        db = self._db()
        with db:
            # The WHERE on the conflict branch is what keeps concurrent
            # submissions from overwriting a better time.
            cur = db.execute(
                """
                INSERT INTO leaderboard_entries
                  (track_id, user_token_hash, frames, recording, verified, created_at)
                VALUES (?, ?, ?, ?, 0, ?)
                ON CONFLICT(track_id, user_token_hash) DO UPDATE SET
                  frames=excluded.frames,
                  recording=excluded.recording,
                  verified=0,
                  created_at=excluded.created_at
                WHERE excluded.frames < leaderboard_entries.frames
                """,
                (track_id, token_hash, int(frames), recording, time.time()),
            )
            improved = cur.rowcount > 0
            row = db.execute(
                "SELECT id FROM leaderboard_entries WHERE track_id = ? AND user_token_hash = ?",
                (track_id, token_hash),
            ).fetchone()
            entry_id = int(row[0])
            if not improved:
                return SubmitResult(entry_id=entry_id, new_rank=None)
            new_rank = self.rank(track_id, frames)
        return SubmitResult(entry_id=entry_id, new_rank=new_rank)

    def rank(self, track_id: str, frames: int, only_verified: bool = False) -> int:
        row = self._db().execute(rank_sql(only_verified), (track_id, int(frames))).fetchone()
        return int(row[0])

    def query(
        self,
        track_id: str,
        skip: int,
        amount: int,
        only_verified: bool,
        requesting_hash: str | None = None,
    ) -> LeaderboardPage:
        db = self._db()
        where = "e.track_id = ?"
        if only_verified:
            where += " AND e.verified = 1"

        total = db.execute(f"SELECT COUNT(*) FROM leaderboard_entries e WHERE {where}", (track_id,)).fetchone()[0]
        cur = db.execute(
            f"""
            SELECT e.id, e.user_token_hash, COALESCE(u.nickname, ?), e.frames, COALESCE(u.car_colors, '')
            FROM leaderboard_entries e
            LEFT JOIN users u ON u.token_hash = e.user_token_hash
            WHERE {where}
            ORDER BY e.frames ASC, e.id ASC
            LIMIT ? OFFSET ?
            """,
            (DEFAULT_NICKNAME, track_id, int(amount), int(skip)),
        )
        entries = []
        for row in cur.fetchall():
            entries.append({"id": row[0], "userId": row[1], "name": row[2], "frames": row[3], "carColors": row[4]})

        user_entry = None
        if requesting_hash:
            row = db.execute(
                "SELECT id, frames, verified FROM leaderboard_entries WHERE track_id = ? AND user_token_hash = ?",
                (track_id, requesting_hash),
            ).fetchone()
            if row and (row[2] or not only_verified):
                user_entry = {
                    "id": row[0],
                    "frames": row[1],
                    "position": self.rank(track_id, row[1], only_verified),
                }
        return LeaderboardPage(total=int(total), entries=entries, user_entry=user_entry)

    def get_recordings(self, entry_ids: Iterable[int]) -> list[dict[str, Any] | None]:
        ids = [int(i) for i in entry_ids]
        if not ids:
            return []
        marks = ",".join("?" for _ in ids)
        cur = self._db().execute(
            f"""
            SELECT e.id, e.recording, e.frames, e.verified, COALESCE(u.car_colors, '')
            FROM leaderboard_entries e
            LEFT JOIN users u ON u.token_hash = e.user_token_hash
            WHERE e.id IN ({marks})
            """,
            ids,
        )
        found = {
            row[0]: {"recording": row[1], "frames": row[2], "verified": bool(row[3]), "carColors": row[4]}
            for row in cur.fetchall()
        }
        return [found.get(i) for i in ids]

    def unverified(self, limit: int) -> list[dict[str, Any]]:
        cur = self._db().execute(
            """
            SELECT id, track_id, frames, recording FROM leaderboard_entries
            WHERE verified = 0
            ORDER BY created_at ASC, id ASC
            LIMIT ?
            """,
            (int(limit),),
        )
        return [{"id": r[0], "trackId": r[1], "frames": r[2], "recording": r[3]} for r in cur.fetchall()]

    def mark_verified(self, entry_id: int, frames: int) -> bool:
        db = self._db()
        with db:
            # A newer (different) time since the verifier fetched it stays unverified.
            cur = db.execute(
                "UPDATE leaderboard_entries SET verified = 1 WHERE id = ? AND frames = ?",
                (int(entry_id), int(frames)),
            )
        return cur.rowcount > 0

    def get_entry(self, track_id: str, token_hash: str) -> dict[str, Any] | None:
        row = self._db().execute(
            """
            SELECT id, frames, recording, verified, created_at FROM leaderboard_entries
            WHERE track_id = ? AND user_token_hash = ?
            """,
            (track_id, token_hash),
        ).fetchone()
        if not row:
            return None
        return {"id": row[0], "frames": row[1], "recording": row[2], "verified": bool(row[3]), "createdAt": row[4]}
