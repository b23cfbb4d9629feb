"""Rank = number of strictly faster times on the track (0-indexed).

Both stores go through here so the position returned right after a submission
and the position reported by a later lookup always agree, ties included.
"""

from __future__ import annotations

from typing import Iterable


def rank_of(frames: int, times: Iterable[int]) -> int:
    return sum(1 for t in times if t < frames)


def rank_sql(only_verified: bool) -> str:
    """SQL twin of `rank_of`; params are (track_id, frames)."""
    sql = "SELECT COUNT(*) FROM leaderboard_entries WHERE track_id = ? AND frames < ?"
    if only_verified:
        sql += " AND verified = 1"
    return sql
