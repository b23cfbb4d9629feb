"""Result shapes shared by the stores."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


DEFAULT_NICKNAME = "Anonymous"


@dataclass
class SubmitResult:
    entry_id: int
    # None when the submission did not beat the stored time.
    new_rank: int | None


@dataclass
class LeaderboardPage:
    total: int
    entries: list[dict[str, Any]] = field(default_factory=list)
    user_entry: dict[str, Any] | None = None

    def to_json(self) -> dict[str, Any]:
        return {"total": self.total, "entries": self.entries, "userEntry": self.user_entry}
