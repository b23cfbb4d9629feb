"""Request parsing + validation for the HTTP API."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Mapping

from race_server.config import ServerConfig
from race_server.storage.models import DEFAULT_NICKNAME


class FormError(Exception):
    pass


NAME_MAX_LEN = 50
CAR_COLORS_MAX_LEN = 64
TRACK_ID_MAX_LEN = 128
# Largest value an SQLite INTEGER column holds.
INT_MAX = 2**63 - 1


def hash_token(token: str) -> str:
    """Players are keyed by a digest of their secret token, never the token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _str(data: Mapping[str, Any], key: str, *, required: bool = True, allow_empty: bool = False) -> str:
    v = data.get(key)
    if v is None:
        if required:
            raise FormError(f"{key} is required")
        return ""
    if not isinstance(v, str):
        raise FormError(f"{key} must be a string")
    if not v and not allow_empty:
        raise FormError(f"{key} must not be empty")
    return v


def _int(
    data: Mapping[str, Any],
    key: str,
    *,
    default: int | None = None,
    minimum: int = 0,
    maximum: int = INT_MAX,
) -> int:
    raw = data.get(key)
    if raw is None or raw == "":
        if default is None:
            raise FormError(f"{key} is required")
        return default
    try:
        v = int(raw)
    except (TypeError, ValueError):
        raise FormError(f"{key} must be an integer")
    if v < minimum:
        raise FormError(f"{key} must be >= {minimum}")
    if v > maximum:
        raise FormError(f"{key} must be <= {maximum}")
    return v


def _bool(data: Mapping[str, Any], key: str, default: bool = False) -> bool:
    raw = data.get(key)
    if raw is None:
        return default
    return str(raw).strip().lower() in ("1", "true", "yes", "on")


def _name(data: Mapping[str, Any]) -> str:
    name = _str(data, "name", allow_empty=True).strip()
    return name[:NAME_MAX_LEN] or DEFAULT_NICKNAME


@dataclass
class ProfileForm:
    token_hash: str
    name: str
    car_colors: str

    @classmethod
    def parse(cls, data: Mapping[str, Any]) -> "ProfileForm":
        return cls(
            token_hash=hash_token(_str(data, "userToken")),
            name=_name(data),
            car_colors=_str(data, "carColors", allow_empty=True)[:CAR_COLORS_MAX_LEN],
        )


@dataclass
class SubmitForm:
    profile: ProfileForm
    track_id: str
    frames: int
    recording: str

    @classmethod
    def parse(cls, data: Mapping[str, Any], config: ServerConfig) -> "SubmitForm":
        profile = ProfileForm.parse(data)
        track_id = _str(data, "trackId")
        if len(track_id) > TRACK_ID_MAX_LEN:
            raise FormError("trackId too long")
        recording = _str(data, "recording")
        if len(recording) > config.max_recording_len:
            raise FormError("recording too large")
        return cls(profile=profile, track_id=track_id, frames=_int(data, "frames"), recording=recording)


@dataclass
class LeaderboardQuery:
    track_id: str
    skip: int
    amount: int
    only_verified: bool
    user_token_hash: str | None

    @classmethod
    def parse(cls, query: Mapping[str, Any], config: ServerConfig) -> "LeaderboardQuery":
        amount = _int(query, "amount", default=config.leaderboard_default_amount)
        return cls(
            track_id=_str(query, "trackId"),
            skip=_int(query, "skip", default=0),
            amount=min(amount, config.leaderboard_max_amount),
            only_verified=_bool(query, "onlyVerified"),
            user_token_hash=query.get("userTokenHash") or None,
        )


def parse_id_list(raw: str | None, max_ids: int) -> list[int]:
    if not raw:
        raise FormError("recordingIds is required")
    try:
        ids = [int(p) for p in raw.split(",") if p.strip()]
    except ValueError:
        raise FormError("recordingIds must be comma separated integers")
    if not ids:
        raise FormError("recordingIds is required")
    if any(i < 0 or i > INT_MAX for i in ids):
        raise FormError(f"recordingIds must be between 0 and {INT_MAX}")
    if len(ids) > max_ids:
        raise FormError(f"at most {max_ids} recordingIds per request")
    return ids


@dataclass
class VerifyResult:
    entry_id: int
    frames: int


@dataclass
class VerifyForm:
    token_hash: str
    results: list[VerifyResult]

    @classmethod
    def parse(cls, body: Any) -> "VerifyForm":
        if not isinstance(body, dict):
            raise FormError("body must be an object")
        results = body.get("results")
        if not isinstance(results, list):
            raise FormError("results must be a list")
        out = []
        for r in results:
            if not isinstance(r, dict):
                raise FormError("each result must be an object")
            out.append(VerifyResult(entry_id=_int(r, "id"), frames=_int(r, "frames")))
        return cls(token_hash=hash_token(_str(body, "userToken")), results=out)


@dataclass
class UnverifiedQuery:
    token_hash: str
    amount: int

    @classmethod
    def parse(cls, query: Mapping[str, Any], config: ServerConfig) -> "UnverifiedQuery":
        amount = _int(query, "amount", default=config.verify_default_batch)
        return cls(
            token_hash=hash_token(_str(query, "userToken")),
            amount=min(amount, config.verify_max_batch),
        )
