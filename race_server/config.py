"""Server settings (env driven)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


@dataclass
class ServerConfig:
    # Versions
    server_version: str = "0.1.0"

    # Network
    host: str = "0.0.0.0"
    port: int = 43274

    # Persistence
    sqlite_enabled: bool = True
    sqlite_path: str = "race_server.sqlite3"

    # Leaderboard
    leaderboard_default_amount: int = 20
    leaderboard_max_amount: int = 500
    max_recording_ids: int = 50
    max_recording_len: int = 5_000_000
    verifier_token_hashes: list[str] = field(default_factory=list)
    verify_default_batch: int = 20
    verify_max_batch: int = 100

    # Rooms
    default_room_id: str = "default"
    max_rooms: int = 200
    max_sessions_per_room: int = 64
    # Drop update/finish/chat from sessions that have not sent `join` yet.
    require_join: bool = True
    chat_max_len: int = 200
    chat_rate_per_sec: float = 1.5
    chat_burst: float = 5.0

    # Websocket
    ws_heartbeat_sec: float = 15.0
    idle_timeout_sec: float = 60.0
    send_timeout_sec: float = 5.0
    max_msg_size: int = 64 * 1024

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    def is_verifier(self, token_hash: str | None) -> bool:
        return bool(token_hash) and token_hash in self.verifier_token_hashes

    @staticmethod
    def _parse_bool(v: str | None, default: bool) -> bool:
        if v is None:
            return default
        return v.strip().lower() in ("1", "true", "yes", "on")

    @staticmethod
    def _parse_num(v: str | None, default, cast=int):
        if v is None or not v.strip():
            return default
        try:
            return cast(v)
        except ValueError:
            return default

    @classmethod
    def from_env(cls) -> "ServerConfig":
        cfg = cls()
        env = os.environ
        cfg.host = env.get("RACE_HOST", cfg.host)
        cfg.port = cls._parse_num(env.get("RACE_PORT"), cfg.port)
        cfg.sqlite_enabled = cls._parse_bool(env.get("RACE_SQLITE"), cfg.sqlite_enabled)
        cfg.sqlite_path = env.get("RACE_SQLITE_PATH", cfg.sqlite_path)
        cfg.default_room_id = env.get("RACE_DEFAULT_ROOM", cfg.default_room_id)
        cfg.max_rooms = cls._parse_num(env.get("RACE_MAX_ROOMS"), cfg.max_rooms)
        cfg.max_sessions_per_room = cls._parse_num(env.get("RACE_MAX_SESSIONS"), cfg.max_sessions_per_room)
        cfg.require_join = cls._parse_bool(env.get("RACE_REQUIRE_JOIN"), cfg.require_join)
        cfg.ws_heartbeat_sec = cls._parse_num(env.get("RACE_WS_HEARTBEAT"), cfg.ws_heartbeat_sec, float)
        cfg.idle_timeout_sec = cls._parse_num(env.get("RACE_IDLE_TIMEOUT"), cfg.idle_timeout_sec, float)
        cfg.send_timeout_sec = cls._parse_num(env.get("RACE_SEND_TIMEOUT"), cfg.send_timeout_sec, float)
        cfg.log_level = env.get("RACE_LOG_LEVEL", cfg.log_level).upper()
        cfg.log_json = cls._parse_bool(env.get("RACE_LOG_JSON"), cfg.log_json)

        verifiers = env.get("RACE_VERIFIERS")
        if verifiers:
            cfg.verifier_token_hashes = [v.strip().lower() for v in verifiers.split(",") if v.strip()]
        return cfg
