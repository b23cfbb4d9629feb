"""Relay message schemas + validation.

Wire format (flat):
  inbound   {"type": "join" | "update" | "finish" | "chat", ...payload}
  outbound  {"type": "init" | "playerJoined" | "playerUpdate" | "playerFinished"
             | "playerLeft" | "chat" | "error", "id": <session id>, ...}
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any


class ProtocolError(Exception):
    pass


NAME_MAX_LEN = 32
CAR_COLORS_MAX_LEN = 64


def dumps(msg_type: str, data: dict[str, Any] | None = None) -> str:
    return json.dumps({"type": msg_type, **(data or {})}, separators=(",", ":"))


def loads(text: str) -> tuple[str, dict[str, Any]]:
    try:
        obj = json.loads(text)
    except ValueError as e:
        raise ProtocolError(f"invalid json: {e}")

    if not isinstance(obj, dict):
        raise ProtocolError("message must be object")
    t = obj.pop("type", None)
    if not isinstance(t, str):
        raise ProtocolError("missing type")
    return t, obj


@dataclass
class PlayerInfo:
    name: str
    carColors: str

    @classmethod
    def parse(cls, data: dict[str, Any]) -> "PlayerInfo":
        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            name = "Player"
        colors = data.get("carColors")
        if not isinstance(colors, str):
            colors = ""
        return cls(name=name.strip()[:NAME_MAX_LEN], carColors=colors[:CAR_COLORS_MAX_LEN])

    def to_json(self) -> dict[str, Any]:
        return {"name": self.name, "carColors": self.carColors}


@dataclass
class Finish:
    frames: int

    @classmethod
    def parse(cls, data: dict[str, Any]) -> "Finish":
        f = data.get("frames")
        # bool is an int subclass; reject it explicitly.
        if isinstance(f, bool) or not isinstance(f, int) or f < 0:
            raise ProtocolError("finish.frames must be a non-negative integer")
        return cls(frames=f)


@dataclass
class Chat:
    text: str

    @classmethod
    def parse(cls, data: dict[str, Any], max_len: int) -> "Chat":
        t = data.get("text")
        if not isinstance(t, str):
            raise ProtocolError("chat.text required")
        return cls(text=t[:max_len])


VALID_C2S = {"join", "update", "finish", "chat"}
