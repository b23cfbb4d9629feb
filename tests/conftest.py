import json

import pytest

from race_server.api.forms import hash_token
from race_server.app import create_app
from race_server.config import ServerConfig
from race_server.relay.rate_limit import TokenBucket
from race_server.relay.room import Session
from race_server.storage.memory import MemoryStore
from race_server.storage.sqlite import SqliteStore


VERIFIER_TOKEN = "verifier-secret"


def make_config(**overrides) -> ServerConfig:
    cfg = ServerConfig(
        sqlite_path=":memory:",
        ws_heartbeat_sec=0,
        idle_timeout_sec=0,
        send_timeout_sec=1.0,
        verifier_token_hashes=[hash_token(VERIFIER_TOKEN)],
    )
    for k, v in overrides.items():
        setattr(cfg, k, v)
    return cfg


@pytest.fixture()
def config():
    return make_config()


@pytest.fixture(params=["sqlite", "memory"])
def store(request):
    s = SqliteStore(":memory:") if request.param == "sqlite" else MemoryStore()
    s.init()
    yield s
    s.close()


@pytest.fixture()
async def client(aiohttp_client, config):
    return await aiohttp_client(create_app(config))


class FakeWs:
    """Stands in for a WebSocketResponse inside room tests."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.closed = False
        self.sent: list[dict] = []

    async def send_str(self, data: str) -> None:
        if self.fail:
            raise ConnectionResetError("peer gone")
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000, message: bytes = b"") -> None:
        self.closed = True

    def of_type(self, msg_type: str) -> list[dict]:
        return [m for m in self.sent if m["type"] == msg_type]


def make_session(fail: bool = False) -> Session:
    return Session(ws=FakeWs(fail=fail), chat_bucket=TokenBucket(rate_per_sec=0.0, burst=100.0))
