from __future__ import annotations

from collections.abc import Callable, Generator
from typing import Any

import fakeredis
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from app.compositor import encode_image
from app.settings import CANVAS_HEIGHT, CANVAS_WIDTH, GameSettings


class FakeTransport:
    """Stands in for a WebSocket: records every JSON payload sent to it."""

    def __init__(self, *, fail: bool = False) -> None:
        self.sent: list[dict[str, Any]] = []
        self.fail = fail

    async def send_json(self, data: Any, mode: str = "text") -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    @property
    def last(self) -> dict[str, Any]:
        return self.sent[-1]

    def types(self) -> list[str]:
        return [m["type"] for m in self.sent]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture()
def settings() -> GameSettings:
    return GameSettings(
        grace_period_seconds=0.05,
        max_reconnect_attempts=2,
        room_ttl_seconds=3600,
        lock_ttl_ms=2_000,
        lock_wait_ms=1_000,
    )


@pytest.fixture()
def r() -> fakeredis.FakeRedis:
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture()
def make_png() -> Callable[..., str]:
    def _make(color: tuple[int, int, int, int] = (255, 0, 0, 255), size: tuple[int, int] = (CANVAS_WIDTH, CANVAS_HEIGHT)) -> str:
        return encode_image(Image.new("RGBA", size, color))

    return _make


@pytest.fixture()
def server(r: fakeredis.FakeRedis, settings: GameSettings):
    from app.game_server import GameServer

    return GameServer(r=r, settings=settings)


@pytest.fixture()
def client_and_redis(
    r: fakeredis.FakeRedis, settings: GameSettings
) -> Generator[tuple[TestClient, fakeredis.FakeRedis], None, None]:
    """FastAPI TestClient wired to a fakeredis-backed GameServer."""

    from app.api.deps import init_server, reset_server_for_tests
    from app.game_server import GameServer
    from app.main import app

    reset_server_for_tests()
    init_server(GameServer(r=r, settings=settings))
    with TestClient(app) as c:
        yield c, r
    reset_server_for_tests()


@pytest.fixture()
def transport() -> type[FakeTransport]:
    return FakeTransport


@pytest.fixture(scope="session")
def bomb_png() -> str:
    """A tiny PNG payload that claims 14000x14000 pixels once decompressed."""

    return encode_image(Image.new("1", (14_000, 14_000)))
