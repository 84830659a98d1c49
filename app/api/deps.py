from __future__ import annotations

from app.game_server import GameServer
from app.infra.redis_client import create_redis
from app.settings import settings_from_env

_SERVER: GameServer | None = None


def init_server(server: GameServer | None = None) -> GameServer:
    """Build the process-wide GameServer once and cache it.

    Safe to call multiple times; subsequent calls return the already built instance.
    Tests pass their own instance (e.g. backed by fakeredis).
    """

    global _SERVER
    if _SERVER is None:
        if server is None:
            settings = settings_from_env()
            server = GameServer(r=create_redis(settings.redis_url), settings=settings)
        _SERVER = server
    return _SERVER


def reset_server_for_tests() -> None:
    """Drop the cached server so the next test can install its own."""

    global _SERVER
    _SERVER = None


def get_server() -> GameServer:
    if _SERVER is None:
        raise RuntimeError("Game server not initialized. Call init_server() at startup.")
    return _SERVER
