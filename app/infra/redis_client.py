from __future__ import annotations

import os

import redis

from app.errors import StoreUnavailableError


def get_redis_url() -> str:
    return os.environ.get("REDIS_URL", "redis://localhost:6379/0")


def create_redis(url: str | None = None) -> redis.Redis:
    # decode_responses=True => strings in/out instead of bytes
    return redis.Redis.from_url(url or get_redis_url(), decode_responses=True)


def ping_store(*, r: redis.Redis) -> None:
    """Fail fast when the room store is unreachable (used at startup)."""

    try:
        r.ping()
    except (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError) as e:
        raise StoreUnavailableError("Room store is unavailable") from e
