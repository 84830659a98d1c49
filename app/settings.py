from __future__ import annotations

import os
from dataclasses import dataclass

# Fixed game shape.
MAX_PLAYERS = 2
SEGMENT_NAMES: tuple[str, ...] = ("Head", "Torso", "Legs", "Feet")
SEGMENT_COUNT = len(SEGMENT_NAMES)
CANVAS_WIDTH = 800
CANVAS_HEIGHT = 600
PEEK_HEIGHT = 100


@dataclass(frozen=True, slots=True)
class GameSettings:
    redis_url: str = "redis://localhost:6379/0"
    grace_period_seconds: float = 15.0
    max_reconnect_attempts: int = 3
    room_ttl_seconds: int = 86_400
    lock_ttl_ms: int = 10_000
    lock_wait_ms: int = 5_000
    log_level: str = "INFO"


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ValueError(f"{name} must be positive")
    return value


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e
    if value <= 0:
        raise ValueError(f"{name} must be positive")
    return value


def settings_from_env() -> GameSettings:
    return GameSettings(
        redis_url=os.environ.get("REDIS_URL", "redis://localhost:6379/0"),
        grace_period_seconds=_env_float("CORPSE_GRACE_PERIOD_SECONDS", 15.0),
        max_reconnect_attempts=_env_int("CORPSE_MAX_RECONNECT_ATTEMPTS", 3),
        room_ttl_seconds=_env_int("CORPSE_ROOM_TTL_SECONDS", 86_400),
        lock_ttl_ms=_env_int("CORPSE_LOCK_TTL_MS", 10_000),
        lock_wait_ms=_env_int("CORPSE_LOCK_WAIT_MS", 5_000),
        log_level=os.environ.get("CORPSE_LOG_LEVEL", "INFO").upper(),
    )
