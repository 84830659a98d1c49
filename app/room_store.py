from __future__ import annotations

import logging
import secrets
import string
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from uuid import UUID, uuid4

import redis

from app.api.models import RoomState
from app.compositor import blank_canvas
from app.errors import ConflictError, NotFoundError, StoreUnavailableError

logger = logging.getLogger(__name__)

ROOMS_SET_KEY = "corpse:rooms"
ROOM_KEY_PREFIX = "corpse:room:"  # + {uuid}
CODE_KEY_PREFIX = "corpse:code:"  # + {CODE}

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits
ROOM_CODE_LENGTH = 4
MAX_CODE_ATTEMPTS = 32

DEFAULT_ROOM_TTL_SECONDS = 86_400


def _now() -> datetime:
    return datetime.now(tz=UTC)


def _room_key(room_id: UUID) -> str:
    return f"{ROOM_KEY_PREFIX}{room_id}"


def _code_key(code: str) -> str:
    return f"{CODE_KEY_PREFIX}{code}"


@contextmanager
def store_errors() -> Iterator[None]:
    """Translate redis transport failures into StoreUnavailableError."""

    try:
        yield
    except (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError) as e:
        logger.error("room store unavailable: %s", e)
        raise StoreUnavailableError("Room store is unavailable, please retry") from e


def generate_room_code() -> str:
    return "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))


def new_room(*, code: str, room_id: UUID | None = None) -> RoomState:
    now = _now()
    return RoomState(
        room_id=room_id or uuid4(),
        code=code,
        created_at=now,
        last_updated_at=now,
        active_canvases=[blank_canvas(), blank_canvas()],
    )


def save_room(*, r: redis.Redis, room: RoomState, ttl_seconds: int = DEFAULT_ROOM_TTL_SECONDS) -> None:
    """Write the room document, its code index and TTL as one MULTI/EXEC."""

    room.last_updated_at = _now()
    with store_errors():
        pipe = r.pipeline(transaction=True)
        pipe.set(_room_key(room.room_id), room.model_dump_json(), ex=ttl_seconds)
        pipe.set(_code_key(room.code), str(room.room_id), ex=ttl_seconds)
        pipe.sadd(ROOMS_SET_KEY, str(room.room_id))
        pipe.execute()


def get_room(*, r: redis.Redis, room_id: UUID) -> RoomState | None:
    with store_errors():
        raw = r.get(_room_key(room_id))
    if not raw:
        return None
    return RoomState.model_validate_json(raw)


def require_room(*, r: redis.Redis, room_id: UUID) -> RoomState:
    room = get_room(r=r, room_id=room_id)
    if room is None:
        raise NotFoundError("Game room not found")
    return room


def room_id_for_code(*, r: redis.Redis, code: str) -> UUID | None:
    with store_errors():
        raw = r.get(_code_key(code))
    if not raw:
        return None
    try:
        return UUID(raw)
    except ValueError:
        logger.warning("discarding malformed code index entry for %s", code)
        return None


def get_room_by_code(*, r: redis.Redis, code: str) -> RoomState | None:
    room_id = room_id_for_code(r=r, code=code)
    if room_id is None:
        return None
    return get_room(r=r, room_id=room_id)


def require_room_by_code(*, r: redis.Redis, code: str) -> RoomState:
    room = get_room_by_code(r=r, code=code)
    if room is None:
        raise NotFoundError(f"Game room {code} not found")
    return room


def _try_insert_room(*, r: redis.Redis, room: RoomState, ttl_seconds: int) -> bool:
    """Insert `room` only if its code is unused. Returns False when the code is taken."""

    code_key = _code_key(room.code)
    with store_errors():
        with r.pipeline(transaction=True) as pipe:
            try:
                pipe.watch(code_key)
                if pipe.exists(code_key):
                    pipe.unwatch()
                    return False
                room.last_updated_at = _now()
                pipe.multi()
                pipe.set(_room_key(room.room_id), room.model_dump_json(), ex=ttl_seconds)
                pipe.set(code_key, str(room.room_id), ex=ttl_seconds)
                pipe.sadd(ROOMS_SET_KEY, str(room.room_id))
                pipe.execute()
                return True
            except redis.WatchError:
                return False


def create_room_with_unique_code(*, r: redis.Redis, ttl_seconds: int = DEFAULT_ROOM_TTL_SECONDS) -> RoomState:
    for _ in range(MAX_CODE_ATTEMPTS):
        room = new_room(code=generate_room_code())
        if _try_insert_room(r=r, room=room, ttl_seconds=ttl_seconds):
            logger.info("room created room_id=%s code=%s", room.room_id, room.code)
            return room
    raise ConflictError("Could not allocate a unique game code, please retry")


def create_room_with_code(*, r: redis.Redis, code: str, ttl_seconds: int = DEFAULT_ROOM_TTL_SECONDS) -> RoomState:
    room = new_room(code=code)
    if not _try_insert_room(r=r, room=room, ttl_seconds=ttl_seconds):
        raise ConflictError(f"Game code {code} is already in use")
    logger.info("room created room_id=%s code=%s", room.room_id, room.code)
    return room


def ensure_room_for_code(*, r: redis.Redis, code: str, ttl_seconds: int = DEFAULT_ROOM_TTL_SECONDS) -> RoomState:
    """Return the room for `code`, creating an empty one if the code is unknown.

    Safe against concurrent callers: exactly one room is ever created per code.
    """

    for _ in range(MAX_CODE_ATTEMPTS):
        existing = get_room_by_code(r=r, code=code)
        if existing is not None:
            return existing
        room = new_room(code=code)
        if _try_insert_room(r=r, room=room, ttl_seconds=ttl_seconds):
            logger.info("room created on join room_id=%s code=%s", room.room_id, room.code)
            return room
    raise ConflictError(f"Game room {code} is busy, please retry")


def delete_room(*, r: redis.Redis, room: RoomState) -> None:
    with store_errors():
        pipe = r.pipeline(transaction=True)
        pipe.delete(_room_key(room.room_id))
        pipe.delete(_code_key(room.code))
        pipe.srem(ROOMS_SET_KEY, str(room.room_id))
        pipe.execute()
    logger.info("room deleted room_id=%s code=%s", room.room_id, room.code)


def list_rooms(*, r: redis.Redis) -> list[RoomState]:
    with store_errors():
        ids = sorted(r.smembers(ROOMS_SET_KEY))
    out: list[RoomState] = []
    for sid in ids:
        try:
            rid = UUID(sid)
        except ValueError:
            continue
        room = get_room(r=r, room_id=rid)
        if room is not None:
            out.append(room)
    out.sort(key=lambda s: s.created_at, reverse=True)
    return out
