from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis

from app.errors import RoomBusyError
from app.room_store import store_errors

LOCK_POLL_SECONDS = 0.02


def _lock_key(room_id: str) -> str:
    return f"lock:room:{room_id}"


def _release(*, r: redis.Redis, key: str, token: str) -> None:
    """Delete the lock only if we still own it."""

    with r.pipeline(transaction=True) as pipe:
        try:
            pipe.watch(key)
            if pipe.get(key) != token:
                pipe.unwatch()
                return
            pipe.multi()
            pipe.delete(key)
            pipe.execute()
        except redis.WatchError:
            # Lease expired and someone else took it between GET and DEL.
            return


@asynccontextmanager
async def room_lock(
    *,
    r: redis.Redis,
    room_id: str,
    ttl_ms: int = 10_000,
    wait_ms: int = 5_000,
) -> AsyncIterator[None]:
    """Per-room mutual exclusion shared by every server process.

    Holders get a unique token; release is compare-and-delete, so an expired holder
    cannot drop a lease it no longer owns.
    """

    key = _lock_key(room_id)
    token = uuid.uuid4().hex
    deadline = time.monotonic() + wait_ms / 1000

    while True:
        with store_errors():
            acquired = r.set(key, token, nx=True, px=ttl_ms)
        if acquired:
            break
        if time.monotonic() >= deadline:
            raise RoomBusyError("Game room is busy, please retry")
        await asyncio.sleep(LOCK_POLL_SECONDS)

    try:
        yield
    finally:
        with store_errors():
            _release(r=r, key=key, token=token)
