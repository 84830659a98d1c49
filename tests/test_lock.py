from __future__ import annotations

import asyncio

import pytest

from app.errors import RoomBusyError
from app.lock import room_lock


@pytest.mark.asyncio
async def test_lock_is_released_after_block(r) -> None:
    async with room_lock(r=r, room_id="room-1"):
        assert r.exists("lock:room:room-1")
    assert not r.exists("lock:room:room-1")


@pytest.mark.asyncio
async def test_lock_is_released_when_block_raises(r) -> None:
    with pytest.raises(RuntimeError):
        async with room_lock(r=r, room_id="room-1"):
            raise RuntimeError("boom")
    assert not r.exists("lock:room:room-1")


@pytest.mark.asyncio
async def test_second_holder_times_out_with_busy(r) -> None:
    async with room_lock(r=r, room_id="room-1"):
        with pytest.raises(RoomBusyError) as e:
            async with room_lock(r=r, room_id="room-1", wait_ms=60):
                pass
    assert e.value.retryable is True


@pytest.mark.asyncio
async def test_waiters_run_one_at_a_time(r) -> None:
    inside = 0
    peak = 0

    async def worker() -> None:
        nonlocal inside, peak
        async with room_lock(r=r, room_id="room-1", wait_ms=2_000):
            inside += 1
            peak = max(peak, inside)
            await asyncio.sleep(0.01)
            inside -= 1

    await asyncio.gather(*(worker() for _ in range(5)))
    assert peak == 1


@pytest.mark.asyncio
async def test_expired_holder_does_not_release_new_owner(r) -> None:
    async with room_lock(r=r, room_id="room-1", ttl_ms=20):
        await asyncio.sleep(0.05)
        # Lease lapsed; someone else takes it.
        r.set("lock:room:room-1", "other-owner")
    assert r.get("lock:room:room-1") == "other-owner"


@pytest.mark.asyncio
async def test_locks_are_per_room(r) -> None:
    async with room_lock(r=r, room_id="room-1"):
        async with room_lock(r=r, room_id="room-2", wait_ms=50):
            assert r.exists("lock:room:room-2")
