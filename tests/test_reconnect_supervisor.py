from __future__ import annotations

import asyncio

import pytest

from app.reconnect import ReconnectSupervisor


class _Recorder:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    async def __call__(self, room_id: str, player_id: str) -> None:
        self.calls.append((room_id, player_id))


@pytest.mark.asyncio
async def test_timer_fires_once_and_clears_itself() -> None:
    rec = _Recorder()
    sup = ReconnectSupervisor(on_expire=rec)

    sup.start("r1", "p1", 0.01)
    assert sup.is_pending("r1", "p1")
    await asyncio.sleep(0.05)

    assert rec.calls == [("r1", "p1")]
    assert not sup.is_pending("r1", "p1")


@pytest.mark.asyncio
async def test_cancel_prevents_expiry_and_is_idempotent() -> None:
    rec = _Recorder()
    sup = ReconnectSupervisor(on_expire=rec)

    sup.start("r1", "p1", 0.02)
    assert sup.cancel("r1", "p1") is True
    assert sup.cancel("r1", "p1") is False
    await asyncio.sleep(0.05)

    assert rec.calls == []


@pytest.mark.asyncio
async def test_restart_replaces_previous_timer() -> None:
    rec = _Recorder()
    sup = ReconnectSupervisor(on_expire=rec)

    sup.start("r1", "p1", 0.02)
    sup.start("r1", "p1", 0.02)
    assert sup.pending_count == 1
    await asyncio.sleep(0.06)

    assert rec.calls == [("r1", "p1")]


@pytest.mark.asyncio
async def test_callback_may_rearm_its_own_timer() -> None:
    fired: list[int] = []
    sup: ReconnectSupervisor

    async def on_expire(room_id: str, player_id: str) -> None:
        fired.append(1)
        if len(fired) < 3:
            sup.start(room_id, player_id, 0.01)

    sup = ReconnectSupervisor(on_expire=on_expire)
    sup.start("r1", "p1", 0.01)
    await asyncio.sleep(0.15)

    assert len(fired) == 3
    assert sup.pending_count == 0


@pytest.mark.asyncio
async def test_failing_callback_is_logged_not_raised(caplog) -> None:
    async def boom(room_id: str, player_id: str) -> None:
        raise RuntimeError("nope")

    sup = ReconnectSupervisor(on_expire=boom)
    sup.start("r1", "p1", 0.01)
    await asyncio.sleep(0.05)

    assert "grace period handler failed" in caplog.text


@pytest.mark.asyncio
async def test_cancel_room_and_cancel_all() -> None:
    rec = _Recorder()
    sup = ReconnectSupervisor(on_expire=rec)

    sup.start("r1", "p1", 0.05)
    sup.start("r1", "p2", 0.05)
    sup.start("r2", "p3", 0.05)

    sup.cancel_room("r1")
    assert sup.pending_count == 1
    sup.cancel_all()
    assert sup.pending_count == 0

    await asyncio.sleep(0.08)
    assert rec.calls == []
