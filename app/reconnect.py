"""Grace-period timers for players who dropped their connection."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

# Callback type: (room_id, player_id) -> Awaitable[None]
ExpireCallback = Callable[[str, str], Awaitable[None]]


class ReconnectSupervisor:
    """Own one grace-period timer per (room, player).

    This class only schedules and cancels. Deciding what an expiry means
    (re-arm or evict) is the caller's job, done inside the room transaction.
    """

    def __init__(self, on_expire: ExpireCallback) -> None:
        self._timers: dict[tuple[str, str], asyncio.Task[None]] = {}
        self._on_expire = on_expire

    def start(self, room_id: str, player_id: str, delay_seconds: float) -> None:
        """Start (or restart) the timer for a player."""
        key = (room_id, player_id)
        self.cancel(room_id, player_id)
        self._timers[key] = asyncio.create_task(self._run(key, delay_seconds), name=f"grace:{room_id}:{player_id}")

    def cancel(self, room_id: str, player_id: str) -> bool:
        """Cancel a pending timer. Safe to call any number of times."""
        task = self._timers.pop((room_id, player_id), None)
        if task is None:
            return False
        if task is not asyncio.current_task():
            task.cancel()
        return True

    def cancel_room(self, room_id: str) -> None:
        for key in [k for k in self._timers if k[0] == room_id]:
            self.cancel(*key)

    def cancel_all(self) -> None:
        for key in list(self._timers):
            self.cancel(*key)

    def is_pending(self, room_id: str, player_id: str) -> bool:
        return (room_id, player_id) in self._timers

    @property
    def pending_count(self) -> int:
        return len(self._timers)

    async def _run(self, key: tuple[str, str], delay_seconds: float) -> None:
        await asyncio.sleep(delay_seconds)

        # Expired: drop our entry before the callback so it may re-arm the same key.
        if self._timers.get(key) is asyncio.current_task():
            self._timers.pop(key, None)

        room_id, player_id = key
        try:
            await self._on_expire(room_id, player_id)
        except Exception:
            logger.exception("grace period handler failed room_id=%s player_id=%s", room_id, player_id)
