from __future__ import annotations

import asyncio
import logging
import uuid
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Protocol

from app.api.models import RoomState
from app.core.events import OutboundType
from app.core.views import player_view

logger = logging.getLogger(__name__)


class Transport(Protocol):
    async def send_json(self, data: Any, mode: str = "text") -> None:  # pragma: no cover
        ...


@dataclass(slots=True)
class Connection:
    """Who is on the other end of one live transport, as far as this process knows."""

    connection_id: str
    transport: Transport
    player_id: str | None = None
    room_id: str | None = None


class ConnectionRegistry:
    """In-process registry of live connections, indexed by room id.

    Contract:
      - `register(transport)` when a socket opens, `unregister(connection_id)` when it closes.
      - `bind(connection_id, player_id, room_id)` once the connection joins a room.
      - `broadcast_room(room, event)` sends each bound connection its own view of the room.

    Never persisted; every server process rebuilds its own.
    """

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}
        self._by_room: dict[str, set[str]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def register(self, transport: Transport) -> Connection:
        conn = Connection(connection_id=uuid.uuid4().hex, transport=transport)
        async with self._lock:
            self._connections[conn.connection_id] = conn
        return conn

    async def unregister(self, connection_id: str) -> Connection | None:
        async with self._lock:
            conn = self._connections.pop(connection_id, None)
            if conn is not None:
                self._detach(conn)
        return conn

    async def bind(self, connection_id: str, *, player_id: str, room_id: str) -> list[Connection]:
        """Bind a connection to (player, room).

        Any other connection bound to the same player in the same room is detached and
        returned, so its later close is not mistaken for the player leaving.
        """

        async with self._lock:
            conn = self._connections.get(connection_id)
            if conn is None:
                return []
            displaced: list[Connection] = []
            for other_id in list(self._by_room.get(room_id, set())):
                other = self._connections.get(other_id)
                if other is not None and other_id != connection_id and other.player_id == player_id:
                    self._detach(other)
                    other.player_id = None
                    displaced.append(other)
            self._detach(conn)
            conn.player_id = player_id
            conn.room_id = room_id
            self._by_room[room_id].add(connection_id)
            return displaced

    async def unbind_room(self, room_id: str) -> None:
        async with self._lock:
            for cid in self._by_room.pop(room_id, set()):
                conn = self._connections.get(cid)
                if conn is not None:
                    conn.room_id = None
                    conn.player_id = None

    async def unbind_player(self, *, room_id: str, player_id: str) -> None:
        async with self._lock:
            for cid in list(self._by_room.get(room_id, set())):
                conn = self._connections.get(cid)
                if conn is not None and conn.player_id == player_id:
                    self._detach(conn)
                    conn.player_id = None

    def _detach(self, conn: Connection) -> None:
        if conn.room_id is None:
            return
        members = self._by_room.get(conn.room_id)
        if members is not None:
            members.discard(conn.connection_id)
            if not members:
                self._by_room.pop(conn.room_id, None)
        conn.room_id = None

    def get(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def connections_for_room(self, room_id: str) -> list[Connection]:
        return [self._connections[cid] for cid in self._by_room.get(room_id, set()) if cid in self._connections]

    def has_player_connection(self, *, room_id: str, player_id: str) -> bool:
        return any(c.player_id == player_id for c in self.connections_for_room(room_id))

    async def send(self, connection_id: str, payload: dict[str, Any]) -> bool:
        conn = self._connections.get(connection_id)
        if conn is None:
            return False
        return await self._safe_send(conn, payload)

    async def _safe_send(self, conn: Connection, payload: dict[str, Any]) -> bool:
        try:
            await conn.transport.send_json(payload)
            return True
        except Exception:
            # Best-effort: a dead socket must not stop the others or undo the transition.
            logger.warning("send failed connection_id=%s type=%s", conn.connection_id, payload.get("type"))
            return False

    async def broadcast_room(
        self,
        room: RoomState,
        event: OutboundType,
        *,
        overrides: dict[str, OutboundType] | None = None,
        exclude_players: Iterable[str] = (),
    ) -> int:
        """Send every bound connection its personalized view. Returns how many sends succeeded."""

        skip = set(exclude_players)
        overrides = overrides or {}
        targets = [
            c
            for c in self.connections_for_room(str(room.room_id))
            if c.player_id is not None and c.player_id not in skip and room.is_member(c.player_id)
        ]
        if not targets:
            return 0

        results = await asyncio.gather(
            *(
                self._safe_send(c, player_view(room=room, player_id=c.player_id, event=overrides.get(c.player_id, event)))
                for c in targets
                if c.player_id is not None
            )
        )
        return sum(1 for ok in results if ok)

