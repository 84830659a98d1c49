from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any
from uuid import UUID

import redis

from app.actions import (
    ActionResult,
    clear_canvas,
    disconnect_player,
    expire_player,
    join_room,
    read_room_for_player,
    reconnect_player,
    submit_segment,
)
from app.api.messages import (
    ClearCanvas,
    CreateGame,
    InboundMessage,
    JoinGame,
    ReconnectGame,
    RequestGameState,
    SubmitSegment,
    parse_inbound,
)
from app.core.views import player_view
from app.errors import GameError, InternalError, InvalidMessageError, NotFoundError
from app.reconnect import ReconnectSupervisor
from app.room_store import create_room_with_unique_code, ensure_room_for_code, require_room_by_code
from app.settings import GameSettings
from app.websocket_hub import Connection, ConnectionRegistry, Transport

logger = logging.getLogger(__name__)

Handler = Callable[[Connection, Any], Awaitable[None]]


class GameServer:
    """Glue between the transport and the room transitions.

    inbound frame -> registry resolves the connection -> action runs under the room lock
    -> every connection bound to the room gets its own view.
    """

    def __init__(self, *, r: redis.Redis, settings: GameSettings, registry: ConnectionRegistry | None = None) -> None:
        self.r = r
        self.settings = settings
        self.registry = registry or ConnectionRegistry()
        self.supervisor = ReconnectSupervisor(on_expire=self._on_grace_expired)
        # Orders transition + broadcast per room inside this process.
        self._room_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._handlers: dict[str, Handler] = {
            "createGame": self._create_game,
            "joinGame": self._join_game,
            "reconnectGame": self._reconnect_game,
            "submitSegment": self._submit_segment,
            "requestGameState": self._request_game_state,
            "clearCanvas": self._clear_canvas,
        }

    async def connect(self, transport: Transport) -> Connection:
        conn = await self.registry.register(transport)
        logger.debug("connection opened connection_id=%s", conn.connection_id)
        return conn

    async def handle_message(self, connection_id: str, raw: str | bytes) -> None:
        conn = self.registry.get(connection_id)
        if conn is None:
            return
        try:
            msg = parse_inbound(raw)
            await self._dispatch(conn, msg)
        except GameError as e:
            logger.info("rejected message connection_id=%s code=%s: %s", connection_id, e.code, e)
            await self.registry.send(connection_id, e.to_payload())
        except Exception:
            logger.exception("message handling failed connection_id=%s", connection_id)
            await self.registry.send(connection_id, InternalError("Something went wrong, please retry").to_payload())

    async def _dispatch(self, conn: Connection, msg: InboundMessage) -> None:
        handler = self._handlers.get(msg.type)
        if handler is None:
            raise InvalidMessageError(f"Unknown message type: {msg.type}")
        await handler(conn, msg)

    async def disconnect(self, connection_id: str) -> None:
        conn = await self.registry.unregister(connection_id)
        logger.debug("connection closed connection_id=%s", connection_id)
        if conn is None or conn.room_id is None or conn.player_id is None:
            return

        room_id, player_id = conn.room_id, conn.player_id
        if self.registry.has_player_connection(room_id=room_id, player_id=player_id):
            return

        deleted = False
        try:
            async with self._room_locks[room_id]:
                result = await disconnect_player(
                    r=self.r, settings=self.settings, room_id=UUID(room_id), player_id=player_id
                )
                if result.start_grace_timer:
                    self.supervisor.start(room_id, player_id, self.settings.grace_period_seconds)
                await self._publish(result, exclude_players=(player_id,))
                deleted = result.deleted
        except GameError as e:
            logger.error("disconnect bookkeeping failed room_id=%s player_id=%s: %s", room_id, player_id, e)
        if deleted or not self.registry.connections_for_room(room_id):
            self._forget_room_lock(room_id)

    def _forget_room_lock(self, room_id: str) -> None:
        """Drop the in-process lock of a room nobody here is attached to any more."""

        lock = self._room_locks.get(room_id)
        if lock is not None and not lock.locked():
            del self._room_locks[room_id]

    async def shutdown(self) -> None:
        self.supervisor.cancel_all()

    async def _publish(self, result: ActionResult, *, exclude_players: tuple[str, ...] = ()) -> None:
        if result.room is None:
            return
        room_id = str(result.room.room_id)
        if result.deleted:
            await self.registry.unbind_room(room_id)
            self.supervisor.cancel_room(room_id)
            return
        if result.removed_player_id is not None:
            await self.registry.unbind_player(room_id=room_id, player_id=result.removed_player_id)
        if not result.changed:
            return
        await self.registry.broadcast_room(
            result.room, result.event, overrides=result.overrides, exclude_players=exclude_players
        )

    async def _on_grace_expired(self, room_id: str, player_id: str) -> None:
        async with self._room_locks[room_id]:
            result = await expire_player(r=self.r, settings=self.settings, room_id=UUID(room_id), player_id=player_id)
            if result.rearm_grace_timer:
                logger.info("grace period re-armed room_id=%s player_id=%s", room_id, player_id)
                self.supervisor.start(room_id, player_id, self.settings.grace_period_seconds)
                return
            await self._publish(result)
        if result.deleted:
            self._forget_room_lock(room_id)

    async def _bind(self, conn: Connection, *, room_id: str, player_id: str) -> None:
        displaced = await self.registry.bind(conn.connection_id, player_id=player_id, room_id=room_id)
        for other in displaced:
            logger.info("connection replaced connection_id=%s by=%s", other.connection_id, conn.connection_id)

    async def _join(self, conn: Connection, *, room_id: UUID, player_id: str, display_name: str) -> ActionResult:
        key = str(room_id)
        async with self._room_locks[key]:
            result = await join_room(
                r=self.r, settings=self.settings, room_id=room_id, player_id=player_id, display_name=display_name
            )
            if result.reconnected:
                self.supervisor.cancel(key, player_id)
            await self._bind(conn, room_id=key, player_id=player_id)
            await self._publish(result)
        return result

    async def _create_game(self, conn: Connection, msg: CreateGame) -> None:
        room = create_room_with_unique_code(r=self.r, ttl_seconds=self.settings.room_ttl_seconds)
        await self.registry.send(
            conn.connection_id, {"type": "gameCreated", "roomId": str(room.room_id), "gameCode": room.code}
        )
        await self._join(conn, room_id=room.room_id, player_id=msg.player_id, display_name=msg.display_name)

    async def _join_game(self, conn: Connection, msg: JoinGame) -> None:
        room = ensure_room_for_code(r=self.r, code=msg.game_code, ttl_seconds=self.settings.room_ttl_seconds)
        await self._join(conn, room_id=room.room_id, player_id=msg.player_id, display_name=msg.display_name)

    async def _reconnect_game(self, conn: Connection, msg: ReconnectGame) -> None:
        room = require_room_by_code(r=self.r, code=msg.game_code)
        key = str(room.room_id)
        async with self._room_locks[key]:
            result = await reconnect_player(r=self.r, settings=self.settings, room_id=room.room_id, player_id=msg.player_id)
            self.supervisor.cancel(key, msg.player_id)
            await self._bind(conn, room_id=key, player_id=msg.player_id)
            await self._publish(result)

    def _require_binding(self, conn: Connection, *, room_id: UUID, player_id: str | None) -> str:
        if conn.room_id != str(room_id) or conn.player_id is None:
            raise NotFoundError("Join the game before sending game actions")
        if player_id is not None and player_id != conn.player_id:
            raise NotFoundError("Player does not match this connection")
        return conn.player_id

    async def _submit_segment(self, conn: Connection, msg: SubmitSegment) -> None:
        player_id = self._require_binding(conn, room_id=msg.room_id, player_id=msg.player_id)
        async with self._room_locks[str(msg.room_id)]:
            result = await submit_segment(
                r=self.r,
                settings=self.settings,
                room_id=msg.room_id,
                player_id=player_id,
                segment_index=msg.segment_index,
                image_data=msg.image_data,
                red_line_y=msg.red_line_y,
            )
            await self._publish(result)

    async def _clear_canvas(self, conn: Connection, msg: ClearCanvas) -> None:
        player_id = self._require_binding(conn, room_id=msg.room_id, player_id=msg.player_id)
        async with self._room_locks[str(msg.room_id)]:
            result = await clear_canvas(r=self.r, settings=self.settings, room_id=msg.room_id, player_id=player_id)
            await self._publish(result)

    async def _request_game_state(self, conn: Connection, msg: RequestGameState) -> None:
        if msg.room_id is not None:
            room_id = msg.room_id
        else:
            room_id = require_room_by_code(r=self.r, code=str(msg.game_code)).room_id
        room = read_room_for_player(r=self.r, room_id=room_id, player_id=msg.player_id)
        await self.registry.send(
            conn.connection_id, player_view(room=room, player_id=msg.player_id, event="gameStateUpdate")
        )
