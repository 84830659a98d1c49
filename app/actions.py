"""Room transitions: join, submit, advance, clear, disconnect, reconnect, expire.

Each operation runs as one transaction under the room lock:
- load the room from the store
- validate the request against the current snapshot
- mutate in memory (the FSM guards the status change)
- persist

Broadcasting and timers are the caller's business; results say what happened.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from uuid import UUID

import redis

from app.api.models import ConnectionStatus, PlayerRecord, RoomState, RoomStatus, SegmentSubmission
from app.compositor import blank_canvas, check_drawing, combine, peek
from app.core.events import OutboundType
from app.errors import GameNotInProgressError, ImageDecodeError, InvalidMessageError, NotFoundError, RoomFullError
from app.fsm import RoomFSM
from app.lock import room_lock
from app.room_store import delete_room, get_room, require_room, save_room
from app.settings import MAX_PLAYERS, PEEK_HEIGHT, GameSettings
from app.turn_processing.turns import (
    all_members_submitted,
    assign_canvases,
    canvas_before_segment,
    slot_submissions,
    swap_canvas_assignment,
)
from app.turn_processing.validators import ValidationContext, pipeline_for_action

logger = logging.getLogger(__name__)

CANVAS_SLOTS = (0, 1)


@dataclass(frozen=True, slots=True)
class ActionResult:
    """Outcome of one room transaction.

    - `room`: the persisted snapshot (the last one seen when `deleted`; None if the room was already gone).
    - `event`: outbound type for every member; `overrides` replaces it per player.
    - `changed`: False for no-ops (nothing persisted, nothing to broadcast).
    """

    room: RoomState | None
    event: OutboundType
    overrides: dict[str, OutboundType] = field(default_factory=dict)
    changed: bool = True
    deleted: bool = False
    reconnected: bool = False
    start_grace_timer: bool = False
    rearm_grace_timer: bool = False
    removed_player_id: str | None = None


def _lock(*, r: redis.Redis, settings: GameSettings, room_id: UUID):
    return room_lock(r=r, room_id=str(room_id), ttl_ms=settings.lock_ttl_ms, wait_ms=settings.lock_wait_ms)


def _save(*, r: redis.Redis, settings: GameSettings, room: RoomState) -> None:
    save_room(r=r, room=room, ttl_seconds=settings.room_ttl_seconds)


def _maybe_start(*, room: RoomState) -> bool:
    """waiting -> playing once both seats are filled by connected players."""

    if room.status != RoomStatus.waiting:
        return False
    if room.player_count < MAX_PLAYERS or len(room.connected_players()) < MAX_PLAYERS:
        return False

    RoomFSM(room).apply("begin")
    room.current_segment_index = 0
    room.submitted_players = []
    room.segment_history = {}
    room.final_artworks = []
    room.peek_canvases = [None, None]
    room.active_canvases = [blank_canvas(), blank_canvas()]
    assign_canvases(room=room)
    logger.info("game started room_id=%s code=%s players=%s", room.room_id, room.code, room.players)
    return True


def _reset_progress(*, room: RoomState) -> None:
    room.current_segment_index = 0
    room.submitted_players = []
    room.canvas_assignment = {}
    room.segment_history = {}
    room.final_artworks = []
    room.peek_canvases = [None, None]
    room.active_canvases = [blank_canvas(), blank_canvas()]


def _reconnect_locked(
    *, r: redis.Redis, settings: GameSettings, room: RoomState, player_id: str, display_name: str | None
) -> ActionResult:
    record = room.player_records[player_id]
    was_disconnected = record.connection_status == ConnectionStatus.disconnected
    record.connection_status = ConnectionStatus.connected
    record.reconnect_attempts = 0
    if display_name:
        record.display_name = display_name

    started = _maybe_start(room=room)
    _save(r=r, settings=settings, room=room)

    if was_disconnected:
        logger.info("player reconnected room_id=%s player_id=%s", room.room_id, player_id)

    if started:
        return ActionResult(room=room, event="gameStarted", reconnected=True)
    return ActionResult(
        room=room,
        event="playerReconnected",
        overrides={player_id: "gameStateUpdate"},
        reconnected=True,
    )


async def join_room(
    *,
    r: redis.Redis,
    settings: GameSettings,
    room_id: UUID,
    player_id: str,
    display_name: str,
) -> ActionResult:
    async with _lock(r=r, settings=settings, room_id=room_id):
        room = require_room(r=r, room_id=room_id)

        if room.is_member(player_id):
            return _reconnect_locked(r=r, settings=settings, room=room, player_id=player_id, display_name=display_name)

        if room.player_count >= MAX_PLAYERS:
            raise RoomFullError(f"Game room {room.code} is full")
        if room.status == RoomStatus.completed:
            raise GameNotInProgressError("Game is completed")

        room.players.append(player_id)
        room.player_records[player_id] = PlayerRecord(display_name=display_name)
        started = _maybe_start(room=room)
        _save(r=r, settings=settings, room=room)

        logger.info("player joined room_id=%s code=%s player_id=%s", room.room_id, room.code, player_id)

        if started:
            return ActionResult(room=room, event="gameStarted")
        return ActionResult(room=room, event="playerJoined", overrides={player_id: "initialState"})


async def reconnect_player(
    *,
    r: redis.Redis,
    settings: GameSettings,
    room_id: UUID,
    player_id: str,
) -> ActionResult:
    async with _lock(r=r, settings=settings, room_id=room_id):
        room = require_room(r=r, room_id=room_id)
        if not room.is_member(player_id):
            raise NotFoundError("Player is not in this game room")
        return _reconnect_locked(r=r, settings=settings, room=room, player_id=player_id, display_name=None)


def _final_artworks(room: RoomState) -> list[str]:
    return [combine([sub.image_data for sub in slot_submissions(room=room, slot=slot)]) for slot in CANVAS_SLOTS]


def _peek_canvases(room: RoomState) -> list[str | None]:
    return [peek(room.active_canvases[slot], PEEK_HEIGHT) for slot in CANVAS_SLOTS]


async def _advance_locked(*, r: redis.Redis, settings: GameSettings, room: RoomState) -> ActionResult:
    # Compositing runs in a worker thread; the room lock stays held throughout.
    fsm = RoomFSM(room)
    finished_index = room.current_segment_index

    if finished_index + 1 >= room.segment_count:
        fsm.apply("finish")
        room.final_artworks = await asyncio.to_thread(_final_artworks, room)
        room.current_segment_index = room.segment_count
        room.submitted_players = []
        room.peek_canvases = [None, None]
        _save(r=r, settings=settings, room=room)
        logger.info("game completed room_id=%s code=%s", room.room_id, room.code)
        return ActionResult(room=room, event="gameOver")

    fsm.apply("next_segment")
    room.current_segment_index = finished_index + 1
    room.submitted_players = []
    swap_canvas_assignment(room=room)
    room.peek_canvases = await asyncio.to_thread(_peek_canvases, room)
    _save(r=r, settings=settings, room=room)
    logger.info("segment advanced room_id=%s segment=%s", room.room_id, room.current_segment_index)
    return ActionResult(room=room, event="segmentAdvanced")


async def submit_segment(
    *,
    r: redis.Redis,
    settings: GameSettings,
    room_id: UUID,
    player_id: str,
    segment_index: int,
    image_data: str,
    red_line_y: int | None = None,
) -> ActionResult:
    try:
        await asyncio.to_thread(check_drawing, image_data)
    except ImageDecodeError as e:
        raise InvalidMessageError(f"imageData rejected: {e}") from e

    async with _lock(r=r, settings=settings, room_id=room_id):
        room = require_room(r=r, room_id=room_id)

        ctx = ValidationContext(
            room_id=str(room_id), player_id=player_id, action="submit", segment_index=segment_index
        )
        pipeline_for_action("submit").validate(ctx=ctx, room=room)

        slot = room.canvas_assignment.get(player_id)
        if slot is None:
            raise NotFoundError("Player has no canvas in this game")

        room.active_canvases[slot] = image_data
        room.segment_history.setdefault(segment_index, {})[player_id] = SegmentSubmission(
            player_id=player_id, canvas_slot=slot, image_data=image_data, red_line_y=red_line_y
        )
        room.submitted_players.append(player_id)
        logger.info(
            "segment submitted room_id=%s player_id=%s segment=%s submitted=%s",
            room.room_id,
            player_id,
            segment_index,
            len(room.submitted_players),
        )

        if all_members_submitted(room=room):
            return await _advance_locked(r=r, settings=settings, room=room)

        _save(r=r, settings=settings, room=room)
        return ActionResult(room=room, event="playerSubmitted")


async def clear_canvas(*, r: redis.Redis, settings: GameSettings, room_id: UUID, player_id: str) -> ActionResult:
    """Host action: throw away the current segment's submissions and start it over."""

    async with _lock(r=r, settings=settings, room_id=room_id):
        room = require_room(r=r, room_id=room_id)
        ctx = ValidationContext(room_id=str(room_id), player_id=player_id, action="clear_canvas")
        pipeline_for_action("clear_canvas").validate(ctx=ctx, room=room)

        index = room.current_segment_index
        room.segment_history.pop(index, None)
        room.submitted_players = []
        room.active_canvases = [
            canvas_before_segment(room=room, slot=slot, segment_index=index) for slot in CANVAS_SLOTS
        ]
        _save(r=r, settings=settings, room=room)
        logger.info("segment cleared room_id=%s segment=%s by=%s", room.room_id, index, player_id)
        return ActionResult(room=room, event="gameStateUpdate")


def read_room_for_player(*, r: redis.Redis, room_id: UUID, player_id: str) -> RoomState:
    """Read-only snapshot for requestGameState; no lock, no mutation."""

    room = require_room(r=r, room_id=room_id)
    ctx = ValidationContext(room_id=str(room_id), player_id=player_id, action="view")
    pipeline_for_action("view").validate(ctx=ctx, room=room)
    return room


async def disconnect_player(*, r: redis.Redis, settings: GameSettings, room_id: UUID, player_id: str) -> ActionResult:
    async with _lock(r=r, settings=settings, room_id=room_id):
        room = get_room(r=r, room_id=room_id)
        if room is None or not room.is_member(player_id) or not room.is_connected(player_id):
            return ActionResult(room=room, event="playerDisconnected", changed=False)

        record = room.player_records[player_id]
        record.connection_status = ConnectionStatus.disconnected

        if room.status == RoomStatus.completed:
            # Finished games keep their members; the room goes once nobody is left watching.
            if not room.connected_players():
                delete_room(r=r, room=room)
                return ActionResult(room=room, event="playerDisconnected", deleted=True)
            _save(r=r, settings=settings, room=room)
            return ActionResult(room=room, event="playerDisconnected")

        record.reconnect_attempts += 1
        _save(r=r, settings=settings, room=room)
        logger.info(
            "player disconnected room_id=%s player_id=%s attempts=%s",
            room.room_id,
            player_id,
            record.reconnect_attempts,
        )
        return ActionResult(room=room, event="playerDisconnected", start_grace_timer=True)


def _remove_player_locked(*, r: redis.Redis, settings: GameSettings, room: RoomState, player_id: str) -> ActionResult:
    room.players.remove(player_id)
    room.player_records.pop(player_id, None)
    room.canvas_assignment.pop(player_id, None)
    if player_id in room.submitted_players:
        room.submitted_players.remove(player_id)
    for submissions in room.segment_history.values():
        submissions.pop(player_id, None)

    logger.info("player removed room_id=%s player_id=%s", room.room_id, player_id)

    if not room.players:
        delete_room(r=r, room=room)
        return ActionResult(
            room=room, event="playerPermanentlyDisconnected", deleted=True, removed_player_id=player_id
        )

    if room.status == RoomStatus.playing:
        RoomFSM(room).apply("abandon")
        _reset_progress(room=room)
        logger.info("room reverted to waiting room_id=%s", room.room_id)

    _save(r=r, settings=settings, room=room)
    return ActionResult(room=room, event="playerPermanentlyDisconnected", removed_player_id=player_id)


async def expire_player(*, r: redis.Redis, settings: GameSettings, room_id: UUID, player_id: str) -> ActionResult:
    """A grace period ran out: re-arm while attempts remain, otherwise evict."""

    async with _lock(r=r, settings=settings, room_id=room_id):
        room = get_room(r=r, room_id=room_id)
        if room is None or not room.is_member(player_id) or room.is_connected(player_id):
            return ActionResult(room=room, event="playerDisconnected", changed=False)

        record = room.player_records[player_id]
        if record.reconnect_attempts < settings.max_reconnect_attempts:
            record.reconnect_attempts += 1
            _save(r=r, settings=settings, room=room)
            return ActionResult(room=room, event="playerDisconnected", changed=False, rearm_grace_timer=True)

        return _remove_player_locked(r=r, settings=settings, room=room, player_id=player_id)
