from __future__ import annotations

from typing import Any

from app.api.models import RoomState, RoomStatus
from app.core.events import OutboundType
from app.settings import MAX_PLAYERS, SEGMENT_NAMES
from app.turn_processing.turns import previous_red_line_y


def segment_name(index: int) -> str | None:
    return SEGMENT_NAMES[index] if 0 <= index < len(SEGMENT_NAMES) else None


def status_message(*, room: RoomState, can_draw: bool, is_waiting_for_others: bool) -> str:
    if room.status == RoomStatus.completed:
        return "Game Over! The exquisite corpse is complete!"

    if room.status == RoomStatus.waiting:
        missing = MAX_PLAYERS - room.player_count
        if missing <= 0:
            return f"Game {room.code}: waiting for a player to reconnect..."
        return f"Joined game {room.code}. Waiting for {missing} more player(s)..."

    if is_waiting_for_others:
        return "Waiting for other players to submit their segments."
    if can_draw:
        return f"Draw the {segment_name(room.current_segment_index)}."
    return "Waiting for the game to continue."


def player_view(*, room: RoomState, player_id: str, event: OutboundType) -> dict[str, Any]:
    """Everything one client needs to render the room, derived only from the snapshot."""

    playing = room.status == RoomStatus.playing
    submitted = player_id in room.submitted_players
    can_draw = playing and not submitted
    is_waiting_for_others = playing and submitted

    slot = room.canvas_assignment.get(player_id)

    canvas_data: str | None = None
    peek_data: str | None = None
    red_line_y: int | None = None
    if room.status != RoomStatus.completed and slot is not None:
        if room.current_segment_index > 0:
            peek_data = room.peek_canvases[slot]
            red_line_y = previous_red_line_y(room=room, slot=slot)
        if can_draw and peek_data is not None:
            canvas_data = peek_data
        else:
            canvas_data = room.active_canvases[slot]

    return {
        "type": event,
        "roomId": str(room.room_id),
        "gameCode": room.code,
        "message": status_message(room=room, can_draw=can_draw, is_waiting_for_others=is_waiting_for_others),
        "status": room.status.value,
        "playerCount": room.player_count,
        "players": [
            {
                "playerId": pid,
                "displayName": room.player_records[pid].display_name,
                "connectionStatus": room.player_records[pid].connection_status.value,
            }
            for pid in room.players
            if pid in room.player_records
        ],
        "currentSegmentIndex": room.current_segment_index,
        "segmentName": segment_name(room.current_segment_index),
        "segmentCount": room.segment_count,
        "canDraw": can_draw,
        "isWaitingForOthers": is_waiting_for_others,
        "canvasData": canvas_data,
        "peekData": peek_data,
        "previousRedLineY": red_line_y,
        "finalArtworks": list(room.final_artworks) if room.status == RoomStatus.completed else [],
    }
