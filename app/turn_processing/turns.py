from __future__ import annotations

from app.api.models import RoomState, SegmentSubmission
from app.compositor import blank_canvas


def assign_canvases(*, room: RoomState) -> None:
    """First segment: slot order follows join order."""

    room.canvas_assignment = {pid: slot for slot, pid in enumerate(room.players)}


def swap_canvas_assignment(*, room: RoomState) -> None:
    """Each player continues on the canvas the other player just drew on."""

    room.canvas_assignment = {pid: 1 - slot for pid, slot in room.canvas_assignment.items()}


def all_members_submitted(*, room: RoomState) -> bool:
    return bool(room.players) and set(room.players) <= set(room.submitted_players)


def slot_submissions(*, room: RoomState, slot: int) -> list[SegmentSubmission]:
    """Submissions drawn on canvas `slot`, in segment order."""

    out: list[SegmentSubmission] = []
    for index in sorted(room.segment_history):
        out.extend(sub for sub in room.segment_history[index].values() if sub.canvas_slot == slot)
    return out


def canvas_before_segment(*, room: RoomState, slot: int, segment_index: int) -> str:
    """What canvas `slot` looked like when `segment_index` began."""

    previous = room.segment_history.get(segment_index - 1, {})
    for sub in previous.values():
        if sub.canvas_slot == slot:
            return sub.image_data
    return blank_canvas()


def previous_red_line_y(*, room: RoomState, slot: int) -> int | None:
    """Continuity marker left on `slot` by whoever drew it in the previous segment."""

    if room.current_segment_index <= 0:
        return None
    previous = room.segment_history.get(room.current_segment_index - 1, {})
    for sub in previous.values():
        if sub.canvas_slot == slot:
            return sub.red_line_y
    return None
