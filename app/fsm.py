from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from app.api.models import RoomState, RoomStatus
from app.errors import GameNotInProgressError


class RoomFSM(StateMachine):
    """Lifecycle guard around RoomState.

    - waiting -> playing when the second player is in
    - playing -> playing on every segment advance
    - playing -> completed after the last segment
    - playing -> waiting when a player leaves for good

    Room mutations happen in the action layer; the FSM only decides whether a transition is legal.
    """

    waiting = State(RoomStatus.waiting.value, value=RoomStatus.waiting.value, initial=True)
    playing = State(RoomStatus.playing.value, value=RoomStatus.playing.value)
    completed = State(RoomStatus.completed.value, value=RoomStatus.completed.value, final=True)

    begin = waiting.to(playing)
    next_segment = playing.to.itself()
    finish = playing.to(completed)
    abandon = playing.to(waiting)

    def __init__(self, room: RoomState):
        self.room = room
        super().__init__(start_value=room.status.value)

    def apply(self, event: str) -> None:
        """Fire `event` and copy the resulting status back onto the room."""

        try:
            self.send(event)
        except TransitionNotAllowed as e:
            raise GameNotInProgressError(
                f"Cannot {event.replace('_', ' ')} while the game is {self.room.status.value}"
            ) from e
        self.sync_status_to_model()

    def sync_status_to_model(self) -> None:
        self.room.status = RoomStatus(str(self.current_state.value))
