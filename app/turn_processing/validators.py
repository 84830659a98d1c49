from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from app.api.models import RoomState, RoomStatus
from app.errors import (
    DuplicateSubmissionError,
    GameNotInProgressError,
    NotFoundError,
    NotHostError,
    StaleSegmentError,
)


@dataclass(frozen=True, slots=True)
class ValidationContext:
    """Inputs available to validators.

    Keep this tight and serializable-ish so we can safely log it.
    """

    room_id: str
    player_id: str
    action: str
    segment_index: int | None = None


class TurnValidator(ABC):
    """A small, composable validation unit for an incoming action."""

    @abstractmethod
    def validate(self, *, ctx: ValidationContext, room: RoomState) -> None:
        raise NotImplementedError


@dataclass(frozen=True, slots=True)
class StatusValidator(TurnValidator):
    """Validates the room status for a given action."""

    allowed_statuses: frozenset[RoomStatus]

    def validate(self, *, ctx: ValidationContext, room: RoomState) -> None:
        if room.status not in self.allowed_statuses:
            if room.status == RoomStatus.completed:
                raise GameNotInProgressError("Game is completed")
            allowed = ",".join(sorted(s.value for s in self.allowed_statuses))
            raise GameNotInProgressError(
                f"Action '{ctx.action}' not allowed while '{room.status.value}' (allowed: {allowed})"
            )


@dataclass(frozen=True, slots=True)
class MembershipValidator(TurnValidator):
    def validate(self, *, ctx: ValidationContext, room: RoomState) -> None:
        if not room.is_member(ctx.player_id):
            raise NotFoundError("Player is not in this game room")


@dataclass(frozen=True, slots=True)
class HostValidator(TurnValidator):
    """Only the first player to join may run host actions."""

    def validate(self, *, ctx: ValidationContext, room: RoomState) -> None:
        if room.host_id != ctx.player_id:
            raise NotHostError(f"Action '{ctx.action}' is reserved for the host")


@dataclass(frozen=True, slots=True)
class SegmentValidator(TurnValidator):
    """The submitted segment must be the one currently being drawn."""

    def validate(self, *, ctx: ValidationContext, room: RoomState) -> None:
        if ctx.segment_index != room.current_segment_index:
            raise StaleSegmentError(
                f"Segment {ctx.segment_index} is not current (current segment is {room.current_segment_index})"
            )


@dataclass(frozen=True, slots=True)
class DuplicateSubmissionValidator(TurnValidator):
    def validate(self, *, ctx: ValidationContext, room: RoomState) -> None:
        if ctx.player_id in room.submitted_players:
            raise DuplicateSubmissionError("You already submitted this segment")


@dataclass(frozen=True, slots=True)
class ValidatorPipeline:
    validators: tuple[TurnValidator, ...]

    def validate(self, *, ctx: ValidationContext, room: RoomState) -> None:
        for v in self.validators:
            v.validate(ctx=ctx, room=room)


_PLAYING = frozenset({RoomStatus.playing})

DEFAULT_ACTION_PIPELINES: dict[str, ValidatorPipeline] = {
    "submit": ValidatorPipeline(
        validators=(
            StatusValidator(allowed_statuses=_PLAYING),
            MembershipValidator(),
            SegmentValidator(),
            DuplicateSubmissionValidator(),
        )
    ),
    "clear_canvas": ValidatorPipeline(
        validators=(
            MembershipValidator(),
            HostValidator(),
            StatusValidator(allowed_statuses=_PLAYING),
        )
    ),
    "view": ValidatorPipeline(validators=(MembershipValidator(),)),
}


def pipeline_for_action(action: str) -> ValidatorPipeline:
    pipe = DEFAULT_ACTION_PIPELINES.get(action)
    if pipe is None:
        raise ValueError(f"Unknown action: {action}")
    return pipe
