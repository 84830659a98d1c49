from __future__ import annotations


class GameError(ValueError):
    """Base class for errors that are reported back to the acting client.

    Subclasses ValueError so route handlers can keep a single `except ValueError` path.
    """

    code = "game_error"
    retryable = False

    def to_payload(self) -> dict[str, object]:
        return {"type": "error", "code": self.code, "message": str(self), "retryable": self.retryable}


class InvalidMessageError(GameError):
    code = "invalid_message"


class NotFoundError(GameError):
    code = "not_found"


class ConflictError(GameError):
    code = "conflict"


class RoomFullError(ConflictError):
    code = "room_full"


class StaleSegmentError(ConflictError):
    code = "stale_segment"


class DuplicateSubmissionError(ConflictError):
    code = "duplicate_submission"


class GameNotInProgressError(ConflictError):
    code = "game_not_in_progress"


class NotHostError(ConflictError):
    code = "not_host"


class RoomBusyError(ConflictError):
    code = "room_busy"
    retryable = True


class StoreUnavailableError(GameError):
    code = "store_unavailable"
    retryable = True


class InternalError(GameError):
    """Anything unexpected while handling a message; reported without details."""

    code = "internal_error"


class ImageDecodeError(Exception):
    """Raised by the compositor when an image payload cannot be decoded.

    Never reaches clients as is. Compositing substitutes a blank frame, and a submitted
    drawing that fails to decode is answered as an invalid message.
    """
