"""Inbound WebSocket message schemas.

Every client frame is a JSON object tagged by `type`. The tag selects one of the
request models below; anything else is rejected here, before the room logic runs.
"""

from __future__ import annotations

import json
import re
from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from app.errors import InvalidMessageError

ROOM_CODE_RE = re.compile(r"^[A-Z0-9]{4}$")


def normalize_room_code(code: str) -> str:
    normalized = code.strip().upper()
    if not ROOM_CODE_RE.match(normalized):
        raise ValueError("game code must be 4 letters or digits")
    return normalized


class _Inbound(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore", frozen=True)

    player_id: str = Field(..., min_length=1, max_length=64)


class _WithCode(_Inbound):
    game_code: str

    @field_validator("game_code")
    @classmethod
    def _normalize_code(cls, v: str) -> str:
        return normalize_room_code(v)


class CreateGame(_Inbound):
    type: Literal["createGame"]
    display_name: str = Field(..., min_length=1, max_length=40)


class JoinGame(_WithCode):
    type: Literal["joinGame"]
    display_name: str = Field(..., min_length=1, max_length=40)


class ReconnectGame(_WithCode):
    type: Literal["reconnectGame"]


class SubmitSegment(_Inbound):
    type: Literal["submitSegment"]
    room_id: UUID
    segment_index: int = Field(..., ge=0)
    image_data: str = Field(..., min_length=1)
    red_line_y: int | None = None


class RequestGameState(_Inbound):
    type: Literal["requestGameState"]
    room_id: UUID | None = None
    game_code: str | None = None

    @field_validator("game_code")
    @classmethod
    def _normalize_code(cls, v: str | None) -> str | None:
        return normalize_room_code(v) if v is not None else None

    @model_validator(mode="after")
    def _require_room_reference(self) -> "RequestGameState":
        if self.room_id is None and self.game_code is None:
            raise ValueError("roomId or gameCode is required")
        return self


class ClearCanvas(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore", frozen=True)

    type: Literal["clearCanvas"]
    room_id: UUID
    # Taken from the connection binding when omitted.
    player_id: str | None = None


InboundMessage = Annotated[
    Union[CreateGame, JoinGame, ReconnectGame, SubmitSegment, RequestGameState, ClearCanvas],
    Field(discriminator="type"),
]

_INBOUND_ADAPTER: TypeAdapter[InboundMessage] = TypeAdapter(InboundMessage)


def _describe(e: ValidationError) -> str:
    parts: list[str] = []
    for err in e.errors():
        loc = ".".join(str(x) for x in err.get("loc", ()) if x is not None)
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts) or "invalid message"


def parse_inbound(raw: str | bytes) -> InboundMessage:
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise InvalidMessageError("Message is not valid JSON") from e

    if not isinstance(data, dict):
        raise InvalidMessageError("Message must be a JSON object")
    if "type" not in data:
        raise InvalidMessageError("Message type is required")

    try:
        return _INBOUND_ADAPTER.validate_python(data)
    except ValidationError as e:
        raise InvalidMessageError(_describe(e)) from e
