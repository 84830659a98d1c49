from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from app.settings import MAX_PLAYERS, SEGMENT_COUNT


class RoomStatus(StrEnum):
    waiting = "waiting"
    playing = "playing"
    completed = "completed"


class ConnectionStatus(StrEnum):
    connected = "connected"
    disconnected = "disconnected"


class PlayerRecord(BaseModel):
    display_name: str
    connection_status: ConnectionStatus = ConnectionStatus.connected
    reconnect_attempts: int = 0


class SegmentSubmission(BaseModel):
    player_id: str
    canvas_slot: int
    image_data: str

    # Continuity marker: where the drawer wants the next player to continue from.
    red_line_y: int | None = None


class RoomState(BaseModel):
    room_id: UUID
    code: str
    created_at: datetime
    last_updated_at: datetime

    # Join order; index 0 is the host.
    players: list[str] = Field(default_factory=list)
    player_records: dict[str, PlayerRecord] = Field(default_factory=dict)

    status: RoomStatus = RoomStatus.waiting

    segment_count: int = SEGMENT_COUNT
    current_segment_index: int = 0
    submitted_players: list[str] = Field(default_factory=list)

    # player_id -> canvas slot (0 or 1)
    canvas_assignment: dict[str, int] = Field(default_factory=dict)
    active_canvases: list[str] = Field(default_factory=list)

    # Bottom strip of each slot's canvas, computed on advance for the next drawer.
    peek_canvases: list[str | None] = Field(default_factory=lambda: [None, None])

    # segment index -> player_id -> submission
    segment_history: dict[int, dict[str, SegmentSubmission]] = Field(default_factory=dict)

    final_artworks: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_invariants(self) -> "RoomState":
        if len(self.players) > MAX_PLAYERS:
            raise ValueError(f"A room holds at most {MAX_PLAYERS} players")
        if len(set(self.players)) != len(self.players):
            raise ValueError("Duplicate player membership")
        if not set(self.submitted_players) <= set(self.players):
            raise ValueError("submitted_players must be a subset of players")
        if not 0 <= self.current_segment_index <= self.segment_count:
            raise ValueError("current_segment_index out of range")
        if self.status == RoomStatus.completed:
            if self.current_segment_index != self.segment_count:
                raise ValueError("A completed room must be past its last segment")
            if len(self.final_artworks) != MAX_PLAYERS:
                raise ValueError("A completed room must carry one artwork per canvas")
        return self

    @property
    def player_count(self) -> int:
        return len(self.players)

    @property
    def host_id(self) -> str | None:
        return self.players[0] if self.players else None

    def is_member(self, player_id: str) -> bool:
        return player_id in self.players

    def is_connected(self, player_id: str) -> bool:
        record = self.player_records.get(player_id)
        return record is not None and record.connection_status == ConnectionStatus.connected

    def connected_players(self) -> list[str]:
        return [pid for pid in self.players if self.is_connected(pid)]


class _HttpModel(BaseModel):
    # HTTP bodies use the same camelCase keys as the WebSocket frames.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GameCreateRequest(_HttpModel):
    # Optional preferred code; a random unique one is generated otherwise.
    game_code: str | None = Field(default=None, min_length=4, max_length=4)


class GameCreatedResponse(_HttpModel):
    room_id: UUID
    game_code: str


class PlayerSummary(_HttpModel):
    player_id: str
    display_name: str
    connection_status: ConnectionStatus


class RoomSummary(_HttpModel):
    room_id: UUID
    game_code: str
    status: RoomStatus
    player_count: int
    current_segment_index: int
    segment_count: int
    players: list[PlayerSummary]

    @staticmethod
    def from_room(room: RoomState) -> "RoomSummary":
        return RoomSummary(
            room_id=room.room_id,
            game_code=room.code,
            status=room.status,
            player_count=room.player_count,
            current_segment_index=room.current_segment_index,
            segment_count=room.segment_count,
            players=[
                PlayerSummary(
                    player_id=pid,
                    display_name=room.player_records[pid].display_name,
                    connection_status=room.player_records[pid].connection_status,
                )
                for pid in room.players
                if pid in room.player_records
            ],
        )
