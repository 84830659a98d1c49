from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status

from app.api.deps import get_server
from app.api.messages import normalize_room_code
from app.api.models import GameCreatedResponse, GameCreateRequest, RoomSummary
from app.errors import ConflictError, GameError, InvalidMessageError, NotFoundError, StoreUnavailableError
from app.game_server import GameServer
from app.room_store import create_room_with_code, create_room_with_unique_code, require_room_by_code

router = APIRouter()


def _http_error(e: GameError) -> HTTPException:
    if isinstance(e, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(e, ConflictError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(e, StoreUnavailableError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    return HTTPException(status_code=code, detail=str(e))


@router.websocket("/ws")
async def game_ws(websocket: WebSocket, server: GameServer = Depends(get_server)) -> None:
    await websocket.accept()
    conn = await server.connect(websocket)

    try:
        while True:
            raw = await websocket.receive_text()
            await server.handle_message(conn.connection_id, raw)
    except WebSocketDisconnect:
        await server.disconnect(conn.connection_id)
    except Exception:
        await server.disconnect(conn.connection_id)
        raise


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/game", response_model=GameCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_game_route(
    payload: GameCreateRequest | None = None,
    server: GameServer = Depends(get_server),
) -> GameCreatedResponse:
    try:
        if payload is not None and payload.game_code:
            try:
                code = normalize_room_code(payload.game_code)
            except ValueError as e:
                raise InvalidMessageError(str(e)) from e
            room = create_room_with_code(r=server.r, code=code, ttl_seconds=server.settings.room_ttl_seconds)
        else:
            room = create_room_with_unique_code(r=server.r, ttl_seconds=server.settings.room_ttl_seconds)
    except GameError as e:
        raise _http_error(e) from e

    return GameCreatedResponse(room_id=room.room_id, game_code=room.code)


@router.get("/game/{game_code}", response_model=RoomSummary)
async def get_game_route(game_code: str, server: GameServer = Depends(get_server)) -> RoomSummary:
    try:
        try:
            code = normalize_room_code(game_code)
        except ValueError as e:
            raise InvalidMessageError(str(e)) from e
        room = require_room_by_code(r=server.r, code=code)
    except GameError as e:
        raise _http_error(e) from e
    return RoomSummary.from_room(room)
