from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status

from memory_match.api.deps import get_service
from memory_match.api.models import (
    NewGameRequest,
    RevealResponse,
    SaveResponse,
    SessionView,
    SnapshotInfo,
)
from memory_match.exceptions import ConfigError, InvariantViolation, UnknownCard
from memory_match.models import GridConfig, HighScoreRecord, Session
from memory_match.service import GameService
from memory_match.websocket_hub import hub

router = APIRouter()


def _grid_from(payload: NewGameRequest, service: GameService) -> GridConfig | None:
    if payload.width is None and payload.height is None:
        return None
    return GridConfig(
        width=payload.width or service.settings.grid_width,
        height=payload.height or service.settings.grid_height,
    )


def _require_session(service: GameService) -> Session:
    session = service.session
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No session in progress")
    return session


async def _pump_signals(websocket: WebSocket, queue: asyncio.Queue[dict[str, Any]]) -> None:
    while True:
        payload = await queue.get()
        await websocket.send_json(payload)


@router.websocket("/ws/session")
async def session_signals_ws(websocket: WebSocket) -> None:
    await websocket.accept()
    queue = hub.connect()
    pump = asyncio.create_task(_pump_signals(websocket, queue))

    try:
        # Keep the socket open; client can optionally send pings.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(queue)
        pump.cancel()
        await asyncio.gather(pump, return_exceptions=True)


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/session", response_model=SessionView, status_code=status.HTTP_201_CREATED)
async def new_game_route(payload: NewGameRequest, service: GameService = Depends(get_service)) -> SessionView:
    try:
        session = service.start_new_game(_grid_from(payload, service))
    except ConfigError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    return SessionView.of(session)


@router.get("/session", response_model=SessionView)
async def get_session_route(service: GameService = Depends(get_service)) -> SessionView:
    return SessionView.of(_require_session(service))


@router.post("/session/cards/{position}/reveal", response_model=RevealResponse)
async def reveal_route(position: int, service: GameService = Depends(get_service)) -> RevealResponse:
    try:
        accepted = service.request_reveal(position)
    except UnknownCard as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except InvariantViolation as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e)) from e
    return RevealResponse(accepted=accepted, session=SessionView.of(_require_session(service)))


@router.get("/snapshot", response_model=SnapshotInfo)
async def snapshot_info_route(service: GameService = Depends(get_service)) -> SnapshotInfo:
    info = service.resume_info()
    return SnapshotInfo(exists=info.exists, valid=info.valid, saved_at_label=info.saved_at_label)


@router.post("/session/resume", response_model=SessionView)
async def resume_route(service: GameService = Depends(get_service)) -> SessionView:
    return SessionView.of(service.load_from_snapshot())


@router.post("/session/discard", response_model=SessionView, status_code=status.HTTP_201_CREATED)
async def discard_route(service: GameService = Depends(get_service)) -> SessionView:
    return SessionView.of(service.discard_snapshot_and_start_new())


@router.post("/session/save", response_model=SaveResponse)
async def save_route(service: GameService = Depends(get_service)) -> SaveResponse:
    return SaveResponse.of(service.save())


@router.get("/stats", response_model=HighScoreRecord)
async def stats_route(service: GameService = Depends(get_service)) -> HighScoreRecord:
    return service.stats()
