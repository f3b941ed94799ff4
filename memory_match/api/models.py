from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from memory_match.models import CardState, Session, SessionPhase, SessionSnapshot


class NewGameRequest(BaseModel):
    # Omitted dimensions fall back to the configured grid.
    width: int | None = Field(None, ge=1, le=12)
    height: int | None = Field(None, ge=1, le=12)


class CardView(BaseModel):
    position: int
    state: CardState
    # Face is only shown once the card is turned over.
    token_id: int | None = None


class SessionView(BaseModel):
    session_id: UUID
    width: int
    height: int
    phase: SessionPhase
    score: int
    moves: int
    elapsed_time: float
    matched_pairs: int
    total_pairs: int
    revealed_positions: list[int]
    pending_positions: list[int]
    cards: list[CardView]

    @staticmethod
    def of(session: Session) -> "SessionView":
        return SessionView(
            session_id=session.session_id,
            width=session.grid.width,
            height=session.grid.height,
            phase=session.phase,
            score=session.score,
            moves=session.moves,
            elapsed_time=session.elapsed_time,
            matched_pairs=session.matched_pairs,
            total_pairs=session.total_pairs,
            revealed_positions=[c.position for c in session.revealed],
            pending_positions=[c.position for c in session.pending],
            cards=[
                CardView(
                    position=c.position,
                    state=c.state,
                    token_id=c.token_id if c.state != CardState.hidden else None,
                )
                for c in session.cards
            ],
        )


class RevealResponse(BaseModel):
    accepted: bool
    session: SessionView


class SnapshotInfo(BaseModel):
    exists: bool
    valid: bool
    saved_at_label: str


class SaveResponse(BaseModel):
    saved: bool
    saved_at: datetime | None = None
    phase: SessionPhase | None = None

    @staticmethod
    def of(snapshot: SessionSnapshot | None) -> "SaveResponse":
        if snapshot is None:
            return SaveResponse(saved=False)
        return SaveResponse(saved=True, saved_at=snapshot.saved_at, phase=snapshot.phase)
