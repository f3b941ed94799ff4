from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


SNAPSHOT_FORMAT_VERSION = "1.0"


class CardState(StrEnum):
    hidden = "hidden"
    revealing = "revealing"
    revealed = "revealed"
    hiding = "hiding"
    matched = "matched"


class SessionPhase(StrEnum):
    setup = "setup"
    preview_all = "preview_all"
    active = "active"
    resolving = "resolving"
    complete = "complete"


class GridConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int
    height: int

    @property
    def cell_count(self) -> int:
        return self.width * self.height


@dataclass(slots=True)
class Card:
    # Not unique: every token id appears exactly twice per session.
    token_id: int
    position: int
    state: CardState = CardState.hidden

    @property
    def is_face_up(self) -> bool:
        return self.state in {CardState.revealing, CardState.revealed, CardState.matched}

    @property
    def is_matched(self) -> bool:
        return self.state == CardState.matched


@dataclass(slots=True)
class Session:
    """Live state of one game. Mutated only by the MatchCoordinator that owns it."""

    grid: GridConfig
    cards: list[Card]
    total_pairs: int
    seed: int | None = None
    session_id: UUID = field(default_factory=uuid4)

    phase: SessionPhase = SessionPhase.setup
    # Back-references into `cards`; never more than two.
    revealed: list[Card] = field(default_factory=list)
    pending: deque[Card] = field(default_factory=deque)

    score: int = 0
    moves: int = 0
    elapsed_time: float = 0.0
    matched_pairs: int = 0


class CardRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    token_id: int
    position: int
    is_flipped: bool = False
    is_matched: bool = False
    # Newer writers store the exact state; the two flags above are enough on their own.
    state: CardState | None = None


class SessionSnapshot(BaseModel):
    """Flattened, versioned copy of a Session. Unknown fields are ignored on load."""

    model_config = ConfigDict(extra="ignore")

    format_version: str = SNAPSHOT_FORMAT_VERSION
    session_id: UUID | None = None
    grid_width: int
    grid_height: int
    cards: list[CardRecord]
    flipped_positions: list[int] = Field(default_factory=list)
    # Reveals queued while a pair was being judged, oldest first.
    pending_positions: list[int] = Field(default_factory=list)

    score: int = Field(0, ge=0)
    moves: int = Field(0, ge=0)
    elapsed_time: float = Field(0.0, ge=0)
    matched_pairs: int = Field(0, ge=0)
    total_pairs: int = Field(0, ge=0)
    phase: SessionPhase = SessionPhase.active
    seed: int | None = None

    saved_at: datetime


class HighScoreRecord(BaseModel):
    best_score: int = 0
    total_games_completed: int = 0
