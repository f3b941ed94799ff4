from __future__ import annotations

import logging
from collections import Counter
from datetime import UTC, datetime, timedelta

import redis
from pydantic import ValidationError

from memory_match.models import (
    SNAPSHOT_FORMAT_VERSION,
    CardRecord,
    CardState,
    HighScoreRecord,
    Session,
    SessionPhase,
    SessionSnapshot,
)


logger = logging.getLogger(__name__)

SNAPSHOT_KEY = "memory_match:snapshot"
STATS_KEY = "memory_match:stats"

DEFAULT_MAX_AGE = timedelta(days=30)
SAVE_TIME_FORMAT = "%b %d, %Y %H:%M"


def create_redis(url: str) -> redis.Redis:
    # decode_responses=True => strings in/out instead of bytes
    return redis.Redis.from_url(url, decode_responses=True, socket_timeout=2.0)


def _now() -> datetime:
    return datetime.now(tz=UTC)


def _major(version: str) -> str:
    return version.split(".", 1)[0]


def snapshot_from_session(session: Session, *, saved_at: datetime | None = None) -> SessionSnapshot:
    """Deep-copy the parts of a live session needed to rebuild it exactly."""

    cards = [
        CardRecord(
            token_id=c.token_id,
            position=c.position,
            is_flipped=c.is_face_up,
            is_matched=c.is_matched,
            state=c.state,
        )
        for c in session.cards
    ]
    return SessionSnapshot(
        format_version=SNAPSHOT_FORMAT_VERSION,
        session_id=session.session_id,
        grid_width=session.grid.width,
        grid_height=session.grid.height,
        cards=cards,
        flipped_positions=[c.position for c in session.revealed],
        pending_positions=[c.position for c in session.pending],
        score=session.score,
        moves=session.moves,
        elapsed_time=session.elapsed_time,
        matched_pairs=session.matched_pairs,
        total_pairs=session.total_pairs,
        phase=session.phase,
        seed=session.seed,
        saved_at=saved_at or _now(),
    )


class SnapshotStore:
    """Redis-backed snapshot and lifetime stats.

    - one snapshot at a time under a fixed key; `save` overwrites it with a single SET
    - high scores live in their own hash and survive snapshot deletion
    - storage failures degrade to "no snapshot" rather than raising
    """

    def __init__(
        self,
        *,
        r: redis.Redis,
        max_age: timedelta = DEFAULT_MAX_AGE,
        snapshot_key: str = SNAPSHOT_KEY,
        stats_key: str = STATS_KEY,
    ) -> None:
        self._r = r
        self.max_age = max_age
        self.snapshot_key = snapshot_key
        self.stats_key = stats_key

    def save(self, session: Session) -> SessionSnapshot | None:
        snapshot = snapshot_from_session(session)
        try:
            self._r.set(self.snapshot_key, snapshot.model_dump_json())
        except redis.RedisError:
            logger.warning("Failed to write snapshot for session %s", session.session_id, exc_info=True)
            return None
        logger.debug("Saved snapshot for session %s (phase=%s)", session.session_id, session.phase.value)
        return snapshot

    def load(self) -> SessionSnapshot | None:
        try:
            raw = self._r.get(self.snapshot_key)
        except redis.RedisError:
            logger.warning("Snapshot storage unavailable", exc_info=True)
            return None
        if not raw:
            return None
        try:
            return SessionSnapshot.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("Discarding unreadable snapshot: %s", e.errors()[:3])
            return None

    def has_snapshot(self) -> bool:
        try:
            return bool(self._r.exists(self.snapshot_key))
        except redis.RedisError:
            logger.warning("Snapshot storage unavailable", exc_info=True)
            return False

    def delete(self) -> None:
        try:
            self._r.delete(self.snapshot_key)
        except redis.RedisError:
            logger.warning("Failed to delete snapshot", exc_info=True)
            return
        logger.debug("Deleted snapshot")

    def is_valid(self, snapshot: SessionSnapshot | None, *, now: datetime | None = None) -> bool:
        reason = self.invalid_reason(snapshot, now=now)
        if reason is not None:
            logger.info("Snapshot rejected: %s", reason)
            return False
        return True

    def invalid_reason(self, snapshot: SessionSnapshot | None, *, now: datetime | None = None) -> str | None:
        if snapshot is None:
            return "no snapshot"
        if _major(snapshot.format_version) != _major(SNAPSHOT_FORMAT_VERSION):
            return f"unsupported format version {snapshot.format_version}"
        if not snapshot.cards:
            return "missing card list"
        if snapshot.phase == SessionPhase.complete:
            return "session already complete"
        if snapshot.grid_width <= 0 or snapshot.grid_height <= 0:
            return "bad grid dimensions"

        cell_count = snapshot.grid_width * snapshot.grid_height
        if len(snapshot.cards) != cell_count:
            return f"{len(snapshot.cards)} cards for a {snapshot.grid_width}x{snapshot.grid_height} grid"
        if cell_count % 2 != 0 or snapshot.total_pairs != cell_count // 2:
            return f"total_pairs {snapshot.total_pairs} doesn't fit {cell_count} cards"
        if sorted(c.position for c in snapshot.cards) != list(range(cell_count)):
            return "card positions are not a permutation of the grid"
        if any(not 0 <= pos < cell_count for pos in snapshot.pending_positions):
            return "queued reveal outside the grid"
        if any(n % 2 for n in Counter(c.token_id for c in snapshot.cards).values()):
            return "a token id appears an odd number of times"

        matched = [c for c in snapshot.cards if c.is_matched or c.state == CardState.matched]
        if snapshot.matched_pairs > snapshot.total_pairs or len(matched) != snapshot.matched_pairs * 2:
            return f"matched_pairs {snapshot.matched_pairs} disagrees with {len(matched)} matched cards"
        if snapshot.matched_pairs == snapshot.total_pairs:
            return "every pair is already matched"
        # The opening preview shows every card; the limit applies once play begins.
        face_up = [c for c in snapshot.cards if c.is_flipped and not c.is_matched]
        if snapshot.phase not in {SessionPhase.setup, SessionPhase.preview_all} and len(face_up) > 2:
            return f"{len(face_up)} face-up unmatched cards"

        saved_at = snapshot.saved_at
        if saved_at.tzinfo is None:
            saved_at = saved_at.replace(tzinfo=UTC)
        if (now or _now()) - saved_at > self.max_age:
            return f"older than {self.max_age.days} days"
        return None

    def record_completion(self, final_score: int) -> HighScoreRecord:
        """Fold a finished game into the lifetime stats (best score, games completed)."""

        def _update(pipe: redis.client.Pipeline) -> HighScoreRecord:
            current = _record_from_hash(pipe.hgetall(self.stats_key))
            updated = HighScoreRecord(
                best_score=max(current.best_score, final_score),
                total_games_completed=current.total_games_completed + 1,
            )
            pipe.multi()
            pipe.hset(
                self.stats_key,
                mapping={
                    "best_score": updated.best_score,
                    "total_games_completed": updated.total_games_completed,
                },
            )
            return updated

        try:
            record = self._r.transaction(_update, self.stats_key, value_from_callable=True)
        except redis.RedisError:
            logger.warning("Failed to record completed game", exc_info=True)
            return HighScoreRecord(best_score=final_score, total_games_completed=0)

        logger.info(
            "Recorded completed game: score=%d best=%d games=%d",
            final_score,
            record.best_score,
            record.total_games_completed,
        )
        return record

    def high_scores(self) -> HighScoreRecord:
        try:
            return _record_from_hash(self._r.hgetall(self.stats_key))
        except redis.RedisError:
            logger.warning("Stats storage unavailable", exc_info=True)
            return HighScoreRecord()


def save_time_label(snapshot: SessionSnapshot | None) -> str:
    if snapshot is None:
        return "No save data"
    return snapshot.saved_at.strftime(SAVE_TIME_FORMAT)


def _record_from_hash(raw: dict) -> HighScoreRecord:
    def _get(name: str) -> int:
        value = raw.get(name)
        if value is None:
            value = raw.get(name.encode())
        if value is None:
            return 0
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.warning("Ignoring unreadable stats field %s=%r", name, value)
            return 0

    return HighScoreRecord(best_score=_get("best_score"), total_games_completed=_get("total_games_completed"))
