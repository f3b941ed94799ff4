from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import timedelta

import redis

from memory_match.animation import FlipAnimator
from memory_match.autosave import AutoSaver
from memory_match.coordinator import MatchCoordinator
from memory_match.exceptions import InvalidSnapshot
from memory_match.models import GridConfig, HighScoreRecord, Session, SessionSnapshot
from memory_match.settings import GameSettings, settings_from_env
from memory_match.signals import SignalHub
from memory_match.store import SnapshotStore, save_time_label


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ResumeInfo:
    """What the host needs to decide whether to show the resume prompt."""

    exists: bool
    valid: bool
    saved_at_label: str


class GameService:
    """Wires the match engine, snapshot store and signal hub for one host.

    Entry points mirror the presentation layer's inputs: new game, reveal, and the two
    choices of the resume prompt.
    """

    def __init__(
        self,
        *,
        r: redis.Redis,
        settings: GameSettings | None = None,
        animator: FlipAnimator | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.settings = settings or settings_from_env()
        self.hub = SignalHub()
        self.store = SnapshotStore(r=r, max_age=timedelta(days=self.settings.snapshot_max_age_days))
        self.coordinator = MatchCoordinator(
            settings=self.settings,
            animator=animator,
            hub=self.hub,
            on_complete=self._on_complete,
            rng=rng,
        )
        self.autosaver = AutoSaver(
            coordinator=self.coordinator,
            store=self.store,
            interval=self.settings.autosave_interval,
        )
        self._background: list[asyncio.Task[None]] = []

    @property
    def session(self) -> Session | None:
        return self.coordinator.session

    def _on_complete(self, session: Session) -> int:
        record = self.store.record_completion(session.score)
        # A finished session must never auto-resume.
        self.store.delete()
        return record.best_score

    def resume_info(self) -> ResumeInfo:
        if not self.store.has_snapshot():
            return ResumeInfo(exists=False, valid=False, saved_at_label=save_time_label(None))
        snapshot = self.store.load()
        return ResumeInfo(
            exists=True,
            valid=self.store.is_valid(snapshot),
            saved_at_label=save_time_label(snapshot),
        )

    def start_new_game(self, config: GridConfig | None = None) -> Session:
        self.store.delete()
        return self.coordinator.start(config)

    async def initialize(self, config: GridConfig | None = None) -> Session:
        self.store.delete()
        return await self.coordinator.initialize(config)

    def discard_snapshot_and_start_new(self, config: GridConfig | None = None) -> Session:
        return self.start_new_game(config)

    def load_from_snapshot(self) -> Session:
        """Resume the stored session, or deal a fresh one if it can't be used."""

        snapshot = self.store.load()
        reason = self.store.invalid_reason(snapshot)
        if snapshot is None or reason is not None:
            logger.info("Can't resume (%s); starting a new game", reason)
            return self.start_new_game()

        try:
            return self.coordinator.restore(snapshot)
        except InvalidSnapshot as e:
            logger.info("Can't resume (%s); starting a new game", e)
            return self.start_new_game()

    def request_reveal(self, position: int) -> bool:
        return self.coordinator.request_reveal(position)

    def save(self) -> SessionSnapshot | None:
        return self.autosaver.save_now()

    def stats(self) -> HighScoreRecord:
        return self.store.high_scores()

    def start_background(self) -> None:
        """Start the play clock and periodic auto-save on the running loop."""

        if self._background:
            return
        loop = asyncio.get_running_loop()
        self._background = [
            loop.create_task(self.coordinator.run_clock()),
            loop.create_task(self.autosaver.run()),
        ]

    async def stop_background(self) -> None:
        tasks, self._background = self._background, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        # Host is going away: keep progress if a game is still running.
        self.save()
