from __future__ import annotations

import asyncio
import logging

from memory_match.coordinator import MatchCoordinator
from memory_match.models import SessionPhase, SessionSnapshot
from memory_match.store import SnapshotStore


logger = logging.getLogger(__name__)


class AutoSaver:
    """Decides *when* to snapshot; the store only knows how."""

    def __init__(self, *, coordinator: MatchCoordinator, store: SnapshotStore, interval: float = 30.0) -> None:
        self.coordinator = coordinator
        self.store = store
        self.interval = interval

    def save_if_active(self) -> SessionSnapshot | None:
        session = self.coordinator.session
        if session is None or session.phase != SessionPhase.active:
            return None
        return self.store.save(session)

    def save_now(self) -> SessionSnapshot | None:
        """Snapshot immediately, e.g. when the host goes to the background."""

        session = self.coordinator.session
        if session is None or session.phase == SessionPhase.complete:
            return None
        return self.store.save(session)

    async def run(self) -> None:
        logger.debug("Auto-save every %.1fs", self.interval)
        while True:
            await asyncio.sleep(self.interval)
            if self.save_if_active() is not None:
                logger.debug("Auto-saved session")
