from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Callable, Coroutine
from typing import Any

from memory_match.animation import FlipAnimator, TimedFlipAnimator
from memory_match.deck import build_deck, new_seed, normalize_grid
from memory_match.exceptions import InvalidSnapshot, InvariantViolation, StaleInput, UnknownCard
from memory_match.fsm import transition_card, transition_session
from memory_match.models import (
    Card,
    CardRecord,
    CardState,
    GridConfig,
    Session,
    SessionPhase,
    SessionSnapshot,
)
from memory_match.settings import GameSettings
from memory_match.signals import SignalHub


logger = logging.getLogger(__name__)

MATCH_REWARD = 100
MISMATCH_PENALTY = 10
MAX_FACE_UP = 2

# Called once when a session completes; returns the best score to report.
CompletionHook = Callable[[Session], int]


class MatchCoordinator:
    """Turn engine for a single memory session.

    Runs on one asyncio loop. Flip animations, the observation delay before a pair is
    judged, and the opening preview are tasks; nothing here ever blocks a thread.

    Rules:
      - at most two unmatched cards face up at once
      - reveals arriving while a pair is being judged are queued (FIFO) and replayed
        once the verdict is applied; entries that became ineligible are dropped
      - at most one resolution cycle is in flight
      - `reset()` abandons the session; completions belonging to an older session
        are ignored
    """

    def __init__(
        self,
        *,
        settings: GameSettings | None = None,
        animator: FlipAnimator | None = None,
        hub: SignalHub | None = None,
        on_complete: CompletionHook | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.settings = settings or GameSettings()
        self.animator: FlipAnimator = animator or TimedFlipAnimator(duration=self.settings.flip_duration)
        self.hub = hub or SignalHub()
        self.session: Session | None = None

        self._on_complete = on_complete
        self._rng = rng
        self._generation = 0
        self._tasks: set[asyncio.Task[None]] = set()
        self._flips: dict[int, asyncio.Task[None]] = {}
        self._resolution: asyncio.Task[None] | None = None
        self._preview: asyncio.Task[None] | None = None
        self._failure: BaseException | None = None

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start(self, config: GridConfig | None = None) -> Session:
        """Deal a fresh deck and schedule the opening preview. Needs a running loop."""

        self.reset()
        self._failure = None

        grid = normalize_grid(config or self.settings.grid)
        seed = new_seed()
        rng = self._rng or random.Random(seed)
        cards = build_deck(grid, self.settings.token_pool_size, rng=rng)

        session = Session(grid=grid, cards=cards, total_pairs=len(cards) // 2, seed=seed)
        self.session = session
        logger.info(
            "Starting session %s (%dx%d, %d pairs)", session.session_id, grid.width, grid.height, session.total_pairs
        )
        self._emit_started(session)
        self._begin_preview(session)
        return session

    async def initialize(self, config: GridConfig | None = None) -> Session:
        """Start a new session and return once the preview is over and play is active."""

        session = self.start(config)
        await self._wait_for(self._preview)
        self._raise_failure()
        return session

    def restore(self, snapshot: SessionSnapshot) -> Session:
        """Rehydrate a session from a validated snapshot."""

        if snapshot.phase == SessionPhase.complete:
            raise InvalidSnapshot("Snapshot belongs to a completed session")

        self.reset()
        self._failure = None

        records = sorted(snapshot.cards, key=lambda rec: rec.position)
        cards = [Card(token_id=rec.token_id, position=rec.position, state=_settled_state(rec)) for rec in records]
        grid = GridConfig(width=snapshot.grid_width, height=snapshot.grid_height)

        session = Session(
            grid=grid,
            cards=cards,
            total_pairs=snapshot.total_pairs,
            seed=snapshot.seed,
            score=snapshot.score,
            moves=snapshot.moves,
            elapsed_time=snapshot.elapsed_time,
            matched_pairs=snapshot.matched_pairs,
        )
        if snapshot.session_id is not None:
            session.session_id = snapshot.session_id

        if snapshot.phase in {SessionPhase.setup, SessionPhase.preview_all}:
            # Saved before play began: replay the preview over the same deck.
            for card in cards:
                if card.state != CardState.matched:
                    card.state = CardState.hidden
            self.session = session
            logger.info("Restoring session %s from a pre-play snapshot; replaying preview", session.session_id)
            self._emit_started(session)
            self._begin_preview(session)
            return session

        face_up = [c for c in cards if c.state == CardState.revealed]
        if len(face_up) > MAX_FACE_UP:
            raise InvalidSnapshot(f"Snapshot has {len(face_up)} face-up unmatched cards")
        order = {pos: i for i, pos in enumerate(snapshot.flipped_positions)}
        face_up.sort(key=lambda c: order.get(c.position, len(order) + c.position))

        session.phase = SessionPhase.active
        session.revealed.extend(face_up)
        by_position = {c.position: c for c in cards}
        session.pending.extend(
            by_position[pos]
            for pos in snapshot.pending_positions
            if pos in by_position and by_position[pos].state == CardState.hidden
        )
        self.session = session

        logger.info(
            "Restored session %s (score=%d, moves=%d, %d/%d pairs)",
            session.session_id,
            session.score,
            session.moves,
            session.matched_pairs,
            session.total_pairs,
        )
        self._emit_started(session)
        self._emit_counters(session)

        # A pair that was being judged when the snapshot was taken is judged again.
        if len(session.revealed) == MAX_FACE_UP:
            self._begin_resolution(session)
        else:
            self._drain_pending(session)
        return session

    def reset(self) -> None:
        """Abandon the current session, cancelling everything in flight."""

        self._generation += 1
        for task in list(self._tasks):
            task.cancel()
        self._flips.clear()
        self._resolution = None
        self._preview = None

        if self.session is not None:
            self.session.pending.clear()
            self.session.revealed.clear()
            logger.debug("Reset session %s", self.session.session_id)
        self.session = None

    async def wait_idle(self) -> None:
        """Wait until no flip, preview, or resolution is in flight.

        Re-raises a failure (e.g. an InvariantViolation) that aborted the session.
        """

        while self._tasks:
            await asyncio.wait(set(self._tasks))
            await asyncio.sleep(0)
        self._raise_failure()

    @property
    def busy(self) -> bool:
        return bool(self._tasks)

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def request_reveal(self, position: int) -> bool:
        """Handle a click/tap on `position`.

        Returns True if the reveal was applied or queued, False if it was ignored.
        """

        session = self._require_session()
        card = self._card_at(session, position)

        if session.phase not in {SessionPhase.active, SessionPhase.resolving}:
            logger.debug("Ignoring reveal of card %d during phase %s", position, session.phase.value)
            return False
        if not self._is_eligible(card):
            logger.debug("Ignoring reveal of card %d in state %s", position, card.state.value)
            return False

        if session.phase == SessionPhase.resolving:
            session.pending.append(card)
            logger.debug("Queued reveal of card %d (%d pending)", position, len(session.pending))
            return True

        self._reveal(session, card)
        return True

    def tick(self, delta: float) -> None:
        """Advance the play clock. Only runs while a pair can be revealed or judged."""

        if delta < 0:
            raise ValueError("delta must be non-negative")
        session = self.session
        if session is None or session.phase not in {SessionPhase.active, SessionPhase.resolving}:
            return
        session.elapsed_time += delta
        self.hub.emit("time_changed", elapsed_time=session.elapsed_time)

    async def run_clock(self, interval: float | None = None) -> None:
        loop = asyncio.get_running_loop()
        step = interval if interval is not None else self.settings.clock_interval
        last = loop.time()
        while True:
            await asyncio.sleep(step)
            now = loop.time()
            self.tick(now - last)
            last = now

    # ------------------------------------------------------------------
    # Turn engine
    # ------------------------------------------------------------------

    def _reveal(self, session: Session, card: Card) -> None:
        # Cards still animating back down count against the limit too.
        in_play = max(len(session.revealed), _in_play_count(session))
        if in_play >= MAX_FACE_UP:
            raise self._fatal(f"Card {card.position} would be face up alongside {in_play} others")

        transition_card(card, "reveal")
        session.revealed.append(card)
        self._emit_card(card)
        self._start_flip(card, face_up=True, done_event="reveal_done")

        if len(session.revealed) == MAX_FACE_UP:
            session.moves += 1
            self.hub.emit("moves_changed", moves=session.moves)
            self._begin_resolution(session)

    def _begin_resolution(self, session: Session) -> None:
        if self._resolution is not None and not self._resolution.done():
            raise self._fatal("Resolution started while another is still in flight")
        transition_session(session, "begin_resolution")
        self._resolution = self._spawn(self._resolve(session, self._generation))

    async def _resolve(self, session: Session, generation: int) -> None:
        await asyncio.sleep(self.settings.match_check_delay)
        if generation != self._generation:
            return
        if len(session.revealed) != MAX_FACE_UP:
            raise self._fatal(f"Resolving with {len(session.revealed)} face-up cards")

        first, second = session.revealed
        await self._wait_for(*(self._flips.get(c.position) for c in (first, second)))
        if generation != self._generation:
            logger.debug("Dropping resolution from an abandoned session")
            return

        if first.token_id == second.token_id:
            transition_card(first, "match")
            transition_card(second, "match")
            session.score += MATCH_REWARD
            session.matched_pairs += 1
            self._emit_card(first)
            self._emit_card(second)
            self.hub.emit("pair_matched", positions=[first.position, second.position], token_id=first.token_id)
            self.hub.emit("score_changed", score=session.score)
        else:
            hiding: list[asyncio.Task[None]] = []
            for card in (first, second):
                transition_card(card, "hide")
                self._emit_card(card)
                hiding.append(self._start_flip(card, face_up=False, done_event="hide_done"))
            session.score = max(0, session.score - MISMATCH_PENALTY)
            self.hub.emit("pair_mismatched", positions=[first.position, second.position])
            self.hub.emit("score_changed", score=session.score)

            # The pair stays in the buffer until both cards are face down again;
            # reveals arriving meanwhile keep queueing.
            await self._wait_for(*hiding)
            if generation != self._generation:
                logger.debug("Dropping resolution from an abandoned session")
                return

        session.revealed.clear()
        self._resolution = None

        if session.matched_pairs > session.total_pairs:
            raise self._fatal(f"matched_pairs {session.matched_pairs} exceeds total_pairs {session.total_pairs}")
        if session.matched_pairs == session.total_pairs:
            self._complete(session)
            return

        transition_session(session, "end_resolution")
        self._drain_pending(session)

    def _drain_pending(self, session: Session) -> None:
        while session.pending and session.phase == SessionPhase.active:
            card = session.pending.popleft()
            try:
                self._require_eligible(card)
            except StaleInput as e:
                logger.debug("%s", e)
                continue
            self._reveal(session, card)

    def _complete(self, session: Session) -> None:
        transition_session(session, "finish")
        session.pending.clear()

        best_score = session.score
        if self._on_complete is not None:
            best_score = self._on_complete(session)

        logger.info(
            "Session %s complete: score=%d moves=%d time=%.1fs",
            session.session_id,
            session.score,
            session.moves,
            session.elapsed_time,
        )
        self.hub.emit(
            "session_complete",
            score=session.score,
            moves=session.moves,
            elapsed_time=session.elapsed_time,
            best_score=best_score,
        )

    def _begin_preview(self, session: Session) -> None:
        # Every card face up once, without costing a move.
        transition_session(session, "start_preview")

        shown: list[asyncio.Task[None]] = []
        for card in session.cards:
            if card.state == CardState.hidden:
                transition_card(card, "reveal")
                self._emit_card(card)
                shown.append(self._start_flip(card, face_up=True, done_event="reveal_done"))
        self._preview = self._spawn(self._run_preview(session, self._generation, shown))

    async def _run_preview(self, session: Session, generation: int, shown: list[asyncio.Task[None]]) -> None:
        await self._wait_for(*shown)

        await asyncio.sleep(self.settings.preview_seconds)
        if generation != self._generation:
            return

        hidden: list[asyncio.Task[None]] = []
        for card in session.cards:
            if card.state == CardState.revealed:
                transition_card(card, "hide")
                self._emit_card(card)
                hidden.append(self._start_flip(card, face_up=False, done_event="hide_done"))
        await self._wait_for(*hidden)

        await asyncio.sleep(self.settings.post_preview_delay)
        if generation != self._generation:
            return

        session.score = 0
        session.moves = 0
        session.elapsed_time = 0.0
        session.matched_pairs = sum(1 for c in session.cards if c.is_matched) // 2
        session.revealed.clear()
        session.pending.clear()
        transition_session(session, "start_play")
        self._preview = None

        logger.info("Session %s is live", session.session_id)
        self._emit_counters(session)

    # ------------------------------------------------------------------
    # Flip tasks
    # ------------------------------------------------------------------

    def _start_flip(self, card: Card, *, face_up: bool, done_event: str) -> asyncio.Task[None]:
        # One flip per card: a new one supersedes whatever was running for it.
        previous = self._flips.pop(card.position, None)
        if previous is not None and not previous.done():
            previous.cancel()

        task = self._spawn(self._flip(card, face_up, done_event, self._generation))
        self._flips[card.position] = task
        return task

    async def _flip(self, card: Card, face_up: bool, done_event: str, generation: int) -> None:
        await self.animator.flip(card, face_up=face_up)
        if generation != self._generation:
            logger.debug("Ignoring flip completion for card %d from an abandoned session", card.position)
            return
        transition_card(card, done_event)
        self._emit_card(card)

    def _is_eligible(self, card: Card) -> bool:
        flip = self._flips.get(card.position)
        return card.state == CardState.hidden and (flip is None or flip.done())

    def _require_eligible(self, card: Card) -> None:
        if card.state != CardState.hidden:
            raise StaleInput(card.position, f"card is {card.state.value}")
        if not self._is_eligible(card):
            raise StaleInput(card.position, "flip still in flight")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        logger.error("Session task failed; aborting session", exc_info=exc)
        self._failure = exc
        self.reset()

    async def _wait_for(self, *tasks: asyncio.Task[None] | None) -> None:
        pending = [t for t in tasks if t is not None and not t.done()]
        if pending:
            await asyncio.wait(pending)

    def _raise_failure(self) -> None:
        if self._failure is not None:
            failure, self._failure = self._failure, None
            raise failure

    def _fatal(self, message: str) -> InvariantViolation:
        logger.error("Invariant violated: %s; aborting session", message)
        self.reset()
        return InvariantViolation(message)

    def _require_session(self) -> Session:
        if self.session is None:
            raise UnknownCard("No session in progress")
        return self.session

    def _card_at(self, session: Session, position: int) -> Card:
        if not 0 <= position < len(session.cards):
            raise UnknownCard(f"No card at position {position}")
        return session.cards[position]

    def _emit_card(self, card: Card) -> None:
        self.hub.emit("card_state_changed", position=card.position, token_id=card.token_id, state=card.state.value)

    def _emit_started(self, session: Session) -> None:
        self.hub.emit(
            "session_started",
            session_id=str(session.session_id),
            width=session.grid.width,
            height=session.grid.height,
            total_pairs=session.total_pairs,
        )

    def _emit_counters(self, session: Session) -> None:
        self.hub.emit("score_changed", score=session.score)
        self.hub.emit("moves_changed", moves=session.moves)
        self.hub.emit("time_changed", elapsed_time=session.elapsed_time)


def _in_play_count(session: Session) -> int:
    return sum(1 for c in session.cards if c.state in {CardState.revealing, CardState.revealed, CardState.hiding})


def _settled_state(record: CardRecord) -> CardState:
    """Card state to resume in; in-flight animations are treated as finished."""

    if record.is_matched:
        return CardState.matched
    state = record.state
    if state is None:
        return CardState.revealed if record.is_flipped else CardState.hidden
    if state in {CardState.revealing, CardState.revealed}:
        return CardState.revealed
    if state == CardState.matched:
        return CardState.matched
    return CardState.hidden
