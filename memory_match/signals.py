from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Literal


logger = logging.getLogger(__name__)

SignalType = Literal[
    "session_started",
    "card_state_changed",
    "pair_matched",
    "pair_mismatched",
    "session_complete",
    "score_changed",
    "moves_changed",
    "time_changed",
]


@dataclass(frozen=True, slots=True)
class GameSignal:
    type: SignalType
    payload: dict[str, Any]
    ts: datetime

    @staticmethod
    def now(*, type: SignalType, payload: dict[str, Any]) -> "GameSignal":
        return GameSignal(type=type, payload=payload, ts=datetime.now(UTC))

    def to_json(self) -> dict[str, Any]:
        # Flat so clients can switch on "type" and read fields directly.
        return {"type": self.type, "ts": self.ts.isoformat(), **self.payload}


SignalHandler = Callable[[GameSignal], Any]


class SignalHub:
    """Synchronous pub/sub for signals leaving the match engine.

    Handlers run in subscription order on the engine's own turn of control, so they
    must not block. A failing handler is logged and doesn't stop the others.
    """

    def __init__(self) -> None:
        self._handlers: list[SignalHandler] = []
        self.history: list[GameSignal] = []
        self.keep_history = False

    def subscribe(self, handler: SignalHandler) -> None:
        if handler not in self._handlers:
            self._handlers.append(handler)

    def unsubscribe(self, handler: SignalHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def emit(self, type: SignalType, **payload: Any) -> GameSignal:
        signal = GameSignal.now(type=type, payload=payload)
        if self.keep_history:
            self.history.append(signal)

        logger.debug("Signal %s %s", type, payload)
        for handler in list(self._handlers):
            try:
                handler(signal)
            except Exception:
                logger.exception("Signal handler %r failed for %s", handler, type)
        return signal

    def of_type(self, type: SignalType) -> list[GameSignal]:
        return [s for s in self.history if s.type == type]
