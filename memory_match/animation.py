from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Protocol

from memory_match.models import Card


class FlipAnimator(Protocol):
    """Black-box flip effect. Returning from `flip` is the completion signal."""

    async def flip(self, card: Card, *, face_up: bool) -> None:  # pragma: no cover
        ...


@dataclass(slots=True)
class TimedFlipAnimator:
    """Assumes the presentation layer finishes a flip in a fixed time."""

    duration: float = 0.4

    async def flip(self, card: Card, *, face_up: bool) -> None:
        await asyncio.sleep(self.duration)


@dataclass(slots=True)
class SignalledFlipAnimator:
    """Waits for the presentation layer to report each flip as finished.

    One outstanding flip per card position; `flip` for a position that is still
    waiting replaces the old waiter, which is cancelled.
    """

    _waiting: dict[int, asyncio.Future[None]] = field(default_factory=dict)

    async def flip(self, card: Card, *, face_up: bool) -> None:
        previous = self._waiting.pop(card.position, None)
        if previous is not None and not previous.done():
            previous.cancel()

        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiting[card.position] = fut
        try:
            await fut
        finally:
            if self._waiting.get(card.position) is fut:
                del self._waiting[card.position]

    def complete(self, position: int) -> bool:
        """Mark the flip of `position` as finished. Returns False if nothing was waiting."""

        fut = self._waiting.get(position)
        if fut is None or fut.done():
            return False
        fut.set_result(None)
        return True

    def waiting_positions(self) -> list[int]:
        return sorted(self._waiting)
