from __future__ import annotations

import asyncio
import logging
from typing import Any

from memory_match.signals import GameSignal


logger = logging.getLogger(__name__)


class SessionWebSocketHub:
    """In-process fan-out of engine signals to connected WebSocket clients.

    Contract:
      - each connection gets its own queue via `connect()`
      - `publish(signal)` is synchronous so it can be subscribed to a SignalHub; the
        WebSocket endpoint drains its queue and sends

    Note: this is intentionally minimal. If we later run multiple API replicas,
    this should move to Redis pub/sub.
    """

    def __init__(self, *, max_queue: int = 1000) -> None:
        self._queues: set[asyncio.Queue[dict[str, Any]]] = set()
        self._max_queue = max_queue

    def connect(self) -> asyncio.Queue[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self._max_queue)
        self._queues.add(queue)
        return queue

    def disconnect(self, queue: asyncio.Queue[dict[str, Any]]) -> None:
        self._queues.discard(queue)

    @property
    def connection_count(self) -> int:
        return len(self._queues)

    def publish(self, signal: GameSignal) -> None:
        payload = signal.to_json()
        for queue in list(self._queues):
            try:
                queue.put_nowait(payload)
            except asyncio.QueueFull:
                # Client isn't reading; drop it rather than buffer forever.
                logger.warning("Dropping slow WebSocket client")
                self._queues.discard(queue)


hub = SessionWebSocketHub()
