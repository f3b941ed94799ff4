from __future__ import annotations


class MemoryMatchError(Exception):
    """Base class for errors raised by the game core."""


class ConfigError(MemoryMatchError, ValueError):
    """Bad grid or token pool parameters; fatal to session creation."""


class UnknownCard(MemoryMatchError, LookupError):
    """A reveal referenced a card position that doesn't exist in the current session."""


class InvalidSnapshot(MemoryMatchError):
    """A stored snapshot can't be used to rehydrate a session.

    Always recovered locally by starting a fresh deck.
    """


class StaleInput(MemoryMatchError):
    """A queued reveal that is no longer eligible by the time it is dequeued."""

    def __init__(self, position: int, reason: str) -> None:
        super().__init__(f"Dropping stale reveal for card {position}: {reason}")
        self.position = position
        self.reason = reason


class InvariantViolation(MemoryMatchError, RuntimeError):
    """Internal rule broken (e.g. a third face-up card). Aborts the session."""
