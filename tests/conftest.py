from __future__ import annotations

import random
from collections.abc import Generator

import fakeredis
import pytest

from memory_match.models import Card, Session
from memory_match.settings import GameSettings


# No waiting anywhere: every suspension point is a single loop turn.
FAST_SETTINGS = GameSettings(
    grid_width=4,
    grid_height=4,
    token_pool_size=8,
    preview_seconds=0,
    post_preview_delay=0,
    match_check_delay=0,
    flip_duration=0,
    autosave_interval=3600,
    clock_interval=3600,
)


@pytest.fixture()
def fast_settings() -> GameSettings:
    return FAST_SETTINGS


@pytest.fixture()
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture()
def redis_client() -> fakeredis.FakeRedis:
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture()
def client_and_service(redis_client: fakeredis.FakeRedis) -> Generator:
    """FastAPI TestClient wired to a fakeredis-backed GameService."""

    from fastapi.testclient import TestClient

    from memory_match.api.deps import get_service
    from memory_match.main import app
    from memory_match.service import GameService

    service = GameService(r=redis_client, settings=FAST_SETTINGS, rng=random.Random(99))

    app.dependency_overrides[get_service] = lambda: service
    with TestClient(app) as c:
        yield c, service
    app.dependency_overrides.clear()


def pairs_by_token(session: Session) -> dict[int, list[Card]]:
    out: dict[int, list[Card]] = {}
    for card in session.cards:
        out.setdefault(card.token_id, []).append(card)
    return out


def matching_pair(session: Session) -> tuple[int, int]:
    for cards in pairs_by_token(session).values():
        hidden = [c for c in cards if not c.is_matched]
        if len(hidden) >= 2:
            return hidden[0].position, hidden[1].position
    raise AssertionError("no unmatched pair left")


def mismatched_pair(session: Session) -> tuple[int, int]:
    unmatched = [c for c in session.cards if not c.is_matched]
    first = unmatched[0]
    other = next(c for c in unmatched if c.token_id != first.token_id)
    return first.position, other.position
