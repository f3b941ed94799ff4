from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import fakeredis
import pytest

from memory_match.models import Card, CardRecord, CardState, GridConfig, Session, SessionPhase, SessionSnapshot
from memory_match.store import SNAPSHOT_KEY, STATS_KEY, SnapshotStore, save_time_label, snapshot_from_session


def _session() -> Session:
    # 2x2: tokens 0,1 at positions 0..3; card 0 and 2 matched, card 1 face up.
    cards = [
        Card(token_id=0, position=0, state=CardState.matched),
        Card(token_id=1, position=1, state=CardState.revealed),
        Card(token_id=0, position=2, state=CardState.matched),
        Card(token_id=1, position=3),
    ]
    session = Session(
        grid=GridConfig(width=2, height=2),
        cards=cards,
        total_pairs=2,
        seed=17,
        phase=SessionPhase.active,
        score=90,
        moves=3,
        elapsed_time=41.5,
        matched_pairs=1,
    )
    session.revealed.append(cards[1])
    return session


def _snapshot(**overrides) -> SessionSnapshot:  # type: ignore[no-untyped-def]
    snapshot = snapshot_from_session(_session())
    return snapshot.model_copy(update=overrides)


@pytest.fixture()
def store(redis_client: fakeredis.FakeRedis) -> SnapshotStore:
    return SnapshotStore(r=redis_client)


def test_save_then_load_restores_every_field(store: SnapshotStore) -> None:
    session = _session()
    saved = store.save(session)
    assert saved is not None

    loaded = store.load()
    assert loaded == saved
    assert loaded.session_id == session.session_id
    assert (loaded.grid_width, loaded.grid_height) == (2, 2)
    assert [(c.position, c.token_id, c.is_flipped, c.is_matched) for c in loaded.cards] == [
        (0, 0, True, True),
        (1, 1, True, False),
        (2, 0, True, True),
        (3, 1, False, False),
    ]
    assert loaded.flipped_positions == [1]
    assert loaded.pending_positions == []
    assert (loaded.score, loaded.moves, loaded.elapsed_time) == (90, 3, 41.5)
    assert (loaded.matched_pairs, loaded.total_pairs) == (1, 2)
    assert store.is_valid(loaded)


def test_snapshot_is_a_copy(store: SnapshotStore) -> None:
    session = _session()
    snapshot = store.save(session)
    assert snapshot is not None

    session.score = 0
    session.cards[3].state = CardState.revealing
    assert snapshot.score == 90
    assert snapshot.cards[3].is_flipped is False


def test_save_overwrites_previous_snapshot(store: SnapshotStore, redis_client: fakeredis.FakeRedis) -> None:
    session = _session()
    store.save(session)
    session.moves = 4
    store.save(session)

    assert redis_client.keys("memory_match:*") == [SNAPSHOT_KEY]
    loaded = store.load()
    assert loaded is not None
    assert loaded.moves == 4


def test_missing_snapshot(store: SnapshotStore) -> None:
    assert store.load() is None
    assert store.has_snapshot() is False
    assert store.is_valid(None) is False
    assert save_time_label(None) == "No save data"


def test_delete_removes_snapshot(store: SnapshotStore) -> None:
    store.save(_session())
    assert store.has_snapshot()

    store.delete()
    assert store.has_snapshot() is False
    assert store.load() is None


def test_unreadable_snapshot_loads_as_none(store: SnapshotStore, redis_client: fakeredis.FakeRedis) -> None:
    redis_client.set(SNAPSHOT_KEY, "{not json")
    assert store.load() is None

    redis_client.set(SNAPSHOT_KEY, json.dumps({"grid_width": 2}))
    assert store.load() is None

    redis_client.set(SNAPSHOT_KEY, _snapshot().model_dump_json().replace('"score":90', '"score":-5'))
    assert store.load() is None


def test_unknown_fields_are_ignored(store: SnapshotStore, redis_client: fakeredis.FakeRedis) -> None:
    payload = json.loads(_snapshot().model_dump_json())
    payload["theme"] = "ocean"
    payload["cards"][0]["sparkle"] = True
    redis_client.set(SNAPSHOT_KEY, json.dumps(payload))

    loaded = store.load()
    assert loaded is not None
    assert store.is_valid(loaded)


def test_flags_only_cards_are_accepted(store: SnapshotStore, redis_client: fakeredis.FakeRedis) -> None:
    payload = json.loads(_snapshot().model_dump_json())
    for card in payload["cards"]:
        del card["state"]
    redis_client.set(SNAPSHOT_KEY, json.dumps(payload))

    loaded = store.load()
    assert loaded is not None
    assert all(c.state is None for c in loaded.cards)
    assert store.is_valid(loaded)


def test_snapshot_older_than_thirty_days_is_stale(store: SnapshotStore) -> None:
    now = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)

    assert store.is_valid(_snapshot(saved_at=now - timedelta(days=29)), now=now)
    assert store.is_valid(_snapshot(saved_at=now - timedelta(days=31)), now=now) is False
    assert store.invalid_reason(_snapshot(saved_at=now - timedelta(days=31)), now=now) == "older than 30 days"


def test_naive_saved_at_is_treated_as_utc(store: SnapshotStore) -> None:
    now = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)
    naive = datetime(2025, 5, 1, 11, 0)

    assert store.is_valid(_snapshot(saved_at=naive), now=now) is False
    assert store.is_valid(_snapshot(saved_at=naive + timedelta(days=2)), now=now)


def test_max_age_is_configurable(redis_client: fakeredis.FakeRedis) -> None:
    store = SnapshotStore(r=redis_client, max_age=timedelta(days=1))
    now = datetime(2025, 6, 1, tzinfo=UTC)
    assert store.is_valid(_snapshot(saved_at=now - timedelta(days=2)), now=now) is False


def _cards(*specs: tuple[int, int, bool, bool]) -> list[CardRecord]:
    return [CardRecord(token_id=t, position=p, is_flipped=f, is_matched=m) for t, p, f, m in specs]


@pytest.mark.parametrize(
    ("overrides", "reason"),
    [
        ({"format_version": "2.0"}, "unsupported format version 2.0"),
        ({"cards": []}, "missing card list"),
        ({"phase": SessionPhase.complete}, "session already complete"),
        ({"grid_width": 0}, "bad grid dimensions"),
        ({"grid_width": 3}, "4 cards for a 3x2 grid"),
        ({"total_pairs": 3}, "total_pairs 3 doesn't fit 4 cards"),
        (
            {"cards": _cards((0, 0, False, False), (1, 1, False, False), (0, 1, False, False), (1, 3, False, False))},
            "card positions are not a permutation of the grid",
        ),
        (
            {
                "matched_pairs": 0,
                "cards": _cards((0, 0, False, False), (1, 1, False, False), (2, 2, False, False), (1, 3, False, False)),
            },
            "a token id appears an odd number of times",
        ),
        ({"matched_pairs": 2}, "matched_pairs 2 disagrees with 2 matched cards"),
        (
            {
                "matched_pairs": 0,
                "cards": _cards((0, 0, True, False), (1, 1, True, False), (0, 2, True, False), (1, 3, False, False)),
            },
            "3 face-up unmatched cards",
        ),
        (
            {
                "matched_pairs": 2,
                "cards": _cards((0, 0, True, True), (1, 1, True, True), (0, 2, True, True), (1, 3, True, True)),
            },
            "every pair is already matched",
        ),
        ({"pending_positions": [3, 9]}, "queued reveal outside the grid"),
    ],
)
def test_malformed_snapshots_are_rejected(store: SnapshotStore, overrides: dict, reason: str) -> None:
    snapshot = _snapshot(**overrides)
    assert store.invalid_reason(snapshot) == reason
    assert store.is_valid(snapshot) is False


def test_minor_version_bump_is_still_readable(store: SnapshotStore) -> None:
    assert store.is_valid(_snapshot(format_version="1.7"))


def test_save_time_label_format() -> None:
    snapshot = _snapshot(saved_at=datetime(2025, 3, 9, 14, 5, tzinfo=UTC))
    assert save_time_label(snapshot) == "Mar 09, 2025 14:05"


def test_high_scores_track_best_and_count(store: SnapshotStore) -> None:
    assert store.high_scores().model_dump() == {"best_score": 0, "total_games_completed": 0}

    first = store.record_completion(300)
    assert (first.best_score, first.total_games_completed) == (300, 1)

    second = store.record_completion(120)
    assert (second.best_score, second.total_games_completed) == (300, 2)

    third = store.record_completion(450)
    assert (third.best_score, third.total_games_completed) == (450, 3)
    assert store.high_scores() == third


def test_unreadable_stats_fields_count_as_zero(store: SnapshotStore, redis_client: fakeredis.FakeRedis) -> None:
    redis_client.hset(STATS_KEY, mapping={"best_score": "oops", "total_games_completed": "2"})
    assert store.high_scores().model_dump() == {"best_score": 0, "total_games_completed": 2}

    record = store.record_completion(150)
    assert (record.best_score, record.total_games_completed) == (150, 3)
    assert redis_client.hget(STATS_KEY, "best_score") == "150"


def test_high_scores_survive_snapshot_deletion(store: SnapshotStore) -> None:
    store.save(_session())
    store.record_completion(200)
    store.delete()
    assert store.high_scores().best_score == 200


def test_storage_failures_degrade_instead_of_raising() -> None:
    server = fakeredis.FakeServer()
    server.connected = False
    store = SnapshotStore(r=fakeredis.FakeRedis(server=server, decode_responses=True))

    assert store.save(_session()) is None
    assert store.load() is None
    assert store.has_snapshot() is False
    store.delete()
    assert store.high_scores().best_score == 0

    record = store.record_completion(250)
    assert (record.best_score, record.total_games_completed) == (250, 0)


def test_queued_reveals_are_saved_in_order(store: SnapshotStore) -> None:
    session = _session()
    session.phase = SessionPhase.resolving
    session.pending.extend([session.cards[3], session.cards[1]])

    store.save(session)
    loaded = store.load()
    assert loaded is not None
    assert loaded.pending_positions == [3, 1]
    assert store.is_valid(loaded)
