"""Tests for personalised mix recommendations."""

from datetime import datetime, timedelta

import pytest

from rhood.core.db import (
    get_similarity,
    get_user_embedding,
    init_db,
    set_like,
    upsert_mix,
    upsert_profile,
)
from rhood.core.schemas import DJProfile, ListeningFacts, Mix
from rhood.pipeline.recommendations import get_recommendations
from rhood.tracking.behavior import record_listening_session

NOW = datetime(2026, 6, 1, 12, 0)


def _mix(mix_id: str, genre: str, days_old: float | None, **kw: object) -> Mix:
    created = NOW - timedelta(days=days_old) if days_old is not None else None
    defaults: dict[str, object] = {
        "id": mix_id, "user_id": "creator", "genre": genre, "created_at": created,
    }
    defaults.update(kw)
    return Mix(**defaults)  # type: ignore[arg-type]


@pytest.fixture()
def db(tmp_path):  # type: ignore[no-untyped-def]
    conn = init_db(tmp_path / "test.db")
    upsert_mix(conn, _mix("house-old", "House", 20, bpm=124))
    upsert_mix(conn, _mix("house-new", "House", 2, bpm=124))
    upsert_mix(conn, _mix("techno-new", "Techno", 1, bpm=140))
    upsert_mix(conn, _mix("trance-undated", "Trance", None))
    upsert_mix(conn, _mix("own-mix", "House", 0, user_id="u1"))
    return conn


def _listen_to_house(db) -> None:  # type: ignore[no-untyped-def]
    upsert_mix(db, _mix("house-seed", "House", 100, bpm=124))
    for _ in range(3):
        record_listening_session(
            db, "u1", "house-seed", ListeningFacts(completion_percentage=95),
        )


class TestColdStart:
    def test_anonymous_gets_recency_order(self, db) -> None:  # type: ignore[no-untyped-def]
        recs = get_recommendations(db, None, limit=10, now=NOW)
        assert [r.mix.id for r in recs] == [
            "own-mix", "techno-new", "house-new", "house-old", "trance-undated",
        ]
        assert all(r.similarity_score is None for r in recs)

    def test_no_history_is_recency_without_own_or_liked(self, db) -> None:  # type: ignore[no-untyped-def]
        set_like(db, "u1", "techno-new", True)
        recs = get_recommendations(db, "u1", limit=10, now=NOW)
        assert [r.mix.id for r in recs] == ["house-new", "house-old", "trance-undated"]
        assert recs[0].recommendation_weight == pytest.approx(1 - 2 / 30)
        assert recs[-1].recommendation_weight == 0.0
        assert get_user_embedding(db, "u1") is None

    def test_limit_zero(self, db) -> None:  # type: ignore[no-untyped-def]
        assert get_recommendations(db, "u1", limit=0, now=NOW) == []


class TestPersonalised:
    def test_sorted_descending(self, db) -> None:  # type: ignore[no-untyped-def]
        _listen_to_house(db)
        recs = get_recommendations(db, "u1", limit=10, now=NOW)
        weights = [r.recommendation_weight for r in recs]
        assert weights == sorted(weights, reverse=True)
        assert recs[0].mix.id == "house-new"
        assert all(r.similarity_score is not None for r in recs)

    def test_genre_match_beats_recency(self, db) -> None:  # type: ignore[no-untyped-def]
        _listen_to_house(db)
        ids = [r.mix.id for r in get_recommendations(db, "u1", limit=10, now=NOW)]
        assert ids.index("house-old") < ids.index("techno-new")

    def test_excludes_own_mixes(self, db) -> None:  # type: ignore[no-untyped-def]
        _listen_to_house(db)
        ids = {r.mix.id for r in get_recommendations(db, "u1", limit=10, now=NOW)}
        assert "own-mix" not in ids

    def test_liked_excluded(self, db) -> None:  # type: ignore[no-untyped-def]
        _listen_to_house(db)
        set_like(db, "u1", "house-new", True)
        ids = {r.mix.id for r in get_recommendations(db, "u1", limit=10, now=NOW)}
        assert "house-new" not in ids

    def test_liked_included_on_request(self, db) -> None:  # type: ignore[no-untyped-def]
        _listen_to_house(db)
        set_like(db, "u1", "house-new", True)
        recs = get_recommendations(
            db, "u1", limit=10, include_already_consumed=True, now=NOW,
        )
        assert "house-new" in {r.mix.id for r in recs}

    def test_limit(self, db) -> None:  # type: ignore[no-untyped-def]
        _listen_to_house(db)
        assert len(get_recommendations(db, "u1", limit=2, now=NOW)) == 2

    def test_builds_embedding_and_caches(self, db) -> None:  # type: ignore[no-untyped-def]
        _listen_to_house(db)
        get_recommendations(db, "u1", limit=10, now=NOW)
        assert get_user_embedding(db, "u1") is not None
        assert get_similarity(db, "u1", "house-new") is not None

    def test_ties_broken_by_recency_then_id(self, db) -> None:  # type: ignore[no-untyped-def]
        _listen_to_house(db)
        upsert_mix(db, _mix("twin-b", "Ambient", 45))
        upsert_mix(db, _mix("twin-a", "Ambient", 45))
        upsert_mix(db, _mix("twin-older", "Ambient", 50))
        ids = [r.mix.id for r in get_recommendations(db, "u1", limit=20, now=NOW)]
        tail = [i for i in ids if i.startswith("twin")]
        assert tail == ["twin-a", "twin-b", "twin-older"]


class TestEmptyProfile:
    def _listen_to_untagged(self, db) -> None:  # type: ignore[no-untyped-def]
        upsert_profile(db, DJProfile(id="star", credits=5000, gigs_completed=200))
        upsert_mix(db, _mix("old-famous", "House", 60, user_id="star"))
        upsert_mix(db, Mix(id="untagged", user_id="creator", created_at=NOW - timedelta(days=5)))
        record_listening_session(
            db, "u1", "untagged", ListeningFacts(completion_percentage=90),
        )

    def test_genre_less_history_falls_back_to_recency(self, db) -> None:  # type: ignore[no-untyped-def]
        self._listen_to_untagged(db)
        recs = get_recommendations(db, "u1", limit=10, now=NOW)
        ids = [r.mix.id for r in recs]
        assert ids[:2] == ["techno-new", "house-new"]
        assert ids.index("old-famous") > ids.index("house-old")
        assert all(r.similarity_score is None for r in recs)
        assert get_similarity(db, "u1", "old-famous") is None

    def test_stored_empty_embedding_falls_back(self, db) -> None:  # type: ignore[no-untyped-def]
        self._listen_to_untagged(db)
        get_recommendations(db, "u1", limit=10, now=NOW)
        stored = get_user_embedding(db, "u1")
        assert stored is not None
        assert stored.is_empty
        recs = get_recommendations(db, "u1", limit=1, now=NOW)
        assert [r.mix.id for r in recs] == ["techno-new"]
