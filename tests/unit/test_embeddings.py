"""Tests for user and mix embedding aggregation."""

from datetime import datetime
from itertools import count

import pytest

from rhood.core.db import (
    get_mix_embedding,
    get_user_embedding,
    init_db,
    upsert_mix,
    upsert_profile,
)
from rhood.core.errors import MissingIdentifierError, NotFoundError
from rhood.core.schemas import DJProfile, ListeningEvent, ListeningFacts, Mix
from rhood.features.embeddings import (
    build_mix_embedding,
    build_user_embedding,
    compute_mix_embedding,
    compute_quality_score,
    compute_user_embedding,
    rebuild_all_embeddings,
)
from rhood.tracking.behavior import record_listening_session

_ids = count(1)


def _event(mix_id: str, completion: float = 100.0, **kw: object) -> ListeningEvent:
    defaults: dict[str, object] = {
        "id": next(_ids),
        "user_id": "u1",
        "mix_id": mix_id,
        "started_at": datetime(2026, 1, 1),
        "completion_percentage": completion,
        "listen_duration_seconds": 600.0,
    }
    defaults.update(kw)
    return ListeningEvent(**defaults)  # type: ignore[arg-type]


MIXES = {
    "h1": Mix(id="h1", genre="House", bpm=122),
    "h2": Mix(id="h2", genre="House", bpm=126),
    "t1": Mix(id="t1", genre="Techno", bpm=134),
    "x1": Mix(id="x1", genre=None, bpm=None),
}


@pytest.fixture()
def db(tmp_path):  # type: ignore[no-untyped-def]
    return init_db(tmp_path / "test.db")


class TestComputeUserEmbedding:
    def test_no_sessions_gives_empty_profile(self) -> None:
        emb = compute_user_embedding("u1", [], MIXES)
        assert emb.genre_weights == {}
        assert emb.skip_rate_weights == {}
        assert emb.preferred_bpm_range is None
        assert emb.completion_rate == 0.0

    def test_genre_weight_is_share_times_engagement(self) -> None:
        sessions = [
            _event("h1", 100.0),
            _event("h2", 50.0),
            _event("t1", 20.0),
            _event("x1", 30.0),
        ]
        emb = compute_user_embedding("u1", sessions, MIXES)
        # House: 2/4 sessions, mean completion 75%
        assert emb.genre_weights["House"] == pytest.approx(0.5 * 0.75)
        assert emb.genre_weights["Techno"] == pytest.approx(0.25 * 0.2)
        assert set(emb.genre_weights) == {"House", "Techno"}
        assert emb.completion_rate == pytest.approx(50.0)

    def test_weights_not_normalised(self) -> None:
        emb = compute_user_embedding("u1", [_event("h1", 40.0), _event("t1", 40.0)], MIXES)
        assert sum(emb.genre_weights.values()) == pytest.approx(0.4)

    def test_skip_rate_counts_only_early_skips(self) -> None:
        sessions = [
            _event("t1", 0.0, was_skipped=True, skip_time_seconds=3),
            _event("t1", 10.0, was_skipped=True, skip_time_seconds=45),
            _event("t1", 100.0),
            _event("t1", 100.0),
        ]
        emb = compute_user_embedding("u1", sessions, MIXES)
        assert emb.skip_rate_weights == {"Techno": 0.25}

    def test_bpm_range_from_completed_sessions(self) -> None:
        sessions = [_event("h1", 85.0), _event("h2", 95.0), _event("t1", 79.9)]
        emb = compute_user_embedding("u1", sessions, MIXES)
        assert emb.preferred_bpm_range == (122.0, 126.0)

    def test_bpm_range_none_without_completions(self) -> None:
        emb = compute_user_embedding("u1", [_event("h1", 10.0)], MIXES)
        assert emb.preferred_bpm_range is None

    def test_unknown_mix_ignored(self) -> None:
        emb = compute_user_embedding("u1", [_event("h1"), _event("gone")], MIXES)
        assert emb.genre_weights == {"House": 1.0}

    def test_avg_listen_duration_rounded(self) -> None:
        sessions = [
            _event("h1", listen_duration_seconds=100.4),
            _event("h2", listen_duration_seconds=100.8),
        ]
        emb = compute_user_embedding("u1", sessions, MIXES)
        assert emb.avg_listen_duration == 101.0


class TestQualityScore:
    def test_formula(self) -> None:
        assert compute_quality_score(500, 50, 50, 500) == pytest.approx(
            0.15 + 0.15 + 0.1 + 0.1,
        )

    def test_not_clamped(self) -> None:
        assert compute_quality_score(100000, 0, 0, 0) == pytest.approx(30.0)

    def test_negative_counts_not_clamped(self) -> None:
        emb = compute_mix_embedding(Mix(id="m", likes_count=-100))
        assert emb.quality_score == pytest.approx(-0.2)

    def test_mix_without_creator(self) -> None:
        emb = compute_mix_embedding(Mix(id="m", likes_count=100, play_count=1000))
        assert emb.quality_score == pytest.approx(0.4)

    def test_mix_embedding_copies_features(self) -> None:
        mix = Mix(id="m", genre="House", sub_genre="Deep", bpm=120, mood_tags=["warm"])
        creator = DJProfile(id="c", credits=1000, gigs_completed=100)
        emb = compute_mix_embedding(mix, creator)
        assert emb.genre == "House"
        assert emb.sub_genre == "Deep"
        assert emb.mood_vector == ["warm"]
        assert emb.quality_score == pytest.approx(0.6)


class TestBuildAndStore:
    def test_build_user_embedding_upserts(self, db) -> None:  # type: ignore[no-untyped-def]
        upsert_profile(db, DJProfile(id="u1", city="London", country="UK"))
        upsert_mix(db, Mix(id="h1", genre="House", bpm=122))
        record_listening_session(db, "u1", "h1", ListeningFacts(completion_percentage=90))
        built = build_user_embedding(db, "u1")
        stored = get_user_embedding(db, "u1")
        assert stored is not None
        assert stored.genre_weights == built.genre_weights == {"House": 0.9}
        assert stored.geographic_signals == {"city": "London", "country": "UK"}

    def test_build_user_embedding_no_history(self, db) -> None:  # type: ignore[no-untyped-def]
        emb = build_user_embedding(db, "nobody")
        assert emb.genre_weights == {}
        assert get_user_embedding(db, "nobody") is not None

    def test_build_user_embedding_requires_id(self, db) -> None:  # type: ignore[no-untyped-def]
        with pytest.raises(MissingIdentifierError):
            build_user_embedding(db, "")

    def test_rebuild_overwrites(self, db) -> None:  # type: ignore[no-untyped-def]
        upsert_mix(db, Mix(id="h1", genre="House"))
        upsert_mix(db, Mix(id="t1", genre="Techno"))
        record_listening_session(db, "u1", "h1", ListeningFacts(completion_percentage=100))
        build_user_embedding(db, "u1")
        record_listening_session(db, "u1", "t1", ListeningFacts(completion_percentage=100))
        build_user_embedding(db, "u1")
        stored = get_user_embedding(db, "u1")
        assert stored.genre_weights == {"House": 0.5, "Techno": 0.5}  # type: ignore[union-attr]

    def test_build_mix_embedding(self, db) -> None:  # type: ignore[no-untyped-def]
        upsert_profile(db, DJProfile(id="c", credits=1000))
        upsert_mix(db, Mix(id="m1", user_id="c", genre="House", play_count=1000))
        emb = build_mix_embedding(db, "m1")
        assert emb.quality_score == pytest.approx(0.5)
        assert get_mix_embedding(db, "m1") is not None

    def test_build_mix_embedding_missing(self, db) -> None:  # type: ignore[no-untyped-def]
        with pytest.raises(NotFoundError):
            build_mix_embedding(db, "ghost")

    def test_rebuild_all(self, db) -> None:  # type: ignore[no-untyped-def]
        upsert_mix(db, Mix(id="m1", genre="House"))
        upsert_mix(db, Mix(id="m2", genre="Techno"))
        record_listening_session(db, "u1", "m1")
        record_listening_session(db, "u2", "m2")
        assert rebuild_all_embeddings(db) == (2, 2)
        assert get_user_embedding(db, "u2") is not None
        assert get_mix_embedding(db, "m2") is not None
