"""Per-user and per-mix feature aggregates ("embeddings").

Embeddings are small structured aggregates, not dense vectors. Both kinds are
always recomputed from scratch and upserted (last write wins).
"""

import logging
import sqlite3
from collections import defaultdict
from datetime import datetime

from rhood.core.config import RecommendationConfig
from rhood.core.db import (
    get_mix,
    get_mixes_by_ids,
    get_profile,
    get_sessions_for_user,
    list_mixes,
    list_users_with_sessions,
    upsert_mix_embedding,
    upsert_user_embedding,
)
from rhood.core.errors import MissingIdentifierError, NotFoundError
from rhood.core.schemas import DJProfile, ListeningEvent, Mix, MixEmbedding, UserEmbedding

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# User embeddings
# ---------------------------------------------------------------------------


def compute_user_embedding(
    user_id: str,
    sessions: list[ListeningEvent],
    mixes: dict[str, Mix],
    geographic_signals: dict[str, str | None] | None = None,
    config: RecommendationConfig | None = None,
    now: datetime | None = None,
) -> UserEmbedding:
    """Aggregate listening sessions into a user embedding.

    Sessions whose mix is not in the catalog are ignored. Sessions on a mix
    with no genre count towards the totals but create no genre key.

    For each genre g:
        genre_weight[g] = (count_g / total) * (mean completion_g / 100)
        skip_rate[g]    = early skips in g / count_g
    """
    config = config or RecommendationConfig()
    known = [s for s in sessions if s.mix_id in mixes]
    if not known:
        return UserEmbedding(
            user_id=user_id,
            geographic_signals=geographic_signals or {},
            last_calculated=now,
        )

    total = len(known)
    by_genre: dict[str, list[ListeningEvent]] = defaultdict(list)
    for session in known:
        genre = mixes[session.mix_id].genre
        if genre:
            by_genre[genre].append(session)

    genre_weights: dict[str, float] = {}
    skip_rates: dict[str, float] = {}
    for genre, group in by_genre.items():
        count = len(group)
        avg_completion = sum(s.completion_percentage for s in group) / count
        genre_weights[genre] = (count / total) * (avg_completion / 100)
        early = sum(1 for s in group if s.is_early_skip(config.early_skip_seconds))
        skip_rates[genre] = early / count

    bpms = [
        mixes[s.mix_id].bpm
        for s in known
        if s.completion_percentage >= config.bpm_completion_threshold
        and mixes[s.mix_id].bpm is not None
    ]
    bpm_range = (min(bpms), max(bpms)) if bpms else None

    return UserEmbedding(
        user_id=user_id,
        genre_weights=genre_weights,
        skip_rate_weights=skip_rates,
        avg_listen_duration=float(round(sum(s.listen_duration_seconds for s in known) / total)),
        completion_rate=sum(s.completion_percentage for s in known) / total,
        preferred_bpm_range=bpm_range,
        geographic_signals=geographic_signals or {},
        last_calculated=now,
    )


def build_user_embedding(
    conn: sqlite3.Connection,
    user_id: str,
    config: RecommendationConfig | None = None,
) -> UserEmbedding:
    """Recompute the user's embedding from their full history and store it.

    A user with no history gets an empty embedding rather than an error.
    """
    if not user_id:
        raise MissingIdentifierError("user_id")
    sessions = get_sessions_for_user(conn, user_id)
    mixes = get_mixes_by_ids(conn, sorted({s.mix_id for s in sessions}))
    profile = get_profile(conn, user_id)
    geo = {
        "city": (profile.city or None) if profile else None,
        "country": (profile.country or None) if profile else None,
    }

    embedding = compute_user_embedding(
        user_id, sessions, mixes, geo, config, now=datetime.now(),
    )
    upsert_user_embedding(conn, embedding)
    logger.info(
        "Built embedding for user=%s from %d sessions (%d genres)",
        user_id, len(sessions), len(embedding.genre_weights),
    )
    return embedding


# ---------------------------------------------------------------------------
# Mix embeddings
# ---------------------------------------------------------------------------


def compute_quality_score(
    credits: int, gigs_completed: int, likes_count: int, play_count: int,
) -> float:
    """Creator reputation plus mix popularity.

    Not clamped: extreme inputs (e.g. 100000 credits) push the score above 1,
    and negative counts carry through below 0.
    """
    return (
        0.3 * (credits / 1000)
        + 0.3 * (gigs_completed / 100)
        + 0.2 * (likes_count / 100)
        + 0.2 * (play_count / 1000)
    )


def compute_mix_embedding(
    mix: Mix, creator: DJProfile | None = None, now: datetime | None = None,
) -> MixEmbedding:
    quality = compute_quality_score(
        creator.credits if creator else 0,
        creator.gigs_completed if creator else 0,
        mix.likes_count,
        mix.play_count,
    )
    return MixEmbedding(
        mix_id=mix.id,
        bpm=mix.bpm,
        genre=mix.genre,
        sub_genre=mix.sub_genre,
        mood_vector=list(mix.mood_tags),
        audio_features=dict(mix.audio_features),
        quality_score=quality,
        last_calculated=now,
    )


def build_mix_embedding(conn: sqlite3.Connection, mix_id: str) -> MixEmbedding:
    """Recompute and store the embedding of one mix."""
    if not mix_id:
        raise MissingIdentifierError("mix_id")
    mix = get_mix(conn, mix_id)
    if mix is None:
        msg = f"Mix '{mix_id}' not found"
        raise NotFoundError(msg)
    creator = get_profile(conn, mix.user_id) if mix.user_id else None
    embedding = compute_mix_embedding(mix, creator, now=datetime.now())
    upsert_mix_embedding(conn, embedding)
    logger.debug("Built embedding for mix=%s (quality=%.3f)", mix_id, embedding.quality_score)
    return embedding


def rebuild_all_embeddings(
    conn: sqlite3.Connection, config: RecommendationConfig | None = None,
) -> tuple[int, int]:
    """Recompute every mix embedding and every listener's embedding.

    Returns (users rebuilt, mixes rebuilt).
    """
    mixes = list_mixes(conn)
    for mix in mixes:
        build_mix_embedding(conn, mix.id)
    users = list_users_with_sessions(conn)
    for user_id in users:
        build_user_embedding(conn, user_id, config)
    logger.info("Rebuilt embeddings: %d users, %d mixes", len(users), len(mixes))
    return len(users), len(mixes)
