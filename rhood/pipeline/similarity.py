"""User/mix similarity with recency blending, plus the similarity cache."""

import logging
import sqlite3
from datetime import datetime

from rhood.core.config import RecommendationConfig
from rhood.core.db import (
    get_mix_embeddings,
    get_mixes_by_ids,
    get_user_embedding,
    transaction,
    upsert_similarity,
)
from rhood.core.errors import MissingIdentifierError
from rhood.core.schemas import (
    Mix,
    MixEmbedding,
    SimilarityResult,
    SimilarityScore,
    UserEmbedding,
)
from rhood.features.embeddings import build_mix_embedding

logger = logging.getLogger(__name__)


def score_similarity(
    user: UserEmbedding,
    mix: MixEmbedding,
    config: RecommendationConfig | None = None,
) -> SimilarityResult:
    """Score how well a mix fits a user's listening profile.

    Four gated terms; only active terms count towards the normaliser:
      - genre:   mix genre seen in the user's genre weights
      - bpm:     mix bpm inside the user's preferred range (inclusive)
      - skip:    user's early-skip rate for the genre is known and low
      - quality: always active
    """
    config = config or RecommendationConfig()
    score = 0.0
    total_weight = 0.0
    active: list[str] = []

    genre = mix.genre
    if genre is not None and genre in user.genre_weights:
        score += user.genre_weights[genre] * config.genre_weight
        total_weight += config.genre_weight
        active.append("genre")

    if mix.bpm is not None and user.preferred_bpm_range is not None:
        low, high = user.preferred_bpm_range
        if low <= mix.bpm <= high:
            score += config.bpm_weight
            total_weight += config.bpm_weight
            active.append("bpm")

    if genre is not None and genre in user.skip_rate_weights:
        skip_rate = user.skip_rate_weights[genre]
        if skip_rate < config.skip_rate_threshold:
            score += (1 - skip_rate) * config.skip_weight
            total_weight += config.skip_weight
            active.append("skip")

    score += mix.quality_score * config.quality_weight
    total_weight += config.quality_weight
    active.append("quality")

    similarity = score / total_weight if total_weight > 0 else 0.0
    return SimilarityResult(similarity=similarity, total_weight=total_weight, active_terms=active)


def recency_boost(days_since_creation: float, window_days: float = 30.0) -> float:
    """Linear decay from 1 at creation to 0 at the end of the window."""
    return max(0.0, 1 - max(0.0, days_since_creation) / window_days)


def recommendation_weight(
    similarity: float, boost: float, config: RecommendationConfig | None = None,
) -> float:
    config = config or RecommendationConfig()
    return similarity * config.similarity_share + boost * config.recency_share


def days_since(created_at: datetime | None, now: datetime, unknown_age_days: float = 365.0) -> float:
    """Age in days. Naive datetimes are local time; aware ones are converted to it."""
    if created_at is None:
        return unknown_age_days
    if created_at.tzinfo is not None and now.tzinfo is None:
        created_at = created_at.astimezone().replace(tzinfo=None)
    elif created_at.tzinfo is None and now.tzinfo is not None:
        now = now.astimezone().replace(tzinfo=None)
    return (now - created_at).total_seconds() / 86400


def weigh_mix(
    user: UserEmbedding,
    embedding: MixEmbedding,
    mix: Mix,
    config: RecommendationConfig,
    now: datetime,
) -> SimilarityScore:
    """Similarity plus recency-blended weight for one mix. Pure."""
    result = score_similarity(user, embedding, config)
    age = days_since(mix.created_at, now, config.unknown_age_days)
    weight = recommendation_weight(
        result.similarity, recency_boost(age, config.recency_window_days), config,
    )
    return SimilarityScore(
        user_id=user.user_id,
        mix_id=mix.id,
        similarity_score=result.similarity,
        recommendation_weight=weight,
        last_calculated=now,
    )


def ensure_mix_embeddings(
    conn: sqlite3.Connection, mixes: dict[str, Mix],
) -> dict[str, MixEmbedding]:
    embeddings = get_mix_embeddings(conn, list(mixes))
    for mix_id in mixes:
        if mix_id not in embeddings:
            embeddings[mix_id] = build_mix_embedding(conn, mix_id)
    return embeddings


def calculate_user_mix_similarity(
    conn: sqlite3.Connection,
    user_id: str,
    mix_id: str,
    config: RecommendationConfig | None = None,
    now: datetime | None = None,
) -> float:
    """Compute, cache and return the recommendation weight for (user, mix).

    Returns 0.0 (uncached) when the user has no embedding or the mix does
    not exist. The cache has no TTL; callers needing fresh values re-invoke.
    """
    weights = batch_calculate_similarities(conn, user_id, [mix_id], config, now)
    return weights[0][1]


def batch_calculate_similarities(
    conn: sqlite3.Connection,
    user_id: str,
    mix_ids: list[str],
    config: RecommendationConfig | None = None,
    now: datetime | None = None,
) -> list[tuple[str, float]]:
    """Recommendation weights for many mixes, in input order.

    Inputs are loaded in one read and each mix is scored independently by a
    pure function, so no per-mix I/O fan-out is needed.
    """
    if not user_id:
        raise MissingIdentifierError("user_id")
    config = config or RecommendationConfig()
    now = now or datetime.now()

    user = get_user_embedding(conn, user_id)
    if user is None:
        logger.debug("No embedding for user=%s - similarities default to 0", user_id)
        return [(mix_id, 0.0) for mix_id in mix_ids]

    mixes = get_mixes_by_ids(conn, list(dict.fromkeys(mix_ids)))
    embeddings = ensure_mix_embeddings(conn, mixes)

    results: list[tuple[str, float]] = []
    with transaction(conn):
        for mix_id in mix_ids:
            mix = mixes.get(mix_id)
            if mix is None:
                logger.debug("Mix '%s' not found - similarity 0", mix_id)
                results.append((mix_id, 0.0))
                continue
            scored = weigh_mix(user, embeddings[mix_id], mix, config, now)
            upsert_similarity(conn, scored, commit=False)
            results.append((mix_id, scored.recommendation_weight))
    return results
