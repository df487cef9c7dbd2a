"""Personalised mix recommendations.

Ranking: recommendation weight descending, then newest first, then mix id.
Users without listening history, or whose history yields an empty profile,
get a pure recency ordering.
"""

import logging
import sqlite3
from datetime import datetime

from rhood.core.config import RecommendationConfig
from rhood.core.db import (
    count_sessions_for_user,
    get_liked_mix_ids,
    get_user_embedding,
    list_mixes,
    transaction,
    upsert_similarity,
)
from rhood.core.schemas import Mix, Recommendation
from rhood.features.embeddings import build_user_embedding
from rhood.pipeline.similarity import (
    days_since,
    ensure_mix_embeddings,
    recency_boost,
    weigh_mix,
)

logger = logging.getLogger(__name__)


def _created_key(mix: Mix) -> float:
    return mix.created_at.timestamp() if mix.created_at else float("-inf")


def _rank_key(rec: Recommendation) -> tuple[float, float, str]:
    return (-rec.recommendation_weight, -_created_key(rec.mix), rec.mix.id)


def _recency_only(
    mixes: list[Mix], limit: int, config: RecommendationConfig, now: datetime,
) -> list[Recommendation]:
    ordered = sorted(mixes, key=lambda m: (-_created_key(m), m.id))
    return [
        Recommendation(
            mix=mix,
            recommendation_weight=recency_boost(
                days_since(mix.created_at, now, config.unknown_age_days),
                config.recency_window_days,
            ),
        )
        for mix in ordered[:limit]
    ]


def get_recommendations(
    conn: sqlite3.Connection,
    user_id: str | None,
    limit: int | None = None,
    include_already_consumed: bool = False,
    config: RecommendationConfig | None = None,
    now: datetime | None = None,
) -> list[Recommendation]:
    """Return up to `limit` recommended mixes for a user.

    Liked mixes are excluded unless include_already_consumed is set, and a
    user's own mixes are never recommended back to them. Computed weights
    are written to the similarity cache.
    """
    config = config or RecommendationConfig()
    limit = limit if limit is not None else config.default_limit
    now = now or datetime.now()
    if limit <= 0:
        return []

    mixes = list_mixes(conn)
    if not user_id:
        return _recency_only(mixes, limit, config, now)

    excluded = set() if include_already_consumed else get_liked_mix_ids(conn, user_id)
    candidates = [m for m in mixes if m.user_id != user_id and m.id not in excluded]

    if count_sessions_for_user(conn, user_id) == 0:
        logger.debug("User %s has no listening history - recency ordering", user_id)
        return _recency_only(candidates, limit, config, now)

    user = get_user_embedding(conn, user_id) or build_user_embedding(conn, user_id, config)
    if user.is_empty:
        logger.debug("User %s has an empty listening profile - recency ordering", user_id)
        return _recency_only(candidates, limit, config, now)

    embeddings = ensure_mix_embeddings(conn, {m.id: m for m in candidates})

    recommendations: list[Recommendation] = []
    with transaction(conn):
        for mix in candidates:
            scored = weigh_mix(user, embeddings[mix.id], mix, config, now)
            upsert_similarity(conn, scored, commit=False)
            recommendations.append(
                Recommendation(
                    mix=mix,
                    recommendation_weight=scored.recommendation_weight,
                    similarity_score=scored.similarity_score,
                )
            )

    recommendations.sort(key=_rank_key)
    logger.info(
        "Ranked %d candidate mixes for user=%s (returning %d)",
        len(recommendations), user_id, min(limit, len(recommendations)),
    )
    return recommendations[:limit]
