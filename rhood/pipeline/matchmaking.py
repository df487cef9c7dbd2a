"""Match generation, match management and the application state machine.

Apply gates, checked in order (first failure wins, nothing is written):
  1. Daily application limit       -> DailyLimitExceeded
  2. No prior application          -> AlreadyApplied
  3. At least one uploaded mix     -> MixRequired (when require_mix is set)
On success the application row and the match status change are committed
together.
"""

import logging
import sqlite3
from datetime import date, datetime
from typing import Any

from rhood.core import db
from rhood.core.config import ApplicationLimitConfig, MatchingConfig
from rhood.core.errors import (
    AlreadyApplied,
    DataStoreError,
    MissingIdentifierError,
    MixRequired,
    NotFoundError,
)
from rhood.core.schemas import (
    Application,
    Availability,
    DJPreference,
    Match,
    MatchmakingAnalytics,
    MatchScore,
    MatchStatus,
)
from rhood.pipeline.application_limiter import ApplicationLimiter
from rhood.pipeline.scorer import score_match, score_matches

logger = logging.getLogger(__name__)


def _require(**ids: Any) -> None:
    missing = [name for name, value in ids.items() if value is None or value == ""]
    if missing:
        raise MissingIdentifierError(*missing)


# ---------------------------------------------------------------------------
# Preferences and availability
# ---------------------------------------------------------------------------


def get_dj_preferences(conn: sqlite3.Connection, user_id: str) -> list[DJPreference]:
    _require(user_id=user_id)
    return db.get_preferences(conn, user_id)


def set_dj_preferences(
    conn: sqlite3.Connection, user_id: str, preferences: dict[str, Any],
) -> list[DJPreference]:
    """Replace all preferences of a DJ.

    `preferences` maps preference_type to its value. A dict value may carry
    an "importance" key, which becomes the importance score.
    """
    _require(user_id=user_id)
    rows = [
        DJPreference(
            user_id=user_id,
            preference_type=pref_type,
            preference_value=value,
            importance_score=(
                float(value.get("importance", 1.0)) if isinstance(value, dict) else 1.0
            ),
        )
        for pref_type, value in preferences.items()
    ]
    db.replace_preferences(conn, user_id, rows)
    logger.info("Stored %d preferences for user=%s", len(rows), user_id)
    return db.get_preferences(conn, user_id)


def add_availability(
    conn: sqlite3.Connection,
    user_id: str,
    date_from: date,
    date_to: date,
    is_available: bool = True,
    notes: str = "",
) -> Availability:
    """Store an availability range. Ranges are not validated or merged."""
    _require(user_id=user_id)
    return db.insert_availability(
        conn,
        Availability(
            user_id=user_id,
            date_from=date_from,
            date_to=date_to,
            is_available=is_available,
            notes=notes,
        ),
    )


def get_availability(
    conn: sqlite3.Connection,
    user_id: str,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[Availability]:
    _require(user_id=user_id)
    return db.get_availability(conn, user_id, start_date, end_date)


# ---------------------------------------------------------------------------
# Matches
# ---------------------------------------------------------------------------


def generate_matches(
    conn: sqlite3.Connection,
    user_id: str,
    config: MatchingConfig | None = None,
    limit: int | None = None,
    now: datetime | None = None,
) -> list[Match]:
    """Score every open opportunity for the DJ and persist the matches.

    New matches start as pending; existing ones keep their status and get a
    refreshed score and reasons. Returns the best `limit` matches.
    """
    _require(user_id=user_id)
    config = config or MatchingConfig()
    limit = limit if limit is not None else config.default_limit
    now = now or datetime.now()

    profile = db.get_profile(conn, user_id)
    preferences = db.get_preferences(conn, user_id)
    availability = db.get_availability(conn, user_id)
    opportunities = db.list_open_opportunities(conn, now)
    by_id = {opp.id: opp for opp in opportunities}

    scored = score_matches(profile, preferences, availability, opportunities, config)
    matches = [
        db.upsert_match(conn, user_id, s.opportunity_id, s.score, s.reasons, now).model_copy(
            update={"opportunity": by_id[s.opportunity_id]}
        )
        for s in scored
    ]
    logger.info(
        "Generated %d matches for user=%s (top score %.2f)",
        len(matches), user_id, matches[0].match_score if matches else 0.0,
    )
    return matches[:limit]


def calculate_match_score(
    conn: sqlite3.Connection,
    user_id: str,
    opportunity_id: str,
    config: MatchingConfig | None = None,
) -> MatchScore:
    """Score a single opportunity for the DJ without persisting anything."""
    _require(user_id=user_id, opportunity_id=opportunity_id)
    opportunity = db.get_opportunity(conn, opportunity_id)
    if opportunity is None:
        msg = f"Opportunity '{opportunity_id}' not found"
        raise NotFoundError(msg)
    return score_match(
        db.get_profile(conn, user_id),
        db.get_preferences(conn, user_id),
        db.get_availability(conn, user_id),
        opportunity,
        config,
    )


def get_matches(
    conn: sqlite3.Connection,
    user_id: str,
    status: MatchStatus | None = None,
    limit: int = 50,
) -> list[Match]:
    _require(user_id=user_id)
    return db.get_matches(conn, user_id, status, limit)


def update_match_status(
    conn: sqlite3.Connection, match_id: int, status: MatchStatus,
) -> Match:
    _require(match_id=match_id)
    match = db.set_match_status(conn, match_id, MatchStatus(status))
    if match is None:
        msg = f"Match {match_id} not found"
        raise NotFoundError(msg)
    logger.info("Match %d -> %s", match_id, match.status.value)
    return match


# ---------------------------------------------------------------------------
# Applications
# ---------------------------------------------------------------------------


def apply_to_opportunity(
    conn: sqlite3.Connection,
    user_id: str,
    opportunity_id: str,
    limits: ApplicationLimitConfig | None = None,
    message: str = "",
    now: datetime | None = None,
) -> Application:
    """Apply the DJ to an opportunity.

    Raises:
        MissingIdentifierError: If an id is empty.
        DailyLimitExceeded: If today's applications are used up.
        AlreadyApplied: If the DJ already applied to this opportunity.
        MixRequired: If the DJ has no uploaded mix and one is required.
        DataStoreError: If the write fails; nothing is committed.
    """
    _require(user_id=user_id, opportunity_id=opportunity_id)
    limits = limits or ApplicationLimitConfig()
    now = now or datetime.now()

    ApplicationLimiter(conn, limits).check(user_id, now.date())

    if db.get_application(conn, user_id, opportunity_id) is not None:
        raise AlreadyApplied(user_id, opportunity_id)

    if limits.require_mix and db.count_user_mixes(conn, user_id) == 0:
        raise MixRequired(user_id)

    try:
        with db.transaction(conn):
            application = db.insert_application(
                conn, user_id, opportunity_id, message, now, commit=False,
            )
            updated = db.set_match_status_for_pair(
                conn, user_id, opportunity_id, MatchStatus.APPLIED, now, commit=False,
            )
    except DataStoreError as e:
        if isinstance(e.__cause__, sqlite3.IntegrityError):
            raise AlreadyApplied(user_id, opportunity_id) from e
        raise

    if not updated:
        logger.debug("No match row for user=%s opportunity=%s", user_id, opportunity_id)
    logger.info("User %s applied to opportunity %s", user_id, opportunity_id)
    return application


# ---------------------------------------------------------------------------
# Feedback and analytics
# ---------------------------------------------------------------------------


def submit_feedback(
    conn: sqlite3.Connection,
    match_id: int,
    user_id: str,
    rating: int | None = None,
    comment: str = "",
) -> int:
    _require(match_id=match_id, user_id=user_id)
    if db.get_match(conn, match_id) is None:
        msg = f"Match {match_id} not found"
        raise NotFoundError(msg)
    return db.insert_feedback(conn, match_id, user_id, rating, comment)


def get_matchmaking_analytics(conn: sqlite3.Connection, user_id: str) -> MatchmakingAnalytics:
    _require(user_id=user_id)
    matches = db.get_matches(conn, user_id)
    applications = db.list_applications(conn, user_id)
    return MatchmakingAnalytics(
        total_matches=len(matches),
        applied_matches=sum(1 for m in matches if m.status == MatchStatus.APPLIED),
        pending_applications=sum(1 for a in applications if a.status == "pending"),
        accepted_applications=sum(1 for a in applications if a.status == "accepted"),
        average_match_score=(
            sum(m.match_score for m in matches) / len(matches) if matches else 0.0
        ),
    )
