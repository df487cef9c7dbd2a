"""Listening behavior tracker: sessions, skips, likes and saves.

Recording a session only appends to listening_sessions. Embeddings are
rebuilt separately (see rhood.features.embeddings).
"""

import logging
import sqlite3
import time
from collections import Counter
from collections.abc import Callable
from datetime import datetime

from rhood.core.db import (
    get_latest_session,
    get_mix,
    get_mixes_by_ids,
    get_sessions_for_user,
    insert_listening_session,
    set_like,
    set_session_flag,
    transaction,
)
from rhood.core.errors import MissingIdentifierError
from rhood.core.schemas import ListeningFacts, ListeningStats

logger = logging.getLogger(__name__)

EARLY_SKIP_SECONDS = 10.0


def _require_ids(user_id: str | None, mix_id: str | None) -> None:
    missing = [name for name, value in (("user_id", user_id), ("mix_id", mix_id)) if not value]
    if missing:
        raise MissingIdentifierError(*missing)


def is_early_skip(skip_time_seconds: float | None, threshold: float = EARLY_SKIP_SECONDS) -> bool:
    """A skip within the first few seconds is a strong negative signal."""
    return skip_time_seconds is not None and skip_time_seconds < threshold


def record_listening_session(
    conn: sqlite3.Connection,
    user_id: str,
    mix_id: str,
    facts: ListeningFacts | None = None,
    *,
    started_at: datetime | None = None,
) -> int:
    """Append one listening session and return its event id.

    Raises:
        MissingIdentifierError: If user_id or mix_id is empty.
        DataStoreError: If the write fails.
    """
    _require_ids(user_id, mix_id)
    facts = facts or ListeningFacts()
    event_id = insert_listening_session(conn, user_id, mix_id, facts, started_at)
    logger.debug(
        "Recorded session %d for user=%s mix=%s (%.0fs, %.1f%%)",
        event_id, user_id, mix_id,
        facts.listen_duration_seconds, facts.completion_percentage,
    )
    return event_id


class ListeningSession:
    """Playback-side session handle.

    Usage::

        session = start_listening_session(conn, "user-1", "mix-9")
        ...  # playback
        session.end(was_skipped=True, skip_time_seconds=4)
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        mix_id: str,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._conn = conn
        self.user_id = user_id
        self.mix_id = mix_id
        self._clock = clock
        self.start_time = clock()
        self.started_at = datetime.now()

    def _mix_duration(self) -> float | None:
        mix = get_mix(self._conn, self.mix_id)
        return mix.duration_seconds if mix else None

    def end(
        self,
        *,
        mix_duration_seconds: float | None = None,
        completion_percentage: float = 0.0,
        was_skipped: bool = False,
        skip_time_seconds: float | None = None,
        was_liked: bool = False,
        was_saved: bool = False,
    ) -> int | None:
        """Close the session and record it.

        Completion is derived from the mix duration when it is known (from the
        caller or the catalog); otherwise the caller's value is kept.
        Tracking failures never reach playback: they are logged and None is
        returned.
        """
        duration = float(int(self._clock() - self.start_time))
        try:
            mix_duration = mix_duration_seconds or self._mix_duration()
            if mix_duration:
                completion_percentage = min(100.0, duration / mix_duration * 100)
            facts = ListeningFacts(
                listen_duration_seconds=duration,
                completion_percentage=completion_percentage,
                was_skipped=was_skipped,
                skip_time_seconds=skip_time_seconds,
                was_liked=was_liked,
                was_saved=was_saved,
            )
            return record_listening_session(
                self._conn, self.user_id, self.mix_id, facts, started_at=self.started_at,
            )
        except Exception:
            logger.warning(
                "Failed to record listening session for user=%s mix=%s",
                self.user_id, self.mix_id,
                exc_info=True,
            )
            return None


def start_listening_session(
    conn: sqlite3.Connection,
    user_id: str,
    mix_id: str,
    clock: Callable[[], float] = time.monotonic,
) -> ListeningSession:
    return ListeningSession(conn, user_id, mix_id, clock=clock)


def track_skip(
    conn: sqlite3.Connection,
    user_id: str,
    mix_id: str,
    skip_time_seconds: float,
) -> int:
    """Record a skipped session. The time before the skip counts as listened."""
    if is_early_skip(skip_time_seconds):
        logger.debug("Early skip by user=%s on mix=%s at %.1fs", user_id, mix_id, skip_time_seconds)
    facts = ListeningFacts(
        listen_duration_seconds=skip_time_seconds,
        completion_percentage=0.0,
        was_skipped=True,
        skip_time_seconds=skip_time_seconds,
    )
    return record_listening_session(conn, user_id, mix_id, facts)


def _amend_flag(
    conn: sqlite3.Connection,
    user_id: str,
    mix_id: str,
    flag: str,
    value: bool,
    *,
    commit: bool = True,
) -> int:
    """Set a flag on the latest session for the pair, or record a flag-only event."""
    _require_ids(user_id, mix_id)
    latest = get_latest_session(conn, user_id, mix_id)
    if latest is not None:
        set_session_flag(conn, latest.id, flag, value, commit=commit)
        return latest.id
    facts = ListeningFacts(**{flag: value})
    return insert_listening_session(conn, user_id, mix_id, facts, commit=commit)


def track_like(conn: sqlite3.Connection, user_id: str, mix_id: str, value: bool = True) -> int:
    """Record a like (or unlike) and keep the mix's like set in step.

    The session flag and the like set are written in one transaction.
    """
    with transaction(conn):
        event_id = _amend_flag(conn, user_id, mix_id, "was_liked", value, commit=False)
        set_like(conn, user_id, mix_id, value, commit=False)
    logger.debug("User %s %s mix %s", user_id, "liked" if value else "unliked", mix_id)
    return event_id


def track_save(conn: sqlite3.Connection, user_id: str, mix_id: str, value: bool = True) -> int:
    return _amend_flag(conn, user_id, mix_id, "was_saved", value)


def get_user_listening_stats(conn: sqlite3.Connection, user_id: str) -> ListeningStats:
    """Aggregate a user's listening history into summary statistics."""
    sessions = get_sessions_for_user(conn, user_id)
    if not sessions:
        return ListeningStats()

    total = len(sessions)
    skips = [s for s in sessions if s.was_skipped]
    early_skips = [s for s in skips if s.is_early_skip(EARLY_SKIP_SECONDS)]

    mixes = get_mixes_by_ids(conn, sorted({s.mix_id for s in sessions}))
    genres = Counter(
        mixes[s.mix_id].genre for s in sessions
        if s.mix_id in mixes and mixes[s.mix_id].genre
    )

    return ListeningStats(
        total_listens=total,
        avg_completion_rate=sum(s.completion_percentage for s in sessions) / total,
        avg_listen_duration=sum(s.listen_duration_seconds for s in sessions) / total,
        skip_rate=len(skips) / total,
        early_skip_rate=len(early_skips) / total,
        total_likes=sum(1 for s in sessions if s.was_liked),
        total_saves=sum(1 for s in sessions if s.was_saved),
        genres_listened=dict(genres),
    )
