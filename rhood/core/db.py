"""SQLite store for profiles, mixes, listening sessions, embeddings and matches.

Every public function raises DataStoreError when SQLite fails. Write
functions commit by default; pass commit=False to group several writes
inside a transaction() block.
"""

import functools
import json
import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, ParamSpec, TypeVar

from rhood.core.errors import DataStoreError
from rhood.core.schemas import (
    Application,
    Availability,
    DJPreference,
    DJProfile,
    ListeningEvent,
    ListeningFacts,
    Match,
    MatchStatus,
    Mix,
    MixEmbedding,
    Opportunity,
    OpportunityRequirement,
    SimilarityScore,
    UserEmbedding,
)

P = ParamSpec("P")
R = TypeVar("R")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS user_profiles (
    id              TEXT PRIMARY KEY,
    dj_name         TEXT NOT NULL DEFAULT '',
    full_name       TEXT NOT NULL DEFAULT '',
    city            TEXT NOT NULL DEFAULT '',
    country         TEXT NOT NULL DEFAULT '',
    bio             TEXT NOT NULL DEFAULT '',
    genres          TEXT NOT NULL DEFAULT '[]',
    skill_level     TEXT,
    credits         INTEGER NOT NULL DEFAULT 0,
    gigs_completed  INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS mixes (
    id               TEXT PRIMARY KEY,
    user_id          TEXT NOT NULL DEFAULT '',
    title            TEXT NOT NULL DEFAULT '',
    genre            TEXT,
    sub_genre        TEXT,
    bpm              REAL,
    mood_tags        TEXT NOT NULL DEFAULT '[]',
    audio_features   TEXT NOT NULL DEFAULT '{}',
    likes_count      INTEGER NOT NULL DEFAULT 0,
    play_count       INTEGER NOT NULL DEFAULT 0,
    duration_seconds REAL,
    created_at       TEXT
);

CREATE TABLE IF NOT EXISTS mix_likes (
    user_id     TEXT NOT NULL,
    mix_id      TEXT NOT NULL,
    created_at  TEXT NOT NULL,
    PRIMARY KEY (user_id, mix_id)
);

CREATE TABLE IF NOT EXISTS listening_sessions (
    id                       INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id                  TEXT    NOT NULL,
    mix_id                   TEXT    NOT NULL,
    listen_duration_seconds  REAL    NOT NULL DEFAULT 0,
    completion_percentage    REAL    NOT NULL DEFAULT 0,
    was_skipped              INTEGER NOT NULL DEFAULT 0,
    skip_time_seconds        REAL,
    was_liked                INTEGER NOT NULL DEFAULT 0,
    was_saved                INTEGER NOT NULL DEFAULT 0,
    device_type              TEXT,
    city                     TEXT,
    country                  TEXT,
    started_at               TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sessions_user_mix
    ON listening_sessions (user_id, mix_id, started_at);

CREATE TABLE IF NOT EXISTS user_embeddings (
    user_id              TEXT PRIMARY KEY,
    genre_weights        TEXT NOT NULL DEFAULT '{}',
    skip_rate_weights    TEXT NOT NULL DEFAULT '{}',
    avg_listen_duration  REAL NOT NULL DEFAULT 0,
    completion_rate      REAL NOT NULL DEFAULT 0,
    preferred_bpm_range  TEXT,
    geographic_signals   TEXT NOT NULL DEFAULT '{}',
    last_calculated      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS mix_embeddings (
    mix_id           TEXT PRIMARY KEY,
    bpm              REAL,
    genre            TEXT,
    sub_genre        TEXT,
    mood_vector      TEXT NOT NULL DEFAULT '[]',
    audio_features   TEXT NOT NULL DEFAULT '{}',
    quality_score    REAL NOT NULL DEFAULT 0,
    last_calculated  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS user_mix_similarity (
    user_id                TEXT NOT NULL,
    mix_id                 TEXT NOT NULL,
    similarity_score       REAL NOT NULL,
    recommendation_weight  REAL NOT NULL,
    last_calculated        TEXT NOT NULL,
    PRIMARY KEY (user_id, mix_id)
);

CREATE TABLE IF NOT EXISTS opportunities (
    id              TEXT PRIMARY KEY,
    title           TEXT NOT NULL,
    description     TEXT NOT NULL DEFAULT '',
    event_date      TEXT,
    location        TEXT NOT NULL DEFAULT '',
    genre           TEXT,
    skill_level     TEXT,
    payment         REAL,
    organizer_name  TEXT NOT NULL DEFAULT '',
    is_active       INTEGER NOT NULL DEFAULT 1,
    created_at      TEXT
);

CREATE TABLE IF NOT EXISTS opportunity_requirements (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    opportunity_id     TEXT NOT NULL,
    requirement_type   TEXT NOT NULL,
    requirement_value  TEXT
);

CREATE TABLE IF NOT EXISTS dj_preferences (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id           TEXT NOT NULL,
    preference_type   TEXT NOT NULL,
    preference_value  TEXT,
    importance_score  REAL NOT NULL DEFAULT 1.0
);

CREATE TABLE IF NOT EXISTS dj_availability (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id       TEXT    NOT NULL,
    date_from     TEXT    NOT NULL,
    date_to       TEXT    NOT NULL,
    is_available  INTEGER NOT NULL DEFAULT 1,
    notes         TEXT    NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS matches (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         TEXT NOT NULL,
    opportunity_id  TEXT NOT NULL,
    match_score     REAL NOT NULL DEFAULT 0,
    status          TEXT NOT NULL DEFAULT 'pending',
    match_reasons   TEXT NOT NULL DEFAULT '[]',
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL,
    UNIQUE(user_id, opportunity_id)
);

CREATE TABLE IF NOT EXISTS applications (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         TEXT NOT NULL,
    opportunity_id  TEXT NOT NULL,
    status          TEXT NOT NULL DEFAULT 'pending',
    message         TEXT NOT NULL DEFAULT '',
    created_at      TEXT NOT NULL,
    UNIQUE(user_id, opportunity_id)
);

CREATE TABLE IF NOT EXISTS match_feedback (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    match_id    INTEGER NOT NULL,
    user_id     TEXT    NOT NULL,
    rating      INTEGER,
    comment     TEXT    NOT NULL DEFAULT '',
    created_at  TEXT    NOT NULL
);
"""

_SESSION_FLAGS = ("was_liked", "was_saved")


def _store_errors(func: Callable[P, R]) -> Callable[P, R]:
    """Re-raise sqlite3 failures as DataStoreError."""

    @functools.wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        try:
            return func(*args, **kwargs)
        except sqlite3.Error as e:
            msg = f"{func.__name__} failed: {e}"
            raise DataStoreError(msg) from e

    return wrapper


def _dumps(value: Any) -> str:
    return json.dumps(value, sort_keys=True)


def _loads(raw: str | None, default: Any) -> Any:
    if raw is None or raw == "":
        return default
    return json.loads(raw)


def _iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value is not None else None


def _dt(raw: str | None) -> datetime | None:
    return datetime.fromisoformat(raw) if raw else None


# ---------------------------------------------------------------------------
# Connection management
# ---------------------------------------------------------------------------


@_store_errors
def init_db(path: str | Path) -> sqlite3.Connection:
    """Create the database and tables, returning a connection."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.executescript(_SCHEMA)
    conn.commit()
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Commit the enclosed writes together, or roll all of them back."""
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    else:
        try:
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            msg = f"commit failed: {e}"
            raise DataStoreError(msg) from e


# ---------------------------------------------------------------------------
# Profiles and mixes
# ---------------------------------------------------------------------------


def _row_to_profile(row: sqlite3.Row) -> DJProfile:
    return DJProfile(
        id=row["id"],
        dj_name=row["dj_name"],
        full_name=row["full_name"],
        city=row["city"],
        country=row["country"],
        bio=row["bio"],
        genres=_loads(row["genres"], []),
        skill_level=row["skill_level"],
        credits=row["credits"],
        gigs_completed=row["gigs_completed"],
    )


@_store_errors
def upsert_profile(conn: sqlite3.Connection, profile: DJProfile) -> None:
    conn.execute(
        """
        INSERT INTO user_profiles
            (id, dj_name, full_name, city, country, bio, genres, skill_level,
             credits, gigs_completed)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            dj_name = excluded.dj_name,
            full_name = excluded.full_name,
            city = excluded.city,
            country = excluded.country,
            bio = excluded.bio,
            genres = excluded.genres,
            skill_level = excluded.skill_level,
            credits = excluded.credits,
            gigs_completed = excluded.gigs_completed
        """,
        (
            profile.id,
            profile.dj_name,
            profile.full_name,
            profile.city,
            profile.country,
            profile.bio,
            _dumps(profile.genres),
            profile.skill_level,
            profile.credits,
            profile.gigs_completed,
        ),
    )
    conn.commit()


@_store_errors
def get_profile(conn: sqlite3.Connection, user_id: str) -> DJProfile | None:
    row = conn.execute("SELECT * FROM user_profiles WHERE id = ?", (user_id,)).fetchone()
    return _row_to_profile(row) if row else None


def _row_to_mix(row: sqlite3.Row) -> Mix:
    return Mix(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        genre=row["genre"],
        sub_genre=row["sub_genre"],
        bpm=row["bpm"],
        mood_tags=_loads(row["mood_tags"], []),
        audio_features=_loads(row["audio_features"], {}),
        likes_count=row["likes_count"],
        play_count=row["play_count"],
        duration_seconds=row["duration_seconds"],
        created_at=_dt(row["created_at"]),
    )


@_store_errors
def upsert_mix(conn: sqlite3.Connection, mix: Mix) -> None:
    conn.execute(
        """
        INSERT INTO mixes
            (id, user_id, title, genre, sub_genre, bpm, mood_tags, audio_features,
             likes_count, play_count, duration_seconds, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            user_id = excluded.user_id,
            title = excluded.title,
            genre = excluded.genre,
            sub_genre = excluded.sub_genre,
            bpm = excluded.bpm,
            mood_tags = excluded.mood_tags,
            audio_features = excluded.audio_features,
            likes_count = excluded.likes_count,
            play_count = excluded.play_count,
            duration_seconds = excluded.duration_seconds,
            created_at = excluded.created_at
        """,
        (
            mix.id,
            mix.user_id,
            mix.title,
            mix.genre,
            mix.sub_genre,
            mix.bpm,
            _dumps(mix.mood_tags),
            _dumps(mix.audio_features),
            mix.likes_count,
            mix.play_count,
            mix.duration_seconds,
            _iso(mix.created_at),
        ),
    )
    conn.commit()


@_store_errors
def get_mix(conn: sqlite3.Connection, mix_id: str) -> Mix | None:
    row = conn.execute("SELECT * FROM mixes WHERE id = ?", (mix_id,)).fetchone()
    return _row_to_mix(row) if row else None


@_store_errors
def get_mixes_by_ids(conn: sqlite3.Connection, mix_ids: list[str]) -> dict[str, Mix]:
    if not mix_ids:
        return {}
    placeholders = ", ".join("?" for _ in mix_ids)
    rows = conn.execute(
        f"SELECT * FROM mixes WHERE id IN ({placeholders})",  # noqa: S608
        list(mix_ids),
    ).fetchall()
    return {row["id"]: _row_to_mix(row) for row in rows}


@_store_errors
def list_mixes(conn: sqlite3.Connection, limit: int | None = None) -> list[Mix]:
    """Return mixes newest first (ties broken by id for a stable order)."""
    sql = "SELECT * FROM mixes ORDER BY created_at IS NULL, created_at DESC, id"
    params: tuple[Any, ...] = ()
    if limit is not None:
        sql += " LIMIT ?"
        params = (limit,)
    return [_row_to_mix(row) for row in conn.execute(sql, params).fetchall()]


@_store_errors
def count_user_mixes(conn: sqlite3.Connection, user_id: str) -> int:
    row = conn.execute("SELECT COUNT(*) FROM mixes WHERE user_id = ?", (user_id,)).fetchone()
    return int(row[0])


@_store_errors
def set_like(
    conn: sqlite3.Connection, user_id: str, mix_id: str, liked: bool, *, commit: bool = True,
) -> bool:
    """Add or remove a like. Returns True if the like set changed.

    The mix's likes_count follows the like set.
    """
    if liked:
        cursor = conn.execute(
            "INSERT OR IGNORE INTO mix_likes (user_id, mix_id, created_at) VALUES (?, ?, ?)",
            (user_id, mix_id, datetime.now().isoformat()),
        )
        delta = 1
    else:
        cursor = conn.execute(
            "DELETE FROM mix_likes WHERE user_id = ? AND mix_id = ?", (user_id, mix_id),
        )
        delta = -1
    changed = cursor.rowcount > 0
    if changed:
        conn.execute(
            "UPDATE mixes SET likes_count = MAX(0, likes_count + ?) WHERE id = ?",
            (delta, mix_id),
        )
    if commit:
        conn.commit()
    return changed


@_store_errors
def get_liked_mix_ids(conn: sqlite3.Connection, user_id: str) -> set[str]:
    rows = conn.execute("SELECT mix_id FROM mix_likes WHERE user_id = ?", (user_id,)).fetchall()
    return {row["mix_id"] for row in rows}


# ---------------------------------------------------------------------------
# Listening sessions
# ---------------------------------------------------------------------------


def _row_to_event(row: sqlite3.Row) -> ListeningEvent:
    return ListeningEvent(
        id=row["id"],
        user_id=row["user_id"],
        mix_id=row["mix_id"],
        listen_duration_seconds=row["listen_duration_seconds"],
        completion_percentage=row["completion_percentage"],
        was_skipped=bool(row["was_skipped"]),
        skip_time_seconds=row["skip_time_seconds"],
        was_liked=bool(row["was_liked"]),
        was_saved=bool(row["was_saved"]),
        device_type=row["device_type"],
        city=row["city"],
        country=row["country"],
        started_at=datetime.fromisoformat(row["started_at"]),
    )


@_store_errors
def insert_listening_session(
    conn: sqlite3.Connection,
    user_id: str,
    mix_id: str,
    facts: ListeningFacts,
    started_at: datetime | None = None,
    *,
    commit: bool = True,
) -> int:
    """Append a listening session. Returns the row ID."""
    cursor = conn.execute(
        """
        INSERT INTO listening_sessions
            (user_id, mix_id, listen_duration_seconds, completion_percentage,
             was_skipped, skip_time_seconds, was_liked, was_saved,
             device_type, city, country, started_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            user_id,
            mix_id,
            facts.listen_duration_seconds,
            facts.completion_percentage,
            int(facts.was_skipped),
            facts.skip_time_seconds,
            int(facts.was_liked),
            int(facts.was_saved),
            facts.device_type,
            facts.city,
            facts.country,
            (started_at or datetime.now()).isoformat(),
        ),
    )
    if commit:
        conn.commit()
    return cursor.lastrowid or 0


@_store_errors
def get_latest_session(
    conn: sqlite3.Connection, user_id: str, mix_id: str,
) -> ListeningEvent | None:
    row = conn.execute(
        """
        SELECT * FROM listening_sessions
        WHERE user_id = ? AND mix_id = ?
        ORDER BY started_at DESC, id DESC
        LIMIT 1
        """,
        (user_id, mix_id),
    ).fetchone()
    return _row_to_event(row) if row else None


@_store_errors
def set_session_flag(
    conn: sqlite3.Connection, session_id: int, flag: str, value: bool, *, commit: bool = True,
) -> None:
    """Amend the like/save flag of an existing session."""
    if flag not in _SESSION_FLAGS:
        msg = f"flag must be one of {_SESSION_FLAGS}, got '{flag}'"
        raise ValueError(msg)
    conn.execute(
        f"UPDATE listening_sessions SET {flag} = ? WHERE id = ?",  # noqa: S608
        (int(value), session_id),
    )
    if commit:
        conn.commit()


@_store_errors
def get_sessions_for_user(conn: sqlite3.Connection, user_id: str) -> list[ListeningEvent]:
    rows = conn.execute(
        "SELECT * FROM listening_sessions WHERE user_id = ? ORDER BY started_at, id",
        (user_id,),
    ).fetchall()
    return [_row_to_event(row) for row in rows]


@_store_errors
def count_sessions_for_user(conn: sqlite3.Connection, user_id: str) -> int:
    row = conn.execute(
        "SELECT COUNT(*) FROM listening_sessions WHERE user_id = ?", (user_id,),
    ).fetchone()
    return int(row[0])


@_store_errors
def list_users_with_sessions(conn: sqlite3.Connection) -> list[str]:
    rows = conn.execute(
        "SELECT DISTINCT user_id FROM listening_sessions ORDER BY user_id",
    ).fetchall()
    return [row["user_id"] for row in rows]


# ---------------------------------------------------------------------------
# Embeddings and similarity cache
# ---------------------------------------------------------------------------


@_store_errors
def upsert_user_embedding(conn: sqlite3.Connection, embedding: UserEmbedding) -> None:
    """Overwrite the user's embedding (last write wins)."""
    bpm_range = list(embedding.preferred_bpm_range) if embedding.preferred_bpm_range else None
    conn.execute(
        """
        INSERT INTO user_embeddings
            (user_id, genre_weights, skip_rate_weights, avg_listen_duration,
             completion_rate, preferred_bpm_range, geographic_signals, last_calculated)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(user_id) DO UPDATE SET
            genre_weights = excluded.genre_weights,
            skip_rate_weights = excluded.skip_rate_weights,
            avg_listen_duration = excluded.avg_listen_duration,
            completion_rate = excluded.completion_rate,
            preferred_bpm_range = excluded.preferred_bpm_range,
            geographic_signals = excluded.geographic_signals,
            last_calculated = excluded.last_calculated
        """,
        (
            embedding.user_id,
            _dumps(embedding.genre_weights),
            _dumps(embedding.skip_rate_weights),
            embedding.avg_listen_duration,
            embedding.completion_rate,
            _dumps(bpm_range) if bpm_range else None,
            _dumps(embedding.geographic_signals),
            (embedding.last_calculated or datetime.now()).isoformat(),
        ),
    )
    conn.commit()


@_store_errors
def get_user_embedding(conn: sqlite3.Connection, user_id: str) -> UserEmbedding | None:
    row = conn.execute(
        "SELECT * FROM user_embeddings WHERE user_id = ?", (user_id,),
    ).fetchone()
    if row is None:
        return None
    bpm_range = _loads(row["preferred_bpm_range"], None)
    return UserEmbedding(
        user_id=row["user_id"],
        genre_weights=_loads(row["genre_weights"], {}),
        skip_rate_weights=_loads(row["skip_rate_weights"], {}),
        avg_listen_duration=row["avg_listen_duration"],
        completion_rate=row["completion_rate"],
        preferred_bpm_range=tuple(bpm_range) if bpm_range else None,
        geographic_signals=_loads(row["geographic_signals"], {}),
        last_calculated=_dt(row["last_calculated"]),
    )


def _row_to_mix_embedding(row: sqlite3.Row) -> MixEmbedding:
    return MixEmbedding(
        mix_id=row["mix_id"],
        bpm=row["bpm"],
        genre=row["genre"],
        sub_genre=row["sub_genre"],
        mood_vector=_loads(row["mood_vector"], []),
        audio_features=_loads(row["audio_features"], {}),
        quality_score=row["quality_score"],
        last_calculated=_dt(row["last_calculated"]),
    )


@_store_errors
def upsert_mix_embedding(conn: sqlite3.Connection, embedding: MixEmbedding) -> None:
    conn.execute(
        """
        INSERT INTO mix_embeddings
            (mix_id, bpm, genre, sub_genre, mood_vector, audio_features,
             quality_score, last_calculated)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(mix_id) DO UPDATE SET
            bpm = excluded.bpm,
            genre = excluded.genre,
            sub_genre = excluded.sub_genre,
            mood_vector = excluded.mood_vector,
            audio_features = excluded.audio_features,
            quality_score = excluded.quality_score,
            last_calculated = excluded.last_calculated
        """,
        (
            embedding.mix_id,
            embedding.bpm,
            embedding.genre,
            embedding.sub_genre,
            _dumps(embedding.mood_vector),
            _dumps(embedding.audio_features),
            embedding.quality_score,
            (embedding.last_calculated or datetime.now()).isoformat(),
        ),
    )
    conn.commit()


@_store_errors
def get_mix_embedding(conn: sqlite3.Connection, mix_id: str) -> MixEmbedding | None:
    row = conn.execute("SELECT * FROM mix_embeddings WHERE mix_id = ?", (mix_id,)).fetchone()
    return _row_to_mix_embedding(row) if row else None


@_store_errors
def get_mix_embeddings(
    conn: sqlite3.Connection, mix_ids: list[str],
) -> dict[str, MixEmbedding]:
    if not mix_ids:
        return {}
    placeholders = ", ".join("?" for _ in mix_ids)
    rows = conn.execute(
        f"SELECT * FROM mix_embeddings WHERE mix_id IN ({placeholders})",  # noqa: S608
        list(mix_ids),
    ).fetchall()
    return {row["mix_id"]: _row_to_mix_embedding(row) for row in rows}


@_store_errors
def upsert_similarity(
    conn: sqlite3.Connection, score: SimilarityScore, *, commit: bool = True,
) -> None:
    conn.execute(
        """
        INSERT INTO user_mix_similarity
            (user_id, mix_id, similarity_score, recommendation_weight, last_calculated)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(user_id, mix_id) DO UPDATE SET
            similarity_score = excluded.similarity_score,
            recommendation_weight = excluded.recommendation_weight,
            last_calculated = excluded.last_calculated
        """,
        (
            score.user_id,
            score.mix_id,
            score.similarity_score,
            score.recommendation_weight,
            score.last_calculated.isoformat(),
        ),
    )
    if commit:
        conn.commit()


@_store_errors
def get_similarity(
    conn: sqlite3.Connection, user_id: str, mix_id: str,
) -> SimilarityScore | None:
    row = conn.execute(
        "SELECT * FROM user_mix_similarity WHERE user_id = ? AND mix_id = ?",
        (user_id, mix_id),
    ).fetchone()
    if row is None:
        return None
    return SimilarityScore(
        user_id=row["user_id"],
        mix_id=row["mix_id"],
        similarity_score=row["similarity_score"],
        recommendation_weight=row["recommendation_weight"],
        last_calculated=datetime.fromisoformat(row["last_calculated"]),
    )


# ---------------------------------------------------------------------------
# Opportunities
# ---------------------------------------------------------------------------


def _requirements_for(
    conn: sqlite3.Connection, opportunity_ids: list[str],
) -> dict[str, list[OpportunityRequirement]]:
    result: dict[str, list[OpportunityRequirement]] = {oid: [] for oid in opportunity_ids}
    if not opportunity_ids:
        return result
    placeholders = ", ".join("?" for _ in opportunity_ids)
    rows = conn.execute(
        f"""
        SELECT * FROM opportunity_requirements
        WHERE opportunity_id IN ({placeholders})
        ORDER BY id
        """,  # noqa: S608
        list(opportunity_ids),
    ).fetchall()
    for row in rows:
        result[row["opportunity_id"]].append(
            OpportunityRequirement(
                requirement_type=row["requirement_type"],
                requirement_value=_loads(row["requirement_value"], None),
            )
        )
    return result


def _row_to_opportunity(
    row: sqlite3.Row, requirements: list[OpportunityRequirement],
) -> Opportunity:
    return Opportunity(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        event_date=_dt(row["event_date"]),
        location=row["location"],
        genre=row["genre"],
        skill_level=row["skill_level"],
        payment=row["payment"],
        organizer_name=row["organizer_name"],
        requirements=requirements,
        is_active=bool(row["is_active"]),
        created_at=_dt(row["created_at"]),
    )


@_store_errors
def upsert_opportunity(conn: sqlite3.Connection, opportunity: Opportunity) -> None:
    """Insert or replace an opportunity together with its requirements."""
    with transaction(conn):
        conn.execute(
            """
            INSERT INTO opportunities
                (id, title, description, event_date, location, genre, skill_level,
                 payment, organizer_name, is_active, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                title = excluded.title,
                description = excluded.description,
                event_date = excluded.event_date,
                location = excluded.location,
                genre = excluded.genre,
                skill_level = excluded.skill_level,
                payment = excluded.payment,
                organizer_name = excluded.organizer_name,
                is_active = excluded.is_active,
                created_at = excluded.created_at
            """,
            (
                opportunity.id,
                opportunity.title,
                opportunity.description,
                _iso(opportunity.event_date),
                opportunity.location,
                opportunity.genre,
                opportunity.skill_level,
                opportunity.payment,
                opportunity.organizer_name,
                int(opportunity.is_active),
                _iso(opportunity.created_at or datetime.now()),
            ),
        )
        conn.execute(
            "DELETE FROM opportunity_requirements WHERE opportunity_id = ?",
            (opportunity.id,),
        )
        conn.executemany(
            """
            INSERT INTO opportunity_requirements
                (opportunity_id, requirement_type, requirement_value)
            VALUES (?, ?, ?)
            """,
            [
                (opportunity.id, req.requirement_type, _dumps(req.requirement_value))
                for req in opportunity.requirements
            ],
        )


@_store_errors
def get_opportunity(conn: sqlite3.Connection, opportunity_id: str) -> Opportunity | None:
    row = conn.execute(
        "SELECT * FROM opportunities WHERE id = ?", (opportunity_id,),
    ).fetchone()
    if row is None:
        return None
    reqs = _requirements_for(conn, [opportunity_id])
    return _row_to_opportunity(row, reqs[opportunity_id])


@_store_errors
def get_opportunities_by_ids(
    conn: sqlite3.Connection, opportunity_ids: list[str],
) -> dict[str, Opportunity]:
    if not opportunity_ids:
        return {}
    placeholders = ", ".join("?" for _ in opportunity_ids)
    rows = conn.execute(
        f"SELECT * FROM opportunities WHERE id IN ({placeholders})",  # noqa: S608
        list(opportunity_ids),
    ).fetchall()
    reqs = _requirements_for(conn, [row["id"] for row in rows])
    return {row["id"]: _row_to_opportunity(row, reqs[row["id"]]) for row in rows}


@_store_errors
def list_open_opportunities(
    conn: sqlite3.Connection, now: datetime | None = None,
) -> list[Opportunity]:
    """Active opportunities with a future event date, soonest first."""
    cutoff = (now or datetime.now()).isoformat()
    rows = conn.execute(
        """
        SELECT * FROM opportunities
        WHERE is_active = 1 AND event_date IS NOT NULL AND event_date > ?
        ORDER BY event_date, id
        """,
        (cutoff,),
    ).fetchall()
    reqs = _requirements_for(conn, [row["id"] for row in rows])
    return [_row_to_opportunity(row, reqs[row["id"]]) for row in rows]


# ---------------------------------------------------------------------------
# Preferences and availability
# ---------------------------------------------------------------------------


@_store_errors
def replace_preferences(
    conn: sqlite3.Connection, user_id: str, preferences: list[DJPreference],
) -> None:
    """Delete all preferences of the user and insert the given set."""
    with transaction(conn):
        conn.execute("DELETE FROM dj_preferences WHERE user_id = ?", (user_id,))
        conn.executemany(
            """
            INSERT INTO dj_preferences
                (user_id, preference_type, preference_value, importance_score)
            VALUES (?, ?, ?, ?)
            """,
            [
                (user_id, p.preference_type, _dumps(p.preference_value), p.importance_score)
                for p in preferences
            ],
        )


@_store_errors
def get_preferences(conn: sqlite3.Connection, user_id: str) -> list[DJPreference]:
    rows = conn.execute(
        "SELECT * FROM dj_preferences WHERE user_id = ? ORDER BY preference_type, id",
        (user_id,),
    ).fetchall()
    return [
        DJPreference(
            user_id=row["user_id"],
            preference_type=row["preference_type"],
            preference_value=_loads(row["preference_value"], None),
            importance_score=row["importance_score"],
        )
        for row in rows
    ]


@_store_errors
def insert_availability(conn: sqlite3.Connection, availability: Availability) -> Availability:
    cursor = conn.execute(
        """
        INSERT INTO dj_availability (user_id, date_from, date_to, is_available, notes)
        VALUES (?, ?, ?, ?, ?)
        """,
        (
            availability.user_id,
            availability.date_from.isoformat(),
            availability.date_to.isoformat(),
            int(availability.is_available),
            availability.notes,
        ),
    )
    conn.commit()
    return availability.model_copy(update={"id": cursor.lastrowid})


@_store_errors
def get_availability(
    conn: sqlite3.Connection,
    user_id: str,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[Availability]:
    sql = "SELECT * FROM dj_availability WHERE user_id = ?"
    params: list[Any] = [user_id]
    if start_date is not None:
        sql += " AND date_from >= ?"
        params.append(start_date.isoformat())
    if end_date is not None:
        sql += " AND date_to <= ?"
        params.append(end_date.isoformat())
    sql += " ORDER BY date_from, id"
    return [
        Availability(
            id=row["id"],
            user_id=row["user_id"],
            date_from=date.fromisoformat(row["date_from"]),
            date_to=date.fromisoformat(row["date_to"]),
            is_available=bool(row["is_available"]),
            notes=row["notes"],
        )
        for row in conn.execute(sql, params).fetchall()
    ]


# ---------------------------------------------------------------------------
# Matches, applications, feedback
# ---------------------------------------------------------------------------


def _row_to_match(row: sqlite3.Row, opportunity: Opportunity | None = None) -> Match:
    return Match(
        id=row["id"],
        user_id=row["user_id"],
        opportunity_id=row["opportunity_id"],
        match_score=row["match_score"],
        status=MatchStatus(row["status"]),
        match_reasons=_loads(row["match_reasons"], []),
        opportunity=opportunity,
        created_at=_dt(row["created_at"]),
        updated_at=_dt(row["updated_at"]),
    )


@_store_errors
def upsert_match(
    conn: sqlite3.Connection,
    user_id: str,
    opportunity_id: str,
    score: float,
    reasons: list[str],
    now: datetime | None = None,
) -> Match:
    """Insert a pending match or refresh score/reasons, keeping its status."""
    ts = (now or datetime.now()).isoformat()
    conn.execute(
        """
        INSERT INTO matches
            (user_id, opportunity_id, match_score, status, match_reasons,
             created_at, updated_at)
        VALUES (?, ?, ?, 'pending', ?, ?, ?)
        ON CONFLICT(user_id, opportunity_id) DO UPDATE SET
            match_score = excluded.match_score,
            match_reasons = excluded.match_reasons,
            updated_at = excluded.updated_at
        """,
        (user_id, opportunity_id, score, _dumps(reasons), ts, ts),
    )
    conn.commit()
    row = conn.execute(
        "SELECT * FROM matches WHERE user_id = ? AND opportunity_id = ?",
        (user_id, opportunity_id),
    ).fetchone()
    return _row_to_match(row)


@_store_errors
def get_match(conn: sqlite3.Connection, match_id: int) -> Match | None:
    row = conn.execute("SELECT * FROM matches WHERE id = ?", (match_id,)).fetchone()
    return _row_to_match(row) if row else None


@_store_errors
def get_matches(
    conn: sqlite3.Connection,
    user_id: str,
    status: MatchStatus | None = None,
    limit: int = 50,
) -> list[Match]:
    """Return the user's matches, best score first, with opportunities attached."""
    sql = "SELECT * FROM matches WHERE user_id = ?"
    params: list[Any] = [user_id]
    if status is not None:
        sql += " AND status = ?"
        params.append(MatchStatus(status).value)
    sql += " ORDER BY match_score DESC, id LIMIT ?"
    params.append(limit)
    rows = conn.execute(sql, params).fetchall()
    opportunities = get_opportunities_by_ids(conn, [row["opportunity_id"] for row in rows])
    return [_row_to_match(row, opportunities.get(row["opportunity_id"])) for row in rows]


@_store_errors
def set_match_status(
    conn: sqlite3.Connection,
    match_id: int,
    status: MatchStatus,
    now: datetime | None = None,
) -> Match | None:
    conn.execute(
        "UPDATE matches SET status = ?, updated_at = ? WHERE id = ?",
        (MatchStatus(status).value, (now or datetime.now()).isoformat(), match_id),
    )
    conn.commit()
    return get_match(conn, match_id)


@_store_errors
def set_match_status_for_pair(
    conn: sqlite3.Connection,
    user_id: str,
    opportunity_id: str,
    status: MatchStatus,
    now: datetime | None = None,
    *,
    commit: bool = True,
) -> int:
    """Update the match of a (user, opportunity) pair. Returns rows updated."""
    cursor = conn.execute(
        """
        UPDATE matches SET status = ?, updated_at = ?
        WHERE user_id = ? AND opportunity_id = ?
        """,
        (MatchStatus(status).value, (now or datetime.now()).isoformat(), user_id, opportunity_id),
    )
    if commit:
        conn.commit()
    return cursor.rowcount


def _row_to_application(row: sqlite3.Row) -> Application:
    return Application(
        id=row["id"],
        user_id=row["user_id"],
        opportunity_id=row["opportunity_id"],
        status=row["status"],
        message=row["message"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


@_store_errors
def insert_application(
    conn: sqlite3.Connection,
    user_id: str,
    opportunity_id: str,
    message: str = "",
    now: datetime | None = None,
    *,
    commit: bool = True,
) -> Application:
    cursor = conn.execute(
        """
        INSERT INTO applications (user_id, opportunity_id, status, message, created_at)
        VALUES (?, ?, 'pending', ?, ?)
        """,
        (user_id, opportunity_id, message, (now or datetime.now()).isoformat()),
    )
    if commit:
        conn.commit()
    row = conn.execute(
        "SELECT * FROM applications WHERE id = ?", (cursor.lastrowid,),
    ).fetchone()
    return _row_to_application(row)


@_store_errors
def get_application(
    conn: sqlite3.Connection, user_id: str, opportunity_id: str,
) -> Application | None:
    row = conn.execute(
        "SELECT * FROM applications WHERE user_id = ? AND opportunity_id = ?",
        (user_id, opportunity_id),
    ).fetchone()
    return _row_to_application(row) if row else None


@_store_errors
def list_applications(conn: sqlite3.Connection, user_id: str) -> list[Application]:
    rows = conn.execute(
        "SELECT * FROM applications WHERE user_id = ? ORDER BY created_at, id",
        (user_id,),
    ).fetchall()
    return [_row_to_application(row) for row in rows]


@_store_errors
def count_applications_on(
    conn: sqlite3.Connection, user_id: str, target_date: date | None = None,
) -> int:
    """Count applications the user created on the given calendar day (default today)."""
    day = target_date or date.today()
    start = datetime.combine(day, datetime.min.time())
    end = start + timedelta(days=1)
    row = conn.execute(
        """
        SELECT COUNT(*) FROM applications
        WHERE user_id = ? AND created_at >= ? AND created_at < ?
        """,
        (user_id, start.isoformat(), end.isoformat()),
    ).fetchone()
    return int(row[0])


@_store_errors
def insert_feedback(
    conn: sqlite3.Connection,
    match_id: int,
    user_id: str,
    rating: int | None,
    comment: str = "",
) -> int:
    cursor = conn.execute(
        """
        INSERT INTO match_feedback (match_id, user_id, rating, comment, created_at)
        VALUES (?, ?, ?, ?, ?)
        """,
        (match_id, user_id, rating, comment, datetime.now().isoformat()),
    )
    conn.commit()
    return cursor.lastrowid or 0
