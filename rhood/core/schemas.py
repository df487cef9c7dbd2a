"""Core data models for the matchmaking core."""

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from rhood.core.preferences import PreferenceValue, parse_preference_value

# ---------------------------------------------------------------------------
# Listening behavior
# ---------------------------------------------------------------------------


class ListeningFacts(BaseModel):
    """Facts observed for one listening session, supplied by the player."""

    model_config = ConfigDict(frozen=True)

    listen_duration_seconds: float = Field(default=0.0, ge=0.0)
    completion_percentage: float = Field(default=0.0, ge=0.0, le=100.0)
    was_skipped: bool = False
    skip_time_seconds: float | None = Field(default=None, ge=0.0)
    was_liked: bool = False
    was_saved: bool = False
    device_type: str | None = None
    city: str | None = None
    country: str | None = None


class ListeningEvent(ListeningFacts):
    """A recorded listening session.

    Immutable except for the like/save flags, which are amended in the store.
    """

    id: int
    user_id: str
    mix_id: str
    started_at: datetime

    def is_early_skip(self, threshold_seconds: float = 10.0) -> bool:
        return (
            self.was_skipped
            and self.skip_time_seconds is not None
            and self.skip_time_seconds < threshold_seconds
        )


class ListeningStats(BaseModel):
    """Aggregate listening statistics for a user."""

    total_listens: int = 0
    avg_completion_rate: float = 0.0
    avg_listen_duration: float = 0.0
    skip_rate: float = 0.0
    early_skip_rate: float = 0.0
    total_likes: int = 0
    total_saves: int = 0
    genres_listened: dict[str, int] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Catalog and profiles
# ---------------------------------------------------------------------------


class Mix(BaseModel):
    """A playable DJ mix from the catalog."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str = ""
    title: str = ""
    genre: str | None = None
    sub_genre: str | None = None
    bpm: float | None = None
    mood_tags: list[str] = Field(default_factory=list)
    audio_features: dict[str, Any] = Field(default_factory=dict)
    likes_count: int = 0
    play_count: int = 0
    duration_seconds: float | None = None
    created_at: datetime | None = None


class DJProfile(BaseModel):
    """Public profile of a DJ."""

    model_config = ConfigDict(frozen=True)

    id: str
    dj_name: str = ""
    full_name: str = ""
    city: str = ""
    country: str = ""
    bio: str = ""
    genres: list[str] = Field(default_factory=list)
    skill_level: str | None = None
    credits: int = 0
    gigs_completed: int = 0


class UserEmbedding(BaseModel):
    """Derived listening profile of a user. Recomputed wholesale, never patched.

    genre_weights is exposure weighted by engagement and does not sum to 1.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    genre_weights: dict[str, float] = Field(default_factory=dict)
    skip_rate_weights: dict[str, float] = Field(default_factory=dict)
    avg_listen_duration: float = 0.0
    completion_rate: float = 0.0
    preferred_bpm_range: tuple[float, float] | None = None
    geographic_signals: dict[str, str | None] = Field(default_factory=dict)
    last_calculated: datetime | None = None

    @property
    def is_empty(self) -> bool:
        return not self.genre_weights and not self.skip_rate_weights


class MixEmbedding(BaseModel):
    """Derived feature vector of a mix.

    quality_score is unbounded in both directions; see compute_quality_score.
    """

    model_config = ConfigDict(frozen=True)

    mix_id: str
    bpm: float | None = None
    genre: str | None = None
    sub_genre: str | None = None
    mood_vector: list[str] = Field(default_factory=list)
    audio_features: dict[str, Any] = Field(default_factory=dict)
    quality_score: float = 0.0
    last_calculated: datetime | None = None


class SimilarityResult(BaseModel):
    """Outcome of comparing a user embedding against a mix embedding."""

    model_config = ConfigDict(frozen=True)

    similarity: float
    total_weight: float = Field(ge=0.0)
    active_terms: list[str] = Field(default_factory=list)


class SimilarityScore(BaseModel):
    """Cached (user, mix) similarity with its recency-blended weight."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    mix_id: str
    similarity_score: float
    recommendation_weight: float
    last_calculated: datetime


class Recommendation(BaseModel):
    """A mix recommended to a user together with its ranking weight."""

    model_config = ConfigDict(frozen=True)

    mix: Mix
    recommendation_weight: float
    similarity_score: float | None = None


# ---------------------------------------------------------------------------
# Opportunities and matching
# ---------------------------------------------------------------------------


class OpportunityRequirement(BaseModel):
    """A typed requirement attached to an opportunity."""

    model_config = ConfigDict(frozen=True)

    requirement_type: str
    requirement_value: Any = None

    @property
    def value(self) -> PreferenceValue:
        return parse_preference_value(self.requirement_type, self.requirement_value)


class Opportunity(BaseModel):
    """A bookable DJ gig listing."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str = ""
    event_date: datetime | None = None
    location: str = ""
    genre: str | None = None
    skill_level: str | None = None
    payment: float | None = None
    organizer_name: str = ""
    requirements: list[OpportunityRequirement] = Field(default_factory=list)
    is_active: bool = True
    created_at: datetime | None = None


class DJPreference(BaseModel):
    """One typed preference of a DJ, e.g. genres or minimum payment."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    preference_type: str
    preference_value: Any = None
    importance_score: float = Field(default=1.0, ge=0.0)

    @property
    def value(self) -> PreferenceValue:
        return parse_preference_value(self.preference_type, self.preference_value)


class Availability(BaseModel):
    """A date range in which a DJ is (or is not) available.

    date_from <= date_to is not enforced and ranges may overlap.
    """

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    user_id: str
    date_from: date
    date_to: date
    is_available: bool = True
    notes: str = ""

    def covers(self, day: date) -> bool:
        return self.date_from <= day <= self.date_to


class MatchStatus(str, Enum):
    PENDING = "pending"
    APPLIED = "applied"
    REJECTED = "rejected"
    ACCEPTED = "accepted"


class MatchScore(BaseModel):
    """Rule-based compatibility of a DJ with one opportunity."""

    model_config = ConfigDict(frozen=True)

    opportunity_id: str
    score: float = Field(ge=0.0, le=100.0)
    reasons: list[str] = Field(default_factory=list)
    factors: dict[str, float] = Field(default_factory=dict)


class Match(BaseModel):
    """A persisted (user, opportunity) pairing."""

    model_config = ConfigDict(frozen=True)

    id: int
    user_id: str
    opportunity_id: str
    match_score: float = Field(ge=0.0, le=100.0)
    status: MatchStatus = MatchStatus.PENDING
    match_reasons: list[str] = Field(default_factory=list)
    opportunity: Opportunity | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class Application(BaseModel):
    """An application submitted by a DJ for an opportunity."""

    model_config = ConfigDict(frozen=True)

    id: int
    user_id: str
    opportunity_id: str
    status: str = "pending"
    message: str = ""
    created_at: datetime


class MatchType(str, Enum):
    PERFECT_FIT = "perfect_fit"
    GOOD_FIT = "good_fit"
    INTERESTING_OPPORTUNITY = "interesting_opportunity"
    STRETCH_GOAL = "stretch_goal"
    ALGORITHMIC_FALLBACK = "algorithmic_fallback"


class AIMatch(BaseModel):
    """An LLM-ranked match. Never persisted."""

    model_config = ConfigDict(frozen=True)

    opportunity_id: str
    compatibility_score: float = Field(ge=0.0, le=100.0)
    ranking: int = Field(ge=1)
    reasoning: str = ""
    strengths: list[str] = Field(default_factory=list)
    considerations: list[str] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    match_type: MatchType
    opportunity: Opportunity | None = None
    detailed_reasons: dict[str, str] | None = None
    confidence_breakdown: dict[str, float] | None = None


class AIMatchOptions(BaseModel):
    """Per-call options for AI match generation."""

    limit: int = Field(default=10, ge=1)
    include_reasons: bool = True
    include_confidence: bool = True
    custom_weights: dict[str, float] | None = None
    scenario: str | None = None


class MatchmakingAnalytics(BaseModel):
    """Summary of a DJ's matches and applications."""

    total_matches: int = 0
    applied_matches: int = 0
    pending_applications: int = 0
    accepted_applications: int = 0
    average_match_score: float = 0.0
