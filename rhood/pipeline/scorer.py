"""Rule-based compatibility scoring between a DJ and an opportunity.

Score range: 0-100 (clamped). Five factors, each a fraction in [0, 1], are
combined as a weighted mean. A factor with no data on either side scores the
configured neutral value instead of failing. Factor weights from
MatchingConfig are scaled by the importance of the matching DJ preference.
"""

import logging
from datetime import date
from typing import TypeVar

from rhood.core.config import MatchingConfig
from rhood.core.preferences import (
    GenrePreference,
    LocationPreference,
    PaymentPreference,
    PreferenceValue,
    SkillLevelPreference,
)
from rhood.core.schemas import (
    Availability,
    DJPreference,
    DJProfile,
    MatchScore,
    Opportunity,
)

logger = logging.getLogger(__name__)

# Related-genre families: a genre containing any keyword of a preferred
# genre's family counts as a partial match.
GENRE_FAMILIES: dict[str, tuple[str, ...]] = {
    "house": ("house", "deep house", "tech house", "progressive house"),
    "techno": ("techno", "tech", "industrial"),
    "trance": ("trance", "progressive", "uplifting"),
    "drum & bass": ("drum", "bass", "dnb", "jungle"),
    "afro house": ("afro", "house", "tribal"),
}

RELATED_GENRE_SCORE = 0.7
TRAVEL_SCORE = 0.6
AWAY_SCORE = 0.2

SKILL_LEVELS: dict[str, int] = {
    "beginner": 0,
    "intermediate": 1,
    "advanced": 2,
    "professional": 3,
    "expert": 3,
}
_MAX_SKILL_GAP = max(SKILL_LEVELS.values())


T = TypeVar("T")


def _find(values: list[PreferenceValue], kind: type[T]) -> T | None:
    for value in values:
        if isinstance(value, kind):
            return value
    return None


def genre_similarity(genre: str, preferred: list[str]) -> float:
    """1.0 for an exact genre, 0.7 for a related one, else 0.0."""
    target = genre.lower().strip()
    best = 0.0
    for pref in preferred:
        pref_lower = pref.lower().strip()
        if not pref_lower:
            continue
        if pref_lower == target:
            return 1.0
        for keyword in GENRE_FAMILIES.get(pref_lower, (pref_lower,)):
            if keyword in target or target in keyword:
                best = max(best, RELATED_GENRE_SCORE)
    return best


def _genre_factor(
    opportunity: Opportunity, profile: DJProfile | None, genre_pref: GenrePreference | None,
) -> tuple[float, str] | None:
    genre = opportunity.genre
    if not genre:
        required = _find([r.value for r in opportunity.requirements], GenrePreference)
        genre = required.genres[0] if required and required.genres else None
    preferred = list(genre_pref.genres) if genre_pref else []
    if not preferred and profile is not None:
        preferred = list(profile.genres)
    if not genre or not preferred:
        return None
    return genre_similarity(genre, preferred), f"Genre match: {genre}"


def _skill_factor(
    opportunity: Opportunity, profile: DJProfile | None, skill_pref: SkillLevelPreference | None,
) -> tuple[float, str] | None:
    required = opportunity.skill_level
    if not required:
        req = _find([r.value for r in opportunity.requirements], SkillLevelPreference)
        required = req.level if req else None
    own = skill_pref.level if skill_pref else (profile.skill_level if profile else None)
    if not required or not own:
        return None
    required_rank = SKILL_LEVELS.get(required.lower().strip())
    own_rank = SKILL_LEVELS.get(own.lower().strip())
    if required_rank is None or own_rank is None:
        return None
    if own_rank >= required_rank:
        return 1.0, f"Skill level fits: {required}"
    return 1 - (required_rank - own_rank) / _MAX_SKILL_GAP, f"Skill level fits: {required}"


def _location_factor(
    opportunity: Opportunity, profile: DJProfile | None, location_pref: LocationPreference | None,
) -> tuple[float, str] | None:
    location = opportunity.location.lower().strip()
    if not location:
        return None
    cities = list(location_pref.cities) if location_pref else []
    if profile is not None and profile.city:
        cities.append(profile.city)
    travels = bool(location_pref and location_pref.willing_to_travel)
    if not cities and not travels:
        return None
    reason = f"Location: {opportunity.location}"
    if any(city.lower().strip() and city.lower().strip() in location for city in cities):
        return 1.0, reason
    if travels:
        return TRAVEL_SCORE, reason
    return AWAY_SCORE, reason


def _payment_factor(
    opportunity: Opportunity, payment_pref: PaymentPreference | None,
) -> tuple[float, str] | None:
    if opportunity.payment is None or payment_pref is None:
        return None
    reason = f"Payment meets your minimum (${opportunity.payment:,.0f})"
    if payment_pref.min_payment <= 0 or opportunity.payment >= payment_pref.min_payment:
        return 1.0, reason
    return max(0.0, opportunity.payment / payment_pref.min_payment), reason


def _availability_factor(
    opportunity: Opportunity, availability: list[Availability],
) -> tuple[float, str] | None:
    if opportunity.event_date is None or not availability:
        return None
    day: date = opportunity.event_date.date()
    covering = [a for a in availability if a.covers(day)]
    if not covering:
        return None
    if any(not a.is_available for a in covering):
        return 0.0, f"Available on {day.isoformat()}"
    return 1.0, f"Available on {day.isoformat()}"


def score_match(
    profile: DJProfile | None,
    preferences: list[DJPreference],
    availability: list[Availability],
    opportunity: Opportunity,
    config: MatchingConfig | None = None,
) -> MatchScore:
    """Score one opportunity for a DJ.

    Pure: no I/O and no hidden state. Reasons only name factors that were
    actually scored from data and reached config.reason_threshold.
    """
    config = config or MatchingConfig()

    values = [p.value for p in preferences]
    importance: dict[type, float] = {}
    for pref, value in zip(preferences, values, strict=True):
        importance.setdefault(type(value), pref.importance_score)

    genre_pref = _find(values, GenrePreference)
    skill_pref = _find(values, SkillLevelPreference)
    location_pref = _find(values, LocationPreference)
    payment_pref = _find(values, PaymentPreference)

    factors = [
        ("genre", config.genre_weight * importance.get(GenrePreference, 1.0),
         _genre_factor(opportunity, profile, genre_pref)),
        ("skill", config.skill_weight * importance.get(SkillLevelPreference, 1.0),
         _skill_factor(opportunity, profile, skill_pref)),
        ("location", config.location_weight * importance.get(LocationPreference, 1.0),
         _location_factor(opportunity, profile, location_pref)),
        ("payment", config.payment_weight * importance.get(PaymentPreference, 1.0),
         _payment_factor(opportunity, payment_pref)),
        ("availability", config.availability_weight,
         _availability_factor(opportunity, availability)),
    ]

    weighted = 0.0
    total_weight = 0.0
    fractions: dict[str, float] = {}
    reasons: list[str] = []
    for name, weight, outcome in factors:
        if outcome is None:
            fraction = config.neutral_score
        else:
            fraction, reason = outcome
            if fraction >= config.reason_threshold:
                reasons.append(reason)
        fractions[name] = round(fraction, 4)
        weighted += fraction * weight
        total_weight += weight

    mean = weighted / total_weight if total_weight > 0 else config.neutral_score
    score = round(max(0.0, min(100.0, mean * 100)), 2)
    return MatchScore(
        opportunity_id=opportunity.id, score=score, reasons=reasons, factors=fractions,
    )


def score_matches(
    profile: DJProfile | None,
    preferences: list[DJPreference],
    availability: list[Availability],
    opportunities: list[Opportunity],
    config: MatchingConfig | None = None,
) -> list[MatchScore]:
    """Score a batch of opportunities, best first. Ties keep input order."""
    scored = [
        score_match(profile, preferences, availability, opp, config) for opp in opportunities
    ]
    scored.sort(key=lambda s: s.score, reverse=True)
    return scored
