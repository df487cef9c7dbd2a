"""Typed preference and requirement values.

Preference rows store arbitrary JSON per preference_type. Known kinds parse
into dedicated models; anything else (or anything malformed) is kept as an
OpaquePreference so newer clients can store data older code doesn't know.
"""

import logging
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class GenrePreference(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["genres"] = "genres"
    genres: list[str] = Field(default_factory=list)


class LocationPreference(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["locations"] = "locations"
    cities: list[str] = Field(default_factory=list)
    willing_to_travel: bool = False


class PaymentPreference(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["payment"] = "payment"
    min_payment: float = Field(ge=0.0)


class SkillLevelPreference(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["skill_level"] = "skill_level"
    level: str


class OpaquePreference(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["opaque"] = "opaque"
    preference_type: str
    payload: Any = None


PreferenceValue = (
    GenrePreference
    | LocationPreference
    | PaymentPreference
    | SkillLevelPreference
    | OpaquePreference
)

# preference_type aliases seen in stored data
_ALIASES: dict[str, str] = {
    "genre": "genres",
    "genres": "genres",
    "location": "locations",
    "locations": "locations",
    "city": "locations",
    "payment": "payment",
    "min_payment": "payment",
    "fee": "payment",
    "skill_level": "skill_level",
    "skill": "skill_level",
    "experience_level": "skill_level",
}


def _split_csv(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def _as_genres(raw: Any) -> GenrePreference:
    if isinstance(raw, str):
        return GenrePreference(genres=_split_csv(raw))
    if isinstance(raw, list):
        return GenrePreference(genres=[str(g) for g in raw])
    if isinstance(raw, dict):
        return GenrePreference(genres=raw.get("genres") or raw.get("values") or [])
    raise TypeError(type(raw).__name__)


def _as_locations(raw: Any) -> LocationPreference:
    if isinstance(raw, str):
        return LocationPreference(cities=_split_csv(raw))
    if isinstance(raw, list):
        return LocationPreference(cities=[str(c) for c in raw])
    if isinstance(raw, dict):
        cities = raw.get("cities") or raw.get("values") or []
        if isinstance(cities, str):
            cities = _split_csv(cities)
        return LocationPreference(
            cities=cities,
            willing_to_travel=bool(raw.get("willing_to_travel", False)),
        )
    raise TypeError(type(raw).__name__)


def _as_payment(raw: Any) -> PaymentPreference:
    if isinstance(raw, bool):
        raise TypeError("bool")
    if isinstance(raw, (int, float, str)):
        return PaymentPreference(min_payment=float(raw))
    if isinstance(raw, dict):
        value = raw.get("min_payment", raw.get("min"))
        if value is None:
            raise KeyError("min_payment")
        return PaymentPreference(min_payment=float(value))
    raise TypeError(type(raw).__name__)


def _as_skill_level(raw: Any) -> SkillLevelPreference:
    if isinstance(raw, str) and raw.strip():
        return SkillLevelPreference(level=raw.strip().lower())
    if isinstance(raw, dict) and raw.get("level"):
        return SkillLevelPreference(level=str(raw["level"]).strip().lower())
    raise TypeError(type(raw).__name__)


_PARSERS = {
    "genres": _as_genres,
    "locations": _as_locations,
    "payment": _as_payment,
    "skill_level": _as_skill_level,
}


def canonical_type(preference_type: str) -> str:
    """Map a stored preference_type to its canonical kind name."""
    return _ALIASES.get(preference_type.lower().strip(), preference_type)


def parse_preference_value(preference_type: str, raw: Any) -> PreferenceValue:
    """Parse a stored JSON value into a typed preference.

    Never raises: unknown kinds and malformed payloads become OpaquePreference.
    """
    kind = canonical_type(preference_type)
    parser = _PARSERS.get(kind)
    if parser is None:
        return OpaquePreference(preference_type=preference_type, payload=raw)
    try:
        return parser(raw)
    except (TypeError, KeyError, ValueError, ValidationError):
        logger.debug(
            "Unparseable '%s' value %r - keeping as opaque", preference_type, raw,
        )
        return OpaquePreference(preference_type=preference_type, payload=raw)
