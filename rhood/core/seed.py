"""Load a YAML fixture of profiles, mixes, opportunities and DJ data into the store."""

import logging
import sqlite3
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from rhood.core.db import (
    insert_availability,
    replace_preferences,
    upsert_mix,
    upsert_opportunity,
    upsert_profile,
)
from rhood.core.schemas import (
    Availability,
    DJPreference,
    DJProfile,
    Mix,
    Opportunity,
)

logger = logging.getLogger(__name__)


class SeedData(BaseModel):
    """Top-level layout of a seed file."""

    profiles: list[DJProfile] = Field(default_factory=list)
    mixes: list[Mix] = Field(default_factory=list)
    opportunities: list[Opportunity] = Field(default_factory=list)
    preferences: list[DJPreference] = Field(default_factory=list)
    availability: list[Availability] = Field(default_factory=list)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "SeedData":
        path = Path(path)
        if not path.exists():
            msg = f"Seed file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(raw)


def load_seed(conn: sqlite3.Connection, seed: SeedData) -> dict[str, int]:
    """Write seed records. Preferences replace each user's existing set."""
    for profile in seed.profiles:
        upsert_profile(conn, profile)
    for mix in seed.mixes:
        upsert_mix(conn, mix)
    for opportunity in seed.opportunities:
        upsert_opportunity(conn, opportunity)

    by_user: dict[str, list[DJPreference]] = {}
    for pref in seed.preferences:
        by_user.setdefault(pref.user_id, []).append(pref)
    for user_id, prefs in by_user.items():
        replace_preferences(conn, user_id, prefs)

    for avail in seed.availability:
        insert_availability(conn, avail)

    counts = {
        "profiles": len(seed.profiles),
        "mixes": len(seed.mixes),
        "opportunities": len(seed.opportunities),
        "preferences": len(seed.preferences),
        "availability": len(seed.availability),
    }
    logger.info("Seeded %s", ", ".join(f"{v} {k}" for k, v in counts.items()))
    return counts
