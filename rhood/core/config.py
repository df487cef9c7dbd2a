"""Configuration models and YAML loader for the matchmaking core."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

ALLOWED_PROVIDERS = {"openai", "anthropic"}


class DatabaseConfig(BaseModel):
    """Database configuration."""

    path: str = "data/rhood.db"


class ApplicationLimitConfig(BaseModel):
    """Daily application gate."""

    daily_limit: int = Field(default=5, ge=1)
    require_mix: bool = True


class RecommendationConfig(BaseModel):
    """Weights for user/mix similarity and recommendation ranking."""

    genre_weight: float = Field(default=0.4, ge=0.0)
    bpm_weight: float = Field(default=0.2, ge=0.0)
    skip_weight: float = Field(default=0.2, ge=0.0)
    quality_weight: float = Field(default=0.2, ge=0.0)
    skip_rate_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    early_skip_seconds: float = Field(default=10.0, gt=0.0)
    bpm_completion_threshold: float = Field(default=80.0, ge=0.0, le=100.0)
    recency_window_days: float = Field(default=30.0, gt=0.0)
    similarity_share: float = Field(default=0.8, ge=0.0, le=1.0)
    recency_share: float = Field(default=0.2, ge=0.0, le=1.0)
    unknown_age_days: float = Field(default=365.0, ge=0.0)
    default_limit: int = Field(default=10, ge=1)


class MatchingConfig(BaseModel):
    """Weights for rule-based DJ/opportunity scoring."""

    genre_weight: float = Field(default=35.0, ge=0.0)
    skill_weight: float = Field(default=20.0, ge=0.0)
    location_weight: float = Field(default=15.0, ge=0.0)
    payment_weight: float = Field(default=15.0, ge=0.0)
    availability_weight: float = Field(default=15.0, ge=0.0)
    neutral_score: float = Field(default=0.5, ge=0.0, le=1.0)
    reason_threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    default_limit: int = Field(default=20, ge=1)


class AIConfig(BaseModel):
    """LLM re-ranking settings. API keys come from the environment."""

    enabled: bool = True
    provider: str = "openai"
    model: str | None = None
    timeout_seconds: float = Field(default=30.0, gt=0.0)
    max_tokens: int = Field(default=4000, ge=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_matches: int = Field(default=10, ge=1, le=50)
    scenario: str = "standard"

    @field_validator("provider")
    @classmethod
    def provider_known(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in ALLOWED_PROVIDERS:
            msg = f"provider must be one of {sorted(ALLOWED_PROVIDERS)}, got '{v}'"
            raise ValueError(msg)
        return v


class Settings(BaseModel):
    """Top-level settings loaded from YAML."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    applications: ApplicationLimitConfig = Field(default_factory=ApplicationLimitConfig)
    recommendations: RecommendationConfig = Field(default_factory=RecommendationConfig)
    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    ai: AIConfig = Field(default_factory=AIConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(raw)
