"""AI match ranking with deterministic fallbacks.

Pipeline (strictly sequential):
  1. Gather profile, preferences, availability and open opportunities
  2. Render one prompt embedding the whole opportunity set
  3. Completion call in a worker thread, bounded by the configured timeout
  4. Parse and validate the response
  5. Sort by compatibility, re-rank, enrich, truncate

Failures never escape as AI errors:
  - AIServiceUnavailable (or AI disabled) -> rule-based scores
  - MalformedAIResponse                   -> synthetic 50 + 5*i ranking
Both fallbacks are tagged match_type=algorithmic_fallback.
"""

import asyncio
import logging
import sqlite3
from datetime import datetime
from typing import Any

from rhood.ai.prompts import Prompt, build_insights_prompt, build_matching_prompt
from rhood.ai.response_parser import (
    FALLBACK_CONFIDENCE,
    FALLBACK_REASONING,
    fallback_matches,
    parse_ai_response,
    parse_insights_response,
)
from rhood.core import db
from rhood.core.config import AIConfig, MatchingConfig
from rhood.core.errors import (
    AIServiceUnavailable,
    MalformedAIResponse,
    MissingIdentifierError,
    NotFoundError,
)
from rhood.core.schemas import (
    AIMatch,
    AIMatchOptions,
    Availability,
    DJPreference,
    DJProfile,
    MatchType,
    Opportunity,
)
from rhood.llm import get_provider
from rhood.llm.base import CompletionProvider
from rhood.pipeline.scorer import score_matches

logger = logging.getLogger(__name__)


def detailed_reasons(match: AIMatch) -> dict[str, str]:
    """Coarse labels derived from keywords in the model's reasoning."""
    text = match.reasoning.lower()
    return {
        "musical_fit": "High" if "genre" in text else "Medium",
        "skill_alignment": "Perfect" if "skill" in text else "Good",
        "venue_compatibility": "Excellent" if "venue" in text else "Good",
        "career_impact": "High" if "career" in text else "Medium",
    }


def confidence_breakdown(match: AIMatch) -> dict[str, float]:
    return {
        "overall": match.confidence or 0.8,
        "data_quality": 0.9,
        "market_analysis": 0.8,
        "preference_alignment": 0.85,
    }


def enrich_matches(
    matches: list[AIMatch], include_reasons: bool, include_confidence: bool,
) -> list[AIMatch]:
    enriched = []
    for match in matches:
        update: dict[str, Any] = {}
        if include_reasons:
            update["detailed_reasons"] = detailed_reasons(match)
        if include_confidence:
            update["confidence_breakdown"] = confidence_breakdown(match)
        enriched.append(match.model_copy(update=update) if update else match)
    return enriched


def rerank(matches: list[AIMatch]) -> list[AIMatch]:
    """Sort by compatibility (stable) and renumber rankings from 1."""
    ordered = sorted(matches, key=lambda m: m.compatibility_score, reverse=True)
    return [m.model_copy(update={"ranking": i}) for i, m in enumerate(ordered, start=1)]


class _MatchInputs:
    """Everything the pipeline reads for one user."""

    def __init__(
        self,
        profile: DJProfile,
        preferences: list[DJPreference],
        availability: list[Availability],
        opportunities: list[Opportunity],
    ) -> None:
        self.profile = profile
        self.preferences = preferences
        self.availability = availability
        self.opportunities = opportunities


class AIMatchmaker:
    """Ranks open opportunities for a DJ with an LLM, falling back to rules.

    Usage::

        matchmaker = AIMatchmaker(conn, settings.ai, settings.matching)
        matches = await matchmaker.generate_ai_matches("user-1")
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        config: AIConfig | None = None,
        matching: MatchingConfig | None = None,
        provider: CompletionProvider | None = None,
    ) -> None:
        self._conn = conn
        self._config = config or AIConfig()
        self._matching = matching or MatchingConfig()
        self._provider = provider

    def _gather(self, user_id: str, now: datetime) -> _MatchInputs:
        profile = db.get_profile(self._conn, user_id)
        if profile is None:
            msg = f"Profile for user '{user_id}' not found"
            raise NotFoundError(msg)
        return _MatchInputs(
            profile=profile,
            preferences=db.get_preferences(self._conn, user_id),
            availability=db.get_availability(self._conn, user_id),
            opportunities=db.list_open_opportunities(self._conn, now),
        )

    async def _complete(self, prompt: Prompt) -> str:
        """Run the completion off the event loop under the configured timeout.

        Every failure (missing key or SDK, HTTP error, timeout) is raised as
        AIServiceUnavailable.
        """
        config = self._config
        try:
            provider = self._provider or get_provider(config.provider)
            return await asyncio.wait_for(
                asyncio.to_thread(
                    provider.complete,
                    prompt.user,
                    config.model,
                    system=prompt.system,
                    max_tokens=config.max_tokens,
                    temperature=config.temperature,
                    timeout=config.timeout_seconds,
                ),
                timeout=config.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            msg = f"AI completion timed out after {config.timeout_seconds}s"
            raise AIServiceUnavailable(msg) from e
        except Exception as e:
            msg = f"AI matching service unavailable: {e}"
            raise AIServiceUnavailable(msg) from e

    def _rule_based(self, inputs: _MatchInputs) -> list[AIMatch]:
        scored = score_matches(
            inputs.profile,
            inputs.preferences,
            inputs.availability,
            inputs.opportunities,
            self._matching,
        )
        by_id = {opp.id: opp for opp in inputs.opportunities}
        return [
            AIMatch(
                opportunity_id=s.opportunity_id,
                compatibility_score=s.score,
                ranking=i,
                reasoning="; ".join(s.reasons) if s.reasons else FALLBACK_REASONING,
                strengths=s.reasons or ["Algorithmic match"],
                considerations=["Manual review recommended"],
                confidence=FALLBACK_CONFIDENCE,
                match_type=MatchType.ALGORITHMIC_FALLBACK,
                opportunity=by_id[s.opportunity_id],
            )
            for i, s in enumerate(scored, start=1)
        ]

    async def generate_ai_matches(
        self,
        user_id: str,
        options: AIMatchOptions | None = None,
        now: datetime | None = None,
    ) -> list[AIMatch]:
        """Return ranked matches for a DJ, best first.

        Store errors and a missing profile propagate; AI errors never do.
        """
        if not user_id:
            raise MissingIdentifierError("user_id")
        options = options or AIMatchOptions(
            limit=self._config.max_matches, scenario=self._config.scenario,
        )
        inputs = self._gather(user_id, now or datetime.now())
        if not inputs.opportunities:
            logger.info("No open opportunities for user=%s", user_id)
            return []

        if not self._config.enabled:
            logger.info("AI matching disabled - using rule-based scores for user=%s", user_id)
            matches = self._rule_based(inputs)
        else:
            matches = await self._ai_matches(user_id, inputs, options)

        enriched = enrich_matches(matches, options.include_reasons, options.include_confidence)
        return enriched[: options.limit]

    async def _ai_matches(
        self, user_id: str, inputs: _MatchInputs, options: AIMatchOptions,
    ) -> list[AIMatch]:
        prompt = build_matching_prompt(
            inputs.profile,
            inputs.preferences,
            inputs.availability,
            inputs.opportunities,
            options.custom_weights,
            options.scenario or self._config.scenario,
        )
        try:
            raw = await self._complete(prompt)
        except AIServiceUnavailable:
            logger.warning(
                "AI service unavailable for user=%s - using rule-based scores",
                user_id,
                exc_info=True,
            )
            return self._rule_based(inputs)

        try:
            parsed = parse_ai_response(raw, inputs.opportunities)
        except MalformedAIResponse:
            logger.warning(
                "Malformed AI response for user=%s - using fallback ranking",
                user_id,
                exc_info=True,
            )
            return fallback_matches(inputs.opportunities, options.limit)

        logger.info("AI ranked %d opportunities for user=%s", len(parsed), user_id)
        return rerank(parsed)

    async def generate_ai_insights(self, user_id: str) -> dict[str, Any]:
        """Ask the model for career insights.

        Unparseable responses return {"error": ...}; service failures raise
        AIServiceUnavailable since there is no rule-based equivalent.
        """
        if not user_id:
            raise MissingIdentifierError("user_id")
        profile = db.get_profile(self._conn, user_id)
        if profile is None:
            msg = f"Profile for user '{user_id}' not found"
            raise NotFoundError(msg)
        prompt = build_insights_prompt(
            profile,
            db.get_preferences(self._conn, user_id),
            db.get_matches(self._conn, user_id, limit=10),
        )
        raw = await self._complete(prompt)
        return parse_insights_response(raw)
