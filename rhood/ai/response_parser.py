"""Parse free-form LLM completions into validated AI matches.

Two stages, both pure:
  1. extract_json_object: balanced-brace scan for the first top-level JSON
     object, skipping braces inside string literals.
  2. parse_ai_response: decode and validate every match against the
     contract. Any failure raises MalformedAIResponse.
fallback_matches builds the deterministic replacement ranking.
"""

import json
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from rhood.core.errors import MalformedAIResponse
from rhood.core.schemas import AIMatch, MatchType, Opportunity

logger = logging.getLogger(__name__)

FALLBACK_BASE_SCORE = 50.0
FALLBACK_SCORE_STEP = 5.0
FALLBACK_CONFIDENCE = 0.5
FALLBACK_REASONING = "AI analysis unavailable - using algorithmic scoring"


class _RawMatch(BaseModel):
    """One entry of the model's "matches" array."""

    model_config = ConfigDict(extra="ignore")

    opportunity_id: str
    compatibility_score: float = Field(ge=0.0, le=100.0)
    ranking: int | None = Field(default=None, ge=1)
    reasoning: str = ""
    strengths: list[str] = Field(default_factory=list)
    considerations: list[str] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    match_type: MatchType

    @field_validator("opportunity_id", mode="before")
    @classmethod
    def id_as_string(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


def _balanced_end(text: str, start: int) -> int | None:
    """Index one past the brace closing the object opened at `start`."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
    return None


def extract_json_object(text: str | None) -> str | None:
    """Return the first balanced {...} substring that decodes to a JSON object.

    Commentary before or after the object (and markdown fences) is ignored.
    Returns None when no such object exists.
    """
    if not text:
        return None
    start = text.find("{")
    while start != -1:
        end = _balanced_end(text, start)
        if end is not None:
            candidate = text[start:end]
            try:
                if isinstance(json.loads(candidate), dict):
                    return candidate
            except json.JSONDecodeError:
                pass
        start = text.find("{", start + 1)
    return None


def parse_ai_response(raw_text: str | None, opportunities: list[Opportunity]) -> list[AIMatch]:
    """Validate a completion against the match contract.

    Matches are returned in the order the model gave them, each with its
    opportunity attached.

    Raises:
        MalformedAIResponse: No JSON object, no "matches" array, an empty
            array for a non-empty opportunity set, an out-of-range field, an
            unknown match type, or an opportunity id that was not offered.
    """
    candidate = extract_json_object(raw_text)
    if candidate is None:
        msg = "No JSON object found in AI response"
        raise MalformedAIResponse(msg)

    data = json.loads(candidate)
    raw_matches = data.get("matches")
    if not isinstance(raw_matches, list):
        msg = "AI response is missing a 'matches' array"
        raise MalformedAIResponse(msg)
    if opportunities and not raw_matches:
        msg = "AI response contains no matches"
        raise MalformedAIResponse(msg)

    by_id = {opp.id: opp for opp in opportunities}
    seen: set[str] = set()
    matches: list[AIMatch] = []
    for index, item in enumerate(raw_matches):
        try:
            entry = _RawMatch.model_validate(item)
        except ValidationError as e:
            msg = f"Invalid match at index {index}: {e.error_count()} error(s)"
            raise MalformedAIResponse(msg) from e
        if entry.opportunity_id not in by_id:
            msg = f"Unknown opportunity_id '{entry.opportunity_id}' in AI response"
            raise MalformedAIResponse(msg)
        if entry.opportunity_id in seen:
            msg = f"Duplicate opportunity_id '{entry.opportunity_id}' in AI response"
            raise MalformedAIResponse(msg)
        seen.add(entry.opportunity_id)
        matches.append(
            AIMatch(
                opportunity_id=entry.opportunity_id,
                compatibility_score=entry.compatibility_score,
                ranking=entry.ranking or index + 1,
                reasoning=entry.reasoning,
                strengths=entry.strengths,
                considerations=entry.considerations,
                confidence=entry.confidence,
                match_type=entry.match_type,
                opportunity=by_id[entry.opportunity_id],
            )
        )
    return matches


def fallback_matches(opportunities: list[Opportunity], limit: int | None = None) -> list[AIMatch]:
    """Synthetic ranking in fetch order: score 50, 55, 60, ... (capped at 100)."""
    selected = opportunities if limit is None else opportunities[:limit]
    return [
        AIMatch(
            opportunity_id=opp.id,
            compatibility_score=min(100.0, FALLBACK_BASE_SCORE + FALLBACK_SCORE_STEP * index),
            ranking=index + 1,
            reasoning=FALLBACK_REASONING,
            strengths=["Algorithmic match"],
            considerations=["Manual review recommended"],
            confidence=FALLBACK_CONFIDENCE,
            match_type=MatchType.ALGORITHMIC_FALLBACK,
            opportunity=opp,
        )
        for index, opp in enumerate(selected)
    ]


def parse_insights_response(raw_text: str | None) -> dict[str, Any]:
    """Decode a career-insights completion; never raises."""
    candidate = extract_json_object(raw_text)
    if candidate is None:
        logger.warning("Could not parse AI insights response")
        return {"error": "Failed to parse AI insights"}
    return json.loads(candidate)  # type: ignore[no-any-return]
