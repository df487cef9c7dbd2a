"""Prompt rendering for AI match ranking and career insights.

Rendering is deterministic: opportunities appear in fetch order, dates are
ISO formatted and structured values are compact JSON, so the same inputs
always produce the same prompt text.
"""

import json
from collections.abc import Mapping
from typing import Any, NamedTuple

from rhood.core.schemas import (
    Availability,
    DJPreference,
    DJProfile,
    Match,
    Opportunity,
    OpportunityRequirement,
)

DEFAULT_SCENARIO = "standard"


class Prompt(NamedTuple):
    system: str
    user: str


class Scenario(NamedTuple):
    name: str
    description: str
    system: str


_STANDARD_SYSTEM = (
    "You are an expert DJ booking agent and music industry professional with 15+ years "
    "of experience in underground music scenes worldwide. Your expertise includes:\n\n"
    "- Deep understanding of electronic music genres, subgenres, and scene dynamics\n"
    "- Knowledge of DJ skill levels, equipment requirements, and performance styles\n"
    "- Experience with venue types, crowd dynamics, and event atmospheres\n"
    "- Understanding of payment structures, travel considerations, and industry standards\n"
    "- Insight into emerging artists, established acts, and market trends\n\n"
    "Your task is to analyze DJ profiles and opportunity briefs to create intelligent, "
    "ranked matches that consider:\n\n"
    "1. **Musical Compatibility**: Genre alignment, style fit, and artistic direction\n"
    "2. **Skill Level Matching**: Appropriate challenge level and growth opportunities\n"
    "3. **Venue Atmosphere**: DJ style compatibility with venue vibe and crowd\n"
    "4. **Career Development**: Opportunities that advance the DJ's career trajectory\n"
    "5. **Logistical Feasibility**: Travel, availability, equipment, and practical "
    "considerations\n"
    "6. **Market Positioning**: How the opportunity fits the DJ's brand and market presence\n\n"
    "Provide detailed reasoning for each match, considering both obvious fits and "
    "unexpected but valuable opportunities. Be specific about why each match works and "
    "what makes it special."
)

SCENARIOS: dict[str, Scenario] = {
    "standard": Scenario(
        name="Standard Matching",
        description="General DJ-opportunity matching",
        system=_STANDARD_SYSTEM,
    ),
    "festival": Scenario(
        name="Festival Matching",
        description="Specialized for festival and large events",
        system=(
            "You are a festival booking specialist with expertise in large-scale electronic "
            "music events. You understand festival dynamics, stage requirements, crowd "
            "management, and the unique challenges of festival DJing.\n\n"
            "Focus on:\n"
            "- Festival atmosphere and crowd energy management\n"
            "- Set time optimization and flow\n"
            "- Technical requirements for large venues\n"
            "- Brand exposure and career impact\n"
            "- Travel logistics and accommodation\n"
            "- Weather and outdoor considerations"
        ),
    ),
    "underground": Scenario(
        name="Underground Matching",
        description="Focused on underground and intimate venues",
        system=(
            "You are a specialist in underground music scenes, intimate venues, and emerging "
            "artist development. You understand the nuances of underground culture, authentic "
            "artistic expression, and the importance of scene credibility.\n\n"
            "Focus on:\n"
            "- Authentic artistic fit and scene credibility\n"
            "- Intimate venue dynamics and crowd connection\n"
            "- Underground culture and community building\n"
            "- Emerging artist development opportunities\n"
            "- Artistic freedom and creative expression\n"
            "- Long-term scene relationships"
        ),
    ),
    "corporate": Scenario(
        name="Corporate Matching",
        description="Professional and corporate events",
        system=(
            "You are a corporate events specialist with expertise in professional DJ "
            "services, brand alignment, and commercial event management. You understand "
            "corporate culture, brand requirements, and professional service standards.\n\n"
            "Focus on:\n"
            "- Professional service delivery\n"
            "- Brand alignment and corporate culture\n"
            "- Technical reliability and consistency\n"
            "- Client relationship management\n"
            "- Revenue potential and business development\n"
            "- Professional presentation and communication"
        ),
    ),
    "new_dj": Scenario(
        name="New DJ Matching",
        description="Beginner-friendly opportunities",
        system=(
            "You are a mentor and booking agent specializing in developing new DJ talent. "
            "You understand the challenges of breaking into the scene and the importance of "
            "early career opportunities.\n\n"
            "Focus on:\n"
            "- Learning opportunities and skill development\n"
            "- Low-pressure environments for growth\n"
            "- Mentorship and guidance potential\n"
            "- Building confidence and experience\n"
            "- Networking and relationship building\n"
            "- Gradual career progression"
        ),
    ),
    "international": Scenario(
        name="International Matching",
        description="Cross-border and international opportunities",
        system=(
            "You are an international booking agent with expertise in cross-border DJ "
            "bookings, cultural considerations, and global music markets. You understand "
            "visa requirements, cultural nuances, and international logistics.\n\n"
            "Focus on:\n"
            "- Cultural fit and market understanding\n"
            "- Visa and travel requirements\n"
            "- Currency and payment considerations\n"
            "- Local scene knowledge and connections\n"
            "- Language and communication barriers\n"
            "- International reputation building"
        ),
    ),
}

INSIGHTS_SYSTEM_PROMPT = (
    "You are a music industry consultant and career advisor specializing in DJ and "
    "electronic music careers. Analyze the provided DJ profile and performance history "
    "to offer strategic career insights and recommendations."
)

_RESPONSE_FORMAT = """Return your analysis in the following JSON format:
{
  "matches": [
    {
      "opportunity_id": "<the ID of the opportunity>",
      "compatibility_score": 85,
      "ranking": 1,
      "reasoning": "Detailed explanation of why this is a great match...",
      "strengths": ["Key strengths of this match"],
      "considerations": ["Any concerns or things to consider"],
      "confidence": 0.92,
      "match_type": "perfect_fit|good_fit|interesting_opportunity|stretch_goal"
    }
  ],
  "summary": {
    "total_analyzed": 10,
    "high_confidence_matches": 3,
    "recommended_actions": ["Action items for the DJ"],
    "market_insights": ["Industry insights based on the analysis"]
  }
}"""


def get_scenario(name: str | None) -> Scenario:
    """Return the named scenario, falling back to the standard one."""
    return SCENARIOS.get(name or DEFAULT_SCENARIO, SCENARIOS[DEFAULT_SCENARIO])


def available_scenarios() -> list[str]:
    return sorted(SCENARIOS)


def _fmt_number(value: float | int) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _fmt_value(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return _fmt_number(value)
    return str(value)


def format_preferences(preferences: list[DJPreference]) -> str:
    if not preferences:
        return "No specific preferences set"
    return "\n".join(
        f"- **{p.preference_type}**: {_fmt_value(p.preference_value)} "
        f"(importance: {_fmt_number(p.importance_score)})"
        for p in preferences
    )


def format_availability(availability: list[Availability]) -> str:
    if not availability:
        return "No availability information provided"
    lines = []
    for avail in availability:
        status = "Available" if avail.is_available else "Unavailable"
        notes = f" ({avail.notes})" if avail.notes else ""
        lines.append(
            f"- **{avail.date_from.isoformat()} to {avail.date_to.isoformat()}**: {status}{notes}"
        )
    return "\n".join(lines)


def format_requirements(requirements: list[OpportunityRequirement]) -> str:
    if not requirements:
        return "No specific requirements listed"
    return ", ".join(
        f"{req.requirement_type}: {_fmt_value(req.requirement_value)}" for req in requirements
    )


def format_opportunities(opportunities: list[Opportunity]) -> str:
    """Render opportunities in the order given, numbered from 1."""
    blocks = []
    for index, opp in enumerate(opportunities, start=1):
        event_date = opp.event_date.date().isoformat() if opp.event_date else "TBA"
        payment = f"${_fmt_number(opp.payment)}" if opp.payment is not None else "Not specified"
        blocks.append(
            f"**Opportunity {index}: {opp.title}**\n"
            f"- **ID**: {opp.id}\n"
            f"- **Description**: {opp.description or 'No description'}\n"
            f"- **Date**: {event_date}\n"
            f"- **Location**: {opp.location or 'Not specified'}\n"
            f"- **Genre**: {opp.genre or 'Not specified'}\n"
            f"- **Skill Level**: {opp.skill_level or 'Not specified'}\n"
            f"- **Payment**: {payment}\n"
            f"- **Organizer**: {opp.organizer_name or 'Not specified'}\n"
            f"- **Requirements**: {format_requirements(opp.requirements)}\n"
        )
    return "\n".join(blocks)


def format_custom_weights(weights: Mapping[str, float] | None) -> str:
    if not weights:
        return ""
    lines = "\n".join(f"- **{key}**: {_fmt_value(value)}" for key, value in weights.items())
    return f"## CUSTOM MATCHING WEIGHTS\n{lines}\n"


def build_user_prompt(
    profile: DJProfile,
    preferences: list[DJPreference],
    availability: list[Availability],
    opportunities: list[Opportunity],
    custom_weights: Mapping[str, float] | None = None,
) -> str:
    genres = ", ".join(profile.genres) if profile.genres else "Not specified"
    return (
        "Please analyze and rank the following DJ-opportunity matches:\n\n"
        "## DJ PROFILE\n"
        f"**Name**: {profile.dj_name or 'N/A'}\n"
        f"**Full Name**: {profile.full_name or 'N/A'}\n"
        f"**Location**: {profile.city or 'N/A'}\n"
        f"**Bio**: {profile.bio or 'No bio provided'}\n"
        f"**Genres**: {genres}\n"
        f"**Experience Level**: {profile.skill_level or 'Not specified'}\n\n"
        "## DJ PREFERENCES\n"
        f"{format_preferences(preferences)}\n\n"
        "## AVAILABILITY\n"
        f"{format_availability(availability)}\n\n"
        "## OPPORTUNITIES TO MATCH\n"
        f"{format_opportunities(opportunities)}\n"
        f"{format_custom_weights(custom_weights)}\n"
        "## INSTRUCTIONS\n"
        "1. Analyze each opportunity against the DJ's profile, preferences, and availability\n"
        "2. Consider musical compatibility, skill level appropriateness, venue atmosphere, "
        "and career development potential\n"
        "3. Rank opportunities from best match to least suitable\n"
        "4. Provide a compatibility score (0-100) for each match\n"
        "5. Give detailed reasoning for your top 5 recommendations\n"
        "6. Highlight any unique or unexpected opportunities that could be valuable\n"
        "7. Note any potential concerns or considerations for each match\n"
        "8. Use the exact opportunity ID given above for opportunity_id\n\n"
        f"{_RESPONSE_FORMAT}"
    )


def build_matching_prompt(
    profile: DJProfile,
    preferences: list[DJPreference],
    availability: list[Availability],
    opportunities: list[Opportunity],
    custom_weights: Mapping[str, float] | None = None,
    scenario: str | None = None,
) -> Prompt:
    return Prompt(
        system=get_scenario(scenario).system,
        user=build_user_prompt(profile, preferences, availability, opportunities, custom_weights),
    )


def _format_match_history(matches: list[Match]) -> str:
    if not matches:
        return "No match history yet"
    lines = []
    for match in matches:
        title = match.opportunity.title if match.opportunity else match.opportunity_id
        lines.append(
            f"- {title}: score {_fmt_number(match.match_score)}/100 ({match.status.value})"
        )
    return "\n".join(lines)


def build_insights_prompt(
    profile: DJProfile,
    preferences: list[DJPreference],
    history: list[Match],
) -> Prompt:
    genres = ", ".join(profile.genres) if profile.genres else "Not specified"
    user = (
        "Analyze this DJ's profile and provide strategic career insights:\n\n"
        "## DJ PROFILE\n"
        f"- Name: {profile.dj_name or 'N/A'}\n"
        f"- Location: {profile.city or 'N/A'}\n"
        f"- Genres: {genres}\n"
        f"- Bio: {profile.bio or 'No bio provided'}\n\n"
        "## PREFERENCES\n"
        f"{format_preferences(preferences)}\n\n"
        "## MATCH HISTORY\n"
        f"{_format_match_history(history)}\n\n"
        "Provide insights on:\n"
        "1. Career trajectory and growth opportunities\n"
        "2. Genre development and market positioning\n"
        "3. Venue and opportunity recommendations\n"
        "4. Skill development areas\n"
        "5. Market trends and timing\n\n"
        "Return as structured JSON with actionable recommendations."
    )
    return Prompt(system=INSIGHTS_SYSTEM_PROMPT, user=user)
