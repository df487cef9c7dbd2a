"""Tests for AI response extraction, validation and the fallback ranking."""

import json

import pytest

from rhood.ai.response_parser import (
    extract_json_object,
    fallback_matches,
    parse_ai_response,
    parse_insights_response,
)
from rhood.core.errors import MalformedAIResponse
from rhood.core.schemas import MatchType, Opportunity

OPPS = [Opportunity(id=f"gig-{i}", title=f"Gig {i}") for i in range(1, 4)]


def _entry(opp_id: str, score: float = 80.0, **kw: object) -> dict[str, object]:
    entry: dict[str, object] = {
        "opportunity_id": opp_id,
        "compatibility_score": score,
        "ranking": 1,
        "reasoning": "Strong genre fit",
        "strengths": ["genre"],
        "considerations": [],
        "confidence": 0.9,
        "match_type": "good_fit",
    }
    entry.update(kw)
    return entry


def _response(*entries: dict[str, object]) -> str:
    return json.dumps({"matches": list(entries), "summary": {"total_analyzed": len(entries)}})


class TestExtractJsonObject:
    def test_plain(self) -> None:
        assert extract_json_object('{"a": 1}') == '{"a": 1}'

    def test_surrounding_commentary(self) -> None:
        text = 'Here you go:\n```json\n{"a": {"b": 2}}\n```\nHope this helps {sic}'
        assert extract_json_object(text) == '{"a": {"b": 2}}'

    def test_braces_inside_strings(self) -> None:
        text = 'x {"reasoning": "uses {curly} and \\"quoted }\\" text", "n": 1} y'
        extracted = extract_json_object(text)
        assert extracted is not None
        assert json.loads(extracted) == {"reasoning": 'uses {curly} and "quoted }" text', "n": 1}

    def test_skips_invalid_candidate(self) -> None:
        text = "{not json} then {\"ok\": true}"
        assert extract_json_object(text) == '{"ok": true}'

    @pytest.mark.parametrize("text", [None, "", "no braces here", "{unclosed", "[1, 2]"])
    def test_none_found(self, text: str | None) -> None:
        assert extract_json_object(text) is None


class TestParseAIResponse:
    def test_valid(self) -> None:
        raw = _response(_entry("gig-2", 91, ranking=1), _entry("gig-1", 70, ranking=2))
        matches = parse_ai_response(raw, OPPS)
        assert [m.opportunity_id for m in matches] == ["gig-2", "gig-1"]
        assert matches[0].compatibility_score == 91.0
        assert matches[0].match_type == MatchType.GOOD_FIT
        assert matches[0].opportunity == OPPS[1]

    def test_round_trip_ids_subset_of_input(self) -> None:
        raw = "Analysis follows.\n" + _response(*(_entry(o.id) for o in OPPS[:2]))
        ids = {m.opportunity_id for m in parse_ai_response(raw, OPPS)}
        assert ids <= {o.id for o in OPPS}

    def test_integer_ids_coerced(self) -> None:
        opps = [Opportunity(id="42", title="Numeric")]
        matches = parse_ai_response(_response(_entry(42)), opps)  # type: ignore[arg-type]
        assert matches[0].opportunity_id == "42"

    def test_missing_ranking_uses_position(self) -> None:
        entry = _entry("gig-1")
        del entry["ranking"]
        assert parse_ai_response(_response(entry), OPPS)[0].ranking == 1

    def test_extra_fields_ignored(self) -> None:
        matches = parse_ai_response(_response(_entry("gig-1", venue_notes="big room")), OPPS)
        assert len(matches) == 1

    @pytest.mark.parametrize(
        "raw",
        [
            "",
            "Sorry, I cannot help with that.",
            '{"summary": {}}',
            '{"matches": "none"}',
            '{"matches": []}',
            _response(_entry("gig-1", 101)),
            _response(_entry("gig-1", confidence=1.5)),
            _response(_entry("gig-1", match_type="algorithmic_magic")),
            _response(_entry("unknown-gig")),
            _response(_entry("gig-1"), _entry("gig-1")),
            _response({"compatibility_score": 50}),
        ],
    )
    def test_malformed(self, raw: str) -> None:
        with pytest.raises(MalformedAIResponse):
            parse_ai_response(raw, OPPS)

    def test_empty_matches_allowed_without_opportunities(self) -> None:
        assert parse_ai_response('{"matches": []}', []) == []


class TestFallbackMatches:
    def test_scores_step_by_five_in_fetch_order(self) -> None:
        matches = fallback_matches(OPPS)
        assert [m.opportunity_id for m in matches] == ["gig-1", "gig-2", "gig-3"]
        assert [m.compatibility_score for m in matches] == [50.0, 55.0, 60.0]
        assert [m.ranking for m in matches] == [1, 2, 3]
        assert all(m.match_type == MatchType.ALGORITHMIC_FALLBACK for m in matches)
        assert all(m.confidence == 0.5 for m in matches)

    def test_limit(self) -> None:
        assert len(fallback_matches(OPPS, limit=2)) == 2

    def test_capped_at_100(self) -> None:
        many = [Opportunity(id=str(i), title=str(i)) for i in range(15)]
        assert fallback_matches(many)[-1].compatibility_score == 100.0

    def test_empty(self) -> None:
        assert fallback_matches([]) == []


class TestParseInsightsResponse:
    def test_valid(self) -> None:
        assert parse_insights_response('Insights: {"career": ["tour"]}') == {"career": ["tour"]}

    def test_unparseable(self) -> None:
        assert parse_insights_response("no json") == {"error": "Failed to parse AI insights"}
