"""Tests for rule-based DJ/opportunity scoring."""

from datetime import date, datetime

import pytest

from rhood.core.config import MatchingConfig
from rhood.core.schemas import (
    Availability,
    DJPreference,
    DJProfile,
    Opportunity,
    OpportunityRequirement,
)
from rhood.pipeline.scorer import genre_similarity, score_match, score_matches

EVENT = datetime(2026, 7, 10, 22, 0)


def _profile(**kw: object) -> DJProfile:
    defaults: dict[str, object] = {
        "id": "u1", "city": "London", "genres": ["house"], "skill_level": "advanced",
    }
    defaults.update(kw)
    return DJProfile(**defaults)  # type: ignore[arg-type]


def _opp(opp_id: str = "o1", **kw: object) -> Opportunity:
    defaults: dict[str, object] = {
        "id": opp_id,
        "title": "Friday warm-up",
        "event_date": EVENT,
        "location": "London, UK",
        "genre": "house",
        "skill_level": "intermediate",
        "payment": 300.0,
    }
    defaults.update(kw)
    return Opportunity(**defaults)  # type: ignore[arg-type]


def _pref(kind: str, value: object, importance: float = 1.0) -> DJPreference:
    return DJPreference(
        user_id="u1", preference_type=kind, preference_value=value,
        importance_score=importance,
    )


def _avail(start: date, end: date, available: bool = True) -> Availability:
    return Availability(user_id="u1", date_from=start, date_to=end, is_available=available)


JULY = _avail(date(2026, 7, 1), date(2026, 7, 31))


class TestGenreSimilarity:
    def test_exact_case_insensitive(self) -> None:
        assert genre_similarity("House", ["house"]) == 1.0

    def test_related_family(self) -> None:
        assert genre_similarity("tech house", ["house"]) == pytest.approx(0.7)
        assert genre_similarity("jungle", ["drum & bass"]) == pytest.approx(0.7)

    def test_unrelated(self) -> None:
        assert genre_similarity("techno", ["house"]) == 0.0

    def test_best_of_several(self) -> None:
        assert genre_similarity("techno", ["house", "techno"]) == 1.0


class TestScoreMatch:
    def test_perfect_fit(self) -> None:
        score = score_match(_profile(), [_pref("payment", 200)], [JULY], _opp())
        assert score.score == 100.0
        assert len(score.reasons) == 5
        assert score.factors == {
            "genre": 1.0, "skill": 1.0, "location": 1.0, "payment": 1.0, "availability": 1.0,
        }

    def test_no_data_is_neutral(self) -> None:
        score = score_match(None, [], [], Opportunity(id="o1", title="Mystery gig"))
        assert score.score == 50.0
        assert score.reasons == []
        assert set(score.factors.values()) == {0.5}

    def test_partial_factors(self) -> None:
        score = score_match(
            _profile(skill_level="beginner", city="Paris"),
            [_pref("genres", ["house"]), _pref("payment", {"min_payment": 600})],
            [],
            _opp(genre="tech house", skill_level="advanced"),
        )
        assert score.factors["genre"] == pytest.approx(0.7)
        assert score.factors["skill"] == pytest.approx(0.3333)
        assert score.factors["location"] == pytest.approx(0.2)
        assert score.factors["payment"] == pytest.approx(0.5)
        assert score.factors["availability"] == 0.5
        expected = (0.7 * 35 + (1 / 3) * 20 + 0.2 * 15 + 0.5 * 15 + 0.5 * 15) / 100 * 100
        assert score.score == pytest.approx(round(expected, 2))
        assert score.reasons == []

    def test_willing_to_travel(self) -> None:
        score = score_match(
            _profile(city="Paris"),
            [_pref("locations", {"cities": ["Paris"], "willing_to_travel": True})],
            [],
            _opp(),
        )
        assert score.factors["location"] == pytest.approx(0.6)

    def test_unavailable_range_wins(self) -> None:
        blocked = _avail(date(2026, 7, 10), date(2026, 7, 10), available=False)
        score = score_match(_profile(), [], [JULY, blocked], _opp())
        assert score.factors["availability"] == 0.0
        assert not any(r.startswith("Available") for r in score.reasons)

    def test_uncovered_date_is_neutral(self) -> None:
        august = _avail(date(2026, 8, 1), date(2026, 8, 31))
        score = score_match(_profile(), [], [august], _opp())
        assert score.factors["availability"] == 0.5

    def test_importance_scales_weight(self) -> None:
        score = score_match(
            None, [_pref("genres", ["house"], importance=2.0)], [],
            Opportunity(id="o1", title="Techno night", genre="techno"),
        )
        # genre 0 * 70, every other factor neutral 0.5 over 65
        assert score.score == pytest.approx(round(32.5 / 135 * 100, 2))

    def test_requirement_supplies_missing_genre(self) -> None:
        opp = _opp(genre=None, requirements=[
            OpportunityRequirement(requirement_type="genres", requirement_value=["house"]),
        ])
        score = score_match(_profile(), [], [], opp)
        assert score.factors["genre"] == 1.0
        assert "Genre match: house" in score.reasons

    def test_opaque_preference_ignored(self) -> None:
        score = score_match(
            None, [_pref("equipment", {"cdj": 3000}), _pref("payment", "lots")], [],
            Opportunity(id="o1", title="Gig"),
        )
        assert score.score == 50.0

    def test_unknown_skill_level_is_neutral(self) -> None:
        score = score_match(_profile(skill_level="wizard"), [], [], _opp())
        assert score.factors["skill"] == 0.5

    def test_reasons_only_for_scored_factors(self) -> None:
        score = score_match(_profile(), [], [], _opp(payment=None))
        assert not any("Payment" in r for r in score.reasons)
        assert "Genre match: house" in score.reasons

    def test_custom_reason_threshold(self) -> None:
        config = MatchingConfig(reason_threshold=0.5)
        score = score_match(
            _profile(), [_pref("genres", ["house"])], [], _opp(genre="tech house"), config,
        )
        assert "Genre match: tech house" in score.reasons


class TestScoreMatches:
    def test_sorted_best_first(self) -> None:
        opps = [
            _opp("far", location="Tokyo"),
            _opp("near"),
            _opp("unrelated", genre="trance", location="Tokyo"),
        ]
        scored = score_matches(_profile(), [], [], opps)
        assert [s.opportunity_id for s in scored] == ["near", "far", "unrelated"]

    def test_ties_keep_input_order(self) -> None:
        opps = [Opportunity(id=i, title=i) for i in ("b", "a", "c")]
        scored = score_matches(None, [], [], opps)
        assert [s.opportunity_id for s in scored] == ["b", "a", "c"]

    def test_empty(self) -> None:
        assert score_matches(_profile(), [], [], []) == []
