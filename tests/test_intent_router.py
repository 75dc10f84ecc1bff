"""Tests for campus_concierge/intent_router.py: intent/action classification."""

import pytest

from campus_concierge.intent_router import (
    CATEGORY_RULES,
    DEFAULT_CONFIDENCE_THRESHOLD,
    classify,
    detect_categories,
    drop_shadowed,
    needs_fallback,
)
from campus_concierge.matcher import MatchCandidate, RouteSignal, detect_route_signal
from campus_concierge.response_schema import ConciergeAction, ConciergeIntent


def _candidate(location_id, score=2.0, position=0, terms=None):
    return MatchCandidate(
        location_id=location_id,
        matched_terms=frozenset(terms or {location_id}),
        score=score,
        alias_length=len(location_id),
        first_position=position,
    )


class TestDetectCategories:
    """Declarative category vocabulary."""

    def test_rules_in_precedence_order(self):
        assert [r.intent for r in CATEGORY_RULES] == [
            ConciergeIntent.ESCALATION,
            ConciergeIntent.DEADLINE_QUERY,
            ConciergeIntent.POLICY_QUERY,
            ConciergeIntent.PROCESS_HOWTO,
            ConciergeIntent.OFFICE_LOOKUP,
            ConciergeIntent.SERVICE_LOOKUP,
        ]

    def test_multiple_categories_in_precedence_order(self):
        categories = detect_categories("Which office handles the exam form deadline?")
        assert categories == [ConciergeIntent.DEADLINE_QUERY, ConciergeIntent.OFFICE_LOOKUP]

    def test_phrase_vocabulary(self):
        assert detect_categories("what is the last date") == [ConciergeIntent.DEADLINE_QUERY]
        assert detect_categories("How do I apply?") == [ConciergeIntent.PROCESS_HOWTO]

    def test_no_vocabulary(self):
        assert detect_categories("asdkjasdkj") == []


class TestClassifyPrecedence:
    """Escalation > route > deadline > policy > process > office > service > location."""

    def test_escalation_overrides_everything(self):
        d = classify("urgent: where is the registrar office deadline", [_candidate("admin_block")])
        assert d.intent == ConciergeIntent.ESCALATION
        assert d.action == ConciergeAction.SHOW_LOCATION
        assert d.confidence == 0.95

    def test_escalation_with_route_draws_route(self):
        query = "emergency, take me from the hostel to the clinic"
        d = classify(query, [_candidate("hostel"), _candidate("clinic")], detect_route_signal(query))
        assert d.intent == ConciergeIntent.ESCALATION
        assert d.action == ConciergeAction.SHOW_ROUTE

    def test_route_beats_categories(self):
        query = "how do i get from the registrar office to the cafeteria"
        d = classify(query, [_candidate("admin_block"), _candidate("cafeteria")], detect_route_signal(query))
        assert d.intent == ConciergeIntent.ROUTE_NAVIGATION
        assert d.action == ConciergeAction.SHOW_ROUTE
        assert d.confidence == 0.9

    def test_deadline_beats_office(self):
        d = classify("exam office deadline", [_candidate("exam_section")])
        assert d.intent == ConciergeIntent.DEADLINE_QUERY

    def test_policy_beats_process(self):
        d = classify("how do i pay the library fine", [])
        assert d.intent == ConciergeIntent.POLICY_QUERY

    def test_office_beats_service(self):
        d = classify("which office issues the id card", [])
        assert d.intent == ConciergeIntent.OFFICE_LOOKUP

    def test_location_lookup_without_vocabulary(self):
        d = classify("where is the library", [_candidate("central_library")])
        assert d.intent == ConciergeIntent.LOCATION_LOOKUP


class TestClassifyActions:
    """Action follows route phrasing and candidate count."""

    @pytest.mark.parametrize("query", [
        "from the gate to the library",
        "from a to b",
        "please go from here to there",
        "to the library from the gate",
    ])
    def test_from_to_always_show_route(self, query):
        d = classify(query, [], detect_route_signal(query))
        assert d.action == ConciergeAction.SHOW_ROUTE

    def test_single_candidate(self):
        d = classify("where is the library", [_candidate("central_library")])
        assert d.action == ConciergeAction.SHOW_LOCATION
        assert d.confidence == 0.85
        assert [c.location_id for c in d.candidates] == ["central_library"]

    def test_multiple_candidates(self):
        d = classify("hostel", [_candidate("boys_hostel"), _candidate("girls_hostel")])
        assert d.action == ConciergeAction.SHOW_MULTIPLE_LOCATIONS
        assert d.confidence == 0.75

    def test_below_threshold_candidates_ignored(self):
        d = classify("quiet", [_candidate("central_library", score=1.0)])
        assert d.intent == ConciergeIntent.UNKNOWN
        assert d.candidates == []

    def test_category_without_location(self):
        d = classify("what is the attendance policy", [])
        assert d.intent == ConciergeIntent.POLICY_QUERY
        assert d.action == ConciergeAction.SHOW_LOCATION
        assert d.confidence == 0.35

    def test_unknown(self):
        d = classify("asdkjasdkj", [])
        assert d.intent == ConciergeIntent.UNKNOWN
        assert d.action == ConciergeAction.SHOW_LOCATION
        assert d.confidence == 0.1


class TestDropShadowed:
    """A full name beats siblings that only share one of its words."""

    def test_sibling_sharing_a_name_word_dropped(self):
        boys = _candidate("boys_hostel", score=7.0, terms={"boys", "hostel", "boys hostel"})
        girls = _candidate("girls_hostel", score=2.0, terms={"hostel"})
        assert drop_shadowed([boys, girls]) == [boys]

    def test_independent_place_kept(self):
        library = _candidate("central_library", score=6.0, terms={"central", "library", "central library"})
        gym = _candidate("sports_complex", score=2.0, terms={"gym"})
        assert drop_shadowed([library, gym]) == [library, gym]

    def test_no_phrase_hit_keeps_all(self):
        boys = _candidate("boys_hostel", terms={"hostel"})
        girls = _candidate("girls_hostel", terms={"hostel"})
        assert drop_shadowed([boys, girls]) == [boys, girls]

    def test_equal_score_kept(self):
        boys = _candidate("boys_hostel", score=7.0, terms={"hostel", "warden", "warden office"})
        girls = _candidate("girls_hostel", score=7.0, terms={"hostel", "warden", "warden office"})
        assert drop_shadowed([boys, girls]) == [boys, girls]

    def test_classify_shows_single_location(self):
        boys = _candidate("boys_hostel", score=7.0, terms={"boys", "hostel", "boys hostel"})
        girls = _candidate("girls_hostel", score=2.0, terms={"hostel"})
        d = classify("where is the boys hostel", [boys, girls])
        assert d.action == ConciergeAction.SHOW_LOCATION
        assert [c.location_id for c in d.candidates] == ["boys_hostel"]


class TestNeedsFallback:
    """Confidence gate for the generative fallback."""

    def test_threshold_value(self):
        assert DEFAULT_CONFIDENCE_THRESHOLD == 0.55

    def test_unknown_needs_fallback(self):
        assert needs_fallback(classify("asdkjasdkj", []))

    def test_category_only_needs_fallback(self):
        assert needs_fallback(classify("attendance policy", []))

    def test_matched_location_does_not(self):
        assert not needs_fallback(classify("library", [_candidate("central_library")]))

    def test_route_does_not(self):
        signal = RouteSignal(detected=True, kind="navigation_phrase", implied_origin=True)
        assert not needs_fallback(classify("take me there", [], signal))

    def test_custom_threshold(self):
        decision = classify("library", [_candidate("central_library")])
        assert needs_fallback(decision, threshold=0.9)


class TestDecisionSerialization:

    def test_to_dict(self):
        d = classify("where is the library", [_candidate("central_library")])
        data = d.to_dict()
        assert data["intent"] == "location_lookup"
        assert data["action"] == "show_location"
        assert data["candidates"][0]["location_id"] == "central_library"
        assert data["route_signal"]["detected"] is False
