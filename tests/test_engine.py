"""Tests for campus_concierge/engine.py: the single resolution pipeline."""

import json
import re

import httpx
import pytest

from campus_concierge.engine import (
    ESCALATION_PREFIX,
    MALFORMED_MESSAGE,
    UNKNOWN_MESSAGE,
    ConciergeEngine,
    resolve_query,
)
from campus_concierge.exceptions import (
    EmptyQueryError,
    FallbackProviderError,
    QuotaExceededError,
)
from campus_concierge.llm_client import FallbackClient, OpenAIFallbackClient
from campus_concierge.observability import metrics
from campus_concierge.response_gateway import IMPLIED_ORIGIN_NOTE
from campus_concierge.response_schema import ConciergeAction, ConciergeIntent

_COORDINATE_PAIR = r"-?\d{1,3}\.\d+\s*,\s*-?\d{1,3}\.\d+"


class ScriptedClient(FallbackClient):
    """Fallback client that returns a fixed output or raises a fixed error."""

    def __init__(self, output="", error=None):
        self.output = output
        self.error = error
        self.calls = 0

    async def generate_json(self, prompt):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.output

    def get_client_type(self):
        return "scripted"

    def is_available(self):
        return True


def _ids(response):
    return [loc.building_id for loc in response.locations]


class TestScenarios:
    """End-to-end behavior over the bundled campus data."""

    def test_where_is_the_library(self, engine):
        response = engine.resolve_deterministic("where is the library")
        assert response.intent == ConciergeIntent.LOCATION_LOOKUP
        assert response.action == ConciergeAction.SHOW_LOCATION
        assert len(response.locations) == 1
        assert response.locations[0].building_name == "Central Library"

    def test_route_from_gate_to_library(self, engine):
        response = engine.resolve_deterministic("take me from the gate to the library")
        assert response.intent == ConciergeIntent.ROUTE_NAVIGATION
        assert response.action == ConciergeAction.SHOW_ROUTE
        assert _ids(response) == ["main_gate", "central_library"]
        assert response.message.startswith("Here is the route from Main Gate to Central Library.")

    def test_destination_first_route_reordered(self, engine):
        response = engine.resolve_deterministic("to the library from the main gate")
        assert _ids(response) == ["main_gate", "central_library"]

    def test_between_and_route(self, engine):
        response = engine.resolve_deterministic("show route between the girls hostel and the central library")
        assert response.action == ConciergeAction.SHOW_ROUTE
        assert _ids(response) == ["girls_hostel", "central_library"]

    def test_implied_origin_route(self, engine):
        response = engine.resolve_deterministic("take me to the health clinic")
        assert response.action == ConciergeAction.SHOW_ROUTE
        assert _ids(response) == ["health_clinic"]
        assert response.message.endswith(IMPLIED_ORIGIN_NOTE)

    def test_partial_route_downgraded(self, engine):
        response = engine.resolve_deterministic("from the library to the moon")
        assert response.action == ConciergeAction.SHOW_LOCATION
        assert _ids(response) == ["central_library"]

    def test_gibberish_is_unknown(self, engine):
        response = engine.resolve_deterministic("asdkjasdkj")
        assert response.intent == ConciergeIntent.UNKNOWN
        assert response.action == ConciergeAction.SHOW_LOCATION
        assert response.locations == []
        assert response.message == UNKNOWN_MESSAGE

    def test_multiple_locations(self, engine):
        response = engine.resolve_deterministic("where is the hostel")
        assert response.action == ConciergeAction.SHOW_MULTIPLE_LOCATIONS
        assert set(_ids(response)) == {"boys_hostel", "girls_hostel"}
        assert response.message.startswith("I found 2 matching places")

    def test_service_attached(self, engine):
        response = engine.resolve_deterministic("where is the id card office")
        assert response.intent == ConciergeIntent.OFFICE_LOOKUP
        location = response.locations[0]
        assert location.building_id == "student_services"
        assert location.service_name == "ID Card Office"
        assert location.service_location == "Ground Floor, Room 101"
        assert response.message == "ID Card Office is in Student Services Building, Ground Floor, Room 101."

    def test_escalation_without_location_gets_security_office(self, engine):
        response = engine.resolve_deterministic("I feel unsafe walking at night")
        assert response.intent == ConciergeIntent.ESCALATION
        assert _ids(response) == ["security_office"]
        assert response.message.startswith(ESCALATION_PREFIX)

    def test_escalation_keeps_named_location(self, engine):
        response = engine.resolve_deterministic("someone is injured at the sports complex")
        assert response.intent == ConciergeIntent.ESCALATION
        assert _ids(response) == ["sports_complex"]

    def test_category_without_location(self, engine):
        response = engine.resolve_deterministic("what is the attendance policy")
        assert response.intent == ConciergeIntent.POLICY_QUERY
        assert response.action == ConciergeAction.SHOW_LOCATION
        assert response.locations == []
        assert response.message


class TestRouteEndpoints:
    """Each end of an explicit route is resolved from its own words."""

    def test_sibling_names_do_not_crowd_out_origin(self, engine):
        response = engine.resolve_deterministic("from the library to the boys hostel")
        assert response.action == ConciergeAction.SHOW_ROUTE
        assert _ids(response) == ["central_library", "boys_hostel"]
        assert response.message.startswith("Here is the route from Central Library to Boys Hostel.")

    def test_ambiguous_origin_keeps_named_destination(self, engine):
        response = engine.resolve_deterministic("how do I get to the cafeteria from the hostel")
        assert response.action == ConciergeAction.SHOW_ROUTE
        origin, destination = _ids(response)
        assert origin in {"boys_hostel", "girls_hostel"}
        assert destination == "cafeteria"

    def test_between_two_hostels(self, engine):
        response = engine.resolve_deterministic("route between the boys hostel and the girls hostel")
        assert _ids(response) == ["boys_hostel", "girls_hostel"]

    def test_route_with_service_endpoint(self, engine):
        response = engine.resolve_deterministic("from the registrar office to the cafeteria")
        assert _ids(response) == ["admin_block", "cafeteria"]
        assert response.locations[0].service_name == "Registrar Office"

    def test_implied_origin_mentions_other_places(self, engine):
        response = engine.resolve_deterministic("navigate to the library and the canteen")
        assert response.action == ConciergeAction.SHOW_ROUTE
        assert len(response.locations) == 1
        assert "You also mentioned" in response.message
        assert "Central Library" in response.message
        assert "Campus Cafeteria" in response.message
        assert response.message.endswith(IMPLIED_ORIGIN_NOTE)

    def test_implied_origin_single_place_has_no_extra_note(self, engine):
        response = engine.resolve_deterministic("take me to the health clinic")
        assert "You also mentioned" not in response.message


class TestServiceAndNameMatching:
    """Services locate their building; full names win over shared words."""

    def test_service_only_query_finds_building(self, engine):
        response = engine.resolve_deterministic("where can I print")
        assert response.intent == ConciergeIntent.SERVICE_LOOKUP
        assert _ids(response) == ["computer_center"]
        assert response.locations[0].service_name == "Print Station"
        assert response.message == "Print Station is in Computer Center, ground floor."

    def test_full_name_beats_sibling(self, engine):
        response = engine.resolve_deterministic("where is the boys hostel")
        assert response.action == ConciergeAction.SHOW_LOCATION
        assert _ids(response) == ["boys_hostel"]
        assert response.locations[0].service_name is None

    def test_service_in_named_building(self, engine):
        response = engine.resolve_deterministic("is there a mess in the girls hostel")
        assert _ids(response) == ["girls_hostel"]
        assert response.locations[0].service_name == "Hostel Mess"

    def test_process_question_is_not_a_route(self, engine):
        decision = engine.analyze("what is the best way to pay my fees")
        assert decision.intent != ConciergeIntent.ROUTE_NAVIGATION
        assert not decision.route_signal.detected
        assert decision.confidence < engine.confidence_threshold


class TestInvariants:
    """Properties that hold for every response."""

    QUERIES = [
        "where is the library",
        "from the gate to the library",
        "from a to b",
        "to the moon from the sun",
        "hostel",
        "student services and the student activity center and the sports complex and the gym",
        "emergency at the library",
        "directions",
        "asdkjasdkj",
        "The library is at 27.6821, 85.3193",
    ]

    @pytest.mark.parametrize("query", QUERIES)
    def test_action_location_count(self, engine, query):
        response = engine.resolve_deterministic(query)
        count = len(response.locations)
        if response.action == ConciergeAction.SHOW_MULTIPLE_LOCATIONS:
            assert count >= 2
        if response.action == ConciergeAction.SHOW_ROUTE:
            assert count >= 2 or IMPLIED_ORIGIN_NOTE in response.message
        assert len(set(_ids(response))) == count

    @pytest.mark.parametrize("query", QUERIES)
    def test_message_has_no_coordinates(self, engine, query):
        response = engine.resolve_deterministic(query)
        assert response.message
        assert not re.search(_COORDINATE_PAIR, response.message)

    @pytest.mark.parametrize("query", ["from the gate to the library", "from a to b", "to x from y"])
    def test_from_to_classifies_as_route(self, engine, query):
        assert engine.analyze(query).action == ConciergeAction.SHOW_ROUTE

    def test_multiple_locations_capped(self, engine):
        # Seven locations match above threshold
        response = engine.resolve_deterministic("library cafeteria gym atm clinic hostel")
        assert response.action == ConciergeAction.SHOW_MULTIPLE_LOCATIONS
        assert len(response.locations) == 5

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["where is the library", "from the gate to the library", "asdkjasdkj"])
    async def test_idempotent(self, engine, query):
        first = await engine.resolve(query, allow_llm=False)
        second = await engine.resolve(query, allow_llm=False)
        assert json.dumps(first.to_dict()) == json.dumps(second.to_dict())

    @pytest.mark.parametrize("query", ["", "   ", None])
    def test_empty_query_rejected(self, engine, query):
        with pytest.raises(EmptyQueryError):
            engine.resolve_deterministic(query)


class TestFallbackPath:
    """Generative fallback: only when allowed and confidence is low."""

    @pytest.mark.asyncio
    async def test_not_used_when_disallowed(self, campus_kb):
        client = ScriptedClient(output="{}")
        engine = ConciergeEngine(campus_kb, fallback_client=client)
        response = await engine.resolve("asdkjasdkj", allow_llm=False)
        assert client.calls == 0
        assert response.intent == ConciergeIntent.UNKNOWN
        assert metrics.get_counter("concierge_resolve_total").get({"path": "deterministic"}) == 1

    @pytest.mark.asyncio
    async def test_not_used_when_confident(self, campus_kb):
        client = ScriptedClient(output="{}")
        engine = ConciergeEngine(campus_kb, fallback_client=client)
        await engine.resolve("where is the library", allow_llm=True)
        assert client.calls == 0

    @pytest.mark.asyncio
    async def test_used_on_low_confidence(self, campus_kb):
        client = ScriptedClient(output=json.dumps({
            "message": "You can work out at the gym in the Sports Complex (27.68342, 85.31075).",
            "locations": [{"building_id": "sports_complex"}, {"building_id": "sports_complex"}],
            "action": "show_multiple_locations",
            "intent": "location_lookup",
        }))
        engine = ConciergeEngine(campus_kb, fallback_client=client)
        response = await engine.resolve("where can i work out", allow_llm=True)

        assert client.calls == 1
        assert _ids(response) == ["sports_complex"]
        # Normalized: de-duplicated, downgraded, coordinates scrubbed
        assert response.action == ConciergeAction.SHOW_LOCATION
        assert "27.68342" not in response.message
        assert metrics.get_counter("concierge_fallback_total").total() == 1
        assert metrics.get_histogram("concierge_fallback_duration_seconds").count == 1

    @pytest.mark.asyncio
    async def test_way_to_question_reaches_fallback(self, campus_kb):
        client = ScriptedClient(output=json.dumps({
            "message": "Fees are paid at the Accounts Section in the Administration Block.",
            "locations": [{"building_id": "admin_block"}],
            "action": "show_location",
            "intent": "process_howto",
        }))
        engine = ConciergeEngine(campus_kb, fallback_client=client)
        response = await engine.resolve("what is the best way to pay my fees", allow_llm=True)
        assert client.calls == 1
        assert response.intent == ConciergeIntent.PROCESS_HOWTO
        assert _ids(response) == ["admin_block"]

    @pytest.mark.asyncio
    async def test_quota_exceeded_propagates(self, campus_kb):
        def handler(request):
            return httpx.Response(429, json={"error": {"message": "Rate limit reached"}})

        client = OpenAIFallbackClient(
            api_key="sk-test",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        engine = ConciergeEngine(campus_kb, fallback_client=client)
        with pytest.raises(QuotaExceededError):
            await engine.resolve("asdkjasdkj", allow_llm=True)
        assert metrics.get_counter("concierge_fallback_quota_exceeded_total").total() == 1

    @pytest.mark.asyncio
    async def test_provider_error_propagates(self, campus_kb):
        client = ScriptedClient(error=FallbackProviderError("down", status_code=503))
        engine = ConciergeEngine(campus_kb, fallback_client=client)
        with pytest.raises(FallbackProviderError):
            await engine.resolve("asdkjasdkj", allow_llm=True)
        assert metrics.get_counter("concierge_fallback_error_total").total() == 1

    @pytest.mark.asyncio
    async def test_malformed_output_becomes_safe_response(self, campus_kb):
        client = ScriptedClient(output="I think the gym is somewhere north.")
        engine = ConciergeEngine(campus_kb, fallback_client=client)
        response = await engine.resolve("where can i work out", allow_llm=True)
        assert response.intent == ConciergeIntent.UNKNOWN
        assert response.action == ConciergeAction.SHOW_LOCATION
        assert response.locations == []
        assert response.message == MALFORMED_MESSAGE
        assert metrics.get_counter("concierge_fallback_malformed_total").total() == 1

    @pytest.mark.asyncio
    async def test_resolve_query_helper(self, campus_kb):
        response = await resolve_query("where is the cafeteria", campus_kb)
        assert response.intent == ConciergeIntent.SERVICE_LOOKUP
        assert [loc.building_id for loc in response.locations] == ["cafeteria"]
