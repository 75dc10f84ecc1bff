"""Query-resolution engine: deterministic first, generative fallback second.

One pipeline for every caller (chat endpoint, CLI, evaluation harness):

    query -> matcher -> classifier -> (confident => compose response)
                                   or (low confidence and fallback allowed
                                       => resolve_with_model)
          -> response_gateway.normalize -> ConciergeResponse

The engine holds only the read-only knowledge base and an optional fallback
client, so one instance can serve any number of concurrent requests.
"""

import logging
import time
from typing import Optional

from .exceptions import (
    EmptyQueryError,
    FallbackMalformedError,
    FallbackProviderError,
    QuotaExceededError,
)
from .intent_router import (
    DEFAULT_CONFIDENCE_THRESHOLD,
    ESCALATION_ANCHOR_QUERY,
    IntentDecision,
    classify,
    needs_fallback,
)
from .knowledge_base import KnowledgeBase, LocationRecord
from .llm_client import FallbackClient, resolve_with_model
from .matcher import MatchCandidate, detect_route_signal, match
from .normalization import normalize_query
from .observability import get_logger, metrics, new_request_id
from .response_gateway import normalize
from .response_schema import (
    ConciergeAction,
    ConciergeIntent,
    ConciergeResponse,
    LocationRef,
)

logger = logging.getLogger(__name__)

# Upper bound on locations listed for show_multiple_locations
MAX_MULTIPLE_LOCATIONS = 5

UNKNOWN_MESSAGE = (
    "Sorry, I couldn't find a campus location matching your question. "
    "Try naming a building, office or service, for example \"where is the library\"."
)
NO_LOCATION_MESSAGE = (
    "I couldn't find a specific campus location for that. "
    "Try naming the office or building you're looking for."
)
MALFORMED_MESSAGE = (
    "Sorry, I couldn't work out a reliable answer to that question right now. "
    "Please try rephrasing it or name the building you need."
)
ESCALATION_PREFIX = "If this is an emergency, contact campus security right away."


class ConciergeEngine:
    """Resolves free-text campus questions into ConciergeResponses."""

    def __init__(
        self,
        knowledge_base: KnowledgeBase,
        fallback_client: Optional[FallbackClient] = None,
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
    ):
        """Initialize the engine.

        Args:
            knowledge_base: Loaded, immutable campus knowledge base
            fallback_client: Optional generative fallback backend
            confidence_threshold: Below this the fallback may be used
        """
        self.knowledge_base = knowledge_base
        self.fallback_client = fallback_client
        self.confidence_threshold = confidence_threshold
        self._escalation_anchor = self._find_escalation_anchor()

    def _find_escalation_anchor(self) -> Optional[LocationRecord]:
        for candidate in match(ESCALATION_ANCHOR_QUERY, self.knowledge_base):
            if candidate.above_threshold:
                return self.knowledge_base.get(candidate.location_id)
        return None

    # -------------------------------------------------------------------------
    # Deterministic path
    # -------------------------------------------------------------------------

    def analyze(self, query: str) -> IntentDecision:
        """Run matcher and classifier without composing a response.

        Raises:
            EmptyQueryError: If the query is blank
        """
        if query is None or not query.strip():
            raise EmptyQueryError()

        normalized = normalize_query(query)
        candidates = match(normalized, self.knowledge_base)
        route_signal = detect_route_signal(normalized)
        return classify(normalized, candidates, route_signal)

    def resolve_deterministic(self, query: str) -> ConciergeResponse:
        """Resolve using lexical rules only; never calls a model."""
        return self._compose(self.analyze(query))

    def _compose(self, decision: IntentDecision) -> ConciergeResponse:
        records = self._select_locations(decision)
        refs = [self._to_ref(record, service) for record, service in records]
        message = self._compose_message(decision, records)

        draft = ConciergeResponse(
            message=message,
            locations=refs,
            intent=decision.intent,
            action=decision.action,
        )
        return normalize(draft, implied_origin=decision.route_signal.implied_origin)

    def _select_locations(self, decision: IntentDecision) -> list[tuple[LocationRecord, Optional[str]]]:
        candidates = decision.candidates

        if decision.action == ConciergeAction.SHOW_ROUTE:
            chosen = self._route_endpoints(decision)
        elif decision.action == ConciergeAction.SHOW_MULTIPLE_LOCATIONS:
            chosen = candidates[:MAX_MULTIPLE_LOCATIONS]
        else:
            chosen = candidates[:1]

        selected = []
        for candidate in chosen:
            record = self.knowledge_base.get(candidate.location_id)
            if record is not None:
                selected.append((record, candidate.matched_service))

        if (
            not selected
            and decision.intent == ConciergeIntent.ESCALATION
            and self._escalation_anchor is not None
        ):
            selected.append((self._escalation_anchor, None))

        return selected

    def _route_endpoints(self, decision: IntentDecision) -> list[MatchCandidate]:
        """Pick route endpoints, origin first.

        Implied-origin routes keep the single best destination. Explicit routes
        resolve each end from its own part of the query, so "from the library
        to the boys hostel" cannot lose the library to the two hostels.
        """
        signal = decision.route_signal
        if signal.implied_origin:
            return decision.candidates[:1]

        if not (signal.origin_text or signal.destination_text):
            endpoints = sorted(decision.candidates[:2], key=lambda c: c.first_position)
            if signal.destination_first:
                endpoints.reverse()
            return endpoints

        origin = self._best_in_segment(signal.origin_text)
        destination = self._best_in_segment(
            signal.destination_text,
            exclude=origin.location_id if origin else None,
        )
        return [c for c in (origin, destination) if c is not None]

    def _best_in_segment(self, text: str, exclude: Optional[str] = None) -> Optional[MatchCandidate]:
        for candidate in match(text, self.knowledge_base):
            if candidate.above_threshold and candidate.location_id != exclude:
                return candidate
        return None

    @staticmethod
    def _to_ref(record: LocationRecord, service_name: Optional[str]) -> LocationRef:
        service = record.find_service(service_name)
        return LocationRef(
            building_id=record.id,
            building_name=record.name,
            coordinates=record.coordinates,
            service_name=service.name if service else None,
            service_location=(service.location_note or None) if service else None,
        )

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    @staticmethod
    def _describe(record: LocationRecord, service_name: Optional[str]) -> str:
        service = record.find_service(service_name)
        if service is not None:
            text = f"{service.name} is in {record.name}"
            if service.location_note:
                text += f", {service.location_note}"
            return text + "."
        if record.description:
            description = record.description.rstrip(".")
            return f"{record.name}: {description}."
        return f"Here is {record.name}."

    def _compose_message(
        self,
        decision: IntentDecision,
        records: list[tuple[LocationRecord, Optional[str]]],
    ) -> str:
        if decision.intent == ConciergeIntent.UNKNOWN:
            return UNKNOWN_MESSAGE

        if decision.action == ConciergeAction.SHOW_ROUTE:
            body = self._route_message(decision, records)
        elif not records:
            body = NO_LOCATION_MESSAGE
        elif len(records) == 1:
            body = self._describe(*records[0])
        else:
            names = [record.name for record, _ in records]
            body = f"I found {len(names)} matching places: {_join_names(names)}. " + " ".join(
                self._describe(record, service) for record, service in records
            )

        if decision.intent == ConciergeIntent.ESCALATION:
            if not records:
                return (
                    f"{ESCALATION_PREFIX} I couldn't find the security office in the campus "
                    "data, so please call emergency services if anyone is in danger."
                )
            return f"{ESCALATION_PREFIX} {body}"
        return body

    def _route_message(
        self,
        decision: IntentDecision,
        records: list[tuple[LocationRecord, Optional[str]]],
    ) -> str:
        if len(records) >= 2:
            origin, destination = records[0][0], records[-1][0]
            return f"Here is the route from {origin.name} to {destination.name}. " + self._describe(*records[-1])
        if len(records) == 1 and decision.route_signal.implied_origin:
            message = f"Here is the route to {records[0][0].name}. " + self._describe(*records[0])
            skipped = self._skipped_names(decision, records[0][0].id)
            if skipped:
                message += (
                    f" You also mentioned {_join_names(skipped)}; "
                    "ask for directions to each place separately."
                )
            return message
        if len(records) == 1:
            return self._describe(*records[0])
        return (
            "I couldn't identify the places in that route. "
            "Try naming both buildings, for example \"from the main gate to the library\"."
        )

    def _skipped_names(self, decision: IntentDecision, chosen_id: str) -> list[str]:
        names = []
        for candidate in decision.candidates[:MAX_MULTIPLE_LOCATIONS]:
            record = self.knowledge_base.get(candidate.location_id)
            if record is not None and record.id != chosen_id:
                names.append(record.name)
        return names

    # -------------------------------------------------------------------------
    # Full pipeline
    # -------------------------------------------------------------------------

    async def resolve(
        self,
        query: str,
        allow_llm: bool = False,
        request_id: Optional[str] = None,
    ) -> ConciergeResponse:
        """Resolve a query, using the generative fallback only when allowed and needed.

        Args:
            query: Raw user query
            allow_llm: Permit the generative fallback on low confidence
            request_id: Optional id for log correlation

        Returns:
            Normalized ConciergeResponse

        Raises:
            EmptyQueryError: Blank query
            QuotaExceededError: Fallback provider rate-limited the call
            FallbackProviderError: Fallback provider call failed
        """
        log = get_logger("engine", request_id=request_id or new_request_id())
        decision = self.analyze(query)

        use_fallback = (
            allow_llm
            and self.fallback_client is not None
            and self.fallback_client.is_available()
            and needs_fallback(decision, self.confidence_threshold)
        )
        if not use_fallback:
            metrics.increment("concierge_resolve_total", labels={"path": "deterministic"})
            response = self._compose(decision)
            log.info(
                "resolved",
                path="deterministic",
                intent=response.intent.value,
                action=response.action.value,
                confidence=decision.confidence,
                locations=len(response.locations),
            )
            return response

        return await self._resolve_with_fallback(query, decision, log)

    async def _resolve_with_fallback(self, query: str, decision: IntentDecision, log) -> ConciergeResponse:
        metrics.increment("concierge_fallback_total")
        log.info("fallback_start", confidence=decision.confidence, client=self.fallback_client.get_client_type())

        start = time.perf_counter()
        try:
            draft = await resolve_with_model(
                query,
                self.knowledge_base,
                self.fallback_client,
                default_intent=decision.intent,
            )
        except QuotaExceededError as e:
            metrics.increment("concierge_fallback_quota_exceeded_total")
            log.warn("fallback_quota_exceeded", status_code=e.status_code)
            raise
        except FallbackMalformedError as e:
            metrics.increment("concierge_fallback_malformed_total")
            metrics.increment("concierge_resolve_total", labels={"path": "fallback_malformed"})
            log.warn("fallback_malformed", errors=e.errors)
            return normalize(ConciergeResponse(
                message=MALFORMED_MESSAGE,
                locations=[],
                intent=ConciergeIntent.UNKNOWN,
                action=ConciergeAction.SHOW_LOCATION,
            ))
        except FallbackProviderError as e:
            metrics.increment("concierge_fallback_error_total")
            log.error("fallback_error", status_code=e.status_code, error=str(e))
            raise
        finally:
            metrics.observe("concierge_fallback_duration_seconds", time.perf_counter() - start)

        metrics.increment("concierge_resolve_total", labels={"path": "fallback"})
        response = normalize(draft, implied_origin=decision.route_signal.implied_origin)
        log.info(
            "resolved",
            path="fallback",
            intent=response.intent.value,
            action=response.action.value,
            locations=len(response.locations),
        )
        return response


async def resolve_query(
    query: str,
    knowledge_base: KnowledgeBase,
    *,
    allow_llm: bool = False,
    fallback_client: Optional[FallbackClient] = None,
) -> ConciergeResponse:
    """Resolve one query against a knowledge base.

    Convenience wrapper for callers that do not keep an engine around.
    """
    engine = ConciergeEngine(knowledge_base, fallback_client=fallback_client)
    return await engine.resolve(query, allow_llm=allow_llm)


def _join_names(names: list[str]) -> str:
    if len(names) == 1:
        return names[0]
    return ", ".join(names[:-1]) + f" and {names[-1]}"
