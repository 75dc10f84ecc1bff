"""Intent/action classifier for campus queries.

Maps matcher signals (candidates and route phrasing) plus the query's own
category vocabulary to a stable IntentDecision that the engine acts on
deterministically. Category vocabulary lives in a declarative table
(``CATEGORY_RULES``) so precedence is data, not branching.

Pure and synchronous: no I/O, fully unit-testable against literal strings.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .matcher import NO_ROUTE, MatchCandidate, RouteSignal
from .normalization import contains_phrase, normalize_query
from .response_schema import ConciergeAction, ConciergeIntent

logger = logging.getLogger(__name__)


# =============================================================================
# Category vocabulary (precedence order, highest first)
# =============================================================================

# Route navigation ranks right after escalation; it comes from the matcher's
# route signal rather than from this table.

@dataclass(frozen=True)
class CategoryRule:
    """Vocabulary that marks a query as belonging to an intent category."""
    intent: ConciergeIntent
    tokens: frozenset[str] = frozenset()
    phrases: tuple[str, ...] = ()

    def matches(self, normalized_query: str, tokens: set[str]) -> bool:
        if self.tokens & tokens:
            return True
        return any(contains_phrase(normalized_query, p) for p in self.phrases)


CATEGORY_RULES: tuple[CategoryRule, ...] = (
    CategoryRule(
        ConciergeIntent.ESCALATION,
        frozenset({
            "emergency", "urgent", "injured", "injury", "hurt", "ambulance",
            "accident", "fire", "harassment", "unsafe", "threat", "stolen",
            "theft", "security",
        }),
        ("help now",),
    ),
    CategoryRule(
        ConciergeIntent.DEADLINE_QUERY,
        frozenset({
            "deadline", "deadlines", "due", "notice", "notices", "timetable",
            "calendar",
        }),
        ("last date", "last day"),
    ),
    CategoryRule(
        ConciergeIntent.POLICY_QUERY,
        frozenset({
            "policy", "policies", "rule", "rules", "regulation", "regulations",
            "fine", "fines", "penalty", "allowed", "permitted", "eligible",
            "eligibility", "requirement", "requirements", "limit", "limits",
            "maximum", "overdue", "attendance",
        }),
    ),
    CategoryRule(
        ConciergeIntent.PROCESS_HOWTO,
        frozenset({
            "apply", "application", "procedure", "process", "steps", "enroll",
            "enrol", "enrollment", "register", "registration", "replace",
            "replacement", "obtain", "submit",
        }),
        ("how do i", "how can i", "how to"),
    ),
    CategoryRule(
        ConciergeIntent.OFFICE_LOOKUP,
        frozenset({
            "office", "offices", "registrar", "administration",
            "administrative", "admin", "accounts", "cashier", "dean", "exam",
            "exams", "examination", "records", "transcript", "transcripts",
            "certificate", "admission", "admissions",
        }),
    ),
    CategoryRule(
        ConciergeIntent.SERVICE_LOOKUP,
        frozenset({
            "service", "services", "atm", "bank", "canteen", "cafeteria",
            "mess", "food", "eat", "lunch", "print", "printing", "photocopy",
            "wifi", "internet", "clinic", "doctor", "medical", "pharmacy",
            "counseling", "counselling", "laundry", "bookshop", "stationery",
            "borrow", "borrowing", "card",
        }),
    ),
)

# Looked up when an escalation query names no location
ESCALATION_ANCHOR_QUERY = "security office"


# =============================================================================
# Decision schema
# =============================================================================

@dataclass
class IntentDecision:
    """Stable schema returned by the classifier.

    The engine uses this to choose locations, compose the message and
    decide whether the generative fallback is warranted.
    """
    intent: ConciergeIntent
    action: ConciergeAction
    confidence: float                            # 0.0 - 1.0
    reasoning: str = ""                          # human-readable explanation
    categories: List[ConciergeIntent] = field(default_factory=list)
    candidates: List[MatchCandidate] = field(default_factory=list)  # above threshold, ordered
    route_signal: RouteSignal = NO_ROUTE

    def to_dict(self) -> dict:
        return {
            "intent": self.intent.value,
            "action": self.action.value,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "categories": [c.value for c in self.categories],
            "candidates": [c.to_dict() for c in self.candidates],
            "route_signal": self.route_signal.to_dict(),
        }


# Below this the caller may ask the generative fallback
DEFAULT_CONFIDENCE_THRESHOLD = 0.55


# =============================================================================
# Classifier
# =============================================================================

def detect_categories(query: str) -> list[ConciergeIntent]:
    """Category intents whose vocabulary appears in the query, in precedence order."""
    normalized = normalize_query(query)
    tokens = set(normalized.split())
    return [rule.intent for rule in CATEGORY_RULES if rule.matches(normalized, tokens)]


def _infer_intent(categories: list[ConciergeIntent]) -> ConciergeIntent:
    for intent in categories:
        if intent != ConciergeIntent.ESCALATION:
            return intent
    return ConciergeIntent.LOCATION_LOOKUP


def drop_shadowed(candidates: list[MatchCandidate]) -> list[MatchCandidate]:
    """Drop weaker candidates whose evidence is part of the top candidate's full name.

    "where is the boys hostel" names Boys Hostel in full; Girls Hostel only
    shares the word "hostel" with it and is not a second answer. Applies only
    when the top candidate matched a multi-word phrase.
    """
    if not candidates or not candidates[0].has_phrase:
        return candidates

    top = candidates[0]
    covered = {token for term in top.matched_terms for token in term.split()}
    kept = [top]
    for candidate in candidates[1:]:
        own = {token for term in candidate.matched_terms for token in term.split()}
        if candidate.score < top.score and own <= covered:
            continue
        kept.append(candidate)
    return kept


def classify(
    query: str,
    candidates: list[MatchCandidate],
    route_signal: Optional[RouteSignal] = None,
) -> IntentDecision:
    """Classify a query into intent, action and confidence.

    Policy (first match wins):
      0. escalation vocabulary -> escalation; show_route when route phrasing
         is present, else the action follows the location count
      1. route phrasing        -> route_navigation / show_route
      2. one candidate         -> category intent / show_location
      3. several candidates    -> category intent / show_multiple_locations
      4. no candidate          -> low confidence, caller may fall back
    """
    route_signal = route_signal or NO_ROUTE
    categories = detect_categories(query)
    above = drop_shadowed([c for c in candidates if c.above_threshold])

    # ---- ESCALATION (overrides everything) ----
    if ConciergeIntent.ESCALATION in categories:
        if route_signal.detected:
            action = ConciergeAction.SHOW_ROUTE
        elif len(above) >= 2:
            action = ConciergeAction.SHOW_MULTIPLE_LOCATIONS
        else:
            action = ConciergeAction.SHOW_LOCATION
        return IntentDecision(
            intent=ConciergeIntent.ESCALATION,
            action=action,
            confidence=0.95,
            reasoning="Emergency or safety vocabulary detected",
            categories=categories,
            candidates=above,
            route_signal=route_signal,
        )

    # ---- ROUTE ----
    if route_signal.detected:
        return IntentDecision(
            intent=ConciergeIntent.ROUTE_NAVIGATION,
            action=ConciergeAction.SHOW_ROUTE,
            confidence=0.9,
            reasoning=f"Route phrasing detected ({route_signal.kind})",
            categories=categories,
            candidates=above,
            route_signal=route_signal,
        )

    intent = _infer_intent(categories)

    # ---- SINGLE LOCATION ----
    if len(above) == 1:
        return IntentDecision(
            intent=intent,
            action=ConciergeAction.SHOW_LOCATION,
            confidence=0.85,
            reasoning=f"Single location match: {above[0].location_id}",
            categories=categories,
            candidates=above,
            route_signal=route_signal,
        )

    # ---- MULTIPLE LOCATIONS ----
    if len(above) >= 2:
        return IntentDecision(
            intent=intent,
            action=ConciergeAction.SHOW_MULTIPLE_LOCATIONS,
            confidence=0.75,
            reasoning=f"{len(above)} location matches, top: {above[0].location_id}",
            categories=categories,
            candidates=above,
            route_signal=route_signal,
        )

    # ---- NO LOCATION ----
    if categories:
        return IntentDecision(
            intent=intent,
            action=ConciergeAction.SHOW_LOCATION,
            confidence=0.35,
            reasoning="Category vocabulary without a location match",
            categories=categories,
            route_signal=route_signal,
        )

    return IntentDecision(
        intent=ConciergeIntent.UNKNOWN,
        action=ConciergeAction.SHOW_LOCATION,
        confidence=0.1,
        reasoning="No location or category vocabulary matched",
        route_signal=route_signal,
    )


def needs_fallback(
    decision: IntentDecision,
    threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> bool:
    """Return True if deterministic confidence is too low to answer alone."""
    return decision.confidence < threshold
