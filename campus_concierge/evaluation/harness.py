"""Regression harness for intent/action classification.

Drives the engine over the labeled student-support corpus in deterministic
mode (the generative fallback is never used here, so scores are
reproducible) and compares observed intent/action against per-category
expectation sets.
"""

import logging
from dataclasses import dataclass, field

from ..engine import ConciergeEngine
from ..loaders.eval_set_loader import EvalSet
from ..response_schema import ConciergeAction, ConciergeIntent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvalExpectation:
    """Accepted intents and actions for one query."""
    intents: frozenset[ConciergeIntent]
    actions: frozenset[ConciergeAction]


def _expect(intents, actions) -> EvalExpectation:
    return EvalExpectation(frozenset(intents), frozenset(actions))


_INTENT = ConciergeIntent
_ACTION = ConciergeAction
_LOOKUP_ACTIONS = (_ACTION.SHOW_LOCATION, _ACTION.SHOW_MULTIPLE_LOCATIONS)

CATEGORY_EXPECTATIONS: dict[str, EvalExpectation] = {
    "admissions_onboarding": _expect(
        (_INTENT.PROCESS_HOWTO, _INTENT.OFFICE_LOOKUP, _INTENT.ESCALATION),
        _LOOKUP_ACTIONS,
    ),
    "registration_and_records": _expect(
        (_INTENT.PROCESS_HOWTO, _INTENT.OFFICE_LOOKUP, _INTENT.POLICY_QUERY),
        _LOOKUP_ACTIONS,
    ),
    "library": _expect(
        (_INTENT.POLICY_QUERY, _INTENT.SERVICE_LOOKUP, _INTENT.LOCATION_LOOKUP),
        _LOOKUP_ACTIONS,
    ),
    "hostel_and_food": _expect(
        (_INTENT.SERVICE_LOOKUP, _INTENT.OFFICE_LOOKUP, _INTENT.LOCATION_LOOKUP),
        _LOOKUP_ACTIONS,
    ),
    "student_services": _expect(
        (_INTENT.SERVICE_LOOKUP, _INTENT.OFFICE_LOOKUP, _INTENT.LOCATION_LOOKUP),
        _LOOKUP_ACTIONS,
    ),
    "notices_and_deadlines": _expect(
        (_INTENT.DEADLINE_QUERY, _INTENT.OFFICE_LOOKUP, _INTENT.POLICY_QUERY),
        _LOOKUP_ACTIONS,
    ),
    "student_organizations": _expect(
        (_INTENT.LOCATION_LOOKUP, _INTENT.OFFICE_LOOKUP, _INTENT.SERVICE_LOOKUP),
        _LOOKUP_ACTIONS,
    ),
    "navigation_and_route": _expect(
        (_INTENT.ROUTE_NAVIGATION, _INTENT.LOCATION_LOOKUP),
        (_ACTION.SHOW_ROUTE, *_LOOKUP_ACTIONS),
    ),
    "emergency_and_escalation": _expect(
        (_INTENT.ESCALATION, _INTENT.OFFICE_LOOKUP),
        _LOOKUP_ACTIONS,
    ),
}

UNKNOWN_CATEGORY_EXPECTATION = _expect((_INTENT.UNKNOWN,), _LOOKUP_ACTIONS)
ROUTE_EXPECTATION = _expect((_INTENT.ROUTE_NAVIGATION,), (_ACTION.SHOW_ROUTE,))


def looks_like_route_query(query: str) -> bool:
    """Route phrasing that must classify as route_navigation/show_route."""
    q = " ".join(query.lower().split())
    return (
        ("from " in q and " to " in q)
        or ("between " in q and " and " in q)
        or "directions" in q
        or "navigate" in q
        or "show route" in q
    )


def expected_for_query(category: str, query: str) -> EvalExpectation:
    """Expectation for one query, with the route override for navigation."""
    if category == "navigation_and_route" and looks_like_route_query(query):
        return ROUTE_EXPECTATION
    return CATEGORY_EXPECTATIONS.get(category, UNKNOWN_CATEGORY_EXPECTATION)


# =============================================================================
# Results
# =============================================================================

@dataclass
class QueryOutcome:
    """Observed vs expected classification for one query."""
    category: str
    query: str
    expected: EvalExpectation
    intent: ConciergeIntent
    action: ConciergeAction

    @property
    def intent_pass(self) -> bool:
        return self.intent in self.expected.intents

    @property
    def action_pass(self) -> bool:
        return self.action in self.expected.actions

    @property
    def passed(self) -> bool:
        return self.intent_pass and self.action_pass

    def describe_failure(self) -> str:
        return f"[{self.category}] \"{self.query}\" -> intent={self.intent.value}, action={self.action.value}"

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "query": self.query,
            "expected_intents": sorted(i.value for i in self.expected.intents),
            "expected_actions": sorted(a.value for a in self.expected.actions),
            "intent": self.intent.value,
            "action": self.action.value,
            "intent_pass": self.intent_pass,
            "action_pass": self.action_pass,
        }


@dataclass
class EvalReport:
    """Aggregate results of one evaluation run."""
    version: str
    language: str
    outcomes: list[QueryOutcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def intent_passes(self) -> int:
        return sum(1 for o in self.outcomes if o.intent_pass)

    @property
    def action_passes(self) -> int:
        return sum(1 for o in self.outcomes if o.action_pass)

    @property
    def full_passes(self) -> int:
        return sum(1 for o in self.outcomes if o.passed)

    @property
    def failures(self) -> list[QueryOutcome]:
        return [o for o in self.outcomes if not o.passed]

    @property
    def all_passed(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "language": self.language,
            "summary": {
                "total": self.total,
                "intent_passes": self.intent_passes,
                "action_passes": self.action_passes,
                "full_passes": self.full_passes,
            },
            "failures": [o.describe_failure() for o in self.failures],
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


def run_evaluation(engine: ConciergeEngine, eval_set: EvalSet) -> EvalReport:
    """Run every corpus query through the deterministic path and score it."""
    report = EvalReport(version=eval_set.version, language=eval_set.language)

    for group in eval_set.groups:
        for query in group.queries:
            response = engine.resolve_deterministic(query)
            outcome = QueryOutcome(
                category=group.category,
                query=query,
                expected=expected_for_query(group.category, query),
                intent=response.intent,
                action=response.action,
            )
            report.outcomes.append(outcome)
            if not outcome.passed:
                logger.debug(f"Eval failure: {outcome.describe_failure()}")

    logger.info(f"Eval v{eval_set.version}: {report.full_passes}/{report.total} full passes")
    return report
