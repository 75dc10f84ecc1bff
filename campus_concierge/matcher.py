"""Deterministic lexical matcher for campus queries.

Scores every knowledge base location against a normalized query and detects
route-style phrasing. Pure and synchronous: no I/O, no model calls, and an
unmatched query is simply an empty candidate list.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .knowledge_base import KnowledgeBase, LocationRecord
from .normalization import GENERIC_TOKENS, content_tokens, contains_phrase, normalize_query

logger = logging.getLogger(__name__)


# =============================================================================
# Scoring weights
# =============================================================================

STRONG_WEIGHT = 2.0     # non-generic name, explicit alias or service-name token
WEAK_WEIGHT = 1.0       # generic name token, description or service purpose token
PHRASE_BONUS = 3.0      # full multi-word name, alias or service name

# A candidate is "above threshold" when its score is strictly greater
MIN_MATCH_SCORE = 1.5

# Minimum score for a service to be attached to a candidate
MIN_SERVICE_SCORE = 2.0


# =============================================================================
# Result types
# =============================================================================

@dataclass(frozen=True)
class MatchCandidate:
    """One location's lexical evidence for a single query."""
    location_id: str
    matched_terms: frozenset[str]
    score: float
    alias_length: int = 0       # shortest matched term, tie-break key
    first_position: int = 0     # earliest query-token index of a matched term
    matched_service: Optional[str] = None

    @property
    def above_threshold(self) -> bool:
        return self.score > MIN_MATCH_SCORE

    @property
    def has_phrase(self) -> bool:
        """True when a full multi-word name, alias or service name matched."""
        return any(" " in term for term in self.matched_terms)

    def to_dict(self) -> dict:
        return {
            "location_id": self.location_id,
            "matched_terms": sorted(self.matched_terms),
            "score": self.score,
            "matched_service": self.matched_service,
        }


ROUTE_KIND_FROM_TO = "from_to"
ROUTE_KIND_BETWEEN_AND = "between_and"
ROUTE_KIND_NAVIGATION = "navigation_phrase"


@dataclass(frozen=True)
class RouteSignal:
    """Route-style phrasing detected in a query.

    ``implied_origin`` is set when only a destination is phrased ("take me to
    the library"): the route starts from the user's current position.
    ``destination_first`` is set for "to X from Y" phrasing.

    For explicit two-ended routes the query is split at the marker words:
    ``origin_text`` and ``destination_text`` hold the normalized text naming
    each end, so two places sharing a word cannot crowd out the other end.
    """
    detected: bool = False
    kind: Optional[str] = None
    implied_origin: bool = False
    destination_first: bool = False
    origin_text: str = ""
    destination_text: str = ""

    def to_dict(self) -> dict:
        return {
            "detected": self.detected,
            "kind": self.kind,
            "implied_origin": self.implied_origin,
            "origin_text": self.origin_text,
            "destination_text": self.destination_text,
        }


NO_ROUTE = RouteSignal()

NAVIGATION_PHRASES = (
    "navigate",
    "navigation",
    "directions",
    "direction to",
    "take me to",
    "show route",
    "route to",
    "guide me to",
    "how do i get to",
    "how to get to",
    "how do i reach",
)

_TO_TOKENS = ("to", "towards")


# =============================================================================
# Matching
# =============================================================================

def match(normalized_query: str, knowledge_base: KnowledgeBase) -> list[MatchCandidate]:
    """Score every location against the query.

    Args:
        normalized_query: Output of ``normalize_query``
        knowledge_base: Loaded campus knowledge base

    Returns:
        Candidates with score > 0, ordered by (higher score, shorter matched
        alias, location_id)
    """
    normalized_query = normalize_query(normalized_query)
    tokens = normalized_query.split()
    if not tokens:
        return []

    positions: dict[str, int] = {}
    for i, token in enumerate(tokens):
        positions.setdefault(token, i)

    candidates = []
    for location in knowledge_base:
        candidate = _score_location(location, normalized_query, tokens, positions)
        if candidate is not None:
            candidates.append(candidate)

    candidates.sort(key=lambda c: (-c.score, c.alias_length, c.location_id))
    logger.debug(f"Matched {len(candidates)} candidate(s) for '{normalized_query}'")
    return candidates


def _score_location(
    location: LocationRecord,
    normalized_query: str,
    tokens: list[str],
    positions: dict[str, int],
) -> Optional[MatchCandidate]:
    score = 0.0
    matched: set[str] = set()
    hit_positions: list[int] = []

    for alias in location.aliases:
        if " " in alias or alias not in positions:
            continue
        strong = alias in location.keywords or alias in location.service_keywords
        if strong and alias not in GENERIC_TOKENS:
            score += STRONG_WEIGHT
        else:
            score += WEAK_WEIGHT
        matched.add(alias)
        hit_positions.append(positions[alias])

    for phrase in location.phrases:
        if contains_phrase(normalized_query, phrase):
            score += PHRASE_BONUS
            matched.add(phrase)
            hit_positions.append(_phrase_position(tokens, phrase.split()))

    if score <= 0:
        return None

    return MatchCandidate(
        location_id=location.id,
        matched_terms=frozenset(matched),
        score=score,
        alias_length=min(len(term) for term in matched),
        first_position=min(hit_positions),
        matched_service=best_service(location, normalized_query),
    )


def _phrase_position(tokens: list[str], phrase_tokens: list[str]) -> int:
    width = len(phrase_tokens)
    for i in range(len(tokens) - width + 1):
        if tokens[i:i + width] == phrase_tokens:
            return i
    return len(tokens)


def best_service(location: LocationRecord, normalized_query: str) -> Optional[str]:
    """Name of the service that best overlaps the query, if any.

    Name tokens score 2.0 (1.0 when generic), purpose tokens 1.0 and the full
    service name 3.0. Tokens that already name the building ("hostel" in
    "Hostel Mess" at a hostel) do not count. The earliest service wins ties.
    """
    building_tokens = location.keywords - GENERIC_TOKENS
    query_tokens = set(normalized_query.split()) - building_tokens
    best_name, best_score = None, 0.0

    for service in location.services:
        name_tokens = set(content_tokens(service.name))
        purpose_tokens = set(content_tokens(service.purpose)) - name_tokens

        score = 0.0
        for token in name_tokens & query_tokens:
            score += WEAK_WEIGHT if token in GENERIC_TOKENS else STRONG_WEIGHT
        score += WEAK_WEIGHT * len(purpose_tokens & query_tokens)

        full_name = normalize_query(service.name)
        if " " in full_name and contains_phrase(normalized_query, full_name):
            score += PHRASE_BONUS

        if score >= MIN_SERVICE_SCORE and score > best_score:
            best_name, best_score = service.name, score

    return best_name


# =============================================================================
# Route phrasing
# =============================================================================

def detect_route_signal(normalized_query: str) -> RouteSignal:
    """Detect route-style phrasing.

    Patterns, checked in order:
      1. a "from" token together with a "to"/"towards" token
      2. "between ... and ..."
      3. an explicit navigation phrase ("take me to", "directions", ...)
    """
    normalized_query = normalize_query(normalized_query)
    tokens = normalized_query.split()

    if "from" in tokens:
        from_index = tokens.index("from")
        to_indexes = [i for i, t in enumerate(tokens) if t in _TO_TOKENS]
        if to_indexes:
            # "to X from Y" only when no "to" follows the "from"
            if max(to_indexes) < from_index:
                to_index = max(to_indexes)
                return RouteSignal(
                    detected=True,
                    kind=ROUTE_KIND_FROM_TO,
                    destination_first=True,
                    origin_text=_segment(tokens, from_index + 1, len(tokens)),
                    destination_text=_segment(tokens, to_index + 1, from_index),
                )
            to_index = min(i for i in to_indexes if i > from_index)
            return RouteSignal(
                detected=True,
                kind=ROUTE_KIND_FROM_TO,
                origin_text=_segment(tokens, from_index + 1, to_index),
                destination_text=_segment(tokens, to_index + 1, len(tokens)),
            )

    if "between" in tokens and "and" in tokens[tokens.index("between") + 1:]:
        between_index = tokens.index("between")
        and_index = tokens.index("and", between_index + 1)
        return RouteSignal(
            detected=True,
            kind=ROUTE_KIND_BETWEEN_AND,
            origin_text=_segment(tokens, between_index + 1, and_index),
            destination_text=_segment(tokens, and_index + 1, len(tokens)),
        )

    for phrase in NAVIGATION_PHRASES:
        if contains_phrase(normalized_query, phrase):
            return RouteSignal(detected=True, kind=ROUTE_KIND_NAVIGATION, implied_origin=True)

    return NO_ROUTE


def _segment(tokens: list[str], start: int, end: int) -> str:
    return " ".join(tokens[start:end])
