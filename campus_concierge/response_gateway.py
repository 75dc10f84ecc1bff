"""Response gateway: the last step before any answer leaves the engine.

This module provides:
- normalize(): single entry point for both the deterministic and the
  generative path
- Coordinate scrubbing for user-facing prose
- The action/location-count invariant of ConciergeResponse

Architecture:
    query -> matcher/classifier (or generative fallback) -> draft response ->
    normalize() -> caller
"""

import logging
import re
from dataclasses import replace

from .knowledge_base import Coordinates
from .response_schema import (
    ConciergeAction,
    ConciergeIntent,
    ConciergeResponse,
    LocationRef,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Coordinate scrubbing
# =============================================================================

_COORDINATE_PATTERNS = [
    # "(27.6823, 85.3195)", "27.68 N, 85.31 E"
    re.compile(
        r"\(?\s*-?\d{1,3}\.\d+\s*°?\s*[NSns]?\s*[,;/]\s*-?\d{1,3}\.\d+\s*°?\s*[EWew]?\s*\)?"
    ),
    # "lat: 27.68", "longitude = 85.31"
    re.compile(
        r"\b(?:lat(?:itude)?|lng|lon(?:g(?:itude)?)?)\b\s*[:=]?\s*-?\d+(?:\.\d+)?\s*°?",
        re.IGNORECASE,
    ),
    # any long decimal, e.g. a lone "85.319542"
    re.compile(r"-?\b\d+\.\d{4,}\b"),
]

_EMPTY_BRACKETS_RE = re.compile(r"[(\[]\s*[,;/]?\s*[)\]]")
_SPACE_BEFORE_PUNCT_RE = re.compile(r"\s+([,.;:!?])")
_REPEATED_PUNCT_RE = re.compile(r"([,;:])(?:\s*[,;:])+")
_DANGLING_PUNCT_RE = re.compile(r"[,;:]+\s*([.!?])")
_MULTI_SPACE_RE = re.compile(r"[ \t]{2,}")


def strip_coordinates(text: str) -> str:
    """Remove coordinate-looking substrings from user-facing prose."""
    if not text:
        return ""
    cleaned = text
    for pattern in _COORDINATE_PATTERNS:
        cleaned = pattern.sub(" ", cleaned)
    cleaned = _EMPTY_BRACKETS_RE.sub(" ", cleaned)
    cleaned = _MULTI_SPACE_RE.sub(" ", cleaned)
    cleaned = _SPACE_BEFORE_PUNCT_RE.sub(r"\1", cleaned)
    cleaned = _REPEATED_PUNCT_RE.sub(r"\1", cleaned)
    cleaned = _DANGLING_PUNCT_RE.sub(r"\1", cleaned)
    if cleaned != text:
        logger.debug("Stripped coordinates from response message")
    return cleaned.strip()


# =============================================================================
# Messages
# =============================================================================

IMPLIED_ORIGIN_NOTE = "The route starts from your current location."
PARTIAL_ROUTE_NOTE = (
    "I could only identify one end of that route, so I'm showing that location instead."
)

_DEFAULT_MESSAGES = {
    ConciergeIntent.ROUTE_NAVIGATION: "Here is the route you asked for.",
    ConciergeIntent.ESCALATION: (
        "If this is an emergency, contact campus security immediately."
    ),
    ConciergeIntent.UNKNOWN: (
        "Sorry, I couldn't find a campus location matching your question. "
        "Try naming a building, office or service."
    ),
}
_GENERIC_FOUND_MESSAGE = "Here is what I found on campus."
_GENERIC_EMPTY_MESSAGE = (
    "Sorry, I couldn't find a matching place on campus for that. "
    "Try naming a building, office or service."
)


def default_message(intent: ConciergeIntent, has_locations: bool) -> str:
    """Intent-aware message used when a draft arrives without one."""
    if intent in _DEFAULT_MESSAGES:
        return _DEFAULT_MESSAGES[intent]
    return _GENERIC_FOUND_MESSAGE if has_locations else _GENERIC_EMPTY_MESSAGE


def _append_note(message: str, note: str) -> str:
    if note in message:
        return message
    if not message:
        return note
    return f"{message} {note}"


# =============================================================================
# Normalization
# =============================================================================

def _is_well_formed(location: object) -> bool:
    return (
        isinstance(location, LocationRef)
        and isinstance(location.building_id, str)
        and bool(location.building_id.strip())
        and isinstance(location.building_name, str)
        and bool(location.building_name.strip())
        and isinstance(location.coordinates, Coordinates)
    )


def normalize(draft: ConciergeResponse, implied_origin: bool = False) -> ConciergeResponse:
    """Coerce a draft response into the output contract.

    Steps:
      1. strip coordinate-looking substrings from ``message``
      2. drop malformed locations, de-duplicate by ``building_id`` (first wins)
      3. enforce the action/location-count invariant
      4. guarantee a non-empty ``message``

    Args:
        draft: Response produced by either resolution path
        implied_origin: The query named only a destination, so a single-location
            route starts from the user's current position

    Returns:
        A new ConciergeResponse satisfying every contract invariant
    """
    message = strip_coordinates(draft.message or "")

    locations: list[LocationRef] = []
    seen: set[str] = set()
    for location in draft.locations or []:
        if not _is_well_formed(location):
            logger.debug(f"Dropping malformed location: {location!r}")
            continue
        if location.building_id in seen:
            continue
        seen.add(location.building_id)
        locations.append(location)

    action = draft.action
    count = len(locations)

    if action == ConciergeAction.SHOW_MULTIPLE_LOCATIONS and count < 2:
        action = ConciergeAction.SHOW_LOCATION

    elif action == ConciergeAction.SHOW_ROUTE and count < 2:
        if implied_origin and count == 1:
            message = _append_note(message, IMPLIED_ORIGIN_NOTE)
        else:
            action = ConciergeAction.SHOW_LOCATION
            if count == 1:
                message = _append_note(message, PARTIAL_ROUTE_NOTE)

    elif action == ConciergeAction.SHOW_LOCATION and count > 1:
        action = ConciergeAction.SHOW_MULTIPLE_LOCATIONS

    if not message:
        message = default_message(draft.intent, has_locations=bool(locations))

    if action != draft.action:
        logger.debug(f"Action normalized: {draft.action.value} -> {action.value} ({count} location(s))")

    return replace(draft, message=message, locations=locations, action=action)
