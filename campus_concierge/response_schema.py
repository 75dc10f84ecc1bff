"""Structured response contract for concierge answers.

This module defines the single output contract shared by the deterministic
path and the generative fallback, enabling:
- Deterministic validation of model output (not regex-based)
- Stable CI tests and evaluation runs
- A controlled extraction/repair chain for model responses
"""

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .knowledge_base import Coordinates

logger = logging.getLogger(__name__)


class ConciergeIntent(str, Enum):
    """Classified purpose of a user query."""
    PROCESS_HOWTO = "process_howto"
    OFFICE_LOOKUP = "office_lookup"
    POLICY_QUERY = "policy_query"
    SERVICE_LOOKUP = "service_lookup"
    LOCATION_LOOKUP = "location_lookup"
    DEADLINE_QUERY = "deadline_query"
    ROUTE_NAVIGATION = "route_navigation"
    ESCALATION = "escalation"
    UNKNOWN = "unknown"


class ConciergeAction(str, Enum):
    """UI directive paired with a response."""
    SHOW_ROUTE = "show_route"
    SHOW_LOCATION = "show_location"
    SHOW_MULTIPLE_LOCATIONS = "show_multiple_locations"


class ReasonCode(str, Enum):
    """Reason codes for parse failures."""
    SUCCESS = "success"
    INVALID_JSON = "invalid_json"
    SCHEMA_MISSING_FIELD = "schema_missing_field"
    SCHEMA_TYPE_ERROR = "schema_type_error"
    INVARIANT_VIOLATION = "invariant_violation"
    EXTRACTION_FAILED = "extraction_failed"


@dataclass(frozen=True)
class LocationRef:
    """A location as it appears in a response."""
    building_id: str
    building_name: str
    coordinates: Coordinates
    service_name: Optional[str] = None
    service_location: Optional[str] = None

    def to_dict(self) -> dict:
        result = {
            "building_id": self.building_id,
            "building_name": self.building_name,
            "coordinates": self.coordinates.to_dict(),
        }
        if self.service_name:
            result["service_name"] = self.service_name
        if self.service_location:
            result["service_location"] = self.service_location
        return result


@dataclass
class ConciergeResponse:
    """The output contract returned to every caller.

    Invariants (enforced by ``response_gateway.normalize``):
    - ``message`` is non-empty and carries no raw coordinates
    - ``locations`` has no duplicate ``building_id``
    - ``show_multiple_locations`` has two or more locations
    - ``show_route`` has two or more locations, or exactly one destination
      with an implied origin
    """
    message: str
    locations: list[LocationRef] = field(default_factory=list)
    intent: ConciergeIntent = ConciergeIntent.UNKNOWN
    action: ConciergeAction = ConciergeAction.SHOW_LOCATION

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "message": self.message,
            "locations": [loc.to_dict() for loc in self.locations],
            "intent": self.intent.value,
            "action": self.action.value,
        }


class ResponseValidator:
    """Validates model output against the response contract."""

    REQUIRED_FIELDS = ("message", "locations", "action")
    VALID_ACTIONS = frozenset(a.value for a in ConciergeAction)

    @classmethod
    def validate(cls, data: Any) -> tuple[bool, list[str], ReasonCode]:
        """Validate response data against the schema.

        Args:
            data: Parsed JSON value

        Returns:
            Tuple of (is_valid, list of error messages, reason_code)
        """
        if not isinstance(data, dict):
            return False, ["Response must be a JSON object"], ReasonCode.SCHEMA_TYPE_ERROR

        errors = []
        for field_name in cls.REQUIRED_FIELDS:
            if field_name not in data:
                errors.append(f"Missing required field: {field_name}")
        if errors:
            return False, errors, ReasonCode.SCHEMA_MISSING_FIELD

        reason_code = ReasonCode.SUCCESS

        if not isinstance(data["message"], str):
            errors.append("'message' must be a string")
            reason_code = ReasonCode.SCHEMA_TYPE_ERROR

        if not isinstance(data["locations"], list):
            errors.append("'locations' must be an array")
            reason_code = ReasonCode.SCHEMA_TYPE_ERROR
        else:
            for i, loc in enumerate(data["locations"]):
                if not isinstance(loc, dict):
                    errors.append(f"'locations[{i}]' must be an object")
                    reason_code = ReasonCode.SCHEMA_TYPE_ERROR
                elif not isinstance(loc.get("building_id"), str) and not isinstance(loc.get("building_name"), str):
                    errors.append(f"'locations[{i}]' needs 'building_id' or 'building_name'")
                    reason_code = ReasonCode.SCHEMA_MISSING_FIELD

        if data["action"] not in cls.VALID_ACTIONS:
            errors.append(f"'action' must be one of: {sorted(cls.VALID_ACTIONS)}")
            reason_code = ReasonCode.INVARIANT_VIOLATION

        intent = data.get("intent")
        if intent is not None and not isinstance(intent, str):
            errors.append("'intent' must be a string when present")
            reason_code = ReasonCode.SCHEMA_TYPE_ERROR

        if errors:
            return False, errors, reason_code
        return True, [], ReasonCode.SUCCESS

    @classmethod
    def parse_and_validate(cls, json_str: str) -> tuple[Optional[dict], list[str], ReasonCode]:
        """Parse a JSON string and validate it."""
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            return None, [f"JSON parse error: {e}"], ReasonCode.INVALID_JSON

        is_valid, errors, reason_code = cls.validate(data)
        if not is_valid:
            return None, errors, reason_code
        return data, [], ReasonCode.SUCCESS


class ResponseParser:
    """Parses model responses with a fallback chain."""

    # JSON code block pattern
    JSON_BLOCK_PATTERN = re.compile(r'```(?:json)?\s*(\{.*?\})\s*```', re.DOTALL)

    @classmethod
    def extract_json(cls, text: str) -> Optional[str]:
        """Extract a JSON object from text, handling markdown code blocks."""
        if not text:
            return None

        match = cls.JSON_BLOCK_PATTERN.search(text)
        if match:
            return match.group(1).strip()

        # Outermost braces; the payload nests objects inside arrays
        start = text.find("{")
        if start == -1:
            return None
        end = text.rfind("}")
        if end > start:
            return text[start:end + 1].strip()
        # Truncated object, left for repair_json
        return text[start:].strip()

    @classmethod
    def repair_json(cls, broken_json: str) -> Optional[str]:
        """Attempt to repair malformed JSON.

        Common repairs:
        - Remove trailing commas
        - Add missing closing brackets and braces

        Returns:
            Repaired JSON string or None if unrepairable
        """
        if not broken_json:
            return None

        repaired = broken_json.strip()
        repaired = re.sub(r',\s*([}\]])', r'\1', repaired)

        open_brackets = repaired.count('[') - repaired.count(']')
        open_braces = repaired.count('{') - repaired.count('}')
        if open_brackets > 0:
            repaired += ']' * open_brackets
        if open_braces > 0:
            repaired += '}' * open_braces

        try:
            json.loads(repaired)
            return repaired
        except json.JSONDecodeError:
            return None

    @classmethod
    def parse_with_fallbacks(cls, response_text: str) -> tuple[Optional[dict], str, list[str]]:
        """Parse a model response with the full fallback chain.

        Fallback order:
        1. Direct JSON parse
        2. Extract JSON from markdown/text
        3. JSON repair
        4. Return parse failure info

        Returns:
            Tuple of (validated dict or None, fallback_used, errors)
        """
        data, errors, reason_code = ResponseValidator.parse_and_validate(response_text or "")
        if data is not None:
            return data, "direct_parse", []

        extracted = cls.extract_json(response_text)
        if extracted is None:
            if reason_code == ReasonCode.INVALID_JSON:
                reason_code = ReasonCode.EXTRACTION_FAILED
        else:
            data, extract_errors, extract_reason = ResponseValidator.parse_and_validate(extracted)
            if data is not None:
                return data, "extracted_json", []

            repaired = cls.repair_json(extracted)
            if repaired:
                data, repair_errors, repair_reason = ResponseValidator.parse_and_validate(repaired)
                if data is not None:
                    return data, "repaired_json", []
                errors, reason_code = repair_errors, repair_reason
            else:
                errors, reason_code = extract_errors, extract_reason

        logger.debug(f"Response parse failed ({reason_code.value}): {errors}")
        return None, f"parse_failed:{reason_code.value}", errors


_ACTION_CHOICES = " | ".join(f'"{a.value}"' for a in ConciergeAction)
_INTENT_CHOICES = " | ".join(f'"{i.value}"' for i in ConciergeIntent)

RESPONSE_SCHEMA_INSTRUCTIONS = f"""
CRITICAL: You MUST respond with valid JSON matching this schema:
{{
    "message": "Friendly answer with descriptive directions (no coordinates)",
    "locations": [
        {{
            "building_id": "id from the campus data",
            "building_name": "name from the campus data",
            "service_name": "service name if the question is about a service, else omit",
            "service_location": "where the service is inside the building, else omit"
        }}
    ],
    "action": {_ACTION_CHOICES},
    "intent": {_INTENT_CHOICES}
}}

Rules:
- Response MUST be valid JSON only - no markdown, no prose outside JSON
- building_id MUST be copied from the campus data; never invent a building
- NEVER put latitude/longitude numbers in "message"; coordinates are attached by the system
- "locations" may be empty when nothing on campus matches
"""
