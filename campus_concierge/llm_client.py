"""Generative fallback adapter for the Campus Concierge.

This module provides:
- FallbackClient: abstract interface for any JSON-producing model backend
- OpenAIFallbackClient: OpenAI-compatible chat completions in JSON mode
- OllamaFallbackClient: local Ollama /api/generate with ``format: json``
- build_fallback_prompt() / resolve_with_model(): prompt construction,
  parsing, validation and re-hydration against the knowledge base

Architecture:
    engine (low confidence, fallback allowed) -> resolve_with_model()
        -> FallbackClient.generate_json() -> raw JSON text
        -> ResponseParser (extract / repair / validate)
        -> locations re-hydrated from the knowledge base -> draft response

Failure semantics:
    HTTP 429 or quota/rate-limit wording -> QuotaExceededError
    any other provider failure           -> FallbackProviderError
    schema-invalid output                -> FallbackMalformedError
    No retries happen here; retry policy belongs to the caller.
"""

import json
import logging
import re
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
import openai

from .config import Settings
from .exceptions import FallbackMalformedError, FallbackProviderError, QuotaExceededError
from .knowledge_base import KnowledgeBase
from .response_schema import (
    RESPONSE_SCHEMA_INSTRUCTIONS,
    ConciergeAction,
    ConciergeIntent,
    ConciergeResponse,
    LocationRef,
    ResponseParser,
)

logger = logging.getLogger(__name__)

_QUOTA_RE = re.compile(
    r"\bquota\b|rate[\s_-]?limit|too many requests|resource[\s_-]?exhausted",
    re.IGNORECASE,
)

SYSTEM_PROMPT = (
    "You are a campus navigation assistant helping students find places on campus. "
    "You answer only with JSON."
)


def looks_like_quota_error(text: str) -> bool:
    """True when provider error text talks about quota or rate limits."""
    return bool(text) and bool(_QUOTA_RE.search(text))


# =============================================================================
# Fallback Client Interface
# =============================================================================

class FallbackClient(ABC):
    """Base class for generative fallback backends.

    Implementations send one prompt, request JSON output and return the raw
    response text. They classify provider failures into the typed
    FallbackError hierarchy and never retry.
    """

    @abstractmethod
    async def generate_json(self, prompt: str) -> str:
        """Send the prompt and return the raw model output."""
        pass

    @abstractmethod
    def get_client_type(self) -> str:
        """Return client type identifier."""
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if client is properly configured."""
        pass


# =============================================================================
# OpenAI-compatible Client
# =============================================================================

class OpenAIFallbackClient(FallbackClient):
    """Fallback client for OpenAI and OpenAI-compatible endpoints."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4o-mini",
        base_url: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: int = 800,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the OpenAI client.

        Args:
            api_key: Provider API key
            model: Chat model name
            base_url: Optional OpenAI-compatible endpoint
            temperature: Sampling temperature
            max_tokens: Completion token cap
            http_client: Optional httpx client (tests inject a mock transport)
        """
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = openai.AsyncOpenAI(
            api_key=api_key or "unset",
            base_url=base_url,
            max_retries=0,
            http_client=http_client,
        )

    def get_client_type(self) -> str:
        return "openai"

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def generate_json(self, prompt: str) -> str:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "response_format": {"type": "json_object"},
            "temperature": self.temperature,
        }
        if self.model.startswith("gpt-5"):
            kwargs["max_completion_tokens"] = self.max_tokens
        else:
            kwargs["max_tokens"] = self.max_tokens

        try:
            response = await self._client.chat.completions.create(**kwargs)
        except openai.RateLimitError as e:
            raise QuotaExceededError(f"OpenAI rate limit: {e.message}", status_code=429) from e
        except openai.APIStatusError as e:
            if looks_like_quota_error(e.message):
                raise QuotaExceededError(f"OpenAI quota: {e.message}", status_code=e.status_code) from e
            raise FallbackProviderError(
                f"OpenAI returned HTTP {e.status_code}: {e.message}",
                status_code=e.status_code,
            ) from e
        except openai.APIError as e:
            raise FallbackProviderError(f"OpenAI request failed: {e}") from e

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""


# =============================================================================
# Ollama Client
# =============================================================================

class OllamaFallbackClient(FallbackClient):
    """Fallback client for a local Ollama server."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama3.1:8b",
        temperature: float = 0.2,
        max_tokens: int = 800,
        timeout: float = 120.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._http_client = http_client

    def get_client_type(self) -> str:
        return "ollama"

    def is_available(self) -> bool:
        return bool(self.base_url and self.model)

    async def generate_json(self, prompt: str) -> str:
        payload = {
            "model": self.model,
            "prompt": f"{SYSTEM_PROMPT}\n\n{prompt}",
            "stream": False,
            "format": "json",
            "options": {"temperature": self.temperature, "num_predict": self.max_tokens},
        }
        url = f"{self.base_url}/api/generate"

        try:
            if self._http_client is not None:
                response = await self._http_client.post(url, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=payload)
        except httpx.HTTPError as e:
            raise FallbackProviderError(f"Ollama request failed: {e}") from e

        _raise_for_status(response, "Ollama")

        try:
            data = response.json()
        except ValueError as e:
            raise FallbackProviderError("Ollama returned a non-JSON envelope") from e

        if isinstance(data, dict) and data.get("error"):
            error = str(data["error"])
            if looks_like_quota_error(error):
                raise QuotaExceededError(f"Ollama: {error}", status_code=None)
            raise FallbackProviderError(f"Ollama error: {error}")

        return data.get("response", "") if isinstance(data, dict) else ""


def _raise_for_status(response: httpx.Response, provider: str) -> None:
    """Map a provider HTTP response to the fallback error hierarchy."""
    if response.status_code == 429:
        raise QuotaExceededError(f"{provider} rate limit (HTTP 429)", status_code=429)
    if response.is_success:
        return
    body = response.text[:500]
    if looks_like_quota_error(body):
        raise QuotaExceededError(f"{provider} quota: {body}", status_code=response.status_code)
    raise FallbackProviderError(
        f"{provider} returned HTTP {response.status_code}: {body}",
        status_code=response.status_code,
    )


# =============================================================================
# Client Factory
# =============================================================================

def create_fallback_client(settings: Settings) -> Optional[FallbackClient]:
    """Create the fallback client selected by ``LLM_PROVIDER``.

    Returns:
        A configured client, or None when the provider is not configured
    """
    provider = (settings.llm_provider or "").strip().lower()

    if provider == "openai":
        if not settings.openai_api_key:
            logger.info("OPENAI_API_KEY not set; generative fallback disabled")
            return None
        client = OpenAIFallbackClient(
            api_key=settings.openai_api_key,
            model=settings.openai_chat_model,
            base_url=settings.openai_base_url,
            temperature=settings.fallback_temperature,
            max_tokens=settings.fallback_max_tokens,
        )
    elif provider == "ollama":
        client = OllamaFallbackClient(
            base_url=settings.ollama_url,
            model=settings.ollama_model,
            temperature=settings.fallback_temperature,
            max_tokens=settings.fallback_max_tokens,
        )
    else:
        logger.warning(f"Unknown LLM_PROVIDER '{settings.llm_provider}'; generative fallback disabled")
        return None

    logger.info(f"Created {client.get_client_type()} fallback client")
    return client


# =============================================================================
# Prompt and Resolution
# =============================================================================

def build_fallback_prompt(query: str, knowledge_base: KnowledgeBase) -> str:
    """Build the schema-constrained prompt for the generative fallback."""
    campus_json = json.dumps(knowledge_base.to_prompt_context(), indent=2, ensure_ascii=False)

    return f"""You are a campus navigation assistant helping students find places on campus.

Campus locations:
{campus_json}

User question: {query}

IMPORTANT INSTRUCTIONS:
- Do NOT mention latitude/longitude coordinates in your message
- Use descriptive directions with landmarks, like "near the cafeteria" or "behind the admin block"
- Give clear directions using building names, floors and rooms from the campus data
- Only use buildings that appear in the campus locations above
{RESPONSE_SCHEMA_INSTRUCTIONS}
Choosing "action":
- "take me to", "navigate to", "directions", "from X to Y" -> "show_route"
- "where is", "show me" -> "show_location"
- more than one place in the answer -> "show_multiple_locations"

Example good messages:
- "The ID Card Office is in the Student Services Building on the Ground Floor, Room 101."
- "The library is next to the main gate, across from the cafeteria."

Example bad messages:
- "The library is at coordinates 27.6821, 85.3193"
- "Location: lat 27.6821, lng 85.3193"

Respond ONLY with JSON."""


def hydrate_locations(entries: list[dict], knowledge_base: KnowledgeBase) -> list[LocationRef]:
    """Rebuild model-proposed locations from the knowledge base.

    Buildings are resolved by ``building_id`` or exact ``building_name``;
    unknown buildings are dropped. Coordinates and service details always
    come from the knowledge base, never from the model.
    """
    locations = []
    for entry in entries:
        record = None
        building_id = entry.get("building_id")
        if isinstance(building_id, str):
            record = knowledge_base.get(building_id.strip())
        building_name = entry.get("building_name")
        if record is None and isinstance(building_name, str):
            record = knowledge_base.find_by_name(building_name)
        if record is None:
            logger.info(f"Dropping unknown building from model output: {building_id or building_name!r}")
            continue

        service_name = entry.get("service_name")
        service = record.find_service(service_name) if isinstance(service_name, str) else None

        locations.append(LocationRef(
            building_id=record.id,
            building_name=record.name,
            coordinates=record.coordinates,
            service_name=service.name if service else None,
            service_location=(service.location_note or None) if service else None,
        ))
    return locations


def _coerce_intent(
    raw_intent: Any,
    default_intent: ConciergeIntent,
    action: ConciergeAction,
    has_locations: bool,
) -> ConciergeIntent:
    try:
        intent = ConciergeIntent(raw_intent)
    except ValueError:
        intent = default_intent
    if intent == ConciergeIntent.UNKNOWN and has_locations:
        if action == ConciergeAction.SHOW_ROUTE:
            return ConciergeIntent.ROUTE_NAVIGATION
        return ConciergeIntent.LOCATION_LOOKUP
    return intent


async def resolve_with_model(
    query: str,
    knowledge_base: KnowledgeBase,
    client: FallbackClient,
    default_intent: ConciergeIntent = ConciergeIntent.UNKNOWN,
) -> ConciergeResponse:
    """Resolve a query through the generative fallback.

    Args:
        query: Raw user query, repeated verbatim in the prompt
        knowledge_base: Campus knowledge base embedded as context
        client: Configured fallback client
        default_intent: Intent used when the model omits a valid one

    Returns:
        Draft response (not yet normalized)

    Raises:
        QuotaExceededError: Provider rate-limited the call
        FallbackProviderError: Provider call failed
        FallbackMalformedError: Output failed schema validation
    """
    prompt = build_fallback_prompt(query, knowledge_base)

    start = time.time()
    raw = await client.generate_json(prompt)
    latency = int((time.time() - start) * 1000)
    logger.info(f"Fallback generation ({client.get_client_type()}): {latency}ms")

    data, fallback_used, errors = ResponseParser.parse_with_fallbacks(raw)
    if data is None:
        raise FallbackMalformedError(
            f"Model output failed schema validation ({fallback_used})",
            errors=errors,
            raw_response=raw,
        )
    if fallback_used != "direct_parse":
        logger.info(f"Model output recovered via {fallback_used}")

    action = ConciergeAction(data["action"])
    locations = hydrate_locations(data["locations"], knowledge_base)

    return ConciergeResponse(
        message=data["message"],
        locations=locations,
        intent=_coerce_intent(data.get("intent"), default_intent, action, bool(locations)),
        action=action,
    )
