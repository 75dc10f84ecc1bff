"""HTTP boundary for the Campus Concierge.

A thin FastAPI layer over ConciergeEngine. It owns request validation, the
caller-side deadline on the generative fallback, and the mapping of typed
engine errors to the ``{success, data, message, errorType}`` envelope.
No decision logic lives here.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from .config import Settings, settings as default_settings
from .engine import ConciergeEngine
from .exceptions import EmptyQueryError, FallbackError, QuotaExceededError
from .llm_client import create_fallback_client
from .loaders import load_knowledge_base
from .observability import get_logger, metrics, new_request_id

logger = logging.getLogger(__name__)

EMPTY_QUERY_MESSAGE = "No query provided"
QUOTA_MESSAGE = "API limit reached, please try again in a minute."
TIMEOUT_MESSAGE = "The assistant took too long to answer. Please try again."
GENERAL_ERROR_MESSAGE = "Something went wrong while answering your question. Please try again."


# Pydantic models
class ChatRequest(BaseModel):
    query: Optional[str] = None
    allow_llm: Optional[bool] = None  # defaults to ALLOW_LLM_FALLBACK


class ChatResponse(BaseModel):
    success: bool
    data: Optional[dict[str, Any]] = None
    message: Optional[str] = None
    errorType: Optional[str] = None


def _error(message: str, error_type: Optional[str] = None) -> ChatResponse:
    return ChatResponse(success=False, message=message, errorType=error_type)


def create_app(
    engine: Optional[ConciergeEngine] = None,
    app_settings: Optional[Settings] = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        engine: Pre-built engine (tests inject one); when omitted the
            knowledge base and fallback client are loaded at startup
        app_settings: Settings override, defaults to the global settings
    """
    cfg = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Load the knowledge base once per process."""
        if app.state.engine is None:
            kb_path = cfg.resolve_path(cfg.knowledge_base_path)
            knowledge_base = load_knowledge_base(kb_path)
            fallback_client = create_fallback_client(cfg) if cfg.allow_llm_fallback else None
            app.state.engine = ConciergeEngine(knowledge_base, fallback_client=fallback_client)
            logger.info(
                f"Concierge ready: {len(knowledge_base)} locations, "
                f"fallback={'on' if fallback_client else 'off'}"
            )

        yield  # App is running

    app = FastAPI(
        title="Campus Concierge",
        description="Resolves student questions into campus locations and map actions",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.state.settings = cfg

    # CORS for the map frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.post("/api/chat", response_model=ChatResponse, response_model_exclude_none=True)
    async def chat(body: ChatRequest, request: Request) -> ChatResponse:
        """Resolve one query into a ConciergeResponse envelope."""
        query = (body.query or "").strip()
        if not query:
            return _error(EMPTY_QUERY_MESSAGE)

        concierge: Optional[ConciergeEngine] = request.app.state.engine
        if concierge is None:
            return _error(GENERAL_ERROR_MESSAGE, "general_error")

        request_id = new_request_id()
        log = get_logger("chat_api", request_id=request_id)
        allow_llm = cfg.allow_llm_fallback if body.allow_llm is None else body.allow_llm

        try:
            response = await asyncio.wait_for(
                concierge.resolve(query, allow_llm=allow_llm, request_id=request_id),
                timeout=cfg.fallback_timeout_seconds,
            )
        except EmptyQueryError:
            return _error(EMPTY_QUERY_MESSAGE)
        except QuotaExceededError as e:
            log.warn("quota_exceeded", error=str(e))
            return _error(QUOTA_MESSAGE, e.error_type)
        except asyncio.TimeoutError:
            log.warn("timeout", timeout_seconds=cfg.fallback_timeout_seconds)
            return _error(TIMEOUT_MESSAGE, "general_error")
        except FallbackError as e:
            log.error("fallback_failed", error=str(e))
            return _error(GENERAL_ERROR_MESSAGE, e.error_type)
        except Exception:
            logger.exception("Chat error")
            return _error(GENERAL_ERROR_MESSAGE, "general_error")

        return ChatResponse(success=True, data=response.to_dict())

    @app.get("/health")
    async def health(request: Request):
        """Health check endpoint for service monitoring."""
        concierge: Optional[ConciergeEngine] = request.app.state.engine
        return {
            "status": "ok" if concierge is not None else "starting",
            "locations": len(concierge.knowledge_base) if concierge else 0,
            "fallback_available": bool(concierge and concierge.fallback_client),
        }

    @app.get("/api/metrics", response_class=PlainTextResponse)
    async def metrics_endpoint():
        """Prometheus text exposition."""
        return PlainTextResponse(metrics.to_prometheus())

    return app


def run_server(host: str = "127.0.0.1", port: int = 8081):
    """Run the chat API server."""
    import uvicorn
    uvicorn.run(create_app(), host=host, port=port)
