"""FastAPI server exposing the LeChat chat and suggestion endpoints."""

from __future__ import annotations

import logging
from pathlib import Path

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..chat import ChatRequestError, ChatService, ChatTimeoutError
from ..llm import LLMClient
from ..models import (
    ChatRequest,
    ChatResponse,
    LeChatConfig,
    RouteIndex,
    SuggestionRequest,
    SuggestionResponse,
)
from ..routes import load_route_index
from ..suggestions import SuggestionService, get_page_suggestions

logger = logging.getLogger(__name__)

app = FastAPI(title="lechat", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# Set by start_server() before uvicorn starts.
_route_index_path: Path | None = None
_route_index_cache: RouteIndex | None = None
_config: LeChatConfig = LeChatConfig()
_llm_client: LLMClient | None = None


def configure(
    route_index_path: Path | None,
    config: LeChatConfig | None = None,
    llm_client: LLMClient | None = None,
) -> None:
    """Point the app at a route index and LLM client; clears cached state."""
    global _route_index_path, _route_index_cache, _config, _llm_client
    _route_index_path = route_index_path.resolve() if route_index_path else None
    _route_index_cache = None
    _config = config or LeChatConfig()
    _llm_client = llm_client


def _load_route_index() -> RouteIndex | None:
    """Load and cache the route index; None when not generated yet."""
    global _route_index_cache
    if _route_index_cache is not None:
        return _route_index_cache
    if _route_index_path is None or not _route_index_path.is_file():
        return None
    try:
        _route_index_cache = load_route_index(_route_index_path)
    except (OSError, ValueError) as exc:
        logger.error("Invalid route index %s: %s", _route_index_path, exc)
        return None
    return _route_index_cache


def _require_llm() -> LLMClient:
    if _llm_client is None:
        raise HTTPException(
            status_code=503, detail="LLM not configured (missing MISTRAL_API_KEY)."
        )
    return _llm_client


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status)


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


@app.post("/api/lechat", response_model=ChatResponse, response_model_by_alias=True)
async def lechat(req: ChatRequest):
    """Answer one chat turn and return any validated directives."""
    if not req.message.strip():
        raise HTTPException(status_code=400, detail="Message must not be empty.")
    llm = _require_llm()

    service = ChatService(llm, _load_route_index(), _config)
    try:
        return await service.respond(req)
    except ChatRequestError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ChatTimeoutError as exc:
        return _error(504, str(exc))
    except Exception as exc:
        logger.error("LeChat API error: %s", exc)
        return _error(500, str(exc) or "An error occurred while processing your request")


# ---------------------------------------------------------------------------
# Suggestions
# ---------------------------------------------------------------------------


@app.post("/api/lechat/suggestions", response_model=SuggestionResponse)
async def lechat_suggestions(req: SuggestionRequest) -> SuggestionResponse:
    """LLM query completions; failures degrade to an empty list."""
    if not req.query.strip() or _llm_client is None:
        return SuggestionResponse()
    service = SuggestionService(_llm_client, _load_route_index(), _config)
    return SuggestionResponse(suggestions=await service.suggest(req.query))


@app.get("/api/lechat/suggestions", response_model=SuggestionResponse)
async def page_suggestions(path: str | None = None) -> SuggestionResponse:
    """Static starter questions for a documentation page."""
    return SuggestionResponse(suggestions=get_page_suggestions(path))


# ---------------------------------------------------------------------------
# Route index
# ---------------------------------------------------------------------------


@app.get("/api/lechat/routes")
async def get_routes() -> JSONResponse:
    index = _load_route_index()
    if index is None:
        raise HTTPException(status_code=404, detail="Route index not generated.")
    return JSONResponse(index.model_dump(mode="json", by_alias=True))


# ---------------------------------------------------------------------------
# Server launcher
# ---------------------------------------------------------------------------


def start_server(
    route_index_path: Path | None,
    config: LeChatConfig | None = None,
    llm_client: LLMClient | None = None,
    host: str = "127.0.0.1",
    port: int = 8000,
) -> None:
    """Start the API server."""
    import uvicorn

    configure(route_index_path, config, llm_client)
    uvicorn.run(app, host=host, port=port)
