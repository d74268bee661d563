"""LeChat - documentation assistant with in-chat navigation."""

from .models import (  # noqa: F401 -- public re-exports
    ChatMessage,
    ChatRequest,
    ChatResponse,
    LeChatConfig,
    PageContext,
    Preference,
    RouteCategory,
    RouteIndex,
    RouteInfo,
    Session,
)
from .chat import ChatService
from .directives import parse_directives, resolve_route
from .llm import LLMClient, LLMError
from .routes import build_route_index
from .suggestions import SuggestionService, parse_suggestion_payload

__version__ = "0.1.0"

__all__ = [
    "ChatService",
    "LLMClient",
    "LLMError",
    "SuggestionService",
    "build_route_index",
    "parse_directives",
    "parse_suggestion_payload",
    "resolve_route",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "LeChatConfig",
    "PageContext",
    "Preference",
    "RouteCategory",
    "RouteIndex",
    "RouteInfo",
    "Session",
]
