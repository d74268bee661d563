"""Pydantic models for the LeChat assistant."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    """Base for models that cross the HTTP boundary.

    The browser speaks camelCase (``pageContext``, ``navigateTo``); Python
    code keeps snake_case attribute names.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Route index
# ---------------------------------------------------------------------------

class RouteInfo(_WireModel):
    """A single documentation page."""

    path: str
    title: str | None = None


class RouteCategory(_WireModel):
    """Routes sharing the same first path segment."""

    name: str
    routes: list[RouteInfo] = Field(default_factory=list)


class RouteIndex(_WireModel):
    """Generated route knowledge, written to ``lechat-routes.json``."""

    generated_at: str
    categories: list[RouteCategory] = Field(default_factory=list)
    init_message: str = ""
    route_knowledge: str = ""
    all_routes: list[str] = Field(default_factory=list)

    def known_routes(self) -> set[str]:
        return set(self.all_routes)

    def title_for(self, path: str) -> str:
        """Title of *path*, falling back to its last segment."""
        for cat in self.categories:
            for route in cat.routes:
                if route.path == path and route.title:
                    return route.title
        if path == "/":
            return "Home"
        segment = path.rstrip("/").rsplit("/", 1)[-1]
        return segment.replace("_", " ").replace("-", " ").strip().title() or path

    def category_names(self) -> list[str]:
        return [c.name for c in self.categories]


# ---------------------------------------------------------------------------
# Chat protocol
# ---------------------------------------------------------------------------

Role = Literal["user", "assistant", "system"]


class ChatMessage(_WireModel):
    role: Role
    content: str


class PageContext(_WireModel):
    """The page the reader is currently looking at."""

    title: str
    url: str


class Preference(_WireModel):
    """A validated ``SET_PREFERENCE`` directive."""

    key: str
    value: str


class ChatRequest(_WireModel):
    message: str
    page_context: PageContext | None = None
    conversation_history: list[ChatMessage] = Field(default_factory=list)
    preferences: dict[str, str] = Field(default_factory=dict)


class ChatResponse(_WireModel):
    content: str
    navigate_to: str | None = None
    navigate_title: str | None = None
    set_context: str | None = None
    set_preference: Preference | None = None


class SuggestionRequest(_WireModel):
    query: str = ""


class SuggestionResponse(_WireModel):
    suggestions: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Client-side sessions
# ---------------------------------------------------------------------------

class Session(_WireModel):
    """A locally persisted conversation thread."""

    id: str
    title: str = "New chat"
    created_at: float
    updated_at: float
    messages: list[ChatMessage] = Field(default_factory=list)
    page_context: PageContext | None = None


# ---------------------------------------------------------------------------
# Project configuration
# ---------------------------------------------------------------------------

class LeChatConfig(BaseModel):
    """User configuration stored in ``.lechat/config.toml``.

    CLI flags override these values for a single invocation.
    Precedence: CLI flag > config.toml > default.
    """

    model: str = "mistral-small-latest"
    """Mistral model used for chat and suggestions."""

    temperature: float = 0.7
    max_tokens: int = 1000

    suggestion_temperature: float = 0.2
    suggestion_max_tokens: int = 150

    chat_timeout: float = 30.0
    """Upper bound in seconds for one chat turn."""

    suggestion_timeout: float = 5.0

    max_history: int = 10
    """Most recent history messages forwarded to the LLM."""

    max_message_chars: int = 4000

    docs_dirs: list[str] = Field(default_factory=lambda: ["docs"])
    """Documentation trees to scan, as ``dir`` or ``dir=/base-route``."""

    route_index: str = "lechat-routes.json"
    """Route index path, relative to the project root."""

    assistant_name: str = "LeChat"
    product_name: str = "Mistral AI"
