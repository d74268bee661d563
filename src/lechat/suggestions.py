"""Search suggestions -- LLM query completions and static starter questions."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .models import LeChatConfig, RouteIndex
from .prompts import MAX_SUGGESTIONS, build_suggestion_messages

if TYPE_CHECKING:
    from .llm import LLMClient

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")


def _is_non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _take(values: list[Any]) -> list[str]:
    out: list[str] = []
    for v in values:
        if not _is_non_empty_string(v):
            continue
        text = v.strip()
        if text not in out:
            out.append(text)
        if len(out) >= MAX_SUGGESTIONS:
            break
    return out


def parse_suggestion_payload(payload: Any) -> list[str]:
    """Extract up to ``MAX_SUGGESTIONS`` questions from a loosely shaped payload.

    Models don't always honour the requested shape, so a bare list, a JSON
    string (fenced or not), or any dict holding a list are all accepted.
    """
    if not payload:
        return []

    if isinstance(payload, list):
        return _take(payload)

    if isinstance(payload, str):
        cleaned = _FENCE_RE.sub("", payload.strip())
        try:
            return parse_suggestion_payload(json.loads(cleaned))
        except json.JSONDecodeError:
            logger.warning("Failed to parse suggestion payload: %.80r", payload)
            return []

    if isinstance(payload, dict):
        if payload.get("verdict") == "off_topic":
            return []
        if isinstance(payload.get("suggestions"), list):
            return _take(payload["suggestions"])
        first = next((v for v in payload.values() if isinstance(v, list)), None)
        if first is not None:
            return _take(first)

    return []


class SuggestionService:
    """Asks the LLM for short query completions."""

    def __init__(
        self,
        llm_client: LLMClient,
        route_index: RouteIndex | None = None,
        config: LeChatConfig | None = None,
    ) -> None:
        self.llm = llm_client
        self.route_index = route_index
        self.config = config or LeChatConfig()

    async def suggest(self, query: str) -> list[str]:
        if not query or not query.strip():
            return []

        route_knowledge = self.route_index.route_knowledge if self.route_index else ""
        messages = build_suggestion_messages(
            query, route_knowledge, product_name=self.config.product_name
        )
        try:
            raw = await asyncio.wait_for(
                self.llm.chat(
                    messages,
                    json_mode=True,
                    temperature=self.config.suggestion_temperature,
                    max_tokens=self.config.suggestion_max_tokens,
                ),
                timeout=self.config.suggestion_timeout,
            )
        except Exception as exc:  # noqa: BLE001 -- suggestions are best-effort
            logger.warning("Suggestion request failed: %s", exc)
            return []
        return parse_suggestion_payload(raw)


# ---------------------------------------------------------------------------
# Static starter questions
# ---------------------------------------------------------------------------

GENERAL_SUGGESTIONS = [
    "What is the Mistral Platform?",
    "How do I generate an API key?",
    "Can fine-tuning improve my model performance?",
]

API_SUGGESTIONS = [
    "How do I use the Chat Completions API?",
    "What are the rate limits?",
    "Show me an example of Function Calling",
]

COOKBOOK_SUGGESTIONS = [
    "How do I use RAG with Mistral?",
    "Example of tool calling with LangChain",
    "How to do fine-tuning on a custom dataset?",
]

PAGE_SPECIFIC_SUGGESTIONS: dict[str, list[str]] = {
    "/capabilities/vision": [
        "How do I pass an image URL?",
        "What image formats are supported?",
        "Show me a code example for Vision",
    ],
    "/capabilities/function_calling": [
        "How do I define tools?",
        "What is the JSON mode?",
        "Can I use function calling with streaming?",
    ],
    "/deployment/cloud/azure": [
        "How do I deploy on Azure?",
        "What models are available on Azure?",
        "Pricing for Azure deployment",
    ],
}


@dataclass
class SuggestionSection:
    match: Callable[[str | None], bool]
    suggestions: list[str]


def prefix_section(prefix: str, suggestions: list[str]) -> SuggestionSection:
    return SuggestionSection(
        match=lambda pathname: bool(pathname and pathname.startswith(prefix)),
        suggestions=suggestions,
    )


@dataclass
class SuggestionConfig:
    default: list[str] = field(default_factory=lambda: list(GENERAL_SUGGESTIONS))
    sections: list[SuggestionSection] = field(
        default_factory=lambda: [
            prefix_section("/api", API_SUGGESTIONS),
            prefix_section("/cookbooks", COOKBOOK_SUGGESTIONS),
        ]
    )
    page_overrides: dict[str, list[str]] = field(
        default_factory=lambda: dict(PAGE_SPECIFIC_SUGGESTIONS)
    )


DEFAULT_SUGGESTION_CONFIG = SuggestionConfig()


def get_page_suggestions(
    pathname: str | None,
    config: SuggestionConfig = DEFAULT_SUGGESTION_CONFIG,
) -> list[str]:
    """Starter questions for the page at *pathname*."""
    if pathname and pathname in config.page_overrides:
        return config.page_overrides[pathname]
    for section in config.sections:
        if section.match(pathname):
            return section.suggestions
    return config.default
