"""Chat endpoint logic -- one stateless request/response turn."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from .directives import ROUTE_ALIASES, parse_directives, strip_directives
from .models import ChatMessage, ChatRequest, ChatResponse, LeChatConfig, RouteIndex
from .prompts import build_chat_system_prompt, has_navigation_intent

if TYPE_CHECKING:
    from .llm import LLMClient

logger = logging.getLogger(__name__)


class ChatRequestError(ValueError):
    """The request cannot be answered (blank message, bad payload)."""


class ChatTimeoutError(TimeoutError):
    """The LLM did not answer within the configured bound."""


def trim_history(
    history: list[ChatMessage],
    max_messages: int = 10,
    max_chars: int = 4000,
) -> list[dict[str, str]]:
    """Prepare prior turns for the LLM.

    Only user/assistant turns are forwarded; client-supplied system messages
    are dropped.  Assistant turns lose their directives so the model does not
    repeat stale navigation.
    """
    out: list[dict[str, str]] = []
    for msg in history:
        if msg.role not in ("user", "assistant"):
            continue
        content = strip_directives(msg.content) if msg.role == "assistant" else msg.content.strip()
        if not content:
            continue
        out.append({"role": msg.role, "content": content[:max_chars]})
    if max_messages <= 0:
        return []
    return out[-max_messages:]


class ChatService:
    """Builds prompts, calls the LLM and parses directives for one turn."""

    def __init__(
        self,
        llm_client: LLMClient,
        route_index: RouteIndex | None = None,
        config: LeChatConfig | None = None,
        *,
        aliases: dict[str, str] | None = None,
    ) -> None:
        self.llm = llm_client
        self.route_index = route_index
        self.config = config or LeChatConfig()
        self.aliases = ROUTE_ALIASES if aliases is None else aliases

    def build_messages(self, request: ChatRequest) -> list[dict[str, str]]:
        cfg = self.config
        message = request.message.strip()[: cfg.max_message_chars]
        include_routes = has_navigation_intent(message)
        system = build_chat_system_prompt(
            request.page_context,
            self.route_index,
            request.preferences,
            include_routes=include_routes,
            assistant_name=cfg.assistant_name,
            product_name=cfg.product_name,
        )
        return [
            {"role": "system", "content": system},
            *trim_history(request.conversation_history, cfg.max_history, cfg.max_message_chars),
            {"role": "user", "content": message},
        ]

    async def respond(self, request: ChatRequest) -> ChatResponse:
        if not request.message.strip():
            raise ChatRequestError("Message must not be empty.")

        messages = self.build_messages(request)
        try:
            raw = await asyncio.wait_for(
                self.llm.chat(
                    messages,
                    temperature=self.config.temperature,
                    max_tokens=self.config.max_tokens,
                ),
                timeout=self.config.chat_timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.warning("Chat turn timed out after %.1fs", self.config.chat_timeout)
            raise ChatTimeoutError(
                f"The assistant did not answer within {self.config.chat_timeout:g} seconds."
            ) from exc

        known = self.route_index.known_routes() if self.route_index else set()
        parsed = parse_directives(raw, known, self.aliases)

        navigate_title = None
        if parsed.navigate_to and self.route_index is not None:
            navigate_title = self.route_index.title_for(parsed.navigate_to)

        content = parsed.content
        if not content:
            # The model answered with directives only.
            if parsed.navigate_to:
                content = f"Taking you to {navigate_title or parsed.navigate_to}."
            elif parsed.set_context:
                content = f"Context updated to {parsed.set_context}."
            elif parsed.set_preference:
                content = "Preference saved."
            else:
                content = "I couldn't find that page in the documentation."

        return ChatResponse(
            content=content,
            navigate_to=parsed.navigate_to,
            navigate_title=navigate_title,
            set_context=parsed.set_context,
            set_preference=parsed.set_preference,
        )
