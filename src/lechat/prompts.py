"""System prompt assembly for chat turns and search suggestions."""

from __future__ import annotations

import re

from .models import PageContext, RouteIndex

MAX_SUGGESTIONS = 3
MAX_QUERY_CHARS = 280

_NAVIGATION_HINTS = (
    "navigate",
    "go to",
    "goto",
    "open",
    "take me",
    "bring me",
    "show me",
    "where",
    "which page",
    "link",
    "find",
    "page",
    "section",
)

_CHAT_SYSTEM_TEMPLATE = """\
You are {assistant_name}, a helpful AI assistant for {product_name} documentation. \
You are currently helping a user understand the documentation page titled \
"{page_title}" ({page_url}).

IMPORTANT: Only answer questions about the {product_name} documentation. If the user \
asks about topics not related to the documentation, politely remind them that you \
can only help with documentation-related questions.

Be concise, helpful, and reference specific parts of the documentation when relevant. \
If you're not sure about something, suggest the user check the official documentation.
{preferences_block}
**Control lines:**
- If the user asks to focus on, or use as context, a specific page, end your response \
with: "SET_CONTEXT: /exact-route"
- If the user states a lasting preference, end your response with \
"SET_PREFERENCE: key=value". Keys: response_style (concise|balanced|detailed), \
code_language (python|typescript|javascript|curl|java|go), \
expertise (beginner|intermediate|expert), language (reply language).
- Put each control line on its own line. Never explain them to the user.

{routes_block}"""

_STYLE_HINTS = {
    ("response_style", "concise"): "Keep answers short: a few sentences or bullets.",
    ("response_style", "detailed"): "Give thorough answers with examples.",
    ("expertise", "beginner"): "Explain concepts simply and avoid unexplained jargon.",
    ("expertise", "expert"): "Assume the reader is experienced; skip basics.",
}

_SUGGESTION_SYSTEM_TEMPLATE = """\
You are an expert search assistant for {product_name} documentation.
Your goal is to predict the most likely "how-to" or "concept" question a user is \
trying to ask based on their partial input.

Documentation map:
{route_knowledge}

Rules:
- Generate 3-5 high-quality, precise questions that are likely to be "Frequently Asked Questions".
- Questions MUST be relevant to the documentation map above.
- Phrasing should be natural and professional (e.g., "How do I...", "What is...", "Best practices for...").
- diverse: cover different angles (implementation, concept, troubleshooting) if ambiguity exists.
- Ignore queries about general trivia, sports, or other vendors.
- STRICT JSON OUTPUT: {{"suggestions":["Question 1", "Question 2", ...], "verdict":"on_topic"|"off_topic"}}.
- If the query is completely unrelated to AI/{product_name}, set verdict to "off_topic" and suggestions to []."""


def has_navigation_intent(message: str) -> bool:
    """Whether *message* asks to move to, or locate, a page."""
    q = message.lower()
    return any(re.search(rf"\b{re.escape(hint)}\b", q) for hint in _NAVIGATION_HINTS)


def _preferences_block(preferences: dict[str, str]) -> str:
    if not preferences:
        return ""
    lines = ["", "**User preferences:**"]
    for key in sorted(preferences):
        value = preferences[key]
        lines.append(f"- {key}: {value}")
        hint = _STYLE_HINTS.get((key, value))
        if hint:
            lines.append(f"  {hint}")
    if "code_language" in preferences:
        lines.append(f"  Prefer {preferences['code_language']} for code samples.")
    if "language" in preferences:
        lines.append(f"  Reply in {preferences['language']}.")
    lines.append("")
    return "\n".join(lines)


def build_chat_system_prompt(
    page_context: PageContext | None,
    route_index: RouteIndex | None,
    preferences: dict[str, str] | None = None,
    *,
    include_routes: bool = False,
    assistant_name: str = "LeChat",
    product_name: str = "Mistral AI",
) -> str:
    """Build the system prompt for one chat turn.

    The full route list is only included when *include_routes* is set; it is
    large and only useful when the user is looking for a page.
    """
    if route_index is None or not route_index.all_routes:
        routes_block = "Do not emit NAVIGATE lines: no route list is available."
    elif include_routes:
        routes_block = route_index.route_knowledge
    else:
        routes_block = (
            "Documentation sections: "
            f"{', '.join(route_index.category_names()) or '(none)'}.\n"
            "Do NOT use the NAVIGATE command unless the user explicitly asks to go to a page."
        )

    ctx = page_context or PageContext(title="Home", url="/")
    return _CHAT_SYSTEM_TEMPLATE.format(
        assistant_name=assistant_name,
        product_name=product_name,
        page_title=ctx.title,
        page_url=ctx.url,
        preferences_block=_preferences_block(preferences or {}),
        routes_block=routes_block,
    ).rstrip()


def sanitize_query(query: str) -> str:
    return re.sub(r"\s+", " ", query.strip())[:MAX_QUERY_CHARS]


def build_suggestion_messages(
    query: str,
    route_knowledge: str = "",
    *,
    product_name: str = "Mistral AI",
) -> list[dict[str, str]]:
    system = _SUGGESTION_SYSTEM_TEMPLATE.format(
        product_name=product_name,
        route_knowledge=route_knowledge or "(unavailable)",
    )
    return [
        {"role": "system", "content": system},
        {
            "role": "user",
            "content": (
                f'User query: "{sanitize_query(query)}". '
                f"Generate up to {MAX_SUGGESTIONS} suggestions."
            ),
        },
    ]
