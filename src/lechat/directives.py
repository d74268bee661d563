"""Directive parser -- extracts control lines from raw LLM replies.

The assistant answers in free text but may append out-of-band directives:

``NAVIGATE: /route``
    Move the reader to another documentation page.
``SET_CONTEXT: /route``
    Make another page the context for the following turns.
``SET_PREFERENCE: key=value``
    Remember a lasting user preference.

Directives are always removed from the displayed content.  Route arguments
are validated against the known route set; models routinely invent paths
(``/docs/vision``, ``/function-calling``), so a few correction strategies
are tried before a target is rejected.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from urllib.parse import urlsplit

from .models import Preference

logger = logging.getLogger(__name__)

DIRECTIVE_KINDS = ("NAVIGATE", "SET_CONTEXT", "SET_PREFERENCE")

_DIRECTIVE_RE = re.compile(
    r"[ \t]*[*_`\"']*\b(?P<kind>NAVIGATE|SET_CONTEXT|SET_PREFERENCE)[*_`]*[ \t]*:"
    r"[*_`]*[ \t]*(?P<arg>[^\n]*)"
)
_MD_LINK_RE = re.compile(r"\[[^\]]*\]\(\s*<?([^)\s>]+)>?\s*\)")
_PREFERENCE_RE = re.compile(r"^\s*(?P<key>[A-Za-z][\w-]*)\s*[=:]\s*(?P<value>.+?)\s*$")

# Prefixes models like to prepend to otherwise valid routes.
_HALLUCINATED_PREFIXES = ("/docs", "/en")

# Common hallucinated routes -> canonical route.  Targets are only used when
# they exist in the current route index.
ROUTE_ALIASES: dict[str, str] = {
    "/home": "/",
    "/index": "/",
    "/quickstart": "/getting-started/quickstart",
    "/introduction": "/getting-started/introduction",
    "/models": "/getting-started/models",
    "/api-reference": "/api",
    "/api/reference": "/api",
    "/reference": "/api",
    "/function-calling": "/capabilities/function_calling",
    "/tool-calling": "/capabilities/function_calling",
    "/tools": "/capabilities/function_calling",
    "/fine-tuning": "/capabilities/finetuning",
    "/azure": "/deployment/cloud/azure",
    "/cookbook": "/cookbooks",
}

# Allowed preference keys.  ``None`` means free text (length-capped).
PREFERENCE_SCHEMA: dict[str, frozenset[str] | None] = {
    "response_style": frozenset({"concise", "balanced", "detailed"}),
    "code_language": frozenset({"python", "typescript", "javascript", "curl", "java", "go"}),
    "expertise": frozenset({"beginner", "intermediate", "expert"}),
    "language": None,
}
_FREE_TEXT_MAX = 32


@dataclass
class RouteMatch:
    path: str
    strategy: str  # exact | normalized | alias | suffix | category


@dataclass
class ParsedReply:
    """Displayable content plus the validated directives."""

    content: str
    navigate_to: str | None = None
    set_context: str | None = None
    set_preference: Preference | None = None
    rejected: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Route cleanup and validation
# ---------------------------------------------------------------------------


def clean_route(raw: str) -> str:
    """Reduce a directive argument to a bare ``/path``."""
    text = raw.strip()
    link = _MD_LINK_RE.search(text)
    if link:
        text = link.group(1)
    else:
        text = text.split()[0] if text.split() else ""
    text = text.strip("`\"'<>[]()*")
    text = text.rstrip(".,;:!?")

    if "://" in text:
        text = urlsplit(text).path
    text = text.split("#", 1)[0].split("?", 1)[0]
    if not text:
        return ""
    if not text.startswith("/"):
        text = "/" + text
    text = re.sub(r"/{2,}", "/", text)
    if len(text) > 1:
        text = text.rstrip("/") or "/"
    return text


def _normalize(path: str) -> str:
    key = path.lower().replace("_", "-")
    for prefix in _HALLUCINATED_PREFIXES:
        if key == prefix:
            return "/"
        if key.startswith(prefix + "/"):
            key = key[len(prefix):]
            break
    return key


def _segments(path: str) -> list[str]:
    return [p for p in path.split("/") if p]


def resolve_route(
    raw: str,
    known_routes: Iterable[str],
    aliases: Mapping[str, str] = ROUTE_ALIASES,
) -> RouteMatch | None:
    """Map a possibly hallucinated route onto a known one, or ``None``."""
    known = sorted(set(known_routes))
    if not known:
        return None
    path = clean_route(raw)
    if not path:
        return None

    if path in known:
        return RouteMatch(path, "exact")

    by_key: dict[str, str] = {}
    for route in known:
        by_key.setdefault(_normalize(route), route)

    key = _normalize(path)
    if key in by_key:
        return RouteMatch(by_key[key], "normalized")

    normalized_aliases = {_normalize(k): v for k, v in aliases.items()}
    target = normalized_aliases.get(key)
    if target is not None:
        if target in known:
            return RouteMatch(target, "alias")
        if _normalize(target) in by_key:
            return RouteMatch(by_key[_normalize(target)], "alias")

    parts = _segments(key)
    if not parts:
        return None

    last = parts[-1]
    suffix_hits = [r for r in known if _segments(_normalize(r))[-1:] == [last]]
    if len(suffix_hits) == 1:
        return RouteMatch(suffix_hits[0], "suffix")

    category = parts[0]
    in_category = [r for r in known if _segments(_normalize(r))[:1] == [category]]
    if in_category:
        landing = by_key.get("/" + category)
        if landing is None:
            landing = min(in_category, key=lambda r: (len(_segments(r)), r))
        return RouteMatch(landing, "category")

    return None


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------


def parse_preference(text: str) -> Preference | None:
    """Validate ``key=value`` against ``PREFERENCE_SCHEMA``."""
    match = _PREFERENCE_RE.match(text)
    if not match:
        return None
    key = match.group("key").lower().replace("-", "_")
    value = match.group("value").strip().strip("`\"'*").rstrip(".,;!").strip()
    if key not in PREFERENCE_SCHEMA or not value:
        return None

    allowed = PREFERENCE_SCHEMA[key]
    if allowed is None:
        if len(value) > _FREE_TEXT_MAX:
            return None
        return Preference(key=key, value=value)

    value = value.lower()
    if value not in allowed:
        return None
    return Preference(key=key, value=value)


# ---------------------------------------------------------------------------
# Reply parsing
# ---------------------------------------------------------------------------


def _flush_gap(out: list[str], gap: list[str | None]) -> None:
    # A gap is a run of blank lines and removed directive lines.  Runs that
    # held no directive are kept verbatim; the rest shrink to one blank line.
    if None not in gap:
        out.extend(gap)
    elif any(line is not None for line in gap):
        out.append("")


def strip_directives(text: str) -> str:
    """Remove directive fragments without validating them.

    Text without directives is only trimmed.  Otherwise only the lines that
    held a directive, and blank lines next to them, are rewritten.
    """
    if not _DIRECTIVE_RE.search(text):
        return text.strip()

    out: list[str] = []
    gap: list[str | None] = []
    for line in text.split("\n"):
        cleaned, count = _DIRECTIVE_RE.subn("", line)
        if count:
            cleaned = cleaned.rstrip()
            if not cleaned.strip():
                gap.append(None)
                continue
            line = cleaned
        elif not line.strip():
            gap.append(line)
            continue
        _flush_gap(out, gap)
        gap = []
        out.append(line)
    _flush_gap(out, gap)
    return "\n".join(out).strip()


def parse_directives(
    raw: str,
    known_routes: Iterable[str],
    aliases: Mapping[str, str] = ROUTE_ALIASES,
) -> ParsedReply:
    """Split an LLM reply into displayable content and validated directives."""
    known = set(known_routes)
    reply = ParsedReply(content="")

    for match in _DIRECTIVE_RE.finditer(raw):
        kind = match.group("kind")
        arg = match.group("arg").strip()

        if kind == "SET_PREFERENCE":
            pref = parse_preference(arg)
            if pref is None:
                logger.warning("Rejected preference directive: %r", arg)
                reply.rejected.append(f"{kind}: {arg}")
            else:
                reply.set_preference = pref
            continue

        already = reply.navigate_to if kind == "NAVIGATE" else reply.set_context
        if already is not None:
            continue

        hit = resolve_route(arg, known, aliases)
        if hit is None:
            logger.warning("Rejected %s target %r (not a known route)", kind, arg)
            reply.rejected.append(f"{kind}: {arg}")
            continue
        if hit.strategy != "exact":
            logger.info("Corrected %s target %r -> %s (%s)", kind, arg, hit.path, hit.strategy)

        if kind == "NAVIGATE":
            reply.navigate_to = hit.path
        else:
            reply.set_context = hit.path

    reply.content = strip_directives(raw)
    return reply
