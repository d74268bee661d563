"""Route index builder -- walks documentation trees and collects page routes."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path

from .models import RouteCategory, RouteIndex, RouteInfo

logger = logging.getLogger(__name__)

# Files that turn their directory into a route.
PAGE_FILES: tuple[str, ...] = ("page.mdx", "page.md", "page.tsx", "page.js", "page.py")

# Page files whose title lives in front matter.
MARKDOWN_PAGES: set[str] = {"page.mdx", "page.md"}

# Directory name prefixes that never produce routes (private folders,
# route groups, dotfiles).
SKIP_PREFIXES: tuple[str, ...] = ("_", "(", ".")

_TITLE_RE = re.compile(r"^title:\s*(.+)$", re.MULTILINE)


def extract_title(path: Path) -> str | None:
    """Return the ``title:`` front-matter value of a markdown page."""
    try:
        content = path.read_text(encoding="utf-8")
    except OSError:
        return None
    match = _TITLE_RE.search(content)
    if not match:
        return None
    title = match.group(1).strip().strip("\"'").strip()
    return title or None


def title_from_segment(segment: str) -> str:
    """Fallback title for code pages: ``function_calling`` -> ``Function Calling``."""
    if not segment:
        return "Home"
    words = re.split(r"[\s_-]+", segment)
    return " ".join(w[:1].upper() + w[1:] for w in words if w)


def scan_docs(root: Path, base_route: str = "") -> list[RouteInfo]:
    """Walk *root* and return one ``RouteInfo`` per directory holding a page file.

    The root directory maps to *base_route* (or ``/`` when empty).  Paths are
    returned sorted.
    """
    root = root.resolve()
    routes: list[RouteInfo] = []

    def _on_error(exc: OSError) -> None:
        logger.warning("Error scanning %s: %s", exc.filename, exc)

    for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error):
        # Prune private / grouped directories in-place so os.walk skips them.
        dirnames[:] = sorted(d for d in dirnames if not d.startswith(SKIP_PREFIXES))

        rel_dir = Path(dirpath).resolve().relative_to(root).as_posix()
        if rel_dir == ".":
            rel_dir = ""

        page = next((name for name in PAGE_FILES if name in filenames), None)
        if page is None:
            continue

        route = f"{base_route}/{rel_dir}" if rel_dir else base_route
        route = route or "/"

        if page in MARKDOWN_PAGES:
            title = extract_title(Path(dirpath) / page)
        else:
            title = title_from_segment(route.rstrip("/").rsplit("/", 1)[-1])

        routes.append(RouteInfo(path=route, title=title))

    routes.sort(key=lambda r: r.path)
    return routes


def category_display_name(segment: str) -> str:
    return " ".join(w[:1].upper() + w[1:] for w in segment.split("-") if w)


def categorize_routes(routes: Iterable[RouteInfo]) -> list[RouteCategory]:
    """Group routes by their first path segment."""
    grouped: dict[str, list[RouteInfo]] = {}
    for route in routes:
        parts = [p for p in route.path.split("/") if p]
        if not parts:
            continue
        grouped.setdefault(parts[0], []).append(route)

    categories = [
        RouteCategory(
            name=category_display_name(segment),
            routes=sorted(items, key=lambda r: r.path),
        )
        for segment, items in grouped.items()
    ]
    categories.sort(key=lambda c: c.name)
    return categories


def _format_route(route: RouteInfo) -> str:
    last = route.path.rsplit("/", 1)[-1].replace("_", " ")
    if route.title and route.title != last:
        return f'"{route.title}" ({route.path})'
    return route.path


def generate_route_knowledge(categories: list[RouteCategory]) -> str:
    """Render the route block injected into the chat system prompt."""
    route_lines = "\n".join(
        f"{cat.name}: {', '.join(_format_route(r) for r in cat.routes)}"
        for cat in categories
    )
    return (
        "**Available Documentation Routes:**\n"
        f"{route_lines}\n\n"
        "**Navigation:**\n"
        '- If the user explicitly asks to "navigate", "go to", or "open" a page, '
        'end your response with: "NAVIGATE: /exact-route"\n'
        "- Match user requests to routes using either the page title or the URL path.\n"
        '- Otherwise, just use standard Markdown links like "[Page Name](/exact-route)" '
        "in your text. Do NOT use the NAVIGATE command unless explicitly requested."
    )


def generate_init_message(
    categories: list[RouteCategory], *, product_name: str = "Mistral AI"
) -> str:
    if not categories:
        return f"I'm ready to help you with {product_name} documentation. Ask me anything!"
    names = ", ".join(c.name for c in categories[:4])
    return (
        f"I'm ready to help you with {product_name} documentation "
        f"({names}{', ...' if len(categories) > 4 else ''}). Ask me anything!"
    )


def parse_source_spec(spec: str, project_root: Path) -> tuple[Path, str]:
    """Split a ``dir`` or ``dir=/base`` docs source into path and base route."""
    directory, _, base = spec.partition("=")
    base = base.strip().rstrip("/")
    if base and not base.startswith("/"):
        base = "/" + base
    path = Path(directory.strip())
    if not path.is_absolute():
        path = project_root / path
    return path, base


def build_route_index(
    sources: Iterable[tuple[Path, str]],
    extra_routes: Iterable[RouteInfo] = (),
    *,
    product_name: str = "Mistral AI",
) -> RouteIndex:
    """Scan every ``(directory, base_route)`` source and assemble a RouteIndex."""
    by_path: dict[str, RouteInfo] = {}
    for directory, base in sources:
        if not directory.is_dir():
            logger.warning("Docs directory not found: %s", directory)
            continue
        found = scan_docs(directory, base)
        logger.info("Found %d routes under %s", len(found), directory)
        for route in found:
            by_path[route.path] = route

    for route in extra_routes:
        existing = by_path.get(route.path)
        if existing is None or route.title:
            by_path[route.path] = route

    categories = categorize_routes(by_path.values())
    return RouteIndex(
        generated_at=datetime.now(timezone.utc).isoformat(),
        categories=categories,
        init_message=generate_init_message(categories, product_name=product_name),
        route_knowledge=generate_route_knowledge(categories),
        all_routes=sorted(by_path),
    )


def write_route_index(index: RouteIndex, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(index.model_dump_json(indent=2, by_alias=True), encoding="utf-8")


def load_route_index(path: Path) -> RouteIndex:
    return RouteIndex.model_validate_json(path.read_text(encoding="utf-8"))
