"""Tests for the route index builder."""

from __future__ import annotations

from pathlib import Path

from lechat.models import RouteInfo
from lechat.routes import (
    build_route_index,
    categorize_routes,
    extract_title,
    generate_route_knowledge,
    load_route_index,
    parse_source_spec,
    scan_docs,
    title_from_segment,
    write_route_index,
)


def _populate(base: Path, structure: dict) -> None:
    for name, content in structure.items():
        path = base / name
        if isinstance(content, dict):
            path.mkdir(parents=True, exist_ok=True)
            _populate(path, content)
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")


def _mdx(title: str) -> str:
    return f"---\ntitle: {title}\n---\n\n# {title}\n"


DOCS_TREE = {
    "page.tsx": "export default function Home() {}",
    "getting-started": {
        "quickstart": {"page.mdx": _mdx("Quickstart")},
        "models": {"page.mdx": _mdx("Models Overview")},
    },
    "capabilities": {
        "page.mdx": _mdx("Capabilities"),
        "vision": {"page.mdx": _mdx("Vision")},
        "function_calling": {"page.mdx": _mdx("Function calling")},
        "_components": {"page.mdx": _mdx("Hidden")},
    },
    "(marketing)": {"promo": {"page.mdx": _mdx("Promo")}},
    ".cache": {"page.mdx": _mdx("Cache")},
    "notes": {"README.md": "no page file here"},
}


class TestTitles:
    def test_front_matter_title(self, tmp_path: Path):
        page = tmp_path / "page.mdx"
        page.write_text(_mdx("Function calling"), encoding="utf-8")
        assert extract_title(page) == "Function calling"

    def test_quoted_title(self, tmp_path: Path):
        page = tmp_path / "page.mdx"
        page.write_text('---\ntitle: "Vision"\n---\n', encoding="utf-8")
        assert extract_title(page) == "Vision"

    def test_missing_title(self, tmp_path: Path):
        page = tmp_path / "page.mdx"
        page.write_text("# Heading only\n", encoding="utf-8")
        assert extract_title(page) is None

    def test_unreadable_file(self, tmp_path: Path):
        assert extract_title(tmp_path / "missing.mdx") is None

    def test_segment_fallback(self):
        assert title_from_segment("function_calling") == "Function Calling"
        assert title_from_segment("getting-started") == "Getting Started"
        assert title_from_segment("") == "Home"


class TestScanDocs:
    def test_collects_pages(self, tmp_path: Path):
        _populate(tmp_path, DOCS_TREE)
        paths = [r.path for r in scan_docs(tmp_path)]
        assert paths == [
            "/",
            "/capabilities",
            "/capabilities/function_calling",
            "/capabilities/vision",
            "/getting-started/models",
            "/getting-started/quickstart",
        ]

    def test_skips_private_and_grouped_dirs(self, tmp_path: Path):
        _populate(tmp_path, DOCS_TREE)
        paths = {r.path for r in scan_docs(tmp_path)}
        assert not any("_components" in p for p in paths)
        assert not any("promo" in p for p in paths)
        assert not any("cache" in p for p in paths)
        assert "/notes" not in paths

    def test_titles(self, tmp_path: Path):
        _populate(tmp_path, DOCS_TREE)
        titles = {r.path: r.title for r in scan_docs(tmp_path)}
        assert titles["/"] == "Home"
        assert titles["/getting-started/models"] == "Models Overview"

    def test_base_route(self, tmp_path: Path):
        _populate(tmp_path, {
            "page.tsx": "",
            "chat": {"page.tsx": ""},
        })
        routes = scan_docs(tmp_path, "/api")
        assert [r.path for r in routes] == ["/api", "/api/chat"]
        assert routes[1].title == "Chat"


class TestCategorize:
    def test_groups_by_first_segment(self):
        routes = [
            RouteInfo(path="/", title="Home"),
            RouteInfo(path="/getting-started/quickstart", title="Quickstart"),
            RouteInfo(path="/capabilities/vision", title="Vision"),
            RouteInfo(path="/capabilities/embeddings", title="Embeddings"),
        ]
        cats = categorize_routes(routes)
        assert [c.name for c in cats] == ["Capabilities", "Getting Started"]
        assert [r.path for r in cats[0].routes] == [
            "/capabilities/embeddings",
            "/capabilities/vision",
        ]

    def test_root_route_has_no_category(self):
        assert categorize_routes([RouteInfo(path="/", title="Home")]) == []


class TestRouteKnowledge:
    def test_titles_shown_only_when_informative(self):
        cats = categorize_routes([
            RouteInfo(path="/capabilities/vision", title="vision"),
            RouteInfo(path="/capabilities/function_calling", title="Function calling"),
        ])
        text = generate_route_knowledge(cats)
        assert 'Capabilities: "Function calling" (/capabilities/function_calling), /capabilities/vision' in text

    def test_contains_navigation_rules(self):
        text = generate_route_knowledge([])
        assert "NAVIGATE: /exact-route" in text
        assert "Do NOT use the NAVIGATE command unless explicitly requested" in text


class TestBuildIndex:
    def test_merges_sources_and_extras(self, tmp_path: Path):
        docs = tmp_path / "docs"
        api = tmp_path / "api"
        _populate(docs, DOCS_TREE)
        _populate(api, {"page.tsx": "", "chat": {"page.tsx": ""}})

        index = build_route_index(
            [(docs, ""), (api, "/api"), (tmp_path / "missing", "")],
            extra_routes=[
                RouteInfo(
                    path="/cookbooks/mistral-ocr-document_understanding",
                    title="Mistral OCR Document Understanding",
                )
            ],
        )
        assert "/api/chat" in index.all_routes
        assert "/cookbooks/mistral-ocr-document_understanding" in index.all_routes
        assert index.all_routes == sorted(index.all_routes)
        assert "Cookbooks" in index.category_names()
        assert "Mistral OCR Document Understanding" in index.route_knowledge
        assert index.init_message

    def test_round_trip_uses_camel_case(self, tmp_path: Path):
        _populate(tmp_path / "docs", DOCS_TREE)
        index = build_route_index([(tmp_path / "docs", "")])
        out = tmp_path / "out" / "lechat-routes.json"
        write_route_index(index, out)

        raw = out.read_text(encoding="utf-8")
        assert '"routeKnowledge"' in raw
        assert '"allRoutes"' in raw
        loaded = load_route_index(out)
        assert loaded.all_routes == index.all_routes
        assert loaded.title_for("/capabilities/vision") == "Vision"
        assert loaded.title_for("/capabilities/unknown_page") == "Unknown Page"


def test_parse_source_spec(tmp_path: Path):
    path, base = parse_source_spec("src/app/api=api/", tmp_path)
    assert path == tmp_path / "src/app/api"
    assert base == "/api"
    path, base = parse_source_spec("docs", tmp_path)
    assert base == ""
