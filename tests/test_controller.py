"""Tests for the client chat controller and its local store."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from lechat.controller import (
    ACTIVE_SESSION_KEY,
    DEFAULT_TITLE,
    PAGE_CONTEXT_KEY,
    PREFERENCES_KEY,
    SESSIONS_KEY,
    ChatController,
    ChatTransport,
    LocalStore,
    ServiceTransport,
    TransportError,
)
from lechat.models import (
    ChatRequest,
    ChatResponse,
    PageContext,
    Preference,
    RouteCategory,
    RouteIndex,
    RouteInfo,
)


class FakeTransport:
    """Records requests and replays canned responses."""

    def __init__(self, *responses: ChatResponse | Exception) -> None:
        self.responses = list(responses)
        self.requests: list[ChatRequest] = []

    async def send(self, request: ChatRequest) -> ChatResponse:
        self.requests.append(request)
        item = self.responses.pop(0) if self.responses else ChatResponse(content="ok")
        if isinstance(item, Exception):
            raise item
        return item


class HangingTransport:
    def __init__(self) -> None:
        self.started = asyncio.Event()

    async def send(self, request: ChatRequest) -> ChatResponse:
        self.started.set()
        await asyncio.sleep(60)
        return ChatResponse(content="too late")


def _index() -> RouteIndex:
    route = RouteInfo(path="/capabilities/vision", title="Vision")
    return RouteIndex(
        generated_at="2026-10-01T00:00:00Z",
        categories=[RouteCategory(name="Capabilities", routes=[route])],
        route_knowledge="",
        all_routes=[route.path],
    )


def _controller(tmp_path: Path, transport=None, **kwargs) -> ChatController:
    store = LocalStore(tmp_path / "store.json")
    return ChatController(transport or FakeTransport(), store, **kwargs)


class TestLocalStore:
    def test_round_trip(self, tmp_path):
        path = tmp_path / "nested" / "store.json"
        store = LocalStore(path)
        store.set("a", {"b": [1, 2]})
        assert LocalStore(path).get("a") == {"b": [1, 2]}

    def test_remove(self, tmp_path):
        store = LocalStore(tmp_path / "store.json")
        store.set("a", 1)
        store.remove("a")
        store.remove("missing")
        assert store.get("a", "gone") == "gone"

    def test_corrupt_file_is_ignored(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("{not json", encoding="utf-8")
        assert LocalStore(path).get("anything") is None

    def test_non_object_file_is_ignored(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("[1, 2, 3]", encoding="utf-8")
        store = LocalStore(path)
        store.set("k", "v")
        assert json.loads(path.read_text(encoding="utf-8")) == {"k": "v"}


class TestSessions:
    def test_starts_with_one_empty_session(self, tmp_path):
        ctrl = _controller(tmp_path)
        assert len(ctrl.sessions) == 1
        assert ctrl.active_session.title == DEFAULT_TITLE
        assert ctrl.messages == []
        assert ctrl.store.get(ACTIVE_SESSION_KEY) == ctrl.active_session_id

    def test_new_and_switch(self, tmp_path):
        ctrl = _controller(tmp_path)
        first = ctrl.active_session_id
        second = ctrl.new_session().id
        assert ctrl.active_session_id == second
        ctrl.switch_session(first)
        assert ctrl.active_session_id == first
        with pytest.raises(KeyError):
            ctrl.switch_session("missing")

    def test_delete_active_session_picks_another(self, tmp_path):
        ctrl = _controller(tmp_path)
        first = ctrl.active_session_id
        second = ctrl.new_session().id
        ctrl.delete_session(second)
        assert ctrl.active_session_id == first
        ctrl.delete_session(first)
        assert len(ctrl.sessions) == 1
        assert ctrl.active_session_id not in {first, second}

    def test_clear_messages_resets_title(self, tmp_path):
        ctrl = _controller(tmp_path)
        asyncio.run(ctrl.send_message("How do I use vision?"))
        assert ctrl.active_session.title == "How do I use vision?"
        ctrl.clear_messages()
        assert ctrl.messages == []
        assert ctrl.active_session.title == DEFAULT_TITLE

    def test_state_survives_restart(self, tmp_path):
        ctrl = _controller(tmp_path)
        ctrl.set_preference("expertise", "beginner")
        ctrl.set_page_context(PageContext(title="Vision", url="/capabilities/vision"))
        asyncio.run(ctrl.send_message("hello"))

        again = _controller(tmp_path)
        assert again.active_session_id == ctrl.active_session_id
        assert [m.content for m in again.messages] == ["hello", "ok"]
        assert again.preferences == {"expertise": "beginner"}
        assert again.page_context.url == "/capabilities/vision"

    def test_sessions_stored_in_camel_case(self, tmp_path):
        ctrl = _controller(tmp_path)
        stored = ctrl.store.get(SESSIONS_KEY)
        assert "createdAt" in stored[0]
        assert "updatedAt" in stored[0]

    def test_max_sessions_keeps_active(self, tmp_path):
        ctrl = _controller(tmp_path, max_sessions=2)
        for _ in range(4):
            ctrl.new_session()
        assert len(ctrl.sessions) == 2
        assert ctrl.active_session_id in ctrl.sessions

    def test_long_title_truncated(self, tmp_path):
        ctrl = _controller(tmp_path)
        asyncio.run(ctrl.send_message("word " * 30))
        title = ctrl.active_session.title
        assert len(title) <= 40
        assert title.endswith("...")

    def test_malformed_preferences_are_dropped(self, tmp_path):
        store = LocalStore(tmp_path / "store.json")
        store.set(PREFERENCES_KEY, ["concise"])
        ctrl = ChatController(FakeTransport(), store)
        assert ctrl.preferences == {}
        assert store.get(PREFERENCES_KEY) == {}

    def test_malformed_page_context_is_dropped(self, tmp_path):
        store = LocalStore(tmp_path / "store.json")
        store.set(PAGE_CONTEXT_KEY, {"url": "/x"})
        ctrl = ChatController(FakeTransport(), store)
        assert ctrl.page_context is None
        assert store.get(PAGE_CONTEXT_KEY) is None


class TestSendMessage:
    def test_request_carries_history_context_and_preferences(self, tmp_path):
        transport = FakeTransport(ChatResponse(content="first"), ChatResponse(content="second"))
        ctrl = _controller(tmp_path, transport)
        ctrl.set_preference("response_style", "concise")
        ctrl.set_page_context(PageContext(title="Vision", url="/capabilities/vision"))

        asyncio.run(ctrl.send_message("one"))
        asyncio.run(ctrl.send_message("  two  "))

        last = transport.requests[-1]
        assert last.message == "two"
        assert [m.content for m in last.conversation_history] == ["one", "first"]
        assert last.page_context.url == "/capabilities/vision"
        assert last.preferences == {"response_style": "concise"}
        assert ctrl.is_loading is False

    def test_blank_message_ignored(self, tmp_path):
        transport = FakeTransport()
        ctrl = _controller(tmp_path, transport)
        assert asyncio.run(ctrl.send_message("   ")) is None
        assert transport.requests == []
        assert ctrl.messages == []

    def test_error_is_surfaced(self, tmp_path):
        transport = FakeTransport(TransportError("Failed to get response from LeChat (500): boom"))
        ctrl = _controller(tmp_path, transport)
        assert asyncio.run(ctrl.send_message("hello")) is None
        assert "boom" in ctrl.error
        assert [m.role for m in ctrl.messages] == ["user"]
        assert ctrl.is_loading is False

    def test_navigation_calls_navigator_and_updates_context(self, tmp_path):
        visited: list[str] = []
        transport = FakeTransport(
            ChatResponse(content="Opening.", navigate_to="/capabilities/vision", navigate_title="Vision")
        )
        ctrl = _controller(tmp_path, transport, navigator=visited.append)

        response = asyncio.run(ctrl.send_message("open vision"))

        assert response.navigate_to == "/capabilities/vision"
        assert visited == ["/capabilities/vision"]
        assert ctrl.page_context == PageContext(title="Vision", url="/capabilities/vision")
        assert ctrl.is_navigating is False

    def test_async_navigator(self, tmp_path):
        visited: list[str] = []

        async def navigate(path: str) -> None:
            visited.append(path)

        transport = FakeTransport(ChatResponse(content="Go.", navigate_to="/capabilities/vision"))
        ctrl = _controller(tmp_path, transport, navigator=navigate, route_index=_index())
        asyncio.run(ctrl.send_message("open vision"))
        assert visited == ["/capabilities/vision"]
        assert ctrl.page_context.title == "Vision"

    def test_navigator_failure_sets_error(self, tmp_path):
        def broken(path: str) -> None:
            raise RuntimeError("router gone")

        transport = FakeTransport(ChatResponse(content="Go.", navigate_to="/capabilities/vision"))
        ctrl = _controller(tmp_path, transport, navigator=broken)
        asyncio.run(ctrl.send_message("open vision"))
        assert ctrl.error == "Could not navigate to /capabilities/vision."
        assert ctrl.page_context is None
        assert ctrl.is_navigating is False

    def test_context_and_preference_applied(self, tmp_path):
        transport = FakeTransport(
            ChatResponse(
                content="Done.",
                set_context="/capabilities/vision",
                set_preference=Preference(key="code_language", value="python"),
            )
        )
        ctrl = _controller(tmp_path, transport, route_index=_index())
        asyncio.run(ctrl.send_message("focus on vision, python please"))
        assert ctrl.page_context == PageContext(title="Vision", url="/capabilities/vision")
        assert ctrl.preferences == {"code_language": "python"}
        assert ctrl.store.get(PREFERENCES_KEY) == {"code_language": "python"}


class TestStop:
    def test_stop_without_inflight(self, tmp_path):
        assert _controller(tmp_path).stop() is False

    @pytest.mark.asyncio
    async def test_stop_aborts_turn(self, tmp_path):
        transport = HangingTransport()
        ctrl = _controller(tmp_path, transport)

        task = asyncio.create_task(ctrl.send_message("slow question"))
        await transport.started.wait()
        assert ctrl.is_loading is True
        assert ctrl.stop() is True

        assert await task is None
        assert ctrl.is_loading is False
        assert ctrl.error is None
        assert [m.role for m in ctrl.messages] == ["user"]

    @pytest.mark.asyncio
    async def test_busy_controller_ignores_second_send(self, tmp_path):
        transport = HangingTransport()
        ctrl = _controller(tmp_path, transport)

        task = asyncio.create_task(ctrl.send_message("first"))
        await transport.started.wait()
        assert await ctrl.send_message("second") is None
        ctrl.stop()
        await task
        assert [m.content for m in ctrl.messages] == ["first"]


def test_transports_satisfy_protocol(tmp_path):
    assert isinstance(FakeTransport(), ChatTransport)
    assert isinstance(ServiceTransport(service=None), ChatTransport)
