"""Client chat controller -- sessions, in-flight turns and persisted state.

Mirrors what the browser keeps in component state and local storage:
conversation sessions, the active page context, user preferences, and the
loading / navigating flags the UI renders.  Persistence goes through
``LocalStore``, a JSON file with string keys.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import os
import tempfile
import threading
import time
import urllib.error
import urllib.request
import uuid
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from .models import ChatMessage, ChatRequest, ChatResponse, PageContext, RouteIndex, Session

if TYPE_CHECKING:
    from .chat import ChatService

logger = logging.getLogger(__name__)

SESSIONS_KEY = "lechat.sessions"
ACTIVE_SESSION_KEY = "lechat.activeSession"
PREFERENCES_KEY = "lechat.preferences"
PAGE_CONTEXT_KEY = "lechat.pageContext"

DEFAULT_TITLE = "New chat"
TITLE_MAX_CHARS = 40

Navigator = Callable[[str], Awaitable[None] | None]


# ---------------------------------------------------------------------------
# Local storage
# ---------------------------------------------------------------------------


class LocalStore:
    """Thread-safe JSON key/value file, the local-storage equivalent."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._data: dict[str, Any] = self._read()

    def _read(self) -> dict[str, Any]:
        if not self.path.is_file():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable store %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed store %s", self.path)
            return {}
        return data

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".lechat-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value
            self._flush()

    def remove(self, key: str) -> None:
        with self._lock:
            if self._data.pop(key, None) is not None:
                self._flush()


# ---------------------------------------------------------------------------
# Transports
# ---------------------------------------------------------------------------


class TransportError(RuntimeError):
    """The chat endpoint answered with an error."""


@runtime_checkable
class ChatTransport(Protocol):
    async def send(self, request: ChatRequest) -> ChatResponse:
        ...


class ServiceTransport:
    """Calls a ``ChatService`` in process."""

    def __init__(self, service: ChatService) -> None:
        self.service = service

    async def send(self, request: ChatRequest) -> ChatResponse:
        return await self.service.respond(request)


class HttpTransport:
    """POSTs turns to a running ``/api/lechat`` endpoint."""

    def __init__(self, base_url: str, *, timeout: float = 60.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _send_sync(self, request: ChatRequest) -> ChatResponse:
        body = request.model_dump_json(by_alias=True).encode("utf-8")
        req = urllib.request.Request(
            f"{self.base_url}/api/lechat",
            data=body,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                data = json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as exc:
            raw = exc.read().decode("utf-8", errors="replace")
            try:
                payload = json.loads(raw)
                detail = payload.get("error") or payload.get("detail") or raw
            except (json.JSONDecodeError, AttributeError):
                detail = raw
            raise TransportError(f"Failed to get response from LeChat ({exc.code}): {detail}") from exc
        except urllib.error.URLError as exc:
            raise TransportError(f"LeChat server unreachable: {exc.reason}") from exc
        return ChatResponse.model_validate(data)

    async def send(self, request: ChatRequest) -> ChatResponse:
        return await asyncio.to_thread(self._send_sync, request)


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


def _session_title(text: str) -> str:
    title = " ".join(text.split())
    if len(title) > TITLE_MAX_CHARS:
        title = title[: TITLE_MAX_CHARS - 3].rstrip() + "..."
    return title or DEFAULT_TITLE


class ChatController:
    """Holds the chat UI state and applies directives from responses."""

    def __init__(
        self,
        transport: ChatTransport,
        store: LocalStore,
        *,
        navigator: Navigator | None = None,
        route_index: RouteIndex | None = None,
        max_sessions: int = 20,
    ) -> None:
        self.transport = transport
        self.store = store
        self.navigator = navigator
        self.route_index = route_index
        self.max_sessions = max(1, max_sessions)

        self.is_loading = False
        self.is_navigating = False
        self.error: str | None = None

        self._inflight: asyncio.Task | None = None
        self._stop_requested = False

        self.sessions: dict[str, Session] = {}
        for raw in store.get(SESSIONS_KEY, []) or []:
            try:
                session = Session.model_validate(raw)
            except ValueError:
                logger.warning("Dropping malformed stored session")
                continue
            self.sessions[session.id] = session

        prefs = store.get(PREFERENCES_KEY, {}) or {}
        if not isinstance(prefs, dict):
            logger.warning("Dropping malformed stored preferences")
            prefs = {}
        self.preferences: dict[str, str] = {str(k): str(v) for k, v in prefs.items()}

        self.page_context: PageContext | None = None
        ctx = store.get(PAGE_CONTEXT_KEY)
        if ctx:
            try:
                self.page_context = PageContext.model_validate(ctx)
            except ValueError:
                logger.warning("Dropping malformed stored page context")

        active = store.get(ACTIVE_SESSION_KEY)
        if active in self.sessions:
            self.active_session_id: str = active
        elif self.sessions:
            self.active_session_id = self._most_recent().id
        else:
            self.active_session_id = self._create_session().id
        self._persist()

    # -- helpers -------------------------------------------------------------

    def _most_recent(self) -> Session:
        return max(self.sessions.values(), key=lambda s: s.updated_at)

    def _create_session(self) -> Session:
        now = time.time()
        session = Session(
            id=uuid.uuid4().hex,
            created_at=now,
            updated_at=now,
            page_context=self.page_context,
        )
        self.sessions[session.id] = session
        return session

    def _trim_sessions(self) -> None:
        if len(self.sessions) <= self.max_sessions:
            return
        keep = {self.active_session_id}
        for session in self.list_sessions():
            if len(keep) >= self.max_sessions:
                break
            keep.add(session.id)
        for sid in list(self.sessions):
            if sid not in keep:
                del self.sessions[sid]

    def _persist(self) -> None:
        self._trim_sessions()
        self.store.set(
            SESSIONS_KEY,
            [s.model_dump(mode="json", by_alias=True) for s in self.sessions.values()],
        )
        self.store.set(ACTIVE_SESSION_KEY, self.active_session_id)
        self.store.set(PREFERENCES_KEY, dict(self.preferences))
        if self.page_context is None:
            self.store.remove(PAGE_CONTEXT_KEY)
        else:
            self.store.set(PAGE_CONTEXT_KEY, self.page_context.model_dump(by_alias=True))

    def _title_for(self, path: str) -> str:
        if self.route_index is not None:
            return self.route_index.title_for(path)
        return path

    # -- sessions ------------------------------------------------------------

    @property
    def active_session(self) -> Session:
        return self.sessions[self.active_session_id]

    @property
    def messages(self) -> list[ChatMessage]:
        return self.active_session.messages

    def list_sessions(self) -> list[Session]:
        """Sessions, most recently updated first."""
        return sorted(self.sessions.values(), key=lambda s: s.updated_at, reverse=True)

    def new_session(self) -> Session:
        session = self._create_session()
        self.active_session_id = session.id
        self.error = None
        self._persist()
        return session

    def switch_session(self, session_id: str) -> Session:
        if session_id not in self.sessions:
            raise KeyError(session_id)
        self.active_session_id = session_id
        self.error = None
        session = self.sessions[session_id]
        if session.page_context is not None:
            self.page_context = session.page_context
        self._persist()
        return session

    def delete_session(self, session_id: str) -> None:
        if session_id not in self.sessions:
            raise KeyError(session_id)
        del self.sessions[session_id]
        if session_id == self.active_session_id:
            if self.sessions:
                self.active_session_id = self._most_recent().id
            else:
                self.active_session_id = self._create_session().id
        self._persist()

    def clear_messages(self) -> None:
        session = self.active_session
        session.messages = []
        session.title = DEFAULT_TITLE
        session.updated_at = time.time()
        self.error = None
        self._persist()

    def set_page_context(self, context: PageContext) -> None:
        self.page_context = context
        self.active_session.page_context = context
        self._persist()

    def set_preference(self, key: str, value: str) -> None:
        self.preferences[key] = value
        self._persist()

    # -- turns ---------------------------------------------------------------

    async def send_message(self, text: str) -> ChatResponse | None:
        """Send one user turn; returns the response, or None if skipped/stopped/failed."""
        message = text.strip()
        if not message or self.is_loading:
            return None

        session = self.active_session
        history = list(session.messages)
        session.messages.append(ChatMessage(role="user", content=message))
        if session.title == DEFAULT_TITLE:
            session.title = _session_title(message)
        session.updated_at = time.time()
        self._persist()

        request = ChatRequest(
            message=message,
            page_context=self.page_context,
            conversation_history=history,
            preferences=dict(self.preferences),
        )

        self.is_loading = True
        self.error = None
        self._stop_requested = False
        self._inflight = asyncio.ensure_future(self.transport.send(request))
        try:
            response = await self._inflight
        except asyncio.CancelledError:
            if not self._stop_requested:
                raise
            logger.info("Generation stopped by user")
            return None
        except Exception as exc:  # noqa: BLE001 -- surfaced to the UI via self.error
            logger.warning("Chat turn failed: %s", exc)
            self.error = str(exc) or "An error occurred. Please try again."
            return None
        finally:
            self.is_loading = False
            self._inflight = None

        await self._apply(session, response)
        return response

    def stop(self) -> bool:
        """Abort the in-flight turn. Returns False when nothing was running."""
        if self._inflight is None or self._inflight.done():
            return False
        self._stop_requested = True
        self._inflight.cancel()
        return True

    async def _apply(self, session: Session, response: ChatResponse) -> None:
        session.messages.append(ChatMessage(role="assistant", content=response.content))
        session.updated_at = time.time()

        if response.set_preference is not None:
            self.preferences[response.set_preference.key] = response.set_preference.value

        if response.set_context:
            self.page_context = PageContext(
                title=self._title_for(response.set_context), url=response.set_context
            )
            session.page_context = self.page_context
        self._persist()

        if response.navigate_to:
            await self._navigate(session, response.navigate_to, response.navigate_title)

    async def _navigate(self, session: Session, path: str, title: str | None) -> None:
        self.is_navigating = True
        try:
            if self.navigator is not None:
                result = self.navigator(path)
                if inspect.isawaitable(result):
                    await result
        except Exception as exc:  # noqa: BLE001
            logger.warning("Navigation to %s failed: %s", path, exc)
            self.error = f"Could not navigate to {path}."
            return
        finally:
            self.is_navigating = False

        self.page_context = PageContext(title=title or self._title_for(path), url=path)
        session.page_context = self.page_context
        self._persist()
