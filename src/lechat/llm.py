"""LLM client -- async wrapper around the Mistral chat completions API."""

from __future__ import annotations

import asyncio
import json
import logging
import random
import socket
import urllib.error
import urllib.request
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

MISTRAL_BASE_URL = "https://api.mistral.ai/v1"
DEFAULT_MODEL = "mistral-small-latest"


class LLMError(RuntimeError):
    """Raised when the hosted LLM fails or returns nothing usable."""

    def __init__(
        self, message: str, *, status: int | None = None, retryable: bool | None = None
    ) -> None:
        super().__init__(message)
        self.status = status
        if retryable is None:
            retryable = status is not None and (status == 429 or status >= 500)
        self.retryable = retryable


@dataclass
class LLMClient:
    """Minimal async-friendly chat completions client using stdlib only."""

    api_key: str
    model: str = DEFAULT_MODEL
    base_url: str = MISTRAL_BASE_URL
    max_tokens: int = 1000
    temperature: float = 0.7
    timeout: float = 60.0
    backoff_enabled: bool = True
    max_retries: int = 2
    base_backoff_seconds: float = 0.25
    max_concurrency: int = 8
    _sem: asyncio.Semaphore = field(init=False, repr=False)
    _stats_lock: asyncio.Lock = field(init=False, repr=False)
    _total_calls: int = field(default=0, init=False, repr=False)
    _retry_count: int = field(default=0, init=False, repr=False)

    def __post_init__(self) -> None:
        self._sem = asyncio.Semaphore(max(1, self.max_concurrency))
        self._stats_lock = asyncio.Lock()

    def _json_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _payload(
        self,
        messages: list[dict[str, str]],
        *,
        json_mode: bool,
        temperature: float | None,
        max_tokens: int | None,
    ) -> dict:
        body: dict = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature if temperature is None else temperature,
            "max_tokens": self.max_tokens if max_tokens is None else max_tokens,
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}
        return body

    # ------------------------------------------------------------------
    # Core call methods
    # ------------------------------------------------------------------

    def _call_sync(
        self,
        messages: list[dict[str, str]],
        *,
        json_mode: bool = False,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Blocking call. Meant to be run via asyncio.to_thread."""
        body = json.dumps(
            self._payload(messages, json_mode=json_mode, temperature=temperature, max_tokens=max_tokens)
        ).encode("utf-8")
        req = urllib.request.Request(
            f"{self.base_url.rstrip('/')}/chat/completions",
            data=body,
            headers=self._json_headers(),
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                data = json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="replace")
            raise LLMError(f"Mistral API error ({exc.code}): {error_body}", status=exc.code) from exc
        except (urllib.error.URLError, socket.timeout, TimeoutError) as exc:
            raise LLMError(f"Mistral API unreachable: {exc}", retryable=True) from exc
        except json.JSONDecodeError as exc:
            raise LLMError("Mistral API returned invalid JSON") from exc

        return self._extract_content(data)

    @staticmethod
    def _extract_content(data: dict) -> str:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None
        if isinstance(content, list):
            # Some models return content chunks instead of a plain string.
            content = "".join(
                part.get("text", "") for part in content if isinstance(part, dict)
            )
        if not content:
            raise LLMError("No response from Mistral API")
        return content

    async def chat(
        self,
        messages: list[dict[str, str]],
        *,
        json_mode: bool = False,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Send a chat completion request asynchronously."""
        async with self._sem:
            attempt = 0
            while True:
                try:
                    result = await asyncio.to_thread(
                        self._call_sync,
                        messages,
                        json_mode=json_mode,
                        temperature=temperature,
                        max_tokens=max_tokens,
                    )
                    async with self._stats_lock:
                        self._total_calls += 1
                    return result
                except LLMError as exc:
                    if (
                        not self.backoff_enabled
                        or not exc.retryable
                        or attempt >= self.max_retries
                    ):
                        raise
                    async with self._stats_lock:
                        self._retry_count += 1
                    wait_s = self.base_backoff_seconds * (2 ** attempt) + random.uniform(0, 0.05)
                    logger.warning("LLM call failed (%s); retrying in %.2fs", exc, wait_s)
                    await asyncio.sleep(wait_s)
                    attempt += 1

    async def ask(
        self,
        prompt: str,
        *,
        system: str | None = None,
        json_mode: bool = False,
    ) -> str:
        """Convenience: single user prompt with optional system message."""
        messages: list[dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        return await self.chat(messages, json_mode=json_mode)

    async def get_stats(self) -> dict[str, int]:
        async with self._stats_lock:
            return {
                "total_calls": self._total_calls,
                "retries": self._retry_count,
            }

