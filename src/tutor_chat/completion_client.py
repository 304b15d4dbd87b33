from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

import httpx
from loguru import logger

from tutor_chat.errors import QuotaExceededError, TransientNetworkError
from tutor_chat.memory.models import Message

_COMPLETION_PATH = "/api/chat/completion"


@dataclass(frozen=True)
class CompletionRequest:
    messages: list[dict[str, str]]
    language: str
    learning_level: str
    user_id: str

    @classmethod
    def from_history(
        cls,
        history: list[Message],
        *,
        language: str,
        learning_level: str,
        user_id: str,
        context_messages: int,
    ) -> CompletionRequest:
        window = history[-context_messages:] if context_messages > 0 else history
        return cls(
            messages=[{"role": m.role, "content": m.content} for m in window],
            language=language,
            learning_level=learning_level,
            user_id=user_id,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "messages": self.messages,
            "language": self.language,
            "learningLevel": self.learning_level,
            "userId": self.user_id,
        }


@runtime_checkable
class CompletionService(Protocol):
    def open_stream(self, request: CompletionRequest) -> AbstractAsyncContextManager[AsyncIterator[str]]:
        """Open a streamed completion; the yielded iterator produces raw SSE text."""
        ...


def _error_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _reset_at(body: dict[str, Any]) -> datetime | None:
    raw = body.get("resetTime")
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return datetime.fromtimestamp(raw / 1000, UTC)
    return None


class HttpCompletionClient:
    def __init__(self, base_url: str, *, timeout: float = 60.0, client: httpx.AsyncClient | None = None):
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._owns_client = client is None

    @asynccontextmanager
    async def open_stream(self, request: CompletionRequest) -> AsyncIterator[AsyncIterator[str]]:
        logger.debug(
            f"Completion request: language={request.language}, level={request.learning_level}, "
            f"messages={len(request.messages)}"
        )
        try:
            async with self._client.stream("POST", _COMPLETION_PATH, json=request.to_payload()) as response:
                if response.status_code >= 400:
                    await response.aread()
                    self._raise_for_status(response)
                yield response.aiter_text()
        except httpx.TransportError as ex:
            raise TransientNetworkError(f"{type(ex).__name__}: {ex}") from ex

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _raise_for_status(self, response: httpx.Response) -> None:
        body = _error_body(response)
        message = str(body.get("error") or "")
        if response.status_code == 429:
            raise QuotaExceededError(
                message or "Rate limit exceeded. Please try again later.",
                reset_at=_reset_at(body),
            )
        raise TransientNetworkError(message or f"API error: {response.status_code}")
