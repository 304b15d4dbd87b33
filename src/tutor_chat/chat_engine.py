from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from loguru import logger

from tutor_chat.completion_client import CompletionRequest, CompletionService
from tutor_chat.errors import ChatError, QuotaExceededError
from tutor_chat.memory.models import Message, Session
from tutor_chat.memory.session_manager import SessionManager
from tutor_chat.memory.session_store import SessionStore
from tutor_chat.rate_limiter import RateLimiter
from tutor_chat.retry import RetryController
from tutor_chat.stream_consumer import StreamResult, consume_stream
from tutor_chat.translation import TranslationOverlay

DAILY_LIMIT_MESSAGE = "Daily message limit reached. Please upgrade to Pro for unlimited messages."


class PipelineState(Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    QUOTA_CHECK = "quota_check"
    SENDING = "sending"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    ABORTED = "aborted"
    FAILED = "failed"


@dataclass(frozen=True)
class ConversationSummary:
    total_messages: int
    user_messages: int
    ai_messages: int
    language: str
    learning_level: str


class ChatEngine:
    """Send pipeline for one user's tutoring conversation.

    Each ``send`` runs as its own task. Starting another send, calling
    ``stop`` or switching sessions cancels that task first, so at most one
    reply is ever streaming. A cancelled send keeps its persisted user message
    and drops only the partial reply.
    """

    def __init__(
        self,
        *,
        completion: CompletionService,
        rate_limiter: RateLimiter,
        session_store: SessionStore,
        session_manager: SessionManager,
        translation: TranslationOverlay,
        retry: RetryController,
        user_id: str,
        language: str = "en",
        learning_level: str = "intermediate",
        preferred_language: str = "en",
        context_messages: int = 10,
        on_delta: Callable[[str], None] | None = None,
    ):
        self._completion = completion
        self._rate_limiter = rate_limiter
        self._session_store = session_store
        self._session_manager = session_manager
        self._translation = translation
        self._retry = retry
        self._user_id = user_id
        self._language = language
        self._learning_level = learning_level
        self._preferred_language = preferred_language
        self._context_messages = context_messages
        self._on_delta = on_delta

        self._session: Session | None = None
        self._active_task: asyncio.Task | None = None
        self._state = PipelineState.IDLE
        self._streaming_message = ""
        self._is_loading = False
        self._is_typing = False
        self._error: str | None = None
        self._rate_limit_exceeded = False
        self._last_metadata: dict[str, Any] = {}

    # -- observable state --

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def current_session(self) -> Session | None:
        return self._session

    @property
    def messages(self) -> list[Message]:
        return list(self._session.messages) if self._session else []

    @property
    def streaming_message(self) -> str:
        return self._streaming_message

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def is_typing(self) -> bool:
        return self._is_typing

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def rate_limit_exceeded(self) -> bool:
        return self._rate_limit_exceeded

    @property
    def retry_count(self) -> int:
        return self._retry.attempt

    @property
    def last_metadata(self) -> dict[str, Any]:
        return dict(self._last_metadata)

    # -- actions --

    async def send(self, content: str) -> Message | None:
        """Send one user turn and return the finalized assistant reply.

        Returns ``None`` for blank input or when the send is cancelled.
        Quota, stream and exhausted network failures are raised after the
        engine moves to ``FAILED``.
        """
        if not content.strip():
            return None

        # Another send may claim the slot while we wait on an abort.
        while self._active_task is not None and not self._active_task.done():
            await self._abort_active()
        self._set_state(PipelineState.VALIDATING)
        self._set_state(PipelineState.QUOTA_CHECK)

        decision = self._rate_limiter.check_and_consume(self._user_id)
        if not decision.allowed:
            self._rate_limit_exceeded = True
            error = QuotaExceededError(DAILY_LIMIT_MESSAGE, reset_at=decision.reset_at)
            self._fail(error)
            raise error

        task = asyncio.create_task(self._run_send(content))
        self._active_task = task
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            return None
        finally:
            if self._active_task is task:
                self._active_task = None

    async def stop(self) -> None:
        await self._abort_active()

    async def new_session(self, title: str | None = None) -> Session:
        await self._abort_active()
        session = self._session_manager.create_session(language=self._language, title=title)
        self._activate(session)
        return session

    async def select_session(self, session_id: str) -> Session:
        await self._abort_active()
        session = self._session_manager.get_session(session_id)
        if session is None:
            raise ValueError(f"Session does not exist: {session_id}")
        self._activate(session)
        logger.info(f"Loaded {len(session.messages)} persisted messages for session {session.id}")
        return session

    async def clear_messages(self) -> None:
        await self._abort_active()
        self._reset_flags()
        if self._session is None:
            return
        self._session.messages = []
        self._session_store.remove(self._session.id)
        logger.info(f"Cleared messages for session {self._session.id}")

    async def retry_last_message(self) -> Message | None:
        last_user = next((m for m in reversed(self.messages) if m.is_user), None)
        if last_user is None:
            return None
        return await self.send(last_user.content)

    def list_sessions(self, *, limit: int = 50) -> list[Session]:
        return self._session_manager.list_sessions(limit=limit)

    def conversation_summary(self) -> ConversationSummary:
        messages = self.messages
        user_messages = sum(1 for m in messages if m.is_user)
        return ConversationSummary(
            total_messages=len(messages),
            user_messages=user_messages,
            ai_messages=len(messages) - user_messages,
            language=self._language,
            learning_level=self._learning_level,
        )

    # -- pipeline --

    async def _run_send(self, content: str) -> Message:
        session = self._ensure_session()
        self._error = None
        self._is_loading = True
        self._is_typing = True
        self._streaming_message = ""
        self._set_state(PipelineState.SENDING)
        try:
            translated = await self._translation.translate(content, self._preferred_language, self._language)
            user_message = Message.create(
                content,
                is_user=True,
                language=self._language,
                translated_content=translated,
            )
            self._append(session, user_message)

            request = CompletionRequest.from_history(
                session.messages,
                language=self._language,
                learning_level=self._learning_level,
                user_id=self._user_id,
                context_messages=self._context_messages,
            )
            result = await self._retry.execute(lambda: self._stream_once(request))

            self._set_state(PipelineState.FINALIZING)
            self._last_metadata = dict(result.metadata)
            translated = await self._translation.translate(result.content, self._preferred_language, self._language)
            ai_message = Message.create(
                result.content,
                is_user=False,
                language=self._language,
                translated_content=translated,
            )
            self._append(session, ai_message)
            self._retry.reset()
            self._set_state(PipelineState.IDLE)
            return ai_message
        except asyncio.CancelledError:
            logger.info(f"Send cancelled for session {session.id}")
            self._set_state(PipelineState.ABORTED)
            raise
        except ChatError as ex:
            if isinstance(ex, QuotaExceededError):
                self._rate_limit_exceeded = True
            self._fail(ex)
            raise
        finally:
            self._streaming_message = ""
            self._is_typing = False
            self._is_loading = False

    async def _stream_once(self, request: CompletionRequest) -> StreamResult:
        self._streaming_message = ""
        self._set_state(PipelineState.SENDING)
        async with self._completion.open_stream(request) as chunks:
            self._set_state(PipelineState.STREAMING)
            return await consume_stream(chunks, self._append_delta)

    def _append_delta(self, delta: str) -> None:
        self._streaming_message += delta
        if self._on_delta is not None:
            self._on_delta(delta)

    def _append(self, session: Session, message: Message) -> None:
        session.messages.append(message)
        outcome = self._session_store.save(session.id, session.messages)
        if not outcome.persisted:
            logger.warning(f"Session {session.id} is only held in memory until the next successful save")
        self._session_manager.touch(session)

    # -- helpers --

    async def _abort_active(self) -> None:
        task = self._active_task
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.wait([task])

    def _ensure_session(self) -> Session:
        if self._session is not None:
            return self._session
        return self._activate(self._session_manager.create_session(language=self._language))

    def _activate(self, session: Session) -> Session:
        self._session = session
        self._reset_flags()
        return session

    def _reset_flags(self) -> None:
        self._error = None
        self._streaming_message = ""
        self._is_typing = False
        self._rate_limit_exceeded = False
        self._retry.reset()
        self._state = PipelineState.IDLE

    def _fail(self, error: ChatError) -> None:
        logger.error(f"Chat error: {type(error).__name__}: {error}")
        self._error = str(error)
        self._set_state(PipelineState.FAILED)

    def _set_state(self, state: PipelineState) -> None:
        if state is not self._state:
            logger.debug(f"Send pipeline: {self._state.value} -> {state.value}")
        self._state = state
