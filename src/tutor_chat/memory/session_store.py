from __future__ import annotations

import json
from enum import Enum

from loguru import logger

from tutor_chat.errors import StorageQuotaError
from tutor_chat.memory.models import Message
from tutor_chat.memory.pruning import evict_oldest_sessions, session_key
from tutor_chat.memory.store import KeyValueStore

DEFAULT_MAX_RETAINED_SESSIONS = 10


class SaveOutcome(Enum):
    SAVED = "saved"
    SAVED_AFTER_EVICTION = "saved_after_eviction"
    DROPPED = "dropped"

    @property
    def persisted(self) -> bool:
        return self is not SaveOutcome.DROPPED


class SessionStore:
    """Durable message lists keyed by session id.

    When the backing store runs out of room, ``save`` evicts down to the
    ``max_retained_sessions`` most recently active sessions and retries once.
    A second failure drops the write; the caller's in-memory list stays the
    source of truth until a later save succeeds.
    """

    def __init__(self, store: KeyValueStore, *, max_retained_sessions: int = DEFAULT_MAX_RETAINED_SESSIONS):
        self._store = store
        self._max_retained_sessions = max_retained_sessions

    @property
    def max_retained_sessions(self) -> int:
        return self._max_retained_sessions

    def load(self, session_id: str) -> list[Message]:
        raw = self._store.get_item(session_key(session_id))
        if raw is None:
            return []
        try:
            data = json.loads(raw)
            if not isinstance(data, list):
                raise ValueError(f"expected a JSON array, got {type(data).__name__}")
            return [Message.from_dict(item) for item in data]
        except (ValueError, KeyError, TypeError) as ex:
            logger.error(f"Failed to load saved messages for session {session_id}: {ex}")
            return []

    def save(self, session_id: str, messages: list[Message]) -> SaveOutcome:
        key = session_key(session_id)
        payload = json.dumps([m.to_dict() for m in messages], ensure_ascii=False)
        try:
            self._store.set_item(key, payload)
            return SaveOutcome.SAVED
        except StorageQuotaError as ex:
            logger.warning(f"Failed to save messages: {ex}")

        self.evict_oldest(self._max_retained_sessions)
        try:
            self._store.set_item(key, payload)
        except StorageQuotaError as ex:
            logger.error(f"Still unable to save session {session_id} after cleanup: {ex}")
            return SaveOutcome.DROPPED
        return SaveOutcome.SAVED_AFTER_EVICTION

    def evict_oldest(self, keep: int) -> list[str]:
        return evict_oldest_sessions(self._store, keep=keep)

    def remove(self, session_id: str) -> None:
        self._store.remove_item(session_key(session_id))
