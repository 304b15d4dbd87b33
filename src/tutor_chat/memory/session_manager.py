from __future__ import annotations

import json
from uuid import uuid4

from loguru import logger

from tutor_chat.errors import StorageQuotaError
from tutor_chat.languages import default_session_title
from tutor_chat.memory.models import Session, utc_now
from tutor_chat.memory.pruning import META_KEY_PREFIX, meta_key
from tutor_chat.memory.session_store import SessionStore
from tutor_chat.memory.store import KeyValueStore

_REQUIRED_METADATA_KEYS = ("id", "userId", "title", "language", "createdAt", "updatedAt")


class SessionManager:
    """Session metadata (title, owner, language, timestamps) beside the message lists."""

    def __init__(self, store: KeyValueStore, session_store: SessionStore, *, user_id: str):
        self._store = store
        self._session_store = session_store
        self._user_id = user_id

    def create_session(self, *, language: str, title: str | None = None) -> Session:
        now = utc_now()
        session = Session(
            id=f"session_{uuid4().hex}",
            user_id=self._user_id,
            title=(title or "").strip() or default_session_title(language),
            language=language,
            created_at=now,
            updated_at=now,
        )
        self._write_metadata(session)
        logger.info(f"Created session {session.id} ({session.title!r})")
        return session

    def get_session(self, session_id: str) -> Session | None:
        metadata = self._read_metadata(session_id)
        if metadata is None:
            return None
        return Session.from_metadata(metadata, self._session_store.load(session_id))

    def list_sessions(self, *, limit: int = 50) -> list[Session]:
        sessions: list[Session] = []
        for key in self._store.keys(META_KEY_PREFIX):
            metadata = self._read_metadata(key[len(META_KEY_PREFIX):])
            if metadata is None or metadata.get("userId") != self._user_id:
                continue
            sessions.append(Session.from_metadata(metadata))
        sessions.sort(key=lambda s: (s.updated_at, s.created_at), reverse=True)
        return sessions[: max(1, limit)]

    def touch(self, session: Session) -> None:
        session.updated_at = utc_now()
        self._write_metadata(session)

    def delete(self, session_id: str) -> None:
        self._session_store.remove(session_id)
        self._store.remove_item(meta_key(session_id))

    def _write_metadata(self, session: Session) -> None:
        try:
            self._store.set_item(meta_key(session.id), json.dumps(session.metadata_dict(), ensure_ascii=False))
        except StorageQuotaError as ex:
            logger.warning(f"Session metadata for {session.id} not persisted: {ex}")

    def _read_metadata(self, session_id: str) -> dict | None:
        raw = self._store.get_item(meta_key(session_id))
        if raw is None:
            return None
        try:
            parsed = json.loads(raw)
            if isinstance(parsed, dict) and all(k in parsed for k in _REQUIRED_METADATA_KEYS):
                return parsed
        except ValueError:
            pass
        logger.error(f"Ignoring unreadable metadata for session {session_id}")
        return None
