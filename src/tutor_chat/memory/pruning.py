from __future__ import annotations

import json
from datetime import UTC, datetime

from loguru import logger

from tutor_chat.memory.models import parse_timestamp
from tutor_chat.memory.store import KeyValueStore

SESSION_KEY_PREFIX = "chat_session_"
META_KEY_PREFIX = "chat_meta_"

_EPOCH = datetime.fromtimestamp(0, UTC)


def session_key(session_id: str) -> str:
    return f"{SESSION_KEY_PREFIX}{session_id}"


def meta_key(session_id: str) -> str:
    return f"{META_KEY_PREFIX}{session_id}"


def last_activity(raw: str | None) -> datetime:
    """Timestamp of the last message in a stored list; epoch when empty or unreadable."""
    if not raw:
        return _EPOCH
    try:
        data = json.loads(raw)
        if isinstance(data, list) and data and isinstance(data[-1], dict):
            return parse_timestamp(str(data[-1]["timestamp"]))
    except (ValueError, KeyError, TypeError):
        pass
    return _EPOCH


def evict_oldest_sessions(store: KeyValueStore, *, keep: int) -> list[str]:
    """Delete every stored session except the ``keep`` most recently active.

    Sessions are ranked by their last message timestamp, newest first; ties
    fall back to key order so the outcome does not depend on write order.
    """
    ranked: list[tuple[datetime, str]] = []
    for key in store.keys(SESSION_KEY_PREFIX):
        ranked.append((last_activity(store.get_item(key)), key))
    ranked.sort(key=lambda item: (item[0], item[1]), reverse=True)

    evicted: list[str] = []
    for _, key in ranked[max(0, keep):]:
        session_id = key[len(SESSION_KEY_PREFIX):]
        store.remove_item(key)
        store.remove_item(meta_key(session_id))
        evicted.append(session_id)

    if evicted:
        logger.info(f"Evicted {len(evicted)} stored session(s), keeping the {keep} most recent")
    return evicted
