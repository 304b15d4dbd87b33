from tutor_chat.memory.models import Message, Session, UsageRecord
from tutor_chat.memory.pruning import evict_oldest_sessions
from tutor_chat.memory.session_manager import SessionManager
from tutor_chat.memory.session_store import SaveOutcome, SessionStore
from tutor_chat.memory.store import KeyValueStore

__all__ = [
    "KeyValueStore",
    "Message",
    "SaveOutcome",
    "Session",
    "SessionManager",
    "SessionStore",
    "UsageRecord",
    "evict_oldest_sessions",
]
