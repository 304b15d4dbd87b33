from __future__ import annotations

from datetime import datetime


class ChatError(Exception):
    """Base class for failures the chat engine surfaces to its caller."""


class QuotaExceededError(ChatError):
    def __init__(self, message: str, reset_at: datetime | None = None):
        super().__init__(message)
        self.reset_at = reset_at


class TransientNetworkError(ChatError):
    """A completion request or stream failure that may succeed on retry."""


class IncompleteStreamError(TransientNetworkError):
    """The transport closed before a terminal frame arrived."""


class StreamFrameError(ChatError):
    def __init__(self, message: str, code: str = ""):
        super().__init__(message)
        self.code = code


class StorageQuotaError(Exception):
    def __init__(self, key: str, required_bytes: int, capacity_bytes: int):
        super().__init__(
            f"Storage capacity exhausted writing {key!r}: "
            f"{required_bytes:,} bytes needed, capacity {capacity_bytes:,}"
        )
        self.key = key
        self.required_bytes = required_bytes
        self.capacity_bytes = capacity_bytes
