from __future__ import annotations

from collections.abc import Awaitable, Callable


class CommandRouter:
    def __init__(
        self,
        *,
        on_help: Callable[[], Awaitable[None]],
        on_new: Callable[[str], Awaitable[None]],
        on_sessions: Callable[[], Awaitable[None]],
        on_session: Callable[[str], Awaitable[None]],
        on_clear: Callable[[], Awaitable[None]],
        on_retry: Callable[[], Awaitable[None]],
        on_summary: Callable[[], Awaitable[None]],
        on_unknown: Callable[[str], None],
    ) -> None:
        self._on_help = on_help
        self._on_new = on_new
        self._on_sessions = on_sessions
        self._on_session = on_session
        self._on_clear = on_clear
        self._on_retry = on_retry
        self._on_summary = on_summary
        self._on_unknown = on_unknown

    async def try_handle(self, user_message: str) -> bool:
        trimmed = user_message.strip()
        if not trimmed.startswith("/"):
            return False

        command, _, argument = trimmed.partition(" ")
        argument = argument.strip()

        if command == "/help":
            await self._on_help()
        elif command == "/new":
            await self._on_new(argument)
        elif command == "/sessions":
            await self._on_sessions()
        elif command == "/session":
            await self._on_session(argument)
        elif command == "/clear":
            await self._on_clear()
        elif command == "/retry":
            await self._on_retry()
        elif command == "/summary":
            await self._on_summary()
        else:
            self._on_unknown(trimmed)
        return True
