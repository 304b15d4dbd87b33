import asyncio
import contextlib
import signal
import sys
from collections.abc import Coroutine, Iterator
from typing import Any

from dotenv import load_dotenv
from loguru import logger

from tutor_chat.app_config import load_json_config, parse_app_config, resolve_runtime_env
from tutor_chat.bootstrap import bootstrap_runtime
from tutor_chat.chat_engine import ChatEngine
from tutor_chat.commands.router import CommandRouter
from tutor_chat.errors import ChatError, QuotaExceededError
from tutor_chat.memory.models import Message
from tutor_chat.spinner import Spinner

_LINE_PREFIX = "tutor> "
_USER_PROMPT = "you> "


@contextlib.contextmanager
def _interrupt_cancels(task: asyncio.Task) -> Iterator[None]:
    """Route Ctrl+C to ``task`` while it runs instead of to the whole program."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, task.cancel)
        installed = True
    except (NotImplementedError, RuntimeError):
        # Windows, or not the main thread: asyncio.run cancels the main task instead.
        installed = False
    try:
        yield
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


class ReplyPrinter:
    """Streams reply deltas to stdout, showing a spinner until the first one."""

    def __init__(self) -> None:
        self._spinner: Spinner | None = None

    def begin(self) -> None:
        self._spinner = Spinner(prefix=_LINE_PREFIX)
        self._spinner.start()

    def on_delta(self, delta: str) -> None:
        self.end()
        print(delta, end="", flush=True)

    def end(self) -> None:
        if self._spinner is not None:
            self._spinner.stop()
            self._spinner = None


class Repl:
    def __init__(self, engine: ChatEngine, printer: ReplyPrinter):
        self._engine = engine
        self._printer = printer
        self._router = CommandRouter(
            on_help=self._on_help,
            on_new=self._on_new,
            on_sessions=self._on_sessions,
            on_session=self._on_session,
            on_clear=self._on_clear,
            on_retry=self._on_retry,
            on_summary=self._on_summary,
            on_unknown=self._on_unknown,
        )

    async def handle(self, user_input: str) -> None:
        if await self._router.try_handle(user_input):
            return
        await self._send(self._engine.send(user_input))

    async def _send(self, coro: Coroutine[Any, Any, Message | None]) -> None:
        self._printer.begin()
        task = asyncio.create_task(coro)
        try:
            with _interrupt_cancels(task):
                await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            print(f"\n{_LINE_PREFIX}[stopped]")
        except QuotaExceededError as ex:
            reset = f" (resets {ex.reset_at:%Y-%m-%d %H:%M} UTC)" if ex.reset_at else ""
            print(f"\n{_LINE_PREFIX}[{ex}{reset}]")
        except ChatError as ex:
            print(f"\n{_LINE_PREFIX}[Error: {ex}]")
        finally:
            self._printer.end()
        print("\n")

    async def _on_help(self) -> None:
        print(f"{_LINE_PREFIX}Commands:")
        print(f"{_LINE_PREFIX}  /new [title]    start a new practice session")
        print(f"{_LINE_PREFIX}  /sessions       list saved sessions")
        print(f"{_LINE_PREFIX}  /session <id>   switch to a saved session")
        print(f"{_LINE_PREFIX}  /clear          clear the current session")
        print(f"{_LINE_PREFIX}  /retry          resend the last message")
        print(f"{_LINE_PREFIX}  /summary        show conversation counts")
        print(f"{_LINE_PREFIX}  Ctrl+C          stop the current reply")

    async def _on_new(self, title: str) -> None:
        session = await self._engine.new_session(title or None)
        print(f"{_LINE_PREFIX}Started session: {session.title} (id={session.id})")

    async def _on_sessions(self) -> None:
        sessions = self._engine.list_sessions(limit=20)
        if not sessions:
            print(f"{_LINE_PREFIX}No saved sessions.")
            return
        active = self._engine.current_session
        for session in sessions:
            marker = "*" if active is not None and session.id == active.id else " "
            print(
                f"{_LINE_PREFIX}{marker} {session.title} (id={session.id}, "
                f"language={session.language}, updated={session.updated_at:%Y-%m-%d %H:%M})"
            )

    async def _on_session(self, session_id: str) -> None:
        if not session_id:
            session = self._engine.current_session
            print(f"{_LINE_PREFIX}Current session: {session.title if session else '-'} (id={session.id if session else '-'})")
            return
        try:
            session = await self._engine.select_session(session_id)
        except ValueError as ex:
            print(f"{_LINE_PREFIX}{ex}")
            return
        print(f"{_LINE_PREFIX}Resumed session: {session.title} ({len(session.messages)} messages)")

    async def _on_clear(self) -> None:
        await self._engine.clear_messages()
        print(f"{_LINE_PREFIX}Session cleared.")

    async def _on_retry(self) -> None:
        if not any(m.is_user for m in self._engine.messages):
            print(f"{_LINE_PREFIX}Nothing to retry.")
            return
        await self._send(self._engine.retry_last_message())

    async def _on_summary(self) -> None:
        summary = self._engine.conversation_summary()
        print(
            f"{_LINE_PREFIX}Messages: {summary.total_messages} "
            f"(you={summary.user_messages}, tutor={summary.ai_messages}) | "
            f"language={summary.language}, level={summary.learning_level}"
        )

    def _on_unknown(self, command: str) -> None:
        print(f"{_LINE_PREFIX}Unknown command: {command}. Type /help for commands.")


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    env = resolve_runtime_env()
    printer = ReplyPrinter()
    runtime = await bootstrap_runtime(app, env, on_delta=printer.on_delta)
    repl = Repl(runtime.engine, printer)

    session = runtime.engine.current_session
    print("tutor-chat (type 'exit' to quit, '/help' for commands)")
    print(f"Language: {app.language} | Level: {app.learning_level} | User: {env.user_id}")
    if session is not None:
        print(f"Session: {session.title} (id={session.id})")
    if runtime.log_descriptions:
        print(f"Logging: {', '.join(runtime.log_descriptions)}")
    print()

    try:
        while True:
            try:
                user_input = input(_USER_PROMPT)
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()
            if trimmed in ("exit", "quit"):
                break
            if not trimmed:
                continue

            print()
            try:
                await repl.handle(trimmed)
            except Exception as ex:
                logger.error(f"Unhandled error: {ex}")
    finally:
        await runtime.aclose()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    run()
