"""Loguru sinks for the chat client.

Sinks are chosen by the ``LogConsumers`` list in ``config.json``; each entry
names a consumer ``type`` plus that consumer's own options. Every record
carries the active ``user_id`` so one log file can hold several learners.
"""
import sys
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from loguru import logger

_CONSOLE_FORMAT = "<level>{level:<8}</level> | <cyan>{name}</cyan> | {extra[user_id]} - <level>{message}</level>"
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {extra[user_id]} | {name}:{function}:{line} - {message}"


@runtime_checkable
class LogConsumer(Protocol):
    def register(self, level: str) -> None: ...
    def describe(self, level: str) -> str: ...


class ConsoleLogConsumer:
    """Writes to stderr; stdout is reserved for streamed replies."""

    def __init__(self, colorize: bool | None = None):
        self._colorize = colorize

    def register(self, level: str) -> None:
        logger.add(sys.stderr, level=level, format=_CONSOLE_FORMAT, colorize=self._colorize)

    def describe(self, level: str) -> str:
        return f"console (stderr, {level})"


class FileLogConsumer:
    def __init__(
        self,
        path: str = ".tutor_chat/tutor_chat.log",
        rotation: str = "5 MB",
        retention: int = 3,
        serialize: bool = False,
    ):
        self._path = path
        self._rotation = rotation
        self._retention = retention
        self._serialize = serialize

    def register(self, level: str) -> None:
        Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            self._path,
            level=level,
            format=_FILE_FORMAT,
            rotation=self._rotation,
            retention=self._retention,
            serialize=self._serialize,
            encoding="utf-8",
        )

    def describe(self, level: str) -> str:
        kind = "json lines" if self._serialize else "text"
        return f"file ({self._path}, {kind}, {level})"


_CONSUMER_TYPES: dict[str, type] = {
    "console": ConsoleLogConsumer,
    "file": FileLogConsumer,
}

_DEFAULT_CONSUMERS: list[dict[str, Any]] = [
    {"type": "console", "level": "WARNING"},
    {"type": "file"},
]


def build_consumer(config: dict[str, Any]) -> LogConsumer | None:
    cls = _CONSUMER_TYPES.get(str(config.get("type", "")))
    if cls is None:
        return None
    options = {k: v for k, v in config.items() if k not in ("type", "level")}
    return cls(**options)


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
    *,
    user_id: str = "anonymous",
) -> list[str]:
    """Replace loguru's sinks with the configured consumers and describe them."""
    logger.remove()
    logger.configure(extra={"user_id": user_id})

    descriptions: list[str] = []
    for config in _DEFAULT_CONSUMERS if consumers is None else consumers:
        consumer = build_consumer(config)
        if consumer is None:
            logger.warning(f"Unknown log consumer type: {config.get('type')!r}")
            continue
        sink_level = str(config.get("level", level)).upper()
        consumer.register(sink_level)
        descriptions.append(consumer.describe(sink_level))

    return descriptions
