"""Server-sent event decoding for completion streams.

The completion route writes one JSON object per event, ``data: <json>``
followed by a blank line. Reads from the transport can split or merge
events arbitrarily, so decoding buffers until a full event is available.
"""
from __future__ import annotations

import codecs
import json
from collections.abc import AsyncIterable, AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from tutor_chat.errors import IncompleteStreamError, StreamFrameError

_DATA_PREFIX = "data:"


@dataclass(frozen=True)
class StreamFrame:
    content: str = ""
    done: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    code: str | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> StreamFrame:
        if "error" in payload:
            return cls(error=str(payload["error"]), code=str(payload.get("code") or ""))
        metadata = payload.get("metadata")
        return cls(
            content=str(payload.get("content") or ""),
            done=bool(payload.get("done", False)),
            metadata=metadata if isinstance(metadata, dict) else {},
        )


@dataclass(frozen=True)
class StreamResult:
    content: str
    metadata: dict[str, Any]


def _event_data(block: str) -> str | None:
    lines = [line for line in block.split("\n") if line.startswith(_DATA_PREFIX)]
    if not lines:
        return None
    parts = []
    for line in lines:
        value = line[len(_DATA_PREFIX):]
        parts.append(value[1:] if value.startswith(" ") else value)
    return "\n".join(parts)


def parse_event(block: str) -> StreamFrame | None:
    """Decode one event block, or ``None`` when it carries no usable payload."""
    data = _event_data(block)
    if data is None:
        return None
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as ex:
        logger.warning(f"Failed to parse streaming data: {ex} ({data[:200]!r})")
        return None
    if not isinstance(payload, dict):
        logger.warning(f"Ignoring non-object stream payload: {data[:200]!r}")
        return None
    return StreamFrame.from_payload(payload)


async def iter_frames(chunks: AsyncIterable[str | bytes]) -> AsyncIterator[StreamFrame]:
    """Yield frames until the transport closes, a done frame or an error frame."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""

    async for chunk in chunks:
        text = decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        buffer += text.replace("\r\n", "\n")
        while "\n\n" in buffer:
            block, buffer = buffer.split("\n\n", 1)
            frame = parse_event(block)
            if frame is None:
                continue
            yield frame
            if frame.done or frame.is_error:
                return

    buffer += decoder.decode(b"", final=True)
    if buffer.strip():
        frame = parse_event(buffer)
        if frame is not None:
            yield frame


async def consume_stream(
    chunks: AsyncIterable[str | bytes],
    on_delta: Callable[[str], None],
) -> StreamResult:
    """Accumulate content deltas until the terminal frame.

    ``on_delta`` sees every non-empty delta as it arrives. An error frame
    raises ``StreamFrameError``; a transport that closes first raises
    ``IncompleteStreamError``.
    """
    parts: list[str] = []
    async for frame in iter_frames(chunks):
        if frame.is_error:
            raise StreamFrameError(frame.error or "", frame.code or "")
        if frame.content:
            parts.append(frame.content)
            on_delta(frame.content)
        if frame.done:
            return StreamResult(content="".join(parts), metadata=frame.metadata)
    raise IncompleteStreamError("Completion stream closed before the final frame")
