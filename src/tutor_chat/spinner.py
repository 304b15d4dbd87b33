from __future__ import annotations

import asyncio
import contextlib
import sys

_SPINNER_FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"


class Spinner:
    """Asyncio spinner that renders on the current line using \\r."""

    def __init__(self, prefix: str = "", label: str = " Thinking...", interval: float = 0.08):
        self._prefix = prefix
        self._label = label
        self._interval = interval
        self._task: asyncio.Task | None = None
        self._frame_width = 1 + len(label)

    @property
    def running(self) -> bool:
        return self._task is not None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        task = self._task
        if task is None:
            return
        self._task = None
        task.cancel()
        clear = self._prefix + " " * self._frame_width
        with contextlib.suppress(UnicodeEncodeError, OSError):
            sys.stdout.write("\r" + clear + "\r" + self._prefix)
            sys.stdout.flush()

    async def _run(self) -> None:
        i = 0
        try:
            while True:
                frame = _SPINNER_FRAMES[i % len(_SPINNER_FRAMES)] + self._label
                sys.stdout.write("\r" + self._prefix + frame)
                sys.stdout.flush()
                await asyncio.sleep(self._interval)
                i += 1
        except (UnicodeEncodeError, OSError):
            pass  # no unicode on this terminal
