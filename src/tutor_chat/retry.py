from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from tutor_chat.errors import TransientNetworkError

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3


class RetryController:
    """Runs one network step with bounded exponential backoff.

    Attempt ``k`` (0-based) that fails with ``TransientNetworkError`` waits
    ``2**k`` seconds before attempt ``k + 1``. Anything else, including
    ``QuotaExceededError``, ``StreamFrameError`` and cancellation, propagates
    from the attempt that raised it.
    """

    def __init__(
        self,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_retry: Callable[[int, float, BaseException | None], None] | None = None,
    ):
        self._max_retries = max(0, max_retries)
        self._sleep = sleep
        self._on_retry = on_retry
        self._attempt = 0

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def reset(self) -> None:
        self._attempt = 0

    async def execute(self, op: Callable[[], Awaitable[T]]) -> T:
        self._attempt = 0
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TransientNetworkError),
            wait=wait_exponential(multiplier=1, exp_base=2, min=0),
            stop=stop_after_attempt(self._max_retries + 1),
            sleep=self._sleep,
            before_sleep=self._before_sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                self._attempt = attempt.retry_state.attempt_number - 1
                return await op()
        raise AssertionError("unreachable: tenacity reraises on the final attempt")

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        wait = retry_state.next_action.sleep if retry_state.next_action else 0
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        reason = type(exc).__name__ if exc else "Unknown"
        self._attempt = retry_state.attempt_number
        logger.warning(
            f"{reason}: {exc}. Retrying in {wait:.0f}s "
            f"(retry {retry_state.attempt_number}/{self._max_retries})..."
        )
        if self._on_retry is not None:
            self._on_retry(self._attempt, wait, exc)
