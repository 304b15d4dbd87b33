from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Protocol, runtime_checkable

from loguru import logger

from tutor_chat.errors import StorageQuotaError
from tutor_chat.memory.models import UsageRecord, format_timestamp, parse_timestamp, utc_now
from tutor_chat.memory.store import KeyValueStore

UNLIMITED = -1
RESET_WINDOW = timedelta(hours=24)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    reset_at: datetime | None = None


@runtime_checkable
class RateLimiter(Protocol):
    def check_and_consume(self, user_id: str, today: date | None = None) -> RateLimitDecision: ...


def usage_key(user_id: str, day: date) -> str:
    return f"chat_usage_{user_id}_{day.isoformat()}"


def usage_reset_key(user_id: str, day: date) -> str:
    return f"chat_usagereset_{user_id}_{day.isoformat()}"


class DailyRateLimiter:
    """Per-user, per-day message counter kept in the shared key/value store.

    Any process pointed at the same store sees the same counters. The check
    and the increment run without an await in between, so under asyncio a
    single decision is atomic.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        daily_limit: int,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._daily_limit = daily_limit
        self._clock = clock

    @property
    def daily_limit(self) -> int:
        return self._daily_limit

    def usage(self, user_id: str, today: date | None = None) -> UsageRecord | None:
        day = today or self._clock().date()
        raw_count = self._store.get_item(usage_key(user_id, day))
        raw_reset = self._store.get_item(usage_reset_key(user_id, day))
        if raw_count is None or raw_reset is None:
            return None
        try:
            return UsageRecord(
                user_id=user_id,
                day=day,
                count=max(0, int(raw_count)),
                reset_at=parse_timestamp(raw_reset),
            )
        except ValueError:
            logger.error(f"Discarding unreadable usage record for {user_id} on {day.isoformat()}")
            return None

    def check_and_consume(self, user_id: str, today: date | None = None) -> RateLimitDecision:
        now = self._clock()
        day = today or now.date()
        record = self.usage(user_id, day)

        if record is None or now > record.reset_at:
            self._write(UsageRecord(user_id=user_id, day=day, count=1, reset_at=now + RESET_WINDOW))
            return RateLimitDecision(allowed=True)

        if self._daily_limit != UNLIMITED and record.count >= self._daily_limit:
            logger.info(f"Daily message limit reached for {user_id} ({record.count}/{self._daily_limit})")
            return RateLimitDecision(allowed=False, reset_at=record.reset_at)

        self._write(UsageRecord(user_id=user_id, day=day, count=record.count + 1, reset_at=record.reset_at))
        return RateLimitDecision(allowed=True)

    def _write(self, record: UsageRecord) -> None:
        try:
            self._store.set_item(usage_key(record.user_id, record.day), str(record.count))
            self._store.set_item(usage_reset_key(record.user_id, record.day), format_timestamp(record.reset_at))
        except StorageQuotaError as ex:
            logger.warning(f"Usage counter for {record.user_id} not persisted: {ex}")
