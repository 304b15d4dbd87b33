import unittest
from datetime import UTC, date, datetime, timedelta

from tutor_chat.memory import KeyValueStore
from tutor_chat.rate_limiter import DailyRateLimiter, RateLimiter, UNLIMITED, usage_key, usage_reset_key


class _Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class DailyRateLimiterTests(unittest.TestCase):
    def setUp(self) -> None:
        self._store = KeyValueStore(":memory:", capacity_bytes=0)
        self._clock = _Clock(datetime(2026, 5, 4, 8, 30, tzinfo=UTC))

    def tearDown(self) -> None:
        self._store.close()

    def _limiter(self, daily_limit: int) -> DailyRateLimiter:
        return DailyRateLimiter(self._store, daily_limit=daily_limit, clock=self._clock)

    def test_satisfies_protocol(self) -> None:
        self.assertIsInstance(self._limiter(5), RateLimiter)

    def test_first_message_of_the_day_starts_the_window(self) -> None:
        limiter = self._limiter(5)

        decision = limiter.check_and_consume("u1")

        self.assertTrue(decision.allowed)
        record = limiter.usage("u1")
        self.assertEqual(1, record.count)
        self.assertEqual(self._clock.now + timedelta(hours=24), record.reset_at)
        self.assertEqual("1", self._store.get_item(usage_key("u1", date(2026, 5, 4))))
        self.assertIsNotNone(self._store.get_item(usage_reset_key("u1", date(2026, 5, 4))))

    def test_message_past_the_limit_is_denied_without_consuming(self) -> None:
        limiter = self._limiter(3)

        allowed = [limiter.check_and_consume("u1").allowed for _ in range(3)]
        denied = limiter.check_and_consume("u1")
        denied_again = limiter.check_and_consume("u1")

        self.assertEqual([True, True, True], allowed)
        self.assertFalse(denied.allowed)
        self.assertFalse(denied_again.allowed)
        self.assertEqual(self._clock.now + timedelta(hours=24), denied.reset_at)
        self.assertEqual(3, limiter.usage("u1").count)

    def test_counter_restarts_after_reset_time(self) -> None:
        limiter = self._limiter(2)
        limiter.check_and_consume("u1")
        limiter.check_and_consume("u1")
        reset_at = limiter.usage("u1").reset_at
        day = self._clock.now.date()

        self._clock.now = reset_at + timedelta(seconds=1)
        decision = limiter.check_and_consume("u1", today=day)

        self.assertTrue(decision.allowed)
        record = limiter.usage("u1", day)
        self.assertEqual(1, record.count)
        self.assertEqual(self._clock.now + timedelta(hours=24), record.reset_at)

    def test_each_day_has_its_own_counter(self) -> None:
        limiter = self._limiter(1)
        limiter.check_and_consume("u1")
        self.assertFalse(limiter.check_and_consume("u1").allowed)

        self._clock.now += timedelta(days=1)

        self.assertTrue(limiter.check_and_consume("u1").allowed)

    def test_users_are_counted_separately(self) -> None:
        limiter = self._limiter(1)

        self.assertTrue(limiter.check_and_consume("u1").allowed)
        self.assertTrue(limiter.check_and_consume("u2").allowed)
        self.assertFalse(limiter.check_and_consume("u1").allowed)

    def test_user_ids_sharing_a_prefix_do_not_overwrite_each_other(self) -> None:
        limiter = self._limiter(1)
        day = date(2026, 5, 4)

        self.assertTrue(limiter.check_and_consume("bob").allowed)
        self.assertTrue(limiter.check_and_consume("reset_bob").allowed)

        self.assertNotEqual(usage_key("reset_bob", day), usage_reset_key("bob", day))
        self.assertEqual(self._clock.now + timedelta(hours=24), limiter.usage("bob").reset_at)
        self.assertFalse(limiter.check_and_consume("bob").allowed)

    def test_unlimited_never_denies(self) -> None:
        limiter = self._limiter(UNLIMITED)

        decisions = [limiter.check_and_consume("pro").allowed for _ in range(100)]

        self.assertTrue(all(decisions))
        self.assertEqual(100, limiter.usage("pro").count)

    def test_unreadable_counter_starts_over(self) -> None:
        limiter = self._limiter(2)
        day = self._clock.now.date()
        self._store.set_item(usage_key("u1", day), "many")
        self._store.set_item(usage_reset_key("u1", day), "2026-05-05T08:30:00+00:00")

        self.assertIsNone(limiter.usage("u1"))
        self.assertTrue(limiter.check_and_consume("u1").allowed)
        self.assertEqual(1, limiter.usage("u1").count)

    def test_counters_are_shared_through_the_store(self) -> None:
        first = self._limiter(2)
        second = self._limiter(2)

        first.check_and_consume("u1")
        second.check_and_consume("u1")

        self.assertFalse(first.check_and_consume("u1").allowed)


if __name__ == "__main__":
    unittest.main()
