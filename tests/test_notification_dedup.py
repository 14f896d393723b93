import unittest

from rfq_workflow.reconciliation.dedup import NotificationDedupCache
from tests.helpers.fakes import FakeClock


class NotificationDedupCacheTest(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.cache = NotificationDedupCache(ttl_seconds=300, clock=self.clock)

    def test_first_occurrence_is_emitted_and_repeat_is_suppressed(self) -> None:
        self.assertTrue(self.cache.should_emit("r1|sent|received"))
        self.assertFalse(self.cache.should_emit("r1|sent|received"))
        self.assertTrue(self.cache.should_emit("r2|sent|received"))

    def test_key_is_emitted_again_once_ttl_elapsed(self) -> None:
        self.assertTrue(self.cache.should_emit("k"))
        self.clock.advance(299)
        self.assertFalse(self.cache.should_emit("k"))
        self.clock.advance(1)
        self.assertTrue(self.cache.should_emit("k"))
        self.clock.advance(10)
        self.assertFalse(self.cache.should_emit("k"))

    def test_suppressed_attempt_does_not_extend_the_window(self) -> None:
        self.cache.should_emit("k")
        self.clock.advance(200)
        self.assertFalse(self.cache.should_emit("k"))
        self.clock.advance(100)
        self.assertTrue(self.cache.should_emit("k"))

    def test_explicit_now_overrides_clock(self) -> None:
        self.assertTrue(self.cache.should_emit("k", now=0))
        self.assertFalse(self.cache.should_emit("k", now=299.9))
        self.assertTrue(self.cache.should_emit("k", now=300))

    def test_purge_removes_only_expired_records(self) -> None:
        self.cache.should_emit("old")
        self.clock.advance(250)
        self.cache.should_emit("young")
        self.clock.advance(60)
        self.assertEqual(self.cache.purge_expired(), 1)
        self.assertNotIn("old", self.cache)
        self.assertIn("young", self.cache)
        self.assertEqual(len(self.cache), 1)

    def test_expired_records_are_ignored_before_purge(self) -> None:
        self.cache.should_emit("k")
        self.clock.advance(301)
        self.assertIn("k", self.cache)
        self.assertTrue(self.cache.should_emit("k"))

    def test_clear(self) -> None:
        self.cache.should_emit("k")
        self.cache.clear()
        self.assertEqual(len(self.cache), 0)
        self.assertTrue(self.cache.should_emit("k"))


if __name__ == "__main__":
    unittest.main()
