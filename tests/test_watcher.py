import unittest
from dataclasses import replace

from rfq_workflow.core import EventBus, RfqStatusNotification
from rfq_workflow.domain.models import APPROVED, DRAFT, RECEIVED, SENT
from rfq_workflow.errors import PollError, TransportError
from rfq_workflow.gateway.memory import InMemoryRfqGateway
from rfq_workflow.observability import metrics_snapshot, reset_metrics_for_tests
from rfq_workflow.reconciliation.dedup import NotificationDedupCache
from rfq_workflow.reconciliation.watcher import RfqStatusWatcher
from tests.helpers.fakes import FakeClock, ManualTimerFactory, make_rfq, quote_lines_for


class _FlakyGateway(InMemoryRfqGateway):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.fail_fetch = False
        self.during_fetch = None

    def fetch_rfq_collection(self):
        if self.fail_fetch:
            raise TransportError(details="connection refused")
        collection = super().fetch_rfq_collection()
        if self.during_fetch is not None:
            hook, self.during_fetch = self.during_fetch, None
            hook()
        return collection


class RfqStatusWatcherTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()
        self.clock = FakeClock()
        self.timers = ManualTimerFactory()
        self.gateway = _FlakyGateway([make_rfq("r1", number="R-001", status=SENT), make_rfq("r2", number="R-002")])
        self.cache = NotificationDedupCache(ttl_seconds=300, clock=self.clock)
        self.emitted = []
        self.bus = EventBus()

    def _watcher(self, **kwargs) -> RfqStatusWatcher:
        options = {
            "timer_factory": self.timers,
            "clock": self.clock,
            "event_bus": self.bus,
            "purge_interval_seconds": 300,
        }
        options.update(kwargs)
        emitter = options.pop("emit_notification", self.emitted.append)
        return RfqStatusWatcher(self.gateway, self.cache, emitter, **options)

    def _change(self, rfq_id: str, **changes) -> None:
        self.gateway.put(replace(self.gateway.get_rfq(rfq_id), **changes))

    def test_first_pass_is_silent_and_changes_are_emitted_after(self) -> None:
        watcher = self._watcher()
        self.assertEqual(watcher.reconcile_once(), [])

        self._change("r1", status=RECEIVED)
        events = watcher.reconcile_once()
        self.assertEqual(len(events), 1)
        event = events[0]
        self.assertEqual((event.entity_id, event.previous_status, event.new_status), ("r1", SENT, RECEIVED))
        self.assertEqual(event.target_audience, "manager")
        self.assertEqual(event.rfq_number, "R-001")
        self.assertEqual(self.emitted, events)
        self.assertEqual(watcher.reconcile_once(), [])

    def test_local_transition_is_not_reported_again_by_the_poll(self) -> None:
        watcher = self._watcher()
        watcher.reconcile_once()
        before = self.gateway.get_rfq("r2")
        after = self.gateway.send_rfq("r2")

        event = watcher.record_local_transition(before, after)
        self.assertEqual((event.previous_status, event.new_status), (DRAFT, SENT))
        self.assertEqual(watcher.reconcile_once(), [])
        self.assertEqual(len(self.emitted), 1)

    def test_local_transition_during_a_fetch_is_not_reverted_by_the_stale_collection(self) -> None:
        watcher = self._watcher()
        watcher.reconcile_once()

        def record_quote_locally() -> None:
            before = self.gateway.get_rfq("r1")
            after = self.gateway.record_quote("r1", quote_lines_for(before))
            watcher.record_local_transition(before, after)

        self.gateway.during_fetch = record_quote_locally
        self.assertEqual(watcher.reconcile_once(), [])
        self.assertEqual(watcher.reconciliation.baseline.status_of("r1"), RECEIVED)
        self.assertEqual(watcher.reconcile_once(), [])
        self.assertEqual([event.dedup_key for event in self.emitted], ["r1|sent|received"])

    def test_change_after_a_raced_fetch_is_still_detected(self) -> None:
        watcher = self._watcher()
        watcher.reconcile_once()

        def send_locally() -> None:
            before = self.gateway.get_rfq("r2")
            watcher.record_local_transition(before, self.gateway.send_rfq("r2"))

        self.gateway.during_fetch = send_locally
        watcher.reconcile_once()
        self._change("r2", status=DRAFT)

        events = watcher.reconcile_once()
        self.assertEqual([(event.previous_status, event.new_status) for event in events], [(SENT, DRAFT)])

    def test_numbers_of_removed_rfqs_are_forgotten(self) -> None:
        watcher = self._watcher()
        watcher.reconcile_once()
        self.assertEqual(watcher._rfq_numbers, {"r1": "R-001", "r2": "R-002"})

        self.gateway.remove("r1")
        watcher.reconcile_once()
        self.assertEqual(watcher._rfq_numbers, {"r2": "R-002"})

    def test_same_transition_within_ttl_is_suppressed(self) -> None:
        watcher = self._watcher()
        watcher.reconcile_once()
        self._change("r1", status=RECEIVED)
        watcher.reconcile_once()
        self._change("r1", status=SENT)
        watcher.reconcile_once()
        self._change("r1", status=RECEIVED)
        self.assertEqual(watcher.reconcile_once(), [])
        self.assertEqual([e.new_status for e in self.emitted], [RECEIVED, SENT])

        notifications = metrics_snapshot()["notifications"]
        self.assertEqual(notifications["emitted_total"], 2)
        self.assertEqual(notifications["suppressed_total"], 1)

    def test_same_transition_after_ttl_is_emitted_again(self) -> None:
        watcher = self._watcher()
        watcher.reconcile_once()
        self._change("r1", status=RECEIVED)
        watcher.reconcile_once()
        self._change("r1", status=SENT)
        watcher.reconcile_once()
        self.clock.advance(301)
        self._change("r1", status=RECEIVED)
        self.assertEqual(len(watcher.reconcile_once()), 1)

    def test_emitter_failure_is_logged_and_not_propagated(self) -> None:
        def broken(_event):
            raise RuntimeError("toast failed")

        watcher = self._watcher(emit_notification=broken)
        watcher.reconcile_once()
        self._change("r1", status=RECEIVED)
        with self.assertLogs("rfq_workflow", level="ERROR") as logs:
            events = watcher.reconcile_once()
        self.assertEqual(len(events), 1)
        self.assertIn("rfq_notification_dispatch_failed", "\n".join(logs.output))
        self.assertEqual(metrics_snapshot()["notifications"]["dispatch_failed_total"], 1)

    def test_audience_filter_skips_without_consuming_the_key(self) -> None:
        watcher = self._watcher(audience="manager")
        watcher.reconcile_once()
        self._change("r1", status=RECEIVED)
        self.assertEqual(len(watcher.reconcile_once()), 1)

        self._change("r1", status=APPROVED)
        self.assertEqual(watcher.reconcile_once(), [])
        self.assertNotIn("r1|received|approved", self.cache)

    def test_default_emitter_publishes_on_the_event_bus(self) -> None:
        received = []
        self.bus.subscribe(RfqStatusNotification, received.append)
        watcher = RfqStatusWatcher(self.gateway, self.cache, event_bus=self.bus, clock=self.clock)
        watcher.reconcile_once()
        self._change("r1", status=RECEIVED)
        watcher.reconcile_once()

        self.assertEqual(len(received), 1)
        self.assertEqual(received[0].message, "New quote received for RFQ R-001")
        self.assertEqual(received[0].target_audience, "manager")

    def test_manager_decision_pauses_poller_and_redirects(self) -> None:
        redirects = []
        watcher = self._watcher(redirect_handler=redirects.append)
        watcher.start()
        self._change("r1", status=RECEIVED)
        watcher.refresh()
        self.timers.fire_next(2)
        self.assertFalse(watcher.poller.paused)

        self._change("r1", status=APPROVED)
        watcher.refresh()
        self.timers.fire_next(2)
        self.assertEqual([event.new_status for event in redirects], [APPROVED])
        self.assertTrue(watcher.poller.paused)
        self.assertEqual(self.timers.active(), [])

        self.assertTrue(watcher.resume())
        self.assertFalse(watcher.poller.paused)
        watcher.stop()

    def test_failed_redirect_resumes_polling(self) -> None:
        def broken(_event):
            raise RuntimeError("no route")

        watcher = self._watcher(redirect_handler=broken)
        watcher.start()
        self._change("r1", status=RECEIVED)
        self._change("r1", status=APPROVED)
        self._change("r1", status=RECEIVED)
        watcher.reconcile_once()
        self._change("r1", status=APPROVED)
        watcher.refresh()
        self.timers.fire_next(2)

        self.assertFalse(watcher.poller.paused)
        self.assertEqual(len(self.timers.active_with_delay(2)), 1)
        watcher.stop()

    def test_failed_poll_touches_neither_baseline_nor_cache(self) -> None:
        watcher = self._watcher()
        watcher.start()
        self.gateway.fail_fetch = True
        self._change("r1", status=RECEIVED)
        watcher.refresh()
        self.timers.fire_next(2)

        error = watcher.poller.last_error
        self.assertIsInstance(error, PollError)
        self.assertIsInstance(error.__cause__, TransportError)
        self.assertEqual(watcher.reconciliation.baseline.status_of("r1"), SENT)
        self.assertEqual(len(self.cache), 0)
        self.assertEqual(watcher.status()["last_error"]["code"], "poll_failed")

        self.gateway.fail_fetch = False
        self.timers.fire_next(15)
        self.timers.fire_next(2)
        self.assertEqual([event.new_status for event in self.emitted], [RECEIVED])
        self.assertIsNone(watcher.poller.last_error)
        watcher.stop()

    def test_dedup_cache_is_purged_on_its_own_interval(self) -> None:
        watcher = self._watcher()
        watcher.reconcile_once()
        self._change("r1", status=RECEIVED)
        watcher.reconcile_once()
        self.assertEqual(len(self.cache), 1)

        self.clock.advance(299)
        watcher.reconcile_once()
        self.assertEqual(len(self.cache), 1)

        self.clock.advance(1)
        watcher.reconcile_once()
        self.assertEqual(len(self.cache), 0)
        self.assertEqual(metrics_snapshot()["notifications"]["dedup_purged_total"], 1)

    def test_status_includes_tracking_details(self) -> None:
        watcher = self._watcher(audience="user")
        watcher.reconcile_once()
        status = watcher.status()
        self.assertEqual(status["tracked_entities"], 2)
        self.assertEqual(status["dedup_entries"], 0)
        self.assertEqual(status["audience"], "user")
        self.assertFalse(status["running"])


if __name__ == "__main__":
    unittest.main()
