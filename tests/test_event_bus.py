import unittest
from datetime import datetime, timezone

from rfq_workflow.core import EventBus, RfqSent, RfqStatusNotification
from rfq_workflow.observability import metrics_snapshot, reset_metrics_for_tests


class EventBusTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()

    def test_handler_execution_order_is_predictable(self) -> None:
        bus = EventBus()
        execution_trace = []

        def first_handler(_event):
            execution_trace.append("first")

        def second_handler(_event):
            execution_trace.append("second")

        bus.subscribe(RfqSent, first_handler)
        bus.subscribe(RfqSent, second_handler)
        bus.publish(RfqSent(rfq_id="rfq-1", rfq_number="R-1"))

        self.assertEqual(execution_trace, ["first", "second"])

    def test_handlers_only_receive_their_event_type(self) -> None:
        bus = EventBus()
        sent_events = []
        notifications = []
        bus.subscribe(RfqSent, sent_events.append)
        bus.subscribe(RfqStatusNotification, notifications.append)

        bus.publish(
            RfqStatusNotification(
                entity_id="rfq-1",
                previous_status="sent",
                new_status="received",
                target_audience="manager",
            )
        )

        self.assertEqual(sent_events, [])
        self.assertEqual(len(notifications), 1)

    def test_failing_handler_does_not_block_the_next_one(self) -> None:
        bus = EventBus()
        received = []

        def broken(_event):
            raise RuntimeError("boom")

        bus.subscribe(RfqSent, broken)
        bus.subscribe(RfqSent, received.append)
        with self.assertLogs("rfq_workflow", level="ERROR") as logs:
            bus.publish(RfqSent(rfq_id="rfq-1"))

        self.assertEqual(len(received), 1)
        self.assertIn("event_handler_failed", "\n".join(logs.output))

    def test_unsubscribe_and_metrics(self) -> None:
        bus = EventBus()
        received = []
        bus.subscribe(RfqSent, received.append)
        bus.unsubscribe(RfqSent, received.append)
        bus.publish(RfqSent(rfq_id="rfq-1"))

        self.assertEqual(received, [])
        self.assertEqual(metrics_snapshot()["domain_events"]["by_type"], {"RfqSent": 1})

    def test_event_metadata_is_normalized_to_utc(self) -> None:
        naive = datetime(2026, 3, 2, 9, 30)
        event = RfqSent(rfq_id="rfq-1", event_id="  ", occurred_at=naive)
        self.assertTrue(event.event_id)
        self.assertEqual(event.occurred_at.tzinfo, timezone.utc)
        self.assertEqual(event.occurred_at.hour, 9)


if __name__ == "__main__":
    unittest.main()
