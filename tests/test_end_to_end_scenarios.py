import unittest
from dataclasses import replace
from decimal import Decimal

from rfq_workflow.application import RfqWorkflowService
from rfq_workflow.core import EventBus
from rfq_workflow.domain.models import APPROVED, DRAFT, RECEIVED, REJECTED, SENT, Rfq, RfqItem
from rfq_workflow.errors import DuplicatePoError, ValidationError
from rfq_workflow.gateway.memory import InMemoryRfqGateway
from rfq_workflow.observability import reset_metrics_for_tests
from rfq_workflow.reconciliation.dedup import NotificationDedupCache
from rfq_workflow.reconciliation.watcher import RfqStatusWatcher
from rfq_workflow.workflow.engine import WorkflowEngine
from tests.helpers.fakes import FIXED_NOW, FakeClock, FakeWallClock, ManualTimerFactory


QUOTE = [{"productId": "P1", "quantity": 10, "unitPrice": 5.00, "expectedDeliveryDate": "2025-01-10"}]


class RfqLifecycleScenarioTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()
        wall_clock = FakeWallClock()
        self.clock = FakeClock()
        self.timers = ManualTimerFactory()
        self.gateway = InMemoryRfqGateway(
            [Rfq(id="R1", rfq_number="RFQ-R1", status=DRAFT, vendor_id="V1", items=(RfqItem("P1", 10, "unit"),))],
            clock=wall_clock,
        )
        self.notifications = []
        bus = EventBus()
        self.watcher = RfqStatusWatcher(
            self.gateway,
            NotificationDedupCache(ttl_seconds=300, clock=self.clock),
            self.notifications.append,
            timer_factory=self.timers,
            clock=self.clock,
            event_bus=bus,
        )
        self.engine = WorkflowEngine(clock=wall_clock)
        self.service = RfqWorkflowService(
            self.gateway,
            engine=self.engine,
            watcher=self.watcher,
            event_bus=bus,
        )

    def tearDown(self) -> None:
        self.watcher.stop()

    def test_send_then_record_quote(self) -> None:
        sent = self.service.send("R1")
        self.assertEqual(sent.status, SENT)
        self.assertEqual(sent.sent_date, FIXED_NOW)

        received = self.service.record_quote(sent, QUOTE, "")
        self.assertEqual(received.status, RECEIVED)
        self.assertEqual(received.vendor_price, Decimal("50.00"))

    def test_purchase_order_can_only_be_created_once(self) -> None:
        received = self.service.record_quote(self.service.send("R1"), QUOTE, "")
        approved = self.service.approve(received, "looks good")
        self.assertEqual(approved.status, APPROVED)

        first = self.service.create_purchase_order(approved)
        with self.assertRaises(DuplicatePoError) as ctx:
            self.service.create_purchase_order(approved)
        self.assertEqual(ctx.exception.po_id, first.po_id)

    def test_poller_notifies_once_for_a_remote_transition(self) -> None:
        self.service.send("R1")
        self.watcher.start()

        sent = self.gateway.get_rfq("R1")
        self.gateway.put(self.engine.record_quote(sent, QUOTE, ""))
        for _ in range(3):
            self.timers.fire_next(15)
            self.timers.fire_next(2)

        remote = [event for event in self.notifications if event.new_status == RECEIVED]
        self.assertEqual(len(remote), 1)
        self.assertEqual(remote[0].dedup_key, "R1|sent|received")

    def test_reject_requires_a_reason(self) -> None:
        received = self.service.record_quote(self.service.send("R1"), QUOTE, "")
        with self.assertRaises(ValidationError):
            self.service.reject(received, "")

        rejected = self.service.reject(received, "price too high")
        self.assertEqual(rejected.status, REJECTED)
        self.assertEqual(rejected.rejection_reason, "price too high")

    def test_status_reverted_elsewhere_is_noticed_by_the_next_poll(self) -> None:
        self.service.send("R1")
        self.watcher.start()
        self.gateway.put(replace(self.gateway.get_rfq("R1"), status=DRAFT))
        self.assertTrue(self.watcher.refresh())
        self.timers.fire_next(2)

        self.assertEqual(
            [(event.previous_status, event.new_status, event.target_audience) for event in self.notifications],
            [(DRAFT, SENT, "user"), (SENT, DRAFT, "all")],
        )


if __name__ == "__main__":
    unittest.main()
