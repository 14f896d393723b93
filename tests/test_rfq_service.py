import unittest
from decimal import Decimal

from rfq_workflow.application import RfqWorkflowService
from rfq_workflow.core import (
    EventBus,
    PurchaseOrderCreated,
    RfqDecided,
    RfqQuoteRecorded,
    RfqResubmitted,
    RfqSent,
)
from rfq_workflow.domain.models import APPROVED, PO_CREATED, RECEIVED, REJECTED, SENT, RfqItem
from rfq_workflow.errors import DuplicatePoError, InvalidTransition, RfqNotFound, TransportError, ValidationError
from rfq_workflow.gateway.memory import InMemoryRfqGateway
from rfq_workflow.observability import metrics_snapshot, reset_metrics_for_tests
from rfq_workflow.reconciliation.dedup import NotificationDedupCache
from rfq_workflow.reconciliation.watcher import RfqStatusWatcher
from rfq_workflow.workflow.engine import WorkflowEngine
from tests.helpers.fakes import FakeClock, FakeWallClock, ManualTimerFactory, make_rfq, quote_lines_for


class _BrokenSendGateway(InMemoryRfqGateway):
    def send_rfq(self, rfq_id: str):
        raise RuntimeError("socket closed")


class RfqWorkflowServiceTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()
        self.wall_clock = FakeWallClock()
        self.gateway = InMemoryRfqGateway([make_rfq("rfq-1")], clock=self.wall_clock)
        self.bus = EventBus()
        self.events = []
        for event_type in (RfqSent, RfqQuoteRecorded, RfqDecided, RfqResubmitted, PurchaseOrderCreated):
            self.bus.subscribe(event_type, self.events.append)
        self.service = RfqWorkflowService(
            self.gateway,
            engine=WorkflowEngine(clock=self.wall_clock),
            event_bus=self.bus,
        )

    def _received(self, prices=None):
        sent = self.service.send("rfq-1")
        return self.service.record_quote(sent, quote_lines_for(sent, prices), notes="net 30")

    def test_happy_path_ends_with_a_purchase_order(self) -> None:
        received = self._received({"p-1": "3.00", "p-2": "5.00"})
        self.assertEqual(received.status, RECEIVED)
        self.assertEqual(received.vendor_price, Decimal("50.00"))

        approved = self.service.approve(received, "looks good", actor_id="manager-1")
        self.assertEqual(approved.status, APPROVED)
        self.assertEqual(approved.approvals[-1].actor_id, "manager-1")

        result = self.service.create_purchase_order(approved)
        self.assertEqual(result.po_id, "PO-00001")
        self.assertEqual(result.rfq.lifecycle_status, PO_CREATED)
        self.assertEqual(result.purchase_order.po_id, "PO-00001")
        self.assertEqual(result.purchase_order.total_amount, Decimal("50.00"))
        self.assertEqual(self.gateway.get_rfq("rfq-1").purchase_order_id, "PO-00001")

        self.assertEqual(
            [type(event).__name__ for event in self.events],
            ["RfqSent", "RfqQuoteRecorded", "RfqDecided", "PurchaseOrderCreated"],
        )
        self.assertEqual(self.events[1].vendor_price, "50.00")
        self.assertEqual(self.events[-1].total_amount, "50.00")
        self.assertEqual(metrics_snapshot()["transitions"]["create_purchase_order:succeeded"], 1)

    def test_invalid_transition_never_reaches_the_gateway(self) -> None:
        sent = self.service.send("rfq-1")
        with self.assertRaises(InvalidTransition):
            self.service.approve(sent)
        self.assertEqual(self.gateway.get_rfq("rfq-1").status, SENT)
        self.assertEqual(metrics_snapshot()["transitions"]["approve:rejected"], 1)

    def test_reject_requires_comments(self) -> None:
        received = self._received()
        with self.assertRaises(ValidationError) as ctx:
            self.service.reject(received, "   ")
        self.assertEqual(ctx.exception.message_key, "rejection_reason_required")
        self.assertEqual(self.gateway.get_rfq("rfq-1").status, RECEIVED)

    def test_unknown_decision_is_reported_under_decide(self) -> None:
        received = self._received()
        with self.assertRaises(ValidationError) as ctx:
            self.service.decide(received, "escalate")
        self.assertEqual(ctx.exception.field, "action")
        self.assertEqual(metrics_snapshot()["transitions"]["decide:rejected"], 1)

    def test_rejected_rfq_can_be_resubmitted_with_new_items(self) -> None:
        received = self._received()
        rejected = self.service.reject(received, "price too high")
        self.assertEqual(rejected.status, REJECTED)
        self.assertEqual(rejected.rejection_reason, "price too high")

        resubmitted = self.service.resubmit(rejected, [{"productId": "p-1", "quantity": 12, "unit": "box"}])
        self.assertEqual(resubmitted.status, SENT)
        self.assertEqual(resubmitted.items, (RfqItem(product_id="p-1", quantity=12, unit="box"),))
        self.assertIsNone(resubmitted.vendor_quote)
        self.assertIsNone(resubmitted.rejection_reason)
        self.assertIsInstance(self.events[-1], RfqResubmitted)

    def test_second_purchase_order_is_refused(self) -> None:
        approved = self.service.approve(self._received())
        first = self.service.create_purchase_order(approved)

        with self.assertRaises(DuplicatePoError) as ctx:
            self.service.create_purchase_order("rfq-1")
        self.assertEqual(ctx.exception.po_id, first.po_id)

        # a stale copy still shows "approved" without a PO id
        with self.assertRaises(DuplicatePoError) as ctx:
            self.service.create_purchase_order(approved)
        self.assertEqual(ctx.exception.po_id, first.po_id)
        self.assertEqual(metrics_snapshot()["transitions"]["create_purchase_order:rejected"], 2)

    def test_unknown_rfq_raises_not_found(self) -> None:
        with self.assertRaises(RfqNotFound) as ctx:
            self.service.send("missing")
        self.assertEqual(ctx.exception.http_status, 404)
        self.assertEqual(ctx.exception.payload["rfq_id"], "missing")

    def test_unexpected_gateway_failure_becomes_transport_error(self) -> None:
        service = RfqWorkflowService(_BrokenSendGateway([make_rfq("rfq-1")]), event_bus=self.bus)
        with self.assertRaises(TransportError) as ctx:
            service.send("rfq-1")
        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)
        self.assertEqual(metrics_snapshot()["transitions"]["send:failed"], 1)
        self.assertEqual(self.events, [])

    def test_local_actions_notify_once_through_the_watcher(self) -> None:
        clock = FakeClock()
        emitted = []
        watcher = RfqStatusWatcher(
            self.gateway,
            NotificationDedupCache(clock=clock),
            emitted.append,
            timer_factory=ManualTimerFactory(),
            clock=clock,
            event_bus=self.bus,
        )
        watcher.reconcile_once()
        service = RfqWorkflowService(
            self.gateway,
            engine=WorkflowEngine(clock=self.wall_clock),
            watcher=watcher,
            event_bus=self.bus,
        )

        service.send("rfq-1")
        self.assertEqual(watcher.reconcile_once(), [])
        self.assertEqual([(e.previous_status, e.new_status) for e in emitted], [("draft", SENT)])
        self.assertEqual(emitted[0].target_audience, "user")


if __name__ == "__main__":
    unittest.main()
