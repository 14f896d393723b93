from __future__ import annotations

import threading
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Dict, Iterable, List

from rfq_workflow.domain.models import (
    DRAFT,
    RECEIVED,
    SENT,
    ExistingPo,
    PurchaseOrder,
    QuoteLine,
    Rfq,
    RfqItem,
    VendorQuote,
    utc_now,
)
from rfq_workflow.errors import RfqNotFound, ValidationError
from rfq_workflow.gateway.base import RfqGateway
from rfq_workflow.workflow.engine import WorkflowEngine
from rfq_workflow.workflow.po_derivation import derive


class InMemoryRfqGateway(RfqGateway):
    """Process-local RFQ store that applies the workflow rules itself.

    Every mutation runs under one lock so a concurrent poll never observes a
    half-applied transition.
    """

    def __init__(
        self,
        rfqs: Iterable[Rfq] = (),
        *,
        engine: WorkflowEngine | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._engine = engine or WorkflowEngine(clock=clock)
        self._lock = threading.RLock()
        self._rfqs: Dict[str, Rfq] = {}
        self._purchase_orders: Dict[str, PurchaseOrder] = {}
        self._po_sequence = 0
        for rfq in rfqs:
            self.add(rfq)

    def add(self, rfq: Rfq) -> Rfq:
        if not rfq.id:
            raise ValidationError(field="id", details="rfq id is required")
        with self._lock:
            self._rfqs[rfq.id] = rfq
        return rfq

    def put(self, rfq: Rfq) -> Rfq:
        """Replace a stored RFQ as if another session had changed it."""
        return self.add(rfq)

    def remove(self, rfq_id: str) -> None:
        with self._lock:
            self._rfqs.pop(rfq_id, None)

    def get_rfq(self, rfq_id: str) -> Rfq | None:
        with self._lock:
            return self._rfqs.get(rfq_id)

    def purchase_order(self, po_id: str) -> PurchaseOrder | None:
        with self._lock:
            return self._purchase_orders.get(po_id)

    def fetch_rfq_collection(self) -> List[Rfq]:
        with self._lock:
            return list(self._rfqs.values())

    def send_rfq(self, rfq_id: str) -> Rfq:
        with self._lock:
            return self._store(self._engine.send(self._require(rfq_id)))

    def record_quote(self, rfq_id: str, lines: Iterable[QuoteLine], notes: str = "") -> Rfq:
        with self._lock:
            return self._store(self._engine.record_quote(self._require(rfq_id), lines, notes))

    def decide_rfq(self, rfq_id: str, action: str, comments: str = "") -> Rfq:
        with self._lock:
            return self._store(self._engine.decide(self._require(rfq_id), action, comments))

    def resubmit_rfq(self, rfq_id: str, items: Iterable[RfqItem] | None = None) -> Rfq:
        with self._lock:
            return self._store(self._engine.resubmit(self._require(rfq_id), items))

    def create_po_from_rfq(self, rfq_id: str) -> str:
        with self._lock:
            rfq = self._require(rfq_id)
            self._engine.ensure_can_create_po(rfq, self.check_existing_po(rfq_id))
            self._po_sequence += 1
            po_id = f"PO-{self._po_sequence:05d}"
            self._purchase_orders[po_id] = derive(rfq, po_id=po_id)
            self._store(self._engine.mark_po_created(rfq, po_id))
            return po_id

    def check_existing_po(self, rfq_id: str) -> ExistingPo:
        with self._lock:
            for po_id, purchase_order in self._purchase_orders.items():
                if purchase_order.rfq_id == rfq_id:
                    return ExistingPo(exists=True, po_id=po_id)
            rfq = self._rfqs.get(rfq_id)
            if rfq is not None and rfq.purchase_order_id:
                return ExistingPo(exists=True, po_id=rfq.purchase_order_id)
            return ExistingPo(exists=False)

    def _require(self, rfq_id: str) -> Rfq:
        rfq = self._rfqs.get(rfq_id)
        if rfq is None:
            raise RfqNotFound(rfq_id)
        return rfq

    def _store(self, rfq: Rfq) -> Rfq:
        self._rfqs[rfq.id] = rfq
        return rfq


def demo_rfqs() -> List[Rfq]:
    sent_at = utc_now()
    return [
        Rfq(
            id="rfq-1001",
            rfq_number="RFQ-1001",
            status=DRAFT,
            vendor_id="vendor-100",
            order_deadline=date(2026, 12, 1),
            items=(
                RfqItem(product_id="prod-bolt", quantity=500, unit="unit"),
                RfqItem(product_id="prod-nut", quantity=500, unit="unit"),
            ),
        ),
        Rfq(
            id="rfq-1002",
            rfq_number="RFQ-1002",
            status=SENT,
            vendor_id="vendor-200",
            sent_date=sent_at,
            items=(RfqItem(product_id="prod-cable", quantity=20, unit="m"),),
        ),
        Rfq(
            id="rfq-1003",
            rfq_number="RFQ-1003",
            status=RECEIVED,
            vendor_id="vendor-300",
            sent_date=sent_at,
            items=(RfqItem(product_id="prod-glove", quantity=40, unit="pair"),),
            vendor_quote=VendorQuote(
                lines=(
                    QuoteLine(
                        product_id="prod-glove",
                        quantity=40,
                        unit="pair",
                        unit_price=Decimal("3.75"),
                        expected_delivery_date="2026-11-20",
                    ),
                ),
                vendor_notes="Price valid for 30 days.",
            ),
        ),
    ]
