"""State machine for the RFQ lifecycle.

Every operation takes the current ``Rfq`` and returns a new instance, or raises
without touching the input. Only the timestamp fields read the clock, and the
clock is injectable so results are reproducible.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List

from rfq_workflow.domain.models import (
    APPROVE,
    APPROVED,
    DECISION_ACTIONS,
    DRAFT,
    REJECT,
    Approval,
    ExistingPo,
    QuoteLine,
    Rfq,
    RfqItem,
    VendorQuote,
    to_decimal,
    utc_now,
)
from rfq_workflow.errors import DuplicatePoError, InvalidTransition, ValidationError
from rfq_workflow.workflow.transitions import Transition, transition_for


QuoteLineInput = QuoteLine | Dict[str, Any]
RfqItemInput = RfqItem | Dict[str, Any]


class WorkflowEngine:
    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or utc_now

    def _now(self, now: datetime | None) -> datetime:
        return now if now is not None else self._clock()

    @staticmethod
    def _require(rfq: Rfq, action: str) -> Transition:
        transition = transition_for(action)
        if transition is None or rfq.lifecycle_status not in transition.sources:
            raise InvalidTransition(action, rfq.lifecycle_status, payload={"rfq_id": rfq.id})
        return transition

    def _apply(self, rfq: Rfq, transition: Transition, now: datetime | None, **changes: Any) -> Rfq:
        if transition.timestamp_field:
            changes[transition.timestamp_field] = self._now(now)
        return replace(rfq, status=transition.target, **changes)

    def send(self, rfq: Rfq, *, now: datetime | None = None) -> Rfq:
        transition = self._require(rfq, "send")
        return self._apply(rfq, transition, now)

    def edit_items(self, rfq: Rfq, items: Iterable[RfqItemInput]) -> Rfq:
        if rfq.lifecycle_status != DRAFT:
            raise InvalidTransition("edit_items", rfq.lifecycle_status, payload={"rfq_id": rfq.id})
        return replace(rfq, items=_coerce_items(items))

    def record_quote(
        self,
        rfq: Rfq,
        quote_lines: Iterable[QuoteLineInput],
        notes: str | None = "",
        *,
        now: datetime | None = None,
    ) -> Rfq:
        transition = self._require(rfq, "record_quote")
        lines = validate_quote_lines(rfq, quote_lines)
        quote = VendorQuote(lines=tuple(lines), vendor_notes=str(notes or "").strip())
        return self._apply(rfq, transition, now, vendor_quote=quote)

    def approve(
        self,
        rfq: Rfq,
        comments: str | None = "",
        *,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> Rfq:
        transition = self._require(rfq, "approve")
        stamp = self._now(now)
        approval = Approval(action=APPROVE, comments=str(comments or "").strip(), timestamp=stamp, actor_id=actor_id)
        return self._apply(
            rfq,
            transition,
            stamp,
            approvals=rfq.approvals + (approval,),
            rejection_reason=None,
        )

    def reject(
        self,
        rfq: Rfq,
        comments: str | None,
        *,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> Rfq:
        transition = self._require(rfq, "reject")
        reason = str(comments or "").strip()
        if not reason:
            raise ValidationError(
                field="comments",
                message_key="rejection_reason_required",
                details="rejection requires comments",
            )
        stamp = self._now(now)
        approval = Approval(action=REJECT, comments=reason, timestamp=stamp, actor_id=actor_id)
        return self._apply(
            rfq,
            transition,
            stamp,
            approvals=rfq.approvals + (approval,),
            rejection_reason=reason,
        )

    def decide(
        self,
        rfq: Rfq,
        action: str,
        comments: str | None = "",
        *,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> Rfq:
        normalized = str(action or "").strip().lower()
        if normalized not in DECISION_ACTIONS:
            raise ValidationError(field="action", message_key="decision_invalid", details=f"unknown decision {action!r}")
        if normalized == APPROVE:
            return self.approve(rfq, comments, actor_id=actor_id, now=now)
        return self.reject(rfq, comments, actor_id=actor_id, now=now)

    def resubmit(
        self,
        rfq: Rfq,
        items: Iterable[RfqItemInput] | None = None,
        *,
        now: datetime | None = None,
    ) -> Rfq:
        transition = self._require(rfq, "resubmit")
        new_items = rfq.items if items is None else _coerce_items(items)
        return self._apply(
            rfq,
            transition,
            now,
            items=new_items,
            vendor_quote=None,
            rejection_reason=None,
            sent_date=self._now(now),
        )

    def ensure_can_create_po(self, rfq: Rfq, existing: ExistingPo | None = None) -> None:
        if rfq.status != APPROVED:
            raise InvalidTransition("create_purchase_order", rfq.lifecycle_status, payload={"rfq_id": rfq.id})
        if rfq.purchase_order_id:
            raise DuplicatePoError(rfq.id, rfq.purchase_order_id)
        if existing is not None and existing.exists:
            raise DuplicatePoError(rfq.id, existing.po_id)

    def mark_po_created(self, rfq: Rfq, po_id: str) -> Rfq:
        self.ensure_can_create_po(rfq)
        resolved = str(po_id or "").strip()
        if not resolved:
            raise ValidationError(field="poId", details="purchase order id is required")
        return replace(rfq, purchase_order_id=resolved)


def validate_quote_lines(rfq: Rfq, quote_lines: Iterable[QuoteLineInput]) -> List[QuoteLine]:
    by_product: Dict[str, QuoteLine] = {}
    for raw in quote_lines or []:
        line = raw if isinstance(raw, QuoteLine) else QuoteLine.from_dict(raw)
        if not line.product_id:
            raise ValidationError(field="productId", message_key="quote_product_unknown", details="quote line without productId")
        if line.product_id in by_product:
            raise ValidationError(
                field="productId",
                message_key="quote_product_unknown",
                details=f"duplicate quote line for product {line.product_id}",
            )
        by_product[line.product_id] = line

    known_products = {item.product_id for item in rfq.items}
    for product_id in by_product:
        if product_id not in known_products:
            raise ValidationError(
                field="productId",
                message_key="quote_product_unknown",
                details=f"product {product_id} is not part of rfq {rfq.id}",
            )

    resolved: List[QuoteLine] = []
    for item in rfq.items:
        line = by_product.get(item.product_id)
        if line is None:
            raise ValidationError(
                field="items",
                message_key="quote_line_missing",
                details=f"missing quote line for product {item.product_id}",
            )
        unit_price = to_decimal(line.unit_price)
        if unit_price is None or unit_price <= 0:
            raise ValidationError(
                field="unitPrice",
                message_key="unit_price_invalid",
                details=f"unitPrice must be greater than zero for product {item.product_id}",
            )
        delivery_date = str(line.expected_delivery_date or "").strip()
        if not delivery_date:
            raise ValidationError(
                field="expectedDeliveryDate",
                message_key="delivery_date_required",
                details=f"expectedDeliveryDate is required for product {item.product_id}",
            )
        if line.quantity is not None and line.quantity != item.quantity:
            raise ValidationError(
                field="quantity",
                message_key="quantity_invalid",
                details=f"quoted quantity {line.quantity} differs from requested {item.quantity} for product {item.product_id}",
            )
        resolved.append(
            QuoteLine(
                product_id=item.product_id,
                quantity=item.quantity,
                unit=line.unit or item.unit,
                unit_price=unit_price,
                expected_delivery_date=delivery_date,
            )
        )
    return resolved


def _coerce_items(items: Iterable[RfqItemInput]) -> tuple[RfqItem, ...]:
    resolved: List[RfqItem] = []
    for raw in items or []:
        item = raw if isinstance(raw, RfqItem) else RfqItem.from_dict(raw)
        if not item.product_id:
            raise ValidationError(field="productId", details="rfq item without productId")
        if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity <= 0:
            raise ValidationError(
                field="quantity",
                message_key="quantity_invalid",
                details=f"quantity must be a positive integer for product {item.product_id}",
            )
        resolved.append(item)
    return tuple(resolved)
