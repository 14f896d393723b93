from __future__ import annotations

from decimal import Decimal
from typing import List

from rfq_workflow.domain.models import APPROVED, PO_STATUS_DRAFT, PurchaseOrder, PurchaseOrderLine, Rfq
from rfq_workflow.errors import InvalidTransition, MissingQuoteLine, ValidationError


def derive(rfq: Rfq, po_id: str | None = None) -> PurchaseOrder:
    """Price a draft purchase order from the approved vendor quote.

    The result is not persisted; the caller hands it to the purchase order
    endpoint. Lines are copies, so later changes to the RFQ do not leak into
    the order.
    """
    if rfq.status != APPROVED:
        raise InvalidTransition("create_purchase_order", rfq.lifecycle_status, payload={"rfq_id": rfq.id})
    if rfq.vendor_quote is None:
        raise ValidationError(
            field="vendorQuote",
            message_key="quote_line_missing",
            details=f"rfq {rfq.id} has no vendor quote",
        )

    lines: List[PurchaseOrderLine] = []
    total = Decimal("0")
    for item in rfq.items:
        quote_line = rfq.vendor_quote.line_for(item.product_id)
        if quote_line is None or quote_line.unit_price is None:
            raise MissingQuoteLine(rfq.id, item.product_id)
        line = PurchaseOrderLine(
            product_id=item.product_id,
            quantity=item.quantity,
            unit=item.unit,
            unit_price=quote_line.unit_price,
            expected_delivery_date=quote_line.expected_delivery_date,
        )
        total += line.line_total
        lines.append(line)

    return PurchaseOrder(
        po_id=po_id,
        rfq_id=rfq.id,
        vendor_id=rfq.vendor_id,
        lines=tuple(lines),
        total_amount=total,
        status=PO_STATUS_DRAFT,
    )
