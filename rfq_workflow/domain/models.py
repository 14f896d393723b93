from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Tuple


DRAFT = "draft"
SENT = "sent"
RECEIVED = "received"
APPROVED = "approved"
REJECTED = "rejected"
PO_CREATED = "po_created"

RFQ_STATUSES: Tuple[str, ...] = (DRAFT, SENT, RECEIVED, APPROVED, REJECTED)
LIFECYCLE_STATUSES: Tuple[str, ...] = RFQ_STATUSES + (PO_CREATED,)
PRE_QUOTE_STATUSES = frozenset({DRAFT, SENT})

APPROVE = "approve"
REJECT = "reject"
DECISION_ACTIONS = frozenset({APPROVE, REJECT})

PO_STATUS_DRAFT = "draft"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _safe_str(value: object | None) -> str | None:
    if value is None:
        return None
    raw = str(value).strip()
    return raw or None


def to_decimal(value: object | None) -> Decimal | None:
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, bool):
        return None
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return parsed if parsed.is_finite() else None


def _to_int(value: object | None) -> int | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not parsed.is_finite() or parsed != parsed.to_integral_value():
        return None
    return int(parsed)


def parse_datetime(value: object | None) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        resolved = value
    else:
        try:
            resolved = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if resolved.tzinfo is None:
        resolved = resolved.replace(tzinfo=timezone.utc)
    return resolved.astimezone(timezone.utc)


def parse_date(value: object | None) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = str(value).strip()
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        return None


def iso_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    resolved = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return resolved.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _pick(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _money(value: Decimal | None) -> float | None:
    if value is None:
        return None
    return float(value)


@dataclass(frozen=True)
class RfqItem:
    product_id: str
    quantity: int
    unit: str = "unit"

    def to_dict(self) -> Dict[str, Any]:
        return {"productId": self.product_id, "quantity": self.quantity, "unit": self.unit}

    @staticmethod
    def from_dict(payload: Dict[str, Any]) -> "RfqItem":
        data = dict(payload or {})
        product = data.get("product") if isinstance(data.get("product"), dict) else {}
        quantity = _to_int(_pick(data, "quantity", "qty"))
        return RfqItem(
            product_id=str(_pick(data, "productId", "product_id") or product.get("id") or ""),
            quantity=quantity if quantity is not None else 0,
            unit=str(_pick(data, "unit", "uom") or product.get("unit") or "unit"),
        )


@dataclass(frozen=True)
class QuoteLine:
    product_id: str
    quantity: int | None = None
    unit: str | None = None
    unit_price: Decimal | None = None
    expected_delivery_date: str | None = None

    @property
    def line_total(self) -> Decimal:
        return (self.unit_price or Decimal("0")) * Decimal(self.quantity or 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "productId": self.product_id,
            "quantity": self.quantity,
            "unit": self.unit,
            "unitPrice": _money(self.unit_price),
            "expectedDeliveryDate": self.expected_delivery_date,
        }

    @staticmethod
    def from_dict(payload: Dict[str, Any]) -> "QuoteLine":
        data = dict(payload or {})
        product = data.get("product") if isinstance(data.get("product"), dict) else {}
        return QuoteLine(
            product_id=str(_pick(data, "productId", "product_id") or product.get("id") or ""),
            quantity=_to_int(_pick(data, "quantity", "qty")),
            unit=_safe_str(_pick(data, "unit", "uom")),
            unit_price=to_decimal(_pick(data, "unitPrice", "unit_price")),
            expected_delivery_date=_safe_str(_pick(data, "expectedDeliveryDate", "expected_delivery_date")),
        )


@dataclass(frozen=True)
class VendorQuote:
    lines: Tuple[QuoteLine, ...]
    vendor_notes: str = ""

    @property
    def vendor_price(self) -> Decimal:
        return sum((line.line_total for line in self.lines), Decimal("0"))

    def line_for(self, product_id: str) -> QuoteLine | None:
        for line in self.lines:
            if line.product_id == product_id:
                return line
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [line.to_dict() for line in self.lines],
            "vendorNotes": self.vendor_notes,
            "vendorPrice": _money(self.vendor_price),
        }

    @staticmethod
    def from_dict(payload: Dict[str, Any]) -> "VendorQuote":
        data = dict(payload or {})
        raw_lines = data.get("items") or data.get("lines") or []
        lines = tuple(QuoteLine.from_dict(line) for line in raw_lines if isinstance(line, dict))
        return VendorQuote(lines=lines, vendor_notes=str(_pick(data, "vendorNotes", "vendor_notes") or ""))


@dataclass(frozen=True)
class Approval:
    action: str
    comments: str = ""
    timestamp: datetime = field(default_factory=utc_now)
    actor_id: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "comments": self.comments,
            "timestamp": iso_datetime(self.timestamp),
            "actorId": self.actor_id,
        }

    @staticmethod
    def from_dict(payload: Dict[str, Any]) -> "Approval":
        data = dict(payload or {})
        action = str(_pick(data, "action", "status") or "").strip().lower()
        if action == "approved":
            action = APPROVE
        elif action == "rejected":
            action = REJECT
        return Approval(
            action=action,
            comments=str(data.get("comments") or ""),
            timestamp=parse_datetime(_pick(data, "timestamp", "createdAt")) or utc_now(),
            actor_id=_safe_str(_pick(data, "actorId", "approvedBy", "actor_id")),
        )


@dataclass(frozen=True)
class Rfq:
    id: str
    rfq_number: str
    status: str = DRAFT
    vendor_id: str | None = None
    order_deadline: date | None = None
    sent_date: datetime | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    items: Tuple[RfqItem, ...] = ()
    vendor_quote: VendorQuote | None = None
    rejection_reason: str | None = None
    approvals: Tuple[Approval, ...] = ()
    purchase_order_id: str | None = None
    created_by_id: str | None = None

    @property
    def lifecycle_status(self) -> str:
        if self.status == APPROVED and self.purchase_order_id:
            return PO_CREATED
        return self.status

    @property
    def vendor_price(self) -> Decimal | None:
        if self.vendor_quote is None:
            return None
        return self.vendor_quote.vendor_price

    def has_consistent_quote(self) -> bool:
        return (self.vendor_quote is None) == (self.status in PRE_QUOTE_STATUSES)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rfqNumber": self.rfq_number,
            "status": self.status,
            "vendorId": self.vendor_id,
            "orderDeadline": self.order_deadline.isoformat() if self.order_deadline else None,
            "sentDate": iso_datetime(self.sent_date),
            "approvedAt": iso_datetime(self.approved_at),
            "rejectedAt": iso_datetime(self.rejected_at),
            "items": [item.to_dict() for item in self.items],
            "vendorQuote": self.vendor_quote.to_dict() if self.vendor_quote else None,
            "rejectionReason": self.rejection_reason,
            "approvals": [approval.to_dict() for approval in self.approvals],
            "purchaseOrderId": self.purchase_order_id,
            "createdById": self.created_by_id,
        }

    @staticmethod
    def from_dict(payload: Dict[str, Any]) -> "Rfq":
        data = dict(payload or {})
        status = str(data.get("status") or DRAFT).strip().lower()
        raw_items = [item for item in (data.get("items") or []) if isinstance(item, dict)]
        approvals_raw = data.get("approvals") or []

        quote_raw = data.get("vendorQuote") or data.get("vendor_quote")
        vendor_quote: VendorQuote | None = None
        if isinstance(quote_raw, dict):
            vendor_quote = VendorQuote.from_dict(quote_raw)
        elif status not in PRE_QUOTE_STATUSES:
            vendor_quote = _quote_from_priced_items(raw_items, data.get("vendorNotes"))

        rejected_at = parse_datetime(_pick(data, "rejectedAt", "rejected_at"))
        approved_at = parse_datetime(_pick(data, "approvedAt", "approved_at"))
        if status == REJECTED and rejected_at is None:
            # legacy payloads stamp both decisions on approvedAt
            rejected_at, approved_at = approved_at, None

        return Rfq(
            id=str(data.get("id") or ""),
            rfq_number=str(_pick(data, "rfqNumber", "rfq_number") or ""),
            status=status,
            vendor_id=_safe_str(_pick(data, "vendorId", "vendor_id")),
            order_deadline=parse_date(_pick(data, "orderDeadline", "order_deadline")),
            sent_date=parse_datetime(_pick(data, "sentDate", "sent_date")),
            approved_at=approved_at,
            rejected_at=rejected_at,
            items=tuple(RfqItem.from_dict(item) for item in raw_items),
            vendor_quote=vendor_quote,
            rejection_reason=_safe_str(_pick(data, "rejectionReason", "rejection_reason")),
            approvals=tuple(Approval.from_dict(item) for item in approvals_raw if isinstance(item, dict)),
            purchase_order_id=_safe_str(_pick(data, "purchaseOrderId", "purchase_order_id")),
            created_by_id=_safe_str(_pick(data, "createdById", "created_by_id")),
        )


def _quote_from_priced_items(raw_items: Iterable[Dict[str, Any]], notes: object | None) -> VendorQuote | None:
    lines = []
    for item in raw_items:
        line = QuoteLine.from_dict(item)
        if line.unit_price is None:
            continue
        lines.append(line)
    if not lines:
        return None
    return VendorQuote(lines=tuple(lines), vendor_notes=str(notes or ""))


@dataclass(frozen=True)
class PurchaseOrderLine:
    product_id: str
    quantity: int
    unit: str
    unit_price: Decimal
    expected_delivery_date: str | None = None

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * Decimal(self.quantity)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "productId": self.product_id,
            "quantityOrdered": self.quantity,
            "unit": self.unit,
            "price": _money(self.unit_price),
            "expectedDeliveryDate": self.expected_delivery_date,
            "totalAmount": _money(self.line_total),
        }


@dataclass(frozen=True)
class PurchaseOrder:
    rfq_id: str
    lines: Tuple[PurchaseOrderLine, ...]
    total_amount: Decimal
    po_id: str | None = None
    vendor_id: str | None = None
    status: str = PO_STATUS_DRAFT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "poId": self.po_id,
            "rfqId": self.rfq_id,
            "vendorId": self.vendor_id,
            "status": self.status,
            "lines": [line.to_dict() for line in self.lines],
            "totalAmount": _money(self.total_amount),
        }


@dataclass(frozen=True)
class ExistingPo:
    exists: bool
    po_id: str | None = None

    @staticmethod
    def from_dict(payload: Dict[str, Any]) -> "ExistingPo":
        data = dict(payload or {})
        po_id = _safe_str(_pick(data, "poId", "po_id"))
        return ExistingPo(exists=bool(data.get("exists")) or po_id is not None, po_id=po_id)
