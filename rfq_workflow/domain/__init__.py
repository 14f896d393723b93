from rfq_workflow.domain.contracts import NotificationEvent, PurchaseOrderResult, StatusTransition, dedup_key
from rfq_workflow.domain.models import (
    APPROVE,
    APPROVED,
    DRAFT,
    PO_CREATED,
    RECEIVED,
    REJECT,
    REJECTED,
    SENT,
    Approval,
    ExistingPo,
    PurchaseOrder,
    PurchaseOrderLine,
    QuoteLine,
    Rfq,
    RfqItem,
    VendorQuote,
)

__all__ = [
    "APPROVE",
    "APPROVED",
    "DRAFT",
    "PO_CREATED",
    "RECEIVED",
    "REJECT",
    "REJECTED",
    "SENT",
    "Approval",
    "ExistingPo",
    "NotificationEvent",
    "PurchaseOrder",
    "PurchaseOrderLine",
    "PurchaseOrderResult",
    "QuoteLine",
    "Rfq",
    "RfqItem",
    "StatusTransition",
    "VendorQuote",
    "dedup_key",
]
