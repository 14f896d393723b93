from __future__ import annotations

from typing import Dict, List


STATUS_ITEMS: List[Dict[str, str]] = [
    {
        "key": "draft",
        "label": "Draft",
        "description": "RFQ being prepared, not yet sent to the vendor.",
    },
    {
        "key": "sent",
        "label": "Sent to Vendor",
        "description": "RFQ dispatched, waiting for the vendor quote.",
    },
    {
        "key": "received",
        "label": "Quote Received",
        "description": "Vendor quote recorded, pending manager approval.",
    },
    {
        "key": "approved",
        "label": "Approved by Manager",
        "description": "Quote approved, purchase order can be generated.",
    },
    {
        "key": "rejected",
        "label": "Rejected by Manager",
        "description": "Quote rejected, RFQ may be edited and resubmitted.",
    },
    {
        "key": "po_created",
        "label": "Purchase Order Created",
        "description": "Purchase order generated from the approved quote.",
    },
]


STATUS_LABELS: Dict[str, str] = {item["key"]: item["label"] for item in STATUS_ITEMS}


MESSAGES: Dict[str, Dict[str, str]] = {
    "error": {
        "invalid_transition": "This action is not available for the RFQ in its current status.",
        "validation_error": "Some required information is missing or invalid.",
        "rfq_not_found": "RFQ not found.",
        "quote_line_missing": "Every RFQ item needs a quote line.",
        "unit_price_invalid": "Unit price must be greater than zero.",
        "delivery_date_required": "Expected delivery date is required.",
        "quote_product_unknown": "The quote references a product that is not part of this RFQ.",
        "rejection_reason_required": "Please provide a reason for rejection.",
        "decision_invalid": 'Invalid action. Must be "approve" or "reject".',
        "quantity_invalid": "Item quantity must be a positive whole number.",
        "duplicate_purchase_order": "A purchase order was already created for this RFQ. View the existing order.",
        "transport_error": "The request could not reach the server. Please try again.",
        "poll_failed": "Last check failed. Retrying at the next interval.",
        "missing_quote_line": "The approved quote is incomplete, purchase order cannot be derived.",
        "unexpected_error": "The operation could not be completed. Please try again shortly.",
    },
    "success": {
        "rfq_sent": "RFQ sent successfully to vendor",
        "quote_recorded": "Vendor quote recorded successfully",
        "rfq_approved": "Quote approved successfully",
        "rfq_rejected": "Quote rejected successfully",
        "rfq_resubmitted": "RFQ resubmitted to vendor",
        "purchase_order_created": "Purchase order created successfully",
    },
    "notification": {
        "sent": "RFQ {rfq_number} has been sent to the vendor",
        "received": "New quote received for RFQ {rfq_number}",
        "approved": "RFQ {rfq_number} has been approved",
        "rejected": "RFQ {rfq_number} has been rejected",
        "po_created": "Purchase order created for RFQ {rfq_number}",
    },
}


def status_label(status: str | None) -> str:
    key = str(status or "").strip()
    return STATUS_LABELS.get(key, key)


def get_message(category: str, key: str, default: str | None = None) -> str:
    message = MESSAGES.get(category, {}).get(key)
    if message:
        return message
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None) -> str:
    return get_message("success", key, default)


def notification_message(new_status: str, rfq_number: str | None) -> str:
    template = MESSAGES["notification"].get(str(new_status or "").strip())
    number = str(rfq_number or "").strip() or "?"
    if not template:
        return f"RFQ {number} is now {status_label(new_status)}"
    return template.format(rfq_number=number)
