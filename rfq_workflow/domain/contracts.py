from __future__ import annotations

from dataclasses import dataclass

from rfq_workflow.domain.models import PurchaseOrder, Rfq
from rfq_workflow.ui_strings import notification_message


def dedup_key(entity_id: str, previous_status: str, new_status: str) -> str:
    return f"{entity_id}|{previous_status}|{new_status}"


@dataclass(frozen=True)
class StatusTransition:
    entity_id: str
    previous_status: str
    new_status: str


@dataclass(frozen=True)
class NotificationEvent:
    entity_id: str
    previous_status: str
    new_status: str
    target_audience: str
    rfq_number: str = ""

    @property
    def dedup_key(self) -> str:
        return dedup_key(self.entity_id, self.previous_status, self.new_status)

    @property
    def message(self) -> str:
        return notification_message(self.new_status, self.rfq_number or self.entity_id)


@dataclass(frozen=True)
class PurchaseOrderResult:
    po_id: str
    rfq: Rfq
    purchase_order: PurchaseOrder
