from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Callable, Iterable, TypeVar

from rfq_workflow.core import (
    EventBus,
    PurchaseOrderCreated,
    RfqDecided,
    RfqQuoteRecorded,
    RfqResubmitted,
    RfqSent,
    get_event_bus,
)
from rfq_workflow.domain.contracts import PurchaseOrderResult
from rfq_workflow.domain.models import APPROVE, DECISION_ACTIONS, REJECT, Rfq
from rfq_workflow.errors import AppError, RfqNotFound, TransportError, UserActionError
from rfq_workflow.gateway.base import RfqGateway
from rfq_workflow.observability import observe_transition
from rfq_workflow.workflow.engine import QuoteLineInput, RfqItemInput, WorkflowEngine
from rfq_workflow.workflow.po_derivation import derive


T = TypeVar("T")


class RfqWorkflowService:
    """Application facade for user-initiated RFQ actions.

    Each action is checked against the local state machine before the
    gateway is called, and local state only moves once the gateway has
    accepted the change.
    """

    def __init__(
        self,
        gateway: RfqGateway,
        engine: WorkflowEngine | None = None,
        watcher=None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.gateway = gateway
        self.engine = engine or WorkflowEngine()
        self.watcher = watcher
        self.event_bus = event_bus or get_event_bus()
        self._logger = logging.getLogger("rfq_workflow")

    def get(self, rfq_id: str) -> Rfq:
        rfq = self._call("get", lambda: self.gateway.get_rfq(rfq_id))
        if rfq is None:
            raise RfqNotFound(rfq_id)
        return rfq

    def list_rfqs(self) -> list[Rfq]:
        return list(self._call("list", self.gateway.fetch_rfq_collection))

    def send(self, rfq: Rfq | str) -> Rfq:
        current = self._resolve(rfq)
        self._check("send", lambda: self.engine.send(current))
        updated = self._call("send", lambda: self.gateway.send_rfq(current.id))
        self._commit("send", current, updated, RfqSent(rfq_id=updated.id, rfq_number=updated.rfq_number))
        return updated

    def record_quote(self, rfq: Rfq | str, quote_lines: Iterable[QuoteLineInput], notes: str | None = "") -> Rfq:
        current = self._resolve(rfq)
        preview = self._check("record_quote", lambda: self.engine.record_quote(current, quote_lines, notes))
        quote = preview.vendor_quote
        updated = self._call(
            "record_quote",
            lambda: self.gateway.record_quote(current.id, quote.lines, quote.vendor_notes),
        )
        price = updated.vendor_price if updated.vendor_price is not None else quote.vendor_price
        self._commit(
            "record_quote",
            current,
            updated,
            RfqQuoteRecorded(rfq_id=updated.id, rfq_number=updated.rfq_number, vendor_price=str(price)),
        )
        return updated

    def approve(self, rfq: Rfq | str, comments: str | None = "", *, actor_id: str | None = None) -> Rfq:
        return self.decide(rfq, APPROVE, comments, actor_id=actor_id)

    def reject(self, rfq: Rfq | str, comments: str | None, *, actor_id: str | None = None) -> Rfq:
        return self.decide(rfq, REJECT, comments, actor_id=actor_id)

    def decide(
        self,
        rfq: Rfq | str,
        action: str,
        comments: str | None = "",
        *,
        actor_id: str | None = None,
    ) -> Rfq:
        current = self._resolve(rfq)
        normalized = str(action or "").strip().lower()
        metric_action = normalized if normalized in DECISION_ACTIONS else "decide"
        self._check(metric_action, lambda: self.engine.decide(current, normalized, comments, actor_id=actor_id))
        text = str(comments or "").strip()
        updated = self._call(metric_action, lambda: self.gateway.decide_rfq(current.id, normalized, text))
        self._commit(
            metric_action,
            current,
            updated,
            RfqDecided(
                rfq_id=updated.id,
                action=normalized,
                rfq_number=updated.rfq_number,
                comments=text,
                actor_id=actor_id,
            ),
        )
        return updated

    def resubmit(self, rfq: Rfq | str, items: Iterable[RfqItemInput] | None = None) -> Rfq:
        current = self._resolve(rfq)
        preview = self._check("resubmit", lambda: self.engine.resubmit(current, items))
        new_items = None if items is None else preview.items
        updated = self._call("resubmit", lambda: self.gateway.resubmit_rfq(current.id, new_items))
        self._commit("resubmit", current, updated, RfqResubmitted(rfq_id=updated.id, rfq_number=updated.rfq_number))
        return updated

    def create_purchase_order(self, rfq: Rfq | str) -> PurchaseOrderResult:
        action = "create_purchase_order"
        current = self._resolve(rfq)
        self._check(action, lambda: self.engine.ensure_can_create_po(current))
        existing = self._call(action, lambda: self.gateway.check_existing_po(current.id))
        self._check(action, lambda: self.engine.ensure_can_create_po(current, existing))
        draft = self._check(action, lambda: derive(current))

        po_id = self._call(action, lambda: self.gateway.create_po_from_rfq(current.id))
        updated = self.engine.mark_po_created(current, po_id)
        purchase_order = replace(draft, po_id=po_id)
        self._commit(
            action,
            current,
            updated,
            PurchaseOrderCreated(rfq_id=updated.id, po_id=po_id, total_amount=str(purchase_order.total_amount)),
        )
        return PurchaseOrderResult(po_id=po_id, rfq=updated, purchase_order=purchase_order)

    def _resolve(self, rfq: Rfq | str) -> Rfq:
        if isinstance(rfq, Rfq):
            return rfq
        return self.get(str(rfq))

    def _check(self, action: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except AppError as exc:
            observe_transition(action, "rejected")
            self._logger.info(
                "rfq_transition_rejected",
                extra={"action": action, "error_code": exc.code, "details": exc.details},
            )
            raise

    def _call(self, action: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except UserActionError as exc:
            observe_transition(action, "rejected")
            self._logger.info(
                "rfq_gateway_rejected",
                extra={"action": action, "error_code": exc.code, "details": exc.details},
            )
            raise
        except AppError as exc:
            observe_transition(action, "failed")
            self._logger.warning(
                "rfq_gateway_failed",
                extra={"action": action, "error_code": exc.code, "details": exc.details},
            )
            raise
        except Exception as exc:  # noqa: BLE001
            observe_transition(action, "failed")
            self._logger.warning(
                "rfq_gateway_failed",
                extra={"action": action, "error_code": "transport_error", "details": str(exc)},
            )
            raise TransportError(details=f"{type(exc).__name__}: {exc}") from exc

    def _commit(self, action: str, previous: Rfq, updated: Rfq, event: Any) -> None:
        if self.watcher is not None:
            self.watcher.record_local_transition(previous, updated)
        self.event_bus.publish(event)
        observe_transition(action, "succeeded")
        self._logger.info(
            "rfq_transition_applied",
            extra={
                "action": action,
                "rfq_id": updated.id,
                "previous_status": previous.lifecycle_status,
                "new_status": updated.lifecycle_status,
            },
        )
