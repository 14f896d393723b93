from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, List

from rfq_workflow.domain.models import APPROVED, DRAFT, PO_CREATED, RECEIVED, REJECTED, SENT


AUDIENCE_MANAGER = "manager"
AUDIENCE_USER = "user"


@dataclass(frozen=True)
class Transition:
    action: str
    sources: FrozenSet[str]
    target: str
    timestamp_field: str | None = None
    audience: str = AUDIENCE_USER
    pauses_poller: bool = False
    derives_purchase_order: bool = False


TRANSITIONS: Dict[str, Transition] = {
    "send": Transition(
        action="send",
        sources=frozenset({DRAFT}),
        target=SENT,
        timestamp_field="sent_date",
        audience=AUDIENCE_USER,
    ),
    "record_quote": Transition(
        action="record_quote",
        sources=frozenset({SENT}),
        target=RECEIVED,
        audience=AUDIENCE_MANAGER,
    ),
    "approve": Transition(
        action="approve",
        sources=frozenset({RECEIVED}),
        target=APPROVED,
        timestamp_field="approved_at",
        audience=AUDIENCE_USER,
        pauses_poller=True,
    ),
    "reject": Transition(
        action="reject",
        sources=frozenset({RECEIVED}),
        target=REJECTED,
        timestamp_field="rejected_at",
        audience=AUDIENCE_USER,
        pauses_poller=True,
    ),
    "resubmit": Transition(
        action="resubmit",
        sources=frozenset({REJECTED}),
        target=SENT,
        audience=AUDIENCE_MANAGER,
    ),
    "create_purchase_order": Transition(
        action="create_purchase_order",
        sources=frozenset({APPROVED}),
        target=PO_CREATED,
        audience=AUDIENCE_USER,
        derives_purchase_order=True,
    ),
}


PRIMARY_ACTIONS: Dict[str, str | None] = {
    DRAFT: "send",
    SENT: "record_quote",
    RECEIVED: "approve",
    APPROVED: "create_purchase_order",
    REJECTED: "resubmit",
    PO_CREATED: None,
}


ACTION_LABELS: Dict[str, str] = {
    "send": "Send to Vendor",
    "edit_items": "Edit items",
    "record_quote": "Record Vendor Quote",
    "approve": "Approve quote",
    "reject": "Reject quote",
    "resubmit": "Edit and resubmit",
    "create_purchase_order": "Generate purchase order",
}


def transition_for(action: str | None) -> Transition | None:
    if not action:
        return None
    return TRANSITIONS.get(str(action).strip())


def allowed_actions(status: str | None) -> List[str]:
    if not status:
        return []
    resolved = str(status).strip()
    actions = [name for name, transition in TRANSITIONS.items() if resolved in transition.sources]
    if resolved == DRAFT:
        actions.insert(0, "edit_items")
    return actions


def primary_action(status: str | None) -> str | None:
    if not status:
        return None
    return PRIMARY_ACTIONS.get(str(status).strip())


def action_allowed(status: str | None, action: str | None) -> bool:
    if not action:
        return False
    return action in set(allowed_actions(status))


def action_label(action: str, fallback: str | None = None) -> str:
    label = ACTION_LABELS.get(action)
    if label:
        return label
    if fallback is not None:
        return fallback
    return action


def transition_between(previous_status: str | None, new_status: str | None) -> Transition | None:
    for transition in TRANSITIONS.values():
        if transition.target == new_status and previous_status in transition.sources:
            return transition
    return None


def notification_audience(previous_status: str | None, new_status: str | None) -> str:
    transition = transition_between(previous_status, new_status)
    if transition is not None:
        return transition.audience
    # Out-of-band changes (admin edits, reverts) go to everyone watching the RFQ.
    return "all"


def pauses_poller(previous_status: str | None, new_status: str | None) -> bool:
    transition = transition_between(previous_status, new_status)
    return bool(transition and transition.pauses_poller)


def flow_meta(status: str | None) -> Dict[str, object]:
    return {
        "status": status,
        "allowed_actions": allowed_actions(status),
        "primary_action": primary_action(status),
    }
