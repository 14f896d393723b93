from rfq_workflow.core.event_bus import (
    DomainEvent,
    EventBus,
    PurchaseOrderCreated,
    RfqDecided,
    RfqQuoteRecorded,
    RfqResubmitted,
    RfqSent,
    RfqStatusNotification,
    get_event_bus,
    reset_event_bus_for_tests,
)

__all__ = [
    "DomainEvent",
    "EventBus",
    "RfqSent",
    "RfqQuoteRecorded",
    "RfqDecided",
    "RfqResubmitted",
    "PurchaseOrderCreated",
    "RfqStatusNotification",
    "get_event_bus",
    "reset_event_bus_for_tests",
]
