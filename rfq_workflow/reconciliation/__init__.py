from rfq_workflow.reconciliation.dedup import NotificationDedupCache
from rfq_workflow.reconciliation.poller import DebouncedPoller, thread_timer
from rfq_workflow.reconciliation.snapshot import ReconciliationEngine, Snapshot, diff
from rfq_workflow.reconciliation.watcher import RfqStatusWatcher

__all__ = [
    "DebouncedPoller",
    "NotificationDedupCache",
    "ReconciliationEngine",
    "RfqStatusWatcher",
    "Snapshot",
    "diff",
    "thread_timer",
]
