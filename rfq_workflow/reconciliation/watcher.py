from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Mapping

from rfq_workflow.core.event_bus import EventBus, RfqStatusNotification, get_event_bus
from rfq_workflow.domain.contracts import NotificationEvent, StatusTransition
from rfq_workflow.domain.models import Rfq
from rfq_workflow.observability import (
    observe_dedup_purged,
    observe_notification,
    observe_notification_dispatch_failed,
)
from rfq_workflow.reconciliation.dedup import NotificationDedupCache
from rfq_workflow.reconciliation.poller import DebouncedPoller, TimerFactory
from rfq_workflow.reconciliation.snapshot import ReconciliationEngine
from rfq_workflow.workflow.transitions import notification_audience, pauses_poller


AUDIENCE_ALL = "all"

NotificationEmitter = Callable[[NotificationEvent], None]
RedirectHandler = Callable[[NotificationEvent], None]


def _status_of(entity: Rfq | str) -> str:
    if isinstance(entity, Rfq):
        return entity.lifecycle_status
    return str(entity or "").strip()


def _numbers_of(collection: Iterable[Any]) -> Dict[str, str]:
    numbers: Dict[str, str] = {}
    for entity in collection:
        if isinstance(entity, Rfq):
            entity_id, number = entity.id, entity.rfq_number
        elif isinstance(entity, Mapping):
            entity_id = str(entity.get("id") or "")
            number = str(entity.get("rfqNumber") or entity.get("rfq_number") or "")
        else:
            continue
        if entity_id and number:
            numbers[entity_id] = number
    return numbers


class RfqStatusWatcher:
    """Polls the RFQ collection and turns status changes into notifications.

    Each cycle fetches the collection, diffs it against the last snapshot and
    sends every detected transition through the dedup cache before handing
    it to ``emit_notification``. Transitions caused by this session's own
    actions are fed in through ``record_local_transition`` so the next poll
    does not report them a second time.
    """

    def __init__(
        self,
        gateway,
        dedup_cache: NotificationDedupCache,
        emit_notification: NotificationEmitter | None = None,
        *,
        reconciliation: ReconciliationEngine | None = None,
        audience: str | None = None,
        redirect_handler: RedirectHandler | None = None,
        purge_interval_seconds: float = 300,
        interval_seconds: float = 15,
        debounce_seconds: float = 2,
        timer_factory: TimerFactory | None = None,
        clock: Callable[[], float] | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._gateway = gateway
        self.dedup_cache = dedup_cache
        self.reconciliation = reconciliation or ReconciliationEngine()
        self._event_bus = event_bus or get_event_bus()
        self._emit = emit_notification or self._publish_notification
        self.audience = str(audience or "").strip().lower() or None
        self._redirect_handler = redirect_handler
        self.purge_interval_seconds = max(1.0, float(purge_interval_seconds))
        self._clock = clock or time.monotonic
        self._next_purge_at: float | None = None
        self._rfq_numbers: Dict[str, str] = {}
        self._lock = threading.Lock()
        self._logger = logging.getLogger("rfq_workflow")
        self.poller = DebouncedPoller(
            self.reconcile_once,
            interval_seconds=interval_seconds,
            debounce_seconds=debounce_seconds,
            timer_factory=timer_factory,
            clock=self._clock,
            name="rfq-status-watcher",
        )

    def start(self) -> bool:
        return self.poller.start()

    def stop(self) -> None:
        self.poller.stop()

    def pause(self) -> bool:
        return self.poller.pause()

    def resume(self) -> bool:
        return self.poller.resume()

    def refresh(self) -> bool:
        return self.poller.refresh()

    def status(self) -> Dict[str, Any]:
        baseline = self.reconciliation.baseline
        payload = self.poller.status()
        payload["tracked_entities"] = 0 if baseline is None else len(baseline)
        payload["dedup_entries"] = len(self.dedup_cache)
        payload["audience"] = self.audience or AUDIENCE_ALL
        return payload

    def reconcile_once(self) -> List[NotificationEvent]:
        since = self.reconciliation.version
        collection = list(self._gateway.fetch_rfq_collection() or [])
        with self._lock:
            self._rfq_numbers = _numbers_of(collection)
            transitions = self.reconciliation.reconcile(collection, since=since)
        emitted: List[NotificationEvent] = []
        for transition in transitions:
            event = self._dispatch(transition, allow_redirect=True)
            if event is not None:
                emitted.append(event)
        self._maybe_purge()
        return emitted

    def record_local_transition(self, previous: Rfq | str, current: Rfq) -> NotificationEvent | None:
        previous_status = _status_of(previous)
        with self._lock:
            self._rfq_numbers.update(_numbers_of([current]))
            self.reconciliation.adopt(current)
        if not previous_status or previous_status == current.lifecycle_status:
            return None
        transition = StatusTransition(
            entity_id=current.id,
            previous_status=previous_status,
            new_status=current.lifecycle_status,
        )
        return self._dispatch(transition, allow_redirect=False)

    def purge_dedup_cache(self) -> int:
        purged = self.dedup_cache.purge_expired()
        observe_dedup_purged(purged)
        if purged:
            self._logger.info("notification_dedup_purged", extra={"purged": purged})
        return purged

    def _maybe_purge(self) -> None:
        now = self._clock()
        if self._next_purge_at is None:
            self._next_purge_at = now + self.purge_interval_seconds
            return
        if now < self._next_purge_at:
            return
        self._next_purge_at = now + self.purge_interval_seconds
        self.purge_dedup_cache()

    def _targets_this_session(self, audience: str) -> bool:
        if self.audience is None or self.audience == AUDIENCE_ALL:
            return True
        return audience in (self.audience, AUDIENCE_ALL)

    def _dispatch(self, transition: StatusTransition, *, allow_redirect: bool) -> NotificationEvent | None:
        event = NotificationEvent(
            entity_id=transition.entity_id,
            previous_status=transition.previous_status,
            new_status=transition.new_status,
            target_audience=notification_audience(transition.previous_status, transition.new_status),
            rfq_number=self._rfq_numbers.get(transition.entity_id, ""),
        )
        if not self._targets_this_session(event.target_audience):
            return None
        if not self.dedup_cache.should_emit(event.dedup_key):
            observe_notification(event.new_status, emitted=False)
            self._logger.debug("rfq_notification_suppressed", extra={"dedup_key": event.dedup_key})
            return None

        observe_notification(event.new_status, emitted=True)
        try:
            self._emit(event)
        except Exception:  # noqa: BLE001
            observe_notification_dispatch_failed()
            self._logger.exception(
                "rfq_notification_dispatch_failed",
                extra={"rfq_id": event.entity_id, "new_status": event.new_status},
            )
        else:
            self._logger.info(
                "rfq_notification_emitted",
                extra={
                    "rfq_id": event.entity_id,
                    "previous_status": event.previous_status,
                    "new_status": event.new_status,
                    "target_audience": event.target_audience,
                },
            )

        if allow_redirect and self._redirect_handler is not None:
            if pauses_poller(event.previous_status, event.new_status):
                self._redirect(event)
        return event

    def _redirect(self, event: NotificationEvent) -> None:
        self.poller.pause()
        try:
            self._redirect_handler(event)
        except Exception:  # noqa: BLE001
            self._logger.exception("rfq_redirect_failed", extra={"rfq_id": event.entity_id})
            self.poller.resume()

    def _publish_notification(self, event: NotificationEvent) -> None:
        self._event_bus.publish(
            RfqStatusNotification(
                entity_id=event.entity_id,
                previous_status=event.previous_status,
                new_status=event.new_status,
                target_audience=event.target_audience,
                rfq_number=event.rfq_number,
                message=event.message,
            )
        )
