from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from types import MappingProxyType
from typing import Any, Iterable, List, Mapping, Tuple

from rfq_workflow.domain.contracts import StatusTransition
from rfq_workflow.domain.models import APPROVED, PO_CREATED, Rfq, utc_now


def _entry(entity: Any) -> Tuple[str, str]:
    if isinstance(entity, Rfq):
        return entity.id, entity.lifecycle_status
    if isinstance(entity, Mapping):
        entity_id = str(entity.get("id") or "")
        status = str(entity.get("status") or "")
        if status == APPROVED and (entity.get("purchaseOrderId") or entity.get("purchase_order_id")):
            status = PO_CREATED
        return entity_id, status
    raise TypeError(f"cannot track status of {type(entity).__name__}")


@dataclass(frozen=True)
class Snapshot:
    statuses: Mapping[str, str]
    order: Tuple[str, ...] = ()
    taken_at: datetime = field(default_factory=utc_now)

    @classmethod
    def capture(cls, collection: Iterable[Any], taken_at: datetime | None = None) -> "Snapshot":
        statuses: dict[str, str] = {}
        for entity in collection:
            entity_id, status = _entry(entity)
            if not entity_id:
                continue
            statuses[entity_id] = status
        return cls(
            statuses=MappingProxyType(statuses),
            order=tuple(statuses.keys()),
            taken_at=taken_at or utc_now(),
        )

    def status_of(self, entity_id: str) -> str | None:
        return self.statuses.get(entity_id)

    def with_entity(self, entity: Any, taken_at: datetime | None = None) -> "Snapshot":
        entity_id, status = _entry(entity)
        statuses = dict(self.statuses)
        statuses[entity_id] = status
        order = self.order if entity_id in self.statuses else self.order + (entity_id,)
        return Snapshot(statuses=MappingProxyType(statuses), order=order, taken_at=taken_at or utc_now())

    def __len__(self) -> int:
        return len(self.statuses)


def diff(old_snapshot: Snapshot | Mapping[str, str], new_collection: Iterable[Any]) -> List[StatusTransition]:
    """Status changes between a baseline and the current collection.

    Events follow the order of ``new_collection``. Entities missing from the
    baseline are creations and entities missing from the collection are
    deletions; neither produces an event.
    """
    previous = old_snapshot.statuses if isinstance(old_snapshot, Snapshot) else old_snapshot
    transitions: List[StatusTransition] = []
    seen: set[str] = set()
    for entity in new_collection:
        entity_id, status = _entry(entity)
        if not entity_id or entity_id in seen:
            continue
        seen.add(entity_id)
        old_status = previous.get(entity_id)
        if old_status is None or old_status == status:
            continue
        transitions.append(StatusTransition(entity_id=entity_id, previous_status=old_status, new_status=status))
    return transitions


class ReconciliationEngine:
    """Holds the baseline snapshot the poller diffs against.

    ``adopt`` stamps each locally applied change with an increasing version.
    A poll that reads ``version`` before fetching passes it back as ``since``;
    entities adopted after that point keep their adopted status because the
    fetched collection predates the local change.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._baseline: Snapshot | None = None
        self._version = 0
        self._adopted: dict[str, Tuple[int, str]] = {}

    @property
    def baseline(self) -> Snapshot | None:
        with self._lock:
            return self._baseline

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    def reconcile(
        self,
        collection: Iterable[Any],
        *,
        taken_at: datetime | None = None,
        since: int | None = None,
    ) -> List[StatusTransition]:
        entities = list(collection)
        with self._lock:
            if since is None:
                self._adopted.clear()
            else:
                entities = [self._prefer_adopted(entity, since) for entity in entities]
                self._adopted = {
                    entity_id: stamp for entity_id, stamp in self._adopted.items() if stamp[0] > since
                }
            previous = self._baseline
            transitions = [] if previous is None else diff(previous, entities)
            self._baseline = Snapshot.capture(entities, taken_at=taken_at)
        return transitions

    def _prefer_adopted(self, entity: Any, since: int) -> Any:
        entity_id, _ = _entry(entity)
        stamp = self._adopted.get(entity_id)
        if stamp is None or stamp[0] <= since:
            return entity
        return {"id": entity_id, "status": stamp[1]}

    def adopt(self, entity: Any) -> None:
        entity_id, status = _entry(entity)
        with self._lock:
            self._version += 1
            self._adopted[entity_id] = (self._version, status)
            if self._baseline is None:
                self._baseline = Snapshot.capture([entity])
            else:
                self._baseline = self._baseline.with_entity(entity)

    def reset(self) -> None:
        with self._lock:
            self._baseline = None
            self._adopted.clear()
