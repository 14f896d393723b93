from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable, List

from rfq_workflow.domain.models import ExistingPo, QuoteLine, Rfq, RfqItem


class RfqGateway(ABC):
    """Boundary to the system that owns RFQ and purchase order records.

    Mutations return the entity as stored after the transition. Failures
    raise ``AppError`` subclasses; anything else is treated as a transport
    failure by the caller.
    """

    @abstractmethod
    def fetch_rfq_collection(self) -> List[Rfq]:
        raise NotImplementedError

    @abstractmethod
    def send_rfq(self, rfq_id: str) -> Rfq:
        raise NotImplementedError

    @abstractmethod
    def record_quote(self, rfq_id: str, lines: Iterable[QuoteLine], notes: str = "") -> Rfq:
        raise NotImplementedError

    @abstractmethod
    def decide_rfq(self, rfq_id: str, action: str, comments: str = "") -> Rfq:
        raise NotImplementedError

    @abstractmethod
    def resubmit_rfq(self, rfq_id: str, items: Iterable[RfqItem] | None = None) -> Rfq:
        raise NotImplementedError

    @abstractmethod
    def create_po_from_rfq(self, rfq_id: str) -> str:
        raise NotImplementedError

    @abstractmethod
    def check_existing_po(self, rfq_id: str) -> ExistingPo:
        raise NotImplementedError

    def get_rfq(self, rfq_id: str) -> Rfq | None:
        for rfq in self.fetch_rfq_collection():
            if rfq.id == rfq_id:
                return rfq
        return None
