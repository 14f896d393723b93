from rfq_workflow.gateway.base import RfqGateway
from rfq_workflow.gateway.http_client import HttpRfqGateway
from rfq_workflow.gateway.memory import InMemoryRfqGateway, demo_rfqs

__all__ = ["HttpRfqGateway", "InMemoryRfqGateway", "RfqGateway", "demo_rfqs"]
