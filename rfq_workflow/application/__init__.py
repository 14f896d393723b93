from rfq_workflow.application.rfq_service import RfqWorkflowService

__all__ = ["RfqWorkflowService"]
