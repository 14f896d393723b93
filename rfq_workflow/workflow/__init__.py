from rfq_workflow.workflow.engine import WorkflowEngine, validate_quote_lines
from rfq_workflow.workflow.po_derivation import derive

__all__ = ["WorkflowEngine", "derive", "validate_quote_lines"]
