from __future__ import annotations

from typing import Any, Dict

from rfq_workflow.ui_strings import error_message


class AppError(Exception):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True

    def __init__(
        self,
        code: str | None = None,
        message_key: str | None = None,
        http_status: int | None = None,
        critical: bool | None = None,
        details: str | None = None,
        payload: Dict[str, Any] | None = None,
    ) -> None:
        self.code = (code or self.default_code).strip()
        self.message_key = (message_key or self.default_message_key).strip()
        self.http_status = int(http_status or self.default_http_status)
        self.critical = bool(self.default_critical if critical is None else critical)
        self.details = (details or "").strip() or None
        self.payload = dict(payload or {})
        super().__init__(self.details or self.code)

    def user_message(self) -> str:
        fallback = error_message("unexpected_error", "The operation could not be completed.")
        return error_message(self.message_key, fallback)

    def to_response_payload(self, request_id: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": self.code,
            "message": self.user_message(),
            "request_id": request_id,
        }
        if self.payload:
            payload.update(self.payload)
        return payload


class UserActionError(AppError):
    default_code = "action_invalid"
    default_message_key = "invalid_transition"
    default_http_status = 400
    default_critical = False


class InvalidTransition(UserActionError):
    default_code = "invalid_transition"
    default_message_key = "invalid_transition"
    default_http_status = 409

    def __init__(self, action: str, status: str | None, **kwargs: Any) -> None:
        self.action = str(action or "").strip()
        self.status = str(status or "").strip() or None
        payload = dict(kwargs.pop("payload", None) or {})
        payload.setdefault("action", self.action)
        payload.setdefault("status", self.status)
        details = kwargs.pop("details", None) or f"{self.action} not allowed from status {self.status}"
        super().__init__(details=details, payload=payload, **kwargs)


class ValidationError(UserActionError):
    default_code = "validation_error"
    default_message_key = "validation_error"
    default_http_status = 400

    def __init__(self, field: str | None = None, **kwargs: Any) -> None:
        self.field = str(field or "").strip() or None
        payload = dict(kwargs.pop("payload", None) or {})
        if self.field:
            payload.setdefault("field", self.field)
        super().__init__(payload=payload, **kwargs)


class DuplicatePoError(InvalidTransition):
    """``create_purchase_order`` on an RFQ that already has a purchase order."""

    default_code = "duplicate_purchase_order"
    default_message_key = "duplicate_purchase_order"
    default_http_status = 409

    def __init__(self, rfq_id: str, po_id: str | None, **kwargs: Any) -> None:
        self.rfq_id = str(rfq_id)
        self.po_id = str(po_id) if po_id else None
        payload = dict(kwargs.pop("payload", None) or {})
        payload.setdefault("rfq_id", self.rfq_id)
        payload.setdefault("po_id", self.po_id)
        details = kwargs.pop("details", None) or f"purchase order {self.po_id} already exists for rfq {self.rfq_id}"
        super().__init__("create_purchase_order", "po_created", details=details, payload=payload, **kwargs)


class RfqNotFound(UserActionError):
    default_code = "rfq_not_found"
    default_message_key = "rfq_not_found"
    default_http_status = 404

    def __init__(self, rfq_id: str, **kwargs: Any) -> None:
        self.rfq_id = str(rfq_id)
        payload = dict(kwargs.pop("payload", None) or {})
        payload.setdefault("rfq_id", self.rfq_id)
        details = kwargs.pop("details", None) or f"rfq {self.rfq_id} not found"
        super().__init__(details=details, payload=payload, **kwargs)


class IntegrationError(AppError):
    default_code = "integration_error"
    default_message_key = "transport_error"
    default_http_status = 502
    default_critical = False


class TransportError(IntegrationError):
    default_code = "transport_error"
    default_message_key = "transport_error"

    retryable = True


class PollError(IntegrationError):
    default_code = "poll_failed"
    default_message_key = "poll_failed"


class SystemError(AppError):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True


class MissingQuoteLine(SystemError):
    default_code = "missing_quote_line"
    default_message_key = "missing_quote_line"

    def __init__(self, rfq_id: str, product_id: str, **kwargs: Any) -> None:
        self.rfq_id = str(rfq_id)
        self.product_id = str(product_id)
        payload = dict(kwargs.pop("payload", None) or {})
        payload.setdefault("rfq_id", self.rfq_id)
        payload.setdefault("product_id", self.product_id)
        details = kwargs.pop("details", None) or f"no quote line for product {self.product_id} on rfq {self.rfq_id}"
        super().__init__(details=details, payload=payload, **kwargs)
