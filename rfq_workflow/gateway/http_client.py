from __future__ import annotations

import json
import os
import ssl
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Dict, Iterable, List

from flask import current_app

from rfq_workflow.domain.models import ExistingPo, QuoteLine, Rfq, RfqItem
from rfq_workflow.errors import (
    AppError,
    DuplicatePoError,
    InvalidTransition,
    RfqNotFound,
    TransportError,
    ValidationError,
)
from rfq_workflow.gateway.base import RfqGateway


DEFAULT_PAGE_SIZE = 100
MAX_PAGES = 50


class HttpRfqGateway(RfqGateway):
    def __init__(
        self,
        base_url: str | None = None,
        *,
        token: str | None = None,
        timeout_seconds: int | None = None,
        verify_ssl: bool | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        resolved_base = str(base_url if base_url is not None else _get_config("RFQ_API_BASE_URL", "") or "").strip()
        if not resolved_base:
            raise TransportError(code="gateway_not_configured", details="RFQ_API_BASE_URL is not configured.")
        self.base_url = resolved_base.rstrip("/")
        self.token = token if token is not None else (_get_config("RFQ_API_TOKEN") or None)
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else _int_config("RFQ_API_TIMEOUT_SECONDS", 20)
        self.verify_ssl = verify_ssl if verify_ssl is not None else _bool_config("RFQ_API_VERIFY_SSL", True)
        self.page_size = max(1, int(page_size))

    def fetch_rfq_collection(self) -> List[Rfq]:
        rfqs: List[Rfq] = []
        page = 1
        while page <= MAX_PAGES:
            payload = self._request_json(
                "GET", "/api/rfqs", query={"page": page, "limit": self.page_size}, action="list"
            )
            if not isinstance(payload, dict):
                raise TransportError(details="RFQ API returned a non-object collection payload.")
            items = payload.get("rfqs") or []
            rfqs.extend(Rfq.from_dict(item) for item in items if isinstance(item, dict))
            pagination = payload.get("pagination") or {}
            try:
                pages = int(pagination.get("pages") or 1)
            except (TypeError, ValueError):
                pages = 1
            if page >= pages:
                break
            page += 1
        return rfqs

    def send_rfq(self, rfq_id: str) -> Rfq:
        return self._rfq_from(
            self._request_json("POST", f"/api/rfqs/{_quote_id(rfq_id)}/send", payload={}, action="send", rfq_id=rfq_id)
        )

    def record_quote(self, rfq_id: str, lines: Iterable[QuoteLine], notes: str = "") -> Rfq:
        payload = {
            "vendorNotes": notes or "",
            "items": [line.to_dict() for line in lines],
        }
        path = f"/api/rfqs/{_quote_id(rfq_id)}/quote"
        return self._rfq_from(self._request_json("POST", path, payload=payload, action="record_quote", rfq_id=rfq_id))

    def decide_rfq(self, rfq_id: str, action: str, comments: str = "") -> Rfq:
        payload = {"action": action, "comments": comments or ""}
        path = f"/api/rfqs/{_quote_id(rfq_id)}/approve"
        return self._rfq_from(self._request_json("POST", path, payload=payload, action=action, rfq_id=rfq_id))

    def resubmit_rfq(self, rfq_id: str, items: Iterable[RfqItem] | None = None) -> Rfq:
        payload: Dict[str, Any] = {"status": "sent", "vendorNotes": None, "rejectionReason": None}
        if items is not None:
            payload["items"] = [item.to_dict() for item in items]
        path = f"/api/rfqs/{_quote_id(rfq_id)}"
        return self._rfq_from(self._request_json("PUT", path, payload=payload, action="resubmit", rfq_id=rfq_id))

    def create_po_from_rfq(self, rfq_id: str) -> str:
        response = self._request_json(
            "POST",
            "/api/purchase/purchase-orders/from-rfq",
            payload={"rfqId": rfq_id},
            action="create_purchase_order",
            rfq_id=rfq_id,
        )
        po_id = _po_id_from(response)
        if not po_id:
            raise TransportError(details="RFQ API did not return a poId for the new purchase order.")
        return po_id

    def check_existing_po(self, rfq_id: str) -> ExistingPo:
        payload = self._request_json(
            "GET", "/api/purchase/purchase-orders", query={"rfqId": rfq_id}, action="check_existing_po"
        )
        for record in _normalize_records(payload):
            record_rfq = str(record.get("rfqId") or record.get("rfq_id") or "")
            if record_rfq == str(rfq_id):
                return ExistingPo(exists=True, po_id=_po_id_from(record))
        return ExistingPo(exists=False)

    def _rfq_from(self, payload: object) -> Rfq:
        if not isinstance(payload, dict):
            raise TransportError(details="RFQ API returned a non-object payload.")
        data = payload.get("rfq") if isinstance(payload.get("rfq"), dict) else payload
        rfq = Rfq.from_dict(data)
        if not rfq.id:
            raise TransportError(details="RFQ API response has no rfq id.")
        return rfq

    def _request_json(
        self,
        method: str,
        path: str,
        payload: dict | None = None,
        query: Dict[str, Any] | None = None,
        *,
        action: str = "",
        rfq_id: str | None = None,
    ) -> object:
        url = f"{self.base_url}/{path.lstrip('/')}"
        if query:
            url = f"{url}?{urllib.parse.urlencode({k: v for k, v in query.items() if v is not None})}"

        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        data = None
        if payload is not None:
            headers["Content-Type"] = "application/json"
            data = json.dumps(payload, separators=(",", ":"), ensure_ascii=True).encode("utf-8")

        request = urllib.request.Request(url, data=data, headers=headers, method=method.upper())

        context = None
        if not self.verify_ssl:
            context = ssl._create_unverified_context()

        try:
            with urllib.request.urlopen(request, timeout=self.timeout_seconds, context=context) as response:
                body = response.read().decode("utf-8")
                if not body:
                    return {}
                return json.loads(body)
        except urllib.error.HTTPError as exc:  # noqa: PERF203
            error_body = exc.read().decode("utf-8") if exc.fp else ""
            raise _error_for_status(exc.code, error_body, action=action, rfq_id=rfq_id) from exc
        except urllib.error.URLError as exc:
            raise TransportError(details=f"RFQ API connection error: {exc.reason}") from exc
        except json.JSONDecodeError as exc:
            raise TransportError(details="RFQ API returned invalid JSON.") from exc


def _quote_id(rfq_id: str) -> str:
    return urllib.parse.quote(str(rfq_id), safe="")


def _safe_json(body: str) -> object:
    if not body:
        return None
    try:
        return json.loads(body)
    except json.JSONDecodeError:
        return None


def _upstream_message(parsed: object, body: str) -> str:
    if isinstance(parsed, dict):
        for key in ("error", "message", "detail"):
            value = parsed.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return body[:200]


def _error_for_status(status: int, body: str, *, action: str, rfq_id: str | None) -> AppError:
    """Map an upstream HTTP error onto the error the in-memory gateway raises."""
    parsed = _safe_json(body)
    message = _upstream_message(parsed, body)
    details = f"RFQ API HTTP {status}: {message}"
    if status == 404 and rfq_id:
        return RfqNotFound(rfq_id, details=details)
    if status == 409:
        if action == "create_purchase_order" and rfq_id:
            return DuplicatePoError(rfq_id, _po_id_from(parsed), details=details)
        return InvalidTransition(action, None, details=details)
    if status in (400, 422):
        if "status" in message.lower():
            return InvalidTransition(action, None, details=details)
        return ValidationError(details=details)
    return TransportError(details=details, payload={"upstream_status": status})


def _po_id_from(payload: object) -> str | None:
    if not isinstance(payload, dict):
        return None
    data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
    po_id = data.get("poId") or data.get("po_id")
    return str(po_id) if po_id else None


def _normalize_records(payload: object) -> List[dict]:
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    if isinstance(payload, dict):
        items = payload.get("data") or payload.get("items") or payload.get("purchaseOrders") or []
        if isinstance(items, list):
            return [item for item in items if isinstance(item, dict)]
    return []


def _get_config(key: str, default: object | None = None) -> object | None:
    try:
        return current_app.config.get(key, default)
    except RuntimeError:
        return os.environ.get(key, default)


def _int_config(key: str, default: int) -> int:
    value = _get_config(key, default)
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default


def _bool_config(key: str, default: bool) -> bool:
    value = _get_config(key, default)
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}
