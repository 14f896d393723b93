from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Dict

from flask import g, has_request_context, request


_HTTP_DURATION_BUCKETS_MS = (5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0, 2500.0, 5000.0, 10000.0)
_POLL_CYCLE_BUCKETS_MS = (10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0, 2500.0, 5000.0, 10000.0, 30000.0)

_LOG_REQUEST_ID_CTX: contextvars.ContextVar[str] = contextvars.ContextVar("log_request_id", default="")


def _normalize_request_id(value: str | None) -> str:
    return str(value or "").strip() or "n/a"


def set_log_request_id(request_id: str | None) -> None:
    _LOG_REQUEST_ID_CTX.set(_normalize_request_id(request_id))


@contextlib.contextmanager
def bind_request_id(request_id: str | None):
    token = _LOG_REQUEST_ID_CTX.set(_normalize_request_id(request_id))
    try:
        yield _LOG_REQUEST_ID_CTX.get()
    finally:
        _LOG_REQUEST_ID_CTX.reset(token)


def _background_request_id(default: str | None = None) -> str:
    request_id = str(_LOG_REQUEST_ID_CTX.get() or "").strip()
    if request_id:
        return request_id
    return default or "n/a"


class JsonLogFormatter(logging.Formatter):
    _base_keys = {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
    }

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, object] = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if has_request_context():
            payload["request_id"] = current_request_id(default="n/a")
            payload["path"] = request.path
            payload["method"] = request.method
        else:
            record_request_id = str(getattr(record, "request_id", "") or "").strip()
            payload["request_id"] = record_request_id or _background_request_id(default="n/a")

        for key, value in record.__dict__.items():
            if key in self._base_keys or key.startswith("_"):
                continue
            if key in payload:
                continue
            if callable(value):
                continue
            payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, separators=(",", ":"), default=str)


def configure_json_logging(app) -> None:
    if not bool(app.config.get("LOG_JSON", True)):
        return
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).strip().upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)
    app.logger.handlers = []
    app.logger.propagate = True


def ensure_request_id() -> str:
    request_id = str(getattr(g, "request_id", "") or "").strip()
    if request_id:
        set_log_request_id(request_id)
        return request_id
    incoming = str(request.headers.get("X-Request-Id") or "").strip()
    request_id = incoming or str(uuid.uuid4())
    g.request_id = request_id
    set_log_request_id(request_id)
    return request_id


def current_request_id(default: str | None = None) -> str:
    if has_request_context():
        request_id = str(getattr(g, "request_id", "") or "").strip()
        if request_id:
            return request_id
    return _background_request_id(default=default)


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.reset()

    @staticmethod
    def _bucket_label(limit: float) -> str:
        return f"{limit:g}"

    @classmethod
    def _new_histogram_state(cls, limits: tuple[float, ...]) -> dict:
        return {
            "count": 0,
            "sum": 0.0,
            "buckets": {cls._bucket_label(limit): 0 for limit in limits} | {"+Inf": 0},
        }

    @classmethod
    def _observe_histogram(cls, state: dict, value: float, limits: tuple[float, ...]) -> None:
        duration = max(0.0, float(value))
        state["count"] += 1
        state["sum"] += duration
        for limit in limits:
            if duration <= limit:
                key = cls._bucket_label(limit)
                state["buckets"][key] = int(state["buckets"].get(key, 0)) + 1
        state["buckets"]["+Inf"] = int(state["count"])

    def observe_http(self, method: str, route: str, status_code: int, duration_ms: float) -> None:
        method_key = str(method or "GET").strip().upper() or "GET"
        route_key = str(route or "unknown").strip() or "unknown"
        with self._lock:
            self._requests_total += 1
            if int(status_code) >= 400:
                self._errors_total += 1
            histogram = self._http_request_duration_ms.setdefault(
                (method_key, route_key),
                self._new_histogram_state(_HTTP_DURATION_BUCKETS_MS),
            )
            self._observe_histogram(histogram, duration_ms, _HTTP_DURATION_BUCKETS_MS)

    def observe_transition(self, action: str, result: str) -> None:
        key = (str(action or "unknown").strip() or "unknown", str(result or "unknown").strip() or "unknown")
        with self._lock:
            self._transition_total[key] = int(self._transition_total.get(key, 0)) + 1

    def observe_poll_cycle(self, result: str, duration_ms: float | None = None) -> None:
        result_key = str(result or "unknown").strip().lower() or "unknown"
        with self._lock:
            self._poll_cycle_total[result_key] = int(self._poll_cycle_total.get(result_key, 0)) + 1
            if duration_ms is not None:
                self._observe_histogram(self._poll_cycle_duration_ms, duration_ms, _POLL_CYCLE_BUCKETS_MS)

    def observe_poll_coalesced(self, count: int = 1) -> None:
        increment = max(0, int(count or 0))
        if increment <= 0:
            return
        with self._lock:
            self._poll_coalesced_total += increment

    def observe_notification(self, new_status: str, emitted: bool) -> None:
        status_key = str(new_status or "unknown").strip() or "unknown"
        with self._lock:
            target = self._notification_emitted_total if emitted else self._notification_suppressed_total
            target[status_key] = int(target.get(status_key, 0)) + 1

    def observe_notification_dispatch_failed(self, count: int = 1) -> None:
        increment = max(0, int(count or 0))
        if increment <= 0:
            return
        with self._lock:
            self._notification_dispatch_failed_total += increment

    def observe_dedup_purged(self, count: int) -> None:
        increment = max(0, int(count or 0))
        if increment <= 0:
            return
        with self._lock:
            self._dedup_purged_total += increment

    def observe_domain_event_emitted(self, event_type: str) -> None:
        key = str(event_type or "unknown").strip() or "unknown"
        with self._lock:
            self._domain_event_emitted_total[key] = int(self._domain_event_emitted_total.get(key, 0)) + 1

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "http": {
                    "requests_total": int(self._requests_total),
                    "errors_total": int(self._errors_total),
                    "request_duration_ms": {
                        f"{method} {route}": {
                            "count": int(state["count"]),
                            "sum": round(float(state["sum"]), 2),
                            "buckets": dict(state["buckets"]),
                        }
                        for (method, route), state in sorted(self._http_request_duration_ms.items())
                    },
                },
                "transitions": {
                    f"{action}:{result}": int(value)
                    for (action, result), value in sorted(self._transition_total.items())
                },
                "poll": {
                    "cycles": dict(sorted(self._poll_cycle_total.items())),
                    "coalesced_total": int(self._poll_coalesced_total),
                    "duration_ms_count": int(self._poll_cycle_duration_ms["count"]),
                    "duration_ms_sum": round(float(self._poll_cycle_duration_ms["sum"]), 2),
                },
                "notifications": {
                    "emitted_total": int(sum(self._notification_emitted_total.values())),
                    "suppressed_total": int(sum(self._notification_suppressed_total.values())),
                    "dispatch_failed_total": int(self._notification_dispatch_failed_total),
                    "emitted_by_status": dict(sorted(self._notification_emitted_total.items())),
                    "dedup_purged_total": int(self._dedup_purged_total),
                },
                "domain_events": {
                    "emitted_total": int(sum(self._domain_event_emitted_total.values())),
                    "by_type": dict(sorted(self._domain_event_emitted_total.items())),
                },
            }

    def reset(self) -> None:
        with self._lock:
            self._requests_total = 0
            self._errors_total = 0
            self._http_request_duration_ms: Dict[tuple[str, str], dict] = {}
            self._transition_total: Dict[tuple[str, str], int] = {}
            self._poll_cycle_total: Dict[str, int] = {}
            self._poll_coalesced_total = 0
            self._poll_cycle_duration_ms = self._new_histogram_state(_POLL_CYCLE_BUCKETS_MS)
            self._notification_emitted_total: Dict[str, int] = {}
            self._notification_suppressed_total: Dict[str, int] = {}
            self._notification_dispatch_failed_total = 0
            self._dedup_purged_total = 0
            self._domain_event_emitted_total: Dict[str, int] = {}


_METRICS = MetricsRegistry()


def mark_request_start() -> None:
    g._request_started_at = time.perf_counter()


def observe_response(response):
    started = float(getattr(g, "_request_started_at", 0.0) or 0.0)
    elapsed_ms = 0.0
    if started > 0.0:
        elapsed_ms = (time.perf_counter() - started) * 1000.0
    route = request.url_rule.rule if request.url_rule is not None else request.path
    _METRICS.observe_http(request.method, route, int(response.status_code), elapsed_ms)
    response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"
    return response


def metrics_snapshot() -> dict:
    return _METRICS.snapshot()


def observe_transition(action: str, result: str) -> None:
    _METRICS.observe_transition(action, result)


def observe_poll_cycle(result: str, duration_ms: float | None = None) -> None:
    _METRICS.observe_poll_cycle(result, duration_ms)


def observe_poll_coalesced(count: int = 1) -> None:
    _METRICS.observe_poll_coalesced(count)


def observe_notification(new_status: str, emitted: bool) -> None:
    _METRICS.observe_notification(new_status, emitted)


def observe_notification_dispatch_failed(count: int = 1) -> None:
    _METRICS.observe_notification_dispatch_failed(count)


def observe_dedup_purged(count: int) -> None:
    _METRICS.observe_dedup_purged(count)


def observe_domain_event_emitted(event_type: str) -> None:
    _METRICS.observe_domain_event_emitted(event_type)


def reset_metrics_for_tests() -> None:
    _METRICS.reset()
    set_log_request_id(None)
