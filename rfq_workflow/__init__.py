from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from rfq_workflow.config import Config
from rfq_workflow.observability import (
    configure_json_logging,
    ensure_request_id,
    mark_request_start,
    metrics_snapshot,
    observe_response,
)


EXTENSION_KEY = "rfq_workflow"


def create_app(config_class=Config, *, gateway=None):
    app = Flask(__name__)
    app.config.from_object(config_class)
    configure_json_logging(app)

    _register_error_handlers(app)
    _register_workflow(app, gateway)
    _register_health(app)
    _register_cli(app)

    _register_poller(app)
    return app


def get_components(app: Flask) -> dict:
    return app.extensions[EXTENSION_KEY]


def _register_workflow(app: Flask, gateway) -> None:
    from rfq_workflow.application.rfq_service import RfqWorkflowService
    from rfq_workflow.core import get_event_bus
    from rfq_workflow.scheduler import build_watcher
    from rfq_workflow.workflow.engine import WorkflowEngine

    resolved_gateway = gateway if gateway is not None else _build_gateway(app)
    event_bus = get_event_bus()
    watcher = build_watcher(app, resolved_gateway, event_bus=event_bus)
    service = RfqWorkflowService(resolved_gateway, WorkflowEngine(), watcher=watcher, event_bus=event_bus)
    app.extensions[EXTENSION_KEY] = {
        "gateway": resolved_gateway,
        "watcher": watcher,
        "service": service,
        "event_bus": event_bus,
    }


def _build_gateway(app: Flask):
    from rfq_workflow.gateway.http_client import HttpRfqGateway
    from rfq_workflow.gateway.memory import InMemoryRfqGateway, demo_rfqs
    from rfq_workflow.scheduler import _int_config

    mode = str(app.config.get("RFQ_GATEWAY_MODE") or "memory").strip().lower()
    if mode == "memory":
        seed = demo_rfqs() if app.config.get("RFQ_MEMORY_SEED_DEMO", False) else ()
        return InMemoryRfqGateway(seed)
    if mode == "http":
        return HttpRfqGateway(
            base_url=str(app.config.get("RFQ_API_BASE_URL") or ""),
            token=app.config.get("RFQ_API_TOKEN") or None,
            timeout_seconds=_int_config(app, "RFQ_API_TIMEOUT_SECONDS", 20, 1, 300),
            verify_ssl=bool(app.config.get("RFQ_API_VERIFY_SSL", True)),
        )
    raise RuntimeError(f"RFQ_GATEWAY_MODE invalid: {mode}")


def _register_poller(app: Flask) -> None:
    from rfq_workflow.scheduler import start_rfq_poller

    start_rfq_poller(app, get_components(app)["watcher"])


def _register_cli(app: Flask) -> None:
    from rfq_workflow.cli import register_rfq_cli

    register_rfq_cli(app)


def _register_error_handlers(app: Flask) -> None:
    from rfq_workflow.errors import AppError, SystemError

    @app.before_request
    def _ensure_request_id() -> None:
        ensure_request_id()
        mark_request_start()

    @app.after_request
    def _append_request_id(response):
        response.headers["X-Request-Id"] = ensure_request_id()
        return observe_response(response)

    def _log_error(error: AppError, request_id: str) -> None:
        log_method = app.logger.error if error.critical else app.logger.warning
        log_method(
            "application_error",
            extra={
                "request_id": request_id,
                "error_code": error.code,
                "http_status": error.http_status,
                "message_key": error.message_key,
                "details": error.details,
                "request_path": request.path,
                "http_method": request.method,
            },
            exc_info=error.critical,
        )

    @app.errorhandler(AppError)
    def _handle_app_error(exc: AppError):
        request_id = ensure_request_id()
        _log_error(exc, request_id)
        return jsonify(exc.to_response_payload(request_id)), exc.http_status

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc

        request_id = ensure_request_id()
        mapped = SystemError(
            code="unexpected_error",
            message_key="unexpected_error",
            http_status=500,
            critical=True,
            details=str(exc),
        )
        app.logger.exception(
            "unexpected_exception",
            extra={
                "request_id": request_id,
                "error_code": mapped.code,
                "request_path": request.path,
                "http_method": request.method,
            },
        )
        return jsonify(mapped.to_response_payload(request_id)), mapped.http_status


def _register_health(app: Flask) -> None:
    @app.route("/health")
    def health():
        watcher = get_components(app)["watcher"]
        poller = watcher.status()
        payload = {
            "status": "degraded" if poller.get("last_error") else "ok",
            "gateway": str(app.config.get("RFQ_GATEWAY_MODE") or "memory").strip().lower(),
            "env": app.config.get("ENV", "unknown"),
            "poller": poller,
            "metrics": metrics_snapshot(),
        }
        return payload, 200
