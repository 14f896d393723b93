from __future__ import annotations

import os

from flask import Flask

from rfq_workflow.gateway.base import RfqGateway
from rfq_workflow.reconciliation.dedup import NotificationDedupCache
from rfq_workflow.reconciliation.watcher import RfqStatusWatcher


def build_watcher(app: Flask, gateway: RfqGateway, **overrides) -> RfqStatusWatcher:
    dedup_cache = overrides.pop("dedup_cache", None) or NotificationDedupCache(
        ttl_seconds=_int_config(app, "NOTIFICATION_DEDUP_TTL_SECONDS", 300, 1, 86_400),
    )
    options = {
        "audience": str(app.config.get("RFQ_SESSION_AUDIENCE") or "").strip() or None,
        "interval_seconds": _int_config(app, "RFQ_POLL_INTERVAL_SECONDS", 15, 1, 3600),
        "debounce_seconds": _int_config(app, "RFQ_POLL_DEBOUNCE_SECONDS", 2, 0, 60),
        "purge_interval_seconds": _int_config(app, "NOTIFICATION_PURGE_INTERVAL_SECONDS", 300, 1, 86_400),
    }
    options.update(overrides)
    return RfqStatusWatcher(gateway, dedup_cache, **options)


def start_rfq_poller(app: Flask, watcher: RfqStatusWatcher) -> bool:
    if not _should_start_scheduler(app):
        return False
    watcher.start()
    app.logger.info(
        "RFQ poller started: interval=%ss debounce=%ss",
        watcher.poller.interval_seconds,
        watcher.poller.debounce_seconds,
    )
    return True


def _should_start_scheduler(app: Flask) -> bool:
    if not app.config.get("RFQ_POLLER_ENABLED", False):
        return False
    if app.config.get("TESTING"):
        return False
    if app.debug:
        run_main = os.environ.get("WERKZEUG_RUN_MAIN")
        if run_main and run_main.lower() != "true":
            return False
    return True


def _int_config(app: Flask, key: str, default: int, min_value: int, max_value: int) -> int:
    try:
        value = int(app.config.get(key, default))
    except (TypeError, ValueError):
        value = default
    return max(min_value, min(value, max_value))
