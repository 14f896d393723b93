from __future__ import annotations

import json
import threading

import click
from flask import Flask

from rfq_workflow.core import RfqStatusNotification
from rfq_workflow.ui_strings import status_label
from rfq_workflow.workflow.transitions import action_label, allowed_actions


def register_rfq_cli(app: Flask) -> None:
    @app.cli.group("rfq")
    def rfq_group() -> None:
        """RFQ workflow commands."""

    @rfq_group.command("list")
    def rfq_list() -> None:
        service = app.extensions["rfq_workflow"]["service"]
        for rfq in service.list_rfqs():
            actions = ", ".join(action_label(action) for action in allowed_actions(rfq.lifecycle_status)) or "-"
            click.echo(f"{rfq.rfq_number or rfq.id}\t{status_label(rfq.lifecycle_status)}\t{actions}")

    @rfq_group.command("poll-once")
    def rfq_poll_once() -> None:
        watcher = app.extensions["rfq_workflow"]["watcher"]
        first_pass = watcher.reconciliation.baseline is None
        events = watcher.reconcile_once()
        if first_pass:
            baseline = watcher.reconciliation.baseline
            click.echo(f"Baseline captured for {0 if baseline is None else len(baseline)} RFQs.")
            return
        if not events:
            click.echo("No status changes.")
            return
        for event in events:
            click.echo(f"{event.entity_id}: {event.previous_status} -> {event.new_status} ({event.target_audience})")

    @rfq_group.command("status")
    def rfq_status() -> None:
        watcher = app.extensions["rfq_workflow"]["watcher"]
        click.echo(json.dumps(watcher.status(), indent=2, default=str))

    @rfq_group.command("watch")
    def rfq_watch() -> None:
        components = app.extensions["rfq_workflow"]
        watcher = components["watcher"]
        event_bus = components["event_bus"]

        def _echo(event: RfqStatusNotification) -> None:
            click.echo(f"[{event.target_audience}] {event.message}")

        event_bus.subscribe(RfqStatusNotification, _echo)
        stop_event = threading.Event()
        watcher.start()
        click.echo(
            f"Watching RFQs every {watcher.poller.interval_seconds:g}s. Press Ctrl+C to stop.",
        )
        try:
            while not stop_event.wait(1.0):
                pass
        except KeyboardInterrupt:
            click.echo("Stopping watcher.")
        finally:
            watcher.stop()
            event_bus.unsubscribe(RfqStatusNotification, _echo)
