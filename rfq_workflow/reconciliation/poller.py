"""Cancellable, debounced polling loop.

The poller owns three pieces of state: a periodic tick timer, a pending
debounce timer and an in-flight flag. Every timer callback carries the
generation it was armed in; ``pause`` and ``stop`` bump the generation so a
timer that already fired but has not taken the lock yet becomes a no-op.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, Protocol

from rfq_workflow.domain.models import iso_datetime, utc_now
from rfq_workflow.errors import PollError
from rfq_workflow.observability import bind_request_id, observe_poll_coalesced, observe_poll_cycle


class PollTimer(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], PollTimer]


def thread_timer(delay_seconds: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay_seconds, callback)
    timer.daemon = True
    return timer


class DebouncedPoller:
    def __init__(
        self,
        cycle: Callable[[], Any],
        *,
        interval_seconds: float = 15,
        debounce_seconds: float = 2,
        timer_factory: TimerFactory | None = None,
        clock: Callable[[], float] | None = None,
        name: str = "rfq-poller",
    ) -> None:
        self._cycle = cycle
        self.interval_seconds = max(0.0, float(interval_seconds))
        self.debounce_seconds = max(0.0, float(debounce_seconds))
        self.name = name
        self._timer_factory = timer_factory or thread_timer
        self._clock = clock or time.monotonic
        self._logger = logging.getLogger("rfq_workflow")

        self._lock = threading.Lock()
        self._generation = 0
        self._running = False
        self._paused = False
        self._in_flight = False
        self._rerun_requested = False
        self._tick_timer: PollTimer | None = None
        self._next_tick_at = 0.0
        self._debounce_timer: PollTimer | None = None
        self._cycle_count = 0
        self._failure_count = 0
        self._last_error: PollError | None = None
        self._last_cycle_at: datetime | None = None
        self._last_success_at: datetime | None = None

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def paused(self) -> bool:
        with self._lock:
            return self._paused

    @property
    def in_flight(self) -> bool:
        with self._lock:
            return self._in_flight

    @property
    def last_error(self) -> PollError | None:
        with self._lock:
            return self._last_error

    def start(self) -> bool:
        with self._lock:
            if self._running:
                return False
            self._running = True
            self._paused = False
            self._generation += 1
            generation = self._generation
            self._arm_tick_locked(restart=True)
        self._logger.info(
            "rfq_poller_started",
            extra={"poller": self.name, "interval_seconds": self.interval_seconds},
        )
        self._run_cycle(generation)
        return True

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._paused = False
            self._generation += 1
            self._rerun_requested = False
            self._cancel_timers_locked()
        self._logger.info("rfq_poller_stopped", extra={"poller": self.name})

    def pause(self) -> bool:
        with self._lock:
            if not self._running or self._paused:
                return False
            self._paused = True
            self._generation += 1
            self._rerun_requested = False
            self._cancel_timers_locked()
        self._logger.info("rfq_poller_paused", extra={"poller": self.name})
        return True

    def resume(self) -> bool:
        with self._lock:
            if not self._running or not self._paused:
                return False
            self._paused = False
            self._generation += 1
            generation = self._generation
            self._arm_tick_locked(restart=True)
        self._logger.info("rfq_poller_resumed", extra={"poller": self.name})
        self._run_cycle(generation)
        return True

    def refresh(self) -> bool:
        """Ask for a cycle after the debounce delay.

        Returns ``False`` when the request was folded into a cycle that is
        already pending or running, or when the poller is not active.
        """
        with self._lock:
            if not self._running or self._paused:
                return False
            return self._request_cycle_locked()

    def status(self) -> Dict[str, Any]:
        with self._lock:
            last_error = self._last_error
            return {
                "name": self.name,
                "running": self._running,
                "paused": self._paused,
                "in_flight": self._in_flight,
                "refresh_pending": self._debounce_timer is not None,
                "interval_seconds": self.interval_seconds,
                "debounce_seconds": self.debounce_seconds,
                "cycles": self._cycle_count,
                "failures": self._failure_count,
                "last_cycle_at": iso_datetime(self._last_cycle_at),
                "last_success_at": iso_datetime(self._last_success_at),
                "last_error": None
                if last_error is None
                else {"code": last_error.code, "details": last_error.details},
            }

    def _is_current_locked(self, generation: int) -> bool:
        return self._running and not self._paused and generation == self._generation

    def _cancel_timers_locked(self) -> None:
        for timer in (self._tick_timer, self._debounce_timer):
            if timer is not None:
                timer.cancel()
        self._tick_timer = None
        self._debounce_timer = None

    def _request_cycle_locked(self) -> bool:
        if self._debounce_timer is not None:
            observe_poll_coalesced()
            return False
        if self._in_flight:
            self._rerun_requested = True
            observe_poll_coalesced()
            return False
        generation = self._generation
        timer = self._timer_factory(self.debounce_seconds, lambda: self._on_debounce(generation))
        self._debounce_timer = timer
        timer.start()
        return True

    def _arm_tick_locked(self, *, restart: bool = False) -> None:
        """Schedule the next tick one interval after the previous one.

        Ticks are scheduled independently of cycles.
        """
        if self._tick_timer is not None:
            self._tick_timer.cancel()
        now = self._clock()
        if restart:
            self._next_tick_at = now + self.interval_seconds
        else:
            self._next_tick_at += self.interval_seconds
            if self._next_tick_at <= now:
                self._next_tick_at = now + self.interval_seconds
        delay = min(self.interval_seconds, self._next_tick_at - now)
        generation = self._generation
        timer = self._timer_factory(delay, lambda: self._on_tick(generation))
        self._tick_timer = timer
        timer.start()

    def _on_tick(self, generation: int) -> None:
        with self._lock:
            if not self._is_current_locked(generation):
                return
            self._arm_tick_locked()
            self._request_cycle_locked()

    def _on_debounce(self, generation: int) -> None:
        with self._lock:
            if not self._is_current_locked(generation):
                return
            self._debounce_timer = None
        self._run_cycle(generation)

    def _run_cycle(self, generation: int) -> bool:
        with self._lock:
            if not self._is_current_locked(generation):
                return False
            if self._in_flight:
                self._rerun_requested = True
                observe_poll_coalesced()
                return False
            self._in_flight = True
            self._cycle_count += 1
            cycle_number = self._cycle_count

        error: PollError | None = None
        started = self._clock()
        with bind_request_id(f"poll-{cycle_number}"):
            try:
                self._cycle()
            except Exception as exc:  # noqa: BLE001
                if isinstance(exc, PollError):
                    error = exc
                else:
                    error = PollError(
                        details=f"{type(exc).__name__}: {exc}",
                        payload={"cycle": cycle_number},
                    )
                    error.__cause__ = exc
            duration_ms = max(0.0, (self._clock() - started) * 1000.0)
            observe_poll_cycle("failed" if error is not None else "succeeded", duration_ms)
            if error is not None:
                self._logger.warning(
                    "rfq_poll_failed",
                    extra={
                        "poller": self.name,
                        "cycle": cycle_number,
                        "error_code": error.code,
                        "details": error.details,
                    },
                )

        with self._lock:
            self._in_flight = False
            self._last_cycle_at = utc_now()
            if error is None:
                self._last_error = None
                self._last_success_at = self._last_cycle_at
            else:
                self._failure_count += 1
                self._last_error = error
            if not self._running or self._paused:
                self._rerun_requested = False
                return True
            if self._rerun_requested:
                self._rerun_requested = False
                self._request_cycle_locked()
        return True
