from __future__ import annotations

import time
from threading import Lock
from typing import Callable, Dict


class NotificationDedupCache:
    """Remembers which transition keys were already notified.

    A key is suppressed while its record is younger than ``ttl_seconds``.
    Expired records are treated as absent by ``should_emit`` but only
    removed by ``purge_expired``, which the owner calls on its own schedule.
    """

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] | None = None) -> None:
        self.ttl_seconds = max(1.0, float(ttl_seconds))
        self._clock = clock or time.monotonic
        self._lock = Lock()
        self._recorded_at: Dict[str, float] = {}

    def _is_expired(self, recorded_at: float, now: float) -> bool:
        return (now - recorded_at) >= self.ttl_seconds

    def should_emit(self, key: str, now: float | None = None) -> bool:
        resolved_now = self._clock() if now is None else float(now)
        with self._lock:
            recorded_at = self._recorded_at.get(key)
            if recorded_at is not None and not self._is_expired(recorded_at, resolved_now):
                return False
            self._recorded_at[key] = resolved_now
            return True

    def purge_expired(self, now: float | None = None) -> int:
        resolved_now = self._clock() if now is None else float(now)
        with self._lock:
            expired = [key for key, recorded_at in self._recorded_at.items() if self._is_expired(recorded_at, resolved_now)]
            for key in expired:
                self._recorded_at.pop(key, None)
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._recorded_at.clear()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._recorded_at

    def __len__(self) -> int:
        with self._lock:
            return len(self._recorded_at)
