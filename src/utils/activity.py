"""
Activity tracking and stall detection around remote calls.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional


@dataclass
class ActivityTracker:
    """Record when the workflow last made progress and what it was doing."""

    min_interval_seconds: float = 2.0
    _last_touch: float = field(default_factory=time.monotonic, init=False, repr=False)
    _last_note: str = field(default="", init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def touch(self, note: str = "") -> None:
        now = time.monotonic()
        with self._lock:
            if (now - self._last_touch) < self.min_interval_seconds and not note:
                return
            self._last_touch = now
            if note:
                self._last_note = note

    def snapshot(self) -> tuple[float, str]:
        with self._lock:
            return self._last_touch, self._last_note

    def idle_seconds(self) -> float:
        last_touch, _ = self.snapshot()
        return time.monotonic() - last_touch


@dataclass
class StallMonitor:
    """Warn when no remote call has completed for a while, optionally abort."""

    tracker: ActivityTracker
    logger: logging.Logger
    warning_seconds: float = 600.0
    abort_seconds: float = 0.0
    check_interval_seconds: float = 30.0
    describe_state: Optional[Callable[[], str]] = None
    _stop_event: threading.Event = field(default_factory=threading.Event, init=False, repr=False)
    _thread: Optional[threading.Thread] = field(default=None, init=False, repr=False)
    _last_warning_at: float = field(default=0.0, init=False, repr=False)

    def start(self) -> None:
        if self._thread is not None or self.warning_seconds <= 0:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="stall-monitor", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=self.check_interval_seconds + 5)
        self._thread = None

    def check(self) -> bool:
        """Run one stall check. Returns True when a stall was reported."""
        last_touch, note = self.tracker.snapshot()
        now = time.monotonic()
        idle_for = now - last_touch
        if idle_for < self.warning_seconds:
            return False
        if (now - self._last_warning_at) >= self.warning_seconds or self._last_warning_at == 0.0:
            self._last_warning_at = now
            state = self.describe_state() if self.describe_state else ""
            self.logger.warning(
                "No Drive activity for %.0fs. Last step: %s %s",
                idle_for,
                note or "n/a",
                state,
            )
        if self.abort_seconds > 0 and idle_for >= self.abort_seconds:
            self.logger.error(
                "Aborting after %.0fs without progress. Open rollback sessions are kept for replay.",
                idle_for,
            )
            os._exit(2)
        return True

    def _run(self) -> None:
        while not self._stop_event.wait(self.check_interval_seconds):
            self.check()
