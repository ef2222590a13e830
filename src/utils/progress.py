"""
Progress reporting for long-running Drive workflows.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from database import DatabaseManager


class ProgressCounter:
    """Log "n of total" lines for a loop at a bounded frequency."""

    def __init__(
        self,
        label: str,
        total: Optional[int] = None,
        logger: Optional[logging.Logger] = None,
        every: int = 10,
        min_interval_seconds: float = 5.0,
    ) -> None:
        self.label = label
        self.total = total
        self.logger = logger or logging.getLogger("drive_reconciler.progress")
        self.every = max(every, 1)
        self.min_interval_seconds = min_interval_seconds
        self.count = 0
        self._started = time.monotonic()
        self._last_logged = 0.0
        self._lock = threading.Lock()

    def start(self) -> "ProgressCounter":
        self.logger.info("%s started%s", self.label, f" ({self.total} total)" if self.total else "")
        return self

    def advance(self, step: int = 1, note: str = "") -> None:
        with self._lock:
            self.count += step
            now = time.monotonic()
            due = self.count % self.every == 0 or (now - self._last_logged) >= self.min_interval_seconds
            if not due:
                return
            self._last_logged = now
            count = self.count
        elapsed = max(now - self._started, 1e-6)
        rate = count / elapsed
        if self.total:
            remaining = max(self.total - count, 0)
            eta = remaining / rate if rate > 0 else 0.0
            self.logger.info(
                "%s: %s/%s (%.1f/s, eta %.0fs) %s", self.label, count, self.total, rate, eta, note
            )
        else:
            self.logger.info("%s: %s (%.1f/s) %s", self.label, count, rate, note)

    def complete(self, note: str = "") -> float:
        elapsed = time.monotonic() - self._started
        self.logger.info("%s completed: %s in %.1fs %s", self.label, self.count, elapsed, note)
        return elapsed


@dataclass
class SessionSnapshot:
    """Summary of rollback session state at a point in time."""

    timestamp: str
    active_sessions: int
    operation_counts: dict[str, int]


class ProgressReporter:
    """Emit periodic rollback-session summaries using a background thread."""

    def __init__(
        self,
        db_path,
        logger: Optional[logging.Logger] = None,
        interval_seconds: int = 60,
        enabled: bool = True,
    ) -> None:
        self.db_path = db_path
        self.logger = logger or logging.getLogger("drive_reconciler.progress")
        self.interval_seconds = max(interval_seconds, 5)
        self.enabled = enabled
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """Start background reporting if enabled."""
        if not self.enabled or self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="progress-reporter", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop background reporting."""
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=self.interval_seconds + 5)
        self._thread = None

    def snapshot(self) -> SessionSnapshot:
        db_manager = DatabaseManager(self.db_path)
        try:
            active = len(db_manager.list_sessions(status="active"))
            counts = db_manager.operation_status_summary()
        finally:
            db_manager.close()
        return SessionSnapshot(
            timestamp=datetime.utcnow().isoformat(),
            active_sessions=active,
            operation_counts=counts,
        )

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            snapshot = self.snapshot()
            self.logger.info(
                "Session snapshot: active=%s operations=%s",
                snapshot.active_sessions,
                snapshot.operation_counts,
            )
