"""Periodic background trigger for calendar synchronization."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from docket.models import SyncReport

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 300  # 5 minutes

SyncCallable = Callable[[Optional[threading.Event]], SyncReport]


class PeriodicSync:
    """Calls a sync function every ``interval`` seconds on a daemon thread.

    A firing that finds the previous pass still running is a no-op.
    ``stop()`` sets the abort signal so an in-flight pass stops issuing
    remote calls, then waits for the thread.
    """

    def __init__(
        self,
        sync: SyncCallable,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        run_immediately: bool = True,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._sync = sync
        self._interval = interval
        self._run_immediately = run_immediately
        self._abort = threading.Event()
        self._in_flight = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self.last_report: Optional[SyncReport] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._abort.clear()
        self._thread = threading.Thread(target=self._loop, name="docket-sync", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._abort.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def trigger(self) -> Optional[SyncReport]:
        """Run one pass now unless one is already in flight."""
        if not self._in_flight.acquire(blocking=False):
            logger.debug("Sync already in flight; skipping trigger")
            return None
        try:
            report = self._sync(self._abort)
            self.last_report = report
            if report.errors:
                logger.warning("Sync finished with %d error(s)", len(report.errors))
            return report
        finally:
            self._in_flight.release()

    def _loop(self) -> None:
        if self._run_immediately:
            self._safe_trigger()
        while not self._abort.wait(self._interval):
            self._safe_trigger()

    def _safe_trigger(self) -> None:
        try:
            self.trigger()
        except Exception:
            # Keep the timer alive; the next firing retries
            logger.exception("Periodic sync pass crashed")
