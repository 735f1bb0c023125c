"""
SyncScheduler - background trigger for reconciliation runs.

A supervised daemon thread that:
- runs a sync every interval_seconds while online
- runs immediately when connectivity goes from offline to online
- doubles its wait after an aborted run, capped at max_backoff_seconds,
  and returns to the normal interval after a successful one
- logs exceptions from a run and keeps going
"""

import logging
from threading import Event, Lock, Thread
from typing import Callable, Optional

from .connectivity import ConnectivityMonitor
from .protocol import SyncResult
from .reconciler import SYNC_IN_PROGRESS

logger = logging.getLogger(__name__)


class SyncScheduler:
    """
    Interval and reconnect driven sync trigger.

    Example:
        scheduler = SyncScheduler(
            lambda trigger: reconciler.sync_with_server(trigger=trigger),
            monitor,
            interval_seconds=60,
        )
        scheduler.start()
        ...
        scheduler.stop()
    """

    def __init__(self,
                 run_sync: Callable[[str], SyncResult],
                 monitor: ConnectivityMonitor,
                 interval_seconds: float = 60.0,
                 max_backoff_seconds: float = 600.0):
        """
        Args:
            run_sync: Callable taking a trigger label and returning a SyncResult
            monitor: Connectivity monitor gating and waking the scheduler
            interval_seconds: Normal wait between runs
            max_backoff_seconds: Upper bound on the wait after failed runs
        """
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be > 0, got {interval_seconds}")
        self.run_sync = run_sync
        self.monitor = monitor
        self.interval_seconds = interval_seconds
        self.max_backoff_seconds = max(max_backoff_seconds, interval_seconds)

        self._delay = interval_seconds
        self._wake = Event()
        self._stop = Event()
        self._lock = Lock()
        self._pending_trigger: Optional[str] = None
        self._thread: Optional[Thread] = None
        self._runs = 0

    @property
    def current_delay(self) -> float:
        with self._lock:
            return self._delay

    @property
    def run_count(self) -> int:
        with self._lock:
            return self._runs

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _on_connectivity(self, online: bool) -> None:
        if online:
            self.trigger("reconnect")

    def trigger(self, reason: str = "manual") -> None:
        """Wake the worker for an immediate run."""
        with self._lock:
            self._pending_trigger = reason
        self._wake.set()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self.monitor.add_listener(self._on_connectivity)
        self._thread = Thread(target=self._loop, name="engage-sync-scheduler", daemon=True)
        self._thread.start()
        logger.info(f"Sync scheduler started (interval={self.interval_seconds}s)")

    def stop(self, timeout: Optional[float] = 10.0) -> None:
        """Stop the worker and wait for the current run to finish."""
        self._stop.set()
        self._wake.set()
        self.monitor.remove_listener(self._on_connectivity)
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Sync scheduler stopped")

    def _loop(self) -> None:
        while not self._stop.is_set():
            self._wake.wait(self.current_delay)
            if self._stop.is_set():
                break
            self._wake.clear()
            with self._lock:
                trigger = self._pending_trigger or "scheduled"
                self._pending_trigger = None

            if not self.monitor.is_online:
                logger.debug(f"Skipping {trigger} sync: offline")
                continue
            self.run_once(trigger)

    def run_once(self, trigger: str = "scheduled") -> Optional[SyncResult]:
        """
        Run one sync and adjust the backoff.

        Returns:
            The run's result, or None if it raised
        """
        try:
            result = self.run_sync(trigger)
        except Exception as e:
            logger.error(f"Scheduled sync raised: {e}", exc_info=True)
            result = None

        with self._lock:
            self._runs += 1
            if result is not None and result.success:
                self._delay = self.interval_seconds
            elif result is not None and result.errors == [SYNC_IN_PROGRESS]:
                pass
            else:
                self._delay = min(self._delay * 2, self.max_backoff_seconds)
                logger.info(f"Sync did not complete; next attempt in {self._delay}s")
        return result
