"""
Connectivity Monitor for Engage Sync

Tracks whether the sync server is reachable. The state is driven by an
external signal (set_online) and, optionally, by a heartbeat probe against
the server's /health endpoint.

Pattern: Conservative offline detection (several consecutive probe failures),
optimistic recovery (one successful probe brings the monitor back online).

Usage:
    monitor = ConnectivityMonitor(failure_threshold=3)
    monitor.add_listener(lambda online: print("online" if online else "offline"))

    probe = HealthProbe(monitor, client.health, interval_seconds=15)
    probe.start()
    ...
    probe.stop()
"""

from typing import Callable, List, Optional, Dict, Any
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from threading import Event, Lock, Thread
import logging

from ..event_bus import EventBus
from ..events import ConnectivityChangedEvent
from ..utils import utc_now

logger = logging.getLogger(__name__)


@dataclass
class OutageEvent:
    """
    Record of a period without connectivity.

    Attributes:
        started_at: When the monitor went offline
        ended_at: When connectivity was restored (None if still offline)
        reason: What reported the outage (signal or probe)
    """
    started_at: datetime = field(default_factory=utc_now)
    ended_at: Optional[datetime] = None
    reason: str = "signal"

    def duration(self) -> Optional[timedelta]:
        if self.ended_at:
            return self.ended_at - self.started_at
        return None

    def is_active(self) -> bool:
        return self.ended_at is None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        duration = self.duration()
        return {
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "reason": self.reason,
            "duration_seconds": duration.total_seconds() if duration else None,
            "is_active": self.is_active()
        }


class ConnectivityMonitor:
    """
    Online/offline state with transition notifications.

    Thread Safety:
    All public methods are thread-safe. Listeners run outside the lock, on
    the thread that caused the transition.
    """

    def __init__(self,
                 initial_online: bool = True,
                 failure_threshold: int = 3,
                 event_bus: Optional[EventBus] = None):
        """
        Args:
            initial_online: Starting state
            failure_threshold: Consecutive probe failures before going offline
            event_bus: Optional bus for connectivity.changed events
        """
        if failure_threshold < 1:
            raise ValueError(f"failure_threshold must be >= 1, got {failure_threshold}")
        self.failure_threshold = failure_threshold
        self.event_bus = event_bus

        self._online = initial_online
        self._consecutive_failures = 0
        self._listeners: List[Callable[[bool], None]] = []
        self._outages: List[OutageEvent] = [] if initial_online else [OutageEvent(reason="initial")]
        self._lock = Lock()

    @property
    def is_online(self) -> bool:
        with self._lock:
            return self._online

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._consecutive_failures

    def add_listener(self, listener: Callable[[bool], None]) -> None:
        """Register a callback invoked with the new state on every transition."""
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[bool], None]) -> bool:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)
                return True
        return False

    def set_online(self, online: bool, reason: str = "signal") -> bool:
        """
        Set the connectivity state.

        Args:
            online: New state
            reason: What reported it (signal or probe)

        Returns:
            True if the state changed
        """
        with self._lock:
            if online:
                self._consecutive_failures = 0
            if self._online == online:
                return False
            self._online = online
            if online:
                if self._outages and self._outages[-1].is_active():
                    self._outages[-1].ended_at = utc_now()
            else:
                self._outages.append(OutageEvent(reason=reason))
            listeners = list(self._listeners)

        if online:
            logger.info(f"Connectivity restored ({reason})")
        else:
            logger.warning(f"Connectivity lost ({reason})")

        for listener in listeners:
            try:
                listener(online)
            except Exception as e:
                logger.error(f"Connectivity listener failed: {e}", exc_info=True)

        if self.event_bus is not None:
            self.event_bus.publish(ConnectivityChangedEvent(online=online, reason=reason))
        return True

    def record_probe_success(self) -> bool:
        """Returns True if this brought the monitor back online."""
        return self.set_online(True, reason="probe")

    def record_probe_failure(self) -> bool:
        """
        Count a failed probe.

        Returns:
            True if the failure threshold was reached and the monitor went offline
        """
        with self._lock:
            self._consecutive_failures += 1
            count = self._consecutive_failures
            reached = count >= self.failure_threshold and self._online

        logger.debug(f"Health probe failed ({count}/{self.failure_threshold})")
        if reached:
            return self.set_online(False, reason="probe")
        return False

    def get_outages(self) -> List[OutageEvent]:
        with self._lock:
            return list(self._outages)


class HealthProbe:
    """
    Background heartbeat that feeds a ConnectivityMonitor.

    Calls probe() every interval_seconds on a daemon thread. A probe that
    raises counts as a failure.
    """

    def __init__(self,
                 monitor: ConnectivityMonitor,
                 probe: Callable[[], bool],
                 interval_seconds: float = 15.0):
        self.monitor = monitor
        self.probe = probe
        self.interval_seconds = interval_seconds
        self._stop = Event()
        self._thread: Optional[Thread] = None

    def probe_once(self) -> bool:
        """Run one probe and report it to the monitor; returns the probe outcome."""
        try:
            healthy = bool(self.probe())
        except Exception as e:
            logger.debug(f"Health probe raised: {e}")
            healthy = False

        if healthy:
            self.monitor.record_probe_success()
        else:
            self.monitor.record_probe_failure()
        return healthy

    def _loop(self) -> None:
        while not self._stop.is_set():
            self.probe_once()
            self._stop.wait(self.interval_seconds)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = Thread(target=self._loop, name="engage-health-probe", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
