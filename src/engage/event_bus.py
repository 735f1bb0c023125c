"""
In-process publish/subscribe for sync notifications.

The sync engine announces run boundaries, detected conflicts and
connectivity transitions on an EventBus. Listeners register per event type,
or with '*' to see every event:

    bus = EventBus()
    bus.subscribe('sync.conflict_detected', show_conflict_banner)
    bus.subscribe('*', audit_log.append)

    bus.publish(SyncStartedEvent(trigger="manual"))

Each SyncService owns its bus and hands it to the reconciler and the
connectivity monitor it builds.
"""

from threading import Lock
from typing import Any, Callable, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)

WILDCARD = '*'

Listener = Callable[[Any], None]


class EventBus:
    """
    Thread-safe registry of listeners keyed by event type.

    Listeners are called synchronously on the publishing thread, type-specific
    ones before wildcard ones, in subscription order.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Listener]] = {}
        self._lock = Lock()

    def subscribe(self, event_type: str, callback: Listener) -> None:
        """Register callback for event_type ('*' for every event)."""
        name = getattr(callback, '__name__', repr(callback))
        with self._lock:
            self._subscribers.setdefault(event_type, []).append(callback)
        logger.debug(f"Listener {name} registered for {event_type}")

    def unsubscribe(self, event_type: str, callback: Listener) -> bool:
        """
        Remove one registration of callback.

        Returns:
            False when the callback was not registered for event_type
        """
        with self._lock:
            listeners = self._subscribers.get(event_type, [])
            if callback not in listeners:
                return False
            listeners.remove(callback)
            if not listeners:
                self._subscribers.pop(event_type)
        logger.debug(f"Listener removed from {event_type}")
        return True

    def _listeners_for(self, event_type: str) -> List[Listener]:
        with self._lock:
            return (list(self._subscribers.get(event_type, ()))
                    + list(self._subscribers.get(WILDCARD, ())))

    def publish(self, event: Any) -> None:
        """
        Deliver event to its listeners.

        Objects without an ``event_type`` attribute are dropped with a warning.
        A listener that raises is logged; the remaining listeners still run.
        """
        event_type = getattr(event, 'event_type', None)
        if event_type is None:
            logger.warning(f"Dropping {type(event).__name__}: no event_type")
            return

        listeners = self._listeners_for(event_type)
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Listener for {event_type} failed: {e}", exc_info=True)

        logger.debug(f"{event_type} delivered to {len(listeners)} listener(s)")

    def clear(self) -> None:
        with self._lock:
            self._subscribers.clear()

    def subscriber_count(self, event_type: Optional[str] = None) -> int:
        """Listeners registered for event_type, or across all types."""
        with self._lock:
            if event_type is not None:
                return len(self._subscribers.get(event_type, ()))
            return sum(map(len, self._subscribers.values()))


__all__ = ['EventBus', 'WILDCARD']
