"""
SyncService - explicit wiring of the sync engine for applications and the CLI.

Owns the database, ledger, local store, remote client, reconciler,
connectivity monitor, health probe and scheduler. Nothing is global: build
one service per process with build_sync_service(config).

Usage:
    from engage.config import load_config
    from engage.sync import build_sync_service

    with build_sync_service(load_config()) as service:
        result = service.manual_sync()
        print(service.get_sync_status())
"""

import logging
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional

import requests

from ..config import EngageConfig
from ..event_bus import EventBus
from ..remote_client import RemoteClient
from ..storage.database import Database
from ..storage.ledger import SyncLedger, SyncLedgerEntry
from ..storage.local_store import LocalStore
from ..storage.models import Table
from .connectivity import ConnectivityMonitor, HealthProbe
from .protocol import ConflictResolution, ResolutionChoice, SyncResult
from .reconciler import Reconciler
from .scheduler import SyncScheduler

logger = logging.getLogger(__name__)

OFFLINE = "offline"


class SyncService:
    """
    Facade over the sync engine.

    Outward operations: manual_sync, get_sync_status, get_conflicts,
    force_pull, force_push, resolve_conflict; start_auto_sync runs the
    scheduler and health probe in the background.
    """

    def __init__(self,
                 db: Database,
                 ledger: SyncLedger,
                 store: LocalStore,
                 client: RemoteClient,
                 reconciler: Reconciler,
                 monitor: ConnectivityMonitor,
                 event_bus: EventBus,
                 interval_seconds: float = 60,
                 max_backoff_seconds: float = 600,
                 probe_interval_seconds: float = 15):
        self.db = db
        self.ledger = ledger
        self.store = store
        self.client = client
        self.reconciler = reconciler
        self.monitor = monitor
        self.event_bus = event_bus

        self.scheduler = SyncScheduler(
            self._scheduled_sync,
            monitor,
            interval_seconds=interval_seconds,
            max_backoff_seconds=max_backoff_seconds,
        )
        self.probe = HealthProbe(monitor, client.health, interval_seconds=probe_interval_seconds)

        self._lock = Lock()
        self._last_offline_result: Optional[SyncResult] = None

    # lifecycle

    def open(self) -> "SyncService":
        self.db.open()
        return self

    def close(self) -> None:
        self.stop_auto_sync()
        self.client.close()
        self.db.close()

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def start_auto_sync(self, probe: bool = True) -> None:
        """Start the background scheduler (and the health probe)."""
        if probe:
            self.probe.start()
        self.scheduler.start()

    def stop_auto_sync(self) -> None:
        self.scheduler.stop()
        self.probe.stop()

    # operations

    def _offline_result(self, trigger: str) -> SyncResult:
        result = SyncResult.aborted(OFFLINE, trigger)
        with self._lock:
            self._last_offline_result = result
        logger.info(f"{trigger} sync skipped: offline")
        return result

    def _track(self, result: SyncResult) -> SyncResult:
        with self._lock:
            self._last_offline_result = None
        return result

    def _scheduled_sync(self, trigger: str) -> SyncResult:
        return self._track(self.reconciler.sync_with_server(trigger=trigger))

    def manual_sync(self, resolutions: Optional[Iterable[ConflictResolution]] = None) -> SyncResult:
        """
        Run a reconciliation now on the caller's thread.

        Returns SyncResult(success=False, errors=["offline"]) when offline and
        errors=["sync in progress"] when another run is active.
        """
        if not self.monitor.is_online:
            return self._offline_result("manual")
        return self._track(self.reconciler.sync_with_server(resolutions=resolutions, trigger="manual"))

    def force_pull(self) -> SyncResult:
        if not self.monitor.is_online:
            return self._offline_result("force_pull")
        return self._track(self.reconciler.force_pull())

    def force_push(self) -> SyncResult:
        if not self.monitor.is_online:
            return self._offline_result("force_push")
        return self._track(self.reconciler.force_push())

    def resolve_conflict(self, table: Any, record_id: str, resolution: Any,
                         merged_data: Optional[Dict[str, Any]] = None) -> SyncResult:
        """
        Resolve one conflicting record.

        Args:
            table: Table or table name
            record_id: Record id
            resolution: 'local', 'remote' or 'merge' (or ResolutionChoice)
            merged_data: Optional explicit merged content for 'merge'
        """
        decision = ConflictResolution(
            table=Table.parse(table),
            record_id=record_id,
            resolution=ResolutionChoice(resolution),
            merged_data=merged_data,
        )
        if not self.monitor.is_online:
            return self._offline_result("resolve")
        return self._track(self.reconciler.resolve_conflict(decision))

    def get_conflicts(self) -> List[SyncLedgerEntry]:
        return self.reconciler.get_conflicts()

    def get_sync_status(self) -> Dict[str, Any]:
        """
        Snapshot of the sync engine.

        Returns:
            Dict with is_online, is_syncing, state, last_sync, pending_count,
            conflict_count and last_result
        """
        with self._lock:
            offline = self._last_offline_result
        last_result = offline.to_dict() if offline else self.reconciler.last_result

        counts = self.ledger.count_by_status() if self.db.is_open else {}
        return {
            "is_online": self.monitor.is_online,
            "is_syncing": self.reconciler.is_syncing,
            "state": self.reconciler.state.value,
            "last_sync": self.reconciler.last_sync,
            "pending_count": counts.get("pending", 0),
            "conflict_count": counts.get("conflict", 0),
            "last_result": last_result,
        }


def build_sync_service(config: EngageConfig,
                       session: Optional[requests.Session] = None,
                       event_bus: Optional[EventBus] = None,
                       initial_online: bool = True) -> SyncService:
    """
    Wire a SyncService from configuration. The database is not opened.

    Args:
        config: Loaded configuration
        session: Optional requests session for the remote client
        event_bus: Optional shared bus (a new one by default)
        initial_online: Starting connectivity state
    """
    event_bus = event_bus or EventBus()
    db = Database(config.db_path)
    ledger = SyncLedger(db)
    store = LocalStore(db, ledger)
    client = RemoteClient(
        config.remote.base_url,
        token=config.remote.token,
        timeout=config.remote.timeout_seconds,
        session=session,
    )
    monitor = ConnectivityMonitor(
        initial_online=initial_online,
        failure_threshold=config.sync.failure_threshold,
        event_bus=event_bus,
    )
    reconciler = Reconciler(
        db,
        store,
        ledger,
        client,
        event_bus=event_bus,
        pull_limit=config.sync.pull_limit,
        max_pull_pages=config.sync.max_pull_pages,
    )
    return SyncService(
        db,
        ledger,
        store,
        client,
        reconciler,
        monitor,
        event_bus,
        interval_seconds=config.sync.interval_seconds,
        max_backoff_seconds=config.sync.max_backoff_seconds,
        probe_interval_seconds=config.sync.probe_interval_seconds,
    )
