"""
Reconciler - bidirectional synchronization between the local store and the server.

One run: IDLE -> PULLING -> PUSHING -> IDLE.

Pull first: each table is fetched page by page from its persisted cursor
and every remote record is applied with last-write-wins on updated_at.
Equal timestamps with different content become conflicts, never silent
overwrites. A record that fails to apply does not hold the cursor back; its
id goes on the table's retry list and is fetched by id on later runs.

Push second: every pending ledger entry is sent (batched where the server
supports it) and marked from the per-record result the server reports.

Only one run (sync, conflict resolution or forced operation) is active at a
time; a trigger that finds a run in progress returns immediately.

Usage:
    reconciler = Reconciler(db, store, ledger, client, event_bus=bus)
    result = reconciler.sync_with_server()
    print(result.synchronized, result.conflicts, result.errors)
"""

import json
import sqlite3
import logging
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from ..event_bus import EventBus
from ..events import SyncStartedEvent, SyncCompletedEvent, ConflictDetectedEvent
from ..remote_client import ApiResponse, RemoteClient
from ..storage.database import Database, StoreError, StoreNotInitializedError
from ..storage.ledger import LedgerError, SyncLedger, SyncLedgerEntry, SyncStatus, ledger_id
from ..storage.local_store import LocalStore, RecordOrigin
from ..storage.models import DomainRecord, Table, record_type
from ..utils import EPOCH, normalize_timestamp, now_iso, parse_timestamp
from .conflict_resolver import ConflictResolver
from .protocol import (
    BatchOperation,
    BatchStatus,
    ConflictResolution,
    ENDPOINTS,
    PullPage,
    ReconcilerState,
    ResolutionChoice,
    SYNC_ORDER,
    SyncProtocolError,
    SyncResult,
    TableEndpoint,
    TransportError,
    parse_batch_results,
)

logger = logging.getLogger(__name__)

SYNC_IN_PROGRESS = "sync in progress"
STORE_NOT_INITIALIZED = "local store not initialized"

LAST_SYNC_KEY = "last_sync"
LAST_RESULT_KEY = "last_result"
CURSOR_PREFIX = "cursor."
RETRY_PREFIX = "retry."

# Failures that abort only the current record
RECORD_ERRORS = (StoreError, LedgerError, sqlite3.Error, ValueError, TransportError, SyncProtocolError)

ResolutionMap = Dict[Tuple[Table, str], ConflictResolution]


@dataclass
class PushItem:
    """A pending entry prepared for sending."""
    entry: SyncLedgerEntry
    operation: BatchOperation
    record: Optional[DomainRecord] = None

    @property
    def record_id(self) -> str:
        return self.entry.record_id

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"id": self.record_id, "operation": self.operation.value}
        if self.record is not None:
            payload["data"] = self.record.to_wire()
            payload["client_updated_at"] = self.record.updated_at
        else:
            payload["client_updated_at"] = normalize_timestamp(self.entry.deleted_at) or self.entry.local_updated
        return payload


class Reconciler:
    """
    Pull-then-push reconciliation engine.

    Thread-safe: runs are serialized by a non-blocking lock, database access
    by the Database's own lock.
    """

    def __init__(self,
                 db: Database,
                 store: LocalStore,
                 ledger: SyncLedger,
                 client: RemoteClient,
                 event_bus: Optional[EventBus] = None,
                 pull_limit: int = 100,
                 max_pull_pages: int = 50,
                 resolver: Optional[ConflictResolver] = None):
        """
        Args:
            db: Open (or later opened) local database
            store: Local store over db
            ledger: Sync ledger over db
            client: Remote client for the sync server
            event_bus: Optional bus for sync events
            pull_limit: Page size for pulls
            max_pull_pages: Upper bound on pages fetched per table per run
            resolver: Conflict resolver (default: ConflictResolver())
        """
        self.db = db
        self.store = store
        self.ledger = ledger
        self.client = client
        self.event_bus = event_bus
        self.pull_limit = pull_limit
        self.max_pull_pages = max_pull_pages
        self.resolver = resolver or ConflictResolver()

        self._run_lock = Lock()
        self._state_lock = Lock()
        self._state = ReconcilerState.IDLE
        self._last_result: Optional[SyncResult] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ReconcilerState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: ReconcilerState) -> None:
        with self._state_lock:
            self._state = state
        logger.debug(f"Reconciler state: {state.value}")

    @property
    def is_syncing(self) -> bool:
        return self._run_lock.locked()

    @property
    def last_sync(self) -> Optional[str]:
        """Finish time of the last run that was not aborted (persisted)."""
        if not self.db.is_open:
            return None
        return self.db.get_state(LAST_SYNC_KEY)

    @property
    def last_result(self) -> Optional[Dict[str, Any]]:
        """Latest attempted run, from memory or from the previous process."""
        if self._last_result is not None:
            return self._last_result.to_dict()
        if not self.db.is_open:
            return None
        raw = self.db.get_state(LAST_RESULT_KEY)
        return json.loads(raw) if raw else None

    def get_conflicts(self) -> List[SyncLedgerEntry]:
        return self.ledger.list_conflicts()

    def _publish(self, event: Any) -> None:
        if self.event_bus is not None:
            self.event_bus.publish(event)

    # ------------------------------------------------------------------
    # Run orchestration
    # ------------------------------------------------------------------

    def _run(self, trigger: str, body) -> SyncResult:
        """
        Execute body(result) under the single-run lock.

        Never raises; unexpected failures abort the run with success=False.
        """
        if not self._run_lock.acquire(blocking=False):
            logger.info(f"Sync trigger '{trigger}' ignored: {SYNC_IN_PROGRESS}")
            return SyncResult.aborted(SYNC_IN_PROGRESS, trigger)

        try:
            if not self.db.is_open:
                result = SyncResult.aborted(STORE_NOT_INITIALIZED, trigger)
                self._last_result = result
                return result

            result = SyncResult(trigger=trigger)
            self._publish(SyncStartedEvent(trigger=trigger))
            logger.info(f"Sync run started ({trigger})")

            try:
                body(result)
            except StoreNotInitializedError as e:
                result.success = False
                result.add_error(f"{STORE_NOT_INITIALIZED}: {e}")
            except Exception as e:
                logger.error(f"Sync run failed: {e}", exc_info=True)
                result.success = False
                result.errors.append(f"Sync failed: {e}")
            finally:
                self._set_state(ReconcilerState.IDLE)

            result.finish()
            self._last_result = result
            self._persist_result(result)

            logger.info(
                f"Sync run finished ({trigger}): success={result.success} "
                f"synchronized={result.synchronized} conflicts={result.conflicts} "
                f"errors={len(result.errors)}"
            )
            self._publish(SyncCompletedEvent(
                trigger=trigger,
                success=result.success,
                synchronized=result.synchronized,
                conflicts=result.conflicts,
                errors=list(result.errors),
            ))
            return result
        finally:
            self._run_lock.release()

    def _persist_result(self, result: SyncResult) -> None:
        if not self.db.is_open:
            return
        try:
            if result.success:
                self.db.set_state(LAST_SYNC_KEY, now_iso())
            self.db.set_state(LAST_RESULT_KEY, json.dumps(result.to_dict()))
        except sqlite3.Error as e:
            logger.warning(f"Could not persist sync result: {e}")

    def sync_with_server(self,
                         resolutions: Optional[Iterable[ConflictResolution]] = None,
                         trigger: str = "manual") -> SyncResult:
        """
        Run one full reconciliation: pull every table, then push pending entries.

        Args:
            resolutions: Decisions for records that tie on updated_at with
                         different content during this pull
            trigger: Label for events and logs (manual, scheduled, reconnect)

        Returns:
            SyncResult; success=False only when the run aborted
        """
        resolution_map: ResolutionMap = {r.key: r for r in (resolutions or [])}

        def body(result: SyncResult) -> None:
            self._set_state(ReconcilerState.PULLING)
            self._pull(result, resolution_map)
            self._set_state(ReconcilerState.PUSHING)
            self._push(result)

        return self._run(trigger, body)

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    def _cursor(self, table: Table) -> str:
        return self.db.get_state(f"{CURSOR_PREFIX}{table.value}", EPOCH)

    def _load_retry(self, table: Table) -> Set[str]:
        """Ids of remote records that failed to apply on an earlier run."""
        raw = self.db.get_state(f"{RETRY_PREFIX}{table.value}")
        if not raw:
            return set()
        try:
            ids = json.loads(raw)
        except ValueError:
            logger.warning(f"Discarding unreadable retry list for {table.value}")
            return set()
        return {str(record_id) for record_id in ids} if isinstance(ids, list) else set()

    def _save_retry(self, table: Table, ids: Set[str]) -> None:
        key = f"{RETRY_PREFIX}{table.value}"
        if ids:
            self.db.set_state(key, json.dumps(sorted(ids)))
        elif self.db.get_state(key) is not None:
            self.db.set_state(key, None)

    def _pull(self, result: SyncResult, resolutions: ResolutionMap) -> None:
        for table in SYNC_ORDER:
            self._pull_table(table, result, resolutions)

    def _pull_table(self, table: Table, result: SyncResult, resolutions: ResolutionMap,
                    force: bool = False, before_first_page: Optional[Callable[[], Any]] = None) -> bool:
        """
        Pull one table from its cursor, then retry earlier failures by id.

        The cursor always moves past a fetched page. Records that fail to
        apply are kept in the table's retry list and fetched individually
        from their resource endpoint on later runs.

        Args:
            before_first_page: Called once the first page has been fetched,
                before any record is applied

        Returns:
            False if no page could be fetched
        """
        endpoint = ENDPOINTS[table]
        cursor = self._cursor(table)
        retry = self._load_retry(table)
        failed: Set[str] = set()
        fetched = False

        for _ in range(self.max_pull_pages):
            response = self.client.get(endpoint.sync_path, params={"since": cursor, "limit": self.pull_limit})
            error = None if response.success else str(response.error)
            if error is None:
                try:
                    page = PullPage.parse(response.data)
                except SyncProtocolError as e:
                    error = str(e)
            if error is not None:
                result.add_error(f"Failed to pull {table.value} data: {error}")
                self._save_retry(table, retry | failed)
                return fetched

            if not fetched and before_first_page is not None:
                before_first_page()
            fetched = True

            for payload in page.records:
                record_id = payload.get("id")
                if record_id:
                    retry.discard(str(record_id))
                if not self._apply_logged(table, payload, result, resolutions, force) and record_id:
                    failed.add(str(record_id))

            if page.last_sync and page.last_sync != cursor:
                self.db.set_state(f"{CURSOR_PREFIX}{table.value}", page.last_sync)
            if not page.has_more or not page.last_sync or page.last_sync == cursor:
                break
            cursor = page.last_sync
        else:
            logger.warning(f"Stopped pulling {table.value} after {self.max_pull_pages} pages")

        for record_id in sorted(retry):
            if not self._retry_record(table, record_id, result, resolutions, force):
                failed.add(record_id)
        self._save_retry(table, failed)
        return True

    def _apply_logged(self, table: Table, payload: Mapping[str, Any], result: SyncResult,
                      resolutions: ResolutionMap, force: bool = False) -> bool:
        """Apply one remote record; a failure is reported in result. Returns success."""
        try:
            self._apply_remote(table, payload, result, resolutions, force)
        except StoreNotInitializedError:
            raise
        except RECORD_ERRORS as e:
            result.add_error(f"Failed to process {table.value} record {payload.get('id')}: {e}")
            return False
        return True

    def _retry_record(self, table: Table, record_id: str, result: SyncResult,
                      resolutions: ResolutionMap, force: bool = False) -> bool:
        try:
            payload = self._fetch_remote_payload(table, record_id)
        except (TransportError, SyncProtocolError) as e:
            result.add_error(f"Failed to process {table.value} record {record_id}: {e}")
            return False
        if payload is None:
            logger.info(f"{table.value}/{record_id} is gone from the server; no longer retried")
            return True
        return self._apply_logged(table, payload, result, resolutions, force)

    def _apply_remote(self, table: Table, payload: Mapping[str, Any], result: SyncResult,
                      resolutions: ResolutionMap, force: bool = False) -> None:
        """
        Apply one remote record (or tombstone) to the local store.

        Reading the local side, comparing and writing happen in one
        transaction, so a local edit cannot land between the comparison and
        the overwrite.
        """
        record_id = payload.get("id")
        if not record_id:
            raise ValueError("remote record has no id")
        record_id = str(record_id)

        with self.db.transaction():
            conflicted = self._merge_remote(table, record_id, payload, result, resolutions, force)

        if conflicted:
            self._publish(ConflictDetectedEvent(table=table.value, record_id=record_id, source="pull"))

    def _merge_remote(self, table: Table, record_id: str, payload: Mapping[str, Any],
                      result: SyncResult, resolutions: ResolutionMap, force: bool) -> bool:
        """Last-write-wins for one record. Returns True when a new conflict was flagged."""
        entry = self.ledger.get_entry(table, record_id)
        local = self.store.find_by_id(table, record_id)

        remote_deleted = payload.get("deleted_at") or payload.get("deletedAt")
        if remote_deleted:
            self._apply_remote_tombstone(table, record_id, normalize_timestamp(remote_deleted),
                                         entry, local, result)
            return False

        remote = record_type(table).from_wire(payload)
        remote_ts = remote.updated_at_dt
        if remote_ts is None:
            raise ValueError("remote record has no updated_at")

        if local is None:
            if not force and entry is not None and entry.is_tombstone:
                deleted_ts = parse_timestamp(entry.deleted_at)
                if deleted_ts is not None and deleted_ts >= remote_ts:
                    logger.debug(f"Skipping {table.value}/{record_id}: deleted locally after remote update")
                    return False
            self.store.save(remote, RecordOrigin.REMOTE)
            result.synchronized += 1
            return False

        local_ts = local.updated_at_dt
        if local_ts is not None and local_ts > remote_ts:
            return False

        if local_ts is None or remote_ts > local_ts:
            self.store.save(remote, RecordOrigin.REMOTE)
            result.synchronized += 1
            return False

        if local.content_hash() == remote.content_hash():
            if entry is None or entry.status != SyncStatus.SYNCED:
                self.ledger.mark_synced(table, record_id, remote)
            return False

        resolution = resolutions.get((table, record_id))
        if resolution is not None:
            self._apply_resolution(resolution, local, remote)
            result.synchronized += 1
            return False

        if self.ledger.mark_conflict(table, record_id):
            result.conflicts += 1
            return True
        return False

    def _apply_remote_tombstone(self, table: Table, record_id: str, deleted_at: Optional[str],
                                entry: Optional[SyncLedgerEntry], local: Optional[DomainRecord],
                                result: SyncResult) -> None:
        if local is not None:
            deleted_ts = parse_timestamp(deleted_at)
            local_ts = local.updated_at_dt
            pending = entry is not None and entry.status == SyncStatus.PENDING
            if pending and deleted_ts is not None and local_ts is not None and local_ts > deleted_ts:
                logger.debug(f"Keeping {table.value}/{record_id}: edited locally after remote deletion")
                return
            self.store.delete(table, record_id, RecordOrigin.REMOTE, deleted_at=deleted_at)
            result.synchronized += 1
            return

        if entry is not None and entry.is_tombstone and entry.status == SyncStatus.SYNCED:
            return
        self.ledger.mark_synced(table, record_id, tombstone=True, deleted_at=deleted_at)
        result.synchronized += 1

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def _prepare(self, entry: SyncLedgerEntry) -> PushItem:
        record = None if entry.is_tombstone else self.store.find_by_id(entry.table, entry.record_id)
        if record is None:
            return PushItem(entry, BatchOperation.DELETE)
        operation = BatchOperation.CREATE if entry.never_synced else BatchOperation.UPDATE
        return PushItem(entry, operation, record)

    def _push(self, result: SyncResult) -> None:
        pending = self.ledger.list_pending()
        if not pending:
            return

        by_table: Dict[Table, List[PushItem]] = {}
        for entry in pending:
            try:
                by_table.setdefault(entry.table, []).append(self._prepare(entry))
            except StoreNotInitializedError:
                raise
            except RECORD_ERRORS as e:
                result.add_error(f"Failed to prepare {entry.table.value} record {entry.record_id}: {e}")

        for table in SYNC_ORDER:
            items = by_table.get(table)
            if not items:
                continue
            endpoint = ENDPOINTS[table]
            logger.debug(f"Pushing {len(items)} {table.value} records")
            try:
                if endpoint.batch:
                    self._push_batch(endpoint, items, result)
                else:
                    self._push_individually(endpoint, items, result)
            except TransportError as e:
                result.add_error(f"Failed to push {table.value} data: {e}")
            except SyncProtocolError as e:
                result.add_error(f"Failed to push {table.value} data: {e}")

    def _push_batch(self, endpoint: TableEndpoint, items: List[PushItem], result: SyncResult) -> None:
        response = self.client.post(endpoint.sync_path, {"records": [item.to_payload() for item in items]})
        if not response.success:
            if response.error.code in (404, 405):
                logger.info(f"Batch endpoint {endpoint.sync_path} unavailable; pushing records individually")
                self._push_individually(endpoint, items, result)
                return
            raise TransportError(str(response.error), response.error)

        statuses = parse_batch_results(response.data)
        for item in items:
            raw = statuses.get(item.record_id)
            if raw is None:
                result.add_error(f"No push result for {endpoint.table.value} record {item.record_id}")
                continue
            status = BatchStatus.parse(raw)
            if status is None:
                result.add_error(f"Unknown push status '{raw}' for {endpoint.table.value} record {item.record_id}")
                continue
            self._record_push_outcome(item, status, result)

    def _push_individually(self, endpoint: TableEndpoint, items: List[PushItem], result: SyncResult) -> None:
        """
        Push records one call at a time.

        A network-level failure stops the table (TransportError); HTTP errors
        only affect their own record.
        """
        for item in items:
            try:
                if item.operation == BatchOperation.DELETE:
                    status = self._delete_remote(endpoint, item.record_id)
                else:
                    status = self._upsert_remote(endpoint, item.record, item.operation)
            except TransportError as e:
                if e.code == 0:
                    raise
                result.add_error(f"Failed to push {endpoint.table.value} record {item.record_id}: {e}")
                continue
            self._record_push_outcome(item, status, result)

    def _record_push_outcome(self, item: PushItem, status: BatchStatus, result: SyncResult) -> None:
        table = item.entry.table
        expected = item.entry.local_updated
        try:
            if status.applied or (status == BatchStatus.NOT_FOUND and item.operation == BatchOperation.DELETE):
                if item.operation == BatchOperation.DELETE:
                    written = self.ledger.mark_synced(table, item.record_id, tombstone=True,
                                                      expected_local_updated=expected)
                else:
                    written = self.ledger.mark_synced(table, item.record_id, item.record,
                                                      expected_local_updated=expected)
                if written:
                    result.synchronized += 1
            elif status == BatchStatus.CONFLICT:
                if self.ledger.mark_conflict(table, item.record_id):
                    result.conflicts += 1
                    self._publish(ConflictDetectedEvent(table=table.value, record_id=item.record_id, source="push"))
            else:
                result.add_error(f"Server reported {status.value} for {table.value} record {item.record_id}")
        except LedgerError as e:
            result.add_error(f"Failed to record push of {table.value} record {item.record_id}: {e}")

    # ------------------------------------------------------------------
    # Per-record remote calls
    # ------------------------------------------------------------------

    @staticmethod
    def _raise_for(response: ApiResponse, action: str) -> None:
        if not response.success:
            raise TransportError(f"{action}: {response.error}", response.error)

    def _upsert_remote(self, endpoint: TableEndpoint, record: DomainRecord,
                       operation: BatchOperation = BatchOperation.UPDATE) -> BatchStatus:
        """
        PUT the record; POST it when the server does not know it yet.

        Returns:
            CREATED, UPDATED or CONFLICT

        Raises:
            TransportError: On any other failure
        """
        body = record.to_wire()
        response = self.client.put(endpoint.record_path(record.id), body)
        if response.success:
            return BatchStatus.CREATED if operation == BatchOperation.CREATE else BatchStatus.UPDATED
        if response.error.code == 409:
            return BatchStatus.CONFLICT
        if response.error.code != 404:
            self._raise_for(response, f"PUT {endpoint.record_path(record.id)}")

        response = self.client.post(endpoint.resource_path, body)
        if response.success:
            return BatchStatus.CREATED
        if response.error.code == 409:
            return BatchStatus.CONFLICT
        self._raise_for(response, f"POST {endpoint.resource_path}")
        return BatchStatus.CREATED

    def _delete_remote(self, endpoint: TableEndpoint, record_id: str) -> BatchStatus:
        response = self.client.delete(endpoint.record_path(record_id))
        if response.success:
            return BatchStatus.DELETED
        if response.error.code == 404:
            return BatchStatus.NOT_FOUND
        if response.error.code == 409:
            return BatchStatus.CONFLICT
        self._raise_for(response, f"DELETE {endpoint.record_path(record_id)}")
        return BatchStatus.DELETED

    def _fetch_remote_payload(self, table: Table, record_id: str) -> Optional[Mapping[str, Any]]:
        """GET one record from its resource endpoint; None if the server has none."""
        endpoint = ENDPOINTS[table]
        response = self.client.get(endpoint.record_path(record_id))
        if not response.success:
            if response.error.code == 404:
                return None
            self._raise_for(response, f"GET {endpoint.record_path(record_id)}")
        data = response.data
        if isinstance(data, Mapping) and isinstance(data.get("data"), Mapping):
            data = data["data"]
        if not isinstance(data, Mapping):
            raise SyncProtocolError(f"Unexpected response for {table.value}/{record_id}")
        return data

    # ------------------------------------------------------------------
    # Conflict resolution and forced operations
    # ------------------------------------------------------------------

    def _apply_resolution(self, resolution: ConflictResolution,
                          local: Optional[DomainRecord],
                          remote: Optional[DomainRecord]) -> Optional[DomainRecord]:
        """
        Apply a resolution; the ledger entry ends synced.

        The server is written before the local store so a failed upload
        leaves the conflict in place. Choosing the remote side of a record
        the server has deleted deletes it locally.

        Returns:
            The record now stored locally, or None if it was deleted
        """
        table, record_id = resolution.table, resolution.record_id
        if remote is None and resolution.resolution != ResolutionChoice.LOCAL:
            payload = self._fetch_remote_payload(table, record_id)
            deleted_at = None
            if payload is not None:
                deleted_at = payload.get("deleted_at") or payload.get("deletedAt")
            if payload is not None and not deleted_at:
                remote = record_type(table).from_wire(payload)
            elif resolution.resolution == ResolutionChoice.REMOTE:
                self._delete_as_remote(table, record_id, normalize_timestamp(deleted_at) if deleted_at else None)
                logger.info(f"Resolved {table.value}/{record_id} using remote: deleted on the server")
                return None

        resolved = self.resolver.resolve(resolution, local, remote)
        record = resolved.record

        if resolved.push_remote:
            status = self._upsert_remote(ENDPOINTS[table], record)
            if status == BatchStatus.CONFLICT:
                raise TransportError(f"Server rejected resolution of {table.value}/{record_id} as a conflict")

        self.store.save(record, RecordOrigin.REMOTE)

        logger.info(f"Resolved {table.value}/{record_id} using {resolution.resolution.value}")
        return record

    def _delete_as_remote(self, table: Table, record_id: str, deleted_at: Optional[str]) -> None:
        """Drop the local copy and leave a synced tombstone."""
        with self.db.transaction():
            if not self.store.delete(table, record_id, RecordOrigin.REMOTE, deleted_at=deleted_at):
                self.ledger.mark_synced(table, record_id, tombstone=True, deleted_at=deleted_at)

    def resolve_conflict(self, resolution: ConflictResolution) -> SyncResult:
        """
        Resolve one conflict immediately.

        Args:
            resolution: Which side to keep for the record

        Returns:
            SyncResult with synchronized=1 on success, or the error
        """
        def body(result: SyncResult) -> None:
            self._set_state(ReconcilerState.RESOLVING)
            try:
                local = self.store.find_by_id(resolution.table, resolution.record_id)
                self._apply_resolution(resolution, local, None)
                result.synchronized += 1
            except StoreNotInitializedError:
                raise
            except RECORD_ERRORS as e:
                result.add_error(
                    f"Failed to resolve {resolution.table.value} record {resolution.record_id}: {e}"
                )

        return self._run("resolve", body)

    def force_pull(self) -> SyncResult:
        """
        Replace local data with the server's.

        Each table is pulled again from epoch, ignoring local tombstones. A
        table is cleared only once its first page has arrived, so a table
        the server cannot deliver keeps its local data. Cleared ledger
        entries become synced without being tombstones: nothing is pushed as
        a deletion and later pulls can still restore what a failed page left
        out.
        """
        def body(result: SyncResult) -> None:
            self._set_state(ReconcilerState.PULLING)
            for table in SYNC_ORDER:
                self.db.set_state(f"{CURSOR_PREFIX}{table.value}", None)
                self.db.set_state(f"{RETRY_PREFIX}{table.value}", None)
                fetched = self._pull_table(table, result, {}, force=True,
                                           before_first_page=lambda t=table: self.store.clear_table(t))
                if not fetched:
                    logger.warning(f"Force pull left local {table.value} data untouched")

        return self._run("force_pull", body)

    def force_push(self) -> SyncResult:
        """
        Upload every local record record-by-record, overriding conflicts.

        Pending local deletions are sent as DELETE calls. Each record that the
        server accepts is marked synced.
        """
        def body(result: SyncResult) -> None:
            self._set_state(ReconcilerState.PUSHING)
            for table in SYNC_ORDER:
                endpoint = ENDPOINTS[table]
                items = [PushItem(self._entry_or_stub(table, r.id), BatchOperation.UPDATE, r)
                         for r in self.store.find_all(table)]
                items.extend(
                    PushItem(entry, BatchOperation.DELETE)
                    for entry in self.ledger.list_pending(table) if entry.is_tombstone
                )
                try:
                    self._push_individually(endpoint, items, result)
                except TransportError as e:
                    result.add_error(f"Failed to push {table.value} data: {e}")

        return self._run("force_push", body)

    def _entry_or_stub(self, table: Table, record_id: str) -> SyncLedgerEntry:
        entry = self.ledger.get_entry(table, record_id)
        if entry is not None:
            return entry
        return SyncLedgerEntry(
            id=ledger_id(table, record_id),
            table=table,
            record_id=record_id,
            local_updated=now_iso(),
            status=SyncStatus.PENDING,
        )
