"""Pytest fixtures for Engage tests.

FakeSyncServer implements the sync server contract in memory (pull pages,
batch push, per-record resources, /health) and is mounted behind a
requests.Session subclass, so the real RemoteClient is exercised end to end.
"""
import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import pytest
import requests

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from engage.event_bus import EventBus
from engage.remote_client import RemoteClient
from engage.storage import Database, LocalStore, SyncLedger, Table
from engage.sync import ENDPOINTS, ConnectivityMonitor, Reconciler, SyncService
from engage.utils import format_timestamp, parse_timestamp

BASE_URL = "http://sync.test"
CURSOR_ORIGIN = datetime(2030, 1, 1, tzinfo=timezone.utc)


def make_response(status: int, data: Any = None, url: str = BASE_URL) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response.url = url
    response.headers["Content-Type"] = "application/json"
    response._content = json.dumps(data).encode("utf-8") if data is not None else b""
    return response


class FakeSyncServer:
    """
    In-memory sync server.

    Records are stored as wire payloads per table. Every write bumps a
    sequence number; pull cursors are timestamps derived from it.

    Knobs:
        online: False makes every request raise requests.ConnectionError
        failures: {(METHOD, path): status} forced HTTP errors
        conflict_ids: record ids the server reports as conflicts on push
        batch_enabled: False answers batch POSTs with 404
        on_request: callback(method, path, body) run before routing
    """

    def __init__(self):
        self.records: Dict[Table, Dict[str, Dict[str, Any]]] = {table: {} for table in Table}
        self.seq: Dict[Tuple[Table, str], int] = {}
        self.clock = 0
        self.requests: List[Tuple[str, str, Any, Any]] = []
        self.online = True
        self.failures: Dict[Tuple[str, str], int] = {}
        self.conflict_ids = set()
        self.batch_enabled = True
        self.on_request: Optional[Callable[[str, str, Any], None]] = None
        self.sync_paths = {endpoint.sync_path: table for table, endpoint in ENDPOINTS.items()}
        self.resource_paths = {endpoint.resource_path: table for table, endpoint in ENDPOINTS.items()}

    # seeding and inspection

    def cursor(self, seq: int) -> str:
        return format_timestamp(CURSOR_ORIGIN + timedelta(seconds=seq))

    def cursor_seq(self, since: Optional[str]) -> int:
        parsed = parse_timestamp(since)
        if parsed is None or parsed < CURSOR_ORIGIN:
            return 0
        return int((parsed - CURSOR_ORIGIN).total_seconds())

    def put_record(self, table: Table, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.clock += 1
        stored = dict(payload)
        self.records[table][str(stored["id"])] = stored
        self.seq[(table, str(stored["id"]))] = self.clock
        return stored

    def delete_record(self, table: Table, record_id: str, deleted_at: str) -> None:
        stored = dict(self.records[table].get(record_id, {"id": record_id}))
        stored["deleted_at"] = deleted_at
        self.put_record(table, stored)

    def get_record(self, table: Table, record_id: str) -> Optional[Dict[str, Any]]:
        return self.records[table].get(record_id)

    def live(self, table: Table, record_id: str) -> bool:
        record = self.get_record(table, record_id)
        return record is not None and not record.get("deleted_at")

    def calls(self, method: Optional[str] = None, path: Optional[str] = None) -> List[Tuple[str, str, Any, Any]]:
        return [c for c in self.requests
                if (method is None or c[0] == method) and (path is None or c[1] == path)]

    # routing

    def handle(self, method: str, url: str, json_body: Any = None, params: Any = None) -> requests.Response:
        if not self.online:
            raise requests.ConnectionError("Connection refused")

        path = urlparse(url).path
        self.requests.append((method, path, json_body, params))
        if self.on_request is not None:
            self.on_request(method, path, json_body)

        forced = self.failures.get((method, path))
        if forced is not None:
            return make_response(forced, {"message": "forced failure"}, url)

        if path == "/health":
            return make_response(200, {"status": "ok"}, url)

        if method == "GET" and path in self.sync_paths:
            return make_response(200, self._pull(self.sync_paths[path], params or {}), url)

        if method == "POST" and path in self.sync_paths and ENDPOINTS[self.sync_paths[path]].batch:
            if not self.batch_enabled:
                return make_response(404, {"message": "not found"}, url)
            return make_response(200, self._batch(self.sync_paths[path], json_body), url)

        base, _, record_id = path.rpartition("/")
        if base in self.resource_paths and record_id:
            return self._resource(method, self.resource_paths[base], record_id, json_body, url)
        if method == "POST" and path in self.resource_paths:
            return self._create(self.resource_paths[path], json_body, url)

        return make_response(404, {"message": "no route"}, url)

    def _pull(self, table: Table, params: Dict[str, Any]) -> Dict[str, Any]:
        since = self.cursor_seq(params.get("since"))
        limit = int(params.get("limit", 100))
        changed = sorted(
            (self.seq[(table, record_id)], record)
            for record_id, record in self.records[table].items()
            if self.seq[(table, record_id)] > since
        )
        page = changed[:limit]
        has_more = len(changed) > limit
        last = page[-1][0] if has_more else max([since] + [s for s, _ in changed])
        return {
            "data": [record for _, record in page],
            "last_sync": self.cursor(last),
            "has_more": has_more,
        }

    def _batch(self, table: Table, body: Dict[str, Any]) -> Dict[str, Any]:
        results = []
        for item in body["records"]:
            record_id = str(item["id"])
            if record_id in self.conflict_ids:
                results.append({"id": record_id, "status": "conflict"})
            elif item["operation"] == "delete":
                if self.live(table, record_id):
                    self.delete_record(table, record_id, item["client_updated_at"])
                    results.append({"id": record_id, "status": "deleted"})
                else:
                    results.append({"id": record_id, "status": "not_found"})
            else:
                existed = self.live(table, record_id)
                self.put_record(table, item["data"])
                results.append({"id": record_id, "status": "updated" if existed else "created"})
        return {"results": results}

    def _create(self, table: Table, body: Dict[str, Any], url: str) -> requests.Response:
        record_id = str(body["id"])
        if record_id in self.conflict_ids:
            return make_response(409, {"message": "conflict"}, url)
        return make_response(201, {"data": self.put_record(table, body)}, url)

    def _resource(self, method: str, table: Table, record_id: str, body: Any, url: str) -> requests.Response:
        if method == "GET":
            if not self.live(table, record_id):
                return make_response(404, {"message": "not found"}, url)
            return make_response(200, {"data": self.get_record(table, record_id)}, url)
        if record_id in self.conflict_ids:
            return make_response(409, {"message": "conflict"}, url)
        if method == "PUT":
            if not self.live(table, record_id):
                return make_response(404, {"message": "not found"}, url)
            return make_response(200, {"data": self.put_record(table, body)}, url)
        if method == "DELETE":
            if not self.live(table, record_id):
                return make_response(404, {"message": "not found"}, url)
            self.delete_record(table, record_id, format_timestamp(datetime.now(timezone.utc)))
            return make_response(204, None, url)
        return make_response(405, {"message": "method not allowed"}, url)


class FakeSession(requests.Session):
    """requests.Session that answers from a FakeSyncServer instead of the network."""

    def __init__(self, server: FakeSyncServer):
        super().__init__()
        self.server = server

    def request(self, method, url, params=None, json=None, timeout=None, **kwargs):
        return self.server.handle(method, url, json_body=json, params=params)


@pytest.fixture
def server():
    return FakeSyncServer()


@pytest.fixture
def session(server):
    return FakeSession(server)


@pytest.fixture
def client(session):
    return RemoteClient(BASE_URL, token="test-token", session=session)


@pytest.fixture
def db():
    database = Database(":memory:")
    database.open()
    yield database
    database.close()


@pytest.fixture
def ledger(db):
    return SyncLedger(db)


@pytest.fixture
def store(db, ledger):
    return LocalStore(db, ledger)


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def reconciler(db, store, ledger, client, event_bus):
    return Reconciler(db, store, ledger, client, event_bus=event_bus, pull_limit=2)


@pytest.fixture
def monitor(event_bus):
    return ConnectivityMonitor(initial_online=True, failure_threshold=2, event_bus=event_bus)


@pytest.fixture
def service(db, ledger, store, client, reconciler, monitor, event_bus):
    svc = SyncService(db, ledger, store, client, reconciler, monitor, event_bus,
                      interval_seconds=1, max_backoff_seconds=8, probe_interval_seconds=1)
    yield svc
    svc.stop_auto_sync()
