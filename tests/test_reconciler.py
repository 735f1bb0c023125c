"""Tests for the Reconciler pull, push, resolution and forced operations.

Runs against FakeSyncServer through the real RemoteClient.
"""
import json
import threading
from unittest.mock import MagicMock

import pytest

from engage.remote_client import ApiResponse, RemoteClient
from engage.storage import (
    Database,
    Device,
    LocalStore,
    Note,
    Person,
    RecordOrigin,
    SyncLedger,
    SyncStatus,
    Table,
)
from engage.sync import ConflictResolution, Reconciler, ReconcilerState
from engage.sync.reconciler import CURSOR_PREFIX, RETRY_PREFIX, STORE_NOT_INITIALIZED

OLD = "2025-01-01T00:00:00.000Z"
NEWER = "2025-06-01T00:00:00.000Z"
FUTURE = "2099-01-01T00:00:00.000Z"


def seed_remote(server, record):
    return server.put_record(record.TABLE, record.to_wire())


def seed_synced(store, server, record):
    """Record present on both sides and synced."""
    store.save(record, RecordOrigin.REMOTE)
    seed_remote(server, record)


def make_tie(store, server):
    """p1 with equal updated_at and different content on each side."""
    store.save(Person(id="p1", first_name="Local", updated_at=OLD), RecordOrigin.REMOTE)
    seed_remote(server, Person(id="p1", first_name="Remote", updated_at=OLD))


class TestPull:

    def test_pulls_new_records_page_by_page(self, reconciler, server, store, ledger, db):
        for i in range(3):
            seed_remote(server, Person(id=f"p{i}", first_name=f"P{i}", updated_at=OLD))

        result = reconciler.sync_with_server()

        assert result.success
        assert result.synchronized == 3
        assert result.errors == []
        assert store.count(Table.PEOPLE) == 3
        assert ledger.count_by_status()["synced"] == 3
        assert len(server.calls("GET", "/sync/people")) == 2
        assert db.get_state(f"{CURSOR_PREFIX}people") == server.cursor(3)

    def test_next_run_starts_from_cursor(self, reconciler, server):
        seed_remote(server, Person(id="p1", updated_at=OLD))
        reconciler.sync_with_server()

        second = reconciler.sync_with_server()

        assert second.synchronized == 0
        last_pull = server.calls("GET", "/sync/people")[-1]
        assert last_pull[3]["since"] == server.cursor(1)

    def test_remote_newer_overwrites_local(self, reconciler, server, store):
        store.save(Person(id="p1", first_name="Old", updated_at=OLD), RecordOrigin.REMOTE)
        seed_remote(server, Person(id="p1", first_name="New", updated_at=NEWER))

        result = reconciler.sync_with_server()

        assert result.synchronized == 1
        assert store.find_by_id(Table.PEOPLE, "p1").first_name == "New"

    def test_local_newer_is_kept_and_pushed(self, reconciler, server, store, ledger):
        store.insert(Person(id="p1", first_name="Local"))
        seed_remote(server, Person(id="p1", first_name="Server", updated_at=OLD))

        result = reconciler.sync_with_server()

        assert store.find_by_id(Table.PEOPLE, "p1").first_name == "Local"
        assert server.get_record(Table.PEOPLE, "p1")["firstName"] == "Local"
        assert ledger.get_entry(Table.PEOPLE, "p1").status == SyncStatus.SYNCED
        assert result.synchronized == 1

    def test_identical_copy_acknowledges_pending_entry(self, reconciler, server, store, ledger):
        record = Person(id="p1", first_name="Same", updated_at=OLD)
        store.save(record, RecordOrigin.REMOTE)
        ledger.mark_pending(Table.PEOPLE, "p1", record)
        seed_remote(server, record)

        result = reconciler.sync_with_server()

        assert result.synchronized == 0
        assert ledger.get_entry(Table.PEOPLE, "p1").status == SyncStatus.SYNCED
        assert server.calls("POST", "/sync/people") == []

    def test_tie_with_different_content_is_conflict(self, reconciler, server, store, ledger, event_bus):
        detected = []
        event_bus.subscribe("sync.conflict_detected", detected.append)
        make_tie(store, server)

        result = reconciler.sync_with_server()

        assert result.conflicts == 1
        assert ledger.get_entry(Table.PEOPLE, "p1").status == SyncStatus.CONFLICT
        assert store.find_by_id(Table.PEOPLE, "p1").first_name == "Local"
        assert [(e.table, e.record_id, e.source) for e in detected] == [("people", "p1", "pull")]

    def test_conflict_counted_only_once(self, reconciler, server, store):
        make_tie(store, server)
        reconciler.sync_with_server()
        seed_remote(server, Person(id="p1", first_name="Remote", updated_at=OLD))

        assert reconciler.sync_with_server().conflicts == 0

    def test_resolution_applied_during_pull(self, reconciler, server, store, ledger):
        make_tie(store, server)

        result = reconciler.sync_with_server(resolutions=[ConflictResolution(Table.PEOPLE, "p1", "remote")])

        assert result.conflicts == 0
        assert result.synchronized == 1
        assert store.find_by_id(Table.PEOPLE, "p1").first_name == "Remote"
        assert ledger.get_entry(Table.PEOPLE, "p1").status == SyncStatus.SYNCED

    def test_remote_tombstone_deletes_local(self, reconciler, server, store, ledger):
        seed_synced(store, server, Note(id="n1", updated_at=OLD))
        server.delete_record(Table.NOTES, "n1", NEWER)

        result = reconciler.sync_with_server()

        assert result.synchronized == 1
        assert store.find_by_id(Table.NOTES, "n1") is None
        entry = ledger.get_entry(Table.NOTES, "n1")
        assert entry.is_tombstone and entry.status == SyncStatus.SYNCED

    def test_remote_tombstone_keeps_newer_local_edit(self, reconciler, server, store):
        store.insert(Note(id="n1", title="edited offline"))
        server.delete_record(Table.NOTES, "n1", OLD)

        reconciler.sync_with_server()

        assert store.find_by_id(Table.NOTES, "n1").title == "edited offline"
        assert server.live(Table.NOTES, "n1")

    def test_local_tombstone_blocks_older_remote_copy(self, reconciler, server, store):
        store.insert(Note(id="n1"))
        store.delete(Table.NOTES, "n1")
        seed_remote(server, Note(id="n1", updated_at=OLD))

        reconciler.sync_with_server()

        assert store.find_by_id(Table.NOTES, "n1") is None
        assert not server.live(Table.NOTES, "n1")

    def test_newer_remote_copy_beats_local_tombstone(self, reconciler, server, store):
        store.insert(Note(id="n1"))
        store.delete(Table.NOTES, "n1")
        seed_remote(server, Note(id="n1", title="revived", updated_at=FUTURE))

        reconciler.sync_with_server()

        assert store.find_by_id(Table.NOTES, "n1").title == "revived"

    def test_failed_table_does_not_stop_others(self, reconciler, server, store, db):
        server.failures[("GET", "/sync/people")] = 500
        seed_remote(server, Note(id="n1", updated_at=OLD))

        result = reconciler.sync_with_server()

        assert result.success
        assert any("Failed to pull people data" in e for e in result.errors)
        assert store.find_by_id(Table.NOTES, "n1") is not None
        assert db.get_state(f"{CURSOR_PREFIX}people") is None

    def test_bad_record_does_not_block_later_pages(self, reconciler, server, store, db):
        server.put_record(Table.NOTES, {"id": "bad"})
        for i in range(2, 6):
            seed_remote(server, Note(id=f"n{i}", updated_at=OLD))

        result = reconciler.sync_with_server()

        assert any("notes record bad" in e for e in result.errors)
        assert [store.find_by_id(Table.NOTES, f"n{i}") is not None for i in range(2, 6)] == [True] * 4
        assert db.get_state(f"{CURSOR_PREFIX}notes") == server.cursor(5)
        assert json.loads(db.get_state(f"{RETRY_PREFIX}notes")) == ["bad"]

    def test_failed_record_is_fetched_again_by_id(self, reconciler, server, store, db):
        server.put_record(Table.NOTES, {"id": "bad"})
        reconciler.sync_with_server()
        server.records[Table.NOTES]["bad"]["updated_at"] = OLD

        result = reconciler.sync_with_server()

        assert result.errors == []
        assert result.synchronized == 1
        assert store.find_by_id(Table.NOTES, "bad") is not None
        assert len(server.calls("GET", "/notes/bad")) == 1
        assert db.get_state(f"{RETRY_PREFIX}notes") is None

    def test_record_still_failing_stays_in_retry_list(self, reconciler, server, db):
        server.put_record(Table.NOTES, {"id": "bad"})
        reconciler.sync_with_server()

        result = reconciler.sync_with_server()

        assert any("notes record bad" in e for e in result.errors)
        assert json.loads(db.get_state(f"{RETRY_PREFIX}notes")) == ["bad"]

    def test_local_edit_during_pull_is_not_overwritten(self, reconciler, server, store, ledger, monkeypatch):
        store.save(Note(id="n1", title="synced", updated_at=OLD), RecordOrigin.REMOTE)
        seed_remote(server, Note(id="n1", title="remote", updated_at=NEWER))
        find_by_id = store.find_by_id
        editors = []

        def edit_while_reconciling(table, record_id):
            found = find_by_id(table, record_id)
            if record_id == "n1" and not editors:
                editor = threading.Thread(target=store.update, args=(Table.NOTES, "n1", {"title": "user edit"}))
                editors.append(editor)
                editor.start()
                editor.join(timeout=0.5)
            return found

        monkeypatch.setattr(store, "find_by_id", edit_while_reconciling)
        reconciler.sync_with_server()
        editors[0].join(5)
        reconciler.sync_with_server()

        assert store.find_by_id(Table.NOTES, "n1").title == "user edit"
        assert server.get_record(Table.NOTES, "n1")["title"] == "user edit"
        assert ledger.get_entry(Table.NOTES, "n1").status == SyncStatus.SYNCED


class TestPush:

    def test_new_record_pushed_as_create(self, reconciler, server, store, ledger):
        note = store.insert(Note(id="n1", title="1:1"))

        result = reconciler.sync_with_server()

        assert result.synchronized == 1
        payload = server.calls("POST", "/sync/notes")[0][2]["records"][0]
        assert payload["operation"] == "create"
        assert payload["client_updated_at"] == note.updated_at
        assert payload["data"]["title"] == "1:1"
        entry = ledger.get_entry(Table.NOTES, "n1")
        assert entry.status == SyncStatus.SYNCED and entry.last_synced is not None

    def test_edit_of_synced_record_pushed_as_update(self, reconciler, server, store):
        seed_synced(store, server, Note(id="n1", title="v1", updated_at=OLD))
        store.update(Table.NOTES, "n1", {"title": "v2"})

        reconciler.sync_with_server()

        payload = server.calls("POST", "/sync/notes")[0][2]["records"][0]
        assert payload["operation"] == "update"
        assert server.get_record(Table.NOTES, "n1")["title"] == "v2"

    def test_local_delete_pushed(self, reconciler, server, store, ledger):
        seed_synced(store, server, Note(id="n1", updated_at=OLD))
        store.delete(Table.NOTES, "n1")

        result = reconciler.sync_with_server()

        assert result.synchronized == 1
        payload = server.calls("POST", "/sync/notes")[0][2]["records"][0]
        assert payload["operation"] == "delete"
        assert "data" not in payload
        assert not server.live(Table.NOTES, "n1")
        entry = ledger.get_entry(Table.NOTES, "n1")
        assert entry.status == SyncStatus.SYNCED and entry.is_tombstone

    def test_falls_back_to_individual_calls(self, reconciler, server, store, ledger):
        server.batch_enabled = False
        store.insert(Note(id="n1"))

        reconciler.sync_with_server()

        assert [c[0] for c in server.calls(path="/notes/n1")] == ["PUT"]
        assert len(server.calls("POST", "/notes")) == 1
        assert ledger.get_entry(Table.NOTES, "n1").status == SyncStatus.SYNCED

    def test_devices_are_pushed_individually(self, reconciler, server, store, ledger):
        store.insert(Device(id="d1", device_name="laptop"))

        reconciler.sync_with_server()

        assert server.live(Table.DEVICES, "d1")
        assert len(server.calls("POST", "/devices")) == 1
        assert ledger.get_entry(Table.DEVICES, "d1").status == SyncStatus.SYNCED

    def test_server_conflict_status(self, reconciler, server, store, ledger, event_bus):
        detected = []
        event_bus.subscribe("sync.conflict_detected", detected.append)
        server.conflict_ids.add("n1")
        store.insert(Note(id="n1"))

        result = reconciler.sync_with_server()

        assert result.conflicts == 1
        assert ledger.get_entry(Table.NOTES, "n1").status == SyncStatus.CONFLICT
        assert detected[0].source == "push"

    def test_unknown_status_leaves_record_pending(self, db, store, ledger):
        client = MagicMock(spec=RemoteClient)
        client.get.return_value = ApiResponse.ok({"data": [], "last_sync": None, "has_more": False})
        client.post.return_value = ApiResponse.ok({"results": [{"id": "n1", "status": "weird"}]})
        store.insert(Note(id="n1"))

        result = Reconciler(db, store, ledger, client).sync_with_server()

        assert any("Unknown push status 'weird'" in e for e in result.errors)
        assert ledger.get_entry(Table.NOTES, "n1").status == SyncStatus.PENDING

    def test_missing_result_leaves_record_pending(self, db, store, ledger):
        client = MagicMock(spec=RemoteClient)
        client.get.return_value = ApiResponse.ok([])
        client.post.return_value = ApiResponse.ok({"results": []})
        store.insert(Note(id="n1"))

        result = Reconciler(db, store, ledger, client).sync_with_server()

        assert any("No push result" in e for e in result.errors)
        assert ledger.get_entry(Table.NOTES, "n1").status == SyncStatus.PENDING

    def test_network_failure_keeps_pending(self, reconciler, server, store, ledger):
        store.insert(Note(id="n1"))
        server.online = False

        result = reconciler.sync_with_server()

        assert result.success
        assert any("Failed to push notes data" in e for e in result.errors)
        assert ledger.get_entry(Table.NOTES, "n1").status == SyncStatus.PENDING


class TestRunLifecycle:

    def test_closed_store_aborts(self, client):
        db = Database(":memory:")
        ledger = SyncLedger(db)
        reconciler = Reconciler(db, LocalStore(db, ledger), ledger, client)

        result = reconciler.sync_with_server()

        assert not result.success
        assert result.errors == [STORE_NOT_INITIALIZED]

    def test_publishes_run_events(self, reconciler, event_bus):
        seen = []
        event_bus.subscribe("*", lambda event: seen.append(event.event_type))

        reconciler.sync_with_server(trigger="scheduled")

        assert seen == ["sync.started", "sync.completed"]

    def test_last_sync_and_result_persist(self, reconciler, db, store, ledger, client):
        assert reconciler.last_sync is None
        reconciler.sync_with_server()

        fresh = Reconciler(db, store, ledger, client)
        assert fresh.last_sync is not None
        assert fresh.last_result["trigger"] == "manual"
        assert fresh.last_result["success"] is True

    def test_state_follows_phases(self, reconciler, server, store):
        states = {}
        server.on_request = lambda method, path, body: states.setdefault(method, reconciler.state)
        store.insert(Note(id="n1"))

        reconciler.sync_with_server()

        assert states == {"GET": ReconcilerState.PULLING, "POST": ReconcilerState.PUSHING}
        assert reconciler.state == ReconcilerState.IDLE
        assert not reconciler.is_syncing


class TestResolveConflict:

    def test_keep_local(self, reconciler, server, store, ledger):
        make_tie(store, server)
        reconciler.sync_with_server()

        result = reconciler.resolve_conflict(ConflictResolution(Table.PEOPLE, "p1", "local"))

        assert result.synchronized == 1 and result.errors == []
        assert server.get_record(Table.PEOPLE, "p1")["firstName"] == "Local"
        assert store.find_by_id(Table.PEOPLE, "p1").updated_at > OLD
        assert ledger.list_conflicts() == []

    def test_keep_remote(self, reconciler, server, store, ledger):
        make_tie(store, server)
        reconciler.sync_with_server()

        reconciler.resolve_conflict(ConflictResolution(Table.PEOPLE, "p1", "remote"))

        assert store.find_by_id(Table.PEOPLE, "p1").first_name == "Remote"
        assert server.calls("PUT", "/people/p1") == []
        assert ledger.get_entry(Table.PEOPLE, "p1").status == SyncStatus.SYNCED

    def test_merge_with_explicit_data(self, reconciler, server, store):
        make_tie(store, server)
        reconciler.sync_with_server()

        reconciler.resolve_conflict(ConflictResolution(Table.PEOPLE, "p1", "merge", {"firstName": "Merged"}))

        assert store.find_by_id(Table.PEOPLE, "p1").first_name == "Merged"
        assert server.get_record(Table.PEOPLE, "p1")["firstName"] == "Merged"

    def test_failed_upload_keeps_conflict(self, reconciler, server, store, ledger):
        make_tie(store, server)
        reconciler.sync_with_server()
        server.failures[("PUT", "/people/p1")] = 500

        result = reconciler.resolve_conflict(ConflictResolution(Table.PEOPLE, "p1", "local"))

        assert result.synchronized == 0
        assert result.errors
        assert ledger.get_entry(Table.PEOPLE, "p1").status == SyncStatus.CONFLICT
        assert store.find_by_id(Table.PEOPLE, "p1").updated_at == OLD

    def test_keep_remote_when_server_deleted_record(self, reconciler, server, store, ledger):
        make_tie(store, server)
        reconciler.sync_with_server()
        server.delete_record(Table.PEOPLE, "p1", NEWER)

        result = reconciler.resolve_conflict(ConflictResolution(Table.PEOPLE, "p1", "remote"))

        assert result.synchronized == 1 and result.errors == []
        assert store.find_by_id(Table.PEOPLE, "p1") is None
        entry = ledger.get_entry(Table.PEOPLE, "p1")
        assert entry.status == SyncStatus.SYNCED and entry.is_tombstone
        assert ledger.count_pending() == 0

    def test_keep_remote_applies_served_tombstone(self, db, store, ledger):
        store.save(Person(id="p1", first_name="Local", updated_at=OLD), RecordOrigin.REMOTE)
        ledger.mark_conflict(Table.PEOPLE, "p1")
        client = MagicMock(spec=RemoteClient)
        client.get.return_value = ApiResponse.ok({"data": {"id": "p1", "deleted_at": NEWER}})

        result = Reconciler(db, store, ledger, client).resolve_conflict(
            ConflictResolution(Table.PEOPLE, "p1", "remote"))

        assert result.errors == []
        assert store.find_by_id(Table.PEOPLE, "p1") is None
        entry = ledger.get_entry(Table.PEOPLE, "p1")
        assert entry.status == SyncStatus.SYNCED
        assert entry.deleted_at == NEWER


class TestForcedOperations:

    def test_force_pull_replaces_local_data(self, reconciler, server, store, ledger):
        store.insert(Note(id="local-only"))
        store.insert(Note(id="n-del"))
        store.delete(Table.NOTES, "n-del")
        seed_remote(server, Note(id="n1", title="server", updated_at=OLD))
        seed_remote(server, Note(id="n-del", title="server copy", updated_at=OLD))

        result = reconciler.force_pull()

        assert result.success
        assert store.find_by_id(Table.NOTES, "local-only") is None
        assert store.find_by_id(Table.NOTES, "n1").title == "server"
        assert store.find_by_id(Table.NOTES, "n-del") is not None
        assert ledger.count_pending() == 0

    def test_force_push_uploads_everything(self, reconciler, server, store, ledger):
        store.save(Note(id="n1", title="only local", updated_at=OLD), RecordOrigin.REMOTE)
        seed_synced(store, server, Note(id="n2", updated_at=OLD))
        store.delete(Table.NOTES, "n2")

        result = reconciler.force_push()

        assert result.synchronized == 2
        assert server.get_record(Table.NOTES, "n1")["title"] == "only local"
        assert not server.live(Table.NOTES, "n2")
        assert ledger.count_pending() == 0

    def test_failed_force_pull_keeps_local_data(self, reconciler, server, store, ledger):
        seed_synced(store, server, Note(id="n1", title="kept", updated_at=OLD))
        server.failures[("GET", "/sync/notes")] = 503

        result = reconciler.force_pull()

        assert any("Failed to pull notes data" in e for e in result.errors)
        assert store.find_by_id(Table.NOTES, "n1").title == "kept"
        assert not ledger.get_entry(Table.NOTES, "n1").is_tombstone

        del server.failures[("GET", "/sync/notes")]
        reconciler.sync_with_server()

        assert store.find_by_id(Table.NOTES, "n1").title == "kept"

    def test_records_missed_by_force_pull_return_on_next_sync(self, reconciler, server, store):
        for i in range(1, 4):
            seed_synced(store, server, Note(id=f"n{i}", updated_at=OLD))
        pulls = []

        def fail_second_page(method, path, body):
            if (method, path) == ("GET", "/sync/notes"):
                pulls.append(path)
                if len(pulls) == 2:
                    server.failures[("GET", "/sync/notes")] = 503

        server.on_request = fail_second_page
        result = reconciler.force_pull()

        assert result.errors
        assert store.find_by_id(Table.NOTES, "n3") is None

        server.on_request = None
        del server.failures[("GET", "/sync/notes")]
        second = reconciler.sync_with_server()

        assert second.synchronized == 1
        assert store.find_by_id(Table.NOTES, "n3") is not None
