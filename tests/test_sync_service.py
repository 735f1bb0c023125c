"""Tests for the SyncService facade and build_sync_service."""
import threading

import pytest

from engage.config import build_config
from engage.storage import Note, Person, RecordOrigin, SyncStatus, Table
from engage.sync import ConflictResolution, SyncService, build_sync_service
from engage.sync.service import OFFLINE

from conftest import BASE_URL, FakeSession

OLD = "2025-01-01T00:00:00.000Z"


class TestOffline:

    def test_operations_short_circuit(self, service, server, monitor):
        monitor.set_online(False)

        for result in (service.manual_sync(), service.force_pull(), service.force_push(),
                       service.resolve_conflict("notes", "n1", "local")):
            assert not result.success
            assert result.errors == [OFFLINE]
        assert server.requests == []

    def test_status_reports_offline_attempt(self, service, monitor):
        monitor.set_online(False)
        service.manual_sync()

        status = service.get_sync_status()

        assert status["is_online"] is False
        assert status["last_result"]["errors"] == [OFFLINE]
        assert status["last_sync"] is None

    def test_invalid_resolution_rejected_before_network(self, service):
        with pytest.raises(ValueError):
            service.resolve_conflict("notes", "n1", "both")
        with pytest.raises(ValueError):
            service.resolve_conflict("meetings", "n1", "local")


class TestOnline:

    def test_manual_sync_and_status(self, service, store):
        store.insert(Note(id="n1"))
        assert service.get_sync_status()["pending_count"] == 1

        result = service.manual_sync()

        status = service.get_sync_status()
        assert result.success
        assert status["is_online"] is True
        assert status["is_syncing"] is False
        assert status["state"] == "idle"
        assert status["pending_count"] == 0
        assert status["last_sync"] is not None
        assert status["last_result"]["synchronized"] == 1

    def test_conflicts_listed_and_resolved(self, service, server, store):
        store.save(Person(id="p1", first_name="Ana", updated_at=OLD), RecordOrigin.REMOTE)
        server.put_record(Table.PEOPLE, Person(id="p1", first_name="Anna", updated_at=OLD).to_wire())
        service.manual_sync()

        assert [c.record_id for c in service.get_conflicts()] == ["p1"]
        assert service.get_sync_status()["conflict_count"] == 1

        result = service.resolve_conflict("people", "p1", "remote")

        assert result.success and result.errors == []
        assert service.get_conflicts() == []
        assert store.find_by_id(Table.PEOPLE, "p1").first_name == "Anna"

    def test_manual_sync_applies_resolutions(self, service, server, store, ledger):
        store.save(Note(id="n1", title="a", updated_at=OLD), RecordOrigin.REMOTE)
        server.put_record(Table.NOTES, Note(id="n1", title="b", updated_at=OLD).to_wire())

        service.manual_sync(resolutions=[ConflictResolution(Table.NOTES, "n1", "local")])

        assert ledger.get_entry(Table.NOTES, "n1").status == SyncStatus.SYNCED
        assert server.get_record(Table.NOTES, "n1")["title"] == "a"

    def test_online_result_clears_offline_status(self, service, monitor):
        monitor.set_online(False)
        service.manual_sync()
        monitor.set_online(True)
        service.manual_sync()

        assert service.get_sync_status()["last_result"]["success"] is True

    def test_auto_sync_runs_on_reconnect(self, service, event_bus, store, monitor):
        done = threading.Event()
        event_bus.subscribe("sync.completed", lambda event: done.set())
        store.insert(Note(id="n1"))
        monitor.set_online(False)

        service.start_auto_sync(probe=False)
        monitor.set_online(True)

        assert done.wait(3)
        service.stop_auto_sync()
        assert not service.scheduler.is_running


def test_build_sync_service(tmp_path, server):
    config = build_config({"remote": {"base_url": BASE_URL}}, tmp_path, env={})

    service = build_sync_service(config, session=FakeSession(server))

    assert isinstance(service, SyncService)
    assert service.client.base_url == BASE_URL
    with service:
        service.store.insert(Note(id="n1"))
        assert service.manual_sync().success
    assert server.live(Table.NOTES, "n1")
    assert (tmp_path / "engage360.db").exists()
