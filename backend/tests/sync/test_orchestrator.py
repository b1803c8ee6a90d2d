"""
Tests for sync session orchestration.
"""

from datetime import timedelta

import pytest
from django.db import OperationalError
from django.utils import timezone

from apps.mobile import services as cache_services
from apps.sync import orchestrator, services
from apps.sync.exceptions import (
    ApplyUnavailableError,
    ConcurrentSyncError,
    InvalidStateError,
    ValidationError,
)
from apps.sync.models import SyncConflict, SyncLog, SyncQueueItem
from apps.sync.registry import SyncRegistry
from tests.core.factories import UserFactory
from tests.sync.conftest import SyncTestNote, merge_notes, note_adapter
from tests.sync.factories import SyncLogFactory, SyncQueueItemFactory

ItemStatus = SyncQueueItem.Status
LogStatus = SyncLog.Status


@pytest.fixture
def user(db):
    return UserFactory.create()


def enqueue_note_update(user, entity_id="note-1", base_version=1, priority=5, **data):
    return services.enqueue(
        user_id=user.id,
        device_id="device_001",
        entity_type="note",
        entity_id=entity_id,
        operation_type="UPDATE",
        data_snapshot=data or {"title": "Client title"},
        priority=priority,
        base_version=base_version,
    )


@pytest.mark.django_db
class TestSessionLifecycle:
    """Tests for open/begin/complete/fail/cancel."""

    def test_start_session(self, user):
        log = orchestrator.start_session(user.id, "device_001", app_version="2.3.1")

        assert log.sync_status == LogStatus.IN_PROGRESS
        assert log.started_at is not None
        assert log.app_version == "2.3.1"

    def test_open_session_validates(self, user):
        with pytest.raises(ValidationError):
            orchestrator.open_session(user.id, "device_001", sync_type="SIDEWAYS")
        with pytest.raises(ValidationError):
            orchestrator.open_session(user.id, "")

    def test_one_session_in_progress_per_device(self, user):
        orchestrator.start_session(user.id, "device_001")

        with pytest.raises(ConcurrentSyncError):
            orchestrator.start_session(user.id, "device_001")

        assert SyncLog.objects.filter(user=user, device_id="device_001").count() == 1

    def test_other_device_can_sync_concurrently(self, user):
        orchestrator.start_session(user.id, "device_001")

        log = orchestrator.start_session(user.id, "device_002")

        assert log.sync_status == LogStatus.IN_PROGRESS

    def test_begin_requires_initiated(self, user):
        log = SyncLogFactory.create(user=user, sync_status=LogStatus.COMPLETED)

        with pytest.raises(InvalidStateError):
            orchestrator.begin_session(log.id)

    def test_complete_sets_duration(self, user):
        log = SyncLogFactory.create(
            user=user,
            sync_status=LogStatus.IN_PROGRESS,
            started_at=timezone.now() - timedelta(seconds=42),
        )

        completed = orchestrator.complete_session(log.id)

        assert completed.sync_status == LogStatus.COMPLETED
        assert completed.completed_at is not None
        assert completed.duration_seconds >= 42

    def test_complete_requires_in_progress(self, user):
        log = SyncLogFactory.create(user=user)

        with pytest.raises(InvalidStateError):
            orchestrator.complete_session(log.id)

    @pytest.mark.parametrize(
        "status", [LogStatus.COMPLETED, LogStatus.FAILED, LogStatus.CANCELLED]
    )
    def test_terminal_states_are_final(self, user, status):
        log = SyncLogFactory.create(user=user, sync_status=status)

        with pytest.raises(InvalidStateError):
            orchestrator.fail_session(log.id, "late failure")
        with pytest.raises(InvalidStateError):
            orchestrator.cancel_session(log.id)
        with pytest.raises(InvalidStateError):
            orchestrator.begin_session(log.id)

        log.refresh_from_db()
        assert log.sync_status == status

    def test_fail_session_reverts_claims(self, user):
        log = orchestrator.start_session(user.id, "device_001")
        item = SyncQueueItemFactory.create(user=user)
        services.dequeue_due(user.id, "device_001", limit=10, session=log)

        failed = orchestrator.fail_session(log.id, "network gone")

        assert failed.sync_status == LogStatus.FAILED
        assert failed.error_message == "network gone"
        item.refresh_from_db()
        assert item.status == ItemStatus.PENDING
        assert item.retry_count == 0
        assert item.session_id is None

    def test_cancel_keeps_synced_items(self, user):
        log = orchestrator.start_session(user.id, "device_001")
        done = SyncQueueItemFactory.create(user=user, priority=1)
        waiting = SyncQueueItemFactory.create(user=user, priority=2)
        services.dequeue_due(user.id, "device_001", limit=10, session=log)
        services.mark_synced(done.id)

        cancelled = orchestrator.cancel_session(log.id)

        assert cancelled.sync_status == LogStatus.CANCELLED
        done.refresh_from_db()
        waiting.refresh_from_db()
        assert done.status == ItemStatus.SYNCED
        assert waiting.status == ItemStatus.PENDING

    def test_cancel_initiated_session(self, user):
        log = orchestrator.open_session(user.id, "device_001")

        cancelled = orchestrator.cancel_session(log.id)

        assert cancelled.sync_status == LogStatus.CANCELLED
        assert cancelled.duration_seconds is not None


@pytest.mark.django_db
class TestUpdateCounters:
    """Tests for update_counters."""

    def test_increments(self, user):
        log = orchestrator.start_session(user.id, "device_001")

        orchestrator.update_counters(log.id, records_downloaded=10)
        updated = orchestrator.update_counters(log.id, records_downloaded=5, records_failed=1)

        assert updated.records_downloaded == 15
        assert updated.records_failed == 1

    def test_rejects_negative(self, user):
        log = orchestrator.start_session(user.id, "device_001")

        with pytest.raises(ValidationError):
            orchestrator.update_counters(log.id, records_uploaded=-1)

    def test_rejects_unknown_counter(self, user):
        log = orchestrator.start_session(user.id, "device_001")

        with pytest.raises(ValidationError):
            orchestrator.update_counters(log.id, records_sideloaded=1)

    def test_terminal_session_is_frozen(self, user):
        log = SyncLogFactory.create(user=user, sync_status=LogStatus.COMPLETED)

        with pytest.raises(InvalidStateError):
            orchestrator.update_counters(log.id, records_downloaded=1)


@pytest.mark.django_db
class TestRunSync:
    """End-to-end sync runs against the note test entity."""

    def test_clean_update_is_applied(self, user, sync_registry, note_factory):
        note_factory("note-1", title="Server title", sync_version=1)
        item = enqueue_note_update(user, "note-1", base_version=1, title="Client title")

        report = orchestrator.run_sync(user.id, "device_001")

        assert report.status == LogStatus.COMPLETED
        assert report.records_uploaded == 1
        assert report.records_failed == 0
        assert report.conflicts_detected == 0
        assert report.needs_attention == []
        item.refresh_from_db()
        assert item.status == ItemStatus.SYNCED
        assert item.synced_at is not None
        note = SyncTestNote.objects.get(id="note-1")
        assert note.title == "Client title"
        assert note.sync_version == 2

    def test_insert_and_delete(self, user, sync_registry, note_factory):
        note_factory("note-old", sync_version=3)
        services.enqueue(user.id, "device_001", "note", "note-new", "INSERT", {"title": "Fresh"})
        services.enqueue(user.id, "device_001", "note", "note-old", "DELETE", base_version=3)

        report = orchestrator.run_sync(user.id, "device_001")

        assert report.records_uploaded == 2
        assert SyncTestNote.objects.get(id="note-new").title == "Fresh"
        assert SyncTestNote.objects.get(id="note-old").deleted_at is not None

    def test_update_of_server_deleted_record(self, user, sync_registry, note_factory):
        note_factory("note-1", sync_version=3, deleted_at=timezone.now())
        item = enqueue_note_update(user, "note-1", base_version=2)

        report = orchestrator.run_sync(user.id, "device_001")

        item.refresh_from_db()
        assert item.status == ItemStatus.CONFLICT
        assert item.conflict.conflict_type == SyncConflict.ConflictType.UPDATE_DELETE
        assert item.conflict.server_deleted is True
        assert report.status == LogStatus.COMPLETED
        assert report.conflicts_detected == 1
        assert report.conflicts_resolved == 0
        assert [i.id for i in report.needs_attention] == [item.id]

    def test_server_wins_resolution_syncs_without_applying(
        self, user, sync_registry, note_factory
    ):
        note_factory("note-1", title="Server v3", sync_version=3)
        item = enqueue_note_update(user, "note-1", base_version=2, title="Client edit")
        orchestrator.run_sync(user.id, "device_001")
        item.refresh_from_db()
        assert item.status == ItemStatus.CONFLICT

        services.resolve_conflict(item.conflict_id, "SERVER_WINS", "ops")
        item.refresh_from_db()
        assert item.status == ItemStatus.PENDING

        report = orchestrator.run_sync(user.id, "device_001")

        item.refresh_from_db()
        assert item.status == ItemStatus.SYNCED
        assert report.records_uploaded == 0
        note = SyncTestNote.objects.get(id="note-1")
        assert note.title == "Server v3"
        assert note.sync_version == 3

    def test_client_wins_resolution_applies_client_data(
        self, user, sync_registry, note_factory
    ):
        note_factory("note-1", title="Server v3", sync_version=3)
        item = enqueue_note_update(user, "note-1", base_version=2, title="Client edit")
        orchestrator.run_sync(user.id, "device_001")
        item.refresh_from_db()

        services.resolve_conflict(item.conflict_id, "CLIENT_WINS", "ops")
        report = orchestrator.run_sync(user.id, "device_001")

        item.refresh_from_db()
        assert item.status == ItemStatus.SYNCED
        assert report.records_uploaded == 1
        assert report.conflicts_detected == 0
        assert SyncTestNote.objects.get(id="note-1").title == "Client edit"

    def test_manual_resolution_of_delete_keeps_record(self, user, sync_registry, note_factory):
        note_factory("note-1", title="Server v3", sync_version=3)
        item = services.enqueue(user.id, "device_001", "note", "note-1", "DELETE", base_version=2)
        orchestrator.run_sync(user.id, "device_001")
        item.refresh_from_db()
        assert item.conflict.conflict_type == SyncConflict.ConflictType.UPDATE_UPDATE

        services.resolve_conflict(
            item.conflict_id, "MANUAL", "ops", resolved_data={"title": "Keep me"}
        )
        report = orchestrator.run_sync(user.id, "device_001")

        item.refresh_from_db()
        assert item.status == ItemStatus.SYNCED
        assert report.records_uploaded == 1
        note = SyncTestNote.objects.get(id="note-1")
        assert note.deleted_at is None
        assert note.title == "Keep me"
        assert note.sync_version == 4

    def test_client_wins_resolution_of_delete_deletes(self, user, sync_registry, note_factory):
        note_factory("note-1", title="Server v3", sync_version=3)
        item = services.enqueue(user.id, "device_001", "note", "note-1", "DELETE", base_version=2)
        orchestrator.run_sync(user.id, "device_001")
        item.refresh_from_db()

        services.resolve_conflict(item.conflict_id, "CLIENT_WINS", "ops")
        orchestrator.run_sync(user.id, "device_001")

        item.refresh_from_db()
        assert item.status == ItemStatus.SYNCED
        assert SyncTestNote.objects.get(id="note-1").deleted_at is not None

    def test_edit_after_resolution_is_applied(self, user, sync_registry, note_factory):
        note_factory("note-1", title="Server v3", sync_version=3)
        item = enqueue_note_update(user, "note-1", base_version=2, title="A")
        orchestrator.run_sync(user.id, "device_001")
        item.refresh_from_db()
        services.resolve_conflict(item.conflict_id, "CLIENT_WINS", "ops")

        services.update_item(item.id, data_snapshot={"title": "B (newer edit)"}, base_version=3)
        report = orchestrator.run_sync(user.id, "device_001")

        item.refresh_from_db()
        assert item.status == ItemStatus.SYNCED
        assert report.conflicts_detected == 0
        assert SyncTestNote.objects.get(id="note-1").title == "B (newer edit)"

    def test_edit_after_resolution_is_checked_again(self, user, sync_registry, note_factory):
        note_factory("note-1", title="Server v3", sync_version=3)
        item = enqueue_note_update(user, "note-1", base_version=2, title="A")
        orchestrator.run_sync(user.id, "device_001")
        item.refresh_from_db()
        first_conflict_id = item.conflict_id
        services.resolve_conflict(first_conflict_id, "CLIENT_WINS", "ops")

        services.update_item(item.id, data_snapshot={"title": "B"})
        report = orchestrator.run_sync(user.id, "device_001")

        item.refresh_from_db()
        assert report.conflicts_detected == 1
        assert item.status == ItemStatus.CONFLICT
        assert item.conflict_id != first_conflict_id
        assert SyncTestNote.objects.get(id="note-1").title == "Server v3"

    def test_auto_resolution_releases_item_for_next_session(
        self, user, sync_registry, note_factory
    ):
        note_adapter.register("note", merge=merge_notes, default_strategy="MERGE")
        note_factory("note-1", title="Server v2", body="server body", sync_version=2)
        item = enqueue_note_update(user, "note-1", base_version=1, title="Client", body="mine")

        first = orchestrator.run_sync(user.id, "device_001")

        assert first.conflicts_detected == 1
        assert first.conflicts_resolved == 1
        item.refresh_from_db()
        assert item.status == ItemStatus.PENDING
        assert item.conflict.status == SyncConflict.Status.RESOLVED
        assert item.conflict.resolved_by == services.SYSTEM_IDENTITY

        second = orchestrator.run_sync(user.id, "device_001")

        item.refresh_from_db()
        assert item.status == ItemStatus.SYNCED
        assert second.records_uploaded == 1
        note = SyncTestNote.objects.get(id="note-1")
        assert note.title == "Client"
        assert note.body == "server body\nmine"

    def test_item_failure_does_not_abort_session(self, user, sync_registry, note_factory):
        note_factory("note-2", sync_version=1)
        missing = enqueue_note_update(user, "note-missing", base_version=None, priority=1)
        unknown = services.enqueue(user.id, "device_001", "gadget", "g-1", "UPDATE", {})
        ok = enqueue_note_update(user, "note-2", base_version=1, priority=9)

        report = orchestrator.run_sync(user.id, "device_001")

        assert report.status == LogStatus.COMPLETED
        assert report.records_failed == 2
        assert report.records_uploaded == 1
        for failed in (missing, unknown):
            failed.refresh_from_db()
            assert failed.status == ItemStatus.FAILED
            assert failed.retry_count == 1
            assert failed.error_message
        ok.refresh_from_db()
        assert ok.status == ItemStatus.SYNCED

    def test_item_claimed_once_per_session(self, user, sync_registry):
        item = enqueue_note_update(user, "note-missing", base_version=None)

        orchestrator.run_sync(user.id, "device_001", batch_size=1)

        item.refresh_from_db()
        assert item.retry_count == 1

    def test_retries_exhaust_across_sessions(self, user, sync_registry):
        item = enqueue_note_update(user, "note-missing", base_version=None)

        for _ in range(3):
            orchestrator.run_sync(user.id, "device_001")
        report = orchestrator.run_sync(user.id, "device_001")

        item.refresh_from_db()
        assert item.status == ItemStatus.FAILED
        assert item.retry_count == 3
        assert report.records_failed == 0
        assert [i.id for i in report.needs_attention] == [item.id]

    def test_small_batches_drain_whole_queue(self, user, sync_registry, note_factory):
        for n in range(5):
            note_factory(f"note-{n}", sync_version=1)
            enqueue_note_update(user, f"note-{n}", base_version=1)

        report = orchestrator.run_sync(user.id, "device_001", batch_size=2)

        assert report.records_uploaded == 5
        assert not SyncQueueItem.objects.exclude(status=ItemStatus.SYNCED).exists()

    def test_priority_order_of_application(self, user, note_factory):
        SyncRegistry.clear()
        applied = []

        def recording_apply(entity_type, entity_id, operation_type, data):
            applied.append(entity_id)
            return note_adapter.apply(entity_type, entity_id, operation_type, data)

        SyncRegistry.register("note", apply=recording_apply, load_state=note_adapter.load_state)
        for entity_id, priority in [("low", 9), ("high", 1), ("mid", 5)]:
            note_factory(entity_id, sync_version=1)
            enqueue_note_update(user, entity_id, base_version=1, priority=priority)

        orchestrator.run_sync(user.id, "device_001", batch_size=1)

        assert applied == ["high", "mid", "low"]
        SyncRegistry.clear()

    def test_store_outage_fails_session(self, user, note_factory):
        SyncRegistry.clear()

        def unavailable_apply(entity_type, entity_id, operation_type, data):
            raise OperationalError("could not connect to server")

        SyncRegistry.register("note", apply=unavailable_apply, load_state=note_adapter.load_state)
        note_factory("note-1", sync_version=1)
        item = enqueue_note_update(user, "note-1", base_version=1)

        with pytest.raises(ApplyUnavailableError):
            orchestrator.run_sync(user.id, "device_001")

        log = SyncLog.objects.get(user=user)
        assert log.sync_status == LogStatus.FAILED
        assert "could not connect" in log.error_message
        item.refresh_from_db()
        assert item.status == ItemStatus.PENDING
        assert item.retry_count == 0
        SyncRegistry.clear()

    def test_cancel_mid_session_stops_processing(self, user, note_factory):
        SyncRegistry.clear()

        def cancelling_apply(entity_type, entity_id, operation_type, data):
            live = SyncLog.objects.get(user=user, sync_status=LogStatus.IN_PROGRESS)
            orchestrator.cancel_session(live.id)
            return note_adapter.apply(entity_type, entity_id, operation_type, data)

        SyncRegistry.register("note", apply=cancelling_apply, load_state=note_adapter.load_state)
        note_factory("note-a", title="Server", sync_version=1)
        note_factory("note-b", title="Server", sync_version=1)
        enqueue_note_update(user, "note-a", base_version=1, priority=1)
        later = enqueue_note_update(user, "note-b", base_version=1, priority=2)

        report = orchestrator.run_sync(user.id, "device_001")

        assert report.status == LogStatus.CANCELLED
        later.refresh_from_db()
        assert later.status == ItemStatus.PENDING
        assert SyncTestNote.objects.get(id="note-b").title == "Server"
        SyncRegistry.clear()

    def test_time_budget_returns_unreached_items(self, user, sync_registry, settings):
        settings.SYNC_SESSION_TIMEOUT_SECONDS = 0
        item = enqueue_note_update(user, "note-1")

        report = orchestrator.run_sync(user.id, "device_001")

        assert report.status == LogStatus.COMPLETED
        item.refresh_from_db()
        assert item.status == ItemStatus.PENDING
        assert item.claimed_at is None

    def test_applied_entity_invalidates_cache_for_all_users(
        self, user, sync_registry, note_factory
    ):
        other = UserFactory.create()
        cache_services.put_cached(user.id, "note:note-1", {"title": "Stale"})
        cache_services.put_cached(other.id, "note:note-1", {"title": "Stale"})
        cache_services.put_cached(user.id, "note:note-2", {"title": "Unrelated"})
        note_factory("note-1", sync_version=1)
        enqueue_note_update(user, "note-1", base_version=1)

        orchestrator.run_sync(user.id, "device_001")

        assert cache_services.get_cached(user.id, "note:note-1") is None
        assert cache_services.get_cached(other.id, "note:note-1") is None
        assert cache_services.get_cached(user.id, "note:note-2") is not None

    def test_rejects_busy_device(self, user, sync_registry):
        orchestrator.start_session(user.id, "device_001")

        with pytest.raises(ConcurrentSyncError):
            orchestrator.run_sync(user.id, "device_001")

    def test_process_requires_in_progress(self, user):
        log = orchestrator.open_session(user.id, "device_001")

        with pytest.raises(InvalidStateError):
            orchestrator.process_session(log.id)

    def test_batch_size_is_capped(self, settings):
        settings.SYNC_MAX_BATCH_SIZE = 100

        assert orchestrator._batch_size(10_000) == 100
        assert orchestrator._batch_size(None) == settings.SYNC_BATCH_SIZE
        with pytest.raises(ValidationError):
            orchestrator._batch_size(0)


@pytest.mark.django_db
class TestRecoverStaleSessions:
    """Tests for recover_stale_sessions."""

    def test_fails_old_sessions_and_frees_items(self, user):
        stale = SyncLogFactory.create(
            user=user,
            sync_status=LogStatus.IN_PROGRESS,
            started_at=timezone.now() - timedelta(hours=2),
        )
        fresh = SyncLogFactory.create(
            user=user,
            device_id="device_002",
            sync_status=LogStatus.IN_PROGRESS,
            started_at=timezone.now(),
        )
        item = SyncQueueItemFactory.create(
            user=user, status=ItemStatus.IN_PROGRESS, session=stale, claimed_at=timezone.now()
        )

        recovered = orchestrator.recover_stale_sessions(older_than=timedelta(minutes=60))

        assert recovered == 1
        stale.refresh_from_db()
        fresh.refresh_from_db()
        assert stale.sync_status == LogStatus.FAILED
        assert stale.error_message == "Session timed out"
        assert fresh.sync_status == LogStatus.IN_PROGRESS
        item.refresh_from_db()
        assert item.status == ItemStatus.PENDING

    def test_recovered_device_can_sync_again(self, user):
        SyncLogFactory.create(
            user=user,
            sync_status=LogStatus.IN_PROGRESS,
            started_at=timezone.now() - timedelta(hours=2),
        )

        orchestrator.recover_stale_sessions()
        log = orchestrator.start_session(user.id, "device_001")

        assert log.sync_status == LogStatus.IN_PROGRESS


@pytest.mark.django_db
class TestSyncStatistics:
    """Tests for sync_statistics."""

    def test_counts_and_success_rate(self, user):
        SyncLogFactory.create(user=user, sync_status=LogStatus.COMPLETED, records_uploaded=4)
        SyncLogFactory.create(user=user, sync_status=LogStatus.COMPLETED, records_uploaded=1)
        SyncLogFactory.create(user=user, sync_status=LogStatus.COMPLETED, records_downloaded=7)
        SyncLogFactory.create(user=user, sync_status=LogStatus.FAILED, records_failed=2)
        SyncQueueItemFactory.create(user=user, status=ItemStatus.SYNCED)
        SyncQueueItemFactory.create(user=user, status=ItemStatus.PENDING)
        SyncLogFactory.create(sync_status=LogStatus.FAILED)

        stats = orchestrator.sync_statistics(user_id=user.id)

        assert stats["sessions"]["COMPLETED"] == 3
        assert stats["sessions"]["FAILED"] == 1
        assert stats["sessions"]["CANCELLED"] == 0
        assert stats["queue"]["SYNCED"] == 1
        assert stats["queue"]["CONFLICT"] == 0
        assert stats["conflicts"] == {"DETECTED": 0, "RESOLVED": 0, "IGNORED": 0}
        assert stats["totals"]["records_uploaded"] == 5
        assert stats["totals"]["records_downloaded"] == 7
        assert stats["success_rate"] == 75.0

    def test_no_finished_sessions(self, user):
        stats = orchestrator.sync_statistics(user_id=user.id)

        assert stats["success_rate"] is None
        assert stats["totals"]["records_uploaded"] == 0
