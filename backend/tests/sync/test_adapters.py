"""
Tests for the versioned model adapter.
"""

import pytest
from django.utils import timezone

from apps.sync.adapters import VersionedModelAdapter
from apps.sync.exceptions import ValidationError
from apps.sync.registry import SyncRegistry
from tests.sync.conftest import SyncTestNote, note_adapter


@pytest.mark.django_db
class TestLoadState:
    """Tests for VersionedModelAdapter.load_state."""

    def test_missing_row(self):
        state = note_adapter.load_state("note", "nope")

        assert state.data is None
        assert state.version is None
        assert not state.exists

    def test_live_row(self, note_factory):
        note_factory("note-1", title="Hello", body="World", sync_version=4)

        state = note_adapter.load_state("note", "note-1")

        assert state.data == {"title": "Hello", "body": "World", "pinned": False}
        assert state.version == 4
        assert state.deleted is False

    def test_tombstone(self, note_factory):
        note_factory("note-1", sync_version=2, deleted_at=timezone.now())

        state = note_adapter.load_state("note", "note-1")

        assert state.deleted is True
        assert state.version == 2
        assert state.data["title"] == "Server title"


@pytest.mark.django_db
class TestApply:
    """Tests for VersionedModelAdapter.apply."""

    def test_insert_creates_row(self):
        result = note_adapter.apply("note", "note-1", "INSERT", {"title": "New", "pinned": True})

        note = SyncTestNote.objects.get(id="note-1")
        assert note.title == "New"
        assert note.pinned is True
        assert note.sync_version == 1
        assert result.version == 1
        assert result.data["title"] == "New"

    def test_update_bumps_version(self, note_factory):
        note_factory("note-1", title="Old", body="Keep", sync_version=3)

        result = note_adapter.apply("note", "note-1", "UPDATE", {"title": "New"})

        note = SyncTestNote.objects.get(id="note-1")
        assert note.title == "New"
        assert note.body == "Keep"
        assert note.sync_version == 4
        assert result.version == 4

    def test_update_ignores_unsynced_and_reserved_fields(self, note_factory):
        note_factory("note-1", sync_version=3)

        note_adapter.apply(
            "note", "note-1", "UPDATE", {"sync_version": 99, "id": "hijack", "color": "red"}
        )

        note = SyncTestNote.objects.get(id="note-1")
        assert note.sync_version == 4
        assert not SyncTestNote.objects.filter(id="hijack").exists()

    def test_update_missing_row(self):
        with pytest.raises(SyncTestNote.DoesNotExist):
            note_adapter.apply("note", "ghost", "UPDATE", {"title": "x"})

    def test_delete_is_soft(self, note_factory):
        note_factory("note-1", sync_version=2)

        result = note_adapter.apply("note", "note-1", "DELETE", {})

        note = SyncTestNote.objects.get(id="note-1")
        assert note.deleted_at is not None
        assert note.sync_version == 3
        assert result.version == 3

    def test_delete_twice_is_idempotent(self, note_factory):
        note_factory("note-1", sync_version=2)
        note_adapter.apply("note", "note-1", "DELETE", {})

        result = note_adapter.apply("note", "note-1", "DELETE", {})

        assert result.version == 3

    def test_delete_missing_row(self):
        with pytest.raises(SyncTestNote.DoesNotExist):
            note_adapter.apply("note", "ghost", "DELETE", {})

    def test_insert_restores_tombstone(self, note_factory):
        note_factory("note-1", sync_version=5, deleted_at=timezone.now())

        note_adapter.apply("note", "note-1", "INSERT", {"title": "Back"})

        note = SyncTestNote.objects.get(id="note-1")
        assert note.deleted_at is None
        assert note.title == "Back"
        assert note.sync_version == 6

    def test_unknown_operation(self, note_factory):
        note_factory("note-1")

        with pytest.raises(ValidationError):
            note_adapter.apply("note", "note-1", "UPSERT", {})


class TestAdapterSetup:
    """Tests for adapter construction and registration."""

    def test_default_fields_skip_reserved(self):
        adapter = VersionedModelAdapter(SyncTestNote)

        assert adapter.fields == ["title", "body", "pinned"]

    def test_register(self):
        SyncRegistry.clear()
        adapter = VersionedModelAdapter(SyncTestNote)

        adapter.register("memo", default_strategy="CLIENT_WINS")

        assert SyncRegistry.is_registered("memo")
        assert SyncRegistry.get_default_strategy("memo") == "CLIENT_WINS"
        SyncRegistry.clear()
