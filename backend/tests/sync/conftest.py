"""
Pytest fixtures for sync tests.

Provides a test model and registry setup.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import pytest
from django.db import models

from apps.sync.adapters import VersionedModelAdapter
from apps.sync.registry import SyncRegistry


class SyncTestNote(models.Model):
    """
    Test-only versioned model for sync engine tests.

    This model is created dynamically in the test database.
    """

    id = models.CharField(primary_key=True, max_length=64)
    title = models.CharField(max_length=255, blank=True, default="")
    body = models.TextField(blank=True, default="")
    pinned = models.BooleanField(default=False)
    sync_version = models.PositiveBigIntegerField(default=0)
    deleted_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        app_label = "sync"


def merge_notes(server: dict[str, Any], client: dict[str, Any]) -> dict[str, Any]:
    """Client title wins, bodies are concatenated."""
    merged = dict(server)
    merged["title"] = client.get("title", server.get("title"))
    if client.get("body") and client.get("body") != server.get("body"):
        merged["body"] = f"{server.get('body', '')}\n{client['body']}".strip()
    return merged


note_adapter = VersionedModelAdapter(SyncTestNote, fields=["title", "body", "pinned"])


@pytest.fixture
def sync_registry():
    """
    Set up and tear down the sync registry for tests.

    Registers SyncTestNote as "note" and cleans up after test.
    """
    SyncRegistry.clear()

    note_adapter.register("note", merge=merge_notes)

    yield SyncRegistry

    SyncRegistry.clear()


@pytest.fixture
def note_factory(db):
    """Factory function for creating test notes at a given version."""

    def create(
        entity_id: str = "note-1",
        title: str = "Server title",
        body: str = "",
        sync_version: int = 1,
        deleted_at: datetime | None = None,
    ) -> SyncTestNote:
        return SyncTestNote.objects.create(
            id=entity_id,
            title=title,
            body=body,
            sync_version=sync_version,
            deleted_at=deleted_at,
        )

    return create
