"""
Conflict detection.

Classifies a queued client mutation against the server's current state.
Detection is a pure function of its inputs: the same server state, operation
and base marker always give the same answer, and all three are stored on the
SyncConflict record so an audit can re-run it.

Precedence when several rules match: UPDATE_DELETE > UPDATE_UPDATE >
VERSION_MISMATCH.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from apps.sync.models import OperationType, SyncConflict

ConflictType = SyncConflict.ConflictType


@dataclass(frozen=True)
class ServerState:
    """
    Authoritative state of one entity as seen by the sync engine.

    Attributes:
        data: Current snapshot (last snapshot before deletion for tombstones),
            or None if the entity never existed.
        version: Current version marker. For tombstones, the version at deletion.
        deleted: True if the entity has been deleted on the server.
        known_versions: Every version the server has held, when the owning
            module keeps history. When None, versions are assumed to be the
            contiguous range 0..version.
    """

    data: dict[str, Any] | None = None
    version: int | None = None
    deleted: bool = False
    known_versions: frozenset[int] | None = None

    @classmethod
    def missing(cls) -> ServerState:
        """State of an entity the server has never held."""
        return cls()

    @property
    def exists(self) -> bool:
        return not self.deleted and (self.data is not None or self.version is not None)

    def has_held(self, version: int) -> bool:
        """Whether the server ever held the given version of this entity."""
        if self.known_versions is not None:
            return version in self.known_versions
        if self.version is None:
            return False
        return 0 <= version <= self.version


def detect_conflict(
    state: ServerState,
    operation_type: str,
    base_version: int | None,
) -> ConflictType | None:
    """
    Classify a client mutation against server state.

    Args:
        state: Current server state for (entity_type, entity_id)
        operation_type: INSERT, UPDATE or DELETE
        base_version: Version the client last synced from, or None if unknown

    Returns:
        The conflict type, or None when the mutation can be applied directly.
    """
    # Deleting an already-deleted record is an idempotent no-op
    if state.deleted and operation_type == OperationType.DELETE:
        return None

    if state.deleted and operation_type == OperationType.UPDATE:
        if base_version is None or state.version is None or state.version > base_version:
            return ConflictType.UPDATE_DELETE

    if base_version is None:
        return None

    if (
        operation_type in (OperationType.UPDATE, OperationType.DELETE)
        and state.version is not None
        and state.version > base_version
    ):
        return ConflictType.UPDATE_UPDATE

    if not state.has_held(base_version):
        return ConflictType.VERSION_MISMATCH

    return None
