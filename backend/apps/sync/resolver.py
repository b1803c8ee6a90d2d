"""
Conflict resolution.

Whole-record strategies only; field-level combination is delegated to the
per-entity-type merge function registered by the owning business module.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from apps.sync.exceptions import UnsupportedMergeError, ValidationError
from apps.sync.models import SyncConflict
from apps.sync.registry import MergeFunction

Strategy = SyncConflict.Strategy


@dataclass(frozen=True)
class Resolved:
    """Resolution succeeded; ``data`` is the state to apply."""

    data: dict[str, Any]


@dataclass(frozen=True)
class NeedsManual:
    """No automatic resolution; an operator must supply the data."""

    reason: str = "Manual resolution required"


Resolution = Resolved | NeedsManual


def resolve(
    server_data: dict[str, Any],
    client_data: dict[str, Any],
    strategy: str,
    merge: MergeFunction | None = None,
    manual_data: dict[str, Any] | None = None,
) -> Resolution:
    """
    Decide the resolved state for a conflict.

    Args:
        server_data: Server snapshot captured at detection time
        client_data: Client snapshot captured at detection time
        strategy: SERVER_WINS, CLIENT_WINS, MERGE or MANUAL
        merge: Merge function for the entity type (MERGE only)
        manual_data: Operator-supplied state (MANUAL only)

    Raises:
        UnsupportedMergeError: MERGE requested without a merge function
        ValidationError: Unknown strategy, or a merge function returned a non-object
    """
    if strategy == Strategy.SERVER_WINS:
        return Resolved(data=dict(server_data))

    if strategy == Strategy.CLIENT_WINS:
        return Resolved(data=dict(client_data))

    if strategy == Strategy.MERGE:
        if merge is None:
            raise UnsupportedMergeError("No merge function registered for this entity type")
        merged = merge(dict(server_data), dict(client_data))
        if not isinstance(merged, dict):
            raise ValidationError("Merge function must return a JSON object")
        return Resolved(data=merged)

    if strategy == Strategy.MANUAL:
        if manual_data is None:
            return NeedsManual()
        return Resolved(data=dict(manual_data))

    raise ValidationError(f"Unknown resolution strategy: {strategy}")
