"""
Sync engine services.

Sync queue management and the conflict store: enqueueing client mutations,
claiming them for processing, recording their outcome, and detecting,
resolving or ignoring conflicts.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.db import transaction
from django.db.models import F, Q, QuerySet
from django.utils import timezone

from apps.core.logging import get_logger
from apps.sync.exceptions import (
    ConflictUnresolvedError,
    InvalidStateError,
    RetryExhaustedError,
    UnsupportedMergeError,
    ValidationError,
)
from apps.sync.models import (
    MAX_PRIORITY,
    MAX_RETRIES,
    MIN_PRIORITY,
    MIN_RETRIES,
    OperationType,
    SyncConflict,
    SyncQueueItem,
)
from apps.sync.registry import SyncRegistry
from apps.sync.resolver import NeedsManual, resolve

if TYPE_CHECKING:
    from apps.sync.detector import ServerState
    from apps.sync.models import SyncLog

logger = get_logger(__name__)

# resolved_by identity recorded for automatic strategies
SYSTEM_IDENTITY = "system"

Status = SyncQueueItem.Status
ConflictStatus = SyncConflict.Status
Strategy = SyncConflict.Strategy

DUE_STATUSES = (Status.PENDING, Status.FAILED)


# ---------------------------------------------------------------------------
# Sync queue
# ---------------------------------------------------------------------------


def _validate_priority(priority: int) -> None:
    if not isinstance(priority, int) or not MIN_PRIORITY <= priority <= MAX_PRIORITY:
        raise ValidationError(f"Priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}")


def _validate_max_retries(max_retries: int) -> None:
    if not isinstance(max_retries, int) or not MIN_RETRIES <= max_retries <= MAX_RETRIES:
        raise ValidationError(f"max_retries must be between {MIN_RETRIES} and {MAX_RETRIES}")


def _validate_base_version(base_version: int | None) -> None:
    if base_version is not None and base_version < 0:
        raise ValidationError("base_version must be >= 0")


def _validate_snapshot(data_snapshot: Any) -> dict[str, Any]:
    if data_snapshot is None:
        return {}
    if not isinstance(data_snapshot, dict):
        raise ValidationError("data_snapshot must be a JSON object")
    return data_snapshot


def enqueue(
    user_id: int,
    device_id: str,
    entity_type: str,
    entity_id: str,
    operation_type: str,
    data_snapshot: dict[str, Any] | None = None,
    priority: int = 5,
    max_retries: int | None = None,
    base_version: int | None = None,
) -> SyncQueueItem:
    """
    Queue a client mutation for server application.

    Raises:
        ValidationError: Missing target or operation, or priority / max_retries
            out of range. Nothing is persisted.
    """
    if not device_id:
        raise ValidationError("device_id is required")
    if not entity_type:
        raise ValidationError("entity_type is required")
    if entity_id is None or str(entity_id) == "":
        raise ValidationError("entity_id is required")
    if operation_type not in OperationType.values:
        raise ValidationError(
            f"operation_type must be one of {', '.join(OperationType.values)}"
        )
    _validate_priority(priority)
    if max_retries is None:
        max_retries = getattr(settings, "SYNC_DEFAULT_MAX_RETRIES", 3)
    _validate_max_retries(max_retries)
    _validate_base_version(base_version)

    item = SyncQueueItem.objects.create(
        user_id=user_id,
        device_id=device_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        operation_type=operation_type,
        data_snapshot=_validate_snapshot(data_snapshot),
        base_version=base_version,
        priority=priority,
        max_retries=max_retries,
        status=Status.PENDING,
        retry_count=0,
    )

    logger.info(
        "sync_item_enqueued",
        item_id=item.id,
        device_id=device_id,
        entity_type=entity_type,
        entity_id=item.entity_id,
        operation_type=operation_type,
        priority=priority,
    )
    return item


def due_items(user_id: int, device_id: str) -> QuerySet[SyncQueueItem]:
    """Items eligible for processing, in processing order."""
    return (
        SyncQueueItem.objects.filter(
            user_id=user_id,
            device_id=device_id,
            status__in=DUE_STATUSES,
            retry_count__lt=F("max_retries"),
        )
        .order_by("priority", "created_at", "id")
    )


def dequeue_due(
    user_id: int,
    device_id: str,
    limit: int,
    session: SyncLog | None = None,
    exclude_ids: Iterable[int] = (),
) -> list[SyncQueueItem]:
    """
    Claim up to ``limit`` due items and mark them IN_PROGRESS.

    Uses SELECT FOR UPDATE SKIP LOCKED so concurrent workers never wait on or
    receive each other's rows, and a conditional UPDATE as the claim itself so
    an item is only handed out if it is still PENDING/FAILED at claim time.
    """
    if limit < 1:
        return []

    now = timezone.now()
    claimed: list[SyncQueueItem] = []

    with transaction.atomic():
        candidates = list(
            due_items(user_id, device_id)
            .select_for_update(skip_locked=True)
            .exclude(id__in=list(exclude_ids))[:limit]
        )

        for item in candidates:
            updated = SyncQueueItem.objects.filter(id=item.id, status__in=DUE_STATUSES).update(
                status=Status.IN_PROGRESS,
                claimed_at=now,
                session=session,
                updated_at=now,
            )
            if not updated:
                continue
            item.status = Status.IN_PROGRESS
            item.claimed_at = now
            item.session = session
            item.updated_at = now
            claimed.append(item)

    if claimed:
        logger.debug(
            "sync_items_claimed",
            device_id=device_id,
            count=len(claimed),
            item_ids=[i.id for i in claimed],
        )
    return claimed


def _transition(item_id: int, allowed: Iterable[str], action: str) -> SyncQueueItem:
    """Lock an item and check it is in one of the allowed states."""
    item = SyncQueueItem.objects.select_for_update().get(id=item_id)
    if item.status not in allowed:
        raise InvalidStateError(f"Cannot {action} item {item_id} in status {item.status}")
    return item


def mark_synced(item_id: int) -> SyncQueueItem:
    """IN_PROGRESS -> SYNCED."""
    with transaction.atomic():
        item = _transition(item_id, [Status.IN_PROGRESS], "mark synced")
        item.status = Status.SYNCED
        item.synced_at = timezone.now()
        item.error_message = ""
        item.save(update_fields=["status", "synced_at", "error_message", "updated_at"])

    logger.info("sync_item_synced", item_id=item.id, entity_type=item.entity_type)
    return item


def mark_failed(item_id: int, message: str) -> SyncQueueItem:
    """
    IN_PROGRESS -> FAILED, counting the attempt.

    Once retry_count reaches max_retries the item is terminal: it stays
    FAILED and is never dequeued again.
    """
    with transaction.atomic():
        item = _transition(item_id, [Status.IN_PROGRESS], "mark failed")
        item.status = Status.FAILED
        item.retry_count += 1
        item.error_message = message[:1000]
        item.save(update_fields=["status", "retry_count", "error_message", "updated_at"])

    logger.warning(
        "sync_item_failed",
        item_id=item.id,
        entity_type=item.entity_type,
        entity_id=item.entity_id,
        retry_count=item.retry_count,
        max_retries=item.max_retries,
        exhausted=not item.can_retry,
        error=item.error_message,
    )
    return item


def mark_conflict(item_id: int, conflict_id: int) -> SyncQueueItem:
    """IN_PROGRESS -> CONFLICT, linking the detected conflict."""
    with transaction.atomic():
        item = _transition(item_id, [Status.IN_PROGRESS], "mark conflict on")
        item.status = Status.CONFLICT
        item.conflict_id = conflict_id
        item.save(update_fields=["status", "conflict", "updated_at"])
    return item


def retry(item_id: int) -> SyncQueueItem:
    """
    FAILED -> PENDING.

    Raises:
        RetryExhaustedError: retry_count >= max_retries
        ConflictUnresolvedError: Item is waiting on conflict resolution
        InvalidStateError: Item is not FAILED
    """
    with transaction.atomic():
        item = SyncQueueItem.objects.select_for_update().get(id=item_id)
        if item.status == Status.CONFLICT:
            raise ConflictUnresolvedError(
                f"Item {item_id} is in conflict; resolve conflict {item.conflict_id} first"
            )
        if item.status != Status.FAILED:
            raise InvalidStateError("Only FAILED items can be retried")
        if not item.can_retry:
            raise RetryExhaustedError(
                f"Maximum retry attempts reached ({item.max_retries})"
            )
        item.status = Status.PENDING
        item.save(update_fields=["status", "updated_at"])

    logger.info("sync_item_retry_queued", item_id=item.id, retry_count=item.retry_count)
    return item


def update_item(
    item_id: int,
    data_snapshot: dict[str, Any] | None = None,
    priority: int | None = None,
    base_version: int | None = None,
) -> SyncQueueItem:
    """
    Client edit of a queued mutation; only PENDING/FAILED items are editable.

    Changing the snapshot or base version unlinks any earlier conflict so
    the edited mutation is checked again on the next session.
    """
    if priority is not None:
        _validate_priority(priority)
    _validate_base_version(base_version)

    with transaction.atomic():
        item = _transition(item_id, SyncQueueItem.CLIENT_EDITABLE_STATUSES, "update")
        update_fields = ["updated_at"]
        if data_snapshot is not None:
            item.data_snapshot = _validate_snapshot(data_snapshot)
            update_fields.append("data_snapshot")
        if priority is not None:
            item.priority = priority
            update_fields.append("priority")
        if base_version is not None:
            item.base_version = base_version
            update_fields.append("base_version")
        if item.conflict_id is not None and (
            data_snapshot is not None or base_version is not None
        ):
            item.conflict = None
            update_fields.append("conflict")
        item.save(update_fields=update_fields)
    return item


def delete_item(item_id: int) -> None:
    """Client removal of a queued mutation; only PENDING/FAILED items can be deleted."""
    with transaction.atomic():
        item = _transition(item_id, SyncQueueItem.CLIENT_EDITABLE_STATUSES, "delete")
        item.delete()
    logger.info("sync_item_deleted", item_id=item_id)


def clear_pending(user_id: int, device_id: str) -> int:
    """Delete a device's PENDING/FAILED items. Returns the number removed."""
    deleted, _ = SyncQueueItem.objects.filter(
        user_id=user_id,
        device_id=device_id,
        status__in=SyncQueueItem.CLIENT_EDITABLE_STATUSES,
    ).delete()
    logger.info("sync_queue_cleared", device_id=device_id, count=deleted)
    return deleted


def list_items(
    user_id: int | None = None,
    device_id: str | None = None,
    status: str | None = None,
    entity_type: str | None = None,
) -> QuerySet[SyncQueueItem]:
    qs = SyncQueueItem.objects.all()
    if user_id is not None:
        qs = qs.filter(user_id=user_id)
    if device_id:
        qs = qs.filter(device_id=device_id)
    if status:
        qs = qs.filter(status=status)
    if entity_type:
        qs = qs.filter(entity_type=entity_type)
    return qs.order_by("priority", "created_at", "id")


def items_needing_attention(user_id: int, device_id: str) -> QuerySet[SyncQueueItem]:
    """FAILED items past max retries and CONFLICT items awaiting manual resolution."""
    return (
        SyncQueueItem.objects.filter(user_id=user_id, device_id=device_id)
        .filter(
            Q(status=Status.FAILED, retry_count__gte=F("max_retries"))
            | Q(status=Status.CONFLICT, conflict__status=ConflictStatus.DETECTED)
        )
        .order_by("priority", "created_at", "id")
    )


def release_resolved(item_id: int) -> SyncQueueItem:
    """
    CONFLICT -> PENDING once the linked conflict is RESOLVED.

    Raises:
        ConflictUnresolvedError: The linked conflict is not RESOLVED
        InvalidStateError: Item is not in CONFLICT
    """
    with transaction.atomic():
        item = _transition(item_id, [Status.CONFLICT], "release")
        if item.conflict is None or item.conflict.status != ConflictStatus.RESOLVED:
            raise ConflictUnresolvedError(f"Conflict for item {item_id} is not resolved")
        item.status = Status.PENDING
        item.save(update_fields=["status", "updated_at"])
    return item


def revert_claims(queryset: QuerySet[SyncQueueItem]) -> int:
    """Return IN_PROGRESS items in ``queryset`` to PENDING. Returns the count."""
    return queryset.filter(status=Status.IN_PROGRESS).update(
        status=Status.PENDING,
        claimed_at=None,
        session=None,
        updated_at=timezone.now(),
    )


def recover_stale_items(older_than: timedelta | None = None) -> int:
    """
    Crash recovery: revert items stuck IN_PROGRESS past the staleness threshold.

    Default threshold is SYNC_STALE_ITEM_MINUTES (15 minutes).
    """
    if older_than is None:
        older_than = timedelta(minutes=getattr(settings, "SYNC_STALE_ITEM_MINUTES", 15))
    cutoff = timezone.now() - older_than
    reverted = revert_claims(
        SyncQueueItem.objects.filter(Q(claimed_at__lt=cutoff) | Q(claimed_at__isnull=True))
    )
    if reverted:
        logger.warning("sync_stale_items_recovered", count=reverted, cutoff=cutoff.isoformat())
    return reverted


# ---------------------------------------------------------------------------
# Conflict store
# ---------------------------------------------------------------------------


def record_conflict(
    item: SyncQueueItem,
    state: ServerState,
    conflict_type: str,
) -> SyncConflict:
    """Persist a DETECTED conflict with the snapshots and detector inputs."""
    conflict = SyncConflict.objects.create(
        user_id=item.user_id,
        device_id=item.device_id,
        entity_type=item.entity_type,
        entity_id=item.entity_id,
        operation_type=item.operation_type,
        server_data=state.data or {},
        client_data=item.data_snapshot or {},
        base_version=item.base_version,
        server_version=state.version,
        server_deleted=state.deleted,
        conflict_type=conflict_type,
        status=ConflictStatus.DETECTED,
    )

    logger.warning(
        "sync_conflict_detected",
        conflict_id=conflict.id,
        item_id=item.id,
        device_id=item.device_id,
        entity_type=item.entity_type,
        entity_id=item.entity_id,
        conflict_type=conflict_type,
        base_version=item.base_version,
        server_version=state.version,
    )
    return conflict


def resolve_conflict(
    conflict_id: int,
    strategy: str,
    resolved_by: str,
    resolved_data: dict[str, Any] | None = None,
) -> SyncConflict:
    """
    Resolve a DETECTED conflict and release its queue items back to PENDING.

    MANUAL without ``resolved_data`` records the strategy and leaves the
    conflict DETECTED.

    Raises:
        InvalidStateError: Conflict is already RESOLVED or IGNORED
        UnsupportedMergeError: MERGE without a registered merge function; the
            conflict's strategy is reverted to MANUAL and it stays DETECTED
        ValidationError: Unknown strategy
    """
    if strategy not in Strategy.values:
        raise ValidationError(f"Unknown resolution strategy: {strategy}")
    if resolved_data is not None and not isinstance(resolved_data, dict):
        raise ValidationError("resolved_data must be a JSON object")

    merge_error: UnsupportedMergeError | None = None

    with transaction.atomic():
        conflict = SyncConflict.objects.select_for_update().get(id=conflict_id)
        if conflict.status != ConflictStatus.DETECTED:
            raise InvalidStateError(f"Conflict {conflict_id} is already {conflict.status}")

        try:
            outcome = resolve(
                server_data=conflict.server_data,
                client_data=conflict.client_data,
                strategy=strategy,
                merge=SyncRegistry.get_merger(conflict.entity_type),
                manual_data=resolved_data if strategy == Strategy.MANUAL else None,
            )
        except UnsupportedMergeError as e:
            conflict.resolution_strategy = Strategy.MANUAL
            conflict.save(update_fields=["resolution_strategy"])
            merge_error = e
        else:
            if isinstance(outcome, NeedsManual):
                conflict.resolution_strategy = Strategy.MANUAL
                conflict.save(update_fields=["resolution_strategy"])
            else:
                _mark_resolved(conflict, strategy, outcome.data, resolved_by)

    if merge_error is not None:
        logger.warning(
            "sync_conflict_merge_unsupported",
            conflict_id=conflict_id,
            entity_type=conflict.entity_type,
        )
        raise UnsupportedMergeError(
            f"No merge function registered for entity type {conflict.entity_type}"
        ) from merge_error

    return conflict


def _mark_resolved(
    conflict: SyncConflict,
    strategy: str,
    data: dict[str, Any],
    resolved_by: str,
) -> None:
    now = timezone.now()
    conflict.status = ConflictStatus.RESOLVED
    conflict.resolution_strategy = strategy
    conflict.resolved_data = data
    conflict.resolved_by = resolved_by
    conflict.resolved_at = now
    conflict.save(
        update_fields=[
            "status",
            "resolution_strategy",
            "resolved_data",
            "resolved_by",
            "resolved_at",
        ]
    )

    released = SyncQueueItem.objects.filter(conflict=conflict, status=Status.CONFLICT).update(
        status=Status.PENDING,
        updated_at=now,
    )

    logger.info(
        "sync_conflict_resolved",
        conflict_id=conflict.id,
        strategy=strategy,
        resolved_by=resolved_by,
        released_items=released,
    )


def auto_resolve(conflict: SyncConflict) -> bool:
    """
    Resolve a conflict with its entity type's default strategy.

    Returns True if the conflict ended RESOLVED. MANUAL (the default) and
    unsupported MERGE leave it DETECTED for an operator.
    """
    strategy = SyncRegistry.get_default_strategy(conflict.entity_type) or getattr(
        settings, "SYNC_DEFAULT_RESOLUTION_STRATEGY", Strategy.MANUAL
    )
    if strategy == Strategy.MANUAL:
        return False

    try:
        resolved = resolve_conflict(conflict.id, strategy, resolved_by=SYSTEM_IDENTITY)
    except UnsupportedMergeError:
        return False
    return resolved.status == ConflictStatus.RESOLVED


def ignore_conflict(conflict_id: int) -> SyncConflict:
    """
    DETECTED -> IGNORED. Owning items stay CONFLICT permanently (audit only).

    Raises:
        InvalidStateError: Conflict is not DETECTED
    """
    with transaction.atomic():
        conflict = SyncConflict.objects.select_for_update().get(id=conflict_id)
        if conflict.status != ConflictStatus.DETECTED:
            raise InvalidStateError("Only detected conflicts can be ignored")
        conflict.status = ConflictStatus.IGNORED
        conflict.save(update_fields=["status"])

    logger.info("sync_conflict_ignored", conflict_id=conflict_id)
    return conflict


def list_conflicts(
    user_id: int | None = None,
    device_id: str | None = None,
    status: str | None = None,
    entity_type: str | None = None,
) -> QuerySet[SyncConflict]:
    qs = SyncConflict.objects.all()
    if user_id is not None:
        qs = qs.filter(user_id=user_id)
    if device_id:
        qs = qs.filter(device_id=device_id)
    if status:
        qs = qs.filter(status=status)
    if entity_type:
        qs = qs.filter(entity_type=entity_type)
    return qs
