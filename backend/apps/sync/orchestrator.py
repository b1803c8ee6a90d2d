"""
Sync session orchestration.

Drives one device's queue through detection, resolution and apply, and
records the outcome on a SyncLog. Per-item failures are captured on the item
and never abort the session; only infrastructure failures do.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any
from uuid import UUID

from django.conf import settings
from django.db import IntegrityError, InterfaceError, OperationalError, transaction
from django.db.models import Count, F, Sum
from django.utils import timezone

from apps.core.logging import get_logger, log_context
from apps.mobile.services import invalidate_keys
from apps.sync import services
from apps.sync.detector import detect_conflict
from apps.sync.exceptions import (
    ApplyUnavailableError,
    ConcurrentSyncError,
    InvalidStateError,
    ValidationError,
)
from apps.sync.models import OperationType, SyncConflict, SyncLog, SyncQueueItem
from apps.sync.registry import SyncRegistry

if TYPE_CHECKING:
    from apps.sync.registry import ApplyResult

logger = get_logger(__name__)

LogStatus = SyncLog.Status

# Errors that mean the session cannot make progress at all
SESSION_ERRORS = (ApplyUnavailableError, TimeoutError, OperationalError, InterfaceError)

COUNTER_FIELDS = (
    "records_uploaded",
    "records_downloaded",
    "records_failed",
    "conflicts_detected",
    "conflicts_resolved",
)


@dataclass
class SessionReport:
    """What the mobile client is told after a sync run."""

    session_id: UUID
    status: str
    records_uploaded: int = 0
    records_downloaded: int = 0
    records_failed: int = 0
    conflicts_detected: int = 0
    conflicts_resolved: int = 0
    duration_seconds: int | None = None
    error_message: str = ""
    needs_attention: list[SyncQueueItem] = field(default_factory=list)

    @classmethod
    def from_log(cls, log: SyncLog, needs_attention: list[SyncQueueItem]) -> SessionReport:
        return cls(
            session_id=log.id,
            status=log.sync_status,
            records_uploaded=log.records_uploaded,
            records_downloaded=log.records_downloaded,
            records_failed=log.records_failed,
            conflicts_detected=log.conflicts_detected,
            conflicts_resolved=log.conflicts_resolved,
            duration_seconds=log.duration_seconds,
            error_message=log.error_message,
            needs_attention=needs_attention,
        )


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------


def open_session(
    user_id: int,
    device_id: str,
    sync_type: str = SyncLog.SyncType.PUSH,
    sync_direction: str = SyncLog.Direction.UPLOAD,
    device_type: str = SyncLog.DeviceType.ANDROID,
    app_version: str = "",
) -> SyncLog:
    """Create an INITIATED session record."""
    if not device_id:
        raise ValidationError("device_id is required")
    if sync_type not in SyncLog.SyncType.values:
        raise ValidationError(f"Unknown sync_type: {sync_type}")
    if sync_direction not in SyncLog.Direction.values:
        raise ValidationError(f"Unknown sync_direction: {sync_direction}")
    if device_type not in SyncLog.DeviceType.values:
        raise ValidationError(f"Unknown device_type: {device_type}")

    log = SyncLog.objects.create(
        user_id=user_id,
        device_id=device_id,
        device_type=device_type,
        app_version=app_version,
        sync_type=sync_type,
        sync_direction=sync_direction,
        sync_status=LogStatus.INITIATED,
    )
    logger.info(
        "sync_session_opened",
        sync_session_id=str(log.id),
        device_id=device_id,
        sync_type=sync_type,
    )
    return log


def begin_session(log_id: UUID) -> SyncLog:
    """
    INITIATED -> IN_PROGRESS.

    Raises:
        ConcurrentSyncError: The device already has a session in progress
        InvalidStateError: Session is not INITIATED
    """
    try:
        with transaction.atomic():
            log = SyncLog.objects.select_for_update().get(id=log_id)
            if log.sync_status != LogStatus.INITIATED:
                raise InvalidStateError(f"Cannot start session in status {log.sync_status}")

            active = (
                SyncLog.objects.filter(
                    user_id=log.user_id,
                    device_id=log.device_id,
                    sync_status=LogStatus.IN_PROGRESS,
                )
                .exclude(id=log.id)
                .exists()
            )
            if active:
                raise ConcurrentSyncError(
                    f"Device {log.device_id} already has a sync session in progress"
                )

            log.sync_status = LogStatus.IN_PROGRESS
            log.started_at = timezone.now()
            log.save(update_fields=["sync_status", "started_at", "updated_at"])
    except IntegrityError:
        # Lost the race on the one-in-progress-per-device constraint
        raise ConcurrentSyncError("Device already has a sync session in progress") from None

    logger.info("sync_session_started", sync_session_id=str(log.id), device_id=log.device_id)
    return log


def start_session(
    user_id: int,
    device_id: str,
    sync_type: str = SyncLog.SyncType.PUSH,
    sync_direction: str = SyncLog.Direction.UPLOAD,
    device_type: str = SyncLog.DeviceType.ANDROID,
    app_version: str = "",
) -> SyncLog:
    """Open and begin a session; nothing is persisted if the device is busy."""
    with transaction.atomic():
        log = open_session(
            user_id=user_id,
            device_id=device_id,
            sync_type=sync_type,
            sync_direction=sync_direction,
            device_type=device_type,
            app_version=app_version,
        )
        return begin_session(log.id)


def _finish(log: SyncLog, status: str, message: str = "") -> None:
    now = timezone.now()
    start = log.started_at or log.created_at
    log.sync_status = status
    log.completed_at = now
    log.duration_seconds = max(0, int((now - start).total_seconds()))
    update_fields = ["sync_status", "completed_at", "duration_seconds", "updated_at"]
    if message:
        log.error_message = message[:1000]
        update_fields.append("error_message")
    log.save(update_fields=update_fields)


def complete_session(log_id: UUID) -> SyncLog:
    """IN_PROGRESS -> COMPLETED. Partial success still completes."""
    with transaction.atomic():
        log = SyncLog.objects.select_for_update().get(id=log_id)
        if log.sync_status != LogStatus.IN_PROGRESS:
            raise InvalidStateError(f"Cannot complete session in status {log.sync_status}")
        _finish(log, LogStatus.COMPLETED)

    logger.info(
        "sync_session_completed",
        sync_session_id=str(log.id),
        device_id=log.device_id,
        records_uploaded=log.records_uploaded,
        records_failed=log.records_failed,
        conflicts_detected=log.conflicts_detected,
        conflicts_resolved=log.conflicts_resolved,
        duration_seconds=log.duration_seconds,
    )
    return log


def fail_session(log_id: UUID, message: str) -> SyncLog:
    """
    Mark a live session FAILED and return its claimed items to PENDING.

    Raises:
        InvalidStateError: Session is already terminal
    """
    with transaction.atomic():
        log = SyncLog.objects.select_for_update().get(id=log_id)
        if log.is_terminal:
            raise InvalidStateError(f"Cannot fail session in status {log.sync_status}")
        _finish(log, LogStatus.FAILED, message)
        reverted = services.revert_claims(SyncQueueItem.objects.filter(session=log))

    logger.error(
        "sync_session_failed",
        sync_session_id=str(log.id),
        device_id=log.device_id,
        error=message,
        reverted_items=reverted,
    )
    return log


def cancel_session(log_id: UUID) -> SyncLog:
    """
    INITIATED/IN_PROGRESS -> CANCELLED.

    Items already SYNCED stay synced; items still claimed go back to PENDING.
    """
    with transaction.atomic():
        log = SyncLog.objects.select_for_update().get(id=log_id)
        if log.is_terminal:
            raise InvalidStateError(f"Cannot cancel session in status {log.sync_status}")
        _finish(log, LogStatus.CANCELLED)
        reverted = services.revert_claims(SyncQueueItem.objects.filter(session=log))

    logger.info(
        "sync_session_cancelled",
        sync_session_id=str(log.id),
        device_id=log.device_id,
        reverted_items=reverted,
    )
    return log


def update_counters(log_id: UUID, **increments: int) -> SyncLog:
    """
    Add device-reported counts (e.g. records_downloaded) to a live session.

    Counters only ever grow, so increments must be non-negative.
    """
    unknown = set(increments) - set(COUNTER_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown counters: {', '.join(sorted(unknown))}")
    if any(value < 0 for value in increments.values()):
        raise ValidationError("Counter increments must be >= 0")

    with transaction.atomic():
        log = SyncLog.objects.select_for_update().get(id=log_id)
        if log.is_terminal:
            raise InvalidStateError(f"Cannot update counters of a {log.sync_status} session")
        _bump(log.id, **increments)
        log.refresh_from_db()
    return log


def _bump(log_id: UUID, **increments: int) -> None:
    changes = {name: F(name) + value for name, value in increments.items() if value}
    if changes:
        SyncLog.objects.filter(id=log_id).update(**changes)


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------


def _batch_size(requested: int | None) -> int:
    default = getattr(settings, "SYNC_BATCH_SIZE", 50)
    maximum = getattr(settings, "SYNC_MAX_BATCH_SIZE", 500)
    if requested is None:
        return default
    if requested < 1:
        raise ValidationError("batch_size must be >= 1")
    return min(requested, maximum)


def _is_live(log_id: UUID) -> bool:
    return SyncLog.objects.filter(id=log_id, sync_status=LogStatus.IN_PROGRESS).exists()


def _apply(
    item: SyncQueueItem, data: dict[str, Any], operation_type: str | None = None
) -> ApplyResult | None:
    applier = SyncRegistry.get_applier(item.entity_type)
    operation_type = operation_type or item.operation_type
    result = applier(item.entity_type, item.entity_id, operation_type, dict(data))
    invalidate_keys(SyncRegistry.get_cache_keys(item.entity_type, item.entity_id))
    return result


def _process_item(log: SyncLog, item: SyncQueueItem) -> None:
    """Run one claimed item to SYNCED or CONFLICT."""
    if item.conflict_id is not None:
        conflict = SyncConflict.objects.get(id=item.conflict_id)
        if conflict.status == SyncConflict.Status.RESOLVED:
            # Already decided; re-running detection would flag it again
            strategy = conflict.resolution_strategy
            if strategy != SyncConflict.Strategy.SERVER_WINS:
                operation_type = item.operation_type
                if (
                    operation_type == OperationType.DELETE
                    and strategy != SyncConflict.Strategy.CLIENT_WINS
                ):
                    # Merged or hand-written data replaces the delete
                    operation_type = OperationType.UPDATE
                _apply(item, conflict.resolved_data or {}, operation_type)
                _bump(log.id, records_uploaded=1)
            services.mark_synced(item.id)
            return

    loader = SyncRegistry.get_state_loader(item.entity_type)
    state = loader(item.entity_type, item.entity_id)
    conflict_type = detect_conflict(state, item.operation_type, item.base_version)

    if conflict_type is not None:
        conflict = services.record_conflict(item, state, conflict_type)
        services.mark_conflict(item.id, conflict.id)
        _bump(log.id, conflicts_detected=1)
        if services.auto_resolve(conflict):
            _bump(log.id, conflicts_resolved=1)
        return

    result = _apply(item, item.data_snapshot)
    services.mark_synced(item.id)
    _bump(log.id, records_uploaded=1)
    logger.debug(
        "sync_item_applied",
        item_id=item.id,
        entity_type=item.entity_type,
        entity_id=item.entity_id,
        server_version=result.version if result else None,
    )


def process_session(log_id: UUID, batch_size: int | None = None) -> SyncLog:
    """
    Drain the device's due queue items for an IN_PROGRESS session.

    Each item is claimed at most once per session. Stops when the queue is
    empty, the session is cancelled, or SYNC_SESSION_TIMEOUT_SECONDS is spent.

    Raises:
        InvalidStateError: Session is not IN_PROGRESS
        ApplyUnavailableError: Authoritative store unreachable; the session
            has been failed and its claimed items returned to PENDING
    """
    log = SyncLog.objects.get(id=log_id)
    if log.sync_status != LogStatus.IN_PROGRESS:
        raise InvalidStateError(f"Cannot process session in status {log.sync_status}")

    limit = _batch_size(batch_size)
    budget = getattr(settings, "SYNC_SESSION_TIMEOUT_SECONDS", 300)
    deadline = time.monotonic() + budget
    seen: set[int] = set()
    stop_reason = "drained"

    with log_context(sync_session_id=str(log.id), device_id=log.device_id):
        try:
            while stop_reason == "drained":
                batch = services.dequeue_due(
                    log.user_id, log.device_id, limit, session=log, exclude_ids=seen
                )
                if not batch:
                    break

                for item in batch:
                    seen.add(item.id)
                    if time.monotonic() >= deadline:
                        stop_reason = "time_budget_spent"
                        break
                    if not _is_live(log.id):
                        stop_reason = "cancelled"
                        break
                    _run_item(log, item)

        except SESSION_ERRORS as e:
            fail_session(log.id, f"Sync aborted: {e}")
            raise ApplyUnavailableError(str(e) or "Authoritative store unavailable") from e

        # Anything claimed but not reached goes back to the queue
        services.revert_claims(SyncQueueItem.objects.filter(session=log))

        log.refresh_from_db()
        logger.info(
            "sync_session_processed",
            stop_reason=stop_reason,
            items_seen=len(seen),
            records_uploaded=log.records_uploaded,
            records_failed=log.records_failed,
            conflicts_detected=log.conflicts_detected,
        )
    return log


def _run_item(log: SyncLog, item: SyncQueueItem) -> None:
    try:
        _process_item(log, item)
    except SESSION_ERRORS:
        raise
    except InvalidStateError:
        # Claim was released underneath us (cancel or stale recovery)
        logger.info("sync_item_claim_lost", item_id=item.id)
    except Exception as e:
        logger.warning(
            "sync_item_processing_error",
            item_id=item.id,
            entity_type=item.entity_type,
            entity_id=item.entity_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        services.mark_failed(item.id, str(e) or type(e).__name__)
        _bump(log.id, records_failed=1)


def run_sync(
    user_id: int,
    device_id: str,
    sync_type: str = SyncLog.SyncType.PUSH,
    sync_direction: str = SyncLog.Direction.UPLOAD,
    device_type: str = SyncLog.DeviceType.ANDROID,
    app_version: str = "",
    batch_size: int | None = None,
) -> SessionReport:
    """Start, process and complete a session for one device."""
    log = start_session(
        user_id=user_id,
        device_id=device_id,
        sync_type=sync_type,
        sync_direction=sync_direction,
        device_type=device_type,
        app_version=app_version,
    )
    log = process_session(log.id, batch_size=batch_size)
    if log.sync_status == LogStatus.IN_PROGRESS:
        log = complete_session(log.id)

    attention = list(services.items_needing_attention(user_id, device_id))
    return SessionReport.from_log(log, attention)


def recover_stale_sessions(older_than: timedelta | None = None) -> int:
    """
    Fail IN_PROGRESS sessions that started before the staleness threshold.

    Frees the per-device lock held by crashed workers. Default threshold is
    SYNC_STALE_SESSION_MINUTES (60 minutes).
    """
    if older_than is None:
        older_than = timedelta(minutes=getattr(settings, "SYNC_STALE_SESSION_MINUTES", 60))
    cutoff = timezone.now() - older_than

    stale_ids = list(
        SyncLog.objects.filter(
            sync_status=LogStatus.IN_PROGRESS,
            started_at__lt=cutoff,
        ).values_list("id", flat=True)
    )
    recovered = 0
    for log_id in stale_ids:
        try:
            fail_session(log_id, "Session timed out")
        except InvalidStateError:
            # Finished between the scan and the lock
            continue
        recovered += 1
    return recovered


def sync_statistics(user_id: int | None = None, device_id: str | None = None) -> dict[str, Any]:
    """Counts per session, queue and conflict status plus totals and success rate."""
    logs = SyncLog.objects.all()
    items = SyncQueueItem.objects.all()
    conflicts = SyncConflict.objects.all()
    if user_id is not None:
        logs = logs.filter(user_id=user_id)
        items = items.filter(user_id=user_id)
        conflicts = conflicts.filter(user_id=user_id)
    if device_id:
        logs = logs.filter(device_id=device_id)
        items = items.filter(device_id=device_id)
        conflicts = conflicts.filter(device_id=device_id)

    def by_status(qs, field_name: str, choices: list[str]) -> dict[str, int]:
        counts = dict.fromkeys(choices, 0)
        for row in qs.order_by().values(field_name).annotate(n=Count("id")):
            counts[row[field_name]] = row["n"]
        return counts

    sessions = by_status(logs, "sync_status", SyncLog.Status.values)
    totals = logs.aggregate(**{name: Sum(name) for name in COUNTER_FIELDS})

    finished = sessions[LogStatus.COMPLETED] + sessions[LogStatus.FAILED]
    success_rate = (
        round(sessions[LogStatus.COMPLETED] * 100 / finished, 2) if finished else None
    )

    return {
        "sessions": sessions,
        "queue": by_status(items, "status", SyncQueueItem.Status.values),
        "conflicts": by_status(conflicts, "status", SyncConflict.Status.values),
        "totals": {name: totals[name] or 0 for name in COUNTER_FIELDS},
        "success_rate": success_rate,
    }
