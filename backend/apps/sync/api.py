"""
Sync API endpoints.

Queue management, session runs, conflict resolution and session logs for
offline-first mobile clients.
"""

from uuid import UUID

from django.contrib.auth import get_user_model
from django.db import transaction
from django.http import HttpRequest
from ninja import Query, Router
from ninja.errors import HttpError

from apps.core.schemas import ErrorResponse
from apps.sync import orchestrator, services
from apps.sync.exceptions import (
    ApplyUnavailableError,
    ConcurrentSyncError,
    ConflictUnresolvedError,
    InvalidStateError,
    RetryExhaustedError,
    UnsupportedMergeError,
    ValidationError,
)
from apps.sync.models import SyncConflict, SyncLog, SyncQueueItem
from apps.sync.schemas import (
    ClearQueueParams,
    ClearQueueResponse,
    ConflictListParams,
    ConflictListResponse,
    ConflictOut,
    EnqueueRequest,
    ProcessParams,
    QueueItemListResponse,
    QueueItemOut,
    QueueItemUpdateRequest,
    QueueListParams,
    ResolveConflictRequest,
    SessionReportOut,
    StatisticsParams,
    StatisticsResponse,
    SyncLogCreateRequest,
    SyncLogOut,
    SyncLogUpdateRequest,
)


router = Router(tags=["sync"])

# Errors that mean "not allowed from the current state"
STATE_ERRORS = (InvalidStateError, ConflictUnresolvedError, RetryExhaustedError)


def _require_user(user_id: int) -> None:
    if not get_user_model().objects.filter(id=user_id).exists():
        raise HttpError(404, "User not found")


# --- Queue ---


@router.post(
    "/queue",
    response={201: QueueItemOut, 400: ErrorResponse, 404: ErrorResponse},
    summary="Enqueue mutation",
    description="Queue a client-originated INSERT, UPDATE or DELETE for server application.",
)
def enqueue_item(request: HttpRequest, payload: EnqueueRequest):
    _require_user(payload.user_id)

    try:
        item = services.enqueue(
            user_id=payload.user_id,
            device_id=payload.device_id,
            entity_type=payload.entity_type,
            entity_id=payload.entity_id,
            operation_type=payload.operation_type,
            data_snapshot=payload.data_snapshot,
            priority=payload.priority,
            max_retries=payload.max_retries,
            base_version=payload.base_version,
        )
    except ValidationError as e:
        raise HttpError(400, str(e)) from None

    return 201, QueueItemOut.from_orm(item)


@router.get(
    "/queue",
    response=QueueItemListResponse,
    summary="List queue items",
)
def list_queue(request: HttpRequest, params: Query[QueueListParams]) -> QueueItemListResponse:
    items = list(
        services.list_items(
            user_id=params.user_id,
            device_id=params.device_id,
            status=params.status,
            entity_type=params.entity_type,
        )
    )
    return QueueItemListResponse(
        items=[QueueItemOut.from_orm(item) for item in items],
        count=len(items),
    )


@router.delete(
    "/queue",
    response=ClearQueueResponse,
    summary="Clear device queue",
    description="Delete a device's PENDING and FAILED items (discard offline changes).",
)
def clear_queue(request: HttpRequest, params: Query[ClearQueueParams]) -> ClearQueueResponse:
    deleted = services.clear_pending(user_id=params.user_id, device_id=params.device_id)
    return ClearQueueResponse(deleted=deleted)


@router.patch(
    "/queue/{item_id}",
    response={200: QueueItemOut, 400: ErrorResponse, 404: ErrorResponse, 409: ErrorResponse},
    summary="Edit queue item",
)
def update_queue_item(request: HttpRequest, item_id: int, payload: QueueItemUpdateRequest):
    try:
        item = services.update_item(
            item_id,
            data_snapshot=payload.data_snapshot,
            priority=payload.priority,
            base_version=payload.base_version,
        )
    except SyncQueueItem.DoesNotExist:
        raise HttpError(404, "Queue item not found") from None
    except ValidationError as e:
        raise HttpError(400, str(e)) from None
    except InvalidStateError as e:
        raise HttpError(409, str(e)) from None

    return QueueItemOut.from_orm(item)


@router.delete(
    "/queue/{item_id}",
    response={204: None, 404: ErrorResponse, 409: ErrorResponse},
    summary="Delete queue item",
)
def delete_queue_item(request: HttpRequest, item_id: int):
    try:
        services.delete_item(item_id)
    except SyncQueueItem.DoesNotExist:
        raise HttpError(404, "Queue item not found") from None
    except InvalidStateError as e:
        raise HttpError(409, str(e)) from None

    return 204, None


@router.post(
    "/queue/{item_id}/retry",
    response={200: QueueItemOut, 404: ErrorResponse, 409: ErrorResponse},
    summary="Retry failed item",
    description="Return a FAILED item to PENDING while retries remain.",
)
def retry_queue_item(request: HttpRequest, item_id: int):
    try:
        item = services.retry(item_id)
    except SyncQueueItem.DoesNotExist:
        raise HttpError(404, "Queue item not found") from None
    except STATE_ERRORS as e:
        raise HttpError(409, str(e)) from None

    return QueueItemOut.from_orm(item)


# --- Processing ---


@router.post(
    "/process",
    response={
        200: SessionReportOut,
        400: ErrorResponse,
        404: ErrorResponse,
        409: ErrorResponse,
        503: ErrorResponse,
    },
    summary="Process queue for device",
    description="Run a sync session over the device's due queue items.",
)
def process_queue(request: HttpRequest, params: Query[ProcessParams]):
    _require_user(params.user_id)

    try:
        report = orchestrator.run_sync(
            user_id=params.user_id,
            device_id=params.device_id,
            device_type=params.device_type,
            app_version=params.app_version,
            batch_size=params.batch_size,
        )
    except ValidationError as e:
        raise HttpError(400, str(e)) from None
    except ConcurrentSyncError as e:
        raise HttpError(409, str(e)) from None
    except ApplyUnavailableError:
        raise HttpError(503, "Sync temporarily unavailable, please retry later") from None

    return SessionReportOut(
        session_id=report.session_id,
        status=report.status,
        records_uploaded=report.records_uploaded,
        records_downloaded=report.records_downloaded,
        records_failed=report.records_failed,
        conflicts_detected=report.conflicts_detected,
        conflicts_resolved=report.conflicts_resolved,
        duration_seconds=report.duration_seconds,
        error_message=report.error_message,
        needs_attention=[QueueItemOut.from_orm(item) for item in report.needs_attention],
    )


# --- Conflicts ---


@router.get(
    "/conflicts",
    response=ConflictListResponse,
    summary="List conflicts",
)
def list_conflicts(
    request: HttpRequest, params: Query[ConflictListParams]
) -> ConflictListResponse:
    conflicts = list(
        services.list_conflicts(
            user_id=params.user_id,
            device_id=params.device_id,
            status=params.status,
            entity_type=params.entity_type,
        )
    )
    return ConflictListResponse(
        conflicts=[ConflictOut.from_orm(c) for c in conflicts],
        count=len(conflicts),
    )


@router.post(
    "/conflicts/{conflict_id}/resolve",
    response={
        200: ConflictOut,
        400: ErrorResponse,
        404: ErrorResponse,
        409: ErrorResponse,
        422: ErrorResponse,
    },
    summary="Resolve conflict",
    description=(
        "Resolve with SERVER_WINS, CLIENT_WINS, MERGE or MANUAL. "
        "MANUAL without resolved_data leaves the conflict DETECTED."
    ),
)
def resolve_conflict(request: HttpRequest, conflict_id: int, payload: ResolveConflictRequest):
    try:
        conflict = services.resolve_conflict(
            conflict_id,
            strategy=payload.resolution_strategy,
            resolved_by=payload.resolved_by,
            resolved_data=payload.resolved_data,
        )
    except SyncConflict.DoesNotExist:
        raise HttpError(404, "Conflict not found") from None
    except ValidationError as e:
        raise HttpError(400, str(e)) from None
    except InvalidStateError as e:
        raise HttpError(409, str(e)) from None
    except UnsupportedMergeError as e:
        raise HttpError(422, str(e)) from None

    return ConflictOut.from_orm(conflict)


@router.post(
    "/conflicts/{conflict_id}/ignore",
    response={200: ConflictOut, 404: ErrorResponse, 409: ErrorResponse},
    summary="Ignore conflict",
    description="Keep the conflict for audit only; its queue items stay in CONFLICT.",
)
def ignore_conflict(request: HttpRequest, conflict_id: int):
    try:
        conflict = services.ignore_conflict(conflict_id)
    except SyncConflict.DoesNotExist:
        raise HttpError(404, "Conflict not found") from None
    except InvalidStateError as e:
        raise HttpError(409, str(e)) from None

    return ConflictOut.from_orm(conflict)


# --- Session logs ---


@router.post(
    "/logs",
    response={201: SyncLogOut, 400: ErrorResponse, 404: ErrorResponse, 409: ErrorResponse},
    summary="Open sync session",
)
def create_log(request: HttpRequest, payload: SyncLogCreateRequest):
    _require_user(payload.user_id)

    session_args = {
        "user_id": payload.user_id,
        "device_id": payload.device_id,
        "sync_type": payload.sync_type,
        "sync_direction": payload.sync_direction,
        "device_type": payload.device_type,
        "app_version": payload.app_version,
    }
    try:
        if payload.start:
            log = orchestrator.start_session(**session_args)
        else:
            log = orchestrator.open_session(**session_args)
    except ValidationError as e:
        raise HttpError(400, str(e)) from None
    except ConcurrentSyncError as e:
        raise HttpError(409, str(e)) from None

    return 201, SyncLogOut.from_orm(log)


@router.patch(
    "/logs/{log_id}",
    response={200: SyncLogOut, 400: ErrorResponse, 404: ErrorResponse, 409: ErrorResponse},
    summary="Update sync session",
    description="Add device-reported counters and/or move the session to a new status.",
)
def update_log(request: HttpRequest, log_id: UUID, payload: SyncLogUpdateRequest):
    increments = payload.model_dump(exclude={"status", "error_message"})

    try:
        with transaction.atomic():
            log = orchestrator.update_counters(log_id, **increments)
            if payload.status == SyncLog.Status.IN_PROGRESS:
                log = orchestrator.begin_session(log_id)
            elif payload.status == SyncLog.Status.COMPLETED:
                log = orchestrator.complete_session(log_id)
            elif payload.status == SyncLog.Status.FAILED:
                log = orchestrator.fail_session(
                    log_id, payload.error_message or "Reported as failed by device"
                )
            elif payload.status == SyncLog.Status.CANCELLED:
                log = orchestrator.cancel_session(log_id)
    except SyncLog.DoesNotExist:
        raise HttpError(404, "Sync log not found") from None
    except ValidationError as e:
        raise HttpError(400, str(e)) from None
    except (InvalidStateError, ConcurrentSyncError) as e:
        raise HttpError(409, str(e)) from None

    return SyncLogOut.from_orm(log)


@router.get(
    "/logs/{log_id}",
    response={200: SyncLogOut, 404: ErrorResponse},
    summary="Get sync session",
)
def get_log(request: HttpRequest, log_id: UUID):
    try:
        log = SyncLog.objects.get(id=log_id)
    except SyncLog.DoesNotExist:
        raise HttpError(404, "Sync log not found") from None
    return SyncLogOut.from_orm(log)


@router.get(
    "/statistics",
    response=StatisticsResponse,
    summary="Sync statistics",
)
def statistics(request: HttpRequest, params: Query[StatisticsParams]) -> StatisticsResponse:
    stats = orchestrator.sync_statistics(user_id=params.user_id, device_id=params.device_id)
    return StatisticsResponse(**stats)
