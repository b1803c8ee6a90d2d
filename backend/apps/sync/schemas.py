"""
Pydantic schemas for sync API.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from ninja import Field, Schema

from apps.core.schemas import Snapshot

OperationTypeLiteral = Literal["INSERT", "UPDATE", "DELETE"]
QueueStatusLiteral = Literal["PENDING", "IN_PROGRESS", "SYNCED", "FAILED", "CONFLICT"]
StrategyLiteral = Literal["SERVER_WINS", "CLIENT_WINS", "MANUAL", "MERGE"]
ConflictStatusLiteral = Literal["DETECTED", "RESOLVED", "IGNORED"]
SyncTypeLiteral = Literal["FULL", "INCREMENTAL", "PUSH", "PULL"]
DirectionLiteral = Literal["UPLOAD", "DOWNLOAD", "BIDIRECTIONAL"]
DeviceTypeLiteral = Literal["ANDROID", "IOS"]


# --- Queue ---


class EnqueueRequest(Schema):
    """A client mutation to queue for server application."""

    user_id: int
    device_id: str = Field(..., min_length=1, max_length=100)
    entity_type: str = Field(..., min_length=1, max_length=64)
    entity_id: str = Field(..., min_length=1, max_length=64)
    operation_type: OperationTypeLiteral
    # Full record for INSERT, changed fields for UPDATE, may be empty for DELETE
    data_snapshot: Snapshot = Field(default_factory=dict)
    priority: int = Field(default=5, description="1 (highest) .. 10 (lowest)")
    max_retries: int | None = Field(default=None, description="1 .. 10, server default if omitted")
    base_version: int | None = Field(
        default=None,
        ge=0,
        description="Entity version the client last synced from",
    )


class QueueItemUpdateRequest(Schema):
    """Edit of a PENDING or FAILED item. Omitted fields are left unchanged."""

    data_snapshot: Snapshot | None = None
    priority: int | None = None
    base_version: int | None = Field(default=None, ge=0)


class QueueListParams(Schema):
    """Query parameters for listing queue items."""

    user_id: int | None = None
    device_id: str | None = None
    status: QueueStatusLiteral | None = None
    entity_type: str | None = None


class ClearQueueParams(Schema):
    """Query parameters for clearing a device's unsynced items."""

    user_id: int
    device_id: str = Field(..., min_length=1)


class QueueItemOut(Schema):
    id: int
    user_id: int
    device_id: str
    entity_type: str
    entity_id: str
    operation_type: str
    data_snapshot: Snapshot
    base_version: int | None = None
    status: str
    priority: int
    retry_count: int
    max_retries: int
    error_message: str
    conflict_id: int | None = None
    created_at: datetime
    updated_at: datetime
    synced_at: datetime | None = None


class QueueItemListResponse(Schema):
    items: list[QueueItemOut]
    count: int


class ClearQueueResponse(Schema):
    deleted: int


# --- Processing ---


class ProcessParams(Schema):
    """Query parameters for running a sync session."""

    user_id: int
    device_id: str = Field(..., min_length=1, max_length=100)
    batch_size: int | None = Field(default=None, ge=1)
    device_type: DeviceTypeLiteral = "ANDROID"
    app_version: str = Field(default="", max_length=20)


class SessionReportOut(Schema):
    """Aggregate outcome of a sync run, plus the items the user must act on."""

    session_id: UUID
    status: str
    records_uploaded: int
    records_downloaded: int
    records_failed: int
    conflicts_detected: int
    conflicts_resolved: int
    duration_seconds: int | None = None
    error_message: str = ""
    needs_attention: list[QueueItemOut]


# --- Conflicts ---


class ConflictListParams(Schema):
    """Query parameters for listing conflicts."""

    user_id: int | None = None
    device_id: str | None = None
    status: ConflictStatusLiteral | None = None
    entity_type: str | None = None


class ConflictOut(Schema):
    id: int
    user_id: int
    device_id: str
    entity_type: str
    entity_id: str
    operation_type: str
    conflict_type: str
    server_data: Snapshot
    client_data: Snapshot
    base_version: int | None = None
    server_version: int | None = None
    server_deleted: bool
    status: str
    resolution_strategy: str | None = None
    resolved_data: Snapshot | None = None
    resolved_by: str
    resolved_at: datetime | None = None
    detected_at: datetime


class ConflictListResponse(Schema):
    conflicts: list[ConflictOut]
    count: int


class ResolveConflictRequest(Schema):
    """Operator or client decision on a detected conflict."""

    resolution_strategy: StrategyLiteral
    resolved_data: Snapshot | None = Field(
        default=None,
        description="Required to finish a MANUAL resolution; ignored otherwise",
    )
    resolved_by: str = Field(..., min_length=1, max_length=150)


# --- Sessions ---


class SyncLogCreateRequest(Schema):
    """Open a sync session for a device."""

    user_id: int
    device_id: str = Field(..., min_length=1, max_length=100)
    device_type: DeviceTypeLiteral = "ANDROID"
    app_version: str = Field(default="", max_length=20)
    sync_type: SyncTypeLiteral
    sync_direction: DirectionLiteral
    start: bool = Field(default=True, description="Move straight to IN_PROGRESS")


class SyncLogUpdateRequest(Schema):
    """
    Device progress report and/or state transition.

    Counter fields are increments, not absolute values.
    """

    status: Literal["IN_PROGRESS", "COMPLETED", "FAILED", "CANCELLED"] | None = None
    error_message: str = ""
    records_uploaded: int = Field(default=0, ge=0)
    records_downloaded: int = Field(default=0, ge=0)
    records_failed: int = Field(default=0, ge=0)
    conflicts_detected: int = Field(default=0, ge=0)
    conflicts_resolved: int = Field(default=0, ge=0)


class SyncLogOut(Schema):
    id: UUID
    user_id: int
    device_id: str
    device_type: str
    app_version: str
    sync_type: str
    sync_direction: str
    sync_status: str
    records_uploaded: int
    records_downloaded: int
    records_failed: int
    conflicts_detected: int
    conflicts_resolved: int
    error_message: str
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_seconds: int | None = None
    created_at: datetime


class StatisticsParams(Schema):
    user_id: int | None = None
    device_id: str | None = None


class StatisticsResponse(Schema):
    """Counts per status for sessions, queue items and conflicts."""

    sessions: dict[str, int]
    queue: dict[str, int]
    conflicts: dict[str, int]
    totals: dict[str, int]
    success_rate: float | None = Field(
        default=None,
        description="Completed / (completed + failed) sessions, percent",
    )
