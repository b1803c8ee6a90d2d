"""
Sync engine models.

Queue of client mutations, detected conflicts, and per-session sync logs.
"""

from __future__ import annotations

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from uuid6 import uuid7

from apps.core.models import DeviceScopedModel, TimestampedModel

MIN_PRIORITY = 1
MAX_PRIORITY = 10
DEFAULT_PRIORITY = 5
MIN_RETRIES = 1
MAX_RETRIES = 10


class OperationType(models.TextChoices):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class SyncQueueItem(DeviceScopedModel, TimestampedModel):
    """
    One client-originated mutation waiting to be applied on the server.

    State machine:
        PENDING -> IN_PROGRESS            (dequeue_due)
        FAILED -> IN_PROGRESS             (dequeue_due, while retries remain)
        IN_PROGRESS -> SYNCED | FAILED | CONFLICT
        IN_PROGRESS -> PENDING            (session failure / stale recovery)
        FAILED -> PENDING                 (retry)
        CONFLICT -> PENDING               (conflict resolved)
    """

    class Status(models.TextChoices):
        PENDING = "PENDING"
        IN_PROGRESS = "IN_PROGRESS"
        SYNCED = "SYNCED"
        FAILED = "FAILED"
        CONFLICT = "CONFLICT"

    CLIENT_EDITABLE_STATUSES = (Status.PENDING, Status.FAILED)

    entity_type = models.CharField(max_length=64)
    entity_id = models.CharField(max_length=64)
    operation_type = models.CharField(max_length=10, choices=OperationType.choices)
    data_snapshot = models.JSONField(default=dict, blank=True)
    base_version = models.PositiveBigIntegerField(
        null=True,
        blank=True,
        help_text="Entity version the client last synced from (base marker)",
    )

    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.PENDING, db_index=True
    )
    priority = models.PositiveSmallIntegerField(
        default=DEFAULT_PRIORITY,
        validators=[MinValueValidator(MIN_PRIORITY), MaxValueValidator(MAX_PRIORITY)],
        help_text="1 (highest) .. 10 (lowest)",
    )
    retry_count = models.PositiveSmallIntegerField(default=0)
    max_retries = models.PositiveSmallIntegerField(
        default=3,
        validators=[MinValueValidator(MIN_RETRIES), MaxValueValidator(MAX_RETRIES)],
    )
    error_message = models.TextField(blank=True, default="")
    synced_at = models.DateTimeField(null=True, blank=True)

    # Claim bookkeeping for session failure and crash recovery
    claimed_at = models.DateTimeField(null=True, blank=True)
    session = models.ForeignKey(
        "sync.SyncLog",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="queue_items",
    )
    conflict = models.ForeignKey(
        "sync.SyncConflict",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="queue_items",
    )

    class Meta:
        ordering = ["priority", "created_at", "id"]
        indexes = [
            models.Index(
                fields=["user", "device_id", "status", "priority", "created_at"],
                name="sync_queue_due_idx",
            ),
            models.Index(fields=["entity_type", "entity_id"], name="sync_queue_entity_idx"),
            models.Index(fields=["status", "claimed_at"], name="sync_queue_claimed_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(priority__gte=MIN_PRIORITY, priority__lte=MAX_PRIORITY),
                name="sync_queue_priority_range",
            ),
            models.CheckConstraint(
                condition=models.Q(max_retries__gte=MIN_RETRIES, max_retries__lte=MAX_RETRIES),
                name="sync_queue_max_retries_range",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.operation_type} {self.entity_type}:{self.entity_id} ({self.status})"

    @property
    def can_retry(self) -> bool:
        return self.retry_count < self.max_retries

    @property
    def remaining_retries(self) -> int:
        return max(0, self.max_retries - self.retry_count)

    @property
    def is_retry_exhausted(self) -> bool:
        """FAILED with no retries left; needs manual intervention."""
        return self.status == self.Status.FAILED and not self.can_retry

    @property
    def is_client_editable(self) -> bool:
        return self.status in self.CLIENT_EDITABLE_STATUSES


class SyncConflict(DeviceScopedModel):
    """
    A divergence between server and client state for one entity.

    The detector inputs (operation, base version, server version, deleted
    flag) are stored alongside the snapshots so the classification can be
    re-derived later.
    """

    class ConflictType(models.TextChoices):
        UPDATE_UPDATE = "UPDATE_UPDATE"
        UPDATE_DELETE = "UPDATE_DELETE"
        VERSION_MISMATCH = "VERSION_MISMATCH"

    class Strategy(models.TextChoices):
        SERVER_WINS = "SERVER_WINS"
        CLIENT_WINS = "CLIENT_WINS"
        MANUAL = "MANUAL"
        MERGE = "MERGE"

    class Status(models.TextChoices):
        DETECTED = "DETECTED"
        RESOLVED = "RESOLVED"
        IGNORED = "IGNORED"

    entity_type = models.CharField(max_length=64)
    entity_id = models.CharField(max_length=64)
    operation_type = models.CharField(max_length=10, choices=OperationType.choices)

    server_data = models.JSONField(default=dict, blank=True)
    client_data = models.JSONField(default=dict, blank=True)
    base_version = models.PositiveBigIntegerField(null=True, blank=True)
    server_version = models.PositiveBigIntegerField(null=True, blank=True)
    server_deleted = models.BooleanField(default=False)

    conflict_type = models.CharField(max_length=20, choices=ConflictType.choices)
    resolution_strategy = models.CharField(
        max_length=20, choices=Strategy.choices, null=True, blank=True
    )
    status = models.CharField(
        max_length=10, choices=Status.choices, default=Status.DETECTED, db_index=True
    )
    resolved_data = models.JSONField(null=True, blank=True)
    resolved_by = models.CharField(max_length=150, blank=True, default="")
    resolved_at = models.DateTimeField(null=True, blank=True)
    detected_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-detected_at", "-id"]
        indexes = [
            models.Index(fields=["user", "device_id"], name="sync_conflict_device_idx"),
            models.Index(fields=["entity_type", "entity_id"], name="sync_conflict_entity_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    models.Q(status="RESOLVED", resolved_data__isnull=False)
                    | (~models.Q(status="RESOLVED") & models.Q(resolved_data__isnull=True))
                ),
                name="sync_conflict_resolved_data_iff_resolved",
            ),
        ]

    def __str__(self) -> str:
        summary = f"{self.entity_type} #{self.entity_id} - {self.conflict_type} - {self.status}"
        if self.resolution_strategy:
            summary += f" ({self.resolution_strategy})"
        return summary


class SyncLog(DeviceScopedModel, TimestampedModel):
    """
    One sync session's outcome.

    INITIATED -> IN_PROGRESS -> {COMPLETED, FAILED, CANCELLED}. Terminal
    states are final. The partial unique constraint below is the per-device
    lock: at most one IN_PROGRESS row per (user, device_id).
    """

    class DeviceType(models.TextChoices):
        ANDROID = "ANDROID"
        IOS = "IOS"

    class SyncType(models.TextChoices):
        FULL = "FULL"
        INCREMENTAL = "INCREMENTAL"
        PUSH = "PUSH"
        PULL = "PULL"

    class Direction(models.TextChoices):
        UPLOAD = "UPLOAD"
        DOWNLOAD = "DOWNLOAD"
        BIDIRECTIONAL = "BIDIRECTIONAL"

    class Status(models.TextChoices):
        INITIATED = "INITIATED"
        IN_PROGRESS = "IN_PROGRESS"
        COMPLETED = "COMPLETED"
        FAILED = "FAILED"
        CANCELLED = "CANCELLED"

    TERMINAL_STATUSES = (Status.COMPLETED, Status.FAILED, Status.CANCELLED)

    id = models.UUIDField(primary_key=True, default=uuid7, editable=False)

    device_type = models.CharField(
        max_length=10, choices=DeviceType.choices, default=DeviceType.ANDROID
    )
    app_version = models.CharField(max_length=20, blank=True, default="")
    sync_type = models.CharField(max_length=20, choices=SyncType.choices)
    sync_direction = models.CharField(max_length=20, choices=Direction.choices)
    sync_status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.INITIATED, db_index=True
    )

    records_uploaded = models.PositiveIntegerField(default=0)
    records_downloaded = models.PositiveIntegerField(default=0)
    records_failed = models.PositiveIntegerField(default=0)
    conflicts_detected = models.PositiveIntegerField(default=0)
    conflicts_resolved = models.PositiveIntegerField(default=0)

    error_message = models.TextField(blank=True, default="")
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    duration_seconds = models.PositiveIntegerField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "device_id"], name="sync_log_device_idx"),
            models.Index(fields=["sync_status", "started_at"], name="sync_log_status_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["user", "device_id"],
                condition=models.Q(sync_status="IN_PROGRESS"),
                name="sync_log_one_in_progress_per_device",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.sync_type} {self.device_id} ({self.sync_status})"

    @property
    def is_terminal(self) -> bool:
        return self.sync_status in self.TERMINAL_STATUSES

    @property
    def total_records(self) -> int:
        return self.records_uploaded + self.records_downloaded

    @property
    def unresolved_conflicts(self) -> int:
        return max(0, self.conflicts_detected - self.conflicts_resolved)
