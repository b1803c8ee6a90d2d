import django.core.validators
import django.db.models.deletion
import uuid6
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="SyncConflict",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("device_id", models.CharField(max_length=100)),
                ("entity_type", models.CharField(max_length=64)),
                ("entity_id", models.CharField(max_length=64)),
                (
                    "operation_type",
                    models.CharField(
                        choices=[("INSERT", "Insert"), ("UPDATE", "Update"), ("DELETE", "Delete")],
                        max_length=10,
                    ),
                ),
                ("server_data", models.JSONField(blank=True, default=dict)),
                ("client_data", models.JSONField(blank=True, default=dict)),
                ("base_version", models.PositiveBigIntegerField(blank=True, null=True)),
                ("server_version", models.PositiveBigIntegerField(blank=True, null=True)),
                ("server_deleted", models.BooleanField(default=False)),
                (
                    "conflict_type",
                    models.CharField(
                        choices=[
                            ("UPDATE_UPDATE", "Update Update"),
                            ("UPDATE_DELETE", "Update Delete"),
                            ("VERSION_MISMATCH", "Version Mismatch"),
                        ],
                        max_length=20,
                    ),
                ),
                (
                    "resolution_strategy",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("SERVER_WINS", "Server Wins"),
                            ("CLIENT_WINS", "Client Wins"),
                            ("MANUAL", "Manual"),
                            ("MERGE", "Merge"),
                        ],
                        max_length=20,
                        null=True,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("DETECTED", "Detected"),
                            ("RESOLVED", "Resolved"),
                            ("IGNORED", "Ignored"),
                        ],
                        db_index=True,
                        default="DETECTED",
                        max_length=10,
                    ),
                ),
                ("resolved_data", models.JSONField(blank=True, null=True)),
                ("resolved_by", models.CharField(blank=True, default="", max_length=150)),
                ("resolved_at", models.DateTimeField(blank=True, null=True)),
                ("detected_at", models.DateTimeField(auto_now_add=True)),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="syncconflict_set",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-detected_at", "-id"],
                "indexes": [
                    models.Index(fields=["user", "device_id"], name="sync_conflict_device_idx"),
                    models.Index(
                        fields=["entity_type", "entity_id"], name="sync_conflict_entity_idx"
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("resolved_data__isnull", False), ("status", "RESOLVED")),
                            models.Q(
                                models.Q(("status", "RESOLVED"), _negated=True),
                                ("resolved_data__isnull", True),
                            ),
                            _connector="OR",
                        ),
                        name="sync_conflict_resolved_data_iff_resolved",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="SyncLog",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("device_id", models.CharField(max_length=100)),
                (
                    "id",
                    models.UUIDField(
                        default=uuid6.uuid7, editable=False, primary_key=True, serialize=False
                    ),
                ),
                (
                    "device_type",
                    models.CharField(
                        choices=[("ANDROID", "Android"), ("IOS", "Ios")],
                        default="ANDROID",
                        max_length=10,
                    ),
                ),
                ("app_version", models.CharField(blank=True, default="", max_length=20)),
                (
                    "sync_type",
                    models.CharField(
                        choices=[
                            ("FULL", "Full"),
                            ("INCREMENTAL", "Incremental"),
                            ("PUSH", "Push"),
                            ("PULL", "Pull"),
                        ],
                        max_length=20,
                    ),
                ),
                (
                    "sync_direction",
                    models.CharField(
                        choices=[
                            ("UPLOAD", "Upload"),
                            ("DOWNLOAD", "Download"),
                            ("BIDIRECTIONAL", "Bidirectional"),
                        ],
                        max_length=20,
                    ),
                ),
                (
                    "sync_status",
                    models.CharField(
                        choices=[
                            ("INITIATED", "Initiated"),
                            ("IN_PROGRESS", "In Progress"),
                            ("COMPLETED", "Completed"),
                            ("FAILED", "Failed"),
                            ("CANCELLED", "Cancelled"),
                        ],
                        db_index=True,
                        default="INITIATED",
                        max_length=20,
                    ),
                ),
                ("records_uploaded", models.PositiveIntegerField(default=0)),
                ("records_downloaded", models.PositiveIntegerField(default=0)),
                ("records_failed", models.PositiveIntegerField(default=0)),
                ("conflicts_detected", models.PositiveIntegerField(default=0)),
                ("conflicts_resolved", models.PositiveIntegerField(default=0)),
                ("error_message", models.TextField(blank=True, default="")),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("duration_seconds", models.PositiveIntegerField(blank=True, null=True)),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="synclog_set",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["user", "device_id"], name="sync_log_device_idx"),
                    models.Index(fields=["sync_status", "started_at"], name="sync_log_status_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("sync_status", "IN_PROGRESS")),
                        fields=("user", "device_id"),
                        name="sync_log_one_in_progress_per_device",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="SyncQueueItem",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("device_id", models.CharField(max_length=100)),
                ("entity_type", models.CharField(max_length=64)),
                ("entity_id", models.CharField(max_length=64)),
                (
                    "operation_type",
                    models.CharField(
                        choices=[("INSERT", "Insert"), ("UPDATE", "Update"), ("DELETE", "Delete")],
                        max_length=10,
                    ),
                ),
                ("data_snapshot", models.JSONField(blank=True, default=dict)),
                (
                    "base_version",
                    models.PositiveBigIntegerField(
                        blank=True,
                        help_text="Entity version the client last synced from (base marker)",
                        null=True,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("PENDING", "Pending"),
                            ("IN_PROGRESS", "In Progress"),
                            ("SYNCED", "Synced"),
                            ("FAILED", "Failed"),
                            ("CONFLICT", "Conflict"),
                        ],
                        db_index=True,
                        default="PENDING",
                        max_length=20,
                    ),
                ),
                (
                    "priority",
                    models.PositiveSmallIntegerField(
                        default=5,
                        help_text="1 (highest) .. 10 (lowest)",
                        validators=[
                            django.core.validators.MinValueValidator(1),
                            django.core.validators.MaxValueValidator(10),
                        ],
                    ),
                ),
                ("retry_count", models.PositiveSmallIntegerField(default=0)),
                (
                    "max_retries",
                    models.PositiveSmallIntegerField(
                        default=3,
                        validators=[
                            django.core.validators.MinValueValidator(1),
                            django.core.validators.MaxValueValidator(10),
                        ],
                    ),
                ),
                ("error_message", models.TextField(blank=True, default="")),
                ("synced_at", models.DateTimeField(blank=True, null=True)),
                ("claimed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "conflict",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="queue_items",
                        to="sync.syncconflict",
                    ),
                ),
                (
                    "session",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="queue_items",
                        to="sync.synclog",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="syncqueueitem_set",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["priority", "created_at", "id"],
                "indexes": [
                    models.Index(
                        fields=["user", "device_id", "status", "priority", "created_at"],
                        name="sync_queue_due_idx",
                    ),
                    models.Index(fields=["entity_type", "entity_id"], name="sync_queue_entity_idx"),
                    models.Index(fields=["status", "claimed_at"], name="sync_queue_claimed_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("priority__gte", 1), ("priority__lte", 10)),
                        name="sync_queue_priority_range",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("max_retries__gte", 1), ("max_retries__lte", 10)),
                        name="sync_queue_max_retries_range",
                    ),
                ],
            },
        ),
    ]
