"""Django admin for sync engine debugging."""

from django.contrib import admin

from apps.sync.models import SyncConflict, SyncLog, SyncQueueItem


@admin.register(SyncQueueItem)
class SyncQueueItemAdmin(admin.ModelAdmin):
    """Admin for viewing queued client mutations."""

    list_display = [
        "id",
        "entity_type",
        "entity_id",
        "operation_type",
        "status",
        "priority",
        "retry_count",
        "max_retries",
        "device_id",
        "created_at",
    ]
    list_filter = ["status", "operation_type", "entity_type"]
    search_fields = ["entity_id", "device_id", "user__email"]
    readonly_fields = ["created_at", "updated_at", "synced_at", "claimed_at", "session", "conflict"]
    ordering = ["priority", "created_at"]


@admin.register(SyncConflict)
class SyncConflictAdmin(admin.ModelAdmin):
    """Conflicts are resolved through the API; admin is read-only."""

    list_display = [
        "id",
        "entity_type",
        "entity_id",
        "conflict_type",
        "status",
        "resolution_strategy",
        "resolved_by",
        "detected_at",
    ]
    list_filter = ["status", "conflict_type", "resolution_strategy", "entity_type"]
    search_fields = ["entity_id", "device_id", "user__email"]
    readonly_fields = [
        "user",
        "device_id",
        "entity_type",
        "entity_id",
        "operation_type",
        "server_data",
        "client_data",
        "base_version",
        "server_version",
        "server_deleted",
        "conflict_type",
        "resolution_strategy",
        "status",
        "resolved_data",
        "resolved_by",
        "resolved_at",
        "detected_at",
    ]
    ordering = ["-detected_at"]
    date_hierarchy = "detected_at"

    def has_add_permission(self, request):
        """Conflicts are created by the detector, not admin."""
        return False

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(SyncLog)
class SyncLogAdmin(admin.ModelAdmin):
    """Admin for sync session history."""

    list_display = [
        "id",
        "user",
        "device_id",
        "device_type",
        "sync_type",
        "sync_status",
        "records_uploaded",
        "records_failed",
        "conflicts_detected",
        "unresolved_conflicts",
        "started_at",
        "duration_seconds",
    ]
    list_filter = ["sync_status", "sync_type", "device_type"]
    search_fields = ["device_id", "user__email", "app_version"]
    readonly_fields = ["id", "created_at", "updated_at", "started_at", "completed_at"]
    ordering = ["-created_at"]

    @admin.display(description="Unresolved")
    def unresolved_conflicts(self, obj: SyncLog) -> int:
        return obj.unresolved_conflicts
