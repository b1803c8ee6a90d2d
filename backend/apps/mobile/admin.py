"""Admin configuration for mobile cache."""

from django.contrib import admin

from apps.mobile.models import MobileDataCache


@admin.register(MobileDataCache)
class MobileDataCacheAdmin(admin.ModelAdmin):
    """Admin for MobileDataCache model."""

    list_display = ["cache_key", "user", "cache_type", "last_synced_at", "expires_at", "is_expired"]
    list_filter = ["cache_type"]
    search_fields = ["cache_key", "user__email"]
    readonly_fields = ["created_at", "last_synced_at"]
    ordering = ["-last_synced_at"]

    @admin.display(boolean=True, description="Expired")
    def is_expired(self, obj: MobileDataCache) -> bool:
        return obj.is_expired
