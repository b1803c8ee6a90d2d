"""
Mobile cache models.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone


class MobileDataCache(models.Model):
    """
    Cached snapshot served to a user's mobile clients.

    An entry whose expires_at has passed is a miss for every read, whether or
    not the expiry sweep has removed it yet. A null expires_at never expires.
    """

    class CacheType(models.TextChoices):
        CUSTOMER = "CUSTOMER"
        PRODUCT = "PRODUCT"
        PRICELIST = "PRICELIST"
        STOCK = "STOCK"
        ORDER = "ORDER"
        PAYMENT = "PAYMENT"
        OTHER = "OTHER"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="mobile_cache_entries",
    )
    cache_key = models.CharField(max_length=255)
    cache_type = models.CharField(
        max_length=20, choices=CacheType.choices, default=CacheType.OTHER
    )
    data_snapshot = models.JSONField(default=dict, blank=True)
    last_synced_at = models.DateTimeField(default=timezone.now)
    expires_at = models.DateTimeField(null=True, blank=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["user", "cache_key"], name="mobile_cache_user_key"),
        ]
        indexes = [
            models.Index(fields=["cache_key"], name="mobile_cache_key_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.cache_key} ({self.cache_type})"

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and self.expires_at <= timezone.now()
