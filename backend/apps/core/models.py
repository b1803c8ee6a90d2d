"""
Core models - shared base classes.
"""

from django.conf import settings
from django.db import models


class TimestampedModel(models.Model):
    """
    Abstract base model with created_at/updated_at timestamps.
    """

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class DeviceScopedModel(models.Model):
    """
    Abstract base model for records owned by a (user, device) pair.

    Usage:
        class SyncQueueItem(DeviceScopedModel):
            entity_type = models.CharField(max_length=64)
    """

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="%(class)s_set",
    )
    device_id = models.CharField(max_length=100)

    class Meta:
        abstract = True
