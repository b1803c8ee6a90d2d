"""
Mobile data cache services.

Read-through store of per-user snapshots with TTL expiry. Reads treat
expired entries as misses; the sweep only reclaims space.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any

from django.conf import settings
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from apps.core.logging import get_logger
from apps.mobile.exceptions import CacheEntryNotFoundError, CacheValidationError
from apps.mobile.models import MobileDataCache

logger = get_logger(__name__)


def _default_ttl() -> timedelta:
    return timedelta(seconds=getattr(settings, "MOBILE_CACHE_DEFAULT_TTL_SECONDS", 86400))


def _live(now: datetime) -> Q:
    return Q(expires_at__isnull=True) | Q(expires_at__gt=now)


def get_cached(user_id: int, cache_key: str) -> MobileDataCache | None:
    """Return the entry, or None if absent or expired."""
    return (
        MobileDataCache.objects.filter(user_id=user_id, cache_key=cache_key)
        .filter(_live(timezone.now()))
        .first()
    )


def put_cached(
    user_id: int,
    cache_key: str,
    data_snapshot: dict[str, Any],
    cache_type: str = MobileDataCache.CacheType.OTHER,
    ttl: timedelta | None = None,
) -> MobileDataCache:
    """Create or replace an entry, expiring ``ttl`` from now."""
    if not cache_key:
        raise CacheValidationError("cache_key is required")
    if cache_type not in MobileDataCache.CacheType.values:
        raise CacheValidationError(f"Unknown cache_type: {cache_type}")
    if not isinstance(data_snapshot, dict):
        raise CacheValidationError("data_snapshot must be a JSON object")
    if ttl is None:
        ttl = _default_ttl()
    if ttl <= timedelta(0):
        raise CacheValidationError("ttl must be positive")

    now = timezone.now()
    entry, created = MobileDataCache.objects.update_or_create(
        user_id=user_id,
        cache_key=cache_key,
        defaults={
            "cache_type": cache_type,
            "data_snapshot": data_snapshot,
            "last_synced_at": now,
            "expires_at": now + ttl,
        },
    )
    logger.debug("mobile_cache_put", cache_key=cache_key, created=created)
    return entry


def refresh_cached(
    user_id: int,
    cache_key: str,
    new_data: dict[str, Any],
    ttl: timedelta | None = None,
) -> MobileDataCache:
    """
    Replace an existing entry's snapshot and bump last_synced_at.

    Expiry is only extended when ``ttl`` is given.

    Raises:
        CacheEntryNotFoundError: No entry for (user_id, cache_key)
    """
    if not isinstance(new_data, dict):
        raise CacheValidationError("new_data must be a JSON object")
    if ttl is not None and ttl <= timedelta(0):
        raise CacheValidationError("ttl must be positive")

    with transaction.atomic():
        entry = (
            MobileDataCache.objects.select_for_update()
            .filter(user_id=user_id, cache_key=cache_key)
            .first()
        )
        if entry is None:
            raise CacheEntryNotFoundError(f"Cache entry not found: {cache_key}")

        now = timezone.now()
        entry.data_snapshot = new_data
        entry.last_synced_at = now
        update_fields = ["data_snapshot", "last_synced_at"]
        if ttl is not None:
            entry.expires_at = now + ttl
            update_fields.append("expires_at")
        entry.save(update_fields=update_fields)

    logger.info("mobile_cache_refreshed", cache_key=cache_key, user_id=user_id)
    return entry


def invalidate(user_id: int, cache_key: str) -> bool:
    """Drop one entry. Returns True if it existed."""
    deleted, _ = MobileDataCache.objects.filter(user_id=user_id, cache_key=cache_key).delete()
    return deleted > 0


def invalidate_all(user_id: int) -> int:
    """Drop every entry for a user."""
    deleted, _ = MobileDataCache.objects.filter(user_id=user_id).delete()
    logger.info("mobile_cache_cleared", user_id=user_id, count=deleted)
    return deleted


def invalidate_keys(cache_keys: Iterable[str], user_id: int | None = None) -> int:
    """
    Drop entries by key, for one user or across all users.

    Sync sessions call this after applying a mutation, so every user's copy
    of the changed entity is dropped.
    """
    keys = list(cache_keys)
    if not keys:
        return 0
    qs = MobileDataCache.objects.filter(cache_key__in=keys)
    if user_id is not None:
        qs = qs.filter(user_id=user_id)
    deleted, _ = qs.delete()
    if deleted:
        logger.debug("mobile_cache_invalidated", cache_keys=keys, count=deleted)
    return deleted


def sweep_expired(now: datetime | None = None) -> int:
    """Delete expired entries. Safe to run alongside reads."""
    if now is None:
        now = timezone.now()
    deleted, _ = MobileDataCache.objects.filter(expires_at__lte=now).delete()
    if deleted:
        logger.info("mobile_cache_swept", count=deleted)
    return deleted
