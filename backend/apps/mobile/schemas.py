"""
Pydantic schemas for mobile cache API.
"""

from datetime import datetime
from typing import Literal

from ninja import Schema
from pydantic import Field

from apps.core.schemas import Snapshot

CacheTypeLiteral = Literal[
    "CUSTOMER", "PRODUCT", "PRICELIST", "STOCK", "ORDER", "PAYMENT", "OTHER"
]


class CacheEntryOut(Schema):
    """A live cache entry."""

    user_id: int
    cache_key: str
    cache_type: str
    data_snapshot: Snapshot
    last_synced_at: datetime
    expires_at: datetime | None = None


class CachePutRequest(Schema):
    """Create or replace a cache entry."""

    cache_type: CacheTypeLiteral = "OTHER"
    data_snapshot: Snapshot
    ttl_seconds: int | None = Field(
        default=None,
        ge=1,
        description="Lifetime in seconds (server default if omitted)",
    )


class CacheRefreshRequest(Schema):
    """Replace the snapshot of an existing entry."""

    user_id: int
    cache_key: str = Field(min_length=1, max_length=255)
    new_data: Snapshot
    ttl_seconds: int | None = Field(
        default=None,
        ge=1,
        description="Extend expiry to now + ttl_seconds; keep current expiry if omitted",
    )


class CacheClearResponse(Schema):
    deleted: int
