"""
Mobile cache API endpoints.
"""

from datetime import timedelta

from django.contrib.auth import get_user_model
from django.http import HttpRequest
from ninja import Router
from ninja.errors import HttpError

from apps.core.schemas import ErrorResponse
from apps.mobile.exceptions import CacheEntryNotFoundError, CacheValidationError
from apps.mobile.schemas import (
    CacheClearResponse,
    CacheEntryOut,
    CachePutRequest,
    CacheRefreshRequest,
)
from apps.mobile.services import (
    get_cached,
    invalidate,
    invalidate_all,
    put_cached,
    refresh_cached,
)

router = Router(tags=["mobile"])


def _require_user(user_id: int) -> None:
    if not get_user_model().objects.filter(id=user_id).exists():
        raise HttpError(404, "User not found")


def _ttl(seconds: int | None) -> timedelta | None:
    return timedelta(seconds=seconds) if seconds is not None else None


@router.post(
    "/cache/refresh",
    response={200: CacheEntryOut, 400: ErrorResponse, 404: ErrorResponse},
    summary="Refresh cache entry",
    description="Replace an existing entry's data and bump its last sync time.",
)
def refresh_entry(request: HttpRequest, payload: CacheRefreshRequest):
    try:
        entry = refresh_cached(
            user_id=payload.user_id,
            cache_key=payload.cache_key,
            new_data=payload.new_data,
            ttl=_ttl(payload.ttl_seconds),
        )
    except CacheEntryNotFoundError as e:
        raise HttpError(404, str(e)) from None
    except CacheValidationError as e:
        raise HttpError(400, str(e)) from None

    return CacheEntryOut.from_orm(entry)


@router.get(
    "/cache/{user_id}/{cache_key}",
    response={200: CacheEntryOut, 404: ErrorResponse},
    summary="Read cache entry",
    description="Returns 404 when the entry is absent or expired.",
)
def read_entry(request: HttpRequest, user_id: int, cache_key: str):
    entry = get_cached(user_id, cache_key)
    if entry is None:
        raise HttpError(404, "Cache miss")
    return CacheEntryOut.from_orm(entry)


@router.put(
    "/cache/{user_id}/{cache_key}",
    response={200: CacheEntryOut, 400: ErrorResponse, 404: ErrorResponse},
    summary="Write cache entry",
)
def write_entry(request: HttpRequest, user_id: int, cache_key: str, payload: CachePutRequest):
    _require_user(user_id)

    try:
        entry = put_cached(
            user_id=user_id,
            cache_key=cache_key,
            data_snapshot=payload.data_snapshot,
            cache_type=payload.cache_type,
            ttl=_ttl(payload.ttl_seconds),
        )
    except CacheValidationError as e:
        raise HttpError(400, str(e)) from None

    return CacheEntryOut.from_orm(entry)


@router.delete(
    "/cache/{user_id}/{cache_key}",
    response={204: None},
    summary="Invalidate cache entry",
)
def delete_entry(request: HttpRequest, user_id: int, cache_key: str):
    invalidate(user_id, cache_key)
    return 204, None


@router.delete(
    "/cache/{user_id}",
    response=CacheClearResponse,
    summary="Invalidate all cache entries for a user",
)
def delete_all_entries(request: HttpRequest, user_id: int) -> CacheClearResponse:
    return CacheClearResponse(deleted=invalidate_all(user_id))
