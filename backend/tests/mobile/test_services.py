"""
Tests for mobile cache services.
"""

from datetime import timedelta

import pytest
from django.utils import timezone

from apps.mobile import services
from apps.mobile.exceptions import CacheEntryNotFoundError, CacheValidationError
from apps.mobile.models import MobileDataCache
from tests.core.factories import UserFactory
from tests.mobile.factories import MobileDataCacheFactory


@pytest.mark.django_db
class TestGetCached:
    """Tests for get_cached."""

    def test_hit(self):
        entry = MobileDataCacheFactory.create()

        assert services.get_cached(entry.user_id, entry.cache_key) == entry

    def test_absent(self):
        user = UserFactory.create()

        assert services.get_cached(user.id, "customer:1") is None

    def test_expired_entry_is_a_miss_before_sweep(self):
        entry = MobileDataCacheFactory.create(expired=True)

        assert services.get_cached(entry.user_id, entry.cache_key) is None
        assert MobileDataCache.objects.filter(id=entry.id).exists()

    def test_no_expiry_never_expires(self):
        entry = MobileDataCacheFactory.create(expires_at=None)

        assert services.get_cached(entry.user_id, entry.cache_key) == entry
        assert not entry.is_expired

    def test_scoped_to_user(self):
        entry = MobileDataCacheFactory.create()
        other = UserFactory.create()

        assert services.get_cached(other.id, entry.cache_key) is None


@pytest.mark.django_db
class TestPutCached:
    """Tests for put_cached."""

    def test_creates_with_default_ttl(self, settings):
        settings.MOBILE_CACHE_DEFAULT_TTL_SECONDS = 600
        user = UserFactory.create()
        before = timezone.now()

        entry = services.put_cached(
            user.id, "product:9", {"sku": "X-9"}, cache_type=MobileDataCache.CacheType.PRODUCT
        )

        assert entry.data_snapshot == {"sku": "X-9"}
        assert entry.cache_type == "PRODUCT"
        assert before + timedelta(seconds=600) <= entry.expires_at
        assert entry.expires_at <= timezone.now() + timedelta(seconds=600)

    def test_replaces_existing_entry(self):
        entry = MobileDataCacheFactory.create(expired=True)

        services.put_cached(
            entry.user_id, entry.cache_key, {"name": "Renamed"}, ttl=timedelta(hours=2)
        )

        assert MobileDataCache.objects.filter(user=entry.user).count() == 1
        fresh = services.get_cached(entry.user_id, entry.cache_key)
        assert fresh.data_snapshot == {"name": "Renamed"}

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"cache_key": ""},
            {"cache_type": "WEATHER"},
            {"data_snapshot": "not an object"},
            {"ttl": timedelta(0)},
        ],
    )
    def test_validation(self, kwargs):
        user = UserFactory.create()
        args = {"user_id": user.id, "cache_key": "k", "data_snapshot": {}}
        args.update(kwargs)

        with pytest.raises(CacheValidationError):
            services.put_cached(**args)

        assert MobileDataCache.objects.count() == 0


@pytest.mark.django_db
class TestRefreshCached:
    """Tests for refresh_cached."""

    def test_replaces_data_and_bumps_sync_time(self):
        entry = MobileDataCacheFactory.create(
            last_synced_at=timezone.now() - timedelta(days=1)
        )
        original_expiry = entry.expires_at

        refreshed = services.refresh_cached(entry.user_id, entry.cache_key, {"name": "New"})

        assert refreshed.data_snapshot == {"name": "New"}
        assert refreshed.last_synced_at > entry.last_synced_at
        assert refreshed.expires_at == original_expiry

    def test_extends_expiry_with_ttl(self):
        entry = MobileDataCacheFactory.create(expired=True)

        services.refresh_cached(entry.user_id, entry.cache_key, {}, ttl=timedelta(hours=1))

        assert services.get_cached(entry.user_id, entry.cache_key) is not None

    def test_missing_entry(self):
        user = UserFactory.create()

        with pytest.raises(CacheEntryNotFoundError):
            services.refresh_cached(user.id, "customer:404", {"name": "x"})


@pytest.mark.django_db
class TestInvalidation:
    """Tests for invalidate, invalidate_all and invalidate_keys."""

    def test_invalidate(self):
        entry = MobileDataCacheFactory.create()

        assert services.invalidate(entry.user_id, entry.cache_key) is True
        assert services.invalidate(entry.user_id, entry.cache_key) is False

    def test_invalidate_all(self):
        user = UserFactory.create()
        MobileDataCacheFactory.create_batch(3, user=user)
        survivor = MobileDataCacheFactory.create()

        assert services.invalidate_all(user.id) == 3
        assert list(MobileDataCache.objects.all()) == [survivor]

    def test_invalidate_keys_across_users(self):
        first = MobileDataCacheFactory.create(cache_key="order:1")
        MobileDataCacheFactory.create(cache_key="order:1")
        untouched = MobileDataCacheFactory.create(cache_key="order:2")

        assert services.invalidate_keys(["order:1"]) == 2
        assert services.invalidate_keys([]) == 0
        assert not MobileDataCache.objects.filter(user=first.user).exists()
        assert MobileDataCache.objects.filter(id=untouched.id).exists()

    def test_invalidate_keys_for_one_user(self):
        mine = MobileDataCacheFactory.create(cache_key="order:1")
        theirs = MobileDataCacheFactory.create(cache_key="order:1")

        assert services.invalidate_keys(["order:1"], user_id=mine.user_id) == 1
        assert MobileDataCache.objects.filter(id=theirs.id).exists()


@pytest.mark.django_db
class TestSweepExpired:
    """Tests for sweep_expired."""

    def test_removes_only_expired(self):
        expired = MobileDataCacheFactory.create(expired=True)
        live = MobileDataCacheFactory.create()
        forever = MobileDataCacheFactory.create(expires_at=None)

        assert services.sweep_expired() == 1
        remaining = set(MobileDataCache.objects.values_list("id", flat=True))
        assert remaining == {live.id, forever.id}
        assert expired.id not in remaining

    def test_sweep_at_given_time(self):
        entry = MobileDataCacheFactory.create()

        assert services.sweep_expired(now=timezone.now() + timedelta(days=1)) == 1
        assert not MobileDataCache.objects.filter(id=entry.id).exists()
