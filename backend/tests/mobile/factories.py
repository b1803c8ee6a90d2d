"""
Factories for mobile cache models.

Used in tests to create test data.
"""

from datetime import timedelta
from typing import Any

import factory
from django.utils import timezone
from factory.django import DjangoModelFactory

from apps.mobile.models import MobileDataCache
from tests.core.factories import UserFactory


class MobileDataCacheFactory(DjangoModelFactory[MobileDataCache]):
    """Factory for MobileDataCache model."""

    class Meta:
        model = MobileDataCache

    user: Any = factory.SubFactory(UserFactory)
    cache_key: Any = factory.Sequence(lambda n: f"customer:{n}")
    cache_type = MobileDataCache.CacheType.CUSTOMER
    data_snapshot: Any = factory.LazyFunction(lambda: {"name": "Acme Stores"})
    expires_at: Any = factory.LazyFunction(lambda: timezone.now() + timedelta(hours=1))

    class Params:
        expired = factory.Trait(
            expires_at=factory.LazyFunction(lambda: timezone.now() - timedelta(minutes=1))
        )
