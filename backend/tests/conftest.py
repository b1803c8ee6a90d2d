"""
Shared pytest fixtures for all tests.

This module provides common fixtures used across multiple test modules.
Individual test modules can override these fixtures if needed.

Factories
---------
Import factories directly from their modules:

    from tests.core.factories import UserFactory
    from tests.sync.factories import SyncQueueItemFactory, SyncConflictFactory, SyncLogFactory
    from tests.mobile.factories import MobileDataCacheFactory

Example usage:

    @pytest.mark.django_db
    def test_something():
        user = UserFactory.create()
        item = SyncQueueItemFactory.create(user=user, priority=1)
"""

import pytest
from django.db import connection
from django.test import Client, RequestFactory

from apps.core.logging import clear_contextvars


@pytest.fixture(scope="session")
def django_db_setup(django_db_setup, django_db_blocker):
    """
    Create and teardown test model tables in the database.

    This extends pytest-django's django_db_setup to create tables for
    test-only models like SyncTestNote that aren't managed by migrations.
    """
    from tests.sync.conftest import SyncTestNote

    with django_db_blocker.unblock(), connection.schema_editor() as schema_editor:
        if SyncTestNote._meta.db_table not in connection.introspection.table_names():
            schema_editor.create_model(SyncTestNote)

    yield

    # Cleanup: drop the table at session end
    with django_db_blocker.unblock(), connection.schema_editor() as schema_editor:
        if SyncTestNote._meta.db_table in connection.introspection.table_names():
            schema_editor.delete_model(SyncTestNote)


@pytest.fixture(autouse=True)
def _clean_log_context():
    """Keep structlog context from leaking between tests."""
    clear_contextvars()
    yield
    clear_contextvars()


@pytest.fixture
def request_factory() -> RequestFactory:
    """
    Django request factory for unit testing views.

    Use this when you need to test view functions directly without going through
    the full HTTP stack. Useful for testing Django Ninja endpoints.

    Example:
        def test_endpoint(request_factory):
            request = request_factory.get("/api/v1/sync/queue")
            result = list_queue(request, QueueListParams())
    """
    return RequestFactory()


@pytest.fixture
def api_client() -> Client:
    """
    Django test client for full HTTP request/response cycle tests.

    Use this when you need to test the complete HTTP flow including middleware,
    routing, and response handling.

    Example:
        def test_api_returns_200(api_client):
            response = api_client.get("/api/v1/health")
            assert response.status_code == 200
    """
    return Client()
