"""
Test settings.

SQLite keeps the suite self-contained. SQLite ignores SELECT FOR UPDATE,
so queue claims rely on the conditional status update there.
"""

from .base import *  # noqa: F403

DEBUG = False
ALLOWED_HOSTS = ["testserver", "localhost"]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

# Deterministic sync tunables for tests
SYNC_BATCH_SIZE = 50
SYNC_DEFAULT_MAX_RETRIES = 3
SYNC_DEFAULT_RESOLUTION_STRATEGY = "MANUAL"
SYNC_SESSION_TIMEOUT_SECONDS = 300
