"""
Base Django settings for the mobile sync service.

Shared configuration for all environments.
"""

from pathlib import Path

from pydantic_settings import BaseSettings

from apps.core.logging import configure_logging


class Settings(BaseSettings):
    """Environment-based configuration using pydantic-settings."""

    SECRET_KEY: str = "django-insecure-change-me-in-production"
    DEBUG: bool = False
    ALLOWED_HOSTS: str = ""

    DB_NAME: str = "sync"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = "postgres"
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Sync engine
    SYNC_BATCH_SIZE: int = 50
    SYNC_MAX_BATCH_SIZE: int = 500
    SYNC_DEFAULT_MAX_RETRIES: int = 3
    SYNC_DEFAULT_RESOLUTION_STRATEGY: str = "MANUAL"
    SYNC_SESSION_TIMEOUT_SECONDS: int = 300
    SYNC_STALE_ITEM_MINUTES: int = 15
    SYNC_STALE_SESSION_MINUTES: int = 60
    SYNC_QUEUE_RETENTION_DAYS: int = 30

    # Mobile cache
    MOBILE_CACHE_DEFAULT_TTL_SECONDS: int = 86400

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent.parent

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = settings.SECRET_KEY

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = settings.DEBUG

ALLOWED_HOSTS = [h.strip() for h in settings.ALLOWED_HOSTS.split(",") if h.strip()]

# Application definition
INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    # Local apps
    "apps.core",
    "apps.sync",
    "apps.mobile",
]

MIDDLEWARE = [
    "apps.core.middleware.CorrelationIdMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "config.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "config.wsgi.application"

# Database
# Statement timeout bounds every query, so a stuck apply fails the session
# instead of hanging it.
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": settings.DB_NAME,
        "USER": settings.DB_USER,
        "PASSWORD": settings.DB_PASSWORD,
        "HOST": settings.DB_HOST,
        "PORT": settings.DB_PORT,
        "OPTIONS": {"options": "-c statement_timeout=30000"},
    }
}

# Password validation
AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

# Internationalization
LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

# Static files (CSS, JavaScript, Images)
STATIC_URL = "static/"

# Default primary key field type
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# Sync engine tunables (read with getattr(settings, ..., default))
SYNC_BATCH_SIZE = settings.SYNC_BATCH_SIZE
SYNC_MAX_BATCH_SIZE = settings.SYNC_MAX_BATCH_SIZE
SYNC_DEFAULT_MAX_RETRIES = settings.SYNC_DEFAULT_MAX_RETRIES
SYNC_DEFAULT_RESOLUTION_STRATEGY = settings.SYNC_DEFAULT_RESOLUTION_STRATEGY
SYNC_SESSION_TIMEOUT_SECONDS = settings.SYNC_SESSION_TIMEOUT_SECONDS
SYNC_STALE_ITEM_MINUTES = settings.SYNC_STALE_ITEM_MINUTES
SYNC_STALE_SESSION_MINUTES = settings.SYNC_STALE_SESSION_MINUTES
SYNC_QUEUE_RETENTION_DAYS = settings.SYNC_QUEUE_RETENTION_DAYS
MOBILE_CACHE_DEFAULT_TTL_SECONDS = settings.MOBILE_CACHE_DEFAULT_TTL_SECONDS

# Logging - structlog renders both our loggers and Django's
LOGGING_CONFIG = None
configure_logging(json_format=settings.LOG_JSON, log_level=settings.LOG_LEVEL)
