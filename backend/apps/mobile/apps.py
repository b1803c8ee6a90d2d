"""Mobile app configuration."""

from django.apps import AppConfig


class MobileConfig(AppConfig):
    """Django app configuration for the mobile data cache."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.mobile"
    label = "mobile"
    verbose_name = "Mobile Data Cache"
