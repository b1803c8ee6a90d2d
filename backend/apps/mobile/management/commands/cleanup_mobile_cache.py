"""
Management command to delete expired mobile cache entries.

Expired entries are already invisible to reads; this only reclaims space.
Run periodically (e.g. hourly from cron).
"""

from django.core.management.base import BaseCommand
from django.utils import timezone

from apps.mobile.models import MobileDataCache
from apps.mobile.services import sweep_expired


class Command(BaseCommand):
    """Delete expired MobileDataCache rows."""

    help = "Remove expired mobile cache entries"

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be deleted without actually deleting",
        )

    def handle(self, *args, **options):
        now = timezone.now()

        if options["dry_run"]:
            self.stdout.write(self.style.WARNING("DRY RUN - no changes will be made"))
            count = MobileDataCache.objects.filter(expires_at__lte=now).count()
            self.stdout.write(f"Would remove {count} expired cache entries")
            return

        deleted = sweep_expired(now=now)
        if deleted:
            self.stdout.write(self.style.SUCCESS(f"Removed {deleted} expired cache entries"))
        else:
            self.stdout.write("No expired cache entries")
