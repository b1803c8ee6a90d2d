"""
Management command for sync crash recovery.

Workers that die mid-session leave queue items IN_PROGRESS and hold the
device's session lock. This reverts stale items to PENDING and fails stale
sessions so the device can sync again.

Run at startup and periodically (e.g. every 5 minutes from cron).
"""

from datetime import timedelta

from django.conf import settings
from django.core.management.base import BaseCommand
from django.utils import timezone

from apps.sync.models import SyncLog, SyncQueueItem
from apps.sync.orchestrator import recover_stale_sessions
from apps.sync.services import recover_stale_items


class Command(BaseCommand):
    """Revert stale IN_PROGRESS items and fail stale sessions."""

    help = "Recover queue items and sync sessions left IN_PROGRESS by crashed workers"

    def add_arguments(self, parser):
        parser.add_argument(
            "--item-minutes",
            type=int,
            default=getattr(settings, "SYNC_STALE_ITEM_MINUTES", 15),
            help="Minutes after which an IN_PROGRESS item is stale (default: 15)",
        )
        parser.add_argument(
            "--session-minutes",
            type=int,
            default=getattr(settings, "SYNC_STALE_SESSION_MINUTES", 60),
            help="Minutes after which an IN_PROGRESS session is stale (default: 60)",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be recovered without changing anything",
        )

    def handle(self, *args, **options):
        item_age = timedelta(minutes=options["item_minutes"])
        session_age = timedelta(minutes=options["session_minutes"])
        dry_run = options["dry_run"]

        if dry_run:
            self.stdout.write(self.style.WARNING("DRY RUN - no changes will be made"))
            now = timezone.now()
            stale_items = SyncQueueItem.objects.filter(
                status=SyncQueueItem.Status.IN_PROGRESS,
                claimed_at__lt=now - item_age,
            ).count()
            stale_sessions = SyncLog.objects.filter(
                sync_status=SyncLog.Status.IN_PROGRESS,
                started_at__lt=now - session_age,
            ).count()
            self.stdout.write(f"Would fail {stale_sessions} stale sessions")
            self.stdout.write(f"Would revert {stale_items} stale items")
            return

        # Sessions first: failing a session also releases its items
        sessions = recover_stale_sessions(older_than=session_age)
        items = recover_stale_items(older_than=item_age)

        if sessions or items:
            self.stdout.write(
                self.style.WARNING(f"Failed {sessions} stale sessions, reverted {items} stale items")
            )
        else:
            self.stdout.write(self.style.SUCCESS("No stale sync work found"))
