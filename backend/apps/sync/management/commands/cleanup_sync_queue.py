"""
Management command to delete old SYNCED queue items.

Synced items are kept for a while so clients and operators can inspect what
was applied. After the retention period they are permanently removed to
prevent unbounded table growth. Items in any other status are never touched.
"""

from datetime import timedelta

from django.conf import settings
from django.core.management.base import BaseCommand
from django.db.models import Count
from django.utils import timezone

from apps.sync.models import SyncQueueItem


class Command(BaseCommand):
    """Delete SYNCED queue items older than retention period."""

    help = "Remove synced queue items past retention period"

    def add_arguments(self, parser):
        parser.add_argument(
            "--retention-days",
            type=int,
            default=getattr(settings, "SYNC_QUEUE_RETENTION_DAYS", 30),
            help="Days to retain synced items (default: 30)",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be deleted without actually deleting",
        )
        parser.add_argument(
            "--batch-size",
            type=int,
            default=1000,
            help="Number of records to delete per batch (default: 1000)",
        )
        parser.add_argument(
            "--entity-type",
            type=str,
            default=None,
            help="Only clean up items of a specific entity type",
        )

    def handle(self, *args, **options):
        retention_days = options["retention_days"]
        dry_run = options["dry_run"]
        batch_size = options["batch_size"]
        entity_type = options["entity_type"]

        cutoff = timezone.now() - timedelta(days=retention_days)

        self.stdout.write(
            f"Cleaning synced queue items older than {retention_days} days "
            f"(before {cutoff.isoformat()})"
        )

        if dry_run:
            self.stdout.write(self.style.WARNING("DRY RUN - no changes will be made"))

        qs = SyncQueueItem.objects.filter(
            status=SyncQueueItem.Status.SYNCED,
            synced_at__lt=cutoff,
        )
        if entity_type:
            qs = qs.filter(entity_type=entity_type)
            self.stdout.write(f"Filtering by entity type: {entity_type}")

        total_count = qs.count()

        if total_count == 0:
            self.stdout.write("No synced items to remove")
            return

        self.stdout.write(f"Found {total_count} synced items to remove")

        if dry_run:
            breakdown = (
                qs.values("entity_type").annotate(count=Count("id")).order_by("-count")
            )
            self.stdout.write("\nBreakdown by entity type:")
            for row in breakdown:
                self.stdout.write(f"  {row['entity_type']}: {row['count']}")
            self.stdout.write(
                self.style.SUCCESS(f"\nTotal: {total_count} items would be removed")
            )
            return

        # Delete in batches to avoid long-running transactions
        total_deleted = 0
        while True:
            batch_ids = list(qs.values_list("id", flat=True)[:batch_size])
            if not batch_ids:
                break

            deleted_count, _ = SyncQueueItem.objects.filter(id__in=batch_ids).delete()
            total_deleted += deleted_count
            self.stdout.write(f"  Deleted {total_deleted}/{total_count} items...")

        self.stdout.write(self.style.SUCCESS(f"\nTotal: {total_deleted} synced items removed"))
