from django.core.management.base import BaseCommand
from django.conf import settings
from django.utils import timezone
from datetime import timedelta
from locations.models import LocationSample
from services.locations import get_location_registry
import logging

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Delete location history samples older than the retention period."

    def add_arguments(self, parser):
        parser.add_argument(
            "--days",
            type=int,
            default=None,
            help="Delete samples older than this many days (default: LOCATION_RETENTION_DAYS).",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be deleted without actually deleting.",
        )

    def handle(self, *args, **options):
        days = options["days"] or settings.LOCATION_RETENTION_DAYS
        dry_run = options["dry_run"]

        if dry_run:
            cutoff = timezone.now() - timedelta(days=days)
            samples_count = LocationSample.objects.filter(captured_at__lt=cutoff).count()
            self.stdout.write(
                self.style.WARNING(
                    f"DRY RUN: Would delete {samples_count} location samples older than {days} days."
                )
            )
            return

        samples_count = get_location_registry().prune_history(timedelta(days=days))
        logger.info("Cleaned up %d old location samples", samples_count)
        self.stdout.write(
            self.style.SUCCESS(
                f"Deleted {samples_count} location samples older than {days} days."
            )
        )
