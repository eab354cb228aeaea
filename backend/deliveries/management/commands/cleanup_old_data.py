from django.core.management.base import BaseCommand
from django.utils import timezone
from datetime import timedelta
from deliveries.models import DeliveryOffer, DeliveryRequest
import logging

logger = logging.getLogger(__name__)

CLOSED_OFFER_STATUSES = ['declined', 'expired', 'withdrawn']
CLOSED_REQUEST_STATUSES = ['cancelled', 'expired']


class Command(BaseCommand):
    help = "Clean up old closed offers and cancelled/expired delivery requests."

    def add_arguments(self, parser):
        parser.add_argument(
            "--days",
            type=int,
            default=30,
            help="Delete records last updated more than this many days ago (default: 30).",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be deleted without actually deleting.",
        )

    def handle(self, *args, **options):
        days = options["days"]
        dry_run = options["dry_run"]
        cutoff = timezone.now() - timedelta(days=days)

        # Accepted offers back a Delivery and are never removed
        old_offers = DeliveryOffer.objects.filter(
            updated_at__lt=cutoff,
            status__in=CLOSED_OFFER_STATUSES,
        )
        offers_count = old_offers.count()

        old_requests = DeliveryRequest.objects.filter(
            updated_at__lt=cutoff,
            status__in=CLOSED_REQUEST_STATUSES,
            delivery__isnull=True,
        )
        requests_count = old_requests.count()

        if dry_run:
            self.stdout.write(
                self.style.WARNING(
                    f"DRY RUN: Would delete {offers_count} offers and {requests_count} requests older than {days} days."
                )
            )
        else:
            old_offers.delete()
            old_requests.delete()
            logger.info("Cleaned up %s old offers and %s old requests", offers_count, requests_count)
            self.stdout.write(
                self.style.SUCCESS(
                    f"Deleted {offers_count} old offers and {requests_count} old requests older than {days} days."
                )
            )
