from django.core.management.base import BaseCommand

from services.offer_management import get_sweeper


class Command(BaseCommand):
    help = "Expire stale offers and requests, then retry pending auto-accepts."

    def handle(self, *args, **options):
        result = get_sweeper().sweep()

        self.stdout.write(
            self.style.SUCCESS(
                f"Expired {result.expired_offers} offer(s) and {result.expired_requests} request(s); "
                f"auto-accepted {result.auto_accepted} offer(s)."
            )
        )
