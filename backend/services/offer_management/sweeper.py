"""
Periodic expiration sweep.

Runs from Celery beat (``deliveries.tasks.expire_offers_task``) and from
``manage.py expire_offers``. Every transition is a conditional bulk update
on ``status='pending'``, so overlapping or repeated sweeps are safe and a
second run over the same data changes nothing. Request rows are locked in
id order before their offers are written.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import List, Optional, Set

from django.db import transaction
from django.utils import timezone

from common.cache import BestEffortCache, CacheKeys
from deliveries.models import DeliveryOffer, DeliveryRequest
from .offer_lifecycle import OfferLifecycleManager, get_offer_manager

logger = logging.getLogger(__name__)


REQUEST_EXPIRED = "Delivery request expired"


def _lock_requests(request_ids) -> List[int]:
    """Lock request rows in id order, before any of their offers are written."""
    return list(
        DeliveryRequest.objects.select_for_update()
        .filter(pk__in=list(request_ids))
        .order_by("id")
        .values_list("id", flat=True)
    )


@dataclass
class SweepResult:
    expired_offers: int = 0
    expired_requests: int = 0
    auto_accepted: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


class ExpirationSweeper:

    def __init__(self, offer_manager: OfferLifecycleManager, cache: BestEffortCache):
        self.offer_manager = offer_manager
        self.cache = cache

    def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """
        Expire stale offers and requests, then retry pending auto-accepts.

        Returns:
            SweepResult with the number of rows each step changed
        """
        now = now or timezone.now()
        result = SweepResult()
        touched: Set[int] = set()

        result.expired_offers = self.expire_stale_offers(now, touched)
        result.expired_requests = self.expire_stale_requests(now, touched)

        for request_id in touched:
            self.cache.delete_many(CacheKeys.for_request_write(request_id))

        result.auto_accepted = self.retry_auto_accepts(now)

        if result.expired_offers or result.expired_requests or result.auto_accepted:
            logger.info("Expiration sweep: %s", result.as_dict())

        return result

    def expire_stale_offers(self, now: datetime, touched: Set[int]) -> int:
        with transaction.atomic():
            request_ids = set(
                DeliveryOffer.objects.filter(status="pending", valid_until__lt=now)
                .values_list("delivery_request_id", flat=True)
            )
            if not request_ids:
                return 0
            _lock_requests(request_ids)
            expired = DeliveryOffer.objects.filter(
                delivery_request_id__in=request_ids, status="pending", valid_until__lt=now,
            ).update(status="expired", expired_at=now, updated_at=now)

        touched.update(request_ids)
        return expired

    def expire_stale_requests(self, now: datetime, touched: Set[int]) -> int:
        with transaction.atomic():
            stale_ids = _lock_requests(
                DeliveryRequest.objects.filter(status="pending", expires_at__lt=now)
                .values_list("id", flat=True)
            )
            # Re-read under the locks; a request may have been accepted or cancelled meanwhile
            stale_ids = list(
                DeliveryRequest.objects.filter(pk__in=stale_ids, status="pending").values_list("id", flat=True)
            )
            if not stale_ids:
                return 0
            expired = DeliveryRequest.objects.filter(pk__in=stale_ids, status="pending").update(
                status="expired", updated_at=now,
            )
            DeliveryOffer.objects.filter(delivery_request_id__in=stale_ids, status="pending").update(
                status="declined",
                declined_at=now,
                declined_reason=REQUEST_EXPIRED,
                updated_at=now,
            )

        touched.update(stale_ids)
        return expired

    def retry_auto_accepts(self, now: datetime) -> int:
        request_ids = list(
            DeliveryRequest.objects.filter(
                status="pending",
                expires_at__gte=now,
                auto_accept_price__isnull=False,
                offers__status="pending",
            )
            .order_by("id")
            .values_list("id", flat=True)
            .distinct()
        )

        accepted = 0
        for request_id in request_ids:
            if self.offer_manager.evaluate_auto_accept(request_id) is not None:
                accepted += 1
        return accepted


def get_sweeper() -> ExpirationSweeper:
    manager = get_offer_manager()
    return ExpirationSweeper(offer_manager=manager, cache=manager.cache)
