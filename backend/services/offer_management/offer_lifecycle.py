"""
Offer lifecycle operations.

State machine of a DeliveryOffer:

    pending -> accepted | declined | withdrawn | expired

Every transition out of ``pending`` is a conditional update on
``status='pending'`` so that two writers racing on one offer resolve to a
single winner. Acceptance additionally locks the request row and runs the
whole accept protocol as one unit of work (see ``accept_offer``).

Side effects (cache invalidation, notifications, auto-accept scheduling) are
registered with ``transaction.on_commit`` and never run for a rolled back
transaction.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from functools import partial
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.db import IntegrityError, OperationalError, transaction
from django.db.models import Avg, Case, Count, IntegerField, Max, Min, Value, When
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from common.cache import BestEffortCache, CacheKeys, get_cache
from common.pagination import paginate
from deliveries.models import Delivery, DeliveryOffer, DeliveryRequest, OFFER_ACTIVE_STATUSES
from realtime.notifications import notify_offer_event
from services.exceptions import (
    AuthorizationError,
    ConflictError,
    DeliveryServiceError,
    NotFoundError,
    ValidationError,
    is_lock_conflict,
)
from .scheduling import AutoAcceptScheduler, CeleryAutoAcceptScheduler

logger = logging.getLogger(__name__)


ANOTHER_OFFER_ACCEPTED = "Another offer was accepted"
DECLINED_BY_CUSTOMER = "Declined by customer"
UPDATABLE_FIELDS = ("price", "message", "estimated_pickup_time", "estimated_delivery_time", "valid_until")


@dataclass
class AcceptResult:
    """Outcome of a successful accept: the contract and the rows it touched."""
    delivery: Delivery
    offer: DeliveryOffer
    request: DeliveryRequest
    declined_offer_ids: List[int]
    auto: bool = False


def to_price(value) -> Decimal:
    try:
        price = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("Offer price must be a number")
    if not price.is_finite():
        raise ValidationError("Offer price must be a number")
    return price


def validate_offer_price(price: Decimal, request: DeliveryRequest) -> None:
    if price <= 0:
        raise ValidationError("Offer price must be greater than zero")
    if price > request.max_price:
        raise ValidationError("Offer price exceeds maximum price")


def with_time_flags(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Recompute the validity flags of serialized offers against the current time."""
    now = timezone.now()
    for item in items:
        valid_until = parse_datetime(item["valid_until"]) if item.get("valid_until") else None
        expired = valid_until is not None and now > valid_until
        open_offer = item["status"] == "pending" and not expired
        item["is_expired"] = expired
        item["is_valid"] = open_offer
        item["can_be_accepted"] = open_offer
    return items


def _offer_request_id(offer_id):
    request_id = DeliveryOffer.objects.filter(pk=offer_id).values_list("delivery_request_id", flat=True).first()
    if request_id is None:
        raise NotFoundError("Offer not found")
    return request_id


def _lock_request_and_offer(request_id, offer_id):
    """
    Lock a request row and then one of its offers.

    Lock order for every write touching a request and its offers: the
    request row first, then offer rows.
    """
    request = DeliveryRequest.objects.select_for_update().filter(pk=request_id).first()
    offer = DeliveryOffer.objects.select_for_update().filter(pk=offer_id, delivery_request_id=request_id).first()
    if request is None or offer is None:
        raise NotFoundError("Offer not found")
    return request, offer


def _traveler_profile(traveler):
    from travelers.models import TravelerProfile

    try:
        return traveler.traveler_profile
    except TravelerProfile.DoesNotExist:
        return None


class OfferLifecycleManager:
    """
    Owns every write to DeliveryOffer and the creation of Delivery rows.

    Args:
        cache: Best-effort cache used for offer listings and statistics
        scheduler: Auto-accept scheduler (Celery in production)
        auto_accept_delay: Seconds between an eligible offer and its auto-accept
        cache_timeout: TTL of cached listings and statistics
    """

    def __init__(
        self,
        cache: BestEffortCache,
        scheduler: AutoAcceptScheduler,
        auto_accept_delay: float = 1,
        cache_timeout: int = 300,
    ):
        self.cache = cache
        self.scheduler = scheduler
        self.auto_accept_delay = auto_accept_delay
        self.cache_timeout = cache_timeout

    # ===================== Traveler Operations =====================

    def submit_offer(
        self,
        traveler,
        request_id,
        price,
        message: str = "",
        trip_id: Optional[str] = None,
        estimated_pickup_time: Optional[datetime] = None,
        estimated_delivery_time: Optional[datetime] = None,
        valid_until: Optional[datetime] = None,
    ) -> DeliveryOffer:
        """
        Create a pending offer on an open request.

        Raises:
            NotFoundError: request does not exist
            ValidationError: own request, bad price, rating/verification or validity
            ConflictError: request closed, or traveler already has an active offer
            AuthorizationError: traveler is blacklisted by the customer
        """
        price = to_price(price)

        try:
            with transaction.atomic():
                request = DeliveryRequest.objects.select_for_update().filter(pk=request_id).first()
                if request is None:
                    raise NotFoundError("Delivery request not found")

                if request.customer_id == traveler.id:
                    raise ValidationError("You cannot make an offer on your own delivery request")

                if not request.can_receive_offers():
                    raise ConflictError("Delivery request is not accepting offers")

                if request.offers.filter(traveler=traveler, status__in=OFFER_ACTIVE_STATUSES).exists():
                    raise ConflictError("You already have an active offer for this request")

                validate_offer_price(price, request)

                if request.is_blacklisted(traveler.id):
                    raise AuthorizationError("You are not allowed to make offers on this request")

                self._validate_traveler_requirements(traveler, request)

                if valid_until is not None and valid_until <= timezone.now():
                    raise ValidationError("Offer validity must be in the future")

                fields = {
                    "delivery_request": request,
                    "traveler": traveler,
                    "trip_id": trip_id,
                    "price": price,
                    "message": message or "",
                    "estimated_pickup_time": estimated_pickup_time,
                    "estimated_delivery_time": estimated_delivery_time,
                }
                if valid_until is not None:
                    fields["valid_until"] = valid_until

                offer = DeliveryOffer.objects.create(**fields)
                transaction.on_commit(partial(self._after_offer_submitted, offer, request))
        except IntegrityError as exc:
            # Lost a race with a concurrent submit by the same traveler
            raise ConflictError("You already have an active offer for this request") from exc

        logger.info("Offer %s submitted on request %s by traveler %s at %s", offer.id, request.id, traveler.id, price)
        return offer

    def update_offer(self, traveler, offer_id, **changes) -> DeliveryOffer:
        """
        Change price, message, timing or validity of a pending offer.

        Raises:
            NotFoundError, AuthorizationError, ConflictError, ValidationError
        """
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        request_id = _offer_request_id(offer_id)

        with transaction.atomic():
            request, offer = _lock_request_and_offer(request_id, offer_id)
            if offer.traveler_id != traveler.id:
                raise AuthorizationError("You can only update your own offers")
            if not offer.can_be_updated():
                raise ConflictError("Offer can no longer be updated")

            if "price" in changes:
                changes["price"] = to_price(changes["price"])
                validate_offer_price(changes["price"], request)

            valid_until = changes.get("valid_until")
            if "valid_until" in changes and (valid_until is None or valid_until <= timezone.now()):
                raise ValidationError("Offer validity must be in the future")

            for name, value in changes.items():
                setattr(offer, name, value)
            if "message" in changes and offer.message is None:
                offer.message = ""
            offer.save(update_fields=[*changes, "updated_at"])

            transaction.on_commit(partial(self._after_offer_updated, offer, request))

        logger.info("Offer %s updated by traveler %s: %s", offer.id, traveler.id, sorted(changes))
        return offer

    def withdraw_offer(self, traveler, offer_id) -> DeliveryOffer:
        with transaction.atomic():
            offer = DeliveryOffer.objects.select_for_update().filter(pk=offer_id).first()
            if offer is None:
                raise NotFoundError("Offer not found")
            if offer.traveler_id != traveler.id:
                raise AuthorizationError("You can only withdraw your own offers")
            if not offer.can_be_withdrawn():
                raise ConflictError(f"Offer cannot be withdrawn (status: {offer.status})")

            now = timezone.now()
            updated = DeliveryOffer.objects.filter(pk=offer.pk, status="pending").update(
                status="withdrawn", withdrawn_at=now, updated_at=now,
            )
            if updated != 1:
                raise ConflictError("Offer is no longer pending")
            offer.refresh_from_db()

            request = DeliveryRequest.objects.only("id", "customer_id").get(pk=offer.delivery_request_id)
            transaction.on_commit(partial(self._after_offer_closed, offer, request.customer_id, "offer_withdrawn"))

        logger.info("Offer %s withdrawn by traveler %s", offer.id, traveler.id)
        return offer

    # ===================== Customer Operations =====================

    def accept_offer(self, customer, offer_id, special_requests: Optional[str] = None, auto: bool = False) -> AcceptResult:
        """
        Accept one offer and create the Delivery, as a single unit of work.

        Protocol (all steps commit or roll back together):
            1. Lock the request then the offer, and re-check both
            2. pending -> accepted on the offer (conditional)
            3. Decline every other pending offer on the request
            4. pending -> accepted on the request (conditional)
            5. Create the Delivery with the offer's price

        ``auto=True`` is the system path: no ownership check, but the offer
        must still be at or below the request's auto-accept threshold.

        Raises:
            NotFoundError: offer does not exist
            AuthorizationError: caller does not own the request
            ConflictError: offer or request no longer in an acceptable state
        """
        request_id = _offer_request_id(offer_id)

        try:
            with transaction.atomic():
                request, offer = _lock_request_and_offer(request_id, offer_id)

                if not auto and (customer is None or request.customer_id != customer.id):
                    raise AuthorizationError("You can only accept offers on your own requests")

                self._check_acceptable(offer, request, auto)

                now = timezone.now()

                updated = DeliveryOffer.objects.filter(pk=offer.pk, status="pending").update(
                    status="accepted", accepted_at=now, updated_at=now,
                )
                if updated != 1:
                    raise ConflictError("Offer is no longer pending")

                siblings = request.offers.filter(status="pending").exclude(pk=offer.pk)
                declined_ids = list(siblings.values_list("id", flat=True))
                DeliveryOffer.objects.filter(pk__in=declined_ids, status="pending").update(
                    status="declined",
                    declined_at=now,
                    declined_reason=ANOTHER_OFFER_ACCEPTED,
                    updated_at=now,
                )

                updated = DeliveryRequest.objects.filter(pk=request.pk, status="pending").update(
                    status="accepted", updated_at=now,
                )
                if updated != 1:
                    raise ConflictError("Delivery request is no longer accepting offers")

                offer.refresh_from_db()
                request.refresh_from_db()

                delivery = Delivery.objects.create(
                    delivery_request=request,
                    offer=offer,
                    customer_id=request.customer_id,
                    traveler_id=offer.traveler_id,
                    trip_id=offer.trip_id,
                    delivery_number=Delivery.generate_delivery_number(),
                    final_price=offer.price,
                    special_requests=special_requests,
                    accepted_at=now,
                )

                result = AcceptResult(
                    delivery=delivery,
                    offer=offer,
                    request=request,
                    declined_offer_ids=declined_ids,
                    auto=auto,
                )
                transaction.on_commit(partial(self._after_accept, result))
        except IntegrityError as exc:
            # Uniqueness on accepted offer / delivery per request caught a concurrent winner
            raise ConflictError("Another offer was already accepted for this request") from exc
        except OperationalError as exc:
            if not is_lock_conflict(exc):
                raise
            raise ConflictError("Delivery request was changed concurrently, please retry") from exc

        logger.info(
            "Offer %s %saccepted for request %s, delivery %s at %s; declined %s",
            offer.id, "auto-" if auto else "", request.id, delivery.delivery_number,
            delivery.final_price, declined_ids,
        )
        return result

    def decline_offer(self, customer, offer_id, reason: Optional[str] = None) -> DeliveryOffer:
        with transaction.atomic():
            offer = DeliveryOffer.objects.select_for_update().filter(pk=offer_id).first()
            if offer is None:
                raise NotFoundError("Offer not found")

            request = DeliveryRequest.objects.only("id", "customer_id").get(pk=offer.delivery_request_id)
            if request.customer_id != customer.id:
                raise AuthorizationError("You can only decline offers on your own requests")
            if offer.status != "pending":
                raise ConflictError(f"Offer cannot be declined (status: {offer.status})")

            now = timezone.now()
            updated = DeliveryOffer.objects.filter(pk=offer.pk, status="pending").update(
                status="declined",
                declined_at=now,
                declined_reason=reason or DECLINED_BY_CUSTOMER,
                updated_at=now,
            )
            if updated != 1:
                raise ConflictError("Offer is no longer pending")
            offer.refresh_from_db()

            transaction.on_commit(partial(self._after_offer_closed, offer, offer.traveler_id, "offer_declined"))

        logger.info("Offer %s declined by customer %s", offer.id, customer.id)
        return offer

    # ===================== System Operations =====================

    def expire_offer(self, offer_id) -> DeliveryOffer:
        """Expire one pending offer whose validity has passed."""
        with transaction.atomic():
            offer = DeliveryOffer.objects.select_for_update().filter(pk=offer_id).first()
            if offer is None:
                raise NotFoundError("Offer not found")
            if offer.status != "pending" or not offer.is_expired():
                raise ConflictError("Only pending offers past their validity can expire")

            now = timezone.now()
            DeliveryOffer.objects.filter(pk=offer.pk, status="pending").update(
                status="expired", expired_at=now, updated_at=now,
            )
            offer.refresh_from_db()
            transaction.on_commit(partial(self._after_offer_closed, offer, offer.traveler_id, "offer_expired"))

        return offer

    def auto_accept_offer(self, offer_id) -> Optional[AcceptResult]:
        """
        Accept an offer on the customer's behalf if it still qualifies.

        Ineligibility and lost races are expected outcomes and return None.
        """
        offer = DeliveryOffer.objects.select_related("delivery_request").filter(pk=offer_id).first()
        if offer is None:
            logger.info("Auto-accept skipped: offer %s no longer exists", offer_id)
            return None

        if not self.is_auto_accept_eligible(offer, offer.delivery_request):
            logger.info("Auto-accept skipped: offer %s is not eligible", offer_id)
            return None

        try:
            return self.accept_offer(None, offer_id, auto=True)
        except DeliveryServiceError as exc:
            logger.info("Auto-accept skipped for offer %s: %s", offer_id, exc)
        except Exception:
            logger.exception("Auto-accept failed for offer %s", offer_id)
        return None

    def evaluate_auto_accept(self, request_id) -> Optional[AcceptResult]:
        """Auto-accept the cheapest qualifying pending offer on a request, if any."""
        request = DeliveryRequest.objects.filter(pk=request_id).first()
        if request is None or request.auto_accept_price is None or not request.can_receive_offers():
            return None

        candidates = request.offers.filter(
            status="pending",
            valid_until__gt=timezone.now(),
            price__lte=request.auto_accept_price,
        ).order_by("price", "created_at")

        for offer in candidates:
            if request.is_blacklisted(offer.traveler_id):
                continue
            return self.auto_accept_offer(offer.id)
        return None

    @staticmethod
    def is_auto_accept_eligible(offer: DeliveryOffer, request: DeliveryRequest) -> bool:
        return (
            request.auto_accept_price is not None
            and offer.price <= request.auto_accept_price
            and offer.can_be_accepted()
            and request.can_receive_offers()
            and not request.is_blacklisted(offer.traveler_id)
        )

    # ===================== Queries =====================

    def get_request_offers(self, request_id, customer=None) -> List[Dict[str, Any]]:
        """
        Offers on one request: pending first, then cheapest, then oldest.

        Pending thresholds are re-evaluated first so an auto-accept lost to a
        restart still happens on the next read.
        """
        from deliveries.serializers import DeliveryOfferSerializer

        request = DeliveryRequest.objects.filter(pk=request_id).first()
        if request is None:
            raise NotFoundError("Delivery request not found")
        if customer is not None and request.customer_id != customer.id:
            raise AuthorizationError("You can only view offers on your own requests")

        self.evaluate_auto_accept(request.id)

        cache_key = CacheKeys.request_offers(request.id)
        cached = self.cache.get(cache_key)
        if cached is not None:
            return with_time_flags(cached)

        offers = (
            DeliveryOffer.objects.filter(delivery_request_id=request.id)
            .select_related("traveler")
            .annotate(
                pending_first=Case(
                    When(status="pending", then=Value(0)),
                    default=Value(1),
                    output_field=IntegerField(),
                )
            )
            .order_by("pending_first", "price", "created_at")
        )
        data = [dict(item) for item in DeliveryOfferSerializer(offers, many=True).data]
        self.cache.set(cache_key, data, self.cache_timeout)
        return data

    def get_traveler_offers(self, traveler, status: Optional[str] = None, page=1, limit=20):
        """Returns (offers, pagination) for one traveler, newest first."""
        queryset = (
            DeliveryOffer.objects.filter(traveler=traveler)
            .select_related("delivery_request")
            .order_by("-created_at", "-id")
        )
        if status:
            queryset = queryset.filter(status=status)
        return paginate(queryset, page, limit)

    def get_offer_statistics(self, request_id=None, traveler=None) -> Dict[str, Any]:
        cache_key = None
        if request_id is not None and traveler is None:
            cache_key = CacheKeys.offer_statistics(request_id)
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached

        queryset = DeliveryOffer.objects.all()
        if request_id is not None:
            queryset = queryset.filter(delivery_request_id=request_id)
        if traveler is not None:
            queryset = queryset.filter(traveler=traveler)

        counts = dict(
            queryset.order_by().values("status").annotate(total=Count("id")).values_list("status", "total")
        )
        prices = queryset.aggregate(average=Avg("price"), minimum=Min("price"), maximum=Max("price"))

        total = sum(counts.values())
        accepted = counts.get("accepted", 0)

        stats = {
            "total_offers": total,
            **{status: counts.get(status, 0) for status, _ in DeliveryOffer.STATUS_CHOICES},
            "average_price": round(float(prices["average"]), 2) if prices["average"] is not None else None,
            "min_price": float(prices["minimum"]) if prices["minimum"] is not None else None,
            "max_price": float(prices["maximum"]) if prices["maximum"] is not None else None,
            "acceptance_rate": round(accepted / total * 100, 2) if total else 0.0,
        }

        if cache_key:
            self.cache.set(cache_key, stats, self.cache_timeout)
        return stats

    # ===================== Internals =====================

    def _validate_traveler_requirements(self, traveler, request: DeliveryRequest) -> None:
        profile = _traveler_profile(traveler)

        if request.min_traveler_rating and request.min_traveler_rating > 0:
            rating = profile.rating_average if profile else Decimal("0")
            if rating < request.min_traveler_rating:
                raise ValidationError("Your rating is below the minimum required for this request")

        if request.verification_required and not (profile and profile.is_verified):
            raise ValidationError("This request requires a verified traveler")

    def _check_acceptable(self, offer: DeliveryOffer, request: DeliveryRequest, auto: bool) -> None:
        if offer.status != "pending":
            raise ConflictError(f"Offer is no longer pending (status: {offer.status})")
        if offer.is_expired():
            raise ConflictError("Offer has expired")
        if not request.can_receive_offers():
            raise ConflictError("Delivery request is no longer accepting offers")
        if request.is_blacklisted(offer.traveler_id):
            raise ConflictError("Traveler is blacklisted for this request")
        if auto and (request.auto_accept_price is None or offer.price > request.auto_accept_price):
            raise ConflictError("Offer no longer qualifies for auto-accept")

    def _invalidate(self, request_id) -> None:
        self.cache.delete_many(CacheKeys.for_offer_write(request_id))

    def _after_offer_submitted(self, offer: DeliveryOffer, request: DeliveryRequest) -> None:
        self._invalidate(request.id)
        notify_offer_event(
            "new_offer", offer, request.customer_id,
            f"New offer of {offer.price} for {request.title}",
        )
        if self.is_auto_accept_eligible(offer, request):
            self.scheduler.schedule(offer.id, self.auto_accept_delay)

    def _after_offer_updated(self, offer: DeliveryOffer, request: DeliveryRequest) -> None:
        self._invalidate(request.id)
        notify_offer_event("offer_updated", offer, request.customer_id, "An offer on your request was updated")
        if self.is_auto_accept_eligible(offer, request):
            self.scheduler.schedule(offer.id, self.auto_accept_delay)
        else:
            self.scheduler.cancel(offer.id)

    def _after_offer_closed(self, offer: DeliveryOffer, recipient_id, event_type: str) -> None:
        self._invalidate(offer.delivery_request_id)
        self.scheduler.cancel(offer.id)
        notify_offer_event(event_type, offer, recipient_id)

    def _after_accept(self, result: AcceptResult) -> None:
        offer, request = result.offer, result.request

        self.cache.delete_many(CacheKeys.for_request_write(request.id))

        extra = {"delivery_number": result.delivery.delivery_number, "auto": result.auto}
        notify_offer_event("offer_accepted", offer, offer.traveler_id, "Your offer was accepted", extra)
        notify_offer_event("delivery_created", offer, request.customer_id, "Delivery created", extra)

        declined = DeliveryOffer.objects.filter(pk__in=result.declined_offer_ids)
        for sibling in declined:
            self.scheduler.cancel(sibling.id)
            notify_offer_event("offer_declined", sibling, sibling.traveler_id, ANOTHER_OFFER_ACCEPTED)


def get_offer_manager() -> OfferLifecycleManager:
    """Manager wired to the shared cache and the Celery scheduler."""
    return OfferLifecycleManager(
        cache=get_cache(),
        scheduler=CeleryAutoAcceptScheduler(),
        auto_accept_delay=getattr(settings, "AUTO_ACCEPT_DELAY_SECONDS", 1),
        cache_timeout=getattr(settings, "OFFER_CACHE_TIMEOUT", 300),
    )
