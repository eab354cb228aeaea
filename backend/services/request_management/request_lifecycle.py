"""
Core delivery request operations.

Requests are owned by one customer. Writes lock the request row so they
serialize with offer acceptance on the same request, and every write drops
the request's cached projections once it has committed.
"""

import logging
import math
from datetime import timedelta
from functools import partial
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.db import OperationalError, transaction
from django.db.models import Avg, Count, Max
from django.utils import timezone

from common.cache import CacheKeys, get_cache
from common.pagination import paginate
from common.utils import GeoPoint, distance_km
from deliveries.models import DeliveryOffer, DeliveryRequest, REQUEST_OPEN_STATUSES
from realtime.notifications import notify_offer_event
from services.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError, is_lock_conflict

logger = logging.getLogger(__name__)


REQUEST_CANCELLED = "Request cancelled by customer"
KM_PER_DEGREE = 111.32


def _check_serializer(serializer) -> Dict[str, Any]:
    if not serializer.is_valid():
        field, messages = next(iter(serializer.errors.items()))
        message = messages[0] if isinstance(messages, list) and messages else str(messages)
        if field != "non_field_errors":
            message = f"{field}: {message}"
        raise ValidationError(str(message), details=serializer.errors)
    return serializer.validated_data


def _get_owned_request(customer, request_id, lock: bool = False) -> DeliveryRequest:
    queryset = DeliveryRequest.objects.all()
    if lock:
        queryset = queryset.select_for_update()
    request = queryset.filter(pk=request_id).first()
    if request is None:
        raise NotFoundError("Delivery request not found")
    if request.customer_id != customer.id:
        raise AuthorizationError("You can only modify your own delivery requests")
    return request


def _invalidate(request_id) -> None:
    get_cache().delete_many(CacheKeys.for_request_write(request_id))


# ===================== Customer Operations =====================

def create_delivery_request(customer, data) -> DeliveryRequest:
    """
    Validate and persist a new delivery request.

    Matching is warmed in the background once the row is committed.

    Raises:
        ValidationError: payload failed validation
    """
    from deliveries.serializers import DeliveryRequestWriteSerializer

    serializer = DeliveryRequestWriteSerializer(data=data)
    _check_serializer(serializer)

    with transaction.atomic():
        request = serializer.save(customer=customer, status="pending")
        transaction.on_commit(partial(_warm_matches, request.id))

    logger.info("Delivery request %s created by customer %s", request.id, customer.id)
    return request


def get_delivery_request(request_id, user=None) -> Dict[str, Any]:
    """
    Serialized request, cached for OFFER_CACHE_TIMEOUT seconds.

    Non-owners only see requests that are still open for offers.
    """
    from deliveries.serializers import DeliveryRequestSerializer

    cache = get_cache()
    cache_key = CacheKeys.delivery_request(request_id)
    data = cache.get(cache_key)

    if data is None:
        request = DeliveryRequest.objects.select_related("customer").filter(pk=request_id).first()
        if request is None:
            raise NotFoundError("Delivery request not found")
        data = dict(DeliveryRequestSerializer(request).data)
        cache.set(cache_key, data, getattr(settings, "OFFER_CACHE_TIMEOUT", 300))

    if user is not None and data["customer"]["id"] != user.id and data["status"] not in REQUEST_OPEN_STATUSES:
        raise NotFoundError("Delivery request not found")
    return data


def get_customer_requests(customer, status: Optional[str] = None, page=1, limit=20):
    """Returns (requests, pagination), newest first."""
    queryset = DeliveryRequest.objects.filter(customer=customer).order_by("-created_at", "-id")
    if status:
        queryset = queryset.filter(status=status)
    return paginate(queryset, page, limit)


def update_delivery_request(customer, request_id, data) -> DeliveryRequest:
    """
    Partially update a request that is still open for offers.

    Raises:
        NotFoundError, AuthorizationError
        ConflictError: request no longer accepts offers
        ValidationError: invalid payload, or max price below a pending offer
    """
    from deliveries.serializers import DeliveryRequestWriteSerializer

    with transaction.atomic():
        request = _get_owned_request(customer, request_id, lock=True)
        if not request.can_receive_offers():
            raise ConflictError("Delivery request can no longer be updated")

        serializer = DeliveryRequestWriteSerializer(request, data=data, partial=True)
        validated = _check_serializer(serializer)

        if "max_price" in validated:
            highest = request.offers.filter(status="pending").aggregate(highest=Max("price"))["highest"]
            if highest is not None and validated["max_price"] < highest:
                raise ValidationError("Maximum price cannot be lower than an existing pending offer")

        request = serializer.save()
        transaction.on_commit(partial(_after_request_updated, request.id))

    logger.info("Delivery request %s updated: %s", request.id, sorted(validated))
    return request


def cancel_delivery_request(customer, request_id, reason: str = "") -> DeliveryRequest:
    """
    Cancel an open request and decline all of its pending offers atomically.

    Raises:
        NotFoundError, AuthorizationError
        ConflictError: already cancelled, expired or accepted onward
    """
    try:
        request, declined_ids = _cancel_locked(customer, request_id, reason)
    except OperationalError as exc:
        if not is_lock_conflict(exc):
            raise
        raise ConflictError("Delivery request was changed concurrently, please retry") from exc

    logger.info("Delivery request %s cancelled; declined offers %s", request.id, declined_ids)
    return request


def _cancel_locked(customer, request_id, reason):
    with transaction.atomic():
        request = _get_owned_request(customer, request_id, lock=True)
        if request.status == "cancelled":
            raise ConflictError("Delivery request is already cancelled")
        if request.status not in REQUEST_OPEN_STATUSES:
            raise ConflictError(f"Cannot cancel - request is already {request.status}")

        now = timezone.now()
        updated = DeliveryRequest.objects.filter(pk=request.pk, status__in=REQUEST_OPEN_STATUSES).update(
            status="cancelled",
            cancelled_at=now,
            cancellation_reason=reason or None,
            updated_at=now,
        )
        if updated != 1:
            raise ConflictError("Delivery request is no longer open")

        pending = request.offers.filter(status="pending")
        declined_ids = list(pending.values_list("id", flat=True))
        DeliveryOffer.objects.filter(pk__in=declined_ids, status="pending").update(
            status="declined",
            declined_at=now,
            declined_reason=REQUEST_CANCELLED,
            updated_at=now,
        )

        request.refresh_from_db()
        transaction.on_commit(partial(_after_request_cancelled, request.id, declined_ids))

    return request, declined_ids


def duplicate_delivery_request(customer, request_id, modifications=None) -> DeliveryRequest:
    """
    Create a new pending request from one of the customer's requests.

    Item, route, pricing and restriction fields are copied and then
    overridden by ``modifications``. The copy gets a fresh expiry.

    Raises:
        NotFoundError, AuthorizationError
        ValidationError: the resulting payload failed validation
    """
    from deliveries.serializers import DeliveryRequestWriteSerializer

    if modifications is not None and not isinstance(modifications, dict):
        raise ValidationError("Modifications must be an object")

    source = _get_owned_request(customer, request_id)
    payload = dict(DeliveryRequestWriteSerializer(source).data)
    payload.pop("expires_at", None)
    payload.update(modifications or {})

    request = create_delivery_request(customer, payload)
    logger.info("Delivery request %s duplicated from %s", request.id, source.id)
    return request


def get_request_analytics(customer, request_id) -> Dict[str, Any]:
    """Offer statistics, price position and event timeline for the owner's request."""
    from services.matching.scoring import market_rate
    from services.offer_management import get_offer_manager

    request = _get_owned_request(customer, request_id)
    stats = get_offer_manager().get_offer_statistics(request_id=request.id)

    timeline = [{"event": "request_created", "timestamp": request.created_at}]
    for offer in request.offers.order_by("created_at", "id"):
        timeline.append({
            "event": "offer_received",
            "timestamp": offer.created_at,
            "offer_id": offer.id,
            "price": float(offer.price),
        })
        if offer.accepted_at:
            timeline.append({"event": "offer_accepted", "timestamp": offer.accepted_at, "offer_id": offer.id})
    if request.cancelled_at:
        timeline.append({"event": "request_cancelled", "timestamp": request.cancelled_at})
    timeline.sort(key=lambda event: event["timestamp"])

    return {
        "request_id": request.id,
        "status": request.status,
        "offers": stats,
        "price_analysis": {
            "max_price": float(request.max_price),
            "average_offer": stats["average_price"],
            "lowest_offer": stats["min_price"],
            "highest_offer": stats["max_price"],
            "market_rate": market_rate(request),
        },
        "timeline": [{**event, "timestamp": event["timestamp"].isoformat()} for event in timeline],
    }


# ===================== Traveler Operations =====================

def search_delivery_requests(
    traveler,
    latitude: float,
    longitude: float,
    radius_km: float = 25,
    category: Optional[str] = None,
    limit: int = 50,
) -> List[DeliveryRequest]:
    """
    Open requests with a pickup within ``radius_km`` of a point, nearest first.

    Each returned request carries a ``distance_km`` attribute. The traveler's
    own requests and requests that blacklist the traveler are left out.
    """
    if radius_km <= 0:
        raise ValidationError("Radius must be greater than zero")
    if not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
        raise ValidationError("Invalid coordinates")

    origin = GeoPoint(latitude, longitude)
    lat_delta = radius_km / KM_PER_DEGREE
    lng_delta = radius_km / (KM_PER_DEGREE * max(math.cos(math.radians(latitude)), 0.01))

    queryset = DeliveryRequest.objects.filter(
        status="pending",
        expires_at__gt=timezone.now(),
        pickup_latitude__range=(latitude - lat_delta, latitude + lat_delta),
        pickup_longitude__range=(longitude - lng_delta, longitude + lng_delta),
    ).exclude(customer=traveler)
    if category:
        queryset = queryset.filter(category=category)

    results = []
    for request in queryset:
        if request.is_blacklisted(traveler.id):
            continue
        distance = distance_km(origin, request.pickup_point)
        if distance <= radius_km:
            request.distance_km = round(distance, 2)
            results.append(request)

    results.sort(key=lambda r: (r.distance_km, r.id))
    return results[:limit]


# ===================== Insights =====================

POPULAR_ROUTE_PERIODS = {"week": 7, "month": 30, "quarter": 90}
MAX_POPULAR_ROUTES = 50


def _demand_level(count: int) -> str:
    if count > 10:
        return "high"
    if count > 5:
        return "medium"
    return "low"


def get_popular_routes(period: str = "month", category: Optional[str] = None, limit=10) -> List[Dict[str, Any]]:
    """
    Most requested pickup/drop-off address pairs created within ``period``.

    Cached for POPULAR_ROUTES_CACHE_TIMEOUT seconds per period and category.
    At most MAX_POPULAR_ROUTES routes are returned.

    Raises:
        ValidationError: unknown period or non-positive limit
    """
    if period not in POPULAR_ROUTE_PERIODS:
        raise ValidationError(f"Period must be one of: {', '.join(POPULAR_ROUTE_PERIODS)}")
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        raise ValidationError("limit must be a number")
    if limit < 1:
        raise ValidationError("limit must be at least 1")

    cache = get_cache()
    cache_key = CacheKeys.popular_routes(period, category)
    routes = cache.get(cache_key)

    if routes is None:
        since = timezone.now() - timedelta(days=POPULAR_ROUTE_PERIODS[period])
        queryset = DeliveryRequest.objects.filter(created_at__gte=since).exclude(pickup_address="")
        queryset = queryset.exclude(dropoff_address="")
        if category:
            queryset = queryset.filter(category=category)

        rows = (
            queryset.order_by()
            .values("pickup_address", "dropoff_address", "category")
            .annotate(request_count=Count("id"), average_price=Avg("max_price"), average_weight=Avg("weight"))
            .order_by("-request_count", "pickup_address", "dropoff_address", "category")
        )
        routes = [
            {
                "route": {"origin": row["pickup_address"], "destination": row["dropoff_address"]},
                "category": row["category"],
                "request_count": row["request_count"],
                "average_price": round(float(row["average_price"]), 2),
                "average_weight": round(float(row["average_weight"]), 2),
                "demand_level": _demand_level(row["request_count"]),
            }
            for row in rows[:MAX_POPULAR_ROUTES]
        ]
        cache.set(cache_key, routes, getattr(settings, "POPULAR_ROUTES_CACHE_TIMEOUT", 3600))

    return routes[:limit]


# ===================== Commit Hooks =====================

def _warm_matches(request_id) -> None:
    from deliveries.tasks import find_matches_task

    try:
        find_matches_task.delay(request_id)
    except Exception:
        logger.exception("Failed to queue match warm-up for request %s", request_id)


def _after_request_updated(request_id) -> None:
    from services.offer_management import get_offer_manager

    _invalidate(request_id)
    # A raised threshold can make a pending offer eligible
    get_offer_manager().evaluate_auto_accept(request_id)


def _after_request_cancelled(request_id, declined_ids) -> None:
    from services.offer_management import get_offer_manager

    _invalidate(request_id)
    scheduler = get_offer_manager().scheduler
    for offer in DeliveryOffer.objects.filter(pk__in=declined_ids):
        scheduler.cancel(offer.id)
        notify_offer_event("request_cancelled", offer, offer.traveler_id, REQUEST_CANCELLED)
