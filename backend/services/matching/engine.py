"""
Candidate carrier matching for delivery requests.

Pipeline:
    1. Discover candidate trips from the trip directory (time-bounded)
    2. Drop candidates whose detour exceeds the limit
    3. Score each survivor with the rule-based model
    4. Keep scores >= 0.6, best first, at most 10

The result is a read-only projection and is cached per request version and
criteria. A failing directory yields an empty, uncached result.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from django.conf import settings
from django.utils import timezone

from common.cache import BestEffortCache, CacheKeys, get_cache
from deliveries.models import DeliveryRequest
from services.exceptions import ExternalServiceError, NotFoundError, ValidationError
from . import scoring
from .trip_directory import CandidateCarrier, TripDirectory, get_trip_directory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchCriteria:
    """Tunable search limits: km, km and hours."""
    max_distance: float = 10.0
    max_detour: float = 20.0
    time_flexibility: float = 6.0

    @classmethod
    def from_params(cls, params) -> "MatchCriteria":
        """Build criteria from query params, rejecting negative or non-numeric values."""
        values = {}
        for name in ("max_distance", "max_detour", "time_flexibility"):
            raw = params.get(name)
            if raw in (None, ""):
                continue
            try:
                value = float(raw)
            except (TypeError, ValueError):
                raise ValidationError(f"{name} must be a number")
            if value < 0:
                raise ValidationError(f"{name} must not be negative")
            values[name] = value
        return cls(**values)

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


class MatchingEngine:
    MIN_SCORE = 0.6
    MAX_RESULTS = 10
    ALGORITHM = "rule-based"

    def __init__(self, trip_directory: TripDirectory, cache: BestEffortCache, cache_timeout: int = 600):
        self.trip_directory = trip_directory
        self.cache = cache
        self.cache_timeout = cache_timeout

    def find_matches(self, request_id, criteria: Optional[MatchCriteria] = None) -> Dict[str, Any]:
        """
        Rank candidate carriers for one delivery request.

        Raises:
            NotFoundError: unknown request id. Directory failures never raise.
        """
        criteria = criteria or MatchCriteria()

        request = DeliveryRequest.objects.filter(pk=request_id).first()
        if request is None:
            raise NotFoundError("Delivery request not found")

        cache_key = CacheKeys.matches(request.id, request.version, criteria.as_dict())
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        candidates, degraded = self.find_candidates(request, criteria)

        scored = [self.score_match(request, carrier) for carrier in candidates]
        matches = sorted(
            (m for m in scored if m["compatibility_score"] >= self.MIN_SCORE),
            key=lambda m: (-m["compatibility_score"], m["trip"]["id"]),
        )[: self.MAX_RESULTS]

        result = {
            "request_id": request.id,
            "matches": matches,
            "total_matches": len(matches),
            "algorithm_used": self.ALGORITHM,
            "degraded": degraded,
        }

        if not degraded:
            self.cache.set(cache_key, result, self.cache_timeout)

        logger.info(
            "Matched request %s: %d candidates, %d above threshold%s",
            request.id, len(candidates), len(matches), " (degraded)" if degraded else "",
        )
        return result

    def find_candidates(self, request: DeliveryRequest, criteria: MatchCriteria) -> Tuple[List[CandidateCarrier], bool]:
        """
        Query the directory and apply the detour filter. Trips without both
        route endpoints cannot be measured and are dropped.

        Returns (candidates, degraded); degraded is True when the directory failed.
        """
        window_start = request.pickup_time_start or timezone.now()
        window_end = request.pickup_time_end or window_start
        flexibility = timedelta(hours=criteria.time_flexibility)

        try:
            trips = self.trip_directory.search_trips(
                origin=request.pickup_point,
                origin_radius_km=criteria.max_distance,
                destination=request.dropoff_point,
                destination_radius_km=criteria.max_distance,
                departure_from=window_start - flexibility,
                departure_to=window_end + flexibility,
                min_weight=float(request.weight),
                min_items=request.quantity,
                status="upcoming",
            )
        except ExternalServiceError as exc:
            logger.warning("Trip directory unavailable for request %s: %s", request.id, exc)
            return [], True
        except Exception:
            logger.exception("Unexpected trip directory failure for request %s", request.id)
            return [], True

        candidates = []
        for trip in trips:
            if trip.origin is None or trip.destination is None:
                logger.warning("Skipping trip %s without route coordinates", trip.trip_id)
                continue
            if scoring.calculate_detour(trip, request) <= criteria.max_detour:
                candidates.append(trip)
        return candidates, False

    def score_match(self, request: DeliveryRequest, carrier: CandidateCarrier) -> Dict[str, Any]:
        features = scoring.extract_features(request, carrier)
        score = scoring.rule_based_score(features)

        efficiency = scoring.route_efficiency(carrier, request)
        price_fit = scoring.price_compatibility(request, carrier)
        timing = features.time_compatibility
        rating = features.traveler_rating

        return {
            "trip": {
                "id": carrier.trip_id,
                "title": carrier.title,
                "type": carrier.trip_type,
                "traveler": {
                    "id": carrier.traveler_id,
                    "first_name": carrier.traveler_first_name,
                    "last_name": carrier.traveler_last_name,
                    "rating": {
                        "average": rating,
                        "count": carrier.traveler_rating_count,
                    },
                },
                "departure_time": _iso(carrier.departure_time),
                "route": {
                    "origin": carrier.origin_address,
                    "destination": carrier.destination_address,
                },
            },
            "compatibility": {
                "score": round(score * 100, 1),
                "factors": {
                    "route": round(efficiency * 100),
                    "timing": round(timing * 100),
                    "capacity": round(scoring.capacity_utilization(request, carrier) * 100),
                    "price": round(price_fit * 100),
                    "rating": round(rating / 5 * 100),
                },
            },
            "compatibility_score": score,
            "features": features.as_dict(),
            "route_efficiency": efficiency,
            "price_compatibility": price_fit,
            "time_compatibility": timing,
            "estimated_price": scoring.estimated_price(request, carrier),
            "estimated_pickup_time": _iso(scoring.estimated_pickup_time(carrier)),
            "estimated_delivery_time": _iso(scoring.estimated_delivery_time(carrier)),
        }


def get_matching_engine() -> MatchingEngine:
    """Engine wired to the configured trip directory and shared cache."""
    return MatchingEngine(
        trip_directory=get_trip_directory(),
        cache=get_cache(),
        cache_timeout=getattr(settings, "MATCH_CACHE_TIMEOUT", 600),
    )
