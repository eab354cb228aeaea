"""
Rule-based compatibility scoring for candidate carriers.

Scoring is additive and fully explainable: every feature threshold moves the
score by a fixed step from a 0.5 base, and the result is clamped to [0, 1].
Ranking depends on the ordering these steps induce, so the thresholds below
are part of the contract.
"""

from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Optional

from common.utils import distance_km
from .trip_directory import CandidateCarrier


BASE_SCORE = 0.5
DEFAULT_TRAVELER_RATING = 4.0
DEFAULT_WEIGHT_CAPACITY = 10.0
DEFAULT_ITEM_CAPACITY = 5
DEFAULT_MAX_ITEM_VALUE = 1000.0

VERIFICATION_SCORES = {
    "basic": 1,
    "email": 2,
    "phone": 3,
    "identity": 4,
    "verified": 4,
}

URGENCY_PRICE_MULTIPLIERS = {"standard": 1.0, "express": 1.4, "urgent": 1.8}
TRIP_TYPE_PRICE_MULTIPLIERS = {"flight": 1.2, "train": 1.0, "car": 0.9, "bus": 0.8}


@dataclass
class MatchFeatures:
    origin_distance: float
    destination_distance: float
    route_detour: float
    weight_utilization: float
    volume_utilization: float
    traveler_rating: float
    traveler_experience: int
    verification_level: int
    category_match: bool
    fragile_compatible: bool
    value_compatible: bool
    time_compatibility: float
    time_flexibility: float

    def as_dict(self) -> dict:
        return asdict(self)


def calculate_detour(carrier: CandidateCarrier, request) -> float:
    """Extra km the carrier drives to serve pickup and drop-off, never negative."""
    direct = distance_km(carrier.origin, carrier.destination)
    with_delivery = (
        distance_km(carrier.origin, request.pickup_point)
        + distance_km(request.pickup_point, request.dropoff_point)
        + distance_km(request.dropoff_point, carrier.destination)
    )
    return max(0.0, with_delivery - direct)


def route_efficiency(carrier: CandidateCarrier, request) -> float:
    direct = distance_km(carrier.origin, carrier.destination)
    if direct == 0:
        return 0.0
    return max(0.0, 1 - calculate_detour(carrier, request) / direct)


def weight_utilization(request, carrier: CandidateCarrier) -> float:
    capacity = carrier.available_weight or carrier.weight_capacity or DEFAULT_WEIGHT_CAPACITY
    return float(request.weight) / capacity


def capacity_utilization(request, carrier: CandidateCarrier) -> float:
    items = carrier.available_items or carrier.item_capacity or DEFAULT_ITEM_CAPACITY
    return min(weight_utilization(request, carrier), request.quantity / items)


def volume_utilization(request, carrier: CandidateCarrier) -> float:
    dimensions = request.dimensions or {}
    if not dimensions or not carrier.volume_capacity:
        return 0.1
    # cm^3 -> m^3
    item_volume = (
        float(dimensions.get("length", 0))
        * float(dimensions.get("width", 0))
        * float(dimensions.get("height", 0))
        / 1_000_000
    )
    return item_volume / (carrier.available_volume or carrier.volume_capacity or 0.1)


def verification_score(level: Optional[str]) -> int:
    return VERIFICATION_SCORES.get(level or "basic", 1)


def category_compatible(category: str, carrier: CandidateCarrier) -> bool:
    if not carrier.accepted_categories:
        return True
    return category in carrier.accepted_categories


def time_compatibility(request, carrier: CandidateCarrier) -> float:
    if not request.pickup_time_start or not carrier.departure_time:
        return 0.5

    # Whole hours, truncated
    hours = int(abs((carrier.departure_time - request.pickup_time_start).total_seconds()) // 3600)
    if hours <= 2:
        return 1.0
    if hours <= 6:
        return 0.8
    if hours <= 12:
        return 0.6
    if hours <= 24:
        return 0.3
    return 0.1


def time_flexibility(request) -> float:
    if not request.flexible_pickup_timing:
        return 0.5
    if not request.pickup_time_start or not request.pickup_time_end:
        return 0.5
    window_hours = int((request.pickup_time_end - request.pickup_time_start).total_seconds() // 3600)
    return min(1.0, window_hours / 24)


def extract_features(request, carrier: CandidateCarrier) -> MatchFeatures:
    rating = carrier.traveler_rating if carrier.traveler_rating else DEFAULT_TRAVELER_RATING
    max_value = carrier.max_item_value or DEFAULT_MAX_ITEM_VALUE

    return MatchFeatures(
        origin_distance=distance_km(request.pickup_point, carrier.origin),
        destination_distance=distance_km(request.dropoff_point, carrier.destination),
        route_detour=calculate_detour(carrier, request),
        weight_utilization=weight_utilization(request, carrier),
        volume_utilization=volume_utilization(request, carrier),
        traveler_rating=rating,
        traveler_experience=carrier.completed_deliveries,
        verification_level=verification_score(carrier.verification_level),
        category_match=category_compatible(request.category, carrier),
        fragile_compatible=(not request.is_fragile) or carrier.accept_fragile,
        value_compatible=(not request.value) or float(request.value) <= max_value,
        time_compatibility=time_compatibility(request, carrier),
        time_flexibility=time_flexibility(request),
    )


def rule_based_score(features: MatchFeatures) -> float:
    score = BASE_SCORE

    if features.origin_distance <= 5:
        score += 0.2
    elif features.origin_distance <= 10:
        score += 0.1
    elif features.origin_distance > 20:
        score -= 0.2

    if features.destination_distance <= 5:
        score += 0.2
    elif features.destination_distance <= 10:
        score += 0.1
    elif features.destination_distance > 20:
        score -= 0.2

    if features.route_detour <= 5:
        score += 0.1
    elif features.route_detour > 20:
        score -= 0.2

    if features.traveler_rating >= 4.5:
        score += 0.15
    elif features.traveler_rating >= 4.0:
        score += 0.1
    elif features.traveler_rating < 3.0:
        score -= 0.2

    if features.weight_utilization > 0.7:
        score += 0.1
    if features.weight_utilization < 0.1:
        score -= 0.1

    if features.category_match:
        score += 0.1
    if features.fragile_compatible:
        score += 0.05
    if features.value_compatible:
        score += 0.05

    if features.traveler_experience > 50:
        score += 0.1
    elif features.traveler_experience > 20:
        score += 0.05

    if features.time_flexibility > 0.8:
        score += 0.1
    elif features.time_flexibility < 0.3:
        score -= 0.1

    # Departure more than a day away from the pickup window
    if features.time_compatibility <= 0.1:
        score -= 0.1

    return max(0.0, min(1.0, score))


def _base_price(request) -> float:
    price = 15.0
    price += request.direct_distance_km() * 0.8
    price += float(request.weight) * 2.5
    price *= URGENCY_PRICE_MULTIPLIERS.get(request.urgency, 1.0)
    if request.is_fragile:
        price *= 1.15
    return price


def market_rate(request) -> float:
    """Going rate for a request regardless of the carrier's trip type."""
    return round(_base_price(request), 2)


def estimated_price(request, carrier: CandidateCarrier) -> float:
    return round(_base_price(request) * TRIP_TYPE_PRICE_MULTIPLIERS.get(carrier.trip_type, 1.0), 2)


def price_compatibility(request, carrier: CandidateCarrier) -> float:
    estimate = estimated_price(request, carrier)
    max_price = float(request.max_price)
    if estimate <= max_price:
        return min(1.0, max_price / estimate - 1 + 0.5)
    return max(0.0, 1 - (estimate - max_price) / max_price)


def estimated_pickup_time(carrier: CandidateCarrier) -> Optional[datetime]:
    if not carrier.departure_time:
        return None
    offset = 3 if carrier.trip_type == "flight" else 1.5
    return carrier.departure_time - timedelta(hours=offset)


def estimated_delivery_time(carrier: CandidateCarrier) -> Optional[datetime]:
    if not carrier.arrival_time:
        return None
    offset = 2 if carrier.trip_type == "flight" else 1
    return carrier.arrival_time + timedelta(hours=offset)
