"""
Client for the external trip directory.

The directory answers "which upcoming trips pass near these two points in
this time window with enough spare capacity". Every failure mode (timeout,
connection error, non-2xx, unparsable body) surfaces as
``ExternalServiceError`` so callers can degrade on one exception type.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests
from django.conf import settings
from django.utils.dateparse import parse_datetime

from common.utils import GeoPoint
from services.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


def _parse_time(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return parse_datetime(str(value))


def _as_float(value) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


@dataclass
class CandidateCarrier:
    """A planned trip that could carry the item. Not persisted here."""
    trip_id: str
    traveler_id: Optional[str]
    origin: Optional[GeoPoint]
    destination: Optional[GeoPoint]
    departure_time: Optional[datetime] = None
    arrival_time: Optional[datetime] = None
    title: str = ""
    trip_type: str = ""
    origin_address: str = ""
    destination_address: str = ""

    # Capacity
    available_weight: Optional[float] = None
    weight_capacity: Optional[float] = None
    available_items: Optional[int] = None
    item_capacity: Optional[int] = None
    available_volume: Optional[float] = None
    volume_capacity: Optional[float] = None

    # Traveler reputation
    traveler_first_name: str = "Unknown"
    traveler_last_name: str = "User"
    traveler_rating: Optional[float] = None
    traveler_rating_count: int = 0
    verification_level: str = "basic"
    completed_deliveries: int = 0

    # Preferences
    accepted_categories: Optional[List[str]] = None
    accept_fragile: bool = True
    max_item_value: Optional[float] = None

    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "CandidateCarrier":
        """Build a carrier from one entry of the directory's ``data`` list."""
        traveler = data.get("traveler") or {}
        rating = traveler.get("rating") or {}
        statistics = traveler.get("statistics") or {}
        preferences = data.get("preferences") or {}

        return cls(
            trip_id=str(data["id"]),
            traveler_id=str(data["travelerId"]) if data.get("travelerId") is not None else None,
            origin=GeoPoint.from_payload(data.get("originCoordinates")),
            destination=GeoPoint.from_payload(data.get("destinationCoordinates")),
            departure_time=_parse_time(data.get("departureTime")),
            arrival_time=_parse_time(data.get("arrivalTime")),
            title=data.get("title") or "",
            trip_type=data.get("type") or data.get("tripType") or "",
            origin_address=data.get("originAddress") or "",
            destination_address=data.get("destinationAddress") or "",
            available_weight=_as_float(data.get("availableWeight")),
            weight_capacity=_as_float(data.get("weightCapacity")),
            available_items=data.get("availableItems"),
            item_capacity=data.get("itemCapacity"),
            available_volume=_as_float(data.get("availableVolume")),
            volume_capacity=_as_float(data.get("volumeCapacity")),
            traveler_first_name=traveler.get("firstName") or "Unknown",
            traveler_last_name=traveler.get("lastName") or "User",
            traveler_rating=_as_float(rating.get("average")),
            traveler_rating_count=int(rating.get("count") or 0),
            verification_level=traveler.get("verificationLevel") or "basic",
            completed_deliveries=int(statistics.get("totalDeliveries") or 0),
            accepted_categories=preferences.get("acceptedCategories"),
            accept_fragile=preferences.get("acceptFragile") is not False,
            max_item_value=_as_float(preferences.get("maxItemValue")),
        )


class TripDirectory:
    """Interface of the trip directory collaborator."""

    def search_trips(
        self,
        origin: GeoPoint,
        origin_radius_km: float,
        destination: GeoPoint,
        destination_radius_km: float,
        departure_from: datetime,
        departure_to: datetime,
        min_weight: float,
        min_items: int,
        status: str = "upcoming",
    ) -> List[CandidateCarrier]:
        raise NotImplementedError


class HttpTripDirectory(TripDirectory):
    """Trip directory reached over HTTP with a bounded timeout."""

    SEARCH_PATH = "/api/v1/trips/search"

    def __init__(self, base_url: str, timeout: float = 4.0, session: Optional[requests.Session] = None,
                 page_size: int = 50):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.page_size = page_size
        self.session = session or requests.Session()

    def search_trips(
        self,
        origin: GeoPoint,
        origin_radius_km: float,
        destination: GeoPoint,
        destination_radius_km: float,
        departure_from: datetime,
        departure_to: datetime,
        min_weight: float,
        min_items: int,
        status: str = "upcoming",
    ) -> List[CandidateCarrier]:
        params = {
            "originLat": origin.lat,
            "originLng": origin.lng,
            "originRadius": origin_radius_km,
            "destinationLat": destination.lat,
            "destinationLng": destination.lng,
            "destinationRadius": destination_radius_km,
            "departureFrom": departure_from.isoformat(),
            "departureTo": departure_to.isoformat(),
            "minWeight": min_weight,
            "minItems": min_items,
            "status": status,
            "visibility": "public",
            "limit": self.page_size,
        }
        url = f"{self.base_url}{self.SEARCH_PATH}"

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except requests.Timeout as exc:
            raise ExternalServiceError(f"Trip directory timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise ExternalServiceError(f"Trip directory request failed: {exc}") from exc
        except ValueError as exc:
            raise ExternalServiceError("Trip directory returned invalid JSON") from exc

        entries = body.get("data") if isinstance(body, dict) else None
        if entries is None:
            raise ExternalServiceError("Trip directory response has no data list")

        carriers: List[CandidateCarrier] = []
        for entry in entries:
            try:
                carriers.append(CandidateCarrier.from_payload(entry))
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed trip entry: %r", entry)
        return carriers


def get_trip_directory() -> TripDirectory:
    """Directory client configured from settings."""
    return HttpTripDirectory(
        base_url=getattr(settings, "TRIP_SERVICE_URL", "http://localhost:3003"),
        timeout=getattr(settings, "TRIP_SERVICE_TIMEOUT", 4.0),
    )
