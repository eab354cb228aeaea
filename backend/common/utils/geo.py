"""
Geographic utility functions.

This module provides the great-circle calculations used by matching and
request search.
"""

from dataclasses import dataclass
from math import radians, cos, sin, asin, sqrt
from typing import Optional


EARTH_RADIUS_METERS = 6371000


@dataclass(frozen=True)
class GeoPoint:
    """A latitude/longitude pair in decimal degrees."""
    lat: float
    lng: float

    @classmethod
    def from_payload(cls, payload) -> Optional["GeoPoint"]:
        """
        Build a point from the trip directory's coordinate shapes.

        Accepts ``{"lat": .., "lng": ..}`` or a GeoJSON point
        (``{"coordinates": [lng, lat]}``). Returns None when absent.
        """
        if not payload:
            return None
        if "coordinates" in payload:
            lng, lat = payload["coordinates"][:2]
        else:
            lat, lng = payload["lat"], payload.get("lng", payload.get("lon"))
        return cls(lat=float(lat), lng=float(lng))


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate distance between two points in meters using Haversine formula.
    
    Args:
        lat1: Latitude of first point
        lon1: Longitude of first point
        lat2: Latitude of second point
        lon2: Longitude of second point
    
    Returns:
        Distance in meters
    """
    lat1, lon1, lat2, lon2 = map(radians, [float(lat1), float(lon1), float(lat2), float(lon2)])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    c = 2 * asin(sqrt(a))
    return c * EARTH_RADIUS_METERS


def distance_km(a: Optional[GeoPoint], b: Optional[GeoPoint]) -> float:
    """Distance between two points in kilometres; 0 when either is unknown."""
    if a is None or b is None:
        return 0.0
    return calculate_distance(a.lat, a.lng, b.lat, b.lng) / 1000.0
