"""Common utility functions."""

from .geo import GeoPoint, calculate_distance, distance_km

__all__ = [
    "GeoPoint",
    "calculate_distance",
    "distance_km",
]
