"""
Carrier matching service.

This module handles:
    - Querying the external trip directory for candidate carriers
    - Filtering candidates by detour
    - Rule-based compatibility scoring and ranking
"""

from .engine import MatchCriteria, MatchingEngine, get_matching_engine
from .trip_directory import CandidateCarrier, HttpTripDirectory, TripDirectory, get_trip_directory

__all__ = [
    "MatchCriteria",
    "MatchingEngine",
    "get_matching_engine",
    "CandidateCarrier",
    "HttpTripDirectory",
    "TripDirectory",
    "get_trip_directory",
]
