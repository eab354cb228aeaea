"""
Services package - Business logic layer.

This package contains all business logic services that operate on Django models
but are decoupled from the HTTP/WebSocket layer.

Modules:
    - matching: Candidate carrier discovery, scoring and ranking
    - offer_management: Offer lifecycle, accept protocol, auto-accept and expiry
    - request_management: Delivery request lifecycle
    - exceptions: Error taxonomy shared by all services
"""

from .exceptions import (
    DeliveryServiceError,
    ValidationError,
    NotFoundError,
    ConflictError,
    AuthorizationError,
    ExternalServiceError,
)
from .matching import MatchCriteria, MatchingEngine, get_matching_engine
from .offer_management import (
    AcceptResult,
    OfferLifecycleManager,
    ExpirationSweeper,
    SweepResult,
    get_offer_manager,
    get_sweeper,
)

__all__ = [
    # Exceptions
    "DeliveryServiceError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "AuthorizationError",
    "ExternalServiceError",
    # Matching
    "MatchCriteria",
    "MatchingEngine",
    "get_matching_engine",
    # Offer management
    "AcceptResult",
    "OfferLifecycleManager",
    "ExpirationSweeper",
    "SweepResult",
    "get_offer_manager",
    "get_sweeper",
]
