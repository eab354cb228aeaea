"""
Offer management service.

This module handles:
    - Offer submission, update, withdrawal, decline and expiry
    - The transactional accept protocol that creates a Delivery
    - Cancellable auto-accept scheduling
    - Periodic expiration sweeps
"""

from .offer_lifecycle import (
    AcceptResult,
    OfferLifecycleManager,
    get_offer_manager,
    validate_offer_price,
)
from .scheduling import AutoAcceptScheduler, CeleryAutoAcceptScheduler, auto_accept_task_id
from .sweeper import ExpirationSweeper, SweepResult, get_sweeper

__all__ = [
    "AcceptResult",
    "OfferLifecycleManager",
    "get_offer_manager",
    "validate_offer_price",
    "AutoAcceptScheduler",
    "CeleryAutoAcceptScheduler",
    "auto_accept_task_id",
    "ExpirationSweeper",
    "SweepResult",
    "get_sweeper",
]
