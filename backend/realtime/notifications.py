"""
Notification helpers for pushing delivery events to connected clients.

Events go to the per-user group ``user_<id>`` on the Channels layer. Delivery
is best-effort: a missing or failing channel layer is logged and reported as
False, never raised into the business operation that triggered it.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

logger = logging.getLogger(__name__)


def user_group(user_id) -> str:
    return f"user_{user_id}"


def notify_user_event(
    user_id,
    event_type: str,
    message: str = "",
    extra: Dict[str, Any] = None,
) -> bool:
    """
    Send an event to one user's personal group.

    Args:
        user_id: Target user's id
        event_type: Consumer handler name (new_offer, offer_accepted, offer_declined, ...)
        message: Optional human-readable message
        extra: Additional payload data

    Returns:
        True if handed to the channel layer, False otherwise
    """
    if not user_id:
        return False

    payload = {"type": event_type, **(extra or {})}
    if message:
        payload["message"] = message

    try:
        channel_layer = get_channel_layer()
        if channel_layer is None:
            return False
        logger.debug("WS -> user_%s: %s", user_id, payload)
        async_to_sync(channel_layer.group_send)(user_group(user_id), payload)
    except Exception:
        logger.warning("Failed to notify user %s of %s", user_id, event_type, exc_info=True)
        return False

    return True


def notify_offer_event(event_type: str, offer, recipient_id, message: str = "", extra: Dict[str, Any] = None) -> bool:
    """Offer-scoped event carrying the ids a client needs to refresh its views."""
    payload = {
        "offer_id": offer.id,
        "request_id": offer.delivery_request_id,
        "status": offer.status,
        "price": str(offer.price),
        **(extra or {}),
    }
    return notify_user_event(recipient_id, event_type, message, payload)
