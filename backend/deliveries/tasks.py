"""Celery tasks for delivery background processing."""

from celery import shared_task
from django.db import close_old_connections
import logging

logger = logging.getLogger(__name__)


@shared_task
def auto_accept_offer_task(offer_id: int):
    """
    Accept an offer on the customer's behalf.

    Scheduled with task id ``auto-accept-<offer_id>`` when an offer at or
    below the request's auto-accept price is submitted or updated. The
    offer is re-checked at execution time; an ineligible offer is skipped.
    """
    from services.offer_management import get_offer_manager

    result = get_offer_manager().auto_accept_offer(offer_id)
    if result is None:
        return None
    return result.delivery.delivery_number


@shared_task
def expire_offers_task():
    """Periodic expiration sweep (see CELERY_BEAT_SCHEDULE)."""
    from services.offer_management import get_sweeper

    try:
        result = get_sweeper().sweep()
    except Exception:
        logger.exception("Expiration sweep failed")
        return None
    finally:
        close_old_connections()
    return result.as_dict()


@shared_task
def find_matches_task(request_id: int):
    """Warm the match cache for a newly created request."""
    from services.exceptions import NotFoundError
    from services.matching import get_matching_engine

    try:
        result = get_matching_engine().find_matches(request_id)
    except NotFoundError:
        logger.warning(f"Request {request_id} not found for match warm-up")
        return 0
    except Exception as e:
        logger.error(f"Error finding matches for request {request_id}: {e}")
        return 0
    return result["total_matches"]
