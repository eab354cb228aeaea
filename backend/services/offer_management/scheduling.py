"""
Cancellable scheduling of delayed auto-accepts.

Each offer owns one task id, ``auto-accept-<offer_id>``, so scheduling is
idempotent per offer and a withdrawal or a sibling acceptance can revoke it.
The task re-verifies eligibility when it runs, so a missed revoke is harmless.
"""

import logging

from celery import current_app

logger = logging.getLogger(__name__)


def auto_accept_task_id(offer_id) -> str:
    return f"auto-accept-{offer_id}"


class AutoAcceptScheduler:
    """Interface: schedule or cancel the auto-accept of one offer."""

    def schedule(self, offer_id, delay_seconds: float) -> None:
        raise NotImplementedError

    def cancel(self, offer_id) -> None:
        raise NotImplementedError


class CeleryAutoAcceptScheduler(AutoAcceptScheduler):

    def schedule(self, offer_id, delay_seconds: float) -> None:
        from deliveries.tasks import auto_accept_offer_task

        try:
            auto_accept_offer_task.apply_async(
                args=[offer_id],
                countdown=delay_seconds,
                task_id=auto_accept_task_id(offer_id),
            )
            logger.info("Scheduled auto-accept for offer %s in %ss", offer_id, delay_seconds)
        except Exception:
            # Recovered by the next sweep
            logger.exception("Failed to schedule auto-accept for offer %s", offer_id)

    def cancel(self, offer_id) -> None:
        try:
            current_app.control.revoke(auto_accept_task_id(offer_id))
        except Exception:
            logger.warning("Failed to revoke auto-accept for offer %s", offer_id, exc_info=True)
