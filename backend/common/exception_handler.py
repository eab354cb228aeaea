"""
DRF exception handler for the delivery services.

Service errors become ``{"success": false, "error": <code>, "message": ...}``
with the status carried by the exception. Everything else falls through to
DRF's default handling.
"""

import logging

from rest_framework.response import Response
from rest_framework.views import exception_handler

from services.exceptions import DeliveryServiceError

logger = logging.getLogger(__name__)


def delivery_exception_handler(exc, context):
    if isinstance(exc, DeliveryServiceError):
        body = {
            "success": False,
            "error": exc.code,
            "message": exc.message or str(exc),
        }
        if exc.details:
            body["details"] = exc.details

        view = context.get("view")
        logger.info(
            "%s in %s: %s", type(exc).__name__, view.__class__.__name__ if view else "unknown view", exc,
        )
        return Response(body, status=exc.http_status)

    return exception_handler(exc, context)
