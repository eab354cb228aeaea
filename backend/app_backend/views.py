from django.conf import settings
from django.core.cache import cache
from django.db import connection
from django.utils import timezone
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework import status
from channels.layers import get_channel_layer
from celery import current_app


@api_view(["GET"])
@permission_classes([AllowAny])
def health_check(request):
    """Health check endpoint for monitoring system status"""

    health_status = {
        "status": "healthy",
        "timestamp": timezone.now().isoformat(),
        "services": {}
    }

    def mark(name, error=None):
        if error is None:
            health_status["services"][name] = "healthy"
        else:
            health_status["services"][name] = f"unhealthy: {error}"
            health_status["status"] = "unhealthy"

    # Database check
    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
        mark("database")
    except Exception as e:
        mark("database", e)

    # Cache check (Redis in production)
    try:
        cache.set("health:ping", "pong", 5)
        if cache.get("health:ping") != "pong":
            raise RuntimeError("read-back mismatch")
        mark("cache")
    except Exception as e:
        mark("cache", e)

    # Channel layer check
    try:
        mark("channels", None if get_channel_layer() is not None else "no channel layer")
    except Exception as e:
        mark("channels", e)

    # Celery check (sweep task registered)
    try:
        registered = "deliveries.tasks.expire_offers_task" in current_app.tasks
        mark("celery", None if registered else "sweep task not registered")
    except Exception as e:
        mark("celery", e)

    health_status["trip_service"] = settings.TRIP_SERVICE_URL

    status_code = (
        status.HTTP_200_OK
        if health_status["status"] == "healthy"
        else status.HTTP_503_SERVICE_UNAVAILABLE
    )

    return Response(health_status, status=status_code)
