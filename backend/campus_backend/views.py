import logging

import redis
from channels.layers import get_channel_layer
from django.conf import settings
from django.db import connection
from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from .celery import app as celery_app

logger = logging.getLogger(__name__)

REQUIRED_TASKS = (
    "rides.tasks.notify_nearby_drivers_task",
    "rides.tasks.expire_ride_requests_task",
)


def check_database():
    with connection.cursor() as cursor:
        cursor.execute("SELECT 1")


def check_redis():
    redis.Redis.from_url(settings.REDIS_URL, socket_timeout=3).ping()


def check_channels():
    if get_channel_layer() is None:
        raise RuntimeError("No channel layer configured")


def check_celery():
    """Ride tasks are discoverable and at least one worker answers a ping."""
    celery_app.autodiscover_tasks(force=True)
    missing = [name for name in REQUIRED_TASKS if name not in celery_app.tasks]
    if missing:
        raise RuntimeError(f"Celery tasks not registered: {', '.join(missing)}")

    if not celery_app.control.ping(timeout=1.0):
        raise RuntimeError("No Celery worker replied to ping")


HEALTH_CHECKS = (
    ("database", check_database),
    ("redis", check_redis),
    ("channels", check_channels),
    ("celery", check_celery),
)


@api_view(["GET"])
@permission_classes([AllowAny])
def health_check(request):
    """
    Health check endpoint for monitoring system status.

    Each dependency is reported as "healthy" or "unhealthy"; failure details
    only go to the log.
    """
    services = {}
    for name, check in HEALTH_CHECKS:
        try:
            check()
        except Exception:
            logger.exception("Health check failed for %s", name)
            services[name] = "unhealthy"
        else:
            services[name] = "healthy"

    healthy = all(state == "healthy" for state in services.values())
    return Response(
        {
            "status": "healthy" if healthy else "unhealthy",
            "timestamp": timezone.now().isoformat(),
            "services": services,
        },
        status=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
    )
