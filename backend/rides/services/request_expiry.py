"""Expire ride requests whose departure time has passed."""

import logging

from django.db import close_old_connections
from django.utils import timezone

from rides.models import RideRequest

logger = logging.getLogger(__name__)


def expire_stale_requests(now=None) -> int:
    """
    Move PENDING requests with a departure time in the past to EXPIRED.

    Negotiations on those requests are left as they are.

    Returns the number of requests expired.
    """
    now = now or timezone.now()
    expired = RideRequest.objects.filter(
        status=RideRequest.STATUS_PENDING,
        departure_time__lte=now,
    ).update(status=RideRequest.STATUS_EXPIRED, expired_at=now)

    if expired:
        logger.info("Expired %d stale ride requests", expired)

    # Close stale DB connections for long-running workers
    close_old_connections()
    return expired
