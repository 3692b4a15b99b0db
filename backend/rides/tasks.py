"""Celery tasks for ride-related background processing."""

from celery import shared_task
import logging

logger = logging.getLogger(__name__)


@shared_task
def notify_nearby_drivers_task(request_id: int):
    """
    Tell drivers near a newly submitted request about it.

    Scheduled by MatchingService.submit_request once the request is committed.
    """
    from services.matching import get_matching_service

    sent = get_matching_service().notify_drivers_for_request(request_id)
    logger.info("Ride request %s: %d drivers notified", request_id, sent)
    return sent


@shared_task
def expire_ride_requests_task():
    """Periodic sweep (see CELERY_BEAT_SCHEDULE) expiring past-departure requests."""
    from rides.services.request_expiry import expire_stale_requests

    return expire_stale_requests()
