"""
Location registry.

Records heartbeats from riders and drivers and answers the proximity questions
the matching service asks: which verified drivers are close and fresh, which
drivers pinged recently at all, and where has an actor been.

Storage and the user directory are injected so the registry can run against
the ORM in production and against in-memory fakes in tests.
"""

import logging
from datetime import timedelta
from math import isfinite
from typing import Iterator, List, Optional

from django.conf import settings
from django.utils import timezone

from accounts.directory import UserDirectory
from common.utils.geo import bounding_box, is_valid_coordinate, nearby
from services.exceptions import InvalidCoordinateError, RideValidationError, storage_guard
from .stores import OrmLocationStore
from .types import DriverAvailability, EligibleDriver, LocationSnapshot

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 100


def discovery_window() -> timedelta:
    """Freshness window used when listing drivers for a rider."""
    return timedelta(minutes=getattr(settings, 'DRIVER_DISCOVERY_WINDOW_MINUTES', 30))


def notify_window() -> timedelta:
    """Freshness window used when pushing a new request to drivers."""
    return timedelta(minutes=getattr(settings, 'DRIVER_NOTIFY_WINDOW_MINUTES', 5))


def validate_radius(radius_km) -> float:
    try:
        radius_km = float(radius_km)
    except (TypeError, ValueError):
        raise RideValidationError({'radius': 'Must be a number'})
    if not isfinite(radius_km) or radius_km < 0:
        raise RideValidationError({'radius': 'Must be a non-negative number'})
    return radius_km


class LocationRegistry:
    """Heartbeat storage plus freshness-aware driver lookups."""

    def __init__(self, store=None, directory=None, clock=None):
        self.store = store or OrmLocationStore()
        self.directory = directory or UserDirectory()
        self.clock = clock or timezone.now

    @storage_guard
    def record_heartbeat(self, actor_id, lat, lon) -> LocationSnapshot:
        """
        Store the actor's current position and append it to their history.

        The latest snapshot is last-writer-wins; the history keeps every sample.
        """
        if not is_valid_coordinate(lat, lon):
            raise InvalidCoordinateError()

        snapshot = self.store.record(actor_id, float(lat), float(lon), self.clock())
        logger.debug("Heartbeat from actor %s at (%s, %s)", actor_id, snapshot.latitude, snapshot.longitude)
        return snapshot

    @storage_guard
    def latest(self, actor_id) -> Optional[LocationSnapshot]:
        return self.store.latest_for(actor_id)

    @storage_guard
    def find_eligible_drivers(self, lat, lon, radius_km, freshness_window: timedelta = None) -> List[EligibleDriver]:
        """
        Verified drivers whose latest heartbeat is inside the freshness window
        and within radius_km of the point, closest first.
        """
        if not is_valid_coordinate(lat, lon):
            raise InvalidCoordinateError()
        radius_km = validate_radius(radius_km)
        window = freshness_window if freshness_window is not None else discovery_window()

        lat, lon = float(lat), float(lon)
        since = self.clock() - window
        candidates = self.store.latest_in_box(bounding_box(lat, lon, radius_km), since)
        if not candidates:
            return []

        verified = self.directory.verified_drivers(c.actor_id for c in candidates)
        candidates = [c for c in candidates if c.actor_id in verified]

        drivers = [
            EligibleDriver(
                driver_id=match.point.actor_id,
                latitude=match.point.latitude,
                longitude=match.point.longitude,
                distance_km=match.distance,
                last_seen=match.point.captured_at,
            )
            for match in nearby(lat, lon, candidates, radius_km)
        ]
        logger.debug("Found %d eligible drivers within %skm of (%s, %s)", len(drivers), radius_km, lat, lon)
        return drivers

    @storage_guard
    def fresh_drivers(self, freshness_window: timedelta = None) -> List[LocationSnapshot]:
        """Every verified driver with a heartbeat inside the window, regardless of position."""
        window = freshness_window if freshness_window is not None else notify_window()
        snapshots = self.store.latest_since(self.clock() - window)
        verified = self.directory.verified_drivers(s.actor_id for s in snapshots)
        return [s for s in snapshots if s.actor_id in verified]

    def history(self, actor_id, since: timedelta, limit: int = DEFAULT_HISTORY_LIMIT) -> Iterator[LocationSnapshot]:
        """Newest-first samples no older than `since`, at most `limit` of them."""
        if limit <= 0:
            raise RideValidationError({'limit': 'Must be a positive integer'})
        return self.store.samples(actor_id, self.clock() - since, limit)

    @storage_guard
    def availability(self, driver_id, freshness_window: timedelta = None) -> DriverAvailability:
        window = freshness_window if freshness_window is not None else discovery_window()
        location = self.store.latest_for(driver_id)
        fresh = location is not None and location.captured_at >= self.clock() - window
        return DriverAvailability(
            driver_id=driver_id,
            verified=self.directory.is_verified_driver(driver_id),
            location=location,
            fresh=fresh,
        )

    @storage_guard
    def prune_history(self, older_than: timedelta) -> int:
        deleted = self.store.prune(self.clock() - older_than)
        logger.info("Pruned %d location samples older than %s", deleted, older_than)
        return deleted


_registry = None


def get_location_registry() -> LocationRegistry:
    """Process-wide default registry backed by the ORM."""
    global _registry
    if _registry is None:
        _registry = LocationRegistry()
    return _registry
