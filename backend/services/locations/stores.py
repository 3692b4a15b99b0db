"""
Storage backends for the location registry.

OrmLocationStore is the production backend (ActorLocation + LocationSample
tables). InMemoryLocationStore keeps the same contract in process memory and
is meant for tests and local scripts.
"""

import threading
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from django.db import transaction
from django.db.models import Q

from common.utils.geo import BoundingBox
from locations.models import ActorLocation, LocationSample
from .types import LocationSnapshot


def _longitude_ranges(box: BoundingBox):
    """Split the box longitude span in two when it crosses the antimeridian."""
    if box.east - box.west >= 360:
        return [(-180.0, 180.0)]
    if box.west < -180:
        return [(box.west + 360, 180.0), (-180.0, box.east)]
    if box.east > 180:
        return [(box.west, 180.0), (-180.0, box.east - 360)]
    return [(box.west, box.east)]


def _in_box(box: BoundingBox, lat: float, lon: float) -> bool:
    if not box.south <= lat <= box.north:
        return False
    return any(west <= lon <= east for west, east in _longitude_ranges(box))


class OrmLocationStore:
    """Django ORM backed location storage."""

    def record(self, actor_id, lat: float, lon: float, captured_at: datetime) -> LocationSnapshot:
        with transaction.atomic():
            ActorLocation.objects.update_or_create(
                actor_id=actor_id,
                defaults={
                    "latitude": lat,
                    "longitude": lon,
                    "updated_at": captured_at,
                },
            )
            LocationSample.objects.create(
                actor_id=actor_id,
                latitude=lat,
                longitude=lon,
                captured_at=captured_at,
            )
        return LocationSnapshot(actor_id, lat, lon, captured_at)

    def latest_for(self, actor_id) -> Optional[LocationSnapshot]:
        row = ActorLocation.objects.filter(actor_id=actor_id).first()
        if row is None:
            return None
        return LocationSnapshot(row.actor_id, row.latitude, row.longitude, row.updated_at)

    def latest_in_box(self, box: BoundingBox, since: datetime) -> List[LocationSnapshot]:
        lon_filter = Q()
        for west, east in _longitude_ranges(box):
            lon_filter |= Q(longitude__gte=west, longitude__lte=east)

        rows = (
            ActorLocation.objects
            .filter(
                latitude__gte=box.south,
                latitude__lte=box.north,
                updated_at__gte=since,
            )
            .filter(lon_filter)
            .order_by("actor_id")
        )
        return [LocationSnapshot(r.actor_id, r.latitude, r.longitude, r.updated_at) for r in rows]

    def latest_since(self, since: datetime) -> List[LocationSnapshot]:
        rows = ActorLocation.objects.filter(updated_at__gte=since).order_by("actor_id")
        return [LocationSnapshot(r.actor_id, r.latitude, r.longitude, r.updated_at) for r in rows]

    def samples(self, actor_id, since: datetime, limit: int) -> Iterator[LocationSnapshot]:
        qs = (
            LocationSample.objects
            .filter(actor_id=actor_id, captured_at__gte=since)
            .order_by("-captured_at", "-id")[:limit]
        )
        for row in qs.iterator():
            yield LocationSnapshot(row.actor_id, row.latitude, row.longitude, row.captured_at)

    def prune(self, before: datetime) -> int:
        deleted, _ = LocationSample.objects.filter(captured_at__lt=before).delete()
        return deleted


class InMemoryLocationStore:
    """Thread-safe in-process store with the same contract as OrmLocationStore."""

    def __init__(self):
        self._lock = threading.Lock()
        self._latest: Dict[int, LocationSnapshot] = {}
        self._samples: List[LocationSnapshot] = []

    def record(self, actor_id, lat: float, lon: float, captured_at: datetime) -> LocationSnapshot:
        snapshot = LocationSnapshot(actor_id, lat, lon, captured_at)
        with self._lock:
            self._latest[actor_id] = snapshot
            self._samples.append(snapshot)
        return snapshot

    def latest_for(self, actor_id) -> Optional[LocationSnapshot]:
        with self._lock:
            return self._latest.get(actor_id)

    def latest_in_box(self, box: BoundingBox, since: datetime) -> List[LocationSnapshot]:
        with self._lock:
            rows = list(self._latest.values())
        return sorted(
            (s for s in rows if s.captured_at >= since and _in_box(box, s.latitude, s.longitude)),
            key=lambda s: s.actor_id,
        )

    def latest_since(self, since: datetime) -> List[LocationSnapshot]:
        with self._lock:
            rows = list(self._latest.values())
        return sorted((s for s in rows if s.captured_at >= since), key=lambda s: s.actor_id)

    def samples(self, actor_id, since: datetime, limit: int) -> Iterator[LocationSnapshot]:
        with self._lock:
            # Enumerate so equal timestamps come out newest-appended first
            rows = [
                (index, s) for index, s in enumerate(self._samples)
                if s.actor_id == actor_id and s.captured_at >= since
            ]
        rows.sort(key=lambda item: (item[1].captured_at, item[0]), reverse=True)
        for _, snapshot in rows[:limit]:
            yield snapshot

    def prune(self, before: datetime) -> int:
        with self._lock:
            kept = [s for s in self._samples if s.captured_at >= before]
            deleted = len(self._samples) - len(kept)
            self._samples = kept
        return deleted
