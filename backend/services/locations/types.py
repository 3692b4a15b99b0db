"""Plain value types returned by the location registry."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class LocationSnapshot:
    """A single heartbeat: where an actor was at a point in time."""
    actor_id: int
    latitude: float
    longitude: float
    captured_at: datetime


@dataclass(frozen=True)
class EligibleDriver:
    """Verified, fresh driver inside the search radius."""
    driver_id: int
    latitude: float
    longitude: float
    distance_km: float
    last_seen: datetime


@dataclass(frozen=True)
class DriverAvailability:
    """Derived view of a driver, computed on demand and never stored."""
    driver_id: int
    verified: bool
    location: Optional[LocationSnapshot]
    fresh: bool

    @property
    def available(self) -> bool:
        return self.verified and self.location is not None and self.fresh
