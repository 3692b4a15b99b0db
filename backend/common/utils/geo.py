"""
Geographic utility functions.

This module provides core geospatial calculations used throughout the application.
Everything here is pure: callers validate coordinates with is_valid_coordinate()
before computing distances.
"""

from dataclasses import dataclass
from math import atan2, cos, isfinite, radians, sin, sqrt
from typing import Any, Iterable, List

EARTH_RADIUS_KM = 6371
# Approximate length of one degree of latitude
KM_PER_DEGREE = 111


@dataclass(frozen=True)
class BoundingBox:
    """Lat/lon rectangle that contains a search circle."""
    north: float
    south: float
    east: float
    west: float

    def contains(self, lat: float, lon: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lon <= self.east


@dataclass(frozen=True)
class NearbyMatch:
    """A candidate point together with its distance from the search center."""
    point: Any
    distance: float


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate distance between two points in kilometers using Haversine formula.

    Args:
        lat1: Latitude of first point
        lon1: Longitude of first point
        lat2: Latitude of second point
        lon2: Longitude of second point

    Returns:
        Distance in kilometers, rounded to 2 decimal places
    """
    lat1, lon1, lat2, lon2 = map(radians, [float(lat1), float(lon1), float(lat2), float(lon2)])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    if a > 1:
        # float error near antipodes
        a = 1.0
    c = 2 * atan2(sqrt(a), sqrt(1 - a))
    return round(EARTH_RADIUS_KM * c, 2)


def is_valid_coordinate(lat, lon) -> bool:
    """True iff both values are finite numbers inside the lat/lon ranges."""
    try:
        lat = float(lat)
        lon = float(lon)
    except (TypeError, ValueError):
        return False
    if not (isfinite(lat) and isfinite(lon)):
        return False
    return -90 <= lat <= 90 and -180 <= lon <= 180


def bounding_box(center_lat: float, center_lon: float, radius_km: float) -> BoundingBox:
    """
    Approximate the rectangle containing a circle of radius_km around the center.

    Used as a cheap storage pre-filter; exact filtering is done by nearby().
    The longitude span grows without bound near the poles.
    """
    lat_delta = radius_km / KM_PER_DEGREE
    lon_delta = radius_km / (KM_PER_DEGREE * cos(radians(center_lat)))

    return BoundingBox(
        north=center_lat + lat_delta,
        south=center_lat - lat_delta,
        east=center_lon + lon_delta,
        west=center_lon - lon_delta,
    )


def nearby(center_lat: float, center_lon: float, points: Iterable[Any], radius_km: float) -> List[NearbyMatch]:
    """
    Exact radius filter for points exposing latitude/longitude attributes.

    Returns:
        NearbyMatch list sorted closest first; equal distances keep input order
    """
    matches = []
    for point in points:
        distance = distance_km(center_lat, center_lon, point.latitude, point.longitude)
        if distance <= radius_km:
            matches.append(NearbyMatch(point=point, distance=distance))

    # sorted() is stable, so ties stay in input order
    return sorted(matches, key=lambda match: match.distance)


def format_distance(km: float) -> str:
    """Human readable distance: meters below 1 km, one decimal km above."""
    if km < 1:
        return f"{round(km * 1000)}m"
    return f"{km:.1f}km"


def travel_time_minutes(km: float, avg_speed_kmh: float = 30) -> int:
    """Rough travel time estimate, 30 km/h city driving by default."""
    return round(km / avg_speed_kmh * 60)
