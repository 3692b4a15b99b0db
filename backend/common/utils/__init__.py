"""Common utility functions."""

from .geo import (
    BoundingBox,
    NearbyMatch,
    bounding_box,
    distance_km,
    format_distance,
    is_valid_coordinate,
    nearby,
    travel_time_minutes,
)

__all__ = [
    "BoundingBox",
    "NearbyMatch",
    "bounding_box",
    "distance_km",
    "format_distance",
    "is_valid_coordinate",
    "nearby",
    "travel_time_minutes",
]
