"""
Ride matching service.

This module handles:
    - Submitting, cancelling and discovering ride requests
    - Fare negotiation between riders and drivers
    - Driver proximity lookups and fare quotes
"""

from .matching_service import MatchingService, get_matching_service

__all__ = [
    "MatchingService",
    "get_matching_service",
]
