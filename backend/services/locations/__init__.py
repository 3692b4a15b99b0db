from .registry import (
    LocationRegistry,
    discovery_window,
    get_location_registry,
    notify_window,
    validate_radius,
)
from .stores import InMemoryLocationStore, OrmLocationStore
from .types import DriverAvailability, EligibleDriver, LocationSnapshot

__all__ = [
    'LocationRegistry',
    'get_location_registry',
    'discovery_window',
    'notify_window',
    'validate_radius',
    'OrmLocationStore',
    'InMemoryLocationStore',
    'LocationSnapshot',
    'EligibleDriver',
    'DriverAvailability',
]
