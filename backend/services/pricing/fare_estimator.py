"""
Fare estimation.

    fare = (BASE_FARE + distance_km * PER_KM_RATE) * clamp(rating / 5, 0.8, 1.2)

All money is Decimal and rounded half-up to cents so that the same inputs
always produce the same string on the wire.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from math import isfinite

from services.exceptions import RideValidationError

BASE_FARE = Decimal('2.50')
PER_KM_RATE = Decimal('1.20')
DEFAULT_DISTANCE_KM = 5.0
MIN_MULTIPLIER = Decimal('0.8')
MAX_MULTIPLIER = Decimal('1.2')
MAX_RATING = Decimal('5')

CENTS = Decimal('0.01')


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class FareBreakdown:
    estimated_fare: Decimal
    base_fare: Decimal
    per_km_rate: Decimal
    distance_km: float
    rating_multiplier: Decimal

    def as_dict(self):
        return {
            'estimated_fare': str(self.estimated_fare),
            'base_fare': str(self.base_fare),
            'per_km_rate': str(self.per_km_rate),
            'distance_km': self.distance_km,
            'rating_multiplier': str(self.rating_multiplier),
        }


class FareEstimator:
    """Deterministic fare calculator. Holds no state."""

    def rating_multiplier(self, driver_rating) -> Decimal:
        multiplier = Decimal(str(driver_rating)) / MAX_RATING
        return max(MIN_MULTIPLIER, min(MAX_MULTIPLIER, multiplier))

    def breakdown(self, distance_km=None, driver_rating=5.0) -> FareBreakdown:
        if distance_km is None:
            distance_km = DEFAULT_DISTANCE_KM
        self._validate(distance_km, driver_rating)

        multiplier = self.rating_multiplier(driver_rating)
        raw = (BASE_FARE + Decimal(str(distance_km)) * PER_KM_RATE) * multiplier
        return FareBreakdown(
            estimated_fare=to_money(raw),
            base_fare=BASE_FARE,
            per_km_rate=PER_KM_RATE,
            distance_km=float(distance_km),
            rating_multiplier=multiplier,
        )

    def estimate(self, distance_km=None, driver_rating=5.0) -> Decimal:
        return self.breakdown(distance_km, driver_rating).estimated_fare

    @staticmethod
    def _validate(distance_km, driver_rating):
        errors = {}
        if not _finite_number(distance_km) or float(distance_km) < 0:
            errors['distance_km'] = 'Must be a non-negative number'
        if not _finite_number(driver_rating):
            errors['driver_rating'] = 'Must be a number'
        if errors:
            raise RideValidationError(errors)


def _finite_number(value) -> bool:
    try:
        return isfinite(float(value))
    except (TypeError, ValueError):
        return False
