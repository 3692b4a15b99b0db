from .fare_estimator import (
    BASE_FARE,
    DEFAULT_DISTANCE_KM,
    PER_KM_RATE,
    FareBreakdown,
    FareEstimator,
    to_money,
)

__all__ = [
    'FareEstimator',
    'FareBreakdown',
    'BASE_FARE',
    'PER_KM_RATE',
    'DEFAULT_DISTANCE_KM',
    'to_money',
]
