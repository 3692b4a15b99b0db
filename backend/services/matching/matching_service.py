"""
Ride matching service.

Orchestrates the ride request lifecycle on top of the location registry,
the fare estimator and the negotiation state machine:

    submit_request -> drivers near the origin are notified (Celery, after commit)
    list_requests / find_nearby_requests -> drivers browse pending requests
    propose_to_driver / counter_offer / reject_fare -> negotiation transitions
    accept_fare -> negotiation ACCEPTED and request MATCHED in one transaction

Competing open negotiations on a matched request are left as they are; only
the first accepted one matches the request.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from django.conf import settings
from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from accounts.directory import UserDirectory
from common.utils.geo import bounding_box, distance_km, is_valid_coordinate, nearby
from rides.models import RideRequest
from services.exceptions import (
    DriverNotFoundError,
    InvalidCoordinateError,
    NotParticipantError,
    RequestNotFoundError,
    RequestNotPendingError,
    RideValidationError,
    storage_guard,
)
from services.locations import LocationRegistry, discovery_window, notify_window, validate_radius
from services.negotiation import NegotiationStateMachine, validate_amount
from services.pricing import FareBreakdown, FareEstimator

logger = logging.getLogger(__name__)

MIN_PASSENGERS = 1
MAX_PASSENGERS = 8
MAX_PLACE_LENGTH = 255


@dataclass(frozen=True)
class _RequestOrigin:
    ride: RideRequest
    latitude: float
    longitude: float


def _default_notifier(*args, **kwargs):
    from realtime.notifications import notify
    return notify(*args, **kwargs)


class MatchingService:
    """Entry point for every ride request and fare negotiation operation."""

    def __init__(self, registry=None, estimator=None, negotiations=None,
                 directory=None, notifier=None, clock=None):
        self.directory = directory or UserDirectory()
        self.clock = clock or timezone.now
        self.notifier = notifier or _default_notifier
        self.registry = registry or LocationRegistry(directory=self.directory, clock=self.clock)
        self.estimator = estimator or FareEstimator()
        self.negotiations = negotiations or NegotiationStateMachine(
            directory=self.directory, notifier=self.notifier, clock=self.clock
        )

    # ---------------------- Ride requests ----------------------

    @storage_guard
    def submit_request(self, rider_id, fields: Dict[str, Any]) -> RideRequest:
        """
        Validate and store a new PENDING request, then notify nearby drivers
        once the transaction commits.

        Raises:
            RideValidationError: carrying every invalid field at once
        """
        cleaned = self._clean_request_fields(fields)

        with transaction.atomic():
            ride = RideRequest.objects.create(rider_id=rider_id, **cleaned)
            transaction.on_commit(lambda: self._schedule_driver_notification(ride.id))

        logger.info(
            "Ride request %s submitted by rider %s: %s -> %s at %s",
            ride.id, rider_id, ride.origin, ride.destination, ride.departure_time,
        )
        return ride

    @storage_guard
    def get_request(self, request_id) -> RideRequest:
        ride = RideRequest.objects.select_related('rider').filter(id=request_id).first()
        if ride is None:
            raise RequestNotFoundError(f"Ride request {request_id} not found")
        return ride

    @storage_guard
    def list_requests(self, status=RideRequest.STATUS_PENDING, limit=20, offset=0,
                      rider_id=None) -> Tuple[List[RideRequest], int]:
        """
        One page of requests in the given status, newest first, plus the total
        count. Drivers browse pending requests this way whether or not they
        carry coordinates; pass rider_id to list a single rider's requests.
        """
        rides = RideRequest.objects.select_related('rider').filter(status=status)
        if rider_id is not None:
            rides = rides.filter(rider_id=rider_id)

        total = rides.count()
        page = list(rides.order_by('-created_at', '-id')[offset:offset + limit])
        return page, total

    @storage_guard
    def cancel_request(self, request_id, rider_id) -> RideRequest:
        """Rider withdraws a PENDING request."""
        ride = self.get_request(request_id)
        if ride.rider_id != rider_id:
            raise NotParticipantError("Only the rider can cancel this request")

        updated = RideRequest.objects.filter(
            id=ride.id, status=RideRequest.STATUS_PENDING
        ).update(status=RideRequest.STATUS_CANCELLED, cancelled_at=self.clock())
        if not updated:
            ride.refresh_from_db(fields=['status'])
            raise RequestNotPendingError(
                f"Ride request is already {ride.status}", current_status=ride.status
            )

        ride.refresh_from_db()
        logger.info("Ride request %s cancelled by rider %s", ride.id, rider_id)
        return ride

    def notify_drivers_for_request(self, request_id) -> int:
        """
        Push a ride_request notification to drivers who pinged recently near
        the origin, or to every recently active driver when the request has
        no origin coordinate.

        Returns:
            Number of drivers notified
        """
        ride = RideRequest.objects.filter(id=request_id).first()
        if ride is None or ride.status != RideRequest.STATUS_PENDING:
            return 0

        if ride.has_origin_coordinates:
            driver_ids = [
                d.driver_id for d in self.registry.find_eligible_drivers(
                    ride.origin_latitude,
                    ride.origin_longitude,
                    settings.DRIVER_NOTIFY_RADIUS_KM,
                    notify_window(),
                )
            ]
        else:
            driver_ids = [s.actor_id for s in self.registry.fresh_drivers(notify_window())]

        text = (
            f"New ride request from {ride.origin} to {ride.destination} "
            f"departing {timezone.localtime(ride.departure_time):%b %d %H:%M}, "
            f"up to ${ride.max_fare_per_person} per person"
        )
        sent = 0
        for driver_id in driver_ids:
            if driver_id == ride.rider_id:
                continue
            if self.notifier(driver_id, ride.rider_id, 'ride_request', text):
                sent += 1

        logger.info("Notified %d drivers about ride request %s", sent, ride.id)
        return sent

    # ---------------------- Negotiation ----------------------

    @storage_guard
    def propose_to_driver(self, request_id, driver_id, proposed_fare, message='', initiator_id=None):
        """
        Open a negotiation on a PENDING request. The initiator defaults to the
        driver; the other party is notified.
        """
        initiator_id = initiator_id if initiator_id is not None else driver_id

        ride = RideRequest.objects.filter(id=request_id).first()
        if ride is None or ride.status != RideRequest.STATUS_PENDING:
            raise RequestNotFoundError(f"Ride request {request_id} is not open for offers")

        negotiation = self.negotiations.open(request_id, driver_id, initiator_id, proposed_fare, message)

        self.notifier(
            negotiation.counterparty_of(initiator_id),
            initiator_id,
            'offer',
            f"New fare offer of ${negotiation.proposed_fare} for ride #{ride.id}",
        )
        return negotiation

    def counter_offer(self, negotiation_id, actor_id, amount, message=''):
        return self.negotiations.counter(negotiation_id, actor_id, amount, message)

    def reject_fare(self, negotiation_id, actor_id, reason=None):
        return self.negotiations.reject(negotiation_id, actor_id, reason)

    @storage_guard
    def accept_fare(self, negotiation_id, actor_id):
        """
        Accept the negotiation and match its request, atomically.

        Raises:
            NotOpenError: the negotiation is already closed
            SameActorRepeatError: the actor named the current fare themselves
            RequestNotPendingError: another negotiation matched the request first
        """
        with transaction.atomic():
            negotiation = self.negotiations.get(negotiation_id)
            ride = RideRequest.objects.select_for_update().get(id=negotiation.request_id)

            negotiation = self.negotiations.accept(negotiation_id, actor_id)

            updated = RideRequest.objects.filter(
                id=ride.id, status=RideRequest.STATUS_PENDING
            ).update(
                status=RideRequest.STATUS_MATCHED,
                matched_negotiation=negotiation,
                matched_at=self.clock(),
            )
            if not updated:
                ride.refresh_from_db(fields=['status'])
                # Raising here rolls the acceptance back
                raise RequestNotPendingError(
                    f"Ride request is already {ride.status}", current_status=ride.status
                )

        logger.info(
            "Ride request %s matched through negotiation %s at %s",
            ride.id, negotiation.id, negotiation.accepted_fare,
        )
        return negotiation

    def get_negotiation(self, negotiation_id, actor_id=None):
        negotiation = self.negotiations.get(negotiation_id)
        if actor_id is not None and not negotiation.is_participant(actor_id):
            raise NotParticipantError("Only the rider or the driver can view this negotiation")
        return negotiation

    # ---------------------- Fares ----------------------

    @storage_guard
    def calculate_fare(self, origin, destination, driver_id, distance=None, coords=None) -> FareBreakdown:
        """
        Estimated fare for a trip with a given driver.

        Args:
            origin, destination: Place names, echoed back by the API layer
            driver_id: Driver whose rating sets the multiplier
            distance: Trip distance in km; computed from coords when omitted
            coords: Optional (origin_lat, origin_lon, dest_lat, dest_lon)
        """
        driver = self.directory.get_driver(driver_id)
        if driver is None:
            raise DriverNotFoundError(f"Driver {driver_id} not found")

        if distance is None and coords is not None:
            distance = self._trip_distance(*coords)

        return self.estimator.breakdown(distance, self.directory.rating(driver.id))

    # ---------------------- Proximity ----------------------

    def find_nearby_drivers(self, lat, lon, radius_km=None) -> List[Dict[str, Any]]:
        """Verified drivers seen in the last 30 minutes, closest first."""
        radius_km = radius_km if radius_km is not None else settings.DEFAULT_SEARCH_RADIUS_KM
        eligible = self.registry.find_eligible_drivers(lat, lon, radius_km, discovery_window())
        users = self.directory.drivers(d.driver_id for d in eligible)

        return [
            {
                'driver': users.get(d.driver_id),
                'distance_km': d.distance_km,
                'latitude': d.latitude,
                'longitude': d.longitude,
                'last_seen': d.last_seen,
            }
            for d in eligible
            if d.driver_id in users
        ]

    @storage_guard
    def quote_candidates(self, request_id, radius_km=None) -> List[Dict[str, Any]]:
        """Eligible drivers around a request's origin, each with an estimated fare."""
        ride = self.get_request(request_id)
        if not ride.has_origin_coordinates:
            raise RideValidationError({'origin': 'Ride request has no origin coordinates'})

        trip_distance = None
        if ride.has_destination_coordinates:
            trip_distance = distance_km(
                ride.origin_latitude, ride.origin_longitude,
                ride.destination_latitude, ride.destination_longitude,
            )

        quotes = []
        for candidate in self.find_nearby_drivers(ride.origin_latitude, ride.origin_longitude, radius_km):
            rating = self.directory.rating(candidate['driver'].id)
            candidate['estimated_fare'] = self.estimator.estimate(trip_distance, rating)
            quotes.append(candidate)
        return quotes

    @storage_guard
    def find_nearby_requests(self, lat, lon, radius_km=None) -> List[Dict[str, Any]]:
        """PENDING requests with a future departure whose origin is within range."""
        if not is_valid_coordinate(lat, lon):
            raise InvalidCoordinateError()
        radius_km = radius_km if radius_km is not None else settings.DEFAULT_SEARCH_RADIUS_KM
        radius_km = validate_radius(radius_km)
        lat, lon = float(lat), float(lon)

        box = bounding_box(lat, lon, radius_km)
        rides = RideRequest.objects.select_related('rider').filter(
            status=RideRequest.STATUS_PENDING,
            departure_time__gt=self.clock(),
            origin_latitude__gte=box.south,
            origin_latitude__lte=box.north,
            origin_longitude__gte=box.west,
            origin_longitude__lte=box.east,
        ).order_by('departure_time', 'id')

        points = [_RequestOrigin(r, r.origin_latitude, r.origin_longitude) for r in rides]
        return [
            {'request': match.point.ride, 'distance_km': match.distance}
            for match in nearby(lat, lon, points, radius_km)
        ]

    # ---------------------- Internals ----------------------

    @staticmethod
    def _schedule_driver_notification(request_id):
        from rides.tasks import notify_nearby_drivers_task
        try:
            notify_nearby_drivers_task.delay(request_id)
        except Exception:
            logger.exception("Failed to schedule driver notification for ride request %s", request_id)

    @staticmethod
    def _trip_distance(origin_lat, origin_lon, dest_lat, dest_lon) -> float:
        if not is_valid_coordinate(origin_lat, origin_lon):
            raise InvalidCoordinateError('origin')
        if not is_valid_coordinate(dest_lat, dest_lon):
            raise InvalidCoordinateError('destination')
        return distance_km(origin_lat, origin_lon, dest_lat, dest_lon)

    def _clean_request_fields(self, fields) -> Dict[str, Any]:
        errors = {}
        cleaned = {}

        for name in ('origin', 'destination'):
            value = fields.get(name)
            if not isinstance(value, str) or not value.strip():
                errors[name] = 'This field is required'
            elif len(value.strip()) > MAX_PLACE_LENGTH:
                errors[name] = f'Must be at most {MAX_PLACE_LENGTH} characters'
            else:
                cleaned[name] = value.strip()

        departure = self._parse_departure(fields.get('departure_time'))
        if departure is None:
            errors['departure_time'] = 'Must be an ISO 8601 datetime'
        elif departure <= self.clock():
            errors['departure_time'] = 'Must be in the future'
        else:
            cleaned['departure_time'] = departure

        try:
            cleaned['max_fare_per_person'] = validate_amount(
                fields.get('max_fare_per_person'), 'max_fare_per_person'
            )
        except RideValidationError as e:
            errors.update(e.errors)

        passengers = fields.get('passenger_count', MIN_PASSENGERS)
        if isinstance(passengers, str) and passengers.strip().isdigit():
            passengers = int(passengers)
        if isinstance(passengers, bool) or not isinstance(passengers, int):
            errors['passenger_count'] = 'Must be an integer'
        elif not MIN_PASSENGERS <= passengers <= MAX_PASSENGERS:
            errors['passenger_count'] = f'Must be between {MIN_PASSENGERS} and {MAX_PASSENGERS}'
        else:
            cleaned['passenger_count'] = passengers

        message = fields.get('message') or ''
        if not isinstance(message, str):
            errors['message'] = 'Must be a string'
        else:
            cleaned['message'] = message

        for prefix in ('origin', 'destination'):
            pair = self._clean_coordinate_pair(fields, prefix, errors)
            if pair is not None:
                cleaned[f'{prefix}_latitude'], cleaned[f'{prefix}_longitude'] = pair

        if errors:
            raise RideValidationError(errors)
        return cleaned

    @staticmethod
    def _clean_coordinate_pair(fields, prefix, errors):
        lat = fields.get(f'{prefix}_latitude')
        lon = fields.get(f'{prefix}_longitude')
        if lat is None and lon is None:
            return None
        if lat is None or lon is None:
            errors[f'{prefix}_coordinates'] = 'Latitude and longitude must be given together'
            return None
        if isinstance(lat, bool) or isinstance(lon, bool) or not is_valid_coordinate(lat, lon):
            errors[f'{prefix}_coordinates'] = 'Invalid coordinates'
            return None
        return float(lat), float(lon)

    @staticmethod
    def _parse_departure(value) -> Optional[datetime]:
        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, str):
            try:
                parsed = parse_datetime(value.strip())
            except ValueError:
                return None
        else:
            return None

        if parsed is None:
            return None
        if timezone.is_naive(parsed):
            parsed = timezone.make_aware(parsed)
        return parsed


_service = None


def get_matching_service() -> MatchingService:
    """Process-wide default service wired to the ORM-backed collaborators."""
    global _service
    if _service is None:
        _service = MatchingService()
    return _service
