from datetime import timedelta
from decimal import Decimal
from io import StringIO
from unittest.mock import ANY, MagicMock, patch

from django.core.management import call_command
from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from accounts.directory import UserDirectory
from accounts.models import User
from common.utils.geo import distance_km
from locations.models import LocationSample
from realtime.models import Notification
from rides.models import Negotiation, NegotiationEvent, RideRequest
from rides.services.request_expiry import expire_stale_requests
from rides.tasks import expire_ride_requests_task
from services.exceptions import (
	DriverNotFoundError,
	DuplicateNegotiationError,
	NegotiationNotFoundError,
	NotOpenError,
	NotParticipantError,
	RequestNotFoundError,
	RequestNotPendingError,
	RideValidationError,
	SameActorRepeatError,
	StateConflictError,
)
from services.locations import InMemoryLocationStore, LocationRegistry, get_location_registry
from services.matching import MatchingService
from services.negotiation import NegotiationStateMachine
from services.pricing import FareEstimator

ORIGIN = (28.6139, 77.2090)
DESTINATION = (28.6129, 77.2295)


def make_users():
	rider = User.objects.create_user(username='rider', password='rider1234', role='rider')
	driver = User.objects.create_user(
		username='driver', password='driver1234', role='driver', verified=True, rating=4.0
	)
	other_driver = User.objects.create_user(
		username='other_driver', password='driver1234', role='driver', verified=True
	)
	stranger = User.objects.create_user(username='stranger', password='stranger1234', role='rider')
	return rider, driver, other_driver, stranger


def make_request(rider, **overrides):
	fields = dict(
		origin='North Campus',
		destination='Central Station',
		departure_time=timezone.now() + timedelta(hours=2),
		max_fare_per_person=Decimal('15.00'),
		passenger_count=1,
		origin_latitude=ORIGIN[0],
		origin_longitude=ORIGIN[1],
	)
	fields.update(overrides)
	return RideRequest.objects.create(rider=rider, **fields)


def request_fields(**overrides):
	fields = {
		'origin': 'North Campus',
		'destination': 'Central Station',
		'departure_time': (timezone.now() + timedelta(hours=3)).isoformat(),
		'max_fare_per_person': '15.50',
		'passenger_count': 2,
		'message': 'Two bags',
		'origin_latitude': ORIGIN[0],
		'origin_longitude': ORIGIN[1],
		'destination_latitude': DESTINATION[0],
		'destination_longitude': DESTINATION[1],
	}
	fields.update(overrides)
	return fields


class FareEstimatorTests(SimpleTestCase):
	def setUp(self):
		self.estimator = FareEstimator()

	def test_five_km_with_top_rating(self):
		self.assertEqual(self.estimator.estimate(5, 5.0), Decimal('8.50'))

	def test_low_rating_is_clamped(self):
		self.assertEqual(self.estimator.estimate(5, 1.0), Decimal('6.80'))

	def test_high_rating_is_clamped(self):
		self.assertEqual(self.estimator.estimate(5, 10.0), Decimal('10.20'))

	def test_rounds_half_up(self):
		# 2.50 * 0.97 = 2.425
		self.assertEqual(self.estimator.estimate(0, 4.85), Decimal('2.43'))

	def test_missing_distance_defaults_to_five_km(self):
		self.assertEqual(self.estimator.estimate(None, 5.0), Decimal('8.50'))

	def test_breakdown(self):
		breakdown = self.estimator.breakdown(10, 4.0)
		self.assertEqual(breakdown.estimated_fare, Decimal('11.60'))
		self.assertEqual(breakdown.base_fare, Decimal('2.50'))
		self.assertEqual(breakdown.per_km_rate, Decimal('1.20'))
		self.assertEqual(breakdown.rating_multiplier, Decimal('0.8'))
		self.assertEqual(breakdown.as_dict()['estimated_fare'], '11.60')

	def test_invalid_input(self):
		for distance in (-1, float('nan'), 'far'):
			with self.assertRaises(RideValidationError):
				self.estimator.estimate(distance, 5.0)


class NegotiationStateMachineTests(TestCase):
	def setUp(self):
		self.rider, self.driver, self.other_driver, self.stranger = make_users()
		self.ride = make_request(self.rider)
		self.notifier = MagicMock(return_value=True)
		self.machine = NegotiationStateMachine(notifier=self.notifier)

	def open(self, driver=None, amount='10.00'):
		driver = driver or self.driver
		return self.machine.open(self.ride.id, driver.id, driver.id, amount)

	def test_full_negotiation(self):
		negotiation = self.open()
		negotiation = self.machine.counter(negotiation.id, self.rider.id, '8.00')
		negotiation = self.machine.accept(negotiation.id, self.driver.id)

		self.assertEqual(negotiation.status, Negotiation.STATUS_ACCEPTED)
		self.assertEqual(negotiation.accepted_fare, Decimal('8.00'))
		self.assertIsNotNone(negotiation.closed_at)

		events = list(negotiation.events.all())
		self.assertEqual([e.kind for e in events], ['proposal', 'counter', 'accept'])
		self.assertEqual([e.sequence for e in events], [1, 2, 3])
		self.assertEqual(events[-1].amount, Decimal('8.00'))
		self.assertEqual(negotiation.version, len(events))

	def test_duplicate_open_negotiation_rejected(self):
		self.open(amount='10.00')
		with self.assertRaises(DuplicateNegotiationError):
			self.open(amount='9.00')
		self.assertEqual(Negotiation.objects.count(), 1)

	def test_new_negotiation_allowed_after_rejection(self):
		first = self.open()
		self.machine.reject(first.id, self.rider.id)

		second = self.open(amount='9.00')
		self.assertNotEqual(first.id, second.id)
		self.assertTrue(second.is_open)

	def test_other_drivers_can_negotiate_in_parallel(self):
		self.open()
		self.open(driver=self.other_driver)
		self.assertEqual(self.ride.negotiations.filter(status='open').count(), 2)

	def test_same_actor_cannot_counter_twice_in_a_row(self):
		negotiation = self.open()
		with self.assertRaises(SameActorRepeatError):
			self.machine.counter(negotiation.id, self.driver.id, '11.00')

		self.machine.counter(negotiation.id, self.rider.id, '8.00')
		with self.assertRaises(SameActorRepeatError):
			self.machine.counter(negotiation.id, self.rider.id, '7.50')

		negotiation = self.machine.counter(negotiation.id, self.driver.id, '9.00')
		self.assertEqual(negotiation.proposed_fare, Decimal('9.00'))
		self.assertEqual(negotiation.version, 3)

	def test_proposer_cannot_accept_own_offer(self):
		negotiation = self.open(amount='40.00')
		with self.assertRaises(SameActorRepeatError) as ctx:
			self.machine.accept(negotiation.id, self.driver.id)
		self.assertEqual(ctx.exception.current_status, 'open')

		self.machine.counter(negotiation.id, self.rider.id, '12.00')
		with self.assertRaises(SameActorRepeatError):
			self.machine.accept(negotiation.id, self.rider.id)

		negotiation.refresh_from_db()
		self.assertTrue(negotiation.is_open)
		self.assertIsNone(negotiation.accepted_fare)
		self.assertEqual(negotiation.version, 2)

	def test_proposer_can_withdraw_by_rejecting(self):
		negotiation = self.open()
		negotiation = self.machine.reject(negotiation.id, self.driver.id, 'Changed plans')

		self.assertEqual(negotiation.status, Negotiation.STATUS_REJECTED)
		self.notifier.assert_called_with(self.rider.id, self.driver.id, 'offer_rejected', ANY)

	def test_closed_negotiations_are_immutable(self):
		accepted = self.open()
		self.machine.accept(accepted.id, self.rider.id)
		rejected = self.open(driver=self.other_driver)
		self.machine.reject(rejected.id, self.rider.id)

		for negotiation, current in ((accepted, 'accepted'), (rejected, 'rejected')):
			for attempt in (
				lambda: self.machine.counter(negotiation.id, self.rider.id, '5.00'),
				lambda: self.machine.accept(negotiation.id, self.rider.id),
				lambda: self.machine.reject(negotiation.id, self.rider.id),
			):
				with self.assertRaises(NotOpenError) as ctx:
					attempt()
				self.assertEqual(ctx.exception.current_status, current)

	def test_only_one_concurrent_accept_succeeds(self):
		negotiation = self.open()
		stale = Negotiation.objects.get(id=negotiation.id)

		self.machine.accept(negotiation.id, self.rider.id)

		# A second accept that read the row before the first one committed
		with self.assertRaises(NotOpenError):
			self.machine._commit(
				stale,
				kind=NegotiationEvent.KIND_ACCEPT,
				actor_id=self.driver.id,
				amount=stale.proposed_fare,
				status=Negotiation.STATUS_ACCEPTED,
				accepted_fare=stale.proposed_fare,
				closed_at=timezone.now(),
			)
		self.assertEqual(NegotiationEvent.objects.filter(negotiation=negotiation).count(), 2)

	def test_concurrent_change_while_open_is_a_conflict(self):
		negotiation = self.open()
		stale = Negotiation.objects.get(id=negotiation.id)

		self.machine.counter(negotiation.id, self.rider.id, '8.00')

		with self.assertRaises(StateConflictError) as ctx:
			self.machine._commit(
				stale,
				kind=NegotiationEvent.KIND_COUNTER,
				actor_id=self.rider.id,
				amount=Decimal('7.00'),
				proposed_fare=Decimal('7.00'),
			)
		self.assertNotIsInstance(ctx.exception, NotOpenError)
		self.assertEqual(ctx.exception.current_status, 'open')

		negotiation.refresh_from_db()
		self.assertEqual(negotiation.proposed_fare, Decimal('8.00'))

	def test_only_participants_can_act(self):
		negotiation = self.open()
		with self.assertRaises(NotParticipantError):
			self.machine.counter(negotiation.id, self.stranger.id, '5.00')
		with self.assertRaises(NotParticipantError):
			self.machine.accept(negotiation.id, self.other_driver.id)
		with self.assertRaises(NotParticipantError):
			self.machine.open(self.ride.id, self.other_driver.id, self.stranger.id, '5.00')

	def test_open_requires_real_driver_and_request(self):
		with self.assertRaises(DriverNotFoundError):
			self.machine.open(self.ride.id, 999999, self.rider.id, '5.00')
		with self.assertRaises(DriverNotFoundError):
			self.machine.open(self.ride.id, self.stranger.id, self.rider.id, '5.00')
		with self.assertRaises(RequestNotFoundError):
			self.machine.open(999999, self.driver.id, self.driver.id, '5.00')

	def test_amount_validation(self):
		for amount in ('-1', 'nan', 'Infinity', 'ten', None, True):
			with self.assertRaises(RideValidationError):
				self.open(amount=amount)

		negotiation = self.open(amount=0)
		self.assertEqual(negotiation.proposed_fare, Decimal('0.00'))

	def test_reject_records_current_fare_and_reason(self):
		negotiation = self.open(amount='12.00')
		negotiation = self.machine.reject(negotiation.id, self.rider.id, 'Too expensive')

		event = negotiation.last_event
		self.assertEqual(event.kind, 'reject')
		self.assertEqual(event.amount, Decimal('12.00'))
		self.assertEqual(event.message, 'Too expensive')
		self.assertIsNone(negotiation.accepted_fare)
		self.notifier.assert_called_with(self.driver.id, self.rider.id, 'offer_rejected', ANY)

	def test_transitions_notify_counterparty(self):
		negotiation = self.open()
		self.machine.counter(negotiation.id, self.rider.id, '8.00')
		self.notifier.assert_called_with(self.driver.id, self.rider.id, 'counter_offer', ANY)

		self.machine.accept(negotiation.id, self.driver.id)
		self.notifier.assert_called_with(self.rider.id, self.driver.id, 'offer_accepted', ANY)

	def test_notifier_failure_does_not_undo_transition(self):
		self.notifier.return_value = False
		negotiation = self.open()
		negotiation = self.machine.counter(negotiation.id, self.rider.id, '8.00')
		self.assertEqual(negotiation.version, 2)

	def test_events_are_append_only(self):
		negotiation = self.open()
		event = negotiation.events.get()
		event.amount = Decimal('1.00')
		with self.assertRaises(ValueError):
			event.save()

	def test_get_unknown_negotiation(self):
		with self.assertRaises(NegotiationNotFoundError):
			self.machine.get(999999)


class MatchingServiceTests(TestCase):
	def setUp(self):
		self.rider, self.driver, self.other_driver, self.stranger = make_users()
		self.unverified = User.objects.create_user(username='new_driver', password='driver1234', role='driver')
		self.notifier = MagicMock(return_value=True)
		self.registry = LocationRegistry(store=InMemoryLocationStore())
		self.service = MatchingService(registry=self.registry, notifier=self.notifier)

	def test_submit_request_schedules_driver_notification(self):
		with patch('rides.tasks.notify_nearby_drivers_task.delay') as delay:
			with self.captureOnCommitCallbacks(execute=True):
				ride = self.service.submit_request(self.rider.id, request_fields())

		self.assertEqual(ride.status, RideRequest.STATUS_PENDING)
		self.assertEqual(ride.max_fare_per_person, Decimal('15.50'))
		self.assertEqual(ride.passenger_count, 2)
		self.assertEqual(ride.destination_latitude, DESTINATION[0])
		delay.assert_called_once_with(ride.id)

	def test_submit_request_reports_every_invalid_field(self):
		fields = request_fields(
			origin='',
			destination=None,
			departure_time=(timezone.now() - timedelta(minutes=1)).isoformat(),
			max_fare_per_person=-3,
			passenger_count=9,
			origin_latitude=100,
			destination_latitude=None,
		)
		with self.assertRaises(RideValidationError) as ctx:
			self.service.submit_request(self.rider.id, fields)

		self.assertEqual(set(ctx.exception.errors), {
			'origin', 'destination', 'departure_time', 'max_fare_per_person',
			'passenger_count', 'origin_coordinates', 'destination_coordinates',
		})
		self.assertFalse(RideRequest.objects.exists())

	def test_submit_request_parses_departure(self):
		with self.assertRaises(RideValidationError) as ctx:
			self.service.submit_request(self.rider.id, request_fields(departure_time='tomorrow'))
		self.assertIn('departure_time', ctx.exception.errors)

		for passengers in (0, True, 'two'):
			with self.assertRaises(RideValidationError) as ctx:
				self.service.submit_request(self.rider.id, request_fields(passenger_count=passengers))
			self.assertIn('passenger_count', ctx.exception.errors)

	def test_coordinates_are_optional(self):
		fields = request_fields()
		for key in ('origin_latitude', 'origin_longitude', 'destination_latitude', 'destination_longitude'):
			fields.pop(key)
		ride = self.service.submit_request(self.rider.id, fields)
		self.assertFalse(ride.has_origin_coordinates)

	def test_notify_drivers_near_origin(self):
		self.registry.record_heartbeat(self.driver.id, 28.6200, 77.2100)
		self.registry.record_heartbeat(self.other_driver.id, 29.2000, 77.9000)
		self.registry.record_heartbeat(self.unverified.id, *ORIGIN)
		ride = make_request(self.rider)

		sent = self.service.notify_drivers_for_request(ride.id)

		self.assertEqual(sent, 1)
		self.notifier.assert_called_once_with(self.driver.id, self.rider.id, 'ride_request', ANY)

	def test_notify_without_origin_uses_recently_active_drivers(self):
		self.registry.record_heartbeat(self.driver.id, 28.6200, 77.2100)
		self.registry.record_heartbeat(self.other_driver.id, -33.8688, 151.2093)
		ride = make_request(self.rider, origin_latitude=None, origin_longitude=None)

		self.assertEqual(self.service.notify_drivers_for_request(ride.id), 2)

	def test_notify_skips_requests_no_longer_pending(self):
		self.registry.record_heartbeat(self.driver.id, *ORIGIN)
		ride = make_request(self.rider, status=RideRequest.STATUS_CANCELLED)

		self.assertEqual(self.service.notify_drivers_for_request(ride.id), 0)
		self.notifier.assert_not_called()

	def test_propose_requires_pending_request(self):
		ride = make_request(self.rider, status=RideRequest.STATUS_EXPIRED)
		with self.assertRaises(RequestNotFoundError):
			self.service.propose_to_driver(ride.id, self.driver.id, '10.00')
		with self.assertRaises(RequestNotFoundError):
			self.service.propose_to_driver(999999, self.driver.id, '10.00')

	def test_propose_notifies_the_other_party(self):
		ride = make_request(self.rider)

		self.service.propose_to_driver(ride.id, self.driver.id, '10.00')
		self.notifier.assert_called_with(self.rider.id, self.driver.id, 'offer', ANY)

		self.service.propose_to_driver(ride.id, self.other_driver.id, '9.00', initiator_id=self.rider.id)
		self.notifier.assert_called_with(self.other_driver.id, self.rider.id, 'offer', ANY)

	def test_accept_fare_matches_request(self):
		ride = make_request(self.rider)
		negotiation = self.service.propose_to_driver(ride.id, self.driver.id, '10.00')

		negotiation = self.service.accept_fare(negotiation.id, self.rider.id)

		ride.refresh_from_db()
		self.assertEqual(negotiation.status, Negotiation.STATUS_ACCEPTED)
		self.assertEqual(ride.status, RideRequest.STATUS_MATCHED)
		self.assertEqual(ride.matched_negotiation_id, negotiation.id)
		self.assertIsNotNone(ride.matched_at)

	def test_driver_accepting_own_proposal_leaves_request_pending(self):
		ride = make_request(self.rider)
		negotiation = self.service.propose_to_driver(ride.id, self.driver.id, '40.00')

		with self.assertRaises(SameActorRepeatError):
			self.service.accept_fare(negotiation.id, self.driver.id)

		ride.refresh_from_db()
		negotiation.refresh_from_db()
		self.assertEqual(ride.status, RideRequest.STATUS_PENDING)
		self.assertIsNone(ride.matched_negotiation_id)
		self.assertEqual(negotiation.status, Negotiation.STATUS_OPEN)

	def test_first_acceptance_wins(self):
		ride = make_request(self.rider)
		first = self.service.propose_to_driver(ride.id, self.driver.id, '10.00')
		second = self.service.propose_to_driver(ride.id, self.other_driver.id, '9.00')

		self.service.accept_fare(first.id, self.rider.id)
		with self.assertRaises(RequestNotPendingError) as ctx:
			self.service.accept_fare(second.id, self.rider.id)
		self.assertEqual(ctx.exception.current_status, RideRequest.STATUS_MATCHED)

		# The losing acceptance is rolled back; the sibling stays open
		second.refresh_from_db()
		self.assertEqual(second.status, Negotiation.STATUS_OPEN)
		self.assertEqual(second.version, 1)
		self.assertEqual(second.events.count(), 1)

		ride.refresh_from_db()
		self.assertEqual(ride.matched_negotiation_id, first.id)

	def test_counter_and_reject_delegate(self):
		ride = make_request(self.rider)
		negotiation = self.service.propose_to_driver(ride.id, self.driver.id, '10.00')

		negotiation = self.service.counter_offer(negotiation.id, self.rider.id, '8.00', 'Student budget')
		self.assertEqual(negotiation.proposed_fare, Decimal('8.00'))

		negotiation = self.service.reject_fare(negotiation.id, self.driver.id, 'Too low')
		self.assertEqual(negotiation.status, Negotiation.STATUS_REJECTED)
		ride.refresh_from_db()
		self.assertEqual(ride.status, RideRequest.STATUS_PENDING)

	def test_cancel_request(self):
		ride = make_request(self.rider)

		with self.assertRaises(NotParticipantError):
			self.service.cancel_request(ride.id, self.driver.id)

		ride = self.service.cancel_request(ride.id, self.rider.id)
		self.assertEqual(ride.status, RideRequest.STATUS_CANCELLED)
		self.assertIsNotNone(ride.cancelled_at)

		with self.assertRaises(RequestNotPendingError) as ctx:
			self.service.cancel_request(ride.id, self.rider.id)
		self.assertEqual(ctx.exception.current_status, RideRequest.STATUS_CANCELLED)

	def test_calculate_fare(self):
		breakdown = self.service.calculate_fare('A', 'B', self.driver.id, distance=10)
		self.assertEqual(breakdown.estimated_fare, Decimal('11.60'))

		breakdown = self.service.calculate_fare('A', 'B', self.driver.id)
		self.assertEqual(breakdown.distance_km, 5.0)
		self.assertEqual(breakdown.estimated_fare, Decimal('6.80'))

		breakdown = self.service.calculate_fare('A', 'B', self.driver.id, coords=ORIGIN + DESTINATION)
		self.assertEqual(breakdown.distance_km, distance_km(*ORIGIN, *DESTINATION))

	def test_fares_use_directory_rating(self):
		directory = UserDirectory()
		service = MatchingService(registry=self.registry, directory=directory, notifier=self.notifier)
		self.registry.record_heartbeat(self.driver.id, 28.6140, 77.2091)
		ride = make_request(self.rider)

		with patch.object(directory, 'rating', return_value=5.0) as rating:
			breakdown = service.calculate_fare('A', 'B', self.driver.id, distance=5)
			quotes = service.quote_candidates(ride.id, radius_km=5)

		self.assertEqual(breakdown.estimated_fare, Decimal('8.50'))
		self.assertEqual(quotes[0]['estimated_fare'], Decimal('8.50'))
		rating.assert_called_with(self.driver.id)

	def test_calculate_fare_unknown_driver(self):
		with self.assertRaises(DriverNotFoundError):
			self.service.calculate_fare('A', 'B', 999999)
		with self.assertRaises(DriverNotFoundError):
			self.service.calculate_fare('A', 'B', self.rider.id)

	def test_find_nearby_drivers(self):
		self.registry.record_heartbeat(self.driver.id, 28.6200, 77.2100)
		self.registry.record_heartbeat(self.other_driver.id, 28.6140, 77.2091)

		results = self.service.find_nearby_drivers(*ORIGIN, radius_km=5)

		self.assertEqual([r['driver'] for r in results], [self.other_driver, self.driver])
		self.assertLess(results[0]['distance_km'], results[1]['distance_km'])

	def test_quote_candidates(self):
		self.registry.record_heartbeat(self.driver.id, 28.6140, 77.2091)
		ride = make_request(
			self.rider, destination_latitude=DESTINATION[0], destination_longitude=DESTINATION[1]
		)

		quotes = self.service.quote_candidates(ride.id, radius_km=5)

		self.assertEqual(len(quotes), 1)
		expected = FareEstimator().estimate(distance_km(*ORIGIN, *DESTINATION), 4.0)
		self.assertEqual(quotes[0]['estimated_fare'], expected)

	def test_quote_candidates_needs_origin_coordinates(self):
		ride = make_request(self.rider, origin_latitude=None, origin_longitude=None)
		with self.assertRaises(RideValidationError):
			self.service.quote_candidates(ride.id)

	def test_find_nearby_requests(self):
		near = make_request(self.rider, origin_latitude=28.6140, origin_longitude=77.2091)
		nearer = make_request(self.rider, origin_latitude=ORIGIN[0], origin_longitude=ORIGIN[1])
		make_request(self.rider, origin_latitude=29.5, origin_longitude=78.5)
		make_request(self.rider, departure_time=timezone.now() - timedelta(minutes=5))
		make_request(self.rider, status=RideRequest.STATUS_CANCELLED)

		results = self.service.find_nearby_requests(*ORIGIN, radius_km=2)

		self.assertEqual([r['request'] for r in results], [nearer, near])


class RequestExpiryTests(TestCase):
	def setUp(self):
		self.rider, self.driver, _, _ = make_users()
		self.past = timezone.now() - timedelta(minutes=10)

	def test_expires_only_pending_requests_in_the_past(self):
		stale = make_request(self.rider, departure_time=self.past)
		upcoming = make_request(self.rider)
		matched = make_request(self.rider, departure_time=self.past, status=RideRequest.STATUS_MATCHED)

		self.assertEqual(expire_stale_requests(), 1)

		for ride in (stale, upcoming, matched):
			ride.refresh_from_db()
		self.assertEqual(stale.status, RideRequest.STATUS_EXPIRED)
		self.assertIsNotNone(stale.expired_at)
		self.assertEqual(upcoming.status, RideRequest.STATUS_PENDING)
		self.assertEqual(matched.status, RideRequest.STATUS_MATCHED)

	def test_open_negotiations_are_left_alone(self):
		ride = make_request(self.rider)
		negotiation = NegotiationStateMachine(notifier=MagicMock()).open(
			ride.id, self.driver.id, self.driver.id, '10.00'
		)
		RideRequest.objects.filter(id=ride.id).update(departure_time=self.past)

		expire_stale_requests()

		negotiation.refresh_from_db()
		self.assertEqual(negotiation.status, Negotiation.STATUS_OPEN)

	def test_management_command(self):
		make_request(self.rider, departure_time=self.past)
		out = StringIO()

		call_command('expire_ride_requests', stdout=out)

		self.assertIn('Expired 1 ride request(s).', out.getvalue())

	def test_celery_task(self):
		make_request(self.rider, departure_time=self.past)
		self.assertEqual(expire_ride_requests_task.delay().get(), 1)


class CleanupOldDataCommandTests(TestCase):
	def setUp(self):
		self.rider = User.objects.create_user(username='rider', password='rider1234')
		now = timezone.now()
		LocationSample.objects.create(actor=self.rider, latitude=1, longitude=1, captured_at=now - timedelta(days=40))
		LocationSample.objects.create(actor=self.rider, latitude=2, longitude=2, captured_at=now - timedelta(days=1))

	def test_dry_run_deletes_nothing(self):
		out = StringIO()
		call_command('cleanup_old_data', days=30, dry_run=True, stdout=out)

		self.assertIn('DRY RUN: Would delete 1 location samples', out.getvalue())
		self.assertEqual(LocationSample.objects.count(), 2)

	def test_deletes_samples_older_than_cutoff(self):
		out = StringIO()
		call_command('cleanup_old_data', days=30, stdout=out)

		self.assertIn('Deleted 1 location samples', out.getvalue())
		self.assertEqual(list(LocationSample.objects.values_list('latitude', flat=True)), [2])


class RideApiTests(TestCase):
	def setUp(self):
		self.client = APIClient()
		self.rider, self.driver, self.other_driver, self.stranger = make_users()

	def as_user(self, user):
		self.client.force_authenticate(user)
		return self.client

	def open_negotiation(self, ride, amount='10.00'):
		response = self.as_user(self.driver).post(
			f'/api/rides/requests/{ride.id}/negotiations/', {'amount': amount}, format='json'
		)
		self.assertEqual(response.status_code, 201)
		return response.data['negotiation']

	def test_submit_request(self):
		response = self.as_user(self.rider).post('/api/rides/requests/', request_fields(), format='json')

		self.assertEqual(response.status_code, 201)
		self.assertEqual(response.data['request']['status'], 'pending')
		self.assertEqual(response.data['request']['rider']['id'], self.rider.id)

		listing = self.client.get('/api/rides/requests/', {'mine': 'true'})
		self.assertEqual(listing.data['pagination']['total'], 1)

	def test_drivers_browse_pending_requests(self):
		without_coords = make_request(self.rider, origin_latitude=None, origin_longitude=None)
		older = make_request(self.rider)
		newest = make_request(self.stranger)
		RideRequest.objects.filter(id=older.id).update(created_at=timezone.now() - timedelta(hours=1))
		RideRequest.objects.filter(id=without_coords.id).update(created_at=timezone.now() - timedelta(minutes=30))
		make_request(self.rider, status=RideRequest.STATUS_MATCHED)

		response = self.as_user(self.driver).get('/api/rides/requests/', {'limit': 2})

		self.assertEqual(response.status_code, 200)
		self.assertEqual([r['id'] for r in response.data['requests']], [newest.id, without_coords.id])
		self.assertEqual(response.data['pagination'], {'total': 3, 'limit': 2, 'offset': 0, 'has_more': True})

		response = self.client.get('/api/rides/requests/', {'limit': 2, 'offset': 2})
		self.assertEqual([r['id'] for r in response.data['requests']], [older.id])
		self.assertFalse(response.data['pagination']['has_more'])

		response = self.client.get('/api/rides/requests/', {'status': 'matched'})
		self.assertEqual(response.data['pagination']['total'], 1)

		response = self.as_user(self.rider).get('/api/rides/requests/', {'mine': 'true'})
		self.assertEqual(response.data['pagination']['total'], 2)

	def test_list_requests_rejects_bad_paging(self):
		response = self.as_user(self.driver).get('/api/rides/requests/', {'limit': 0, 'status': 'lost'})

		self.assertEqual(response.status_code, 400)
		self.assertEqual(response.data['error'], 'validation_error')
		self.assertEqual(set(response.data['errors']), {'limit', 'status'})

	def test_submit_invalid_request(self):
		response = self.as_user(self.rider).post(
			'/api/rides/requests/', request_fields(passenger_count=0, origin=''), format='json'
		)

		self.assertEqual(response.status_code, 400)
		self.assertFalse(response.data['success'])
		self.assertEqual(response.data['error'], 'validation_error')
		self.assertEqual(set(response.data['errors']), {'passenger_count', 'origin'})

	def test_full_negotiation_over_http(self):
		ride = make_request(self.rider)
		negotiation = self.open_negotiation(ride)

		response = self.as_user(self.rider).post(
			f"/api/rides/negotiations/{negotiation['id']}/counter/", {'amount': '8.00'}, format='json'
		)
		self.assertEqual(response.status_code, 200)

		response = self.as_user(self.driver).post(f"/api/rides/negotiations/{negotiation['id']}/accept/")
		self.assertEqual(response.status_code, 200)

		result = response.data['negotiation']
		self.assertEqual(result['status'], 'accepted')
		self.assertEqual(result['accepted_fare'], '8.00')
		self.assertEqual([e['kind'] for e in result['events']], ['proposal', 'counter', 'accept'])

		ride.refresh_from_db()
		self.assertEqual(ride.status, 'matched')
		self.assertEqual(
			set(Notification.objects.values_list('type', flat=True)),
			{'offer', 'counter_offer', 'offer_accepted'},
		)

	def test_closed_negotiation_is_409(self):
		ride = make_request(self.rider)
		negotiation = self.open_negotiation(ride)
		self.as_user(self.rider).post(f"/api/rides/negotiations/{negotiation['id']}/reject/", {'reason': 'No thanks'}, format='json')

		response = self.as_user(self.driver).post(
			f"/api/rides/negotiations/{negotiation['id']}/counter/", {'amount': '9.00'}, format='json'
		)

		self.assertEqual(response.status_code, 409)
		self.assertEqual(response.data['error'], 'not_open')
		self.assertEqual(response.data['current_status'], 'rejected')

	def test_repeat_counter_is_409(self):
		ride = make_request(self.rider)
		negotiation = self.open_negotiation(ride)

		response = self.as_user(self.driver).post(
			f"/api/rides/negotiations/{negotiation['id']}/counter/", {'amount': '11.00'}, format='json'
		)

		self.assertEqual(response.status_code, 409)
		self.assertEqual(response.data['error'], 'same_actor_repeat')

	def test_accepting_own_offer_is_409(self):
		ride = make_request(self.rider)
		negotiation = self.open_negotiation(ride, amount='40.00')

		response = self.as_user(self.driver).post(f"/api/rides/negotiations/{negotiation['id']}/accept/")

		self.assertEqual(response.status_code, 409)
		self.assertEqual(response.data['error'], 'same_actor_repeat')
		self.assertEqual(response.data['current_status'], 'open')
		ride.refresh_from_db()
		self.assertEqual(ride.status, 'pending')

	def test_duplicate_negotiation_is_409(self):
		ride = make_request(self.rider)
		self.open_negotiation(ride)

		response = self.as_user(self.driver).post(
			f'/api/rides/requests/{ride.id}/negotiations/', {'amount': '9.00'}, format='json'
		)
		self.assertEqual(response.status_code, 409)
		self.assertEqual(response.data['error'], 'duplicate_negotiation')

	def test_rider_must_name_the_driver(self):
		ride = make_request(self.rider)

		response = self.as_user(self.rider).post(
			f'/api/rides/requests/{ride.id}/negotiations/', {'amount': '9.00'}, format='json'
		)
		self.assertEqual(response.status_code, 400)
		self.assertIn('driver_id', response.data['errors'])

		response = self.client.post(
			f'/api/rides/requests/{ride.id}/negotiations/',
			{'amount': '9.00', 'driver_id': self.driver.id},
			format='json',
		)
		self.assertEqual(response.status_code, 201)
		self.assertEqual(response.data['negotiation']['initiator'], self.rider.id)

	def test_negotiation_visibility(self):
		ride = make_request(self.rider)
		negotiation = self.open_negotiation(ride)

		response = self.as_user(self.stranger).get(f"/api/rides/negotiations/{negotiation['id']}/")
		self.assertEqual(response.status_code, 403)
		self.assertEqual(response.data['error'], 'not_participant')

		response = self.as_user(self.other_driver).get(f'/api/rides/requests/{ride.id}/negotiations/')
		self.assertEqual(response.data['count'], 0)

		response = self.as_user(self.rider).get(f'/api/rides/requests/{ride.id}/negotiations/')
		self.assertEqual(response.data['count'], 1)

	def test_unknown_negotiation_is_404(self):
		response = self.as_user(self.rider).post('/api/rides/negotiations/999999/accept/')
		self.assertEqual(response.status_code, 404)
		self.assertEqual(response.data['error'], 'negotiation_not_found')

	def test_fare_endpoint(self):
		self.driver.rating = 5.0
		self.driver.save(update_fields=['rating'])

		response = self.as_user(self.rider).post('/api/rides/fare/', {
			'origin': 'North Campus', 'destination': 'Central Station',
			'driver_id': self.driver.id, 'distance_km': 5,
		}, format='json')

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['estimated_fare'], '8.50')
		self.assertEqual(Decimal(response.data['rating_multiplier']), 1)

		response = self.client.post('/api/rides/fare/', {
			'origin': 'A', 'destination': 'B', 'driver_id': 999999,
		}, format='json')
		self.assertEqual(response.status_code, 404)
		self.assertEqual(response.data['error'], 'driver_not_found')

	def test_cancel_and_detail(self):
		ride = make_request(self.rider)

		response = self.as_user(self.rider).post(f'/api/rides/requests/{ride.id}/cancel/')
		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['request']['status'], 'cancelled')

		response = self.client.get(f'/api/rides/requests/{ride.id}/')
		self.assertEqual(response.data['request']['status'], 'cancelled')

		response = self.client.get('/api/rides/requests/999999/')
		self.assertEqual(response.status_code, 404)

	def test_nearby_requests_and_candidates(self):
		ride = make_request(self.rider)
		get_location_registry().record_heartbeat(self.driver.id, 28.6140, 77.2091)

		response = self.as_user(self.driver).get(
			'/api/rides/requests/nearby/', {'latitude': ORIGIN[0], 'longitude': ORIGIN[1], 'radius': 3}
		)
		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['requests'][0]['request']['id'], ride.id)

		response = self.client.get(f'/api/rides/requests/{ride.id}/candidates/')
		self.assertEqual(response.status_code, 403)

		response = self.as_user(self.rider).get(f'/api/rides/requests/{ride.id}/candidates/')
		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['candidates'][0]['driver']['id'], self.driver.id)

	def test_storage_failure_is_generic_500(self):
		with patch('rides.models.RideRequest.objects.create', side_effect=DatabaseError('disk I/O error at /var/lib')):
			response = self.as_user(self.rider).post('/api/rides/requests/', request_fields(), format='json')

		self.assertEqual(response.status_code, 500)
		self.assertEqual(response.data['error'], 'storage_failure')
		self.assertNotIn('/var/lib', str(response.data))


class SubmitNotifiesDriversEndToEndTests(TestCase):
	def test_driver_near_origin_gets_ride_request_notification(self):
		rider, driver, _, _ = make_users()
		get_location_registry().record_heartbeat(driver.id, 28.6140, 77.2091)

		client = APIClient()
		client.force_authenticate(rider)
		with self.captureOnCommitCallbacks(execute=True):
			response = client.post('/api/rides/requests/', request_fields(), format='json')

		self.assertEqual(response.status_code, 201)
		notification = Notification.objects.get(recipient=driver)
		self.assertEqual(notification.type, 'ride_request')
		self.assertEqual(notification.sender_id, rider.id)
