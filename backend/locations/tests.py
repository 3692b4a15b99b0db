from datetime import timedelta

from django.test import SimpleTestCase, TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from accounts.models import User
from common.utils.geo import BoundingBox
from locations.models import ActorLocation, LocationSample
from locations.serializers import NearbyDriverSerializer
from services.exceptions import InvalidCoordinateError, RideValidationError
from services.locations import InMemoryLocationStore, LocationRegistry, OrmLocationStore


class FakeDirectory:
	def __init__(self, verified_ids=()):
		self.verified_ids = set(verified_ids)

	def is_verified_driver(self, actor_id):
		return actor_id in self.verified_ids

	def verified_drivers(self, actor_ids):
		return {i for i in actor_ids if i in self.verified_ids}


class FakeClock:
	def __init__(self):
		self.now = timezone.now()

	def __call__(self):
		return self.now

	def advance(self, **kwargs):
		self.now += timedelta(**kwargs)


class LocationRegistryTests(SimpleTestCase):
	def setUp(self):
		self.clock = FakeClock()
		self.registry = LocationRegistry(
			store=InMemoryLocationStore(),
			directory=FakeDirectory(verified_ids={1, 2, 3, 4}),
			clock=self.clock,
		)

	def test_heartbeat_rejects_invalid_coordinates(self):
		for lat, lon in [(91, 0), (0, 181), (float('nan'), 0), ("abc", 0), (None, None)]:
			with self.assertRaises(InvalidCoordinateError):
				self.registry.record_heartbeat(1, lat, lon)

	def test_latest_heartbeat_wins(self):
		self.registry.record_heartbeat(1, 28.61, 77.20)
		self.clock.advance(seconds=5)
		self.registry.record_heartbeat(1, 28.62, 77.21)

		latest = self.registry.latest(1)
		self.assertEqual((latest.latitude, latest.longitude), (28.62, 77.21))
		self.assertEqual(latest.captured_at, self.clock.now)

	def test_eligible_drivers_sorted_and_filtered(self):
		self.registry.record_heartbeat(1, 28.6200, 77.2100)   # ~0.7 km
		self.registry.record_heartbeat(2, 28.6140, 77.2091)   # ~0.01 km
		self.registry.record_heartbeat(3, 28.9000, 77.5000)   # far away
		self.registry.record_heartbeat(99, 28.6139, 77.2090)  # not a verified driver

		drivers = self.registry.find_eligible_drivers(28.6139, 77.2090, 5, timedelta(minutes=30))

		self.assertEqual([d.driver_id for d in drivers], [2, 1])
		self.assertLessEqual(drivers[0].distance_km, drivers[1].distance_km)

	def test_stale_drivers_are_excluded(self):
		self.registry.record_heartbeat(1, 28.6139, 77.2090)
		self.clock.advance(minutes=31)
		self.registry.record_heartbeat(2, 28.6139, 77.2090)

		drivers = self.registry.find_eligible_drivers(28.6139, 77.2090, 5, timedelta(minutes=30))
		self.assertEqual([d.driver_id for d in drivers], [2])

	def test_empty_result_is_not_an_error(self):
		self.assertEqual(self.registry.find_eligible_drivers(0, 0, 5, timedelta(minutes=30)), [])

	def test_invalid_search_center_or_radius(self):
		with self.assertRaises(InvalidCoordinateError):
			self.registry.find_eligible_drivers(100, 0, 5)
		with self.assertRaises(RideValidationError):
			self.registry.find_eligible_drivers(0, 0, -1)

	def test_fresh_drivers_ignores_position(self):
		self.registry.record_heartbeat(1, 10, 10)
		self.registry.record_heartbeat(2, -40, 120)
		self.registry.record_heartbeat(50, 10, 10)
		self.clock.advance(minutes=6)
		self.registry.record_heartbeat(3, 0, 0)

		fresh = self.registry.fresh_drivers(timedelta(minutes=5))
		self.assertEqual([s.actor_id for s in fresh], [3])

	def test_history_newest_first_limited_and_restartable(self):
		for i in range(5):
			self.registry.record_heartbeat(1, 10 + i, 10)
			self.clock.advance(minutes=1)

		first = list(self.registry.history(1, timedelta(hours=1), limit=3))
		second = list(self.registry.history(1, timedelta(hours=1), limit=3))

		self.assertEqual([s.latitude for s in first], [14, 13, 12])
		self.assertEqual(first, second)

	def test_history_respects_since(self):
		self.registry.record_heartbeat(1, 10, 10)
		self.clock.advance(hours=2)
		self.registry.record_heartbeat(1, 11, 10)

		history = list(self.registry.history(1, timedelta(hours=1)))
		self.assertEqual([s.latitude for s in history], [11])

	def test_history_rejects_non_positive_limit(self):
		with self.assertRaises(RideValidationError):
			self.registry.history(1, timedelta(hours=1), limit=0)

	def test_availability_is_derived(self):
		self.registry.record_heartbeat(1, 10, 10)
		self.assertTrue(self.registry.availability(1, timedelta(minutes=30)).available)

		self.clock.advance(minutes=45)
		availability = self.registry.availability(1, timedelta(minutes=30))
		self.assertFalse(availability.fresh)
		self.assertFalse(availability.available)

		self.assertFalse(self.registry.availability(50).available)

	def test_prune_history(self):
		self.registry.record_heartbeat(1, 10, 10)
		self.clock.advance(days=31)
		self.registry.record_heartbeat(1, 11, 10)

		self.assertEqual(self.registry.prune_history(timedelta(days=30)), 1)
		self.assertEqual(len(list(self.registry.history(1, timedelta(days=365)))), 1)


class OrmLocationStoreTests(TestCase):
	def setUp(self):
		self.driver = User.objects.create_user(username='driver', password='driver1234', role='driver', verified=True)
		self.store = OrmLocationStore()

	def test_record_upserts_latest_and_appends_sample(self):
		now = timezone.now()
		self.store.record(self.driver.id, 28.61, 77.20, now)
		self.store.record(self.driver.id, 28.62, 77.21, now + timedelta(seconds=10))

		self.assertEqual(ActorLocation.objects.count(), 1)
		self.assertEqual(LocationSample.objects.filter(actor=self.driver).count(), 2)
		self.assertEqual(self.store.latest_for(self.driver.id).latitude, 28.62)

	def test_box_query_across_antimeridian(self):
		now = timezone.now()
		self.store.record(self.driver.id, 0.0, -179.99, now)
		box = BoundingBox(north=1, south=-1, east=180.5, west=179.5)

		rows = self.store.latest_in_box(box, now - timedelta(minutes=1))
		self.assertEqual([r.actor_id for r in rows], [self.driver.id])

	def test_registry_against_orm(self):
		rider = User.objects.create_user(username='rider', password='rider1234')
		unverified = User.objects.create_user(username='new_driver', password='driver1234', role='driver')
		registry = LocationRegistry()

		for user in (self.driver, rider, unverified):
			registry.record_heartbeat(user.id, 28.6139, 77.2090)

		drivers = registry.find_eligible_drivers(28.6139, 77.2090, 1, timedelta(minutes=30))
		self.assertEqual([d.driver_id for d in drivers], [self.driver.id])


class LocationApiTests(TestCase):
	def setUp(self):
		self.client = APIClient()
		self.driver = User.objects.create_user(username='driver', password='driver1234', role='driver', verified=True)
		self.rider = User.objects.create_user(username='rider', password='rider1234')

	def test_heartbeat(self):
		self.client.force_authenticate(self.driver)
		response = self.client.post('/api/location/heartbeat/', {'latitude': 28.6139, 'longitude': 77.2090}, format='json')

		self.assertEqual(response.status_code, 200)
		self.assertTrue(response.data['success'])
		self.assertIn('timestamp', response.data)
		self.assertTrue(ActorLocation.objects.filter(actor=self.driver).exists())

	def test_heartbeat_invalid_coordinate(self):
		self.client.force_authenticate(self.driver)
		response = self.client.post('/api/location/heartbeat/', {'latitude': 123, 'longitude': 77.2}, format='json')

		self.assertEqual(response.status_code, 400)
		self.assertEqual(response.data['error'], 'invalid_coordinate')

	def test_heartbeat_missing_fields(self):
		self.client.force_authenticate(self.driver)
		response = self.client.post('/api/location/heartbeat/', {}, format='json')

		self.assertEqual(response.status_code, 400)
		self.assertEqual(response.data['error'], 'validation_error')
		self.assertIn('latitude', response.data['errors'])

	def test_requires_authentication(self):
		response = self.client.post('/api/location/heartbeat/', {'latitude': 1, 'longitude': 1}, format='json')
		self.assertEqual(response.status_code, 401)

	def test_nearby_drivers(self):
		self.client.force_authenticate(self.driver)
		self.client.post('/api/location/heartbeat/', {'latitude': 28.6140, 'longitude': 77.2091}, format='json')

		self.client.force_authenticate(self.rider)
		response = self.client.get('/api/location/drivers/', {'latitude': 28.6139, 'longitude': 77.2090, 'radius': 2})

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['count'], 1)
		entry = response.data['drivers'][0]
		self.assertEqual(entry['driver']['id'], self.driver.id)
		self.assertLess(entry['distance_km'], 0.1)
		self.assertEqual(entry['eta_minutes'], 0)

	def test_history(self):
		self.client.force_authenticate(self.rider)
		for lat in (10, 11, 12):
			self.client.post('/api/location/heartbeat/', {'latitude': lat, 'longitude': 10}, format='json')

		response = self.client.get('/api/location/history/', {'limit': 2})

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['count'], 2)
		self.assertEqual(response.data['history'][0]['latitude'], 12)


class NearbyDriverSerializerTests(SimpleTestCase):
	def test_formats_distance_and_eta(self):
		data = NearbyDriverSerializer({
			'driver': User(id=3, username='driver', rating=4.5, verified=True),
			'distance_km': 15.0,
			'latitude': 28.6,
			'longitude': 77.2,
			'last_seen': timezone.now(),
		}).data

		self.assertEqual(data['distance'], '15.0km')
		self.assertEqual(data['eta_minutes'], 30)
