from math import asin, atan2, cos, degrees, isnan, radians, sin
from types import SimpleNamespace

from django.test import SimpleTestCase

from common.utils.geo import (
	EARTH_RADIUS_KM,
	bounding_box,
	distance_km,
	format_distance,
	is_valid_coordinate,
	nearby,
	travel_time_minutes,
)


def destination_point(lat, lon, bearing_deg, km):
	"""Point reached from (lat, lon) after km along the given initial bearing."""
	phi1, lam1, theta = radians(lat), radians(lon), radians(bearing_deg)
	delta = km / EARTH_RADIUS_KM
	phi2 = asin(sin(phi1) * cos(delta) + cos(phi1) * sin(delta) * cos(theta))
	lam2 = lam1 + atan2(sin(theta) * sin(delta) * cos(phi1), cos(delta) - sin(phi1) * sin(phi2))
	return degrees(phi2), degrees(lam2)


class DistanceTests(SimpleTestCase):
	POINTS = [
		(40.7128, -74.0060),
		(40.7589, -73.9851),
		(28.6139, 77.2090),
		(-33.8688, 151.2093),
		(0.0, 0.0),
		(89.9, 10.0),
	]

	def test_times_square_to_central_park(self):
		self.assertAlmostEqual(distance_km(40.7128, -74.0060, 40.7589, -73.9851), 5.42, delta=0.05)

	def test_symmetric(self):
		for a in self.POINTS:
			for b in self.POINTS:
				self.assertEqual(distance_km(*a, *b), distance_km(*b, *a))

	def test_identity_and_non_negative(self):
		for a in self.POINTS:
			self.assertEqual(distance_km(*a, *a), 0)
			for b in self.POINTS:
				self.assertGreaterEqual(distance_km(*a, *b), 0)

	def test_rounded_to_two_decimals(self):
		d = distance_km(28.6139, 77.2090, 28.6129, 77.2295)
		self.assertEqual(d, round(d, 2))

	def test_antipodes_do_not_blow_up(self):
		self.assertAlmostEqual(distance_km(0, 0, 0, 180), 20015.09, delta=0.1)

	def test_nan_propagates(self):
		self.assertTrue(isnan(distance_km(float('nan'), 0, 0, 0)))


class CoordinateValidationTests(SimpleTestCase):
	def test_valid(self):
		self.assertTrue(is_valid_coordinate(0, 0))
		self.assertTrue(is_valid_coordinate(-90, 180))
		self.assertTrue(is_valid_coordinate("40.7", "-74.0"))

	def test_out_of_range(self):
		self.assertFalse(is_valid_coordinate(90.0001, 0))
		self.assertFalse(is_valid_coordinate(0, -180.5))

	def test_not_numbers(self):
		self.assertFalse(is_valid_coordinate(None, 0))
		self.assertFalse(is_valid_coordinate("north", 0))
		self.assertFalse(is_valid_coordinate(float('nan'), 0))
		self.assertFalse(is_valid_coordinate(0, float('inf')))


class BoundingBoxTests(SimpleTestCase):
	def test_box_contains_every_point_inside_radius(self):
		for center in [(0.0, 0.0), (40.7128, -74.0060), (-33.87, 151.21), (60.0, 10.0)]:
			for radius in [0.5, 5, 50]:
				box = bounding_box(center[0], center[1], radius)
				for bearing in range(0, 360, 10):
					lat, lon = destination_point(center[0], center[1], bearing, radius * 0.999)
					self.assertLessEqual(distance_km(center[0], center[1], lat, lon), radius)
					self.assertTrue(
						box.contains(lat, lon),
						f"{(lat, lon)} escaped box around {center} r={radius}",
					)

	def test_box_is_wider_in_longitude_away_from_equator(self):
		equator = bounding_box(0, 0, 10)
		north = bounding_box(60, 0, 10)
		self.assertAlmostEqual(equator.north - equator.south, north.north - north.south)
		self.assertGreater(north.east - north.west, equator.east - equator.west)


class NearbyTests(SimpleTestCase):
	def point(self, name, lat, lon):
		return SimpleNamespace(name=name, latitude=lat, longitude=lon)

	def test_filters_and_sorts_closest_first(self):
		points = [
			self.point('far', 28.70, 77.30),
			self.point('near', 28.6140, 77.2091),
			self.point('mid', 28.62, 77.21),
		]
		matches = nearby(28.6139, 77.2090, points, radius_km=2)

		self.assertEqual([m.point.name for m in matches], ['near', 'mid'])
		self.assertLessEqual(matches[0].distance, matches[1].distance)

	def test_ties_keep_input_order(self):
		points = [self.point(str(i), 10.0, 10.01) for i in range(5)]
		matches = nearby(10.0, 10.0, points, radius_km=5)
		self.assertEqual([m.point.name for m in matches], ['0', '1', '2', '3', '4'])

	def test_radius_is_inclusive(self):
		target = self.point('edge', 10.0, 10.01)
		exact = distance_km(10.0, 10.0, 10.0, 10.01)
		self.assertEqual(len(nearby(10.0, 10.0, [target], radius_km=exact)), 1)

	def test_empty_input(self):
		self.assertEqual(nearby(0, 0, [], 5), [])


class FormattingTests(SimpleTestCase):
	def test_format_distance(self):
		self.assertEqual(format_distance(0.85), "850m")
		self.assertEqual(format_distance(2.345), "2.3km")

	def test_travel_time(self):
		self.assertEqual(travel_time_minutes(15), 30)
		self.assertEqual(travel_time_minutes(10, avg_speed_kmh=60), 10)
