from unittest.mock import patch

from django.test import TestCase
from rest_framework.test import APIClient

from campus_backend.celery import app as celery_app

WORKER_PONG = [{'celery@worker-1': {'ok': 'pong'}}]


class HealthCheckTests(TestCase):
	def setUp(self):
		self.client = APIClient()
		redis_patch = patch('campus_backend.views.redis.Redis.from_url')
		self.redis_from_url = redis_patch.start()
		self.addCleanup(redis_patch.stop)
		ping_patch = patch.object(celery_app.control, 'ping', return_value=WORKER_PONG)
		self.ping = ping_patch.start()
		self.addCleanup(ping_patch.stop)

	def test_all_services_healthy(self):
		response = self.client.get('/health/')

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['status'], 'healthy')
		self.assertEqual(response.data['services'], {
			'database': 'healthy',
			'redis': 'healthy',
			'channels': 'healthy',
			'celery': 'healthy',
		})
		self.ping.assert_called_once()

	def test_failure_details_are_logged_not_returned(self):
		self.redis_from_url.return_value.ping.side_effect = ConnectionError('redis://:hunter2@10.0.0.5:6379')

		with self.assertLogs('campus_backend.views', level='ERROR') as logs:
			response = self.client.get('/health/')

		self.assertEqual(response.status_code, 503)
		self.assertEqual(response.data['status'], 'unhealthy')
		self.assertEqual(response.data['services']['redis'], 'unhealthy')
		self.assertEqual(response.data['services']['database'], 'healthy')
		self.assertNotIn('hunter2', str(response.data))
		self.assertIn('Health check failed for redis', logs.output[0])

	def test_celery_without_workers_is_unhealthy(self):
		self.ping.return_value = []

		with self.assertLogs('campus_backend.views', level='ERROR'):
			response = self.client.get('/health/')

		self.assertEqual(response.status_code, 503)
		self.assertEqual(response.data['services']['celery'], 'unhealthy')

	def test_ride_tasks_are_registered(self):
		self.client.get('/health/')

		self.assertIn('rides.tasks.notify_nearby_drivers_task', celery_app.tasks)
		self.assertIn('rides.tasks.expire_ride_requests_task', celery_app.tasks)
