from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

from channels.layers import get_channel_layer
from channels.testing import WebsocketCommunicator
from django.contrib.auth.models import AnonymousUser
from django.db import DatabaseError, transaction
from django.test import SimpleTestCase, TestCase

from accounts.models import User
from realtime.consumers import NotificationConsumer
from realtime.models import Notification
from realtime.notifications import mark_read, notify


class NotifyTests(TestCase):
	def setUp(self):
		self.rider = User.objects.create_user(username='rider', password='rider1234')
		self.driver = User.objects.create_user(username='driver', password='driver1234', role='driver')

	def test_stores_notification_and_pushes_after_commit(self):
		layer = MagicMock()
		layer.group_send = AsyncMock()

		with patch('realtime.notifications.get_channel_layer', return_value=layer):
			with self.captureOnCommitCallbacks(execute=True) as callbacks:
				sent = notify(self.driver.id, self.rider.id, 'offer', 'New fare offer of $10.00')
				layer.group_send.assert_not_called()

		self.assertTrue(sent)
		self.assertEqual(len(callbacks), 1)
		notification = Notification.objects.get(recipient=self.driver)
		self.assertEqual(notification.type, 'offer')
		self.assertFalse(notification.read)

		group, payload = layer.group_send.call_args.args
		self.assertEqual(group, f'user_{self.driver.id}')
		self.assertEqual(payload['type'], 'notification')
		self.assertEqual(payload['notification_type'], 'offer')
		self.assertEqual(payload['sender_id'], self.rider.id)

	def test_unknown_type_is_refused(self):
		self.assertFalse(notify(self.driver.id, self.rider.id, 'party_invite', 'hi'))
		self.assertFalse(Notification.objects.exists())

	def test_storage_failure_does_not_break_caller_transaction(self):
		with transaction.atomic():
			with patch.object(Notification.objects, 'create', side_effect=DatabaseError('disk full')):
				sent = notify(self.driver.id, self.rider.id, 'offer', 'x')
			# Caller can keep using the connection
			User.objects.create_user(username='after', password='after1234')

		self.assertFalse(sent)
		self.assertTrue(User.objects.filter(username='after').exists())

	def test_push_failure_is_logged_not_raised(self):
		layer = MagicMock()
		layer.group_send = AsyncMock(side_effect=RuntimeError('redis down'))

		with patch('realtime.notifications.get_channel_layer', return_value=layer):
			with self.assertLogs('realtime.notifications', level='ERROR'):
				with self.captureOnCommitCallbacks(execute=True):
					sent = notify(self.driver.id, None, 'ride_request', 'New ride request')

		self.assertTrue(sent)
		self.assertEqual(Notification.objects.count(), 1)

	def test_mark_read_only_for_recipient(self):
		notify(self.driver.id, self.rider.id, 'offer', 'x')
		notification = Notification.objects.get()

		self.assertFalse(mark_read(self.rider.id, notification.id))
		self.assertTrue(mark_read(self.driver.id, notification.id))
		notification.refresh_from_db()
		self.assertTrue(notification.read)


class NotificationConsumerTests(SimpleTestCase):
	async def connect(self, user):
		communicator = WebsocketCommunicator(NotificationConsumer.as_asgi(), "/ws/notifications/")
		communicator.scope["user"] = user
		connected, _ = await communicator.connect()
		return communicator, connected

	async def test_anonymous_connection_is_closed(self):
		communicator, connected = await self.connect(AnonymousUser())
		self.assertFalse(connected)

	async def test_forwards_notifications_sent_to_user_group(self):
		user = SimpleNamespace(id=7, role='driver', is_anonymous=False)
		communicator, connected = await self.connect(user)
		self.assertTrue(connected)

		hello = await communicator.receive_json_from()
		self.assertEqual(hello, {"type": "connection_established", "user_id": 7, "role": "driver"})

		await get_channel_layer().group_send("user_7", {
			"type": "notification",
			"id": 1,
			"notification_type": "counter_offer",
			"sender_id": 3,
			"message": "New counter offer",
			"created_at": "2026-01-01T00:00:00+00:00",
		})
		message = await communicator.receive_json_from()

		self.assertEqual(message["type"], "notification")
		self.assertEqual(message["notification_type"], "counter_offer")
		await communicator.disconnect()

	async def test_ping_and_unknown_messages(self):
		user = SimpleNamespace(id=8, role='rider', is_anonymous=False)
		communicator, _ = await self.connect(user)
		await communicator.receive_json_from()

		await communicator.send_json_to({"type": "ping"})
		self.assertEqual(await communicator.receive_json_from(), {"type": "pong"})

		await communicator.send_json_to({"type": "dance"})
		reply = await communicator.receive_json_from()
		self.assertEqual(reply["type"], "error")

		await communicator.send_json_to({"type": "mark_read"})
		reply = await communicator.receive_json_from()
		self.assertEqual(reply["message"], "notification_id is required")
		await communicator.disconnect()
