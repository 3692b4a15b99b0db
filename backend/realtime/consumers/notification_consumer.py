"""WebSocket consumer streaming ride notifications to the connected user."""

import logging

from channels.db import database_sync_to_async

from realtime import notifications
from .base import BaseConsumer

logger = logging.getLogger(__name__)


class NotificationConsumer(BaseConsumer):
    """
    Forwards `notification` events sent to user_<id> and lets the client
    mark notifications as read.

    Client -> server:
        {"type": "mark_read", "notification_id": 12}
        {"type": "ping"}
    """

    async def handle_message(self, msg_type, data):
        if msg_type == "mark_read":
            await self._mark_read(data.get("notification_id"))
        elif msg_type == "ping":
            await self.send_json({"type": "pong"})
        else:
            await super().handle_message(msg_type, data)

    async def _mark_read(self, notification_id):
        if notification_id is None:
            await self.send_error("notification_id is required")
            return

        updated = await database_sync_to_async(notifications.mark_read)(self.user_id, notification_id)
        if not updated:
            await self.send_error("Notification not found")
            return

        await self.send_json({"type": "notification_read", "notification_id": notification_id})

    # ---------------------- Server Event Handlers ----------------------

    async def notification(self, event):
        """Sent by realtime.notifications.notify()."""
        await self.send_json({
            "type": "notification",
            "id": event.get("id"),
            "notification_type": event.get("notification_type"),
            "sender_id": event.get("sender_id"),
            "message": event.get("message"),
            "created_at": event.get("created_at"),
        })
