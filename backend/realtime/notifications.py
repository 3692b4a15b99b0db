"""
Notification sink for ride events.

notify() stores a Notification row and pushes the same payload to the
recipient's personal channel-layer group (user_<id>) once the surrounding
transaction commits. Delivery is best effort: failures are logged and
reported through the return value, never raised into the caller's
business transaction.
"""

import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction

from .models import Notification

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = {choice for choice, _ in Notification.TYPE_CHOICES}


def user_group(user_id) -> str:
    return f"user_{user_id}"


def _push(notification: Notification):
    channel_layer = get_channel_layer()
    if channel_layer is None:
        logger.warning("No channel layer available for notification %s", notification.id)
        return

    payload = {
        "type": "notification",
        "id": notification.id,
        "notification_type": notification.type,
        "sender_id": notification.sender_id,
        "message": notification.message,
        "created_at": notification.created_at.isoformat(),
    }
    try:
        logger.debug("WS -> user_%s: %s", notification.recipient_id, payload)
        async_to_sync(channel_layer.group_send)(user_group(notification.recipient_id), payload)
    except Exception:
        logger.exception("Failed to push notification %s to user_%s", notification.id, notification.recipient_id)


def notify(recipient_id, sender_id, notification_type: str, message: str) -> bool:
    """
    Persist and push a notification.

    Args:
        recipient_id: User receiving the notification
        sender_id: User that caused it, or None for system notifications
        notification_type: One of Notification.TYPE_CHOICES
        message: Human readable text

    Returns:
        True if the notification was stored, False otherwise
    """
    if notification_type not in NOTIFICATION_TYPES:
        logger.error("Unknown notification type %r for user_%s", notification_type, recipient_id)
        return False

    try:
        # Savepoint so a failed insert does not poison the caller's transaction
        with transaction.atomic():
            notification = Notification.objects.create(
                recipient_id=recipient_id,
                sender_id=sender_id,
                type=notification_type,
                message=message,
            )
    except Exception:
        logger.exception("Failed to store %s notification for user_%s", notification_type, recipient_id)
        return False

    transaction.on_commit(lambda: _push(notification))
    return True


def mark_read(user_id, notification_id) -> bool:
    """Mark one of the user's notifications as read. False if it is not theirs."""
    updated = Notification.objects.filter(id=notification_id, recipient_id=user_id).update(read=True)
    return updated > 0
