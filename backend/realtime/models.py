from django.conf import settings
from django.db import models


class Notification(models.Model):
    """Durable copy of every message pushed to a user's WebSocket group."""

    TYPE_RIDE_REQUEST = 'ride_request'
    TYPE_OFFER = 'offer'
    TYPE_COUNTER_OFFER = 'counter_offer'
    TYPE_OFFER_ACCEPTED = 'offer_accepted'
    TYPE_OFFER_REJECTED = 'offer_rejected'

    TYPE_CHOICES = [
        (TYPE_RIDE_REQUEST, 'Ride Request'),
        (TYPE_OFFER, 'Offer'),
        (TYPE_COUNTER_OFFER, 'Counter Offer'),
        (TYPE_OFFER_ACCEPTED, 'Offer Accepted'),
        (TYPE_OFFER_REJECTED, 'Offer Rejected'),
    ]

    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='notifications'
    )
    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='sent_notifications'
    )
    type = models.CharField(max_length=30, choices=TYPE_CHOICES)
    message = models.TextField()
    read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'notifications'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['recipient', 'read'], name='notification_unread_idx'),
        ]

    def __str__(self):
        return f"{self.type} -> {self.recipient_id}"
