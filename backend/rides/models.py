from django.conf import settings
from django.db import models


class RideRequest(models.Model):
    """A rider asking for a trip, open to fare proposals while pending."""

    STATUS_PENDING = 'pending'
    STATUS_MATCHED = 'matched'
    STATUS_CANCELLED = 'cancelled'
    STATUS_EXPIRED = 'expired'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_MATCHED, 'Matched'),
        (STATUS_CANCELLED, 'Cancelled by Rider'),
        (STATUS_EXPIRED, 'Expired'),
    ]

    rider = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='ride_requests'
    )

    # Trip
    origin = models.CharField(max_length=255)
    destination = models.CharField(max_length=255)
    departure_time = models.DateTimeField()
    max_fare_per_person = models.DecimalField(max_digits=10, decimal_places=2)
    passenger_count = models.PositiveIntegerField(default=1)
    message = models.TextField(blank=True, default='')

    # Optional coordinates for proximity matching
    origin_latitude = models.FloatField(null=True, blank=True)
    origin_longitude = models.FloatField(null=True, blank=True)
    destination_latitude = models.FloatField(null=True, blank=True)
    destination_longitude = models.FloatField(null=True, blank=True)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING)
    matched_negotiation = models.ForeignKey(
        'Negotiation',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    matched_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    expired_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'ride_requests'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'departure_time'], name='ride_req_status_departure_idx'),
        ]

    def __str__(self):
        return f"Ride #{self.id} - {self.rider} - {self.status}"

    @property
    def has_origin_coordinates(self):
        return self.origin_latitude is not None and self.origin_longitude is not None

    @property
    def has_destination_coordinates(self):
        return self.destination_latitude is not None and self.destination_longitude is not None


class Negotiation(models.Model):
    """Fare bargaining between the rider of a request and one driver."""

    STATUS_OPEN = 'open'
    STATUS_ACCEPTED = 'accepted'
    STATUS_REJECTED = 'rejected'

    STATUS_CHOICES = [
        (STATUS_OPEN, 'Open'),
        (STATUS_ACCEPTED, 'Accepted'),
        (STATUS_REJECTED, 'Rejected'),
    ]

    request = models.ForeignKey(
        RideRequest,
        on_delete=models.CASCADE,
        related_name='negotiations'
    )

    driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        limit_choices_to={'role': 'driver'},
        related_name='driver_negotiations'
    )

    initiator = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='initiated_negotiations'
    )

    proposed_fare = models.DecimalField(max_digits=10, decimal_places=2)
    accepted_fare = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_OPEN)

    # Equals the number of events; bumped by every transition
    version = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    closed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'negotiations'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['request', 'driver'],
                condition=models.Q(status='open'),
                name='unique_open_negotiation_per_driver'
            )
        ]

    def __str__(self):
        return f"Negotiation #{self.id} - Ride {self.request_id} -> Driver {self.driver_id} ({self.status})"

    @property
    def is_open(self):
        return self.status == self.STATUS_OPEN

    @property
    def rider_id(self):
        return self.request.rider_id

    def is_participant(self, actor_id):
        return actor_id in (self.request.rider_id, self.driver_id)

    def counterparty_of(self, actor_id):
        """The other side of the negotiation from actor_id."""
        return self.driver_id if actor_id == self.request.rider_id else self.request.rider_id

    @property
    def last_event(self):
        return self.events.order_by('-sequence').first()


class NegotiationEvent(models.Model):
    """Append-only history entry. Never updated after insert."""

    KIND_PROPOSAL = 'proposal'
    KIND_COUNTER = 'counter'
    KIND_ACCEPT = 'accept'
    KIND_REJECT = 'reject'

    KIND_CHOICES = [
        (KIND_PROPOSAL, 'Proposal'),
        (KIND_COUNTER, 'Counter Offer'),
        (KIND_ACCEPT, 'Accept'),
        (KIND_REJECT, 'Reject'),
    ]

    negotiation = models.ForeignKey(
        Negotiation,
        on_delete=models.CASCADE,
        related_name='events'
    )
    sequence = models.PositiveIntegerField()
    kind = models.CharField(max_length=20, choices=KIND_CHOICES)
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='negotiation_events'
    )
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    message = models.TextField(blank=True, default='')
    timestamp = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'negotiation_events'
        ordering = ['sequence']
        constraints = [
            models.UniqueConstraint(
                fields=['negotiation', 'sequence'],
                name='unique_negotiation_event_sequence'
            )
        ]

    def __str__(self):
        return f"{self.kind} #{self.sequence} on negotiation {self.negotiation_id}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Negotiation events are append-only")
        super().save(*args, **kwargs)
