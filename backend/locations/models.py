from django.db import models
from django.conf import settings
from django.utils import timezone

User = settings.AUTH_USER_MODEL


class ActorLocation(models.Model):
    """Last-known coordinate of a rider or driver (latest heartbeat wins)"""

    actor = models.OneToOneField(
        User,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name='current_location'
    )
    latitude = models.FloatField()
    longitude = models.FloatField()
    updated_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        db_table = 'actor_locations'
        indexes = [
            models.Index(fields=['latitude', 'longitude'], name='actor_loc_lat_lon_idx'),
        ]

    def __str__(self):
        return f"{self.actor_id} @ ({self.latitude}, {self.longitude})"


class LocationSample(models.Model):
    """One row per heartbeat, kept for history queries only"""

    actor = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='location_samples'
    )
    latitude = models.FloatField()
    longitude = models.FloatField()
    captured_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'location_samples'
        ordering = ['-captured_at', '-id']
        indexes = [
            models.Index(fields=['actor', '-captured_at'], name='loc_sample_actor_time_idx'),
            models.Index(fields=['captured_at'], name='loc_sample_time_idx'),
        ]

    def __str__(self):
        return f"Sample #{self.id} - {self.actor_id} at {self.captured_at}"
