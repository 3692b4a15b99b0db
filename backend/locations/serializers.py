from rest_framework import serializers

from accounts.serializers import DriverBasicSerializer
from common.utils import format_distance, travel_time_minutes


class HeartbeatSerializer(serializers.Serializer):
    """
    Serializer for location heartbeats. Range checks happen in the registry
    so out-of-range values surface as invalid_coordinate.
    """
    latitude = serializers.FloatField()
    longitude = serializers.FloatField()


class NearbyQuerySerializer(serializers.Serializer):
    latitude = serializers.FloatField()
    longitude = serializers.FloatField()
    radius = serializers.FloatField(required=False, min_value=0)


class HistoryQuerySerializer(serializers.Serializer):
    hours = serializers.FloatField(required=False, default=24, min_value=0)
    limit = serializers.IntegerField(required=False, default=100, min_value=1, max_value=1000)


class LocationSnapshotSerializer(serializers.Serializer):
    latitude = serializers.FloatField()
    longitude = serializers.FloatField()
    captured_at = serializers.DateTimeField()


class NearbyDriverSerializer(serializers.Serializer):
    """One entry of a nearby-driver result."""
    driver = DriverBasicSerializer()
    distance_km = serializers.FloatField()
    distance = serializers.SerializerMethodField()
    eta_minutes = serializers.SerializerMethodField()
    latitude = serializers.FloatField()
    longitude = serializers.FloatField()
    last_seen = serializers.DateTimeField()

    def get_distance(self, obj):
        return format_distance(obj['distance_km'])

    def get_eta_minutes(self, obj):
        # Time for the driver to reach the search point
        return travel_time_minutes(obj['distance_km'])
