from rest_framework import serializers

from accounts.serializers import DriverBasicSerializer, UserBasicSerializer
from common.utils import format_distance
from .models import Negotiation, NegotiationEvent, RideRequest


class RideRequestSerializer(serializers.ModelSerializer):
    """Serializer for Ride Requests"""
    rider = UserBasicSerializer(read_only=True)

    class Meta:
        model = RideRequest
        fields = ['id', 'rider', 'origin', 'destination', 'departure_time',
                  'max_fare_per_person', 'passenger_count', 'message',
                  'origin_latitude', 'origin_longitude',
                  'destination_latitude', 'destination_longitude',
                  'status', 'matched_negotiation', 'created_at', 'matched_at',
                  'cancelled_at', 'expired_at']


class NegotiationEventSerializer(serializers.ModelSerializer):
    class Meta:
        model = NegotiationEvent
        fields = ['sequence', 'kind', 'actor', 'amount', 'message', 'timestamp']
        read_only_fields = fields


class NegotiationSerializer(serializers.ModelSerializer):
    """Negotiation with its full, ordered event history."""
    driver = DriverBasicSerializer(read_only=True)
    rider_id = serializers.IntegerField(source='request.rider_id', read_only=True)
    events = NegotiationEventSerializer(many=True, read_only=True)

    class Meta:
        model = Negotiation
        fields = ['id', 'request', 'rider_id', 'driver', 'initiator', 'proposed_fare',
                  'accepted_fare', 'status', 'version', 'events',
                  'created_at', 'updated_at', 'closed_at']


# ---------------------- Request bodies ----------------------

class FareQuerySerializer(serializers.Serializer):
    """Serializer for fare calculation"""
    origin = serializers.CharField(max_length=255)
    destination = serializers.CharField(max_length=255)
    driver_id = serializers.IntegerField()
    distance_km = serializers.FloatField(required=False, allow_null=True)
    origin_latitude = serializers.FloatField(required=False)
    origin_longitude = serializers.FloatField(required=False)
    destination_latitude = serializers.FloatField(required=False)
    destination_longitude = serializers.FloatField(required=False)

    COORD_FIELDS = ('origin_latitude', 'origin_longitude', 'destination_latitude', 'destination_longitude')

    def validate(self, attrs):
        given = [name for name in self.COORD_FIELDS if name in attrs]
        if given and len(given) != len(self.COORD_FIELDS):
            raise serializers.ValidationError(
                {'coordinates': 'Provide all four coordinates or none'}
            )
        return attrs


class OfferSerializer(serializers.Serializer):
    """Opening proposal. Riders must name the driver; drivers propose for themselves."""
    driver_id = serializers.IntegerField(required=False)
    amount = serializers.CharField()
    message = serializers.CharField(required=False, allow_blank=True, default='')


class CounterOfferSerializer(serializers.Serializer):
    amount = serializers.CharField()
    message = serializers.CharField(required=False, allow_blank=True, default='')


class RejectSerializer(serializers.Serializer):
    """Serializer for fare rejection"""
    reason = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class RideRequestListQuerySerializer(serializers.Serializer):
    """Query for browsing ride requests; `mine` limits the page to the caller's own."""
    status = serializers.ChoiceField(choices=RideRequest.STATUS_CHOICES, default=RideRequest.STATUS_PENDING)
    limit = serializers.IntegerField(required=False, default=20, min_value=1, max_value=100)
    offset = serializers.IntegerField(required=False, default=0, min_value=0)
    mine = serializers.BooleanField(required=False, default=False)


class NearbyRequestQuerySerializer(serializers.Serializer):
    latitude = serializers.FloatField()
    longitude = serializers.FloatField()
    radius = serializers.FloatField(required=False, min_value=0)


class RadiusQuerySerializer(serializers.Serializer):
    radius = serializers.FloatField(required=False, min_value=0)


# ---------------------- Result rows ----------------------

class NearbyRequestSerializer(serializers.Serializer):
    request = RideRequestSerializer()
    distance_km = serializers.FloatField()
    distance = serializers.SerializerMethodField()

    def get_distance(self, obj):
        return format_distance(obj['distance_km'])


class CandidateQuoteSerializer(serializers.Serializer):
    driver = DriverBasicSerializer()
    distance_km = serializers.FloatField()
    estimated_fare = serializers.DecimalField(max_digits=10, decimal_places=2)
    last_seen = serializers.DateTimeField()
