from datetime import timedelta

from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from common.api import translate_domain_errors, validated_data
from locations.serializers import (
    HeartbeatSerializer,
    HistoryQuerySerializer,
    LocationSnapshotSerializer,
    NearbyDriverSerializer,
    NearbyQuerySerializer,
)
from services.locations import get_location_registry
from services.matching import get_matching_service


class HeartbeatView(APIView):
    """Riders and drivers report their position; drivers become discoverable."""
    permission_classes = [IsAuthenticated]

    @translate_domain_errors
    def post(self, request):
        data = validated_data(HeartbeatSerializer, request.data)
        snapshot = get_location_registry().record_heartbeat(
            request.user.id, data["latitude"], data["longitude"]
        )
        return Response({
            "success": True,
            "latitude": snapshot.latitude,
            "longitude": snapshot.longitude,
            "timestamp": snapshot.captured_at,
        })


class NearbyDriversView(APIView):
    permission_classes = [IsAuthenticated]

    @translate_domain_errors
    def get(self, request):
        query = validated_data(NearbyQuerySerializer, request.query_params)
        drivers = get_matching_service().find_nearby_drivers(
            query["latitude"], query["longitude"], query.get("radius")
        )
        serialized = NearbyDriverSerializer(drivers, many=True)
        return Response({"success": True, "drivers": serialized.data, "count": len(drivers)})


class LocationHistoryView(APIView):
    """The caller's own recent heartbeats, newest first."""
    permission_classes = [IsAuthenticated]

    @translate_domain_errors
    def get(self, request):
        query = validated_data(HistoryQuerySerializer, request.query_params)
        samples = list(get_location_registry().history(
            request.user.id, timedelta(hours=query["hours"]), query["limit"]
        ))
        serialized = LocationSnapshotSerializer(samples, many=True)
        return Response({"success": True, "history": serialized.data, "count": len(samples)})
