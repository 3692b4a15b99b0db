from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from common.api import translate_domain_errors, validated_data
from services.exceptions import NotParticipantError, RideValidationError
from services.matching import get_matching_service
from .models import Negotiation
from .serializers import (
    CandidateQuoteSerializer,
    CounterOfferSerializer,
    FareQuerySerializer,
    NearbyRequestQuerySerializer,
    NearbyRequestSerializer,
    NegotiationSerializer,
    OfferSerializer,
    RadiusQuerySerializer,
    RejectSerializer,
    RideRequestListQuerySerializer,
    RideRequestSerializer,
)


def _negotiation_response(negotiation, status_code=status.HTTP_200_OK):
    # Re-read so the event list includes the transition just made
    negotiation = Negotiation.objects.select_related('request', 'driver').prefetch_related('events').get(id=negotiation.id)
    return Response(
        {'success': True, 'negotiation': NegotiationSerializer(negotiation).data},
        status=status_code,
    )


# ==================== Fares ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated])
@translate_domain_errors
def calculate_fare(request):
    """Estimated fare for a trip with a given driver"""
    data = validated_data(FareQuerySerializer, request.data)

    coords = None
    if 'origin_latitude' in data:
        coords = (
            data['origin_latitude'], data['origin_longitude'],
            data['destination_latitude'], data['destination_longitude'],
        )

    breakdown = get_matching_service().calculate_fare(
        data['origin'],
        data['destination'],
        data['driver_id'],
        distance=data.get('distance_km'),
        coords=coords,
    )
    return Response({
        'success': True,
        'origin': data['origin'],
        'destination': data['destination'],
        'driver_id': data['driver_id'],
        **breakdown.as_dict(),
    })


# ==================== Ride requests ====================

@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
@translate_domain_errors
def ride_requests(request):
    """
    GET: one page of requests (pending by default) for drivers to browse,
    or only the caller's own with ?mine=true.
    POST: submit a new request.
    """
    if request.method == 'GET':
        query = validated_data(RideRequestListQuerySerializer, request.query_params)
        rides, total = get_matching_service().list_requests(
            status=query['status'],
            limit=query['limit'],
            offset=query['offset'],
            rider_id=request.user.id if query['mine'] else None,
        )
        return Response({
            'success': True,
            'requests': RideRequestSerializer(rides, many=True).data,
            'pagination': {
                'total': total,
                'limit': query['limit'],
                'offset': query['offset'],
                'has_more': total > query['offset'] + query['limit'],
            },
        })

    ride = get_matching_service().submit_request(request.user.id, request.data)
    return Response(
        {'success': True, 'request': RideRequestSerializer(ride).data},
        status=status.HTTP_201_CREATED,
    )


@api_view(['GET'])
@permission_classes([IsAuthenticated])
@translate_domain_errors
def nearby_ride_requests(request):
    """Pending requests whose origin is near the given point (driver view)"""
    query = validated_data(NearbyRequestQuerySerializer, request.query_params)
    results = get_matching_service().find_nearby_requests(
        query['latitude'], query['longitude'], query.get('radius')
    )
    serializer = NearbyRequestSerializer(results, many=True)
    return Response({'success': True, 'requests': serializer.data, 'count': len(results)})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
@translate_domain_errors
def ride_request_detail(request, request_id):
    ride = get_matching_service().get_request(request_id)
    return Response({'success': True, 'request': RideRequestSerializer(ride).data})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
@translate_domain_errors
def cancel_ride_request(request, request_id):
    """Rider cancels a pending request"""
    ride = get_matching_service().cancel_request(request_id, request.user.id)
    return Response({
        'success': True,
        'message': 'Ride request cancelled',
        'request': RideRequestSerializer(ride).data,
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated])
@translate_domain_errors
def ride_request_candidates(request, request_id):
    """Drivers near the request origin with an estimated fare each"""
    service = get_matching_service()
    ride = service.get_request(request_id)
    if ride.rider_id != request.user.id:
        raise NotParticipantError("Only the rider can see candidate drivers")

    query = validated_data(RadiusQuerySerializer, request.query_params)
    quotes = service.quote_candidates(request_id, query.get('radius'))
    serializer = CandidateQuoteSerializer(quotes, many=True)
    return Response({'success': True, 'candidates': serializer.data, 'count': len(quotes)})


# ==================== Negotiations ====================

@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
@translate_domain_errors
def request_negotiations(request, request_id):
    """
    GET: negotiations on the request visible to the caller (all of them for
    the rider, their own for a driver).
    POST: open a negotiation. A driver proposes for themselves; the rider
    must name the driver.
    """
    service = get_matching_service()

    if request.method == 'GET':
        ride = service.get_request(request_id)
        negotiations = ride.negotiations.select_related('request', 'driver').prefetch_related('events')
        if ride.rider_id != request.user.id:
            negotiations = negotiations.filter(driver=request.user)
        serializer = NegotiationSerializer(negotiations, many=True)
        return Response({'success': True, 'negotiations': serializer.data, 'count': len(serializer.data)})

    data = validated_data(OfferSerializer, request.data)
    ride = service.get_request(request_id)
    if ride.rider_id == request.user.id:
        driver_id = data.get('driver_id')
        if driver_id is None:
            raise RideValidationError({'driver_id': 'Required when the rider makes the offer'})
    else:
        driver_id = request.user.id

    negotiation = service.propose_to_driver(
        request_id,
        driver_id,
        data['amount'],
        data['message'],
        initiator_id=request.user.id,
    )
    return _negotiation_response(negotiation, status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
@translate_domain_errors
def negotiation_detail(request, negotiation_id):
    negotiation = get_matching_service().get_negotiation(negotiation_id, request.user.id)
    return _negotiation_response(negotiation)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
@translate_domain_errors
def counter_offer(request, negotiation_id):
    data = validated_data(CounterOfferSerializer, request.data)
    negotiation = get_matching_service().counter_offer(
        negotiation_id, request.user.id, data['amount'], data['message']
    )
    return _negotiation_response(negotiation)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
@translate_domain_errors
def accept_fare(request, negotiation_id):
    """Accept the current proposed fare; matches the ride request"""
    negotiation = get_matching_service().accept_fare(negotiation_id, request.user.id)
    return _negotiation_response(negotiation)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
@translate_domain_errors
def reject_fare(request, negotiation_id):
    data = validated_data(RejectSerializer, request.data)
    negotiation = get_matching_service().reject_fare(
        negotiation_id, request.user.id, data.get('reason')
    )
    return _negotiation_response(negotiation)
