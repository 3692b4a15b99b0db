from django.urls import path
from . import views

urlpatterns = [
    # Fares
    path('fare/', views.calculate_fare, name='calculate-fare'),

    # Ride requests
    path('requests/', views.ride_requests, name='ride-requests'),
    path('requests/nearby/', views.nearby_ride_requests, name='nearby-ride-requests'),
    path('requests/<int:request_id>/', views.ride_request_detail, name='ride-request-detail'),
    path('requests/<int:request_id>/cancel/', views.cancel_ride_request, name='cancel-ride-request'),
    path('requests/<int:request_id>/candidates/', views.ride_request_candidates, name='ride-request-candidates'),
    path('requests/<int:request_id>/negotiations/', views.request_negotiations, name='request-negotiations'),

    # Negotiations
    path('negotiations/<int:negotiation_id>/', views.negotiation_detail, name='negotiation-detail'),
    path('negotiations/<int:negotiation_id>/counter/', views.counter_offer, name='counter-offer'),
    path('negotiations/<int:negotiation_id>/accept/', views.accept_fare, name='accept-fare'),
    path('negotiations/<int:negotiation_id>/reject/', views.reject_fare, name='reject-fare'),
]
