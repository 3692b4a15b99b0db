from django.contrib import admin
from django.urls import path, include

from .views import health_check

urlpatterns = [
    path('admin/', admin.site.urls),
    path("health/", health_check), # Health check endpoint

    # Token endpoints (at /api/auth/)
    path('api/auth/', include('accounts.urls')),

    # Heartbeat, nearby drivers and location history
    path('api/location/', include('locations.urls')),

    # Ride requests, fare estimates and negotiations (at /api/rides/)
    path('api/rides/', include('rides.urls')),
]
