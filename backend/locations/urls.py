from django.urls import path
from .views import HeartbeatView, LocationHistoryView, NearbyDriversView

urlpatterns = [
    path("heartbeat/", HeartbeatView.as_view(), name="location-heartbeat"),
    path("drivers/", NearbyDriversView.as_view(), name="location-nearby-drivers"),
    path("history/", LocationHistoryView.as_view(), name="location-history"),
]
