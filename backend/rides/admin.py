"""Tells what to show in the Django admin interface for rides app"""

from django.contrib import admin
from .models import RideRequest, Negotiation, NegotiationEvent


class NegotiationEventInline(admin.TabularInline):
    model = NegotiationEvent
    extra = 0
    can_delete = False
    readonly_fields = ['sequence', 'kind', 'actor', 'amount', 'message', 'timestamp']

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(RideRequest)
class RideRequestAdmin(admin.ModelAdmin):
    """Ride Request admin"""
    list_display = ['id', 'rider', 'origin', 'destination', 'departure_time', 'status', 'max_fare_per_person']
    list_filter = ['status', 'departure_time']
    search_fields = ['rider__username', 'origin', 'destination']
    readonly_fields = ['created_at', 'matched_at', 'cancelled_at', 'expired_at', 'matched_negotiation']
    date_hierarchy = 'departure_time'


@admin.register(Negotiation)
class NegotiationAdmin(admin.ModelAdmin):
    list_display = ("id", "request", "driver", "initiator", "proposed_fare", "accepted_fare", "status", "version")
    list_filter = ("status",)
    search_fields = ("request__id", "driver__username")
    readonly_fields = ("version", "created_at", "updated_at", "closed_at")
    inlines = [NegotiationEventInline]
