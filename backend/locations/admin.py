from django.contrib import admin
from .models import ActorLocation, LocationSample


@admin.register(ActorLocation)
class ActorLocationAdmin(admin.ModelAdmin):
    list_display = ['actor', 'latitude', 'longitude', 'updated_at']
    search_fields = ['actor__username']
    readonly_fields = ['updated_at']


@admin.register(LocationSample)
class LocationSampleAdmin(admin.ModelAdmin):
    list_display = ['actor', 'latitude', 'longitude', 'captured_at']
    list_filter = ['captured_at']
    search_fields = ['actor__username']
    date_hierarchy = 'captured_at'
