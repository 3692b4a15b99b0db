from rest_framework import serializers

from .models import User


class UserBasicSerializer(serializers.ModelSerializer):
    """
    Lite version of user info embedded in ride request and negotiation
    payloads (sent to the counterparty).
    """
    class Meta:
        model = User
        fields = ['id', 'username', 'role', 'school', 'rating', 'verified']


class DriverBasicSerializer(serializers.ModelSerializer):
    """Driver info shown next to nearby-driver and fare results."""
    class Meta:
        model = User
        fields = ['id', 'username', 'rating', 'verified', 'vehicle_info']
