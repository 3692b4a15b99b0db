from django.db import models
from django.contrib.auth.models import AbstractUser


class User(AbstractUser):
    """Extended user model with role selection"""
    ROLE_CHOICES = [
        ('rider', 'Rider'),
        ('driver', 'Driver'),
    ]

    # Role & basic info
    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default='rider')
    phone_number = models.CharField(max_length=15, blank=True)
    school = models.CharField(max_length=120, blank=True)

    # Drivers must be verified before they show up in matching
    verified = models.BooleanField(default=False)
    rating = models.FloatField(default=5.0)
    vehicle_info = models.CharField(max_length=120, blank=True)

    class Meta:
        db_table = 'users'

    def __str__(self):
        return f"{self.username} ({self.get_role_display()})"

    @property
    def is_driver(self) -> bool:
        return self.role == 'driver'
