from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from accounts.models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """Admin panel for custom User model"""

    list_display = [
        "username",
        "email",
        "role",
        "verified",
        "rating",
        "is_active",
    ]

    list_filter = [
        "role",
        "verified",
        "is_active",
    ]

    search_fields = [
        "username",
        "email",
        "school",
    ]

    ordering = ("username",)

    # Extend default Django UserAdmin fieldsets
    fieldsets = BaseUserAdmin.fieldsets + (
        (
            "Rideshare Info",
            {
                "fields": (
                    "role",
                    "phone_number",
                    "school",
                    "verified",
                    "rating",
                    "vehicle_info",
                )
            },
        ),
    )

    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        (
            "Rideshare Info",
            {
                "fields": (
                    "role",
                    "phone_number",
                    "school",
                )
            },
        ),
    )
