from django.contrib import admin
from travelers.models import TravelerProfile


@admin.register(TravelerProfile)
class TravelerProfileAdmin(admin.ModelAdmin):
    """Admin panel for managing Traveler Profiles"""

    list_display = [
        "user",
        "verification_level",
        "rating_average",
        "rating_count",
        "completed_deliveries",
    ]

    list_filter = [
        "verification_level",
    ]

    search_fields = [
        "user__username",
    ]

    ordering = ("user__username",)
