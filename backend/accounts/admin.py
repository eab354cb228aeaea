from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from accounts.models import User
from travelers.models import TravelerProfile


class TravelerProfileInline(admin.StackedInline):
    model = TravelerProfile
    can_delete = False
    fields = ("verification_level", "rating_average", "rating_count", "completed_deliveries")


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """Customers and travelers; travelers carry their profile inline"""

    inlines = [TravelerProfileInline]
    list_display = ["username", "email", "role", "is_active"]
    list_filter = ["role", "is_active"]
    search_fields = ["username", "email", "phone_number"]
    ordering = ("username",)

    fieldsets = BaseUserAdmin.fieldsets + (
        ("Role", {"fields": ("role", "phone_number")}),
    )
    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ("Role", {"fields": ("role", "phone_number")}),
    )

    def get_inlines(self, request, obj):
        if obj is None or not obj.is_traveler:
            return []
        return super().get_inlines(request, obj)
