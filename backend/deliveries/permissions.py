# deliveries/permissions.py
from rest_framework.permissions import BasePermission


class _HasRole(BasePermission):
    role = None

    def has_permission(self, request, view):
        user = getattr(request, "user", None)
        if not user or not user.is_authenticated:
            return False
        return getattr(user, "role", None) == self.role


class IsCustomer(_HasRole):
    """
    Allows access only to users with role == 'customer'.
    Keeps role check logic centralized.
    """
    role = "customer"
    message = "Only customers can perform this action"


class IsTraveler(_HasRole):
    """Allows access only to users with role == 'traveler'."""
    role = "traveler"
    message = "Only travelers can perform this action"
