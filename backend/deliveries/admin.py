"""Tells what to show in the Django admin interface for deliveries app"""

from django.contrib import admin
from .models import DeliveryRequest, DeliveryOffer, Delivery


@admin.register(DeliveryRequest)
class DeliveryRequestAdmin(admin.ModelAdmin):
    """Delivery Request admin"""
    list_display = ['id', 'title', 'customer', 'category', 'status', 'max_price', 'auto_accept_price', 'expires_at', 'created_at']
    list_filter = ['status', 'category', 'urgency', 'created_at']
    search_fields = ['title', 'item_name', 'customer__username', 'pickup_address', 'dropoff_address']
    readonly_fields = ['created_at', 'updated_at', 'cancelled_at']
    date_hierarchy = 'created_at'


@admin.register(DeliveryOffer)
class DeliveryOfferAdmin(admin.ModelAdmin):
    list_display = ("id", "delivery_request", "traveler", "price", "status", "valid_until", "created_at")
    list_filter = ("status",)
    search_fields = ("delivery_request__id", "traveler__username", "trip_id")
    readonly_fields = ("accepted_at", "declined_at", "withdrawn_at", "expired_at", "created_at", "updated_at")


@admin.register(Delivery)
class DeliveryAdmin(admin.ModelAdmin):
    list_display = ("delivery_number", "customer", "traveler", "final_price", "status", "accepted_at")
    list_filter = ("status",)
    search_fields = ("delivery_number", "customer__username", "traveler__username")
    # Contract price is fixed once the delivery exists
    readonly_fields = ("delivery_number", "delivery_request", "offer", "final_price", "accepted_at", "created_at", "updated_at")
