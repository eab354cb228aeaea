from rest_framework import serializers
from django.contrib.auth import get_user_model
from django.utils import timezone

from .models import DeliveryRequest, DeliveryOffer, Delivery

User = get_user_model()


class UserBasicSerializer(serializers.ModelSerializer):
    """Public identity of a customer or traveler inside delivery responses."""

    class Meta:
        model = User
        fields = ['id', 'username', 'first_name', 'last_name']


class DeliveryRequestSerializer(serializers.ModelSerializer):
    """Serializer for Delivery Requests"""
    customer = UserBasicSerializer(read_only=True)
    is_expired = serializers.SerializerMethodField()
    can_receive_offers = serializers.SerializerMethodField()

    class Meta:
        model = DeliveryRequest
        fields = ['id', 'customer', 'title', 'description', 'category', 'urgency',
                  'item_name', 'quantity', 'weight', 'value', 'dimensions', 'is_fragile',
                  'pickup_address', 'pickup_latitude', 'pickup_longitude',
                  'pickup_time_start', 'pickup_time_end', 'flexible_pickup_timing',
                  'dropoff_address', 'dropoff_latitude', 'dropoff_longitude',
                  'delivery_time_start', 'delivery_time_end',
                  'max_price', 'auto_accept_price', 'min_traveler_rating', 'verification_required',
                  'status', 'expires_at', 'created_at', 'updated_at',
                  'cancelled_at', 'cancellation_reason', 'is_expired', 'can_receive_offers']
        read_only_fields = fields

    def get_is_expired(self, obj):
        return obj.is_expired()

    def get_can_receive_offers(self, obj):
        return obj.can_receive_offers()


class DeliveryRequestWriteSerializer(serializers.ModelSerializer):
    """Serializer for creating and updating delivery requests"""
    blacklisted_travelers = serializers.ListField(
        child=serializers.IntegerField(min_value=1), required=False
    )

    class Meta:
        model = DeliveryRequest
        fields = ['title', 'description', 'category', 'urgency',
                  'item_name', 'quantity', 'weight', 'value', 'dimensions', 'is_fragile',
                  'pickup_address', 'pickup_latitude', 'pickup_longitude',
                  'pickup_time_start', 'pickup_time_end', 'flexible_pickup_timing',
                  'dropoff_address', 'dropoff_latitude', 'dropoff_longitude',
                  'delivery_time_start', 'delivery_time_end',
                  'max_price', 'auto_accept_price', 'blacklisted_travelers',
                  'min_traveler_rating', 'verification_required', 'expires_at']

    def validate_quantity(self, value):
        if value < 1:
            raise serializers.ValidationError("Quantity must be at least 1")
        return value

    def validate_weight(self, value):
        if value <= 0:
            raise serializers.ValidationError("Weight must be greater than zero")
        return value

    def validate_max_price(self, value):
        if value <= 0:
            raise serializers.ValidationError("Maximum price must be greater than zero")
        return value

    def validate_pickup_latitude(self, value):
        return self._latitude(value)

    def validate_dropoff_latitude(self, value):
        return self._latitude(value)

    def validate_pickup_longitude(self, value):
        return self._longitude(value)

    def validate_dropoff_longitude(self, value):
        return self._longitude(value)

    def validate_min_traveler_rating(self, value):
        if value < 0 or value > 5:
            raise serializers.ValidationError("Minimum rating must be between 0 and 5")
        return value

    def validate_dimensions(self, value):
        if value in (None, {}):
            return value
        if not isinstance(value, dict):
            raise serializers.ValidationError("Dimensions must be an object with length, width and height")
        for key in ('length', 'width', 'height'):
            try:
                if float(value.get(key, 0)) < 0:
                    raise serializers.ValidationError(f"{key} must not be negative")
            except (TypeError, ValueError):
                raise serializers.ValidationError(f"{key} must be a number")
        return value

    def validate_expires_at(self, value):
        if value is not None and value <= timezone.now():
            raise serializers.ValidationError("Expiry must be in the future")
        return value

    def validate(self, attrs):
        def current(name):
            if name in attrs:
                return attrs[name]
            return getattr(self.instance, name, None)

        max_price = current('max_price')
        auto_accept_price = current('auto_accept_price')
        if auto_accept_price is not None:
            if auto_accept_price <= 0:
                raise serializers.ValidationError({'auto_accept_price': "Auto-accept price must be greater than zero"})
            if max_price is not None and auto_accept_price > max_price:
                raise serializers.ValidationError({'auto_accept_price': "Auto-accept price cannot exceed maximum price"})

        for start, end in (('pickup_time_start', 'pickup_time_end'), ('delivery_time_start', 'delivery_time_end')):
            if current(start) and current(end) and current(end) < current(start):
                raise serializers.ValidationError({end: "End time must not be before start time"})

        return attrs

    @staticmethod
    def _latitude(value):
        if value < -90 or value > 90:
            raise serializers.ValidationError("Latitude must be between -90 and 90")
        return value

    @staticmethod
    def _longitude(value):
        if value < -180 or value > 180:
            raise serializers.ValidationError("Longitude must be between -180 and 180")
        return value


class DeliveryRequestCancelSerializer(serializers.Serializer):
    """Serializer for request cancellation"""
    reason = serializers.CharField(required=False, allow_blank=True, default='')


class DeliveryOfferSerializer(serializers.ModelSerializer):
    """Serializer for Delivery Offers"""
    traveler = UserBasicSerializer(read_only=True)
    traveler_rating = serializers.SerializerMethodField()
    is_expired = serializers.SerializerMethodField()
    is_valid = serializers.SerializerMethodField()
    can_be_accepted = serializers.SerializerMethodField()

    class Meta:
        model = DeliveryOffer
        fields = ['id', 'delivery_request', 'traveler', 'traveler_rating', 'trip_id',
                  'price', 'message', 'estimated_pickup_time', 'estimated_delivery_time',
                  'status', 'valid_until', 'accepted_at', 'declined_at', 'declined_reason',
                  'withdrawn_at', 'expired_at', 'created_at', 'updated_at',
                  'is_expired', 'is_valid', 'can_be_accepted']
        read_only_fields = fields

    def get_traveler_rating(self, obj):
        profile = getattr(obj.traveler, 'traveler_profile', None)
        if profile is None:
            return None
        return {'average': float(profile.rating_average), 'count': profile.rating_count}

    def get_is_expired(self, obj):
        return obj.is_expired()

    def get_is_valid(self, obj):
        return obj.is_valid()

    def get_can_be_accepted(self, obj):
        return obj.can_be_accepted()


class OfferCreateSerializer(serializers.Serializer):
    """Serializer for submitting an offer"""
    price = serializers.DecimalField(max_digits=10, decimal_places=2)
    message = serializers.CharField(required=False, allow_blank=True, default='')
    trip_id = serializers.CharField(required=False, allow_null=True, max_length=64, default=None)
    estimated_pickup_time = serializers.DateTimeField(required=False, allow_null=True, default=None)
    estimated_delivery_time = serializers.DateTimeField(required=False, allow_null=True, default=None)
    valid_until = serializers.DateTimeField(required=False, allow_null=True, default=None)


class OfferUpdateSerializer(serializers.Serializer):
    """Serializer for changing a pending offer; only sent fields are applied"""
    price = serializers.DecimalField(max_digits=10, decimal_places=2, required=False)
    message = serializers.CharField(required=False, allow_blank=True)
    estimated_pickup_time = serializers.DateTimeField(required=False, allow_null=True)
    estimated_delivery_time = serializers.DateTimeField(required=False, allow_null=True)
    valid_until = serializers.DateTimeField(required=False)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError("Nothing to update")
        return attrs


class OfferAcceptSerializer(serializers.Serializer):
    special_requests = serializers.CharField(required=False, allow_blank=True, allow_null=True, default=None)


class OfferDeclineSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='')


class DeliverySerializer(serializers.ModelSerializer):
    """Serializer for Deliveries"""
    customer = UserBasicSerializer(read_only=True)
    traveler = UserBasicSerializer(read_only=True)

    class Meta:
        model = Delivery
        fields = ['id', 'delivery_number', 'delivery_request', 'offer', 'customer', 'traveler',
                  'trip_id', 'status', 'final_price', 'special_requests',
                  'accepted_at', 'created_at', 'updated_at']
        read_only_fields = fields
