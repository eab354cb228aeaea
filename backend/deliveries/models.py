import random
from datetime import timedelta

from django.db import models
from django.db.models import Q
from django.conf import settings
from django.utils import timezone

from common.utils import GeoPoint, distance_km


REQUEST_OPEN_STATUSES = ['pending', 'matched']
OFFER_ACTIVE_STATUSES = ['pending', 'accepted']


def default_request_expiry():
    days = getattr(settings, 'REQUEST_DEFAULT_EXPIRY_DAYS', 7)
    return timezone.now() + timedelta(days=days)


def default_offer_validity():
    hours = getattr(settings, 'OFFER_DEFAULT_VALIDITY_HOURS', 24)
    return timezone.now() + timedelta(hours=hours)


class DeliveryRequest(models.Model):
    """A customer's delivery job posting."""

    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('matched', 'Matched'),
        ('accepted', 'Accepted'),
        ('picked_up', 'Picked Up'),
        ('in_transit', 'In Transit'),
        ('delivered', 'Delivered'),
        ('cancelled', 'Cancelled'),
        ('expired', 'Expired'),
    ]

    CATEGORY_CHOICES = [
        ('documents', 'Documents'),
        ('electronics', 'Electronics'),
        ('clothing', 'Clothing'),
        ('food', 'Food'),
        ('fragile', 'Fragile'),
        ('books', 'Books'),
        ('gifts', 'Gifts'),
        ('other', 'Other'),
    ]

    URGENCY_CHOICES = [
        ('standard', 'Standard'),
        ('express', 'Express'),
        ('urgent', 'Urgent'),
    ]

    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='delivery_requests'
    )

    title = models.CharField(max_length=255)
    description = models.TextField(blank=True, default='')
    category = models.CharField(max_length=20, choices=CATEGORY_CHOICES, default='other')
    urgency = models.CharField(max_length=10, choices=URGENCY_CHOICES, default='standard')

    # Item profile
    item_name = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField(default=1)
    weight = models.DecimalField(max_digits=8, decimal_places=2)
    value = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    dimensions = models.JSONField(null=True, blank=True)  # {"length", "width", "height"} in cm
    is_fragile = models.BooleanField(default=False)

    # Pickup
    pickup_address = models.CharField(max_length=500, blank=True, default='')
    pickup_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    pickup_longitude = models.DecimalField(max_digits=9, decimal_places=6)
    pickup_time_start = models.DateTimeField(null=True, blank=True)
    pickup_time_end = models.DateTimeField(null=True, blank=True)
    flexible_pickup_timing = models.BooleanField(default=False)

    # Drop-off
    dropoff_address = models.CharField(max_length=500, blank=True, default='')
    dropoff_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    dropoff_longitude = models.DecimalField(max_digits=9, decimal_places=6)
    delivery_time_start = models.DateTimeField(null=True, blank=True)
    delivery_time_end = models.DateTimeField(null=True, blank=True)

    # Pricing
    max_price = models.DecimalField(max_digits=10, decimal_places=2)
    auto_accept_price = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)

    # Traveler restrictions
    blacklisted_travelers = models.JSONField(default=list, blank=True)
    min_traveler_rating = models.DecimalField(max_digits=3, decimal_places=2, default=0)
    verification_required = models.BooleanField(default=False)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    expires_at = models.DateTimeField(default=default_request_expiry)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.TextField(null=True, blank=True)

    class Meta:
        db_table = 'delivery_requests'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'created_at'], name='dreq_status_created_idx'),
            models.Index(fields=['expires_at'], name='dreq_expires_at_idx'),
        ]

    def __str__(self):
        return f"Request #{self.id} - {self.title} - {self.status}"

    def is_expired(self) -> bool:
        return self.expires_at is not None and timezone.now() > self.expires_at

    def can_receive_offers(self) -> bool:
        return self.status == 'pending' and not self.is_expired()

    def is_blacklisted(self, traveler_id) -> bool:
        return str(traveler_id) in {str(t) for t in (self.blacklisted_travelers or [])}

    @property
    def pickup_point(self) -> GeoPoint:
        return GeoPoint(float(self.pickup_latitude), float(self.pickup_longitude))

    @property
    def dropoff_point(self) -> GeoPoint:
        return GeoPoint(float(self.dropoff_latitude), float(self.dropoff_longitude))

    def direct_distance_km(self) -> float:
        return distance_km(self.pickup_point, self.dropoff_point)

    @property
    def version(self) -> str:
        """Changes whenever the row is saved; used to key derived caches."""
        return self.updated_at.isoformat() if self.updated_at else "0"


class DeliveryOffer(models.Model):
    """A traveler's priced bid against a delivery request."""

    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('accepted', 'Accepted'),
        ('declined', 'Declined'),
        ('expired', 'Expired'),
        ('withdrawn', 'Withdrawn'),
    ]

    delivery_request = models.ForeignKey(
        DeliveryRequest,
        on_delete=models.CASCADE,
        related_name='offers'
    )

    traveler = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='delivery_offers'
    )

    trip_id = models.CharField(max_length=64, null=True, blank=True)

    price = models.DecimalField(max_digits=10, decimal_places=2)
    message = models.TextField(blank=True, default='')
    estimated_pickup_time = models.DateTimeField(null=True, blank=True)
    estimated_delivery_time = models.DateTimeField(null=True, blank=True)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    valid_until = models.DateTimeField(default=default_offer_validity)

    accepted_at = models.DateTimeField(null=True, blank=True)
    declined_at = models.DateTimeField(null=True, blank=True)
    declined_reason = models.TextField(null=True, blank=True)
    withdrawn_at = models.DateTimeField(null=True, blank=True)
    expired_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'delivery_offers'
        ordering = ['price', 'created_at']
        indexes = [
            models.Index(fields=['delivery_request', 'status'], name='doffer_request_status_idx'),
            models.Index(fields=['traveler', 'status', 'created_at'], name='doffer_traveler_status_idx'),
            models.Index(fields=['status', 'valid_until'], name='doffer_status_valid_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['delivery_request'],
                condition=Q(status='accepted'),
                name='one_accepted_offer_per_request'
            ),
            models.UniqueConstraint(
                fields=['delivery_request', 'traveler'],
                condition=Q(status__in=OFFER_ACTIVE_STATUSES),
                name='one_active_offer_per_traveler'
            ),
            models.CheckConstraint(
                condition=Q(price__gt=0),
                name='offer_price_positive'
            ),
        ]

    def __str__(self):
        return f"Offer #{self.id} - Request {self.delivery_request_id} -> Traveler {self.traveler_id}"

    def is_expired(self) -> bool:
        return self.valid_until is not None and timezone.now() > self.valid_until

    def is_valid(self) -> bool:
        return self.status == 'pending' and not self.is_expired()

    def can_be_accepted(self) -> bool:
        return self.status == 'pending' and not self.is_expired()

    def can_be_updated(self) -> bool:
        return self.status == 'pending' and not self.is_expired()

    def can_be_withdrawn(self) -> bool:
        return self.status == 'pending'


class Delivery(models.Model):
    """The binding contract created when an offer is accepted."""

    STATUS_CHOICES = [
        ('accepted', 'Accepted'),
        ('pickup_scheduled', 'Pickup Scheduled'),
        ('picked_up', 'Picked Up'),
        ('in_transit', 'In Transit'),
        ('delivery_scheduled', 'Delivery Scheduled'),
        ('delivered', 'Delivered'),
        ('cancelled', 'Cancelled'),
        ('disputed', 'Disputed'),
    ]

    ACTIVE_STATUSES = ['accepted', 'pickup_scheduled', 'picked_up', 'in_transit', 'delivery_scheduled']

    delivery_request = models.OneToOneField(
        DeliveryRequest,
        on_delete=models.CASCADE,
        related_name='delivery'
    )
    offer = models.OneToOneField(
        DeliveryOffer,
        on_delete=models.CASCADE,
        related_name='delivery'
    )
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='customer_deliveries'
    )
    traveler = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='traveler_deliveries'
    )
    trip_id = models.CharField(max_length=64, null=True, blank=True)

    delivery_number = models.CharField(max_length=20, unique=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='accepted')

    final_price = models.DecimalField(max_digits=10, decimal_places=2)
    special_requests = models.TextField(null=True, blank=True)

    accepted_at = models.DateTimeField(default=timezone.now)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'deliveries'
        ordering = ['-created_at']
        verbose_name_plural = 'deliveries'
        indexes = [
            models.Index(fields=['customer', 'status'], name='delivery_customer_status_idx'),
            models.Index(fields=['traveler', 'status'], name='delivery_traveler_status_idx'),
        ]

    def __str__(self):
        return f"Delivery {self.delivery_number} - {self.status}"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            stored = (
                Delivery.objects.filter(pk=self.pk)
                .values_list('final_price', flat=True)
                .first()
            )
            if stored is not None and stored != self.final_price:
                raise ValueError("final_price cannot change once the delivery exists")
        super().save(*args, **kwargs)

    def is_active(self) -> bool:
        return self.status in self.ACTIVE_STATUSES

    @classmethod
    def generate_delivery_number(cls, max_attempts: int = 10) -> str:
        """Return an unused ``DEL-`` number, retrying on collision."""
        stamp = str(int(timezone.now().timestamp() * 1000))[-6:]
        suffix = f"{random.randint(0, 999):03d}"
        for attempt in range(max_attempts):
            number = f"DEL-{stamp}{suffix}{attempt:02d}"
            if not cls.objects.filter(delivery_number=number).exists():
                return number
        raise RuntimeError("Unable to generate unique delivery number")
