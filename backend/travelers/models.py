from decimal import Decimal

from django.db import models
from django.conf import settings

User = settings.AUTH_USER_MODEL


class TravelerProfile(models.Model):
    """Traveler reputation used for offer eligibility checks"""
    VERIFICATION_CHOICES = [
        ('basic', 'Basic'),
        ('email', 'Email Verified'),
        ('phone', 'Phone Verified'),
        ('identity', 'Identity Verified'),
        ('verified', 'Fully Verified'),
    ]

    # Levels that satisfy a request's ``verification_required`` flag
    VERIFIED_LEVELS = ('identity', 'verified')

    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='traveler_profile')

    rating_average = models.DecimalField(max_digits=3, decimal_places=2, default=Decimal('0.00'))
    rating_count = models.PositiveIntegerField(default=0)
    verification_level = models.CharField(max_length=20, choices=VERIFICATION_CHOICES, default='basic')
    completed_deliveries = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = 'traveler_profiles'

    def __str__(self):
        return f"{self.user.username} - {self.verification_level}"

    @property
    def is_verified(self) -> bool:
        return self.verification_level in self.VERIFIED_LEVELS
