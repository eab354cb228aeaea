from django.db import models
from django.contrib.auth.models import AbstractUser


class User(AbstractUser):
    """Extended user model with role selection"""
    ROLE_CHOICES = [
        ('customer', 'Customer'),
        ('traveler', 'Traveler'),
    ]
    
    # Role & basic info
    role = models.CharField(max_length=10, choices=ROLE_CHOICES)
    phone_number = models.CharField(max_length=15, blank=True)
    
    class Meta:
        db_table = 'users'
        
    def __str__(self):
        return f"{self.username} ({self.get_role_display()})"

    @property
    def is_customer(self) -> bool:
        return self.role == 'customer'

    @property
    def is_traveler(self) -> bool:
        return self.role == 'traveler'
