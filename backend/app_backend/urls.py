from django.contrib import admin
from django.urls import path, include

from .views import health_check

urlpatterns = [
    path('admin/', admin.site.urls),
    path("health/", health_check),  # Health check endpoint

    # Authentication endpoints (register, login, refresh, me)
    path('api/auth/', include('accounts.urls')),

    # Delivery requests, matches and offers
    path('api/deliveries/', include('deliveries.urls')),
]
