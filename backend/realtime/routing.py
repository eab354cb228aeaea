"""WebSocket URL routing for the realtime app."""

from django.urls import re_path

from .consumers.delivery_consumer import DeliveryEventsConsumer

websocket_urlpatterns = [
    # Offer and delivery events for the authenticated user
    # URL: ws://localhost:8000/ws/deliveries/?token=<access token>
    re_path(
        r"ws/deliveries/$",
        DeliveryEventsConsumer.as_asgi(),
        name="deliveries-ws"
    ),
]
