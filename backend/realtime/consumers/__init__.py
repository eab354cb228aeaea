"""Realtime consumers for WebSocket communication."""

from .base import BaseConsumer
from .delivery_consumer import DeliveryEventsConsumer

__all__ = [
    "BaseConsumer",
    "DeliveryEventsConsumer",
]
