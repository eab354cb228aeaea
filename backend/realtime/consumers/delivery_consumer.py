"""WebSocket consumer relaying offer and delivery events to customers and travelers."""

import logging
from typing import Dict, Any

from .base import BaseConsumer

logger = logging.getLogger(__name__)


class DeliveryEventsConsumer(BaseConsumer):
    """
    Pushes events sent by ``realtime.notifications`` to the connected user.

    Customers receive: new_offer, offer_updated, offer_withdrawn, delivery_created
    Travelers receive: offer_accepted, offer_declined, offer_expired, request_cancelled
    """

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        if msg_type == "ping":
            await self.send_json({"type": "pong"})
        else:
            await self.send_error(f"Unknown message type: {msg_type}")

    async def _forward(self, event: Dict[str, Any]):
        await self.send_json(event)

    # ---------------------- Customer Events ----------------------

    async def new_offer(self, event):
        await self._forward(event)

    async def offer_updated(self, event):
        await self._forward(event)

    async def offer_withdrawn(self, event):
        await self._forward(event)

    async def delivery_created(self, event):
        await self._forward(event)

    # ---------------------- Traveler Events ----------------------

    async def offer_accepted(self, event):
        await self._forward(event)

    async def offer_declined(self, event):
        await self._forward(event)

    async def offer_expired(self, event):
        await self._forward(event)

    async def request_cancelled(self, event):
        await self._forward(event)
