from types import SimpleNamespace
from unittest.mock import patch

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from channels.testing import WebsocketCommunicator
from django.contrib.auth.models import AnonymousUser
from django.test import SimpleTestCase

from .consumers import DeliveryEventsConsumer
from .notifications import notify_offer_event, notify_user_event


class NotificationTests(SimpleTestCase):
	def test_event_reaches_user_group(self):
		layer = get_channel_layer()
		channel = async_to_sync(layer.new_channel)()
		async_to_sync(layer.group_add)('user_7', channel)

		sent = notify_user_event(7, 'offer_accepted', 'Your offer was accepted', {'offer_id': 3})

		self.assertTrue(sent)
		message = async_to_sync(layer.receive)(channel)
		self.assertEqual(message, {'type': 'offer_accepted', 'offer_id': 3, 'message': 'Your offer was accepted'})

	def test_offer_event_payload(self):
		offer = SimpleNamespace(id=5, delivery_request_id=9, status='pending', price='12.50')

		with patch('realtime.notifications.notify_user_event', return_value=True) as notify:
			notify_offer_event('new_offer', offer, 3, 'New offer')

		notify.assert_called_once_with(3, 'new_offer', 'New offer', {
			'offer_id': 5,
			'request_id': 9,
			'status': 'pending',
			'price': '12.50',
		})

	def test_failures_are_reported_not_raised(self):
		self.assertFalse(notify_user_event(None, 'new_offer'))

		with patch('realtime.notifications.get_channel_layer', return_value=None):
			self.assertFalse(notify_user_event(7, 'new_offer'))

		with patch('realtime.notifications.get_channel_layer', side_effect=RuntimeError('redis down')):
			self.assertFalse(notify_user_event(7, 'new_offer'))


class DeliveryEventsConsumerTests(SimpleTestCase):
	def communicator(self, user):
		communicator = WebsocketCommunicator(DeliveryEventsConsumer.as_asgi(), '/ws/deliveries/')
		communicator.scope['user'] = user
		return communicator

	async def test_anonymous_connection_is_closed(self):
		communicator = self.communicator(AnonymousUser())

		connected, _ = await communicator.connect()

		self.assertFalse(connected)

	async def test_user_receives_own_events(self):
		user = SimpleNamespace(is_anonymous=False, id=41, role='traveler')
		communicator = self.communicator(user)

		connected, _ = await communicator.connect()
		self.assertTrue(connected)
		greeting = await communicator.receive_json_from()
		self.assertEqual(greeting, {'type': 'connection_established', 'user_id': 41, 'role': 'traveler'})

		await get_channel_layer().group_send('user_41', {
			'type': 'offer_accepted',
			'offer_id': 3,
			'delivery_number': 'DEL-1',
		})
		event = await communicator.receive_json_from()
		self.assertEqual(event['type'], 'offer_accepted')
		self.assertEqual(event['delivery_number'], 'DEL-1')

		await communicator.send_json_to({'type': 'ping'})
		self.assertEqual(await communicator.receive_json_from(), {'type': 'pong'})

		await communicator.send_json_to({'type': 'dance'})
		self.assertEqual((await communicator.receive_json_from())['type'], 'error')

		await communicator.disconnect()
