import threading
from unittest import skipUnless

from django.core.cache import cache
from django.db import connection
from django.test import TransactionTestCase

from common.cache import BestEffortCache
from deliveries.models import Delivery, DeliveryOffer
from services import request_management
from services.exceptions import ConflictError
from services.offer_management import ExpirationSweeper, OfferLifecycleManager
from .factories import RecordingScheduler, make_customer, make_offer, make_request, make_traveler, past


@skipUnless(connection.vendor == 'postgresql', 'row locking needs PostgreSQL: run with --ds=app_backend.settings.test_pg')
class ConcurrentOfferTests(TransactionTestCase):
	def setUp(self):
		cache.clear()
		self.manager = OfferLifecycleManager(
			cache=BestEffortCache(),
			scheduler=RecordingScheduler(),
			auto_accept_delay=0
		)
		self.customer = make_customer()
		self.traveler = make_traveler()
		self.other_traveler = make_traveler(username='traveler_two')
		self.request = make_request(self.customer, auto_accept_price='30.00')
		self.offer_one = make_offer(self.request, self.traveler, '25.00')
		self.offer_two = make_offer(self.request, self.other_traveler, '40.00')

	def run_together(self, *calls):
		barrier = threading.Barrier(len(calls))
		outcomes = []
		guard = threading.Lock()

		def worker(call):
			try:
				barrier.wait()
				result = call()
				with guard:
					outcomes.append(('ok', result))
			except Exception as exc:
				with guard:
					outcomes.append(('error', exc))
			finally:
				connection.close()

		threads = [threading.Thread(target=worker, args=(call,)) for call in calls]
		for thread in threads:
			thread.start()
		for thread in threads:
			thread.join(timeout=30)
		return outcomes

	def assert_single_winner(self, outcomes):
		winners = [value for kind, value in outcomes if kind == 'ok' and value is not None]
		errors = [value for kind, value in outcomes if kind == 'error']

		self.assertEqual(len(winners), 1)
		self.assertTrue(all(isinstance(exc, ConflictError) for exc in errors), errors)
		self.assertEqual(Delivery.objects.count(), 1)
		self.assertEqual(DeliveryOffer.objects.filter(status='accepted').count(), 1)

	def test_two_accepts_on_one_request(self):
		outcomes = self.run_together(
			lambda: self.manager.accept_offer(self.customer, self.offer_one.id),
			lambda: self.manager.accept_offer(self.customer, self.offer_two.id),
		)

		self.assert_single_winner(outcomes)

	def test_auto_accept_races_manual_accept(self):
		outcomes = self.run_together(
			lambda: self.manager.auto_accept_offer(self.offer_one.id),
			lambda: self.manager.accept_offer(self.customer, self.offer_two.id),
		)

		self.assert_single_winner(outcomes)

	def test_withdraw_races_accept(self):
		outcomes = self.run_together(
			lambda: self.manager.withdraw_offer(self.traveler, self.offer_one.id),
			lambda: self.manager.accept_offer(self.customer, self.offer_one.id),
		)

		self.offer_one.refresh_from_db()
		self.assertEqual(len([kind for kind, _ in outcomes if kind == 'ok']), 1)
		self.assertIn(self.offer_one.status, ('withdrawn', 'accepted'))
		self.assertEqual(Delivery.objects.count(), 1 if self.offer_one.status == 'accepted' else 0)

	def test_cancel_races_accept(self):
		outcomes = self.run_together(
			lambda: request_management.cancel_delivery_request(self.customer, self.request.id),
			lambda: self.manager.accept_offer(self.customer, self.offer_two.id),
		)

		errors = [value for kind, value in outcomes if kind == 'error']
		self.assertEqual(len(errors), 1, outcomes)
		self.assertIsInstance(errors[0], ConflictError)

		self.request.refresh_from_db()
		if self.request.status == 'cancelled':
			self.assertFalse(Delivery.objects.exists())
			self.assertFalse(DeliveryOffer.objects.filter(status__in=['pending', 'accepted']).exists())
		else:
			self.assertEqual(self.request.status, 'accepted')
			self.assertEqual(Delivery.objects.count(), 1)

	def test_sweep_races_accept(self):
		DeliveryOffer.objects.filter(pk=self.offer_one.pk).update(valid_until=past(minutes=1))
		sweeper = ExpirationSweeper(offer_manager=self.manager, cache=BestEffortCache())

		outcomes = self.run_together(
			sweeper.sweep,
			lambda: self.manager.accept_offer(self.customer, self.offer_two.id),
		)

		self.assertEqual([kind for kind, _ in outcomes], ['ok', 'ok'], outcomes)
		self.offer_one.refresh_from_db()
		self.offer_two.refresh_from_db()
		self.assertEqual(self.offer_two.status, 'accepted')
		self.assertIn(self.offer_one.status, ('expired', 'declined'))
		self.assertEqual(Delivery.objects.count(), 1)
