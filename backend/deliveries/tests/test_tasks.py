from decimal import Decimal
from io import StringIO
from unittest.mock import patch

from django.core.cache import cache
from django.core.management import call_command
from django.test import TestCase

from common.cache import BestEffortCache
from deliveries.models import Delivery, DeliveryOffer, DeliveryRequest
from deliveries.tasks import auto_accept_offer_task, expire_offers_task, find_matches_task
from services.offer_management import OfferLifecycleManager
from services.offer_management.scheduling import CeleryAutoAcceptScheduler, auto_accept_task_id
from .factories import make_customer, make_offer, make_request, make_traveler, past


class AutoAcceptTaskTests(TestCase):
	def setUp(self):
		cache.clear()
		self.customer = make_customer()
		self.traveler = make_traveler()
		self.request = make_request(self.customer, auto_accept_price=Decimal('30.00'))

	def test_offer_under_threshold_is_accepted_through_celery(self):
		manager = OfferLifecycleManager(
			cache=BestEffortCache(),
			scheduler=CeleryAutoAcceptScheduler(),
			auto_accept_delay=0
		)

		with self.captureOnCommitCallbacks(execute=True):
			offer = manager.submit_offer(self.traveler, self.request.id, '25.00')

		offer.refresh_from_db()
		self.request.refresh_from_db()
		self.assertEqual(offer.status, 'accepted')
		self.assertEqual(self.request.status, 'accepted')
		self.assertEqual(Delivery.objects.get().final_price, Decimal('25.00'))

	def test_task_returns_delivery_number(self):
		offer = make_offer(self.request, self.traveler, '20.00')

		number = auto_accept_offer_task(offer.id)

		self.assertEqual(number, Delivery.objects.get(offer=offer).delivery_number)

	def test_task_skips_ineligible_offer(self):
		offer = make_offer(self.request, self.traveler, '45.00')

		self.assertIsNone(auto_accept_offer_task(offer.id))
		self.assertEqual(DeliveryOffer.objects.get(pk=offer.pk).status, 'pending')

	def test_scheduler_uses_one_task_id_per_offer(self):
		with patch('deliveries.tasks.auto_accept_offer_task.apply_async') as apply_async:
			CeleryAutoAcceptScheduler().schedule(42, 3)

		apply_async.assert_called_once_with(args=[42], countdown=3, task_id='auto-accept-42')
		self.assertEqual(auto_accept_task_id(42), 'auto-accept-42')

	def test_scheduling_failure_is_logged_not_raised(self):
		with patch('deliveries.tasks.auto_accept_offer_task.apply_async', side_effect=ConnectionError('broker down')):
			CeleryAutoAcceptScheduler().schedule(42, 3)


class PeriodicTaskTests(TestCase):
	def setUp(self):
		cache.clear()
		self.customer = make_customer()
		self.traveler = make_traveler()

	def test_expire_offers_task_reports_sweep(self):
		make_offer(make_request(self.customer), self.traveler, valid_until=past(minutes=1))

		result = expire_offers_task()

		self.assertEqual(result, {'expired_offers': 1, 'expired_requests': 0, 'auto_accepted': 0})

	def test_expire_offers_command(self):
		make_offer(make_request(self.customer), self.traveler, valid_until=past(minutes=1))
		out = StringIO()

		call_command('expire_offers', stdout=out)

		self.assertIn('Expired 1 offer(s)', out.getvalue())
		self.assertFalse(DeliveryOffer.objects.filter(status='pending').exists())

	def test_find_matches_task_for_missing_request(self):
		self.assertEqual(find_matches_task(999999), 0)

	def test_cleanup_old_data_removes_stale_closed_records(self):
		stale_request = make_request(self.customer, status='cancelled')
		stale_offer = make_offer(stale_request, self.traveler, status='declined')
		open_request = make_request(self.customer)
		recent_offer = make_offer(open_request, make_traveler('other'), status='withdrawn')
		DeliveryRequest.objects.filter(id=stale_request.id).update(updated_at=past(days=40))
		DeliveryOffer.objects.filter(id=stale_offer.id).update(updated_at=past(days=40))
		out = StringIO()

		call_command('cleanup_old_data', days=30, stdout=out)

		self.assertFalse(DeliveryRequest.objects.filter(id=stale_request.id).exists())
		self.assertFalse(DeliveryOffer.objects.filter(id=stale_offer.id).exists())
		self.assertTrue(DeliveryOffer.objects.filter(id=recent_offer.id).exists())
		self.assertIn('Deleted 1 old offers and 1 old requests', out.getvalue())

	def test_cleanup_old_data_dry_run_keeps_records(self):
		stale_request = make_request(self.customer, status='expired')
		DeliveryRequest.objects.filter(id=stale_request.id).update(updated_at=past(days=40))
		out = StringIO()

		call_command('cleanup_old_data', dry_run=True, stdout=out)

		self.assertTrue(DeliveryRequest.objects.filter(id=stale_request.id).exists())
		self.assertIn('DRY RUN', out.getvalue())
