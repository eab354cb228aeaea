from decimal import Decimal
from unittest.mock import patch

from django.core.cache import cache
from django.test import TestCase

from deliveries.models import Delivery, DeliveryOffer, DeliveryRequest
from services import request_management
from services.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from services.matching.scoring import market_rate
from .factories import future, lock_conflict_error, make_customer, make_offer, make_request, make_traveler, past, record_row_writes


def request_payload(**overrides):
	payload = {
		'title': 'Laptop to Midtown',
		'item_name': 'Laptop',
		'category': 'electronics',
		'weight': '2.00',
		'pickup_address': 'Wall St',
		'pickup_latitude': '40.712800',
		'pickup_longitude': '-74.006000',
		'dropoff_address': 'Times Sq',
		'dropoff_latitude': '40.758000',
		'dropoff_longitude': '-73.985500',
		'max_price': '50.00',
	}
	payload.update(overrides)
	return payload


class CreateDeliveryRequestTests(TestCase):
	def setUp(self):
		cache.clear()
		self.customer = make_customer()

	def test_create_opens_pending_request(self):
		request = request_management.create_delivery_request(
			self.customer, request_payload(auto_accept_price='30.00', blacklisted_travelers=[5])
		)

		self.assertEqual(request.customer, self.customer)
		self.assertEqual(request.status, 'pending')
		self.assertEqual(request.auto_accept_price, Decimal('30.00'))
		self.assertEqual(request.blacklisted_travelers, [5])
		self.assertTrue(request.can_receive_offers())
		self.assertGreater(request.expires_at, future(days=6))

	def test_match_warm_up_is_queued_after_commit(self):
		with patch('deliveries.tasks.find_matches_task.delay') as delay:
			with self.captureOnCommitCallbacks(execute=True):
				request = request_management.create_delivery_request(self.customer, request_payload())

		delay.assert_called_once_with(request.id)

	def test_auto_accept_price_above_max_price_is_rejected(self):
		with self.assertRaises(ValidationError) as ctx:
			request_management.create_delivery_request(
				self.customer, request_payload(max_price='40.00', auto_accept_price='45.00')
			)

		self.assertIn('auto_accept_price', ctx.exception.details)
		self.assertFalse(DeliveryRequest.objects.exists())

	def test_field_ranges_are_checked(self):
		for overrides in (
			{'weight': '0'},
			{'max_price': '-5'},
			{'pickup_latitude': '95.000000'},
			{'quantity': 0},
			{'min_traveler_rating': '6'},
			{'expires_at': '2001-01-01T00:00:00Z'},
		):
			with self.subTest(overrides=overrides):
				with self.assertRaises(ValidationError):
					request_management.create_delivery_request(self.customer, request_payload(**overrides))

	def test_pickup_window_must_be_ordered(self):
		with self.assertRaises(ValidationError):
			request_management.create_delivery_request(self.customer, request_payload(
				pickup_time_start=future(hours=5).isoformat(),
				pickup_time_end=future(hours=2).isoformat(),
			))


class UpdateDeliveryRequestTests(TestCase):
	def setUp(self):
		cache.clear()
		self.customer = make_customer()
		self.traveler = make_traveler()
		self.request = make_request(self.customer)

	def test_owner_updates_open_request(self):
		request = request_management.update_delivery_request(
			self.customer, self.request.id, {'title': 'Two laptops', 'max_price': '60.00'}
		)

		self.assertEqual(request.title, 'Two laptops')
		self.assertEqual(request.max_price, Decimal('60.00'))

	def test_max_price_cannot_drop_below_pending_offer(self):
		make_offer(self.request, self.traveler, '45.00')

		with self.assertRaises(ValidationError):
			request_management.update_delivery_request(self.customer, self.request.id, {'max_price': '40.00'})

		self.request.refresh_from_db()
		self.assertEqual(self.request.max_price, Decimal('50.00'))

	def test_auto_accept_price_checked_against_stored_max_price(self):
		with self.assertRaises(ValidationError):
			request_management.update_delivery_request(self.customer, self.request.id, {'auto_accept_price': '55.00'})

	def test_only_owner_can_update(self):
		with self.assertRaises(AuthorizationError):
			request_management.update_delivery_request(make_customer(username='stranger'), self.request.id, {'title': 'Mine'})
		with self.assertRaises(NotFoundError):
			request_management.update_delivery_request(self.customer, 999999, {'title': 'Gone'})

	def test_closed_request_cannot_be_updated(self):
		DeliveryRequest.objects.filter(pk=self.request.pk).update(status='accepted')

		with self.assertRaises(ConflictError):
			request_management.update_delivery_request(self.customer, self.request.id, {'title': 'Too late'})

	def test_new_threshold_accepts_qualifying_pending_offer(self):
		offer = make_offer(self.request, self.traveler, '25.00')

		with self.captureOnCommitCallbacks(execute=True):
			request_management.update_delivery_request(self.customer, self.request.id, {'auto_accept_price': '30.00'})

		offer.refresh_from_db()
		self.assertEqual(offer.status, 'accepted')
		self.assertEqual(Delivery.objects.get().final_price, Decimal('25.00'))


class CancelDeliveryRequestTests(TestCase):
	def setUp(self):
		cache.clear()
		self.customer = make_customer()
		self.traveler = make_traveler()
		self.other_traveler = make_traveler(username='traveler_two')
		self.request = make_request(self.customer)

	def test_cancel_declines_every_pending_offer(self):
		first = make_offer(self.request, self.traveler)
		second = make_offer(self.request, self.other_traveler)
		withdrawn = make_offer(self.request, make_traveler(username='traveler_three'), status='withdrawn')

		with patch('services.request_management.request_lifecycle.notify_offer_event') as notify:
			with self.captureOnCommitCallbacks(execute=True):
				request = request_management.cancel_delivery_request(self.customer, self.request.id, reason='Plans changed')

		self.assertEqual(request.status, 'cancelled')
		self.assertEqual(request.cancellation_reason, 'Plans changed')
		self.assertIsNotNone(request.cancelled_at)

		for offer in (first, second):
			offer.refresh_from_db()
			self.assertEqual(offer.status, 'declined')
			self.assertEqual(offer.declined_reason, 'Request cancelled by customer')
		withdrawn.refresh_from_db()
		self.assertEqual(withdrawn.status, 'withdrawn')

		notified = sorted(call.args[2] for call in notify.call_args_list)
		self.assertEqual(notified, sorted([self.traveler.id, self.other_traveler.id]))
		self.assertTrue(all(call.args[0] == 'request_cancelled' for call in notify.call_args_list))

	def test_cancel_twice_conflicts(self):
		request_management.cancel_delivery_request(self.customer, self.request.id)

		with self.assertRaises(ConflictError) as ctx:
			request_management.cancel_delivery_request(self.customer, self.request.id)
		self.assertIn('already cancelled', str(ctx.exception))

	def test_accepted_request_cannot_be_cancelled(self):
		DeliveryRequest.objects.filter(pk=self.request.pk).update(status='accepted')

		with self.assertRaises(ConflictError):
			request_management.cancel_delivery_request(self.customer, self.request.id)

	def test_only_owner_can_cancel(self):
		with self.assertRaises(AuthorizationError):
			request_management.cancel_delivery_request(make_customer(username='stranger'), self.request.id)

	def test_cancel_locks_request_before_declining_offers(self):
		make_offer(self.request, self.traveler)

		with record_row_writes() as events:
			request_management.cancel_delivery_request(self.customer, self.request.id)

		self.assertEqual(events, [
			('lock', DeliveryRequest),
			('update', DeliveryRequest),
			('update', DeliveryOffer),
		])

	def test_deadlock_during_cancel_is_reported_as_conflict(self):
		offer = make_offer(self.request, self.traveler)

		with patch('services.request_management.request_lifecycle._get_owned_request', side_effect=lock_conflict_error()):
			with self.assertRaises(ConflictError):
				request_management.cancel_delivery_request(self.customer, self.request.id)

		self.request.refresh_from_db()
		offer.refresh_from_db()
		self.assertEqual(self.request.status, 'pending')
		self.assertEqual(offer.status, 'pending')

	def test_offers_cannot_arrive_after_cancel(self):
		from services.offer_management import get_offer_manager

		request_management.cancel_delivery_request(self.customer, self.request.id)

		with self.assertRaises(ConflictError):
			get_offer_manager().submit_offer(self.traveler, self.request.id, '20.00')
		self.assertFalse(DeliveryOffer.objects.exists())


class DeliveryRequestQueryTests(TestCase):
	def setUp(self):
		cache.clear()
		self.customer = make_customer()
		self.traveler = make_traveler()
		self.request = make_request(self.customer)

	def test_owner_and_travelers_see_open_request(self):
		data = request_management.get_delivery_request(self.request.id, user=self.customer)
		self.assertEqual(data['id'], self.request.id)
		self.assertTrue(data['can_receive_offers'])

		data = request_management.get_delivery_request(self.request.id, user=self.traveler)
		self.assertEqual(data['title'], 'Laptop to Midtown')

	def test_closed_request_is_hidden_from_non_owners(self):
		with self.captureOnCommitCallbacks(execute=True):
			request_management.cancel_delivery_request(self.customer, self.request.id)

		with self.assertRaises(NotFoundError):
			request_management.get_delivery_request(self.request.id, user=self.traveler)
		data = request_management.get_delivery_request(self.request.id, user=self.customer)
		self.assertEqual(data['status'], 'cancelled')

	def test_unknown_request(self):
		with self.assertRaises(NotFoundError):
			request_management.get_delivery_request(999999)

	def test_customer_requests_are_paginated_and_filtered(self):
		make_request(self.customer, status='cancelled')
		make_request(self.customer)
		make_request(make_customer(username='someone_else'))

		items, pagination = request_management.get_customer_requests(self.customer, page=1, limit=2)
		self.assertEqual(len(items), 2)
		self.assertEqual(pagination['total'], 3)
		self.assertEqual(pagination['pages'], 2)

		items, pagination = request_management.get_customer_requests(self.customer, status='cancelled')
		self.assertEqual(pagination['total'], 1)
		self.assertEqual(items[0].status, 'cancelled')


class SearchDeliveryRequestsTests(TestCase):
	def setUp(self):
		cache.clear()
		self.customer = make_customer()
		self.traveler = make_traveler()

	def test_nearby_open_requests_nearest_first(self):
		midtown = make_request(
			self.customer,
			pickup_latitude=Decimal('40.758000'),
			pickup_longitude=Decimal('-73.985500'),
		)
		downtown = make_request(self.customer)
		make_request(
			self.customer,
			title='Books to Cambridge',
			pickup_latitude=Decimal('42.360100'),
			pickup_longitude=Decimal('-71.058900'),
		)
		make_request(self.customer, status='cancelled')
		make_request(self.customer, expires_at=past(days=1))
		make_request(self.customer, blacklisted_travelers=[self.traveler.id])
		make_request(self.traveler)

		results = request_management.search_delivery_requests(self.traveler, 40.7128, -74.0060, radius_km=25)

		self.assertEqual([r.id for r in results], [downtown.id, midtown.id])
		self.assertEqual(results[0].distance_km, 0.0)
		self.assertGreater(results[1].distance_km, 5)
		self.assertLess(results[1].distance_km, 6)

	def test_category_filter(self):
		make_request(self.customer)
		documents = make_request(self.customer, category='documents')

		results = request_management.search_delivery_requests(self.traveler, 40.7128, -74.0060, category='documents')

		self.assertEqual([r.id for r in results], [documents.id])

	def test_invalid_search_parameters(self):
		with self.assertRaises(ValidationError):
			request_management.search_delivery_requests(self.traveler, 40.7, -74.0, radius_km=0)
		with self.assertRaises(ValidationError):
			request_management.search_delivery_requests(self.traveler, 123.0, -74.0)


class DuplicateDeliveryRequestTests(TestCase):
	def setUp(self):
		cache.clear()
		self.customer = make_customer()
		self.request = make_request(
			self.customer,
			auto_accept_price=Decimal('30.00'),
			blacklisted_travelers=[5],
			expires_at=past(hours=1),
			status='expired',
		)

	def test_copy_is_a_fresh_pending_request(self):
		copy = request_management.duplicate_delivery_request(self.customer, self.request.id)

		self.assertNotEqual(copy.id, self.request.id)
		self.assertEqual(copy.customer, self.customer)
		self.assertEqual(copy.status, 'pending')
		self.assertEqual(copy.title, 'Laptop to Midtown')
		self.assertEqual(copy.pickup_latitude, Decimal('40.712800'))
		self.assertEqual(copy.auto_accept_price, Decimal('30.00'))
		self.assertEqual(copy.blacklisted_travelers, [5])
		self.assertIsNone(copy.cancelled_at)
		self.assertGreater(copy.expires_at, future(days=6))

	def test_modifications_override_copied_fields(self):
		copy = request_management.duplicate_delivery_request(
			self.customer, self.request.id, {'max_price': '80.00', 'title': 'Two laptops', 'status': 'accepted'}
		)

		self.assertEqual(copy.max_price, Decimal('80.00'))
		self.assertEqual(copy.title, 'Two laptops')
		self.assertEqual(copy.status, 'pending')

	def test_cancelled_request_can_be_posted_again(self):
		request_management.cancel_delivery_request(self.customer, make_request(self.customer).id, reason='Changed plans')
		cancelled = DeliveryRequest.objects.get(status='cancelled')

		copy = request_management.duplicate_delivery_request(self.customer, cancelled.id)

		self.assertEqual(copy.status, 'pending')
		self.assertIsNone(copy.cancellation_reason)

	def test_invalid_modifications_create_nothing(self):
		with self.assertRaises(ValidationError):
			request_management.duplicate_delivery_request(self.customer, self.request.id, {'auto_accept_price': '90.00'})
		with self.assertRaises(ValidationError):
			request_management.duplicate_delivery_request(self.customer, self.request.id, ['title'])

		self.assertEqual(DeliveryRequest.objects.count(), 1)

	def test_only_owner_can_duplicate(self):
		with self.assertRaises(AuthorizationError):
			request_management.duplicate_delivery_request(make_customer(username='stranger'), self.request.id)
		with self.assertRaises(NotFoundError):
			request_management.duplicate_delivery_request(self.customer, 999999)


class RequestAnalyticsTests(TestCase):
	def setUp(self):
		cache.clear()
		self.customer = make_customer()
		self.request = make_request(self.customer)
		self.first = make_offer(self.request, make_traveler(username='first'), '30.00')
		self.second = make_offer(
			self.request, make_traveler(username='second'), '40.00', status='accepted', accepted_at=future(minutes=5)
		)

	def test_price_analysis(self):
		data = request_management.get_request_analytics(self.customer, self.request.id)

		self.assertEqual(data['offers']['total_offers'], 2)
		self.assertEqual(data['offers']['accepted'], 1)
		self.assertEqual(data['price_analysis'], {
			'max_price': 50.0,
			'average_offer': 35.0,
			'lowest_offer': 30.0,
			'highest_offer': 40.0,
			'market_rate': market_rate(self.request),
		})

	def test_timeline_is_ordered_by_time(self):
		data = request_management.get_request_analytics(self.customer, self.request.id)

		self.assertEqual(
			[(event['event'], event.get('offer_id')) for event in data['timeline']],
			[
				('request_created', None),
				('offer_received', self.first.id),
				('offer_received', self.second.id),
				('offer_accepted', self.second.id),
			],
		)
		self.assertEqual(data['timeline'][1]['price'], 30.0)

	def test_request_without_offers(self):
		request = make_request(self.customer)

		data = request_management.get_request_analytics(self.customer, request.id)

		self.assertEqual(data['offers']['total_offers'], 0)
		self.assertIsNone(data['price_analysis']['average_offer'])
		self.assertEqual([event['event'] for event in data['timeline']], ['request_created'])

	def test_only_owner_sees_analytics(self):
		with self.assertRaises(AuthorizationError):
			request_management.get_request_analytics(make_customer(username='stranger'), self.request.id)


class PopularRoutesTests(TestCase):
	def setUp(self):
		cache.clear()
		self.customer = make_customer()

	def route(self, count, days_old=0, **overrides):
		ids = [make_request(self.customer, **overrides).id for _ in range(count)]
		if days_old:
			DeliveryRequest.objects.filter(pk__in=ids).update(created_at=past(days=days_old))

	def test_routes_are_ranked_by_request_count(self):
		self.route(1, max_price=Decimal('40.00'))
		self.route(1, max_price=Decimal('60.00'))
		self.route(1, pickup_address='Brooklyn', dropoff_address='Queens')
		self.route(1, category='documents')

		routes = request_management.get_popular_routes()

		self.assertEqual(routes[0], {
			'route': {'origin': 'Wall St', 'destination': 'Times Sq'},
			'category': 'electronics',
			'request_count': 2,
			'average_price': 50.0,
			'average_weight': 2.0,
			'demand_level': 'low',
		})
		self.assertEqual(len(routes), 3)
		self.assertEqual(request_management.get_popular_routes(limit=1), routes[:1])

	def test_period_and_category_filters(self):
		self.route(2, days_old=10)
		self.route(1, days_old=60)
		self.route(1, category='documents')

		self.assertEqual(
			[(r['category'], r['request_count']) for r in request_management.get_popular_routes(period='week')],
			[('documents', 1)],
		)
		self.assertEqual(
			[(r['category'], r['request_count']) for r in request_management.get_popular_routes(period='month')],
			[('electronics', 2), ('documents', 1)],
		)
		self.assertEqual(
			[r['request_count'] for r in request_management.get_popular_routes(period='quarter', category='electronics')],
			[3],
		)

	def test_requests_without_addresses_are_left_out(self):
		self.route(1, pickup_address='')

		self.assertEqual(request_management.get_popular_routes(), [])

	def test_demand_levels(self):
		self.route(11)
		self.route(6, category='documents')

		levels = [r['demand_level'] for r in request_management.get_popular_routes()]

		self.assertEqual(levels, ['high', 'medium'])

	def test_results_are_cached_per_period(self):
		self.route(1)
		first = request_management.get_popular_routes()
		self.route(1)

		self.assertEqual(request_management.get_popular_routes(), first)
		self.assertEqual(request_management.get_popular_routes(period='week')[0]['request_count'], 2)

	def test_invalid_parameters(self):
		for kwargs in ({'period': 'year'}, {'limit': 0}, {'limit': 'many'}):
			with self.subTest(**kwargs):
				with self.assertRaises(ValidationError):
					request_management.get_popular_routes(**kwargs)
