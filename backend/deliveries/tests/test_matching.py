from datetime import datetime, timezone as dt_timezone
from decimal import Decimal
from unittest.mock import Mock

import requests
from django.core.cache import cache
from django.test import SimpleTestCase, TestCase

from common.cache import BestEffortCache
from common.utils import GeoPoint
from services.exceptions import ExternalServiceError, NotFoundError, ValidationError
from services.matching import CandidateCarrier, HttpTripDirectory, MatchCriteria, MatchingEngine, TripDirectory
from services.matching.scoring import MatchFeatures, calculate_detour, estimated_price, market_rate, rule_based_score
from .factories import make_customer, make_request

PICKUP = GeoPoint(40.7128, -74.0060)
DROPOFF = GeoPoint(40.7580, -73.9855)
# About 30 km north of pickup and drop-off
FAR_ORIGIN = GeoPoint(40.9828, -74.0060)
FAR_DESTINATION = GeoPoint(41.0280, -73.9855)


class FakeTripDirectory(TripDirectory):
	def __init__(self, carriers=None, error=None):
		self.carriers = carriers or []
		self.error = error
		self.calls = []

	def search_trips(self, **kwargs):
		self.calls.append(kwargs)
		if self.error:
			raise self.error
		return list(self.carriers)


def carrier(trip_id, origin=PICKUP, destination=DROPOFF, **kwargs):
	fields = {
		'traveler_id': '7',
		'available_weight': 2.5,
		'traveler_rating': 4.8,
		'completed_deliveries': 60,
	}
	fields.update(kwargs)
	return CandidateCarrier(trip_id=trip_id, origin=origin, destination=destination, **fields)


def neutral_features(**overrides):
	fields = {
		'origin_distance': 15.0,
		'destination_distance': 15.0,
		'route_detour': 10.0,
		'weight_utilization': 0.5,
		'volume_utilization': 0.1,
		'traveler_rating': 3.5,
		'traveler_experience': 0,
		'verification_level': 1,
		'category_match': False,
		'fragile_compatible': False,
		'value_compatible': False,
		'time_compatibility': 0.5,
		'time_flexibility': 0.5,
	}
	fields.update(overrides)
	return MatchFeatures(**fields)


class RuleBasedScoreTests(SimpleTestCase):
	def test_neutral_features_keep_base_score(self):
		self.assertAlmostEqual(rule_based_score(neutral_features()), 0.5)

	def test_closer_origin_never_scores_lower(self):
		scores = [
			rule_based_score(neutral_features(origin_distance=distance))
			for distance in (3, 8, 15, 25)
		]
		self.assertEqual(scores, sorted(scores, reverse=True))
		self.assertAlmostEqual(scores[0], 0.7)
		self.assertAlmostEqual(scores[-1], 0.3)

	def test_closer_destination_never_scores_lower(self):
		scores = [
			rule_based_score(neutral_features(destination_distance=distance))
			for distance in (3, 8, 15, 25)
		]
		self.assertEqual(scores, sorted(scores, reverse=True))
		self.assertAlmostEqual(scores[0], 0.7)
		self.assertAlmostEqual(scores[1], 0.6)
		self.assertAlmostEqual(scores[-1], 0.3)

	def test_smaller_detour_never_scores_lower(self):
		scores = [
			rule_based_score(neutral_features(route_detour=detour))
			for detour in (2, 5, 10, 20, 25)
		]
		self.assertEqual(scores, sorted(scores, reverse=True))
		self.assertAlmostEqual(scores[0], 0.6)
		self.assertAlmostEqual(scores[2], 0.5)
		self.assertAlmostEqual(scores[-1], 0.3)

	def test_rating_steps(self):
		self.assertAlmostEqual(rule_based_score(neutral_features(traveler_rating=4.7)), 0.65)
		self.assertAlmostEqual(rule_based_score(neutral_features(traveler_rating=4.2)), 0.6)
		self.assertAlmostEqual(rule_based_score(neutral_features(traveler_rating=2.5)), 0.3)

	def test_departure_far_from_pickup_window_is_penalised(self):
		self.assertAlmostEqual(rule_based_score(neutral_features(time_compatibility=0.1)), 0.4)

	def test_score_is_clamped(self):
		best = neutral_features(
			origin_distance=1, destination_distance=1, route_detour=0, traveler_rating=5,
			weight_utilization=0.9, category_match=True, fragile_compatible=True,
			value_compatible=True, traveler_experience=100, time_flexibility=1.0,
		)
		worst = neutral_features(
			origin_distance=30, destination_distance=30, route_detour=40, traveler_rating=2,
			weight_utilization=0.01, time_flexibility=0.1, time_compatibility=0.1,
		)
		self.assertEqual(rule_based_score(best), 1.0)
		self.assertEqual(rule_based_score(worst), 0.0)


class MatchCriteriaTests(SimpleTestCase):
	def test_defaults(self):
		self.assertEqual(MatchCriteria().as_dict(), {'max_distance': 10.0, 'max_detour': 20.0, 'time_flexibility': 6.0})

	def test_from_params(self):
		criteria = MatchCriteria.from_params({'max_detour': '25', 'max_distance': ''})
		self.assertEqual(criteria.max_detour, 25.0)
		self.assertEqual(criteria.max_distance, 10.0)

	def test_rejects_negative_or_non_numeric_values(self):
		with self.assertRaises(ValidationError):
			MatchCriteria.from_params({'max_distance': '-1'})
		with self.assertRaises(ValidationError):
			MatchCriteria.from_params({'time_flexibility': 'soon'})


class MatchingEngineTests(TestCase):
	def setUp(self):
		cache.clear()
		self.customer = make_customer()
		self.request = make_request(self.customer)

	def engine(self, directory):
		return MatchingEngine(trip_directory=directory, cache=BestEffortCache(), cache_timeout=600)

	def test_unknown_request(self):
		with self.assertRaises(NotFoundError):
			self.engine(FakeTripDirectory()).find_matches(999999)

	def test_carrier_on_the_exact_route_scores_full_marks(self):
		result = self.engine(FakeTripDirectory([carrier('trip-1')])).find_matches(self.request.id)

		self.assertEqual(result['request_id'], self.request.id)
		self.assertEqual(result['algorithm_used'], 'rule-based')
		self.assertFalse(result['degraded'])
		self.assertEqual(result['total_matches'], 1)

		match = result['matches'][0]
		self.assertEqual(match['trip']['id'], 'trip-1')
		self.assertEqual(match['compatibility_score'], 1.0)
		self.assertEqual(match['compatibility']['score'], 100.0)
		self.assertEqual(match['compatibility']['factors']['route'], 100)
		self.assertGreater(match['estimated_price'], 0)

	def test_low_scores_are_dropped_and_results_ranked(self):
		directory = FakeTripDirectory([
			carrier('trip-b'),
			carrier('trip-far', origin=FAR_ORIGIN, destination=FAR_DESTINATION),
			carrier('trip-a', traveler_rating=2.5, completed_deliveries=0, available_weight=100.0, accepted_categories=['documents']),
		])

		result = self.engine(directory).find_matches(self.request.id, MatchCriteria(max_detour=1000))

		ids = [m['trip']['id'] for m in result['matches']]
		self.assertEqual(ids, ['trip-b', 'trip-a'])
		self.assertAlmostEqual(result['matches'][1]['compatibility_score'], 0.8)
		scores = [m['compatibility_score'] for m in result['matches']]
		self.assertEqual(scores, sorted(scores, reverse=True))

	def test_equal_scores_are_ordered_by_trip_id_and_capped(self):
		carriers = [carrier(f'trip-{index:02d}') for index in range(12, 0, -1)]

		result = self.engine(FakeTripDirectory(carriers)).find_matches(self.request.id)

		self.assertEqual(result['total_matches'], 10)
		self.assertEqual([m['trip']['id'] for m in result['matches']], [f'trip-{index:02d}' for index in range(1, 11)])

	def test_detour_limit_filters_candidates(self):
		request = make_request(
			self.customer,
			pickup_latitude=Decimal('0.000000'),
			pickup_longitude=Decimal('0.000000'),
			dropoff_latitude=Decimal('0.000000'),
			dropoff_longitude=Decimal('0.100000'),
		)
		round_trip = carrier('trip-loop', origin=GeoPoint(0, 0), destination=GeoPoint(0, 0), traveler_rating=None, completed_deliveries=0)
		self.assertAlmostEqual(calculate_detour(round_trip, request), 22.24, places=1)

		engine = self.engine(FakeTripDirectory([round_trip]))

		strict = engine.find_matches(request.id)
		relaxed = engine.find_matches(request.id, MatchCriteria(max_detour=25))

		self.assertEqual(strict['total_matches'], 0)
		self.assertEqual(relaxed['total_matches'], 1)
		self.assertAlmostEqual(relaxed['matches'][0]['compatibility_score'], 0.9)

	def test_trips_without_route_coordinates_are_skipped(self):
		directory = FakeTripDirectory([
			carrier('trip-blank', origin=None, destination=None),
			carrier('trip-no-destination', destination=None),
			carrier('trip-far', origin=FAR_ORIGIN, destination=FAR_DESTINATION),
		])

		result = self.engine(directory).find_matches(self.request.id, MatchCriteria(max_detour=1000))

		self.assertFalse(result['degraded'])
		self.assertEqual(result['matches'], [])

	def test_directory_query_uses_criteria(self):
		directory = FakeTripDirectory()

		self.engine(directory).find_matches(self.request.id, MatchCriteria(max_distance=7, time_flexibility=3))

		call = directory.calls[0]
		self.assertEqual(call['origin'], PICKUP)
		self.assertEqual(call['destination'], DROPOFF)
		self.assertEqual(call['origin_radius_km'], 7)
		self.assertEqual(call['destination_radius_km'], 7)
		self.assertEqual((call['departure_to'] - call['departure_from']).total_seconds(), 6 * 3600)
		self.assertEqual(call['min_weight'], 2.0)
		self.assertEqual(call['min_items'], 1)
		self.assertEqual(call['status'], 'upcoming')

	def test_results_are_cached_per_request_version(self):
		directory = FakeTripDirectory([carrier('trip-1')])
		engine = self.engine(directory)

		first = engine.find_matches(self.request.id)
		second = engine.find_matches(self.request.id)
		self.assertEqual(first, second)
		self.assertEqual(len(directory.calls), 1)

		self.request.title = 'Laptop and charger'
		self.request.save()
		engine.find_matches(self.request.id)
		self.assertEqual(len(directory.calls), 2)

	def test_different_criteria_are_cached_separately(self):
		directory = FakeTripDirectory([carrier('trip-1')])
		engine = self.engine(directory)

		engine.find_matches(self.request.id)
		engine.find_matches(self.request.id, MatchCriteria(max_detour=30))

		self.assertEqual(len(directory.calls), 2)

	def test_directory_failure_degrades_without_caching(self):
		directory = FakeTripDirectory(error=ExternalServiceError('trip directory down'))
		engine = self.engine(directory)

		result = engine.find_matches(self.request.id)
		engine.find_matches(self.request.id)

		self.assertEqual(result['matches'], [])
		self.assertEqual(result['total_matches'], 0)
		self.assertTrue(result['degraded'])
		self.assertEqual(len(directory.calls), 2)

	def test_unexpected_directory_error_also_degrades(self):
		result = self.engine(FakeTripDirectory(error=RuntimeError('bug'))).find_matches(self.request.id)
		self.assertTrue(result['degraded'])

	def test_http_directory_timeout_degrades(self):
		session = Mock()
		session.get.side_effect = requests.Timeout()
		directory = HttpTripDirectory('http://trips.test', timeout=0.5, session=session)

		result = self.engine(directory).find_matches(self.request.id)

		self.assertTrue(result['degraded'])
		self.assertEqual(result['matches'], [])
		self.assertEqual(session.get.call_args.kwargs['timeout'], 0.5)


class PriceEstimateTests(TestCase):
	def setUp(self):
		self.request = make_request(make_customer(), urgency='express', is_fragile=True)

	def test_trip_type_scales_the_market_rate(self):
		rate = market_rate(self.request)

		self.assertGreater(rate, 15.0)
		self.assertAlmostEqual(estimated_price(self.request, carrier('trip-car', trip_type='car')), rate * 0.9, places=1)
		self.assertAlmostEqual(estimated_price(self.request, carrier('trip-flight', trip_type='flight')), rate * 1.2, places=1)
		self.assertEqual(estimated_price(self.request, carrier('trip-unknown')), rate)


class HttpTripDirectoryTests(SimpleTestCase):
	def search(self, directory):
		return directory.search_trips(
			origin=PICKUP,
			origin_radius_km=10,
			destination=DROPOFF,
			destination_radius_km=10,
			departure_from=datetime(2026, 1, 1, 8, tzinfo=dt_timezone.utc),
			departure_to=datetime(2026, 1, 1, 20, tzinfo=dt_timezone.utc),
			min_weight=2.0,
			min_items=1,
		)

	def test_parses_trip_entries_and_skips_malformed_ones(self):
		response = Mock()
		response.json.return_value = {'data': [
			{
				'id': 'trip-9',
				'travelerId': 12,
				'type': 'car',
				'originCoordinates': {'lat': 40.7128, 'lng': -74.006},
				'destinationCoordinates': {'coordinates': [-73.9855, 40.758]},
				'departureTime': '2026-01-01T10:00:00Z',
				'availableWeight': '5.5',
				'traveler': {
					'firstName': 'Ada',
					'rating': {'average': 4.9, 'count': 31},
					'verificationLevel': 'identity',
					'statistics': {'totalDeliveries': 44},
				},
				'preferences': {'acceptedCategories': ['electronics'], 'acceptFragile': False},
			},
			{'title': 'no id'},
		]}
		session = Mock()
		session.get.return_value = response

		carriers = self.search(HttpTripDirectory('http://trips.test/', session=session))

		self.assertEqual(len(carriers), 1)
		trip = carriers[0]
		self.assertEqual(trip.trip_id, 'trip-9')
		self.assertEqual(trip.traveler_id, '12')
		self.assertEqual(trip.origin, GeoPoint(40.7128, -74.006))
		self.assertEqual(trip.destination, GeoPoint(40.758, -73.9855))
		self.assertEqual(trip.available_weight, 5.5)
		self.assertEqual(trip.traveler_first_name, 'Ada')
		self.assertEqual(trip.traveler_last_name, 'User')
		self.assertEqual(trip.traveler_rating, 4.9)
		self.assertEqual(trip.completed_deliveries, 44)
		self.assertFalse(trip.accept_fragile)
		self.assertEqual(trip.departure_time.year, 2026)

		url = session.get.call_args.args[0]
		params = session.get.call_args.kwargs['params']
		self.assertEqual(url, 'http://trips.test/api/v1/trips/search')
		self.assertEqual(params['status'], 'upcoming')
		self.assertEqual(params['minWeight'], 2.0)

	def test_http_error_becomes_external_service_error(self):
		response = Mock()
		response.raise_for_status.side_effect = requests.HTTPError('503 Server Error')
		session = Mock()
		session.get.return_value = response

		with self.assertRaises(ExternalServiceError):
			self.search(HttpTripDirectory('http://trips.test', session=session))

	def test_body_without_data_list_is_rejected(self):
		response = Mock()
		response.json.return_value = {'error': 'maintenance'}
		session = Mock()
		session.get.return_value = response

		with self.assertRaises(ExternalServiceError):
			self.search(HttpTripDirectory('http://trips.test', session=session))
