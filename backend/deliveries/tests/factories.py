from contextlib import contextmanager
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from django.db import OperationalError
from django.db.models import QuerySet
from django.utils import timezone

from accounts.models import User
from travelers.models import TravelerProfile
from deliveries.models import DeliveryOffer, DeliveryRequest
from services.offer_management.scheduling import AutoAcceptScheduler


class RecordingScheduler(AutoAcceptScheduler):
	"""Keeps scheduled and cancelled offer ids instead of queueing Celery tasks."""

	def __init__(self):
		self.scheduled = []
		self.cancelled = []

	def schedule(self, offer_id, delay_seconds):
		self.scheduled.append((offer_id, delay_seconds))

	def cancel(self, offer_id):
		self.cancelled.append(offer_id)


def make_customer(username='customer', **kwargs):
	return User.objects.create_user(
		username=username,
		password='pass1234',
		role='customer',
		**kwargs
	)


def make_traveler(username='traveler', rating='4.50', verification_level='basic', **kwargs):
	user = User.objects.create_user(
		username=username,
		password='pass1234',
		role='traveler',
		**kwargs
	)
	TravelerProfile.objects.create(
		user=user,
		rating_average=Decimal(rating),
		rating_count=10,
		verification_level=verification_level
	)
	return user


def make_request(customer, **overrides):
	fields = {
		'customer': customer,
		'title': 'Laptop to Midtown',
		'item_name': 'Laptop',
		'category': 'electronics',
		'weight': Decimal('2.00'),
		'pickup_address': 'Wall St',
		'pickup_latitude': Decimal('40.712800'),
		'pickup_longitude': Decimal('-74.006000'),
		'dropoff_address': 'Times Sq',
		'dropoff_latitude': Decimal('40.758000'),
		'dropoff_longitude': Decimal('-73.985500'),
		'max_price': Decimal('50.00'),
		'status': 'pending',
	}
	fields.update(overrides)
	return DeliveryRequest.objects.create(**fields)


def make_offer(request, traveler, price='30.00', **overrides):
	fields = {
		'delivery_request': request,
		'traveler': traveler,
		'price': Decimal(price),
		'status': 'pending',
	}
	fields.update(overrides)
	return DeliveryOffer.objects.create(**fields)


def past(**kwargs):
	return timezone.now() - timedelta(**kwargs)


def future(**kwargs):
	return timezone.now() + timedelta(**kwargs)


def lock_conflict_error(sqlstate='40P01'):
	"""OperationalError shaped like the one Django raises for a PostgreSQL deadlock."""
	cause = Exception('deadlock detected')
	cause.sqlstate = sqlstate
	error = OperationalError('deadlock detected')
	error.__cause__ = cause
	return error


@contextmanager
def record_row_writes():
	"""Yields a list of ('lock' | 'update', Model) in the order the ORM issues them."""
	events = []
	lock = QuerySet.select_for_update
	update = QuerySet.update

	def record_lock(queryset, *args, **kwargs):
		events.append(('lock', queryset.model))
		return lock(queryset, *args, **kwargs)

	def record_update(queryset, *args, **kwargs):
		events.append(('update', queryset.model))
		return update(queryset, *args, **kwargs)

	with patch.object(QuerySet, 'select_for_update', autospec=True, side_effect=record_lock):
		with patch.object(QuerySet, 'update', autospec=True, side_effect=record_update):
			yield events
