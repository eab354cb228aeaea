from django.contrib.admin import AdminSite
from django.test import TestCase
from rest_framework.test import APIRequestFactory, force_authenticate

from travelers.models import TravelerProfile
from .admin import TravelerProfileInline, UserAdmin
from .models import User
from .views import LoginView, MeView, RefreshTokenView, RegisterView


class AccountFlowTests(TestCase):
	def setUp(self):
		self.factory = APIRequestFactory()

	def register(self, **overrides):
		data = {
			'username': 'jane_doe',
			'email': 'jane@example.com',
			'password': 'pass1234',
			'role': 'traveler',
			'phone_number': '9000000001',
		}
		data.update(overrides)
		request = self.factory.post('/api/auth/register/', data, format='json')
		return RegisterView.as_view()(request)

	def test_register_traveler_creates_profile(self):
		response = self.register()

		self.assertEqual(response.status_code, 201)
		self.assertIn('access', response.data['tokens'])
		user = User.objects.get(username='jane_doe')
		self.assertTrue(user.is_traveler)
		self.assertEqual(user.traveler_profile.verification_level, 'basic')
		self.assertEqual(response.data['user']['completed_deliveries'], 0)

	def test_register_customer_has_no_profile(self):
		response = self.register(username='sam', email='sam@example.com', role='customer')

		self.assertEqual(response.status_code, 201)
		self.assertFalse(TravelerProfile.objects.filter(user__username='sam').exists())
		self.assertIsNone(response.data['user']['verification_level'])
		self.assertIsNone(response.data['user']['completed_deliveries'])

	def test_duplicate_email_rejected(self):
		self.register()
		response = self.register(username='jane_two')

		self.assertEqual(response.status_code, 400)
		self.assertIn('email', response.data)

	def test_login_and_refresh(self):
		self.register()

		request = self.factory.post('/api/auth/login/', {'username': 'jane_doe', 'password': 'pass1234'}, format='json')
		response = LoginView.as_view()(request)
		self.assertEqual(response.status_code, 200)
		refresh = response.data['tokens']['refresh']

		request = self.factory.post('/api/auth/refresh/', {'refresh': refresh}, format='json')
		response = RefreshTokenView.as_view()(request)
		self.assertEqual(response.status_code, 200)
		self.assertIn('access', response.data)

	def test_bad_credentials_and_tokens(self):
		self.register()

		request = self.factory.post('/api/auth/login/', {'username': 'jane_doe', 'password': 'wrong'}, format='json')
		self.assertEqual(LoginView.as_view()(request).status_code, 400)

		request = self.factory.post('/api/auth/refresh/', {'refresh': 'not-a-token'}, format='json')
		self.assertEqual(RefreshTokenView.as_view()(request).status_code, 401)

		request = self.factory.post('/api/auth/refresh/', {}, format='json')
		self.assertEqual(RefreshTokenView.as_view()(request).status_code, 400)

	def test_me(self):
		self.register()
		user = User.objects.get(username='jane_doe')

		request = self.factory.get('/api/auth/me/')
		force_authenticate(request, user=user)
		response = MeView.as_view()(request)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['user']['role'], 'traveler')


class UserAdminTests(TestCase):
	def test_profile_inline_is_shown_for_travelers_only(self):
		model_admin = UserAdmin(User, AdminSite())
		traveler = User.objects.create_user(username='rover', password='pass1234', role='traveler')
		customer = User.objects.create_user(username='sender', password='pass1234', role='customer')

		self.assertEqual(model_admin.get_inlines(None, traveler), [TravelerProfileInline])
		self.assertEqual(model_admin.get_inlines(None, customer), [])
		self.assertEqual(model_admin.get_inlines(None, None), [])
