from types import SimpleNamespace
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from django.test import TestCase
from django.urls import reverse

from accounts.utils import profile_for, session_payload


class CustomUserManagerTests(TestCase):
    def test_create_user_normalizes_email_and_hashes_password(self):
        user = get_user_model().objects.create_user(email='Jane@EXAMPLE.com', password='password123')
        self.assertEqual(user.email, 'Jane@example.com')
        self.assertTrue(user.check_password('password123'))
        self.assertFalse(user.is_staff)
        self.assertEqual(user.name, '')

    def test_create_user_requires_email(self):
        with self.assertRaises(ValueError):
            get_user_model().objects.create_user(email='', password='password123')

    def test_create_superuser_sets_flags(self):
        admin = get_user_model().objects.create_superuser(email='admin@example.com', password='password123')
        self.assertTrue(admin.is_staff)
        self.assertTrue(admin.is_superuser)

    def test_create_superuser_rejects_non_staff(self):
        with self.assertRaises(ValueError):
            get_user_model().objects.create_superuser(
                email='admin@example.com', password='password123', is_staff=False
            )


class ProfileUtilsTests(TestCase):
    def test_profile_for_authenticated_user(self):
        user = get_user_model().objects.create_user(
            email='user@example.com',
            password='password123',
            name='User',
            image='https://example.com/avatar.png',
        )
        profile = profile_for(user)
        self.assertEqual(profile.email, 'user@example.com')
        self.assertEqual(profile.name, 'User')
        self.assertEqual(profile.image, 'https://example.com/avatar.png')

    def test_blank_profile_fields_become_none(self):
        user = get_user_model().objects.create_user(email='user@example.com', password='password123')
        profile = profile_for(user)
        self.assertIsNone(profile.name)
        self.assertIsNone(profile.image)

    def test_anonymous_user_has_empty_profile(self):
        self.assertEqual(profile_for(AnonymousUser()).email, '')
        self.assertIsNone(session_payload(AnonymousUser()))


class AccountsViewTests(TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user(
            email='user@example.com',
            password='password123',
            name='User',
        )

    def test_session_endpoint_without_login(self):
        response = self.client.get('/api/auth/session')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'success': True, 'data': None})

    def test_session_endpoint_returns_user(self):
        self.client.force_login(self.user)
        response = self.client.get('/api/auth/session')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['data'], {
            'user': {
                'id': str(self.user.pk),
                'email': 'user@example.com',
                'name': 'User',
                'image': None,
            }
        })
        self.assertEqual(response.headers['Cache-Control'], 'no-store, private')

    def test_signin_redirects_to_allauth_login(self):
        response = self.client.get('/auth/signin/')
        self.assertEqual(response.status_code, 302)
        self.assertEqual(response.url, reverse('account_login'))

    def test_signout_logs_out_and_redirects_home(self):
        self.client.force_login(self.user)

        with patch('accounts.views.logger') as mock_logger:
            response = self.client.get('/auth/signout/')

        mock_logger.info.assert_called_once()
        self.assertEqual(response.status_code, 302)
        self.assertEqual(response.url, '/')
        self.assertNotIn('_auth_user_id', self.client.session)


class AccountsSignalTests(TestCase):
    def test_log_user_login_uses_client_ip(self):
        request = SimpleNamespace(META={'REMOTE_ADDR': '127.0.0.1'})
        user = SimpleNamespace(email='user@example.com')

        with patch('accounts.signals.logger') as mock_logger:
            from accounts import signals

            signals.log_user_login(sender=None, request=request, user=user)

        mock_logger.user_activity.assert_called_once()
        self.assertIn('127.0.0.1', mock_logger.user_activity.call_args[0][2])

    def test_log_login_failure_records_credentials(self):
        request = SimpleNamespace(META={'REMOTE_ADDR': '198.51.100.4'})
        with patch('accounts.signals.logger') as mock_logger:
            from accounts import signals

            signals.log_login_failure(
                sender=None,
                credentials={'username': 'user@example.com', 'extra': 'value'},
                request=request,
            )

        mock_logger.security_event.assert_called_once()
        extra = mock_logger.security_event.call_args.kwargs['extra_data']
        self.assertEqual(extra['email'], 'user@example.com')
        self.assertEqual(extra['ip'], '198.51.100.4')

    def test_log_user_logout_without_user(self):
        request = SimpleNamespace(META={'REMOTE_ADDR': '127.0.0.1'})
        with patch('accounts.signals.logger') as mock_logger:
            from accounts import signals

            signals.log_user_logout(sender=None, request=request, user=None)

        mock_logger.info.assert_called_once()
        mock_logger.user_activity.assert_not_called()
