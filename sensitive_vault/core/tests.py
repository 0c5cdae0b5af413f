from types import SimpleNamespace
import json
import logging
import sys
from unittest.mock import patch

from django.http import HttpResponse
from django.test import RequestFactory, SimpleTestCase, override_settings

from core.api import NO_STORE_HEADERS, api_error, api_success
from core.logging_formatters import PlainContextFormatter, StructuredJSONFormatter
from core.logging_utils import AppLogger, describe_user
from core.middleware import (
    LoggingMiddleware,
    RequestContextFilter,
    _request_context,
    get_client_ip,
    get_request_context,
)
from core import views as core_views


class AppLoggerTests(SimpleTestCase):
    def setUp(self):
        self.logger = AppLogger('core.tests')
        self.user = SimpleNamespace(email='user@example.com')

    def test_info_logs_formatted_message_with_user_and_extra(self):
        extra = {'ip': '127.0.0.1', 'action': 'view'}
        with self.assertLogs('core.tests', level='INFO') as captured:
            self.logger.info('Test message', user=self.user, extra_data=extra)
        self.assertEqual(len(captured.output), 1)
        logged_message = captured.output[0]
        self.assertIn('[User: user@example.com] Test message', logged_message)
        self.assertIn('ip: 127.0.0.1', logged_message)
        self.assertIn('action: view', logged_message)

    def test_user_id_is_described_without_lookup(self):
        self.assertEqual(describe_user('42'), 'id=42')
        self.assertEqual(describe_user(None), 'anonymous')
        self.assertEqual(describe_user(SimpleNamespace(id=3)), 'id=3')

    def test_security_event_uses_security_logger(self):
        with self.assertLogs('django.security', level='WARNING') as captured:
            self.logger.security_event('Suspicious activity', user=self.user)
        self.assertEqual(len(captured.output), 1)
        self.assertIn('SECURITY EVENT: Suspicious activity', captured.output[0])

    def test_critical_logs_to_alerts_logger(self):
        with self.assertLogs('alerts', level='ERROR') as alerts_log, self.assertLogs(
            'core.tests', level='CRITICAL'
        ) as core_log:
            self.logger.critical('Critical failure detected')
        self.assertTrue(any('CRITICAL: Critical failure detected' in entry for entry in alerts_log.output))
        self.assertTrue(any('Critical failure detected' in entry for entry in core_log.output))

    def test_encryption_event_logs_success_and_failure(self):
        with self.assertLogs('core.tests', level='INFO') as success_log:
            self.logger.encryption_event('sensitive data saved', user='7', success=True)
        self.assertTrue(any('ENCRYPTION SUCCESS: sensitive data saved' in entry for entry in success_log.output))

        with self.assertLogs('core.tests', level='ERROR') as failure_log:
            self.logger.encryption_event('sensitive data save failed', user='7', success=False)
        self.assertTrue(any('ENCRYPTION FAILURE: sensitive data save failed' in entry for entry in failure_log.output))

    def test_user_activity_includes_email_and_action(self):
        with self.assertLogs('core.tests', level='INFO') as captured:
            self.logger.user_activity('sensitive_data_read', self.user, details='from profile page')
        entry = captured.output[0]
        self.assertIn('User user@example.com performed action: sensitive_data_read - from profile page', entry)

    def test_context_is_attached_to_record(self):
        with self.assertLogs('core.tests', level='INFO') as captured:
            self.logger.info('With context', user='9', extra_data={'error_type': 'StorageError'})
        record = captured.records[0]
        self.assertEqual(record.context, {'user_pk': '9', 'error_type': 'StorageError'})


class FormatterTests(SimpleTestCase):
    def _record(self, message='hello'):
        return logging.LogRecord('vault', logging.INFO, __file__, 10, message, (), None)

    def test_json_formatter_includes_request_context_and_extras(self):
        record = self._record()
        record.request_id = 'req-9'
        record.user_id = '5'
        record.context = {'error_type': 'StorageError'}

        payload = json.loads(StructuredJSONFormatter().format(record))

        self.assertEqual(payload['message'], 'hello')
        self.assertEqual(payload['level'], 'INFO')
        self.assertEqual(payload['logger'], 'vault')
        self.assertEqual(payload['request_id'], 'req-9')
        self.assertEqual(payload['user_id'], '5')
        self.assertEqual(payload['context'], {'error_type': 'StorageError'})

    def test_json_formatter_skips_placeholder_context(self):
        record = self._record()
        record.request_id = '-'
        record.user_id = 'anonymous'

        payload = json.loads(StructuredJSONFormatter().format(record))

        self.assertNotIn('request_id', payload)
        self.assertEqual(payload['user_id'], 'anonymous')
        self.assertNotIn('context', payload)

    def test_json_formatter_includes_exception(self):
        try:
            raise RuntimeError('boom')
        except RuntimeError:
            record = logging.LogRecord('vault', logging.ERROR, __file__, 10, 'failed', (), sys.exc_info())

        payload = json.loads(StructuredJSONFormatter().format(record))

        self.assertIn('RuntimeError: boom', payload['exception'])

    def test_plain_formatter_tolerates_missing_context(self):
        output = PlainContextFormatter().format(self._record('plain message'))
        self.assertIn('[- - -] plain message', output)


class ApiResponseTests(SimpleTestCase):
    def test_success_envelope(self):
        response = api_success({'message': 'ok'}, status=201)
        self.assertEqual(response.status_code, 201)
        self.assertEqual(json.loads(response.content), {'success': True, 'data': {'message': 'ok'}})
        self.assertNotIn('Cache-Control', response.headers)

    def test_error_envelope_with_details_and_no_store(self):
        response = api_error('Invalid data format', status=400, details=[{'loc': ['ssn']}], no_store=True)
        body = json.loads(response.content)
        self.assertEqual(response.status_code, 400)
        self.assertFalse(body['success'])
        self.assertEqual(body['error'], 'Invalid data format')
        self.assertEqual(body['details'], [{'loc': ['ssn']}])
        for name, value in NO_STORE_HEADERS.items():
            self.assertEqual(response.headers[name], value)

    def test_error_envelope_omits_empty_details(self):
        body = json.loads(api_error('Method not allowed', status=405).content)
        self.assertNotIn('details', body)


class MiddlewareTests(SimpleTestCase):
    @override_settings(TRUSTED_PROXY_IPS=['10.0.0.0/8'])
    def test_get_client_ip_prefers_forwarded_header_from_trusted_proxy(self):
        request = SimpleNamespace(META={'HTTP_X_FORWARDED_FOR': '203.0.113.10, 10.0.0.1', 'REMOTE_ADDR': '10.0.0.2'})
        self.assertEqual(get_client_ip(request), '203.0.113.10')

    @override_settings(TRUSTED_PROXY_IPS=[])
    def test_get_client_ip_ignores_forwarded_header_from_untrusted_peer(self):
        request = SimpleNamespace(META={'HTTP_X_FORWARDED_FOR': '203.0.113.10', 'REMOTE_ADDR': '198.51.100.5'})
        self.assertEqual(get_client_ip(request), '198.51.100.5')

    def test_get_client_ip_falls_back_to_remote_addr(self):
        request = SimpleNamespace(META={'REMOTE_ADDR': '198.51.100.5'})
        self.assertEqual(get_client_ip(request), '198.51.100.5')

    @override_settings(TRUSTED_PROXY_IPS=['10.0.0.0/8'])
    def test_get_client_ip_skips_unknown_entries(self):
        request = SimpleNamespace(
            META={'HTTP_X_FORWARDED_FOR': 'unknown, 203.0.113.1', 'REMOTE_ADDR': '10.1.1.1'}
        )
        self.assertEqual(get_client_ip(request), '203.0.113.1')

    def test_get_client_ip_without_addresses(self):
        self.assertEqual(get_client_ip(SimpleNamespace(META={})), 'unknown')

    def test_request_context_filter_adds_context_information(self):
        token = _request_context.set(
            {
                'user_id': '42',
                'ip': '192.0.2.55',
                'request_id': 'req-1',
                'method': 'GET',
                'path': '/test/',
            }
        )
        try:
            record = logging.LogRecord('test', logging.INFO, __file__, 10, 'msg', (), None)
            RequestContextFilter().filter(record)
            self.assertEqual(record.user_id, '42')
            self.assertEqual(record.ip, '192.0.2.55')
            self.assertEqual(record.request_id, 'req-1')
            self.assertEqual(record.http_method, 'GET')
            self.assertEqual(record.path, '/test/')
        finally:
            _request_context.reset(token)

    def test_request_context_filter_outside_request(self):
        record = logging.LogRecord('test', logging.INFO, __file__, 10, 'msg', (), None)
        self.assertTrue(RequestContextFilter().filter(record))
        self.assertEqual(record.request_id, '-')
        self.assertEqual(record.user_id, 'anonymous')

    def test_logging_middleware_populates_and_cleans_context(self):
        class AuthenticatedUser:
            is_authenticated = True
            id = 7

        factory = RequestFactory()
        request = factory.get('/api/user/sensitive-data', REMOTE_ADDR='198.51.100.7')
        request.user = AuthenticatedUser()

        captured_state = {}

        def get_response(request):
            captured_state['context'] = get_request_context().copy()
            return HttpResponse('ok')

        middleware = LoggingMiddleware(get_response)
        response = middleware(request)

        self.assertEqual(response.status_code, 200)
        self.assertIn('X-Request-ID', response.headers)
        self.assertEqual(request.request_id, response.headers['X-Request-ID'])
        self.assertEqual(captured_state['context']['request_id'], response.headers['X-Request-ID'])
        self.assertEqual(captured_state['context']['user_id'], '7')
        self.assertEqual(captured_state['context']['ip'], '198.51.100.7')
        self.assertEqual(captured_state['context']['method'], 'GET')
        self.assertEqual(captured_state['context']['path'], '/api/user/sensitive-data')
        self.assertEqual(get_request_context(), {})

    def test_logging_middleware_propagates_incoming_request_id(self):
        request = RequestFactory().get('/health/', HTTP_X_REQUEST_ID='abc-123')
        request.user = SimpleNamespace(is_authenticated=False)

        response = LoggingMiddleware(lambda r: HttpResponse('ok'))(request)

        self.assertEqual(response.headers['X-Request-ID'], 'abc-123')


class CoreViewTests(SimpleTestCase):
    def setUp(self):
        self.factory = RequestFactory()

    def test_health_returns_success_envelope(self):
        request = self.factory.get('/health/')
        response = core_views.health(request)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(json.loads(response.content), {'success': True, 'data': {'message': 'healthy'}})

    def test_health_rejects_post(self):
        response = core_views.health(self.factory.post('/health/'))
        self.assertEqual(response.status_code, 405)

    def test_root_redirects_authenticated_user_to_sensitive_data(self):
        request = self.factory.get('/')
        request.user = SimpleNamespace(is_authenticated=True, email='user@example.com')

        with patch.object(core_views, 'logger') as mock_logger:
            response = core_views.root(request)

        mock_logger.info.assert_called_once()
        mock_logger.user_activity.assert_called_once()
        self.assertEqual(response.status_code, 302)
        self.assertEqual(response.url, '/api/user/sensitive-data')

    def test_root_redirects_anonymous_user_to_login(self):
        request = self.factory.get('/')
        request.user = SimpleNamespace(is_authenticated=False)

        with patch.object(core_views, 'logger'):
            response = core_views.root(request)

        self.assertEqual(response.url, '/accounts/login/')
