import hashlib
import json
import re
import tempfile
import threading
from io import StringIO
from pathlib import Path
from unittest.mock import patch

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.exceptions import ImproperlyConfigured
from django.core.management import call_command
from django.test import Client, SimpleTestCase, TestCase, override_settings

from vault import crypto_utils
from vault.backends import (
    DatabaseEnvelopeBackend,
    FileEnvelopeBackend,
    InMemoryEnvelopeBackend,
    get_envelope_backend,
    reset_envelope_backend,
)
from vault.crypto_utils import (
    SensitiveDataCipher,
    generate_encryption_key,
    hash_password,
    parse_token,
    verify_password,
)
from vault.exceptions import (
    AuthenticationError,
    ConfigurationError,
    MalformedTokenError,
    OperationFailedError,
    StorageError,
    ValidationError,
)
from vault.models import StoredEnvelope
from vault.schemas import SensitiveRecord, StoredUserRecord, UserProfile
from vault.secure_storage import SecureStorageService, get_secure_storage, reset_secure_storage

TEST_KEY = '00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff'
OTHER_KEY = 'ffeeddccbbaa99887766554433221100ffeeddccbbaa99887766554433221100'

TOKEN_RE = re.compile(r'^[0-9a-f]{32}:[0-9a-f]+:[0-9a-f]{32}$')

SAMPLE_RECORD = {
    'fullName': 'Jane Doe',
    'ssn': '123-45-6789',
    'address': {'street': '1 Main St', 'city': 'Springfield', 'postalCode': '12345'},
    'paymentMethods': [
        {'id': 'pm-1', 'type': 'credit_card', 'lastFour': '4242', 'holderName': 'Jane Doe'},
    ],
}


def _flip_first_hex_digit(segment):
    return ('1' if segment[0] == '0' else '0') + segment[1:]


def _sequence_clock(prefix='2024-01-01T00:00:0'):
    counter = iter(range(10))
    return lambda: f"{prefix}{next(counter)}.000Z"


class SensitiveDataCipherTests(SimpleTestCase):
    def setUp(self):
        self.cipher = SensitiveDataCipher.from_hex(TEST_KEY)

    def test_encrypt_and_decrypt_round_trip(self):
        plaintext = '{"fullName":"Zoë Ångström"}'
        token = self.cipher.encrypt(plaintext)
        self.assertRegex(token, TOKEN_RE)
        self.assertEqual(self.cipher.decrypt(token), plaintext)

    def test_encrypt_uses_fresh_iv_each_time(self):
        first = self.cipher.encrypt('same value')
        second = self.cipher.encrypt('same value')
        self.assertNotEqual(first, second)
        self.assertNotEqual(first.split(':')[0], second.split(':')[0])

    def test_decrypt_rejects_tampered_ciphertext(self):
        iv, ciphertext, tag = self.cipher.encrypt('sensitive-value').split(':')
        tampered = ':'.join((iv, _flip_first_hex_digit(ciphertext), tag))
        with self.assertRaises(AuthenticationError):
            self.cipher.decrypt(tampered)

    def test_decrypt_rejects_tampered_tag(self):
        iv, ciphertext, tag = self.cipher.encrypt('sensitive-value').split(':')
        tampered = ':'.join((iv, ciphertext, _flip_first_hex_digit(tag)))
        with self.assertRaises(AuthenticationError):
            self.cipher.decrypt(tampered)

    def test_decrypt_rejects_tampered_iv(self):
        iv, ciphertext, tag = self.cipher.encrypt('sensitive-value').split(':')
        tampered = ':'.join((_flip_first_hex_digit(iv), ciphertext, tag))
        with self.assertRaises(AuthenticationError):
            self.cipher.decrypt(tampered)

    def test_decrypt_with_other_key_fails_authentication(self):
        token = self.cipher.encrypt('sensitive-value')
        other = SensitiveDataCipher.from_hex(OTHER_KEY)
        with self.assertLogs('django.security', level='ERROR'):
            with self.assertRaises(AuthenticationError):
                other.decrypt(token)

    def test_decrypt_rejects_malformed_tokens(self):
        valid_iv = '00' * 16
        valid_tag = '11' * 16
        malformed = [
            '',
            'not-a-token',
            'aa:bb',
            'aa:bb:cc:dd',
            f'{valid_iv}::{valid_tag}',
            f'{valid_iv}:zz:{valid_tag}',
            f'{valid_iv}:abc:{valid_tag}',
            f'{"00" * 12}:abcd:{valid_tag}',
            f'{valid_iv}:abcd:{"11" * 8}',
        ]
        for token in malformed:
            with self.subTest(token=token):
                with self.assertRaises(MalformedTokenError):
                    self.cipher.decrypt(token)

    def test_parse_token_returns_raw_segments(self):
        token = self.cipher.encrypt('abc')
        iv, ciphertext, tag = parse_token(token)
        self.assertEqual(len(iv), 16)
        self.assertEqual(len(tag), 16)
        self.assertEqual(len(ciphertext), 3)

    def test_from_hex_requires_key(self):
        with self.assertRaises(ConfigurationError) as ctx:
            SensitiveDataCipher.from_hex('')
        self.assertIn('ENCRYPTION_KEY environment variable is not set', str(ctx.exception))
        self.assertFalse(ctx.exception.recoverable)

    def test_from_hex_requires_64_hex_characters(self):
        for key in ('abcd', TEST_KEY[:-2], 'g' * 64):
            with self.subTest(key=key):
                with self.assertRaises(ConfigurationError):
                    SensitiveDataCipher.from_hex(key)

    def test_constructor_requires_32_byte_key(self):
        with self.assertRaises(ConfigurationError):
            SensitiveDataCipher(b'short')

    @override_settings(VAULT_ENCRYPTION_KEY=TEST_KEY)
    def test_get_cipher_is_cached_until_reset(self):
        crypto_utils.reset_cipher()
        try:
            first = crypto_utils.get_cipher()
            self.assertIs(first, crypto_utils.get_cipher())
            crypto_utils.reset_cipher()
            self.assertIsNot(first, crypto_utils.get_cipher())
        finally:
            crypto_utils.reset_cipher()

    @override_settings(VAULT_ENCRYPTION_KEY='')
    def test_get_cipher_fails_without_key(self):
        crypto_utils.reset_cipher()
        with self.assertRaises(ConfigurationError):
            crypto_utils.get_cipher()


class KeyAndPasswordUtilsTests(SimpleTestCase):
    def test_generate_encryption_key_is_64_hex_characters(self):
        key = generate_encryption_key()
        self.assertRegex(key, r'^[0-9a-f]{64}$')
        self.assertNotEqual(key, generate_encryption_key())
        SensitiveDataCipher.from_hex(key)

    def test_hash_password_uses_pbkdf2_sha512(self):
        result = hash_password('correct horse', 'a1b2c3')
        expected = hashlib.pbkdf2_hmac('sha512', b'correct horse', b'a1b2c3', 10000, 64).hex()
        self.assertEqual(result.hash, expected)
        self.assertEqual(result.salt, 'a1b2c3')

    def test_hash_password_generates_salt(self):
        first = hash_password('pw')
        second = hash_password('pw')
        self.assertRegex(first.salt, r'^[0-9a-f]{32}$')
        self.assertNotEqual(first.salt, second.salt)
        self.assertNotEqual(first.hash, second.hash)

    def test_verify_password(self):
        hashed = hash_password('pw')
        self.assertTrue(verify_password('pw', hashed.hash, hashed.salt))
        self.assertFalse(verify_password('wrong', hashed.hash, hashed.salt))


class SensitiveRecordSchemaTests(SimpleTestCase):
    def test_parse_and_document_keep_json_names(self):
        record = SensitiveRecord.parse(SAMPLE_RECORD)
        self.assertEqual(record.full_name, 'Jane Doe')
        self.assertEqual(record.address.postal_code, '12345')
        self.assertEqual(record.to_document(), SAMPLE_RECORD)

    def test_unset_fields_are_not_serialized(self):
        record = SensitiveRecord.parse({'phoneNumber': '555-0100'})
        self.assertEqual(json.loads(record.serialize()), {'phoneNumber': '555-0100'})

    def test_rejects_full_card_number(self):
        payload = {'paymentMethods': [{'id': 'pm', 'type': 'credit_card', 'cardNumber': '4111111111111111'}]}
        with self.assertRaises(ValidationError) as ctx:
            SensitiveRecord.parse(payload)
        self.assertTrue(ctx.exception.errors)

    def test_rejects_bad_last_four_and_payment_type(self):
        for method in (
            {'id': 'pm', 'type': 'credit_card', 'lastFour': '12345'},
            {'id': 'pm', 'type': 'crypto'},
        ):
            with self.subTest(method=method):
                with self.assertRaises(ValidationError):
                    SensitiveRecord.parse({'paymentMethods': [method]})

    def test_rejects_non_object_payload(self):
        with self.assertRaises(ValidationError):
            SensitiveRecord.parse(['fullName'])

    def test_deserialize_rejects_invalid_json(self):
        with self.assertRaises(ValidationError):
            SensitiveRecord.deserialize('{not json')

    def test_merge_is_shallow(self):
        current = SensitiveRecord.parse(SAMPLE_RECORD)
        updates = SensitiveRecord.parse({'address': {'city': 'Shelbyville'}, 'phoneNumber': '555-0100'})

        merged = current.merged_with(updates).to_document()

        self.assertEqual(merged['fullName'], 'Jane Doe')
        self.assertEqual(merged['phoneNumber'], '555-0100')
        self.assertEqual(merged['address'], {'city': 'Shelbyville'})
        self.assertEqual(merged['paymentMethods'], SAMPLE_RECORD['paymentMethods'])

    def test_envelope_requires_payload_and_metadata_together(self):
        document = {
            'id': '1',
            'createdAt': '2024-01-01T00:00:00.000Z',
            'updatedAt': '2024-01-01T00:00:00.000Z',
            'encryptedData': 'aa:bb:cc',
        }
        with self.assertRaises(StorageError):
            StoredUserRecord.from_document(document)

    def test_envelope_preserves_unknown_keys(self):
        document = {
            'id': '1',
            'email': 'jane@example.com',
            'createdAt': '2024-01-01T00:00:00.000Z',
            'updatedAt': '2024-01-01T00:00:00.000Z',
            'legacyFlag': True,
        }
        self.assertEqual(StoredUserRecord.from_document(document).to_document(), document)


class FileEnvelopeBackendTests(SimpleTestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.directory = Path(self.tmpdir.name) / 'users'
        self.backend = FileEnvelopeBackend(self.directory)

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_missing_entry_returns_none(self):
        self.assertIsNone(self.backend.get('42'))

    def test_put_creates_directory_and_pretty_json(self):
        self.backend.put('42', {'id': '42'})
        path = self.directory / '42.json'
        self.assertTrue(path.exists())
        self.assertEqual(path.read_text(encoding='utf-8'), json.dumps({'id': '42'}, indent=2))
        self.assertEqual(self.backend.get('42'), {'id': '42'})

    def test_corrupted_file_raises_storage_error(self):
        self.directory.mkdir(parents=True)
        (self.directory / '42.json').write_text('{broken', encoding='utf-8')
        with self.assertRaises(StorageError):
            self.backend.get('42')

    def test_non_object_document_raises_storage_error(self):
        self.directory.mkdir(parents=True)
        (self.directory / '42.json').write_text('[1, 2]', encoding='utf-8')
        with self.assertRaises(StorageError):
            self.backend.get('42')

    def test_rejects_keys_that_escape_directory(self):
        for key in ('', '.', '..', '../etc', 'a/b', 'a\\b', 'a\x00b'):
            with self.subTest(key=key):
                with self.assertRaises(StorageError):
                    self.backend.put(key, {'id': key})


class DatabaseEnvelopeBackendTests(TestCase):
    def test_put_and_get(self):
        backend = DatabaseEnvelopeBackend()
        self.assertIsNone(backend.get('7'))

        backend.put('7', {'id': '7', 'email': 'a@example.com'})
        backend.put('7', {'id': '7', 'email': 'b@example.com'})

        self.assertEqual(backend.get('7'), {'id': '7', 'email': 'b@example.com'})
        self.assertEqual(StoredEnvelope.objects.count(), 1)


class BackendSelectionTests(SimpleTestCase):
    def tearDown(self):
        reset_envelope_backend()

    @override_settings(VAULT_STORAGE_BACKEND='memory')
    def test_memory_backend_selected(self):
        reset_envelope_backend()
        backend = get_envelope_backend()
        self.assertIsInstance(backend, InMemoryEnvelopeBackend)
        self.assertIs(backend, get_envelope_backend())

    @override_settings(VAULT_STORAGE_BACKEND='file', VAULT_STORAGE_DIR='/tmp/vault-users')
    def test_file_backend_selected(self):
        reset_envelope_backend()
        backend = get_envelope_backend()
        self.assertIsInstance(backend, FileEnvelopeBackend)
        self.assertEqual(backend.directory, Path('/tmp/vault-users'))

    @override_settings(VAULT_STORAGE_BACKEND='database')
    def test_database_backend_selected(self):
        reset_envelope_backend()
        self.assertIsInstance(get_envelope_backend(), DatabaseEnvelopeBackend)

    @override_settings(VAULT_STORAGE_BACKEND='s3')
    def test_unknown_backend_is_rejected(self):
        reset_envelope_backend()
        with self.assertRaises(ImproperlyConfigured):
            get_envelope_backend()


class SecureStorageServiceTests(SimpleTestCase):
    def setUp(self):
        self.cipher = SensitiveDataCipher.from_hex(TEST_KEY)
        self.backend = InMemoryEnvelopeBackend()
        self.service = SecureStorageService(self.cipher, self.backend, clock=_sequence_clock())
        self.record = SensitiveRecord.parse(SAMPLE_RECORD)

    def test_get_returns_none_for_unknown_user(self):
        self.assertIsNone(self.service.get_sensitive_data('1'))

    def test_save_then_get_round_trip(self):
        self.service.save_sensitive_data('1', self.record)
        loaded = self.service.get_sensitive_data('1')
        self.assertEqual(loaded.to_document(), SAMPLE_RECORD)

    def test_saved_envelope_never_contains_plaintext(self):
        profile = UserProfile(email='jane@example.com', name='Jane')
        self.service.save_sensitive_data('1', self.record, profile=profile)

        document = self.backend.get('1')
        stored = json.dumps(document)
        self.assertNotIn('Jane Doe', stored)
        self.assertNotIn('123-45-6789', stored)
        self.assertRegex(document['encryptedData'], TOKEN_RE)
        self.assertEqual(document['id'], '1')
        self.assertEqual(document['email'], 'jane@example.com')
        self.assertEqual(document['name'], 'Jane')
        self.assertEqual(document['encryptionMetadata']['version'], '1.0')
        self.assertEqual(document['encryptionMetadata']['updatedAt'], document['updatedAt'])

    def test_resave_keeps_created_at_and_advances_updated_at(self):
        self.service.save_sensitive_data('1', self.record)
        first = self.service.get_envelope('1')
        self.service.save_sensitive_data('1', SensitiveRecord.parse({'fullName': 'J. Doe'}))
        second = self.service.get_envelope('1')

        self.assertEqual(second.created_at, first.created_at)
        self.assertNotEqual(second.updated_at, first.updated_at)
        self.assertEqual(self.service.get_sensitive_data('1').to_document(), {'fullName': 'J. Doe'})

    def test_empty_profile_values_keep_existing_ones(self):
        self.service.save_sensitive_data('1', self.record, profile=UserProfile(email='jane@example.com', name='Jane'))
        self.service.save_sensitive_data('1', self.record, profile=UserProfile(email='', name=None))

        envelope = self.service.get_envelope('1')
        self.assertEqual(envelope.email, 'jane@example.com')
        self.assertEqual(envelope.name, 'Jane')

    def test_stored_email_is_preserved_over_session_email(self):
        self.service.save_sensitive_data('1', self.record, profile=UserProfile(email='jane@example.com'))
        self.service.update_sensitive_data(
            '1',
            SensitiveRecord.parse({'phoneNumber': '555-0100'}),
            profile=UserProfile(email='new@example.com', image='https://example.com/a.png'),
        )

        envelope = self.service.get_envelope('1')
        self.assertEqual(envelope.email, 'jane@example.com')
        self.assertEqual(envelope.image, 'https://example.com/a.png')

    def test_empty_record_is_distinct_from_absent(self):
        self.service.save_sensitive_data('1', SensitiveRecord())
        loaded = self.service.get_sensitive_data('1')
        self.assertIsNotNone(loaded)
        self.assertEqual(loaded.to_document(), {})

    def test_update_merges_over_existing_record(self):
        self.service.save_sensitive_data('1', self.record)
        self.service.update_sensitive_data('1', SensitiveRecord.parse({'phoneNumber': '555-0100'}))

        loaded = self.service.get_sensitive_data('1').to_document()
        self.assertEqual(loaded['fullName'], 'Jane Doe')
        self.assertEqual(loaded['phoneNumber'], '555-0100')

    def test_update_without_existing_record_saves_updates(self):
        self.service.update_sensitive_data('1', SensitiveRecord.parse({'phoneNumber': '555-0100'}))
        self.assertEqual(self.service.get_sensitive_data('1').to_document(), {'phoneNumber': '555-0100'})

    def test_delete_clears_payload_but_keeps_envelope(self):
        self.service.save_sensitive_data('1', self.record, profile=UserProfile(email='jane@example.com'))

        self.assertTrue(self.service.delete_sensitive_data('1'))

        self.assertIsNone(self.service.get_sensitive_data('1'))
        document = self.backend.get('1')
        self.assertEqual(document['email'], 'jane@example.com')
        self.assertNotIn('encryptedData', document)
        self.assertNotIn('encryptionMetadata', document)

    def test_delete_without_envelope_returns_false(self):
        self.assertFalse(self.service.delete_sensitive_data('1'))
        self.assertEqual(self.backend.keys(), [])

    def test_delete_is_repeatable(self):
        self.service.save_sensitive_data('1', self.record)
        self.assertTrue(self.service.delete_sensitive_data('1'))
        self.assertTrue(self.service.delete_sensitive_data('1'))

    def test_users_are_isolated(self):
        self.service.save_sensitive_data('1', self.record)
        self.assertIsNone(self.service.get_sensitive_data('2'))

    def test_get_with_wrong_key_wraps_authentication_error(self):
        self.service.save_sensitive_data('1', self.record)
        other = SecureStorageService(SensitiveDataCipher.from_hex(OTHER_KEY), self.backend)

        with self.assertRaises(OperationFailedError) as ctx:
            other.get_sensitive_data('1')

        self.assertEqual(str(ctx.exception), 'Failed to retrieve sensitive user data')
        self.assertIsInstance(ctx.exception.__cause__, AuthenticationError)

    def test_get_with_malformed_stored_token_wraps_error(self):
        self.service.save_sensitive_data('1', self.record)
        document = self.backend.get('1')
        document['encryptedData'] = 'not-a-token'
        self.backend.put('1', document)

        with self.assertRaises(OperationFailedError) as ctx:
            self.service.get_sensitive_data('1')

        self.assertIsInstance(ctx.exception.__cause__, MalformedTokenError)

    def test_update_reports_underlying_error(self):
        self.service.save_sensitive_data('1', self.record)
        other = SecureStorageService(SensitiveDataCipher.from_hex(OTHER_KEY), self.backend)

        with self.assertRaises(OperationFailedError) as ctx:
            other.update_sensitive_data('1', SensitiveRecord.parse({'ssn': '000-00-0000'}))

        self.assertEqual(str(ctx.exception), 'Failed to update sensitive user data')
        self.assertIsInstance(ctx.exception.__cause__, AuthenticationError)
        # The stored record is untouched.
        self.assertEqual(self.service.get_sensitive_data('1').to_document(), SAMPLE_RECORD)

    def test_save_wraps_storage_error(self):
        with patch.object(self.backend, 'put', side_effect=StorageError('disk full')):
            with self.assertRaises(OperationFailedError) as ctx:
                self.service.save_sensitive_data('1', self.record)

        self.assertEqual(str(ctx.exception), 'Failed to save sensitive user data')
        self.assertIsInstance(ctx.exception.__cause__, StorageError)

    def test_delete_wraps_corrupted_envelope(self):
        self.backend.put('1', {'id': '1'})
        with self.assertRaises(OperationFailedError) as ctx:
            self.service.delete_sensitive_data('1')
        self.assertIsInstance(ctx.exception.__cause__, StorageError)

    def test_file_backend_corruption_is_an_error_not_absence(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            backend = FileEnvelopeBackend(tmpdir)
            (Path(tmpdir) / '1.json').write_text('{broken', encoding='utf-8')
            service = SecureStorageService(self.cipher, backend)

            with self.assertRaises(OperationFailedError) as ctx:
                service.get_sensitive_data('1')

        self.assertIsInstance(ctx.exception.__cause__, StorageError)


class _RacingBackend(InMemoryEnvelopeBackend):
    """Holds the first two reads at a barrier so two updates see the same state."""

    def __init__(self):
        super().__init__()
        self.armed = False
        self.barrier = threading.Barrier(2)
        self._reads = 0
        self._lock = threading.Lock()

    def get(self, key):
        document = super().get(key)
        with self._lock:
            wait = self.armed and self._reads < 2
            if wait:
                self._reads += 1
        if wait:
            self.barrier.wait(timeout=5)
        return document


class ConcurrentUpdateTests(SimpleTestCase):
    def test_concurrent_updates_last_writer_wins(self):
        backend = _RacingBackend()
        service = SecureStorageService(SensitiveDataCipher.from_hex(TEST_KEY), backend)
        service.save_sensitive_data('1', SensitiveRecord.parse({'ssn': '123-45-6789'}))
        backend.armed = True

        errors = []

        def run(updates):
            try:
                service.update_sensitive_data('1', SensitiveRecord.parse(updates))
            except Exception as exc:  # pragma: no cover - surfaced by the assertion below
                errors.append(exc)

        threads = [
            threading.Thread(target=run, args=({'fullName': 'Writer A'},)),
            threading.Thread(target=run, args=({'phoneNumber': '555-0199'},)),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        self.assertEqual(errors, [])
        final = service.get_sensitive_data('1').to_document()
        self.assertEqual(final['ssn'], '123-45-6789')
        # Both read the same snapshot, so exactly one writer's change survives.
        self.assertNotEqual('fullName' in final, 'phoneNumber' in final)


@override_settings(VAULT_ENCRYPTION_KEY=TEST_KEY, VAULT_STORAGE_BACKEND='memory')
class SensitiveDataViewTests(TestCase):
    url = '/api/user/sensitive-data'

    def setUp(self):
        reset_secure_storage()
        self.user = get_user_model().objects.create_user(
            email='jane@example.com',
            password='pw-123456789',
            name='Jane',
        )

    def tearDown(self):
        reset_secure_storage()

    def _login(self):
        self.client.force_login(self.user)

    def test_requires_authentication(self):
        for method in ('get', 'post', 'patch', 'delete'):
            with self.subTest(method=method):
                response = getattr(self.client, method)(self.url)
                self.assertEqual(response.status_code, 401)
                self.assertEqual(response.json(), {
                    'success': False,
                    'error': 'Unauthorized: You must be logged in to access this resource',
                })

    def test_unsupported_method_returns_405(self):
        self._login()
        response = self.client.put(self.url, data={}, content_type='application/json')
        self.assertEqual(response.status_code, 405)
        self.assertEqual(response.json()['error'], 'Method not allowed')
        self.assertIn('PATCH', response.headers['Allow'])

    def test_get_without_record_returns_empty_object(self):
        self._login()
        response = self.client.get(self.url)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'success': True, 'data': {}})
        self.assertEqual(response.headers['Cache-Control'], 'no-store, private')

    def test_full_lifecycle(self):
        self._login()

        response = self.client.post(self.url, data=SAMPLE_RECORD, content_type='application/json')
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json(), {'success': True, 'data': {'message': 'Sensitive data saved successfully'}})

        response = self.client.get(self.url)
        self.assertEqual(response.json()['data'], SAMPLE_RECORD)

        response = self.client.patch(self.url, data={'phoneNumber': '555-0100'}, content_type='application/json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['data']['message'], 'Sensitive data updated successfully')
        self.assertEqual(self.client.get(self.url).json()['data']['phoneNumber'], '555-0100')

        response = self.client.delete(self.url)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['data']['message'], 'Sensitive data deleted successfully')
        self.assertEqual(self.client.get(self.url).json()['data'], {})

        envelope = get_secure_storage().get_envelope(str(self.user.pk))
        self.assertEqual(envelope.email, 'jane@example.com')
        self.assertEqual(envelope.name, 'Jane')
        self.assertFalse(envelope.has_payload)

    def test_post_rejects_invalid_payload(self):
        self._login()
        payload = {'paymentMethods': [{'id': 'pm', 'type': 'credit_card', 'cardNumber': '4111111111111111'}]}
        response = self.client.post(self.url, data=payload, content_type='application/json')

        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body['error'], 'Invalid data format')
        self.assertTrue(body['details'])

    def test_post_rejects_non_object_bodies(self):
        self._login()
        for raw in ('not json', '[1, 2]', ''):
            with self.subTest(raw=raw):
                response = self.client.post(self.url, data=raw, content_type='application/json')
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json()['error'], 'Invalid data format')

    def test_patch_rejects_invalid_payload(self):
        self._login()
        response = self.client.patch(self.url, data={'ssn': 123}, content_type='application/json')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Invalid update format')

    def test_storage_failure_returns_500(self):
        self._login()
        with patch.object(
            SecureStorageService,
            'save_sensitive_data',
            side_effect=OperationFailedError('Failed to save sensitive user data'),
        ):
            response = self.client.post(self.url, data=SAMPLE_RECORD, content_type='application/json')

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {'success': False, 'error': 'Failed to save sensitive data'})

    def test_retrieval_failure_returns_500(self):
        self._login()
        with patch.object(
            SecureStorageService,
            'get_sensitive_data',
            side_effect=OperationFailedError('Failed to retrieve sensitive user data'),
        ):
            response = self.client.get(self.url)

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()['error'], 'Failed to retrieve sensitive data')

    @override_settings(VAULT_ENCRYPTION_KEY='')
    def test_missing_key_returns_generic_500(self):
        reset_secure_storage()
        self._login()
        with patch('vault.views.logger') as mock_logger:
            response = self.client.get(self.url)

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {'success': False, 'error': 'Internal server error'})
        mock_logger.exception.assert_called_once()
        mock_logger.critical.assert_called_once()

    def test_trailing_slash_is_accepted(self):
        self._login()
        response = self.client.get(self.url + '/')
        self.assertEqual(response.status_code, 200)


@override_settings(VAULT_ENCRYPTION_KEY=TEST_KEY, VAULT_STORAGE_BACKEND='memory')
class SensitiveDataCsrfTests(TestCase):
    url = '/api/user/sensitive-data'
    csrf_token = 'abcdefghijklmnopqrstuvwxyz012345'

    def setUp(self):
        reset_secure_storage()
        self.client = Client(enforce_csrf_checks=True)
        self.user = get_user_model().objects.create_user(email='jane@example.com', password='pw-123456789')

    def tearDown(self):
        reset_secure_storage()

    def test_unauthenticated_write_returns_401_before_csrf(self):
        for method in ('post', 'patch', 'delete'):
            with self.subTest(method=method):
                response = getattr(self.client, method)(self.url, data='{}', content_type='application/json')
                self.assertEqual(response.status_code, 401)
                self.assertEqual(response['Content-Type'], 'application/json')
                self.assertFalse(response.json()['success'])

    def test_authenticated_write_without_token_returns_json_403(self):
        self.client.force_login(self.user)
        for method in ('post', 'patch', 'delete'):
            with self.subTest(method=method):
                response = getattr(self.client, method)(self.url, data='{}', content_type='application/json')
                self.assertEqual(response.status_code, 403)
                self.assertEqual(response.json(), {'success': False, 'error': 'Forbidden: CSRF verification failed'})
        self.assertIsNone(get_secure_storage().get_envelope(str(self.user.pk)))

    def test_authenticated_write_with_token_succeeds(self):
        self.client.force_login(self.user)
        self.client.cookies[settings.CSRF_COOKIE_NAME] = self.csrf_token

        response = self.client.post(
            self.url,
            data=SAMPLE_RECORD,
            content_type='application/json',
            HTTP_X_CSRFTOKEN=self.csrf_token,
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(self.client.get(self.url).json()['data'], SAMPLE_RECORD)

    def test_safe_methods_need_no_token(self):
        self.client.force_login(self.user)
        self.assertEqual(self.client.get(self.url).status_code, 200)


class GenerateEncryptionKeyCommandTests(SimpleTestCase):
    def test_env_flag_prints_assignment_only(self):
        out = StringIO()
        call_command('generate_encryption_key', '--env', stdout=out)
        self.assertRegex(out.getvalue().strip(), r'^ENCRYPTION_KEY=[0-9a-f]{64}$')

    def test_default_output_includes_warning(self):
        out = StringIO()
        call_command('generate_encryption_key', stdout=out)
        output = out.getvalue()
        self.assertIn('=== SECURE ENCRYPTION KEY ===', output)
        self.assertIn('never commit it to version control', output)
        self.assertRegex(output, r'ENCRYPTION_KEY=[0-9a-f]{64}')
