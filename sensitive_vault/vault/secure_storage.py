"""
Secure storage service for a user's sensitive information.

Each user id maps to one envelope document in the configured backend. The
sensitive record is serialized, encrypted with the process cipher and kept in
the envelope's ``encryptedData`` field; profile fields live beside it in the
clear.

Every operation is a read-modify-write of the whole envelope without locking:
two concurrent writers for the same user race and the last write wins.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, Optional

from core.logging_utils import get_vault_logger
from vault.backends import BaseEnvelopeBackend, get_envelope_backend, reset_envelope_backend
from vault.crypto_utils import SensitiveDataCipher, get_cipher, reset_cipher
from vault.exceptions import OperationFailedError, StorageError, VaultError
from vault.schemas import (
    CURRENT_ENCRYPTION_VERSION,
    SensitiveRecord,
    StoredUserRecord,
    UserProfile,
    utc_now_iso,
)

logger = get_vault_logger()


class SecureStorageService:
    """Create, read, update and delete the encrypted sensitive record of a user."""

    def __init__(
        self,
        cipher: SensitiveDataCipher,
        backend: BaseEnvelopeBackend,
        clock: Optional[Callable[[], str]] = None,
    ):
        self.cipher = cipher
        self.backend = backend
        self._clock = clock or utc_now_iso

    # Envelope primitives

    def get_envelope(self, user_id: str) -> Optional[StoredUserRecord]:
        """Return the persisted envelope for ``user_id`` or None if there is none."""

        document = self.backend.get(str(user_id))
        if document is None:
            return None
        return StoredUserRecord.from_document(document)

    def _write_envelope(self, user_id: str, document: Dict[str, Any]) -> StoredUserRecord:
        try:
            envelope = StoredUserRecord.model_validate(document)
        except ValueError as exc:
            raise StorageError("Refusing to write an invalid envelope") from exc
        self.backend.put(str(user_id), envelope.to_document())
        return envelope

    # Record operations

    def save_sensitive_data(
        self,
        user_id: str,
        record: SensitiveRecord,
        profile: Optional[UserProfile] = None,
    ) -> StoredUserRecord:
        """
        Encrypt ``record`` and store it as the user's sensitive data, replacing any previous one.

        Args:
            user_id: Identifier of the authenticated user
            record: The sensitive data to store
            profile: Session profile fields; used only where the envelope has none

        Returns:
            The envelope as written

        Raises:
            OperationFailedError: wrapping the underlying cipher or storage error
        """
        user_id = str(user_id)
        try:
            existing = self.get_envelope(user_id)
            encrypted_data = self.cipher.encrypt(record.serialize())
            now = self._clock()

            document = existing.to_document() if existing else {}
            document.update({
                'id': user_id,
                'email': existing.email if existing else '',
                'createdAt': existing.created_at if existing else now,
                'updatedAt': now,
                'encryptedData': encrypted_data,
                'encryptionMetadata': {
                    'updatedAt': now,
                    'version': CURRENT_ENCRYPTION_VERSION,
                },
            })
            # Stored profile fields are preserved; the session only fills gaps.
            if profile is not None:
                for field in ('email', 'name', 'image'):
                    value = getattr(profile, field)
                    if value and not document.get(field):
                        document[field] = value

            envelope = self._write_envelope(user_id, document)
            logger.encryption_event("sensitive data saved", user_id, success=True)
            return envelope

        except VaultError as e:
            logger.encryption_event(
                "sensitive data save failed", user_id, success=False,
                extra_data={"error_type": type(e).__name__},
            )
            raise OperationFailedError("Failed to save sensitive user data") from e

    def get_sensitive_data(self, user_id: str) -> Optional[SensitiveRecord]:
        """
        Decrypt and return the user's sensitive data.

        Returns None when the user has no envelope or the envelope carries no
        encrypted payload; that is a normal state, not an error.
        """
        user_id = str(user_id)
        try:
            envelope = self.get_envelope(user_id)
            if envelope is None or not envelope.has_payload:
                return None

            plaintext = self.cipher.decrypt(envelope.encrypted_data)
            return SensitiveRecord.deserialize(plaintext)

        except VaultError as e:
            logger.encryption_event(
                "sensitive data retrieval failed", user_id, success=False,
                extra_data={"error_type": type(e).__name__},
            )
            raise OperationFailedError("Failed to retrieve sensitive user data") from e

    def update_sensitive_data(
        self,
        user_id: str,
        updates: SensitiveRecord,
        profile: Optional[UserProfile] = None,
    ) -> StoredUserRecord:
        """
        Merge ``updates`` over the stored record and save the result.

        Only top-level fields present in ``updates`` change; a nested value such
        as ``address`` is replaced as a whole. A missing record counts as empty.
        """
        user_id = str(user_id)
        try:
            current = self.get_sensitive_data(user_id) or SensitiveRecord()
            merged = current.merged_with(updates)
        except OperationFailedError as e:
            logger.error("Failed to update sensitive user data", user_id)
            raise OperationFailedError("Failed to update sensitive user data") from e.__cause__
        except VaultError as e:
            logger.error("Failed to update sensitive user data", user_id, extra_data={"error_type": type(e).__name__})
            raise OperationFailedError("Failed to update sensitive user data") from e

        try:
            return self.save_sensitive_data(user_id, merged, profile=profile)
        except OperationFailedError as e:
            logger.error("Failed to update sensitive user data", user_id)
            raise OperationFailedError("Failed to update sensitive user data") from e.__cause__

    def delete_sensitive_data(self, user_id: str) -> bool:
        """
        Remove the encrypted payload while keeping the envelope and its profile fields.

        Returns True when an envelope existed, False when there was nothing to do.
        """
        user_id = str(user_id)
        try:
            existing = self.get_envelope(user_id)
            if existing is None:
                return False

            document = existing.to_document()
            document.pop('encryptedData', None)
            document.pop('encryptionMetadata', None)
            document['updatedAt'] = self._clock()

            self._write_envelope(user_id, document)
            logger.encryption_event("sensitive data deleted", user_id, success=True)
            return True

        except VaultError as e:
            logger.encryption_event(
                "sensitive data deletion failed", user_id, success=False,
                extra_data={"error_type": type(e).__name__},
            )
            raise OperationFailedError("Failed to delete sensitive user data") from e


_service_instance: Optional[SecureStorageService] = None
_service_lock = threading.Lock()


def get_secure_storage() -> SecureStorageService:
    """Return a singleton storage service wired to the configured cipher and backend."""

    global _service_instance
    if _service_instance is not None:
        return _service_instance

    with _service_lock:
        if _service_instance is None:
            _service_instance = SecureStorageService(get_cipher(), get_envelope_backend())
    return _service_instance


def reset_secure_storage() -> None:
    """Drop the cached service, cipher and backend so settings are re-read."""

    global _service_instance
    with _service_lock:
        _service_instance = None
    reset_cipher()
    reset_envelope_backend()
