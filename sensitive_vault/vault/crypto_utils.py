"""Cryptographic utilities for the sensitive data vault."""

from __future__ import annotations

import hashlib
import hmac
import os
import re
import threading
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from django.conf import settings

from core.logging_utils import get_security_logger
from vault.exceptions import AuthenticationError, ConfigurationError, MalformedTokenError

logger = get_security_logger()

KEY_LENGTH = 32
IV_LENGTH = 16
TAG_LENGTH = 16
TOKEN_SEPARATOR = ":"

PBKDF2_ITERATIONS = 10000
PBKDF2_KEY_LENGTH = 64
PBKDF2_DIGEST = "sha512"
SALT_LENGTH = 16

_HEX_RE = re.compile(r"\A(?:[0-9a-fA-F]{2})+\Z")


@dataclass(frozen=True)
class PasswordHash:
    """Hex-encoded PBKDF2 hash together with the salt that produced it."""

    hash: str
    salt: str


def _decode_segment(segment: str, name: str) -> bytes:
    if not segment or not _HEX_RE.match(segment):
        raise MalformedTokenError(f"Invalid encrypted data format: {name} is not valid hex")
    return bytes.fromhex(segment)


def parse_token(token: str) -> tuple[bytes, bytes, bytes]:
    """Split a token into ``(iv, ciphertext, tag)`` bytes without touching the cipher."""

    if not isinstance(token, str):
        raise MalformedTokenError("Invalid encrypted data format: token must be a string")

    parts = token.split(TOKEN_SEPARATOR)
    if len(parts) != 3:
        raise MalformedTokenError("Invalid encrypted data format: expected iv:ciphertext:authTag")

    iv = _decode_segment(parts[0], "iv")
    ciphertext = _decode_segment(parts[1], "ciphertext")
    tag = _decode_segment(parts[2], "authTag")

    if len(iv) != IV_LENGTH:
        raise MalformedTokenError(f"Invalid encrypted data format: iv must be {IV_LENGTH} bytes")
    if len(tag) != TAG_LENGTH:
        raise MalformedTokenError(f"Invalid encrypted data format: authTag must be {TAG_LENGTH} bytes")
    return iv, ciphertext, tag


class SensitiveDataCipher:
    """AES-256-GCM transform between plaintext strings and ``iv:ciphertext:authTag`` tokens.

    The key is supplied once at construction time; instances hold no other state
    and are safe to share between threads.
    """

    def __init__(self, key: bytes):
        if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LENGTH:
            raise ConfigurationError("Encryption key must be 32 bytes for AES-256", recoverable=False)
        self._aesgcm = AESGCM(bytes(key))

    @classmethod
    def from_hex(cls, key_hex: Optional[str]) -> "SensitiveDataCipher":
        """Build a cipher from a 64 character hex key."""

        if not key_hex:
            raise ConfigurationError("ENCRYPTION_KEY environment variable is not set", recoverable=False)
        key_hex = key_hex.strip()
        if len(key_hex) != KEY_LENGTH * 2 or not _HEX_RE.match(key_hex):
            raise ConfigurationError("ENCRYPTION_KEY must be 64 hex characters (256 bits)", recoverable=False)
        return cls(bytes.fromhex(key_hex))

    @classmethod
    def from_settings(cls) -> "SensitiveDataCipher":
        """Build a cipher from ``settings.VAULT_ENCRYPTION_KEY``."""

        return cls.from_hex(getattr(settings, "VAULT_ENCRYPTION_KEY", None))

    def encrypt(self, plaintext: str) -> str:
        """Encrypt ``plaintext`` under a fresh random IV."""

        iv = os.urandom(IV_LENGTH)
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return TOKEN_SEPARATOR.join((iv.hex(), ciphertext.hex(), tag.hex()))

    def decrypt(self, token: str) -> str:
        """Verify and decrypt a token produced by :meth:`encrypt`."""

        iv, ciphertext, tag = parse_token(token)
        try:
            plaintext = self._aesgcm.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as exc:
            logger.error(
                "AEAD authentication failed",
                extra_data={"iv_length": len(iv), "ciphertext_length": len(ciphertext)},
            )
            raise AuthenticationError("Authentication failed - data may be corrupted or tampered with") from exc

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise AuthenticationError("Decrypted payload is not valid UTF-8") from exc


def generate_encryption_key() -> str:
    """Generate a random 256-bit key as a hex string."""

    return os.urandom(KEY_LENGTH).hex()


def hash_password(password: str, salt: Optional[str] = None) -> PasswordHash:
    """Hash a password with PBKDF2-HMAC-SHA512.

    The hex salt string itself is the PBKDF2 salt input, so hashes stay
    comparable with ones produced by other implementations of the same scheme.
    """

    salt = salt or os.urandom(SALT_LENGTH).hex()
    derived = hashlib.pbkdf2_hmac(
        PBKDF2_DIGEST,
        password.encode("utf-8"),
        salt.encode("utf-8"),
        PBKDF2_ITERATIONS,
        PBKDF2_KEY_LENGTH,
    )
    return PasswordHash(hash=derived.hex(), salt=salt)


def verify_password(password: str, password_hash: str, salt: str) -> bool:
    """Return True if ``password`` hashes to ``password_hash`` under ``salt``."""

    calculated = hash_password(password, salt).hash
    return hmac.compare_digest(calculated, password_hash)


_cipher_instance: Optional[SensitiveDataCipher] = None
_cipher_lock = threading.Lock()


def get_cipher() -> SensitiveDataCipher:
    """Return a singleton cipher configured from settings."""

    global _cipher_instance
    if _cipher_instance is not None:
        return _cipher_instance

    with _cipher_lock:
        if _cipher_instance is None:
            _cipher_instance = SensitiveDataCipher.from_settings()
    return _cipher_instance


def reset_cipher() -> None:
    """Forget the cached cipher so the next call re-reads settings."""

    global _cipher_instance
    with _cipher_lock:
        _cipher_instance = None
