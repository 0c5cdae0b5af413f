"""Custom exceptions for the vault domain."""

from typing import Any, List, Optional


class VaultError(Exception):
    """Base exception for the sensitive data vault."""


class CryptoError(VaultError):
    """Base exception for cryptographic operations."""

    def __init__(self, message: str, *, recoverable: Optional[bool] = None):
        super().__init__(message)
        self.recoverable = recoverable


class ConfigurationError(CryptoError):
    """The encryption key is missing or unusable."""


class MalformedTokenError(CryptoError):
    """An encrypted token does not have the ``iv:ciphertext:authTag`` hex shape."""


class AuthenticationError(CryptoError):
    """AEAD tag verification failed: wrong key, corruption or tampering."""


class StorageError(VaultError):
    """Reading or writing a persisted envelope failed."""


class ValidationError(VaultError):
    """An inbound payload does not match the sensitive record schema."""

    def __init__(self, message: str, *, errors: Optional[List[Any]] = None):
        super().__init__(message)
        self.errors = errors or []


class OperationFailedError(VaultError):
    """A record store operation failed; the original error is on ``__cause__``."""
