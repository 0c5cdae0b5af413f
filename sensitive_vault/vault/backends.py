"""Key-value backends that persist one envelope document per user id."""

from __future__ import annotations

import copy
import json
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.db import DatabaseError

from core.logging_utils import get_vault_logger
from vault.exceptions import StorageError

logger = get_vault_logger()

ENVELOPE_FILE_SUFFIX = ".json"


class BaseEnvelopeBackend:
    """Interface for envelope storage: whole-document ``get`` and ``put`` by key."""

    def get(self, key: str) -> Optional[Dict[str, Any]]:  # pragma: no cover - abstract
        raise NotImplementedError

    def put(self, key: str, value: Dict[str, Any]) -> None:  # pragma: no cover - abstract
        raise NotImplementedError


def validate_key(key: str) -> str:
    """Reject keys that cannot safely name a single entry."""

    if not isinstance(key, str) or not key:
        raise StorageError("Storage key must be a non-empty string")
    if key in (".", "..") or "/" in key or "\\" in key or "\x00" in key:
        raise StorageError("Storage key contains forbidden characters")
    return key


class FileEnvelopeBackend(BaseEnvelopeBackend):
    """One pretty-printed JSON file per key inside a single flat directory."""

    def __init__(self, directory: os.PathLike | str):
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        return self.directory / f"{validate_key(key)}{ENVELOPE_FILE_SUFFIX}"

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        path = self.path_for(key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.error("Failed to read envelope file", extra_data={"key": key, "error": exc.__class__.__name__})
            raise StorageError("Failed to read user data") from exc

        try:
            document = json.loads(raw)
        except ValueError as exc:
            logger.error("Envelope file is not valid JSON", extra_data={"key": key})
            raise StorageError("Stored user data is corrupted") from exc
        if not isinstance(document, dict):
            raise StorageError("Stored user data is corrupted")
        return document

    def put(self, key: str, value: Dict[str, Any]) -> None:
        path = self.path_for(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(value, indent=2), encoding="utf-8")
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Failed to write envelope file", extra_data={"key": key, "error": exc.__class__.__name__})
            raise StorageError("Failed to save user data") from exc


class DatabaseEnvelopeBackend(BaseEnvelopeBackend):
    """Envelope documents kept in the ``StoredEnvelope`` table."""

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        from vault.models import StoredEnvelope

        validate_key(key)
        try:
            row = StoredEnvelope.objects.filter(key=key).only("document").first()
        except DatabaseError as exc:
            logger.error("Failed to read envelope row", extra_data={"key": key, "error": exc.__class__.__name__})
            raise StorageError("Failed to read user data") from exc
        if row is None:
            return None
        if not isinstance(row.document, dict):
            raise StorageError("Stored user data is corrupted")
        return row.document

    def put(self, key: str, value: Dict[str, Any]) -> None:
        from vault.models import StoredEnvelope

        validate_key(key)
        try:
            StoredEnvelope.objects.update_or_create(key=key, defaults={"document": value})
        except DatabaseError as exc:
            logger.error("Failed to write envelope row", extra_data={"key": key, "error": exc.__class__.__name__})
            raise StorageError("Failed to save user data") from exc


class InMemoryEnvelopeBackend(BaseEnvelopeBackend):
    """Process-local dictionary backend for tests and tooling."""

    def __init__(self):
        self._documents: Dict[str, Dict[str, Any]] = {}

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        document = self._documents.get(validate_key(key))
        return copy.deepcopy(document) if document is not None else None

    def put(self, key: str, value: Dict[str, Any]) -> None:
        self._documents[validate_key(key)] = copy.deepcopy(value)

    def keys(self):
        return list(self._documents)


_backend_instance: Optional[BaseEnvelopeBackend] = None
_backend_lock = threading.Lock()


def _build_backend() -> BaseEnvelopeBackend:
    backend_name = (getattr(settings, "VAULT_STORAGE_BACKEND", "file") or "file").lower()

    if backend_name == "file":
        directory = getattr(settings, "VAULT_STORAGE_DIR", None)
        if not directory:
            raise ImproperlyConfigured("VAULT_STORAGE_DIR must be configured for the file backend")
        return FileEnvelopeBackend(directory)
    if backend_name == "database":
        return DatabaseEnvelopeBackend()
    if backend_name == "memory":
        logger.warning("Using in-memory envelope backend; data is lost on restart")
        return InMemoryEnvelopeBackend()

    raise ImproperlyConfigured(f"Unknown VAULT_STORAGE_BACKEND: {backend_name}")


def get_envelope_backend() -> BaseEnvelopeBackend:
    """Return a singleton envelope backend selected by settings."""

    global _backend_instance
    if _backend_instance is not None:
        return _backend_instance

    with _backend_lock:
        if _backend_instance is None:
            _backend_instance = _build_backend()
    return _backend_instance


def reset_envelope_backend() -> None:
    global _backend_instance
    with _backend_lock:
        _backend_instance = None
