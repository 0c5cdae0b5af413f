"""Typed shapes for sensitive records and the persisted per-user envelope."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from vault.exceptions import StorageError, ValidationError

CURRENT_ENCRYPTION_VERSION = "1.0"

PaymentMethodType = Literal["credit_card", "bank_account", "paypal", "other"]
LastFourDigits = Annotated[str, Field(pattern=r"^\d{4}$")]


def utc_now_iso() -> str:
    """Current UTC time as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class Address(_CamelModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = Field(default=None, alias="postalCode")
    country: Optional[str] = None


class PaymentMethod(_CamelModel):
    """Payment method metadata. Full card numbers and security codes are never accepted."""

    id: str
    type: PaymentMethodType
    last_four: Optional[LastFourDigits] = Field(default=None, alias="lastFour")
    holder_name: Optional[str] = Field(default=None, alias="holderName")
    expiry_date: Optional[str] = Field(default=None, alias="expiryDate")


class HealthInfo(_CamelModel):
    medical_conditions: Optional[List[str]] = Field(default=None, alias="medicalConditions")
    allergies: Optional[List[str]] = None
    medications: Optional[List[str]] = None


class SensitiveRecord(_CamelModel):
    """The plaintext bundle of sensitive fields. Every field is optional."""

    full_name: Optional[str] = Field(default=None, alias="fullName")
    date_of_birth: Optional[str] = Field(default=None, alias="dateOfBirth")
    ssn: Optional[str] = None
    national_id: Optional[str] = Field(default=None, alias="nationalId")
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")
    address: Optional[Address] = None
    payment_methods: Optional[List[PaymentMethod]] = Field(default=None, alias="paymentMethods")
    health_info: Optional[HealthInfo] = Field(default=None, alias="healthInfo")
    custom_fields: Optional[Dict[str, str]] = Field(default=None, alias="customFields")

    @classmethod
    def parse(cls, payload: Any) -> "SensitiveRecord":
        """Validate a loosely typed payload (e.g. a decoded request body)."""
        if not isinstance(payload, dict):
            raise ValidationError("Sensitive data must be a JSON object")
        try:
            return cls.model_validate(payload)
        except PydanticValidationError as exc:
            errors = [
                {"loc": list(error["loc"]), "msg": error["msg"], "type": error["type"]}
                for error in exc.errors()
            ]
            raise ValidationError("Sensitive data does not match the expected schema", errors=errors) from exc

    def to_document(self) -> Dict[str, Any]:
        """Fields that were explicitly set, keyed by their JSON names."""
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)

    def serialize(self) -> str:
        """Canonical JSON text for encryption."""
        return json.dumps(self.to_document(), sort_keys=True, separators=(",", ":"))

    @classmethod
    def deserialize(cls, text: str) -> "SensitiveRecord":
        try:
            payload = json.loads(text)
        except ValueError as exc:
            raise ValidationError("Decrypted sensitive data is not valid JSON") from exc
        return cls.parse(payload)

    def merged_with(self, updates: "SensitiveRecord") -> "SensitiveRecord":
        """Shallow merge: top-level fields set on ``updates`` replace ours wholesale."""
        merged = self.to_document()
        merged.update(updates.to_document())
        return SensitiveRecord.parse(merged)


class EncryptionMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    updated_at: str = Field(alias="updatedAt")
    # Written on every save; never consulted when decrypting.
    version: str = CURRENT_ENCRYPTION_VERSION


class UserProfile(BaseModel):
    """Profile fields the session exposes for a user."""

    email: str = ""
    name: Optional[str] = None
    image: Optional[str] = None


class StoredUserRecord(BaseModel):
    """The persisted envelope: profile fields plus an optional encrypted payload.

    Unknown keys found in a stored document are carried through rewrites.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    email: str = ""
    name: Optional[str] = None
    image: Optional[str] = None
    created_at: str = Field(alias="createdAt")
    updated_at: str = Field(alias="updatedAt")
    encrypted_data: Optional[str] = Field(default=None, alias="encryptedData")
    encryption_metadata: Optional[EncryptionMetadata] = Field(default=None, alias="encryptionMetadata")

    @model_validator(mode="after")
    def _payload_and_metadata_travel_together(self) -> "StoredUserRecord":
        if (self.encrypted_data is None) != (self.encryption_metadata is None):
            raise ValueError("encryptedData and encryptionMetadata must be both present or both absent")
        return self

    @property
    def has_payload(self) -> bool:
        return bool(self.encrypted_data)

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "StoredUserRecord":
        try:
            return cls.model_validate(document)
        except PydanticValidationError as exc:
            raise StorageError(f"Stored envelope is malformed: {exc.error_count()} validation error(s)") from exc

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
