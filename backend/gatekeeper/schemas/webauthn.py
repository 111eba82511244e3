# backend/gatekeeper/schemas/webauthn.py
import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from webauthn.helpers import bytes_to_base64url


class CeremonyOptionsResponse(BaseModel):
    """Options for navigator.credentials.create() / get(), plus the ceremony handle."""

    ceremony_id: str
    options: dict[str, Any]


class RegistrationOptionsRequest(BaseModel):
    is_passkey: bool = False


class RegistrationVerifyRequest(BaseModel):
    ceremony_id: str = Field(..., min_length=1)
    credential: dict[str, Any] = Field(..., description="PublicKeyCredential JSON from the browser")
    name: str | None = Field(default=None, max_length=255)


class SecondFactorWebAuthnVerifyRequest(BaseModel):
    pending_login_id: str = Field(..., min_length=1)
    ceremony_id: str = Field(..., min_length=1)
    credential: dict[str, Any]
    trust_device: bool = False


class PasskeyLoginVerifyRequest(BaseModel):
    ceremony_id: str = Field(..., min_length=1)
    credential: dict[str, Any]


class CredentialRenameRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)


class CredentialRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    credential_id: bytes
    name: str | None
    is_passkey: bool
    transports: list[str] | None
    aaguid: str | None
    backup_eligible: bool
    backup_state: bool
    created_at: datetime
    last_used_at: datetime | None

    @field_serializer("credential_id")
    def serialize_credential_id(self, value: bytes) -> str:
        return bytes_to_base64url(value)


class RegisteredCredentialResponse(BaseModel):
    credential: CredentialRead
    backup_codes: list[str] = Field(
        default_factory=list, description="Set when the first security key provisioned codes"
    )
