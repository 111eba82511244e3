# backend/gatekeeper/schemas/mfa.py
from pydantic import BaseModel, Field


class MfaStatusResponse(BaseModel):
    """Second factor status for the current user."""

    second_factor_enabled: bool
    totp_enabled: bool
    backup_codes_remaining: int
    security_keys: int
    passkeys: int


class TotpSetupResponse(BaseModel):
    secret: str = Field(..., description="TOTP secret for manual entry")
    provisioning_uri: str = Field(..., description="otpauth:// URI")
    qr_code: str = Field(..., description="QR code as a PNG data URI")


class TotpEnableRequest(BaseModel):
    code: str = Field(..., min_length=6, max_length=8, description="TOTP code from authenticator")


class PasswordConfirmRequest(BaseModel):
    """Current password, required for destructive second factor changes."""

    password: str = Field(..., min_length=1)


class BackupCodesResponse(BaseModel):
    """Codes are shown exactly once."""

    backup_codes: list[str]


class TrustedDevicesRevokedResponse(BaseModel):
    trusted_epoch: int
