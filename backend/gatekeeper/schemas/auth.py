# backend/gatekeeper/schemas/auth.py
from pydantic import BaseModel, EmailStr, Field


class Token(BaseModel):
    """
    Represents the token response provided to the client upon successful authentication.
    """

    access_token: str
    token_type: str = "bearer"


class SecondFactorChallenge(BaseModel):
    """Returned by login when a second factor is still required."""

    requires_second_factor: bool = True
    pending_login_id: str
    methods: list[str]


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)


class EmailRequest(BaseModel):
    email: EmailStr


class VerifyEmailRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=128)


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=128)
    password: str = Field(..., min_length=8, max_length=128)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, max_length=128)


class SecondFactorVerifyRequest(BaseModel):
    """Request to verify TOTP or a backup code during login."""

    pending_login_id: str = Field(..., min_length=1)
    code: str = Field(..., min_length=6, max_length=12, description="TOTP or backup code")
    trust_device: bool = Field(default=False, description="Remember this device for 30 days")


class PendingLoginRequest(BaseModel):
    pending_login_id: str = Field(..., min_length=1)


class MessageResponse(BaseModel):
    message: str
