# backend/gatekeeper/api/routers/auth.py
"""
Authentication endpoints.

Provides endpoints for:
- Registration, email verification and password reset
- Password login followed by an optional second factor (code or WebAuthn key)
- Passwordless passkey login

Every successful sign-in returns a bearer access token. The trusted-device
cookie is the only cookie this router sets.
"""

import logging

from fastapi import APIRouter, Cookie, Depends, Request, Response, status
from fastapi.security import OAuth2PasswordRequestForm
from fastapi_users.authentication import JWTStrategy
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.api.deps import get_ephemeral_store
from gatekeeper.core.config import settings
from gatekeeper.core.rate_limit import get_client_ip, limiter
from gatekeeper.core.users import current_active_user, get_access_token_jwt_strategy
from gatekeeper.db.models.user import User
from gatekeeper.db.session import get_async_session
from gatekeeper.schemas.auth import (
    ChangePasswordRequest,
    EmailRequest,
    MessageResponse,
    PendingLoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    SecondFactorChallenge,
    SecondFactorVerifyRequest,
    Token,
    VerifyEmailRequest,
)
from gatekeeper.schemas.user import UserRead
from gatekeeper.schemas.webauthn import (
    CeremonyOptionsResponse,
    PasskeyLoginVerifyRequest,
    SecondFactorWebAuthnVerifyRequest,
)
from gatekeeper.services import auth_service
from gatekeeper.services.auth_service import FullySignedIn
from gatekeeper.services.ephemeral_store import EphemeralStore
from gatekeeper.services.trusted_device_service import set_trusted_device_cookie

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth - Authentication"])

# Same body whatever the account state, so responses reveal nothing
REGISTER_MESSAGE = "If the address can be registered, a verification email has been sent."
RESEND_MESSAGE = "If the account needs verification, a new email has been sent."
FORGOT_MESSAGE = "If the account exists, a password reset email has been sent."


async def _token_response(
    result: FullySignedIn, response: Response, strategy: JWTStrategy
) -> Token:
    if result.trusted_device_token:
        set_trusted_device_cookie(response, result.trusted_device_token)
    access_token = await strategy.write_token(result.identity)
    return Token(access_token=access_token)


# --- Registration & verification ---


@router.post("/register", response_model=MessageResponse, status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(settings.LOGIN_RATE_LIMIT)
async def register(
    request: Request,
    body: RegisterRequest,
    db: AsyncSession = Depends(get_async_session),
):
    await auth_service.register(db, body.email, body.password)
    return MessageResponse(message=REGISTER_MESSAGE)


@router.post("/verify-email", response_model=MessageResponse)
async def verify_email(
    request: Request,
    body: VerifyEmailRequest,
    db: AsyncSession = Depends(get_async_session),
):
    identity = await auth_service.verify_email(db, body.token, ip=get_client_ip(request))
    logger.info("Email verified for user %s.", identity.id)
    return MessageResponse(message="Email verified.")


@router.post(
    "/resend-verification", response_model=MessageResponse, status_code=status.HTTP_202_ACCEPTED
)
@limiter.limit(settings.LOGIN_RATE_LIMIT)
async def resend_verification(
    request: Request,
    body: EmailRequest,
    db: AsyncSession = Depends(get_async_session),
):
    await auth_service.resend_verification(db, body.email)
    return MessageResponse(message=RESEND_MESSAGE)


# --- Password reset ---


@router.post("/forgot-password", response_model=MessageResponse, status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(settings.LOGIN_RATE_LIMIT)
async def forgot_password(
    request: Request,
    body: EmailRequest,
    db: AsyncSession = Depends(get_async_session),
):
    await auth_service.request_password_reset(db, body.email)
    return MessageResponse(message=FORGOT_MESSAGE)


@router.post("/reset-password", response_model=MessageResponse)
@limiter.limit(settings.LOGIN_RATE_LIMIT)
async def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    db: AsyncSession = Depends(get_async_session),
):
    await auth_service.reset_password(db, body.token, body.password, ip=get_client_ip(request))
    return MessageResponse(message="Password has been reset.")


# --- Login ---


@router.post("/login", response_model=Token | SecondFactorChallenge, summary="Password login")
@limiter.limit(settings.LOGIN_RATE_LIMIT)
async def login(
    request: Request,
    response: Response,
    credentials: OAuth2PasswordRequestForm = Depends(),
    trusted_cookie: str | None = Cookie(default=None, alias=settings.TRUSTED_DEVICE_COOKIE_NAME),
    db: AsyncSession = Depends(get_async_session),
    store: EphemeralStore = Depends(get_ephemeral_store),
    strategy: JWTStrategy = Depends(get_access_token_jwt_strategy),
):
    result = await auth_service.login(
        db,
        store,
        credentials.username,
        credentials.password,
        trusted_cookie=trusted_cookie,
        ip=get_client_ip(request),
    )
    if isinstance(result, FullySignedIn):
        return await _token_response(result, response, strategy)
    return SecondFactorChallenge(
        pending_login_id=result.pending_login_id,
        methods=[m.value for m in result.methods],
    )


@router.post("/2fa/verify", response_model=Token)
@limiter.limit(settings.SECOND_FACTOR_RATE_LIMIT)
async def verify_second_factor(
    request: Request,
    response: Response,
    body: SecondFactorVerifyRequest,
    db: AsyncSession = Depends(get_async_session),
    store: EphemeralStore = Depends(get_ephemeral_store),
    strategy: JWTStrategy = Depends(get_access_token_jwt_strategy),
):
    result = await auth_service.verify_second_factor(
        db,
        store,
        body.pending_login_id,
        body.code,
        trust_requested=body.trust_device,
        ip=get_client_ip(request),
    )
    return await _token_response(result, response, strategy)


@router.post("/2fa/webauthn/options", response_model=CeremonyOptionsResponse)
@limiter.limit(settings.SECOND_FACTOR_RATE_LIMIT)
async def second_factor_webauthn_options(
    request: Request,
    body: PendingLoginRequest,
    db: AsyncSession = Depends(get_async_session),
    store: EphemeralStore = Depends(get_ephemeral_store),
):
    start = await auth_service.begin_second_factor_webauthn(db, store, body.pending_login_id)
    return CeremonyOptionsResponse(ceremony_id=start.ceremony_id, options=start.options)


@router.post("/2fa/webauthn/verify", response_model=Token)
@limiter.limit(settings.SECOND_FACTOR_RATE_LIMIT)
async def second_factor_webauthn_verify(
    request: Request,
    response: Response,
    body: SecondFactorWebAuthnVerifyRequest,
    db: AsyncSession = Depends(get_async_session),
    store: EphemeralStore = Depends(get_ephemeral_store),
    strategy: JWTStrategy = Depends(get_access_token_jwt_strategy),
):
    result = await auth_service.complete_second_factor_webauthn(
        db,
        store,
        body.pending_login_id,
        body.ceremony_id,
        body.credential,
        trust_requested=body.trust_device,
        ip=get_client_ip(request),
    )
    return await _token_response(result, response, strategy)


# --- Passkey login ---


@router.post("/passkey/options", response_model=CeremonyOptionsResponse)
@limiter.limit(settings.SECOND_FACTOR_RATE_LIMIT)
async def passkey_options(
    request: Request,
    db: AsyncSession = Depends(get_async_session),
    store: EphemeralStore = Depends(get_ephemeral_store),
):
    start = await auth_service.begin_passkey_login(db, store)
    return CeremonyOptionsResponse(ceremony_id=start.ceremony_id, options=start.options)


@router.post("/passkey/verify", response_model=Token)
@limiter.limit(settings.SECOND_FACTOR_RATE_LIMIT)
async def passkey_verify(
    request: Request,
    response: Response,
    body: PasskeyLoginVerifyRequest,
    db: AsyncSession = Depends(get_async_session),
    store: EphemeralStore = Depends(get_ephemeral_store),
    strategy: JWTStrategy = Depends(get_access_token_jwt_strategy),
):
    result = await auth_service.complete_passkey_login(
        db, store, body.ceremony_id, body.credential, ip=get_client_ip(request)
    )
    return await _token_response(result, response, strategy)


# --- Signed-in user ---


@router.patch("/password", response_model=MessageResponse)
async def change_password(
    body: ChangePasswordRequest,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    await auth_service.change_password(db, user, body.current_password, body.new_password)
    return MessageResponse(message="Password changed.")


@router.get("/me", response_model=UserRead)
async def read_me(user: User = Depends(current_active_user)):
    return user
