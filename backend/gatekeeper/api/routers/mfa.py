# backend/gatekeeper/api/routers/mfa.py
"""
Second factor management for the signed-in user.

Provides endpoints for:
- Setting up and removing TOTP
- Regenerating backup codes
- Revoking every trusted device
"""

import logging

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.api.deps import get_ephemeral_store
from gatekeeper.core.users import current_active_user
from gatekeeper.db.models.user import User
from gatekeeper.db.session import get_async_session
from gatekeeper.schemas.auth import MessageResponse
from gatekeeper.schemas.mfa import (
    BackupCodesResponse,
    MfaStatusResponse,
    PasswordConfirmRequest,
    TotpEnableRequest,
    TotpSetupResponse,
    TrustedDevicesRevokedResponse,
)
from gatekeeper.services import auth_service
from gatekeeper.services.ephemeral_store import EphemeralStore
from gatekeeper.services.trusted_device_service import clear_trusted_device_cookie

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/mfa", tags=["MFA - Multi-Factor Authentication"])


@router.get("/status", response_model=MfaStatusResponse)
async def get_mfa_status(
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    status = await auth_service.get_mfa_status(db, user)
    return MfaStatusResponse(**status.__dict__)


@router.post("/totp/setup", response_model=TotpSetupResponse)
async def setup_totp(
    user: User = Depends(current_active_user),
    store: EphemeralStore = Depends(get_ephemeral_store),
):
    """
    Start TOTP setup.

    The secret is staged server side; it only becomes active once
    /totp/enable confirms a code from the authenticator app.
    """
    setup = await auth_service.begin_totp_setup(store, user)
    return TotpSetupResponse(
        secret=setup.secret,
        provisioning_uri=setup.provisioning_uri,
        qr_code=setup.qr_code,
    )


@router.post("/totp/enable", response_model=BackupCodesResponse)
async def enable_totp(
    body: TotpEnableRequest,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
    store: EphemeralStore = Depends(get_ephemeral_store),
):
    codes = await auth_service.enable_totp(db, store, user, body.code)
    return BackupCodesResponse(backup_codes=codes)


@router.post("/totp/disable", response_model=MessageResponse)
async def disable_totp(
    body: PasswordConfirmRequest,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    await auth_service.disable_totp(db, user, body.password)
    return MessageResponse(message="TOTP disabled.")


@router.post("/backup-codes", response_model=BackupCodesResponse)
async def regenerate_backup_codes(
    body: PasswordConfirmRequest,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    codes = await auth_service.regenerate_backup_codes(db, user, body.password)
    return BackupCodesResponse(backup_codes=codes)


@router.post("/trusted-devices/revoke", response_model=TrustedDevicesRevokedResponse)
async def revoke_trusted_devices(
    response: Response,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    epoch = await auth_service.revoke_trusted_devices(db, user)
    clear_trusted_device_cookie(response)
    return TrustedDevicesRevokedResponse(trusted_epoch=epoch)
