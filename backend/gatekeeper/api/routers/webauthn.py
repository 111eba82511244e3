# backend/gatekeeper/api/routers/webauthn.py
"""
WebAuthn credential management for the signed-in user.

Registers passkeys and second-factor security keys, lists, renames and
deletes them. Login ceremonies live in the auth router.
"""

import logging
import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.api.deps import get_ephemeral_store
from gatekeeper.core.users import current_active_user
from gatekeeper.db.models.user import User
from gatekeeper.db.session import get_async_session
from gatekeeper.schemas.webauthn import (
    CeremonyOptionsResponse,
    CredentialRead,
    CredentialRenameRequest,
    RegisteredCredentialResponse,
    RegistrationOptionsRequest,
    RegistrationVerifyRequest,
)
from gatekeeper.services import auth_service
from gatekeeper.services.ephemeral_store import EphemeralStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/webauthn", tags=["WebAuthn - Credentials"])


@router.post("/register/options", response_model=CeremonyOptionsResponse)
async def registration_options(
    body: RegistrationOptionsRequest,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
    store: EphemeralStore = Depends(get_ephemeral_store),
):
    start = await auth_service.begin_webauthn_registration(db, store, user, body.is_passkey)
    return CeremonyOptionsResponse(ceremony_id=start.ceremony_id, options=start.options)


@router.post(
    "/register/verify",
    response_model=RegisteredCredentialResponse,
    status_code=status.HTTP_201_CREATED,
)
async def registration_verify(
    body: RegistrationVerifyRequest,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
    store: EphemeralStore = Depends(get_ephemeral_store),
):
    registered = await auth_service.complete_webauthn_registration(
        db, store, user, body.ceremony_id, body.credential, name=body.name
    )
    return RegisteredCredentialResponse(
        credential=CredentialRead.model_validate(registered.credential),
        backup_codes=registered.backup_codes,
    )


@router.get("/credentials", response_model=list[CredentialRead])
async def list_credentials(
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    return await auth_service.list_webauthn_credentials(db, user)


@router.put("/credentials/{credential_id}/name", response_model=CredentialRead)
async def rename_credential(
    credential_id: uuid.UUID,
    body: CredentialRenameRequest,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    return await auth_service.rename_webauthn_credential(db, user, credential_id, body.name)


@router.delete("/credentials/{credential_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_credential(
    credential_id: uuid.UUID,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    await auth_service.delete_webauthn_credential(db, user, credential_id)
