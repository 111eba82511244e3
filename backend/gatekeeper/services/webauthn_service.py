# backend/gatekeeper/services/webauthn_service.py
"""
WebAuthn ceremonies for security keys and passkeys.

Provides functions for:
- Generating creation options and verifying registration responses
- Generating request options and verifying assertions (passkey login and
  second-factor mode)
- Managing a user's credentials (list, rename, delete)

Attestation and assertion verification are delegated to py_webauthn. This
module owns the policy around it: which credentials are allowed, challenge
binding, owner checks and the signature counter.

A ceremony is ChallengeIssued -> ResponseVerified or ChallengeIssued -> Failed.
Challenges are consumed by the caller before completion, so a response can
never be verified twice.
"""

import enum
import json
import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from webauthn import (
    generate_authentication_options,
    generate_registration_options,
    options_to_json,
    verify_authentication_response,
    verify_registration_response,
)
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url
from webauthn.helpers.cose import COSEAlgorithmIdentifier
from webauthn.helpers.exceptions import WebAuthnException
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AuthenticatorSelectionCriteria,
    AuthenticatorTransport,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from gatekeeper import crud
from gatekeeper.core.config import settings
from gatekeeper.core.security_logger import security_log
from gatekeeper.db.models.user import User
from gatekeeper.db.models.webauthn_credential import WebAuthnCredential
from gatekeeper.exceptions import (
    AssertionFailed,
    CredentialNotFound,
    RegistrationFailed,
    UnknownCredential,
    WrongUser,
)
from gatekeeper.services.ephemeral_store import (
    ChallengePurpose,
    PendingChallenge,
    expires_in,
)
from gatekeeper.services.token_generator import encode_challenge, generate_challenge

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = [
    COSEAlgorithmIdentifier.ECDSA_SHA_256,
    COSEAlgorithmIdentifier.RSASSA_PKCS1_v1_5_SHA_256,
]

_KNOWN_TRANSPORTS = {t.value for t in AuthenticatorTransport}


class AssertionMode(enum.StrEnum):
    PASSKEY = "passkey"
    TWO_FACTOR = "two_factor"


@dataclass
class VerifiedCredential:
    credential: WebAuthnCredential
    user_id: UUID
    new_sign_count: int


def _descriptor(credential: WebAuthnCredential) -> PublicKeyCredentialDescriptor:
    return PublicKeyCredentialDescriptor(
        id=credential.credential_id,
        transports=[
            AuthenticatorTransport(t) for t in (credential.transports or []) if t in _KNOWN_TRANSPORTS
        ],
    )


def _pending(
    options_json: str,
    challenge: bytes,
    purpose: ChallengePurpose,
    user_verification: UserVerificationRequirement,
    *,
    is_passkey: bool = False,
    user_id: UUID | None = None,
) -> PendingChallenge:
    return PendingChallenge(
        options_json=options_json,
        challenge=encode_challenge(challenge),
        purpose=purpose,
        is_passkey=is_passkey,
        user_id=user_id,
        user_verification=user_verification.value,
        expires_at=expires_in(settings.WEBAUTHN_CHALLENGE_TTL_SECONDS),
    )


def _expected_origin(expected_origin: str | list[str] | None) -> str | list[str]:
    return expected_origin or settings.EFFECTIVE_WEBAUTHN_ORIGINS


# --- Registration ---


async def begin_registration(db: AsyncSession, user: User, is_passkey: bool) -> PendingChallenge:
    """
    Build creation options for a new credential.

    Only credentials of the same role are excluded, so one authenticator can
    hold both a passkey and a second-factor key for the same account.
    """
    existing = await crud.webauthn_credential.list_for_user(
        db, user_id=user.id, is_passkey=is_passkey
    )

    if is_passkey:
        selection = AuthenticatorSelectionCriteria(
            resident_key=ResidentKeyRequirement.REQUIRED,
            require_resident_key=True,
            user_verification=UserVerificationRequirement.REQUIRED,
        )
    else:
        selection = AuthenticatorSelectionCriteria(
            resident_key=ResidentKeyRequirement.DISCOURAGED,
            user_verification=UserVerificationRequirement.PREFERRED,
        )

    challenge = generate_challenge()
    options = generate_registration_options(
        rp_id=settings.EFFECTIVE_WEBAUTHN_RP_ID,
        rp_name=settings.WEBAUTHN_RP_NAME,
        user_id=str(user.id).encode(),
        user_name=user.email,
        user_display_name=user.email.split("@")[0],
        challenge=challenge,
        timeout=settings.WEBAUTHN_TIMEOUT_MS,
        attestation=AttestationConveyancePreference.NONE,
        authenticator_selection=selection,
        exclude_credentials=[_descriptor(c) for c in existing],
        supported_pub_key_algs=SUPPORTED_ALGORITHMS,
    )

    return _pending(
        options_to_json(options),
        challenge,
        ChallengePurpose.REGISTER,
        selection.user_verification,
        is_passkey=is_passkey,
        user_id=user.id,
    )


async def complete_registration(
    db: AsyncSession,
    user: User,
    response: dict,
    pending: PendingChallenge,
    name: str | None = None,
    expected_origin: str | list[str] | None = None,
) -> WebAuthnCredential:
    """
    Verify an attestation bound to the pending challenge and store the credential.

    Raises RegistrationFailed on any failure, with nothing persisted.
    """
    try:
        verification = verify_registration_response(
            credential=response,
            expected_challenge=base64url_to_bytes(pending.challenge),
            expected_rp_id=settings.EFFECTIVE_WEBAUTHN_RP_ID,
            expected_origin=_expected_origin(expected_origin),
            require_user_verification=pending.user_verification
            == UserVerificationRequirement.REQUIRED.value,
            supported_pub_key_algs=SUPPORTED_ALGORITHMS,
        )
    except (WebAuthnException, ValueError, KeyError, TypeError) as e:
        logger.warning("WebAuthn registration verification failed for user %s: %s", user.id, e)
        raise RegistrationFailed() from e

    if await crud.webauthn_credential.get_by_credential_id(
        db, credential_id=verification.credential_id
    ):
        logger.warning("Credential already registered, rejecting for user %s.", user.id)
        raise RegistrationFailed()

    raw_transports = (response.get("response") or {}).get("transports") or []
    transports = [t for t in raw_transports if t in _KNOWN_TRANSPORTS]

    default_name = "Passkey" if pending.is_passkey else "Security key"
    try:
        credential = await crud.webauthn_credential.create(
            db,
            obj_in={
                "user_id": user.id,
                "credential_id": verification.credential_id,
                "public_key": verification.credential_public_key,
                "sign_count": verification.sign_count,
                "transports": transports,
                "aaguid": str(verification.aaguid) if verification.aaguid else None,
                "name": (name or default_name)[:255],
                "is_passkey": pending.is_passkey,
                "backup_eligible": verification.credential_device_type == "multi_device",
                "backup_state": verification.credential_backed_up,
            },
        )
    except IntegrityError as e:
        await db.rollback()
        logger.warning("Duplicate credential id on insert for user %s.", user.id)
        raise RegistrationFailed() from e

    return credential


# --- Assertion ---


async def begin_assertion(
    db: AsyncSession, mode: AssertionMode, user: User | None = None
) -> PendingChallenge:
    """
    Build request options.

    PASSKEY: discoverable flow, empty allowCredentials, user verification required.
    TWO_FACTOR: the user's non-passkey credentials only, user verification preferred.
    """
    challenge = generate_challenge()

    match mode:
        case AssertionMode.PASSKEY:
            allow_credentials = []
            user_verification = UserVerificationRequirement.REQUIRED
            purpose = ChallengePurpose.PASSKEY_LOGIN
            user_id = None
        case AssertionMode.TWO_FACTOR:
            if user is None:
                raise ValueError("TWO_FACTOR assertion requires a user.")
            keys = await crud.webauthn_credential.list_for_user(
                db, user_id=user.id, is_passkey=False
            )
            allow_credentials = [_descriptor(c) for c in keys]
            user_verification = UserVerificationRequirement.PREFERRED
            purpose = ChallengePurpose.TWO_FACTOR
            user_id = user.id
        case _:
            raise ValueError(f"Unsupported assertion mode: {mode}")

    options = generate_authentication_options(
        rp_id=settings.EFFECTIVE_WEBAUTHN_RP_ID,
        challenge=challenge,
        timeout=settings.WEBAUTHN_TIMEOUT_MS,
        allow_credentials=allow_credentials,
        user_verification=user_verification,
    )
    return _pending(
        options_to_json(options),
        challenge,
        purpose,
        user_verification,
        user_id=user_id,
    )


def _raw_credential_id(response: dict) -> bytes:
    raw = response.get("rawId") or response.get("id")
    if not isinstance(raw, str) or not raw:
        raise UnknownCredential()
    try:
        return base64url_to_bytes(raw)
    except ValueError as e:
        raise UnknownCredential() from e


def _user_handle(response: dict) -> str | None:
    handle = (response.get("response") or {}).get("userHandle")
    if not handle:
        return None
    try:
        return base64url_to_bytes(handle).decode("utf-8")
    except (ValueError, UnicodeDecodeError):
        return ""


async def complete_assertion(
    db: AsyncSession,
    response: dict,
    pending: PendingChallenge,
    expected_origin: str | list[str] | None = None,
    expected_user_id: UUID | None = None,
) -> VerifiedCredential:
    """
    Verify an assertion against the pending challenge.

    Raises UnknownCredential, WrongUser or AssertionFailed. The owner check
    runs before any cryptography. The counter must strictly increase unless
    both the stored and the received counter are zero.
    """
    credential_id = _raw_credential_id(response)
    credential = await crud.webauthn_credential.get_by_credential_id(
        db, credential_id=credential_id
    )
    if credential is None:
        security_log.webauthn_failed(None, "unknown_credential")
        raise UnknownCredential()

    if expected_user_id is not None and credential.user_id != expected_user_id:
        security_log.webauthn_failed(None, "wrong_user")
        raise WrongUser()

    match pending.purpose:
        case ChallengePurpose.PASSKEY_LOGIN:
            if not credential.is_passkey:
                raise UnknownCredential()
            handle = _user_handle(response)
            if handle is not None and handle != str(credential.user_id):
                security_log.webauthn_failed(None, "user_handle_mismatch")
                raise UnknownCredential()
        case ChallengePurpose.TWO_FACTOR:
            if credential.is_passkey:
                raise UnknownCredential()
        case _:
            raise AssertionFailed()

    stored_count = credential.sign_count
    try:
        verification = verify_authentication_response(
            credential=response,
            expected_challenge=base64url_to_bytes(pending.challenge),
            expected_rp_id=settings.EFFECTIVE_WEBAUTHN_RP_ID,
            expected_origin=_expected_origin(expected_origin),
            credential_public_key=credential.public_key,
            credential_current_sign_count=stored_count,
            require_user_verification=pending.user_verification
            == UserVerificationRequirement.REQUIRED.value,
        )
    except (WebAuthnException, ValueError, KeyError, TypeError) as e:
        logger.warning("WebAuthn assertion failed for credential %s: %s", credential.id, e)
        security_log.webauthn_failed(None, "assertion_invalid")
        raise AssertionFailed() from e

    new_count = verification.new_sign_count
    if not (new_count > stored_count or (new_count == 0 and stored_count == 0)):
        security_log.possible_cloned_authenticator(
            bytes_to_base64url(credential.credential_id), stored_count, new_count
        )
        raise AssertionFailed()

    if not await crud.webauthn_credential.update_counter(
        db, id=credential.id, new_sign_count=new_count
    ):
        # Another request got there first with the same or a higher counter
        security_log.possible_cloned_authenticator(
            bytes_to_base64url(credential.credential_id), stored_count, new_count
        )
        raise AssertionFailed()

    logger.debug("Assertion verified for credential %s (count %d).", credential.id, new_count)
    return VerifiedCredential(credential=credential, user_id=credential.user_id, new_sign_count=new_count)


def options_from_pending(pending: PendingChallenge) -> dict:
    return json.loads(pending.options_json)


# --- Management ---


async def list_credentials(db: AsyncSession, user: User) -> list[WebAuthnCredential]:
    return await crud.webauthn_credential.list_for_user(db, user_id=user.id)


async def rename_credential(
    db: AsyncSession, user: User, credential_id: UUID, name: str
) -> WebAuthnCredential:
    credential = await crud.webauthn_credential.get_for_user(db, user_id=user.id, id=credential_id)
    if credential is None:
        raise CredentialNotFound()
    return await crud.webauthn_credential.rename(db, credential=credential, name=name)


async def delete_credential(db: AsyncSession, user: User, credential_id: UUID) -> None:
    if not await crud.webauthn_credential.delete_for_user(db, user_id=user.id, id=credential_id):
        raise CredentialNotFound()
    logger.info("WebAuthn credential %s deleted by user %s.", credential_id, user.id)
