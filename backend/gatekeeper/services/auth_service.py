# backend/gatekeeper/services/auth_service.py
"""
Authentication orchestrator.

Composes the primary password step, the second factor (TOTP, backup code or
WebAuthn key), passwordless passkey login, the trusted-device bypass and the
account security operations of a signed-in user.

Every successful sign-in ends in FullySignedIn; the router turns its identity
into an access token.
"""

import enum
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper import crud
from gatekeeper.core.security import burn_password_check, get_password_hash, verify_password
from gatekeeper.core.security_logger import mask_email, security_log
from gatekeeper.db.models.user import User, UserRole
from gatekeeper.db.models.webauthn_credential import WebAuthnCredential
from gatekeeper.exceptions import (
    AuthError,
    InvalidCode,
    InvalidCredentials,
    InvalidOrExpiredToken,
    NoPendingChallenge,
    NoPendingLogin,
    SecondFactorNotEnabled,
    TotpAlreadyEnabled,
)
from gatekeeper.services import (
    backup_code_service,
    breach_checker,
    email_service,
    email_verification_service,
    password_reset_service,
    totp_service,
    trusted_device_service,
    webauthn_service,
)
from gatekeeper.services.ephemeral_store import ChallengePurpose, EphemeralStore, PendingChallenge
from gatekeeper.services.webauthn_service import AssertionMode

logger = logging.getLogger(__name__)


class SecondFactorMethod(enum.StrEnum):
    TOTP = "totp"
    BACKUP_CODE = "backup_code"
    WEBAUTHN = "webauthn"


class VerifierResult(enum.Enum):
    MATCH = "match"
    NO_MATCH = "no_match"
    INAPPLICABLE = "inapplicable"


@dataclass(frozen=True)
class Identity:
    id: UUID
    email: str
    role: UserRole

    @classmethod
    def from_user(cls, user: User) -> "Identity":
        return cls(id=user.id, email=user.email, role=UserRole(user.role))


@dataclass
class FullySignedIn:
    identity: Identity
    trusted_device_token: str | None = None


@dataclass
class SecondFactorRequired:
    pending_login_id: str
    methods: list[SecondFactorMethod]


@dataclass
class CeremonyStart:
    ceremony_id: str
    options: dict


@dataclass
class TotpSetup:
    secret: str
    provisioning_uri: str
    qr_code: str


@dataclass
class MfaStatus:
    second_factor_enabled: bool
    totp_enabled: bool
    backup_codes_remaining: int
    security_keys: int
    passkeys: int


@dataclass
class RegisteredCredential:
    credential: WebAuthnCredential
    backup_codes: list[str] = field(default_factory=list)


# --- Helpers ---


def _sign_in(
    user: User,
    method: str,
    *,
    trust_requested: bool = False,
    trusted_epoch: int | None = None,
    ip: str | None = None,
) -> FullySignedIn:
    token = None
    if trust_requested:
        epoch = user.trusted_epoch if trusted_epoch is None else trusted_epoch
        token = trusted_device_service.mint(user.id, epoch)
    security_log.successful_login(ip, str(user.id), method)
    return FullySignedIn(identity=Identity.from_user(user), trusted_device_token=token)


async def available_methods(db: AsyncSession, user: User) -> list[SecondFactorMethod]:
    methods = []
    if user.totp_secret:
        methods.append(SecondFactorMethod.TOTP)
    if await crud.user.count_backup_codes(db, user_id=user.id):
        methods.append(SecondFactorMethod.BACKUP_CODE)
    if await crud.webauthn_credential.count_for_user(db, user_id=user.id, is_passkey=False):
        methods.append(SecondFactorMethod.WEBAUTHN)
    return methods


def _check_password(user: User, password: str) -> None:
    verified, _ = verify_password(password, user.hashed_password)
    if not verified:
        raise InvalidCredentials()


async def _provision_backup_codes(db: AsyncSession, user: User) -> list[str]:
    codes = backup_code_service.generate_backup_codes()
    await crud.user.set_backup_code_hashes(
        db, user_id=user.id, hashes=backup_code_service.hash_backup_codes(codes)
    )
    return codes


async def _load_pending_user(
    db: AsyncSession, store: EphemeralStore, pending_login_id: str
) -> tuple[User, int]:
    pending = await store.get_pending_login(pending_login_id)
    if pending is None:
        raise NoPendingLogin()
    user = await crud.user.get(db, id=pending.user_id)
    if user is None or not user.is_active:
        await store.consume_pending_login(pending_login_id)
        raise NoPendingLogin()
    return user, pending.trusted_epoch


# --- Primary login ---


async def login(
    db: AsyncSession,
    store: EphemeralStore,
    email: str,
    password: str,
    trusted_cookie: str | None = None,
    ip: str | None = None,
) -> FullySignedIn | SecondFactorRequired:
    """
    Password step.

    Unknown email, wrong password, inactive or unverified accounts all end in
    InvalidCredentials. A valid trusted-device cookie skips the second factor.
    """
    user = await crud.user.get_by_email(db, email=email)
    if user is None:
        burn_password_check(password)
        security_log.failed_login(ip, email, "BAD_CREDENTIALS")
        raise InvalidCredentials()

    verified, updated_hash = verify_password(password, user.hashed_password)
    if not verified:
        security_log.failed_login(ip, email, "BAD_CREDENTIALS")
        raise InvalidCredentials()
    if not user.is_active:
        security_log.failed_login(ip, email, "INACTIVE")
        raise InvalidCredentials()
    if not user.is_verified:
        security_log.failed_login(ip, email, "UNVERIFIED")
        raise InvalidCredentials()

    if updated_hash:
        await crud.user.update_password_hash(db, user=user, hashed_password=updated_hash)
        logger.info("Password hash of user %s upgraded.", user.id)

    if not await crud.user.has_second_factor(db, user=user):
        return _sign_in(user, "password", ip=ip)

    if trusted_device_service.validate(trusted_cookie, user.id, user.trusted_epoch):
        return _sign_in(user, "trusted_device", ip=ip)

    pending_login_id = await store.create_pending_login(user.id, user.trusted_epoch)
    return SecondFactorRequired(
        pending_login_id=pending_login_id,
        methods=await available_methods(db, user),
    )


# --- Second factor ---


async def _verify_totp(db: AsyncSession, user: User, code: str) -> VerifierResult:
    secret = crud.user.get_totp_secret(user)
    if secret is None:
        return VerifierResult.INAPPLICABLE
    if totp_service.verify_totp_code(secret, code):
        return VerifierResult.MATCH
    return VerifierResult.NO_MATCH


async def _verify_backup_code(db: AsyncSession, user: User, code: str) -> VerifierResult:
    codes = await crud.user.get_backup_codes(db, user_id=user.id)
    if not codes:
        return VerifierResult.INAPPLICABLE
    index = backup_code_service.verify_backup_code(code, [c.code_hash for c in codes])
    if index is None:
        return VerifierResult.NO_MATCH
    # Lost race: someone else spent this code a moment ago
    if not await crud.user.delete_backup_code(db, code_id=codes[index].id):
        return VerifierResult.NO_MATCH
    security_log.backup_code_used(str(user.id), len(codes) - 1)
    return VerifierResult.MATCH


Verifier = Callable[[AsyncSession, User, str], Awaitable[VerifierResult]]

SECOND_FACTOR_VERIFIERS: list[tuple[SecondFactorMethod, Verifier]] = [
    (SecondFactorMethod.TOTP, _verify_totp),
    (SecondFactorMethod.BACKUP_CODE, _verify_backup_code),
]


async def verify_second_factor(
    db: AsyncSession,
    store: EphemeralStore,
    pending_login_id: str,
    code: str,
    trust_requested: bool = False,
    ip: str | None = None,
) -> FullySignedIn:
    """
    Check a TOTP or backup code for a pending login.

    On no match the pending login is kept so the user can try again.
    """
    user, trusted_epoch = await _load_pending_user(db, store, pending_login_id)

    matched_method = None
    for method, verifier in SECOND_FACTOR_VERIFIERS:
        if await verifier(db, user, code) is VerifierResult.MATCH:
            matched_method = method
            break

    if matched_method is None:
        security_log.second_factor_failed(ip, str(user.id), "code")
        raise InvalidCode()

    if not await store.consume_pending_login(pending_login_id):
        raise NoPendingLogin()

    return _sign_in(
        user,
        matched_method.value,
        trust_requested=trust_requested,
        trusted_epoch=trusted_epoch,
        ip=ip,
    )


async def begin_second_factor_webauthn(
    db: AsyncSession, store: EphemeralStore, pending_login_id: str
) -> CeremonyStart:
    user, _ = await _load_pending_user(db, store, pending_login_id)
    if not await crud.webauthn_credential.count_for_user(db, user_id=user.id, is_passkey=False):
        raise SecondFactorNotEnabled()
    pending = await webauthn_service.begin_assertion(db, AssertionMode.TWO_FACTOR, user)
    ceremony_id = await store.save_challenge(pending)
    return CeremonyStart(ceremony_id=ceremony_id, options=webauthn_service.options_from_pending(pending))


async def _take_challenge(
    store: EphemeralStore,
    ceremony_id: str,
    purpose: ChallengePurpose,
    user_id: UUID | None = None,
) -> PendingChallenge:
    pending = await store.pop_challenge(ceremony_id)
    if pending is None or pending.purpose != purpose:
        raise NoPendingChallenge()
    if user_id is not None and pending.user_id != user_id:
        raise NoPendingChallenge()
    return pending


async def complete_second_factor_webauthn(
    db: AsyncSession,
    store: EphemeralStore,
    pending_login_id: str,
    ceremony_id: str,
    response: dict,
    trust_requested: bool = False,
    expected_origin: str | list[str] | None = None,
    ip: str | None = None,
) -> FullySignedIn:
    user, trusted_epoch = await _load_pending_user(db, store, pending_login_id)
    pending = await _take_challenge(store, ceremony_id, ChallengePurpose.TWO_FACTOR, user.id)

    try:
        await webauthn_service.complete_assertion(
            db, response, pending, expected_origin=expected_origin, expected_user_id=user.id
        )
    except AuthError:
        security_log.second_factor_failed(ip, str(user.id), "webauthn")
        raise

    if not await store.consume_pending_login(pending_login_id):
        raise NoPendingLogin()

    return _sign_in(
        user,
        SecondFactorMethod.WEBAUTHN.value,
        trust_requested=trust_requested,
        trusted_epoch=trusted_epoch,
        ip=ip,
    )


# --- Passkey login ---


async def begin_passkey_login(db: AsyncSession, store: EphemeralStore) -> CeremonyStart:
    pending = await webauthn_service.begin_assertion(db, AssertionMode.PASSKEY)
    ceremony_id = await store.save_challenge(pending)
    return CeremonyStart(ceremony_id=ceremony_id, options=webauthn_service.options_from_pending(pending))


async def complete_passkey_login(
    db: AsyncSession,
    store: EphemeralStore,
    ceremony_id: str,
    response: dict,
    expected_origin: str | list[str] | None = None,
    ip: str | None = None,
) -> FullySignedIn:
    pending = await _take_challenge(store, ceremony_id, ChallengePurpose.PASSKEY_LOGIN)
    verified = await webauthn_service.complete_assertion(
        db, response, pending, expected_origin=expected_origin
    )
    user = await crud.user.get(db, id=verified.user_id)
    if user is None or not user.is_active or not user.is_verified:
        security_log.failed_login(ip, user.email if user else None, "PASSKEY_ACCOUNT_UNUSABLE")
        raise InvalidCredentials()
    return _sign_in(user, "passkey", ip=ip)


# --- Registration, verification, password reset ---


async def register(db: AsyncSession, email: str, password: str) -> None:
    """
    Create an account and send the verification email.

    The caller's response must not depend on which branch ran.
    """
    await breach_checker.ensure_not_compromised(password)
    hashed_password = get_password_hash(password)

    existing = await crud.user.get_by_email(db, email=email)
    if existing is not None:
        if existing.is_verified:
            logger.info("Registration attempt for existing account %s ignored.", mask_email(email))
            return
        if not await crud.user.delete_unverified(db, user=existing):
            return

    user = await crud.user.create(db, email=email, hashed_password=hashed_password)
    token = await email_verification_service.create_token(db, user)
    await email_service.send_verification_email(user.email, token)


async def resend_verification(db: AsyncSession, email: str) -> None:
    user = await crud.user.get_by_email(db, email=email)
    if user is None or user.is_verified:
        return
    token = await email_verification_service.create_token(db, user)
    await email_service.send_verification_email(user.email, token)


async def verify_email(db: AsyncSession, token: str, ip: str | None = None) -> Identity:
    try:
        user = await email_verification_service.verify(db, token)
    except InvalidOrExpiredToken:
        security_log.bad_token(ip, "email_verification")
        raise
    return Identity.from_user(user)


async def request_password_reset(db: AsyncSession, email: str) -> None:
    user = await crud.user.get_by_email(db, email=email)
    if user is None or not user.is_active:
        return
    token = await password_reset_service.create_reset_token(db, user)
    await email_service.send_password_reset_email(user.email, token)


async def reset_password(
    db: AsyncSession, token: str, new_password: str, ip: str | None = None
) -> None:
    try:
        await password_reset_service.validate_token(db, token)
    except InvalidOrExpiredToken:
        security_log.bad_token(ip, "password_reset")
        raise
    await breach_checker.ensure_not_compromised(new_password)

    user = await password_reset_service.consume(db, token)
    await crud.user.update_password_hash(
        db, user=user, hashed_password=get_password_hash(new_password)
    )
    logger.info("Password reset completed for user %s.", user.id)


async def change_password(
    db: AsyncSession, user: User, current_password: str, new_password: str
) -> None:
    _check_password(user, current_password)
    await breach_checker.ensure_not_compromised(new_password)
    await crud.user.update_password_hash(
        db, user=user, hashed_password=get_password_hash(new_password)
    )
    logger.info("Password changed for user %s.", user.id)


# --- TOTP, backup codes, trusted devices ---


async def get_mfa_status(db: AsyncSession, user: User) -> MfaStatus:
    return MfaStatus(
        second_factor_enabled=await crud.user.has_second_factor(db, user=user),
        totp_enabled=bool(user.totp_secret),
        backup_codes_remaining=await crud.user.count_backup_codes(db, user_id=user.id),
        security_keys=await crud.webauthn_credential.count_for_user(
            db, user_id=user.id, is_passkey=False
        ),
        passkeys=await crud.webauthn_credential.count_for_user(
            db, user_id=user.id, is_passkey=True
        ),
    )


async def begin_totp_setup(store: EphemeralStore, user: User) -> TotpSetup:
    if user.totp_secret:
        raise TotpAlreadyEnabled()
    secret = totp_service.generate_totp_secret()
    await store.stage_totp_setup(user.id, secret)
    uri = totp_service.get_totp_uri(secret, user.email)
    logger.info("TOTP setup initiated for user %s.", user.id)
    return TotpSetup(secret=secret, provisioning_uri=uri, qr_code=totp_service.generate_qr_code_data_uri(uri))


async def enable_totp(db: AsyncSession, store: EphemeralStore, user: User, code: str) -> list[str]:
    """
    Confirm the staged secret with a first code and switch TOTP on.

    Returns the initial backup codes (shown once) if the user had none.
    """
    if user.totp_secret:
        raise TotpAlreadyEnabled()
    staged = await store.get_totp_setup(user.id)
    if staged is None:
        raise InvalidOrExpiredToken()
    if not totp_service.verify_totp_code(staged.secret, code):
        security_log.second_factor_failed(None, str(user.id), "totp_setup")
        raise InvalidCode()

    await crud.user.set_totp_secret(db, user=user, secret=staged.secret)
    await store.clear_totp_setup(user.id)
    logger.info("TOTP enabled for user %s.", user.id)

    if await crud.user.count_backup_codes(db, user_id=user.id):
        return []
    return await _provision_backup_codes(db, user)


async def disable_totp(db: AsyncSession, user: User, password: str) -> None:
    _check_password(user, password)
    if not user.totp_secret:
        raise SecondFactorNotEnabled()
    await crud.user.set_totp_secret(db, user=user, secret=None)
    if not await crud.user.has_second_factor(db, user=user):
        await crud.user.set_backup_code_hashes(db, user_id=user.id, hashes=[])
    logger.info("TOTP disabled for user %s.", user.id)


async def regenerate_backup_codes(db: AsyncSession, user: User, password: str) -> list[str]:
    _check_password(user, password)
    if not await crud.user.has_second_factor(db, user=user):
        raise SecondFactorNotEnabled()
    codes = await _provision_backup_codes(db, user)
    logger.info("Backup codes regenerated for user %s.", user.id)
    return codes


async def revoke_trusted_devices(db: AsyncSession, user: User) -> int:
    return await trusted_device_service.revoke_all(db, user)


async def reset_second_factor(db: AsyncSession, user: User) -> None:
    """
    Admin recovery: remove TOTP, backup codes and security keys, and revoke
    trusted devices. Passkeys are left alone.
    """
    await crud.webauthn_credential.delete_second_factor_keys(db, user_id=user.id)
    await crud.user.set_backup_code_hashes(db, user_id=user.id, hashes=[])
    await crud.user.set_totp_secret(db, user=user, secret=None)
    await trusted_device_service.revoke_all(db, user)
    logger.warning("Second factor reset for user %s.", user.id)


# --- WebAuthn credential management ---


async def begin_webauthn_registration(
    db: AsyncSession, store: EphemeralStore, user: User, is_passkey: bool
) -> CeremonyStart:
    pending = await webauthn_service.begin_registration(db, user, is_passkey)
    ceremony_id = await store.save_challenge(pending)
    return CeremonyStart(ceremony_id=ceremony_id, options=webauthn_service.options_from_pending(pending))


async def complete_webauthn_registration(
    db: AsyncSession,
    store: EphemeralStore,
    user: User,
    ceremony_id: str,
    response: dict,
    name: str | None = None,
    expected_origin: str | list[str] | None = None,
) -> RegisteredCredential:
    """
    Store a new credential. The first security key of an account without
    backup codes also provisions a batch of them.
    """
    pending = await _take_challenge(store, ceremony_id, ChallengePurpose.REGISTER, user.id)
    credential = await webauthn_service.complete_registration(
        db, user, response, pending, name=name, expected_origin=expected_origin
    )
    backup_codes = []
    if not credential.is_passkey and not await crud.user.count_backup_codes(db, user_id=user.id):
        backup_codes = await _provision_backup_codes(db, user)
    return RegisteredCredential(credential=credential, backup_codes=backup_codes)


async def list_webauthn_credentials(db: AsyncSession, user: User) -> list[WebAuthnCredential]:
    return await webauthn_service.list_credentials(db, user)


async def rename_webauthn_credential(
    db: AsyncSession, user: User, credential_id: UUID, name: str
) -> WebAuthnCredential:
    return await webauthn_service.rename_credential(db, user, credential_id, name)


async def delete_webauthn_credential(db: AsyncSession, user: User, credential_id: UUID) -> None:
    await webauthn_service.delete_credential(db, user, credential_id)
