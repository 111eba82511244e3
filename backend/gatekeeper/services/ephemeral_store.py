# backend/gatekeeper/services/ephemeral_store.py
"""
Short-lived authentication state kept in Redis.

Every record carries its own expires_at which is checked on each read, the
Redis TTL only takes care of cleanup. Single-use records are consumed with
GETDEL (challenges) or the DEL return value (pending logins), so two
concurrent requests can never both consume the same record.
"""

import enum
import logging
from datetime import UTC, datetime, timedelta
from typing import TypeVar
from uuid import UUID

from pydantic import BaseModel
from redis.asyncio import Redis

from gatekeeper.core.config import settings
from gatekeeper.services.token_generator import generate_opaque_id

logger = logging.getLogger(__name__)

KEY_PREFIX = "gatekeeper:"
PENDING_LOGIN_NS = "pending_login"
CHALLENGE_NS = "webauthn_challenge"
TOTP_SETUP_NS = "totp_setup"

RecordT = TypeVar("RecordT", bound="EphemeralRecord")


class EphemeralRecord(BaseModel):
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or datetime.now(UTC)) >= self.expires_at


class PendingLogin(EphemeralRecord):
    """Password step done, second factor outstanding."""

    user_id: UUID
    trusted_epoch: int


class ChallengePurpose(enum.StrEnum):
    REGISTER = "register"
    PASSKEY_LOGIN = "passkey_login"
    TWO_FACTOR = "two_factor"


class PendingChallenge(EphemeralRecord):
    """An issued WebAuthn challenge awaiting its browser response."""

    options_json: str
    challenge: str  # base64url
    purpose: ChallengePurpose
    is_passkey: bool = False
    user_id: UUID | None = None
    user_verification: str


class PendingTotpSetup(EphemeralRecord):
    user_id: UUID
    secret: str


def expires_in(seconds: int) -> datetime:
    return datetime.now(UTC) + timedelta(seconds=seconds)


class EphemeralStore:
    def __init__(self, redis: Redis):
        self.redis = redis

    @staticmethod
    def _key(namespace: str, key: str) -> str:
        return f"{KEY_PREFIX}{namespace}:{key}"

    async def put(self, namespace: str, key: str, record: EphemeralRecord) -> None:
        ttl = max(1, int((record.expires_at - datetime.now(UTC)).total_seconds()) + 1)
        await self.redis.set(self._key(namespace, key), record.model_dump_json(), ex=ttl)

    def _load(self, raw: bytes | str | None, model: type[RecordT]) -> RecordT | None:
        if raw is None:
            return None
        record = model.model_validate_json(raw)
        if record.is_expired():
            return None
        return record

    async def get(self, namespace: str, key: str, model: type[RecordT]) -> RecordT | None:
        raw = await self.redis.get(self._key(namespace, key))
        return self._load(raw, model)

    async def pop(self, namespace: str, key: str, model: type[RecordT]) -> RecordT | None:
        """Atomically read and remove a record. Only one caller ever gets it."""
        raw = await self.redis.getdel(self._key(namespace, key))
        return self._load(raw, model)

    async def delete(self, namespace: str, key: str) -> bool:
        """Return True if this call removed the record."""
        return await self.redis.delete(self._key(namespace, key)) == 1

    # --- Pending logins ---

    async def create_pending_login(self, user_id: UUID, trusted_epoch: int) -> str:
        pending_login_id = generate_opaque_id()
        await self.put(
            PENDING_LOGIN_NS,
            pending_login_id,
            PendingLogin(
                user_id=user_id,
                trusted_epoch=trusted_epoch,
                expires_at=expires_in(settings.PENDING_LOGIN_TTL_SECONDS),
            ),
        )
        return pending_login_id

    async def get_pending_login(self, pending_login_id: str) -> PendingLogin | None:
        return await self.get(PENDING_LOGIN_NS, pending_login_id, PendingLogin)

    async def consume_pending_login(self, pending_login_id: str) -> bool:
        return await self.delete(PENDING_LOGIN_NS, pending_login_id)

    # --- WebAuthn challenges ---

    async def save_challenge(self, pending: PendingChallenge) -> str:
        ceremony_id = generate_opaque_id()
        await self.put(CHALLENGE_NS, ceremony_id, pending)
        logger.debug("Stored %s challenge under ceremony %s...", pending.purpose, ceremony_id[:8])
        return ceremony_id

    async def pop_challenge(self, ceremony_id: str) -> PendingChallenge | None:
        return await self.pop(CHALLENGE_NS, ceremony_id, PendingChallenge)

    # --- TOTP setup ---

    async def stage_totp_setup(self, user_id: UUID, secret: str) -> PendingTotpSetup:
        staged = PendingTotpSetup(
            user_id=user_id,
            secret=secret,
            expires_at=expires_in(settings.TOTP_SETUP_TTL_SECONDS),
        )
        await self.put(TOTP_SETUP_NS, str(user_id), staged)
        return staged

    async def get_totp_setup(self, user_id: UUID) -> PendingTotpSetup | None:
        return await self.get(TOTP_SETUP_NS, str(user_id), PendingTotpSetup)

    async def clear_totp_setup(self, user_id: UUID) -> None:
        await self.delete(TOTP_SETUP_NS, str(user_id))
