# backend/gatekeeper/services/password_reset_service.py
"""
Password reset tokens using the split selector/verifier scheme.

Token format: 20 hex chars of selector followed by 40 hex chars of verifier.
The selector finds the row, the verifier is compared against its stored
SHA-256 digest in constant time.
"""

import hashlib
import hmac
import logging
import re
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper import crud
from gatekeeper.core.config import settings
from gatekeeper.db.models.password_reset_request import PasswordResetRequest
from gatekeeper.db.models.user import User
from gatekeeper.exceptions import InvalidOrExpiredToken
from gatekeeper.services.token_generator import generate_reset_selector_and_verifier

logger = logging.getLogger(__name__)

SELECTOR_LENGTH = 20
MIN_TOKEN_LENGTH = SELECTOR_LENGTH + 1

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")


def _hash_verifier(verifier: str) -> str:
    return hashlib.sha256(verifier.encode("utf-8")).hexdigest()


def _split_token(token: str) -> tuple[str, str]:
    if len(token) < MIN_TOKEN_LENGTH or not _HEX_RE.match(token):
        raise InvalidOrExpiredToken()
    token = token.lower()
    return token[:SELECTOR_LENGTH], token[SELECTOR_LENGTH:]


async def create_reset_token(db: AsyncSession, user: User) -> str:
    """Replace any outstanding request of the user and return the new token."""
    await db.execute(delete(PasswordResetRequest).where(PasswordResetRequest.user_id == user.id))

    selector, verifier = generate_reset_selector_and_verifier()
    db.add(
        PasswordResetRequest(
            selector=selector,
            hashed_verifier=_hash_verifier(verifier),
            user_id=user.id,
            expires_at=datetime.now(UTC)
            + timedelta(minutes=settings.PASSWORD_RESET_TOKEN_TTL_MINUTES),
        )
    )
    await db.commit()
    logger.debug("Password reset request created for user %s.", user.id)
    return selector + verifier


async def _find_request(db: AsyncSession, token: str) -> PasswordResetRequest:
    selector, verifier = _split_token(token)
    result = await db.execute(
        select(PasswordResetRequest).where(
            PasswordResetRequest.selector == selector,
            PasswordResetRequest.expires_at > datetime.now(UTC),
        )
    )
    request = result.scalar_one_or_none()
    if request is None:
        raise InvalidOrExpiredToken()
    if not hmac.compare_digest(_hash_verifier(verifier), request.hashed_verifier):
        raise InvalidOrExpiredToken()
    return request


async def validate_token(db: AsyncSession, token: str) -> User:
    """Return the user the token belongs to, or raise InvalidOrExpiredToken."""
    request = await _find_request(db, token)
    user = await crud.user.get(db, id=request.user_id)
    if user is None:
        raise InvalidOrExpiredToken()
    return user


async def consume(db: AsyncSession, token: str) -> User:
    """
    Spend the token. The delete is not committed here; the caller commits it
    together with the new password hash.

    A concurrent consumer of the same token gets InvalidOrExpiredToken.
    """
    request = await _find_request(db, token)
    result = await db.execute(
        delete(PasswordResetRequest)
        .where(PasswordResetRequest.id == request.id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidOrExpiredToken()
    user = await crud.user.get(db, id=request.user_id)
    if user is None:
        raise InvalidOrExpiredToken()
    return user
