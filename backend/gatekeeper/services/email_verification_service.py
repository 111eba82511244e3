# backend/gatekeeper/services/email_verification_service.py
"""
Email ownership tokens.

A token is single use: it is spent with a conditional UPDATE (used = false),
so two concurrent clicks on the same link verify the account exactly once.
"""

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper import crud
from gatekeeper.core.config import settings
from gatekeeper.db.models.email_verification_token import EmailVerificationToken
from gatekeeper.db.models.user import User
from gatekeeper.exceptions import InvalidOrExpiredToken
from gatekeeper.services.token_generator import generate_email_verification_token

logger = logging.getLogger(__name__)


async def create_token(db: AsyncSession, user: User) -> str:
    token = generate_email_verification_token()
    db.add(
        EmailVerificationToken(
            token=token,
            user_id=user.id,
            expires_at=datetime.now(UTC)
            + timedelta(minutes=settings.EMAIL_VERIFICATION_TOKEN_TTL_MINUTES),
            used=False,
        )
    )
    await db.commit()
    logger.debug("Email verification token issued for user %s.", user.id)
    return token


async def verify(db: AsyncSession, token: str) -> User:
    """
    Spend a verification token and mark its user verified.

    Raises InvalidOrExpiredToken for unknown, used or expired tokens.
    """
    now = datetime.now(UTC)
    result = await db.execute(
        update(EmailVerificationToken)
        .where(
            EmailVerificationToken.token == token,
            EmailVerificationToken.used.is_(False),
            EmailVerificationToken.expires_at > now,
        )
        .values(used=True, used_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidOrExpiredToken()

    user_id = (
        await db.execute(
            select(EmailVerificationToken.user_id).where(EmailVerificationToken.token == token)
        )
    ).scalar_one()
    await crud.user.set_verified(db, user_id=user_id)
    await db.commit()

    user = await crud.user.get(db, id=user_id)
    if user is None:
        raise InvalidOrExpiredToken()
    await db.refresh(user)
    logger.info("Email verified for user %s.", user.id)
    return user
