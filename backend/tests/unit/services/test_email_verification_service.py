# backend/tests/unit/services/test_email_verification_service.py
import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select, update

from gatekeeper.db.models.email_verification_token import EmailVerificationToken
from gatekeeper.exceptions import InvalidOrExpiredToken
from gatekeeper.services import email_verification_service
from tests.factories import UserFactory


@pytest.mark.asyncio
async def test_token_verifies_user_once(db_session):
    user = UserFactory.create_user(db_session, is_verified=False)
    await db_session.commit()
    token = await email_verification_service.create_token(db_session, user)
    assert len(token) == 64

    verified = await email_verification_service.verify(db_session, token)
    assert verified.id == user.id
    assert verified.is_verified is True

    stored = (
        await db_session.execute(
            select(EmailVerificationToken).where(EmailVerificationToken.token == token)
        )
    ).scalar_one()
    assert stored.used is True
    assert stored.used_at is not None

    with pytest.raises(InvalidOrExpiredToken):
        await email_verification_service.verify(db_session, token)


@pytest.mark.asyncio
async def test_concurrent_clicks_verify_exactly_once(session_factory):
    async with session_factory() as setup:
        user = UserFactory.create_user(setup, is_verified=False)
        await setup.commit()
        token = await email_verification_service.create_token(setup, user)

    async def click():
        async with session_factory() as session:
            try:
                await email_verification_service.verify(session, token)
                return True
            except InvalidOrExpiredToken:
                return False

    results = await asyncio.gather(click(), click())
    assert sorted(results) == [False, True]


@pytest.mark.asyncio
async def test_expired_token_rejected(db_session):
    user = UserFactory.create_user(db_session, is_verified=False)
    await db_session.commit()
    token = await email_verification_service.create_token(db_session, user)
    await db_session.execute(
        update(EmailVerificationToken).values(expires_at=datetime.now(UTC) - timedelta(seconds=1))
    )
    await db_session.commit()

    with pytest.raises(InvalidOrExpiredToken):
        await email_verification_service.verify(db_session, token)
    await db_session.refresh(user)
    assert user.is_verified is False


@pytest.mark.asyncio
async def test_unknown_token_rejected(db_session):
    with pytest.raises(InvalidOrExpiredToken):
        await email_verification_service.verify(db_session, "f" * 64)
