# backend/tests/unit/services/test_password_reset_service.py
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import func, select, update

from gatekeeper.db.models.password_reset_request import PasswordResetRequest
from gatekeeper.exceptions import InvalidOrExpiredToken
from gatekeeper.services import password_reset_service
from tests.factories import UserFactory


async def _count_requests(db) -> int:
    result = await db.execute(select(func.count()).select_from(PasswordResetRequest))
    return result.scalar_one()


@pytest.mark.asyncio
async def test_token_format_and_storage(db_session):
    user = UserFactory.create_user(db_session)
    await db_session.commit()

    token = await password_reset_service.create_reset_token(db_session, user)

    assert len(token) == 60
    int(token, 16)
    request = (await db_session.execute(select(PasswordResetRequest))).scalar_one()
    assert request.selector == token[:20]
    # Only the digest of the verifier is stored
    assert token[20:] not in request.hashed_verifier
    assert len(request.hashed_verifier) == 64


@pytest.mark.asyncio
async def test_validate_and_consume(db_session):
    user = UserFactory.create_user(db_session)
    await db_session.commit()
    token = await password_reset_service.create_reset_token(db_session, user)

    assert (await password_reset_service.validate_token(db_session, token)).id == user.id
    assert (await password_reset_service.consume(db_session, token)).id == user.id
    await db_session.commit()

    with pytest.raises(InvalidOrExpiredToken):
        await password_reset_service.consume(db_session, token)
    assert await _count_requests(db_session) == 0


@pytest.mark.asyncio
async def test_uppercase_token_accepted(db_session):
    user = UserFactory.create_user(db_session)
    await db_session.commit()
    token = await password_reset_service.create_reset_token(db_session, user)

    assert (await password_reset_service.validate_token(db_session, token.upper())).id == user.id


@pytest.mark.asyncio
async def test_new_request_replaces_old_one(db_session):
    user = UserFactory.create_user(db_session)
    await db_session.commit()
    first = await password_reset_service.create_reset_token(db_session, user)
    second = await password_reset_service.create_reset_token(db_session, user)

    with pytest.raises(InvalidOrExpiredToken):
        await password_reset_service.validate_token(db_session, first)
    await password_reset_service.validate_token(db_session, second)
    assert await _count_requests(db_session) == 1


@pytest.mark.asyncio
async def test_wrong_verifier_rejected(db_session):
    user = UserFactory.create_user(db_session)
    await db_session.commit()
    token = await password_reset_service.create_reset_token(db_session, user)
    forged = token[:20] + ("0" * 40 if token[20:] != "0" * 40 else "1" * 40)

    with pytest.raises(InvalidOrExpiredToken):
        await password_reset_service.validate_token(db_session, forged)


@pytest.mark.asyncio
async def test_expired_token_rejected(db_session):
    user = UserFactory.create_user(db_session)
    await db_session.commit()
    token = await password_reset_service.create_reset_token(db_session, user)
    await db_session.execute(
        update(PasswordResetRequest).values(expires_at=datetime.now(UTC) - timedelta(minutes=1))
    )
    await db_session.commit()

    with pytest.raises(InvalidOrExpiredToken):
        await password_reset_service.validate_token(db_session, token)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "token", ["", "abc", "a" * 20, "z" * 60, "g" + "0" * 59, "0123456789abcdef0123-4567"]
)
async def test_malformed_token_rejected(db_session, token):
    with pytest.raises(InvalidOrExpiredToken):
        await password_reset_service.validate_token(db_session, token)
