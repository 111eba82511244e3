# backend/tests/unit/services/test_trusted_device_service.py
"""
Unit tests for trusted-device cookies.
"""

import base64
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from fastapi import Response

from gatekeeper.core.config import settings
from gatekeeper.services import trusted_device_service
from tests.factories import UserFactory

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _decode(cookie: str) -> list[str]:
    return base64.urlsafe_b64decode(cookie).decode().split(":")


def test_minted_cookie_validates():
    user_id = uuid4()
    cookie = trusted_device_service.mint(user_id, 3, now=NOW)

    assert trusted_device_service.validate(cookie, user_id, 3, now=NOW)
    assert trusted_device_service.validate(cookie, user_id, 3, now=NOW + timedelta(days=29))


def test_cookie_layout():
    user_id = uuid4()
    cookie = trusted_device_service.mint(user_id, 0, now=NOW)

    cookie_user, epoch, expiry, signature = _decode(cookie)
    assert cookie_user == str(user_id)
    assert epoch == "0"
    expected_expiry = NOW + timedelta(days=settings.TRUSTED_DEVICE_EXPIRY_DAYS)
    assert int(expiry) == int(expected_expiry.timestamp())
    assert len(signature) == 64


def test_cookie_expires():
    user_id = uuid4()
    cookie = trusted_device_service.mint(user_id, 0, now=NOW)

    later = NOW + timedelta(days=settings.TRUSTED_DEVICE_EXPIRY_DAYS, seconds=1)
    assert not trusted_device_service.validate(cookie, user_id, 0, now=later)


def test_cookie_rejected_after_epoch_change():
    user_id = uuid4()
    cookie = trusted_device_service.mint(user_id, 4, now=NOW)

    assert not trusted_device_service.validate(cookie, user_id, 5, now=NOW)


def test_cookie_bound_to_user():
    cookie = trusted_device_service.mint(uuid4(), 0, now=NOW)

    assert not trusted_device_service.validate(cookie, uuid4(), 0, now=NOW)


def test_tampered_cookie_rejected():
    user_id = uuid4()
    cookie_user, epoch, expiry, signature = _decode(
        trusted_device_service.mint(user_id, 0, now=NOW)
    )
    # Push expiry a year out but keep the old signature
    forged_expiry = str(int(expiry) + 365 * 24 * 3600)
    forged = base64.urlsafe_b64encode(
        f"{cookie_user}:{epoch}:{forged_expiry}:{signature}".encode()
    ).decode()

    assert not trusted_device_service.validate(forged, user_id, 0, now=NOW)


@pytest.mark.parametrize(
    "cookie",
    [
        None,
        "",
        "not base64 !!",
        base64.urlsafe_b64encode(b"only:three:parts").decode(),
        base64.urlsafe_b64encode(b"a:b:c:d").decode(),
        base64.urlsafe_b64encode(b"\xff\xfe\xfd").decode(),
    ],
)
def test_malformed_cookie_rejected(cookie):
    assert not trusted_device_service.validate(cookie, uuid4(), 0, now=NOW)


def test_cookie_signed_with_other_key_rejected(monkeypatch):
    user_id = uuid4()
    monkeypatch.setattr(settings, "TRUSTED_DEVICE_SECRET", "first-signing-key")
    cookie = trusted_device_service.mint(user_id, 0, now=NOW)

    monkeypatch.setattr(settings, "TRUSTED_DEVICE_SECRET", "rotated-signing-key")
    assert not trusted_device_service.validate(cookie, user_id, 0, now=NOW)


def test_set_trusted_device_cookie_attributes():
    response = Response()
    trusted_device_service.set_trusted_device_cookie(response, "token-value")

    header = response.headers["set-cookie"]
    assert header.startswith(f"{settings.TRUSTED_DEVICE_COOKIE_NAME}=token-value")
    assert "HttpOnly" in header
    assert f"Path={settings.API_V1_STR}/auth" in header
    assert f"Max-Age={settings.TRUSTED_DEVICE_EXPIRY_DAYS * 86400}" in header


def test_clear_trusted_device_cookie():
    response = Response()
    trusted_device_service.clear_trusted_device_cookie(response)

    header = response.headers["set-cookie"]
    assert header.startswith(f"{settings.TRUSTED_DEVICE_COOKIE_NAME}=")
    assert "Max-Age=0" in header
    assert f"Path={settings.API_V1_STR}/auth" in header


@pytest.mark.asyncio
async def test_revoke_all_invalidates_existing_cookies(db_session):
    user = UserFactory.create_user(db_session)
    await db_session.commit()
    cookie = trusted_device_service.mint(user.id, user.trusted_epoch)

    new_epoch = await trusted_device_service.revoke_all(db_session, user)

    assert new_epoch == 1
    assert user.trusted_epoch == 1
    assert not trusted_device_service.validate(cookie, user.id, user.trusted_epoch)
    # A cookie minted afterwards is fine again
    fresh = trusted_device_service.mint(user.id, user.trusted_epoch)
    assert trusted_device_service.validate(fresh, user.id, user.trusted_epoch)


@pytest.mark.parametrize("signature", ["é", "ü" * 64, "☃"])
def test_non_ascii_signature_rejected(signature):
    user_id = uuid4()
    cookie_user, epoch, expiry, _ = _decode(trusted_device_service.mint(user_id, 0, now=NOW))
    forged = base64.urlsafe_b64encode(
        f"{cookie_user}:{epoch}:{expiry}:{signature}".encode()
    ).decode()

    assert trusted_device_service.validate(forged, user_id, 0, now=NOW) is False
