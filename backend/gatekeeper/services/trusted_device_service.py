# backend/gatekeeper/services/trusted_device_service.py
"""
Trusted device cookies.

Nothing is stored server side. The cookie is
base64(user_id:trusted_epoch:expiry:hex(HMAC-SHA256(user_id:trusted_epoch:expiry)))
and becomes invalid when it expires or when the user's trusted_epoch moves on.
"""

import base64
import binascii
import hashlib
import hmac
import logging
from datetime import UTC, datetime, timedelta
from uuid import UUID

from fastapi import Response
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper import crud
from gatekeeper.core.config import settings
from gatekeeper.core.security_logger import security_log
from gatekeeper.db.models.user import User

logger = logging.getLogger(__name__)


def _sign(payload: str) -> str:
    key = settings.TRUSTED_DEVICE_SIGNING_KEY.encode("utf-8")
    return hmac.new(key, payload.encode("utf-8"), hashlib.sha256).hexdigest()


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(UTC)


def mint(user_id: UUID, trusted_epoch: int, now: datetime | None = None) -> str:
    expiry = int((_now(now) + timedelta(days=settings.TRUSTED_DEVICE_EXPIRY_DAYS)).timestamp())
    payload = f"{user_id}:{trusted_epoch}:{expiry}"
    raw = f"{payload}:{_sign(payload)}"
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")


def validate(cookie: str | None, user_id: UUID, trusted_epoch: int, now: datetime | None = None) -> bool:
    """Return True only for an authentic, unexpired cookie of this user at this epoch."""
    if not cookie:
        return False
    try:
        raw = base64.urlsafe_b64decode(cookie.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError):
        return False

    parts = raw.split(":")
    if len(parts) != 4:
        return False
    cookie_user, cookie_epoch, cookie_expiry, signature = parts

    try:
        epoch = int(cookie_epoch)
        expiry = int(cookie_expiry)
    except ValueError:
        return False

    expected = _sign(f"{cookie_user}:{cookie_epoch}:{cookie_expiry}")
    if not hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8")):
        return False

    if expiry <= int(_now(now).timestamp()):
        return False
    if cookie_user != str(user_id):
        return False
    return epoch == trusted_epoch


async def revoke_all(db: AsyncSession, user: User) -> int:
    """Invalidate every trusted-device cookie of the user. Returns the new epoch."""
    new_epoch = await crud.user.increment_trusted_epoch(db, user=user)
    security_log.trusted_devices_revoked(str(user.id))
    logger.info("Trusted devices revoked for user %s (epoch %d).", user.id, new_epoch)
    return new_epoch


def set_trusted_device_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.TRUSTED_DEVICE_COOKIE_NAME,
        value=token,
        max_age=settings.TRUSTED_DEVICE_EXPIRY_DAYS * 24 * 60 * 60,
        path=f"{settings.API_V1_STR}/auth",
        secure=settings.COOKIE_SECURE,
        httponly=True,
        samesite=settings.COOKIE_SAMESITE,
    )


def clear_trusted_device_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.TRUSTED_DEVICE_COOKIE_NAME,
        path=f"{settings.API_V1_STR}/auth",
        secure=settings.COOKIE_SECURE,
        httponly=True,
        samesite=settings.COOKIE_SAMESITE,
    )
