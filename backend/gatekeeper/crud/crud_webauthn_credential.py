# backend/gatekeeper/crud/crud_webauthn_credential.py
import logging
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.crud.base import CRUDBase
from gatekeeper.db.models.webauthn_credential import WebAuthnCredential

logger = logging.getLogger(__name__)


class CRUDWebAuthnCredential(CRUDBase[WebAuthnCredential]):
    async def get_by_credential_id(
        self, db: AsyncSession, *, credential_id: bytes
    ) -> WebAuthnCredential | None:
        result = await db.execute(
            select(WebAuthnCredential).where(WebAuthnCredential.credential_id == credential_id)
        )
        return result.scalar_one_or_none()

    async def get_for_user(
        self, db: AsyncSession, *, user_id: UUID, id: UUID
    ) -> WebAuthnCredential | None:
        result = await db.execute(
            select(WebAuthnCredential).where(
                WebAuthnCredential.id == id,
                WebAuthnCredential.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_for_user(
        self, db: AsyncSession, *, user_id: UUID, is_passkey: bool | None = None
    ) -> list[WebAuthnCredential]:
        """List a user's credentials, optionally only passkeys or only 2FA keys."""
        stmt = select(WebAuthnCredential).where(WebAuthnCredential.user_id == user_id)
        if is_passkey is not None:
            stmt = stmt.where(WebAuthnCredential.is_passkey.is_(is_passkey))
        result = await db.execute(stmt.order_by(WebAuthnCredential.created_at.desc()))
        return list(result.scalars().all())

    async def count_for_user(
        self, db: AsyncSession, *, user_id: UUID, is_passkey: bool | None = None
    ) -> int:
        stmt = (
            select(func.count())
            .select_from(WebAuthnCredential)
            .where(WebAuthnCredential.user_id == user_id)
        )
        if is_passkey is not None:
            stmt = stmt.where(WebAuthnCredential.is_passkey.is_(is_passkey))
        result = await db.execute(stmt)
        return result.scalar_one()

    async def create(self, db: AsyncSession, *, obj_in: dict[str, Any]) -> WebAuthnCredential:
        """Insert a credential. IntegrityError propagates on a duplicate credential id."""
        db_obj = await super().create(db, obj_in=obj_in)
        logger.info("WebAuthn credential %s registered for user %s.", db_obj.id, db_obj.user_id)
        return db_obj

    async def update_counter(
        self, db: AsyncSession, *, id: UUID, new_sign_count: int
    ) -> bool:
        """
        Persist a verified assertion's counter and last-used time.

        The update only applies if the stored counter is still below the new
        value (or both are zero). Returns False when another request advanced
        the counter first.
        """
        if new_sign_count == 0:
            counter_ok = WebAuthnCredential.sign_count == 0
        else:
            counter_ok = WebAuthnCredential.sign_count < new_sign_count
        result = await db.execute(
            update(WebAuthnCredential)
            .where(WebAuthnCredential.id == id, counter_ok)
            .values(sign_count=new_sign_count, last_used_at=datetime.now(UTC))
        )
        await db.commit()
        return result.rowcount == 1

    async def rename(
        self, db: AsyncSession, *, credential: WebAuthnCredential, name: str
    ) -> WebAuthnCredential:
        credential.name = name
        db.add(credential)
        await db.commit()
        await db.refresh(credential)
        return credential

    async def delete_for_user(self, db: AsyncSession, *, user_id: UUID, id: UUID) -> bool:
        result = await db.execute(
            delete(WebAuthnCredential).where(
                WebAuthnCredential.id == id,
                WebAuthnCredential.user_id == user_id,
            )
        )
        await db.commit()
        return result.rowcount == 1

    async def delete_second_factor_keys(self, db: AsyncSession, *, user_id: UUID) -> int:
        """Remove every non-passkey credential of a user. Does not commit."""
        result = await db.execute(
            delete(WebAuthnCredential).where(
                WebAuthnCredential.user_id == user_id,
                WebAuthnCredential.is_passkey.is_(False),
            )
        )
        return result.rowcount


webauthn_credential = CRUDWebAuthnCredential(WebAuthnCredential)
