# backend/gatekeeper/crud/crud_user.py
import logging
from uuid import UUID

from sqlalchemy import delete, exists, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.core.security import decrypt_value, encrypt_value
from gatekeeper.core.security_logger import mask_email
from gatekeeper.crud.base import CRUDBase
from gatekeeper.db.models.backup_code import UserBackupCode
from gatekeeper.db.models.email_verification_token import EmailVerificationToken
from gatekeeper.db.models.password_reset_request import PasswordResetRequest
from gatekeeper.db.models.user import User, UserRole
from gatekeeper.db.models.webauthn_credential import WebAuthnCredential

logger = logging.getLogger(__name__)


class CRUDUser(CRUDBase[User]):
    async def get_by_email(self, db: AsyncSession, *, email: str) -> User | None:
        """
        Get a user by email. Addresses are stored lower-case.
        """
        result = await db.execute(select(self.model).filter(self.model.email == email.lower()))
        user = result.scalars().first()
        if user:
            logger.debug("User found by email %s (ID: %s)", mask_email(email), user.id)
        else:
            logger.debug("No user found with email %s", mask_email(email))
        return user

    async def create(
        self,
        db: AsyncSession,
        *,
        email: str,
        hashed_password: str,
        role: UserRole = UserRole.STANDARD,
        is_verified: bool = False,
    ) -> User:
        """
        Create a new user with an already hashed password.
        is_superuser is kept in sync with the admin role.
        """
        db_obj = self.model(
            email=email.lower(),
            hashed_password=hashed_password,
            role=role,
            is_superuser=role == UserRole.ADMIN,
            is_active=True,
            is_verified=is_verified,
            trusted_epoch=0,
        )
        db.add(db_obj)
        await db.commit()
        await db.refresh(db_obj)
        logger.info("User %s created with role %s.", db_obj.id, db_obj.role)
        return db_obj

    async def delete_unverified(self, db: AsyncSession, *, user: User) -> bool:
        """
        Delete an account that never confirmed its email, with its tokens.
        Returns False if the account got verified in the meantime.
        """
        result = await db.execute(
            delete(User)
            .where(User.id == user.id, User.is_verified.is_(False))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        # Explicit cleanup for backends that do not enforce ON DELETE CASCADE
        await db.execute(
            delete(EmailVerificationToken).where(EmailVerificationToken.user_id == user.id)
        )
        await db.execute(delete(PasswordResetRequest).where(PasswordResetRequest.user_id == user.id))
        await db.commit()
        db.expunge(user)
        logger.info("Unverified user %s deleted.", user.id)
        return True

    async def update_password_hash(self, db: AsyncSession, *, user: User, hashed_password: str) -> None:
        user.hashed_password = hashed_password
        db.add(user)
        await db.commit()
        logger.debug("Password hash updated for user %s.", user.id)

    async def set_verified(self, db: AsyncSession, *, user_id: UUID) -> None:
        await db.execute(update(User).where(User.id == user_id).values(is_verified=True))

    # --- TOTP ---

    async def set_totp_secret(self, db: AsyncSession, *, user: User, secret: str | None) -> None:
        """Store the TOTP secret encrypted, or clear it with None."""
        user.totp_secret = encrypt_value(secret) if secret is not None else None
        db.add(user)
        await db.commit()

    def get_totp_secret(self, user: User) -> str | None:
        if not user.totp_secret:
            return None
        return decrypt_value(user.totp_secret)

    # --- Backup codes ---

    async def set_backup_code_hashes(
        self, db: AsyncSession, *, user_id: UUID, hashes: list[str]
    ) -> None:
        """Replace the whole backup code set of a user."""
        await db.execute(delete(UserBackupCode).where(UserBackupCode.user_id == user_id))
        db.add_all(
            UserBackupCode(user_id=user_id, position=position, code_hash=code_hash)
            for position, code_hash in enumerate(hashes)
        )
        await db.commit()

    async def get_backup_codes(self, db: AsyncSession, *, user_id: UUID) -> list[UserBackupCode]:
        result = await db.execute(
            select(UserBackupCode)
            .where(UserBackupCode.user_id == user_id)
            .order_by(UserBackupCode.position)
        )
        return list(result.scalars().all())

    async def delete_backup_code(self, db: AsyncSession, *, code_id: UUID) -> bool:
        """
        Spend a backup code. Commits immediately.
        Returns False if a concurrent request already deleted the row.
        """
        result = await db.execute(delete(UserBackupCode).where(UserBackupCode.id == code_id))
        await db.commit()
        return result.rowcount == 1

    async def count_backup_codes(self, db: AsyncSession, *, user_id: UUID) -> int:
        result = await db.execute(
            select(func.count()).select_from(UserBackupCode).where(UserBackupCode.user_id == user_id)
        )
        return result.scalar_one()

    # --- Trusted devices ---

    async def increment_trusted_epoch(self, db: AsyncSession, *, user: User) -> int:
        """Bump the epoch in SQL so concurrent revocations never get lost."""
        await db.execute(
            update(User)
            .where(User.id == user.id)
            .values(trusted_epoch=User.trusted_epoch + 1)
        )
        await db.commit()
        await db.refresh(user, ["trusted_epoch"])
        return user.trusted_epoch

    async def has_second_factor(self, db: AsyncSession, *, user: User) -> bool:
        """
        Second factor is on if a TOTP secret is stored or the user owns at
        least one non-passkey WebAuthn credential.
        """
        if user.totp_secret:
            return True
        result = await db.execute(
            select(
                exists().where(
                    WebAuthnCredential.user_id == user.id,
                    WebAuthnCredential.is_passkey.is_(False),
                )
            )
        )
        return bool(result.scalar())


user = CRUDUser(User)
