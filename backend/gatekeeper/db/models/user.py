# /backend/gatekeeper/db/models/user.py

import enum
from datetime import datetime

from fastapi_users_db_sqlalchemy import SQLAlchemyBaseUserTableUUID
from sqlalchemy import DateTime, Enum, Integer, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from gatekeeper.db.base_class import Base


class UserRole(enum.StrEnum):
    STANDARD = "standard"
    ADMIN = "admin"


class User(SQLAlchemyBaseUserTableUUID, Base):
    __tablename__ = "users"

    role: Mapped[UserRole] = mapped_column(
        Enum(
            UserRole,
            name="user_role",
            native_enum=False,
            length=50,
            values_callable=lambda roles: [r.value for r in roles],
        ),
        default=UserRole.STANDARD,
        nullable=False,
        index=True,
    )
    # Bumped to invalidate every trusted-device cookie issued so far
    trusted_epoch: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    # Fernet token, never the plain base32 secret
    totp_secret: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<User(id={self.id!r}, email={self.email!r}, role={self.role!r}, "
            f"trusted_epoch={self.trusted_epoch!r})>"
        )
