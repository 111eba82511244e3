# backend/gatekeeper/db/models/backup_code.py
"""
One-time recovery codes.

Only the hashes are stored. The set for a user is always replaced as a whole;
a single row is deleted when its code is spent.
"""

import uuid

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from gatekeeper.db.base_class import Base


class UserBackupCode(Base):
    __tablename__ = "user_backup_codes"
    __table_args__ = (UniqueConstraint("user_id", "position"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Order in which the codes were handed to the user
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    code_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    def __repr__(self) -> str:
        return f"<UserBackupCode(id={self.id}, user_id={self.user_id}, position={self.position})>"
