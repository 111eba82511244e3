# backend/gatekeeper/db/models/password_reset_request.py
"""
Password reset requests (split selector/verifier tokens).

The selector is stored in clear and used for the lookup. Only the SHA-256 of
the verifier is stored, so a database leak does not yield usable reset links.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from gatekeeper.db.base_class import Base


class PasswordResetRequest(Base):
    __tablename__ = "password_reset_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    selector: Mapped[str] = mapped_column(String(20), nullable=False, unique=True, index=True)

    hashed_verifier: Mapped[str] = mapped_column(String(64), nullable=False)

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<PasswordResetRequest(selector={self.selector}, user_id={self.user_id})>"
