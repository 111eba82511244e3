# backend/gatekeeper/db/models/webauthn_credential.py
"""
Model for WebAuthn credentials.

A credential is either a passkey (discoverable, used for passwordless login)
or a second-factor security key. The same authenticator may hold one of each.
"""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, LargeBinary, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from gatekeeper.db.base_class import Base


class WebAuthnCredential(Base):
    __tablename__ = "webauthn_credentials"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Raw credential ID from the authenticator, looked up on every assertion
    credential_id: Mapped[bytes] = mapped_column(
        LargeBinary, nullable=False, unique=True, index=True
    )

    # COSE-encoded public key
    public_key: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)

    # Signature counter, detects cloned authenticators
    sign_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Transport hints (e.g. ["usb", "internal", "hybrid"])
    transports: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)

    aaguid: Mapped[str | None] = mapped_column(String(36), nullable=True)

    name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    is_passkey: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # BE / BS flags (synced credentials)
    backup_eligible: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    backup_state: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<WebAuthnCredential(id={self.id}, user_id={self.user_id}, "
            f"name={self.name}, is_passkey={self.is_passkey}, sign_count={self.sign_count})>"
        )
