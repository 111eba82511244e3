# backend/gatekeeper/db/base.py

# Import every model so that Base.metadata is complete for Alembic's
# autogenerate and for create_all() in tests.
from gatekeeper.db.base_class import Base  # noqa: F401
from gatekeeper.db.models.backup_code import UserBackupCode  # noqa: F401
from gatekeeper.db.models.email_verification_token import EmailVerificationToken  # noqa: F401
from gatekeeper.db.models.password_reset_request import PasswordResetRequest  # noqa: F401
from gatekeeper.db.models.user import User  # noqa: F401
from gatekeeper.db.models.webauthn_credential import WebAuthnCredential  # noqa: F401
