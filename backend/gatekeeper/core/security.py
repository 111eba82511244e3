# backend/gatekeeper/core/security.py

import base64
import hashlib
import logging
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken, MultiFernet
from fastapi_users.password import PasswordHelper

from gatekeeper.core.config import settings

logger = logging.getLogger(__name__)

# --- Password Hashing ---
# Argon2 for new hashes, bcrypt still verified (and flagged for rehash).
password_helper = PasswordHelper()

# Hash of a random password, used to keep timing flat for unknown accounts.
_DUMMY_HASH = password_helper.hash(password_helper.generate())


def get_password_hash(password: str) -> str:
    """Hashes a password using the configured password helper."""
    return password_helper.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> tuple[bool, str | None]:
    """
    Verify a password against a stored hash.

    Returns (verified, updated_hash). ``updated_hash`` is set when the stored
    hash uses an outdated algorithm or parameter set and should be replaced.
    """
    return password_helper.verify_and_update(plain_password, hashed_password)


def burn_password_check(plain_password: str) -> None:
    """Run one verification against a dummy hash (account enumeration guard)."""
    password_helper.verify_and_update(plain_password, _DUMMY_HASH)


# --- Field Encryption ---


def _derive_fernet_key(secret: str) -> bytes:
    return base64.urlsafe_b64encode(hashlib.sha256(secret.encode("utf-8")).digest())


@lru_cache(maxsize=1)
def _get_fernet() -> MultiFernet:
    keys = settings.DATA_ENCRYPTION_KEYS
    if not keys:
        raise ValueError("No data encryption keys configured.")
    return MultiFernet([Fernet(_derive_fernet_key(k)) for k in keys])


def encrypt_value(value: str) -> str:
    """Encrypt a value with the primary key of the keyring."""
    return _get_fernet().encrypt(value.encode("utf-8")).decode("utf-8")


def decrypt_value(token: str) -> str:
    """Decrypt a value with any key of the keyring. Raises ValueError on failure."""
    try:
        return _get_fernet().decrypt(token.encode("utf-8")).decode("utf-8")
    except InvalidToken as e:
        logger.error("Failed to decrypt value with the configured keyring.")
        raise ValueError("Unable to decrypt value with the configured keys.") from e
