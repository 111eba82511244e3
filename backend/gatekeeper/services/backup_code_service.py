# backend/gatekeeper/services/backup_code_service.py
"""
One-time backup (recovery) codes.

Codes are 8 symbols from a 32-symbol alphabet without the look-alike
characters 0, O, 1 and I, shown to the user as XXXX-XXXX. Only password-hasher
digests are stored.
"""

import secrets

from gatekeeper.core.config import settings
from gatekeeper.core.security import password_helper

ALPHABET = "23456789ABCDEFGHJKLMNPQRSTUVWXYZ"
CODE_LENGTH = 8
GROUP_SIZE = 4


def generate_backup_codes(count: int | None = None) -> list[str]:
    """Generate a fresh batch of display-formatted codes."""
    if count is None:
        count = settings.BACKUP_CODE_COUNT
    codes = []
    for _ in range(count):
        raw = "".join(secrets.choice(ALPHABET) for _ in range(CODE_LENGTH))
        codes.append(f"{raw[:GROUP_SIZE]}-{raw[GROUP_SIZE:]}")
    return codes


def normalize_backup_code(code: str) -> str:
    """Case-fold and drop hyphens and whitespace, so 'abcd efgh' == 'ABCD-EFGH'."""
    return "".join(ch for ch in code.upper() if ch != "-" and not ch.isspace())


def hash_backup_code(code: str) -> str:
    return password_helper.hash(normalize_backup_code(code))


def hash_backup_codes(codes: list[str]) -> list[str]:
    return [hash_backup_code(code) for code in codes]


def verify_backup_code(code: str, hashes: list[str]) -> int | None:
    """
    Return the index of the hash matching the code, or None.

    Input that cannot be a backup code is rejected before any hashing.
    """
    normalized = normalize_backup_code(code)
    if len(normalized) != CODE_LENGTH or any(ch not in ALPHABET for ch in normalized):
        return None
    for index, code_hash in enumerate(hashes):
        verified, _ = password_helper.verify_and_update(normalized, code_hash)
        if verified:
            return index
    return None
