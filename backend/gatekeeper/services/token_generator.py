# backend/gatekeeper/services/token_generator.py
"""Random material for tokens, challenges and opaque ids. Always from `secrets`."""

import secrets

from webauthn.helpers import bytes_to_base64url

EMAIL_TOKEN_BYTES = 32  # 64 hex chars
RESET_SELECTOR_BYTES = 10  # 20 hex chars
RESET_VERIFIER_BYTES = 20  # 40 hex chars
CHALLENGE_BYTES = 32
OPAQUE_ID_BYTES = 32


def generate_hex_token(nbytes: int) -> str:
    return secrets.token_hex(nbytes)


def generate_email_verification_token() -> str:
    return generate_hex_token(EMAIL_TOKEN_BYTES)


def generate_reset_selector_and_verifier() -> tuple[str, str]:
    return generate_hex_token(RESET_SELECTOR_BYTES), generate_hex_token(RESET_VERIFIER_BYTES)


def generate_challenge() -> bytes:
    """Raw WebAuthn challenge bytes."""
    return secrets.token_bytes(CHALLENGE_BYTES)


def encode_challenge(challenge: bytes) -> str:
    return bytes_to_base64url(challenge)


def generate_opaque_id() -> str:
    """Identifier for pending logins and ceremonies, safe to hand to clients."""
    return secrets.token_urlsafe(OPAQUE_ID_BYTES)
