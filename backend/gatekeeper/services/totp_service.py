# backend/gatekeeper/services/totp_service.py
"""
TOTP (RFC 6238) helpers on top of pyotp.

30 second step, 6 digits, SHA-1, which is what every authenticator app
expects. Verification accepts the previous and next step for clock drift.
"""

import base64
import io
import logging
from datetime import datetime

import pyotp
import qrcode

from gatekeeper.core.config import settings

logger = logging.getLogger(__name__)

TOTP_INTERVAL = 30
TOTP_DIGITS = 6
VALID_WINDOW = 1


def generate_totp_secret() -> str:
    """Generate a new base32 TOTP secret."""
    return pyotp.random_base32()


def _totp(secret: str) -> pyotp.TOTP:
    return pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_INTERVAL)


def get_totp_uri(secret: str, email: str) -> str:
    """Generate the otpauth:// provisioning URI for QR code."""
    return _totp(secret).provisioning_uri(name=email, issuer_name=settings.TOTP_ISSUER)


def generate_qr_code_data_uri(uri: str) -> str:
    """Render the URI as a QR code PNG data URI."""
    qr = qrcode.QRCode(version=1, box_size=10, border=4)
    qr.add_data(uri)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")

    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("utf-8")


def verify_totp_code(secret: str, code: str, for_time: datetime | None = None) -> bool:
    """
    Verify a TOTP code against the secret.

    Allows for 1 window of tolerance (30 seconds before/after).
    """
    code = "".join(code.split())
    if len(code) != TOTP_DIGITS or not code.isdigit():
        return False
    return _totp(secret).verify(code, for_time=for_time, valid_window=VALID_WINDOW)
