# backend/gatekeeper/core/security_logger.py
"""
Dedicated security logger for fail2ban integration.

Writes security events in a format that fail2ban can parse. When
SECURITY_LOG_PATH is configured the events go to a rotating file, otherwise
they propagate to the root logger.
Includes log injection safeguards and proper timestamp formatting.
"""

import logging
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path

from gatekeeper.core.config import settings


def sanitize(value: object | None, max_length: int = 255) -> str:
    """
    Sanitize user input to prevent log injection attacks.

    Removes/escapes characters that could break log parsing or inject fake entries.

    Args:
        value: The value to sanitize
        max_length: Maximum length of the output

    Returns:
        Sanitized string safe for logging
    """
    if value is None or value == "":
        return "unknown"

    value = str(value).strip()

    # Newlines, carriage returns, brackets and control characters
    value = re.sub(r"[\n\r\[\]<>\x00-\x1f\x7f-\x9f]", "", value)

    return value[:max_length]


def mask_email(email: str | None) -> str:
    """
    Mask an email for privacy while keeping it recognisable.

    Shows the first 3 chars of the local part + masked + domain.
    """
    if not email or "@" not in email:
        return sanitize(email)

    local, domain = email.rsplit("@", 1)
    if len(local) > 3:
        masked_local = local[:3] + "***"
    else:
        masked_local = local[0] + "***" if local else "***"

    return f"{sanitize(masked_local)}@{sanitize(domain)}"


class SecurityLogger:
    """
    Security event logger for fail2ban integration.

    Log format compatible with fail2ban datepattern:
        2026-01-05 10:15:30 SECURITY [EVENT_TYPE] ip=x.x.x.x field=value ...

    All user-controlled fields are sanitized to prevent log injection.
    """

    _instance = None
    _initialized = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if SecurityLogger._initialized:
            return

        self.logger = logging.getLogger("security")
        self.logger.setLevel(logging.INFO)

        if settings.SECURITY_LOG_PATH:
            log_path = Path(settings.SECURITY_LOG_PATH)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            # Rotating file handler: 50MB max, keep 10 backups
            handler = RotatingFileHandler(
                str(log_path),
                maxBytes=50 * 1024 * 1024,
                backupCount=10,
            )
            handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s SECURITY [%(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
            self.logger.addHandler(handler)
            self.logger.propagate = False

        SecurityLogger._initialized = True

    def failed_login(self, ip: str | None, email: str, reason: str) -> None:
        """
        Log a failed login attempt.

        Args:
            ip: Client IP address
            email: Email that was attempted
            reason: Failure reason (BAD_CREDENTIALS, UNVERIFIED, INACTIVE)
        """
        self.logger.info(
            "FAILED_LOGIN] ip=%s email=%s reason=%s",
            sanitize(ip),
            mask_email(email),
            sanitize(reason),
        )

    def successful_login(self, ip: str | None, user_id: str, method: str) -> None:
        """Log a completed sign-in (audit trail, not for banning)."""
        self.logger.info(
            "LOGIN_SUCCESS] ip=%s user_id=%s method=%s",
            sanitize(ip),
            sanitize(user_id),
            sanitize(method),
        )

    def second_factor_failed(self, ip: str | None, user_id: str, method: str) -> None:
        """Log a rejected TOTP, backup or WebAuthn second factor."""
        self.logger.info(
            "MFA_FAILED] ip=%s user_id=%s method=%s",
            sanitize(ip),
            sanitize(user_id),
            sanitize(method),
        )

    def backup_code_used(self, user_id: str, remaining: int) -> None:
        self.logger.info("BACKUP_CODE_USED] user_id=%s remaining=%d", sanitize(user_id), remaining)

    def bad_token(self, ip: str | None, reason: str) -> None:
        """
        Log a suspicious token attempt (unknown, used, bad verifier).

        Note: Do NOT log expired tokens - those are normal behavior.
        """
        self.logger.info("BAD_TOKEN] ip=%s reason=%s", sanitize(ip), sanitize(reason))

    def webauthn_failed(self, ip: str | None, reason: str) -> None:
        self.logger.info("WEBAUTHN_FAILED] ip=%s reason=%s", sanitize(ip), sanitize(reason))

    def possible_cloned_authenticator(self, credential_id: str, stored: int, received: int) -> None:
        self.logger.warning(
            "CLONED_AUTHENTICATOR] credential=%s stored_count=%d received_count=%d",
            sanitize(credential_id, max_length=64),
            stored,
            received,
        )

    def trusted_devices_revoked(self, user_id: str) -> None:
        self.logger.info("TRUSTED_DEVICES_REVOKED] user_id=%s", sanitize(user_id))

    def rate_limited(self, ip: str | None, endpoint: str) -> None:
        self.logger.info(
            "RATE_LIMIT] ip=%s endpoint=%s", sanitize(ip), sanitize(endpoint, max_length=100)
        )


# Singleton instance for easy import
security_log = SecurityLogger()
