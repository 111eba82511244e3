# backend/gatekeeper/services/email_service.py
"""
Email service for sending transactional emails.
Uses stored Mailgun templates; the body lives in Mailgun, not here.
"""

import json
import logging
from typing import Any

import httpx

from gatekeeper.core.config import settings
from gatekeeper.core.security_logger import mask_email

logger = logging.getLogger(__name__)

VERIFY_EMAIL_TEMPLATE = "verify-email"
PASSWORD_RESET_TEMPLATE = "password-reset"


async def send_templated_email(
    to: str,
    subject: str,
    template_id: str,
    params: dict[str, Any],
) -> bool:
    """
    Send an email rendered from a Mailgun template.

    Returns True if the email was accepted, False otherwise. Failures are
    logged and never raised or retried.
    """
    if not settings.MAILGUN_API_KEY or not settings.MAILGUN_DOMAIN:
        logger.warning(
            "Mailgun not configured. Would have sent template %s to %s.",
            template_id,
            mask_email(to),
        )
        return False

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.post(
                f"https://api.mailgun.net/v3/{settings.MAILGUN_DOMAIN}/messages",
                auth=("api", settings.MAILGUN_API_KEY),
                data={
                    "from": f"{settings.MAILGUN_FROM_NAME} <{settings.MAILGUN_FROM_EMAIL}>",
                    "to": to,
                    "subject": subject,
                    "template": template_id,
                    "h:X-Mailgun-Variables": json.dumps(params),
                },
            )
    except httpx.HTTPError as e:
        logger.error("Failed to send email to %s: %s", mask_email(to), e)
        return False

    if response.status_code == 200:
        logger.info("Email (%s) sent to %s.", template_id, mask_email(to))
        return True

    logger.error("Mailgun API error: %s - %s", response.status_code, response.text[:200])
    return False


async def send_verification_email(email: str, token: str) -> bool:
    verify_url = f"{settings.FRONTEND_URL.rstrip('/')}/verify-email?token={token}"
    return await send_templated_email(
        email,
        "Confirm your email address",
        VERIFY_EMAIL_TEMPLATE,
        {
            "verify_url": verify_url,
            "expires_minutes": settings.EMAIL_VERIFICATION_TOKEN_TTL_MINUTES,
        },
    )


async def send_password_reset_email(email: str, token: str) -> bool:
    """Send password reset email with reset link."""
    reset_url = f"{settings.FRONTEND_URL.rstrip('/')}/reset-password?token={token}"
    return await send_templated_email(
        email,
        "Reset your password",
        PASSWORD_RESET_TEMPLATE,
        {
            "reset_url": reset_url,
            "expires_minutes": settings.PASSWORD_RESET_TOKEN_TTL_MINUTES,
        },
    )
