# backend/gatekeeper/services/breach_checker.py
"""
Breached-password lookup against the Have I Been Pwned range API.

Uses k-anonymity: only the first 5 hex characters of the SHA-1 digest are sent,
the matching is done locally on the returned suffixes. Padding is requested so
the response size does not leak the prefix bucket.
"""

import hashlib
import logging

import httpx

from gatekeeper.core.config import settings
from gatekeeper.exceptions import BreachCheckUnavailable, PasswordCompromised

logger = logging.getLogger(__name__)

PREFIX_LENGTH = 5


async def is_known_compromised(password: str) -> bool:
    """
    Return True if the password appears in the breach corpus.

    Raises BreachCheckUnavailable if the service cannot be queried.
    """
    if not settings.BREACH_CHECK_ENABLED:
        return False

    digest = hashlib.sha1(password.encode("utf-8")).hexdigest().upper()  # noqa: S324
    prefix, suffix = digest[:PREFIX_LENGTH], digest[PREFIX_LENGTH:]

    try:
        async with httpx.AsyncClient(timeout=settings.BREACH_CHECK_TIMEOUT_SECONDS) as client:
            response = await client.get(
                f"{settings.BREACH_CHECK_API_URL}{prefix}",
                headers={"Add-Padding": "true"},
            )
    except httpx.HTTPError as e:
        raise BreachCheckUnavailable(str(e)) from e

    if response.status_code != 200:
        raise BreachCheckUnavailable(f"Unexpected status {response.status_code}")

    for line in response.text.splitlines():
        candidate, _, count = line.strip().partition(":")
        if candidate.upper() != suffix:
            continue
        # Padding entries carry a count of 0
        try:
            return int(count) > 0
        except ValueError:
            return False
    return False


async def ensure_not_compromised(password: str) -> None:
    """
    Raise PasswordCompromised for a breached password.

    Fails open: if the lookup service is unavailable the password is accepted.
    """
    try:
        compromised = await is_known_compromised(password)
    except BreachCheckUnavailable as e:
        logger.warning("Breach check unavailable, accepting password: %s", e)
        return
    if compromised:
        raise PasswordCompromised()
