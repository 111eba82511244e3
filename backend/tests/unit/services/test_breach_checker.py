# backend/tests/unit/services/test_breach_checker.py
"""
Breach checker against a mocked range API.
"""

import hashlib

import httpx
import pytest

from gatekeeper.core.config import settings
from gatekeeper.exceptions import BreachCheckUnavailable, PasswordCompromised
from gatekeeper.services import breach_checker

PASSWORD = "password123"
DIGEST = hashlib.sha1(PASSWORD.encode()).hexdigest().upper()  # noqa: S324
PREFIX, SUFFIX = DIGEST[:5], DIGEST[5:]
RANGE_URL = f"{settings.BREACH_CHECK_API_URL}{PREFIX}"


@pytest.fixture(autouse=True)
def enable_breach_check(monkeypatch):
    monkeypatch.setattr(settings, "BREACH_CHECK_ENABLED", True)


@pytest.mark.asyncio
async def test_only_prefix_is_sent(httpx_mock):
    httpx_mock.add_response(url=RANGE_URL, text="0000000000000000000000000000000000A:3\r\n")

    await breach_checker.is_known_compromised(PASSWORD)

    request = httpx_mock.get_request()
    assert request.url.path.endswith(f"/{PREFIX}")
    assert SUFFIX not in str(request.url)
    assert request.headers["Add-Padding"] == "true"


@pytest.mark.asyncio
async def test_compromised_password_detected(httpx_mock):
    httpx_mock.add_response(
        url=RANGE_URL,
        text=f"0000000000000000000000000000000000A:3\r\n{SUFFIX}:24230577\r\n",
    )

    assert await breach_checker.is_known_compromised(PASSWORD) is True


@pytest.mark.asyncio
async def test_suffix_match_is_case_insensitive(httpx_mock):
    httpx_mock.add_response(url=RANGE_URL, text=f"{SUFFIX.lower()}:2\n")

    assert await breach_checker.is_known_compromised(PASSWORD) is True


@pytest.mark.asyncio
async def test_padding_entry_is_not_a_hit(httpx_mock):
    httpx_mock.add_response(url=RANGE_URL, text=f"{SUFFIX}:0\r\n")

    assert await breach_checker.is_known_compromised(PASSWORD) is False


@pytest.mark.asyncio
async def test_unknown_password(httpx_mock):
    httpx_mock.add_response(url=RANGE_URL, text="0000000000000000000000000000000000A:3\r\n")

    assert await breach_checker.is_known_compromised(PASSWORD) is False


@pytest.mark.asyncio
async def test_server_error_is_unavailable(httpx_mock):
    httpx_mock.add_response(url=RANGE_URL, status_code=503)

    with pytest.raises(BreachCheckUnavailable):
        await breach_checker.is_known_compromised(PASSWORD)


@pytest.mark.asyncio
async def test_timeout_is_unavailable(httpx_mock):
    httpx_mock.add_exception(httpx.ReadTimeout("timed out"), url=RANGE_URL)

    with pytest.raises(BreachCheckUnavailable):
        await breach_checker.is_known_compromised(PASSWORD)


@pytest.mark.asyncio
async def test_ensure_not_compromised_raises(httpx_mock):
    httpx_mock.add_response(url=RANGE_URL, text=f"{SUFFIX}:10\r\n")

    with pytest.raises(PasswordCompromised):
        await breach_checker.ensure_not_compromised(PASSWORD)


@pytest.mark.asyncio
async def test_ensure_not_compromised_fails_open(httpx_mock):
    httpx_mock.add_exception(httpx.ConnectError("no route"), url=RANGE_URL)

    await breach_checker.ensure_not_compromised(PASSWORD)


@pytest.mark.asyncio
async def test_disabled_check_makes_no_request(monkeypatch, httpx_mock):
    monkeypatch.setattr(settings, "BREACH_CHECK_ENABLED", False)

    assert await breach_checker.is_known_compromised(PASSWORD) is False
    assert httpx_mock.get_requests() == []
