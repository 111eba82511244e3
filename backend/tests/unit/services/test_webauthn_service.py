# backend/tests/unit/services/test_webauthn_service.py
"""
Unit tests for the WebAuthn service.

Attestation and assertion cryptography belong to py_webauthn and are patched
out; these tests cover the policy around them.
"""

import json
from types import SimpleNamespace
from unittest.mock import patch
from uuid import uuid4

import pytest
import pytest_asyncio
from webauthn.helpers import bytes_to_base64url
from webauthn.helpers.exceptions import InvalidAuthenticationResponse, InvalidRegistrationResponse

from gatekeeper import crud
from gatekeeper.exceptions import (
    AssertionFailed,
    CredentialNotFound,
    RegistrationFailed,
    UnknownCredential,
    WrongUser,
)
from gatekeeper.services import webauthn_service
from gatekeeper.services.ephemeral_store import ChallengePurpose
from gatekeeper.services.webauthn_service import AssertionMode
from tests.factories import UserFactory

VERIFY_REGISTRATION = "gatekeeper.services.webauthn_service.verify_registration_response"
VERIFY_AUTHENTICATION = "gatekeeper.services.webauthn_service.verify_authentication_response"


def registration_result(credential_id: bytes, sign_count: int = 0):
    return SimpleNamespace(
        credential_id=credential_id,
        credential_public_key=b"cose-public-key",
        sign_count=sign_count,
        aaguid="00000000-0000-0000-0000-000000000000",
        credential_device_type="single_device",
        credential_backed_up=False,
    )


def registration_response(credential_id: bytes, transports=("usb", "bogus")) -> dict:
    encoded = bytes_to_base64url(credential_id)
    return {
        "id": encoded,
        "rawId": encoded,
        "type": "public-key",
        "response": {
            "clientDataJSON": "e30",
            "attestationObject": "o2NmbXRkbm9uZQ",
            "transports": list(transports),
        },
    }


def assertion_response(credential_id: bytes, user_handle: str | None = None) -> dict:
    encoded = bytes_to_base64url(credential_id)
    response = {
        "clientDataJSON": "e30",
        "authenticatorData": "AAAA",
        "signature": "AAAA",
    }
    if user_handle is not None:
        response["userHandle"] = bytes_to_base64url(user_handle.encode())
    return {"id": encoded, "rawId": encoded, "type": "public-key", "response": response}


async def add_credential(db, user, credential_id: bytes, *, is_passkey: bool, sign_count: int = 0):
    return await crud.webauthn_credential.create(
        db,
        obj_in={
            "user_id": user.id,
            "credential_id": credential_id,
            "public_key": b"cose-public-key",
            "sign_count": sign_count,
            "is_passkey": is_passkey,
            "transports": ["usb"],
        },
    )


@pytest_asyncio.fixture
async def user(db_session):
    user = UserFactory.create_user(db_session)
    await db_session.commit()
    return user


# --- Registration ---


@pytest.mark.asyncio
async def test_passkey_registration_options(db_session, user):
    pending = await webauthn_service.begin_registration(db_session, user, is_passkey=True)
    options = json.loads(pending.options_json)

    assert pending.purpose == ChallengePurpose.REGISTER
    assert pending.is_passkey is True
    assert pending.user_id == user.id
    assert options["challenge"] == pending.challenge
    assert options["authenticatorSelection"]["residentKey"] == "required"
    assert options["authenticatorSelection"]["userVerification"] == "required"
    assert options["attestation"] == "none"


@pytest.mark.asyncio
async def test_security_key_registration_options(db_session, user):
    pending = await webauthn_service.begin_registration(db_session, user, is_passkey=False)
    options = json.loads(pending.options_json)

    assert options["authenticatorSelection"]["residentKey"] == "discouraged"
    assert options["authenticatorSelection"]["userVerification"] == "preferred"


@pytest.mark.asyncio
async def test_exclusion_only_covers_same_role(db_session, user):
    await add_credential(db_session, user, b"passkey-cred", is_passkey=True)
    await add_credential(db_session, user, b"key-cred", is_passkey=False)

    passkey_options = json.loads(
        (await webauthn_service.begin_registration(db_session, user, is_passkey=True)).options_json
    )
    key_options = json.loads(
        (await webauthn_service.begin_registration(db_session, user, is_passkey=False)).options_json
    )

    assert [c["id"] for c in passkey_options["excludeCredentials"]] == [
        bytes_to_base64url(b"passkey-cred")
    ]
    assert [c["id"] for c in key_options["excludeCredentials"]] == [
        bytes_to_base64url(b"key-cred")
    ]


@pytest.mark.asyncio
async def test_same_authenticator_holds_passkey_and_security_key(db_session, user):
    passkey_pending = await webauthn_service.begin_registration(db_session, user, is_passkey=True)
    with patch(VERIFY_REGISTRATION, return_value=registration_result(b"cred-as-passkey")):
        passkey = await webauthn_service.complete_registration(
            db_session, user, registration_response(b"cred-as-passkey"), passkey_pending
        )

    key_pending = await webauthn_service.begin_registration(db_session, user, is_passkey=False)
    with patch(VERIFY_REGISTRATION, return_value=registration_result(b"cred-as-key")):
        key = await webauthn_service.complete_registration(
            db_session, user, registration_response(b"cred-as-key"), key_pending, name="YubiKey"
        )

    assert passkey.is_passkey is True
    assert passkey.name == "Passkey"
    assert key.is_passkey is False
    assert key.name == "YubiKey"
    assert key.transports == ["usb"]
    assert len(await webauthn_service.list_credentials(db_session, user)) == 2


@pytest.mark.asyncio
async def test_registration_checks_challenge_and_uv(db_session, user):
    pending = await webauthn_service.begin_registration(db_session, user, is_passkey=True)
    with patch(VERIFY_REGISTRATION, return_value=registration_result(b"cred")) as mock_verify:
        await webauthn_service.complete_registration(
            db_session, user, registration_response(b"cred"), pending
        )

    kwargs = mock_verify.call_args.kwargs
    assert bytes_to_base64url(kwargs["expected_challenge"]) == pending.challenge
    assert kwargs["require_user_verification"] is True


@pytest.mark.asyncio
async def test_duplicate_credential_rejected(db_session, user):
    await add_credential(db_session, user, b"taken", is_passkey=False)
    pending = await webauthn_service.begin_registration(db_session, user, is_passkey=True)

    with patch(VERIFY_REGISTRATION, return_value=registration_result(b"taken")):
        with pytest.raises(RegistrationFailed):
            await webauthn_service.complete_registration(
                db_session, user, registration_response(b"taken"), pending
            )


@pytest.mark.asyncio
async def test_failed_attestation_persists_nothing(db_session, user):
    pending = await webauthn_service.begin_registration(db_session, user, is_passkey=False)

    with patch(VERIFY_REGISTRATION, side_effect=InvalidRegistrationResponse("bad origin")):
        with pytest.raises(RegistrationFailed):
            await webauthn_service.complete_registration(
                db_session, user, registration_response(b"cred"), pending
            )
    assert await crud.webauthn_credential.count_for_user(db_session, user_id=user.id) == 0


# --- Assertion ---


@pytest.mark.asyncio
async def test_passkey_assertion_options_are_discoverable(db_session):
    pending = await webauthn_service.begin_assertion(db_session, AssertionMode.PASSKEY)
    options = json.loads(pending.options_json)

    assert pending.purpose == ChallengePurpose.PASSKEY_LOGIN
    assert pending.user_id is None
    assert options.get("allowCredentials", []) == []
    assert options["userVerification"] == "required"


@pytest.mark.asyncio
async def test_two_factor_assertion_lists_only_security_keys(db_session, user):
    await add_credential(db_session, user, b"passkey-cred", is_passkey=True)
    await add_credential(db_session, user, b"key-cred", is_passkey=False)

    pending = await webauthn_service.begin_assertion(db_session, AssertionMode.TWO_FACTOR, user)
    options = json.loads(pending.options_json)

    assert [c["id"] for c in options["allowCredentials"]] == [bytes_to_base64url(b"key-cred")]
    assert options["userVerification"] == "preferred"
    assert pending.user_id == user.id


@pytest.mark.asyncio
async def test_assertion_updates_counter(db_session, user):
    credential = await add_credential(db_session, user, b"key-cred", is_passkey=False, sign_count=5)
    pending = await webauthn_service.begin_assertion(db_session, AssertionMode.TWO_FACTOR, user)

    with patch(VERIFY_AUTHENTICATION, return_value=SimpleNamespace(new_sign_count=6)):
        verified = await webauthn_service.complete_assertion(
            db_session, assertion_response(b"key-cred"), pending, expected_user_id=user.id
        )

    assert verified.user_id == user.id
    assert verified.new_sign_count == 6
    await db_session.refresh(credential)
    assert credential.sign_count == 6
    assert credential.last_used_at is not None


@pytest.mark.asyncio
async def test_zero_counters_accepted(db_session, user):
    await add_credential(db_session, user, b"pk", is_passkey=True, sign_count=0)
    pending = await webauthn_service.begin_assertion(db_session, AssertionMode.PASSKEY)

    with patch(VERIFY_AUTHENTICATION, return_value=SimpleNamespace(new_sign_count=0)):
        verified = await webauthn_service.complete_assertion(
            db_session, assertion_response(b"pk", str(user.id)), pending
        )
    assert verified.user_id == user.id


@pytest.mark.asyncio
@pytest.mark.parametrize("stored, received", [(5, 5), (5, 3), (5, 0)])
async def test_counter_must_increase(db_session, user, stored, received):
    await add_credential(db_session, user, b"key-cred", is_passkey=False, sign_count=stored)
    pending = await webauthn_service.begin_assertion(db_session, AssertionMode.TWO_FACTOR, user)

    with patch(VERIFY_AUTHENTICATION, return_value=SimpleNamespace(new_sign_count=received)):
        with pytest.raises(AssertionFailed):
            await webauthn_service.complete_assertion(
                db_session, assertion_response(b"key-cred"), pending, expected_user_id=user.id
            )


@pytest.mark.asyncio
async def test_unknown_credential(db_session, user):
    pending = await webauthn_service.begin_assertion(db_session, AssertionMode.PASSKEY)

    with patch(VERIFY_AUTHENTICATION) as mock_verify:
        with pytest.raises(UnknownCredential):
            await webauthn_service.complete_assertion(
                db_session, assertion_response(b"never-registered"), pending
            )
        mock_verify.assert_not_called()


@pytest.mark.asyncio
async def test_foreign_credential_rejected_before_crypto(db_session, user):
    other = UserFactory.create_user(db_session)
    await db_session.commit()
    await add_credential(db_session, other, b"other-key", is_passkey=False)
    await add_credential(db_session, user, b"my-key", is_passkey=False)
    pending = await webauthn_service.begin_assertion(db_session, AssertionMode.TWO_FACTOR, user)

    with patch(VERIFY_AUTHENTICATION) as mock_verify:
        with pytest.raises(WrongUser):
            await webauthn_service.complete_assertion(
                db_session, assertion_response(b"other-key"), pending, expected_user_id=user.id
            )
        mock_verify.assert_not_called()


@pytest.mark.asyncio
async def test_security_key_cannot_log_in_passwordless(db_session, user):
    await add_credential(db_session, user, b"key-cred", is_passkey=False)
    pending = await webauthn_service.begin_assertion(db_session, AssertionMode.PASSKEY)

    with pytest.raises(UnknownCredential):
        await webauthn_service.complete_assertion(
            db_session, assertion_response(b"key-cred", str(user.id)), pending
        )


@pytest.mark.asyncio
async def test_passkey_cannot_serve_as_second_factor(db_session, user):
    await add_credential(db_session, user, b"pk", is_passkey=True)
    await add_credential(db_session, user, b"key-cred", is_passkey=False)
    pending = await webauthn_service.begin_assertion(db_session, AssertionMode.TWO_FACTOR, user)

    with pytest.raises(UnknownCredential):
        await webauthn_service.complete_assertion(
            db_session, assertion_response(b"pk"), pending, expected_user_id=user.id
        )


@pytest.mark.asyncio
async def test_user_handle_must_match_owner(db_session, user):
    await add_credential(db_session, user, b"pk", is_passkey=True)
    pending = await webauthn_service.begin_assertion(db_session, AssertionMode.PASSKEY)

    with pytest.raises(UnknownCredential):
        await webauthn_service.complete_assertion(
            db_session, assertion_response(b"pk", str(uuid4())), pending
        )


@pytest.mark.asyncio
async def test_invalid_signature(db_session, user):
    await add_credential(db_session, user, b"pk", is_passkey=True, sign_count=1)
    pending = await webauthn_service.begin_assertion(db_session, AssertionMode.PASSKEY)

    with patch(VERIFY_AUTHENTICATION, side_effect=InvalidAuthenticationResponse("bad sig")):
        with pytest.raises(AssertionFailed):
            await webauthn_service.complete_assertion(
                db_session, assertion_response(b"pk", str(user.id)), pending
            )


# --- Management ---


@pytest.mark.asyncio
async def test_rename_and_delete_are_owner_scoped(db_session, user):
    other = UserFactory.create_user(db_session)
    await db_session.commit()
    credential = await add_credential(db_session, user, b"key-cred", is_passkey=False)

    renamed = await webauthn_service.rename_credential(db_session, user, credential.id, "Desk key")
    assert renamed.name == "Desk key"

    with pytest.raises(CredentialNotFound):
        await webauthn_service.rename_credential(db_session, other, credential.id, "Mine now")
    with pytest.raises(CredentialNotFound):
        await webauthn_service.delete_credential(db_session, other, credential.id)

    await webauthn_service.delete_credential(db_session, user, credential.id)
    assert await webauthn_service.list_credentials(db_session, user) == []
