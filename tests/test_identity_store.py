"""Tests for SqlIdentityStore."""

import asyncio

import pytest

from core.exceptions import IdentityErrorCode, IdentityServiceError
from utils.identity_store import SqlIdentityStore, is_valid_email


@pytest.mark.parametrize(
    "email,valid",
    [
        ("ana@example.com", True),
        ("first.last+tag@school.edu.ph", True),
        ("no-at-sign", False),
        ("ana@localhost", False),
        ("", False),
    ],
)
def test_email_grammar(email, valid):
    assert is_valid_email(email) is valid


@pytest.mark.asyncio
async def test_create_and_sign_in(identity_store):
    created = await identity_store.create_account("Ana@Example.com", "secret1")
    assert created.email == "ana@example.com"
    assert created.email_verified is False

    principal = await identity_store.sign_in("ana@example.com", "secret1")
    assert principal.user_id == created.user_id


@pytest.mark.asyncio
async def test_password_is_hashed(identity_store):
    hashed = identity_store.hash_password("secret1")
    assert hashed != "secret1"
    assert identity_store.verify_password("secret1", hashed)
    assert not identity_store.verify_password("secret2", hashed)
    assert not identity_store.verify_password("secret1", "not-a-hash")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "email,password,code",
    [
        ("bad", "secret1", IdentityErrorCode.INVALID_EMAIL),
        ("ana@example.com", "abc", IdentityErrorCode.WEAK_PASSWORD),
    ],
)
async def test_create_account_rejections(identity_store, email, password, code):
    with pytest.raises(IdentityServiceError) as exc_info:
        await identity_store.create_account(email, password)
    assert exc_info.value.code == code


@pytest.mark.asyncio
async def test_duplicate_email(identity_store):
    await identity_store.create_account("ana@example.com", "secret1")
    with pytest.raises(IdentityServiceError) as exc_info:
        await identity_store.create_account("ANA@example.com", "secret2")
    assert exc_info.value.code == IdentityErrorCode.EMAIL_ALREADY_IN_USE


@pytest.mark.asyncio
async def test_wrong_password_and_unknown_email(identity_store):
    await identity_store.create_account("ana@example.com", "secret1")
    for email, password in [("ana@example.com", "nope"), ("bo@example.com", "secret1")]:
        with pytest.raises(IdentityServiceError) as exc_info:
            await identity_store.sign_in(email, password)
        assert exc_info.value.code == IdentityErrorCode.INVALID_CREDENTIALS


@pytest.mark.asyncio
async def test_disabled_account(identity_store):
    created = await identity_store.create_account("ana@example.com", "secret1")
    await identity_store.set_disabled(created.user_id, True)
    with pytest.raises(IdentityServiceError) as exc_info:
        await identity_store.sign_in("ana@example.com", "secret1")
    assert exc_info.value.code == IdentityErrorCode.USER_DISABLED


@pytest.mark.asyncio
async def test_verification_flow(identity_store):
    created = await identity_store.create_account("ana@example.com", "secret1")
    await identity_store.send_verification_email(created.user_id)
    tokens = identity_store.list_verification_tokens(created.user_id)
    assert len(tokens) == 1

    verified = await identity_store.confirm_email(tokens[0])
    assert verified.email_verified is True
    assert (await identity_store.get_principal(created.user_id)).email_verified is True


@pytest.mark.asyncio
async def test_unknown_verification_token(identity_store):
    with pytest.raises(IdentityServiceError) as exc_info:
        await identity_store.confirm_email("nope")
    assert exc_info.value.code == IdentityErrorCode.INVALID_CREDENTIALS


@pytest.mark.asyncio
async def test_send_verification_to_unknown_user(identity_store):
    with pytest.raises(IdentityServiceError):
        await identity_store.send_verification_email("nobody")


@pytest.mark.asyncio
async def test_password_hashing_does_not_block_event_loop(session_factory):
    store = SqlIdentityStore(session_factory, bcrypt_rounds=10)
    await store.create_account("ana@example.com", "secret1")

    ticks = 0

    async def heartbeat():
        nonlocal ticks
        while True:
            await asyncio.sleep(0.001)
            ticks += 1

    beat = asyncio.ensure_future(heartbeat())
    await asyncio.sleep(0)
    await store.sign_in("ana@example.com", "secret1")
    beat.cancel()

    assert ticks > 0
