"""Tests for the AccountService and the auth primitives."""

from datetime import timedelta

import pytest

from pairhub.errors import ApiError
from pairhub.models.user import User
from pairhub.security import create_token, decode_token
from pairhub.services.accounts import AccountService


@pytest.mark.asyncio
async def test_register_grants_signup_coins(store):
    accounts = AccountService(store, signup_coins=100)
    user = await accounts.register("Alice@Example.com ", "secret")

    assert user.email == "alice@example.com"
    assert user.coins == 100
    assert user.password_hash != "secret"


@pytest.mark.asyncio
async def test_register_duplicate_email(store):
    accounts = AccountService(store)
    await accounts.register("bob@example.com", "secret")

    with pytest.raises(ApiError) as exc_info:
        await accounts.register("BOB@example.com", "other")
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_register_requires_email_and_password(store):
    accounts = AccountService(store)
    with pytest.raises(ApiError):
        await accounts.register("", "secret")
    with pytest.raises(ApiError):
        await accounts.register("carol@example.com", "")


@pytest.mark.asyncio
async def test_register_rejects_overlong_password(store):
    accounts = AccountService(store)
    with pytest.raises(ApiError) as exc_info:
        await accounts.register("erin@example.com", "x" * 73)
    assert exc_info.value.status_code == 400

    # multi-byte characters count by their encoded size
    with pytest.raises(ApiError):
        await accounts.register("erin@example.com", "é" * 37)

    with pytest.raises(ApiError, match="Invalid credentials"):
        await accounts.authenticate("erin@example.com", "x" * 73)

    user = await accounts.register("erin@example.com", "x" * 72)
    assert (await accounts.authenticate("erin@example.com", "x" * 72)).id == user.id


@pytest.mark.asyncio
async def test_authenticate(store):
    accounts = AccountService(store)
    registered = await accounts.register("dan@example.com", "hunter2")

    user = await accounts.authenticate("dan@example.com", "hunter2")
    assert user.id == registered.id

    with pytest.raises(ApiError, match="Invalid credentials"):
        await accounts.authenticate("dan@example.com", "wrong")
    with pytest.raises(ApiError, match="Invalid credentials"):
        await accounts.authenticate("nobody@example.com", "hunter2")


@pytest.mark.asyncio
async def test_grant_tops_up_balance(store, make_user):
    user = await make_user(coins=3)
    accounts = AccountService(store)

    updated = await accounts.grant(user.id, 7)
    assert updated.coins == 10
    assert (await accounts.get(user.id)).coins == 10


def test_debit_clamps_at_zero():
    user = User(email="x@example.com", password_hash="x", coins=3)

    assert user.debit(2) == 2
    assert user.coins == 1
    assert user.debit(5) == 1
    assert user.coins == 0
    assert user.debit(5) == 0
    assert user.coins == 0


def test_token_round_trip():
    token = create_token("user-1", "u@example.com")
    assert decode_token(token) == "user-1"


def test_expired_token_rejected():
    token = create_token("user-1", "u@example.com", expires_in=timedelta(seconds=-1))
    with pytest.raises(ApiError, match="Token expired"):
        decode_token(token)


def test_garbage_token_rejected():
    with pytest.raises(ApiError) as exc_info:
        decode_token("not-a-token")
    assert exc_info.value.status_code == 401
