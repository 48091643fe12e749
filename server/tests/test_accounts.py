from datetime import timedelta

import pytest

from debateforum.core import accounts
from debateforum.core.exceptions import UnauthorizedError, ValidationError
from debateforum.database.database import get_first_by_filters
from debateforum.database.models import PasswordResetToken, utcnow


@pytest.fixture(autouse=True)
def fast_hashing(monkeypatch):
    monkeypatch.setattr(accounts, "BCRYPT_ROUNDS", 4)


async def _signup(session_factory, email="dana@example.com", password="correct horse"):
    async with session_factory() as session:
        return await accounts.signup(session, "Dana", email, password)


def test_password_hash_round_trip():
    hashed = accounts.hash_password("s3cret-pass")
    assert hashed != "s3cret-pass"
    assert accounts.verify_password("s3cret-pass", hashed)
    assert not accounts.verify_password("wrong-pass", hashed)


@pytest.mark.asyncio
async def test_signup_and_login(session_factory):
    user = await _signup(session_factory, email="  Dana@Example.com ")

    assert user.email == "dana@example.com"
    assert user.auth_id.startswith("local|")

    async with session_factory() as session:
        logged_in = await accounts.authenticate(session, "DANA@example.com", "correct horse")
    assert logged_in.id == user.id


@pytest.mark.asyncio
async def test_signup_rejects_duplicate_email(session_factory):
    await _signup(session_factory)
    with pytest.raises(ValidationError, match="already exists"):
        await _signup(session_factory)


@pytest.mark.asyncio
async def test_login_rejects_bad_credentials(session_factory):
    await _signup(session_factory)
    async with session_factory() as session:
        with pytest.raises(UnauthorizedError, match="Invalid email or password"):
            await accounts.authenticate(session, "dana@example.com", "wrong password")
    async with session_factory() as session:
        with pytest.raises(UnauthorizedError):
            await accounts.authenticate(session, "nobody@example.com", "whatever1")


@pytest.mark.asyncio
async def test_password_reset_flow(session_factory):
    user = await _signup(session_factory)

    async with session_factory() as session:
        issued_user, token = await accounts.request_password_reset(session, "dana@example.com")
    assert issued_user.id == user.id

    async with session_factory() as session:
        stored = await get_first_by_filters(session, PasswordResetToken, email=user.email)
    assert stored.token == accounts.hash_token(token)

    async with session_factory() as session:
        await accounts.reset_password(session, token, "a brand new password")
    async with session_factory() as session:
        assert await accounts.authenticate(session, user.email, "a brand new password")

    # Tokens are single use.
    async with session_factory() as session:
        with pytest.raises(ValidationError, match="Invalid or expired"):
            await accounts.reset_password(session, token, "yet another password")


@pytest.mark.asyncio
async def test_new_reset_request_replaces_old_token(session_factory):
    await _signup(session_factory)
    async with session_factory() as session:
        _, first = await accounts.request_password_reset(session, "dana@example.com")
    async with session_factory() as session:
        _, second = await accounts.request_password_reset(session, "dana@example.com")

    async with session_factory() as session:
        with pytest.raises(ValidationError):
            await accounts.reset_password(session, first, "a brand new password")
    async with session_factory() as session:
        await accounts.reset_password(session, second, "a brand new password")


@pytest.mark.asyncio
async def test_expired_reset_token(session_factory):
    await _signup(session_factory)
    async with session_factory() as session:
        _, token = await accounts.request_password_reset(session, "dana@example.com")

    later = utcnow() + accounts.RESET_TOKEN_TTL + timedelta(minutes=1)
    async with session_factory() as session:
        with pytest.raises(ValidationError, match="Invalid or expired"):
            await accounts.reset_password(session, token, "a brand new password", now=later)


@pytest.mark.asyncio
async def test_reset_request_for_unknown_email(session_factory):
    async with session_factory() as session:
        assert await accounts.request_password_reset(session, "ghost@example.com") is None
