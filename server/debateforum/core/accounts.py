"""Local email/password accounts."""

import hashlib
import logging
import secrets
import uuid
from datetime import datetime, timedelta

import bcrypt
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from debateforum.core.exceptions import UnauthorizedError, ValidationError
from debateforum.database.database import create_item, get_first_by_filters
from debateforum.database.models import PasswordResetToken, User, utcnow

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 12
RESET_TOKEN_TTL = timedelta(hours=24)
# auth_id prefix of accounts created by signup
LOCAL_AUTH_PREFIX = "local|"


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


async def signup(session: AsyncSession, name: str, email: str, password: str) -> User:
    email = email.strip().lower()
    async with session.begin():
        if await get_first_by_filters(session, User, email=email) is not None:
            raise ValidationError("User with this email already exists")
        user = await create_item(
            session,
            {
                "auth_id": f"{LOCAL_AUTH_PREFIX}{uuid.uuid4().hex}",
                "name": name.strip(),
                "email": email,
                "password_hash": hash_password(password),
            },
            User,
            commit=False,
        )
    logger.info(f"User {user.id} registered")
    return user


async def authenticate(session: AsyncSession, email: str, password: str) -> User:
    async with session.begin():
        user = await get_first_by_filters(session, User, email=email.strip().lower())
    if user is None or not user.password_hash or not verify_password(password, user.password_hash):
        raise UnauthorizedError("Invalid email or password")
    return user


async def request_password_reset(
    session: AsyncSession, email: str, now: datetime | None = None
) -> tuple[User, str] | None:
    """Issue a reset token for ``email``; None when no such user exists.

    Only the token's hash is stored; the raw token goes out by email.
    """
    now = now or utcnow()
    email = email.strip().lower()
    async with session.begin():
        user = await get_first_by_filters(session, User, email=email)
        if user is None:
            return None
        await session.execute(
            delete(PasswordResetToken).where(PasswordResetToken.email == email)
        )
        token = secrets.token_hex(32)
        await create_item(
            session,
            {"email": email, "token": hash_token(token), "expires": now + RESET_TOKEN_TTL},
            PasswordResetToken,
            commit=False,
        )
    return user, token


async def reset_password(
    session: AsyncSession, token: str, new_password: str, now: datetime | None = None
) -> User:
    now = now or utcnow()
    async with session.begin():
        reset_token = await get_first_by_filters(
            session, PasswordResetToken, token=hash_token(token)
        )
        if reset_token is None or reset_token.expires < now:
            raise ValidationError("Invalid or expired reset token")
        user = await get_first_by_filters(session, User, email=reset_token.email)
        if user is None:
            raise ValidationError("Invalid or expired reset token")
        user.password_hash = hash_password(new_password)
        await session.delete(reset_token)
    logger.info(f"Password reset for user {user.id}")
    return user
