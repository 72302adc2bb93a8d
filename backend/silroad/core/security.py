"""Credential verification and session token generation."""

import secrets

import bcrypt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from silroad.models.user import User
from silroad.schemas.session import UserIdentity

TOKEN_BYTES = 32


def hash_password(password: str) -> str:
    """Hash a password with bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against a bcrypt hash."""
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


def generate_session_token() -> str:
    """Generate a cryptographically secure, URL-safe session token."""
    return secrets.token_urlsafe(TOKEN_BYTES)


async def verify_credentials(
    db: AsyncSession,
    *,
    email: str,
    password: str,
) -> UserIdentity | None:
    """Return the user's identity if email and password match, else None."""
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user is None or not verify_password(password, user.password_hash):
        return None
    return UserIdentity.model_validate(user)
