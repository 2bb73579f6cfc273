"""
Authentication Utilities
Password hashing, session tokens and the request dependencies guarding write endpoints.
"""
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import bcrypt
from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from .config import config
from .database import UserDB, SessionTokenDB, get_db
from .db_helpers import get_session_by_token, get_user_by_id, get_user_by_email
from .errors import UnauthorizedError
from .logger import logger
from .models import utc_now


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with configurable rounds.

    Args:
        password: Plain text password

    Returns:
        Bcrypt hash string
    """
    salt = bcrypt.gensalt(rounds=config.BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against its hash. A malformed hash never matches."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def generate_token() -> str:
    """Generate a cryptographically secure session token."""
    return secrets.token_urlsafe(32)


def get_token_expiry() -> datetime:
    """Get the expiry datetime for a new session token."""
    return utc_now() + timedelta(hours=config.SESSION_TOKEN_EXPIRE_HOURS)


def is_token_expired(expires_at: Optional[datetime]) -> bool:
    """
    Check if a token has expired.

    Args:
        expires_at: Token expiry as naive UTC, or None for a non-expiring token

    Returns:
        True if token is expired
    """
    if expires_at is None:
        return False
    if expires_at.tzinfo is not None:
        expires_at = expires_at.replace(tzinfo=None) - (expires_at.utcoffset() or timedelta())
    return utc_now() > expires_at


async def issue_session(db: AsyncSession, user: UserDB) -> str:
    """Create and persist a new session token for a user."""
    token = generate_token()
    db.add(SessionTokenDB(token=token, user_id=user.id, expires_at=get_token_expiry()))
    await db.commit()
    return token


async def seed_demo_user(db: AsyncSession) -> Optional[UserDB]:
    """Create the configured demo operator if it does not exist yet."""
    if not (config.DEMO_ADMIN_EMAIL and config.DEMO_ADMIN_PASSWORD):
        return None

    existing = await get_user_by_email(db, config.DEMO_ADMIN_EMAIL)
    if existing:
        return existing

    user = UserDB(
        email=config.DEMO_ADMIN_EMAIL,
        password_hash=hash_password(config.DEMO_ADMIN_PASSWORD)
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    logger.info(f"Demo operator created: {user.email}")
    return user


async def _user_from_bearer(db: AsyncSession, authorization: Optional[str]) -> Optional[UserDB]:
    if not authorization or not authorization.startswith("Bearer "):
        return None

    session = await get_session_by_token(db, authorization[len("Bearer "):])
    if not session:
        return None

    if is_token_expired(session.expires_at):
        # Clean up expired token
        await db.delete(session)
        await db.commit()
        return None

    user = await get_user_by_id(db, session.user_id)
    if not user or not user.is_active:
        return None
    return user


# User token authentication (for the dashboard / CLI)
async def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
    db: AsyncSession = Depends(get_db)
) -> UserDB:
    """Get current user from Bearer token."""
    user = await _user_from_bearer(db, authorization)
    if not user:
        raise UnauthorizedError("Invalid or expired token")
    return user


# Combined authentication - accepts EITHER session token OR admin API key
async def verify_auth(
    authorization: Optional[str] = Header(None, alias="Authorization"),
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """
    Flexible auth for write endpoints. Accepts either:
    - Bearer token (operators logged in via /auth/login)
    - X-API-Key matching ADMIN_API_KEY (automation)

    Returns a principal dict with the display name recorded on timeline events.
    """
    user = await _user_from_bearer(db, authorization)
    if user:
        return {"type": "user", "user": user, "name": user.email}

    if x_api_key and config.ADMIN_API_KEY and secrets.compare_digest(x_api_key, config.ADMIN_API_KEY):
        return {"type": "admin", "user": None, "name": "admin"}

    raise UnauthorizedError("Authentication required")
