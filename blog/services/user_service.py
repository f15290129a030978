"""
User service — registration, sign-in and public user serialisation.

Only ``author_to_dict`` and ``user_to_dict`` ever leave this module, and
neither exposes the password hash.
"""
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from blog.exceptions import Conflict, Unauthorized, ValidationError
from blog.models import User
from blog.schemas import UserLogin, UserRegister
from blog.security import hash_password, verify_password

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
# bcrypt only looks at the first 72 bytes of a password.
MAX_PASSWORD_BYTES = 72


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def author_to_dict(user: User | None) -> dict | None:
    """The identity embedded in posts and comments: id, name and email."""
    if user is None:
        return None
    return {"id": user.id, "name": user.name, "email": user.email}


def user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "image": user.image,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
    }


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email.strip().lower()))
    return result.scalar_one_or_none()


async def register_user(db: AsyncSession, data: UserRegister) -> User:
    """
    Create a user with a bcrypt password hash.

    The email is stored lowercased.  A taken email raises ``Conflict``; the
    router also translates a late unique-index violation into the same
    error.
    """
    name = (data.name or "").strip()
    email = (data.email or "").strip().lower()
    password = data.password or ""

    if not name or not email or not password:
        raise ValidationError("Name, email, and password are required")
    if "@" not in email:
        raise ValidationError("Email address is invalid")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")

    if await get_user_by_email(db, email) is not None:
        raise Conflict("Email is already registered")

    user = User(
        name=name,
        email=email,
        password_hash=hash_password(password),
        image=data.image or None,
    )
    db.add(user)
    await db.flush()
    logger.info("Registered user id=%d", user.id)
    return user


async def authenticate(db: AsyncSession, data: UserLogin) -> User:
    """Return the user for valid credentials; ``Unauthorized`` otherwise."""
    if not (data.email or "").strip() or not data.password:
        raise ValidationError("Email and password are required")

    user = await get_user_by_email(db, data.email)
    if user is None or not verify_password(data.password, user.password_hash):
        raise Unauthorized("Invalid email or password")
    return user
