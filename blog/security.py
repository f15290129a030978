"""
Session token and password helpers.
"""

from __future__ import annotations

import time
from typing import Any

import bcrypt
import jwt

from blog.config import settings


class SessionTokenError(RuntimeError):
    pass


def now_epoch_s() -> int:
    return int(time.time())


def hash_password(plain_password: str) -> str:
    password = (plain_password or "").encode("utf-8")
    if not password:
        raise ValueError("Password is empty.")
    return bcrypt.hashpw(password, bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    password = (plain_password or "").encode("utf-8")
    hashed = (password_hash or "").encode("utf-8")
    if not password or not hashed:
        return False
    try:
        return bcrypt.checkpw(password, hashed)
    except ValueError:
        return False


def build_access_token(*, user_id: int, email: str, expires_in_s: int | None = None) -> str:
    issued_at = now_epoch_s()
    if expires_in_s is None:
        expires_in_s = settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60

    payload = {
        "sub": str(user_id),
        "email": email,
        "type": "access",
        "iat": issued_at,
        "exp": issued_at + expires_in_s,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    raw = (token or "").strip()
    if not raw:
        raise SessionTokenError("Access token is empty.")

    try:
        payload = jwt.decode(raw, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.InvalidTokenError as exc:
        raise SessionTokenError("Invalid access token.") from exc

    if str(payload.get("type") or "").lower() != "access":
        raise SessionTokenError("Token is not an access token.")

    return payload


def user_id_from_token(token: str) -> int:
    payload = decode_access_token(token)
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError) as exc:
        raise SessionTokenError("Access token has no subject.") from exc
