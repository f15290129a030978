import json

from fastapi import Depends, Header, Query
from sqlalchemy.ext.asyncio import AsyncSession

from blog.config import settings
from blog.database import get_db
from blog.exceptions import Unauthorized
from blog.models import User
from blog.security import SessionTokenError, user_id_from_token


class PaginationParams:
    """
    Reusable FastAPI dependency that parses pagination query parameters.

    Attributes
    ----------
    page:
        1-based page number (minimum 1).
    limit:
        Number of posts per page, clamped to ``settings.MAX_PAGE_SIZE``
        regardless of the value supplied by the caller.
    offset:
        Computed SQL OFFSET derived from *page* and *limit*.
    """

    def __init__(
        self,
        page: int = Query(1, ge=1, description="Page number (1-based)."),
        limit: int = Query(
            settings.DEFAULT_PAGE_SIZE,
            ge=1,
            description=f"Posts per page (capped at {settings.MAX_PAGE_SIZE}).",
        ),
    ) -> None:
        self.page = page
        self.limit = min(limit, settings.MAX_PAGE_SIZE)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class PostFilters:
    """Optional filters for the public post listing."""

    def __init__(
        self,
        category: str | None = Query(None, description="Case-insensitive substring of the category."),
        tags: str | None = Query(None, description="Comma-separated tags; a post matches any of them."),
        search: str | None = Query(None, description="Case-insensitive substring of title, content or excerpt."),
    ) -> None:
        self.category = category or None
        self.tags = [t.strip() for t in (tags or "").split(",") if t.strip()]
        self.search = search or None

    @property
    def cache_key(self) -> str:
        # JSON keeps the parts apart even when user input contains ":" or ",".
        return json.dumps([self.category, self.tags, self.search], separators=(",", ":"))


# ---------------------------------------------------------------------------
# Session identity
# ---------------------------------------------------------------------------

def _extract_bearer_token(authorization: str) -> str:
    parts = authorization.strip().split(" ", 1)
    if len(parts) != 2:
        raise Unauthorized("Invalid Authorization header format.")

    scheme, token = parts[0].strip().lower(), parts[1].strip()
    if scheme != "bearer" or not token:
        raise Unauthorized("Authorization must be: Bearer <token>.")
    return token


async def get_optional_user(
    authorization: str | None = Header(default=None),
    db: AsyncSession = Depends(get_db),
) -> User | None:
    """
    Resolve the caller from the bearer token.

    Returns None when no Authorization header is sent; a header that is
    present but does not identify an existing user is rejected.
    """
    if not (authorization or "").strip():
        return None

    token = _extract_bearer_token(authorization)
    try:
        user_id = user_id_from_token(token)
    except SessionTokenError as exc:
        raise Unauthorized(str(exc)) from exc

    user = await db.get(User, user_id)
    if user is None:
        raise Unauthorized("Session user no longer exists.")
    return user


async def get_current_user(user: User | None = Depends(get_optional_user)) -> User:
    if user is None:
        raise Unauthorized()
    return user
