"""
Post service — business logic for the Post aggregate.

Design notes
------------
- Public reads (listing and detail) go through the cache-aside pattern
  (Redis, falling back to the database).  List cache keys encode page,
  limit and every filter so a stale page is never served for a different
  query.  Every write drops the listing pages and the post's detail entry.
- Relationships are declared ``lazy="noload"``; each query names the
  eager loads it needs (``joinedload`` for the author, ``selectinload``
  for tags).
- Slugs are allocated by probing for the smallest free ``base``/``base-n``
  and inserting inside a SAVEPOINT.  A concurrent insert of the same slug
  surfaces as an ``IntegrityError``; the savepoint is rolled back and the
  next candidate is tried.
- Ownership is a plain equality check between the caller's user id and
  ``Post.author_id``, done before any mutation.
- Service functions flush but do not commit; the transaction boundary is
  owned by the ``get_db`` dependency.
"""
import logging
import math
import re

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload, selectinload

from blog.cache import cache
from blog.config import settings
from blog.dependencies import PostFilters
from blog.exceptions import Forbidden, NotFound, StoreError, ValidationError
from blog.models import Comment, Post, PostTag, User, utcnow
from blog.schemas import Pagination, PostCreate, PostPage, PostUpdate
from blog.services.user_service import author_to_dict

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 100
EXCERPT_MAX_LENGTH = 300

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_SLUG_STRIP_RE = re.compile(r"[^a-z0-9 -]")
_SLUG_SPACE_RE = re.compile(r" +")
_SLUG_DASH_RE = re.compile(r"-+")


def slugify(text: str) -> str:
    """
    Return the lowercase, hyphenated slug for *text*.

    Anything other than ASCII letters, digits, spaces and hyphens is
    dropped, tabs and newlines included.  A title with nothing left falls
    back to ``"post"``.
    """
    text = _SLUG_STRIP_RE.sub("", text.lower())
    text = _SLUG_SPACE_RE.sub("-", text.strip(" "))
    return _SLUG_DASH_RE.sub("-", text).strip("-") or "post"


def derive_excerpt(content: str) -> str:
    return content[: settings.EXCERPT_LENGTH] + "..."


def paginate(total: int, page: int, limit: int) -> Pagination:
    pages = math.ceil(total / limit) if total > 0 else 0
    return Pagination(
        current=page,
        pages=pages,
        total=total,
        hasNext=page < pages,
        hasPrev=page > 1,
    )


def _contains(column, value: str):
    """Case-insensitive substring match with LIKE wildcards taken literally."""
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return column.ilike(f"%{escaped}%", escape="\\")


def _clean_tags(tags: list[str] | None) -> list[str]:
    return [t.strip() for t in tags or [] if t and t.strip()]


def _build_tags(tags: list[str]) -> list[PostTag]:
    return [PostTag(position=i, name=name) for i, name in enumerate(tags)]


async def _slug_taken(db: AsyncSession, slug: str) -> bool:
    result = await db.execute(select(Post.id).where(Post.slug == slug))
    return result.first() is not None


async def _free_slug(db: AsyncSession, base: str, skip: set[str]) -> str:
    """
    Return *base* if unused, else ``base-n`` for the smallest unused n >= 1.

    Candidates in *skip* count as used (they already lost an insert race).
    """
    result = await db.execute(
        select(Post.slug).where(or_(Post.slug == base, Post.slug.like(f"{base}-%")))
    )
    taken = set(result.scalars().all()) | skip
    if base not in taken:
        return base
    n = 1
    while f"{base}-{n}" in taken:
        n += 1
    return f"{base}-{n}"


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def _post_to_dict(post: Post) -> dict:
    return {
        "id": post.id,
        "title": post.title,
        "slug": post.slug,
        "content": post.content,
        "excerpt": post.excerpt,
        "category": post.category,
        "tags": post.tag_names,
        "published": post.published,
        "author": author_to_dict(post.author),
        "createdAt": post.created_at.isoformat() if post.created_at else None,
        "updatedAt": post.updated_at.isoformat() if post.updated_at else None,
    }


# ---------------------------------------------------------------------------
# Query helpers
# ---------------------------------------------------------------------------

def _published_conditions(filters: PostFilters) -> list:
    conditions = [Post.published.is_(True)]
    if filters.category:
        conditions.append(_contains(Post.category, filters.category))
    if filters.tags:
        conditions.append(
            Post.id.in_(select(PostTag.post_id).where(PostTag.name.in_(filters.tags)))
        )
    if filters.search:
        conditions.append(
            or_(
                _contains(Post.title, filters.search),
                _contains(Post.content, filters.search),
                _contains(Post.excerpt, filters.search),
            )
        )
    return conditions


def _newest_first(query):
    return query.order_by(Post.created_at.desc(), Post.id.desc())


async def _load_post(db: AsyncSession, slug: str) -> Post:
    q = (
        select(Post)
        .where(Post.slug == slug)
        .options(joinedload(Post.author), selectinload(Post.tags))
    )
    result = await db.execute(q)
    post = result.unique().scalar_one_or_none()
    if post is None:
        raise NotFound("Post not found")
    return post


async def get_owned_post(db: AsyncSession, slug: str, caller: User) -> Post:
    """
    Load the post at *slug* for a write by *caller*.

    Raises ``NotFound`` when there is no such post and ``Forbidden`` when
    *caller* is not its author.  Routers run this as a dependency so both
    checks happen before the request body is decoded.
    """
    post = await _load_post(db, slug)
    if post.author_id != caller.id:
        raise Forbidden()
    return post


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def list_published(
    db: AsyncSession,
    filters: PostFilters,
    page: int = 1,
    limit: int = 10,
) -> PostPage:
    """
    Return one page of published posts matching *filters*, newest first.

    Three SQL statements are issued on a cache miss: a COUNT over the
    filtered set, the page itself with authors joined, and one IN query
    for the tags of every post on the page.
    """
    cache_key = f"posts:list:{page}:{limit}:{filters.cache_key}"
    cached = await cache.get(cache_key)
    if cached:
        return PostPage(**cached)

    conditions = _published_conditions(filters)

    count_q = select(func.count()).select_from(Post).where(*conditions)
    total: int = (await db.execute(count_q)).scalar_one()

    posts_q = _newest_first(
        select(Post)
        .where(*conditions)
        .options(joinedload(Post.author), selectinload(Post.tags))
    ).offset((page - 1) * limit).limit(limit)
    result = await db.execute(posts_q)
    posts = result.unique().scalars().all()

    response = PostPage(
        posts=[_post_to_dict(p) for p in posts],
        pagination=paginate(total, page, limit),
    )
    await cache.set(cache_key, response.model_dump(), ttl=settings.CACHE_TTL_LIST)
    return response


async def get_post(db: AsyncSession, slug: str) -> dict:
    """Return the post at *slug*; raises ``NotFound`` when there is none."""
    cache_key = f"posts:detail:{slug}"
    cached = await cache.get(cache_key)
    if cached:
        return cached

    data = _post_to_dict(await _load_post(db, slug))
    await cache.set(cache_key, data, ttl=settings.CACHE_TTL_DETAIL)
    return data


async def list_by_author(db: AsyncSession, author_id: int) -> list[dict]:
    """Every post by *author_id*, drafts included, newest first."""
    q = _newest_first(
        select(Post)
        .where(Post.author_id == author_id)
        .options(joinedload(Post.author), selectinload(Post.tags))
    )
    result = await db.execute(q)
    return [_post_to_dict(p) for p in result.unique().scalars().all()]


async def create_post(db: AsyncSession, author: User, data: PostCreate) -> dict:
    """
    Create a post owned by *author* and return it serialised.

    The slug comes from the title; ``-1``, ``-2``, ... is appended until it
    is unique.  A missing excerpt is derived from the content.
    """
    title = (data.title or "").strip()
    content = data.content or ""
    category = (data.category or "").strip()
    if not title or not content.strip() or not category:
        raise ValidationError("Title, content, and category are required")

    base = slugify(title)
    lost: set[str] = set()
    for _ in range(settings.SLUG_MAX_ATTEMPTS):
        slug = await _free_slug(db, base, lost)
        post = Post(
            title=title,
            slug=slug,
            content=content,
            excerpt=data.excerpt or derive_excerpt(content),
            category=category,
            published=data.published,
            author=author,
            tags=_build_tags(_clean_tags(data.tags)),
        )
        try:
            async with db.begin_nested():
                db.add(post)
        except IntegrityError as exc:
            if not await _slug_taken(db, slug):
                raise StoreError("Post insert failed") from exc
            logger.warning("Slug %r was claimed concurrently, trying the next one", slug)
            lost.add(slug)
            continue
        break
    else:
        raise StoreError(f"No free slug for {base!r} after {settings.SLUG_MAX_ATTEMPTS} attempts")

    logger.info("Post %r created by user id=%d", post.slug, author.id)
    await cache.invalidate_post()
    return _post_to_dict(post)


async def update_post(db: AsyncSession, post: Post, data: PostUpdate) -> dict:
    """
    Apply the fields present in *data* to *post*.

    *post* comes from ``get_owned_post``, so ownership is already settled;
    a bad patch raises ``ValidationError``.  The slug never changes.
    """
    patch = data.model_dump(exclude_unset=True, exclude_none=True)
    tags = patch.pop("tags", None)

    for field in ("title", "category"):
        if field in patch:
            patch[field] = patch[field].strip()
            if not patch[field]:
                raise ValidationError(f"{field.capitalize()} cannot be empty")
    if "content" in patch and not patch["content"].strip():
        raise ValidationError("Content cannot be empty")
    if len(patch.get("title", "")) > TITLE_MAX_LENGTH:
        raise ValidationError(f"Title cannot be more than {TITLE_MAX_LENGTH} characters")
    if len(patch.get("excerpt", "")) > EXCERPT_MAX_LENGTH:
        raise ValidationError(f"Excerpt cannot be more than {EXCERPT_MAX_LENGTH} characters")

    for field, value in patch.items():
        setattr(post, field, value)
    if tags is not None:
        post.tags = _build_tags(_clean_tags(tags))
    post.updated_at = utcnow()

    await db.flush()
    await cache.invalidate_post(post.slug)
    return _post_to_dict(post)


async def delete_post(db: AsyncSession, post: Post) -> None:
    """
    Delete *post* (from ``get_owned_post``) with its comments and tags.

    Comments go in the same transaction as the post, so either both are
    removed or neither is.
    """
    slug = post.slug
    result = await db.execute(delete(Comment).where(Comment.post_id == post.id))
    await db.delete(post)
    await db.flush()

    logger.info("Post %r deleted with %d comment(s)", slug, result.rowcount)
    await cache.invalidate_post(slug)
