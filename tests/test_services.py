"""
Direct service-layer tests — exercises business logic without HTTP.

These call the service functions with a database session, covering the
query paths, domain errors and slug allocation (including the retry on a
concurrent insert) that endpoint tests cannot easily provoke.
"""
import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from blog.dependencies import PostFilters
from blog.exceptions import Forbidden, NotFound, StoreError, Unauthorized, ValidationError
from blog.models import Comment, Post, PostTag, User
from blog.schemas import CommentCreate, PostCreate, PostUpdate
from blog.services import comment_service, post_service


def _filters(category=None, tags=None, search=None) -> PostFilters:
    return PostFilters(category=category, tags=tags, search=search)


def _new_post(title: str = "Service Post", **kw) -> PostCreate:
    kw.setdefault("content", "Body")
    kw.setdefault("category", "General")
    return PostCreate(title=title, **kw)


# ---------------------------------------------------------------------------
# post_service
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_list_published_empty(db_session: AsyncSession):
    result = await post_service.list_published(db_session, _filters())
    assert result.posts == []
    assert result.pagination.total == 0
    assert result.pagination.pages == 0


@pytest.mark.asyncio
async def test_create_post_via_service(db_session: AsyncSession, author: User):
    result = await post_service.create_post(
        db_session, author, _new_post("Service Test Post", tags=["python", " fastapi ", ""])
    )
    assert result["slug"] == "service-test-post"
    assert result["tags"] == ["python", "fastapi"]
    assert result["author"]["id"] == author.id
    assert result["excerpt"] == "Body..."
    assert result["createdAt"] is not None


@pytest.mark.asyncio
async def test_create_then_get_round_trip(db_session: AsyncSession, author: User):
    created = await post_service.create_post(
        db_session, author, _new_post("Round Trip", content="Full text", tags=["b", "a"])
    )
    fetched = await post_service.get_post(db_session, created["slug"])
    for field in ("title", "content", "category", "tags", "excerpt"):
        assert fetched[field] == created[field]
    assert fetched["tags"] == ["b", "a"]


@pytest.mark.asyncio
async def test_create_post_same_title_twice(db_session: AsyncSession, author: User):
    first = await post_service.create_post(db_session, author, _new_post("Same Title"))
    second = await post_service.create_post(db_session, author, _new_post("Same Title"))
    assert first["slug"] == "same-title"
    assert second["slug"] == "same-title-1"


@pytest.mark.asyncio
async def test_create_post_fills_smallest_free_suffix(db_session: AsyncSession, author: User):
    for slug in ("gap", "gap-1", "gap-3"):
        db_session.add(Post(
            title="Gap", slug=slug, content="c", category="k", author_id=author.id,
        ))
    await db_session.flush()

    result = await post_service.create_post(db_session, author, _new_post("Gap"))
    assert result["slug"] == "gap-2"


@pytest.mark.asyncio
async def test_create_post_retries_when_slug_claimed_concurrently(
    db_session: AsyncSession, author: User, monkeypatch
):
    """
    A lookup that reports a slug as free, followed by a unique-index
    violation on insert, moves on to the next candidate.
    """
    await post_service.create_post(db_session, author, _new_post("Race"))

    real_free_slug = post_service._free_slug
    lookups: list[set[str]] = []

    async def stale_free_slug(db, base, skip):
        lookups.append(set(skip))
        if len(lookups) == 1:
            return base
        return await real_free_slug(db, base, skip)

    monkeypatch.setattr(post_service, "_free_slug", stale_free_slug)
    result = await post_service.create_post(db_session, author, _new_post("Race"))

    assert result["slug"] == "race-1"
    assert lookups == [set(), {"race"}]
    count = (await db_session.execute(select(func.count()).select_from(Post))).scalar_one()
    assert count == 2


@pytest.mark.asyncio
async def test_create_post_gives_up_after_max_attempts(
    db_session: AsyncSession, author: User, monkeypatch
):
    await post_service.create_post(db_session, author, _new_post("Stuck"))

    async def always_stale(db, base, skip):
        return base

    monkeypatch.setattr(post_service, "_free_slug", always_stale)
    with pytest.raises(StoreError):
        await post_service.create_post(db_session, author, _new_post("Stuck"))


@pytest.mark.asyncio
@pytest.mark.parametrize("field", ["title", "content", "category"])
async def test_create_post_blank_required_field(db_session: AsyncSession, author: User, field: str):
    data = _new_post("Valid")
    setattr(data, field, "   ")
    with pytest.raises(ValidationError):
        await post_service.create_post(db_session, author, data)


@pytest.mark.asyncio
async def test_get_post_missing(db_session: AsyncSession):
    with pytest.raises(NotFound):
        await post_service.get_post(db_session, "missing")


@pytest.mark.asyncio
async def test_list_published_filters_combine(db_session: AsyncSession, author: User):
    await post_service.create_post(
        db_session, author, _new_post("Py web", category="Programming", tags=["python"])
    )
    await post_service.create_post(
        db_session, author, _new_post("Py data", category="Data", tags=["python"])
    )
    await post_service.create_post(
        db_session, author, _new_post("Rust web", category="Programming", tags=["rust"])
    )

    result = await post_service.list_published(
        db_session, _filters(category="program", tags="python")
    )
    assert [p["title"] for p in result.posts] == ["Py web"]


@pytest.mark.asyncio
async def test_list_by_author(db_session: AsyncSession, author: User, other_user: User):
    await post_service.create_post(db_session, author, _new_post("Mine", published=False))
    await post_service.create_post(db_session, other_user, _new_post("Theirs"))

    mine = await post_service.list_by_author(db_session, author.id)
    assert [p["title"] for p in mine] == ["Mine"]
    assert mine[0]["published"] is False


@pytest.mark.asyncio
async def test_update_post_applies_only_given_fields(db_session: AsyncSession, author: User):
    created = await post_service.create_post(
        db_session, author, _new_post("Before", excerpt="Old excerpt", tags=["x"])
    )
    post = await post_service.get_owned_post(db_session, created["slug"], author)
    updated = await post_service.update_post(
        db_session, post, PostUpdate(content="New body", tags=["y", "z"])
    )
    assert updated["title"] == "Before"
    assert updated["excerpt"] == "Old excerpt"
    assert updated["content"] == "New body"
    assert updated["tags"] == ["y", "z"]
    assert updated["slug"] == created["slug"]

    tag_rows = (await db_session.execute(select(PostTag.name).order_by(PostTag.position))).scalars().all()
    assert tag_rows == ["y", "z"]


@pytest.mark.asyncio
async def test_get_owned_post_other_user(db_session: AsyncSession, author: User, other_user: User):
    created = await post_service.create_post(db_session, author, _new_post("Guarded"))
    with pytest.raises(Forbidden):
        await post_service.get_owned_post(db_session, created["slug"], other_user)


@pytest.mark.asyncio
async def test_get_owned_post_missing(db_session: AsyncSession, author: User):
    with pytest.raises(NotFound):
        await post_service.get_owned_post(db_session, "missing", author)


@pytest.mark.asyncio
async def test_update_post_rejects_long_excerpt(db_session: AsyncSession, author: User):
    created = await post_service.create_post(db_session, author, _new_post("Long"))
    post = await post_service.get_owned_post(db_session, created["slug"], author)
    with pytest.raises(ValidationError):
        await post_service.update_post(db_session, post, PostUpdate(excerpt="e" * 301))


@pytest.mark.asyncio
async def test_delete_post_cascades(db_session: AsyncSession, author: User, other_user: User):
    created = await post_service.create_post(db_session, author, _new_post("Doomed", tags=["t"]))
    await comment_service.add_comment(
        db_session, created["slug"], other_user, CommentCreate(content="bye")
    )

    post = await post_service.get_owned_post(db_session, created["slug"], author)
    await post_service.delete_post(db_session, post)

    for model in (Post, PostTag, Comment):
        count = (await db_session.execute(select(func.count()).select_from(model))).scalar_one()
        assert count == 0, model.__name__


# ---------------------------------------------------------------------------
# comment_service
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_add_comment_via_service(db_session: AsyncSession, author: User, other_user: User):
    created = await post_service.create_post(db_session, author, _new_post("Talk"))
    comment = await comment_service.add_comment(
        db_session, created["slug"], other_user, CommentCreate(content="Hi")
    )
    assert comment["author"] == {"id": other_user.id, "name": "Grace", "email": "grace@example.com"}
    assert comment["post"] == created["id"]

    listed = await comment_service.list_comments(db_session, created["slug"])
    assert [c["id"] for c in listed] == [comment["id"]]


@pytest.mark.asyncio
async def test_add_comment_anonymous(db_session: AsyncSession, author: User):
    created = await post_service.create_post(db_session, author, _new_post("Quiet"))
    with pytest.raises(Unauthorized):
        await comment_service.add_comment(db_session, created["slug"], None, CommentCreate(content="x"))


@pytest.mark.asyncio
async def test_add_comment_missing_post(db_session: AsyncSession, author: User):
    with pytest.raises(NotFound):
        await comment_service.add_comment(db_session, "ghost", author, CommentCreate(content="x"))


@pytest.mark.asyncio
async def test_list_comments_missing_post(db_session: AsyncSession):
    with pytest.raises(NotFound):
        await comment_service.list_comments(db_session, "ghost")
