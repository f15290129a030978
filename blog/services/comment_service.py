"""
Comment service — append-only comments on posts.

Comments cannot be edited or deleted through the API; they disappear only
together with their post (see ``post_service.delete_post``).
"""
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from blog.exceptions import NotFound, Unauthorized, ValidationError
from blog.models import Comment, Post, User
from blog.schemas import CommentCreate
from blog.services.user_service import author_to_dict

logger = logging.getLogger(__name__)


def _comment_to_dict(comment: Comment) -> dict:
    return {
        "id": comment.id,
        "content": comment.content,
        "post": comment.post_id,
        "author": author_to_dict(comment.author),
        "createdAt": comment.created_at.isoformat() if comment.created_at else None,
        "updatedAt": comment.updated_at.isoformat() if comment.updated_at else None,
    }


async def _post_id_for_slug(db: AsyncSession, slug: str) -> int:
    result = await db.execute(select(Post.id).where(Post.slug == slug))
    post_id = result.scalar_one_or_none()
    if post_id is None:
        raise NotFound("Post not found")
    return post_id


async def list_comments(db: AsyncSession, slug: str) -> list[dict]:
    """Comments on the post at *slug*, newest first."""
    post_id = await _post_id_for_slug(db, slug)
    q = (
        select(Comment)
        .where(Comment.post_id == post_id)
        .options(joinedload(Comment.author))
        .order_by(Comment.created_at.desc(), Comment.id.desc())
    )
    result = await db.execute(q)
    return [_comment_to_dict(c) for c in result.unique().scalars().all()]


async def add_comment(
    db: AsyncSession,
    slug: str,
    caller: User | None,
    data: CommentCreate,
) -> dict:
    """
    Append a comment by *caller* to the post at *slug*.

    Checks run in order: a caller is required (``Unauthorized``), the post
    must exist (``NotFound``), the content must not be blank
    (``ValidationError``).  Nothing is written unless all three pass.
    """
    if caller is None:
        raise Unauthorized()

    post_id = await _post_id_for_slug(db, slug)

    if not (data.content or "").strip():
        raise ValidationError("Comment content is required")

    comment = Comment(content=data.content, post_id=post_id, author=caller)
    db.add(comment)
    await db.flush()

    logger.info("Comment id=%d added to post %r by user id=%d", comment.id, slug, caller.id)
    return _comment_to_dict(comment)
