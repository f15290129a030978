from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from blog.database import get_db
from blog.dependencies import PaginationParams, PostFilters, get_current_user
from blog.models import Post, User
from blog.schemas import CommentCreate, PostCreate, PostPage, PostUpdate
from blog.services import comment_service, post_service

router = APIRouter(prefix="/api/posts", tags=["posts"])


async def owned_post(
    slug: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Post:
    # Dependencies resolve before the body is decoded, so a missing post or a
    # non-owner gets 404/403 whatever the payload looks like.
    return await post_service.get_owned_post(db, slug, user)


@router.get("", response_model=PostPage)
async def list_posts(
    pagination: PaginationParams = Depends(),
    filters: PostFilters = Depends(),
    db: AsyncSession = Depends(get_db),
):
    return await post_service.list_published(db, filters, pagination.page, pagination.limit)


@router.post("", status_code=201)
async def create_post(
    data: PostCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    post = await post_service.create_post(db, user, data)
    return {"message": "Post created successfully", "post": post}


# Declared before "/{slug}" so "my-posts" is not taken for a slug.
@router.get("/my-posts")
async def my_posts(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return {"posts": await post_service.list_by_author(db, user.id)}


@router.get("/{slug}")
async def get_post(slug: str, db: AsyncSession = Depends(get_db)):
    return {"post": await post_service.get_post(db, slug)}


@router.put("/{slug}")
async def update_post(
    data: PostUpdate,
    post: Post = Depends(owned_post),
    db: AsyncSession = Depends(get_db),
):
    updated = await post_service.update_post(db, post, data)
    return {"message": "Post updated successfully", "post": updated}


@router.delete("/{slug}")
async def delete_post(post: Post = Depends(owned_post), db: AsyncSession = Depends(get_db)):
    await post_service.delete_post(db, post)
    return {"message": "Post deleted successfully"}


@router.get("/{slug}/comments")
async def list_comments(slug: str, db: AsyncSession = Depends(get_db)):
    return {"comments": await comment_service.list_comments(db, slug)}


@router.post("/{slug}/comments", status_code=201)
async def add_comment(
    slug: str,
    data: CommentCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    comment = await comment_service.add_comment(db, slug, user, data)
    return {"message": "Comment created successfully", "comment": comment}
