from pydantic import BaseModel, Field


# --- User ---

class UserRegister(BaseModel):
    name: str | None = Field(None, max_length=150)
    email: str | None = Field(None, max_length=255)
    password: str | None = None
    image: str | None = Field(None, max_length=500)


class UserLogin(BaseModel):
    email: str | None = None
    password: str | None = None


# --- Post ---

class PostCreate(BaseModel):
    # Required fields are checked in the service so that a missing field
    # produces the same message as a blank one.
    title: str | None = Field(None, max_length=100)
    content: str | None = None
    excerpt: str | None = Field(None, max_length=300)
    category: str | None = None
    tags: list[str] | None = None
    published: bool = True


class PostUpdate(BaseModel):
    # No length limits here: ownership is checked before the patch is validated.
    title: str | None = None
    content: str | None = None
    excerpt: str | None = None
    category: str | None = None
    tags: list[str] | None = None
    published: bool | None = None


# --- Comment ---

class CommentCreate(BaseModel):
    content: str | None = None


# --- Pagination ---

class Pagination(BaseModel):
    current: int
    pages: int
    total: int
    hasNext: bool
    hasPrev: bool


class PostPage(BaseModel):
    posts: list[dict]
    pagination: Pagination
