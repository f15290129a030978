"""
Test infrastructure for the Blog API.

Strategy
--------
- SQLite in-memory via aiosqlite removes the need for a running Postgres
  instance; StaticPool makes every session share the one in-memory
  connection (a second connection would see an empty database).
- The app's get_db dependency is overridden so every request uses the test
  session factory.
- Tables are created before and dropped after each test.
- The Redis cache is disabled by setting cache._redis = None; CacheManager
  treats that as a permanent miss, so the real database path is exercised.
- bcrypt runs at its minimum cost factor to keep registration cheap.
"""
import os

os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from blog.cache import cache
from blog.database import Base, get_db
from blog.main import app
from blog.middleware import install_query_counter
from blog.models import User
from blog.security import build_access_token, hash_password

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine_test = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

install_query_counter(engine_test)

async_session_test = async_sessionmaker(
    engine_test,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def override_get_db():
    async with async_session_test() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


app.dependency_overrides[get_db] = override_get_db


# ---------------------------------------------------------------------------
# Helpers shared by the endpoint tests
# ---------------------------------------------------------------------------

def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


async def register(client: AsyncClient, name: str) -> dict:
    """Register *name* and return ``{"id", "token", "headers"}``."""
    resp = await client.post("/api/auth/register", json={
        "name": name.capitalize(),
        "email": f"{name}@example.com",
        "password": "correct-horse",
    })
    assert resp.status_code == 201, resp.text
    body = resp.json()
    return {
        "id": body["user"]["id"],
        "token": body["access_token"],
        "headers": auth_headers(body["access_token"]),
    }


async def create_post(client: AsyncClient, headers: dict, **fields) -> dict:
    payload = {"title": "A Post", "content": "Some content", "category": "General"}
    payload.update(fields)
    resp = await client.post("/api/posts", json=payload, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["post"]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after to guarantee isolation."""
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    """A live session for tests that call services directly."""
    async with async_session_test() as session:
        yield session


@pytest_asyncio.fixture
async def author(db_session: AsyncSession) -> User:
    user = User(name="Ada", email="ada@example.com", password_hash=hash_password("irrelevant"))
    db_session.add(user)
    await db_session.flush()
    return user


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession) -> User:
    user = User(name="Grace", email="grace@example.com", password_hash=hash_password("irrelevant"))
    db_session.add(user)
    await db_session.flush()
    return user


@pytest_asyncio.fixture
async def async_client() -> AsyncClient:
    """
    An httpx.AsyncClient wired to the app through ASGITransport, with the
    Redis cache disabled so results never depend on external state.
    """
    cache._redis = None
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def token_for():
    """Mint a session token for an arbitrary user id."""
    def _mint(user_id: int, email: str = "someone@example.com", **kwargs) -> str:
        return build_access_token(user_id=user_id, email=email, **kwargs)
    return _mint
