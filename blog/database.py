from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase

from blog.config import settings
from blog.middleware import install_query_counter

# One engine (and connection pool) per process, shared by every request.
# The pool opens connections lazily, so importing the app never touches the
# database. Tests override ``get_db`` with their own engine.
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True,
)

install_query_counter(engine)

# Posts are serialised after commit (cache writes, response bodies), so
# loaded attributes must survive it.
async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db():
    """
    One session and one transaction per request.

    Services only flush; the commit happens here once the handler returns.
    A post delete therefore removes the post, its tags and its comments
    together or not at all, and a failed slug insert leaves nothing behind.
    """
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def create_tables() -> None:
    """Create the users, posts, post_tags and comments tables if missing."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
