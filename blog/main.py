import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from blog.cache import cache
from blog.config import settings
from blog.database import create_tables
from blog.exceptions import BlogError, StoreError
from blog.middleware import RequestTimingMiddleware
from blog.routers import auth, posts

__version__ = "1.0.0"

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await create_tables()
    try:
        await cache.connect()
    except Exception as exc:
        logger.warning("Cache unavailable, serving from the database only: %s", exc)
    yield
    await cache.disconnect()


app = FastAPI(
    title="Blog API",
    description="Posts, comments and sessions for a multi-author blog",
    version=__version__,
    lifespan=lifespan,
)

# Middleware
app.add_middleware(RequestTimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error envelopes: every failure is rendered as {"error": <message>}
# ---------------------------------------------------------------------------

def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@app.exception_handler(BlogError)
async def blog_error_handler(request: Request, exc: BlogError):
    if isinstance(exc, StoreError):
        logger.error("Store failure on %s %s: %s", request.method, request.url.path, exc.message)
        return _error(exc.status_code, StoreError.default_message)
    return _error(exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    message = first.get("msg", "Invalid request")
    return _error(400, f"{'.'.join(loc)}: {message}" if loc else message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(SQLAlchemyError)
async def store_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Unhandled store error on %s %s", request.method, request.url.path)
    return _error(500, StoreError.default_message)


# Routers
app.include_router(posts.router)
app.include_router(auth.router)


@app.get("/health")
async def health():
    return {"status": "healthy", "version": __version__, "cache": cache.stats}
