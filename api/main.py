"""
api/main.py -- FastAPI application entry point for Inkpost.

Exposes the JSON API under /api/v1 and hosts the middleware that guards the
server-rendered pages mounted by asgi.py.

Run with:  uvicorn asgi:app --reload

Middleware stack (registration order):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. SessionMiddleware     -- authlib OAuth state between redirect and callback
  5. route_guard           -- login redirects for admin / protected / demo pages
  6. log_requests          -- one access-log line per request

Lifespan opens the identity and article stores on startup and closes them
on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.admin import router as admin_router
from api.routes.v1.articles import router as articles_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.demo import router as demo_router
from api.routes.v1.users import router as users_router
from auth.dependencies import get_session
from auth.guard import guard_request
from auth.models import SessionContext
from auth.oauth import oauth as oauth_client
from auth.reset import default_sender
from auth.store import IdentityStore
from auth.tokens import clear_auth_cookie
from content.store import ArticleStore
from core.config import get_settings
from core.errors import AppError, AuthenticationExpired

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("inkpost.api")

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the stores on startup and close them on shutdown.

    An empty *_DATABASE_URL setting means the store's bundled SQLite file.
    """
    cfg = get_settings()
    logger.info("Inkpost API starting up")
    app.state.identity_store = IdentityStore(cfg.auth_database_url) if cfg.auth_database_url else IdentityStore()
    app.state.article_store = ArticleStore(cfg.content_database_url) if cfg.content_database_url else ArticleStore()
    app.state.oauth = oauth_client
    app.state.reset_sender = default_sender()
    if not app.state.identity_store.has_identities():
        logger.warning("No accounts exist yet. Create an admin with: python main.py create-user --role ADMIN")
    logger.info("Stores initialized")

    yield

    app.state.identity_store.close()
    app.state.article_store.close()
    logger.info("Inkpost API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Inkpost API",
    description="Blog platform API: accounts, articles and administration.",
    version=API_VERSION,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced by session-protected versions below.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=get_settings().allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# authlib keeps the OAuth state value in the Starlette session between the
# authorization redirect and the callback.
app.add_middleware(SessionMiddleware, secret_key=get_settings().secret_key, https_only=get_settings().secure_cookies)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Route guard middleware
#
# Applies auth.guard to every request before routing. Only page prefixes from
# Settings are classified as guarded; /api/v1 routes enforce the same rules
# through auth.dependencies and answer with JSON errors instead of redirects.
# The session lookup is a blocking store query, so it runs in the threadpool.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def route_guard(request: Request, call_next):
    redirect = await run_in_threadpool(guard_request, request)
    if redirect is not None:
        return redirect
    return await call_next(request)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Account"])
app.include_router(articles_router, prefix="/api/v1", tags=["Articles"])
app.include_router(admin_router, prefix="/api/v1", tags=["Admin"])
app.include_router(demo_router, prefix="/api/v1", tags=["Demo"])
# Web UI router is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Session-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(session: SessionContext = Depends(get_session)):
    """Swagger UI -- requires a session."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Inkpost API")


@app.get("/redoc", include_in_schema=False)
async def redoc(session: SessionContext = Depends(get_session)):
    """ReDoc UI -- requires a session."""
    return get_redoc_html(openapi_url="/openapi.json", title="Inkpost API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_json(status_code: int, detail: ErrorDetail) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=detail).model_dump(mode="json", exclude_none=True),
    )


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render the typed error taxonomy from core.errors.

    An expired session also gets its cookie cleared so the stale token is
    not presented again.
    """
    response = _error_json(
        exc.status_code,
        ErrorDetail(
            code=exc.code,
            message=exc.message,
            detail=exc.detail,
            field=getattr(exc, "field", None),
        ),
    )
    if isinstance(exc, AuthenticationExpired):
        clear_auth_cookie(response)
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_json(
        429,
        ErrorDetail(code="rate_limited", message="Too many requests.", detail=str(exc.detail)),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 validation_failed with one entry per offending field."""
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ())[1:]) or None,
            "message": err.get("msg", "Invalid value."),
        }
        for err in exc.errors()
    ]
    return _error_json(
        400,
        ErrorDetail(code="validation_failed", message="Validation failed.", errors=errors),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for FastAPI HTTP exceptions.

    When detail is already a structured dict it is used directly as the
    error field rather than stringified.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error_json(exc.status_code, ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail)))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_json(500, ErrorDetail(code="internal_error", message="An unexpected error occurred."))


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable. No rate limit and no
# authentication: load balancers and monitors must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and a database round-trip check."""
    database = "ok"
    try:
        request.app.state.identity_store.count_identities()
        request.app.state.article_store.count_articles()
    except SQLAlchemyError:
        logger.exception("Health check database query failed")
        database = "error"
    return HealthResponse(version=API_VERSION, components={"app": "ok", "database": database})
