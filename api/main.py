"""
api/main.py -- FastAPI application entry point for CloudPortal.

Run with:      uvicorn asgi:app --reload
               python main.py

Middleware stack (outermost to innermost):
  1. log_requests          -- request id + one access-log line per request
  2. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  3. CORSMiddleware        -- adds CORS headers for allowed browser origins
  4. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  5. SessionMiddleware     -- signed session cookie (record + OAuth state)
  6. attach_identity       -- resolves the session record once per request
                              (skipped for static files under /public)

Starlette wraps add_middleware() calls in reverse: the last one registered is
the outermost. Registration below therefore runs innermost-first.

Lifespan builds the per-process collaborators (connection store, directory
client, identity resolver) and hangs them on app.state. Nothing is a
module-level global that route code mutates.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
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
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.connections import router as connections_router
from auth.dependencies import load_identity, require_api_user
from auth.directory import DirectoryClient
from auth.errors import Unauthenticated
from auth.oauth import PROVIDER
from auth.oauth import oauth as oauth_client
from auth.resolver import IdentityResolver
from connections.store import DEFAULT_CONNECTIONS, ConnectionStore
from core.config import get_settings

VERSION = "0.1.0"
API_PREFIX = "/api/v1.0"
# Static files are mounted here by asgi.py and never need an identity.
STATIC_PATH = "/public"
REQUEST_ID_HEADER = "X-Request-ID"
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("cloudportal.api")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the process-wide collaborators on startup.

    The resolver depends on the directory client, which depends on the
    Authlib registry, so they are built in that order.
    """
    logger.info("CloudPortal starting up")
    app.state.connections = ConnectionStore(DEFAULT_CONNECTIONS)
    logger.info("Connection store initialized (%d entries)", len(app.state.connections))

    app.state.oauth = oauth_client
    app.state.directory = DirectoryClient(
        oauth_client.create_client(PROVIDER),
        profile_path=_settings.directory_profile_path,
        timeout=_settings.directory_timeout,
    )
    app.state.resolver = IdentityResolver(app.state.directory)
    logger.info("Auth initialized (oidc_enabled=%s)", _settings.oidc_enabled)

    yield

    logger.info("CloudPortal shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="CloudPortal",
    description="OpenID Connect relying party with session-gated cloud connection API.",
    version=VERSION,
    lifespan=lifespan,
    # Built-in docs are replaced by auth-protected equivalents below.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Identity middleware
#
# Registered first so it sits inside SessionMiddleware and sees the decoded
# session. Resolution happens here exactly once per request; the access gate
# only reads request.state.user.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def attach_identity(request: Request, call_next):
    if request.url.path.startswith(STATIC_PATH + "/"):
        request.state.user = None
        return await call_next(request)
    await load_identity(request)
    return await call_next(request)


# The session cookie carries bearer tokens: signed with SECRET_KEY, httpOnly,
# secure when SECURE_COOKIES is set. SameSite is lax, or none for a form_post
# callback (see Settings.session_same_site). Authlib also keeps the
# pending OAuth state and nonce here between /login and the callback.
app.add_middleware(
    SessionMiddleware,
    secret_key=_settings.secret_key,
    session_cookie=_settings.session_cookie,
    max_age=_settings.session_max_age,
    same_site=_settings.session_same_site,
    https_only=_settings.secure_cookies,
)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "PUT", "DELETE"],
    allow_headers=["Content-Type"],
    max_age=3600,
)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)


# ---------------------------------------------------------------------------
# Request logging middleware (outermost)
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Tag the request with an id and write one access-log line.

    A well-formed incoming X-Request-ID is reused so ids can be followed
    across a proxy; otherwise a new one is generated. The id is echoed on the
    response.
    """
    incoming = request.headers.get(REQUEST_ID_HEADER, "")
    request_id = incoming if _REQUEST_ID_RE.match(incoming) else uuid.uuid4().hex
    request.state.request_id = request_id

    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    response.headers[REQUEST_ID_HEADER] = request_id
    logger.info(
        "[%s] %s %s %d %.1fms %s",
        request_id,
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

app.include_router(connections_router, prefix=API_PREFIX, tags=["Cloud Connections"])
# Web UI router (login, callback, logout, pages) is mounted by asgi.py.


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False, dependencies=[Depends(require_api_user)])
async def docs():
    """Swagger UI -- requires an authenticated session."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="CloudPortal API")


@app.get("/redoc", include_in_schema=False, dependencies=[Depends(require_api_user)])
async def redoc():
    """ReDoc UI -- requires an authenticated session."""
    return get_redoc_html(openapi_url="/openapi.json", title="CloudPortal API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(Unauthenticated)
async def unauthenticated_handler(request: Request, exc: Unauthenticated) -> JSONResponse:
    """Reject an anonymous API call with 401. Never a redirect."""
    return JSONResponse(
        status_code=401,
        content=ErrorResponse(
            error=ErrorDetail(code="unauthorized", message=str(exc)),
        ).model_dump(),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with detail=ErrorDetail(...).model_dump().
    When detail is already a dict, use it directly as the error field.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception(
        "[%s] Unhandled exception on %s %s",
        getattr(request.state, "request_id", "-"),
        request.method,
        request.url.path,
    )
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get(f"{API_PREFIX}/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)
