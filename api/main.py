"""
api/main.py -- FastAPI application entry point for SignGate.

Run with:      uvicorn asgi:app --reload
               python main.py serve

Middleware stack (outermost to innermost):
  1. log_requests          -- one access-log line per request, rejects included
  2. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  3. CORSMiddleware        -- adds CORS headers for allowed browser origins
  4. SlowAPIMiddleware     -- default limits for undecorated routes
Starlette makes the LAST registered middleware the outermost, so they are
registered below in reverse: SlowAPI first, log_requests last.

Lifespan builds the sign-in core (store, attempt limiter, token generator,
authenticator) on startup and closes the store on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from limits.errors import StorageError
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import AuthenticationFailed, LockedOut, Unavailable
from auth.limiter import RateLimiter
from auth.models import User
from auth.signin import Authenticator, SignInConfig
from auth.store import UserStore
from auth.tokens import ApiTokenGenerator
from core.config import Settings, get_settings

VERSION = "0.1.0"

# Seconds a client should wait before retrying after a backend outage.
UNAVAILABLE_RETRY_AFTER = 5

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("signgate.api")
audit_logger = logging.getLogger("signgate.audit")

_settings = get_settings()


def _emit_authenticated(user: User) -> None:
    """Observability hook passed to the Authenticator as on_authenticated."""
    audit_logger.info("authenticated user_id=%s", user.id)


def build_authenticator(settings: Settings, store: UserStore) -> Authenticator:
    """Wire the sign-in core from settings."""
    return Authenticator(
        store=store,
        limiter=RateLimiter(settings.rate_limit_storage_uri, timeout=settings.rate_limit_storage_timeout),
        generator=ApiTokenGenerator(settings.api_token_bytes),
        config=SignInConfig.from_settings(settings),
        on_authenticated=_emit_authenticated,
    )


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    logger.info("SignGate API starting up")
    settings = get_settings()
    app.state.user_store = UserStore(settings.database_url, timeout=settings.database_timeout)
    app.state.authenticator = build_authenticator(settings, app.state.user_store)
    logger.info(
        "Sign-in core initialized (max_attempts=%d, window=%ds, storage=%s)",
        settings.signin_max_attempts,
        settings.signin_window_seconds,
        settings.rate_limit_storage_uri.split("://", 1)[0],
    )

    yield

    app.state.user_store.close()
    logger.info("SignGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="SignGate API",
    description="Email/password sign-in with per-attempt throttling and opaque API tokens.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Each add_middleware() wraps everything registered before it, so register
# innermost first. A request meets them as TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


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


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthenticationFailed)
async def authentication_failed_handler(request: Request, exc: AuthenticationFailed) -> JSONResponse:
    """401 with one generic message for unknown email and wrong password alike."""
    response = _error(401, "bad_credentials", str(exc))
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(LockedOut)
async def locked_out_handler(request: Request, exc: LockedOut) -> JSONResponse:
    """429 with Retry-After set to the seconds left in the attempt window."""
    response = _error(429, "locked_out", str(exc), detail=f"Retry after {exc.retry_after_seconds} seconds.")
    response.headers["Retry-After"] = str(exc.retry_after_seconds)
    response.headers["Cache-Control"] = "no-store"
    return response


def _unavailable(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Backend unavailable on %s %s", request.method, request.url.path, exc_info=exc)
    response = _error(503, "unavailable", "Service temporarily unavailable.")
    response.headers["Retry-After"] = str(UNAVAILABLE_RETRY_AFTER)
    return response


@app.exception_handler(Unavailable)
async def unavailable_handler(request: Request, exc: Unavailable) -> JSONResponse:
    """503: the store or the counter storage is down. Retryable, not the client's fault."""
    return _unavailable(request, exc)


@app.exception_handler(StorageError)
async def limiter_storage_handler(request: Request, exc: StorageError) -> JSONResponse:
    """503 when slowapi's per-IP check cannot reach its counter storage."""
    return _unavailable(request, exc)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 when the per-IP slowapi limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", "Too many requests.", detail=str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return _error(422, "validation_error", "Request validation failed.", detail=str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it. Headers (e.g. WWW-Authenticate) are kept.
    """
    if isinstance(exc.detail, dict):
        response = JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    else:
        response = _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is logged server-side only, never written to the
    response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable.
# No rate limit applied -- health checks must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and store reachability."""
    components = {"app": "ok"}
    try:
        request.app.state.user_store.has_users()
        components["database"] = "ok"
    except Unavailable:
        components["database"] = "error"
    status = "healthy" if components["database"] == "ok" else "degraded"
    return HealthResponse(status=status, version=VERSION, components=components)
