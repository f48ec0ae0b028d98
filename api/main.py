"""
api/main.py -- FastAPI application entry point for SessionGate.

Exposes the session-cookie authentication core over HTTP.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins;
                              credentials allowed so the session cookie flows
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (entropy probe, store + service construction, purge
task) and shutdown (cancel purge task, close store) symmetrically. Any startup
failure aborts the server: it never runs without a working random source or
credential store.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import AuthError, StoreUnavailable
from auth.service import AuthService
from auth.tokens import check_entropy_source
from core.config import get_settings

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("sessiongate.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval_seconds: float) -> None:
    """Delete expired sessions and dead reset tokens every interval_seconds.

    Expiry is enforced at lookup time, so this loop only reclaims space. A
    failed purge is logged and retried on the next tick. The store call runs
    in a worker thread because SQLAlchemy blocks.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(app.state.auth_service.store.purge_expired)
        except StoreUnavailable:
            logger.warning("Purge skipped: credential store unavailable")
        except Exception:
            logger.exception("Purge failed; retrying in %ss", interval_seconds)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Entropy probe -- no point opening the store if tokens cannot be minted.
      2. AuthService -- constructs the store (schema created here) and hasher.
      3. Store ping -- an unreachable database aborts startup.
      4. Purge task last -- references app.state.auth_service.
    """
    logger.info("SessionGate API starting up")
    check_entropy_source()
    app.state.auth_service = AuthService.from_settings(_settings)
    if not app.state.auth_service.store.ping():
        app.state.auth_service.close()
        raise StoreUnavailable("Credential store is unreachable at startup.")
    logger.info(
        "Auth initialized (hasher=%r, cookie=%s, session_ttl=%ds)",
        app.state.auth_service.hasher,
        _settings.cookie_name,
        _settings.session_ttl_seconds,
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app, _settings.purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    app.state.auth_service.close()
    logger.info("SessionGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="SessionGate API",
    description="Username/password authentication with server-side session cookies.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

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

# AuthError.code -> HTTP status. Session failures are folded into one
# "unauthorized" reply below; the specific code is only logged.
_AUTH_STATUS: dict[str, int] = {
    "empty_credential": 400,
    "duplicate_username": 409,
    "bad_credentials": 401,
    "invalid_session": 401,
    "user_not_found": 401,
    "not_found": 404,
    "invalid_reset_token": 400,
    "reset_failed_partially": 500,
    "entropy_unavailable": 503,
    "store_unavailable": 503,
    "timeout": 504,
}

_UNAUTHORIZED_CODES = {"invalid_session", "user_not_found"}


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map typed auth outcomes to HTTP status codes.

    Server-side failures (5xx) get a generic message; the real one is logged.
    """
    status_code = _AUTH_STATUS.get(exc.code, 400)
    if exc.code in _UNAUTHORIZED_CODES:
        logger.info("Auth failure on %s %s: %s", request.method, request.url.path, exc.code)
        return _error(401, "unauthorized", "Authentication required.")
    if status_code >= 500:
        logger.error("Auth service failure on %s %s: %s (%s)", request.method, request.url.path, exc.code, exc.message)
        return _error(status_code, exc.code, "The request could not be completed. Please try again.")
    return _error(status_code, exc.code, exc.message)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return _error(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable regardless of router
# registration state. No rate limit and no authentication.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and credential-store reachability."""
    db_ok = request.app.state.auth_service.store.ping()
    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=__version__,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
