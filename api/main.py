"""
api/main.py -- FastAPI application entry point for the Base Mini App backend.

Exposes wallet sign-in (SIWE / SIWF), the session, admin role and permission
management, and the user's own profile over HTTP.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests          -- method, path, status, latency, client host
  2. audit_api_requests    -- one api_audit_log row per /api/v1 request
  3. persist_session       -- writes the pending session Set-Cookie
  4. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  5. CORSMiddleware        -- adds CORS headers for allowed browser origins
  6. TrustedHostMiddleware -- rejects requests with unexpected Host headers

persist_session sits outside the exception handlers for AuthError and
RpcError, and turns any other unhandled exception into the 500 itself, so a
rejected or failed sign-in always sends back the session with its nonce
cleared.

Lifespan builds every store once and hangs it on app.state; routes reach
them through the accessors in auth/dependencies.py.
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
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.user import router as user_router
from audit.store import AuditStore
from auth.errors import AuthError
from auth.permissions import PermissionGrantStore
from auth.roles import RoleResolver
from auth.rpc import RpcError
from auth.session import apply_session_cookie
from auth.siwe import MessageVerifier
from auth.store import AccountStore
from cache.store import RoleCache
from core.config import get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("baseapp.api")

# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create stores on startup and dispose their engines on shutdown.

    Startup order matters:
      1. AccountStore and AuditStore -- create tables before any request.
      2. RoleCache, then RoleResolver over it.
      3. PermissionGrantStore shares the resolver (and so the same cache),
         which is what makes grant/revoke invalidation visible to role checks.
      4. MessageVerifier last -- it only needs settings.
    """
    settings = get_settings()
    logger.info("%s API starting up", settings.app_name)
    app.state.account_store = AccountStore()
    app.state.audit_store = AuditStore()
    app.state.role_cache = RoleCache(
        max_entries=settings.role_cache_max_entries,
        ttl=settings.role_cache_ttl_seconds,
    )
    app.state.role_resolver = RoleResolver(app.state.account_store, app.state.role_cache)
    app.state.grant_store = PermissionGrantStore(app.state.account_store, app.state.role_resolver)
    app.state.verifier = MessageVerifier(settings)
    logger.info(
        "Auth initialized (siwe_domain=%s, chain_id=%d, super_admin=%s)",
        settings.siwe_domain,
        settings.chain_id,
        "configured" if settings.initial_super_admin_address else "none",
    )

    yield

    app.state.account_store.close()
    app.state.audit_store.close()
    logger.info("%s API shutdown complete", settings.app_name)


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

_settings = get_settings()

app = FastAPI(
    title=f"{_settings.app_name} API",
    description="Wallet sign-in, sessions and admin role management for a Base mini app.",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs" if _settings.debug else None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette inserts each new middleware at the outside of the stack, so the
# last registration runs first. The @app.middleware functions below are
# registered after these and therefore wrap them.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "X-Request-ID"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# Attach the shared limiter to app.state so SlowAPIMiddleware can locate it.
# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Session cookie middleware
#
# CookieSessionStore.save()/destroy() only record the pending cookie on
# request.state. Writing it here (instead of on a Response injected into the
# route) means exception-handler responses carry it too.
#
# Exceptions with no registered handler would otherwise become a 500 in
# ServerErrorMiddleware, outside this function, and a nonce consumed before
# the failure would never be cleared on the client. The 500 is built here so
# the pending cookie is always written.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def persist_session(request: Request, call_next):
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        response = _error(500, "internal_error", "An unexpected error occurred.")
    apply_session_cookie(request, response)
    return response


# ---------------------------------------------------------------------------
# API audit middleware
#
# Records endpoint, method, status, latency, hashed client IP, and the
# account id of a logged-in caller. The write goes through the threadpool
# because the store is synchronous. AuditStore swallows its own failures.
# ---------------------------------------------------------------------------

_AUDIT_SKIP_PATHS = ("/api/v1/health",)


@app.middleware("http")
async def audit_api_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    path = request.url.path
    if not path.startswith("/api/v1/") or path in _AUDIT_SKIP_PATHS:
        return response
    ms = int((time.perf_counter() - start) * 1000)
    audit: AuditStore | None = getattr(request.app.state, "audit_store", None)
    if audit is None:
        return response
    session = getattr(request.state, "session", None)
    account_id = None
    if session is not None and session.is_logged_in and session.address:
        account_id = await run_in_threadpool(request.app.state.account_store.get_account_id_by_address, session.address)
    await run_in_threadpool(
        audit.log_api_request,
        path,
        request.method,
        response.status_code,
        account_id,
        ms,
        request.client.host if request.client else None,
    )
    return response


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Pattern: Interceptor / Chain of Responsibility. Every request passes through
# this coroutine before reaching any route handler. We capture wall-clock time
# before and after call_next so we can report latency on every response.
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
app.include_router(admin_router, prefix="/api/v1", tags=["Admin"])
app.include_router(user_router, prefix="/api/v1", tags=["User"])


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


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map the auth exception taxonomy onto its status code and reason code."""
    if exc.status_code >= 403:
        logger.warning("%s %s denied: %s", request.method, request.url.path, exc.code)
    return _error(exc.status_code, exc.code, exc.message)


@app.exception_handler(RpcError)
async def rpc_error_handler(request: Request, exc: RpcError) -> JSONResponse:
    """Chain RPC failures are server faults, not failed proofs.

    Handled here rather than by the catch-all so the response still passes
    through persist_session and the consumed nonce reaches the client.
    """
    logger.error("RPC failure on %s %s: %s", request.method, request.url.path, exc)
    return _error(500, "internal_error", "An unexpected error occurred.")


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Plain def: SlowAPIMiddleware calls this handler directly, without awaiting.

    Retry-After tells clients exactly how many seconds to wait before retrying.
    """
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
    field rather than stringifying it -- str(dict) produces a Python repr,
    not JSON.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Security note: the raw exception is written to the log only, never to the
    response body. The client receives only a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied -- health
# checks from load balancers and monitoring systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"], response_model=HealthResponse)
def health(request: Request):
    """Return API liveness, version, and whether the database answers."""
    try:
        request.app.state.account_store.ping()
    except SQLAlchemyError:
        logger.exception("Health check: database unavailable")
        return JSONResponse(
            status_code=503,
            content=HealthResponse(status="degraded", version=VERSION, database="unavailable").model_dump(),
        )
    return HealthResponse(version=VERSION)
