"""
api/main.py -- FastAPI application entry point for Gatehouse.

Exposes the auth core over HTTP: nonce issue, login/logout tasks,
registration, OAuth, and gated pages.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  3. SessionMiddleware     -- authlib's OAuth state between redirect and callback

Lifespan builds every store and the AuthCore at startup, starts the purge
task, and closes everything symmetrically at shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.pages import router as pages_router
from auth.controller import LoginController
from auth.dependencies import undo_remember_rotation
from auth.errors import StoreError
from auth.nonce import NonceGate, NoncePrimitive
from auth.oauth import AccountOAuthDelegate, get_enabled_providers
from auth.oauth import oauth as oauth_client
from auth.pipeline import AuthCore
from auth.registration import RegistrationController
from auth.rememberme import PersistentLoginStore
from auth.resolver import IdentityResolver
from auth.sessions import SessionStore
from auth.store import AccountStore
from core.config import Settings, get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("gatehouse.api")

# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_core(
    settings: Settings,
    accounts: AccountStore,
    sessions: SessionStore,
    remember_store: PersistentLoginStore,
    nonces: NoncePrimitive,
) -> AuthCore:
    """Assemble resolver, orchestrator and registration around the given stores."""
    resolver = IdentityResolver(
        accounts,
        remember_store,
        rememberme_enabled=settings.rememberme_enabled,
        login_access_rule=settings.login_access_rule,
    )
    controller = LoginController(
        NonceGate(nonces),
        accounts,
        remember_store,
        sessions,
        AccountOAuthDelegate(accounts),
        login_access_rule=settings.login_access_rule,
        rememberme_enabled=settings.rememberme_enabled,
        oauth_enabled=settings.oauth_enabled,
        oauth_providers=lambda: [p["name"] for p in get_enabled_providers()],
    )
    registration = RegistrationController(
        accounts,
        settings.secret_key,
        login_enabled=settings.login_enabled,
        registration_enabled=settings.user_registration_enabled,
        fields=settings.user_registration_fields,
        params=settings.user_registration_params,
    )
    return AuthCore(accounts, resolver, controller, registration, login_route=settings.login_route)


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Purge expired sessions, used nonces and remember-me series every hour.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(60 * 60)
        try:
            sessions = app.state.sessions.purge_expired()
            nonces = app.state.nonces.purge_expired()
            tokens = app.state.remember_store.purge_expired()
        except StoreError:
            logger.exception("Purge pass failed")
            continue
        logger.info("Purged %d sessions, %d nonces, %d remember-me series", sessions, nonces, tokens)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the stores and the AuthCore on startup; close them on shutdown.

    Stores first (each creates its own tables), then the core that wraps
    them, then the purge task that references them.
    """
    settings = get_settings()
    logger.info("Gatehouse API starting up")
    app.state.accounts = AccountStore(settings.database_url)
    app.state.sessions = SessionStore(settings.database_url, settings.session_lifetime_seconds)
    app.state.remember_store = PersistentLoginStore(
        settings.database_url, settings.secret_key, settings.rememberme_timeout_seconds
    )
    app.state.nonces = NoncePrimitive(settings.database_url, settings.secret_key, settings.nonce_lifetime_seconds)
    app.state.oauth = oauth_client
    app.state.core = build_core(
        settings, app.state.accounts, app.state.sessions, app.state.remember_store, app.state.nonces
    )
    logger.info(
        "Auth initialized (rememberme=%s, registration=%s, oauth providers=%d)",
        settings.rememberme_enabled,
        settings.user_registration_enabled,
        len(get_enabled_providers()),
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.nonces.close()
    app.state.remember_store.close()
    app.state.sessions.close()
    app.state.accounts.close()
    logger.info("Gatehouse API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Gatehouse API",
    description="Session login, persistent login, nonces, registration and page access rules.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the existing stack, so the last one added is the
# outermost. Added innermost first: Session -> SlowAPI -> TrustedHost.
# ---------------------------------------------------------------------------

# authlib keeps the OAuth state value here between the authorization redirect
# and the callback. Gatehouse's own session lives in its sessions table.
app.add_middleware(SessionMiddleware, secret_key=get_settings().secret_key, https_only=get_settings().secure_cookies)

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=get_settings().allowed_hosts)

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
app.include_router(pages_router, prefix="/api/v1", tags=["Pages"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


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

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    """A persistence failure aborts the request. Nothing about the failure reaches the client."""
    logger.error("Store failure on %s %s: %s", request.method, request.url.path, exc)
    undo_remember_rotation(request)
    return JSONResponse(
        status_code=503,
        content=ErrorResponse(
            error=ErrorDetail(
                code="store_unavailable",
                message="The service is temporarily unavailable.",
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    undo_remember_rotation(request)
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
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, current version and database reachability."""
    database = "ok" if request.app.state.accounts.ping() else "error"
    return HealthResponse(version=VERSION, components={"app": "ok", "database": database})
