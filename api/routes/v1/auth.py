"""
api/routes/v1/auth.py -- Authentication, nonce, registration and OAuth endpoints.

Routes:
  GET  /api/v1/auth/nonce/{action}             -- issue a login-form / logout-form nonce
  POST /api/v1/auth/login                      -- password login task; 302 on success
  GET  /api/v1/auth/logout?logout-nonce=...    -- logout task; 302 on success, no-op otherwise
  GET  /api/v1/auth/me                         -- resolved identity (401 if anonymous)
  GET  /api/v1/auth/messages                   -- drain the session's notice queue
  POST /api/v1/auth/validate-password          -- registration: password strength + confirmation
  POST /api/v1/auth/register                   -- registration: create the account
  GET  /api/v1/auth/providers                  -- enabled OAuth providers (public)
  GET  /api/v1/auth/oauth/{provider}           -- start an OAuth round trip
  GET  /api/v1/auth/oauth/{provider}/callback  -- finish it

Every handler builds a RequestContext, runs the core, builds its response,
and then calls commit_session() exactly once.

Security:
  [H2] POST /login is rate-limited per client address (Settings.login_rate_limit).
  [C1] Failed logins always get the same response and the same notice text.
  [C2] Redirect targets are relative paths only (safe_next).
  [M5] Cache-Control: no-store on login/logout responses.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse

from api.limiter import limiter, login_rate_limit
from api.models import (
    FormOutcomeResponse,
    IdentityResponse,
    MessagesResponse,
    NonceResponse,
    OAuthProviderInfo,
    TaskResponse,
)
from auth.dependencies import build_context, commit_session, get_core, try_get_current_identity
from auth.models import TaskOutcome, TaskState
from auth.nonce import LOGIN_ACTION, LOGIN_NONCE_FIELD, LOGOUT_ACTION, LOGOUT_NONCE_PARAM
from auth.oauth import get_enabled_providers, get_oauth_user_info

logger = logging.getLogger("gatehouse.api.auth")

router = APIRouter()

_NONCE_FIELDS = {LOGIN_ACTION: LOGIN_NONCE_FIELD, LOGOUT_ACTION: LOGOUT_NONCE_PARAM}


def task_response(outcome: TaskOutcome) -> JSONResponse | RedirectResponse:
    """Redirect when the task produced a target, else report the outcome as JSON.

    A failed login is a 401 carrying the template to render (the login form);
    a logout that did nothing is a plain 200.
    """
    if outcome.redirect is not None:
        resp = RedirectResponse(outcome.redirect, status_code=302)
    else:
        status = 401 if outcome.state is TaskState.FAILED else 200
        resp = JSONResponse(status_code=status, content=TaskResponse.from_outcome(outcome).model_dump())
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Nonces
# ---------------------------------------------------------------------------


@router.get("/auth/nonce/{action}", response_model=NonceResponse)
def issue_nonce(request: Request, action: str) -> JSONResponse:
    """Issue a single-use nonce bound to the caller's session."""
    if action not in _NONCE_FIELDS:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Unknown nonce action."})
    ctx = build_context(request)
    nonce = request.app.state.nonces.issue(action, ctx.session.id)
    resp = JSONResponse(content=NonceResponse(action=action, nonce=nonce, field=_NONCE_FIELDS[action]).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return commit_session(request, ctx, resp)


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------


@limiter.limit(login_rate_limit)  # [H2]
@router.post("/auth/login")
async def login(request: Request):
    """Run the login task with the posted form (username, password, login-form-nonce, rememberme, redirect)."""
    form = dict(await request.form())
    form["task"] = "login.login"
    ctx = build_context(request, form)
    result = get_core(request).run(ctx)
    return commit_session(request, ctx, task_response(result.outcome))


@router.get("/auth/logout")
def logout(request: Request):
    """Run the logout task. The nonce travels as the logout-nonce query parameter."""
    ctx = build_context(request)
    ctx.params["task"] = "login.logout"
    result = get_core(request).run(ctx)
    return commit_session(request, ctx, task_response(result.outcome))


@router.get("/auth/me", response_model=IdentityResponse)
def me(request: Request) -> JSONResponse:
    """Return the identity of the caller. 401 for anonymous callers."""
    ctx = build_context(request)
    identity = try_get_current_identity(request, ctx)
    if identity is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "unauthorized", "message": "Authentication required."}},
        )
    else:
        resp = JSONResponse(content=IdentityResponse.from_identity(identity).model_dump())
    return commit_session(request, ctx, resp)


@router.get("/auth/messages", response_model=MessagesResponse)
def messages(request: Request) -> JSONResponse:
    """Return and clear every queued notice."""
    ctx = build_context(request)
    get_core(request).resolve_identity(ctx)
    resp = JSONResponse(content={"messages": ctx.messages.fetch()})
    return commit_session(request, ctx, resp)


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def _form_response(outcome) -> JSONResponse:
    if outcome.ok:
        status = 201 if outcome.action == "register_user" else 200
    else:
        status = 403 if outcome.error_kind == "disabled" else 422
    return JSONResponse(status_code=status, content=FormOutcomeResponse.from_outcome(outcome).model_dump())


@router.post("/auth/validate-password", response_model=FormOutcomeResponse)
async def validate_password(request: Request) -> JSONResponse:
    """Check password1 for strength and password2 for equality. Must precede /auth/register."""
    form = dict(await request.form())
    ctx = build_context(request, form)
    outcome = get_core(request).registration.validate_password(ctx.session, form)
    return commit_session(request, ctx, _form_response(outcome))


@router.post("/auth/register", response_model=FormOutcomeResponse, status_code=201)
async def register(request: Request) -> JSONResponse:
    """Create an account from the whitelisted form fields."""
    form = dict(await request.form())
    ctx = build_context(request, form)
    outcome = get_core(request).registration.register_user(ctx.session, form)
    return commit_session(request, ctx, _form_response(outcome))


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers() -> list[OAuthProviderInfo]:
    """Return the configured OAuth providers. Empty when none are set up."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers()]


@router.get("/auth/oauth/{provider}")
async def oauth_redirect(request: Request, provider: str):
    """Mark the OAuth round trip on the session and redirect to the provider."""
    ctx = build_context(request)
    core = get_core(request)
    if not core.controller.begin_oauth(ctx, provider):
        ctx.messages.notify("OAUTH_FAILED", "error")
        return commit_session(request, ctx, RedirectResponse(core.login_route or "/", status_code=302))

    client = request.app.state.oauth.create_client(provider)
    redirect_uri = str(request.url_for("oauth_callback", provider=provider))
    resp = await client.authorize_redirect(request, redirect_uri)
    return commit_session(request, ctx, resp)


@router.get("/auth/oauth/{provider}/callback", name="oauth_callback")
async def oauth_callback(request: Request, provider: str):
    """Exchange the code, extract a verified identity, and hand it to the orchestrator.

    Any protocol failure becomes a None payload, which the orchestrator turns
    into the generic OAUTH_FAILED outcome.
    """
    ctx = build_context(request)
    core = get_core(request)
    payload = None
    if ctx.session.oauth == provider:
        client = request.app.state.oauth.create_client(provider)
        try:
            token = await client.authorize_access_token(request)
            email, subject = await get_oauth_user_info(client, provider, token)
            payload = {"email": email, "subject": subject}
        except OAuthError:
            logger.exception("OAuth token exchange failed for provider %r", provider)
        except ValueError:
            logger.warning("OAuth login rejected: unverified or missing email from %r", provider)

    outcome = core.controller.handle_oauth_callback(ctx, provider, payload)
    if outcome.state is TaskState.FAILED:
        resp = RedirectResponse(core.login_route or "/", status_code=302)
    else:
        resp = RedirectResponse(outcome.redirect or "/", status_code=302)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return commit_session(request, ctx, resp)
