"""
auth/dependencies.py -- Bridges FastAPI requests/responses and the auth core.

build_context() turns a Request into a RequestContext:
  session        -- loaded from the session cookie (a fresh one if absent)
  params         -- query string plus path parameters
  form           -- the parsed body, when the route passes one in
  remember_token -- parsed from the remember-me cookie
  referrer       -- where a successful task sends the caller back to

commit_session() is called once per request, after the response object
exists: it persists the session and writes the session and remember-me
cookies. Until then nothing has been stored, so an aborted request leaves
the stored session untouched.

try_get_current_identity() is for routes that just need "who is this". There
is no raising variant: a route must always reach commit_session(), or a
remember-me rotation done during resolution would never reach the browser
and its next request would look like a replayed cookie. When a request
fails before that point, the error handlers call undo_remember_rotation().

Layer rule: this module may import from fastapi because it is the HTTP seam
of auth/. Nothing else in auth/ does.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlparse

from fastapi import Request, Response

from auth.context import RequestContext
from auth.errors import StoreError
from auth.models import Identity
from auth.pipeline import AuthCore
from auth.rememberme import format_cookie, parse_cookie
from auth.sessions import SessionStore
from core.config import get_settings

logger = logging.getLogger("gatehouse.auth.dependencies")


def safe_next(next_url: str | None) -> str:
    """Validate a post-task redirect target. Only accept relative paths. [C2]

    Rejects absolute URLs and protocol-relative "//host" paths, both of which
    would send the caller off-site.
    """
    if next_url and next_url.startswith("/") and not next_url.startswith("//") and "\\" not in next_url:
        return next_url
    return "/"


def _referrer(request: Request, form: Mapping[str, Any]) -> str:
    explicit = form.get("redirect") or request.query_params.get("next")
    if explicit:
        return safe_next(str(explicit))
    header = request.headers.get("referer")
    if header:
        parsed = urlparse(header)
        if parsed.netloc in ("", request.url.netloc):
            return safe_next(parsed.path or "/")
    return "/"


def build_context(request: Request, form: Mapping[str, Any] | None = None) -> RequestContext:
    settings = get_settings()
    sessions: SessionStore = request.app.state.sessions
    form = dict(form or {})
    params = dict(request.query_params)
    params.update(request.path_params)
    ctx = RequestContext(
        session=sessions.get(request.cookies.get(settings.session_cookie_name)),
        method=request.method,
        path=request.url.path,
        params=params,
        form=form,
        remember_token=parse_cookie(request.cookies.get(settings.rememberme_cookie_name)),
        referrer=_referrer(request, form),
    )
    request.state.auth_context = ctx
    return ctx


def commit_session(request: Request, ctx: RequestContext, response: Response) -> Response:
    """Persist the session and write its cookies onto response.

    httponly=True: JS cannot read the cookies (XSS mitigation).
    samesite="lax": not sent on cross-site POSTs.
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    """
    settings = get_settings()
    sessions: SessionStore = request.app.state.sessions
    session = ctx.session
    sessions.put(session)
    response.set_cookie(
        settings.session_cookie_name,
        value=session.id,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=settings.session_lifetime_seconds,
    )
    if session.clear_remember_cookie:
        response.delete_cookie(settings.rememberme_cookie_name)
    elif session.remember_token is not None and session.remember_token != ctx.remember_token:
        response.set_cookie(
            settings.rememberme_cookie_name,
            value=format_cookie(session.remember_token),
            httponly=True,
            samesite="lax",
            secure=settings.secure_cookies,
            max_age=settings.rememberme_timeout_seconds,
        )
    ctx.rotated_token = None
    return response


def undo_remember_rotation(request: Request) -> None:
    """Restore the presented remember-me pair when the request failed before commit_session().

    Called from the error handlers. A failure to restore is logged; the
    original error still decides the response.
    """
    ctx: RequestContext | None = getattr(request.state, "auth_context", None)
    if ctx is None or ctx.rotated_token is None:
        return
    try:
        get_core(request).undo_rotation(ctx)
    except StoreError:
        logger.exception("Could not restore the remember-me pair after a failed request")


def get_core(request: Request) -> AuthCore:
    return request.app.state.core


def try_get_current_identity(request: Request, ctx: RequestContext) -> Identity | None:
    """Resolve the identity for ctx. Returns None unless it is authenticated."""
    identity = get_core(request).resolve_identity(ctx)
    return identity if identity.authenticated else None

