"""
auth/controller.py -- Login / logout / OAuth completion orchestrator.

Per task:  START -> NONCE_CHECKED -> AUTHENTICATED | FAILED | LOGGED_OUT

login:
  The nonce must arrive in the form field "login-form-nonce" for action
  "login-form". Denied: ACCESS_DENIED is queued, the outcome carries an
  anonymous identity and not_authorized, the login form is re-rendered. The
  credentials are not even looked at, so a denial says nothing about them.
  Passed: credentials are checked with timing equalization [C1]. Success
  replaces the session identity (dropping any cached anonymous one), rotates
  the session id, optionally issues a remember-me token, and redirects to the
  referrer. Failure queues the single generic LOGIN_FAILED text.

logout:
  The nonce must arrive as the request parameter "logout-nonce" for action
  "logout-form". Denied: nothing happens. Passed: the user's remember-me
  series are revoked, the session identity and token pair are cleared, and
  the caller is redirected to the referrer.

OAuth:
  begin_oauth() sets the session's OAuth-in-progress marker for an enabled
  provider. handle_oauth_callback() only calls the delegate when the marker
  names the same provider, clears the marker whatever happens, and treats a
  returned Identity exactly like a password login, login_access_rule
  included.

A failed login never logs out an already authenticated session; only the
outcome reports the attempt as unauthenticated.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any, Protocol

from auth.access import may_login
from auth.context import RequestContext
from auth.models import Identity, TaskOutcome, TaskState
from auth.nonce import LOGIN_ACTION, LOGIN_NONCE_FIELD, LOGOUT_ACTION, LOGOUT_NONCE_PARAM, NonceCheck, NonceGate
from auth.rememberme import PersistentLoginStore
from auth.resolver import build_identity
from auth.sessions import SessionStore
from auth.store import AccountStore
from auth.tokens import authenticate_account

logger = logging.getLogger("gatehouse.auth.controller")

LOGIN_TEMPLATE = "login"


class OAuthDelegate(Protocol):
    def authenticate(self, provider: str, payload: Mapping[str, Any]) -> Identity | None: ...


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "on", "yes")
    return bool(value)


class LoginController:
    def __init__(
        self,
        nonce_gate: NonceGate,
        accounts: AccountStore,
        remember_store: PersistentLoginStore,
        sessions: SessionStore,
        oauth_delegate: OAuthDelegate | None = None,
        *,
        login_access_rule: str = "site.login",
        rememberme_enabled: bool = True,
        oauth_enabled: bool = True,
        oauth_providers: Callable[[], Iterable[str]] = tuple,
    ) -> None:
        self.nonce_gate = nonce_gate
        self.accounts = accounts
        self.remember_store = remember_store
        self.sessions = sessions
        self.oauth_delegate = oauth_delegate
        self.login_access_rule = login_access_rule
        self.rememberme_enabled = rememberme_enabled
        self.oauth_enabled = oauth_enabled
        self.oauth_providers = oauth_providers

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def handle_task(self, ctx: RequestContext) -> TaskOutcome | None:
        """Run the login or logout task named by the request, if any."""
        task = ctx.task
        if task == "login":
            return self.handle_login_task(ctx)
        if task == "logout":
            return self.handle_logout_task(ctx)
        return None

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def handle_login_task(self, ctx: RequestContext) -> TaskOutcome:
        if self.nonce_gate.verify(LOGIN_ACTION, ctx.form.get(LOGIN_NONCE_FIELD), ctx.session.id) is NonceCheck.DENIED:
            ctx.messages.notify("ACCESS_DENIED", "info")
            return TaskOutcome(TaskState.FAILED, Identity(), not_authorized=True, template=LOGIN_TEMPLATE)

        username = str(ctx.form.get("username") or "")
        password = str(ctx.form.get("password") or "")
        account = authenticate_account(self.accounts, username, password)
        if account is not None:
            identity = build_identity(account)
            if may_login(identity, self.login_access_rule):
                return self._complete_login(ctx, identity, remember=_truthy(ctx.form.get("rememberme")))

        logger.info("Password login failed")
        ctx.messages.notify("LOGIN_FAILED", "error")
        return TaskOutcome(TaskState.FAILED, Identity(), template=LOGIN_TEMPLATE)

    def _complete_login(self, ctx: RequestContext, identity: Identity, remember: bool) -> TaskOutcome:
        session = ctx.session
        token = None
        if remember and self.rememberme_enabled:
            token = self.remember_store.issue(identity.username)
        self.sessions.rotate(session)

        session.identity = identity
        session.validated_password = None
        if token is not None:
            session.remember_token = token
            session.clear_remember_cookie = False
        ctx.messages.notify("LOGIN_SUCCESSFUL", "info")
        logger.info("Login succeeded%s", f" via {identity.oauth_provider}" if identity.oauth_provider else "")
        return TaskOutcome(TaskState.AUTHENTICATED, identity, redirect=ctx.referrer)

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def handle_logout_task(self, ctx: RequestContext) -> TaskOutcome:
        session = ctx.session
        if self.nonce_gate.verify(LOGOUT_ACTION, ctx.params.get(LOGOUT_NONCE_PARAM), ctx.session.id) is NonceCheck.DENIED:
            return TaskOutcome(TaskState.START, session.identity or Identity())

        current = session.identity
        if current is not None and current.username:
            self.remember_store.revoke(current.username)

        session.identity = None
        session.remember_token = None
        session.clear_remember_cookie = True
        ctx.messages.notify("LOGGED_OUT", "info")
        logger.info("Logout completed")
        return TaskOutcome(TaskState.LOGGED_OUT, Identity(), redirect=ctx.referrer)

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def begin_oauth(self, ctx: RequestContext, provider: str) -> bool:
        """Mark an OAuth round trip as in progress. False if the provider is not usable."""
        if not self.oauth_enabled or provider not in set(self.oauth_providers()):
            return False
        ctx.session.oauth = provider
        return True

    def handle_oauth_callback(self, ctx: RequestContext, provider: str, payload: Mapping[str, Any] | None) -> TaskOutcome:
        session = ctx.session
        expected = session.oauth
        session.oauth = None

        identity = None
        if self.oauth_enabled and self.oauth_delegate is not None and payload is not None and expected == provider:
            identity = self.oauth_delegate.authenticate(provider, payload)

        if identity is not None and not may_login(identity, self.login_access_rule):
            logger.warning("OAuth login via %r refused: account lacks %r", provider, self.login_access_rule)
            identity = None

        if identity is None:
            logger.warning("OAuth login via %r failed", provider)
            ctx.messages.notify("OAUTH_FAILED", "error")
            return TaskOutcome(TaskState.FAILED, Identity(), template=LOGIN_TEMPLATE)
        return self._complete_login(ctx, identity, remember=False)
