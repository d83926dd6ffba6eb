"""
auth/resolver.py -- Lazily establishes the acting Identity for a request.

Priority order, first match wins:
  1. The session already holds an Identity -> return it unchanged. No store
     calls; the result is a pure cache for the lifetime of the session.
  2. Remember-me is enabled and the browser presented a token pair ->
     exchange it. The account is loaded inside the exchange, before the
     pair rotates; it must exist, be enabled and pass login_access_rule,
     or every series of the user is revoked. On OK the Identity is marked
     authenticated with via_remember_me=True and the rotated pair goes on
     the session for the HTTP layer to write back. On STALE the
     stolen-cookie notice is queued and nobody is authenticated.
  3. Anonymous Identity.

All store calls happen before the session is touched, then every session
change is applied together. A StoreError half way leaves the session as it
was and the presented pair unrotated. If the request fails after a
successful rotation, undo_rotation() restores the presented pair.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from auth.access import may_login
from auth.context import RequestContext
from auth.models import AccountRecord, Identity
from auth.rememberme import ExchangeStatus, PersistentLoginStore
from auth.store import AccountStore
from core.config import RuleValue

logger = logging.getLogger("gatehouse.auth.resolver")


def flatten_access(access: Mapping[str, Any], prefix: str = "") -> dict[str, RuleValue]:
    """Flatten {"site": {"login": True}} into {"site.login": True}.

    Leaves that are not bool/int/float/str are dropped; they can never match
    a rule value.
    """
    flat: dict[str, RuleValue] = {}
    for key, value in access.items():
        name = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, Mapping):
            flat.update(flatten_access(value, name))
        elif isinstance(value, (bool, int, float, str)):
            flat[name] = value
    return flat


def build_identity(account: AccountRecord, *, via_remember_me: bool = False, oauth_provider: str | None = None) -> Identity:
    """Authenticated Identity for a loaded account."""
    access = account.fields.get("access") or {}
    return Identity(
        username=account.username,
        authenticated=True,
        exists=True,
        assertions=flatten_access(access) if isinstance(access, Mapping) else {},
        via_remember_me=via_remember_me,
        oauth_provider=oauth_provider,
    )


class IdentityResolver:
    def __init__(
        self,
        accounts: AccountStore,
        remember_store: PersistentLoginStore,
        rememberme_enabled: bool = True,
        login_access_rule: str = "site.login",
    ) -> None:
        self.accounts = accounts
        self.remember_store = remember_store
        self.rememberme_enabled = rememberme_enabled
        self.login_access_rule = login_access_rule

    def resolve(self, ctx: RequestContext) -> Identity:
        session = ctx.session
        if session.identity is not None:
            return session.identity

        if self.rememberme_enabled and ctx.remember_token is not None:
            return self._resolve_from_token(ctx)

        identity = Identity()
        session.identity = identity
        return identity

    def _resolve_from_token(self, ctx: RequestContext) -> Identity:
        session = ctx.session
        loaded: list[Identity] = []

        def accept(username: str) -> bool:
            # Runs before the rotation is written; a StoreError here leaves
            # the presented pair valid.
            account = self.accounts.load(username)
            if account is None or not account.is_active:
                return False
            # The cookie may have been stolen, so the identity remembers it
            # came from a token and not from a password.
            identity = build_identity(account, via_remember_me=True)
            if not may_login(identity, self.login_access_rule):
                return False
            loaded.append(identity)
            return True

        result = self.remember_store.exchange(ctx.remember_token, accept)

        if result.status is ExchangeStatus.OK:
            identity = loaded[0]
            ctx.rotated_token = result.token
            session.remember_token = result.token
            session.identity = identity
            logger.info("Session authenticated from remember-me token")
            return identity

        if result.status is ExchangeStatus.STALE:
            ctx.messages.notify("REMEMBER_ME_STOLEN_COOKIE", "error")
        elif result.status is ExchangeStatus.REJECTED:
            logger.info("Remember-me token refused for an account that may not log in")
        session.remember_token = None
        session.clear_remember_cookie = True

        identity = Identity()
        session.identity = identity
        return identity

    def undo_rotation(self, ctx: RequestContext) -> None:
        """Give the browser's pair back its validity after a request failed.

        Called when the response carrying the rotated pair will never be
        sent. Without it the browser's next presentation looks like a
        replayed cookie.
        """
        if ctx.rotated_token is None or ctx.remember_token is None:
            return
        if self.remember_store.restore(ctx.rotated_token, ctx.remember_token):
            logger.info("Remember-me rotation undone after a failed request")
        ctx.rotated_token = None
