"""
auth/oauth.py -- Authlib OAuth/OIDC provider configuration and the account delegate.

Reads configuration from core.config.get_settings() at module load to decide
which providers are active. Only providers with both client ID and secret
configured get registered.

Two halves:
  Protocol side (authlib): redirect to the provider, exchange the code, and
      extract a verified (email, subject) pair. This lives in the HTTP layer
      because authlib's Starlette client is async and needs the request.
  Account side (AccountOAuthDelegate): the opaque delegate the orchestrator
      calls with that payload. It maps the payload to a provisioned account
      and returns an Identity, or None on failure.

Security notes:
  [H1] Email verification is mandatory. get_oauth_user_info() raises ValueError
       if the provider does not confirm the email is verified.

  OAuth state (CSRF protection for the provider round trip) is handled by
  authlib through Starlette SessionMiddleware. Separately, the orchestrator
  only completes a callback when the Gatehouse session carries a matching
  OAuth-in-progress marker.

Supported providers:
  github -- Authorization code flow; static endpoints.
  google -- Authorization code flow; OIDC discovery.
  oidc   -- Generic OIDC discovery (Okta, Azure AD, Keycloak, Authentik, etc.)
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from authlib.integrations.starlette_client import OAuth

from auth.models import Identity
from auth.resolver import build_identity
from auth.store import AccountStore
from core.config import get_settings

logger = logging.getLogger("gatehouse.auth.oauth")

# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------

oauth = OAuth()

_cfg = get_settings()

# GitHub -- static endpoints (no OIDC discovery document)
if _cfg.github_client_id and _cfg.github_client_secret:
    oauth.register(
        name="github",
        client_id=_cfg.github_client_id,
        client_secret=_cfg.github_client_secret,
        access_token_url="https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
        authorize_url="https://github.com/login/oauth/authorize",
        api_base_url="https://api.github.com/",
        client_kwargs={"scope": "read:user user:email"},
    )
    logger.info("GitHub OAuth provider registered")

# Google -- OIDC discovery
if _cfg.google_client_id and _cfg.google_client_secret:
    oauth.register(
        name="google",
        client_id=_cfg.google_client_id,
        client_secret=_cfg.google_client_secret,
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile"},
    )
    logger.info("Google OAuth provider registered")

# Generic OIDC -- Okta, Azure AD, Keycloak, Authentik, etc.
if _cfg.oidc_client_id and _cfg.oidc_client_secret and _cfg.oidc_discovery_url:
    oauth.register(
        name="oidc",
        client_id=_cfg.oidc_client_id,
        client_secret=_cfg.oidc_client_secret,
        server_metadata_url=_cfg.oidc_discovery_url,
        client_kwargs={"scope": "openid email profile"},
    )
    logger.info("Generic OIDC provider registered (display name: %s)", _cfg.oidc_display_name)


# ---------------------------------------------------------------------------
# Provider metadata
# ---------------------------------------------------------------------------


def get_enabled_providers() -> list[dict]:
    """Return {"name", "label"} for every configured provider.

    Empty when OAuth is switched off as a whole (OAUTH_ENABLED=false).
    """
    cfg = get_settings()
    if not cfg.oauth_enabled:
        return []
    providers: list[dict] = []
    if cfg.github_client_id and cfg.github_client_secret:
        providers.append({"name": "github", "label": "GitHub"})
    if cfg.google_client_id and cfg.google_client_secret:
        providers.append({"name": "google", "label": "Google"})
    if cfg.oidc_client_id and cfg.oidc_client_secret and cfg.oidc_discovery_url:
        providers.append({"name": "oidc", "label": cfg.oidc_display_name})
    return providers


# ---------------------------------------------------------------------------
# Email / subject extraction -- provider-specific normalization [H1]
# ---------------------------------------------------------------------------


async def get_oauth_user_info(client, provider: str, token: dict) -> tuple[str, str]:
    """Extract (email, subject_id) from a provider token response.

    Raises:
        ValueError: If a verified email cannot be confirmed, or the provider
            is unknown. The caller treats this as an authentication failure.
    """
    if provider == "github":
        return await _get_github_user_info(client, token)
    elif provider in ("google", "oidc"):
        return _get_oidc_user_info(token, provider)
    else:
        raise ValueError(f"Unknown OAuth provider: {provider!r}")


async def _get_github_user_info(client, token: dict) -> tuple[str, str]:
    """GitHub needs two calls: /user for the numeric id, /user/emails for the primary verified email."""
    resp = await client.get("user", token=token)
    resp.raise_for_status()
    subject_id = str(resp.json()["id"])

    emails_resp = await client.get("user/emails", token=token)
    emails_resp.raise_for_status()

    email: str | None = None
    for entry in emails_resp.json():
        if entry.get("primary") and entry.get("verified"):
            email = entry["email"]
            break

    if not email:
        raise ValueError("GitHub OAuth: no primary verified email found.")

    return email, subject_id


def _get_oidc_user_info(token: dict, provider: str) -> tuple[str, str]:
    """Read email/sub from the id_token claims. A missing email_verified counts as unverified."""
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError(f"{provider} OAuth: no userinfo in token response")

    if not userinfo.get("email_verified", False):
        raise ValueError(f"{provider} OAuth: email is not verified.")

    email = userinfo.get("email")
    subject_id = userinfo.get("sub")

    if not email or not subject_id:
        raise ValueError(f"{provider} OAuth: missing email or sub claim in userinfo")

    return email, subject_id


# ---------------------------------------------------------------------------
# Account delegate
# ---------------------------------------------------------------------------


class AccountOAuthDelegate:
    """Maps a verified provider payload onto a provisioned account.

    Lookup order:
      1. (provider, subject) -- returning user, already linked.
      2. email -- first OAuth login of a pre-created account; the subject is
         linked now so later logins take path 1.
    Unknown emails and disabled accounts fail. Accounts are never created
    here.
    """

    def __init__(self, accounts: AccountStore) -> None:
        self.accounts = accounts

    def authenticate(self, provider: str, payload: Mapping[str, Any]) -> Identity | None:
        subject = payload.get("subject")
        email = payload.get("email")
        if not subject or not email:
            return None

        account = self.accounts.find_by_oauth(provider, str(subject))
        if account is None:
            account = self.accounts.find_by_email(str(email))
            if account is None:
                logger.warning("OAuth login rejected: no provisioned account for %r identity", provider)
                return None
            if account.fields.get("oauth_subject") is not None:
                # Linked to a different identity already.
                return None
            self.accounts.link_oauth(account.username, provider, str(subject))

        if not account.is_active:
            return None
        return build_identity(account, oauth_provider=provider)
