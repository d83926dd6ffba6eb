"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Gatehouse happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Complex fields (lists, dicts) are
      parsed from JSON strings.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode generates a SECRET_KEY with a
      warning, production mode refuses to start without one.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. Nonce signing and
       the remember-me / password fingerprint HMACs all rely on key entropy.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure. A random key would silently invalidate every
       outstanding nonce and remember-me cookie on restart.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Any, Union

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("gatehouse.config")

# Closed value type for access rules: bool / number / string.
RuleValue = Union[bool, int, float, str]

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'gatehouse.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL
    # Host headers accepted by TrustedHostMiddleware.
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    session_cookie_name: str = "gatehouse_session"
    session_lifetime_seconds: int = 1800

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    login_enabled: bool = True
    # Route unauthenticated visitors are redirected to. Empty string disables
    # the redirect and protected pages fall back to an inline login form.
    login_route: str = "/login"
    # Rule an account must assert before a password login is accepted.
    # Empty string skips the check.
    login_access_rule: str = "site.login"
    login_rate_limit: str = "10/minute"
    rate_limit_enabled: bool = True

    # ------------------------------------------------------------------
    # Remember me (persistent login)
    # ------------------------------------------------------------------

    rememberme_enabled: bool = True
    rememberme_cookie_name: str = "gatehouse-rememberme"
    # One week, matching the lifetime of the issued cookie.
    rememberme_timeout_seconds: int = 604800

    # ------------------------------------------------------------------
    # Nonces
    # ------------------------------------------------------------------

    nonce_lifetime_seconds: int = 43200

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    user_registration_enabled: bool = True
    # Whitelist of fields accepted into a registration record.
    user_registration_fields: list[str] = [
        "username",
        "password",
        "email",
        "fullname",
        "title",
        "access",
        "state",
    ]
    # Declared parameter groups. Values here always beat submitted form
    # values, so visitors cannot grant themselves access rules.
    user_registration_params: list[dict[str, Any]] = [
        {"access": {"site": {"login": True}}},
        {"state": "enabled"},
    ]

    # ------------------------------------------------------------------
    # OAuth providers (optional -- empty string means provider is disabled)
    # ------------------------------------------------------------------

    oauth_enabled: bool = True
    github_client_id: str = ""
    github_client_secret: str = ""
    google_client_id: str = ""
    google_client_secret: str = ""

    # Generic OIDC (Okta, Azure AD, Keycloak, Authentik, etc.)
    oidc_client_id: str = ""
    oidc_client_secret: str = ""
    oidc_discovery_url: str = ""
    oidc_display_name: str = "SSO"

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    # Route -> access rule set. Routes not listed are unknown (404); routes
    # listed with an empty rule set are public.
    page_access: dict[str, dict[str, RuleValue]] = {
        "/": {},
        "/members": {"site.login": True},
        "/admin": {"admin.login": True, "admin.super": True},
    }

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("login_route")
    @classmethod
    def normalize_login_route(cls, value: str) -> str:
        value = value.strip()
        if value and not value.startswith("/"):
            value = "/" + value
        return value

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Nonces and remember-me cookies will not survive restart.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Nonces and remember-me tokens will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    All modules should call get_settings() rather than constructing Settings()
    directly. In tests: call get_settings.cache_clear() between test cases if
    you need to inject different environment variables.
    """
    return Settings()
