"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data containers, next to no logic). Stores and the
resolver/controller do the work; these classes own the domain shape.

Layer rule: no imports from api/. core/ is allowed for the shared RuleValue
type.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from core.config import RuleValue


@dataclass
class Identity:
    """The acting principal for a request.

    The anonymous identity is the zero value: Identity(). Assertions are flat
    dotted rule names ("site.login", "group/admin") mapped to a RuleValue.

    via_remember_me is True when the authentication came from a persistent
    login token instead of a credential check. A stolen remember-me cookie
    yields such an identity, so anything sensitive can ask for a fresh login.
    """

    username: str = ""
    authenticated: bool = False
    exists: bool = False
    assertions: dict[str, RuleValue] = field(default_factory=dict)
    via_remember_me: bool = False
    oauth_provider: str | None = None

    def assertion(self, rule: str) -> RuleValue | None:
        return self.assertions.get(rule)


@dataclass(frozen=True)
class TokenPair:
    """A persistent-login token: series identifier plus single-use secret."""

    series: str
    secret: str


@dataclass
class AccountRecord:
    """A stored user account.

    fields is the free-form record body: email, fullname, title, state,
    access (possibly nested), hashed_password, oauth_provider, oauth_subject.
    The username is the record's key and never appears inside fields.
    """

    username: str
    fields: dict[str, Any] = field(default_factory=dict)

    @property
    def hashed_password(self) -> str | None:
        return self.fields.get("hashed_password")

    @property
    def is_active(self) -> bool:
        return self.fields.get("state", "enabled") != "disabled"


@dataclass
class Session:
    """Server-side per-caller state, keyed by an opaque session id.

    identity is None until the resolver runs for the first time. Once set it
    is reused for the remaining lifetime of the session unless a login or
    logout replaces it.

    clear_remember_cookie tells the HTTP layer to delete the remember-me
    cookie on the way out (logout, compromised or unknown token).
    """

    id: str
    identity: Identity | None = None
    remember_token: TokenPair | None = None
    oauth: str | None = None
    messages: list[dict[str, str]] = field(default_factory=list)
    validated_password: str | None = None
    clear_remember_cookie: bool = False
    created_at: str | None = None


class Decision(str, Enum):
    ALLOW = "allow"
    DENY_REDIRECT = "deny_redirect"
    DENY_INLINE = "deny_inline"


@dataclass
class AccessResult:
    """Outcome of evaluating a page's access rules.

    authenticated is False on both denials: the response is rendered as if
    authentication was not satisfied. show_login asks the caller to render
    the login form in place of the page; not_authorized asks for an
    access-denied notice.
    """

    decision: Decision
    redirect: str | None = None
    authenticated: bool = True
    show_login: bool = False
    not_authorized: bool = False


class TaskState(str, Enum):
    START = "start"
    NONCE_CHECKED = "nonce_checked"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"
    LOGGED_OUT = "logged_out"


@dataclass
class TaskOutcome:
    """Result of a login, logout, or OAuth completion task.

    redirect is the target to send the caller to, or None when the caller
    should re-render (failed login) or do nothing (denied logout). template
    names the form to render when authentication is not satisfied.
    """

    state: TaskState
    identity: Identity
    redirect: str | None = None
    not_authorized: bool = False
    template: str | None = None


@dataclass
class FormOutcome:
    """Result of a registration form action: ok, or a rejected action with a reason."""

    ok: bool
    action: str
    error: str | None = None
    error_kind: str | None = None
    username: str | None = None
