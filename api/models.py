"""
API response models for Gatehouse REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel

from auth.models import AccessResult, FormOutcome, Identity, TaskOutcome
from core.config import RuleValue


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class IdentityResponse(BaseModel):
    username: str
    authenticated: bool
    exists: bool
    assertions: dict[str, RuleValue]
    via_remember_me: bool
    oauth_provider: Optional[str] = None

    @classmethod
    def from_identity(cls, identity: Identity) -> "IdentityResponse":
        return cls(
            username=identity.username,
            authenticated=identity.authenticated,
            exists=identity.exists,
            assertions=dict(identity.assertions),
            via_remember_me=identity.via_remember_me,
            oauth_provider=identity.oauth_provider,
        )


class NonceResponse(BaseModel):
    action: str
    nonce: str
    # Where the nonce must travel: form field for login, query param for logout.
    field: str


class TaskResponse(BaseModel):
    state: str
    identity: IdentityResponse
    redirect: Optional[str] = None
    not_authorized: bool = False
    template: Optional[str] = None

    @classmethod
    def from_outcome(cls, outcome: TaskOutcome) -> "TaskResponse":
        return cls(
            state=outcome.state.value,
            identity=IdentityResponse.from_identity(outcome.identity),
            redirect=outcome.redirect,
            not_authorized=outcome.not_authorized,
            template=outcome.template,
        )


class MessageItem(BaseModel):
    message: str
    severity: str


class MessagesResponse(BaseModel):
    messages: list[MessageItem]


class FormOutcomeResponse(BaseModel):
    ok: bool
    action: str
    error: Optional[str] = None
    error_kind: Optional[str] = None
    username: Optional[str] = None

    @classmethod
    def from_outcome(cls, outcome: FormOutcome) -> "FormOutcomeResponse":
        return cls(
            ok=outcome.ok,
            action=outcome.action,
            error=outcome.error,
            error_kind=outcome.error_kind,
            username=outcome.username,
        )


class PageResponse(BaseModel):
    route: str
    authorized: bool
    decision: str
    authenticated: bool
    show_login: bool = False
    not_authorized: bool = False
    template: Optional[str] = None
    identity: IdentityResponse
    task: Optional[TaskResponse] = None

    @classmethod
    def build(cls, route: str, access: AccessResult, identity: Identity, task: Optional[TaskOutcome] = None) -> "PageResponse":
        show_login = access.show_login or (task is not None and task.template is not None)
        return cls(
            route=route,
            authorized=access.decision.value == "allow",
            decision=access.decision.value,
            authenticated=access.authenticated and (task is None or task.template is None),
            show_login=show_login,
            not_authorized=access.not_authorized or (task is not None and task.not_authorized),
            template="login" if show_login else None,
            identity=IdentityResponse.from_identity(identity),
            task=TaskResponse.from_outcome(task) if task is not None else None,
        )


class OAuthProviderInfo(BaseModel):
    name: str
    label: str


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = {}


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail
