"""
auth/pipeline.py -- The per-request order: resolve identity, gate the page, run the task.

AuthCore bundles the stores and components built at startup and exposes the
operations the HTTP layer calls:

  resolve_identity(ctx)          -> Identity
  authorize(identity, rules)     -> AccessResult
  handle_login_task(ctx)         -> TaskOutcome
  handle_logout_task(ctx)        -> TaskOutcome
  assemble_registration(...)     -> record dict (raises ValidationError)
  run(ctx, rules)                -> PipelineResult, all of the above in order

No side effects beyond the session passed in and the stores. The caller
persists the session once it has built its response.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from auth.access import authorize
from auth.context import RequestContext
from auth.controller import LoginController
from auth.models import AccessResult, Identity, TaskOutcome
from auth.registration import RegistrationController, assemble_registration
from auth.resolver import IdentityResolver
from auth.store import AccountStore
from core.config import RuleValue


@dataclass
class PipelineResult:
    identity: Identity
    access: AccessResult | None = None
    outcome: TaskOutcome | None = None


class AuthCore:
    def __init__(
        self,
        accounts: AccountStore,
        resolver: IdentityResolver,
        controller: LoginController,
        registration: RegistrationController,
        login_route: str = "",
    ) -> None:
        self.accounts = accounts
        self.resolver = resolver
        self.controller = controller
        self.registration = registration
        self.login_route = login_route

    def resolve_identity(self, ctx: RequestContext) -> Identity:
        return self.resolver.resolve(ctx)

    def undo_rotation(self, ctx: RequestContext) -> None:
        self.resolver.undo_rotation(ctx)

    def authorize(self, identity: Identity, rules: Mapping[str, RuleValue] | None, ctx: RequestContext | None = None) -> AccessResult:
        return authorize(identity, rules, self.login_route, ctx.messages if ctx is not None else None)

    def handle_login_task(self, ctx: RequestContext) -> TaskOutcome:
        return self.controller.handle_login_task(ctx)

    def handle_logout_task(self, ctx: RequestContext) -> TaskOutcome:
        return self.controller.handle_logout_task(ctx)

    def assemble_registration(
        self,
        username: str,
        declared_params: Iterable[Mapping[str, Any]],
        submitted_fields: Mapping[str, Any],
        allowed_field_names: Iterable[str],
    ) -> dict[str, Any]:
        return assemble_registration(username, declared_params, submitted_fields, allowed_field_names, self.accounts)

    def run(self, ctx: RequestContext, rules: Mapping[str, RuleValue] | None = None) -> PipelineResult:
        """Resolve, then gate the page when rules are given, then run any login/logout task.

        Any request that reaches the pipeline abandons a pending OAuth round
        trip; only the OAuth callback route keeps the marker alive.
        """
        ctx.session.oauth = None
        identity = self.resolve_identity(ctx)
        access = self.authorize(identity, rules, ctx) if rules is not None else None
        outcome = self.controller.handle_task(ctx)
        if outcome is not None:
            identity = outcome.identity
        return PipelineResult(identity=identity, access=access, outcome=outcome)
