"""
auth/access.py -- Page-level access rule evaluation.

A rule set maps rule names to expected values. Empty means public. A
non-empty set is satisfied when ANY rule matches the identity's assertion
(OR, not AND), so the result does not depend on iteration order.

Matching is typed: a bool expectation only matches a bool assertion, numbers
compare numerically, strings compare exactly. A missing assertion matches
nothing -- an anonymous visitor never satisfies {"site.login": False}.

On denial the caller gets one of:
  DENY_REDIRECT -- anonymous visitor and a login route exists: 302 there.
  DENY_INLINE   -- render in place. Anonymous: show the login form.
                   Logged in but lacking privilege: access-denied notice
                   (redirecting them to login would loop).
"""

from __future__ import annotations

from collections.abc import Mapping

from auth.messages import MessageQueue
from auth.models import AccessResult, Decision, Identity
from core.config import RuleValue


def rule_matches(actual: RuleValue | None, expected: RuleValue) -> bool:
    if actual is None:
        return False
    if isinstance(expected, bool) or isinstance(actual, bool):
        return isinstance(expected, bool) and isinstance(actual, bool) and actual == expected
    if isinstance(expected, (int, float)):
        return isinstance(actual, (int, float)) and actual == expected
    return isinstance(actual, str) and actual == expected


def may_login(identity: Identity, login_access_rule: str) -> bool:
    """True when identity asserts login_access_rule. An empty rule lets everyone in.

    Shared by every way of signing in: password, OAuth and remember-me.
    """
    if not login_access_rule:
        return True
    return rule_matches(identity.assertion(login_access_rule), True)


def authorize(
    identity: Identity,
    rules: Mapping[str, RuleValue] | None,
    login_route: str | None = None,
    messages: MessageQueue | None = None,
) -> AccessResult:
    """Decide whether identity may see a page protected by rules."""
    if not rules:
        return AccessResult(Decision.ALLOW)

    for rule, expected in rules.items():
        if rule_matches(identity.assertion(rule), expected):
            return AccessResult(Decision.ALLOW)

    if not identity.authenticated:
        if login_route:
            return AccessResult(Decision.DENY_REDIRECT, redirect=login_route, authenticated=False)
        return AccessResult(Decision.DENY_INLINE, authenticated=False, show_login=True)

    if messages is not None:
        messages.notify("ACCESS_DENIED", "info")
    return AccessResult(Decision.DENY_INLINE, authenticated=False, not_authorized=True)
