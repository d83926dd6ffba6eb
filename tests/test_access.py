"""Unit tests for auth/access.py -- page access rule evaluation.

Covers:
- empty rule sets are public
- OR semantics: any single matching rule grants access, in any order
- typed matching: bools, numbers and strings never match across types
- denial modes: redirect for anonymous visitors with a login route, inline
  login form without one, inline not-authorized notice for logged-in users
"""

import itertools

import pytest

from auth.access import authorize, may_login, rule_matches
from auth.messages import MESSAGES, MessageQueue
from auth.models import Decision, Identity, Session

ALICE = Identity(username="alice", authenticated=True, exists=True, assertions={"site.login": True})
ADMIN = Identity(
    username="admin",
    authenticated=True,
    exists=True,
    assertions={"site.login": True, "admin.login": True, "admin.level": 3, "group": "ops"},
)
ANON = Identity()


class TestRuleMatches:
    @pytest.mark.parametrize(
        "actual, expected, result",
        [
            (True, True, True),
            (False, False, True),
            (True, False, False),
            (None, False, False),
            (None, True, False),
            (1, True, False),
            (True, 1, False),
            (3, 3, True),
            (3, 3.0, True),
            (3, 4, False),
            ("3", 3, False),
            ("ops", "ops", True),
            ("ops", "OPS", False),
            ("", False, False),
        ],
    )
    def test_typed_comparison(self, actual, expected, result):
        assert rule_matches(actual, expected) is result


class TestAuthorize:
    def test_empty_rules_allow_anyone(self):
        assert authorize(ANON, {}).decision is Decision.ALLOW
        assert authorize(ANON, None).decision is Decision.ALLOW

    def test_single_matching_rule_allows(self):
        assert authorize(ALICE, {"site.login": True}).decision is Decision.ALLOW

    def test_or_semantics_independent_of_order(self):
        rules = {"admin.super": True, "group": "ops", "admin.level": 9}
        for order in itertools.permutations(rules.items()):
            assert authorize(ADMIN, dict(order)).decision is Decision.ALLOW

    # A missing assertion is not the same as False. A loose comparison would
    # let every anonymous visitor through a {"site.login": False} page.
    def test_anonymous_never_matches_false_rule(self):
        result = authorize(ANON, {"site.login": False}, login_route="/login")
        assert result.decision is Decision.DENY_REDIRECT

    def test_anonymous_redirected_to_login_route(self):
        result = authorize(ANON, {"site.login": True}, login_route="/login")
        assert result.decision is Decision.DENY_REDIRECT
        assert result.redirect == "/login"
        assert result.authenticated is False

    def test_anonymous_without_login_route_sees_inline_form(self):
        result = authorize(ANON, {"site.login": True}, login_route="")
        assert result.decision is Decision.DENY_INLINE
        assert result.show_login is True
        assert result.not_authorized is False
        assert result.authenticated is False

    def test_logged_in_without_privilege_is_not_redirected(self):
        session = Session(id="s1")
        result = authorize(ALICE, {"admin.login": True}, login_route="/login", messages=MessageQueue(session))
        assert result.decision is Decision.DENY_INLINE
        assert result.not_authorized is True
        assert result.show_login is False
        assert result.redirect is None
        assert session.messages == [{"message": MESSAGES["ACCESS_DENIED"], "severity": "info"}]

    def test_group_admin_rule(self):
        rules = {"group/admin": True}
        member = Identity(username="g", authenticated=True, exists=True, assertions={"group/admin": True})
        assert authorize(member, rules, login_route="/login").decision is Decision.ALLOW
        assert authorize(ANON, rules, login_route="/login").decision is Decision.DENY_REDIRECT
        assert authorize(ALICE, rules, login_route="/login").decision is Decision.DENY_INLINE

    def test_no_rule_matches_when_all_fail(self):
        rules = {"admin.login": True, "group": "dev"}
        assert authorize(ALICE, rules, login_route="/login").decision is Decision.DENY_INLINE


class TestMayLogin:
    def test_requires_true_assertion(self):
        assert may_login(ALICE, "site.login") is True
        assert may_login(ANON, "site.login") is False
        blocked = Identity(username="b", authenticated=True, exists=True, assertions={"site.login": False})
        assert may_login(blocked, "site.login") is False

    def test_empty_rule_lets_everyone_in(self):
        assert may_login(ANON, "") is True
