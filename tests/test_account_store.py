"""Unit tests for auth/store.py -- account lookups.

Covers:
- find_by_email() matches case-insensitively through the indexed email column
- find_by_email() follows email changes made with update()
- accounts without an email are never matched
- the OAuth link is found by (provider, subject) once linked
"""

from sqlalchemy import select

from auth.store import _accounts


def test_find_by_email_ignores_case(stores):
    account = stores.accounts.find_by_email("  Alice@Example.COM ")
    assert account is not None
    assert account.username == "alice"


def test_email_column_holds_normalized_copy(stores):
    stores.accounts.save("mixed", {"email": "Mixed.Case@Example.com"})
    with stores.accounts.engine.connect() as conn:
        stored = conn.execute(select(_accounts.c.email).where(_accounts.c.username == "mixed")).scalar_one()
    assert stored == "mixed.case@example.com"


def test_find_by_email_follows_update(stores):
    assert stores.accounts.update("alice", email="alice@new.example.com") is True
    assert stores.accounts.find_by_email("alice@example.com") is None
    assert stores.accounts.find_by_email("alice@new.example.com").username == "alice"


def test_missing_or_blank_email_never_matches(stores):
    assert stores.accounts.find_by_email("") is None
    assert stores.accounts.find_by_email("nobody@example.com") is None
    # "nologin" has no email at all.
    assert stores.accounts.load("nologin").fields.get("email") is None


def test_oauth_link_lookup(stores):
    assert stores.accounts.find_by_oauth("github", "42") is None
    assert stores.accounts.link_oauth("alice", "github", "42") is True
    account = stores.accounts.find_by_oauth("github", "42")
    assert account.username == "alice"
    assert account.fields["oauth_subject"] == "42"
