"""Unit tests for auth/nonce.py -- single-use, session-bound nonces.

Covers:
- a fresh nonce verifies exactly once for its action and binding
- wrong action, wrong binding, tampered and expired tokens are denied
- any verification attempt consumes the nonce
- NonceGate maps missing tokens and rejections to DENIED
- purge_expired() only removes expired jtis
"""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.nonce import LOGIN_ACTION, LOGOUT_ACTION, NonceCheck, NonceGate, NoncePrimitive, _used_nonces

SECRET = "n" * 40


@pytest.fixture
def primitive(stores):
    p = NoncePrimitive(stores.url, SECRET, lifetime_seconds=600)
    yield p
    p.close()


def test_fresh_nonce_verifies_once(primitive):
    token = primitive.issue(LOGIN_ACTION, "sid-1")
    assert primitive.verify(LOGIN_ACTION, token, "sid-1") is True
    assert primitive.verify(LOGIN_ACTION, token, "sid-1") is False


def test_wrong_action_denied_and_consumed(primitive):
    token = primitive.issue(LOGIN_ACTION, "sid-1")
    assert primitive.verify(LOGOUT_ACTION, token, "sid-1") is False
    assert primitive.verify(LOGIN_ACTION, token, "sid-1") is False


def test_nonce_bound_to_session(primitive):
    token = primitive.issue(LOGIN_ACTION, "sid-1")
    assert primitive.verify(LOGIN_ACTION, token, "sid-2") is False


def test_tampered_token_denied(primitive):
    token = primitive.issue(LOGIN_ACTION, "sid-1")
    head, body, sig = token.split(".")
    forged = ".".join([head, body, sig[::-1]])
    assert primitive.verify(LOGIN_ACTION, forged, "sid-1") is False


def test_token_signed_with_other_key_denied(primitive, stores):
    foreign = NoncePrimitive(stores.url, "x" * 40)
    token = foreign.issue(LOGIN_ACTION, "sid-1")
    foreign.close()
    assert primitive.verify(LOGIN_ACTION, token, "sid-1") is False


def test_expired_nonce_denied(primitive):
    payload = {
        "act": LOGIN_ACTION,
        "sid": primitive._bind("sid-1"),
        "jti": "expired-jti",
        "exp": datetime.now(timezone.utc) - timedelta(seconds=5),
    }
    token = jwt.encode(payload, SECRET, algorithm="HS256")
    assert primitive.verify(LOGIN_ACTION, token, "sid-1") is False


def test_garbage_denied(primitive):
    assert primitive.verify(LOGIN_ACTION, "not-a-token", "sid-1") is False


def test_purge_keeps_live_jtis(primitive):
    token = primitive.issue(LOGIN_ACTION, "sid-1")
    assert primitive.verify(LOGIN_ACTION, token, "sid-1")
    past = (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat()
    with primitive.engine.begin() as conn:
        conn.execute(_used_nonces.insert().values(jti="old", expires_at=past))

    assert primitive.purge_expired() == 1
    # The live jti is still recorded, so the token stays spent.
    assert primitive.verify(LOGIN_ACTION, token, "sid-1") is False


class TestNonceGate:
    @pytest.mark.parametrize("token", [None, ""])
    def test_missing_token_denied(self, primitive, token):
        assert NonceGate(primitive).verify(LOGIN_ACTION, token, "sid-1") is NonceCheck.DENIED

    def test_valid_then_replayed(self, primitive):
        gate = NonceGate(primitive)
        token = primitive.issue(LOGOUT_ACTION, "sid-1")
        assert gate.verify(LOGOUT_ACTION, token, "sid-1") is NonceCheck.OK
        assert gate.verify(LOGOUT_ACTION, token, "sid-1") is NonceCheck.DENIED
