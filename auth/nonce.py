"""
auth/nonce.py -- Single-use, time-boxed nonces and the CSRF gate built on them.

NoncePrimitive:
  issue(action, binding) -> signed JWT (python-jose, HS256) carrying the
                            action name, a random jti, an expiry, and an
                            HMAC of the binding (the session id), so a
                            nonce fetched by one browser is useless to
                            another.
  verify(action, token, binding)
                         -> True once. The jti is recorded in used_nonces on
                            the first verification attempt, pass or fail on
                            the action check, so a token can never be tried
                            twice. A duplicate INSERT (IntegrityError) means
                            it was already used.

NonceGate:
  Enforces presence and routes the outcome. It never raises for a bad token
  -- callers get NonceCheck.DENIED and must treat it like "not
  authenticated" without saying anything about the credentials.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from enum import Enum

from jose import JWTError, jwt
from sqlalchemy import Column, MetaData, String, Table
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.db import create_store_engine, now_iso, store_errors
from auth.errors import StoreError
from auth.tokens import constant_time_equals, keyed_hash

logger = logging.getLogger("gatehouse.auth.nonce")

_ALGORITHM = "HS256"

LOGIN_ACTION = "login-form"
LOGOUT_ACTION = "logout-form"
LOGIN_NONCE_FIELD = "login-form-nonce"
LOGOUT_NONCE_PARAM = "logout-nonce"

_metadata = MetaData()

_used_nonces = Table(
    "used_nonces",
    _metadata,
    Column("jti", String(64), primary_key=True),
    Column("expires_at", String(32), nullable=False),
)


class NonceCheck(str, Enum):
    OK = "ok"
    DENIED = "denied"


class NoncePrimitive:
    """Issues and verifies single-use nonces scoped to an action name."""

    def __init__(self, db_url: str, secret_key: str, lifetime_seconds: int = 43200) -> None:
        self._secret_key = secret_key
        self.lifetime = timedelta(seconds=lifetime_seconds)
        self.engine = create_store_engine(db_url)
        _metadata.create_all(self.engine)

    def _bind(self, binding: str) -> str:
        return keyed_hash(self._secret_key, f"nonce-binding:{binding}")

    def issue(self, action: str, binding: str = "") -> str:
        payload = {
            "act": action,
            "sid": self._bind(binding),
            "jti": secrets.token_urlsafe(16),
            "exp": datetime.now(timezone.utc) + self.lifetime,
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify(self, action: str, token: str, binding: str = "") -> bool:
        """Return True if token is a live, unused nonce for action and binding. Consumes it either way."""
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except JWTError:
            return False
        jti = payload.get("jti")
        if not isinstance(jti, str) or not jti:
            return False
        if not self._consume(jti, payload.get("exp")):
            return False
        return payload.get("act") == action and constant_time_equals(payload.get("sid"), self._bind(binding))

    def _consume(self, jti: str, exp) -> bool:
        expires_at = datetime.fromtimestamp(int(exp), tz=timezone.utc) if exp else datetime.now(timezone.utc) + self.lifetime
        try:
            with self.engine.begin() as conn:
                conn.execute(_used_nonces.insert().values(jti=jti, expires_at=expires_at.isoformat()))
        except IntegrityError:
            return False
        except SQLAlchemyError as exc:
            raise StoreError("nonce consume failed") from exc
        return True

    def purge_expired(self) -> int:
        """Forget used nonces that could no longer verify anyway."""
        with store_errors("nonce purge"), self.engine.begin() as conn:
            result = conn.execute(_used_nonces.delete().where(_used_nonces.c.expires_at <= now_iso()))
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


class NonceGate:
    """Presence check plus delegation to the nonce primitive."""

    def __init__(self, primitive: NoncePrimitive) -> None:
        self.primitive = primitive

    def verify(self, action: str, token: str | None, binding: str = "") -> NonceCheck:
        if not token or not isinstance(token, str):
            logger.info("Nonce missing for action %r", action)
            return NonceCheck.DENIED
        if not self.primitive.verify(action, token, binding):
            logger.info("Nonce rejected for action %r", action)
            return NonceCheck.DENIED
        return NonceCheck.OK
