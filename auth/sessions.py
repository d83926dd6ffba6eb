"""
auth/sessions.py -- Server-side session store.

The caller only ever holds an opaque random session id (cookie). Everything
else -- the resolved Identity, the remember-me token pair, the OAuth marker,
queued messages -- lives in the sessions table as a JSON blob.

Lifecycle:
  get()    returns the stored Session, or a fresh unsaved one when the id is
           missing, unknown or expired.
  put()    writes the whole Session in one transaction. The API calls it once
           per request after the pipeline finished, so an aborted request
           never leaves a half-updated session behind.
  rotate() moves the session to a new id (after login, against fixation).

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import JSON, Column, MetaData, String, Table

from auth.db import create_store_engine, now_iso, now_utc, store_errors
from auth.models import Identity, Session, TokenPair

logger = logging.getLogger("gatehouse.sessions")

_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(64), primary_key=True),
    Column("data", JSON, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
)


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


class SessionStore:
    """Repository for Session entities with sliding expiry."""

    def __init__(self, db_url: str, lifetime_seconds: int = 1800) -> None:
        self.lifetime = timedelta(seconds=lifetime_seconds)
        self.engine = create_store_engine(db_url)
        _metadata.create_all(self.engine)

    def new(self) -> Session:
        return Session(id=new_session_id(), created_at=now_iso())

    def get(self, session_id: str | None) -> Session:
        """Return the live Session for session_id, or a new empty one."""
        if not session_id:
            return self.new()
        with store_errors("session load"), self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        if row is None:
            return self.new()
        if datetime.fromisoformat(row.expires_at) <= now_utc():
            self.delete(session_id)
            return self.new()
        return _dict_to_session(row.id, row.created_at, row.data or {})

    def put(self, session: Session) -> None:
        """Insert or replace the Session and push its expiry forward."""
        data = _session_to_dict(session)
        expires_at = (now_utc() + self.lifetime).isoformat()
        with store_errors("session save"), self.engine.begin() as conn:
            result = conn.execute(
                _sessions.update().where(_sessions.c.id == session.id).values(data=data, expires_at=expires_at)
            )
            if result.rowcount == 0:
                conn.execute(
                    _sessions.insert().values(
                        id=session.id,
                        data=data,
                        created_at=session.created_at or now_iso(),
                        expires_at=expires_at,
                    )
                )

    def rotate(self, session: Session) -> Session:
        """Give the session a fresh id, dropping the stored row under the old one."""
        old_id = session.id
        session.id = new_session_id()
        self.delete(old_id)
        logger.debug("Session id rotated")
        return session

    def delete(self, session_id: str) -> None:
        with store_errors("session delete"), self.engine.begin() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.id == session_id))

    def purge_expired(self) -> int:
        """Delete all expired sessions. Returns number of rows removed."""
        with store_errors("session purge"), self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= now_iso()))
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Mappers
# ---------------------------------------------------------------------------


def _identity_to_dict(identity: Identity) -> dict[str, Any]:
    return {
        "username": identity.username,
        "authenticated": identity.authenticated,
        "exists": identity.exists,
        "assertions": dict(identity.assertions),
        "via_remember_me": identity.via_remember_me,
        "oauth_provider": identity.oauth_provider,
    }


def _dict_to_identity(data: dict[str, Any]) -> Identity:
    return Identity(
        username=data.get("username", ""),
        authenticated=bool(data.get("authenticated", False)),
        exists=bool(data.get("exists", False)),
        assertions=dict(data.get("assertions") or {}),
        via_remember_me=bool(data.get("via_remember_me", False)),
        oauth_provider=data.get("oauth_provider"),
    )


def _session_to_dict(session: Session) -> dict[str, Any]:
    token = session.remember_token
    return {
        "identity": _identity_to_dict(session.identity) if session.identity is not None else None,
        "remember_token": {"series": token.series, "secret": token.secret} if token is not None else None,
        "oauth": session.oauth,
        "messages": list(session.messages),
        "validated_password": session.validated_password,
    }


def _dict_to_session(session_id: str, created_at: str, data: dict[str, Any]) -> Session:
    identity = data.get("identity")
    token = data.get("remember_token")
    return Session(
        id=session_id,
        identity=_dict_to_identity(identity) if identity is not None else None,
        remember_token=TokenPair(token["series"], token["secret"]) if token else None,
        oauth=data.get("oauth"),
        messages=list(data.get("messages") or []),
        validated_password=data.get("validated_password"),
        created_at=created_at,
    )
