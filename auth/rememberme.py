"""
auth/rememberme.py -- Persistent-login ("remember me") token store.

A token is a (series, secret) pair. The series is a stable identifier for one
remembered browser; the secret is single-use and rotates on every successful
exchange. Only HMAC-SHA256(SECRET_KEY, secret) is stored.

Theft detection:
  If a presented series is known but the secret does not match, somebody
  already used this secret -- either the legitimate browser after an attacker
  replayed a stolen cookie, or the attacker after the browser did. Both are
  reported as STALE and every series of that user is revoked, forcing a
  fresh password login everywhere.

Atomicity:
  Rotation is a conditional UPDATE guarded by the old secret hash. Two
  concurrent presentations of the same pair race on that UPDATE; exactly
  one sees rowcount == 1 and wins, the other observes STALE.

  The caller's account check runs inside the exchange transaction, before
  the UPDATE. If it raises, nothing rotates and the browser's pair stays
  valid. A rotation whose new pair never reached the browser is put back
  with restore().

Cookie format: "<series>:<secret>", both URL-safe base64 without ':'.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy import Column, MetaData, String, Table

from auth.db import create_store_engine, now_iso, now_utc, store_errors
from auth.models import TokenPair
from auth.tokens import constant_time_equals, generate_secret, keyed_hash

logger = logging.getLogger("gatehouse.auth.rememberme")

_metadata = MetaData()

_tokens = Table(
    "remember_tokens",
    _metadata,
    Column("series", String(64), primary_key=True),
    Column("username", String(255), nullable=False, index=True),
    Column("secret_hash", String(64), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
)


class ExchangeStatus(str, Enum):
    OK = "ok"
    STALE = "stale"  # known series, wrong secret: possible theft
    UNKNOWN = "unknown"  # no such series, or expired
    REJECTED = "rejected"  # valid pair, but the account may no longer log in


@dataclass
class ExchangeResult:
    status: ExchangeStatus
    username: str | None = None
    token: TokenPair | None = None  # the rotated pair on OK


def parse_cookie(value: str | None) -> TokenPair | None:
    """Parse "<series>:<secret>". Returns None for anything malformed."""
    if not value or value.count(":") != 1:
        return None
    series, secret = value.split(":")
    if not series or not secret:
        return None
    return TokenPair(series=series, secret=secret)


def format_cookie(token: TokenPair) -> str:
    return f"{token.series}:{token.secret}"


class PersistentLoginStore:
    """Repository for remember-me token series."""

    def __init__(self, db_url: str, secret_key: str, timeout_seconds: int = 604800) -> None:
        self._secret_key = secret_key
        self.timeout = timedelta(seconds=timeout_seconds)
        self.engine = create_store_engine(db_url)
        _metadata.create_all(self.engine)

    def _hash(self, secret: str) -> str:
        return keyed_hash(self._secret_key, secret)

    def issue(self, username: str) -> TokenPair:
        """Start a new series for username and return its first token pair."""
        token = TokenPair(series=generate_secret(), secret=generate_secret())
        with store_errors("remember-me issue"), self.engine.begin() as conn:
            conn.execute(
                _tokens.insert().values(
                    series=token.series,
                    username=username,
                    secret_hash=self._hash(token.secret),
                    created_at=now_iso(),
                    expires_at=(now_utc() + self.timeout).isoformat(),
                )
            )
        return token

    def exchange(self, token: TokenPair, accept: Callable[[str], bool] | None = None) -> ExchangeResult:
        """Trade a presented pair for a username and a rotated pair.

        accept(username) is called once the secret has matched and before
        the rotation is written. Returning False revokes the user's series;
        raising aborts the whole exchange with nothing written.

        OK:       secret matched and this call won the rotation.
        STALE:    series known, secret already used. All of the user's series
                  are revoked.
        UNKNOWN:  series not found or expired.
        REJECTED: accept() refused the account. All of its series are revoked.
        """
        with store_errors("remember-me exchange"), self.engine.begin() as conn:
            row = conn.execute(_tokens.select().where(_tokens.c.series == token.series)).fetchone()
            if row is None:
                return ExchangeResult(ExchangeStatus.UNKNOWN)
            if datetime.fromisoformat(row.expires_at) <= now_utc():
                conn.execute(_tokens.delete().where(_tokens.c.series == token.series))
                return ExchangeResult(ExchangeStatus.UNKNOWN)

            presented_hash = self._hash(token.secret)
            if constant_time_equals(presented_hash, row.secret_hash):
                if accept is not None and not accept(row.username):
                    conn.execute(_tokens.delete().where(_tokens.c.username == row.username))
                    return ExchangeResult(ExchangeStatus.REJECTED, username=row.username)
                rotated = TokenPair(series=token.series, secret=generate_secret())
                result = conn.execute(
                    _tokens.update()
                    .where((_tokens.c.series == token.series) & (_tokens.c.secret_hash == presented_hash))
                    .values(secret_hash=self._hash(rotated.secret))
                )
                if result.rowcount == 1:
                    return ExchangeResult(ExchangeStatus.OK, username=row.username, token=rotated)

            # Known series with a secret that is no longer current.
            conn.execute(_tokens.delete().where(_tokens.c.username == row.username))
        logger.warning("Stale remember-me secret presented for a known series; revoked all series for the account")
        return ExchangeResult(ExchangeStatus.STALE, username=row.username)

    def restore(self, rotated: TokenPair, original: TokenPair) -> bool:
        """Undo a rotation whose new pair was never delivered.

        Only applies while the series still holds the rotated secret, so a
        later exchange or a revocation is never overwritten.
        """
        with store_errors("remember-me restore"), self.engine.begin() as conn:
            result = conn.execute(
                _tokens.update()
                .where((_tokens.c.series == rotated.series) & (_tokens.c.secret_hash == self._hash(rotated.secret)))
                .values(secret_hash=self._hash(original.secret))
            )
        return result.rowcount == 1

    def revoke(self, username: str) -> int:
        """Delete every series for username. Returns number of rows removed."""
        with store_errors("remember-me revoke"), self.engine.begin() as conn:
            result = conn.execute(_tokens.delete().where(_tokens.c.username == username))
        return result.rowcount

    def purge_expired(self) -> int:
        with store_errors("remember-me purge"), self.engine.begin() as conn:
            result = conn.execute(_tokens.delete().where(_tokens.c.expires_at <= now_iso()))
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()
