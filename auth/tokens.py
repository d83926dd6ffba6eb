"""
auth/tokens.py -- Password hashing, secret generation, and HMAC utilities.

Security design decisions:
  Passwords: bcrypt directly. Its cost factor makes brute-force expensive for
       low-entropy secrets. The _DUMMY_HASH constant enables timing
       equalization in authenticate_account() so response time does not
       reveal whether a username exists [C1].

  Remember-me secrets: secrets.token_urlsafe(32) gives 256 bits of entropy.
       We store HMAC-SHA256(SECRET_KEY, secret) so lookups are deterministic
       and a leaked database is useless without SECRET_KEY. bcrypt's
       intentional slowness is unnecessary for random secrets.

  Password fingerprints: the session remembers which password passed
       validate_password as an HMAC, never as plaintext.

  SECRET_KEY: passed in by the caller (stores are built from Settings in the
       API lifespan), so tests can run with their own keys.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from typing import TYPE_CHECKING

import bcrypt

if TYPE_CHECKING:
    from auth.models import AccountRecord
    from auth.store import AccountStore

logger = logging.getLogger("gatehouse.auth")

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt rejects input longer than 72 bytes with ValueError. Registration
    refuses such passwords in auth.validators.validate_password before they
    get here.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the record -- treat as a non-match.
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("gatehouse_timing_dummy")


def authenticate_account(accounts: AccountStore, username: str, password: str) -> AccountRecord | None:
    """Check a username/password pair with timing equalization.

    Always runs bcrypt whether or not the account exists:
    - Unknown username: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the AccountRecord on success, None on any failure. Callers must
    not tell the user which of the two it was.
    """
    account = accounts.load(username) if username else None
    if account is None or not account.hashed_password:
        # Equalize timing -- do NOT return early before running bcrypt [C1]
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, account.hashed_password):
        return None
    if not account.is_active:
        return None
    return account


# ---------------------------------------------------------------------------
# Random secrets and keyed hashes
# ---------------------------------------------------------------------------


def generate_secret() -> str:
    """Return a 256-bit URL-safe random string."""
    return secrets.token_urlsafe(32)


def keyed_hash(secret_key: str, value: str) -> str:
    """Return HMAC-SHA256(secret_key, value) as a hex string."""
    return hmac.new(secret_key.encode("utf-8"), value.encode("utf-8"), hashlib.sha256).hexdigest()


def constant_time_equals(a: str | None, b: str | None) -> bool:
    if a is None or b is None:
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))
