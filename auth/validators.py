"""
auth/validators.py -- Username and password checks for registration.

Pure functions. The only side effect is the existence lookup against the
account store for the "username" kind.

Kinds:
  username               -- format ^[a-z0-9_-]{3,16}$ and availability
  password / password1   -- strength: 8+ chars, a digit, a lower and an upper,
                            at most 72 bytes of UTF-8
  password-confirmation / password2 -- equal to the first password
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from auth.errors import CollisionError, FormatError, MismatchError, WeaknessError

if TYPE_CHECKING:
    from auth.store import AccountStore

USERNAME_PATTERN = re.compile(r"^[a-z0-9_-]{3,16}$")

# Lookaheads for a digit, a lowercase and an uppercase letter, then 8+ chars.
PASSWORD_PATTERN = re.compile(r"(?=.*\d)(?=.*[a-z])(?=.*[A-Z]).{8,}", re.ASCII)

# bcrypt refuses anything longer.
PASSWORD_MAX_BYTES = 72


def validate_username(username: str, accounts: AccountStore | None = None) -> None:
    """Raise FormatError or CollisionError if username cannot be registered."""
    if not isinstance(username, str) or not USERNAME_PATTERN.fullmatch(username):
        raise FormatError(
            "Username must be 3 to 16 characters long and may only contain "
            "lowercase letters, numbers, underscores, and hyphens."
        )
    if accounts is not None and accounts.exists(username):
        raise CollisionError(f'Username "{username}" already exists, please pick another username.')


def validate_password(password: str) -> None:
    """Raise WeaknessError unless the password has 8+ characters with a digit, a lower and an upper, and fits bcrypt."""
    if not isinstance(password, str) or not PASSWORD_PATTERN.search(password):
        raise WeaknessError(
            "Password must be at least 8 characters long and contain at least "
            "one number, one uppercase letter, and one lowercase letter."
        )
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise WeaknessError(f"Password must not be longer than {PASSWORD_MAX_BYTES} bytes.")


def validate_confirmation(confirmation: str, password: str) -> None:
    """Raise MismatchError unless both values are identical."""
    if confirmation is None or password is None or confirmation != password:
        raise MismatchError("Passwords did not match.")


def validate(kind: str, value, extra=None, accounts: AccountStore | None = None) -> None:
    """Dispatch a check by kind. Returns None on success, raises ValidationError otherwise.

    Raises ValueError for an unknown kind -- that is a programming error, not
    bad user input.
    """
    if kind in ("username", "user"):
        validate_username(value, accounts)
    elif kind in ("password", "password1"):
        validate_password(value)
    elif kind in ("password-confirmation", "password2"):
        validate_confirmation(value, extra)
    else:
        raise ValueError(f"Unknown validation kind: {kind!r}")
