"""
auth/errors.py -- Exception taxonomy for the auth core.

Validation errors are recoverable: the registration controller catches them
and reports a rejected action with the message. StoreError is fatal for the
request and propagates to the API, which answers 503.

Nonce denial and token compromise are not exceptions -- see NonceCheck in
auth/nonce.py and ExchangeStatus in auth/rememberme.py.
"""

from __future__ import annotations


class ValidationError(Exception):
    """Base class for rejected user input. str(exc) is safe to show the user."""

    kind = "validation"


class FormatError(ValidationError):
    kind = "format"


class CollisionError(ValidationError):
    kind = "collision"


class WeaknessError(ValidationError):
    kind = "weakness"


class MismatchError(ValidationError):
    kind = "mismatch"


class UnvalidatedPasswordError(ValidationError):
    """register_user submitted a password that never went through validate_password."""

    kind = "unvalidated_password"


class FeatureDisabledError(ValidationError):
    kind = "disabled"


class StoreError(Exception):
    """A storage collaborator failed. Never swallowed."""
