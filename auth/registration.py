"""
auth/registration.py -- Registration record assembly and the registration form actions.

assemble_registration() builds the record that is handed to the account
store:
  - the username is validated first (format, then availability);
  - only whitelisted field names are ever accepted;
  - a declared parameter group that names the field wins over the submitted
    form, so configuration can pin values such as access rules;
  - otherwise a non-empty submitted value is used, else the field is omitted;
  - the username itself is the record key and never a field.

RegistrationController runs the two form actions:
  validate_password -- strength + confirmation, then remembers an HMAC
                       fingerprint of the accepted password on the session.
  register_user     -- assembles the record, insists that any password in
                       it is the one validate_password accepted, hashes it,
                       and saves.
Validation failures come back as a FormOutcome, never as an exception.
StoreError propagates.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from auth.errors import FeatureDisabledError, UnvalidatedPasswordError, ValidationError
from auth.messages import MessageQueue
from auth.models import FormOutcome, Session
from auth.store import AccountStore
from auth.tokens import constant_time_equals, hash_password, keyed_hash
from auth.validators import validate

logger = logging.getLogger("gatehouse.auth.registration")

_PASSWORD_FIELD = "password"


def assemble_registration(
    username: str,
    declared_params: Iterable[Mapping[str, Any]],
    submitted_fields: Mapping[str, Any],
    allowed_field_names: Iterable[str],
    accounts: AccountStore | None = None,
) -> dict[str, Any]:
    """Validate username and merge declared over submitted values. Raises ValidationError."""
    validate("username", username, accounts=accounts)

    declared = list(declared_params)
    record: dict[str, Any] = {}
    for name in allowed_field_names:
        if name == "username":
            continue
        for group in declared:
            if name in group:
                record[name] = group[name]
        if name not in record:
            value = submitted_fields.get(name)
            if value:
                record[name] = value
    return record


class RegistrationController:
    def __init__(
        self,
        accounts: AccountStore,
        secret_key: str,
        *,
        login_enabled: bool = True,
        registration_enabled: bool = True,
        fields: Iterable[str] = (),
        params: Iterable[Mapping[str, Any]] = (),
    ) -> None:
        self.accounts = accounts
        self._secret_key = secret_key
        self.login_enabled = login_enabled
        self.registration_enabled = registration_enabled
        self.fields = list(fields)
        self.params = list(params)

    def _fingerprint(self, password: str) -> str:
        return keyed_hash(self._secret_key, f"registration-password:{password}")

    def _check_enabled(self) -> None:
        if not self.login_enabled:
            raise FeatureDisabledError("The login plugin is disabled.")
        if not self.registration_enabled:
            raise FeatureDisabledError("User registration is disabled.")

    def validate_password(self, session: Session, form: Mapping[str, Any]) -> FormOutcome:
        try:
            self._check_enabled()
            password = form.get("password1")
            validate("password", password)
            validate("password-confirmation", form.get("password2"), password)
        except ValidationError as exc:
            session.validated_password = None
            return FormOutcome(ok=False, action="validate_password", error=str(exc), error_kind=exc.kind)
        session.validated_password = self._fingerprint(password)
        return FormOutcome(ok=True, action="validate_password")

    def register_user(self, session: Session, form: Mapping[str, Any]) -> FormOutcome:
        username = form.get("username") or ""
        submitted = dict(form)
        # The registration form posts the password as password1 (with
        # password2 as its confirmation).
        if not submitted.get(_PASSWORD_FIELD) and submitted.get("password1"):
            submitted[_PASSWORD_FIELD] = submitted["password1"]
        try:
            self._check_enabled()
            record = assemble_registration(username, self.params, submitted, self.fields, self.accounts)
            if _PASSWORD_FIELD in record:
                password = str(record.pop(_PASSWORD_FIELD))
                if not constant_time_equals(session.validated_password, self._fingerprint(password)):
                    raise UnvalidatedPasswordError("Please validate your password before registering.")
                record["hashed_password"] = hash_password(password)
            self.accounts.save(username, record)
        except ValidationError as exc:
            return FormOutcome(ok=False, action="register_user", error=str(exc), error_kind=exc.kind, username=username or None)

        session.validated_password = None
        MessageQueue(session).notify("REGISTRATION_SUCCESSFUL")
        logger.info("Registered new account")
        return FormOutcome(ok=True, action="register_user", username=username)
