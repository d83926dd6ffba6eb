"""Unit tests for auth/registration.py -- record assembly and the registration actions.

Covers:
- declared parameter groups beat submitted values (no self-granted access)
- only whitelisted fields reach the record; empty values are omitted
- username is validated first and never stored as a field
- validate_password must accept the exact password before register_user
- registration is refused when switched off
"""

import pytest

from auth.errors import CollisionError, FormatError
from auth.messages import MESSAGES
from auth.registration import RegistrationController, assemble_registration
from auth.tokens import verify_password

FIELDS = ["username", "password", "email", "fullname", "title", "access", "state"]
PARAMS = [{"access": {"site": {"login": True}}}, {"state": "enabled"}]


class TestAssemble:
    def test_declared_wins_over_submitted(self):
        record = assemble_registration(
            "newbie",
            PARAMS,
            {"access": {"admin": {"super": True}}, "email": "n@example.com", "state": "disabled"},
            FIELDS,
        )
        assert record["access"] == {"site": {"login": True}}
        assert record["state"] == "enabled"
        assert record["email"] == "n@example.com"

    def test_only_whitelisted_fields(self):
        record = assemble_registration("newbie", [], {"email": "n@example.com", "is_admin": True}, FIELDS)
        assert record == {"email": "n@example.com"}

    def test_empty_values_omitted(self):
        record = assemble_registration("newbie", [], {"email": "", "fullname": None, "title": "Dr"}, FIELDS)
        assert record == {"title": "Dr"}

    def test_username_never_a_field(self):
        record = assemble_registration("newbie", [{"username": "evil"}], {"username": "other"}, FIELDS)
        assert "username" not in record

    def test_last_declaring_group_wins(self):
        record = assemble_registration("newbie", [{"title": "A"}, {"title": "B"}], {}, FIELDS)
        assert record["title"] == "B"

    def test_bad_username(self):
        with pytest.raises(FormatError):
            assemble_registration("No Way", PARAMS, {}, FIELDS)

    def test_taken_username(self, stores):
        with pytest.raises(CollisionError):
            assemble_registration("alice", PARAMS, {}, FIELDS, stores.accounts)


@pytest.fixture
def registration(stores):
    return RegistrationController(stores.accounts, "r" * 40, fields=FIELDS, params=PARAMS)


def _form(**extra):
    form = {"username": "newbie", "password1": "Secret123", "password2": "Secret123", "email": "n@example.com"}
    form.update(extra)
    return form


class TestRegistrationActions:
    def test_full_flow(self, stores, registration):
        session = stores.sessions.new()
        assert registration.validate_password(session, _form()).ok is True
        outcome = registration.register_user(session, _form(access="admin"))

        assert outcome.ok is True
        assert outcome.username == "newbie"
        account = stores.accounts.load("newbie")
        assert account.fields["access"] == {"site": {"login": True}}
        assert account.fields["email"] == "n@example.com"
        assert "password" not in account.fields
        assert verify_password("Secret123", account.hashed_password)
        assert session.validated_password is None
        assert session.messages[-1]["message"] == MESSAGES["REGISTRATION_SUCCESSFUL"]

    def test_register_without_validation(self, stores, registration):
        session = stores.sessions.new()
        outcome = registration.register_user(session, _form())
        assert outcome.ok is False
        assert outcome.error_kind == "unvalidated_password"
        assert stores.accounts.load("newbie") is None

    def test_register_with_different_password_than_validated(self, stores, registration):
        session = stores.sessions.new()
        registration.validate_password(session, _form())
        outcome = registration.register_user(session, _form(password1="Other1234", password2="Other1234"))
        assert outcome.ok is False
        assert outcome.error_kind == "unvalidated_password"

    @pytest.mark.parametrize(
        "form, kind",
        [
            (_form(password1="weak", password2="weak"), "weakness"),
            (_form(password2="Secret124"), "mismatch"),
        ],
    )
    def test_validate_password_rejections(self, stores, registration, form, kind):
        session = stores.sessions.new()
        outcome = registration.validate_password(session, form)
        assert outcome.ok is False
        assert outcome.error_kind == kind
        assert session.validated_password is None

    def test_collision_reported(self, stores, registration):
        session = stores.sessions.new()
        registration.validate_password(session, _form())
        outcome = registration.register_user(session, _form(username="alice"))
        assert outcome.ok is False
        assert outcome.error_kind == "collision"

    def test_disabled(self, stores):
        controller = RegistrationController(stores.accounts, "r" * 40, registration_enabled=False, fields=FIELDS)
        outcome = controller.validate_password(stores.sessions.new(), _form())
        assert outcome.ok is False
        assert outcome.error_kind == "disabled"
