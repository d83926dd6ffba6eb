"""
auth/store.py -- SQLAlchemy Core persistence for user accounts.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account is the mapper. The controller and resolver never touch SQL.

Record layout: the username is the primary key. The record body (email,
fullname, state, access, hashed_password, ...) is a JSON column, so the set
of registration fields can change through configuration alone. The OAuth
link and the lowercased email are duplicated into their own columns; both
are looked up on OAuth callbacks.

Security:
  All queries use bound parameters. No f-strings in SQL.
  save() raises CollisionError on a duplicate username, so two concurrent
  registrations for the same name cannot both succeed.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, Column, MetaData, String, Table, Text, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.db import create_store_engine, now_iso, store_errors
from auth.errors import CollisionError, StoreError
from auth.models import AccountRecord

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("username", String(255), primary_key=True),
    Column("data", JSON, nullable=False),
    Column("email", String(255), index=True),  # lowercased copy of data["email"]
    Column("oauth_provider", String(30)),  # "github", "google", "oidc"
    Column("oauth_subject", Text),  # provider's stable user ID
    Column("created_at", String(32), nullable=False),
)


class AccountStore:
    """Repository for AccountRecord entities.

    Usage:
        accounts = AccountStore("sqlite:///gatehouse.db")
        accounts.save("admin", {"hashed_password": hash_password("Secret123")})
        account = accounts.load("admin")
        accounts.close()
    """

    def __init__(self, db_url: str) -> None:
        self.engine = create_store_engine(db_url)
        _metadata.create_all(self.engine)

    def exists(self, username: str) -> bool:
        with store_errors("account lookup"), self.engine.connect() as conn:
            row = conn.execute(select(_accounts.c.username).where(_accounts.c.username == username)).fetchone()
        return row is not None

    def load(self, username: str) -> AccountRecord | None:
        """Look up an account by exact username. Returns None if not found."""
        with store_errors("account load"), self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.username == username)).fetchone()
        return _row_to_account(row) if row is not None else None

    def save(self, username: str, fields: dict[str, Any]) -> None:
        """Insert a new account record.

        Raises CollisionError if the username is taken (including when a
        concurrent request created it first), StoreError on any other failure.
        """
        body = {k: v for k, v in fields.items() if k != "username"}
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _accounts.insert().values(
                        username=username,
                        data=body,
                        email=_email_key(body.get("email")),
                        oauth_provider=body.get("oauth_provider"),
                        oauth_subject=body.get("oauth_subject"),
                        created_at=now_iso(),
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise CollisionError(f'Username "{username}" already exists, please pick another username.') from exc
        except SQLAlchemyError as exc:
            raise StoreError("account save failed") from exc

    def update(self, username: str, **fields: Any) -> bool:
        """Merge fields into an existing record. Returns False if the account does not exist."""
        with store_errors("account update"), self.engine.begin() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.username == username)).fetchone()
            if row is None:
                return False
            body = dict(row.data or {})
            body.update(fields)
            conn.execute(
                _accounts.update()
                .where(_accounts.c.username == username)
                .values(
                    data=body,
                    email=_email_key(body.get("email")),
                    oauth_provider=body.get("oauth_provider"),
                    oauth_subject=body.get("oauth_subject"),
                )
            )
        return True

    def find_by_oauth(self, provider: str, subject: str) -> AccountRecord | None:
        """Look up an account by its linked (provider, subject) pair."""
        with store_errors("account oauth lookup"), self.engine.connect() as conn:
            row = conn.execute(
                _accounts.select().where((_accounts.c.oauth_provider == provider) & (_accounts.c.oauth_subject == subject))
            ).fetchone()
        return _row_to_account(row) if row is not None else None

    def find_by_email(self, email: str) -> AccountRecord | None:
        """Look up an account whose record carries this email (case-insensitive)."""
        wanted = _email_key(email)
        if wanted is None:
            return None
        with store_errors("account email lookup"), self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == wanted)).fetchone()
        return _row_to_account(row) if row is not None else None

    def link_oauth(self, username: str, provider: str, subject: str) -> bool:
        """Associate an OAuth identity with an existing account."""
        return self.update(username, oauth_provider=provider, oauth_subject=subject)

    def ping(self) -> bool:
        """Health probe: True when the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
        except SQLAlchemyError:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> AccountRecord:
    return AccountRecord(username=row.username, fields=dict(row.data or {}))


def _email_key(email: Any) -> str | None:
    if not isinstance(email, str) or not email.strip():
        return None
    return email.strip().lower()
