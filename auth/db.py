"""
auth/db.py -- Engine construction and error translation shared by the stores.

Every store (accounts, sessions, persistent-login tokens, used nonces) owns
its own tables and MetaData but builds its engine here so they all get the
same SQLite tuning and the same StoreError translation.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.errors import StoreError

logger = logging.getLogger("gatehouse.store")


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. In-memory databases silently keep their
    "memory" journal mode.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_store_engine(db_url: str) -> Engine:
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


@contextmanager
def store_errors(operation: str) -> Iterator[None]:
    """Translate SQLAlchemy failures into StoreError.

    The original exception is chained, never swallowed. Callers above the
    store only ever need to know about StoreError.
    """
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Store operation %r failed: %s", operation, exc.__class__.__name__)
        raise StoreError(f"{operation} failed") from exc


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    return now_utc().isoformat()
