from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    func,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from finance_tracker.errors import StoreError

logger = logging.getLogger(__name__)

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), unique=True, nullable=False),
    Column("name", String(255), nullable=False),
    Column("hashed_password", String(255), nullable=False),
    Column("currency", String(3), nullable=False, server_default="RSD"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

accounts = Table(
    "accounts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("type", String(50), nullable=False, server_default="Cash"),
    Column("currency", String(3), nullable=False, server_default="RSD"),
    Column("balance", Numeric(12, 2), nullable=False, server_default="0"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

categories = Table(
    "categories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("description", Text),
    Column("type", String(20), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint("user_id", "name", "type", name="uq_categories_user_name_type"),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("account_id", Integer, ForeignKey("accounts.id"), nullable=False, index=True),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("description", String(255)),
    Column("category", String(100)),
    Column("type", String(20), nullable=False, index=True),
    Column("currency", String(3), nullable=False, server_default="RSD"),
    Column("date", Date, nullable=False, index=True),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

# Append-only: rows are inserted once per deleted transaction and never updated.
archived_transactions = Table(
    "archived_transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("original_id", Integer, nullable=False),
    Column("user_id", Integer, nullable=False, index=True),
    Column("account_id", Integer, nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("description", String(255)),
    Column("category", String(100)),
    Column("type", String(20), nullable=False),
    Column("currency", String(3), nullable=False),
    Column("date", Date, nullable=False),
    Column("archived_at", DateTime, nullable=False, server_default=func.now()),
)


def build_engine(database_url: str) -> Engine:
    connect_args = {}
    kwargs = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection, otherwise each thread sees its own empty database
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, connect_args=connect_args, **kwargs)


def init_db(engine: Engine) -> None:
    metadata.create_all(engine)


@contextmanager
def unit_of_work(engine: Engine) -> Iterator[Connection]:
    """Run a group of statements as one atomic unit.

    Commits when the block exits normally and rolls back on any exception.
    Domain errors propagate unchanged after the rollback; driver failures are
    reported as ``StoreError``.
    """
    try:
        with engine.begin() as conn:
            yield conn
    except SQLAlchemyError as exc:
        logger.exception("Unit of work rolled back after a store failure")
        raise StoreError("Internal server error.") from exc
