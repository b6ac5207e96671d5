"""
database/schema.py -- Relational schema, engine factory and transaction helpers.

Uses SQLAlchemy Core (not ORM) so the dataclasses in auth/models.py and
database/models.py stay the authoritative domain representation. Swapping
SQLite for PostgreSQL or MySQL is a connection string change.

Connection discipline: every public store operation opens its own connection
through read_connection() or transaction() and releases it when the with block
exits, on success and on every error path. transaction() wraps
engine.begin(): commit when the block completes, rollback when anything raises.
No operation shares a connection with another one.

Security: all queries use bound parameters. resolve_id() takes table and column
names, but only names that exist in the metadata below are accepted.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import (
    Column,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool

from core.errors import NotFound, StoreUnavailable

logger = logging.getLogger("pizza.db")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("password", String(255), nullable=False),  # bcrypt digest
)

user_roles = Table(
    "user_roles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),  # grant order
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("role", String(30), nullable=False),
    Column("object_id", Integer, index=True),  # franchise id for franchisee grants, else NULL
)

# Revocation table: one row per issued-and-not-yet-revoked token signature.
auth_tokens = Table(
    "auth_tokens",
    metadata,
    Column("token", String(512), primary_key=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
)

menu_items = Table(
    "menu_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("title", String(255), nullable=False),
    Column("description", Text, nullable=False, server_default=""),
    Column("image", String(1024), nullable=False, server_default=""),
    Column("price", Float, nullable=False),
)

franchises = Table(
    "franchises",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False, unique=True),
)

stores = Table(
    "stores",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("franchise_id", Integer, ForeignKey("franchises.id"), nullable=False, index=True),
    Column("name", String(255), nullable=False),
)

diner_orders = Table(
    "diner_orders",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("diner_id", Integer, nullable=False, index=True),
    Column("franchise_id", Integer, ForeignKey("franchises.id"), nullable=False, index=True),
    Column("store_id", Integer, ForeignKey("stores.id"), nullable=False, index=True),
    Column("date", String(32), nullable=False),
)

# menu_id is kept by value: menu items have no cascade onto order history.
order_items = Table(
    "order_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", Integer, ForeignKey("diner_orders.id"), nullable=False, index=True),
    Column("menu_id", Integer, nullable=False),
    Column("description", String(255), nullable=False),
    Column("price", Float, nullable=False),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enforce foreign keys and enable WAL on every new SQLite connection.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def _log_statement(conn, cursor, statement, parameters, context, executemany) -> None:
    logger.debug("db-query %s %r", statement, parameters)


def open_engine(db_url: str, timeout_seconds: float = 10.0) -> Engine:
    """Create an Engine for db_url and make sure every table exists.

    Statement timeouts are applied at this boundary: SQLite waits at most
    timeout_seconds for a lock, PostgreSQL aborts statements that run longer.
    A bare in-memory SQLite URL gets a StaticPool so every checkout sees the
    same database.
    """
    connect_args: dict = {}
    engine_kwargs: dict = {}
    is_sqlite = db_url.startswith("sqlite")
    if is_sqlite:
        # FastAPI runs sync handlers in a thread pool, so a pooled connection
        # may be used from a different thread than the one that opened it.
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout_seconds
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            engine_kwargs["poolclass"] = StaticPool
    elif db_url.startswith("postgresql"):
        connect_args["options"] = f"-c statement_timeout={int(timeout_seconds * 1000)}"
    engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
    if is_sqlite:
        event.listen(engine, "connect", _set_sqlite_pragmas)
    event.listen(engine, "before_cursor_execute", _log_statement)
    metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Connection scopes
# ---------------------------------------------------------------------------


@contextmanager
def read_connection(engine: Engine) -> Iterator[Connection]:
    """Yield a connection for reads; released on every exit path."""
    try:
        with engine.connect() as conn:
            yield conn
    except OperationalError as exc:
        logger.error("database unavailable: %s", exc)
        raise StoreUnavailable() from exc


@contextmanager
def transaction(engine: Engine) -> Iterator[Connection]:
    """Yield a connection inside one transaction.

    Commits when the block completes; rolls back before any exception leaves
    the block, so a failed multi-statement write never partially commits.
    """
    try:
        with engine.begin() as conn:
            yield conn
    except OperationalError as exc:
        logger.error("database unavailable, transaction rolled back: %s", exc)
        raise StoreUnavailable() from exc


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def resolve_id(conn: Connection, column: str, value, table: str) -> int:
    """Translate a human-readable reference into a primary key.

    resolve_id(conn, "name", "SLC Pizza", "franchises") -> 3

    Raises NotFound("No ID found") when no row matches. table and column must
    name an existing table/column (ValueError otherwise).
    """
    tbl = metadata.tables.get(table)
    if tbl is None or column not in tbl.c:
        raise ValueError(f"unknown lookup target {table}.{column}")
    row = conn.execute(select(tbl.c.id).where(tbl.c[column] == value)).first()
    if row is None:
        raise NotFound("No ID found")
    return row.id


def get_offset(page: int, limit: int) -> int:
    """Row offset of a 1-based page."""
    return (page - 1) * limit


def translate_name_filter(pattern: str) -> str:
    """Turn a "*"-wildcard name filter into a LIKE pattern (escape char "\\").

    Literal % and _ are escaped so they only ever match themselves.
    """
    escaped = pattern.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped.replace("*", "%")
