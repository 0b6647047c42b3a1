"""Database session management."""

import logging
from collections.abc import Generator
from contextlib import contextmanager
from typing import Annotated, Iterator

from fastapi import Depends
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from hotel_pms.core.config import settings
from hotel_pms.core.exceptions import StoreUnavailable

logger = logging.getLogger(__name__)

# Driver messages that mean "waited too long", not "bad statement"
_TRANSIENT_MARKERS = (
    "database is locked",
    "database table is locked",
    "canceling statement due to statement timeout",
    "lock timeout",
    "deadlock detected",
    "could not obtain lock",
)


def configure_sqlite(engine: Engine) -> Engine:
    """Give SQLite real transactions.

    pysqlite defers BEGIN until the first DML statement and does not cooperate
    with SAVEPOINT. Taking over transaction control and starting every
    transaction with BEGIN IMMEDIATE makes check-then-insert sequences
    serialize against each other and lets ``begin_nested()`` work.
    """

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def build_engine(database_url: str, **kwargs) -> Engine:
    """Create an engine with the pool / timeout policy for its dialect."""
    connect_args = kwargs.pop("connect_args", {})
    if database_url.startswith("sqlite"):
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", settings.db_statement_timeout_ms / 1000)
        pool_config = {"pool_pre_ping": True}
    else:
        # PostgreSQL: bound every statement so no call blocks indefinitely
        connect_args.setdefault(
            "options", f"-c statement_timeout={int(settings.db_statement_timeout_ms)}"
        )
        pool_config = {
            "pool_size": 20,
            "max_overflow": 40,
            "pool_pre_ping": True,
            "pool_recycle": 3600,
            "pool_timeout": settings.db_pool_timeout_seconds,
        }
    pool_config.update(kwargs)

    engine = create_engine(database_url, connect_args=connect_args, **pool_config)
    if database_url.startswith("sqlite"):
        configure_sqlite(engine)
    return engine


engine = build_engine(settings.database_url, echo=False)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Get database session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Type alias for dependency injection
DbSession = Annotated[Session, Depends(get_db)]


def is_transient(exc: OperationalError) -> bool:
    text = str(getattr(exc, "orig", exc)).lower()
    return any(marker in text for marker in _TRANSIENT_MARKERS)


@contextmanager
def translate_store_errors(operation: str) -> Iterator[None]:
    """Surface store timeouts and lock waits as ``StoreUnavailable``.

    Any other database error propagates unchanged.
    """
    try:
        yield
    except PoolTimeoutError as exc:
        logger.warning("Connection pool timeout during %s", operation)
        raise StoreUnavailable(
            f"Timed out waiting for a database connection during {operation}",
            {"operation": operation},
        ) from exc
    except OperationalError as exc:
        if not is_transient(exc):
            raise
        logger.warning("Transient store error during %s: %s", operation, exc.orig)
        raise StoreUnavailable(
            f"Data store timed out during {operation}",
            {"operation": operation},
        ) from exc
