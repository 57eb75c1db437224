"""
Module: fulfillment_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    and transactional scope utilities.  This is the single point of database
    connection configuration for the entire system.
Architecture position: Kernel > DB.  May import from db/base.py,
    db/unit_of_work.py and db/immutability.py.  MUST NOT import from
    models/, services/, domain/, or outer layers (except create_tables,
    which imports the ORM registry).

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED with explicit row-level locking
      (``SELECT ... FOR UPDATE``) on sequence counters and stock records, and a
      session ``lock_timeout`` so lock waits end in a retryable error.
    - SQLite (file databases only) opens every transaction with
      ``BEGIN IMMEDIATE``: writers serialize on the database lock, which gives
      the same guarantees as the row locks above at coarser granularity.  The
      driver's busy timeout is the lock-wait timeout.
    - Connection pooling via QueuePool with pre-ping to handle stale connections.
    - Initializing the engine registers the immutability listeners, so no
      session can flush an edit to an append-only or frozen row.

Failure modes:
    - RuntimeError if get_engine/get_session/get_session_factory called before
      init_engine_from_url().
    - ContentionError out of session_scope() on lock timeout or deadlock.
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from fulfillment_kernel.db.immutability import register_immutability_listeners
from fulfillment_kernel.db.unit_of_work import unit_of_work
from fulfillment_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    lock_timeout_seconds: float = 10.0,
) -> Engine:
    """
    Initialize the SQLAlchemy engine from a database URL.

    Args:
        database_url: ``postgresql://...`` or ``sqlite:///path/to/file.db``.
        echo: If True, log all SQL statements.
        pool_size: Number of connections to keep in the pool.
        max_overflow: Max connections beyond pool_size.
        pool_pre_ping: If True, test connections before use.
        pool_timeout: Seconds to wait for a pooled connection.
        pool_recycle: Seconds after which a connection is recycled.
        lock_timeout_seconds: How long a statement may wait on a row lock
            (PostgreSQL) or the database lock (SQLite) before failing.

    Returns:
        SQLAlchemy Engine instance.
    """
    global _engine, _SessionFactory

    url = make_url(database_url)
    dialect = url.get_backend_name()

    if dialect == "sqlite":
        if url.database in (None, "", ":memory:"):
            raise ValueError(
                "SQLite support requires a file database; in-memory "
                "databases cannot be shared between connections"
            )
        _engine = create_engine(
            url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            connect_args={
                "timeout": lock_timeout_seconds,
                "check_same_thread": False,
            },
        )
        _install_sqlite_locking(_engine)
    else:
        connect_args = {}
        if dialect == "postgresql":
            lock_ms = int(lock_timeout_seconds * 1000)
            connect_args["options"] = f"-c lock_timeout={lock_ms}"
        _engine = create_engine(
            url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
            connect_args=connect_args,
        )

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    register_immutability_listeners()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": dialect,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "lock_timeout_seconds": lock_timeout_seconds,
            "echo": echo,
        },
    )

    return _engine


def _install_sqlite_locking(engine: Engine) -> None:
    """Take over transaction control from pysqlite and begin IMMEDIATE."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Stop pysqlite from emitting its own BEGIN / implicit COMMITs
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def get_engine() -> Engine:
    """
    Get the current engine instance.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    """
    Get a new session instance.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory()


def get_session_factory() -> sessionmaker[Session]:
    """
    Get the session factory for creating sessions.

    Useful for multi-threaded scenarios where each thread needs its own session.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


@contextmanager
def session_scope(operation: str = "session_scope") -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Postconditions: On normal exit, session is committed and closed.
        On exception, session is rolled back and closed; lock conflicts are
        re-raised as ContentionError, everything else unchanged.

    Usage:
        with session_scope("reserve_for_order") as session:
            StockLedgerService(session, clock).reserve(...)
    """
    session = get_session()
    logger.debug("transaction_started", extra={"operation": operation})
    try:
        with unit_of_work(session, operation):
            yield session
        logger.debug("transaction_committed", extra={"operation": operation})
    finally:
        session.close()


def create_tables() -> None:
    """
    Create all tables defined in the kernel and module ORM models.

    Raises:
        RuntimeError: If engine is not initialized.
    """
    from fulfillment_kernel.db.base import Base
    from fulfillment_modules._orm_registry import import_all_orm_models

    engine = get_engine()
    import_all_orm_models()
    Base.metadata.create_all(engine)
    logger.info(
        "tables_created",
        extra={"table_count": len(Base.metadata.sorted_tables)},
    )


def drop_tables() -> None:
    """Drop all tables. Use with caution - primarily for testing."""
    from fulfillment_kernel.db.base import Base

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Reset the engine and session factory (test cleanup)."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None

    _SessionFactory = None


def _atexit_dispose():
    """Dispose the engine on process exit to release all pooled connections."""
    if _engine is not None:
        _engine.dispose()


atexit.register(_atexit_dispose)


def is_postgres() -> bool:
    """Check if the current engine is PostgreSQL."""
    if _engine is None:
        return False
    return _engine.dialect.name == "postgresql"
