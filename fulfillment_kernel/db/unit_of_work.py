"""
Module: fulfillment_kernel.db.unit_of_work
Responsibility: Transaction boundary helpers shared by ``session_scope()`` and
    the module services.  One unit of work = one commit, or one rollback.
Architecture position: Kernel > DB.  May import from exceptions and
    logging_config only.

Invariants enforced:
    - All-or-nothing: any exception inside the block rolls back every write
      (counter increments, stock mutations, movement inserts, approval rows).
    - Lock-wait timeouts, deadlocks and serialization failures are surfaced
      as ``ContentionError`` (retryable); every other error propagates with
      its own type.

Failure modes:
    - ContentionError when the store reports a lock conflict.
    - Any FulfillmentKernelError raised by the wrapped code, unchanged.
"""

import time
from contextlib import contextmanager
from typing import Callable, Generator, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from fulfillment_kernel.exceptions import ContentionError
from fulfillment_kernel.logging_config import get_logger

logger = get_logger("db.unit_of_work")

T = TypeVar("T")

# PostgreSQL SQLSTATEs that mean "somebody else holds the row, try again"
_PG_CONTENTION_CODES = frozenset({
    "40001",  # serialization_failure
    "40P01",  # deadlock_detected
    "55P03",  # lock_not_available (lock_timeout)
    "57014",  # query_canceled (statement_timeout)
})

# SQLite reports busy-timeout expiry through the message only
_SQLITE_CONTENTION_MESSAGES = (
    "database is locked",
    "database table is locked",
    "database is busy",
)


def is_contention_error(exc: BaseException) -> bool:
    """Return True when ``exc`` is a driver-level lock conflict."""
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    pgcode = getattr(orig, "pgcode", None)
    if pgcode is not None:
        return pgcode in _PG_CONTENTION_CODES
    message = str(orig).lower()
    return any(fragment in message for fragment in _SQLITE_CONTENTION_MESSAGES)


@contextmanager
def unit_of_work(
    session: Session,
    operation: str,
) -> Generator[Session, None, None]:
    """
    Run a block as a single atomic unit of work on ``session``.

    Commits on normal exit.  On any exception rolls back and re-raises,
    translating lock conflicts into ``ContentionError``.
    """
    try:
        yield session
        session.commit()
    except DBAPIError as exc:
        session.rollback()
        if is_contention_error(exc):
            logger.warning(
                "unit_of_work_contention",
                extra={"operation": operation, "detail": str(exc.orig)},
            )
            raise ContentionError(operation, str(exc.orig)) from exc
        raise
    except Exception:
        session.rollback()
        logger.debug(
            "unit_of_work_rolled_back", extra={"operation": operation},
        )
        raise


def retry_on_contention(
    fn: Callable[[], T],
    *,
    attempts: int = 3,
    backoff_seconds: float = 0.05,
) -> T:
    """
    Re-run ``fn`` (a whole unit of work) while it fails with ``ContentionError``.

    ``fn`` must open and close its own session; partial state from a failed
    attempt has already been rolled back.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except ContentionError:
            if attempt == attempts:
                raise
            logger.info(
                "unit_of_work_retry",
                extra={"attempt": attempt, "max_attempts": attempts},
            )
            time.sleep(backoff_seconds * attempt)
    raise AssertionError("unreachable")
