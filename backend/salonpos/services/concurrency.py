# Overview: Transaction helpers shared by every writer (row locks, retry, atomic commit).

from __future__ import annotations

import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import BillingError, ConcurrencyConflict, FatalPersistenceError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite the write lock comes from begin_write() instead.
    Rows already in the session are refreshed from the locked read.
    """
    return query.with_for_update().populate_existing()


def begin_write():
    """
    Take the database write lock up front on SQLite.

    BEGIN IMMEDIATE serializes writers for the whole transaction, which is what
    FOR UPDATE gives us on PostgreSQL/MySQL.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_atomic(func, *, attempts: int = 3, backoff_base: float = 0.1, operation: str = "operation"):
    """
    Run func as one all-or-nothing unit of work.

    func must do all its writes and commit itself. Whatever escapes leaves the
    session rolled back:
    - BillingError subclasses propagate unchanged
    - exhausted lock/stale retries become ConcurrencyConflict (retryable)
    - any other SQLAlchemy failure becomes FatalPersistenceError
    """
    try:
        return run_with_retry(func, attempts=attempts, backoff_base=backoff_base)
    except BillingError:
        db.session.rollback()
        raise
    except (OperationalError, StaleDataError) as exc:
        db.session.rollback()
        raise ConcurrencyConflict(
            f"{operation} conflicted with a concurrent writer; retry",
            details={"cause": type(exc).__name__},
        ) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise FatalPersistenceError(
            f"{operation} failed and was rolled back",
            details={"cause": type(exc).__name__},
        ) from exc


def commit_with_retry(*, attempts: int = 3, backoff_base: float = 0.1):
    """Commit current session with retry handling."""
    def _op():
        db.session.commit()
    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)
