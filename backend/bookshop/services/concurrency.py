# Overview: Row locking and retry helpers shared by the mutating services.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import NotFoundError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Book.stock and Supplier.balance_cents also carry a version_id column, so a
    lost update surfaces as StaleDataError and is retried.
    """
    return query.with_for_update()


def get_locked(model, record_id: int, label: str):
    """Load one row with a write lock or raise NotFoundError."""
    record = lock_for_update(db.session.query(model).filter_by(id=record_id)).first()
    if record is None:
        raise NotFoundError(f"{label} {record_id} not found")
    return record


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Domain errors propagate untouched after
    the session is rolled back.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
