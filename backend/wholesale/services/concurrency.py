# Overview: Row locking and retry helpers shared by every ledger mutation.

"""
Ledger transactions serialize on a single row:
- order creation/edit locks the shop (credit check then insert)
- payments and returns lock the order (collected total then write)
- admin edits of approved orders lock products in ascending id order

Any lock is held until the enclosing commit or rollback.
"""

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    SELECT ... FOR UPDATE on the given query.

    NOTE: SQLite ignores FOR UPDATE; PostgreSQL and MySQL honor it.
    """
    return query.with_for_update()


def lock_row(model, row_id):
    """Fetch one row by primary key under FOR UPDATE. Returns None if missing."""
    return lock_for_update(db.session.query(model).filter(model.id == row_id)).first()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run a unit of work that commits on success.

    Lock timeouts and deadlocks (OperationalError) and version_id conflicts
    (StaleDataError) are retried with exponential backoff. Everything else,
    LedgerError included, rolls the session back and is re-raised as is.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt == attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
