# Overview: Transaction helpers shared by every deal-engine operation (row locks, retries, unique-violation mapping).

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the version_id columns
    on Deal, Commission and Pin turn a lost race into a StaleDataError instead.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute one atomic DB operation, retrying on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any other exception rolls the session back
    so no partial write and no row lock outlives the failed operation, then
    propagates unchanged.
    """
    if attempts is None:
        attempts = current_app.config.get("DB_RETRY_ATTEMPTS", 3)

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


def is_unique_violation(exc: IntegrityError, column: str) -> bool:
    """
    True when an IntegrityError was raised by a unique index covering `column`.

    SQLite reports "UNIQUE constraint failed: pins.normalized_address";
    PostgreSQL names the constraint (uq_pins_normalized_address). Both
    contain the column name.
    """
    message = str(getattr(exc, "orig", exc)).lower()
    return column.lower() in message and ("unique" in message or "duplicate" in message)
