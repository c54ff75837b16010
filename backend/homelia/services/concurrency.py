# Overview: Unit-of-work helpers: row locking and retry on concurrency failures.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrencyConflict, StorageUnavailable
from ..extensions import db


RETRYABLE_ERRORS = (OperationalError, StaleDataError, ConcurrencyConflict)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite the single-writer lock serializes the write that follows, and
    version_id_col catches the stale read.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 5, backoff_base: float = 0.05):
    """
    Execute one unit of work with retry on concurrency-related failures.

    `func` must do all of its reads and writes and commit; on failure the
    whole session is rolled back before the next attempt, so a retry starts
    from fresh state. Retries on OperationalError (locks, dropped
    connections), StaleDataError (optimistic locking conflicts) and
    ConcurrencyConflict (lost creation races).

    Any other exception also rolls back, then propagates unchanged.
    When retries run out, the failure surfaces as StorageUnavailable.
    """
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                current_app.logger.error(
                    "Unit of work failed after %d attempts: %s", attempts, exc
                )
                raise StorageUnavailable("Storage is unavailable, please retry") from exc
            current_app.logger.debug(
                "Retrying unit of work (attempt %d/%d) after %s",
                attempt + 1, attempts, type(exc).__name__,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
