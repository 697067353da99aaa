# Overview: Row locking and the retry-on-conflict wrapper used by every multi-row mutation.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


# Lock waits / deadlocks / "database is locked" and version_id mismatches.
RETRYABLE_ERRORS = (OperationalError, StaleDataError)

# Ledger entries and document numbers are guarded by unique constraints
# (product_id, sequence) and (document_type, business_date); the writer that
# loses the race gets IntegrityError and must start over from fresh state.
WRITE_CONFLICT_ERRORS = RETRYABLE_ERRORS + (IntegrityError,)


def lock_for_update(query):
    """
    SELECT ... FOR UPDATE.

    PostgreSQL and MySQL honour it. SQLite drops the clause and serialises
    writers on the file instead; the loser sees OperationalError.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, retry_on: tuple = RETRYABLE_ERRORS):
    """
    Run ``func`` as one transaction.

    Any exception rolls the session back first. Exceptions in ``retry_on``
    are retried up to ``attempts`` times with exponential backoff; anything
    else (domain errors included) propagates immediately.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except retry_on as exc:
            db.session.rollback()
            if attempt == attempts:
                raise
            current_app.logger.warning(
                "Write conflict, retrying (attempt %s/%s): %s", attempt, attempts, exc.__class__.__name__
            )
            time.sleep(backoff_base * (2 ** (attempt - 1)))
        except Exception:
            db.session.rollback()
            raise
