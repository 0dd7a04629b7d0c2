# Overview: Service-layer helpers for row locking and retrying units of work.

from __future__ import annotations

import random
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .errors import TransientStorageError


class RetryableConflict(Exception):
    """Raised inside a unit of work to ask run_with_retry for another attempt."""


def lock_for_update(query, *, skip_locked: bool = False):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update(skip_locked=skip_locked)


def run_with_retry(func, *, attempts: int = 5, backoff_base: float = 0.05):
    """
    Execute a DB unit of work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks), StaleDataError
    (optimistic locking conflicts) and RetryableConflict (lost compare-and-swap).
    The session is rolled back before every retry, so a failed attempt leaves
    no partial writes behind. Exhausted attempts surface as TransientStorageError.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError, RetryableConflict) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                break
            # jitter keeps competing writers from retrying in lockstep
            time.sleep(backoff_base * (2 ** attempt) * (1 + random.random()))
        except Exception:
            db.session.rollback()
            raise
    raise TransientStorageError(details={"cause": type(last_exc).__name__}) from last_exc
