# Overview: Retry and locking helpers for check-then-act sequences against the store.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import ConflictError, TransientStoreError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, on_conflict=None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts); exhausting them raises TransientStoreError.

    IntegrityError (unique-constraint race) is only handled when on_conflict
    is given. After rolling back, on_conflict() is called: a non-None return
    value is treated as success and returned (the row now exists); None means
    retry. Exhausting the attempts raises ConflictError.
    """
    for attempt in range(attempts):
        try:
            return func()
        except IntegrityError as exc:
            db.session.rollback()
            if on_conflict is None:
                raise
            resolved = on_conflict()
            if resolved is not None:
                return resolved
            if attempt >= attempts - 1:
                raise ConflictError("Uniqueness conflict could not be resolved", reason="conflict") from exc
            current_app.logger.info("Uniqueness conflict, retry %s of %s", attempt + 1, attempts - 1)
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise TransientStoreError("Store temporarily unavailable") from exc
            current_app.logger.info("Transient store error, retry %s of %s", attempt + 1, attempts - 1)
        time.sleep(backoff_base * (2 ** attempt))


def configured_retry_policy() -> dict:
    """Retry keyword arguments from the app config."""
    return {
        "attempts": current_app.config.get("PROVISIONING_MAX_ATTEMPTS", 3),
        "backoff_base": current_app.config.get("PROVISIONING_BACKOFF_BASE", 0.1),
    }
