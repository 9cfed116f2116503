# Overview: Locking and retry helpers for stock mutations and counters.

from __future__ import annotations

import threading
import time
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


_registry_lock = threading.Lock()
_branch_locks: dict[int, threading.RLock] = {}


def lock_for_update(query):
    """Row locks for rows about to be re-checked and written. A no-op on SQLite."""
    return query.with_for_update()


def _get_branch_lock(branch_id: int) -> threading.RLock:
    with _registry_lock:
        lock = _branch_locks.get(branch_id)
        if lock is None:
            lock = threading.RLock()
            _branch_locks[branch_id] = lock
        return lock


@contextmanager
def branch_lock(branch_id: int):
    """
    Per-branch critical section for validate-then-commit stock changes.

    Serializes writers inside one process. Across processes the row locks
    and the conditional UPDATE in stock_service do the same job.

    Re-entrant: checkout holds it around deduct, which takes it again.
    """
    lock = _get_branch_lock(branch_id)
    lock.acquire()
    try:
        yield
    finally:
        lock.release()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Call func(), rolling back and retrying when the database reports lock
    contention or a stale row. The final failure propagates.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt == attempts:
                raise
            time.sleep(backoff_base * 2 ** (attempt - 1))
