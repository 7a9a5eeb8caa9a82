"""Per-agency upload locks.

Renewal uploads for one agency must be applied one at a time: each upload
reads the active records, diffs them and writes the result, and two uploads
diffing the same snapshot would double-insert or mark the wrong records
dropped.

On PostgreSQL the lock is a transaction-scoped advisory lock, released by
the commit/rollback that ends the upload. Other backends (SQLite in tests,
single-process deployments) fall back to a process-local lock.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.orm import Session


class LockUnavailableError(RuntimeError):
    """Raised when another writer already holds the lock."""


_local_locks: dict[str, threading.Lock] = {}
_local_locks_guard = threading.Lock()


def advisory_lock_id(agency_id: UUID) -> int:
    """Map an agency UUID onto the signed bigint space used by pg advisory locks."""
    return int.from_bytes(agency_id.bytes[:8], "big", signed=True)


def _get_local_lock(key: str) -> threading.Lock:
    with _local_locks_guard:
        lock = _local_locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _local_locks[key] = lock
        return lock


@contextmanager
def agency_upload_lock(db: Session, agency_id: UUID) -> Iterator[None]:
    """
    Hold the upload lock for an agency for the duration of the block.

    Never waits: a held lock raises LockUnavailableError immediately so the
    caller can report a retryable conflict.
    """
    bind = db.get_bind()
    if bind.dialect.name == "postgresql":
        acquired = db.execute(
            text("SELECT pg_try_advisory_xact_lock(:lock_id)"),
            {"lock_id": advisory_lock_id(agency_id)},
        ).scalar()
        if not acquired:
            raise LockUnavailableError(f"Upload already in progress for agency {agency_id}")
        yield
        return

    lock = _get_local_lock(str(agency_id))
    if not lock.acquire(blocking=False):
        raise LockUnavailableError(f"Upload already in progress for agency {agency_id}")
    try:
        yield
    finally:
        lock.release()
