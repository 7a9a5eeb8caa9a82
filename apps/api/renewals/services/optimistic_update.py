"""Optimistic workflow edits with revert-on-failure.

The caller applies an edit to its local copy of the list immediately, then
persists it. If persisting fails the previous values are put back and the
failure is reported once: no retry loop, no blocking, no cancellation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, MutableMapping
from uuid import UUID

from sqlalchemy.orm import Session

from renewals.schemas.renewal import RenewalRecordUpdate
from renewals.services import renewal_service

logger = logging.getLogger(__name__)

PersistCallable = Callable[[UUID, dict[str, Any]], Any]


@dataclass
class OptimisticResult:
    ok: bool
    record_id: UUID
    message: str | None = None  # Transient notification text on failure


@dataclass
class OptimisticUpdate:
    """
    One optimistic edit of a cached record.

    cache maps record id -> record-like object (attributes are set in place).
    persist receives the record id and the changes and raises on failure;
    any exception it raises (store errors, validation, transport) reverts
    the local change and is reported once through the result.
    """

    cache: MutableMapping[UUID, Any]
    record_id: UUID
    changes: dict[str, Any]
    persist: PersistCallable
    failure_message: str = "Failed to update renewal"
    _previous: dict[str, Any] = field(default_factory=dict, init=False, repr=False)

    def apply(self) -> None:
        record = self.cache.get(self.record_id)
        if record is None:
            return
        self._previous = {name: getattr(record, name) for name in self.changes}
        for name, value in self.changes.items():
            setattr(record, name, value)

    def revert(self) -> None:
        record = self.cache.get(self.record_id)
        if record is None:
            return
        for name, value in self._previous.items():
            setattr(record, name, value)

    def execute(self) -> OptimisticResult:
        self.apply()
        try:
            self.persist(self.record_id, dict(self.changes))
        except Exception as e:
            self.revert()
            logger.warning(
                "Optimistic update reverted for renewal %s: %s", self.record_id, e
            )
            return OptimisticResult(ok=False, record_id=self.record_id, message=self.failure_message)
        return OptimisticResult(ok=True, record_id=self.record_id)


def toggle_priority(
    cache: MutableMapping[UUID, Any],
    record_id: UUID,
    is_priority: bool,
    persist: PersistCallable,
) -> OptimisticResult:
    """Star / unstar a record optimistically."""
    return OptimisticUpdate(
        cache=cache,
        record_id=record_id,
        changes={"is_priority": is_priority},
        persist=persist,
        failure_message="Failed to update priority",
    ).execute()


def change_status(
    cache: MutableMapping[UUID, Any],
    record_id: UUID,
    status: str,
    persist: PersistCallable,
) -> OptimisticResult:
    return OptimisticUpdate(
        cache=cache,
        record_id=record_id,
        changes={"current_status": status},
        persist=persist,
        failure_message="Failed to update status",
    ).execute()


def service_persister(
    db: Session,
    agency_id: UUID,
    display_name: str | None = None,
) -> PersistCallable:
    """Persist callable backed by renewal_service.update_record."""

    def persist(record_id: UUID, changes: dict[str, Any]) -> None:
        renewal_service.update_record(
            db,
            agency_id,
            record_id,
            RenewalRecordUpdate(**changes, updated_by_display_name=display_name),
        )

    return persist
