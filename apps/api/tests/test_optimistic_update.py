"""Tests for optimistic workflow edits with revert-on-failure."""

import uuid

from sqlalchemy.exc import OperationalError

from renewals.db.enums import WorkflowStatus
from renewals.services import renewal_service
from renewals.services.optimistic_update import (
    OptimisticUpdate,
    change_status,
    service_persister,
    toggle_priority,
)


def test_toggle_priority_applies_and_persists(record_factory):
    record = record_factory()
    calls = []

    result = toggle_priority({record.id: record}, record.id, True, lambda rid, changes: calls.append((rid, changes)))

    assert result.ok is True
    assert record.is_priority is True
    assert calls == [(record.id, {"is_priority": True})]


def test_failed_persist_reverts_and_reports_once(record_factory):
    record = record_factory(current_status=WorkflowStatus.PENDING.value)
    attempts = []

    def failing(record_id, changes):
        attempts.append(record_id)
        raise renewal_service.PersistenceFailure("store unavailable")

    result = change_status({record.id: record}, record.id, WorkflowStatus.SUCCESS.value, failing)

    assert result.ok is False
    assert result.message == "Failed to update status"
    assert record.current_status == WorkflowStatus.PENDING.value
    assert len(attempts) == 1


def test_database_error_also_reverts(record_factory):
    record = record_factory(is_priority=True)

    def failing(record_id, changes):
        raise OperationalError("UPDATE renewal_records", {}, Exception("connection lost"))

    result = toggle_priority({record.id: record}, record.id, False, failing)

    assert result.ok is False
    assert record.is_priority is True


def test_local_change_visible_before_persist(record_factory):
    record = record_factory()
    seen = []

    OptimisticUpdate(
        cache={record.id: record},
        record_id=record.id,
        changes={"notes": "Left voicemail"},
        persist=lambda rid, changes: seen.append(record.notes),
    ).execute()

    assert seen == ["Left voicemail"]


def test_missing_cache_entry_still_persists():
    calls = []

    result = toggle_priority({}, uuid.uuid4(), True, lambda rid, changes: calls.append(rid))

    assert result.ok is True
    assert len(calls) == 1


def test_service_persister_round_trip(db, agency_id, row_factory):
    renewal_service.process_upload(db, agency_id, [row_factory("P1")], filename="r.csv")
    stored = renewal_service.list_current_records(db, agency_id)[0]
    local = renewal_service.list_current_records(db, agency_id)
    cache = {r.id: r for r in local}

    result = toggle_priority(cache, stored.id, True, service_persister(db, agency_id, "Dana"))

    assert result.ok is True
    assert renewal_service.get_record(db, agency_id, stored.id).is_priority is True


def test_service_persister_reverts_on_unknown_record(db, agency_id, record_factory):
    record = record_factory(agency_id, is_priority=False)

    result = toggle_priority(
        {record.id: record}, record.id, True, service_persister(db, agency_id)
    )

    assert result.ok is False
    assert record.is_priority is False


def test_transport_error_reverts(record_factory):
    record = record_factory(current_status=WorkflowStatus.PENDING.value)

    def unreachable(record_id, changes):
        raise ConnectionError("connection reset by peer")

    result = change_status({record.id: record}, record.id, WorkflowStatus.SUCCESS.value, unreachable)

    assert result.ok is False
    assert result.message == "Failed to update status"
    assert record.current_status == WorkflowStatus.PENDING.value


def test_service_persister_reverts_on_invalid_status(db, agency_id, row_factory):
    renewal_service.process_upload(db, agency_id, [row_factory("P1")], filename="r.csv")
    cache = {r.id: r for r in renewal_service.list_current_records(db, agency_id)}
    record_id = next(iter(cache))

    result = change_status(cache, record_id, "archived", service_persister(db, agency_id))

    assert result.ok is False
    assert cache[record_id].current_status == WorkflowStatus.UNCONTACTED.value
    stored = renewal_service.get_record(db, agency_id, record_id)
    assert stored.current_status == WorkflowStatus.UNCONTACTED.value
