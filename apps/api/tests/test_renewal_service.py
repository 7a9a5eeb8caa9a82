"""
Tests for renewal_service against the database.

Covers:
- Upload processing across successive reports (insert/confirm/drop/restore)
- Workflow fields surviving re-uploads
- Auto-resolution of dropped "Renewal Taken" records
- Upload lock conflicts and persistence failures
- Stats, dropped list, queries and workflow edits
"""

import uuid
from datetime import date, datetime, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from renewals.core.locks import _get_local_lock
from renewals.db.enums import AutoResolvedReason, WorkflowStatus
from renewals.db.models import RenewalActivity, RenewalRecord, RenewalUpload
from renewals.schemas.renewal import RenewalFilterSpec, RenewalRecordUpdate, SortCriterion
from renewals.services import renewal_service
from renewals.services.renewal_reconciler import DateWindow


NOW = datetime(2024, 3, 20, 12, 0, tzinfo=timezone.utc)


def _upload(db, agency_id, rows, filename="renewals.csv", **kwargs):
    return renewal_service.process_upload(db, agency_id, rows, filename=filename, now=NOW, **kwargs)


def _record(db, agency_id, policy_number) -> RenewalRecord:
    return db.execute(
        select(RenewalRecord).where(
            RenewalRecord.agency_id == agency_id,
            RenewalRecord.policy_number == policy_number,
        )
    ).scalar_one()


# =============================================================================
# Upload processing
# =============================================================================


def test_successive_uploads_insert_drop_and_restore(db, agency_id, row_factory):
    first = _upload(db, agency_id, [row_factory(p) for p in ("P1", "P2", "P3")])
    assert (first.new_count, first.updated_count, first.dropped_count) == (3, 0, 0)

    second = _upload(db, agency_id, [row_factory(p) for p in ("P1", "P3", "P4")])
    assert (second.new_count, second.updated_count, second.dropped_count) == (1, 2, 1)
    dropped = _record(db, agency_id, "P2")
    assert dropped.dropped_from_report_at is not None

    third = _upload(db, agency_id, [row_factory(p) for p in ("P1", "P2", "P3", "P4")])
    assert (third.new_count, third.updated_count, third.restored_count) == (0, 4, 1)
    assert _record(db, agency_id, "P2").dropped_from_report_at is None

    total = db.execute(
        select(func.count()).select_from(RenewalRecord).where(RenewalRecord.agency_id == agency_id)
    ).scalar_one()
    assert total == 4


def test_reupload_keeps_record_identity_and_workflow_fields(db, agency_id, row_factory):
    _upload(db, agency_id, [row_factory("P1", renewalStatus="Pending")])
    record = _record(db, agency_id, "P1")
    original_id = record.id
    record.current_status = WorkflowStatus.PENDING.value
    record.is_priority = True
    record.notes = "Called, left voicemail"
    db.commit()

    result = _upload(db, agency_id, [row_factory("P1", renewalStatus="Renewal Taken", premiumNew="1,200")])

    record = _record(db, agency_id, "P1")
    assert record.id == original_id
    assert record.current_status == WorkflowStatus.PENDING.value
    assert record.is_priority is True
    assert record.notes == "Called, left voicemail"
    assert record.renewal_status == "Renewal Taken"
    assert record.premium_change_percent == 20
    assert record.upload_id != result.upload.id
    assert record.last_upload_id == result.upload.id


def test_upload_stores_summary_and_window(db, agency_id, row_factory):
    rows = [row_factory("P1", "2024-03-02"), row_factory("P2", "2024-03-09"), {"policyNumber": ""}]

    result = _upload(db, agency_id, rows)

    upload = db.get(RenewalUpload, result.upload.id)
    assert upload.record_count == 3
    assert upload.new_count == 2
    assert upload.error_count == 1
    assert (upload.date_range_start, upload.date_range_end) == (date(2024, 3, 2), date(2024, 3, 9))
    assert result.errors[0].row == 3


def test_upload_only_drops_within_its_window(db, agency_id, row_factory):
    _upload(db, agency_id, [row_factory("EARLY", "2024-02-10"), row_factory("P1", "2024-03-05")])

    result = _upload(db, agency_id, [row_factory("P2", "2024-03-05")])

    assert result.dropped_count == 1
    assert _record(db, agency_id, "EARLY").dropped_from_report_at is None
    assert _record(db, agency_id, "P1").dropped_from_report_at is not None


def test_declared_range_drops_policies_at_its_edges(db, agency_id, row_factory):
    _upload(
        db,
        agency_id,
        [
            row_factory("P1", "2024-03-01"),
            row_factory("P2", "2024-03-05"),
            row_factory("P3", "2024-03-10"),
        ],
    )

    result = _upload(
        db,
        agency_id,
        [row_factory("P2", "2024-03-05"), row_factory("P3", "2024-03-10")],
        date_range_start=date(2024, 3, 1),
        date_range_end=date(2024, 3, 10),
    )

    assert result.dropped_count == 1
    assert _record(db, agency_id, "P1").dropped_from_report_at is not None
    assert _record(db, agency_id, "P3").dropped_from_report_at is None
    upload = db.get(RenewalUpload, result.upload.id)
    assert (upload.date_range_start, upload.date_range_end) == (date(2024, 3, 1), date(2024, 3, 10))


def test_declared_range_widens_to_rows_outside_it(db, agency_id, row_factory):
    result = _upload(
        db,
        agency_id,
        [row_factory("P1", "2024-02-28"), row_factory("P2", "2024-03-05")],
        date_range_start=date(2024, 3, 1),
        date_range_end=date(2024, 3, 31),
    )

    assert result.new_count == 2
    assert result.upload.date_range_start == date(2024, 2, 28)
    assert result.upload.date_range_end == date(2024, 3, 31)


def test_inverted_declared_range_is_rejected(db, agency_id, row_factory):
    with pytest.raises(renewal_service.InvalidDateRangeError):
        _upload(
            db,
            agency_id,
            [row_factory("P1")],
            date_range_start=date(2024, 3, 31),
            date_range_end=date(2024, 3, 1),
        )

    assert db.execute(select(func.count()).select_from(RenewalUpload)).scalar_one() == 0


def test_uploads_are_agency_scoped(db, agency_id, row_factory):
    other_agency = uuid.uuid4()
    _upload(db, other_agency, [row_factory("P1")])

    result = _upload(db, agency_id, [row_factory("P2")])

    assert result.dropped_count == 0
    assert _record(db, other_agency, "P1").dropped_from_report_at is None


def test_empty_upload_is_rejected(db, agency_id):
    with pytest.raises(renewal_service.EmptyUploadError):
        _upload(db, agency_id, [])


def test_all_malformed_upload_drops_nothing(db, agency_id, row_factory):
    _upload(db, agency_id, [row_factory("P1")])

    result = _upload(db, agency_id, [{"firstName": "No key"}])

    assert result.error_count == 1
    assert result.dropped_count == 0
    assert _record(db, agency_id, "P1").dropped_from_report_at is None


# =============================================================================
# Auto-resolution
# =============================================================================


def test_dropped_renewal_taken_is_auto_resolved(db, agency_id, row_factory):
    _upload(
        db,
        agency_id,
        [row_factory("P1"), row_factory("P2", renewalStatus="Renewal Taken")],
    )

    result = _upload(db, agency_id, [row_factory("P1")])

    assert result.auto_promoted_count == 1
    record = _record(db, agency_id, "P2")
    assert record.current_status == WorkflowStatus.SUCCESS.value
    assert record.auto_resolved_reason == AutoResolvedReason.RENEWAL_TAKEN_DROPPED.value
    activity = db.execute(
        select(RenewalActivity).where(RenewalActivity.renewal_record_id == record.id)
    ).scalar_one()
    assert activity.created_by_display_name == renewal_service.SYSTEM_DISPLAY_NAME


def test_auto_resolution_leaves_closed_records_alone(db, agency_id, row_factory):
    _upload(db, agency_id, [row_factory("P1"), row_factory("P2", renewalStatus="Renewal Taken")])
    record = _record(db, agency_id, "P2")
    record.current_status = WorkflowStatus.UNSUCCESSFUL.value
    db.commit()

    result = _upload(db, agency_id, [row_factory("P1")])

    assert result.auto_promoted_count == 0
    assert _record(db, agency_id, "P2").current_status == WorkflowStatus.UNSUCCESSFUL.value


def test_auto_promote_respects_window(db, agency_id, row_factory, monkeypatch):
    monkeypatch.setattr(renewal_service.settings, "AUTO_PROMOTE_RENEWAL_TAKEN", False)
    _upload(db, agency_id, [row_factory("P1", "2024-03-05", renewalStatus="Renewal Taken")])
    result = _upload(db, agency_id, [row_factory("P2", "2024-03-05")])
    assert result.auto_promoted_count == 0

    april = DateWindow(date(2024, 4, 1), date(2024, 4, 30))
    march = DateWindow(date(2024, 3, 1), date(2024, 3, 31))

    assert renewal_service.auto_promote_dropped_taken(db, agency_id, april) == 0
    assert renewal_service.auto_promote_dropped_taken(db, agency_id, march) == 1


# =============================================================================
# Failures
# =============================================================================


def test_concurrent_upload_conflict(db, agency_id, row_factory):
    lock = _get_local_lock(str(agency_id))
    lock.acquire()
    try:
        with pytest.raises(renewal_service.ConcurrentUploadConflict) as exc:
            _upload(db, agency_id, [row_factory("P1")])
    finally:
        lock.release()

    assert exc.value.retryable is True
    assert db.execute(select(func.count()).select_from(RenewalUpload)).scalar_one() == 0
    # Lock released: the retry succeeds
    assert _upload(db, agency_id, [row_factory("P1")]).new_count == 1


def test_persistence_failure_commits_nothing(db, agency_id, row_factory, monkeypatch):
    def fail(*args, **kwargs):
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr(renewal_service, "apply_plan", fail)

    with pytest.raises(renewal_service.PersistenceFailure):
        _upload(db, agency_id, [row_factory("P1")])

    assert db.execute(select(func.count()).select_from(RenewalUpload)).scalar_one() == 0
    assert db.execute(select(func.count()).select_from(RenewalRecord)).scalar_one() == 0


# =============================================================================
# Record store reads
# =============================================================================


def test_list_dropped_unresolved(db, agency_id, row_factory):
    _upload(db, agency_id, [row_factory(p) for p in ("P1", "P2", "P3")])
    _upload(db, agency_id, [row_factory("P1")])
    resolved = _record(db, agency_id, "P3")
    resolved.current_status = WorkflowStatus.UNSUCCESSFUL.value
    db.commit()

    records, total = renewal_service.list_dropped(db, agency_id)
    assert total == 1
    assert [r.policy_number for r in records] == ["P2"]

    records, total = renewal_service.list_dropped(db, agency_id, unresolved_only=False)
    assert total == 2


def test_list_active_records_includes_dropped(db, agency_id, row_factory):
    _upload(db, agency_id, [row_factory("P1"), row_factory("P2")])
    _upload(db, agency_id, [row_factory("P1")])

    active = renewal_service.list_active_records(db, agency_id)
    current = renewal_service.list_current_records(db, agency_id)

    assert sorted(r.policy_number for r in active) == ["P1", "P2"]
    assert [r.policy_number for r in current] == ["P1"]


def test_mark_dropped_only_stamps_once(db, agency_id, row_factory):
    _upload(db, agency_id, [row_factory("P1")])
    record = _record(db, agency_id, "P1")

    assert renewal_service.mark_dropped(db, [record.id], NOW) == 1
    assert renewal_service.mark_dropped(db, [record.id], NOW) == 0
    assert renewal_service.mark_dropped(db, []) == 0


def test_stats_counts_current_and_dropped(db, agency_id, row_factory):
    _upload(db, agency_id, [row_factory(p) for p in ("P1", "P2", "P3")])
    _upload(db, agency_id, [row_factory("P1"), row_factory("P3")])
    record = _record(db, agency_id, "P1")
    record.current_status = WorkflowStatus.SUCCESS.value
    db.commit()

    stats = renewal_service.get_stats(db, agency_id)

    assert stats.total == 2
    assert stats.success == 1
    assert stats.uncontacted == 1
    assert stats.dropped_unresolved == 1


def test_query_records_excludes_dropped_and_paginates(db, agency_id, row_factory):
    rows = [row_factory(f"P{n}", f"2024-03-0{n}") for n in range(1, 6)]
    _upload(db, agency_id, rows)
    _upload(
        db,
        agency_id,
        rows[1:],
        date_range_start=date(2024, 3, 1),
        date_range_end=date(2024, 3, 5),
    )

    page = renewal_service.query_records(
        db,
        agency_id,
        RenewalFilterSpec(),
        [SortCriterion.parse("renewal_effective_date:desc")],
        page=1,
        page_size=3,
    )

    assert page.total_count == 4
    assert [r.policy_number for r in page.rows] == ["P5", "P4", "P3"]


def test_product_names_and_chart(db, agency_id, row_factory):
    _upload(
        db,
        agency_id,
        [
            row_factory("P1", "2024-03-05", productName="Auto"),
            row_factory("P2", "2024-03-06", productName="Home"),
            row_factory("P3", "2024-03-06", productName="Auto"),
        ],
    )

    assert renewal_service.list_product_names(db, agency_id) == ["Auto", "Home"]
    chart = renewal_service.get_chart_data(db, agency_id, today=date(2024, 3, 6))
    assert [d.count for d in chart.days][-2:] == [1, 2]


def test_latest_upload(db, agency_id, row_factory):
    assert renewal_service.get_latest_upload(db, agency_id) is None
    _upload(db, agency_id, [row_factory("P1")], filename="march.csv")

    latest = renewal_service.get_latest_upload(db, agency_id)

    assert latest.filename == "march.csv"
    assert [u.filename for u in renewal_service.list_uploads(db, agency_id)] == ["march.csv"]


# =============================================================================
# Workflow edits
# =============================================================================


def test_update_record_logs_status_change(db, agency_id, row_factory):
    _upload(db, agency_id, [row_factory("P1")])
    record = _record(db, agency_id, "P1")

    updated = renewal_service.update_record(
        db,
        agency_id,
        record.id,
        RenewalRecordUpdate(current_status=WorkflowStatus.PENDING, updated_by_display_name="Dana"),
    )

    assert updated.current_status == WorkflowStatus.PENDING.value
    activity = db.execute(
        select(RenewalActivity).where(RenewalActivity.renewal_record_id == record.id)
    ).scalar_one()
    assert activity.subject == "Status changed from uncontacted to pending"
    assert activity.created_by_display_name == "Dana"


def test_update_record_partial_fields(db, agency_id, row_factory):
    _upload(db, agency_id, [row_factory("P1")])
    record = _record(db, agency_id, "P1")

    renewal_service.update_record(db, agency_id, record.id, RenewalRecordUpdate(is_priority=True))
    updated = renewal_service.update_record(
        db, agency_id, record.id, RenewalRecordUpdate(notes="Spoke to customer")
    )

    assert updated.is_priority is True
    assert updated.notes == "Spoke to customer"
    assert updated.current_status == WorkflowStatus.UNCONTACTED.value


def test_update_record_logs_priority_assignment_and_note(db, agency_id, row_factory):
    _upload(db, agency_id, [row_factory("P1")])
    record = _record(db, agency_id, "P1")
    member_id = uuid.uuid4()

    renewal_service.update_record(
        db,
        agency_id,
        record.id,
        RenewalRecordUpdate(
            is_priority=True,
            assigned_team_member_id=member_id,
            notes="Left voicemail",
            updated_by_display_name="Dana",
        ),
    )
    # Same values again: nothing new to record
    renewal_service.update_record(
        db,
        agency_id,
        record.id,
        RenewalRecordUpdate(is_priority=True, notes="Left voicemail"),
    )

    activities = db.execute(
        select(RenewalActivity).where(RenewalActivity.renewal_record_id == record.id)
    ).scalars().all()
    by_type = {a.activity_type: a for a in activities}
    assert len(activities) == 3
    assert by_type["priority_change"].subject == "Marked as priority"
    assert by_type["assignment"].subject == f"Assigned to {member_id}"
    assert by_type["note"].comments == "Left voicemail"
    assert {a.created_by_display_name for a in activities} == {"Dana"}


def test_update_record_other_agency_not_found(db, agency_id, row_factory):
    _upload(db, agency_id, [row_factory("P1")])
    record = _record(db, agency_id, "P1")

    with pytest.raises(renewal_service.RenewalRecordNotFoundError):
        renewal_service.update_record(
            db, uuid.uuid4(), record.id, RenewalRecordUpdate(is_priority=True)
        )


def test_bulk_update_and_delete(db, agency_id, row_factory):
    _upload(db, agency_id, [row_factory(p) for p in ("P1", "P2", "P3")])
    ids = [_record(db, agency_id, p).id for p in ("P1", "P2")]

    assert renewal_service.bulk_update_status(db, agency_id, ids, WorkflowStatus.SUCCESS) == 2
    assert renewal_service.get_stats(db, agency_id).success == 2

    assert renewal_service.bulk_delete(db, uuid.uuid4(), ids) == 0
    assert renewal_service.bulk_delete(db, agency_id, ids) == 2
    assert [r.policy_number for r in renewal_service.list_current_records(db, agency_id)] == ["P3"]
