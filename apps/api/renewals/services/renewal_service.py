"""Renewal record store and upload processing.

Record Store operations (list/upsert/mark dropped/list dropped), the upload
pipeline that applies a reconciliation plan atomically, and the workflow
edits made from the renewals list.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Mapping, Sequence
from uuid import UUID

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from renewals.core.config import settings
from renewals.core.locks import LockUnavailableError, agency_upload_lock
from renewals.core.structured_logging import build_log_context
from renewals.db.enums import (
    AutoResolvedReason,
    RenewalActivityType,
    RenewalStatus,
    WorkflowStatus,
)
from renewals.db.models import RenewalActivity, RenewalRecord, RenewalUpload
from renewals.schemas.renewal import (
    RenewalChartData,
    RenewalFilterSpec,
    RenewalRecordUpdate,
    RenewalRowIn,
    RenewalStats,
    SortCriterion,
)
from renewals.services import renewal_query
from renewals.services.renewal_reconciler import (
    DateWindow,
    ReconciliationPlan,
    RowError,
    reconcile,
    validate_rows,
)

logger = logging.getLogger(__name__)

SYSTEM_DISPLAY_NAME = "System"
STAT_STATUSES = {s.value for s in WorkflowStatus}


class RenewalServiceError(Exception):
    """Base exception for renewal service errors."""

    pass


class ConcurrentUploadConflict(RenewalServiceError):
    """Another upload for the same agency is being reconciled. Retry after it finishes."""

    retryable = True


class PersistenceFailure(RenewalServiceError):
    """The record store rejected a read or write."""

    pass


class RenewalRecordNotFoundError(RenewalServiceError):
    """Renewal record not found in the agency."""

    pass


class EmptyUploadError(RenewalServiceError):
    """Upload contained no rows."""

    pass


class InvalidDateRangeError(RenewalServiceError):
    """Declared report date range ends before it starts."""

    pass


# =============================================================================
# Record Store
# =============================================================================


def list_active_records(
    db: Session,
    agency_id: UUID,
    window: DateWindow | None = None,
) -> list[RenewalRecord]:
    """
    Records still tracked for the agency, optionally limited to a date window.

    Dropped records awaiting review are included: they are still tracked and
    may reappear in the next report.
    """
    query = select(RenewalRecord).where(RenewalRecord.agency_id == agency_id)
    if window is not None:
        query = query.where(
            RenewalRecord.renewal_effective_date >= window.start,
            RenewalRecord.renewal_effective_date <= window.end,
        )
    return list(db.execute(query).scalars().all())


def list_current_records(db: Session, agency_id: UUID) -> list[RenewalRecord]:
    """Non-dropped records for the agency (the default list view)."""
    return list(
        db.execute(
            select(RenewalRecord).where(
                RenewalRecord.agency_id == agency_id,
                RenewalRecord.dropped_from_report_at.is_(None),
            )
        )
        .scalars()
        .all()
    )


def upsert_records(db: Session, agency_id: UUID, records: Sequence[RenewalRecord]) -> None:
    """Add new records and flush pending changes to existing ones."""
    for record in records:
        if record.agency_id != agency_id:
            raise ValueError("Record does not belong to agency")
        if record not in db:
            db.add(record)
    db.flush()


def mark_dropped(db: Session, ids: Sequence[UUID], dropped_at: datetime | None = None) -> int:
    """Stamp records as dropped from the report. No other field changes."""
    if not ids:
        return 0
    result = db.execute(
        update(RenewalRecord)
        .where(
            RenewalRecord.id.in_(list(ids)),
            RenewalRecord.dropped_from_report_at.is_(None),
        )
        .values(dropped_from_report_at=dropped_at or datetime.now(timezone.utc))
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount or 0


def _dropped_unresolved_clause(agency_id: UUID):
    return and_(
        RenewalRecord.agency_id == agency_id,
        RenewalRecord.dropped_from_report_at.is_not(None),
        RenewalRecord.current_status.in_(WorkflowStatus.open_statuses()),
    )


def list_dropped(
    db: Session,
    agency_id: UUID,
    page: int = 1,
    page_size: int = 50,
    unresolved_only: bool = True,
) -> tuple[list[RenewalRecord], int]:
    """
    Dropped records, most recently dropped first.

    Returns:
        (records, total_count)
    """
    if unresolved_only:
        condition = _dropped_unresolved_clause(agency_id)
    else:
        condition = and_(
            RenewalRecord.agency_id == agency_id,
            RenewalRecord.dropped_from_report_at.is_not(None),
        )
    total = db.execute(select(func.count()).select_from(RenewalRecord).where(condition)).scalar_one()
    page = max(page, 1)
    records = (
        db.execute(
            select(RenewalRecord)
            .where(condition)
            .order_by(
                RenewalRecord.dropped_from_report_at.desc(),
                RenewalRecord.renewal_effective_date.asc(),
                RenewalRecord.id.asc(),
            )
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        .scalars()
        .all()
    )
    return list(records), total


def get_record(db: Session, agency_id: UUID, record_id: UUID) -> RenewalRecord | None:
    """Get renewal record by ID (agency-scoped)."""
    return db.execute(
        select(RenewalRecord).where(
            RenewalRecord.id == record_id,
            RenewalRecord.agency_id == agency_id,
        )
    ).scalar_one_or_none()


# =============================================================================
# Upload processing
# =============================================================================


@dataclass
class UploadResult:
    upload: RenewalUpload
    new_count: int = 0
    updated_count: int = 0
    dropped_count: int = 0
    restored_count: int = 0
    auto_promoted_count: int = 0
    errors: list[RowError] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.errors)


def _apply_row(record: RenewalRecord, row: RenewalRowIn, upload_id: UUID) -> None:
    """Overwrite report-owned fields; workflow fields are left alone."""
    for name, value in row.report_fields().items():
        setattr(record, name, value)
    record.last_upload_id = upload_id


def _new_record(agency_id: UUID, row: RenewalRowIn, upload_id: UUID) -> RenewalRecord:
    record = RenewalRecord(
        agency_id=agency_id,
        policy_number=row.policy_number,
        renewal_effective_date=row.renewal_effective_date,
        upload_id=upload_id,
        current_status=WorkflowStatus.UNCONTACTED.value,
        is_priority=False,
    )
    _apply_row(record, row, upload_id)
    return record


def apply_plan(
    db: Session,
    plan: ReconciliationPlan,
    upload: RenewalUpload,
    batch_size: int | None = None,
) -> UploadResult:
    """Persist a reconciliation plan. Caller owns the transaction."""
    batch_size = batch_size or settings.UPLOAD_BATCH_SIZE
    result = UploadResult(upload=upload, errors=list(plan.rejected))

    for match in plan.to_confirm:
        _apply_row(match.record, match.row, upload.id)
    for record in plan.to_unmark_dropped:
        record.dropped_from_report_at = None
    result.updated_count = len(plan.to_confirm)
    result.restored_count = len(plan.to_unmark_dropped)

    new_records = [_new_record(plan.agency_id, row, upload.id) for row in plan.to_insert]
    for start in range(0, len(new_records), batch_size):
        upsert_records(db, plan.agency_id, new_records[start : start + batch_size])
    result.new_count = len(new_records)

    # Confirmed records are already attached to the session
    db.flush()

    result.dropped_count = mark_dropped(
        db, [record.id for record in plan.to_mark_dropped], plan.dropped_at
    )
    return result


def auto_promote_dropped_taken(db: Session, agency_id: UUID, window: DateWindow) -> int:
    """
    Resolve dropped records the carrier already reported as "Renewal Taken".

    Still-open records (uncontacted/pending) become success with an
    auto_resolved_reason and a system activity entry. Runs after the plan
    is applied so records that came back are not touched.
    """
    candidates = (
        db.execute(
            select(RenewalRecord).where(
                RenewalRecord.agency_id == agency_id,
                RenewalRecord.dropped_from_report_at.is_not(None),
                RenewalRecord.renewal_status == RenewalStatus.RENEWAL_TAKEN.value,
                RenewalRecord.current_status.in_(WorkflowStatus.open_statuses()),
                RenewalRecord.renewal_effective_date >= window.start,
                RenewalRecord.renewal_effective_date <= window.end,
            )
        )
        .scalars()
        .all()
    )
    for record in candidates:
        record.current_status = WorkflowStatus.SUCCESS.value
        record.auto_resolved_reason = AutoResolvedReason.RENEWAL_TAKEN_DROPPED.value
        db.add(
            RenewalActivity(
                renewal_record_id=record.id,
                agency_id=agency_id,
                activity_type=RenewalActivityType.STATUS_CHANGE.value,
                subject="Auto-resolved: Carrier confirmed renewal",
                comments=(
                    'Record dropped from report with "Renewal Taken" status. '
                    "Automatically marked as successful."
                ),
                created_by_display_name=SYSTEM_DISPLAY_NAME,
            )
        )
    db.flush()
    return len(candidates)


def process_upload(
    db: Session,
    agency_id: UUID,
    rows: Sequence[Mapping[str, Any] | RenewalRowIn],
    filename: str,
    uploaded_by_display_name: str | None = None,
    date_range_start: date | None = None,
    date_range_end: date | None = None,
    now: datetime | None = None,
) -> UploadResult:
    """
    Ingest one renewal report.

    Creates the upload record, reconciles the rows against the agency's
    tracked records for the report's date window and commits everything in
    one transaction while holding the agency upload lock. The window is
    date_range_start..date_range_end when given (widened to cover every
    row), otherwise the min/max effective date of the valid rows.

    Raises:
        EmptyUploadError: no rows
        InvalidDateRangeError: date_range_start is after date_range_end
        ConcurrentUploadConflict: another upload for the agency is running
        PersistenceFailure: the store rejected the write (nothing committed)
    """
    if not rows:
        raise EmptyUploadError("No records provided")
    if date_range_start and date_range_end and date_range_start > date_range_end:
        raise InvalidDateRangeError("date_range_start must not be after date_range_end")

    log_context = build_log_context(agency_id=agency_id)
    valid_rows, _ = validate_rows(rows)
    window = DateWindow.covering(valid_rows, date_range_start, date_range_end)

    try:
        with agency_upload_lock(db, agency_id):
            upload = RenewalUpload(
                agency_id=agency_id,
                filename=filename,
                uploaded_by_display_name=uploaded_by_display_name,
                record_count=len(rows),
                date_range_start=window.start if window else None,
                date_range_end=window.end if window else None,
            )
            db.add(upload)
            db.flush()
            log_context = build_log_context(agency_id=agency_id, upload_id=upload.id)

            existing = list_active_records(db, agency_id, window) if window else []
            plan = reconcile(agency_id, window, rows, existing, now=now)
            result = apply_plan(db, plan, upload)

            if window is not None and settings.AUTO_PROMOTE_RENEWAL_TAKEN:
                result.auto_promoted_count = auto_promote_dropped_taken(db, agency_id, window)

            upload.new_count = result.new_count
            upload.updated_count = result.updated_count
            upload.dropped_count = result.dropped_count
            upload.error_count = result.error_count
            upload.auto_promoted_count = result.auto_promoted_count
            db.commit()
    except LockUnavailableError as e:
        db.rollback()
        logger.warning("Renewal upload rejected: %s", e, extra=log_context)
        raise ConcurrentUploadConflict(str(e)) from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Renewal upload failed to persist", extra=log_context)
        raise PersistenceFailure("Failed to save renewal upload") from e

    db.refresh(upload)
    logger.info(
        "Renewal upload complete: %d new, %d updated, %d dropped, %d restored, %d errors, %d auto-promoted",
        result.new_count,
        result.updated_count,
        result.dropped_count,
        result.restored_count,
        result.error_count,
        result.auto_promoted_count,
        extra=log_context,
    )
    for error in result.errors:
        logger.debug("Rejected row %d: %s", error.row, "; ".join(error.errors), extra=log_context)
    return result


def get_latest_upload(db: Session, agency_id: UUID) -> RenewalUpload | None:
    return db.execute(
        select(RenewalUpload)
        .where(RenewalUpload.agency_id == agency_id)
        .order_by(RenewalUpload.created_at.desc())
        .limit(1)
    ).scalar_one_or_none()


def list_uploads(db: Session, agency_id: UUID, limit: int = 20) -> list[RenewalUpload]:
    """List recent uploads for agency."""
    return list(
        db.execute(
            select(RenewalUpload)
            .where(RenewalUpload.agency_id == agency_id)
            .order_by(RenewalUpload.created_at.desc())
            .limit(limit)
        )
        .scalars()
        .all()
    )


# =============================================================================
# Queries
# =============================================================================


def query_records(
    db: Session,
    agency_id: UUID,
    filters: RenewalFilterSpec,
    sort: Sequence[SortCriterion] = (),
    page: int = 1,
    page_size: int | None = None,
) -> renewal_query.Page[RenewalRecord]:
    """Filtered, sorted page of the agency's non-dropped records."""
    page_size = min(page_size or settings.RENEWALS_DEFAULT_PAGE_SIZE, settings.RENEWALS_MAX_PAGE_SIZE)
    records = list_current_records(db, agency_id)
    visible = renewal_query.query(records, filters, sort)
    return renewal_query.paginate(visible, page, page_size)


def get_stats(db: Session, agency_id: UUID) -> RenewalStats:
    """Tab counts over non-dropped records plus unresolved dropped count."""
    rows = db.execute(
        select(RenewalRecord.current_status, func.count())
        .where(
            RenewalRecord.agency_id == agency_id,
            RenewalRecord.dropped_from_report_at.is_(None),
        )
        .group_by(RenewalRecord.current_status)
    ).all()
    stats = RenewalStats()
    for status, count in rows:
        if status in STAT_STATUSES:
            setattr(stats, status, count)
        stats.total += count
    stats.dropped_unresolved = db.execute(
        select(func.count()).select_from(RenewalRecord).where(_dropped_unresolved_clause(agency_id))
    ).scalar_one()
    return stats


def list_product_names(db: Session, agency_id: UUID) -> list[str]:
    return list(
        db.execute(
            select(RenewalRecord.product_name)
            .where(
                RenewalRecord.agency_id == agency_id,
                RenewalRecord.product_name.is_not(None),
            )
            .distinct()
            .order_by(RenewalRecord.product_name)
        )
        .scalars()
        .all()
    )


def get_chart_data(db: Session, agency_id: UUID, today: date | None = None) -> RenewalChartData:
    effective_dates = (
        db.execute(
            select(RenewalRecord.renewal_effective_date).where(
                RenewalRecord.agency_id == agency_id,
                RenewalRecord.dropped_from_report_at.is_(None),
            )
        )
        .scalars()
        .all()
    )
    return renewal_query.build_chart_data(effective_dates, today=today)


# =============================================================================
# Workflow edits
# =============================================================================


def _log_activity(
    db: Session,
    record: RenewalRecord,
    activity_type: RenewalActivityType,
    subject: str,
    display_name: str | None,
    comments: str | None = None,
) -> None:
    db.add(
        RenewalActivity(
            renewal_record_id=record.id,
            agency_id=record.agency_id,
            activity_type=activity_type.value,
            subject=subject,
            comments=comments,
            created_by_display_name=display_name,
        )
    )


def _log_status_change(
    db: Session,
    record: RenewalRecord,
    old_status: str,
    new_status: str,
    display_name: str | None,
) -> None:
    _log_activity(
        db,
        record,
        RenewalActivityType.STATUS_CHANGE,
        f"Status changed from {old_status} to {new_status}",
        display_name,
    )


def update_record(
    db: Session,
    agency_id: UUID,
    record_id: UUID,
    data: RenewalRecordUpdate,
) -> RenewalRecord:
    """
    Apply workflow edits (priority, status, assignment, notes).

    Each edit that actually changes a value is recorded as one activity.

    Raises:
        RenewalRecordNotFoundError
        PersistenceFailure
    """
    record = get_record(db, agency_id, record_id)
    if record is None:
        raise RenewalRecordNotFoundError(f"Renewal record {record_id} not found")

    actor = data.updated_by_display_name
    changes = data.model_dump(exclude_unset=True, exclude={"updated_by_display_name"})
    if "current_status" in changes and changes["current_status"] is not None:
        new_status = WorkflowStatus(changes["current_status"]).value
        if new_status != record.current_status:
            _log_status_change(db, record, record.current_status, new_status, actor)
        record.current_status = new_status
    if "is_priority" in changes and changes["is_priority"] is not None:
        if changes["is_priority"] != record.is_priority:
            subject = "Marked as priority" if changes["is_priority"] else "Priority removed"
            _log_activity(db, record, RenewalActivityType.PRIORITY_CHANGE, subject, actor)
        record.is_priority = changes["is_priority"]
    if "assigned_team_member_id" in changes:
        assignee = changes["assigned_team_member_id"]
        if assignee != record.assigned_team_member_id:
            subject = f"Assigned to {assignee}" if assignee else "Unassigned"
            _log_activity(db, record, RenewalActivityType.ASSIGNMENT, subject, actor)
        record.assigned_team_member_id = assignee
    if "notes" in changes:
        if changes["notes"] != record.notes:
            _log_activity(
                db, record, RenewalActivityType.NOTE, "Notes updated", actor, comments=changes["notes"]
            )
        record.notes = changes["notes"]

    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceFailure("Failed to update renewal record") from e
    db.refresh(record)
    return record


def bulk_update_status(
    db: Session,
    agency_id: UUID,
    ids: Sequence[UUID],
    status: WorkflowStatus,
    display_name: str | None = None,
) -> int:
    records = (
        db.execute(
            select(RenewalRecord).where(
                RenewalRecord.agency_id == agency_id,
                RenewalRecord.id.in_(list(ids)),
            )
        )
        .scalars()
        .all()
    )
    for record in records:
        if record.current_status != status.value:
            _log_status_change(db, record, record.current_status, status.value, display_name)
        record.current_status = status.value
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceFailure("Failed to update renewal records") from e
    return len(records)


def bulk_delete(db: Session, agency_id: UUID, ids: Sequence[UUID]) -> int:
    """Hard delete records the user chose to remove (agency-scoped)."""
    try:
        result = db.execute(
            delete(RenewalRecord)
            .where(
                RenewalRecord.agency_id == agency_id,
                RenewalRecord.id.in_(list(ids)),
            )
            .execution_options(synchronize_session="fetch")
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceFailure("Failed to delete renewal records") from e
    return result.rowcount or 0
