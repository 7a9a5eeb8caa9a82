"""
Renewals API endpoints.

Upload reconciliation, the filtered/sorted renewals list, the dropped
records view, dashboard data and workflow edits. Every endpoint is scoped
to the agency resolved by get_agency_id.
"""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from renewals.core.deps import get_agency_id, get_db
from renewals.db.enums import WorkflowStatus
from renewals.schemas.renewal import (
    RenewalBulkDeleteRequest,
    RenewalBulkResult,
    RenewalBulkUpdateRequest,
    RenewalChartData,
    RenewalFilterSpec,
    RenewalListResponse,
    RenewalRecordRead,
    RenewalRecordUpdate,
    RenewalStats,
    RenewalUploadRead,
    RenewalUploadRequest,
    RenewalUploadResult,
    RowErrorRead,
    SortCriterion,
)
from renewals.services import renewal_service
from renewals.utils.pagination import PaginationParams, get_pagination, page_count


router = APIRouter(prefix="/renewals", tags=["renewals"])

MAX_REPORTED_ROW_ERRORS = 100


def get_filter_spec(
    priority_only: bool = False,
    hide_renewal_taken: bool = False,
    hide_in_active_audit: bool = False,
    active_audit_policy: list[str] | None = Query(None),
    first_term_only: bool = False,
    chart_date: date | None = None,
    chart_day_of_week: int | None = None,
    search: str | None = None,
    bundled_status: str | None = None,
    product_name: str | None = None,
    status_filter: list[str] | None = Query(None, alias="status"),
    renewal_status: list[str] | None = Query(None),
    account_type: list[str] | None = Query(None),
    assigned_team_member_id: str | None = None,
    date_range_start: date | None = None,
    date_range_end: date | None = None,
) -> RenewalFilterSpec:
    """Build the filter spec from query params; uninterpretable values are dropped."""
    known = {w.value for w in WorkflowStatus}
    known_statuses = [WorkflowStatus(s) for s in status_filter or [] if s in known]
    if chart_day_of_week is not None and not 0 <= chart_day_of_week <= 6:
        chart_day_of_week = None
    return RenewalFilterSpec(
        priority_only=priority_only,
        hide_renewal_taken=hide_renewal_taken,
        hide_in_active_audit=hide_in_active_audit,
        active_audit_policies=frozenset(active_audit_policy or []),
        first_term_only=first_term_only,
        chart_date=chart_date,
        chart_day_of_week=chart_day_of_week,
        search=search,
        bundled_status=bundled_status,
        product_name=product_name,
        current_status=known_statuses or None,
        renewal_status=renewal_status or None,
        account_type=account_type or None,
        assigned_team_member_id=assigned_team_member_id,
        date_range_start=date_range_start,
        date_range_end=date_range_end,
    )


def get_sort_criteria(
    sort: list[str] | None = Query(None, description="column or column:desc, repeatable"),
) -> list[SortCriterion]:
    return [SortCriterion.parse(raw) for raw in sort or [] if raw.strip()]


# =============================================================================
# Uploads
# =============================================================================


@router.post("/uploads", response_model=RenewalUploadResult, status_code=status.HTTP_201_CREATED)
def upload_renewals(
    body: RenewalUploadRequest,
    agency_id: UUID = Depends(get_agency_id),
    db: Session = Depends(get_db),
):
    """Reconcile a parsed renewal report against the tracked records."""
    try:
        result = renewal_service.process_upload(
            db=db,
            agency_id=agency_id,
            rows=body.records,
            filename=body.filename,
            uploaded_by_display_name=body.uploaded_by_display_name,
            date_range_start=body.date_range_start,
            date_range_end=body.date_range_end,
        )
    except (renewal_service.EmptyUploadError, renewal_service.InvalidDateRangeError) as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except renewal_service.ConcurrentUploadConflict as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except renewal_service.PersistenceFailure as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    return RenewalUploadResult(
        upload_id=result.upload.id,
        new_count=result.new_count,
        updated_count=result.updated_count,
        dropped_count=result.dropped_count,
        restored_count=result.restored_count,
        error_count=result.error_count,
        auto_promoted_count=result.auto_promoted_count,
        date_range_start=result.upload.date_range_start,
        date_range_end=result.upload.date_range_end,
        errors=[
            RowErrorRead(row=e.row, policy_number=e.policy_number, errors=e.errors)
            for e in result.errors[:MAX_REPORTED_ROW_ERRORS]
        ],
    )


@router.get("/uploads", response_model=list[RenewalUploadRead])
def list_uploads(
    limit: int = Query(20, ge=1, le=100),
    agency_id: UUID = Depends(get_agency_id),
    db: Session = Depends(get_db),
):
    """List recent uploads for the agency."""
    return renewal_service.list_uploads(db, agency_id, limit=limit)


@router.get("/uploads/latest", response_model=RenewalUploadRead | None)
def latest_upload(
    agency_id: UUID = Depends(get_agency_id),
    db: Session = Depends(get_db),
):
    return renewal_service.get_latest_upload(db, agency_id)


# =============================================================================
# Lists and dashboard
# =============================================================================


@router.get("", response_model=RenewalListResponse)
def list_renewals(
    filters: RenewalFilterSpec = Depends(get_filter_spec),
    sort: list[SortCriterion] = Depends(get_sort_criteria),
    pagination: PaginationParams = Depends(get_pagination),
    agency_id: UUID = Depends(get_agency_id),
    db: Session = Depends(get_db),
):
    """Non-dropped renewals after filters, multi-column sort and pagination."""
    page = renewal_service.query_records(
        db,
        agency_id,
        filters,
        sort,
        page=pagination.page,
        page_size=pagination.per_page,
    )
    return RenewalListResponse(
        items=[RenewalRecordRead.model_validate(r) for r in page.rows],
        total=page.total_count,
        page=page.page,
        per_page=page.page_size,
        pages=page.pages,
    )


@router.get("/dropped", response_model=RenewalListResponse)
def list_dropped_renewals(
    include_resolved: bool = False,
    pagination: PaginationParams = Depends(get_pagination),
    agency_id: UUID = Depends(get_agency_id),
    db: Session = Depends(get_db),
):
    """Records missing from the latest report for their date range."""
    records, total = renewal_service.list_dropped(
        db,
        agency_id,
        page=pagination.page,
        page_size=pagination.per_page,
        unresolved_only=not include_resolved,
    )
    return RenewalListResponse(
        items=[RenewalRecordRead.model_validate(r) for r in records],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
        pages=page_count(total, pagination.per_page),
    )


@router.get("/stats", response_model=RenewalStats)
def renewal_stats(
    agency_id: UUID = Depends(get_agency_id),
    db: Session = Depends(get_db),
):
    return renewal_service.get_stats(db, agency_id)


@router.get("/product-names", response_model=list[str])
def product_names(
    agency_id: UUID = Depends(get_agency_id),
    db: Session = Depends(get_db),
):
    return renewal_service.list_product_names(db, agency_id)


@router.get("/chart", response_model=RenewalChartData)
def chart_data(
    agency_id: UUID = Depends(get_agency_id),
    db: Session = Depends(get_db),
):
    """Renewal counts for the trailing chart window, by date and by weekday."""
    return renewal_service.get_chart_data(db, agency_id)


# =============================================================================
# Workflow edits
# =============================================================================


@router.post("/bulk-update", response_model=RenewalBulkResult)
def bulk_update(
    body: RenewalBulkUpdateRequest,
    agency_id: UUID = Depends(get_agency_id),
    db: Session = Depends(get_db),
):
    try:
        affected = renewal_service.bulk_update_status(
            db, agency_id, body.ids, body.current_status, body.updated_by_display_name
        )
    except renewal_service.PersistenceFailure as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return RenewalBulkResult(affected=affected)


@router.post("/bulk-delete", response_model=RenewalBulkResult)
def bulk_delete(
    body: RenewalBulkDeleteRequest,
    agency_id: UUID = Depends(get_agency_id),
    db: Session = Depends(get_db),
):
    try:
        affected = renewal_service.bulk_delete(db, agency_id, body.ids)
    except renewal_service.PersistenceFailure as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return RenewalBulkResult(affected=affected)


@router.get("/{record_id}", response_model=RenewalRecordRead)
def get_renewal(
    record_id: UUID,
    agency_id: UUID = Depends(get_agency_id),
    db: Session = Depends(get_db),
):
    record = renewal_service.get_record(db, agency_id, record_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Renewal record not found")
    return record


@router.patch("/{record_id}", response_model=RenewalRecordRead)
def update_renewal(
    record_id: UUID,
    body: RenewalRecordUpdate,
    agency_id: UUID = Depends(get_agency_id),
    db: Session = Depends(get_db),
):
    """Update priority, workflow status, assignment or notes."""
    try:
        return renewal_service.update_record(db, agency_id, record_id, body)
    except renewal_service.RenewalRecordNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Renewal record not found")
    except renewal_service.PersistenceFailure as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
