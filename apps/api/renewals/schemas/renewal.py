"""Pydantic schemas for renewal records, uploads and list queries."""

import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from renewals.db.enums import (
    BundledStatus,
    PremiumChangeBucket,
    SortDirection,
    WorkflowStatus,
)
from renewals.services.renewal_classifier import (
    classify_premium_change_bucket,
    compute_premium_change_dollars,
    compute_premium_change_percent,
    is_first_term_renewal,
    normalize_bundled_status,
)

_MONEY_JUNK = re.compile(r"[$,\s%]")

MONEY_FIELDS = (
    "premium_old",
    "premium_new",
    "premium_change_dollars",
    "premium_change_percent",
    "amount_due",
)

# Largest magnitude a Numeric(12, 2) column holds
MAX_STORED_AMOUNT = Decimal("9999999999.99")

# Assignee filter value matching records with no assigned team member
UNASSIGNED = "unassigned"


# =============================================================================
# Upload rows
# =============================================================================


class RenewalRowIn(BaseModel):
    """
    One parsed row of a renewal report.

    Accepts snake_case or camelCase keys (the upload parser emits camelCase).
    policy_number and renewal_effective_date are the natural key and are
    required; everything else is optional and blank strings become None.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    policy_number: str = Field(..., min_length=1, max_length=100)
    renewal_effective_date: date

    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    phone_alt: str | None = None
    zip_code: str | None = None
    city: str | None = None
    state: str | None = None
    household_key: str | None = None

    product_name: str | None = None
    product_code: str | None = None
    original_year: int | None = None
    agent_number: str | None = None
    account_type: str | None = None
    carrier_status: str | None = None
    renewal_status: str | None = None
    premium_old: Decimal | None = None
    premium_new: Decimal | None = None
    premium_change_dollars: Decimal | None = None
    premium_change_percent: Decimal | None = None
    amount_due: Decimal | None = None
    easy_pay: bool = False
    multi_line_indicator: BundledStatus = BundledStatus.NOT_APPLICABLE
    item_count: int | None = None
    years_prior_insurance: int | None = None

    @model_validator(mode="before")
    @classmethod
    def blank_strings_to_none(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {
                key: (value.strip() or None) if isinstance(value, str) else value
                for key, value in data.items()
            }
        return data

    @field_validator(*MONEY_FIELDS, mode="before")
    @classmethod
    def parse_money(cls, value: Any) -> Any:
        if isinstance(value, str):
            cleaned = _MONEY_JUNK.sub("", value)
            if cleaned.startswith("(") and cleaned.endswith(")"):
                cleaned = f"-{cleaned[1:-1]}"
            return cleaned or None
        return value

    @field_validator("multi_line_indicator", mode="before")
    @classmethod
    def parse_bundled(cls, value: Any) -> BundledStatus:
        return normalize_bundled_status(value)

    @field_validator("easy_pay", mode="before")
    @classmethod
    def parse_easy_pay(cls, value: Any) -> bool:
        if value is None:
            return False
        if isinstance(value, str):
            return value.strip().lower() in {"y", "yes", "true", "1"}
        return bool(value)

    @model_validator(mode="after")
    def derive_premium_change(self) -> "RenewalRowIn":
        if self.premium_change_percent is None:
            self.premium_change_percent = compute_premium_change_percent(
                self.premium_old, self.premium_new
            )
        if self.premium_change_dollars is None:
            self.premium_change_dollars = compute_premium_change_dollars(
                self.premium_old, self.premium_new
            )
        for name in MONEY_FIELDS:
            value = getattr(self, name)
            if value is not None and abs(value) > MAX_STORED_AMOUNT:
                raise ValueError(f"{name} out of range: {value}")
        return self

    @property
    def natural_key(self) -> tuple[str, date]:
        return (self.policy_number, self.renewal_effective_date)

    def report_fields(self) -> dict[str, Any]:
        """Report-owned fields (everything except the natural key)."""
        data = self.model_dump(exclude={"policy_number", "renewal_effective_date"})
        data["multi_line_indicator"] = self.multi_line_indicator.value
        return data


class RenewalUploadRequest(BaseModel):
    """Parsed report submitted for reconciliation."""
    filename: str = Field(..., min_length=1, max_length=255)
    uploaded_by_display_name: str | None = Field(None, max_length=255)
    records: list[dict[str, Any]] = Field(default_factory=list)
    # Effective-date range the report covers; defaults to the rows' min/max
    date_range_start: date | None = None
    date_range_end: date | None = None

    @model_validator(mode="after")
    def check_date_range(self) -> "RenewalUploadRequest":
        if self.date_range_start and self.date_range_end and self.date_range_start > self.date_range_end:
            raise ValueError("date_range_start must not be after date_range_end")
        return self


class RowErrorRead(BaseModel):
    row: int
    policy_number: str | None = None
    errors: list[str]


class RenewalUploadResult(BaseModel):
    """Summary counts of one reconciliation run."""
    upload_id: UUID
    new_count: int
    updated_count: int
    dropped_count: int
    restored_count: int
    error_count: int
    auto_promoted_count: int
    date_range_start: date | None
    date_range_end: date | None
    errors: list[RowErrorRead] = Field(default_factory=list)


class RenewalUploadRead(BaseModel):
    id: UUID
    filename: str
    uploaded_by_display_name: str | None
    created_at: datetime
    record_count: int
    date_range_start: date | None
    date_range_end: date | None
    new_count: int
    updated_count: int
    dropped_count: int
    error_count: int
    auto_promoted_count: int

    model_config = {"from_attributes": True}


# =============================================================================
# Records
# =============================================================================


class RenewalRecordRead(BaseModel):
    """Full renewal record with derived view fields."""
    id: UUID
    agency_id: UUID
    policy_number: str
    renewal_effective_date: date

    first_name: str | None
    last_name: str | None
    email: str | None
    phone: str | None
    product_name: str | None
    product_code: str | None
    original_year: int | None
    renewal_status: str | None
    premium_old: Decimal | None
    premium_new: Decimal | None
    premium_change_dollars: Decimal | None
    premium_change_percent: Decimal | None
    amount_due: Decimal | None
    easy_pay: bool
    multi_line_indicator: str

    current_status: WorkflowStatus
    is_priority: bool
    assigned_team_member_id: UUID | None
    notes: str | None
    auto_resolved_reason: str | None

    last_upload_id: UUID | None
    dropped_from_report_at: datetime | None
    is_dropped: bool = False
    created_at: datetime
    updated_at: datetime

    premium_change_bucket: PremiumChangeBucket = PremiumChangeBucket.UNKNOWN
    is_first_term: bool = False

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def derive_view_fields(self) -> "RenewalRecordRead":
        self.premium_change_bucket = classify_premium_change_bucket(self.premium_change_percent)
        self.is_first_term = is_first_term_renewal(
            self.product_code, self.original_year, self.renewal_effective_date
        )
        return self


class RenewalRecordUpdate(BaseModel):
    """Workflow edits from the list/drawer (partial)."""
    is_priority: bool | None = None
    current_status: WorkflowStatus | None = None
    assigned_team_member_id: UUID | None = None
    notes: str | None = Field(None, max_length=5000)
    updated_by_display_name: str | None = Field(None, max_length=255)


class RenewalBulkUpdateRequest(BaseModel):
    ids: list[UUID] = Field(..., min_length=1)
    current_status: WorkflowStatus
    updated_by_display_name: str | None = Field(None, max_length=255)


class RenewalBulkDeleteRequest(BaseModel):
    ids: list[UUID] = Field(..., min_length=1)


class RenewalBulkResult(BaseModel):
    affected: int


class RenewalListResponse(BaseModel):
    """Paginated renewal list."""
    items: list[RenewalRecordRead]
    total: int
    page: int
    per_page: int
    pages: int


class RenewalStats(BaseModel):
    total: int = 0
    uncontacted: int = 0
    pending: int = 0
    success: int = 0
    unsuccessful: int = 0
    dropped_unresolved: int = 0


class ChartDay(BaseModel):
    effective_date: date
    day_index: int  # 0 = Sunday
    count: int


class RenewalChartData(BaseModel):
    days: list[ChartDay]
    by_day_of_week: list[ChartDay]  # Same window, Monday first
    average: float


# =============================================================================
# Query specification
# =============================================================================


class SortCriterion(BaseModel):
    """One (column, direction) pair of a multi-key sort."""
    model_config = ConfigDict(frozen=True)

    column: str
    direction: SortDirection = SortDirection.ASC

    @classmethod
    def parse(cls, raw: str) -> "SortCriterion":
        """Parse 'column' or 'column:desc'; unknown directions fall back to asc."""
        column, _, direction = raw.partition(":")
        try:
            parsed = SortDirection(direction.strip().lower()) if direction else SortDirection.ASC
        except ValueError:
            parsed = SortDirection.ASC
        return cls(column=column.strip(), direction=parsed)


class RenewalFilterSpec(BaseModel):
    """
    Independently togglable list filters; every enabled predicate is ANDed.

    Session-persisted UI toggles (hide taken, priority only, active tab) are
    passed in explicitly on every call.
    """

    priority_only: bool = False
    hide_renewal_taken: bool = False
    hide_in_active_audit: bool = False
    active_audit_policies: frozenset[str] = frozenset()
    first_term_only: bool = False
    chart_date: date | None = None
    chart_day_of_week: int | None = Field(None, ge=0, le=6)  # 0 = Sunday
    search: str | None = None
    bundled_status: str | None = None
    product_name: str | None = None
    current_status: list[WorkflowStatus] | None = None
    renewal_status: list[str] | None = None
    account_type: list[str] | None = None
    assigned_team_member_id: str | None = None  # Member UUID or "unassigned"
    date_range_start: date | None = None
    date_range_end: date | None = None
