"""SQLAlchemy ORM models for renewal tracking."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from renewals.db.base import Base
from renewals.db.enums import DEFAULT_WORKFLOW_STATUS, BundledStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RenewalUpload(Base):
    """
    One ingested renewal report.

    Append-only: created in the same transaction as the reconciliation it
    triggers and never modified afterwards.
    """

    __tablename__ = "renewal_uploads"
    __table_args__ = (
        Index("idx_renewal_uploads_agency_created", "agency_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    agency_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    uploaded_by_display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    record_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    date_range_start: Mapped[date | None] = mapped_column(nullable=True)
    date_range_end: Mapped[date | None] = mapped_column(nullable=True)

    # Reconciliation summary
    new_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    dropped_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    auto_promoted_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        default=_utcnow, server_default=func.now(), nullable=False
    )


class RenewalRecord(Base):
    """
    One tracked policy renewal opportunity.

    Natural key: (agency_id, policy_number, renewal_effective_date).
    Records missing from the latest report for their window are marked
    dropped (dropped_from_report_at) and kept until a user resolves them;
    a record that reappears in a later report is revived in place, so the
    id and workflow fields survive across uploads.
    """

    __tablename__ = "renewal_records"
    __table_args__ = (
        UniqueConstraint(
            "agency_id",
            "policy_number",
            "renewal_effective_date",
            name="uq_renewal_record_policy_effective",
        ),
        Index("idx_renewal_records_agency_effective", "agency_id", "renewal_effective_date"),
        Index("idx_renewal_records_agency_status", "agency_id", "current_status"),
        Index("idx_renewal_records_agency_dropped", "agency_id", "dropped_from_report_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    agency_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    policy_number: Mapped[str] = mapped_column(String(100), nullable=False)
    renewal_effective_date: Mapped[date] = mapped_column(nullable=False)

    # Customer
    first_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    phone_alt: Mapped[str | None] = mapped_column(String(50), nullable=True)
    zip_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    state: Mapped[str | None] = mapped_column(String(50), nullable=True)
    household_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Policy (from the carrier report)
    product_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    product_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    original_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    agent_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    account_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    carrier_status: Mapped[str | None] = mapped_column(String(100), nullable=True)
    renewal_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    premium_old: Mapped[Decimal | None] = mapped_column(nullable=True)
    premium_new: Mapped[Decimal | None] = mapped_column(nullable=True)
    premium_change_dollars: Mapped[Decimal | None] = mapped_column(nullable=True)
    premium_change_percent: Mapped[Decimal | None] = mapped_column(nullable=True)
    amount_due: Mapped[Decimal | None] = mapped_column(nullable=True)
    easy_pay: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    multi_line_indicator: Mapped[str] = mapped_column(
        String(10), nullable=False, default=BundledStatus.NOT_APPLICABLE.value
    )
    item_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    years_prior_insurance: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Workflow (owned by the agency, never touched by reconciliation)
    current_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DEFAULT_WORKFLOW_STATUS.value
    )
    is_priority: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    assigned_team_member_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    auto_resolved_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Lineage
    upload_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("renewal_uploads.id", ondelete="SET NULL"), nullable=True
    )
    last_upload_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("renewal_uploads.id", ondelete="SET NULL"), nullable=True
    )
    dropped_from_report_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=_utcnow, onupdate=_utcnow, server_default=func.now(), nullable=False
    )

    activities: Mapped[list["RenewalActivity"]] = relationship(
        back_populates="record",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_dropped(self) -> bool:
        return self.dropped_from_report_at is not None


class RenewalActivity(Base):
    """Append-only timeline entry for a renewal record."""

    __tablename__ = "renewal_activities"
    __table_args__ = (
        Index("idx_renewal_activities_record", "renewal_record_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    renewal_record_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("renewal_records.id", ondelete="CASCADE"), nullable=False
    )
    agency_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    activity_type: Mapped[str] = mapped_column(String(30), nullable=False)
    subject: Mapped[str | None] = mapped_column(String(255), nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by_display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=_utcnow, server_default=func.now(), nullable=False
    )

    record: Mapped[RenewalRecord] = relationship(back_populates="activities")
