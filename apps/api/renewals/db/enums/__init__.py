"""Enum definitions for application constants."""

from renewals.db.enums.renewals import (
    AutoResolvedReason,
    BundledStatus,
    PremiumChangeBucket,
    RenewalActivityType,
    RenewalStatus,
    SortDirection,
    WorkflowStatus,
)

DEFAULT_WORKFLOW_STATUS = WorkflowStatus.UNCONTACTED

__all__ = [
    "AutoResolvedReason",
    "BundledStatus",
    "DEFAULT_WORKFLOW_STATUS",
    "PremiumChangeBucket",
    "RenewalActivityType",
    "RenewalStatus",
    "SortDirection",
    "WorkflowStatus",
]
