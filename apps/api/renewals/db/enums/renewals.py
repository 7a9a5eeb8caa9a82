"""Renewal-related enums."""

from enum import Enum


class WorkflowStatus(str, Enum):
    """Agency-side follow-up status of a renewal record (the list tabs)."""

    UNCONTACTED = "uncontacted"
    PENDING = "pending"
    SUCCESS = "success"
    UNSUCCESSFUL = "unsuccessful"

    @classmethod
    def open_statuses(cls) -> list[str]:
        """Statuses that still need agency follow-up."""
        return [cls.UNCONTACTED.value, cls.PENDING.value]


class RenewalStatus(str, Enum):
    """Carrier-reported renewal status as it appears in the report."""

    RENEWAL_TAKEN = "Renewal Taken"
    RENEWAL_NOT_TAKEN = "Renewal Not Taken"
    PENDING = "Pending"


class BundledStatus(str, Enum):
    """Multi-line (bundling) indicator from the report."""

    YES = "yes"
    NO = "no"
    NOT_APPLICABLE = "n/a"


class PremiumChangeBucket(str, Enum):
    """Display bucket for the premium change percentage."""

    HIGH = "high"  # > 15%
    MODERATE = "moderate"  # 5% < p <= 15%
    MINIMAL = "minimal"  # -5% <= p <= 5%
    DECREASE = "decrease"  # < -5%
    UNKNOWN = "unknown"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class AutoResolvedReason(str, Enum):
    """Why the system (not a user) resolved a record."""

    RENEWAL_TAKEN_DROPPED = "renewal_taken_dropped"


class RenewalActivityType(str, Enum):
    STATUS_CHANGE = "status_change"
    PRIORITY_CHANGE = "priority_change"
    ASSIGNMENT = "assignment"
    NOTE = "note"
