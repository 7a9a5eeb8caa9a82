"""Reconcile an uploaded renewal report against the tracked records.

Pure diffing: given the rows of a new upload and the records currently
tracked for the same agency, work out which records the upload confirms,
which rows are new, which tracked records the report no longer contains,
and which previously dropped records came back. Applying the plan to the
database is renewal_service's job.

Records are matched on the natural key (policy_number,
renewal_effective_date) and only within the upload's date window: a report
covering 2024-03-01..2024-03-15 says nothing about renewals outside it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Iterable, Mapping, Protocol, Sequence
from uuid import UUID

from pydantic import ValidationError

from renewals.schemas.renewal import RenewalRowIn
from renewals.services.renewal_classifier import to_date

logger = logging.getLogger(__name__)

REQUIRED_ROW_FIELDS = ("policy_number", "renewal_effective_date")

NaturalKey = tuple[str, date]


class MalformedRowError(ValueError):
    """An upload row is missing or has an invalid natural-key field."""

    def __init__(self, row: int, errors: list[str], policy_number: str | None = None):
        self.row = row
        self.errors = errors
        self.policy_number = policy_number
        super().__init__(f"Row {row}: {'; '.join(errors)}")


class TrackedRecord(Protocol):
    """The attributes reconciliation reads from an existing record."""

    id: UUID
    agency_id: UUID
    policy_number: str
    renewal_effective_date: date
    dropped_from_report_at: datetime | None


# =============================================================================
# Date window
# =============================================================================


@dataclass(frozen=True)
class DateWindow:
    """Inclusive range of renewal effective dates covered by one upload."""

    start: date
    end: date

    @classmethod
    def from_rows(cls, rows: Iterable[RenewalRowIn]) -> "DateWindow | None":
        dates = sorted(row.renewal_effective_date for row in rows)
        if not dates:
            return None
        return cls(start=dates[0], end=dates[-1])

    def contains(self, value: Any) -> bool:
        effective = to_date(value)
        if effective is None:
            return False
        return self.start <= effective <= self.end

    @classmethod
    def covering(
        cls,
        rows: Iterable[RenewalRowIn],
        start: date | None = None,
        end: date | None = None,
    ) -> "DateWindow | None":
        """
        Window for an upload: the declared report range, widened to include
        every valid row. Without valid rows there is no window.
        """
        from_rows = cls.from_rows(rows)
        if from_rows is None:
            return None
        return cls(
            start=min(start, from_rows.start) if start else from_rows.start,
            end=max(end, from_rows.end) if end else from_rows.end,
        )


# =============================================================================
# Row validation
# =============================================================================


@dataclass
class RowError:
    row: int  # 1-indexed position in the upload
    errors: list[str]
    policy_number: str | None = None


def _raw_value(raw: Mapping[str, Any], field_name: str) -> Any:
    camel = "".join(
        part if i == 0 else part.capitalize() for i, part in enumerate(field_name.split("_"))
    )
    if field_name in raw:
        return raw[field_name]
    return raw.get(camel)


def _format_error(err: Mapping[str, Any]) -> str:
    location = ".".join(str(p) for p in err["loc"])
    return f"{location}: {err['msg']}" if location else err["msg"]


def validate_row(raw: Mapping[str, Any] | RenewalRowIn, row_number: int) -> RenewalRowIn:
    """
    Validate one untyped upload row.

    Raises:
        MalformedRowError if a natural-key field is missing or the row fails validation
    """
    if isinstance(raw, RenewalRowIn):
        return raw
    if not isinstance(raw, Mapping):
        raise MalformedRowError(row_number, ["Row is not an object"])

    missing = [
        name
        for name in REQUIRED_ROW_FIELDS
        if _raw_value(raw, name) is None or str(_raw_value(raw, name)).strip() == ""
    ]
    policy_number = _raw_value(raw, "policy_number")
    policy_number = str(policy_number).strip() if policy_number else None
    if missing:
        raise MalformedRowError(
            row_number,
            [f"Missing required field: {name}" for name in missing],
            policy_number=policy_number,
        )

    try:
        return RenewalRowIn.model_validate(dict(raw))
    except ValidationError as e:
        raise MalformedRowError(
            row_number,
            [_format_error(err) for err in e.errors()],
            policy_number=policy_number,
        ) from e


# =============================================================================
# Reconciliation
# =============================================================================


@dataclass
class ConfirmedMatch:
    """An existing record that the new upload still contains."""

    record: Any
    row: RenewalRowIn


@dataclass
class ReconciliationPlan:
    """Outcome of diffing one upload against the tracked records."""

    agency_id: UUID
    window: DateWindow | None
    dropped_at: datetime
    to_insert: list[RenewalRowIn] = field(default_factory=list)
    to_confirm: list[ConfirmedMatch] = field(default_factory=list)
    to_mark_dropped: list[Any] = field(default_factory=list)
    to_unmark_dropped: list[Any] = field(default_factory=list)
    # Already dropped by an earlier upload and still absent: left as they are
    still_dropped: list[Any] = field(default_factory=list)
    rejected: list[RowError] = field(default_factory=list)
    duplicate_rows: int = 0

    def summary(self) -> dict[str, int]:
        return {
            "new": len(self.to_insert),
            "confirmed": len(self.to_confirm),
            "dropped": len(self.to_mark_dropped),
            "restored": len(self.to_unmark_dropped),
            "still_dropped": len(self.still_dropped),
            "errors": len(self.rejected),
            "duplicates": self.duplicate_rows,
        }


def natural_key(policy_number: str, effective_date: Any) -> NaturalKey | None:
    effective = to_date(effective_date)
    if not policy_number or effective is None:
        return None
    return (policy_number.strip(), effective)


def validate_rows(
    incoming_rows: Sequence[Mapping[str, Any] | RenewalRowIn],
) -> tuple[list[RenewalRowIn], list[RowError]]:
    """Validate every row; malformed rows are collected, never fatal."""
    valid: list[RenewalRowIn] = []
    rejected: list[RowError] = []
    for row_number, raw in enumerate(incoming_rows, start=1):
        try:
            valid.append(validate_row(raw, row_number))
        except MalformedRowError as e:
            rejected.append(
                RowError(row=e.row, errors=e.errors, policy_number=e.policy_number)
            )
    return valid, rejected


def reconcile(
    agency_id: UUID,
    date_range_key: DateWindow | None,
    incoming_rows: Sequence[Mapping[str, Any] | RenewalRowIn],
    existing_active_records: Iterable[TrackedRecord],
    now: datetime | None = None,
) -> ReconciliationPlan:
    """
    Diff an upload against the tracked records of the same agency and window.

    existing_active_records are the records still tracked (not deleted) for
    the agency, dropped ones included; records outside the window or owned
    by another agency are ignored. date_range_key is the range the report
    covers (widened to include every valid row); when it is None the window
    is the min/max of the valid rows. Without valid rows nothing is dropped.

    The plan never loses a record: every in-window existing record ends up
    in exactly one of to_confirm, to_mark_dropped or still_dropped.
    """
    dropped_at = now or datetime.now(timezone.utc)
    valid_rows, rejected = validate_rows(incoming_rows)
    if date_range_key is not None:
        window = DateWindow.covering(valid_rows, date_range_key.start, date_range_key.end)
    else:
        window = DateWindow.from_rows(valid_rows)

    plan = ReconciliationPlan(
        agency_id=agency_id,
        window=window,
        dropped_at=dropped_at,
        rejected=rejected,
    )

    incoming: dict[NaturalKey, RenewalRowIn] = {}
    for row in valid_rows:
        if row.natural_key in incoming:
            plan.duplicate_rows += 1
        incoming[row.natural_key] = row  # Last occurrence wins

    existing: dict[NaturalKey, Any] = {}
    if window is not None:
        for record in existing_active_records:
            if record.agency_id != agency_id:
                continue
            if not window.contains(record.renewal_effective_date):
                continue
            key = natural_key(record.policy_number, record.renewal_effective_date)
            if key is None:
                continue
            if key in existing:
                logger.warning(
                    "Duplicate tracked renewal record for one natural key",
                    extra={"agency_id": str(agency_id), "record_id": str(record.id)},
                )
                continue
            existing[key] = record

    for key, row in incoming.items():
        record = existing.get(key)
        if record is None:
            plan.to_insert.append(row)
            continue
        plan.to_confirm.append(ConfirmedMatch(record=record, row=row))
        if record.dropped_from_report_at is not None:
            plan.to_unmark_dropped.append(record)

    for key, record in existing.items():
        if key in incoming:
            continue
        if record.dropped_from_report_at is None:
            plan.to_mark_dropped.append(record)
        else:
            plan.still_dropped.append(record)

    if plan.rejected:
        logger.info(
            "Rejected %d malformed renewal rows",
            len(plan.rejected),
            extra={"agency_id": str(agency_id)},
        )
    return plan
