"""Filter / sort / paginate engine for the renewals list.

Works on any in-memory collection of record-like objects (ORM rows or read
schemas) and never mutates them. Unknown sort columns and uninterpretable
filter values degrade to no-ops so the list always renders.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Generic, Iterable, Sequence, TypeVar
from uuid import UUID

from renewals.core.config import settings
from renewals.db.enums import BundledStatus, RenewalStatus, SortDirection, WorkflowStatus
from renewals.schemas.renewal import (
    UNASSIGNED,
    ChartDay,
    RenewalChartData,
    RenewalFilterSpec,
    SortCriterion,
)
from renewals.services.renewal_classifier import (
    bundled_filter_value,
    is_first_term_renewal,
    to_date,
)

T = TypeVar("T")

BUNDLED_RANK = {
    BundledStatus.YES.value: 2,
    BundledStatus.NO.value: 1,
    BundledStatus.NOT_APPLICABLE.value: 0,
}

# Monday first, as shown in the day-of-week chart
DAY_OF_WEEK_ORDER = [1, 2, 3, 4, 5, 6, 0]


def day_of_week_index(value: date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (value.weekday() + 1) % 7


def _epoch_ms(value: Any) -> int:
    effective = to_date(value)
    if effective is None:
        return 0
    moment = datetime.combine(effective, time.min, tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


def _number(value: Any) -> Any:
    return 0 if value is None else value


def _text(value: Any) -> str:
    return (value or "").lower()


def _full_name(record: Any) -> str:
    return f"{record.first_name or ''} {record.last_name or ''}"


# =============================================================================
# Filtering
# =============================================================================


def is_priority_candidate(record: Any, threshold: float | None = None) -> bool:
    """
    Manually starred, or inferred to need attention: a premium increase above
    the priority threshold, a "Renewal Not Taken" status, or never contacted.
    """
    if threshold is None:
        threshold = settings.PRIORITY_PREMIUM_CHANGE_THRESHOLD
    percent = record.premium_change_percent
    return (
        record.is_priority is True
        or (percent is not None and percent > threshold)
        or record.renewal_status == RenewalStatus.RENEWAL_NOT_TAKEN.value
        or record.current_status == WorkflowStatus.UNCONTACTED.value
    )


def _status_value(value: Any) -> str:
    return value.value if isinstance(value, WorkflowStatus) else str(value)


def _assignee_predicate(value: str | None) -> Callable[[Any], bool] | None:
    if not value:
        return None
    if value == UNASSIGNED:
        return lambda r: r.assigned_team_member_id is None
    try:
        member_id = UUID(value)
    except ValueError:
        return None
    return lambda r: r.assigned_team_member_id == member_id


def build_predicates(filters: RenewalFilterSpec) -> list[Callable[[Any], bool]]:
    """One predicate per enabled filter."""
    predicates: list[Callable[[Any], bool]] = []

    if filters.current_status:
        statuses = {_status_value(s) for s in filters.current_status}
        predicates.append(lambda r: _status_value(r.current_status) in statuses)

    if filters.renewal_status:
        carrier_statuses = set(filters.renewal_status)
        predicates.append(lambda r: r.renewal_status in carrier_statuses)

    if filters.account_type:
        account_types = set(filters.account_type)
        predicates.append(lambda r: r.account_type in account_types)

    assignee = _assignee_predicate(filters.assigned_team_member_id)
    if assignee is not None:
        predicates.append(assignee)

    if filters.search:
        needle = filters.search.strip().lower()
        if needle:
            predicates.append(
                lambda r: needle in _full_name(r).lower()
                or needle in _text(r.policy_number)
                or needle in _text(r.email)
                or needle in _text(r.phone)
            )

    bundled = bundled_filter_value(filters.bundled_status)
    if bundled is not None:
        predicates.append(lambda r: r.multi_line_indicator == bundled.value)

    if filters.product_name:
        predicates.append(lambda r: r.product_name == filters.product_name)

    if filters.date_range_start:
        start = filters.date_range_start
        predicates.append(lambda r: (to_date(r.renewal_effective_date) or date.min) >= start)

    if filters.date_range_end:
        end = filters.date_range_end
        predicates.append(lambda r: (to_date(r.renewal_effective_date) or date.max) <= end)

    if filters.chart_date is not None:
        chart_date = filters.chart_date
        predicates.append(lambda r: to_date(r.renewal_effective_date) == chart_date)

    if filters.chart_day_of_week is not None:
        day_index = filters.chart_day_of_week

        def matches_day(record: Any) -> bool:
            effective = to_date(record.renewal_effective_date)
            return effective is not None and day_of_week_index(effective) == day_index

        predicates.append(matches_day)

    if filters.priority_only:
        predicates.append(is_priority_candidate)

    if filters.hide_renewal_taken:
        predicates.append(lambda r: r.renewal_status != RenewalStatus.RENEWAL_TAKEN.value)

    if filters.hide_in_active_audit and filters.active_audit_policies:
        audited = filters.active_audit_policies
        predicates.append(lambda r: r.policy_number not in audited)

    if filters.first_term_only:
        predicates.append(
            lambda r: is_first_term_renewal(
                r.product_code, r.original_year, r.renewal_effective_date
            )
        )

    return predicates


def apply_filters(records: Iterable[T], filters: RenewalFilterSpec) -> list[T]:
    predicates = build_predicates(filters)
    return [r for r in records if all(p(r) for p in predicates)]


# =============================================================================
# Sorting
# =============================================================================

SORT_VALUE_GETTERS: dict[str, Callable[[Any], Any]] = {
    "renewal_effective_date": lambda r: _epoch_ms(r.renewal_effective_date),
    "premium_change_percent": lambda r: _number(r.premium_change_percent),
    "first_name": lambda r: _full_name(r).lower(),
    "premium_new": lambda r: _number(r.premium_new),
    "product_name": lambda r: _text(r.product_name),
    "current_status": lambda r: _text(_status_value(r.current_status) if r.current_status else None),
    "renewal_status": lambda r: _text(r.renewal_status),
    "amount_due": lambda r: _number(r.amount_due),
    "multi_line_indicator": lambda r: BUNDLED_RANK.get(r.multi_line_indicator, 0),
}


def _cmp(a: Any, b: Any) -> int:
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def compare_by_column(a: Any, b: Any, column: str) -> int:
    """Compare two records on one column; unknown columns compare equal."""
    getter = SORT_VALUE_GETTERS.get(column)
    if getter is None:
        return 0
    return _cmp(getter(a), getter(b))


def compare_default(a: Any, b: Any) -> int:
    """Effective date ascending, then id (lexical) as the final tiebreak."""
    result = _cmp(_epoch_ms(a.renewal_effective_date), _epoch_ms(b.renewal_effective_date))
    if result:
        return result
    return _cmp(str(a.id), str(b.id))


def make_comparator(
    sort: Sequence[SortCriterion],
    priority_first: bool = False,
) -> Callable[[Any, Any], int]:
    def compare(a: Any, b: Any) -> int:
        if priority_first:
            # Starred records lead only while the priority-only view is on
            result = _cmp(1 if b.is_priority else 0, 1 if a.is_priority else 0)
            if result:
                return result

        for criterion in sort:
            result = compare_by_column(a, b, criterion.column)
            if result:
                return -result if criterion.direction == SortDirection.DESC else result

        return compare_default(a, b)

    return compare


def sort_records(
    records: Iterable[T],
    sort: Sequence[SortCriterion] = (),
    priority_first: bool = False,
) -> list[T]:
    """Total, deterministic ordering: re-sorting sorted output never changes it."""
    return sorted(records, key=functools.cmp_to_key(make_comparator(sort, priority_first)))


def query(
    records: Iterable[T],
    filters: RenewalFilterSpec | None = None,
    sort: Sequence[SortCriterion] = (),
) -> list[T]:
    """Visible, ordered subset of records for the given filters and sort."""
    filters = filters or RenewalFilterSpec()
    visible = apply_filters(records, filters)
    return sort_records(visible, sort, priority_first=filters.priority_only)


# =============================================================================
# Click-to-sort policy
# =============================================================================


def apply_sort_click(
    criteria: Sequence[SortCriterion],
    column: str,
    additive: bool = False,
) -> list[SortCriterion]:
    """
    Next sort criteria after a header click.

    - Column already sorted asc -> desc (same position)
    - Column already sorted desc -> removed
    - New column with modifier (shift-click) while sorted -> appended asc
    - New column otherwise -> replaces all criteria with asc
    """
    current = list(criteria)
    for index, existing in enumerate(current):
        if existing.column != column:
            continue
        if existing.direction == SortDirection.ASC:
            current[index] = SortCriterion(column=column, direction=SortDirection.DESC)
            return current
        return current[:index] + current[index + 1 :]

    if additive and current:
        return current + [SortCriterion(column=column, direction=SortDirection.ASC)]
    return [SortCriterion(column=column, direction=SortDirection.ASC)]


# =============================================================================
# Pagination
# =============================================================================


@dataclass
class Page(Generic[T]):
    rows: list[T]
    total_count: int
    page: int
    page_size: int

    @property
    def pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return (self.total_count + self.page_size - 1) // self.page_size


def paginate(rows: Sequence[T], page: int, page_size: int) -> Page[T]:
    """1-indexed page of an already filtered and sorted sequence."""
    page = max(page, 1)
    page_size = max(page_size, 1)
    offset = (page - 1) * page_size
    return Page(
        rows=list(rows[offset : offset + page_size]),
        total_count=len(rows),
        page=page,
        page_size=page_size,
    )


# =============================================================================
# Indicator counts and chart data
# =============================================================================


def count_hidden_renewal_taken(records: Iterable[Any]) -> int:
    return sum(1 for r in records if r.renewal_status == RenewalStatus.RENEWAL_TAKEN.value)


def count_in_active_audit(records: Iterable[Any], audit_policies: frozenset[str] | set[str]) -> int:
    return sum(1 for r in records if r.policy_number in audit_policies)


def build_chart_data(
    effective_dates: Iterable[Any],
    today: date | None = None,
    window_days: int | None = None,
) -> RenewalChartData:
    """
    Renewal counts per day for the trailing window ending today, plus the
    same days regrouped by weekday (Monday first).
    """
    today = today or date.today()
    window_days = window_days or settings.CHART_WINDOW_DAYS

    counts: dict[date, int] = {}
    for value in effective_dates:
        effective = to_date(value)
        if effective is not None:
            counts[effective] = counts.get(effective, 0) + 1

    days = []
    for offset in range(window_days - 1, -1, -1):
        day = today - timedelta(days=offset)
        days.append(ChartDay(effective_date=day, day_index=day_of_week_index(day), count=counts.get(day, 0)))

    by_day_of_week = sorted(days, key=lambda d: DAY_OF_WEEK_ORDER.index(d.day_index))
    average = sum(d.count for d in days) / len(days) if days else 0.0
    return RenewalChartData(days=days, by_day_of_week=by_day_of_week, average=average)
