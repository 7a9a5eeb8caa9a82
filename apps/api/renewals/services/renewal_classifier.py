"""Pure classification helpers for renewal records.

Nothing here touches the database or raises on bad input: missing or
unparseable values classify to a safe default.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from renewals.db.enums import BundledStatus, PremiumChangeBucket

HIGH_CHANGE_THRESHOLD = 15
MODERATE_CHANGE_THRESHOLD = 5

_BUNDLED_YES = {"yes", "y", "true", "1", "multi", "multi-line", "multiline", "bundled"}
_BUNDLED_NO = {"no", "n", "false", "0", "mono", "monoline", "single", "single-line"}

# UI filter values -> stored multi_line_indicator
BUNDLED_FILTER_VALUES = {
    "bundled": BundledStatus.YES,
    "monoline": BundledStatus.NO,
    "unknown": BundledStatus.NOT_APPLICABLE,
}


def _to_decimal(value: Any) -> Decimal | None:
    """Finite Decimal or None; NaN and infinities count as missing."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return result if result.is_finite() else None


def to_date(value: Any) -> date | None:
    """Coerce a date, datetime or ISO string into a date (None when not possible)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def classify_premium_change_bucket(percent: Any) -> PremiumChangeBucket:
    """
    Bucket a premium change percentage for display.

    high > 15, moderate (5, 15], minimal [-5, 5], decrease < -5,
    unknown when the percentage is missing.
    """
    value = _to_decimal(percent)
    if value is None:
        return PremiumChangeBucket.UNKNOWN
    if value > HIGH_CHANGE_THRESHOLD:
        return PremiumChangeBucket.HIGH
    if value > MODERATE_CHANGE_THRESHOLD:
        return PremiumChangeBucket.MODERATE
    if value >= -MODERATE_CHANGE_THRESHOLD:
        return PremiumChangeBucket.MINIMAL
    return PremiumChangeBucket.DECREASE


def is_first_term_renewal(product_code: Any, original_year: Any, effective_date: Any) -> bool:
    """
    True when this renewal is the policy's first one after inception.

    That is the case when the renewal's effective year is exactly
    original_year + 1. product_code is currently not consulted.
    """
    year = _to_decimal(original_year)
    if year is None or year != year.to_integral_value():
        return False
    effective = to_date(effective_date)
    if effective is None:
        return False
    return effective.year == year + 1


def compute_premium_change_percent(premium_old: Any, premium_new: Any) -> Decimal | None:
    """(new - old) / old * 100, rounded to 2 places; None when old is zero or absent."""
    old = _to_decimal(premium_old)
    new = _to_decimal(premium_new)
    if old is None or new is None or old == 0:
        return None
    try:
        return ((new - old) / old * 100).quantize(Decimal("0.01"))
    except InvalidOperation:
        return None  # Beyond decimal precision


def compute_premium_change_dollars(premium_old: Any, premium_new: Any) -> Decimal | None:
    old = _to_decimal(premium_old)
    new = _to_decimal(premium_new)
    if old is None or new is None:
        return None
    return new - old


def normalize_bundled_status(raw: Any) -> BundledStatus:
    """Normalize a report's multi-line indicator to yes / no / n/a."""
    if isinstance(raw, BundledStatus):
        return raw
    if isinstance(raw, bool):
        return BundledStatus.YES if raw else BundledStatus.NO
    if raw is None:
        return BundledStatus.NOT_APPLICABLE
    value = str(raw).strip().lower()
    if value in _BUNDLED_YES:
        return BundledStatus.YES
    if value in _BUNDLED_NO:
        return BundledStatus.NO
    return BundledStatus.NOT_APPLICABLE


def bundled_filter_value(filter_value: str | None) -> BundledStatus | None:
    """
    Map a bundled filter value (bundled/monoline/unknown, or a stored value)
    to the stored indicator. Unrecognized values return None (no filter).
    """
    if not filter_value:
        return None
    value = filter_value.strip().lower()
    if value in BUNDLED_FILTER_VALUES:
        return BUNDLED_FILTER_VALUES[value]
    try:
        return BundledStatus(value)
    except ValueError:
        return None
