"""Tests for the pure renewal classification helpers."""

from datetime import date, datetime
from decimal import Decimal

import pytest

from renewals.db.enums import BundledStatus, PremiumChangeBucket
from renewals.services.renewal_classifier import (
    bundled_filter_value,
    classify_premium_change_bucket,
    compute_premium_change_dollars,
    compute_premium_change_percent,
    is_first_term_renewal,
    normalize_bundled_status,
    to_date,
)


@pytest.mark.parametrize(
    "percent,expected",
    [
        (20, PremiumChangeBucket.HIGH),
        (15.01, PremiumChangeBucket.HIGH),
        (15, PremiumChangeBucket.MODERATE),
        (5.5, PremiumChangeBucket.MODERATE),
        (5, PremiumChangeBucket.MINIMAL),
        (0, PremiumChangeBucket.MINIMAL),
        (-5, PremiumChangeBucket.MINIMAL),
        (-5.01, PremiumChangeBucket.DECREASE),
        (None, PremiumChangeBucket.UNKNOWN),
        ("not a number", PremiumChangeBucket.UNKNOWN),
        (float("nan"), PremiumChangeBucket.UNKNOWN),
        (float("inf"), PremiumChangeBucket.UNKNOWN),
        (Decimal("NaN"), PremiumChangeBucket.UNKNOWN),
        ("-Infinity", PremiumChangeBucket.UNKNOWN),
    ],
)
def test_premium_change_bucket_boundaries(percent, expected):
    assert classify_premium_change_bucket(percent) == expected


def test_bucket_accepts_decimal_and_string():
    assert classify_premium_change_bucket(Decimal("12.50")) == PremiumChangeBucket.MODERATE
    assert classify_premium_change_bucket("-7") == PremiumChangeBucket.DECREASE


def test_first_term_when_effective_year_follows_original_year():
    assert is_first_term_renewal("AUTO", 2023, date(2024, 6, 1)) is True
    assert is_first_term_renewal("AUTO", "2023", "2024-06-01") is True


def test_first_term_accepts_whole_number_floats_and_decimals():
    assert is_first_term_renewal(None, 2023.0, date(2024, 3, 5)) is True
    assert is_first_term_renewal(None, Decimal("2023"), date(2024, 3, 5)) is True
    assert is_first_term_renewal(None, "2023.0", date(2024, 3, 5)) is True
    assert is_first_term_renewal(None, 2023.5, date(2024, 3, 5)) is False
    assert is_first_term_renewal(None, float("nan"), date(2024, 3, 5)) is False


def test_not_first_term_for_later_renewals_or_missing_data():
    assert is_first_term_renewal("AUTO", 2021, date(2024, 6, 1)) is False
    assert is_first_term_renewal("AUTO", 2024, date(2024, 6, 1)) is False
    assert is_first_term_renewal("AUTO", None, date(2024, 6, 1)) is False
    assert is_first_term_renewal("AUTO", "abc", date(2024, 6, 1)) is False
    assert is_first_term_renewal("AUTO", 2023, None) is False


def test_classification_is_referentially_transparent():
    inputs = [("A", 2023, date(2024, 1, 1)), ("B", 2020, date(2024, 1, 1))]
    first = [is_first_term_renewal(*args) for args in inputs]
    second = [is_first_term_renewal(*args) for args in reversed(inputs)]
    assert first == list(reversed(second))
    assert classify_premium_change_bucket(12) == classify_premium_change_bucket(12)


def test_premium_change_percent_rounds_to_cents():
    assert compute_premium_change_percent("1000", "1050") == Decimal("5.00")
    assert compute_premium_change_percent(300, 400) == Decimal("33.33")


def test_premium_change_percent_none_when_old_missing_or_zero():
    assert compute_premium_change_percent(None, 100) is None
    assert compute_premium_change_percent(0, 100) is None
    assert compute_premium_change_percent(float("nan"), 100) is None
    assert compute_premium_change_percent(100, "Infinity") is None


def test_premium_change_dollars():
    assert compute_premium_change_dollars("900.50", "1000.00") == Decimal("99.50")
    assert compute_premium_change_dollars(None, "1000") is None


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("Yes", BundledStatus.YES),
        ("Y", BundledStatus.YES),
        (True, BundledStatus.YES),
        ("no", BundledStatus.NO),
        ("Monoline", BundledStatus.NO),
        (False, BundledStatus.NO),
        (None, BundledStatus.NOT_APPLICABLE),
        ("", BundledStatus.NOT_APPLICABLE),
        ("maybe", BundledStatus.NOT_APPLICABLE),
    ],
)
def test_normalize_bundled_status(raw, expected):
    assert normalize_bundled_status(raw) == expected


def test_bundled_filter_value_maps_ui_and_stored_values():
    assert bundled_filter_value("bundled") == BundledStatus.YES
    assert bundled_filter_value("Monoline") == BundledStatus.NO
    assert bundled_filter_value("unknown") == BundledStatus.NOT_APPLICABLE
    assert bundled_filter_value("n/a") == BundledStatus.NOT_APPLICABLE
    assert bundled_filter_value("garbage") is None
    assert bundled_filter_value(None) is None


def test_to_date_coercions():
    assert to_date(datetime(2024, 3, 5, 13, 0)) == date(2024, 3, 5)
    assert to_date("2024-03-05T10:00:00Z") == date(2024, 3, 5)
    assert to_date("03/05/2024") is None
    assert to_date(42) is None
