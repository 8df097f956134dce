from datetime import date, datetime

import pytest

from conftest import make_campaign
from inboxkit.results import InvalidWindow, NoData
from inboxkit.timeframes import (
    PREV_YEAR,
    Window,
    aggregate_period,
    comparison_available,
    period_change,
    resolve_window,
    shift_year,
)


def test_trailing_days_and_previous_period():
    resolved = resolve_window("30d", anchor=datetime(2024, 3, 31, 18, 30))

    assert resolved.current.start == datetime(2024, 3, 2)
    assert resolved.current.end.date() == date(2024, 3, 31)
    assert resolved.current.days == 30
    assert resolved.comparison.start.date() == date(2024, 2, 1)
    assert resolved.comparison.end.date() == date(2024, 3, 1)


def test_previous_year_maps_leap_day_to_feb_28():
    resolved = resolve_window("custom", custom_from="2024-02-29", custom_to="2024-02-29", compare_mode=PREV_YEAR)

    assert resolved.comparison.start.date() == date(2023, 2, 28)
    assert shift_year(date(2024, 2, 29)) == date(2023, 2, 28)
    assert shift_year(date(2024, 3, 1)) == date(2023, 3, 1)


def test_all_range_has_no_comparison():
    resolved = resolve_window("all", anchor=datetime(2024, 5, 1), earliest=datetime(2024, 1, 10))

    assert resolved.current.start == datetime(2024, 1, 10)
    assert resolved.comparison is None


def test_inverted_custom_range_is_invalid():
    result = resolve_window("custom", custom_from="2024-03-10", custom_to="2024-03-01")
    assert isinstance(result, InvalidWindow)


def test_empty_dataset_returns_no_data():
    assert isinstance(resolve_window("30d"), NoData)
    assert isinstance(resolve_window("all"), NoData)


def test_zero_day_range_is_invalid():
    assert isinstance(resolve_window("0d", anchor=datetime(2024, 3, 1)), InvalidWindow)


def test_unknown_token_raises():
    with pytest.raises(ValueError):
        resolve_window("fortnight", anchor=datetime(2024, 3, 1))


def test_aggregate_period_is_inclusive_at_both_ends():
    window = Window.for_dates(date(2024, 3, 1), date(2024, 3, 7))
    records = [
        make_campaign("2024-03-01T00:00:00"),
        make_campaign("2024-03-07T23:59:00"),
        make_campaign("2024-03-08T00:00:00"),
    ]

    sums = aggregate_period(records, window)

    assert sums.count == 2
    assert sums.emails_sent == 20_000


def test_comparison_needs_full_coverage():
    records = [make_campaign("2024-02-15T10:00:00"), make_campaign("2024-03-31T10:00:00")]
    comparison = Window.for_dates(date(2024, 2, 1), date(2024, 3, 1))

    assert not comparison_available(records, comparison)
    assert not comparison_available([], comparison)


def test_period_change_for_negative_metric():
    records = [
        make_campaign("2024-02-01T00:00:00", spam_complaints=4),
        make_campaign("2024-03-05T10:00:00", spam_complaints=2),
        make_campaign("2024-03-31T10:00:00", spam_complaints=2),
    ]
    resolved = resolve_window("30d", anchor=datetime(2024, 3, 31, 10))

    change = period_change(records, "spam_rate", resolved)

    assert change.previous_value == pytest.approx(0.04)
    assert change.current_value == pytest.approx(0.02)
    assert change.change_percent == pytest.approx(-50.0)
    assert change.is_positive


def test_period_change_without_baseline_is_neutral():
    records = [make_campaign("2024-03-20T10:00:00")]
    resolved = resolve_window("30d", anchor=datetime(2024, 3, 31))

    change = period_change(records, "revenue", resolved)

    assert change.previous_value is None
    assert change.change_percent == 0.0
