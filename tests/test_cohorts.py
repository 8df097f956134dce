from datetime import date, datetime

import pytest

from conftest import make_subscriber
from inboxkit.analysis.cohorts import (
    AGE_BUCKETS,
    ENGAGEMENT_BUCKETS,
    NOT_SUBSCRIBED,
    SUBSCRIBED,
    consent_group,
    consent_split,
    consent_summary,
    dead_weight_savings,
    engagement_bucket,
    engagement_by_age,
    full_months_between,
    is_dead_weight,
    price_for,
)
from inboxkit.config import DeadWeightThresholds
from inboxkit.results import InsufficientData
from inboxkit.timeframes import Window

ANCHOR = datetime(2024, 6, 30)


def _audience():
    return [
        make_subscriber(consent_raw=" subscribed ", total_orders=2, lifetime_value=300.0, last_open=datetime(2024, 6, 20)),
        make_subscriber(consent_raw="SUBSCRIBED", total_orders=1, lifetime_value=100.0, last_click=datetime(2024, 4, 15)),
        make_subscriber(consent_raw="SUBSCRIBED"),
        make_subscriber(consent_raw="NEVER_SUBSCRIBED", total_orders=1, lifetime_value=50.0),
        make_subscriber(consent_raw=""),
    ]


def test_consent_grouping_uses_raw_text():
    assert consent_group(make_subscriber(consent_raw=" subscribed ")) == SUBSCRIBED
    assert consent_group(make_subscriber(consent_raw="UNSUBSCRIBED")) == NOT_SUBSCRIBED
    assert consent_group(make_subscriber(consent_raw="")) == NOT_SUBSCRIBED


def test_buyer_counts_and_ltv():
    summary = consent_summary(_audience(), ANCHOR)

    buyers = summary["buyers"].group(SUBSCRIBED)
    assert buyers.value == 2
    assert buyers.sample_size == 3
    assert buyers.percent_of_group == pytest.approx(200 / 3)
    assert summary["repeat_buyers"].group(SUBSCRIBED).value == 1
    assert summary["ltv_buyers"].group(SUBSCRIBED).value == pytest.approx(200.0)
    assert summary["ltv_all"].group(SUBSCRIBED).value == pytest.approx(400 / 3)
    assert summary["total_revenue"].group(NOT_SUBSCRIBED).value == pytest.approx(50.0)
    assert summary["non_buyers"].group(NOT_SUBSCRIBED).value == 1


def test_engagement_windows():
    summary = consent_summary(_audience(), ANCHOR)

    assert summary["engaged_30"].group(SUBSCRIBED).value == 1
    assert summary["engaged_90"].group(SUBSCRIBED).value == 2
    assert summary["engaged_90"].group(NOT_SUBSCRIBED).value == 0


def test_empty_group_is_zero():
    split = consent_split([make_subscriber()], "ltv_all", ANCHOR)

    assert split.group(NOT_SUBSCRIBED).value == 0
    assert split.group(NOT_SUBSCRIBED).sample_size == 0


def test_window_filters_on_profile_creation():
    subs = [make_subscriber(created=datetime(2024, 1, 5)), make_subscriber(created=datetime(2023, 1, 5)), make_subscriber()]
    window = Window.for_dates(date(2024, 1, 1), date(2024, 6, 30))

    assert consent_split(subs, "count", ANCHOR, window).group(SUBSCRIBED).value == 1


def test_unknown_metric_raises():
    with pytest.raises(ValueError):
        consent_split([], "churn", ANCHOR)


def test_month_and_recency_buckets():
    assert full_months_between(datetime(2024, 1, 31), datetime(2024, 2, 29)) == 0
    assert full_months_between(datetime(2023, 6, 30), ANCHOR) == 12
    assert engagement_bucket(make_subscriber(last_open=datetime(2024, 5, 31)), ANCHOR) == "0-30 days"
    assert engagement_bucket(make_subscriber(last_open=datetime(2024, 5, 30)), ANCHOR) == "31-60 days"
    assert engagement_bucket(make_subscriber(last_click=datetime(2023, 1, 1)), ANCHOR) == "121+ days"
    assert engagement_bucket(make_subscriber(), ANCHOR) == "Never"


def test_engagement_matrix_rows_sum_to_100():
    subs = [
        make_subscriber(created=datetime(2024, 3, 1), last_open=datetime(2024, 6, 25)),
        make_subscriber(created=datetime(2024, 4, 1)),
        make_subscriber(created=datetime(2021, 1, 1), last_open=datetime(2024, 2, 1)),
        make_subscriber(last_open=datetime(2024, 6, 25)),
    ]

    matrix = engagement_by_age(subs, ANCHOR)

    assert list(matrix.index) == list(AGE_BUCKETS)
    assert list(matrix.columns) == list(ENGAGEMENT_BUCKETS)
    assert matrix.loc["0-5 months", "0-30 days"] == pytest.approx(50.0)
    assert matrix.loc["0-5 months", "Never"] == pytest.approx(50.0)
    assert matrix.loc["24+ months", "121+ days"] == pytest.approx(100.0)
    assert matrix.loc["6-11 months"].sum() == 0


def test_empty_matrix():
    matrix = engagement_by_age([], ANCHOR)
    assert matrix.shape == (len(AGE_BUCKETS), len(ENGAGEMENT_BUCKETS))
    assert matrix.values.sum() == 0


def _dead_weight_list():
    created = datetime(2024, 1, 1)
    active = datetime(2024, 1, 2)
    return [
        # never active, five months old
        make_subscriber(created=created),
        # never active, only 15 days old
        make_subscriber(created=datetime(2024, 6, 15)),
        # opened last month
        make_subscriber(created=created, first_active=active, last_open=datetime(2024, 6, 1)),
        # last open 121 days ago, never clicked
        make_subscriber(created=created, first_active=active, last_open=datetime(2024, 3, 1)),
        # last click exactly 90 days ago
        make_subscriber(created=datetime(2024, 3, 1), first_active=active, last_click=datetime(2024, 4, 1)),
    ]


def test_dead_weight_segments():
    flags = [is_dead_weight(s, ANCHOR) for s in _dead_weight_list()]

    assert flags == [True, False, False, True, True]


def test_profile_without_creation_date_is_never_old_enough():
    assert not is_dead_weight(make_subscriber(), ANCHOR)


def test_price_tiers():
    assert price_for(250) == 0
    assert price_for(251) == 20
    assert price_for(10_000) == 150
    assert price_for(250_000) == 2_300
    assert price_for(250_001) is None


def test_dead_weight_savings_counts_each_profile_once():
    limits = DeadWeightThresholds(pricing_tiers=((0, 2, 0), (3, 5, 15)))

    summary = dead_weight_savings(_dead_weight_list(), ANCHOR, limits)

    assert summary.current_subscribers == 5
    assert summary.dead_weight_count == 3
    assert summary.projected_subscribers == 2
    assert summary.current_monthly_price == 15
    assert summary.projected_monthly_price == 0
    assert summary.monthly_savings == 15
    assert summary.annual_savings == 180


def test_dead_weight_savings_above_published_pricing():
    limits = DeadWeightThresholds(custom_pricing_above=3, pricing_tiers=((0, 3, 10),))

    summary = dead_weight_savings(_dead_weight_list(), ANCHOR, limits)

    assert summary.current_monthly_price is None
    assert summary.projected_monthly_price == 10
    assert summary.monthly_savings is None
    assert summary.annual_savings is None


def test_dead_weight_savings_without_subscribers():
    result = dead_weight_savings([], ANCHOR)

    assert isinstance(result, InsufficientData)
    assert result.code == "no_subscribers"
