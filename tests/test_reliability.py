from datetime import date, datetime, timedelta

import pytest

from conftest import make_campaign, make_flow_message
from inboxkit.analysis.reliability import (
    CAMPAIGNS,
    FLOWS,
    RevenuePeriod,
    analyze_reliability,
    missed_campaign_revenue,
)
from inboxkit.config import ReliabilityThresholds
from inboxkit.results import GuidanceResult, InsufficientData
from inboxkit.timeframes import Window

FIRST_TUESDAY = datetime(2024, 1, 2, 10)


def _weekly(revenues):
    """One campaign per Monday-week starting Jan 1 2024; zero revenue means no send that week."""
    return [
        make_campaign(FIRST_TUESDAY + timedelta(weeks=i), revenue=float(r)) for i, r in enumerate(revenues) if r
    ]


def _weeks(n):
    return Window.for_dates(date(2024, 1, 1), date(2024, 1, 1) + timedelta(weeks=n, days=-1))


def test_steady_revenue_with_one_spike():
    report = analyze_reliability(_weekly([800, 1000, 1200, 1000, 800, 1200, 5000]), [], _weeks(7))

    assert isinstance(report.guidance, GuidanceResult)
    assert report.median == 1000
    assert report.mad == 200
    # exp(-1.15 * 0.2)
    assert report.reliability == 79
    assert report.trend_delta is None
    assert [p.is_anomaly for p in report.points] == [False] * 6 + [True]
    assert report.points[-1].z_score == pytest.approx(4000 / (1.4826 * 200))
    assert report.points[0].label == "Jan 1"
    assert report.points[-1].index == 5


def test_trend_against_the_previous_window():
    limits = ReliabilityThresholds(window_size=4)

    report = analyze_reliability(_weekly([1000] * 6 + [500, 1500]), [], _weeks(8), thresholds=limits)

    assert report.window_periods == 4
    assert report.reliability == 75
    assert report.trend_delta == -25


def test_quiet_recent_weeks_widen_the_window():
    limits = ReliabilityThresholds(window_size=4)

    report = analyze_reliability(_weekly([1000, 1200, 900, 0, 0, 0, 0, 0]), [], _weeks(8), thresholds=limits)

    assert report.window_periods == 6
    assert report.median == 900
    assert report.reliability == 32
    assert report.zero_campaign_periods == 5
    assert report.est_lost_campaign_revenue == pytest.approx(5 * 0.75 * 900)


def test_too_few_complete_periods():
    report = analyze_reliability(_weekly([1000, 1000, 1000]), [], _weeks(3))

    assert isinstance(report.guidance, InsufficientData)
    assert report.guidance.code == "too_few_periods"
    assert report.reliability is None


def test_scopes_split_campaign_and_flow_revenue():
    campaigns = _weekly([1000, 0, 1000, 1000])
    flows = [make_flow_message(FIRST_TUESDAY + timedelta(weeks=i), 1, revenue=500.0) for i in range(4)]

    by_flows = analyze_reliability(campaigns, flows, _weeks(4), scope=FLOWS)
    by_campaigns = analyze_reliability(campaigns, flows, _weeks(4), scope=CAMPAIGNS)

    assert by_flows.median == 500
    assert by_flows.reliability == 100
    assert by_flows.zero_campaign_periods == 0
    assert by_flows.est_lost_campaign_revenue is None
    assert by_campaigns.median == 1000
    assert by_campaigns.zero_campaign_periods == 1
    assert by_campaigns.est_lost_campaign_revenue == pytest.approx(750.0)


def test_missed_revenue_uses_both_neighbours():
    day = datetime(2024, 1, 1)
    periods = [
        RevenuePeriod(day, "a", 1000.0, 0.0),
        RevenuePeriod(day, "b", 0.0, 0.0),
        RevenuePeriod(day, "c", 2000.0, 0.0),
        RevenuePeriod(day, "d", 0.0, 0.0, complete=False),
    ]

    assert missed_campaign_revenue(periods) == (1, pytest.approx(1125.0))
    assert missed_campaign_revenue(periods[1:2]) == (0, 0.0)


def test_unknown_scope_is_rejected():
    with pytest.raises(ValueError):
        analyze_reliability([], [], _weeks(4), scope="everything")
