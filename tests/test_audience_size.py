from datetime import datetime, timedelta

import pytest

from conftest import make_campaign
from inboxkit.analysis.audience_size import (
    analyze_audience_size,
    build_buckets,
    confidence_for,
    format_emails_short,
    nice_range_label,
    optimal_lookback_days,
    risk_zone,
    send_floor,
)
from inboxkit.config import AudienceSizeThresholds
from inboxkit.results import Confidence, GuidanceResult, InsufficientData, RiskZone


def _two_audiences(small_rpe=0.05, large_rpe=0.2, spam_share=0.0001):
    """Nine small (4.0k-4.8k) and nine large (40k-48k) sends, one per week."""
    start = datetime(2024, 1, 1, 10)
    records = []
    for i in range(9):
        for j, emails in enumerate((4_000 + 100 * i, 40_000 + 1_000 * i)):
            rpe = small_rpe if j == 0 else large_rpe
            records.append(
                make_campaign(
                    start + timedelta(weeks=2 * i + j),
                    emails_sent=emails,
                    revenue=emails * rpe,
                    spam_complaints=emails * spam_share,
                    bounces=emails * 0.005,
                )
            )
    return records


def test_labels():
    assert format_emails_short(1_500) == "1.5k"
    assert format_emails_short(2_000_000) == "2M"
    assert format_emails_short(999) == "999"
    assert nice_range_label(4_800, 48_000) == "4.8k-48k"


def test_risk_zones():
    assert risk_zone(0.25, 0.0) is RiskZone.RED
    assert risk_zone(0.0, 3.5) is RiskZone.RED
    assert risk_zone(0.1, 0.0) is RiskZone.YELLOW
    assert risk_zone(0.05, 1.0) is RiskZone.GREEN


def test_below_minimum_sample_is_insufficient():
    report = analyze_audience_size(_two_audiences()[:11])

    assert isinstance(report.guidance, InsufficientData)
    assert report.guidance.code == "below_minimum_sample"
    assert report.limited


def test_no_campaigns():
    report = analyze_audience_size([])

    assert report.buckets == ()
    assert report.guidance.code == "no_campaigns"


def test_recommends_the_better_paying_size():
    report = analyze_audience_size(_two_audiences())

    assert len(report.buckets) == 2
    assert [b.campaigns for b in report.buckets] == [9, 9]
    assert all(b.qualified for b in report.buckets)
    guidance = report.guidance
    assert isinstance(guidance, GuidanceResult)
    assert guidance.status == "target-size"
    assert guidance.target == report.buckets[1].range_label
    assert guidance.estimated_monthly_gain > 1_000
    # nine large sends with revenue 8.0k-9.6k: cv well under 0.3
    assert guidance.confidence is Confidence.HIGH


def test_all_red_buckets_ask_for_list_hygiene():
    report = analyze_audience_size(_two_audiences(spam_share=0.005))

    assert report.guidance.status == "hygiene-first"
    assert report.guidance.risk_zone is RiskZone.RED


def test_thresholds_are_per_call():
    strict = AudienceSizeThresholds(min_total_campaigns=50)

    assert isinstance(analyze_audience_size(_two_audiences(), thresholds=strict).guidance, InsufficientData)
    assert isinstance(analyze_audience_size(_two_audiences()).guidance, GuidanceResult)


def test_results_are_deterministic():
    records = _two_audiences()
    assert analyze_audience_size(records) == analyze_audience_size(list(reversed(records)))


def test_bucket_revenue_per_email_is_weighted():
    report = analyze_audience_size(_two_audiences())
    assert report.buckets[0].weighted_revenue_per_email == pytest.approx(0.05)
    assert report.buckets[1].weighted_revenue_per_email == pytest.approx(0.2)


def test_optimal_lookback_from_history():
    # 18 sends over 120 days, ~3.6k emails a day: the 12-campaign gate binds.
    history = _two_audiences()

    assert optimal_lookback_days(history) == 80
    assert optimal_lookback_days([]) is None


def test_optimal_lookback_is_clamped():
    busy = [make_campaign(datetime(2024, 1, 1, 10) + timedelta(hours=i), emails_sent=100_000) for i in range(20)]

    assert optimal_lookback_days(busy) == 14


def test_short_range_points_at_the_optimal_lookback():
    history = _two_audiences()

    report = analyze_audience_size(history[:11], history=history)

    assert report.optimal_lookback_days == 80
    assert report.guidance.details["optimal_lookback_days"] == 80
    assert "80 days" in report.guidance.reason


def test_confidence_cut_offs():
    assert confidence_for(0.29, 6) is Confidence.HIGH
    assert confidence_for(0.29, 5) is Confidence.MEDIUM
    assert confidence_for(0.3, 10) is Confidence.MEDIUM
    assert confidence_for(0.49, 4) is Confidence.MEDIUM
    assert confidence_for(0.49, 3) is Confidence.LOW
    assert confidence_for(0.5, 10) is Confidence.LOW


def test_even_revenue_per_campaign_reads_as_similar():
    start = datetime(2024, 1, 1, 10)
    records = [
        make_campaign(start + timedelta(weeks=2 * i + j), emails_sent=emails, revenue=500.0)
        for i in range(9)
        for j, emails in enumerate((4_000 + 100 * i, 40_000 + 1_000 * i))
    ]

    guidance = analyze_audience_size(records).guidance

    assert isinstance(guidance, GuidanceResult)
    assert guidance.status == "similar"
    assert guidance.target == "4k-4.8k"
    assert guidance.estimated_monthly_gain is None
    assert guidance.metadata["monthly_opportunity"] == pytest.approx(0.0)
    assert guidance.confidence is Confidence.HIGH


def test_send_floor_is_clamped():
    limits = AudienceSizeThresholds()
    day = datetime(2024, 1, 1)

    def sends(lowest, count=12):
        return [make_campaign(day, emails_sent=lowest)] + [make_campaign(day, emails_sent=5_000)] * (count - 1)

    assert send_floor(sends(10, count=11), limits) is None
    assert send_floor(sends(10), limits) == 100
    assert send_floor(sends(500), limits) == 500
    assert send_floor(sends(5_000), limits) == 1_000


def test_tiny_sends_fall_below_the_floor():
    records = _two_audiences() + [make_campaign(datetime(2024, 5, 20, 10), emails_sent=50, revenue=1.0)]

    report = analyze_audience_size(records)

    assert report.sample_size == 18


def test_outlier_filter_reverts_when_too_few_remain():
    day = datetime(2024, 1, 1, 10)
    six = [make_campaign(day + timedelta(weeks=i), revenue=1.0) for i in range(5)]
    six.append(make_campaign(day + timedelta(weeks=5), revenue=100.0))
    seven = [make_campaign(day + timedelta(weeks=i), revenue=1.0) for i in range(6)]
    seven.append(make_campaign(day + timedelta(weeks=6), revenue=100.0))

    assert analyze_audience_size(six).sample_size == 6
    assert analyze_audience_size(seven).sample_size == 6


def test_low_outlier_gets_its_own_bucket():
    start = datetime(2024, 1, 1, 10)
    emails = [150] + [20_000 + 10 * i for i in range(12)]
    records = [
        make_campaign(start + timedelta(weeks=i), emails_sent=n, revenue=n * 0.05) for i, n in enumerate(emails)
    ]

    buckets = build_buckets(records)

    assert len(buckets) == 2
    assert buckets[0].campaigns == 1
    assert buckets[0].range_max == 150
    assert buckets[1].range_min == 20_000
    assert analyze_audience_size(records).buckets == tuple(buckets)
