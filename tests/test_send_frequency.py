import pytest

from conftest import weekly_campaigns
from inboxkit.analysis.send_frequency import (
    PER_CAMPAIGN,
    analyze_send_frequency,
    cadence_label,
    frequency_buckets,
)
from inboxkit.results import Confidence, InsufficientData


def test_cadence_labels():
    assert cadence_label("1") == "1 campaign per week"
    assert cadence_label("3") == "3 campaigns per week"
    assert cadence_label("4+") == "4+ campaigns per week"


def test_weeks_are_grouped_by_campaign_count():
    records = weekly_campaigns("2024-01-01", 3, per_week=1) + weekly_campaigns("2024-01-22", 2, per_week=5)

    buckets = {b.key: b for b in frequency_buckets(records)}

    assert set(buckets) == {"1", "4+"}
    assert buckets["1"].weeks == 3
    assert buckets["4+"].weeks == 2
    assert buckets["4+"].campaigns == 10
    assert buckets["4+"].avg_weekly_revenue == pytest.approx(5_000.0)
    assert buckets["4+"].avg_campaign_revenue == pytest.approx(1_000.0)


def test_no_eligible_cadence():
    report = analyze_send_frequency(weekly_campaigns("2024-01-01", 3))

    assert isinstance(report.guidance, InsufficientData)
    assert report.guidance.code == "no_eligible_cadence"
    assert report.baseline is None


def test_empty_input():
    assert analyze_send_frequency([]).guidance.code == "no_campaigns"


def test_higher_cadence_that_beats_baseline_wins():
    records = weekly_campaigns("2024-01-01", 6, per_week=1) + weekly_campaigns("2024-02-12", 5, per_week=2)

    report = analyze_send_frequency(records)

    assert report.baseline == "1"
    assert report.target == "2"
    assert report.guidance.status == "send-more"


def test_short_promising_cadence_is_only_a_test():
    records = weekly_campaigns("2024-01-01", 6, per_week=1) + weekly_campaigns("2024-02-12", 3, per_week=2)

    report = analyze_send_frequency(records)

    assert report.guidance.status == "test"
    assert report.guidance.confidence is Confidence.LOW


def test_two_week_bucket_is_never_the_target():
    records = weekly_campaigns("2024-01-01", 6, per_week=1) + weekly_campaigns(
        "2024-02-12", 2, per_week=5, revenue=50_000.0
    )

    report = analyze_send_frequency(records)

    assert report.target != "4+"
    assert report.guidance.status == "test-more"
    assert report.target == "2"
    assert report.guidance.estimated_monthly_gain is None


def test_risky_baseline_steps_down():
    records = weekly_campaigns("2024-01-01", 6, per_week=3, spam_complaints=40) + weekly_campaigns(
        "2024-02-12", 4, per_week=1
    )

    report = analyze_send_frequency(records)

    assert report.baseline == "3"
    assert report.target == "1"
    assert report.guidance.status == "send-less"


def test_unhealthy_single_cadence_stabilizes():
    report = analyze_send_frequency(weekly_campaigns("2024-01-01", 6, per_week=2, opens=500))

    assert report.guidance.status == "stabilize"
    assert report.target == report.baseline == "2"


def test_per_campaign_view_and_unknown_mode():
    records = weekly_campaigns("2024-01-01", 6, per_week=1) + weekly_campaigns("2024-02-12", 5, per_week=2)

    report = analyze_send_frequency(records, mode=PER_CAMPAIGN)
    assert report.guidance.metadata["view_mode"] == PER_CAMPAIGN
    assert report.guidance.status != "send-more"

    with pytest.raises(ValueError):
        analyze_send_frequency(records, mode="per-day")
