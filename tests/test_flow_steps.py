from datetime import date, datetime, timedelta

import pytest

from conftest import make_flow_message
from inboxkit.analysis.flow_steps import (
    Penalty,
    IMPROVE,
    KEEP,
    PAUSE,
    SCALE,
    action_for,
    analyze_flow_steps,
    flow_sequence,
)
from inboxkit.results import InsufficientData
from inboxkit.timeframes import Window

START = datetime(2024, 3, 1, 9)


def _flow(*steps):
    """One message per step; each step is a dict of overrides, sent a day apart."""
    return [make_flow_message(START + timedelta(days=i), i + 1, **overrides) for i, overrides in enumerate(steps)]


def test_sequence_order_and_latest_name():
    messages = _flow({}, {}) + [
        make_flow_message(START + timedelta(days=5), 2, flow_message_id="msg-2", email_name="Email 2 (v2)"),
        make_flow_message(START, 1, flow_id="other"),
    ]

    sequence = flow_sequence(messages, "welcome")

    assert sequence.message_ids == ("msg-1", "msg-2")
    assert sequence.email_names == ("Email 1", "Email 2 (v2)")


def test_balanced_flow_scores():
    report = analyze_flow_steps(_flow({}, {}, {}), "welcome")

    assert report.rpe_baseline == pytest.approx(0.5)
    assert report.indicator_available
    assert [s.action for s in report.scores] == [KEEP, IMPROVE, IMPROVE]
    first = report.scores[0]
    assert first.a1 == pytest.approx(0.5 / 0.75 * 35)
    assert first.a2 == 8
    assert first.a3 == 20
    assert first.volume == 10
    assert first.score == pytest.approx(first.money + first.volume)


def test_drop_off_between_steps():
    report = analyze_flow_steps(_flow({}, {"emails_sent": 800}, {}), "welcome")
    assert report.steps[1].drop_off_rate == pytest.approx(20.0)
    assert report.steps[0].drop_off_rate == 0.0


def test_spam_hard_stop_pauses_the_step():
    report = analyze_flow_steps(_flow({}, {}, {"emails_sent": 10_000, "spam_complaints": 9}), "welcome")

    last = report.scores[2]
    assert last.hard_stop
    assert last.action == PAUSE
    assert last.deliverability == -20
    assert any(p.kind == "spam" for p in last.penalties)


def test_low_volume_flow_is_not_scored():
    report = analyze_flow_steps(_flow({"emails_sent": 600}, {"emails_sent": 600}), "welcome")

    assert isinstance(report.guidance, InsufficientData)
    assert report.guidance.code == "low_flow_volume"


def test_drafts_are_ignored():
    messages = _flow({}, {}, {}) + [make_flow_message(START, 1, status="Draft", revenue=99_999.0)]

    report = analyze_flow_steps(messages, "welcome")

    assert report.steps[0].revenue == 500.0


def test_missing_step_is_zero_filled():
    messages = _flow({}, {}, {})
    window = Window.for_dates(date(2024, 3, 1), date(2024, 3, 2))

    report = analyze_flow_steps(messages, "welcome", window=window)

    assert report.sequence.length == 3
    assert report.steps[2].emails_sent == 0


def test_duplicate_names_hide_scores():
    report = analyze_flow_steps(_flow({"email_name": "Hello"}, {"email_name": "Hello"}, {}), "welcome")

    assert report.duplicate_names == ("Hello",)
    assert not report.indicator_available
    assert report.scores == ()
    assert report.guidance.code == "unreliable_step_order"


def test_out_of_order_sends_hide_scores():
    messages = [
        make_flow_message(START + timedelta(days=3), 1),
        make_flow_message(START, 2),
        make_flow_message(START + timedelta(days=4), 3),
    ]

    report = analyze_flow_steps(messages, "welcome")

    assert not report.order_consistent
    assert report.guidance.code == "unreliable_step_order"


def test_strong_last_step_suggests_a_follow_up():
    messages = _flow({}, {}, {"revenue": 1_500.0})
    latest = messages[-1].sent_date
    window = Window.for_dates(latest.date() - timedelta(days=29), latest.date())

    report = analyze_flow_steps(messages, "welcome", window=window, latest=latest)

    assert report.scores[2].action == SCALE
    assert report.add_step.suggested
    assert report.add_step.horizon_days == 30
    assert report.add_step.projected_reach == 500
    assert report.add_step.rpe_floor == pytest.approx(0.5)
    assert report.add_step.estimated_revenue == pytest.approx(250.0)
    assert report.guidance.status == "add-step"
    assert report.guidance.target == "S4"


def test_add_step_needs_a_recent_window():
    report = analyze_flow_steps(_flow({}, {}, {"revenue": 1_500.0}), "welcome")

    assert not report.add_step.suggested
    assert report.add_step.gates["window"] is False


def test_action_thresholds():
    assert action_for(80, False) == SCALE
    assert action_for(60, False) == KEEP
    assert action_for(39.9, False) == PAUSE
    assert action_for(99, True) == PAUSE


def test_reach_collapse_caps_the_momentum_points():
    report = analyze_flow_steps(
        _flow(
            {"emails_sent": 10_000, "revenue": 1_000.0},
            {"emails_sent": 3_000, "revenue": 450.0},
            {"emails_sent": 3_000, "revenue": 900.0},
            {"emails_sent": 3_000, "revenue": 900.0},
        ),
        "welcome",
    )

    assert report.rpe_baseline == pytest.approx(0.225)
    second, third = report.scores[1], report.scores[2]
    # RPE rose 50% on step 2, but 70% of the audience was lost
    assert second.a2 == 3
    assert "Heavy reach drop" in second.notes
    assert third.a2 == 15


def test_unsubscribe_hard_stop():
    last = analyze_flow_steps(_flow({}, {}, {"unsubscribes": 9}), "welcome").scores[2]

    assert last.penalties == (Penalty("unsubscribe", 12, 3),)
    assert last.deliverability == -12
    assert last.hard_stop
    assert last.action == PAUSE


def test_bounce_hard_stop():
    last = analyze_flow_steps(_flow({}, {}, {"bounces": 25}), "welcome").scores[2]

    assert last.penalties == (Penalty("bounce", 10, 3),)
    assert last.hard_stop
    assert last.action == PAUSE


def test_mild_bounce_rate_is_penalised_without_stopping():
    last = analyze_flow_steps(_flow({}, {}, {"bounces": 12}), "welcome").scores[2]

    assert last.penalties == (Penalty("bounce", 3, 1),)
    assert last.deliverability == -3
    assert not last.hard_stop


def test_penalties_are_capped():
    last = analyze_flow_steps(_flow({}, {}, {"unsubscribes": 9, "bounces": 25}), "welcome").scores[2]

    assert sum(p.amount for p in last.penalties) == 22
    assert last.deliverability == -20


def test_volume_tiers():
    report = analyze_flow_steps(
        _flow(
            {"emails_sent": 4_000},
            {"emails_sent": 1_500},
            {"emails_sent": 450},
            {"emails_sent": 150},
            {"emails_sent": 50},
        ),
        "welcome",
    )

    assert [s.volume for s in report.scores] == [10, 7, 5, 0, 0]
    assert [s.small_sample_penalty for s in report.scores] == [0, 0, 0, 3, 3]
