import os
from dataclasses import replace

import pytest

from inboxkit.config import AudienceSizeThresholds, Thresholds, load_thresholds


def test_defaults():
    thresholds = Thresholds()

    assert thresholds.audience_size.min_total_campaigns == 12
    assert thresholds.send_frequency.min_weeks == 4
    assert thresholds.gaps.min_window_days == 90
    assert thresholds.flow.spam_tiers[0] == (0.08, 20, True)


def test_environment_overrides(tmp_path):
    environ = {
        "INBOXKIT_AUDIENCE_SIZE__MIN_TOTAL_EMAILS": "25000",
        "INBOXKIT_GAPS__MIN_WINDOW_DAYS": "60",
        "UNRELATED": "1",
    }

    thresholds = load_thresholds(tmp_path / "missing.env", environ=environ)

    assert thresholds.audience_size.min_total_emails == 25_000.0
    assert thresholds.gaps.min_window_days == 60
    assert thresholds.flow == Thresholds().flow


def test_env_file_is_loaded(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text("INBOXKIT_SUBJECT_LINE__SEED=11\n")
    monkeypatch.delenv("INBOXKIT_SUBJECT_LINE__SEED", raising=False)

    try:
        thresholds = load_thresholds(env_file)
    finally:
        os.environ.pop("INBOXKIT_SUBJECT_LINE__SEED", None)

    assert thresholds.subject_line.seed == 11


def test_tuple_fields_cannot_be_overridden(tmp_path):
    with pytest.raises(ValueError):
        load_thresholds(tmp_path / "missing.env", environ={"INBOXKIT_FLOW__SPAM_TIERS": "1"})


def test_thresholds_are_immutable():
    limits = AudienceSizeThresholds()
    with pytest.raises(AttributeError):
        limits.min_total_campaigns = 3
    assert replace(limits, min_total_campaigns=3).min_total_campaigns == 3


def test_reliability_and_dead_weight_sections(tmp_path):
    environ = {"INBOXKIT_RELIABILITY__WINDOW_SIZE": "8", "INBOXKIT_DEAD_WEIGHT__INACTIVE_DAYS": "120"}

    thresholds = load_thresholds(tmp_path / "missing.env", environ=environ)

    assert thresholds.reliability.window_size == 8
    assert thresholds.dead_weight.inactive_days == 120
    assert thresholds.dead_weight.pricing_tiers[-1] == (200_001, 250_000, 2_300)
