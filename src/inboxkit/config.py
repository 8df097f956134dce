"""Per-invocation thresholds for every analyzer.

Every analyzer takes an optional thresholds object; nothing here is
process-wide mutable state.  Override a single value per call with
``dataclasses.replace`` or load overrides from the environment::

    thresholds = load_thresholds()
    strict = replace(thresholds.audience_size, min_total_campaigns=20)

Environment overrides use ``INBOXKIT_<SECTION>__<FIELD>``, for example
``INBOXKIT_AUDIENCE_SIZE__MIN_TOTAL_EMAILS=25000``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

from inboxkit.utils.logs import report

logger = report.settings(__file__)

DEFAULT_ENV_PATH = Path("config/inboxkit/.env")
ENV_PREFIX = "INBOXKIT_"

# (threshold %, penalty points, hard stop)
PenaltyTier = Tuple[float, float, bool]


@dataclass(frozen=True)
class ComparisonThresholds:
	min_emails: float = 20
	min_revenue: float = 50.0
	min_orders: float = 3


@dataclass(frozen=True)
class AudienceSizeThresholds:
	min_total_campaigns: int = 12
	min_total_emails: float = 50_000
	min_bucket_campaigns: int = 3
	min_bucket_emails: float = 10_000
	floor_min_campaigns: int = 12
	floor_percentile: float = 0.05
	floor_lower: float = 100
	floor_upper: float = 1000
	min_after_outlier_filter: int = 6
	target_buckets: int = 4
	red_spam_rate: float = 0.2
	red_bounce_rate: float = 3.0
	yellow_spam_rate: float = 0.1
	yellow_bounce_rate: float = 2.0
	significant_monthly_gain: float = 1000.0
	significant_revenue_share: float = 0.10
	weeks_per_month: float = 4.33
	high_confidence_cv: float = 0.3
	high_confidence_n: int = 6
	medium_confidence_cv: float = 0.5
	medium_confidence_n: int = 4
	lookback_min_days: int = 14
	lookback_max_days: int = 365


@dataclass(frozen=True)
class SendFrequencyThresholds:
	min_weeks: int = 4
	min_emails: float = 1000
	exploratory_min_weeks: int = 3
	min_revenue_lift: float = 0.10
	max_engagement_drop: float = 0.05
	max_spam_delta: float = 0.05
	max_bounce_delta: float = 0.10
	max_revenue_loss: float = 0.10
	high_spam_rate: float = 0.3
	high_bounce_rate: float = 0.5
	healthy_spam_rate: float = 0.1
	healthy_bounce_rate: float = 2.0
	healthy_open_rate: float = 12.0
	healthy_click_rate: float = 1.0
	conservative_factor: float = 0.5
	weeks_per_month: float = 4.0
	high_confidence_weeks: int = 8


@dataclass(frozen=True)
class GapsThresholds:
	min_window_days: int = 90
	min_sent_share: float = 0.66
	max_run_weeks: int = 4
	short_run_references: int = 2
	long_run_references: int = 4
	min_references: int = 2
	coverage_gap_weeks: int = 6
	coverage_gap_share: float = 0.5


@dataclass(frozen=True)
class FlowThresholds:
	min_flow_sends: float = 2000
	baseline_sends_floors: Tuple[float, ...] = (250, 100)
	small_sample_sends: float = 250
	small_sample_penalty: float = 3
	a1_max: float = 35
	a1_floor_index: float = 0.5
	a1_span: float = 0.75
	a2_max: float = 15
	a2_full_gain: float = 0.5
	a2_collapse_drop: float = 0.6
	a2_collapse_cap: float = 3
	a2_first_step_above: float = 8
	a2_first_step_below: float = 4
	money_max: float = 70
	revenue_share_tiers: Tuple[Tuple[float, float], ...] = (
		(0.30, 20), (0.20, 16), (0.10, 10), (0.05, 6), (0.02, 3),
	)
	spam_tiers: Tuple[PenaltyTier, ...] = ((0.08, 20, True), (0.05, 15, False), (0.03, 8, False))
	unsubscribe_tiers: Tuple[PenaltyTier, ...] = ((0.8, 12, True), (0.5, 8, False), (0.3, 4, False))
	bounce_tiers: Tuple[PenaltyTier, ...] = ((2.0, 10, True), (1.5, 6, False), (1.0, 3, False))
	max_penalty: float = 20
	# (minimum sends, minimum share of step-1 sends, points)
	volume_tiers: Tuple[Tuple[float, float, float], ...] = (
		(1000, 0.50, 10), (500, 0.25, 7), (250, 0.10, 5), (100, 0.0, 3),
	)
	volume_floor_points: float = 1
	volume_max: float = 10
	scale_score: float = 75
	keep_score: float = 60
	improve_score: float = 40
	add_step_min_sends: float = 500
	add_step_min_share_of_first: float = 0.05
	add_step_max_unsubscribe_rate: float = 0.30
	add_step_max_spam_rate: float = 0.03
	add_step_min_revenue: float = 500.0
	add_step_min_revenue_share: float = 0.05
	add_step_reach_share: float = 0.5
	add_step_rpe_percentile: float = 0.25
	add_step_windows: Tuple[int, ...] = (30, 90)


@dataclass(frozen=True)
class SubjectLineThresholds:
	min_campaigns: int = 5
	min_email_share: float = 0.02
	alpha: float = 0.05
	bootstrap_iterations: int = 1000
	seed: int = 7


@dataclass(frozen=True)
class DayOfWeekThresholds:
	min_weeks: int = 4
	min_campaigns: int = 3
	min_emails: float = 1000
	min_email_share: float = 0.02
	volatile_share: float = 0.60
	volatile_revenue_ratio: float = 2.5
	volatile_dampen: float = 0.70
	even_spread: float = 0.06
	clear_winner_ratio: float = 1.05
	max_days: int = 4
	risk_spam_rate: float = 0.5
	risk_unsubscribe_add: float = 0.15


@dataclass(frozen=True)
class ReliabilityThresholds:
	window_size: int = 12
	min_periods: int = 4
	calibration: float = 1.15
	mad_scale: float = 1.4826
	anomaly_z: float = 2.5
	context_periods: int = 4
	gap_fill_factor: float = 0.75


# (min subscribers, max subscribers, monthly price)
PriceTier = Tuple[int, int, float]

SUBSCRIBER_PRICING: Tuple[PriceTier, ...] = (
	(0, 250, 0), (251, 500, 20), (501, 1000, 30), (1001, 1500, 45), (1501, 2500, 60),
	(2501, 3000, 70), (3001, 3500, 80), (3501, 5000, 100), (5001, 5500, 110), (5501, 6000, 130),
	(6001, 6500, 140), (6501, 10000, 150), (10001, 10500, 175), (10501, 11000, 200),
	(11001, 11500, 225), (11501, 12000, 250), (12001, 12500, 275), (12501, 13000, 300),
	(13001, 13500, 325), (13501, 15000, 350), (15001, 20000, 375), (20001, 25000, 400),
	(25001, 26000, 425), (26001, 27000, 450), (27001, 28000, 475), (28001, 30000, 500),
	(30001, 35000, 550), (35001, 40000, 600), (40001, 45000, 650), (45001, 50000, 720),
	(50001, 55000, 790), (55001, 60000, 860), (60001, 65000, 930), (65001, 70000, 1000),
	(70001, 75000, 1070), (75001, 80000, 1140), (80001, 85000, 1205), (85001, 90000, 1265),
	(90001, 95000, 1325), (95001, 100000, 1380), (100001, 105000, 1440), (105001, 110000, 1495),
	(110001, 115000, 1555), (115001, 120000, 1610), (120001, 125000, 1670), (125001, 130000, 1725),
	(130001, 135000, 1785), (135001, 140000, 1840), (140001, 145000, 1900), (145001, 150000, 1955),
	(150001, 200000, 2070), (200001, 250000, 2300),
)


@dataclass(frozen=True)
class DeadWeightThresholds:
	never_active_days: int = 30
	inactive_min_age_days: int = 90
	inactive_days: int = 90
	custom_pricing_above: int = 250_000
	pricing_tiers: Tuple[PriceTier, ...] = SUBSCRIBER_PRICING


@dataclass(frozen=True)
class Thresholds:
	comparison: ComparisonThresholds = field(default_factory=ComparisonThresholds)
	audience_size: AudienceSizeThresholds = field(default_factory=AudienceSizeThresholds)
	send_frequency: SendFrequencyThresholds = field(default_factory=SendFrequencyThresholds)
	gaps: GapsThresholds = field(default_factory=GapsThresholds)
	flow: FlowThresholds = field(default_factory=FlowThresholds)
	subject_line: SubjectLineThresholds = field(default_factory=SubjectLineThresholds)
	day_of_week: DayOfWeekThresholds = field(default_factory=DayOfWeekThresholds)
	reliability: ReliabilityThresholds = field(default_factory=ReliabilityThresholds)
	dead_weight: DeadWeightThresholds = field(default_factory=DeadWeightThresholds)


def _coerce(raw: str, kind: str, name: str) -> object:
	if kind == "bool":
		lowered = raw.strip().lower()
		if lowered in ("1", "true", "yes", "on"):
			return True
		if lowered in ("0", "false", "no", "off"):
			return False
		raise ValueError(f"{name} expects a boolean, got {raw!r}")
	if kind == "int":
		return int(raw)
	if kind == "float":
		return float(raw)
	raise ValueError(f"{name} cannot be set from the environment")


def _apply_overrides(section: object, prefix: str, environ: Mapping[str, str]) -> object:
	changes = {}
	for f in fields(section):
		name = f"{prefix}__{f.name.upper()}"
		if name in environ:
			changes[f.name] = _coerce(environ[name], str(f.type), name)
	if changes:
		logger.info("Threshold overrides for %s: %s", prefix, ", ".join(sorted(changes)))
		return replace(section, **changes)
	return section


def load_thresholds(env_path: Path = DEFAULT_ENV_PATH, environ: Optional[Mapping[str, str]] = None) -> Thresholds:
	"""Build a fresh :class:`Thresholds` from defaults plus env overrides.

	Order of precedence: process env > .env file > defaults.
	"""
	if environ is None:
		if env_path.exists():
			load_dotenv(env_path)
		environ = os.environ
	base = Thresholds()
	sections = {}
	for f in fields(base):
		prefix = f"{ENV_PREFIX}{f.name.upper()}"
		sections[f.name] = _apply_overrides(getattr(base, f.name), prefix, environ)
	return Thresholds(**sections)


__all__ = [
	"ComparisonThresholds",
	"AudienceSizeThresholds",
	"SendFrequencyThresholds",
	"GapsThresholds",
	"FlowThresholds",
	"SubjectLineThresholds",
	"DayOfWeekThresholds",
	"ReliabilityThresholds",
	"DeadWeightThresholds",
	"SUBSCRIBER_PRICING",
	"Thresholds",
	"load_thresholds",
]
