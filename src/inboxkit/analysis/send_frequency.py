"""Send-Frequency Optimizer.

Weeks are grouped Monday-first and classified by how many campaigns went
out (1, 2, 3 or 4+).  The cadence with the longest track record becomes the
baseline and every other cadence is judged against it on revenue,
engagement and deliverability.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from inboxkit.analysis.buckets import weekly_counts
from inboxkit.config import SendFrequencyThresholds
from inboxkit.metrics import MetricSums
from inboxkit.records import SUM_FIELDS, CampaignRecord, safe_ratio
from inboxkit.results import INFINITE_LIFT, Confidence, Guidance, GuidanceResult, InsufficientData
from inboxkit.timeframes import Window, in_window
from inboxkit.utils.logs.report import NULL_OBSERVER, Observer

MODULE = "send_frequency"

PER_WEEK = "per-week"
PER_CAMPAIGN = "per-campaign"
VIEW_MODES = (PER_WEEK, PER_CAMPAIGN)

CADENCE_KEYS = ("1", "2", "3", "4+")
MAX_CADENCE = len(CADENCE_KEYS)


@dataclass(frozen=True)
class FrequencyBucket:
    key: str
    weeks: int
    sums: MetricSums

    @property
    def cadence(self) -> int:
        return CADENCE_KEYS.index(self.key) + 1

    @property
    def label(self) -> str:
        return cadence_label(self.key)

    @property
    def campaigns(self) -> int:
        return self.sums.count

    @property
    def campaigns_per_week(self) -> float:
        return safe_ratio(self.sums.count, self.weeks)

    @property
    def avg_weekly_revenue(self) -> float:
        return safe_ratio(self.sums.revenue, self.weeks)

    @property
    def avg_weekly_emails(self) -> float:
        return safe_ratio(self.sums.emails_sent, self.weeks)

    @property
    def avg_weekly_orders(self) -> float:
        return safe_ratio(self.sums.orders, self.weeks)

    @property
    def avg_campaign_revenue(self) -> float:
        return self.sums.avg_revenue

    @property
    def avg_campaign_emails(self) -> float:
        return self.sums.avg_emails

    @property
    def avg_campaign_orders(self) -> float:
        return safe_ratio(self.sums.orders, self.sums.count)

    def value(self, mode: str) -> float:
        if mode == PER_WEEK:
            return self.avg_weekly_revenue
        if mode == PER_CAMPAIGN:
            return self.avg_campaign_revenue
        raise ValueError(f"Unknown view mode: {mode!r}")


@dataclass(frozen=True)
class SendFrequencyReport:
    buckets: Tuple[FrequencyBucket, ...]
    guidance: Guidance
    baseline: Optional[str] = None
    target: Optional[str] = None


def cadence_label(key: str) -> str:
    if key == "4+":
        return "4+ campaigns per week"
    return f"{key} campaign{'' if key == '1' else 's'} per week"


def _cadence_key(count: int) -> str:
    return CADENCE_KEYS[min(count, MAX_CADENCE) - 1]


def frequency_buckets(campaigns: Iterable[CampaignRecord]) -> List[FrequencyBucket]:
    """Aggregate Monday-weeks into 1/2/3/4+ cadence buckets; empty cadences are omitted."""
    weekly = weekly_counts(campaigns)
    if weekly.empty:
        return []
    weekly["cadence"] = [_cadence_key(int(n)) for n in weekly["campaigns"]]
    grouped = weekly.groupby("cadence")
    totals = grouped[list(SUM_FIELDS) + ["campaigns"]].sum()
    weeks = grouped.size()

    buckets = []
    for key in CADENCE_KEYS:
        if key not in totals.index:
            continue
        row = totals.loc[key]
        buckets.append(FrequencyBucket(key, int(weeks.loc[key]), MetricSums.from_mapping(row, row["campaigns"])))
    return buckets


# ---------------------------------------------------------------------------
# ⚖️  Comparisons
# ---------------------------------------------------------------------------


def _relative(value: float, baseline: float) -> float:
    """Fractional change; INFINITE_LIFT from a zero baseline with a positive value."""
    if baseline == 0:
        return INFINITE_LIFT if value > 0 else 0.0
    return (value - baseline) / baseline


def _relative_drop(value: float, baseline: float) -> float:
    return (baseline - value) / baseline if baseline else 0.0


def _beats_baseline(
    candidate: FrequencyBucket, baseline: FrequencyBucket, mode: str, limits: SendFrequencyThresholds
) -> bool:
    lift = _relative(candidate.value(mode), baseline.value(mode))
    return (
        lift >= limits.min_revenue_lift
        and _relative_drop(candidate.sums.open_rate, baseline.sums.open_rate) <= limits.max_engagement_drop
        and _relative_drop(candidate.sums.click_rate, baseline.sums.click_rate) <= limits.max_engagement_drop
        and candidate.sums.spam_rate - baseline.sums.spam_rate <= limits.max_spam_delta
        and candidate.sums.bounce_rate - baseline.sums.bounce_rate <= limits.max_bounce_delta
    )


def _is_healthy(bucket: FrequencyBucket, limits: SendFrequencyThresholds) -> bool:
    sums = bucket.sums
    return (
        sums.spam_rate <= limits.healthy_spam_rate
        and sums.bounce_rate <= limits.healthy_bounce_rate
        and sums.open_rate >= limits.healthy_open_rate
        and sums.click_rate >= limits.healthy_click_rate
    )


def _low_risk(bucket: FrequencyBucket, limits: SendFrequencyThresholds) -> bool:
    return bucket.sums.spam_rate <= limits.healthy_spam_rate and bucket.sums.bounce_rate <= limits.healthy_bounce_rate


def _reduces_risk(candidate: FrequencyBucket, baseline: FrequencyBucket) -> bool:
    c, b = candidate.sums, baseline.sums
    return c.spam_rate <= b.spam_rate and c.bounce_rate <= b.bounce_rate and (
        c.spam_rate < b.spam_rate or c.bounce_rate < b.bounce_rate
    )


def pick_baseline(eligible: List[FrequencyBucket], mode: str = PER_WEEK) -> FrequencyBucket:
    """Most weeks; ties go to higher revenue, then the lower cadence."""
    return min(eligible, key=lambda b: (-b.weeks, -b.value(mode), b.cadence))


def estimate_monthly_gain(
    target: FrequencyBucket, buckets: List[FrequencyBucket], limits: SendFrequencyThresholds
) -> float:
    """``(target avg/campaign - overall avg/campaign) * factor * campaigns/week * weeks/month``."""
    overall = MetricSums()
    for bucket in buckets:
        overall = overall + bucket.sums
    delta = target.avg_campaign_revenue - overall.avg_revenue
    return delta * limits.conservative_factor * target.campaigns_per_week * limits.weeks_per_month


# ---------------------------------------------------------------------------
# 🧭  Decision policy
# ---------------------------------------------------------------------------


def _result(
    status: str,
    title: str,
    message: str,
    baseline: FrequencyBucket,
    target: FrequencyBucket,
    buckets: List[FrequencyBucket],
    confidence: Confidence,
    limits: SendFrequencyThresholds,
    mode: str,
) -> GuidanceResult:
    gain = None
    if target is not baseline:
        estimate = estimate_monthly_gain(target, buckets, limits)
        gain = estimate if estimate > 0 else None
    total_weeks = sum(b.weeks for b in buckets)
    return GuidanceResult(
        MODULE,
        status,
        title,
        message,
        target=target.label,
        baseline=baseline.label,
        confidence=confidence,
        estimated_monthly_gain=gain,
        sample=f"Based on {total_weeks} {'week' if total_weeks == 1 else 'weeks'} of campaign data.",
        metadata={
            "baseline_key": baseline.key,
            "target_key": target.key,
            "baseline_value": baseline.value(mode),
            "target_value": target.value(mode),
            "view_mode": mode,
        },
    )


def _lift_text(candidate: FrequencyBucket, baseline: FrequencyBucket, mode: str) -> str:
    lift = _relative(candidate.value(mode), baseline.value(mode))
    if lift == INFINITE_LIFT:
        return "from a zero base"
    return f"by {abs(lift) * 100:.1f}%"


def recommend_cadence(
    buckets: List[FrequencyBucket],
    mode: str = PER_WEEK,
    thresholds: Optional[SendFrequencyThresholds] = None,
    observer: Observer = NULL_OBSERVER,
) -> Tuple[Guidance, Optional[FrequencyBucket], Optional[FrequencyBucket]]:
    """Apply the ordered decision rules; returns ``(guidance, baseline, target)``."""
    if mode not in VIEW_MODES:
        raise ValueError(f"Unknown view mode: {mode!r}")
    limits = thresholds or SendFrequencyThresholds()
    if not buckets:
        return InsufficientData(MODULE, "no_campaigns", "No campaigns were found in the selected date range."), None, None

    eligible = [b for b in buckets if b.weeks >= limits.min_weeks and b.sums.emails_sent >= limits.min_emails]
    if not eligible:
        return (
            InsufficientData(
                MODULE,
                "no_eligible_cadence",
                "Each cadence ran too few weeks or emails to compare. Extend testing before changing frequency.",
                details={"weeks": {b.key: b.weeks for b in buckets}},
            ),
            None,
            None,
        )

    baseline = pick_baseline(eligible, mode)
    confident = Confidence.HIGH if baseline.weeks >= limits.high_confidence_weeks else Confidence.MEDIUM
    observer.trace("send_frequency.baseline", key=baseline.key, weeks=baseline.weeks, mode=mode)

    def done(status, title, message, target, confidence):
        observer.trace("send_frequency.decision", status=status, target=target.key)
        return _result(status, title, message, baseline, target, buckets, confidence, limits, mode), baseline, target

    higher = sorted((b for b in eligible if b.cadence > baseline.cadence), key=lambda b: b.cadence)
    for candidate in higher:
        if _beats_baseline(candidate, baseline, mode, limits):
            return done(
                "send-more",
                f"Send {candidate.label}",
                f"{candidate.label} weeks outperformed {baseline.label} {_lift_text(candidate, baseline, mode)} "
                "on revenue. Engagement and deliverability stayed within guardrails, so scale toward this cadence.",
                candidate,
                confident,
            )

    exploratory = sorted(
        (
            b
            for b in buckets
            if b not in eligible and b.cadence > baseline.cadence and b.weeks >= limits.exploratory_min_weeks
        ),
        key=lambda b: b.cadence,
    )
    for candidate in exploratory:
        if _beats_baseline(candidate, baseline, mode, limits):
            return done(
                "test",
                f"Test {candidate.label}",
                f"{candidate.label} looks promising over {candidate.weeks} weeks but the sample is small. "
                "Run a time-boxed test before shifting your cadence.",
                candidate,
                Confidence.LOW,
            )

    baseline_risky = (
        baseline.sums.spam_rate >= limits.high_spam_rate or baseline.sums.bounce_rate >= limits.high_bounce_rate
    )
    lower = sorted((b for b in eligible if b.cadence < baseline.cadence), key=lambda b: -b.cadence)
    for candidate in lower:
        loss = _relative_drop(candidate.value(mode), baseline.value(mode))
        if (_reduces_risk(candidate, baseline) and loss <= limits.max_revenue_loss) or baseline_risky:
            return done(
                "send-less",
                f"Shift to {candidate.label}",
                f"{candidate.label} carries less deliverability risk than {baseline.label} "
                "without giving up meaningful revenue. Drop cadence to protect the list.",
                candidate,
                confident,
            )

    if len(eligible) == 1:
        if baseline.cadence == MAX_CADENCE and not _low_risk(baseline, limits):
            target = FrequencyBucket(CADENCE_KEYS[MAX_CADENCE - 2], 0, MetricSums())
            return done(
                "step-down",
                f"Step down from {baseline.label}",
                f"{baseline.label} is showing elevated spam or bounce rates. Step down one cadence to protect deliverability.",
                target,
                Confidence.LOW,
            )
        if not _is_healthy(baseline, limits):
            return done(
                "stabilize",
                f"Stabilize {baseline.label}",
                f"Engagement or deliverability at {baseline.label} is below healthy levels. "
                "Stabilize the current cadence before testing more sends.",
                baseline,
                Confidence.LOW,
            )
        if baseline.cadence < MAX_CADENCE:
            step_up = CADENCE_KEYS[baseline.cadence]
            # Proposed cadence only; thin data it may already have is not used.
            target = FrequencyBucket(step_up, 0, MetricSums())
            return done(
                "test-more",
                f"Test {cadence_label(step_up)}",
                f"{baseline.label} is healthy. Test {cadence_label(step_up)} for a few weeks to see whether revenue scales.",
                target,
                Confidence.LOW,
            )

    return done(
        "keep-as-is",
        f"Stay with {baseline.label}",
        f"{baseline.label} is performing consistently. Keep gathering data before changing cadence.",
        baseline,
        confident,
    )


def analyze_send_frequency(
    campaigns: Iterable[CampaignRecord],
    window: Optional[Window] = None,
    mode: str = PER_WEEK,
    thresholds: Optional[SendFrequencyThresholds] = None,
    observer: Observer = NULL_OBSERVER,
) -> SendFrequencyReport:
    records = list(campaigns)
    if window is not None:
        records = in_window(records, window)
    buckets = frequency_buckets(records)
    guidance, baseline, target = recommend_cadence(buckets, mode, thresholds, observer)
    return SendFrequencyReport(
        tuple(buckets),
        guidance,
        baseline.key if baseline is not None else None,
        target.key if target is not None else None,
    )


__all__ = [
    "PER_WEEK",
    "PER_CAMPAIGN",
    "VIEW_MODES",
    "CADENCE_KEYS",
    "FrequencyBucket",
    "SendFrequencyReport",
    "cadence_label",
    "frequency_buckets",
    "pick_baseline",
    "estimate_monthly_gain",
    "recommend_cadence",
    "analyze_send_frequency",
]
