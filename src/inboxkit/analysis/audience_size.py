"""Audience-Size Performance Analyzer.

Buckets campaigns by recipient count, scores each bucket with
recency-weighted revenue metrics and a deliverability risk zone, then picks
the audience size worth scaling toward.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from inboxkit.analysis import stats
from inboxkit.config import AudienceSizeThresholds
from inboxkit.metrics import MetricSums
from inboxkit.records import CampaignRecord, safe_ratio
from inboxkit.results import Confidence, Guidance, GuidanceResult, InsufficientData, RiskZone
from inboxkit.timeframes import Window, in_window
from inboxkit.utils.logs.report import NULL_OBSERVER, Observer

MODULE = "audience_size"


@dataclass(frozen=True)
class AudienceBucket:
    key: str
    range_label: str
    range_min: float
    range_max: float
    sums: MetricSums
    weighted_avg_revenue: float
    revenue_stddev: float
    weighted_revenue_per_email: float
    risk_zone: RiskZone
    qualified: bool

    @property
    def campaigns(self) -> int:
        return self.sums.count

    @property
    def cv(self) -> float:
        return self.revenue_stddev / self.weighted_avg_revenue if self.weighted_avg_revenue else math.inf


@dataclass(frozen=True)
class AudienceSizeReport:
    buckets: Tuple[AudienceBucket, ...]
    guidance: Guidance
    sample_size: int
    lookback_weeks: int
    limited: bool
    optimal_lookback_days: Optional[int] = None


# ---------------------------------------------------------------------------
# 🏷️  Labels
# ---------------------------------------------------------------------------


def _round_for_label(x: float) -> int:
    if x >= 1_000_000:
        return stats.round_half_up(x / 100_000) * 100_000
    if x >= 100_000:
        return stats.round_half_up(x / 10_000) * 10_000
    if x >= 10_000:
        return stats.round_half_up(x / 1_000) * 1_000
    if x >= 1_000:
        return stats.round_half_up(x / 100) * 100
    return stats.round_half_up(x)


def format_emails_short(n: int) -> str:
    """``1500 -> "1.5k"``, ``2000000 -> "2M"``."""
    if n >= 1_000_000:
        return f"{n / 1_000_000:.{0 if n % 1_000_000 == 0 else 1}f}M"
    if n >= 1_000:
        return f"{n / 1_000:.{0 if n % 1_000 == 0 else 1}f}k"
    return str(n)


def nice_range_label(lo: float, hi: float) -> str:
    return f"{format_emails_short(_round_for_label(lo))}-{format_emails_short(_round_for_label(hi))}"


# ---------------------------------------------------------------------------
# 🔍  Sample preparation
# ---------------------------------------------------------------------------


def risk_zone(spam_rate: float, bounce_rate: float, limits: Optional[AudienceSizeThresholds] = None) -> RiskZone:
    limits = limits or AudienceSizeThresholds()
    if spam_rate > limits.red_spam_rate or bounce_rate > limits.red_bounce_rate:
        return RiskZone.RED
    if spam_rate >= limits.yellow_spam_rate or bounce_rate >= limits.yellow_bounce_rate:
        return RiskZone.YELLOW
    return RiskZone.GREEN


def send_floor(campaigns: Sequence[CampaignRecord], limits: AudienceSizeThresholds) -> Optional[float]:
    """Adaptive minimum recipient count; ``None`` below the campaign minimum."""
    if len(campaigns) < limits.floor_min_campaigns:
        return None
    p5 = stats.floor_percentile([c.emails_sent for c in campaigns], limits.floor_percentile)
    return max(limits.floor_lower, min(limits.floor_upper, p5))


def _analysis_sample(
    campaigns: Sequence[CampaignRecord], limits: AudienceSizeThresholds, observer: Observer
) -> List[CampaignRecord]:
    valid = [c for c in campaigns if c.emails_sent >= 0]
    floor = send_floor(valid, limits)
    if floor is not None:
        kept = [c for c in valid if c.emails_sent >= floor]
        observer.trace("audience_size.floor", threshold=floor, removed=len(valid) - len(kept))
        valid = kept

    limit = stats.iqr_limit([c.revenue for c in valid])
    trimmed = [c for c in valid if c.revenue <= limit]
    if len(trimmed) < limits.min_after_outlier_filter:
        observer.trace("audience_size.outliers_reverted", kept=len(trimmed))
        return valid
    observer.trace("audience_size.outliers", limit=limit, removed=len(valid) - len(trimmed))
    return trimmed


def lookback_weeks(start: datetime, end: datetime) -> int:
    days = max(1, stats.round_half_up((end - start).total_seconds() / 86400)) + 1
    return max(1, stats.round_half_up(days / 7))


def optimal_lookback_days(
    history: Sequence[CampaignRecord], limits: Optional[AudienceSizeThresholds] = None
) -> Optional[int]:
    """Days of history needed to clear the account-wide gates at the historical send pace.

    Both the campaign and the email minimum must be reachable; the result
    is clamped to ``[lookback_min_days, lookback_max_days]``.  ``None`` for
    an empty history.
    """
    limits = limits or AudienceSizeThresholds()
    if not history:
        return None
    first = min(c.sent_date for c in history).date()
    last = max(c.sent_date for c in history).date()
    days = (last - first).days + 1
    total_emails = sum(c.emails_sent for c in history)
    if total_emails <= 0:
        return limits.lookback_max_days
    needed = max(
        math.ceil(limits.min_total_emails * days / total_emails),
        math.ceil(limits.min_total_campaigns * days / len(history)),
    )
    return max(limits.lookback_min_days, min(limits.lookback_max_days, needed))


# ---------------------------------------------------------------------------
# 🪣  Buckets
# ---------------------------------------------------------------------------


def build_buckets(
    campaigns: Sequence[CampaignRecord],
    limits: Optional[AudienceSizeThresholds] = None,
) -> List[AudienceBucket]:
    """Partition *campaigns* by recipient count and score every non-empty bucket.

    Weights for the recency-weighted statistics span the first to last
    send date of *campaigns*.
    """
    limits = limits or AudienceSizeThresholds()
    if not campaigns:
        return []
    boundaries = stats.dynamic_boundaries([c.emails_sent for c in campaigns], limits.target_buckets)
    members: List[List[CampaignRecord]] = [[] for _ in range(max(1, len(boundaries) - 1))]
    for campaign in campaigns:
        idx = stats.bucket_index(campaign.emails_sent, boundaries)
        if idx is not None:
            members[idx].append(campaign)

    start = min(c.sent_date for c in campaigns)
    end = max(c.sent_date for c in campaigns)
    buckets = []
    for idx, group in enumerate(members):
        if not group:
            continue
        lo = min(c.emails_sent for c in group)
        hi = max(c.emails_sent for c in group)
        sums = MetricSums.of(group)
        weighted = stats.weighted_stats(((c.revenue, c.sent_date) for c in group), start, end)
        rpe = stats.weighted_ratio(((c.revenue, c.emails_sent, c.sent_date) for c in group), start, end)
        buckets.append(
            AudienceBucket(
                key=str(idx),
                range_label=nice_range_label(lo, hi),
                range_min=lo,
                range_max=hi,
                sums=sums,
                weighted_avg_revenue=weighted.mean,
                revenue_stddev=weighted.stddev,
                weighted_revenue_per_email=rpe,
                risk_zone=risk_zone(sums.spam_rate, sums.bounce_rate, limits),
                qualified=sums.count >= limits.min_bucket_campaigns and sums.emails_sent >= limits.min_bucket_emails,
            )
        )
    return buckets


def confidence_for(cv: float, n: int, limits: Optional[AudienceSizeThresholds] = None) -> Confidence:
    limits = limits or AudienceSizeThresholds()
    if cv < limits.high_confidence_cv and n >= limits.high_confidence_n:
        return Confidence.HIGH
    if cv < limits.medium_confidence_cv and n >= limits.medium_confidence_n:
        return Confidence.MEDIUM
    return Confidence.LOW


# ---------------------------------------------------------------------------
# 🧭  Recommendation
# ---------------------------------------------------------------------------


def _recommend(
    buckets: Sequence[AudienceBucket],
    sample: Sequence[CampaignRecord],
    weeks: int,
    limits: AudienceSizeThresholds,
    observer: Observer,
) -> Guidance:
    qualified = [b for b in buckets if b.qualified]
    if not qualified:
        return InsufficientData(
            MODULE,
            "no_qualified_bucket",
            f"No audience size has at least {limits.min_bucket_campaigns} campaigns "
            f"and {limits.min_bucket_emails:,.0f} emails.",
        )

    candidates = [b for b in qualified if b.risk_zone is not RiskZone.RED]
    if not candidates:
        return GuidanceResult(
            MODULE,
            "hygiene-first",
            "Fix deliverability before scaling",
            "Every audience size with enough data is in the red risk zone. "
            "Clean the list and reduce spam and bounce rates before sending to larger audiences.",
            risk_zone=RiskZone.RED,
            sample=f"{len(sample)} campaigns",
        )

    ranked = sorted(candidates, key=lambda b: (-b.weighted_revenue_per_email, b.range_min))
    best = ranked[0]
    overall = MetricSums.of(sample)
    campaigns_per_week = safe_ratio(len(sample), weeks)
    monthly_revenue = safe_ratio(overall.revenue, weeks) * limits.weeks_per_month
    opportunity = (best.sums.avg_revenue - overall.avg_revenue) * campaigns_per_week * limits.weeks_per_month
    significant = opportunity >= limits.significant_monthly_gain or (
        monthly_revenue > 0 and opportunity >= limits.significant_revenue_share * monthly_revenue
    )
    confidence = confidence_for(best.cv, best.campaigns, limits)
    observer.trace(
        "audience_size.best",
        bucket=best.range_label,
        opportunity=opportunity,
        significant=significant,
        confidence=confidence.value,
    )

    sample_note = f"{len(sample)} campaigns over {weeks} weeks"
    if not significant:
        return GuidanceResult(
            MODULE,
            "similar",
            "Audience sizes perform similarly",
            f"No audience size clearly outperforms the others. {best.range_label} leads on revenue per email, "
            "but the gap is too small to justify changing who you send to.",
            target=best.range_label,
            confidence=confidence,
            risk_zone=best.risk_zone,
            sample=sample_note,
            metadata={"monthly_opportunity": opportunity},
        )
    return GuidanceResult(
        MODULE,
        "target-size",
        f"Send to {best.range_label} recipients",
        f"Campaigns sent to {best.range_label} recipients earn the most revenue per email. "
        "Shifting more sends toward this audience size should lift monthly revenue.",
        target=best.range_label,
        confidence=confidence,
        estimated_monthly_gain=opportunity,
        risk_zone=best.risk_zone,
        sample=sample_note,
        metadata={"monthly_opportunity": opportunity, "monthly_revenue": monthly_revenue},
    )


def analyze_audience_size(
    campaigns: Iterable[CampaignRecord],
    window: Optional[Window] = None,
    thresholds: Optional[AudienceSizeThresholds] = None,
    observer: Observer = NULL_OBSERVER,
    history: Optional[Iterable[CampaignRecord]] = None,
) -> AudienceSizeReport:
    """Bucket in-window campaigns by audience size and recommend a target size.

    Parameters
    ----------
    campaigns : iterable of CampaignRecord
        The full campaign set; filtered to *window* when one is given.
    window : Window, optional
        Active date range.  The lookback length is taken from the window,
        or from the campaign span when no window is given.
    thresholds : AudienceSizeThresholds, optional
        Per-call gates and cut-offs.
    observer : Observer
        Receives trace events; defaults to a no-op.
    history : iterable of CampaignRecord, optional
        Full account history.  When given, the report carries the lookback
        (in days) that would clear the sample gates at the account's pace.
    """
    limits = thresholds or AudienceSizeThresholds()
    records = sorted(campaigns, key=lambda c: (c.sent_date, c.id))
    if window is not None:
        records = in_window(records, window)
    valid = [c for c in records if c.emails_sent >= 0]
    optimal = None
    if history is not None:
        optimal = optimal_lookback_days([c for c in history if c.emails_sent >= 0], limits)

    if not valid:
        guidance: Guidance = InsufficientData(
            MODULE,
            "no_campaigns",
            "No campaigns in the selected range.",
            details={"optimal_lookback_days": optimal} if optimal is not None else {},
        )
        return AudienceSizeReport((), guidance, 0, 0, True, optimal)

    span_start = window.start if window is not None else valid[0].sent_date
    span_end = window.end if window is not None else valid[-1].sent_date
    weeks = lookback_weeks(span_start, span_end)

    sample = _analysis_sample(valid, limits, observer)
    buckets = build_buckets(sample, limits)
    limited = len(sample) < limits.min_total_campaigns

    total_emails = sum(c.emails_sent for c in valid)
    if len(valid) < limits.min_total_campaigns or total_emails < limits.min_total_emails:
        details = {"campaigns": len(valid), "emails": total_emails}
        reason = (
            f"Audience-size guidance needs at least {limits.min_total_campaigns} campaigns "
            f"and {limits.min_total_emails:,.0f} emails in the selected range."
        )
        if optimal is not None:
            details["optimal_lookback_days"] = optimal
            reason += f" Try a range of about {optimal} days."
        guidance = InsufficientData(MODULE, "below_minimum_sample", reason, details=details)
    else:
        guidance = _recommend(buckets, sample, weeks, limits, observer)
    return AudienceSizeReport(tuple(buckets), guidance, len(sample), weeks, limited, optimal)


__all__ = [
    "AudienceBucket",
    "AudienceSizeReport",
    "format_emails_short",
    "nice_range_label",
    "risk_zone",
    "send_floor",
    "lookback_weeks",
    "optimal_lookback_days",
    "build_buckets",
    "confidence_for",
    "analyze_audience_size",
]
