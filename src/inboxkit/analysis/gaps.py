"""Campaign Gaps & Losses Analyzer.

Finds weeks without a campaign send and estimates the revenue those gaps
cost, extrapolating from neighbouring weeks that did send.  Only complete
Monday-weeks inside the window are considered.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional, Sequence, Tuple

from inboxkit.analysis import stats
from inboxkit.analysis.buckets import WEEKLY, PeriodBucket, bucket_series
from inboxkit.config import GapsThresholds
from inboxkit.records import CampaignRecord, safe_ratio
from inboxkit.results import Guidance, GuidanceResult, InsufficientData
from inboxkit.timeframes import Window, in_window
from inboxkit.utils.logs.report import NULL_OBSERVER, Observer

MODULE = "gaps_losses"


@dataclass(frozen=True)
class ZeroRun:
    start_index: int
    length: int
    weeks: Tuple[date, ...]


@dataclass(frozen=True)
class LossProjection:
    annual: float
    monthly: float
    weekly: float


@dataclass(frozen=True)
class GapsReport:
    active: bool
    guidance: Guidance
    weeks: Tuple[PeriodBucket, ...] = ()
    zero_send_weeks: int = 0
    longest_gap_weeks: int = 0
    longest_gap_dates: Tuple[date, ...] = ()
    pct_weeks_sent: float = 0.0
    avg_campaigns_per_week: float = 0.0
    all_weeks_sent: bool = False
    deferred_weeks_over_4: int = 0
    zero_revenue_campaigns: Tuple[CampaignRecord, ...] = ()
    estimated_lost_revenue: Optional[float] = None
    projection: Optional[LossProjection] = None
    suspected_coverage_gap: bool = False

    @property
    def zero_revenue_count(self) -> int:
        return len(self.zero_revenue_campaigns)


def zero_send_runs(weeks: Sequence[PeriodBucket]) -> List[ZeroRun]:
    """Maximal runs of consecutive weeks without a campaign."""
    runs: List[ZeroRun] = []
    i = 0
    while i < len(weeks):
        if weeks[i].count:
            i += 1
            continue
        j = i
        while j < len(weeks) and not weeks[j].count:
            j += 1
        runs.append(ZeroRun(i, j - i, tuple(w.start.date() for w in weeks[i:j])))
        i = j
    return runs


def _is_reference(week: PeriodBucket) -> bool:
    return week.count > 0 and week.sums.revenue > 0


def reference_revenue(weeks: Sequence[PeriodBucket], run: ZeroRun, limits: GapsThresholds) -> List[float]:
    """Revenue of the nearest sending weeks on each side of *run*."""
    need = limits.short_run_references if run.length == 1 else limits.long_run_references
    before = [w.sums.revenue for w in reversed(weeks[: run.start_index]) if _is_reference(w)][:need]
    after = [w.sums.revenue for w in weeks[run.start_index + run.length :] if _is_reference(w)][:need]
    return before + after


def estimate_lost_revenue(
    weeks: Sequence[PeriodBucket],
    runs: Sequence[ZeroRun],
    limits: Optional[GapsThresholds] = None,
    observer: Observer = NULL_OBSERVER,
) -> float:
    """Sum of ``median(capped references) * run length`` over runs of 1 to 4 weeks."""
    limits = limits or GapsThresholds()
    total = 0.0
    for run in runs:
        if run.length > limits.max_run_weeks:
            continue
        refs = reference_revenue(weeks, run, limits)
        if len(refs) < limits.min_references:
            observer.trace("gaps.run_skipped", start=run.weeks[0], references=len(refs))
            continue
        cap = stats.iqr_limit(refs)
        expected = stats.median([min(r, cap) for r in refs])
        total += expected * run.length
        observer.trace("gaps.run", start=run.weeks[0], length=run.length, expected=expected)
    return total


def project_losses(lost: float, days: int, weeks_with_sends: int, total_weeks: int) -> LossProjection:
    range_factor = 365 / min(max(days, 1), 365)
    coverage = safe_ratio(weeks_with_sends, total_weeks)
    annual = lost * range_factor * coverage
    return LossProjection(annual, annual / 12, annual / 52)


def analyze_gaps(
    campaigns: Iterable[CampaignRecord],
    window: Window,
    granularity: str = WEEKLY,
    thresholds: Optional[GapsThresholds] = None,
    observer: Observer = NULL_OBSERVER,
) -> GapsReport:
    """Zero-send weeks, longest gap and the revenue estimate for short gaps.

    Inactive (``active=False``) unless *window* spans at least 90 days and
    is viewed weekly.
    """
    limits = thresholds or GapsThresholds()
    if window.days < limits.min_window_days or granularity != WEEKLY:
        return GapsReport(
            False,
            InsufficientData(
                MODULE,
                "inactive",
                f"Gaps & losses needs a weekly view of at least {limits.min_window_days} days.",
                details={"days": window.days, "granularity": granularity},
            ),
        )

    records = in_window(campaigns, window)
    weeks = [w for w in bucket_series(records, WEEKLY, window) if w.complete]
    zero_revenue = tuple(sorted((c for c in records if c.revenue == 0), key=lambda c: (c.sent_date, c.id)))
    if not weeks:
        return GapsReport(
            True,
            InsufficientData(MODULE, "no_complete_weeks", "The selected range holds no complete weeks."),
            zero_revenue_campaigns=zero_revenue,
        )

    runs = zero_send_runs(weeks)
    zero_weeks = sum(r.length for r in runs)
    longest = max(runs, key=lambda r: r.length) if runs else None
    sent_weeks = len(weeks) - zero_weeks
    pct_sent = sent_weeks / len(weeks) * 100.0
    avg_per_week = sum(w.count for w in weeks) / len(weeks)
    deferred = sum(r.length for r in runs if r.length > limits.max_run_weeks)
    longest_len = longest.length if longest else 0
    coverage_gap = (
        longest is not None
        and longest_len >= limits.coverage_gap_weeks
        and longest_len >= limits.coverage_gap_share * zero_weeks
    )
    observer.trace("gaps.summary", weeks=len(weeks), zero_weeks=zero_weeks, longest=longest_len)

    base = dict(
        weeks=tuple(weeks),
        zero_send_weeks=zero_weeks,
        longest_gap_weeks=longest_len,
        longest_gap_dates=longest.weeks if longest else (),
        pct_weeks_sent=pct_sent,
        avg_campaigns_per_week=avg_per_week,
        all_weeks_sent=zero_weeks == 0,
        deferred_weeks_over_4=deferred,
        zero_revenue_campaigns=zero_revenue,
        suspected_coverage_gap=coverage_gap,
    )

    if sent_weeks / len(weeks) < limits.min_sent_share:
        reason = f"Campaigns went out in only {pct_sent:.0f}% of weeks; at least {limits.min_sent_share:.0%} is needed."
        if coverage_gap:
            reason += f" A {longest_len}-week gap suggests the export does not cover the full range."
        return GapsReport(True, InsufficientData(MODULE, "low_send_coverage", reason, details={"pct_weeks_sent": pct_sent}), **base)

    lost = estimate_lost_revenue(weeks, runs, limits, observer)
    projection = project_losses(lost, window.days, sent_weeks, len(weeks))
    if zero_weeks == 0:
        guidance: Guidance = GuidanceResult(
            MODULE,
            "consistent",
            "Campaigns went out every week",
            "No complete week in this range was missed.",
            sample=f"{len(weeks)} complete weeks",
        )
    else:
        guidance = GuidanceResult(
            MODULE,
            "gaps",
            f"{zero_weeks} week{'' if zero_weeks == 1 else 's'} without a campaign",
            "Weeks without a campaign send leave revenue on the table. "
            "Plan a simple fallback send so no week goes dark.",
            estimated_monthly_gain=projection.monthly if lost > 0 else None,
            sample=f"{len(weeks)} complete weeks",
            metadata={"estimated_lost_revenue": lost, "deferred_weeks_over_4": deferred},
        )
    return GapsReport(True, guidance, estimated_lost_revenue=lost, projection=projection, **base)


__all__ = [
    "ZeroRun",
    "LossProjection",
    "GapsReport",
    "zero_send_runs",
    "reference_revenue",
    "estimate_lost_revenue",
    "project_losses",
    "analyze_gaps",
]
