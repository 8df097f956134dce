"""Revenue Reliability Analyzer.

Scores how steady period revenue is on a 0-100 scale from the median
absolute deviation of the most recent complete periods, flags anomalous
periods, and estimates the campaign revenue missed in periods where no
campaign earned anything.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from inboxkit.analysis import stats
from inboxkit.analysis.buckets import WEEKLY, bucket_series
from inboxkit.config import ReliabilityThresholds
from inboxkit.records import CampaignRecord, FlowMessageRecord
from inboxkit.results import Guidance, GuidanceResult, InsufficientData
from inboxkit.timeframes import Window
from inboxkit.utils.logs.report import NULL_OBSERVER, Observer

MODULE = "reliability"

ALL = "all"
CAMPAIGNS = "campaigns"
FLOWS = "flows"
SCOPES = (ALL, CAMPAIGNS, FLOWS)


@dataclass(frozen=True)
class RevenuePeriod:
    start: datetime
    label: str
    campaign_revenue: float
    flow_revenue: float
    complete: bool = True

    @property
    def total_revenue(self) -> float:
        return self.campaign_revenue + self.flow_revenue

    def revenue(self, scope: str) -> float:
        if scope == CAMPAIGNS:
            return self.campaign_revenue
        if scope == FLOWS:
            return self.flow_revenue
        return self.total_revenue


@dataclass(frozen=True)
class ReliabilityPoint:
    label: str
    revenue: float
    index: float
    is_anomaly: bool = False
    z_score: Optional[float] = None


@dataclass(frozen=True)
class ReliabilityReport:
    guidance: Guidance
    scope: str
    reliability: Optional[int] = None
    trend_delta: Optional[int] = None
    window_periods: int = 0
    points: Tuple[ReliabilityPoint, ...] = ()
    median: Optional[float] = None
    mad: Optional[float] = None
    zero_campaign_periods: int = 0
    est_lost_campaign_revenue: Optional[float] = None


def revenue_periods(
    campaigns: Iterable[CampaignRecord],
    flows: Iterable[FlowMessageRecord],
    window: Window,
    granularity: str = WEEKLY,
) -> List[RevenuePeriod]:
    """Campaign and flow revenue per calendar period across *window*, empty periods included."""
    campaign_buckets = bucket_series(campaigns, granularity, window)
    flow_buckets = bucket_series(flows, granularity, window)
    return [
        RevenuePeriod(c.start, c.label, c.sums.revenue, f.sums.revenue, c.complete)
        for c, f in zip(campaign_buckets, flow_buckets)
    ]


def _robust_score(values: Sequence[float], limits: ReliabilityThresholds) -> Tuple[float, float, float]:
    """``(median, mad, raw)`` with the median taken over the positive values when there are any."""
    positives = [v for v in values if v > 0]
    med = stats.median(positives or values)
    if med <= 0:
        return med, 0.0, 0.0
    mad = stats.median([abs(v - med) for v in values])
    return med, mad, math.exp(-limits.calibration * mad / med)


def _analysis_window(series: Sequence[float], limits: ReliabilityThresholds) -> List[float]:
    window = list(series[-limits.window_size :])
    wanted = min(3, max(1, limits.window_size // 4))
    nonzero = sum(1 for v in window if v > 0)
    if nonzero >= wanted or len(series) <= len(window):
        return window
    idx = max(0, len(series) - limits.window_size) - 1
    while idx >= 0 and nonzero < wanted:
        if series[idx] > 0:
            nonzero += 1
        idx -= 1
    return list(series[max(0, idx + 1) :])


def missed_campaign_revenue(
    periods: Sequence[RevenuePeriod], limits: Optional[ReliabilityThresholds] = None
) -> Tuple[int, float]:
    """Complete periods without campaign revenue and the revenue they likely missed.

    Each such period is valued at ``gap_fill_factor`` times the mean of the
    nearest earning periods on either side (or the one side that exists).
    Returns ``(0, 0.0)`` when no period ever earned campaign revenue.
    """
    limits = limits or ReliabilityThresholds()
    earning = [i for i, p in enumerate(periods) if p.campaign_revenue > 0]
    if not earning:
        return 0, 0.0
    zero = [i for i, p in enumerate(periods) if p.complete and p.campaign_revenue == 0]
    lost = 0.0
    for i in zero:
        neighbours = []
        before = [j for j in earning if j < i]
        after = [j for j in earning if j > i]
        if before:
            neighbours.append(periods[before[-1]].campaign_revenue)
        if after:
            neighbours.append(periods[after[0]].campaign_revenue)
        if neighbours:
            lost += limits.gap_fill_factor * sum(neighbours) / len(neighbours)
    return len(zero), lost


def compute_reliability(
    periods: Sequence[RevenuePeriod],
    scope: str = ALL,
    thresholds: Optional[ReliabilityThresholds] = None,
    observer: Observer = NULL_OBSERVER,
) -> ReliabilityReport:
    """Reliability score, trend and anomaly points for *periods*.

    Parameters
    ----------
    periods : sequence of RevenuePeriod
        Ordered oldest first; incomplete periods are shown as points but
        never scored.
    scope : str
        ``"all"``, ``"campaigns"`` or ``"flows"``.
    thresholds : ReliabilityThresholds, optional
        Window length, minimum periods and scoring constants.
    observer : Observer
        Receives trace events; defaults to a no-op.
    """
    if scope not in SCOPES:
        raise ValueError(f"Unknown reliability scope: {scope!r}")
    limits = thresholds or ReliabilityThresholds()
    series = [p.revenue(scope) for p in periods if p.complete]

    if len(series) < limits.min_periods:
        return ReliabilityReport(
            InsufficientData(
                MODULE,
                "too_few_periods",
                f"Revenue reliability needs at least {limits.min_periods} complete periods.",
                details={"complete_periods": len(series)},
            ),
            scope,
            window_periods=len(series),
        )

    window = _analysis_window(series, limits)
    med, mad, raw = _robust_score(window, limits)
    if med <= 0 and any(v > 0 for v in series):
        # nothing earned in the window itself: fall back to the latest earning periods
        recent = [v for v in series if v > 0][-limits.window_size :]
        med = stats.median(recent)
        mad = stats.median([abs(v - med) for v in window])
        raw = math.exp(-limits.calibration * mad / med)
    observer.trace("reliability.window", scope=scope, periods=len(window), median=med, mad=mad)

    zero_periods, lost = (0, 0.0)
    if scope in (ALL, CAMPAIGNS):
        zero_periods, lost = missed_campaign_revenue(periods, limits)
    missed = lost if lost > 0 else None

    if med <= 0:
        return ReliabilityReport(
            GuidanceResult(
                MODULE,
                "no-revenue",
                "No revenue to score",
                "None of the recent complete periods earned revenue.",
                sample=f"{len(window)} periods",
            ),
            scope,
            reliability=0,
            window_periods=len(window),
            median=0.0,
            mad=0.0,
            zero_campaign_periods=zero_periods,
            est_lost_campaign_revenue=missed,
        )

    reliability = stats.round_half_up(raw * 100)
    trend = None
    if len(series) >= len(window) + limits.min_periods:
        previous = series[-(len(window) + 1) : -1]
        prev_med, _, prev_raw = _robust_score(previous, limits)
        if prev_med > 0:
            trend = stats.round_half_up(raw * 100 - prev_raw * 100)

    points = []
    for period in periods[-(limits.window_size + limits.context_periods) :]:
        revenue = period.revenue(scope)
        z = (revenue - med) / (limits.mad_scale * mad) if mad > 0 else None
        points.append(
            ReliabilityPoint(
                label=period.label,
                revenue=revenue,
                index=revenue / med,
                is_anomaly=z is not None and abs(z) > limits.anomaly_z,
                z_score=z,
            )
        )
    anomalies = sum(1 for p in points if p.is_anomaly)

    message = f"Revenue over the last {len(window)} complete periods scores {reliability} out of 100 for steadiness."
    if trend:
        message += f" That is {abs(trend)} points {'up' if trend > 0 else 'down'} on the previous window."
    if anomalies:
        message += f" {anomalies} period{'s' if anomalies != 1 else ''} stand out from the usual range."
    return ReliabilityReport(
        GuidanceResult(
            MODULE,
            "scored",
            f"Revenue reliability {reliability}/100",
            message,
            sample=f"{len(window)} periods",
            metadata={"median": med, "mad": mad, "anomalies": anomalies},
        ),
        scope,
        reliability=reliability,
        trend_delta=trend,
        window_periods=len(window),
        points=tuple(points),
        median=med,
        mad=mad,
        zero_campaign_periods=zero_periods,
        est_lost_campaign_revenue=missed,
    )


def analyze_reliability(
    campaigns: Iterable[CampaignRecord],
    flows: Iterable[FlowMessageRecord],
    window: Window,
    granularity: str = WEEKLY,
    scope: str = ALL,
    thresholds: Optional[ReliabilityThresholds] = None,
    observer: Observer = NULL_OBSERVER,
) -> ReliabilityReport:
    """Bucket campaign and flow revenue over *window* and score its steadiness."""
    periods = revenue_periods(campaigns, flows, window, granularity)
    return compute_reliability(periods, scope, thresholds, observer)


__all__ = [
    "ALL",
    "CAMPAIGNS",
    "FLOWS",
    "SCOPES",
    "RevenuePeriod",
    "ReliabilityPoint",
    "ReliabilityReport",
    "revenue_periods",
    "missed_campaign_revenue",
    "compute_reliability",
    "analyze_reliability",
]
