"""Day-of-week send guidance.

Campaigns are grouped by the weekday they went out (Mon..Sun) and each day
is scored against the overall average on revenue per email, engagement and
complaint risk.  The composite score drives which days to recommend.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd

from inboxkit.config import DayOfWeekThresholds
from inboxkit.metrics import MetricSums
from inboxkit.records import SUM_FIELDS, CampaignRecord, records_frame, safe_ratio
from inboxkit.results import Guidance, GuidanceResult, InsufficientData
from inboxkit.timeframes import Window, in_window
from inboxkit.utils.logs.report import NULL_OBSERVER, Observer

MODULE = "day_of_week"

DAY_KEYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

# Share of the top composite a day needs, by number of days recommended.
INCLUSION_RATIOS = {1: 1.0, 2: 0.92, 3: 0.90, 4: 0.88}

# Floors for the relative-excess denominators (proportions, not percent).
_MIN_UNSUB_BASE = 0.0001
_MIN_SPAM_BASE = 0.00005


@dataclass(frozen=True)
class DayPerformance:
    day: str
    sums: MetricSums
    revenue_index: float
    engagement_index: float
    risk_index: float
    composite: float
    volatile: bool
    eligible: bool

    @property
    def campaigns(self) -> int:
        return self.sums.count

    @property
    def conversion_rate(self) -> float:
        """Orders per email sent, in percent."""
        return safe_ratio(self.sums.orders, self.sums.emails_sent, 100.0)


@dataclass(frozen=True)
class DayOfWeekReport:
    days: Tuple[DayPerformance, ...]
    guidance: Guidance
    weeks_observed: int = 0
    recommended_days: Tuple[str, ...] = ()
    excluded_risk_days: Tuple[str, ...] = ()

    def day(self, key: str) -> DayPerformance:
        for d in self.days:
            if d.day == key:
                return d
        raise KeyError(key)


def full_weeks(window: Window) -> int:
    """Monday-to-Sunday weeks lying entirely inside *window*."""
    first = window.start.date()
    if first.weekday():
        first += timedelta(days=7 - first.weekday())
    last = window.end.date()
    if last.weekday() != 6:
        last -= timedelta(days=last.weekday() + 1)
    if last < first:
        return 0
    return ((last - first).days + 1) // 7


# ---------------------------------------------------------------------------
# 📅  Per-day aggregates
# ---------------------------------------------------------------------------


def _day_frames(records: List[CampaignRecord]) -> Dict[str, pd.DataFrame]:
    frame = records_frame(records)
    frame = frame.assign(day=[DAY_KEYS[stamp.weekday()] for stamp in frame["sent_date"]])
    return {key: frame[frame["day"] == key] for key in DAY_KEYS}


def _is_volatile(day: pd.DataFrame, limits: DayOfWeekThresholds) -> bool:
    emails = float(day["emails_sent"].sum())
    if day.empty or emails <= 0:
        return False
    largest_share = float(day["emails_sent"].max()) / max(1.0, emails)
    revenue = day["revenue"].sort_values(ascending=False).tolist()
    second = revenue[1] if len(revenue) > 1 else 0.0
    return largest_share >= limits.volatile_share and revenue[0] >= limits.volatile_revenue_ratio * max(1.0, second)


def _relative_excess(value: float, overall: float, floor: float) -> float:
    return max(0.0, (value - overall) / max(overall, floor))


def score_days(
    campaigns: Iterable[CampaignRecord],
    thresholds: Optional[DayOfWeekThresholds] = None,
) -> List[DayPerformance]:
    """Sums, indexes and eligibility for each weekday, Monday first."""
    limits = thresholds or DayOfWeekThresholds()
    records = list(campaigns)
    overall = MetricSums.of(records)
    if not records:
        return [DayPerformance(key, MetricSums(), 0.0, 0.0, 1.0, 0.2, False, False) for key in DAY_KEYS]

    emails = overall.emails_sent
    base = {name: safe_ratio(getattr(overall, name), emails) for name in ("opens", "clicks", "orders", "unsubscribes", "spam_complaints")}
    overall_rpe = overall.revenue_per_email
    min_emails = max(limits.min_emails, round(limits.min_email_share * emails))

    scored = []
    for key, day in _day_frames(records).items():
        sums = MetricSums.from_mapping(day[list(SUM_FIELDS)].sum(), len(day))
        share = {name: safe_ratio(getattr(sums, name), sums.emails_sent) for name in base}

        revenue_index = safe_ratio(sums.revenue_per_email, overall_rpe)
        volatile = _is_volatile(day, limits)
        if volatile:
            revenue_index *= limits.volatile_dampen
        engagement_index = (
            0.5 * safe_ratio(share["opens"], base["opens"])
            + 0.3 * safe_ratio(share["clicks"], base["clicks"])
            + 0.2 * safe_ratio(share["orders"], base["orders"])
        )
        raw_risk = 0.6 * _relative_excess(share["spam_complaints"], base["spam_complaints"], _MIN_SPAM_BASE)
        raw_risk += 0.4 * _relative_excess(share["unsubscribes"], base["unsubscribes"], _MIN_UNSUB_BASE)
        risk_index = 1 - min(0.4, raw_risk)
        composite = 0.55 * revenue_index + 0.25 * engagement_index + 0.20 * risk_index
        eligible = sums.count >= limits.min_campaigns or sums.emails_sent >= min_emails
        scored.append(
            DayPerformance(key, sums, revenue_index, engagement_index, risk_index, composite, volatile, eligible)
        )
    return scored


# ---------------------------------------------------------------------------
# 🧭  Recommendation
# ---------------------------------------------------------------------------


def days_to_recommend(total_campaigns: int, weeks: int, requested: Optional[int], limits: DayOfWeekThresholds) -> int:
    if requested is None or requested < 1:
        requested = round(total_campaigns / weeks) if weeks > 0 else 1
    return min(limits.max_days, max(1, int(requested)))


def _is_risky(day: DayPerformance, overall: MetricSums, limits: DayOfWeekThresholds) -> bool:
    return (
        day.sums.spam_rate >= limits.risk_spam_rate
        or day.sums.unsubscribe_rate >= overall.unsubscribe_rate + limits.risk_unsubscribe_add
    )


def _join_days(days: List[str]) -> str:
    if len(days) == 1:
        return days[0]
    return ", ".join(days[:-1]) + " and " + days[-1]


def recommend_days(
    days: List[DayPerformance],
    weeks: int,
    days_per_week: Optional[int] = None,
    thresholds: Optional[DayOfWeekThresholds] = None,
    observer: Observer = NULL_OBSERVER,
) -> Tuple[Guidance, Tuple[str, ...], Tuple[str, ...]]:
    """Pick send days from scored weekdays; returns ``(guidance, recommended, excluded_risk)``."""
    limits = thresholds or DayOfWeekThresholds()
    overall = MetricSums()
    for d in days:
        overall = overall + d.sums
    sample = f"Based on {weeks} weeks / {overall.count} campaigns ({overall.emails_sent:,.0f} emails)."

    eligible = sorted((d for d in days if d.eligible), key=lambda d: -d.composite)
    if not eligible:
        return (
            InsufficientData(
                MODULE,
                "not_enough_data",
                f"No day met the sample bar (at least {limits.min_campaigns} campaigns or enough email volume).",
                details={"weeks": weeks},
            ),
            (),
            (),
        )

    if len(eligible) == 1:
        only = eligible[0]
        return (
            GuidanceResult(
                MODULE,
                "exploratory",
                f"Use {only.day} as an anchor day",
                f"Only {only.day} passed sampling so far. Keep testing other days before locking a pattern.",
                target=only.day,
                sample=sample,
            ),
            (only.day,),
            (),
        )

    top, second = eligible[0], eligible[1]
    spread = top.composite - eligible[-1].composite
    observer.trace("day_of_week.scores", top=top.day, spread=spread)
    if spread < limits.even_spread:
        return (
            GuidanceResult(
                MODULE,
                "even",
                "Performance is even across days",
                "Revenue and engagement vary little among sampled days. Keep the current schedule and focus "
                "testing on creative instead.",
                sample=sample,
                metadata={"spread": spread},
            ),
            (),
            (),
        )

    count = days_to_recommend(overall.count, weeks, days_per_week, limits)
    ratio = INCLUSION_RATIOS[count]
    chosen = [d for d in eligible if d.composite >= top.composite * ratio][:count]
    for d in eligible:
        if len(chosen) >= count:
            break
        if d not in chosen:
            chosen.append(d)

    risky = [d.day for d in chosen if _is_risky(d, overall, limits)]
    picked = [d.day for d in chosen]
    for day in risky:
        if len(picked) <= 1:
            break
        picked.remove(day)
        for alt in eligible:
            if alt.day not in picked and alt.day not in risky:
                picked.append(alt.day)
                break

    clear_winner = top.composite >= second.composite * limits.clear_winner_ratio and top.revenue_index >= limits.clear_winner_ratio
    metadata = {"days_per_week": count, "inclusion_ratio": ratio, "clear_winner": clear_winner}
    if count == 1 and not clear_winner:
        return (
            GuidanceResult(
                MODULE,
                "consider",
                f"No clear leader, consider {top.day} or {second.day}",
                "Differences are within normal variance. Keep testing without overfitting to short-term spikes.",
                target=f"{top.day}, {second.day}",
                sample=sample,
                metadata=metadata,
            ),
            (top.day, second.day),
            tuple(risky),
        )

    picked_days = [d for d in eligible if d.day in picked]
    avg_rpe = sum(d.sums.revenue_per_email for d in picked_days) / max(1, len(picked_days))
    message = (
        f"These days lead on the composite score with average revenue per email of {avg_rpe:.2f} "
        f"vs {overall.revenue_per_email:.2f} overall."
    )
    if risky:
        message += f" Complaints run high on {_join_days(risky)}; keep copy and segmentation tight."
    return (
        GuidanceResult(
            MODULE,
            "normal",
            f"Focus sends on {_join_days(picked)}",
            message,
            target=", ".join(picked),
            sample=sample,
            metadata=metadata,
        ),
        tuple(picked),
        tuple(risky),
    )


def analyze_day_of_week(
    campaigns: Iterable[CampaignRecord],
    window: Window,
    days_per_week: Optional[int] = None,
    thresholds: Optional[DayOfWeekThresholds] = None,
    observer: Observer = NULL_OBSERVER,
) -> DayOfWeekReport:
    """Score weekdays inside *window* and recommend which to send on.

    Parameters
    ----------
    campaigns : iterable of CampaignRecord
    window : Window
        Needs at least ``min_weeks`` full Monday-weeks.
    days_per_week : int, optional
        Number of send days wanted.  Inferred from campaigns per week when
        omitted; capped at 4.
    """
    limits = thresholds or DayOfWeekThresholds()
    weeks = full_weeks(window)
    records = in_window(campaigns, window)
    if not records:
        return DayOfWeekReport((), InsufficientData(MODULE, "no_campaigns", "No campaigns were found in this date range."))
    if weeks < limits.min_weeks:
        return DayOfWeekReport(
            (),
            InsufficientData(
                MODULE,
                "not_enough_weeks",
                f"At least {limits.min_weeks} full weeks are required; only {weeks} observed.",
                details={"weeks": weeks},
            ),
            weeks_observed=weeks,
        )

    days = score_days(records, limits)
    guidance, picked, risky = recommend_days(days, weeks, days_per_week, limits, observer)
    return DayOfWeekReport(tuple(days), guidance, weeks, picked, risky)


__all__ = [
    "DAY_KEYS",
    "INCLUSION_RATIOS",
    "DayPerformance",
    "DayOfWeekReport",
    "full_weeks",
    "score_days",
    "days_to_recommend",
    "recommend_days",
    "analyze_day_of_week",
]
