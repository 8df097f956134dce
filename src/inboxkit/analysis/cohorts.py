"""Consent-Split / Cohort Analyzer.

Splits subscribers by the consent text exported with each profile
("SUBSCRIBED" vs anything else) and compares value metrics across the two
groups.  Also builds the profile-age by engagement-recency matrix.
Dead-weight savings price the list with and without profiles that never
engaged or went quiet.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import pandas as pd

from inboxkit.config import DeadWeightThresholds, PriceTier
from inboxkit.records import SubscriberRecord, safe_ratio
from inboxkit.results import InsufficientData
from inboxkit.timeframes import Window
from inboxkit.utils.logs.report import NULL_OBSERVER, Observer

SUBSCRIBED = "Subscribed"
NOT_SUBSCRIBED = "Not Subscribed"
CONSENT_GROUPS = (SUBSCRIBED, NOT_SUBSCRIBED)

CONSENT_METRICS = (
    "count",
    "buyers",
    "non_buyers",
    "repeat_buyers",
    "ltv_buyers",
    "ltv_all",
    "total_revenue",
    "engaged_30",
    "engaged_60",
    "engaged_90",
)

AGE_BUCKETS = ("0-5 months", "6-11 months", "12-23 months", "24+ months")
ENGAGEMENT_BUCKETS = ("0-30 days", "31-60 days", "61-90 days", "91-120 days", "121+ days", "Never")


@dataclass(frozen=True)
class ConsentGroupValue:
    key: str
    value: float
    sample_size: int
    percent_of_group: Optional[float] = None


@dataclass(frozen=True)
class ConsentSplit:
    metric: str
    groups: Tuple[ConsentGroupValue, ...]

    def group(self, key: str) -> ConsentGroupValue:
        for g in self.groups:
            if g.key == key:
                return g
        raise KeyError(key)


def consent_group(subscriber: SubscriberRecord) -> str:
    return SUBSCRIBED if subscriber.consent_raw.strip().upper() == "SUBSCRIBED" else NOT_SUBSCRIBED


def engaged_within(subscriber: SubscriberRecord, anchor: datetime, days: int) -> bool:
    """Last open or click inside ``[anchor - days, anchor]``."""
    start = anchor - timedelta(days=days)
    return any(m is not None and start <= m <= anchor for m in (subscriber.last_open, subscriber.last_click))


def _in_window(subscribers: Iterable[SubscriberRecord], window: Optional[Window]) -> List[SubscriberRecord]:
    if window is None:
        return list(subscribers)
    return [s for s in subscribers if s.created is not None and window.contains(s.created)]


def _group_value(key: str, group: List[SubscriberRecord], metric: str, anchor: datetime) -> ConsentGroupValue:
    n = len(group)
    if metric == "count":
        return ConsentGroupValue(key, n, n)
    if metric in ("buyers", "non_buyers", "repeat_buyers") or metric.startswith("engaged_"):
        if metric == "buyers":
            hits = sum(1 for s in group if s.is_buyer)
        elif metric == "non_buyers":
            hits = n - sum(1 for s in group if s.is_buyer)
        elif metric == "repeat_buyers":
            hits = sum(1 for s in group if s.total_orders >= 2)
        else:
            days = int(metric.split("_")[1])
            hits = sum(1 for s in group if engaged_within(s, anchor, days))
        return ConsentGroupValue(key, hits, n, safe_ratio(hits, n, 100.0))
    if metric == "ltv_buyers":
        buyers = [s.lifetime_value for s in group if s.is_buyer]
        return ConsentGroupValue(key, safe_ratio(sum(buyers), len(buyers)), n)
    if metric == "ltv_all":
        return ConsentGroupValue(key, safe_ratio(sum(s.lifetime_value for s in group), n), n)
    return ConsentGroupValue(key, sum(s.lifetime_value for s in group), n)


def consent_split(
    subscribers: Iterable[SubscriberRecord],
    metric: str,
    anchor: datetime,
    window: Optional[Window] = None,
) -> ConsentSplit:
    """Value of *metric* for the Subscribed and Not Subscribed groups.

    Parameters
    ----------
    subscribers : iterable of SubscriberRecord
    metric : str
        One of :data:`CONSENT_METRICS`.
    anchor : datetime
        Reference date for the engagement-recency metrics.
    window : Window, optional
        Keep only profiles created inside this window.
    """
    if metric not in CONSENT_METRICS:
        raise ValueError(f"Unknown consent metric: {metric!r}")
    groups: Dict[str, List[SubscriberRecord]] = {key: [] for key in CONSENT_GROUPS}
    for sub in _in_window(subscribers, window):
        groups[consent_group(sub)].append(sub)
    return ConsentSplit(metric, tuple(_group_value(key, groups[key], metric, anchor) for key in CONSENT_GROUPS))


def consent_summary(
    subscribers: Iterable[SubscriberRecord],
    anchor: datetime,
    window: Optional[Window] = None,
) -> Dict[str, ConsentSplit]:
    """Every consent metric at once."""
    subs = _in_window(subscribers, window)
    return {metric: consent_split(subs, metric, anchor) for metric in CONSENT_METRICS}


# ---------------------------------------------------------------------------
# 🧊  Profile age x engagement matrix
# ---------------------------------------------------------------------------


def full_months_between(start: datetime, end: datetime) -> int:
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day < start.day:
        months -= 1
    return max(0, months)


def age_bucket(months: int) -> str:
    if months < 6:
        return AGE_BUCKETS[0]
    if months < 12:
        return AGE_BUCKETS[1]
    if months < 24:
        return AGE_BUCKETS[2]
    return AGE_BUCKETS[3]


def engagement_bucket(subscriber: SubscriberRecord, anchor: datetime) -> str:
    last = subscriber.last_engaged
    if last is None:
        return ENGAGEMENT_BUCKETS[-1]
    days = max(0, (anchor - last).days)
    for limit, label in zip((30, 60, 90, 120), ENGAGEMENT_BUCKETS):
        if days <= limit:
            return label
    return ENGAGEMENT_BUCKETS[4]


def engagement_by_age(
    subscribers: Iterable[SubscriberRecord],
    anchor: datetime,
    observer: Observer = NULL_OBSERVER,
) -> pd.DataFrame:
    """Row-normalised % of profiles per engagement bucket, by profile age.

    Rows follow :data:`AGE_BUCKETS`, columns :data:`ENGAGEMENT_BUCKETS`.
    Profiles without a creation date are skipped; empty rows are all 0.
    """
    rows = [
        {
            "age": age_bucket(full_months_between(s.created, anchor)),
            "engagement": engagement_bucket(s, anchor),
        }
        for s in subscribers
        if s.created is not None
    ]
    observer.trace("cohorts.matrix", profiles=len(rows))
    if not rows:
        return pd.DataFrame(0.0, index=list(AGE_BUCKETS), columns=list(ENGAGEMENT_BUCKETS))
    frame = pd.DataFrame(rows)
    matrix = pd.crosstab(frame["age"], frame["engagement"], normalize="index") * 100.0
    return matrix.reindex(index=list(AGE_BUCKETS), columns=list(ENGAGEMENT_BUCKETS), fill_value=0.0).astype(float)


# ---------------------------------------------------------------------------
# 💸  Dead-weight savings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DeadWeightSummary:
    current_subscribers: int
    dead_weight_count: int
    projected_subscribers: int
    current_monthly_price: Optional[float]
    projected_monthly_price: Optional[float]
    monthly_savings: Optional[float]
    annual_savings: Optional[float]


def price_for(count: int, limits: Optional[DeadWeightThresholds] = None) -> Optional[float]:
    """Monthly plan price for *count* profiles; ``None`` above the published tiers."""
    limits = limits or DeadWeightThresholds()
    if count > limits.custom_pricing_above:
        return None
    tiers: Sequence[PriceTier] = limits.pricing_tiers
    for low, high, price in tiers:
        if low <= count <= high:
            return price
    return None


def _days_since(anchor: datetime, moment: Optional[datetime]) -> float:
    return (anchor - moment).days if moment is not None else float("inf")


def is_dead_weight(
    subscriber: SubscriberRecord, anchor: datetime, limits: Optional[DeadWeightThresholds] = None
) -> bool:
    """Never active after ``never_active_days``, or no open and no click for ``inactive_days``.

    A profile without a creation date counts as created on *anchor*.
    """
    limits = limits or DeadWeightThresholds()
    age = (anchor - subscriber.created).days if subscriber.created is not None else 0
    never_active = subscriber.first_active is None and subscriber.last_active is None
    if never_active and age >= limits.never_active_days:
        return True
    return (
        age >= limits.inactive_min_age_days
        and _days_since(anchor, subscriber.last_open) >= limits.inactive_days
        and _days_since(anchor, subscriber.last_click) >= limits.inactive_days
    )


def dead_weight_savings(
    subscribers: Iterable[SubscriberRecord],
    anchor: datetime,
    thresholds: Optional[DeadWeightThresholds] = None,
    observer: Observer = NULL_OBSERVER,
) -> Union[DeadWeightSummary, InsufficientData]:
    """Plan price today versus after suppressing dead-weight profiles.

    Savings are ``None`` when either count falls outside the pricing tiers.
    """
    limits = thresholds or DeadWeightThresholds()
    subs = list(subscribers)
    if not subs:
        return InsufficientData("cohorts", "no_subscribers", "No subscriber profiles are loaded.")
    dead = sum(1 for s in subs if is_dead_weight(s, anchor, limits))
    current = len(subs)
    projected = max(0, current - dead)
    current_price = price_for(current, limits)
    projected_price = price_for(projected, limits)
    monthly = current_price - projected_price if current_price is not None and projected_price is not None else None
    observer.trace("cohorts.dead_weight", profiles=current, dead=dead, monthly_savings=monthly)
    return DeadWeightSummary(
        current_subscribers=current,
        dead_weight_count=dead,
        projected_subscribers=projected,
        current_monthly_price=current_price,
        projected_monthly_price=projected_price,
        monthly_savings=monthly,
        annual_savings=monthly * 12 if monthly is not None else None,
    )


__all__ = [
    "SUBSCRIBED",
    "NOT_SUBSCRIBED",
    "CONSENT_GROUPS",
    "CONSENT_METRICS",
    "AGE_BUCKETS",
    "ENGAGEMENT_BUCKETS",
    "ConsentGroupValue",
    "ConsentSplit",
    "consent_group",
    "engaged_within",
    "consent_split",
    "consent_summary",
    "full_months_between",
    "age_bucket",
    "engagement_bucket",
    "engagement_by_age",
    "DeadWeightSummary",
    "price_for",
    "is_dead_weight",
    "dead_weight_savings",
]
