"""Time Window Resolver.

Turns a range token (``"30d"``, ``"all"``, ``"custom"``) into a concrete,
inclusive window and derives the comparison window (previous period or same
period last year).  Also aggregates records over a window and computes
period-over-period change for a single metric.

Windows are naive ``datetime`` pairs: ``start`` at 00:00 and ``end`` at
23:59:59.999999 of the last day.

Leap days: shifting Feb 29 back one year lands on Feb 28.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Iterable, Optional, Union

from inboxkit.config import ComparisonThresholds
from inboxkit.metrics import METRIC_KEYS, NEGATIVE_METRICS, MetricSums
from inboxkit.results import InvalidWindow, NoData

RANGE_ALL = "all"
RANGE_CUSTOM = "custom"
PREV_PERIOD = "prev-period"
PREV_YEAR = "prev-year"
COMPARE_MODES = (PREV_PERIOD, PREV_YEAR)

_DAYS_TOKEN = re.compile(r"^(\d+)d$")


# ---------------------------------------------------------------------------
# 📅  Window primitives
# ---------------------------------------------------------------------------


def start_of_day(day: Union[date, datetime]) -> datetime:
    if isinstance(day, datetime):
        day = day.date()
    return datetime.combine(day, time.min)


def end_of_day(day: Union[date, datetime]) -> datetime:
    if isinstance(day, datetime):
        day = day.date()
    return datetime.combine(day, time.max)


def monday_of(moment: Union[date, datetime]) -> date:
    day = moment.date() if isinstance(moment, datetime) else moment
    return day - timedelta(days=day.weekday())


def shift_year(day: date, years: int = -1) -> date:
    """Move *day* by *years*, mapping Feb 29 to Feb 28 in non-leap targets."""
    try:
        return day.replace(year=day.year + years)
    except ValueError:
        return day.replace(year=day.year + years, day=28)


@dataclass(frozen=True)
class Window:
    start: datetime
    end: datetime

    @classmethod
    def for_dates(cls, first: Union[date, datetime], last: Union[date, datetime]) -> "Window":
        return cls(start_of_day(first), end_of_day(last))

    @property
    def days(self) -> int:
        """Number of calendar days covered, both ends inclusive."""
        return (self.end.date() - self.start.date()).days + 1

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end

    def overlaps(self, other: "Window") -> bool:
        return self.start <= other.end and other.start <= self.end


@dataclass(frozen=True)
class ResolvedWindow:
    token: str
    current: Window
    comparison: Optional[Window]
    compare_mode: str = PREV_PERIOD


def previous_window(window: Window, mode: str = PREV_PERIOD) -> Window:
    if mode == PREV_YEAR:
        return Window.for_dates(shift_year(window.start.date()), shift_year(window.end.date()))
    if mode != PREV_PERIOD:
        raise ValueError(f"Unknown compare mode: {mode!r}")
    prev_last = window.start.date() - timedelta(days=1)
    prev_first = prev_last - timedelta(days=window.days - 1)
    return Window.for_dates(prev_first, prev_last)


def _as_date(value: Union[str, date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip()[:10])


def resolve_window(
    token: str,
    *,
    anchor: Optional[datetime] = None,
    earliest: Optional[datetime] = None,
    custom_from: Optional[Union[str, date]] = None,
    custom_to: Optional[Union[str, date]] = None,
    compare_mode: str = PREV_PERIOD,
) -> Union[ResolvedWindow, NoData, InvalidWindow]:
    """Resolve *token* into the current window and its comparison window.

    Parameters
    ----------
    token : str
        ``"{N}d"``, ``"all"`` or ``"custom"``.
    anchor : datetime, optional
        Latest record timestamp (or caller reference date).  Required for
        ``"{N}d"`` and ``"all"``.
    earliest : datetime, optional
        Earliest record timestamp, used by ``"all"``.
    custom_from, custom_to : str | date, optional
        Inclusive calendar dates for ``"custom"``.
    compare_mode : str
        ``"prev-period"`` or ``"prev-year"``.

    Returns
    -------
    ResolvedWindow, or NoData when the dataset is empty, or InvalidWindow
    for zero-length / inverted windows.  Unknown tokens raise ValueError.
    """
    if compare_mode not in COMPARE_MODES:
        raise ValueError(f"Unknown compare mode: {compare_mode!r}")

    if token == RANGE_CUSTOM:
        if custom_from is None or custom_to is None:
            return InvalidWindow("custom range needs both a start and an end date")
        first, last = _as_date(custom_from), _as_date(custom_to)
        if last < first:
            return InvalidWindow(f"custom range ends ({last}) before it starts ({first})")
        current = Window.for_dates(first, last)
        return ResolvedWindow(token, current, previous_window(current, compare_mode), compare_mode)

    if token == RANGE_ALL:
        if anchor is None or earliest is None:
            return NoData("dataset is empty")
        if anchor < earliest:
            return InvalidWindow("latest record precedes earliest record")
        return ResolvedWindow(token, Window.for_dates(earliest, anchor), None, compare_mode)

    match = _DAYS_TOKEN.match(str(token))
    if not match:
        raise ValueError(f"Unknown range token: {token!r}")
    days = int(match.group(1))
    if days < 1:
        return InvalidWindow(f"range {token!r} is zero-length")
    if anchor is None:
        return NoData("dataset is empty")
    last = anchor.date()
    current = Window.for_dates(last - timedelta(days=days - 1), last)
    return ResolvedWindow(token, current, previous_window(current, compare_mode), compare_mode)


# ---------------------------------------------------------------------------
# 📊  Period aggregates and comparison
# ---------------------------------------------------------------------------


def in_window(records: Iterable[Any], window: Window) -> list:
    return [r for r in records if window.contains(r.sent_date)]


def aggregate_period(records: Iterable[Any], window: Window) -> MetricSums:
    """Sums and derived rates over records sent inside *window*."""
    return MetricSums.of(in_window(records, window))


def comparison_available(records: Iterable[Any], comparison: Optional[Window]) -> bool:
    """True when the record set fully covers *comparison*."""
    if comparison is None:
        return False
    dates = [r.sent_date for r in records]
    if not dates:
        return False
    return min(dates) <= comparison.start and max(dates) >= comparison.end


@dataclass(frozen=True)
class PeriodChange:
    metric: str
    current_value: float
    previous_value: Optional[float]
    change_percent: float
    is_positive: bool
    current: Window
    previous: Optional[Window]
    low_baseline: bool = False


def period_change(
    records: Iterable[Any],
    metric: str,
    resolved: ResolvedWindow,
    thresholds: Optional[ComparisonThresholds] = None,
) -> PeriodChange:
    """Compare *metric* between the current and comparison windows.

    ``previous_value`` is ``None`` whenever there is no usable baseline:
    ``"all"`` ranges, an uncovered comparison window, a baseline without
    any activity, or a baseline value of 0.
    """
    if metric not in METRIC_KEYS:
        raise ValueError(f"Unknown metric key: {metric!r}")
    limits = thresholds or ComparisonThresholds()
    records = list(records)
    current = aggregate_period(records, resolved.current)
    current_value = current.metric(metric)
    neutral = PeriodChange(metric, current_value, None, 0.0, True, resolved.current, None)

    comparison = resolved.comparison
    if comparison is None or not comparison_available(records, comparison):
        return neutral
    previous = aggregate_period(records, comparison)
    has_activity = (previous.emails_sent + previous.revenue + previous.orders) > 0
    if not has_activity:
        return neutral
    meets_volume = (
        previous.emails_sent >= limits.min_emails
        or previous.revenue >= limits.min_revenue
        or previous.orders >= limits.min_orders
    )
    previous_value = previous.metric(metric)
    if previous_value == 0:
        return PeriodChange(metric, current_value, None, 0.0, True, resolved.current, None, not meets_volume)

    change = (current_value - previous_value) / previous_value * 100.0
    positive = change <= 0 if metric in NEGATIVE_METRICS else change >= 0
    return PeriodChange(
        metric,
        current_value,
        previous_value,
        change,
        positive,
        resolved.current,
        comparison,
        not meets_volume,
    )


__all__ = [
    "RANGE_ALL",
    "RANGE_CUSTOM",
    "PREV_PERIOD",
    "PREV_YEAR",
    "start_of_day",
    "end_of_day",
    "monday_of",
    "shift_year",
    "Window",
    "ResolvedWindow",
    "previous_window",
    "resolve_window",
    "in_window",
    "aggregate_period",
    "comparison_available",
    "PeriodChange",
    "period_change",
]
