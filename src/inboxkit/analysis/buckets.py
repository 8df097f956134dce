"""Weekly/period bucketing.

Groups time-stamped campaign or flow records into calendar buckets (day,
Monday-starting week, month) across a window.  Every calendar unit in the
window yields a bucket, including empty ones, so gap detection can see
zero-send periods.  Week and month buckets that spill outside the window
are flagged ``complete=False``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Iterable, List

import pandas as pd

from inboxkit.metrics import MetricSums
from inboxkit.records import SUM_FIELDS, records_frame
from inboxkit.timeframes import Window, end_of_day, monday_of, start_of_day

DAILY = "daily"
WEEKLY = "weekly"
MONTHLY = "monthly"
GRANULARITIES = (DAILY, WEEKLY, MONTHLY)


@dataclass(frozen=True)
class PeriodBucket:
    start: datetime
    end: datetime
    label: str
    range_label: str
    sums: MetricSums
    complete: bool = True

    @property
    def key(self) -> str:
        return self.start.date().isoformat()

    @property
    def count(self) -> int:
        return self.sums.count


def short_label(day: date) -> str:
    """``Mar 4`` style label (no zero padding)."""
    return f"{day:%b} {day.day}"


def _next_month(day: date) -> date:
    return date(day.year + (day.month // 12), day.month % 12 + 1, 1)


def period_starts(window: Window, granularity: str) -> List[date]:
    """First day of every calendar unit touching *window*, in order."""
    first, last = window.start.date(), window.end.date()
    starts: List[date] = []
    if granularity == DAILY:
        cursor = first
        while cursor <= last:
            starts.append(cursor)
            cursor += timedelta(days=1)
    elif granularity == WEEKLY:
        cursor = monday_of(first)
        while cursor <= last:
            starts.append(cursor)
            cursor += timedelta(days=7)
    elif granularity == MONTHLY:
        cursor = first.replace(day=1)
        while cursor <= last:
            starts.append(cursor)
            cursor = _next_month(cursor)
    else:
        raise ValueError(f"Unknown granularity: {granularity!r}")
    return starts


def _period_last_day(start: date, granularity: str) -> date:
    if granularity == DAILY:
        return start
    if granularity == WEEKLY:
        return start + timedelta(days=6)
    return _next_month(start) - timedelta(days=1)


def _period_keys(sent: pd.Series, granularity: str) -> pd.Series:
    days = sent.dt.normalize()
    if granularity == DAILY:
        return days
    if granularity == WEEKLY:
        return days - pd.to_timedelta(sent.dt.weekday, unit="D")
    return sent.dt.to_period("M").dt.to_timestamp()


def _labels(start: date, last: date, granularity: str):
    if granularity == MONTHLY:
        label = f"{start:%b %Y}"
        return label, label
    if granularity == DAILY:
        label = short_label(start)
        return label, label
    return short_label(start), f"{short_label(start)} - {short_label(last)}"


def bucket_series(records: Iterable[Any], granularity: str, window: Window) -> List[PeriodBucket]:
    """Ordered buckets spanning *window*; records outside the window are dropped.

    Each in-window record lands in exactly one bucket, so the bucket sums
    add up to the window totals.
    """
    starts = period_starts(window, granularity)
    frame = records_frame(records)
    frame = frame[(frame["sent_date"] >= window.start) & (frame["sent_date"] <= window.end)]
    frame = frame.assign(period=_period_keys(frame["sent_date"], granularity))

    index = pd.DatetimeIndex([pd.Timestamp(s) for s in starts])
    totals = frame.groupby("period")[list(SUM_FIELDS)].sum().reindex(index, fill_value=0.0)
    counts = frame.groupby("period").size().reindex(index, fill_value=0)

    buckets: List[PeriodBucket] = []
    for start, stamp in zip(starts, index):
        last = _period_last_day(start, granularity)
        period_start, period_end = start_of_day(start), end_of_day(last)
        label, range_label = _labels(start, last, granularity)
        buckets.append(
            PeriodBucket(
                start=period_start,
                end=period_end,
                label=label,
                range_label=range_label,
                sums=MetricSums.from_mapping(totals.loc[stamp], counts.loc[stamp]),
                complete=period_start >= window.start and period_end <= window.end,
            )
        )
    return buckets


def weekly_counts(records: Iterable[Any]) -> pd.DataFrame:
    """Per Monday-week campaign count and sums for weeks with at least one record.

    Unlike :func:`bucket_series` this does not fill empty weeks; it is the
    grouping used by cadence analysis.
    """
    frame = records_frame(records)
    frame = frame.assign(week=_period_keys(frame["sent_date"], WEEKLY))
    grouped = frame.groupby("week")
    weekly = grouped[list(SUM_FIELDS)].sum()
    weekly["campaigns"] = grouped.size()
    return weekly.sort_index()


__all__ = [
    "DAILY",
    "WEEKLY",
    "MONTHLY",
    "GRANULARITIES",
    "PeriodBucket",
    "short_label",
    "period_starts",
    "bucket_series",
    "weekly_counts",
]
