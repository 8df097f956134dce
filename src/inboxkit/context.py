"""Caller-owned dataset holder.

A :class:`DataContext` bundles the loaded campaigns, flow messages and
subscribers together with the thresholds and observer used for every
analysis.  Results are memoised per *generation*: swapping the data through
:meth:`DataContext.replace` or calling :meth:`DataContext.invalidate` bumps
the counter and drops every cached result.  Within a generation the cache
keeps at most ``max_entries`` results, evicting the least recently used.

    ctx = DataContext(campaigns=campaigns_from_frame(df))
    resolved = ctx.resolve("90d")
    report = ctx.gaps(resolved.current)
"""

from __future__ import annotations

from collections import OrderedDict
from datetime import datetime
from typing import Any, Callable, Dict, Hashable, Iterable, Optional, Tuple, Union

import pandas as pd

from inboxkit.analysis import (
    audience_size,
    cohorts,
    day_of_week,
    flow_steps,
    gaps,
    reliability,
    send_frequency,
    subject_lines,
)
from inboxkit.analysis.buckets import WEEKLY, PeriodBucket, bucket_series
from inboxkit.config import Thresholds
from inboxkit.records import CampaignRecord, FlowMessageRecord, SubscriberRecord
from inboxkit.results import InsufficientData, InvalidWindow, NoData
from inboxkit.timeframes import PREV_PERIOD, PeriodChange, ResolvedWindow, Window, in_window, period_change, resolve_window
from inboxkit.utils.logs import report
from inboxkit.utils.logs.report import NULL_OBSERVER, Observer

logger = report.settings(__file__)


def _by_date(records: Iterable[Any]) -> Tuple[Any, ...]:
    return tuple(sorted(records, key=lambda r: (r.sent_date, r.id)))


class DataContext:
    """Immutable record tuples plus a generation-keyed result cache."""

    def __init__(
        self,
        campaigns: Iterable[CampaignRecord] = (),
        flows: Iterable[FlowMessageRecord] = (),
        subscribers: Iterable[SubscriberRecord] = (),
        thresholds: Optional[Thresholds] = None,
        observer: Observer = NULL_OBSERVER,
        max_entries: int = 128,
    ):
        self.thresholds = thresholds or Thresholds()
        self.observer = observer
        self.generation = 0
        self.max_entries = max_entries
        self._memo: "OrderedDict[Hashable, Any]" = OrderedDict()
        self._set(campaigns, flows, subscribers)

    def _set(self, campaigns, flows, subscribers) -> None:
        self.campaigns: Tuple[CampaignRecord, ...] = _by_date(campaigns)
        self.flows: Tuple[FlowMessageRecord, ...] = _by_date(flows)
        self.subscribers: Tuple[SubscriberRecord, ...] = tuple(sorted(subscribers, key=lambda s: s.id))

    # ---------------------------------------------------------------------------
    # ♻️  Generation and cache
    # ---------------------------------------------------------------------------

    def invalidate(self) -> int:
        """Drop every cached result and start a new generation."""
        self.generation += 1
        self._memo.clear()
        logger.debug("DataContext generation %s", self.generation)
        return self.generation

    def replace(
        self,
        campaigns: Optional[Iterable[CampaignRecord]] = None,
        flows: Optional[Iterable[FlowMessageRecord]] = None,
        subscribers: Optional[Iterable[SubscriberRecord]] = None,
        thresholds: Optional[Thresholds] = None,
    ) -> int:
        """Swap any of the datasets (or thresholds); ``None`` keeps the current one."""
        self._set(
            self.campaigns if campaigns is None else campaigns,
            self.flows if flows is None else flows,
            self.subscribers if subscribers is None else subscribers,
        )
        if thresholds is not None:
            self.thresholds = thresholds
        logger.info(
            "Loaded %s campaigns, %s flow messages, %s subscribers",
            len(self.campaigns),
            len(self.flows),
            len(self.subscribers),
        )
        return self.invalidate()

    def memoize(self, key: Hashable, factory: Callable[[], Any]) -> Any:
        if key in self._memo:
            self._memo.move_to_end(key)
            return self._memo[key]
        value = factory()
        self._memo[key] = value
        while len(self._memo) > self.max_entries:
            self._memo.popitem(last=False)
        return value

    @property
    def cache_size(self) -> int:
        return len(self._memo)

    # ---------------------------------------------------------------------------
    # 📅  Windows
    # ---------------------------------------------------------------------------

    @property
    def earliest(self) -> Optional[datetime]:
        dates = [r.sent_date for r in self.campaigns + self.flows]
        return min(dates) if dates else None

    @property
    def latest(self) -> Optional[datetime]:
        dates = [r.sent_date for r in self.campaigns + self.flows]
        return max(dates) if dates else None

    def resolve(
        self,
        token: str,
        custom_from=None,
        custom_to=None,
        compare_mode: str = PREV_PERIOD,
    ) -> Union[ResolvedWindow, NoData, InvalidWindow]:
        return resolve_window(
            token,
            anchor=self.latest,
            earliest=self.earliest,
            custom_from=custom_from,
            custom_to=custom_to,
            compare_mode=compare_mode,
        )

    def campaigns_in(self, window: Window) -> Tuple[CampaignRecord, ...]:
        return self.memoize(("campaigns_in", window), lambda: tuple(in_window(self.campaigns, window)))

    def flows_in(self, window: Window) -> Tuple[FlowMessageRecord, ...]:
        return self.memoize(("flows_in", window), lambda: tuple(in_window(self.flows, window)))

    def series(self, window: Window, granularity: str = WEEKLY, flows: bool = False) -> Tuple[PeriodBucket, ...]:
        records = self.flows if flows else self.campaigns
        return self.memoize(
            ("series", window, granularity, flows),
            lambda: tuple(bucket_series(in_window(records, window), granularity, window)),
        )

    def change(self, metric: str, resolved: ResolvedWindow, flows: bool = False) -> PeriodChange:
        records = self.flows if flows else self.campaigns
        return self.memoize(
            ("change", metric, resolved, flows),
            lambda: period_change(records, metric, resolved, self.thresholds.comparison),
        )

    # ---------------------------------------------------------------------------
    # 🧮  Analyzers
    # ---------------------------------------------------------------------------

    def audience_size(self, window: Optional[Window] = None) -> audience_size.AudienceSizeReport:
        return self.memoize(
            ("audience_size", window),
            lambda: audience_size.analyze_audience_size(
                self.campaigns, window, self.thresholds.audience_size, self.observer, history=self.campaigns
            ),
        )

    def send_frequency(
        self, window: Optional[Window] = None, mode: str = send_frequency.PER_WEEK
    ) -> send_frequency.SendFrequencyReport:
        return self.memoize(
            ("send_frequency", window, mode),
            lambda: send_frequency.analyze_send_frequency(
                self.campaigns, window, mode, self.thresholds.send_frequency, self.observer
            ),
        )

    def gaps(self, window: Window, granularity: str = WEEKLY) -> gaps.GapsReport:
        return self.memoize(
            ("gaps", window, granularity),
            lambda: gaps.analyze_gaps(self.campaigns, window, granularity, self.thresholds.gaps, self.observer),
        )

    def flow_steps(self, flow_id: str, window: Optional[Window] = None) -> flow_steps.FlowStepReport:
        return self.memoize(
            ("flow_steps", flow_id, window),
            lambda: flow_steps.analyze_flow_steps(
                self.flows, flow_id, window, self.latest, self.thresholds.flow, self.observer
            ),
        )

    def subject_lines(
        self, window: Optional[Window] = None, metric: str = subject_lines.OPEN_RATE, segment: Optional[str] = None
    ) -> subject_lines.SubjectLineReport:
        records = self.campaigns if window is None else self.campaigns_in(window)
        return self.memoize(
            ("subject_lines", window, metric, segment),
            lambda: subject_lines.analyze_subject_lines(
                records, metric, segment, self.thresholds.subject_line, self.observer
            ),
        )

    def day_of_week(self, window: Window, days_per_week: Optional[int] = None) -> day_of_week.DayOfWeekReport:
        return self.memoize(
            ("day_of_week", window, days_per_week),
            lambda: day_of_week.analyze_day_of_week(
                self.campaigns, window, days_per_week, self.thresholds.day_of_week, self.observer
            ),
        )

    def consent_summary(
        self, anchor: Optional[datetime] = None, window: Optional[Window] = None
    ) -> Dict[str, cohorts.ConsentSplit]:
        anchor = anchor or self.latest or datetime.now()
        return self.memoize(
            ("consent_summary", anchor, window),
            lambda: cohorts.consent_summary(self.subscribers, anchor, window),
        )

    def engagement_by_age(self, anchor: Optional[datetime] = None) -> pd.DataFrame:
        anchor = anchor or self.latest or datetime.now()
        return self.memoize(
            ("engagement_by_age", anchor),
            lambda: cohorts.engagement_by_age(self.subscribers, anchor, self.observer),
        )

    def dead_weight_savings(
        self, anchor: Optional[datetime] = None
    ) -> Union[cohorts.DeadWeightSummary, InsufficientData]:
        anchor = anchor or self.latest or datetime.now()
        return self.memoize(
            ("dead_weight_savings", anchor),
            lambda: cohorts.dead_weight_savings(self.subscribers, anchor, self.thresholds.dead_weight, self.observer),
        )

    def reliability(
        self, window: Window, granularity: str = WEEKLY, scope: str = reliability.ALL
    ) -> reliability.ReliabilityReport:
        return self.memoize(
            ("reliability", window, granularity, scope),
            lambda: reliability.analyze_reliability(
                self.campaigns_in(window),
                self.flows_in(window),
                window,
                granularity,
                scope,
                self.thresholds.reliability,
                self.observer,
            ),
        )


__all__ = ["DataContext"]
