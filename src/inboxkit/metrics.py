"""Raw sums and derived ratios shared by every bucket type."""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Iterable, Mapping

from inboxkit.records import SUM_FIELDS, safe_ratio

# Metric keys accepted by period comparisons; all are attributes of MetricSums.
METRIC_KEYS = (
    "revenue",
    "avg_order_value",
    "revenue_per_email",
    "open_rate",
    "click_rate",
    "click_to_open_rate",
    "emails_sent",
    "orders",
    "conversion_rate",
    "unsubscribe_rate",
    "spam_rate",
    "bounce_rate",
)

# Lower is better for these.
NEGATIVE_METRICS = ("unsubscribe_rate", "spam_rate", "bounce_rate")


@dataclass(frozen=True)
class MetricSums:
    count: int = 0
    revenue: float = 0.0
    emails_sent: float = 0.0
    orders: float = 0.0
    opens: float = 0.0
    clicks: float = 0.0
    unsubscribes: float = 0.0
    spam_complaints: float = 0.0
    bounces: float = 0.0

    @classmethod
    def of(cls, records: Iterable[Any]) -> "MetricSums":
        totals = dict.fromkeys(SUM_FIELDS, 0.0)
        count = 0
        for record in records:
            count += 1
            for name in SUM_FIELDS:
                totals[name] += getattr(record, name)
        return cls(count=count, **totals)

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any], count: int) -> "MetricSums":
        return cls(count=int(count), **{name: float(row[name]) for name in SUM_FIELDS})

    def __add__(self, other: "MetricSums") -> "MetricSums":
        if not isinstance(other, MetricSums):
            return NotImplemented
        return MetricSums(**{f.name: getattr(self, f.name) + getattr(other, f.name) for f in fields(self)})

    # Derived ratios.  Rates are percentages.
    @property
    def avg_order_value(self) -> float:
        return safe_ratio(self.revenue, self.orders)

    @property
    def revenue_per_email(self) -> float:
        return safe_ratio(self.revenue, self.emails_sent)

    @property
    def open_rate(self) -> float:
        return safe_ratio(self.opens, self.emails_sent, 100.0)

    @property
    def click_rate(self) -> float:
        return safe_ratio(self.clicks, self.emails_sent, 100.0)

    @property
    def click_to_open_rate(self) -> float:
        return safe_ratio(self.clicks, self.opens, 100.0)

    @property
    def conversion_rate(self) -> float:
        return safe_ratio(self.orders, self.clicks, 100.0)

    @property
    def unsubscribe_rate(self) -> float:
        return safe_ratio(self.unsubscribes, self.emails_sent, 100.0)

    @property
    def spam_rate(self) -> float:
        return safe_ratio(self.spam_complaints, self.emails_sent, 100.0)

    @property
    def bounce_rate(self) -> float:
        return safe_ratio(self.bounces, self.emails_sent, 100.0)

    @property
    def avg_revenue(self) -> float:
        """Average revenue per record (per campaign)."""
        return safe_ratio(self.revenue, self.count)

    @property
    def avg_emails(self) -> float:
        return safe_ratio(self.emails_sent, self.count)

    def metric(self, key: str) -> float:
        if key not in METRIC_KEYS:
            raise ValueError(f"Unknown metric key: {key!r}")
        return float(getattr(self, key))


__all__ = ["METRIC_KEYS", "NEGATIVE_METRICS", "MetricSums"]
