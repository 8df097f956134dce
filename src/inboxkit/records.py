"""Typed, already-parsed records consumed by the analytics core.

Records are immutable once constructed.  Construction validates the caller
contract (identifier present, ``sent_date`` a real ``datetime``, numeric
fields not NaN) and fails loudly instead of coercing.

The ``*_from_frame`` helpers turn normalised pandas frames into records;
:func:`records_frame` goes the other way for groupby-based aggregation.
"""

from __future__ import annotations

import math
import numbers
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

# Raw count/amount columns summed by every bucket.
SUM_FIELDS: Tuple[str, ...] = (
    "revenue",
    "emails_sent",
    "orders",
    "opens",
    "clicks",
    "unsubscribes",
    "spam_complaints",
    "bounces",
)


def safe_ratio(numerator: float, denominator: float, scale: float = 1.0) -> float:
    """``numerator / denominator * scale`` or 0 when the denominator is 0."""
    return numerator / denominator * scale if denominator else 0.0


# ---------------------------------------------------------------------------
# ✅  Contract validation
# ---------------------------------------------------------------------------


def _require_id(kind: str, value: Any) -> None:
    if value is None or not str(value).strip():
        raise ValueError(f"{kind} is missing required field 'id'")


def _require_datetime(kind: str, name: str, value: Any, optional: bool = False) -> None:
    if value is None and optional:
        return
    if not isinstance(value, datetime):
        raise TypeError(f"{kind}.{name} must be a datetime, got {type(value).__name__}")


def _require_numbers(record: Any, names: Iterable[str]) -> None:
    kind = type(record).__name__
    for name in names:
        value = getattr(record, name)
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            raise TypeError(f"{kind}.{name} must be numeric, got {type(value).__name__}")
        if math.isnan(value):
            raise ValueError(f"{kind}.{name} is NaN")


class PerformanceMixin:
    """Per-record derived rates.  Rates are in percent; every ratio is 0 on a zero denominator."""

    revenue: float
    emails_sent: float
    orders: float
    opens: float
    clicks: float
    unsubscribes: float
    spam_complaints: float
    bounces: float

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
    def avg_order_value(self) -> float:
        return safe_ratio(self.revenue, self.orders)


# ---------------------------------------------------------------------------
# 📨  Record types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CampaignRecord(PerformanceMixin):
    id: str
    sent_date: datetime
    name: str = ""
    subject: str = ""
    channel: str = "email"
    emails_sent: float = 0
    revenue: float = 0.0
    orders: float = 0
    opens: float = 0
    clicks: float = 0
    unsubscribes: float = 0
    spam_complaints: float = 0
    bounces: float = 0
    tags: Tuple[str, ...] = ()
    segments_used: Tuple[str, ...] = ()

    def __post_init__(self):
        _require_id("CampaignRecord", self.id)
        _require_datetime("CampaignRecord", "sent_date", self.sent_date)
        _require_numbers(self, SUM_FIELDS)

    @property
    def subject_text(self) -> str:
        """Trimmed subject, falling back to the campaign name."""
        return (self.subject or self.name or "").strip()


@dataclass(frozen=True)
class FlowMessageRecord(PerformanceMixin):
    id: str
    sent_date: datetime
    flow_id: str
    flow_message_id: str
    sequence_position: int
    flow_name: str = ""
    email_name: str = ""
    subject: str = ""
    status: str = "live"
    emails_sent: float = 0
    revenue: float = 0.0
    orders: float = 0
    opens: float = 0
    clicks: float = 0
    unsubscribes: float = 0
    spam_complaints: float = 0
    bounces: float = 0

    def __post_init__(self):
        _require_id("FlowMessageRecord", self.id)
        _require_datetime("FlowMessageRecord", "sent_date", self.sent_date)
        if not str(self.flow_id or "").strip():
            raise ValueError("FlowMessageRecord is missing required field 'flow_id'")
        if isinstance(self.sequence_position, bool) or not isinstance(self.sequence_position, numbers.Integral):
            raise TypeError("FlowMessageRecord.sequence_position must be an int")
        _require_numbers(self, SUM_FIELDS)

    @property
    def is_live(self) -> bool:
        status = (self.status or "").strip().lower()
        return status in ("", "live")


@dataclass(frozen=True)
class SubscriberRecord:
    id: str
    email: str = ""
    created: Optional[datetime] = None
    first_active: Optional[datetime] = None
    last_active: Optional[datetime] = None
    consent_raw: str = ""
    consent_timestamp: Optional[datetime] = None
    lifetime_value: float = 0.0
    predicted_ltv: float = 0.0
    avg_order_value: float = 0.0
    total_orders: int = 0
    last_open: Optional[datetime] = None
    last_click: Optional[datetime] = None

    def __post_init__(self):
        _require_id("SubscriberRecord", self.id)
        for name in ("created", "first_active", "last_active", "consent_timestamp", "last_open", "last_click"):
            _require_datetime("SubscriberRecord", name, getattr(self, name), optional=True)
        _require_numbers(self, ("lifetime_value", "predicted_ltv", "avg_order_value", "total_orders"))

    @property
    def is_buyer(self) -> bool:
        return self.total_orders > 0

    @property
    def last_engaged(self) -> Optional[datetime]:
        moments = [m for m in (self.last_open, self.last_click) if m is not None]
        return max(moments) if moments else None


# ---------------------------------------------------------------------------
# 🐼  pandas adapters
# ---------------------------------------------------------------------------


def assert_columns(df: pd.DataFrame, required: Iterable[str], source: str) -> None:
    """Validate *df* has *required* columns; raise ValueError if any are missing."""
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"{source} is missing required column(s): {', '.join(missing)}")


def _split_list(value: Any) -> Tuple[str, ...]:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(str(v).strip() for v in value if str(v).strip())
    return tuple(part.strip() for part in str(value).split(",") if part.strip())


def _optional_datetime(value: Any) -> Optional[datetime]:
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    stamp = pd.Timestamp(value)
    return None if pd.isna(stamp) else stamp.to_pydatetime()


def _rows(df: pd.DataFrame, record_type: type, required: Sequence[str], source: str) -> List[Dict[str, Any]]:
    assert_columns(df, required, source)
    names = {f.name for f in fields(record_type)}
    frame = df[[c for c in df.columns if c in names]].copy()
    numeric = [c for c in SUM_FIELDS if c in frame.columns]
    if numeric:
        frame[numeric] = frame[numeric].apply(pd.to_numeric, errors="raise").fillna(0).astype(float)
    rows = frame.to_dict("records")
    for row in rows:
        for name in numeric:
            row[name] = float(row[name])
    return rows


def campaigns_from_frame(df: pd.DataFrame) -> List[CampaignRecord]:
    rows = _rows(df, CampaignRecord, ("id", "sent_date"), "campaigns frame")
    records = []
    for row in rows:
        row["id"] = str(row["id"])
        row["sent_date"] = pd.Timestamp(row["sent_date"]).to_pydatetime()
        for key in ("tags", "segments_used"):
            if key in row:
                row[key] = _split_list(row[key])
        for key in ("name", "subject", "channel"):
            if key in row and not isinstance(row[key], str):
                row[key] = "" if pd.isna(row[key]) else str(row[key])
        records.append(CampaignRecord(**row))
    return records


def flows_from_frame(df: pd.DataFrame) -> List[FlowMessageRecord]:
    required = ("id", "sent_date", "flow_id", "flow_message_id", "sequence_position")
    rows = _rows(df, FlowMessageRecord, required, "flows frame")
    records = []
    for row in rows:
        row["id"] = str(row["id"])
        row["flow_id"] = str(row["flow_id"])
        row["flow_message_id"] = str(row["flow_message_id"])
        row["sequence_position"] = int(row["sequence_position"])
        row["sent_date"] = pd.Timestamp(row["sent_date"]).to_pydatetime()
        for key in ("flow_name", "email_name", "subject", "status"):
            if key in row and not isinstance(row[key], str):
                row[key] = "" if pd.isna(row[key]) else str(row[key])
        records.append(FlowMessageRecord(**row))
    return records


def subscribers_from_frame(df: pd.DataFrame) -> List[SubscriberRecord]:
    rows = _rows(df, SubscriberRecord, ("id",), "subscribers frame")
    records = []
    for row in rows:
        row["id"] = str(row["id"])
        for key in ("created", "first_active", "last_active", "consent_timestamp", "last_open", "last_click"):
            if key in row:
                row[key] = _optional_datetime(row[key])
        for key in ("lifetime_value", "predicted_ltv", "avg_order_value"):
            if key in row:
                row[key] = 0.0 if pd.isna(row[key]) else float(row[key])
        if "total_orders" in row:
            row["total_orders"] = 0 if pd.isna(row["total_orders"]) else int(row["total_orders"])
        for key in ("email", "consent_raw"):
            if key in row and not isinstance(row[key], str):
                row[key] = "" if pd.isna(row[key]) else str(row[key])
        records.append(SubscriberRecord(**row))
    return records


def records_frame(records: Iterable[Any]) -> pd.DataFrame:
    """Return a ``sent_date`` + :data:`SUM_FIELDS` frame for campaign or flow records."""
    data: Dict[str, list] = {"sent_date": []}
    for name in SUM_FIELDS:
        data[name] = []
    for record in records:
        data["sent_date"].append(record.sent_date)
        for name in SUM_FIELDS:
            data[name].append(float(getattr(record, name)))
    frame = pd.DataFrame(data)
    frame["sent_date"] = pd.to_datetime(frame["sent_date"])
    return frame


__all__ = [
    "SUM_FIELDS",
    "safe_ratio",
    "PerformanceMixin",
    "CampaignRecord",
    "FlowMessageRecord",
    "SubscriberRecord",
    "assert_columns",
    "campaigns_from_frame",
    "flows_from_frame",
    "subscribers_from_frame",
    "records_frame",
]
