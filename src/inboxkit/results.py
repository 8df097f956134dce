"""Result types returned by every analyzer.

A guidance call yields either a :class:`GuidanceResult` or an
:class:`InsufficientData` value.  "Not enough data" is an ordinary return
variant, never an exception; callers branch with ``isinstance`` or
:func:`is_insufficient`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Union


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RiskZone(str, Enum):
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"


# Lift against a zero baseline with a positive value.  Kept as a distinct
# sentinel so callers can render "from a zero base" instead of a number.
INFINITE_LIFT = float("inf")


def lift(value: float, baseline: float) -> float:
    """Relative % change of *value* vs *baseline*.

    Returns :data:`INFINITE_LIFT` when the baseline is 0 and *value* is
    positive, and ``0.0`` when both are 0.
    """
    if baseline == 0:
        return INFINITE_LIFT if value > 0 else 0.0
    return (value - baseline) / baseline * 100.0


def is_infinite_lift(value: float) -> bool:
    return value == INFINITE_LIFT


@dataclass(frozen=True)
class GuidanceResult:
    """A recommendation ready for display.

    Numbers stay raw; formatting belongs to the caller.
    """

    module: str
    status: str
    title: str
    message: str
    target: Optional[str] = None
    baseline: Optional[str] = None
    confidence: Optional[Confidence] = None
    estimated_monthly_gain: Optional[float] = None
    risk_zone: Optional[RiskZone] = None
    sample: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class InsufficientData:
    """Returned when an analyzer falls below one of its sample gates."""

    module: str
    code: str
    reason: str
    title: str = "Not enough data for a recommendation"
    details: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NoData:
    reason: str


@dataclass(frozen=True)
class InvalidWindow:
    reason: str


Guidance = Union[GuidanceResult, InsufficientData]


def is_insufficient(result: Any) -> bool:
    return isinstance(result, (InsufficientData, NoData, InvalidWindow))


__all__ = [
    "Confidence",
    "RiskZone",
    "INFINITE_LIFT",
    "lift",
    "is_infinite_lift",
    "GuidanceResult",
    "InsufficientData",
    "NoData",
    "InvalidWindow",
    "Guidance",
    "is_insufficient",
]
