"""Statistical primitives used by the analyzers.

Outlier limits, recency-weighted mean/stddev, bucket boundary detection,
percentiles and the significance helpers used by subject-line analysis.
All functions are pure; the bootstrap takes an explicit seed so repeated
calls return identical results.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np


# ---------------------------------------------------------------------------
# 📏  Outliers and percentiles
# ---------------------------------------------------------------------------


def iqr_limit(values: Sequence[float]) -> float:
    """Upper outlier fence ``Q3 + 1.5 * IQR``; ``inf`` for fewer than 4 values.

    Quartiles use the floor index ``s[floor(p * n)]`` of the sorted values.
    """
    n = len(values)
    if n < 4:
        return math.inf
    s = sorted(values)
    q1 = s[int(math.floor(n * 0.25))]
    q3 = s[int(math.floor(n * 0.75))]
    return q3 + 1.5 * (q3 - q1)


def without_outliers(values: Sequence[float]) -> List[float]:
    limit = iqr_limit(values)
    return [v for v in values if v <= limit]


def percentile(values: Sequence[float], p: float) -> float:
    """Linear-interpolated percentile, *p* in ``[0, 1]``; 0 for empty input."""
    if not len(values):
        return 0.0
    return float(np.percentile(np.asarray(values, dtype=float), p * 100.0))


def floor_percentile(values: Sequence[float], p: float) -> float:
    """Nearest-below percentile ``s[floor(p * (n - 1))]``; 0 for empty input."""
    if not len(values):
        return 0.0
    s = sorted(values)
    return s[max(0, int(math.floor(p * (len(s) - 1))))]


def round_half_up(value: float) -> int:
    """Round halves away from zero for positive values (``2.5 -> 3``)."""
    return int(math.floor(value + 0.5))


def median(values: Sequence[float]) -> float:
    if not len(values):
        return 0.0
    return float(np.median(np.asarray(values, dtype=float)))


def winsorize(values: Sequence[float], upper: float = 0.99) -> List[float]:
    """Cap values above the *upper* floor-percentile."""
    if not len(values):
        return []
    cap = floor_percentile(values, upper)
    return [min(v, cap) for v in values]


# ---------------------------------------------------------------------------
# ⚖️  Recency-weighted statistics
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WeightedStats:
    mean: float
    stddev: float
    n: int

    @property
    def cv(self) -> float:
        """Coefficient of variation; ``inf`` when the mean is 0."""
        return self.stddev / self.mean if self.mean else math.inf


def recency_weight(moment: datetime, start: datetime, end: datetime) -> float:
    span = (end - start).total_seconds()
    if span <= 0:
        return 1.0
    return max(0.01, (moment - start).total_seconds() / span)


def weighted_stats(items: Iterable[Tuple[float, datetime]], start: datetime, end: datetime) -> WeightedStats:
    """Recency-weighted mean and stddev of ``(value, date)`` pairs.

    The denominator uses a Bessel-style correction ``((N - 1) / N) * sum(w)``.
    """
    pairs = [(float(v), recency_weight(d, start, end)) for v, d in items]
    n = len(pairs)
    if not n:
        return WeightedStats(0.0, 0.0, 0)
    total_weight = sum(w for _, w in pairs)
    mean = sum(v * w for v, w in pairs) / total_weight
    denominator = ((n - 1) / n) * total_weight if n > 1 else total_weight
    variance = sum(w * (v - mean) ** 2 for v, w in pairs) / denominator
    return WeightedStats(mean, math.sqrt(variance), n)


def weighted_ratio(items: Iterable[Tuple[float, float, datetime]], start: datetime, end: datetime) -> float:
    """Recency-weighted ``sum(w * num) / sum(w * den)``; 0 when the weighted denominator is 0."""
    num = den = 0.0
    for numerator, denominator, moment in items:
        w = recency_weight(moment, start, end)
        num += w * numerator
        den += w * denominator
    return num / den if den else 0.0


# ---------------------------------------------------------------------------
# 🪣  Bucket boundaries
# ---------------------------------------------------------------------------


def _dedupe(values: Iterable[float]) -> List[float]:
    return sorted(set(values))


def quantile_boundaries(values: Sequence[float], buckets: int) -> List[float]:
    """Even-count cut points: ``[min, s[floor(i/k*(n-1))]..., max]``."""
    s = sorted(values)
    if not s:
        return []
    n = len(s)
    cuts = [s[int(math.floor(i / buckets * (n - 1)))] for i in range(1, buckets)]
    return _dedupe([s[0], *cuts, s[-1]])


def natural_break_boundaries(values: Sequence[float], max_breaks: int = 5) -> Optional[List[float]]:
    """Gap-based boundaries, or ``None`` when no gap is significant.

    A gap between consecutive sorted values is significant when it exceeds
    10% of the full range or twice the median gap.  At most *max_breaks*
    of the widest significant gaps are used, each cut at its midpoint so
    the values on either side always land in different buckets.
    """
    s = sorted(values)
    if len(s) < 2 or s[0] == s[-1]:
        return None
    span = s[-1] - s[0]
    gaps = [(i, s[i + 1] - s[i]) for i in range(len(s) - 1)]
    median_gap = sorted(g for _, g in gaps)[len(gaps) // 2]
    ranked = sorted(gaps, key=lambda item: item[1], reverse=True)
    significant = [(i, g) for i, g in ranked if g / span > 0.1 or g > 2 * median_gap][:max_breaks]
    if not significant:
        return None
    boundaries = _dedupe([s[0], *((s[i] + s[i + 1]) / 2 for i, _ in sorted(significant)), s[-1]])
    return boundaries if len(boundaries) >= 2 else [s[0], s[-1]]


def dynamic_boundaries(values: Sequence[float], target_buckets: Optional[int] = None, max_breaks: int = 5) -> List[float]:
    """Natural-breaks boundaries with a quantile fallback.

    Falls back to an even quantile split when there are fewer than 6
    values or no significant gap.  The quantile bucket count is
    *target_buckets* when given, else ``clamp(ceil(n / 3), 2, 5)``.
    Boundaries are deduplicated and strictly increasing.
    """
    s = sorted(values)
    if not s:
        return []
    if s[0] == s[-1]:
        return [s[0], s[-1]]
    breaks = natural_break_boundaries(s, max_breaks) if len(s) >= 6 else None
    if breaks is not None:
        return breaks
    buckets = target_buckets or min(max(2, math.ceil(len(s) / 3)), 5)
    return quantile_boundaries(s, buckets)


def bucket_index(value: float, boundaries: Sequence[float]) -> Optional[int]:
    """Index of the bucket holding *value*.

    The first bucket is closed ``[lo, hi]``; later buckets are ``(lo, hi]``.
    A degenerate ``[x, x]`` boundary list is a single bucket.
    """
    if len(boundaries) < 2:
        return None
    for idx in range(len(boundaries) - 1):
        lo, hi = boundaries[idx], boundaries[idx + 1]
        if idx == 0 and lo <= value <= hi:
            return 0
        if idx > 0 and lo < value <= hi:
            return idx
    return None


# ---------------------------------------------------------------------------
# 🧪  Significance testing
# ---------------------------------------------------------------------------


def normal_cdf(z: float) -> float:
    """Abramowitz-Stegun approximation of the standard normal CDF."""
    t = 1 / (1 + 0.2316419 * abs(z))
    d = math.exp(-0.5 * z * z) / math.sqrt(2 * math.pi)
    p = d * (
        0.319381530 * t
        - 0.356563782 * t ** 2
        + 1.781477937 * t ** 3
        - 1.821255978 * t ** 4
        + 1.330274429 * t ** 5
    )
    return 1 - p if z >= 0 else p


@dataclass(frozen=True)
class ZTestResult:
    p_value: float
    z: float
    valid: bool


def two_proportion_z_test(success_a: float, total_a: float, success_b: float, total_b: float) -> ZTestResult:
    """Two-sided pooled z-test.  ``valid`` when every expected count is at least 5."""
    p1 = success_a / total_a if total_a > 0 else 0.0
    p2 = success_b / total_b if total_b > 0 else 0.0
    pooled = (success_a + success_b) / max(1.0, total_a + total_b)
    se = math.sqrt(pooled * (1 - pooled) * (1 / max(1.0, total_a) + 1 / max(1.0, total_b)))
    expected = (total_a * pooled, total_a * (1 - pooled), total_b * pooled, total_b * (1 - pooled))
    valid = all(x >= 5 for x in expected)
    if se == 0:
        return ZTestResult(1.0, 0.0, valid)
    z = (p1 - p2) / se
    p = 2 * (1 - normal_cdf(abs(z)))
    return ZTestResult(min(1.0, max(0.0, p)), z, valid)


def _log_choose(n: int, k: int) -> float:
    if k < 0 or k > n:
        return -math.inf
    return math.lgamma(n + 1) - math.lgamma(k + 1) - math.lgamma(n - k + 1)


def _table_log_prob(a: int, b: int, c: int, d: int) -> float:
    return _log_choose(a + c, a) + _log_choose(b + d, b) - _log_choose(a + b + c + d, a + b)


def fisher_exact_two_sided(a: int, b: int, c: int, d: int) -> float:
    """Two-sided Fisher exact p-value for the 2x2 table ``[[a, b], [c, d]]``."""
    a, b, c, d = (int(round(x)) for x in (a, b, c, d))
    row1, row2, col1 = a + b, c + d, a + c
    observed = _table_log_prob(a, b, c, d)
    total = 0.0
    for x in range(max(0, col1 - row2), min(row1, col1) + 1):
        lp = _table_log_prob(x, row1 - x, col1 - x, row2 - col1 + x)
        if lp <= observed + 1e-12:
            total += math.exp(lp)
    return min(1.0, max(0.0, total))


def benjamini_hochberg(p_values: Sequence[float]) -> List[float]:
    """BH-adjusted p-values, returned in input order."""
    n = len(p_values)
    if not n:
        return []
    order = sorted(range(n), key=lambda i: p_values[i])
    adjusted = [0.0] * n
    running = 1.0
    for rank in range(n, 0, -1):
        i = order[rank - 1]
        running = min(running, p_values[i] * n / rank)
        adjusted[i] = min(1.0, max(0.0, running))
    return adjusted


@dataclass(frozen=True)
class BootstrapResult:
    low: float
    high: float
    passed: bool


def bootstrap_diff_ci(a: Sequence[float], b: Sequence[float], iterations: int = 1000, seed: int = 7) -> BootstrapResult:
    """95% bootstrap CI of ``mean(a) - mean(b)``; passes when it excludes 0."""
    if not len(a) or not len(b):
        return BootstrapResult(0.0, 0.0, False)
    rng = np.random.default_rng(seed)
    arr_a = np.asarray(a, dtype=float)
    arr_b = np.asarray(b, dtype=float)
    sample_a = rng.choice(arr_a, size=(iterations, arr_a.size), replace=True).mean(axis=1)
    sample_b = rng.choice(arr_b, size=(iterations, arr_b.size), replace=True).mean(axis=1)
    diffs = sample_a - sample_b
    low = float(np.percentile(diffs, 2.5))
    high = float(np.percentile(diffs, 97.5))
    return BootstrapResult(low, high, not (low <= 0 <= high))


__all__ = [
    "iqr_limit",
    "without_outliers",
    "percentile",
    "floor_percentile",
    "round_half_up",
    "median",
    "winsorize",
    "WeightedStats",
    "recency_weight",
    "weighted_stats",
    "weighted_ratio",
    "quantile_boundaries",
    "natural_break_boundaries",
    "dynamic_boundaries",
    "bucket_index",
    "normal_cdf",
    "ZTestResult",
    "two_proportion_z_test",
    "fisher_exact_two_sided",
    "benjamini_hochberg",
    "BootstrapResult",
    "bootstrap_diff_ci",
]
