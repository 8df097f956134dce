"""Flow Step Scorer.

Scores every step of one automation flow on a 0-100 scale built from three
pillars:

* Money (max 70): revenue per email against the flow baseline (A1),
  improvement over the prior step (A2) and share of flow revenue (A3).
* Deliverability (max -20): tiered spam, unsubscribe and bounce penalties.
  The top tier of any of them is a hard stop that forces ``pause``.
* Volume (max 10): sends in absolute terms and relative to step 1.

The score maps to an action (scale / keep / improve / pause).  When the last
step is strong, an "add a step" suggestion with a revenue estimate is
offered.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from inboxkit.analysis import stats
from inboxkit.config import FlowThresholds, PenaltyTier
from inboxkit.metrics import MetricSums
from inboxkit.records import FlowMessageRecord, safe_ratio
from inboxkit.results import Guidance, GuidanceResult, InsufficientData
from inboxkit.timeframes import Window, in_window
from inboxkit.utils.logs.report import NULL_OBSERVER, Observer

MODULE = "flow_steps"

SCALE = "scale"
KEEP = "keep"
IMPROVE = "improve"
PAUSE = "pause"


# ---------------------------------------------------------------------------
# 🧾  Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FlowSequence:
    flow_id: str
    flow_name: str
    message_ids: Tuple[str, ...]
    email_names: Tuple[str, ...]

    @property
    def length(self) -> int:
        return len(self.message_ids)


@dataclass(frozen=True)
class StepMetrics:
    position: int
    email_name: str
    sums: MetricSums
    drop_off_rate: float = 0.0

    @property
    def emails_sent(self) -> float:
        return self.sums.emails_sent

    @property
    def revenue(self) -> float:
        return self.sums.revenue

    @property
    def revenue_per_email(self) -> float:
        return self.sums.revenue_per_email


@dataclass(frozen=True)
class Penalty:
    kind: str
    amount: float
    tier: int


@dataclass(frozen=True)
class StepScore:
    position: int
    score: float
    action: str
    money: float
    a1: float
    a2: float
    a3: float
    deliverability: float
    penalties: Tuple[Penalty, ...]
    hard_stop: bool
    volume: float
    small_sample_penalty: float
    rpe_index: float
    revenue_share: float
    notes: Tuple[str, ...]


@dataclass(frozen=True)
class AddStepSuggestion:
    suggested: bool
    reason: Optional[str] = None
    horizon_days: Optional[int] = None
    projected_reach: Optional[int] = None
    rpe_floor: Optional[float] = None
    estimated_revenue: Optional[float] = None
    gates: Dict[str, bool] = field(default_factory=dict)


@dataclass(frozen=True)
class FlowStepReport:
    sequence: FlowSequence
    steps: Tuple[StepMetrics, ...]
    scores: Tuple[StepScore, ...]
    rpe_baseline: float
    indicator_available: bool
    duplicate_names: Tuple[str, ...]
    order_consistent: bool
    add_step: AddStepSuggestion
    guidance: Guidance


# ---------------------------------------------------------------------------
# 🪜  Sequence and step metrics
# ---------------------------------------------------------------------------


def flow_sequence(messages: Iterable[FlowMessageRecord], flow_id: str) -> FlowSequence:
    """Canonical step order of *flow_id*.

    Steps are keyed by ``flow_message_id`` and ordered by the lowest
    ``sequence_position`` seen for that message; the name is the one on the
    most recent send.
    """
    earliest: Dict[str, int] = {}
    latest: Dict[str, Tuple[datetime, str]] = {}
    flow_name = ""
    for msg in messages:
        if msg.flow_id != flow_id:
            continue
        flow_name = flow_name or msg.flow_name
        key = msg.flow_message_id
        earliest[key] = min(earliest.get(key, msg.sequence_position), msg.sequence_position)
        if key not in latest or msg.sent_date > latest[key][0]:
            latest[key] = (msg.sent_date, msg.email_name)
    ordered = sorted(earliest, key=lambda k: (earliest[k], k))
    return FlowSequence(flow_id, flow_name, tuple(ordered), tuple(latest[k][1] for k in ordered))


def step_metrics(messages: Sequence[FlowMessageRecord], sequence: FlowSequence) -> List[StepMetrics]:
    """Per-step sums and drop-off; canonical steps with no sends are zero-filled."""
    by_message: Dict[str, List[FlowMessageRecord]] = defaultdict(list)
    by_position: Dict[int, List[FlowMessageRecord]] = defaultdict(list)
    for msg in messages:
        by_message[msg.flow_message_id].append(msg)
        by_position[msg.sequence_position].append(msg)

    steps: List[StepMetrics] = []
    previous_sent = 0.0
    for idx, message_id in enumerate(sequence.message_ids):
        position = idx + 1
        group = by_message.get(message_id) or by_position.get(position, [])
        name = sequence.email_names[idx] or f"Step {position}"
        if not group:
            steps.append(StepMetrics(position, name, MetricSums()))
            continue
        sums = MetricSums.of(group)
        drop = 0.0
        if idx > 0 and previous_sent > 0:
            drop = (previous_sent - sums.emails_sent) / previous_sent * 100.0
        steps.append(StepMetrics(position, name, sums, drop))
        previous_sent = sums.emails_sent
    return steps


def duplicate_step_names(sequence: FlowSequence) -> Tuple[str, ...]:
    counts = Counter(name.strip() for name in sequence.email_names if name and name.strip())
    return tuple(sorted(name for name, n in counts.items() if n > 1))


def _median_moment(moments: List[datetime]) -> datetime:
    s = sorted(moments)
    mid = len(s) // 2
    if len(s) % 2:
        return s[mid]
    return s[mid - 1] + (s[mid] - s[mid - 1]) / 2


def order_consistent(messages: Sequence[FlowMessageRecord], sequence: FlowSequence) -> bool:
    """True when median send dates never go backwards from one step to the next."""
    last = None
    for position in range(1, sequence.length + 1):
        moments = [m.sent_date for m in messages if m.sequence_position == position]
        if not moments:
            continue
        current = _median_moment(moments)
        if last is not None and current < last:
            return False
        last = current
    return True


# ---------------------------------------------------------------------------
# 🧮  Scoring
# ---------------------------------------------------------------------------


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def rpe_baseline(steps: Sequence[StepMetrics], limits: Optional[FlowThresholds] = None) -> float:
    """Median RPE over steps above the first sends floor that leaves any step."""
    limits = limits or FlowThresholds()
    pool: Sequence[StepMetrics] = []
    for floor in limits.baseline_sends_floors:
        pool = [s for s in steps if s.emails_sent >= floor]
        if pool:
            break
    if not pool:
        pool = steps
    return stats.median([s.revenue_per_email for s in pool])


def _tier_penalty(kind: str, rate: float, tiers: Sequence[PenaltyTier]) -> Optional[Tuple[Penalty, bool]]:
    for rank, (threshold, amount, hard_stop) in enumerate(tiers):
        if rate >= threshold:
            return Penalty(kind, amount, len(tiers) - rank), hard_stop
    return None


def _share_points(share: float, limits: FlowThresholds) -> float:
    for threshold, points in limits.revenue_share_tiers:
        if share >= threshold:
            return points
    return 0.0


def _volume_points(sends: float, first_sends: float, limits: FlowThresholds) -> float:
    for minimum, share, points in limits.volume_tiers:
        if sends >= max(minimum, share * first_sends):
            return points
    return limits.volume_floor_points


def action_for(score: float, hard_stop: bool, limits: Optional[FlowThresholds] = None) -> str:
    limits = limits or FlowThresholds()
    if hard_stop:
        return PAUSE
    if score >= limits.scale_score:
        return SCALE
    if score >= limits.keep_score:
        return KEEP
    if score >= limits.improve_score:
        return IMPROVE
    return PAUSE


def score_steps(
    steps: Sequence[StepMetrics], limits: Optional[FlowThresholds] = None
) -> Tuple[List[StepScore], float]:
    """Score every step; returns ``(scores, rpe_baseline)``."""
    limits = limits or FlowThresholds()
    if not steps:
        return [], 0.0
    baseline = rpe_baseline(steps, limits)
    first_sends = steps[0].emails_sent
    flow_revenue = sum(s.revenue for s in steps)

    scores = []
    for i, step in enumerate(steps):
        prev = steps[i - 1] if i > 0 else None
        notes: List[str] = []

        index = step.revenue_per_email / baseline if baseline > 0 else 0.0
        a1 = _clamp((index - limits.a1_floor_index) / limits.a1_span * limits.a1_max, 0, limits.a1_max)
        if index >= 1.1:
            notes.append("RPE above baseline")
        elif index < 0.9:
            notes.append("RPE below baseline")

        if prev is not None and prev.revenue_per_email > 0:
            delta = (step.revenue_per_email - prev.revenue_per_email) / prev.revenue_per_email
            a2 = _clamp(delta / limits.a2_full_gain * limits.a2_max, 0, limits.a2_max)
            if delta > 0.1:
                notes.append("RPE up vs prior")
            if delta < -0.1:
                notes.append("RPE down vs prior")
            reach_drop = safe_ratio(prev.emails_sent - step.emails_sent, prev.emails_sent)
            if reach_drop > limits.a2_collapse_drop and index < 1.0:
                a2 = min(a2, limits.a2_collapse_cap)
                notes.append("Heavy reach drop")
        else:
            a2 = limits.a2_first_step_above if step.revenue_per_email >= baseline else limits.a2_first_step_below

        share = safe_ratio(step.revenue, flow_revenue)
        a3 = _share_points(share, limits)
        if share >= 0.2:
            notes.append("High revenue share")
        money = _clamp(a1 + a2 + a3, 0, limits.money_max)

        penalties: List[Penalty] = []
        hard_stop = False
        for kind, rate, tiers in (
            ("spam", step.sums.spam_rate, limits.spam_tiers),
            ("unsubscribe", step.sums.unsubscribe_rate, limits.unsubscribe_tiers),
            ("bounce", step.sums.bounce_rate, limits.bounce_tiers),
        ):
            hit = _tier_penalty(kind, rate, tiers)
            if hit is not None:
                penalties.append(hit[0])
                hard_stop = hard_stop or hit[1]
        deliverability = -min(sum(p.amount for p in penalties), limits.max_penalty)
        if penalties:
            notes.append("Deliverability penalties")

        small_sample = limits.small_sample_penalty if step.emails_sent < limits.small_sample_sends else 0.0
        volume = _clamp(_volume_points(step.emails_sent, first_sends, limits) - small_sample, 0, limits.volume_max)
        if small_sample:
            notes.append("Small sample")

        score = _clamp(money + deliverability + volume, 0, 100)
        scores.append(
            StepScore(
                position=step.position,
                score=score,
                action=action_for(score, hard_stop, limits),
                money=money,
                a1=a1,
                a2=a2,
                a3=a3,
                deliverability=deliverability,
                penalties=tuple(penalties),
                hard_stop=hard_stop,
                volume=volume,
                small_sample_penalty=small_sample,
                rpe_index=index,
                revenue_share=share,
                notes=tuple(notes),
            )
        )
    return scores, baseline


# ---------------------------------------------------------------------------
# ➕  Add-step suggestion
# ---------------------------------------------------------------------------


def suggest_add_step(
    steps: Sequence[StepMetrics],
    scores: Sequence[StepScore],
    baseline: float,
    window: Optional[Window] = None,
    latest: Optional[datetime] = None,
    limits: Optional[FlowThresholds] = None,
) -> AddStepSuggestion:
    """Whether a follow-up step is worth adding after the last one.

    Only offered for a 30 or 90 day window that ends on the latest data
    point.  The estimate assumes half of the last step's reach at a
    25th-percentile RPE, never above the last step's own RPE.
    """
    limits = limits or FlowThresholds()
    if not steps or not scores:
        return AddStepSuggestion(False)
    last = steps[-1]
    prev = steps[-2] if len(steps) > 1 else None
    first_sends = steps[0].emails_sent
    flow_revenue = sum(s.revenue for s in steps)

    horizon = None
    if window is not None and latest is not None and window.end.date() == latest.date():
        if window.days in limits.add_step_windows:
            horizon = window.days
    gates = {
        "scale": scores[-1].action == SCALE,
        "rpe": last.revenue_per_email >= baseline,
        "rpe_trend": prev is None or last.revenue_per_email - prev.revenue_per_email >= 0,
        "deliverability": last.sums.unsubscribe_rate <= limits.add_step_max_unsubscribe_rate
        and last.sums.spam_rate <= limits.add_step_max_spam_rate,
        "volume": last.emails_sent
        >= max(limits.add_step_min_sends, stats.round_half_up(limits.add_step_min_share_of_first * first_sends)),
        "revenue": last.revenue >= limits.add_step_min_revenue
        or safe_ratio(last.revenue, flow_revenue) >= limits.add_step_min_revenue_share,
        "window": horizon is not None,
    }
    if not all(gates.values()):
        return AddStepSuggestion(False, gates=gates)

    rpes = sorted(s.revenue_per_email for s in steps if s.revenue_per_email >= 0)
    floor = rpes[int(limits.add_step_rpe_percentile * (len(rpes) - 1))] if rpes else last.revenue_per_email
    floor = min(floor, last.revenue_per_email)
    reach = stats.round_half_up(last.emails_sent * limits.add_step_reach_share)
    estimate = stats.round_half_up(reach * floor * 100) / 100
    reason = (
        "Strong RPE and healthy deliverability"
        if len(steps) == 1
        else f"S{last.position} performing well; follow-up could add value"
    )
    return AddStepSuggestion(True, reason, horizon, reach, floor, estimate, gates)


# ---------------------------------------------------------------------------
# 🧭  Entry point
# ---------------------------------------------------------------------------


def analyze_flow_steps(
    messages: Iterable[FlowMessageRecord],
    flow_id: str,
    window: Optional[Window] = None,
    latest: Optional[datetime] = None,
    thresholds: Optional[FlowThresholds] = None,
    observer: Observer = NULL_OBSERVER,
) -> FlowStepReport:
    """Step metrics, scores and the add-step suggestion for one flow.

    Parameters
    ----------
    messages : iterable of FlowMessageRecord
        All flow messages; the canonical sequence is derived from every
        message of *flow_id*, the metrics from live messages inside *window*.
    flow_id : str
        Flow to score.
    window : Window, optional
        Active date range; ``None`` scores all history.
    latest : datetime, optional
        Latest data point, used to decide whether the window is a recent
        30 or 90 day view for the add-step suggestion.

    Step scores are left empty when step names repeat or median send dates
    go backwards, since the step order cannot be trusted.
    """
    limits = thresholds or FlowThresholds()
    records = [m for m in messages if m.flow_id == flow_id]
    sequence = flow_sequence(records, flow_id)
    live = [m for m in records if m.is_live]
    if window is not None:
        live = in_window(live, window)

    steps = step_metrics(live, sequence)
    scores, baseline = score_steps(steps, limits)
    duplicates = duplicate_step_names(sequence)
    ordered = order_consistent(live, sequence)
    available = not duplicates and ordered
    observer.trace(
        "flow_steps.scored",
        flow=flow_id,
        steps=len(steps),
        baseline=baseline,
        duplicates=len(duplicates),
        ordered=ordered,
    )

    add_step = suggest_add_step(steps, scores, baseline, window, latest, limits) if available else AddStepSuggestion(False)
    total_sends = sum(s.emails_sent for s in steps)
    if total_sends < limits.min_flow_sends:
        guidance: Guidance = InsufficientData(
            MODULE,
            "low_flow_volume",
            f"This flow sent {total_sends:,.0f} emails in the selected range; "
            f"at least {limits.min_flow_sends:,.0f} are needed to score its steps.",
            details={"sends": total_sends},
        )
    elif not available:
        guidance = InsufficientData(
            MODULE,
            "unreliable_step_order",
            "Step scores are hidden because step names repeat or steps were sent out of order.",
            details={"duplicate_names": list(duplicates), "order_consistent": ordered},
        )
    elif add_step.suggested:
        guidance = GuidanceResult(
            MODULE,
            "add-step",
            "Add a follow-up step",
            add_step.reason or "",
            target=f"S{steps[-1].position + 1}",
            estimated_monthly_gain=None,
            sample=f"{total_sends:,.0f} sends across {len(steps)} steps",
            metadata={"estimated_revenue": add_step.estimated_revenue, "horizon_days": add_step.horizon_days},
        )
    else:
        weakest = min(scores, key=lambda s: (s.score, s.position))
        guidance = GuidanceResult(
            MODULE,
            weakest.action,
            f"S{weakest.position} is the weakest step",
            f"S{weakest.position} scores {weakest.score:.0f}/100; recommended action: {weakest.action}.",
            target=f"S{weakest.position}",
            sample=f"{total_sends:,.0f} sends across {len(steps)} steps",
        )
    return FlowStepReport(
        sequence,
        tuple(steps),
        tuple(scores) if available else (),
        baseline,
        available,
        duplicates,
        ordered,
        add_step,
        guidance,
    )


__all__ = [
    "SCALE",
    "KEEP",
    "IMPROVE",
    "PAUSE",
    "FlowSequence",
    "StepMetrics",
    "Penalty",
    "StepScore",
    "AddStepSuggestion",
    "FlowStepReport",
    "flow_sequence",
    "step_metrics",
    "duplicate_step_names",
    "order_consistent",
    "rpe_baseline",
    "action_for",
    "score_steps",
    "suggest_add_step",
    "analyze_flow_steps",
]
