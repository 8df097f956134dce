"""Subject-Line Feature Analyzer.

Deterministic text rules tag every campaign subject with features (length
bin, keywords, punctuation and casing, deadline words, personalization,
price anchoring, imperative opening).  Each feature is scored against the
all-campaign baseline for one metric and marked reliable only when it has
enough volume and a significant difference from the campaigns without it.
"""

from __future__ import annotations

import re
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from inboxkit.analysis import stats
from inboxkit.config import SubjectLineThresholds
from inboxkit.records import CampaignRecord, safe_ratio
from inboxkit.results import Guidance, GuidanceResult, InsufficientData, lift
from inboxkit.utils.logs.report import NULL_OBSERVER, Observer

MODULE = "subject_lines"

OPEN_RATE = "open_rate"
CLICK_RATE = "click_rate"
CLICK_TO_OPEN_RATE = "click_to_open_rate"
REVENUE_PER_EMAIL = "revenue_per_email"
SUBJECT_METRICS = (OPEN_RATE, CLICK_RATE, CLICK_TO_OPEN_RATE, REVENUE_PER_EMAIL)

ALL_SEGMENTS = "ALL_SEGMENTS"

DEADLINE_WORDS = (
    "today", "tonight", "now", "ends", "expires", "last chance", "final",
    "hours", "left", "midnight", "24 hours", "ending", "deadline",
)
IMPERATIVE_VERBS = (
    "shop", "save", "get", "discover", "buy", "grab", "claim", "enjoy",
    "see", "explore", "find", "unlock", "upgrade", "try",
)
KEYWORD_TOKENS = (
    "sale", "deal", "offer", "discount", "% off", "off", "free", "save", "new",
    "bestseller", "best seller", "just in", "limited", "exclusive",
)

_EMOJI = re.compile("[\U0001F000-\U0001FAFF\u2300-\u23FF\u2600-\u27BF\u2B00-\u2BFF]")
_ALL_CAPS = re.compile(r"\b[A-Z]{2,}\b")
_CAPS_CODE = re.compile(r"[A-Z]{2,}\d+")
_BRACKETS = re.compile(r"[\[\](){}]")
_CURRENCY = re.compile(r"[$£€]")
_PRICE = re.compile(r"[$£€]\s?\d|\d+(?:\.\d{2})?")
_YOU = re.compile(r"\b(you|your|you’re|you're)\b")
_FIRST_NAME = re.compile(
    r"\{\s*first\s*name\s*\}|\{\s*first[_\s-]?name\s*\}|%first_name%|\*\|first_name\|\*", re.IGNORECASE
)
_LEADING_PUNCT = re.compile(r"^\W+")


# ---------------------------------------------------------------------------
# 🔤  Text rules
# ---------------------------------------------------------------------------


def includes_word(text: str, word: str) -> bool:
    """Case-insensitive whole-word match; phrases with a space match as substrings."""
    haystack, needle = text.lower(), word.lower()
    if " " in needle:
        return needle in haystack
    return re.search(rf"(^|[^a-zA-Z]){re.escape(needle)}([^a-zA-Z]|$)", haystack) is not None


def has_emoji(text: str) -> bool:
    return _EMOJI.search(text) is not None


def has_all_caps_word(text: str) -> bool:
    return _ALL_CAPS.search(_CAPS_CODE.sub("X", text)) is not None


def has_number(text: str) -> bool:
    return any(ch.isdigit() for ch in text)


def has_price_number(text: str) -> bool:
    return _PRICE.search(text) is not None


def has_you(text: str) -> bool:
    return _YOU.search(text.lower()) is not None


def has_first_name_token(text: str) -> bool:
    return _FIRST_NAME.search(text) is not None


def starts_with_imperative(text: str) -> bool:
    words = _LEADING_PUNCT.sub("", text.strip()).split()
    return bool(words) and words[0].lower() in IMPERATIVE_VERBS


def length_bin(length: int) -> Tuple[str, str]:
    """``(key, label)`` of the subject length bin."""
    if length <= 30:
        return "0-30", "0-30 chars"
    if length <= 50:
        return "31-50", "31-50 chars"
    if length <= 70:
        return "51-70", "51-70 chars"
    return "71+", "71+ chars"


LENGTH_BIN_ORDER = ("0-30", "31-50", "51-70", "71+")

Predicate = Callable[[str], bool]


def _word(token: str) -> Predicate:
    return lambda s: includes_word(s, token)


# (family, key, label, predicate)
FEATURES: Tuple[Tuple[str, str, str, Predicate], ...] = (
    ("keywords", "emoji", "Emoji present", has_emoji),
    *(("keywords", f"kw:{tok}", tok, _word(tok)) for tok in KEYWORD_TOKENS),
    ("punctuation", "qmark", "Has question mark (?)", lambda s: "?" in s),
    ("punctuation", "exclaim", "Has exclamation (!)", lambda s: "!" in s),
    ("punctuation", "allcaps", "Has ALL CAPS word", has_all_caps_word),
    ("punctuation", "number", "Has number", has_number),
    ("punctuation", "percent", "Has %", lambda s: "%" in s),
    ("punctuation", "brackets", "Has brackets/parentheses", lambda s: _BRACKETS.search(s) is not None),
    *(("deadlines", f"deadline:{w}", w, _word(w)) for w in DEADLINE_WORDS),
    ("personalization", "p:you", "Contains you/your", has_you),
    ("personalization", "p:first", "Has first-name token", has_first_name_token),
    ("price", "cur", "Has currency ($/£/€)", lambda s: _CURRENCY.search(s) is not None),
    ("price", "price", "Has numeric price", has_price_number),
    ("price", "pct", "Has % discount", lambda s: "%" in s),
    ("imperative", "imperative", "Starts with a verb (Shop/Save/Get...)", starts_with_imperative),
)


# ---------------------------------------------------------------------------
# 📊  Aggregates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MetricAggregate:
    campaigns: int
    emails: float
    opens: float
    clicks: float
    revenue: float
    numerator: float
    denominator: float
    value: float


@dataclass(frozen=True)
class FeatureStat:
    family: str
    key: str
    label: str
    aggregate: MetricAggregate
    lift: float
    examples: Tuple[str, ...] = ()
    p_value: Optional[float] = None
    adjusted_p_value: Optional[float] = None
    significant: bool = False
    reliable: bool = False


@dataclass(frozen=True)
class ReuseStat:
    subject: str
    occurrences: int
    first_value: float
    last_value: float
    change: float
    change_percent: float
    total_emails: float


@dataclass(frozen=True)
class SubjectLineReport:
    metric: str
    segment: Optional[str]
    baseline: MetricAggregate
    length_bins: Tuple[FeatureStat, ...]
    features: Dict[str, Tuple[FeatureStat, ...]]
    reuse: Tuple[ReuseStat, ...]
    guidance: Guidance

    @property
    def reliable(self) -> Tuple[FeatureStat, ...]:
        everything = list(self.length_bins)
        for group in self.features.values():
            everything.extend(group)
        return tuple(f for f in everything if f.reliable)


def metric_parts(campaign: CampaignRecord, metric: str) -> Tuple[float, float]:
    if metric == OPEN_RATE:
        return campaign.opens, campaign.emails_sent
    if metric == CLICK_RATE:
        return campaign.clicks, campaign.emails_sent
    if metric == CLICK_TO_OPEN_RATE:
        return campaign.clicks, campaign.opens
    if metric == REVENUE_PER_EMAIL:
        return campaign.revenue, campaign.emails_sent
    raise ValueError(f"Unknown subject-line metric: {metric!r}")


def aggregate(campaigns: Sequence[CampaignRecord], metric: str) -> MetricAggregate:
    num = den = emails = opens = clicks = revenue = 0.0
    for c in campaigns:
        n, d = metric_parts(c, metric)
        num += n
        den += d
        emails += c.emails_sent
        opens += c.opens
        clicks += c.clicks
        revenue += c.revenue
    scale = 1.0 if metric == REVENUE_PER_EMAIL else 100.0
    return MetricAggregate(len(campaigns), emails, opens, clicks, revenue, num, den, safe_ratio(num, den, scale))


def filter_by_segment(campaigns: Iterable[CampaignRecord], segment: Optional[str] = None) -> List[CampaignRecord]:
    if not segment or segment == ALL_SEGMENTS:
        return list(campaigns)
    return [c for c in campaigns if segment in c.segments_used]


def unique_segments(campaigns: Iterable[CampaignRecord]) -> List[str]:
    return sorted({s for c in campaigns for s in c.segments_used if s and s.strip()})


def _examples(group: Sequence[CampaignRecord]) -> Tuple[str, ...]:
    ranked = sorted(group, key=lambda c: -c.emails_sent)
    return tuple(c.subject_text for c in ranked if c.subject_text)[:5]


# ---------------------------------------------------------------------------
# 🧪  Significance
# ---------------------------------------------------------------------------


def _rate_p_value(group: MetricAggregate, rest: MetricAggregate) -> float:
    test = stats.two_proportion_z_test(group.numerator, group.denominator, rest.numerator, rest.denominator)
    if test.valid:
        return test.p_value
    return stats.fisher_exact_two_sided(
        group.numerator,
        max(0.0, group.denominator - group.numerator),
        rest.numerator,
        max(0.0, rest.denominator - rest.numerator),
    )


def _per_campaign_rpe(group: Sequence[CampaignRecord]) -> List[float]:
    return [c.revenue / c.emails_sent for c in group if c.emails_sent > 0]


def _score_features(
    campaigns: Sequence[CampaignRecord],
    groups: Sequence[Tuple[str, str, str, List[CampaignRecord]]],
    metric: str,
    baseline: MetricAggregate,
    limits: SubjectLineThresholds,
    observer: Observer,
) -> List[FeatureStat]:
    """Lift, volume gate and significance for every non-empty feature group."""
    members = [(family, key, label, group) for family, key, label, group in groups if group]
    complements = []
    p_values: List[Optional[float]] = []
    for _, _, _, group in members:
        ids = {id(c) for c in group}
        rest = [c for c in campaigns if id(c) not in ids]
        complements.append(rest)
        if not rest or metric == REVENUE_PER_EMAIL:
            p_values.append(None)
        else:
            p_values.append(_rate_p_value(aggregate(group, metric), aggregate(rest, metric)))

    tested = [i for i, p in enumerate(p_values) if p is not None]
    adjusted = dict(zip(tested, stats.benjamini_hochberg([p_values[i] for i in tested])))

    min_emails = limits.min_email_share * baseline.emails
    results = []
    for i, (family, key, label, group) in enumerate(members):
        agg = aggregate(group, metric)
        volume_ok = agg.campaigns >= limits.min_campaigns and agg.emails >= min_emails
        if metric == REVENUE_PER_EMAIL:
            boot = stats.bootstrap_diff_ci(
                _per_campaign_rpe(group),
                _per_campaign_rpe(complements[i]),
                limits.bootstrap_iterations,
                limits.seed,
            )
            significant = boot.passed
        else:
            significant = i in adjusted and adjusted[i] <= limits.alpha
        results.append(
            FeatureStat(
                family=family,
                key=key,
                label=label,
                aggregate=agg,
                lift=lift(agg.value, baseline.value),
                examples=_examples(group),
                p_value=p_values[i],
                adjusted_p_value=adjusted.get(i),
                significant=significant,
                reliable=volume_ok and significant,
            )
        )
    observer.trace(
        "subject_lines.features",
        metric=metric,
        tested=len(members),
        reliable=sum(1 for f in results if f.reliable),
    )
    return results


# ---------------------------------------------------------------------------
# ♻️  Reuse fatigue
# ---------------------------------------------------------------------------


def reuse_stats(campaigns: Sequence[CampaignRecord], metric: str) -> List[ReuseStat]:
    """Exact-match repeated subjects with first vs most recent metric value."""
    by_subject: Dict[str, List[CampaignRecord]] = defaultdict(list)
    for c in campaigns:
        by_subject[c.subject_text].append(c)
    out = []
    for subject, group in by_subject.items():
        if len(group) < 2:
            continue
        ordered = sorted(group, key=lambda c: (c.sent_date, c.id))
        first = aggregate([ordered[0]], metric).value
        last = aggregate([ordered[-1]], metric).value
        out.append(
            ReuseStat(
                subject=subject,
                occurrences=len(ordered),
                first_value=first,
                last_value=last,
                change=last - first,
                change_percent=lift(last, first),
                total_emails=sum(c.emails_sent for c in ordered),
            )
        )
    return sorted(out, key=lambda r: (-r.total_emails, r.subject))


# ---------------------------------------------------------------------------
# 🧭  Entry point
# ---------------------------------------------------------------------------


def _rank(features: Iterable[FeatureStat]) -> Tuple[FeatureStat, ...]:
    return tuple(sorted(features, key=lambda f: (-f.lift, -f.aggregate.emails, f.key)))


def analyze_subject_lines(
    campaigns: Iterable[CampaignRecord],
    metric: str = OPEN_RATE,
    segment: Optional[str] = None,
    thresholds: Optional[SubjectLineThresholds] = None,
    observer: Observer = NULL_OBSERVER,
) -> SubjectLineReport:
    """Feature lifts for *metric*, reliability gates and subject reuse.

    Only features flagged ``reliable`` drive the guidance; the rest are
    returned as raw data.
    """
    if metric not in SUBJECT_METRICS:
        raise ValueError(f"Unknown subject-line metric: {metric!r}")
    limits = thresholds or SubjectLineThresholds()
    selected = sorted(filter_by_segment(campaigns, segment), key=lambda c: (c.sent_date, c.id))
    baseline = aggregate(selected, metric)

    by_bin: Dict[str, List[CampaignRecord]] = defaultdict(list)
    labels: Dict[str, str] = {}
    for c in selected:
        key, label = length_bin(len(c.subject_text))
        by_bin[key].append(c)
        labels[key] = label
    groups = [("length", key, labels[key], by_bin[key]) for key in LENGTH_BIN_ORDER if key in by_bin]
    for family, key, label, predicate in FEATURES:
        groups.append((family, key, label, [c for c in selected if predicate(c.subject_text)]))

    scored = _score_features(selected, groups, metric, baseline, limits, observer)
    length_bins = tuple(f for f in scored if f.family == "length")
    features: Dict[str, Tuple[FeatureStat, ...]] = {}
    for family in ("keywords", "punctuation", "deadlines", "personalization", "price", "imperative"):
        features[family] = _rank(f for f in scored if f.family == family)

    reuse = tuple(reuse_stats(selected, metric))
    if not selected:
        guidance: Guidance = InsufficientData(MODULE, "no_campaigns", "No campaigns match the selected range and segment.")
    else:
        winners = [f for f in _rank(f for f in scored if f.reliable) if f.lift > 0]
        if not winners:
            guidance = InsufficientData(
                MODULE,
                "no_reliable_features",
                "No subject-line pattern shows a reliable lift yet.",
                details={"campaigns": len(selected)},
            )
        else:
            top = winners[0]
            guidance = GuidanceResult(
                MODULE,
                "use-feature",
                f"Subjects with '{top.label}' perform better",
                f"Campaigns whose subject matches '{top.label}' beat the baseline {metric.replace('_', ' ')}.",
                target=top.key,
                sample=f"{top.aggregate.campaigns} of {len(selected)} campaigns",
                metadata={"lift": top.lift, "reliable": [f.key for f in winners]},
            )
    return SubjectLineReport(metric, segment, baseline, length_bins, features, reuse, guidance)


__all__ = [
    "OPEN_RATE",
    "CLICK_RATE",
    "CLICK_TO_OPEN_RATE",
    "REVENUE_PER_EMAIL",
    "SUBJECT_METRICS",
    "ALL_SEGMENTS",
    "DEADLINE_WORDS",
    "IMPERATIVE_VERBS",
    "KEYWORD_TOKENS",
    "FEATURES",
    "includes_word",
    "has_emoji",
    "has_all_caps_word",
    "has_number",
    "has_price_number",
    "has_you",
    "has_first_name_token",
    "starts_with_imperative",
    "length_bin",
    "MetricAggregate",
    "FeatureStat",
    "ReuseStat",
    "SubjectLineReport",
    "metric_parts",
    "aggregate",
    "filter_by_segment",
    "unique_segments",
    "reuse_stats",
    "analyze_subject_lines",
]
