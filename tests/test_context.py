from dataclasses import replace
from datetime import datetime

from conftest import make_campaign, make_flow_message, make_subscriber, weekly_campaigns
from inboxkit.config import Thresholds
from inboxkit.context import DataContext
from inboxkit.results import InsufficientData, NoData


def _context():
    return DataContext(
        campaigns=weekly_campaigns("2024-01-01", 17),
        flows=[make_flow_message("2024-04-20T09:00:00", 1)],
    )


def test_records_are_sorted_and_bounded():
    late = make_campaign("2024-06-01T09:00:00")
    ctx = DataContext(campaigns=[late, make_campaign("2024-01-01T09:00:00")])

    assert ctx.campaigns[-1] is late
    assert ctx.earliest == datetime(2024, 1, 1, 9)
    assert ctx.latest == datetime(2024, 6, 1, 9)


def test_empty_context_resolves_to_no_data():
    assert isinstance(DataContext().resolve("30d"), NoData)


def test_resolve_uses_latest_record():
    ctx = _context()
    resolved = ctx.resolve("90d")

    assert resolved.current.end.date() == datetime(2024, 4, 22).date()
    assert len(ctx.campaigns_in(resolved.current)) == 13


def test_results_are_memoized_per_generation():
    ctx = _context()
    window = ctx.resolve("all").current

    first = ctx.gaps(window)
    assert ctx.gaps(window) is first

    generation = ctx.invalidate()

    assert generation == 1
    assert ctx.gaps(window) is not first
    assert ctx.gaps(window) == first


def test_replace_swaps_data_and_bumps_generation():
    ctx = _context()
    window = ctx.resolve("all").current
    before = ctx.send_frequency(window)

    ctx.replace(campaigns=weekly_campaigns("2024-01-01", 17, per_week=2))

    assert ctx.generation == 1
    assert len(ctx.flows) == 1
    after = ctx.send_frequency(window)
    assert after.baseline == "2"
    assert before.baseline == "1"


def test_thresholds_flow_through_to_analyzers():
    strict = Thresholds()
    strict = replace(strict, gaps=replace(strict.gaps, min_window_days=365))
    ctx = DataContext(campaigns=weekly_campaigns("2024-01-01", 17), thresholds=strict)

    assert not ctx.gaps(ctx.resolve("all").current).active


def test_memoize_keys_by_value():
    ctx = DataContext()
    calls = []

    def build():
        calls.append(1)
        return len(calls)

    assert ctx.memoize("answer", build) == 1
    assert ctx.memoize("answer", build) == 1
    ctx.invalidate()
    assert ctx.memoize("answer", build) == 2


def test_cache_evicts_the_least_recently_used():
    ctx = DataContext(max_entries=2)
    built = []

    def factory(key):
        def build():
            built.append(key)
            return key

        return build

    ctx.memoize("a", factory("a"))
    ctx.memoize("b", factory("b"))
    ctx.memoize("a", factory("a"))
    ctx.memoize("c", factory("c"))

    assert ctx.cache_size == 2
    assert built == ["a", "b", "c"]
    ctx.memoize("a", factory("a"))
    ctx.memoize("b", factory("b"))
    assert built == ["a", "b", "c", "b"]


def test_invalidate_empties_the_cache():
    ctx = _context()
    ctx.gaps(ctx.resolve("all").current)
    assert ctx.cache_size > 0

    ctx.invalidate()

    assert ctx.cache_size == 0


def test_reliability_is_memoized():
    ctx = _context()
    window = ctx.resolve("all").current

    report = ctx.reliability(window)

    assert report.reliability == 100
    assert ctx.reliability(window) is report


def test_dead_weight_savings_anchor_on_the_latest_send():
    ctx = DataContext(
        campaigns=[make_campaign("2024-06-30T09:00:00")],
        subscribers=[make_subscriber(created=datetime(2024, 1, 1)), make_subscriber(created=datetime(2024, 6, 20))],
    )

    summary = ctx.dead_weight_savings()

    assert summary.dead_weight_count == 1
    assert summary.projected_subscribers == 1
    assert isinstance(DataContext().dead_weight_savings(), InsufficientData)
