import pytest

from inboxkit.results import INFINITE_LIFT, is_infinite_lift, lift


def test_lift_against_a_baseline():
    assert lift(120, 100) == pytest.approx(20.0)
    assert lift(80, 100) == pytest.approx(-20.0)
    assert lift(100, 100) == 0.0


def test_lift_from_zero():
    assert lift(5, 0) == INFINITE_LIFT
    assert is_infinite_lift(lift(5, 0))
    assert lift(0, 0) == 0.0
    assert not is_infinite_lift(lift(0, 0))
    assert not is_infinite_lift(lift(120, 100))
