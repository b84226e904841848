"""Tests for the peaq.evaluator.mov_accumulator module"""
import math

import pytest

from peaq.evaluator.mov_accumulator import (
    AccumulatorMode,
    AccumulatorStatus,
    MovAccumulator,
)


def make_accumulator(mode, channels=1):
    """Return an accumulator that already accepts values"""
    accumulator = MovAccumulator(mode, channels)
    accumulator.set_tentative(False)
    return accumulator


@pytest.mark.parametrize(
    "mode, values, weights, expected",
    [
        ("avg", [1.0, 2.0, 3.0], [1.0, 1.0, 1.0], 2.0),
        ("avg", [1.0, 4.0], [3.0, 1.0], 1.75),
        ("avg_log", [10.0, 10.0], [1.0, 1.0], 10.0),
        ("rms", [3.0, 4.0], [1.0, 1.0], math.sqrt(12.5)),
        ("rms", [1.0, 2.0], [2.0, 1.0], math.sqrt(8.0 / 5.0)),
        ("rms_asym", [3.0], [4.0], 5.0),
        ("adb", [10.0, 10.0], [1.0, 1.0], 1.0),
        ("adb", [0.0], [1.0], -0.5),
        ("avg_window", [16.0, 16.0, 16.0, 16.0], [1.0] * 4, 16.0),
        ("avg_window", [1.0, 1.0, 1.0], [1.0] * 3, 0.0),
        ("filtered_max", [1.0, 1.0], [1.0, 1.0], 0.19),
        ("filtered_max", [1.0, 0.0, 0.0], [1.0, 1.0, 1.0], 0.1),
    ],
)
def test_accumulated_values(mode, values, weights, expected):
    """Each mode reduces the values by its closed form"""
    accumulator = make_accumulator(mode)
    for value, weight in zip(values, weights):
        accumulator.accumulate(0, value, weight)
    assert accumulator.get_value() == pytest.approx(
        expected, rel=pytest.rel_tolerance, abs=pytest.abs_tolerance
    )


@pytest.mark.parametrize("mode", list(AccumulatorMode))
def test_empty_accumulator(mode):
    """Without any value the result is zero"""
    assert MovAccumulator(mode).get_value() == 0.0


def test_init_state_ignores_values():
    """Values are ignored before the first non-tentative frame"""
    accumulator = MovAccumulator(AccumulatorMode.AVG)
    assert accumulator.status == AccumulatorStatus.INIT
    accumulator.accumulate(0, 100.0)
    accumulator.set_tentative(True)
    accumulator.accumulate(0, 100.0)
    assert accumulator.status == AccumulatorStatus.INIT
    accumulator.set_tentative(False)
    accumulator.accumulate(0, 2.0)
    assert accumulator.get_value() == 2.0


def test_tentative_rollback():
    """Tentative values only count once committed"""
    accumulator = make_accumulator(AccumulatorMode.AVG)
    accumulator.accumulate(0, 1.0)
    accumulator.set_tentative(True)
    assert accumulator.status == AccumulatorStatus.TENTATIVE
    accumulator.accumulate(0, 3.0)
    assert accumulator.get_value() == 1.0
    accumulator.set_tentative(False)
    assert accumulator.get_value() == 2.0


def test_tentative_filtered_max():
    """The snapshot of the filtered maximum is kept while tentative"""
    accumulator = make_accumulator(AccumulatorMode.FILTERED_MAX)
    accumulator.accumulate(0, 1.0)
    accumulator.set_tentative(True)
    accumulator.accumulate(0, 10.0)
    assert accumulator.get_value() == pytest.approx(0.1)
    accumulator.set_tentative(False)
    assert accumulator.get_value() == pytest.approx(1.09)


def test_channels_are_averaged():
    """The value is the mean over channels"""
    accumulator = make_accumulator(AccumulatorMode.AVG, channels=2)
    assert accumulator.channels == 2
    accumulator.accumulate(0, 1.0)
    accumulator.accumulate(1, 3.0)
    assert accumulator.get_value() == 2.0


def test_invalid_channels():
    """At least one channel is required"""
    with pytest.raises(ValueError):
        MovAccumulator(AccumulatorMode.AVG, channels=0)


def test_invalid_mode():
    """Unknown modes are rejected"""
    with pytest.raises(ValueError):
        MovAccumulator("median")


def test_set_mode_discards_data():
    """Changing the mode starts over"""
    accumulator = make_accumulator(AccumulatorMode.AVG)
    accumulator.accumulate(0, 5.0)
    accumulator.set_mode(AccumulatorMode.RMS)
    assert accumulator.mode == AccumulatorMode.RMS
    assert accumulator.get_value() == 0.0
    accumulator.accumulate(0, 3.0)
    assert accumulator.get_value() == 3.0
