"""Accumulation of model output variables over time and channels.

Every model output variable (MOV) is computed per frame and channel and then
reduced to a single number by one of several strategies. The accumulator
further supports a tentative state which is used for frames at the end of a
signal that fall below the audibility threshold: values are still collected,
but the reported value stays at the last committed one unless the tentative
state is left again because an audible frame follows.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from enum import Enum

import numpy as np

logger = logging.getLogger(__name__)


class AccumulatorMode(Enum):
    """Available accumulation strategies."""

    AVG = "avg"
    AVG_LOG = "avg_log"
    RMS = "rms"
    RMS_ASYM = "rms_asym"
    AVG_WINDOW = "avg_window"
    FILTERED_MAX = "filtered_max"
    ADB = "adb"


class AccumulatorStatus(Enum):
    INIT = "init"
    NORMAL = "normal"
    TENTATIVE = "tentative"


@dataclass
class Fraction:
    num: float = 0.0
    den: float = 0.0


@dataclass
class TwinFraction:
    num1: float = 0.0
    num2: float = 0.0
    den: float = 0.0


@dataclass
class WindowedAverageData:
    frac: Fraction = field(default_factory=Fraction)
    past_sqrts: list[float] = field(default_factory=lambda: [math.nan] * 3)


@dataclass
class FilteredMaxData:
    max: float = 0.0
    filter_state: float = 0.0


class AverageStrategy:
    """Weighted mean, sum(w * x) / sum(w)."""

    @staticmethod
    def new_data() -> Fraction:
        return Fraction()

    @staticmethod
    def accumulate(data: Fraction, value: float, weight: float) -> None:
        data.num += weight * value
        data.den += weight

    @staticmethod
    def save(data: Fraction) -> Fraction:
        return replace(data)

    @staticmethod
    def value(saved: Fraction) -> float:
        if saved.den == 0:
            return 0.0
        return saved.num / saved.den


class AverageLogStrategy(AverageStrategy):
    """Weighted mean in dB."""

    @staticmethod
    def value(saved: Fraction) -> float:
        if saved.den == 0:
            return 0.0
        return float(10.0 * np.log10(saved.num / saved.den))


class AverageDistortedBlockStrategy(AverageStrategy):
    """Logarithm of the mean number of steps above threshold."""

    @staticmethod
    def value(saved: Fraction) -> float:
        if saved.den <= 0:
            return 0.0
        if saved.num == 0:
            return -0.5
        return math.log10(saved.num / saved.den)


class RmsStrategy(AverageStrategy):
    """Root of the weighted mean square, with the weights squared as well."""

    @staticmethod
    def accumulate(data: Fraction, value: float, weight: float) -> None:
        weight *= weight
        data.num += weight * value * value
        data.den += weight

    @staticmethod
    def value(saved: Fraction) -> float:
        if saved.den == 0:
            return 0.0
        return math.sqrt(saved.num / saved.den)


class RmsAsymStrategy:
    """Two root mean squares combined as rms1 + 0.5 * rms2.

    The second value is passed in place of the weight.
    """

    @staticmethod
    def new_data() -> TwinFraction:
        return TwinFraction()

    @staticmethod
    def accumulate(data: TwinFraction, value: float, weight: float) -> None:
        data.num1 += value * value
        data.num2 += weight * weight
        data.den += 1.0

    @staticmethod
    def save(data: TwinFraction) -> TwinFraction:
        return replace(data)

    @staticmethod
    def value(saved: TwinFraction) -> float:
        if saved.den == 0:
            return 0.0
        return math.sqrt(saved.num1 / saved.den) + 0.5 * math.sqrt(
            saved.num2 / saved.den
        )


class WindowedAverageStrategy:
    """Root of the mean of 4-frame sliding averages of square roots, to the 4th.

    Weights are ignored.
    """

    @staticmethod
    def new_data() -> WindowedAverageData:
        return WindowedAverageData()

    @staticmethod
    def accumulate(data: WindowedAverageData, value: float, weight: float) -> None:
        value_sqrt = math.sqrt(value)
        if not math.isnan(data.past_sqrts[0]):
            window_mean = (sum(data.past_sqrts) + value_sqrt) / 4.0
            data.frac.num += window_mean**4
            data.frac.den += 1.0
        data.past_sqrts = data.past_sqrts[1:] + [value_sqrt]

    @staticmethod
    def save(data: WindowedAverageData) -> Fraction:
        return replace(data.frac)

    @staticmethod
    def value(saved: Fraction) -> float:
        if saved.den == 0:
            return 0.0
        return math.sqrt(saved.num / saved.den)


class FilteredMaxStrategy:
    """Maximum of the input after first order lowpass filtering.

    Weights are ignored.
    """

    @staticmethod
    def new_data() -> FilteredMaxData:
        return FilteredMaxData()

    @staticmethod
    def accumulate(data: FilteredMaxData, value: float, weight: float) -> None:
        data.filter_state = 0.9 * data.filter_state + 0.1 * value
        if data.filter_state > data.max:
            data.max = data.filter_state

    @staticmethod
    def save(data: FilteredMaxData) -> float:
        return data.max

    @staticmethod
    def value(saved: float) -> float:
        return saved


STRATEGIES = {
    AccumulatorMode.AVG: AverageStrategy,
    AccumulatorMode.AVG_LOG: AverageLogStrategy,
    AccumulatorMode.RMS: RmsStrategy,
    AccumulatorMode.RMS_ASYM: RmsAsymStrategy,
    AccumulatorMode.AVG_WINDOW: WindowedAverageStrategy,
    AccumulatorMode.FILTERED_MAX: FilteredMaxStrategy,
    AccumulatorMode.ADB: AverageDistortedBlockStrategy,
}


class MovAccumulator:
    """Accumulates the per frame values of one MOV for all channels.

    A new accumulator ignores all values until `set_tentative(False)` is
    called for the first time. The reported value is the mean over channels.

    Args:
        mode (AccumulatorMode | str): accumulation strategy.
        channels (int): number of channels.

    Example:
        >>> accumulator = MovAccumulator(AccumulatorMode.AVG)
        >>> accumulator.set_tentative(False)
        >>> for value in (1.0, 2.0, 3.0):
        ...     accumulator.accumulate(0, value, 1.0)
        >>> accumulator.get_value()
        2.0
    """

    def __init__(
        self, mode: AccumulatorMode | str = AccumulatorMode.AVG, channels: int = 1
    ) -> None:
        self.mode = AccumulatorMode(mode)
        self._strategy = STRATEGIES[self.mode]
        self.status = AccumulatorStatus.INIT
        self.set_channels(channels)

    @property
    def channels(self) -> int:
        return len(self._data)

    def set_channels(self, channels: int) -> None:
        """Set the number of channels, discarding everything accumulated."""
        if channels < 1:
            logger.error(f"Invalid channel count {channels}")
            raise ValueError(f"Channel count must be at least 1, got {channels}")
        self._data = [self._strategy.new_data() for _ in range(channels)]
        self._saved = [self._strategy.save(data) for data in self._data]

    def set_mode(self, mode: AccumulatorMode | str) -> None:
        """Switch the strategy; accumulated data is discarded on a change."""
        mode = AccumulatorMode(mode)
        if mode != self.mode:
            self.mode = mode
            self._strategy = STRATEGIES[mode]
            self.set_channels(self.channels)

    def set_tentative(self, tentative: bool) -> None:
        if tentative:
            if self.status == AccumulatorStatus.NORMAL:
                self._saved = [self._strategy.save(data) for data in self._data]
                self.status = AccumulatorStatus.TENTATIVE
        else:
            self.status = AccumulatorStatus.NORMAL

    def accumulate(self, channel: int, value: float, weight: float = 1.0) -> None:
        """Add the value of one frame for one channel.

        For the asymmetric RMS mode, `weight` holds the second value.
        """
        if self.status != AccumulatorStatus.INIT:
            self._strategy.accumulate(self._data[channel], value, weight)

    def get_value(self) -> float:
        if self.status == AccumulatorStatus.TENTATIVE:
            saved = self._saved
        else:
            saved = [self._strategy.save(data) for data in self._data]
        return sum(self._strategy.value(s) for s in saved) / len(saved)
