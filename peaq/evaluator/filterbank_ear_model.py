"""Filterbank based peripheral ear model (section 2.2 of ITU-R BS.1387).

Used by the advanced version of PEAQ only. Blocks of 192 samples are
highpass filtered, fed through a bank of 40 complex filters evaluated at every
32nd sample, spread over frequency, rectified and smeared over time.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Final

import numpy as np
from numba import njit
from numpy import ndarray
from numpy.lib.stride_tricks import sliding_window_view
from scipy.signal import lfilter

from peaq.evaluator.ear_model import POWER_FLOOR, EarModel, calc_ear_weight

BAND_COUNT: Final = 40
FRAME_SIZE: Final = 192
SUBSAMPLING_FACTOR: Final = 32
BACKWARD_MASKING_LENGTH: Final = 11

FILTER_LENGTH: Final = np.array(
    [
        1456, 1438, 1406, 1362, 1308, 1244, 1176, 1104, 1030, 956,
        884, 814, 748, 686, 626, 570, 520, 472, 430, 390,
        354, 320, 290, 262, 238, 214, 194, 176, 158, 144,
        130, 118, 106, 96, 86, 78, 70, 64, 58, 52,
    ]
)  # fmt: skip
# the longest filter including its delay reaches back this many samples
HISTORY_LENGTH: Final = int(FILTER_LENGTH[0]) + 2

# DC rejection, two cascaded second order highpass filters
HIGHPASS_B: Final = np.array([1.0, -2.0, 1.0])
HIGHPASS1_A: Final = np.array([1.0, -1.99517, 0.995174])
HIGHPASS2_A: Final = np.array([1.0, -1.99799, 0.997998])

Z_LOWER: Final = math.asinh(50.0 / 650.0)
Z_UPPER: Final = math.asinh(18000.0 / 650.0)
# level dependent spreading, section 2.2.7 of BS.1387
DIST: Final = 0.1 ** (7.0 * (Z_UPPER - Z_LOWER) / (39.0 * 20.0))
SLOPE_FILTER_A: Final = math.exp(-SUBSAMPLING_FACTOR / (48000.0 * 0.1))
LOWER_SLOPE: Final = DIST**31

BACKWARD_MASKING_WEIGHTS: Final = (
    np.cos(np.pi * (np.arange(BACKWARD_MASKING_LENGTH) - 5.0) / 12.0) ** 2
    * 0.9761
    / 6.0
)

logger = logging.getLogger(__name__)


@dataclass
class FilterbankEarModelState:
    """Per channel state and outputs of the filterbank ear model."""

    highpass1_state: ndarray = field(default_factory=lambda: np.zeros(2))
    highpass2_state: ndarray = field(default_factory=lambda: np.zeros(2))
    # highpass output, oldest sample first
    history: ndarray = field(default_factory=lambda: np.zeros(HISTORY_LENGTH - 1))
    slope_state: ndarray = field(default_factory=lambda: np.zeros(BAND_COUNT))
    # rectified outputs, newest first
    masking_buffer: ndarray = field(
        default_factory=lambda: np.zeros((BACKWARD_MASKING_LENGTH, BAND_COUNT))
    )
    unsmeared_excitation: ndarray = field(default_factory=lambda: np.zeros(BAND_COUNT))
    excitation: ndarray = field(default_factory=lambda: np.zeros(BAND_COUNT))

    @property
    def band_count(self) -> int:
        return BAND_COUNT


@njit
def spread_filter_bank_outputs(
    filter_bank_outputs: ndarray,
    slope_state: ndarray,
    centre_frequencies: ndarray,
    swap_slope_filter_coefficients: bool,
) -> ndarray:
    """Frequency domain spreading and rectification of the filterbank outputs.

    `slope_state` holds the smoothed upper slopes and is updated in place.
    Returns the rectified, spread outputs, one row per subsampled step.

    The band power is floored at POWER_FLOOR before taking its level, so a
    band of exact digital silence sits at -120 dB instead of minus infinity.
    Its upper slope is therefore the finite level dependent value, and the
    smoothed slope recovers from silence along the same recursion as from
    any other quiet passage.
    """
    step_count, band_count = filter_bank_outputs.shape
    rectified = np.empty((step_count, band_count))
    for step in range(step_count):
        outputs = filter_bank_outputs[step]
        spread = outputs.copy()
        for band in range(band_count):
            power = outputs[band].real ** 2 + outputs[band].imag ** 2
            level = 10.0 * np.log10(max(power, POWER_FLOOR))
            slope = max(4.0, 24.0 + 230.0 / centre_frequencies[band] - 0.2 * level)
            dist_s = DIST**slope
            if swap_slope_filter_coefficients:
                slope_state[band] = dist_s + SLOPE_FILTER_A * (
                    slope_state[band] - dist_s
                )
            else:
                slope_state[band] += SLOPE_FILTER_A * (dist_s - slope_state[band])
            contribution = outputs[band]
            for j in range(band + 1, band_count):
                contribution *= slope_state[band]
                spread[j] += contribution
        for band in range(band_count - 1, 0, -1):
            spread[band - 1] += LOWER_SLOPE * spread[band]
        for band in range(band_count):
            rectified[step, band] = spread[band].real ** 2 + spread[band].imag ** 2
    return rectified


class FilterbankEarModel(EarModel):
    """Ear model based on a bank of 40 complex bandpass filters.

    Args:
        playback_level (float): level of a full-scale sine in dB SPL.
        swap_slope_filter_coefficients (bool): use the smoothing recursion of
            the upper spreading slope as literally printed in BS.1387, where
            the filter coefficients appear exchanged (default: False).
    """

    loudness_scale = 1.26539
    tau_min = 0.004
    tau_100 = 0.020

    def __init__(
        self,
        playback_level: float = 92.0,
        swap_slope_filter_coefficients: bool = False,
    ) -> None:
        super().__init__(FRAME_SIZE, FRAME_SIZE)
        self.swap_slope_filter_coefficients = swap_slope_filter_coefficients

        bands = np.arange(BAND_COUNT)
        centre_frequencies = 650.0 * np.sinh(
            Z_LOWER + bands * (Z_UPPER - Z_LOWER) / 39.0
        )
        self._set_band_centre_frequencies(centre_frequencies)
        self.filter_kernels = self._make_filter_kernels(centre_frequencies)
        logger.debug(f"Filterbank ear model set up with {BAND_COUNT} bands")

        self.level_factor = 1.0
        self.playback_level = playback_level

    def _update_level_factor(self) -> None:
        self.level_factor = 10.0 ** (self.playback_level / 20.0)

    @staticmethod
    def _make_filter_kernels(centre_frequencies: ndarray) -> ndarray:
        """Impulse responses including outer and middle ear weighting.

        Row `b` holds the response of band `b`, delayed so that all bands are
        aligned, and time-reversed so that it can be applied to a window of
        HISTORY_LENGTH samples ordered oldest first.
        """
        kernels = np.zeros((BAND_COUNT, HISTORY_LENGTH), dtype=np.complex128)
        for band, (centre_frequency, length) in enumerate(
            zip(centre_frequencies, FILTER_LENGTH)
        ):
            n = np.arange(length + 1)
            ear_weight = 10.0 ** (calc_ear_weight(centre_frequency) / 20.0)
            window = 4.0 / length * np.sin(np.pi * n / length) ** 2 * ear_weight
            phase = 2.0 * np.pi * centre_frequency * (n - length / 2.0) / 48000.0
            delay = 1 + (FILTER_LENGTH[0] - length) // 2
            kernels[band, delay : delay + length + 1] = window * np.exp(1j * phase)
        return np.ascontiguousarray(kernels[:, ::-1])

    def get_state(self) -> FilterbankEarModelState:
        """Create a fresh state for one channel."""
        return FilterbankEarModelState()

    def apply_filter_bank(self, state: FilterbankEarModelState, samples: ndarray):
        """Highpass and filterbank outputs at every 32nd sample of a block.

        Updates the highpass and history part of `state`.

        Returns:
            ndarray: complex outputs of shape (FRAME_SIZE // 32, BAND_COUNT)
        """
        scaled = np.asarray(samples, dtype=np.float64) * self.level_factor
        highpassed, state.highpass1_state = lfilter(
            HIGHPASS_B, HIGHPASS1_A, scaled, zi=state.highpass1_state
        )
        highpassed, state.highpass2_state = lfilter(
            HIGHPASS_B, HIGHPASS2_A, highpassed, zi=state.highpass2_state
        )

        signal = np.concatenate((state.history, highpassed))
        state.history = signal[-(HISTORY_LENGTH - 1) :]
        windows = sliding_window_view(signal, HISTORY_LENGTH)[::SUBSAMPLING_FACTOR]
        return windows @ self.filter_kernels.T

    def process_block(self, state: FilterbankEarModelState, samples: ndarray) -> None:
        """Process one block of FRAME_SIZE samples, updating `state` in place."""
        filter_bank_outputs = self.apply_filter_bank(state, samples)
        rectified = spread_filter_bank_outputs(
            filter_bank_outputs,
            state.slope_state,
            self.band_centre_frequencies,
            self.swap_slope_filter_coefficients,
        )

        # backward masking
        state.masking_buffer = np.concatenate(
            (rectified[::-1], state.masking_buffer[: -len(rectified)])
        )
        smeared = BACKWARD_MASKING_WEIGHTS @ state.masking_buffer

        state.unsmeared_excitation = smeared + self.internal_noise

        # forward masking
        time_constants = self.ear_time_constants
        state.excitation = (
            time_constants * state.excitation
            + (1.0 - time_constants) * state.unsmeared_excitation
        )
