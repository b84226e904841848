"""FFT based peripheral ear model (section 2.1 of ITU-R BS.1387)."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Final

import numpy as np
from numba import njit
from numpy import ndarray

from peaq.evaluator.ear_model import POWER_FLOOR, EarModel, calc_ear_weight

FRAME_SIZE: Final = 2048
STEP_SIZE: Final = FRAME_SIZE // 2
# Peak factor of the Hann windowed 1019.5 Hz reference sine
GAMMA: Final = 0.84971762641205
# Minimum energy in the second half of a frame for the EHS computation
ENERGY_THRESHOLD: Final = 8000.0 / (32768.0 * 32768.0)
LOWER_BARK_FREQUENCY: Final = 80.0
UPPER_BARK_FREQUENCY: Final = 18000.0

HANN_WINDOW: Final = (
    math.sqrt(8.0 / 3.0)
    * 0.5
    * (1.0 - np.cos(2.0 * np.pi * np.arange(FRAME_SIZE) / (FRAME_SIZE - 1)))
)

logger = logging.getLogger(__name__)


@dataclass
class FFTEarModelState:
    """Per channel state and outputs of the FFT ear model."""

    band_count: int
    filtered_excitation: ndarray = field(init=False)
    unsmeared_excitation: ndarray = field(init=False)
    excitation: ndarray = field(init=False)
    power_spectrum: ndarray = field(init=False)
    weighted_power_spectrum: ndarray = field(init=False)
    energy_threshold_reached: bool = False

    def __post_init__(self) -> None:
        self.filtered_excitation = np.zeros(self.band_count)
        self.unsmeared_excitation = np.zeros(self.band_count)
        self.excitation = np.zeros(self.band_count)
        self.power_spectrum = np.zeros(FRAME_SIZE // 2 + 1)
        self.weighted_power_spectrum = np.zeros(FRAME_SIZE // 2 + 1)


@njit
def spread_bands(
    band_power: ndarray,
    lower_spreading_exponentiated: float,
    upper_spreading: ndarray,
    lower_spreading_sum: ndarray,
    delta_z: float,
    normalization: ndarray,
) -> ndarray:
    """Level dependent frequency spreading in the 0.4 power domain.

    Args:
        band_power (ndarray): pitch patterns, band power plus internal noise.
        lower_spreading_exponentiated (float): a_L^0.4 with a_L = 10^(-2.7 dz).
        upper_spreading (ndarray): level independent part of the upper slope.
        lower_spreading_sum (ndarray): geometric sums of the lower slope.
        delta_z (float): band distance on the Bark scale.
        normalization (ndarray): spread of an all-ones pattern.

    Returns:
        ndarray: the unsmeared excitation pattern
    """
    band_count = band_power.shape[0]
    upper_spreading_exponentiated = np.empty(band_count)
    excitation_exponentiated = np.empty(band_count)
    for i in range(band_count):
        a_uce = upper_spreading[i] * band_power[i] ** (0.2 * delta_z)
        upper_spreading_sum = (1.0 - a_uce ** (band_count - i)) / (1.0 - a_uce)
        normalized_power = band_power[i] / (
            lower_spreading_sum[i] + upper_spreading_sum - 1.0
        )
        upper_spreading_exponentiated[i] = a_uce**0.4
        excitation_exponentiated[i] = normalized_power**0.4

    spread = np.empty(band_count)
    # downward spreading
    spread[band_count - 1] = excitation_exponentiated[band_count - 1]
    for i in range(band_count - 1, 0, -1):
        spread[i - 1] = (
            lower_spreading_exponentiated * spread[i] + excitation_exponentiated[i - 1]
        )
    # upward spreading
    for i in range(band_count - 1):
        contribution = excitation_exponentiated[i]
        for j in range(i + 1, band_count):
            contribution *= upper_spreading_exponentiated[i]
            spread[j] += contribution

    return spread ** (1.0 / 0.4) / normalization


class FFTEarModel(EarModel):
    """Ear model working on 50% overlapping 2048 sample frames.

    The model windows the frame, transforms it with a real FFT, weights the
    power spectrum with the outer and middle ear transfer function, groups it
    into bands spaced evenly on the Bark scale, adds internal noise, spreads
    it over frequency and finally smears it over time.

    The basic version of PEAQ uses 109 bands, the advanced version 55.
    """

    loudness_scale = 1.07664
    tau_min = 0.008
    tau_100 = 0.030

    def __init__(self, band_count: int = 109, playback_level: float = 92.0) -> None:
        super().__init__(FRAME_SIZE, STEP_SIZE)
        frequencies = np.arange(FRAME_SIZE // 2 + 1) * self.sample_rate / FRAME_SIZE
        # squared for weighting in the power domain; W(0) tends to -inf dB
        self.outer_middle_ear_weight = np.zeros(FRAME_SIZE // 2 + 1)
        self.outer_middle_ear_weight[1:] = 10.0 ** (
            calc_ear_weight(frequencies[1:]) / 10.0
        )
        self.level_factor = 1.0
        self.set_band_count(band_count)
        self.playback_level = playback_level

    def _update_level_factor(self) -> None:
        self.level_factor = 10.0 ** (self.playback_level / 10.0) / (
            (math.sqrt(8.0 / 3.0) * GAMMA / 4.0 * (FRAME_SIZE - 1)) ** 2
        )

    def set_band_count(self, band_count: int) -> None:
        """Recompute all per band tables for a new number of bands.

        Args:
            band_count (int): number of bands, must partition the Bark range
                from 80 Hz to 18 kHz with a width of 27 / (band_count - 1).

        Raises:
            ValueError: if the band count is inconsistent with the band width.
        """
        if band_count < 2:
            logger.error(f"Invalid band count {band_count}")
            raise ValueError(f"Band count must be at least 2, got {band_count}")
        delta_z = 27.0 / (band_count - 1)
        z_lower = 7.0 * np.arcsinh(LOWER_BARK_FREQUENCY / 650.0)
        z_upper = 7.0 * np.arcsinh(UPPER_BARK_FREQUENCY / 650.0)
        if band_count != math.ceil((z_upper - z_lower) / delta_z):
            logger.error(f"Invalid band count {band_count}")
            raise ValueError(
                f"Band count {band_count} does not partition the Bark scale "
                f"with band width {delta_z}"
            )
        logger.debug(f"FFT ear model set to {band_count} bands")
        self.delta_z = delta_z

        bands = np.arange(band_count)
        z_low = z_lower + bands * delta_z
        z_up = np.minimum(z_upper, z_lower + (bands + 1) * delta_z)
        centre_frequencies = 650.0 * np.sinh((z_low + z_up) / 2.0 / 7.0)
        self.band_lower_frequency = 650.0 * np.sinh(z_low / 7.0)
        self.band_upper_frequency = 650.0 * np.sinh(z_up / 7.0)

        bin_width = self.sample_rate / FRAME_SIZE
        # round half away from zero, all values are positive
        self.band_lower_end = np.floor(
            self.band_lower_frequency / bin_width + 0.5
        ).astype(int)
        self.band_upper_end = np.floor(
            self.band_upper_frequency / bin_width + 0.5
        ).astype(int)
        upper_frequency = np.minimum(
            self.band_upper_frequency, (self.band_lower_end + 0.5) * bin_width
        )
        self.band_lower_weight = (upper_frequency - self.band_lower_frequency) / bin_width
        self.band_upper_weight = np.where(
            self.band_lower_end == self.band_upper_end,
            0.0,
            (self.band_upper_frequency - (self.band_upper_end - 0.5) * bin_width)
            / bin_width,
        )
        self._grouping_matrix = np.zeros((band_count, FRAME_SIZE // 2 + 1))
        for band in range(band_count):
            lower_end = self.band_lower_end[band]
            upper_end = self.band_upper_end[band]
            self._grouping_matrix[band, lower_end + 1 : upper_end] = 1.0
            self._grouping_matrix[band, lower_end] += self.band_lower_weight[band]
            self._grouping_matrix[band, upper_end] += self.band_upper_weight[band]

        # spreading helpers
        self.lower_spreading = 10.0 ** (-2.7 * delta_z)
        self.lower_spreading_exponentiated = self.lower_spreading**0.4
        self.upper_spreading = 10.0 ** ((-2.4 - 23.0 / centre_frequencies) * delta_z)
        self.lower_spreading_sum = (1.0 - self.lower_spreading ** (bands + 1)) / (
            1.0 - self.lower_spreading
        )

        # (25) in BS.1387
        self.masking_difference = 10.0 ** (
            np.where(bands * delta_z <= 12.0, 3.0, 0.25 * bands * delta_z) / 10.0
        )

        self._set_band_centre_frequencies(centre_frequencies)

        self.spreading_normalization = np.ones(band_count)
        self.spreading_normalization = self.do_spreading(np.ones(band_count))

    def get_state(self) -> FFTEarModelState:
        """Create a fresh state for one channel."""
        return FFTEarModelState(self.band_count)

    def group_into_bands(self, spectrum: ndarray) -> ndarray:
        """Group a power spectrum into the critical bands.

        Bins at the band edges contribute with the fraction of their width
        falling into the band. Results are floored at 1e-12.
        """
        return np.maximum(self._grouping_matrix @ spectrum, POWER_FLOOR)

    def do_spreading(self, band_power: ndarray) -> ndarray:
        return spread_bands(
            np.asarray(band_power, dtype=np.float64),
            self.lower_spreading_exponentiated,
            self.upper_spreading,
            self.lower_spreading_sum,
            self.delta_z,
            self.spreading_normalization,
        )

    def process_block(self, state: FFTEarModelState, samples: ndarray) -> None:
        """Process one frame of FRAME_SIZE samples, updating `state` in place."""
        frame = np.asarray(samples, dtype=np.float64)

        spectrum = np.fft.rfft(HANN_WINDOW * frame)
        state.power_spectrum = (
            spectrum.real * spectrum.real + spectrum.imag * spectrum.imag
        ) * self.level_factor
        state.weighted_power_spectrum = (
            state.power_spectrum * self.outer_middle_ear_weight
        )

        band_power = self.group_into_bands(state.weighted_power_spectrum)
        state.unsmeared_excitation = self.do_spreading(band_power + self.internal_noise)

        time_constants = self.ear_time_constants
        state.filtered_excitation = (
            time_constants * state.filtered_excitation
            + (1.0 - time_constants) * state.unsmeared_excitation
        )
        state.excitation = np.maximum(
            state.filtered_excitation, state.unsmeared_excitation
        )

        second_half = frame[FRAME_SIZE // 2 :]
        state.energy_threshold_reached = bool(
            np.dot(second_half, second_half) >= ENERGY_THRESHOLD
        )
