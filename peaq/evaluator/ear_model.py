"""Functionality shared by the peripheral ear models.

Both ear models map a block of samples of one channel to a per-band
excitation pattern. What they have in common is the band-dependent data that
only depends on the centre frequencies of the bands: the internal noise, the
time constants used for time-domain smearing and the tables used for the
loudness computation (section 2.1, 2.2 and 3.3 of ITU-R BS.1387).
"""
from __future__ import annotations

import logging
from typing import Final

import numpy as np
from numpy import ndarray

SAMPLE_RATE: Final = 48000
DEFAULT_PLAYBACK_LEVEL: Final = 92.0
# Value below which band powers are clamped before logs or ratios are taken.
POWER_FLOOR: Final = 1e-12

logger = logging.getLogger(__name__)


def calc_ear_weight(frequency: float | ndarray) -> float | ndarray:
    """Outer and middle ear weighting in dB.

    Args:
        frequency (float | ndarray): Frequency in Hz, must be positive.

    Returns:
        float | ndarray: the weighting W(f) in dB.
    """
    f_khz = np.asarray(frequency, dtype=float) / 1000.0
    weight = (
        -0.6 * 3.64 * f_khz**-0.8
        + 6.5 * np.exp(-0.6 * (f_khz - 3.3) ** 2)
        - 1e-3 * f_khz**3.6
    )
    if weight.ndim == 0:
        return float(weight)
    return weight


class EarModel:
    """Base class of the FFT based and the filterbank based ear model.

    Subclasses set the frame and step sizes, the loudness scaling and the
    time constants of the time-domain smearing and call
    `_set_band_centre_frequencies` whenever their band layout changes.
    """

    loudness_scale: float = 1.0
    tau_min: float = 0.008
    tau_100: float = 0.030

    def __init__(self, frame_size: int, step_size: int) -> None:
        self.frame_size = frame_size
        self.step_size = step_size
        self.sample_rate = SAMPLE_RATE
        self._playback_level = DEFAULT_PLAYBACK_LEVEL

        self.band_centre_frequencies = np.zeros(0)
        self.internal_noise = np.zeros(0)
        self.ear_time_constants = np.zeros(0)
        self.excitation_threshold = np.zeros(0)
        self.threshold = np.zeros(0)
        self.loudness_factor = np.zeros(0)

    @property
    def band_count(self) -> int:
        return len(self.band_centre_frequencies)

    @property
    def playback_level(self) -> float:
        """Playback level in dB SPL of a full-scale sine."""
        return self._playback_level

    @playback_level.setter
    def playback_level(self, level: float) -> None:
        logger.debug(f"{type(self).__name__}: playback level set to {level} dB")
        self._playback_level = level
        self._update_level_factor()

    def _update_level_factor(self) -> None:
        """Recompute the internal scaling after a playback level change."""
        raise NotImplementedError

    def _set_band_centre_frequencies(self, centre_frequencies: ndarray) -> None:
        """Precompute all tables that only depend on the band centres."""
        fc = np.asarray(centre_frequencies, dtype=float)
        self.band_centre_frequencies = fc

        # (14) in BS.1387
        self.internal_noise = 10.0 ** (0.4 * 0.364 * (fc / 1000.0) ** -0.8)
        self.ear_time_constants = self.calc_time_constants(self.tau_min, self.tau_100)

        # Loudness tables, section 3.3 in BS.1387
        self.excitation_threshold = 10.0 ** (0.364 * (fc / 1000.0) ** -0.8)
        self.threshold = 10.0 ** (
            0.1
            * (-2.0 - 2.05 * np.arctan(fc / 4000.0) - 0.75 * np.arctan((fc / 1600.0) ** 2))
        )
        self.loudness_factor = self.loudness_scale * (
            self.excitation_threshold / (1e4 * self.threshold)
        ) ** 0.23

    def calc_time_constants(self, tau_min: float, tau_100: float) -> ndarray:
        """Per band smoothing coefficients for a first order lowpass.

        The time constant of each band is interpolated between `tau_min` and
        `tau_100` depending on its centre frequency and then turned into the
        coefficient of a recursion running once per step of this model.

        Args:
            tau_min (float): time constant for very high frequencies in s.
            tau_100 (float): time constant at 100 Hz in s.

        Returns:
            ndarray: the coefficients, one per band.
        """
        tau = tau_min + 100.0 / self.band_centre_frequencies * (tau_100 - tau_min)
        return np.exp(self.step_size / (-float(self.sample_rate) * tau))

    def calc_loudness(self, excitation: ndarray) -> float:
        """Overall loudness in sone of an excitation pattern."""
        loudness = self.loudness_factor * (
            (
                1.0
                - self.threshold
                + self.threshold * excitation / self.excitation_threshold
            )
            ** 0.23
            - 1.0
        )
        return 24.0 / self.band_count * float(np.sum(np.maximum(loudness, 0.0)))

    def check_band_count(self, band_count: int, component: str) -> None:
        """Fail if a cooperating component was set up for another band count."""
        if band_count != self.band_count:
            logger.error(
                f"{component} expects {band_count} bands, "
                f"but {type(self).__name__} provides {self.band_count}"
            )
            raise ValueError(
                f"Band count mismatch: {component} has {band_count}, "
                f"ear model has {self.band_count}"
            )
