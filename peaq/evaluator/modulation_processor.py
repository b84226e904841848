"""Temporal envelope modulation (section 3.2 of ITU-R BS.1387)."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np
from numpy import ndarray

from peaq.evaluator.ear_model import EarModel

logger = logging.getLogger(__name__)


@dataclass
class ModulationProcessorState:
    """Per channel and signal state of the modulation processor."""

    band_count: int
    previous_loudness: ndarray = field(init=False)
    filtered_loudness_derivative: ndarray = field(init=False)
    filtered_loudness: ndarray = field(init=False)
    modulation: ndarray = field(init=False)

    def __post_init__(self) -> None:
        self.previous_loudness = np.zeros(self.band_count)
        self.filtered_loudness_derivative = np.zeros(self.band_count)
        self.filtered_loudness = np.zeros(self.band_count)
        self.modulation = np.zeros(self.band_count)

    @property
    def average_loudness(self) -> ndarray:
        return self.filtered_loudness


class ModulationProcessor:
    """Estimates the modulation of the loudness envelope in every band."""

    def __init__(self, ear_model: EarModel) -> None:
        self.set_ear_model(ear_model)

    def set_ear_model(self, ear_model: EarModel) -> None:
        self.band_count = ear_model.band_count
        self.ear_time_constants = ear_model.calc_time_constants(0.008, 0.05)
        self.derivative_factor = ear_model.sample_rate / ear_model.step_size
        logger.debug(f"Modulation processor set to {self.band_count} bands")

    def get_state(self) -> ModulationProcessorState:
        return ModulationProcessorState(self.band_count)

    def process(
        self, state: ModulationProcessorState, unsmeared_excitation: ndarray
    ) -> None:
        """Update `state` with the next unsmeared excitation pattern."""
        a = self.ear_time_constants
        loudness = np.asarray(unsmeared_excitation) ** 0.3
        loudness_derivative = self.derivative_factor * np.abs(
            loudness - state.previous_loudness
        )
        state.filtered_loudness_derivative = (
            a * state.filtered_loudness_derivative + (1.0 - a) * loudness_derivative
        )
        state.filtered_loudness = a * state.filtered_loudness + (1.0 - a) * loudness
        state.modulation = state.filtered_loudness_derivative / (
            1.0 + state.filtered_loudness / 0.3
        )
        state.previous_loudness = loudness
