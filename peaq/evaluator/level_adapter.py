"""Level and pattern adaptation (section 3.1 of ITU-R BS.1387)."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np
from numpy import ndarray

from peaq.evaluator.ear_model import EarModel

logger = logging.getLogger(__name__)


@dataclass
class LevelAdapterState:
    """Per channel state and outputs of the level adapter."""

    band_count: int
    ref_filtered_excitation: ndarray = field(init=False)
    test_filtered_excitation: ndarray = field(init=False)
    filtered_num: ndarray = field(init=False)
    filtered_den: ndarray = field(init=False)
    pattcorr_ref: ndarray = field(init=False)
    pattcorr_test: ndarray = field(init=False)
    adapted_ref: ndarray = field(init=False)
    adapted_test: ndarray = field(init=False)

    def __post_init__(self) -> None:
        for name in (
            "ref_filtered_excitation",
            "test_filtered_excitation",
            "filtered_num",
            "filtered_den",
            "pattcorr_ref",
            "pattcorr_test",
            "adapted_ref",
            "adapted_test",
        ):
            setattr(self, name, np.zeros(self.band_count))


class LevelAdapter:
    """Compensates level differences and linear distortions.

    The reference and test excitation patterns are first scaled to a common
    overall level, then each band is corrected by a slowly adapting factor
    derived from the ratio of the two patterns, so that only the differences
    a listener would not adapt to remain.
    """

    def __init__(self, ear_model: EarModel) -> None:
        self.set_ear_model(ear_model)

    def set_ear_model(self, ear_model: EarModel) -> None:
        """Recompute the per band data for the bands of `ear_model`."""
        self.band_count = ear_model.band_count
        self.ear_time_constants = ear_model.calc_time_constants(0.008, 0.05)

        # averaging over neighbouring bands, 109 bands -> (3, 4), 55 -> (1, 2),
        # 40 -> (1, 1)
        band_count = self.band_count
        self._smoothing = np.zeros((band_count, band_count))
        for k in range(band_count):
            m1 = min(k, band_count // 36)
            m2 = min(band_count - k - 1, band_count // 25)
            self._smoothing[k, k - m1 : k + m2 + 1] = 1.0 / (m1 + m2 + 1)
        logger.debug(f"Level adapter set to {band_count} bands")

    def get_state(self) -> LevelAdapterState:
        return LevelAdapterState(self.band_count)

    def process(
        self, state: LevelAdapterState, ref_excitation: ndarray, test_excitation: ndarray
    ) -> None:
        """Adapt one frame of reference and test excitation.

        Args:
            state (LevelAdapterState): state of the channel, updated in place;
                the results are in `adapted_ref` and `adapted_test`.
            ref_excitation (ndarray): excitation pattern of the reference.
            test_excitation (ndarray): excitation pattern of the test signal.
        """
        a = self.ear_time_constants

        state.ref_filtered_excitation = (
            a * state.ref_filtered_excitation + (1.0 - a) * ref_excitation
        )
        state.test_filtered_excitation = (
            a * state.test_filtered_excitation + (1.0 - a) * test_excitation
        )
        num = np.sum(
            np.sqrt(state.ref_filtered_excitation * state.test_filtered_excitation)
        )
        den = np.sum(state.test_filtered_excitation)
        lev_corr = (num / den) ** 2

        if lev_corr > 1.0:
            levcorr_ref = ref_excitation / lev_corr
            levcorr_test = np.asarray(test_excitation)
        else:
            levcorr_ref = np.asarray(ref_excitation)
            levcorr_test = test_excitation * lev_corr

        state.filtered_num = a * state.filtered_num + levcorr_test * levcorr_ref
        state.filtered_den = a * state.filtered_den + levcorr_ref * levcorr_ref
        test_dominates = state.filtered_num >= state.filtered_den
        pattadapt_ref = np.where(
            test_dominates, 1.0, state.filtered_num / state.filtered_den
        )
        pattadapt_test = np.where(
            test_dominates, state.filtered_den / state.filtered_num, 1.0
        )

        state.pattcorr_ref = a * state.pattcorr_ref + (1.0 - a) * (
            self._smoothing @ pattadapt_ref
        )
        state.pattcorr_test = a * state.pattcorr_test + (1.0 - a) * (
            self._smoothing @ pattadapt_test
        )

        state.adapted_ref = levcorr_ref * state.pattcorr_ref
        state.adapted_test = levcorr_test * state.pattcorr_test
