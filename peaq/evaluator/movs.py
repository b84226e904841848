"""Computation of the model output variables (section 4 of ITU-R BS.1387).

The functions in this module take the per channel states of the ear models,
level adapter and modulation processors after a frame has been processed and
feed the resulting per frame values into the MOV accumulators.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Final

import numpy as np
from numpy import ndarray

from peaq.evaluator.ear_model import POWER_FLOOR, EarModel
from peaq.evaluator.fft_ear_model import FFTEarModel, FFTEarModelState
from peaq.evaluator.level_adapter import LevelAdapterState
from peaq.evaluator.modulation_processor import ModulationProcessorState
from peaq.evaluator.mov_accumulator import MovAccumulator

ONE_POINT_FIVE_DB_POWER_FACTOR: Final = 1.41253754462275
FIVE_DB_POWER_FACTOR: Final = 3.16227766016838
# bins 921 to 1023 hold the noise floor estimate for the bandwidth MOVs
BANDWIDTH_FLOOR_START: Final = 921
BANDWIDTH_FLOOR_END: Final = 1024
BANDWIDTH_MIN_REF: Final = 346
EHS_MAX_LAG: Final = 256

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EhsSettings:
    """Choices for the error harmonic structure left open by BS.1387.

    Attributes:
        centre_window (bool): centre the window applied to the correlation at
            lag zero instead of at the middle of the lag range. Gives results
            closer to the conformance test data (default: True).
        subtract_mean_before_window (bool): remove the mean of the normalized
            correlation before rather than after windowing (default: True).
    """

    centre_window: bool = True
    subtract_mean_before_window: bool = True


def correlation_window(centre_window: bool = True) -> ndarray:
    """Window applied to the normalized correlation in the EHS computation."""
    lags = np.arange(EHS_MAX_LAG)
    if centre_window:
        shape = 1.0 + np.cos(2.0 * np.pi * lags / (2 * EHS_MAX_LAG - 1))
    else:
        shape = 1.0 - np.cos(2.0 * np.pi * lags / (EHS_MAX_LAG - 1))
    return 0.81649658092773 * shape / EHS_MAX_LAG


# both window variants, keyed by `centre_window`
CORRELATION_WINDOWS: Final = {
    centre_window: correlation_window(centre_window) for centre_window in (True, False)
}


def calc_noise_loudness(
    ear_model: EarModel,
    ref_modulation: ndarray,
    test_modulation: ndarray,
    ref_excitation: ndarray,
    test_excitation: ndarray,
    alpha: float,
    thres_fac: float,
    s0: float,
    nl_min: float,
) -> float:
    """Partial loudness of the distortion in the presence of the reference.

    Args:
        ear_model (EarModel): model providing internal noise and band count.
        ref_modulation (ndarray): modulation of the masker.
        test_modulation (ndarray): modulation of the maskee.
        ref_excitation (ndarray): excitation of the masker.
        test_excitation (ndarray): excitation of the maskee.
        alpha (float): steepness of the asymmetry factor beta.
        thres_fac (float): influence of the modulation on the threshold.
        s0 (float): offset of the threshold.
        nl_min (float): results below this value are set to zero.

    Returns:
        float: the noise loudness in sone
    """
    sref = thres_fac * ref_modulation + s0
    stest = thres_fac * test_modulation + s0
    ethres = ear_model.internal_noise
    # (68) in BS.1387
    beta = np.exp(-alpha * (test_excitation - ref_excitation) / ref_excitation)
    # (66) in BS.1387
    noise_loudness = np.sum(
        (ethres / stest) ** 0.23
        * (
            (
                1.0
                + np.maximum(stest * test_excitation - sref * ref_excitation, 0.0)
                / (ethres + sref * ref_excitation * beta)
            )
            ** 0.23
            - 1.0
        )
    )
    noise_loudness *= 24.0 / ear_model.band_count
    if noise_loudness < nl_min:
        return 0.0
    return float(noise_loudness)


def calc_modulation_difference(
    ear_model: EarModel,
    ref_state: ModulationProcessorState,
    test_state: ModulationProcessorState,
    level_weight: float,
) -> tuple[float, float, float]:
    """Unscaled modulation differences and their temporal weight, (63)-(65)."""
    modulation_ref = ref_state.modulation
    modulation_test = test_state.modulation
    average_loudness_ref = ref_state.average_loudness

    diff = np.abs(modulation_ref - modulation_test)
    mod_diff_1 = np.sum(diff / (1.0 + modulation_ref))
    negative_weight = np.where(modulation_test >= modulation_ref, 1.0, 0.1)
    mod_diff_2 = np.sum(negative_weight * diff / (0.01 + modulation_ref))
    temp_wt = np.sum(
        average_loudness_ref
        / (
            average_loudness_ref
            + level_weight * ear_model.internal_noise**0.3
        )
    )
    return float(mod_diff_1), float(mod_diff_2), float(temp_wt)


def mov_modulation_difference(
    ear_model: EarModel,
    ref_states: list[ModulationProcessorState],
    test_states: list[ModulationProcessorState],
    mov_accum1: MovAccumulator,
    mov_accum2: MovAccumulator,
    mov_accum_win: MovAccumulator,
) -> None:
    """AvgModDiff1B, AvgModDiff2B and WinModDiff1B of the basic version."""
    band_count = ear_model.band_count
    for channel in range(mov_accum1.channels):
        mod_diff_1, mod_diff_2, temp_wt = calc_modulation_difference(
            ear_model, ref_states[channel], test_states[channel], 100.0
        )
        mod_diff_1 *= 100.0 / band_count
        mod_diff_2 *= 100.0 / band_count
        mov_accum1.accumulate(channel, mod_diff_1, temp_wt)
        mov_accum2.accumulate(channel, mod_diff_2, temp_wt)
        mov_accum_win.accumulate(channel, mod_diff_1, 1.0)


def mov_modulation_difference_advanced(
    ear_model: EarModel,
    ref_states: list[ModulationProcessorState],
    test_states: list[ModulationProcessorState],
    mov_accum: MovAccumulator,
) -> None:
    """RmsModDiffA of the advanced version."""
    for channel in range(mov_accum.channels):
        mod_diff_1, _, temp_wt = calc_modulation_difference(
            ear_model, ref_states[channel], test_states[channel], 1.0
        )
        mod_diff_1 *= 100.0 / math.sqrt(ear_model.band_count)
        mov_accum.accumulate(channel, mod_diff_1, temp_wt)


def mov_noise_loudness(
    ear_model: EarModel,
    ref_mod_states: list[ModulationProcessorState],
    test_mod_states: list[ModulationProcessorState],
    level_states: list[LevelAdapterState],
    mov_accum: MovAccumulator,
) -> None:
    """RmsNoiseLoudB of the basic version."""
    for channel in range(mov_accum.channels):
        noise_loudness = calc_noise_loudness(
            ear_model,
            ref_mod_states[channel].modulation,
            test_mod_states[channel].modulation,
            level_states[channel].adapted_ref,
            level_states[channel].adapted_test,
            alpha=1.5,
            thres_fac=0.15,
            s0=0.5,
            nl_min=0.0,
        )
        mov_accum.accumulate(channel, noise_loudness, 1.0)


def mov_noise_loudness_asym(
    ear_model: EarModel,
    ref_mod_states: list[ModulationProcessorState],
    test_mod_states: list[ModulationProcessorState],
    level_states: list[LevelAdapterState],
    mov_accum: MovAccumulator,
    swap_modulation_patterns: bool = True,
) -> None:
    """RmsNoiseLoudAsymA, the noise loudness paired with the missing components.

    For the missing components, the roles of reference and test excitation are
    exchanged. With `swap_modulation_patterns`, the modulation patterns are
    exchanged as well.
    """
    for channel in range(mov_accum.channels):
        ref_modulation = ref_mod_states[channel].modulation
        test_modulation = test_mod_states[channel].modulation
        ref_excitation = level_states[channel].adapted_ref
        test_excitation = level_states[channel].adapted_test
        noise_loudness = calc_noise_loudness(
            ear_model,
            ref_modulation,
            test_modulation,
            ref_excitation,
            test_excitation,
            alpha=2.5,
            thres_fac=0.3,
            s0=1.0,
            nl_min=0.1,
        )
        if swap_modulation_patterns:
            ref_modulation, test_modulation = test_modulation, ref_modulation
        missing_components = calc_noise_loudness(
            ear_model,
            ref_modulation,
            test_modulation,
            test_excitation,
            ref_excitation,
            alpha=1.5,
            thres_fac=0.15,
            s0=1.0,
            nl_min=0.0,
        )
        mov_accum.accumulate(channel, noise_loudness, missing_components)


def mov_linear_distortion(
    ear_model: EarModel,
    ref_mod_states: list[ModulationProcessorState],
    test_mod_states: list[ModulationProcessorState],
    level_states: list[LevelAdapterState],
    ref_excitations: list[ndarray],
    mov_accum: MovAccumulator,
    swap_modulation_patterns: bool = True,
) -> None:
    """AvgLinDistA, loudness of the adapted against the unadapted reference."""
    for channel in range(mov_accum.channels):
        ref_modulation = ref_mod_states[channel].modulation
        test_modulation = (
            ref_modulation
            if swap_modulation_patterns
            else test_mod_states[channel].modulation
        )
        noise_loudness = calc_noise_loudness(
            ear_model,
            ref_modulation,
            test_modulation,
            level_states[channel].adapted_ref,
            ref_excitations[channel],
            alpha=1.5,
            thres_fac=0.15,
            s0=1.0,
            nl_min=0.0,
        )
        mov_accum.accumulate(channel, noise_loudness, 1.0)


def calc_bandwidth(
    ref_power_spectrum: ndarray, test_power_spectrum: ndarray
) -> tuple[int, int | None]:
    """Bandwidth of reference and test in FFT bins.

    The test bandwidth is only determined if the reference bandwidth exceeds
    346 bins (about 8.1 kHz), otherwise None is returned for it.
    """
    zero_threshold = np.max(
        test_power_spectrum[BANDWIDTH_FLOOR_START:BANDWIDTH_FLOOR_END]
    )
    above = np.flatnonzero(
        ref_power_spectrum[:BANDWIDTH_FLOOR_START] > 10.0 * zero_threshold
    )
    bw_ref = int(above[-1]) + 1 if len(above) else 0
    if bw_ref <= BANDWIDTH_MIN_REF:
        return bw_ref, None
    above = np.flatnonzero(
        test_power_spectrum[:bw_ref] >= FIVE_DB_POWER_FACTOR * zero_threshold
    )
    bw_test = int(above[-1]) + 1 if len(above) else 0
    return bw_ref, bw_test


def mov_bandwidth(
    ref_states: list[FFTEarModelState],
    test_states: list[FFTEarModelState],
    mov_accum_ref: MovAccumulator,
    mov_accum_test: MovAccumulator,
) -> None:
    """BandwidthRefB and BandwidthTestB."""
    for channel in range(mov_accum_ref.channels):
        bw_ref, bw_test = calc_bandwidth(
            ref_states[channel].power_spectrum, test_states[channel].power_spectrum
        )
        if bw_test is not None:
            mov_accum_ref.accumulate(channel, bw_ref, 1.0)
            mov_accum_test.accumulate(channel, bw_test, 1.0)


def calc_nmr(
    ear_model: FFTEarModel, ref_state: FFTEarModelState, test_state: FFTEarModelState
) -> tuple[float, float]:
    """Mean and maximum over bands of the noise to mask ratio (linear)."""
    ref = ref_state.weighted_power_spectrum
    test = test_state.weighted_power_spectrum
    noise_spectrum = ref - 2.0 * np.sqrt(ref * test) + test
    noise_in_bands = ear_model.group_into_bands(noise_spectrum)

    # (26) in BS.1387
    mask = ref_state.excitation / ear_model.masking_difference
    nmr = noise_in_bands / mask
    return float(np.mean(nmr)), float(np.max(nmr))


def mov_nmr(
    ear_model: FFTEarModel,
    ref_states: list[FFTEarModelState],
    test_states: list[FFTEarModelState],
    mov_accum_nmr: MovAccumulator,
    mov_accum_rel_dist_frames: MovAccumulator,
) -> None:
    """Total NMRB and RelDistFramesB of the basic version."""
    for channel in range(mov_accum_nmr.channels):
        nmr, nmr_max = calc_nmr(ear_model, ref_states[channel], test_states[channel])
        mov_accum_nmr.accumulate(channel, nmr, 1.0)
        mov_accum_rel_dist_frames.accumulate(
            channel, 1.0 if nmr_max > ONE_POINT_FIVE_DB_POWER_FACTOR else 0.0, 1.0
        )


def mov_nmr_advanced(
    ear_model: FFTEarModel,
    ref_states: list[FFTEarModelState],
    test_states: list[FFTEarModelState],
    mov_accum_nmr: MovAccumulator,
) -> None:
    """Segmental NMRB of the advanced version."""
    for channel in range(mov_accum_nmr.channels):
        nmr, _ = calc_nmr(ear_model, ref_states[channel], test_states[channel])
        mov_accum_nmr.accumulate(channel, float(10.0 * np.log10(nmr)), 1.0)


def calc_detection_probability(
    ref_excitation: ndarray, test_excitation: ndarray, use_floor_for_steps: bool = False
) -> tuple[ndarray, ndarray]:
    """Per band detection probability and number of steps above threshold.

    Args:
        ref_excitation (ndarray): excitation patterns, (channels, bands).
        test_excitation (ndarray): excitation patterns, (channels, bands).
        use_floor_for_steps (bool): round the level difference down instead of
            towards zero when counting steps (default: False).

    Returns:
        tuple[ndarray, ndarray]: probabilities and steps, both (channels, bands)
    """
    eref_db = 10.0 * np.log10(ref_excitation)
    etest_db = 10.0 * np.log10(test_excitation)
    # (73) in BS.1387
    level = 0.3 * np.maximum(eref_db, etest_db) + 0.7 * etest_db
    positive = level > 0.0
    safe_level = np.where(positive, level, 1.0)
    # (74) in BS.1387
    step_size = np.where(
        positive,
        5.95072 * (6.39468 / safe_level) ** 1.71332
        + 9.01033e-11 * safe_level**4
        + 5.05622e-6 * safe_level**3
        - 0.00102438 * safe_level**2
        + 0.0550197 * safe_level
        - 0.198719,
        1e30,
    )
    # (75) to (77) in BS.1387
    error = eref_db - etest_db
    ratio = np.abs(error / step_size)
    exponent = np.where(eref_db > etest_db, ratio**4, ratio**6)
    probability = 1.0 - 0.5**exponent
    # (78) in BS.1387
    rounded = np.floor(error) if use_floor_for_steps else np.trunc(error)
    steps = np.abs(rounded) / step_size
    return probability, steps


def mov_prob_detect(
    ref_states: list[FFTEarModelState],
    test_states: list[FFTEarModelState],
    mov_accum_adb: MovAccumulator,
    mov_accum_mfpd: MovAccumulator,
    use_floor_for_steps: bool = False,
) -> None:
    """ADBB and MFPDB, both computed binaurally over all channels."""
    probability, steps = calc_detection_probability(
        np.array([state.excitation for state in ref_states]),
        np.array([state.excitation for state in test_states]),
        use_floor_for_steps,
    )
    band_probability = np.max(probability, axis=0)
    band_steps = np.max(steps, axis=0)
    binaural_probability = 1.0 - float(np.prod(1.0 - band_probability))
    binaural_steps = float(np.sum(band_steps))
    if binaural_probability > 0.5:
        mov_accum_adb.accumulate(0, binaural_steps, 1.0)
    mov_accum_mfpd.accumulate(0, binaural_probability, 1.0)


def calc_ehs(
    ref_state: FFTEarModelState,
    test_state: FFTEarModelState,
    settings: EhsSettings | None = None,
    window: ndarray | None = None,
) -> float:
    """Error harmonic structure of one frame.

    The logarithm of the ratio of the weighted power spectra is correlated
    with itself over 256 lags, normalized, windowed and transformed. The
    result is the largest spectral value that is greater than its lower
    neighbour.

    Args:
        ref_state (FFTEarModelState): reference state after the frame.
        test_state (FFTEarModelState): test state after the frame.
        settings (EhsSettings): window and mean removal choices.
        window (ndarray): precomputed correlation window matching `settings`.

    Returns:
        float: the EHS value, not yet scaled by 1000
    """
    if settings is None:
        settings = EhsSettings()
    if window is None:
        window = CORRELATION_WINDOWS[settings.centre_window]

    ref = ref_state.weighted_power_spectrum[: 2 * EHS_MAX_LAG]
    test = test_state.weighted_power_spectrum[: 2 * EHS_MAX_LAG]
    nonzero = (ref > 0.0) | (test > 0.0)
    d = np.where(
        nonzero,
        np.log(np.maximum(test, POWER_FLOOR) / np.maximum(ref, POWER_FLOOR)),
        0.0,
    )

    correlation = np.correlate(d, d[:EHS_MAX_LAG], mode="valid")[:EHS_MAX_LAG]

    # normalize by the energies of the two correlated segments
    d_squared = d * d
    d0 = correlation[0]
    dk = d0 + np.concatenate(
        ([0.0], np.cumsum(d_squared[EHS_MAX_LAG:-1] - d_squared[: EHS_MAX_LAG - 1]))
    )
    norm = d0 * dk
    valid = norm > 0.0
    correlation = np.where(
        valid, correlation / np.sqrt(np.where(valid, norm, 1.0)), 1.0
    )

    if settings.subtract_mean_before_window:
        correlation = (correlation - np.mean(correlation)) * window
    else:
        correlation = correlation * window
        correlation -= np.mean(correlation)

    spectrum = np.fft.rfft(correlation)
    power = spectrum.real * spectrum.real + spectrum.imag * spectrum.imag
    rising = power[1:] > power[:-1]
    if not np.any(rising):
        return 0.0
    return float(np.max(power[1:][rising]))


def mov_ehs(
    ref_states: list[FFTEarModelState],
    test_states: list[FFTEarModelState],
    mov_accum: MovAccumulator,
    settings: EhsSettings | None = None,
) -> None:
    """EHSB, for frames with enough energy in either signal."""
    if settings is None:
        settings = EhsSettings()
    window = CORRELATION_WINDOWS[settings.centre_window]
    for channel in range(mov_accum.channels):
        ref_state = ref_states[channel]
        test_state = test_states[channel]
        if ref_state.energy_threshold_reached or test_state.energy_threshold_reached:
            ehs = calc_ehs(ref_state, test_state, settings, window)
            mov_accum.accumulate(channel, 1000.0 * ehs, 1.0)
