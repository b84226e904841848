"""Perceptual Evaluation of Audio Quality (PEAQ), ITU-R BS.1387.

The measurement compares a reference and a test signal, both sampled at
48 kHz, and yields a distortion index (DI) and an objective difference grade
(ODG) between 0 (imperceptible difference) and -4 (very annoying).

Two versions exist. The basic version uses the FFT based ear model with 109
bands and 11 model output variables (MOVs). The advanced version combines the
filterbank based ear model with an FFT based model of 55 bands and uses 5
MOVs.

Samples are fed in arbitrary chunks with `process_block`; internally they are
buffered until a complete frame is available for each ear model. At the end
of the signal, `flush` processes the remaining samples padded with zeros.

Example:
    >>> peaq = PeaqBasic(channels=2)
    >>> peaq.process_block(reference, test)
    >>> peaq.flush()
    >>> odg = peaq.calculate_odg()
"""
from __future__ import annotations

import logging
from typing import Final

import numpy as np
from numpy import ndarray

from peaq.evaluator.distortion_index import (
    calculate_di_advanced,
    calculate_di_basic,
    calculate_odg,
)
from peaq.evaluator.ear_model import DEFAULT_PLAYBACK_LEVEL, EarModel
from peaq.evaluator.fft_ear_model import FFTEarModel
from peaq.evaluator.filterbank_ear_model import FilterbankEarModel
from peaq.evaluator.level_adapter import LevelAdapter
from peaq.evaluator.modulation_processor import ModulationProcessor
from peaq.evaluator.mov_accumulator import (
    AccumulatorMode,
    AccumulatorStatus,
    MovAccumulator,
)
from peaq.evaluator.movs import (
    EhsSettings,
    mov_bandwidth,
    mov_ehs,
    mov_linear_distortion,
    mov_modulation_difference,
    mov_modulation_difference_advanced,
    mov_nmr,
    mov_nmr_advanced,
    mov_noise_loudness,
    mov_noise_loudness_asym,
    mov_prob_detect,
)

# 5-sample sum of absolute values a frame must reach somewhere to be audible
AUDIBILITY_THRESHOLD: Final = 200.0 / 32768.0
# minimum loudness in sone both signals must reach before noise loudness counts
LOUDNESS_THRESHOLD: Final = 0.1

logger = logging.getLogger(__name__)


def is_frame_above_threshold(frame: ndarray) -> bool:
    """Whether any 5-sample window of the frame is loud enough.

    The first window is only evaluated once the sixth sample has been added,
    so the window starting at the first sample is not considered.
    """
    window_sums = np.convolve(np.abs(frame), np.ones(5), mode="valid")
    return bool(np.any(window_sums[1:] >= AUDIBILITY_THRESHOLD))


class PeaqAlgorithm:
    """Buffering, frame dispatch and preprocessing shared by both versions.

    Subclasses define the ear models, the MOV accumulators and what is done
    with every processed frame.

    Args:
        ear_models (list[EarModel]): the ear models; the level adapter and the
            modulation processor work on the output of the first one.
        channels (int): number of channels of both signals.
        playback_level (float): level of a full-scale sine in dB SPL.
        swap_modulation_patterns (bool): exchange the modulation patterns along
            with the excitation patterns in the noise loudness MOVs that use
            the reference as maskee.
        clamp_movs (bool): clip normalized MOVs to [0, 1] before the network.
        ehs_settings (EhsSettings): window and mean removal choices for EHS.
        use_floor_for_steps (bool): round the level difference down when
            counting detection steps instead of towards zero.
    """

    MOV_MODES: dict[str, AccumulatorMode] = {}
    BINAURAL_MOVS: frozenset[str] = frozenset()

    def __init__(
        self,
        ear_models: list[EarModel],
        channels: int = 1,
        playback_level: float = DEFAULT_PLAYBACK_LEVEL,
        swap_modulation_patterns: bool = True,
        clamp_movs: bool = True,
        ehs_settings: EhsSettings | None = None,
        use_floor_for_steps: bool = False,
    ) -> None:
        self.ear_models = ear_models
        self.swap_modulation_patterns = swap_modulation_patterns
        self.clamp_movs = clamp_movs
        self.ehs_settings = ehs_settings if ehs_settings is not None else EhsSettings()
        self.use_floor_for_steps = use_floor_for_steps

        self.buffer_size = sum(model.frame_size for model in ear_models)
        self.level_adapter = LevelAdapter(ear_models[0])
        self.modulation_processor = ModulationProcessor(ear_models[0])
        self.mov_accumulators = {
            name: MovAccumulator(mode) for name, mode in self.MOV_MODES.items()
        }
        self.configure(channels, playback_level)

    @property
    def playback_level(self) -> float:
        return self.ear_models[0].playback_level

    @playback_level.setter
    def playback_level(self, playback_level: float) -> None:
        for ear_model in self.ear_models:
            ear_model.playback_level = playback_level

    def configure(
        self, channel_count: int, playback_level: float | None = None
    ) -> None:
        """Prepare a new measurement.

        Args:
            channel_count (int): number of channels of both signals.
            playback_level (float): level of a full-scale sine in dB SPL; the
                current level is kept if None.
        """
        if playback_level is not None:
            self.playback_level = playback_level
        self.set_channels(channel_count)

    def set_channels(self, channel_count: int) -> None:
        """Reset all state for `channel_count` channels."""
        if channel_count < 1:
            logger.error(f"Invalid channel count {channel_count}")
            raise ValueError(f"Channel count must be at least 1, got {channel_count}")
        logger.debug(f"{type(self).__name__}: configured for {channel_count} channels")
        self.channel_count = channel_count

        self._ref_buffers = np.zeros((channel_count, self.buffer_size), dtype=np.float32)
        self._test_buffers = np.zeros(
            (channel_count, self.buffer_size), dtype=np.float32
        )
        self._buffer_valid_count = 0
        self._buffer_offsets = [0] * len(self.ear_models)

        self.ref_states = [
            [model.get_state() for _ in range(channel_count)]
            for model in self.ear_models
        ]
        self.test_states = [
            [model.get_state() for _ in range(channel_count)]
            for model in self.ear_models
        ]
        self.level_states = [
            self.level_adapter.get_state() for _ in range(channel_count)
        ]
        self.ref_modulation_states = [
            self.modulation_processor.get_state() for _ in range(channel_count)
        ]
        self.test_modulation_states = [
            self.modulation_processor.get_state() for _ in range(channel_count)
        ]
        self.frame_counter = 0
        self.loudness_reached_frame: int | None = None

        for name, accumulator in self.mov_accumulators.items():
            accumulator.set_channels(
                1 if name in self.BINAURAL_MOVS else channel_count
            )
            accumulator.status = AccumulatorStatus.INIT

        self._check_band_counts()

    def _check_band_counts(self) -> None:
        main_model = self.ear_models[0]
        main_model.check_band_count(self.level_adapter.band_count, "LevelAdapter")
        main_model.check_band_count(
            self.modulation_processor.band_count, "ModulationProcessor"
        )
        for model, states in zip(self.ear_models, self.ref_states):
            for state in states:
                model.check_band_count(state.band_count, type(state).__name__)

    def process_block(
        self, ref_samples: ndarray, test_samples: ndarray, sample_count: int | None = None
    ) -> None:
        """Feed samples of both signals.

        Args:
            ref_samples (ndarray): reference samples, either interleaved by
                channel in a 1-d array or of shape (n_samples, n_channels).
            test_samples (ndarray): test samples, same layout as the reference.
            sample_count (int): number of samples per channel to use; all if
                None.
        """
        ref = self._as_frames(ref_samples)
        test = self._as_frames(test_samples)
        if ref.shape != test.shape:
            logger.error(
                f"Reference {ref.shape} and test {test.shape} samples do not match"
            )
            raise ValueError("Reference and test blocks must have the same shape")
        if sample_count is not None:
            ref = ref[:sample_count]
            test = test[:sample_count]

        num_samples = len(ref)
        position = 0
        while position < num_samples:
            valid = self._buffer_valid_count
            insert_count = min(num_samples - position, self.buffer_size - valid)
            self._ref_buffers[:, valid : valid + insert_count] = ref[
                position : position + insert_count
            ].T
            self._test_buffers[:, valid : valid + insert_count] = test[
                position : position + insert_count
            ].T
            position += insert_count
            self._buffer_valid_count += insert_count

            for index, model in enumerate(self.ear_models):
                while (
                    self._buffer_valid_count
                    >= model.frame_size + self._buffer_offsets[index]
                ):
                    self._process_frame(index)

            step_size = min(self._buffer_offsets)
            remaining = self._buffer_valid_count - step_size
            self._ref_buffers[:, :remaining] = self._ref_buffers[
                :, step_size : self._buffer_valid_count
            ]
            self._test_buffers[:, :remaining] = self._test_buffers[
                :, step_size : self._buffer_valid_count
            ]
            self._buffer_valid_count = remaining
            self._buffer_offsets = [
                offset - step_size for offset in self._buffer_offsets
            ]

    def _as_frames(self, samples: ndarray) -> ndarray:
        samples = np.asarray(samples, dtype=np.float32)
        if samples.ndim == 1:
            if len(samples) % self.channel_count:
                logger.error(
                    f"{len(samples)} interleaved samples for {self.channel_count} "
                    "channels"
                )
                raise ValueError(
                    "Number of interleaved samples must be a multiple of the "
                    "channel count"
                )
            return samples.reshape(-1, self.channel_count)
        if samples.ndim != 2 or samples.shape[1] != self.channel_count:
            logger.error(
                f"Samples of shape {samples.shape} for {self.channel_count} channels"
            )
            raise ValueError(
                f"Expected samples of shape (n_samples, {self.channel_count})"
            )
        return samples

    def flush(self) -> None:
        """Process the buffered samples, padded with zeros, once per ear model."""
        if self._buffer_valid_count > 0:
            logger.debug(
                f"Flushing {self._buffer_valid_count} buffered samples with zeros"
            )
            self._ref_buffers[:, self._buffer_valid_count :] = 0.0
            self._test_buffers[:, self._buffer_valid_count :] = 0.0
            self._buffer_valid_count = self.buffer_size
            for index in range(len(self.ear_models)):
                self._process_frame(index)
            self._buffer_valid_count = 0
            self._buffer_offsets = [0] * len(self.ear_models)

    def _process_frame(self, index: int) -> None:
        model = self.ear_models[index]
        start = self._buffer_offsets[index]
        end = start + model.frame_size

        above_thres = any(
            is_frame_above_threshold(channel_data[start:end])
            for channel_data in self._ref_buffers
        )
        for channel in range(self.channel_count):
            model.process_block(
                self.ref_states[index][channel], self._ref_buffers[channel, start:end]
            )
            model.process_block(
                self.test_states[index][channel],
                self._test_buffers[channel, start:end],
            )
        if index == 0:
            self._preprocess()
        self._process_movs(index, above_thres)
        if index == 0:
            self.frame_counter += 1

        self._buffer_offsets[index] += model.step_size

    def _preprocess(self) -> None:
        """Level adaptation and modulation on the output of the first model."""
        model = self.ear_models[0]
        for channel in range(self.channel_count):
            ref_state = self.ref_states[0][channel]
            test_state = self.test_states[0][channel]
            self.level_adapter.process(
                self.level_states[channel], ref_state.excitation, test_state.excitation
            )
            self.modulation_processor.process(
                self.ref_modulation_states[channel], ref_state.unsmeared_excitation
            )
            self.modulation_processor.process(
                self.test_modulation_states[channel], test_state.unsmeared_excitation
            )
            if (
                self.loudness_reached_frame is None
                and model.calc_loudness(ref_state.excitation) > LOUDNESS_THRESHOLD
                and model.calc_loudness(test_state.excitation) > LOUDNESS_THRESHOLD
            ):
                self.loudness_reached_frame = self.frame_counter

    def _loudness_reached(self, delay: int) -> bool:
        return (
            self.loudness_reached_frame is not None
            and self.frame_counter - delay >= self.loudness_reached_frame
        )

    def _set_tentative(self, names, tentative: bool) -> None:
        for name in names:
            self.mov_accumulators[name].set_tentative(tentative)

    def _process_movs(self, index: int, above_thres: bool) -> None:
        raise NotImplementedError

    def get_movs(self) -> dict[str, float]:
        """Current values of all MOVs, in the order expected by the network."""
        return {
            name: float(accumulator.get_value())
            for name, accumulator in self.mov_accumulators.items()
        }

    def calculate_distortion_index(self) -> float:
        raise NotImplementedError

    def calculate_odg(self) -> float:
        return calculate_odg(self.calculate_distortion_index())


class PeaqBasic(PeaqAlgorithm):
    """Basic version of PEAQ, see `PeaqAlgorithm` for the arguments."""

    MOV_MODES = {
        "BandwidthRefB": AccumulatorMode.AVG,
        "BandwidthTestB": AccumulatorMode.AVG,
        "TotalNMRB": AccumulatorMode.AVG_LOG,
        "WinModDiff1B": AccumulatorMode.AVG_WINDOW,
        "ADBB": AccumulatorMode.ADB,
        "EHSB": AccumulatorMode.AVG,
        "AvgModDiff1B": AccumulatorMode.AVG,
        "AvgModDiff2B": AccumulatorMode.AVG,
        "RmsNoiseLoudB": AccumulatorMode.RMS,
        "MFPDB": AccumulatorMode.FILTERED_MAX,
        "RelDistFramesB": AccumulatorMode.AVG,
    }
    BINAURAL_MOVS = frozenset({"ADBB", "MFPDB"})
    # frames to skip at the start, 0.5 s
    SETTLING_FRAMES: Final = 24
    LOUDNESS_DELAY_FRAMES: Final = 3

    def __init__(self, channels: int = 1, playback_level=DEFAULT_PLAYBACK_LEVEL, **kwargs):
        super().__init__(
            [FFTEarModel(band_count=109)], channels, playback_level, **kwargs
        )

    def _process_movs(self, index: int, above_thres: bool) -> None:
        accums = self.mov_accumulators
        ear_model = self.ear_models[0]
        ref_states = self.ref_states[0]
        test_states = self.test_states[0]

        self._set_tentative(accums, not above_thres)

        if self.frame_counter >= self.SETTLING_FRAMES:
            mov_modulation_difference(
                ear_model,
                self.ref_modulation_states,
                self.test_modulation_states,
                accums["AvgModDiff1B"],
                accums["AvgModDiff2B"],
                accums["WinModDiff1B"],
            )
            if self._loudness_reached(self.LOUDNESS_DELAY_FRAMES):
                mov_noise_loudness(
                    ear_model,
                    self.ref_modulation_states,
                    self.test_modulation_states,
                    self.level_states,
                    accums["RmsNoiseLoudB"],
                )

        mov_bandwidth(
            ref_states, test_states, accums["BandwidthRefB"], accums["BandwidthTestB"]
        )
        mov_nmr(
            ear_model,
            ref_states,
            test_states,
            accums["TotalNMRB"],
            accums["RelDistFramesB"],
        )
        mov_prob_detect(
            ref_states,
            test_states,
            accums["ADBB"],
            accums["MFPDB"],
            self.use_floor_for_steps,
        )
        mov_ehs(ref_states, test_states, accums["EHSB"], self.ehs_settings)

    def calculate_distortion_index(self) -> float:
        movs = list(self.get_movs().values())
        return calculate_di_basic(movs, clamp_movs=self.clamp_movs)


class PeaqAdvanced(PeaqAlgorithm):
    """Advanced version of PEAQ, see `PeaqAlgorithm` for the arguments.

    Additionally accepts `swap_slope_filter_coefficients` which is passed on
    to the `FilterbankEarModel`.
    """

    MOV_MODES = {
        "RmsModDiffA": AccumulatorMode.RMS,
        "RmsNoiseLoudAsymA": AccumulatorMode.RMS_ASYM,
        "SegmentalNMRB": AccumulatorMode.AVG,
        "EHSB": AccumulatorMode.AVG,
        "AvgLinDistA": AccumulatorMode.AVG,
    }
    FILTERBANK_MOVS: Final = ("RmsModDiffA", "RmsNoiseLoudAsymA", "AvgLinDistA")
    FFT_MOVS: Final = ("SegmentalNMRB", "EHSB")
    # filterbank blocks to skip at the start, 0.5 s
    SETTLING_FRAMES: Final = 125
    LOUDNESS_DELAY_FRAMES: Final = 13

    def __init__(
        self,
        channels: int = 1,
        playback_level=DEFAULT_PLAYBACK_LEVEL,
        swap_slope_filter_coefficients: bool = False,
        **kwargs,
    ):
        super().__init__(
            [
                FilterbankEarModel(
                    swap_slope_filter_coefficients=swap_slope_filter_coefficients
                ),
                FFTEarModel(band_count=55),
            ],
            channels,
            playback_level,
            **kwargs,
        )

    def _process_movs(self, index: int, above_thres: bool) -> None:
        if index == 0:
            self._process_filterbank_movs(above_thres)
        else:
            self._process_fft_movs(above_thres)

    def _process_filterbank_movs(self, above_thres: bool) -> None:
        accums = self.mov_accumulators
        ear_model = self.ear_models[0]
        self._set_tentative(self.FILTERBANK_MOVS, not above_thres)

        if self.frame_counter < self.SETTLING_FRAMES:
            return
        mov_modulation_difference_advanced(
            ear_model,
            self.ref_modulation_states,
            self.test_modulation_states,
            accums["RmsModDiffA"],
        )
        if self._loudness_reached(self.LOUDNESS_DELAY_FRAMES):
            mov_noise_loudness_asym(
                ear_model,
                self.ref_modulation_states,
                self.test_modulation_states,
                self.level_states,
                accums["RmsNoiseLoudAsymA"],
                self.swap_modulation_patterns,
            )
            mov_linear_distortion(
                ear_model,
                self.ref_modulation_states,
                self.test_modulation_states,
                self.level_states,
                [state.excitation for state in self.ref_states[0]],
                accums["AvgLinDistA"],
                self.swap_modulation_patterns,
            )

    def _process_fft_movs(self, above_thres: bool) -> None:
        accums = self.mov_accumulators
        ear_model = self.ear_models[1]
        ref_states = self.ref_states[1]
        test_states = self.test_states[1]
        self._set_tentative(self.FFT_MOVS, not above_thres)

        mov_nmr_advanced(ear_model, ref_states, test_states, accums["SegmentalNMRB"])
        mov_ehs(ref_states, test_states, accums["EHSB"], self.ehs_settings)

    def calculate_distortion_index(self) -> float:
        movs = list(self.get_movs().values())
        return calculate_di_advanced(movs, clamp_movs=self.clamp_movs)


PEAQ_VERSIONS: Final = {"basic": PeaqBasic, "advanced": PeaqAdvanced}


def make_peaq(version: str = "basic", **kwargs) -> PeaqAlgorithm:
    """Create the basic or advanced version by name."""
    try:
        peaq_class = PEAQ_VERSIONS[version]
    except KeyError as exception:
        logger.error(f"Unknown PEAQ version {version}")
        raise ValueError(
            f"Unknown PEAQ version {version}, use one of {list(PEAQ_VERSIONS)}"
        ) from exception
    return peaq_class(**kwargs)


def compute_peaq(
    reference: ndarray,
    test: ndarray,
    version: str = "basic",
    playback_level: float = DEFAULT_PLAYBACK_LEVEL,
    block_size: int = 4096,
    **kwargs,
) -> tuple[float, float, dict[str, float]]:
    """Measure a complete pair of signals.

    Args:
        reference (ndarray): reference, (n_samples,) or (n_samples, n_channels).
        test (ndarray): test signal with the same shape as the reference.
        version (str): "basic" or "advanced".
        playback_level (float): level of a full-scale sine in dB SPL.
        block_size (int): number of samples fed per call of `process_block`.
        **kwargs: further arguments of `PeaqAlgorithm`.

    Returns:
        tuple: the objective difference grade, the distortion index and the
            MOVs by name
    """
    reference = np.asarray(reference)
    test = np.asarray(test)
    if reference.shape != test.shape:
        logger.error(f"Reference {reference.shape} and test {test.shape} differ")
        raise ValueError("Reference and test signals must have the same shape")
    if reference.ndim == 1:
        reference = reference[:, np.newaxis]
        test = test[:, np.newaxis]

    peaq = make_peaq(
        version, channels=reference.shape[1], playback_level=playback_level, **kwargs
    )
    for start in range(0, len(reference), block_size):
        peaq.process_block(
            reference[start : start + block_size], test[start : start + block_size]
        )
    peaq.flush()

    distortion_index = peaq.calculate_distortion_index()
    return calculate_odg(distortion_index), distortion_index, peaq.get_movs()
