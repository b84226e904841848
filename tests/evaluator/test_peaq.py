"""Tests for the peaq.evaluator.peaq module"""
import numpy as np
import pytest

from peaq.evaluator.distortion_index import (
    calculate_di_advanced,
    calculate_di_basic,
    calculate_odg,
)
from peaq.evaluator.mov_accumulator import AccumulatorStatus
from peaq.evaluator.peaq import (
    PeaqAdvanced,
    PeaqBasic,
    compute_peaq,
    is_frame_above_threshold,
    make_peaq,
)

BASIC_MOVS = [
    "BandwidthRefB",
    "BandwidthTestB",
    "TotalNMRB",
    "WinModDiff1B",
    "ADBB",
    "EHSB",
    "AvgModDiff1B",
    "AvgModDiff2B",
    "RmsNoiseLoudB",
    "MFPDB",
    "RelDistFramesB",
]
ADVANCED_MOVS = [
    "RmsModDiffA",
    "RmsNoiseLoudAsymA",
    "SegmentalNMRB",
    "EHSB",
    "AvgLinDistA",
]


def test_frame_threshold():
    """The window starting at the first sample is not evaluated"""
    frame = np.zeros(2048)
    assert not is_frame_above_threshold(frame)
    frame[0] = 1.0
    assert not is_frame_above_threshold(frame)
    frame[5] = 0.01
    assert is_frame_above_threshold(frame)


def test_frame_threshold_sums_five_samples():
    """Five quiet samples together can reach the threshold"""
    frame = np.zeros(192)
    frame[10:15] = 200.0 / 32768.0 / 5.0 * 1.01
    assert is_frame_above_threshold(frame)
    frame[10:15] = 200.0 / 32768.0 / 5.0 * 0.99
    assert not is_frame_above_threshold(frame)


def test_buffer_sizes():
    """Buffers hold one frame of each ear model"""
    assert PeaqBasic().buffer_size == 2048
    assert PeaqAdvanced().buffer_size == 192 + 2048


@pytest.mark.parametrize("version, names", [("basic", BASIC_MOVS), ("advanced", ADVANCED_MOVS)])
def test_mov_names(version, names):
    """MOVs are reported in the order of the network"""
    assert list(make_peaq(version).get_movs()) == names


def test_make_peaq_unknown_version():
    """Unknown versions are rejected"""
    with pytest.raises(ValueError):
        make_peaq("extended")


def test_configure():
    """Channels and playback level are applied to all parts"""
    peaq = PeaqAdvanced()
    peaq.configure(2, playback_level=80.0)
    assert peaq.channel_count == 2
    assert peaq.playback_level == 80.0
    assert all(model.playback_level == 80.0 for model in peaq.ear_models)
    assert len(peaq.ref_states[0]) == len(peaq.ref_states[1]) == 2
    assert peaq.mov_accumulators["EHSB"].channels == 2


def test_binaural_movs():
    """ADB and MFPD are accumulated over all channels at once"""
    peaq = PeaqBasic(channels=2)
    assert peaq.mov_accumulators["ADBB"].channels == 1
    assert peaq.mov_accumulators["MFPDB"].channels == 1
    assert peaq.mov_accumulators["TotalNMRB"].channels == 2


def test_invalid_channels():
    """At least one channel is needed"""
    with pytest.raises(ValueError):
        PeaqBasic(channels=0)


def test_process_block_shape_mismatch():
    """Reference and test must have the same shape"""
    peaq = PeaqBasic(channels=2)
    with pytest.raises(ValueError):
        peaq.process_block(np.zeros((100, 2)), np.zeros((90, 2)))
    with pytest.raises(ValueError):
        peaq.process_block(np.zeros((100, 1)), np.zeros((100, 1)))
    with pytest.raises(ValueError):
        peaq.process_block(np.zeros(101), np.zeros(101))


def test_frame_counting():
    """Frames are processed as soon as they are complete"""
    peaq = PeaqBasic()
    peaq.process_block(np.zeros(2047), np.zeros(2047))
    assert peaq.frame_counter == 0
    peaq.process_block(np.zeros(1), np.zeros(1))
    assert peaq.frame_counter == 1
    peaq.process_block(np.zeros(2048), np.zeros(2048))
    assert peaq.frame_counter == 3
    peaq.flush()
    assert peaq.frame_counter == 4
    peaq.flush()
    assert peaq.frame_counter == 4


def test_advanced_frame_counting():
    """The frame counter follows the filterbank model"""
    peaq = PeaqAdvanced()
    peaq.process_block(np.zeros(192 * 20), np.zeros(192 * 20))
    assert peaq.frame_counter == 20


def test_interleaved_input(make_random_signal):
    """Interleaved and two dimensional input are equivalent"""
    signal = make_random_signal(4096, n_channels=2, seed=2)
    test = 0.9 * signal

    peaq = PeaqBasic(channels=2)
    peaq.process_block(signal, test)
    interleaved = PeaqBasic(channels=2)
    interleaved.process_block(signal.reshape(-1), test.reshape(-1))
    assert interleaved.get_movs() == peaq.get_movs()


def test_sample_count(make_random_signal):
    """Only sample_count samples per channel are used"""
    signal = make_random_signal(4096, seed=3)
    peaq = PeaqBasic()
    peaq.process_block(signal, signal, sample_count=2048)
    assert peaq.frame_counter == 1


def test_block_size_independence(make_random_signal):
    """Feeding samples in chunks does not change the result"""
    reference = make_random_signal(12000, seed=4)
    test = reference + make_random_signal(12000, amplitude=0.05, seed=5)
    results = [
        compute_peaq(reference, test, block_size=block_size)
        for block_size in (12000, 1000, 333)
    ]
    for odg, di, movs in results[1:]:
        assert odg == pytest.approx(results[0][0])
        assert di == pytest.approx(results[0][1])
        assert movs == pytest.approx(results[0][2])


@pytest.mark.parametrize("version", ["basic", "advanced"])
def test_silence(version):
    """Silence gives a well defined grade"""
    silence = np.zeros(48000)
    odg, di, movs = compute_peaq(silence, silence, version=version)
    assert np.isfinite(odg)
    assert np.isfinite(di)
    assert all(value == 0.0 for value in movs.values())
    calculate_di = calculate_di_basic if version == "basic" else calculate_di_advanced
    assert di == pytest.approx(calculate_di(np.zeros(len(movs))))
    assert odg == pytest.approx(calculate_odg(di))


def test_silence_keeps_accumulators_uninitialized():
    """No frame is above the threshold"""
    peaq = PeaqBasic()
    peaq.process_block(np.zeros(10000), np.zeros(10000))
    peaq.flush()
    assert peaq.loudness_reached_frame is None
    assert all(
        accumulator.status == AccumulatorStatus.INIT
        for accumulator in peaq.mov_accumulators.values()
    )


def test_identical_signals_basic(make_sine, make_random_signal):
    """Identical signals show no noise"""
    signal = make_sine(1000.0, 48000, amplitude=0.3) + make_random_signal(
        48000, amplitude=0.05, seed=6
    )
    odg, _, movs = compute_peaq(signal, signal)
    assert movs["EHSB"] == 0.0
    assert movs["RmsNoiseLoudB"] == pytest.approx(0.0, abs=pytest.abs_tolerance)
    assert movs["AvgModDiff1B"] == 0.0
    assert movs["AvgModDiff2B"] == 0.0
    assert movs["ADBB"] == 0.0
    assert movs["MFPDB"] == 0.0
    assert movs["RelDistFramesB"] == 0.0
    assert movs["TotalNMRB"] < -24.0
    assert odg > -0.5


def test_identical_signals_advanced(make_sine, make_random_signal):
    """Identical signals show no noise in the advanced version"""
    signal = make_sine(1000.0, 48000, amplitude=0.3) + make_random_signal(
        48000, amplitude=0.05, seed=6
    )
    odg, _, movs = compute_peaq(signal, signal, version="advanced")
    assert list(movs) == ADVANCED_MOVS
    assert movs["EHSB"] == 0.0
    assert movs["RmsModDiffA"] == 0.0
    assert movs["RmsNoiseLoudAsymA"] == pytest.approx(0.0, abs=pytest.abs_tolerance)
    assert movs["SegmentalNMRB"] < -100.0
    assert movs["AvgLinDistA"] == pytest.approx(0.0, abs=1e-3)
    assert odg > -0.5


@pytest.mark.parametrize("version", ["basic", "advanced"])
def test_noise_lowers_grade(version, make_sine, make_random_signal):
    """Adding audible noise gives a worse grade"""
    reference = make_sine(1000.0, 48000, amplitude=0.3)
    noisy = reference + make_random_signal(48000, amplitude=0.1, seed=9)
    clean_odg, _, _ = compute_peaq(reference, reference, version=version)
    noisy_odg, _, noisy_movs = compute_peaq(reference, noisy, version=version)
    assert noisy_odg < clean_odg
    assert noisy_movs["EHSB"] > 0.0


def test_stereo(make_random_signal):
    """Two channels are measured together"""
    reference = make_random_signal(24000, n_channels=2, amplitude=0.3, seed=10)
    odg, di, movs = compute_peaq(reference, reference)
    assert np.isfinite(odg)
    assert np.isfinite(di)
    assert len(movs) == 11


def test_compute_peaq_shape_mismatch():
    """Reference and test must have the same shape"""
    with pytest.raises(ValueError):
        compute_peaq(np.zeros(1000), np.zeros(999))


# grades of a 2 s, 1 kHz sine at half full scale measured against itself
IDENTICAL_SINE_ODG = {"basic": 0.0448, "advanced": 0.0721}


@pytest.mark.parametrize("version", ["basic", "advanced"])
def test_identical_sine_grade(version, make_sine):
    """A sine measured against itself gets the best possible grade"""
    signal = make_sine(1000.0, 96000)
    odg, _, _ = compute_peaq(signal, signal, version=version)
    assert odg > -0.5
    assert odg == pytest.approx(IDENTICAL_SINE_ODG[version], abs=1e-3)


@pytest.mark.parametrize("version", ["basic", "advanced"])
def test_clipped_sine_grade(version, make_sine):
    """A hard clipped sine is graded as very annoying"""
    signal = make_sine(1000.0, 96000)
    clipped = 0.5 * np.sign(signal)
    odg, _, _ = compute_peaq(signal, clipped, version=version)
    assert odg < -2.0


def test_identical_sine_advanced_movs(make_sine):
    """The noise based MOVs of the advanced version are at their minimum"""
    signal = make_sine(1000.0, 96000)
    _, _, movs = compute_peaq(signal, signal, version="advanced")
    assert movs["RmsModDiffA"] == 0.0
    assert movs["RmsNoiseLoudAsymA"] == 0.0
    assert movs["EHSB"] == 0.0
    assert movs["SegmentalNMRB"] < -100.0
    assert movs["AvgLinDistA"] == pytest.approx(0.0, abs=1e-3)


@pytest.mark.parametrize("version", ["basic", "advanced"])
def test_movs_are_floats(version, make_sine, make_random_signal):
    """All MOVs are reported as plain floats"""
    reference = make_sine(1000.0, 48000, amplitude=0.3)
    test = reference + make_random_signal(48000, amplitude=0.05, seed=13)
    _, _, movs = compute_peaq(reference, test, version=version)
    # pylint: disable=unidiomatic-typecheck
    assert all(type(value) is float for value in movs.values())
