"""Test the file_io module."""
import numpy as np
import pytest
import soundfile

from peaq.utils.file_io import read_signal, read_signal_pair, write_signal


@pytest.mark.parametrize("n_channels", [1, 2])
def test_write_read_float(n_channels, tmp_path, make_random_signal):
    """Floating point files are read back unchanged"""
    shape = None if n_channels == 1 else n_channels
    signal = make_random_signal(1000, n_channels=shape, seed=1).astype(np.float32)
    write_signal(tmp_path / "signal.wav", signal)
    read_back = read_signal(tmp_path / "signal.wav")
    assert read_back.shape == signal.shape
    np.testing.assert_allclose(read_back, signal)


def test_write_read_int16(tmp_path, make_random_signal):
    """16 bit files are quantised to 1/32768"""
    signal = make_random_signal(1000, seed=2)
    write_signal(tmp_path / "signal.wav", signal, floating_point=False)
    read_back = read_signal(tmp_path / "signal.wav")
    np.testing.assert_allclose(read_back, signal, atol=1.0 / 32768.0)


def test_write_int16_overflow(tmp_path):
    """Out of range samples are clipped or rejected"""
    signal = np.array([0.0, 2.0, -2.0])
    with pytest.raises(ValueError):
        write_signal(tmp_path / "signal.wav", signal, floating_point=False, strict=True)
    write_signal(tmp_path / "signal.wav", signal, floating_point=False)
    read_back = read_signal(tmp_path / "signal.wav")
    assert np.max(read_back) < 1.0
    assert np.min(read_back) == -1.0


def test_read_wrong_sample_rate(tmp_path):
    """Only 48 kHz files can be measured"""
    soundfile.write(tmp_path / "signal.wav", np.zeros(100), 44100)
    with pytest.raises(ValueError):
        read_signal(tmp_path / "signal.wav")


def test_read_wrong_channels(tmp_path):
    """The expected channel count is checked"""
    write_signal(tmp_path / "signal.wav", np.zeros((100, 2)))
    with pytest.raises(ValueError):
        read_signal(tmp_path / "signal.wav", n_channels=1)


def test_read_signal_pair_truncates(tmp_path):
    """The longer file is cut to the shorter one"""
    write_signal(tmp_path / "reference.wav", np.zeros(1000))
    write_signal(tmp_path / "test.wav", np.zeros(800))
    reference, test = read_signal_pair(tmp_path / "reference.wav", tmp_path / "test.wav")
    assert reference.shape == test.shape == (800,)


def test_read_signal_pair_channel_mismatch(tmp_path):
    """Reference and test need the same channels"""
    write_signal(tmp_path / "reference.wav", np.zeros((1000, 2)))
    write_signal(tmp_path / "test.wav", np.zeros(1000))
    with pytest.raises(ValueError):
        read_signal_pair(tmp_path / "reference.wav", tmp_path / "test.wav")
