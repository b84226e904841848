"""Reading and writing of the signals to be measured."""
from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import soundfile
from numpy import ndarray
from soundfile import SoundFile

from peaq.evaluator.ear_model import SAMPLE_RATE

logger = logging.getLogger(__name__)

# Signals are passed and returned as numpy arrays of floats of shape
# (n_samples, n_channels), mono signals as (n_samples,). Samples are in the
# range [-1.0, 1.0) and scaled to and from -32768 to 32767 for 16 bit files.
# The measurement is only defined at 48 kHz so no resampling is done.


def write_signal(
    filename: str | Path,
    signal: ndarray,
    sample_rate: int = SAMPLE_RATE,
    floating_point: bool = True,
    strict: bool = False,
) -> None:
    """Write a signal as fixed or floating point wav file.

    Args:
        filename (str|Path): name of file in to write to.
        signal (ndarray): signal to write.
        sample_rate (int): sampling frequency (default: 48000).
        floating_point (bool): write as floating point else as 16 bit ints
            (default: True).
        strict (bool): raise error if signal out of range for int16
            (default: False).
    """
    if floating_point is False:
        subtype = "PCM_16"
        signal = signal * 32768.0
        if np.max(signal) > 32767.0 or np.min(signal) < -32768.0:
            if strict:
                raise ValueError("Signal out of range [-1.0, 1.0)")
            logger.warning(
                f"Writing {filename}. Signal out of range [-1.0, 1.0) - clipping."
            )
            signal = np.clip(signal, -32768.0, 32767.0)
        signal = signal.astype(np.dtype("int16"))
    else:
        subtype = "FLOAT"

    soundfile.write(filename, signal, sample_rate, subtype=subtype)


def read_signal(
    filename: str | Path,
    sample_rate: int = SAMPLE_RATE,
    n_channels: int = 0,
) -> ndarray:
    """Read a wav file as floats.

    Args:
        filename (str|Path): name of file to read.
        sample_rate (int): required sample rate (default: 48000).
        n_channels (int): expected number of channels (default: 0 = any).

    Returns:
        ndarray: signal of shape (n_samples,) or (n_samples, n_channels)
    """
    with SoundFile(filename) as wave_file:
        if n_channels not in (0, wave_file.channels):
            raise ValueError(
                f"Wav file ({filename}) was expected to have {n_channels} channels."
            )
        if wave_file.samplerate != sample_rate:
            logger.error(f"{filename} has sample rate {wave_file.samplerate}")
            raise ValueError(
                f"Sample rate of {wave_file.samplerate} "
                f"does not match expected {sample_rate}"
            )
        return wave_file.read()


def read_signal_pair(
    reference_file: str | Path, test_file: str | Path
) -> tuple[ndarray, ndarray]:
    """Read a reference and a test file with matching channel counts.

    The longer signal is truncated to the length of the shorter one.
    """
    reference = read_signal(reference_file)
    test = read_signal(test_file)
    if reference.ndim != test.ndim or reference.shape[1:] != test.shape[1:]:
        logger.error(
            f"Channel mismatch between {reference_file} and {test_file}: "
            f"{reference.shape} and {test.shape}"
        )
        raise ValueError("Reference and test files must have the same channel count")
    if len(reference) != len(test):
        logger.warning(
            f"{reference_file} and {test_file} differ in length, "
            f"using the first {min(len(reference), len(test))} samples"
        )
        n_samples = min(len(reference), len(test))
        reference = reference[:n_samples]
        test = test[:n_samples]
    return reference, test
