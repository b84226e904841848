"""Tests for the peaq.evaluator.modulation_processor module"""
import numpy as np
import pytest

from peaq.evaluator.fft_ear_model import FFTEarModel
from peaq.evaluator.modulation_processor import (
    ModulationProcessor,
    ModulationProcessorState,
)


@pytest.fixture
def ear_model():
    """Return the 109 band FFT ear model"""
    return FFTEarModel()


def test_get_state(ear_model):
    """The state is zeroed and sized to the band count"""
    processor = ModulationProcessor(ear_model)
    state = processor.get_state()
    assert isinstance(state, ModulationProcessorState)
    assert state.modulation.shape == (109,)
    np.testing.assert_array_equal(state.average_loudness, 0.0)


def test_first_frame(ear_model):
    """The first frame is compared against zero loudness"""
    processor = ModulationProcessor(ear_model)
    state = processor.get_state()
    excitation = np.full(109, 1000.0)
    processor.process(state, excitation)

    a = ear_model.calc_time_constants(0.008, 0.05)
    loudness = 1000.0**0.3
    derivative = (1.0 - a) * 48000.0 / 1024.0 * loudness
    average = (1.0 - a) * loudness
    np.testing.assert_allclose(state.filtered_loudness_derivative, derivative)
    np.testing.assert_allclose(state.average_loudness, average)
    np.testing.assert_allclose(state.modulation, derivative / (1.0 + average / 0.3))


def test_constant_input_has_no_modulation(ear_model):
    """The modulation of a stationary input decays to zero"""
    processor = ModulationProcessor(ear_model)
    state = processor.get_state()
    excitation = np.full(109, 1000.0)
    for _ in range(1000):
        processor.process(state, excitation)
    np.testing.assert_allclose(state.modulation, 0.0, atol=1e-6)
    np.testing.assert_allclose(state.average_loudness, 1000.0**0.3)


def test_modulated_input(ear_model):
    """An alternating input is modulated"""
    processor = ModulationProcessor(ear_model)
    state = processor.get_state()
    for frame in range(200):
        processor.process(state, np.full(109, 1000.0 if frame % 2 else 10.0))
    assert np.all(state.modulation > 1.0)
