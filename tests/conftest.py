"""Fixtures for testing."""
from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

BASE_DIR = Path.cwd()
RESOURCES = BASE_DIR / "tests" / "resources"

SAMPLE_RATE = 48000
SEED = 564687
rng = np.random.default_rng(SEED)


@pytest.fixture
def make_random_signal():
    """Generate a random signal in the range [-amplitude, amplitude).

    The fixture returns a function that can be called to generate a signal
    >>> def my_test(make_random_signal):
    >>>     signal = make_random_signal(n_samples=4096, seed=1234)
    or use the global seed
    >>>     signal = make_random_signal(n_samples=4096)
    """

    def _random_signal(
        n_samples: int = SAMPLE_RATE,
        n_channels: int | None = None,
        amplitude: float = 0.5,
        seed: int | None = None,
    ) -> np.ndarray:
        rng_to_use = np.random.default_rng(seed) if seed is not None else rng
        size = (n_samples,) if n_channels is None else (n_samples, n_channels)
        return amplitude * (2.0 * rng_to_use.random(size) - 1.0)

    return _random_signal


@pytest.fixture
def make_sine():
    """Generate a sine of given frequency, amplitude and length."""

    def _sine(
        frequency: float = 1000.0,
        n_samples: int = SAMPLE_RATE,
        amplitude: float = 0.5,
    ) -> np.ndarray:
        return amplitude * np.sin(
            2.0 * np.pi * frequency * np.arange(n_samples) / SAMPLE_RATE
        )

    return _sine


def pytest_configure() -> None:
    """Configure custom variables for pytest.

    **NB**: pytest automatically calls this hook when the conftest is loaded.
    """
    pytest.abs_tolerance = 1e-7
    pytest.rel_tolerance = 1e-7
