from __future__ import annotations

import os

# Kernels run on the numba CUDA simulator unless a real device is requested
# with NUMBA_ENABLE_CUDASIM=0. Must be set before numba is first imported.
os.environ.setdefault("NUMBA_ENABLE_CUDASIM", "1")

import numpy as np
import pytest


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def noise_image(rng):
    """23x19 random intensities; the width is not a multiple of any team size used."""
    return rng.uniform(0.0, 255.0, size=(19, 23))


@pytest.fixture
def spike_image():
    img = np.zeros((10, 10), dtype=np.float64)
    img[5, 5] = 100.0
    return img
