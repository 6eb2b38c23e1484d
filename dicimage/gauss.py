from __future__ import annotations

import math
from typing import Any

import numpy as np

from dicimage.config import SCALAR_DTYPE, validate_mask_size
from dicimage.dispatch import DispatchStrategy
from dicimage.log import get_logger
from dicimage.residency import DualBuffer

logger = get_logger(__name__)


def gauss_coefficients(mask_size: int) -> np.ndarray:
    """Sampled 1-D Gaussian with sigma = mask_size / 6, summing to 1."""
    mask_size = validate_mask_size(mask_size)
    half = (mask_size - 1) // 2
    sigma = mask_size / 6.0
    g = np.empty(mask_size, dtype=SCALAR_DTYPE)
    for i in range(mask_size):
        d = i - half
        g[i] = math.exp(-0.5 * d * d / (sigma * sigma))
    g /= g.sum()
    return g


def gauss_mask(mask_size: int) -> np.ndarray:
    g = gauss_coefficients(mask_size)
    mask = np.outer(g, g)
    mask /= mask.sum()
    return np.ascontiguousarray(mask, dtype=SCALAR_DTYPE)


def gauss_filter(
    intensities: DualBuffer,
    work,
    mask_dev,
    half_mask: int,
    strategy: DispatchStrategy,
    stream: Any,
) -> None:
    """
    Smooth ``intensities`` in place through the ``work`` device array.

    Pixels whose footprint leaves the image are averaged over the in-bounds
    part of the mask only, renormalized by the weight actually used.
    """
    intensities.sync_device()
    strategy.launch_gauss(intensities.d_view, work, mask_dev, half_mask, stream)
    intensities.d_view.copy_to_device(work, stream=stream)
    intensities.modify_device()
    intensities.sync_host()
    logger.debug(
        "gauss filter (%dx%d mask) applied to %s image (%s)",
        2 * half_mask + 1,
        2 * half_mask + 1,
        intensities.shape,
        strategy,
    )
