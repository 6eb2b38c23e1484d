from __future__ import annotations

from typing import Any

from dicimage.config import (
    DEFAULT_TEAM_SIZE,
    FLAT_THREADS_PER_BLOCK,
    GRAD_C1,
    GRAD_C2,
    validate_team_size,
)
from dicimage.kernels import (
    gauss_flat_kernel,
    gauss_team_kernel,
    grad_flat_kernel,
    grad_team_kernel,
)
from dicimage.log import get_logger

logger = get_logger(__name__)


class DispatchStrategy:
    """
    Work decomposition for the gradient and filter kernels.

    Implementations only decide the launch geometry and which kernel
    variant runs; the per-pixel arithmetic is shared between them.
    """

    name = "base"

    def launch_gradients(self, img, gx_out, gy_out, stream: Any) -> None:
        raise NotImplementedError

    def launch_gauss(self, src, dst, mask, half_mask: int, stream: Any) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class FlatDispatch(DispatchStrategy):
    name = "flat"

    def __init__(self, threads_per_block: int = FLAT_THREADS_PER_BLOCK):
        self.threads_per_block = threads_per_block

    def _grid(self, shape) -> int:
        h, w = shape
        return (h * w + self.threads_per_block - 1) // self.threads_per_block

    def launch_gradients(self, img, gx_out, gy_out, stream: Any) -> None:
        grid = self._grid(img.shape)
        logger.debug("grad flat: grid=%d block=%d", grid, self.threads_per_block)
        grad_flat_kernel[grid, self.threads_per_block, stream](
            img, gx_out, gy_out, GRAD_C1, GRAD_C2
        )

    def launch_gauss(self, src, dst, mask, half_mask: int, stream: Any) -> None:
        grid = self._grid(src.shape)
        logger.debug("gauss flat: grid=%d block=%d", grid, self.threads_per_block)
        gauss_flat_kernel[grid, self.threads_per_block, stream](src, dst, mask, half_mask)


class HierarchicalDispatch(DispatchStrategy):
    """One team (thread block) per row segment of ``team_size`` pixels."""

    name = "hierarchical"

    def __init__(self, team_size: int = DEFAULT_TEAM_SIZE):
        self.team_size = validate_team_size(team_size)

    def _grid(self, shape) -> tuple[int, int]:
        h, w = shape
        return ((w + self.team_size - 1) // self.team_size, h)

    def launch_gradients(self, img, gx_out, gy_out, stream: Any) -> None:
        grid = self._grid(img.shape)
        logger.debug("grad teams: grid=%s team=%d", grid, self.team_size)
        grad_team_kernel[grid, (self.team_size,), stream](
            img, gx_out, gy_out, GRAD_C1, GRAD_C2
        )

    def launch_gauss(self, src, dst, mask, half_mask: int, stream: Any) -> None:
        grid = self._grid(src.shape)
        logger.debug("gauss teams: grid=%s team=%d", grid, self.team_size)
        gauss_team_kernel[grid, (self.team_size,), stream](src, dst, mask, half_mask)

    def __repr__(self) -> str:
        return f"HierarchicalDispatch(team_size={self.team_size})"


def select_strategy(
    use_hierarchical_parallelism: bool = False, team_size: int = DEFAULT_TEAM_SIZE
) -> DispatchStrategy:
    if use_hierarchical_parallelism:
        return HierarchicalDispatch(team_size)
    validate_team_size(team_size)
    return FlatDispatch()
