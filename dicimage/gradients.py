from __future__ import annotations

from typing import Any

from dicimage.dispatch import DispatchStrategy
from dicimage.log import get_logger
from dicimage.residency import DualBuffer

logger = get_logger(__name__)


def compute_gradients(
    intensities: DualBuffer,
    grad_x: DualBuffer,
    grad_y: DualBuffer,
    strategy: DispatchStrategy,
    stream: Any,
) -> None:
    """
    Fill ``grad_x`` / ``grad_y`` with d(intensity)/dx and d(intensity)/dy.

    Pixels at least two away from every edge use the 4th-order central
    difference. Closer pixels use the 2nd-order central difference, or a
    one-sided difference on the first/last row or column. Both outputs are
    back on the host when this returns.
    """
    intensities.sync_device()
    strategy.launch_gradients(intensities.d_view, grad_x.d_view, grad_y.d_view, stream)
    grad_x.modify_device()
    grad_y.modify_device()
    grad_x.sync_host()
    grad_y.sync_host()
    logger.debug("gradients computed for %s image (%s)", intensities.shape, strategy)
