from __future__ import annotations

from typing import Any

import numpy as np
from numba import cuda

from dicimage.log import get_logger

logger = get_logger(__name__)


class DualBuffer:
    """
    A host array mirrored by a device array.

    Exactly one side may be marked modified at a time. Kernels write
    ``d_view`` and mark the device modified; host readers must call
    ``sync_host`` first. Host writers mark the host modified and kernels
    call ``sync_device`` before reading.
    """

    def __init__(self, host: np.ndarray, stream: Any = 0):
        if not host.flags["C_CONTIGUOUS"]:
            raise ValueError("DualBuffer host array must be C-contiguous")
        self.h_view = host
        self.stream = stream
        self.d_view = cuda.device_array(host.shape, host.dtype, stream=stream)
        self.modified_host = True
        self.modified_device = False

    @classmethod
    def empty(cls, shape, dtype, stream: Any = 0) -> "DualBuffer":
        buf = cls(np.zeros(shape, dtype=dtype), stream)
        buf.d_view.copy_to_device(buf.h_view, stream=stream)
        buf.modified_host = False
        return buf

    @property
    def shape(self):
        return self.h_view.shape

    @property
    def need_sync_host(self) -> bool:
        return self.modified_device

    @property
    def need_sync_device(self) -> bool:
        return self.modified_host

    def modify_host(self) -> None:
        if self.modified_device:
            raise RuntimeError("host write while the device copy holds unsynced changes")
        self.modified_host = True

    def modify_device(self) -> None:
        if self.modified_host:
            raise RuntimeError("device write while the host copy holds unsynced changes")
        self.modified_device = True

    def sync_device(self) -> None:
        if not self.modified_host:
            return
        self.d_view.copy_to_device(self.h_view, stream=self.stream)
        self.modified_host = False
        logger.debug("synced %s buffer host -> device", self.shape)

    def sync_host(self) -> None:
        if not self.modified_device:
            return
        self.d_view.copy_to_host(self.h_view, stream=self.stream)
        if self.stream != 0:
            self.stream.synchronize()
        self.modified_device = False
        logger.debug("synced %s buffer device -> host", self.shape)
