from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Any, Optional, Tuple, Union

import numpy as np
from numba import cuda

from dicimage import io
from dicimage.config import (
    DEFAULT_TEAM_SIZE,
    INTENSITY_DTYPE,
    SCALAR_DTYPE,
    ImageParams,
    resolve_params,
    validate_mask_size,
)
from dicimage.dispatch import select_strategy
from dicimage.errors import AccessError, ConstructionError, SubRegionError
from dicimage.gauss import gauss_filter, gauss_mask
from dicimage.gradients import compute_gradients
from dicimage.log import get_logger
from dicimage.residency import DualBuffer

logger = get_logger(__name__)

PathLike = Union[str, Path]


def _as_extent(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
        raise ConstructionError(f"{name} must be an int, got {value!r}")
    if value <= 0:
        raise ConstructionError(f"{name} must be positive, got {value}")
    return int(value)


def _as_offset(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
        raise ConstructionError(f"{name} must be an int, got {value!r}")
    if value < 0:
        raise ConstructionError(f"{name} must be non-negative, got {value}")
    return int(value)


def _check_region(
    offset_x: int, offset_y: int, width: int, height: int, parent_width: int, parent_height: int
) -> None:
    if offset_x + width > parent_width or offset_y + height > parent_height:
        raise SubRegionError(
            f"region at ({offset_x}, {offset_y}) of size {width}x{height} exceeds "
            f"parent extents {parent_width}x{parent_height}"
        )


class Image:
    """
    Single-channel intensity container with derived gradient fields.

    Coordinates are local and measured from the top left corner, x to the
    right (column) and y down (row): ``at(0, 0)`` is this buffer's first
    pixel even when the buffer is a region of a larger image. ``offset_x`` /
    ``offset_y`` place the buffer in that larger image for bookkeeping only.

    The host copy of every buffer is authoritative between operations;
    ``compute_gradients`` and ``gauss_filter`` push intensities to the
    device, run their kernels and copy results back before returning.
    Writes made directly into ``intensities()`` therefore reach the next
    kernel, but they do not invalidate gradients computed earlier.

    This constructor shares the caller's storage: ``intensities`` must be a
    C-contiguous float64 array holding ``width*height`` values (flat or of
    shape ``(height, width)``) and is used without copying, so filtering
    writes through to it. Use :meth:`from_array` to copy instead.
    """

    def __init__(
        self,
        width: int,
        height: int,
        intensities: np.ndarray,
        *,
        offset_x: int = 0,
        offset_y: int = 0,
        params: Optional[Union[ImageParams, dict]] = None,
    ):
        self._params = resolve_params(params)
        self._width = _as_extent(width, "width")
        self._height = _as_extent(height, "height")
        self._offset_x = _as_offset(offset_x, "offset_x")
        self._offset_y = _as_offset(offset_y, "offset_y")

        if not isinstance(intensities, np.ndarray):
            raise ConstructionError(
                f"shared intensities must be a numpy array, got {type(intensities).__name__}"
            )
        if intensities.dtype != INTENSITY_DTYPE or not intensities.flags["C_CONTIGUOUS"]:
            raise ConstructionError(
                "shared intensities must be C-contiguous float64; use Image.from_array to copy"
            )
        if intensities.size != self._width * self._height:
            raise ConstructionError(
                f"intensities hold {intensities.size} values, expected "
                f"{self._width}x{self._height}={self._width * self._height}"
            )
        if intensities.ndim not in (1, 2) or (
            intensities.ndim == 2 and intensities.shape != (self._height, self._width)
        ):
            raise ConstructionError(
                f"intensities of shape {intensities.shape} are not row-major "
                f"({self._height}, {self._width})"
            )

        # keeps caller storage alive for the lifetime of the image
        self._storage = intensities
        self._stream = cuda.stream()
        self._intensities = DualBuffer(
            intensities.reshape(self._height, self._width), self._stream
        )
        self._intensities.sync_device()
        self._work = cuda.device_array(
            (self._height, self._width), INTENSITY_DTYPE, stream=self._stream
        )
        self._grad_x = DualBuffer.empty((self._height, self._width), SCALAR_DTYPE, self._stream)
        self._grad_y = DualBuffer.empty((self._height, self._width), SCALAR_DTYPE, self._stream)
        self._has_gradients = False

        self._gauss_mask = gauss_mask(self._params.gauss_mask_size)
        self._gauss_mask_dev = cuda.to_device(self._gauss_mask, stream=self._stream)

        logger.debug(
            "image %dx%d at offset (%d, %d), gauss mask %d",
            self._width,
            self._height,
            self._offset_x,
            self._offset_y,
            self._params.gauss_mask_size,
        )
        self._default_constructor_tasks()

    # ---------- alternate constructors ----------

    @classmethod
    def from_array(
        cls,
        intensities: Any,
        width: int,
        height: int,
        params: Optional[Union[ImageParams, dict]] = None,
        *,
        offset_x: int = 0,
        offset_y: int = 0,
    ) -> "Image":
        """Copy ``width*height`` row-major values into image-owned storage."""
        try:
            data = np.array(intensities, dtype=INTENSITY_DTYPE).reshape(-1)
        except (TypeError, ValueError) as e:
            raise ConstructionError(f"intensities are not numeric: {e}") from e
        return cls(width, height, data, offset_x=offset_x, offset_y=offset_y, params=params)

    @classmethod
    def from_file(
        cls,
        path: PathLike,
        offset_x: Optional[int] = None,
        offset_y: Optional[int] = None,
        width: Optional[int] = None,
        height: Optional[int] = None,
        params: Optional[Union[ImageParams, dict]] = None,
    ) -> "Image":
        """
        Read a whole image file, or only the region given by offset and size.

        Raises FormatError when the file cannot be decoded and SubRegionError
        when the region does not fit inside the decoded image.
        """
        region = (offset_x, offset_y, width, height)
        if any(v is not None for v in region) and any(v is None for v in region):
            raise ConstructionError("a file region needs offset_x, offset_y, width and height")

        full = io.read_image(path)
        full_h, full_w = full.shape
        if offset_x is None:
            return cls(full_w, full_h, full, params=params)

        offset_x = _as_offset(offset_x, "offset_x")
        offset_y = _as_offset(offset_y, "offset_y")
        width = _as_extent(width, "width")
        height = _as_extent(height, "height")
        _check_region(offset_x, offset_y, width, height, full_w, full_h)
        data = np.ascontiguousarray(
            full[offset_y : offset_y + height, offset_x : offset_x + width]
        )
        return cls(width, height, data, offset_x=offset_x, offset_y=offset_y, params=params)

    def sub_image(
        self,
        offset_x: int,
        offset_y: int,
        width: int,
        height: int,
        params: Optional[Union[ImageParams, dict]] = None,
    ) -> "Image":
        """
        Copy a region of this image given in local coordinates.

        The child's offsets are global: this image's offsets plus the local ones.
        """
        offset_x = _as_offset(offset_x, "offset_x")
        offset_y = _as_offset(offset_y, "offset_y")
        width = _as_extent(width, "width")
        height = _as_extent(height, "height")
        _check_region(offset_x, offset_y, width, height, self._width, self._height)
        data = np.ascontiguousarray(
            self._intensities.h_view[offset_y : offset_y + height, offset_x : offset_x + width]
        )
        return type(self)(
            width,
            height,
            data,
            offset_x=self._offset_x + offset_x,
            offset_y=self._offset_y + offset_y,
            params=self._params if params is None else params,
        )

    def copy(self) -> "Image":
        """Deep copy of the intensities; gradients are not carried over."""
        params = replace(self._params, gauss_filter_image=False, compute_image_gradients=False)
        return type(self)(
            self._width,
            self._height,
            self._intensities.h_view.copy(),
            offset_x=self._offset_x,
            offset_y=self._offset_y,
            params=params,
        )

    def _default_constructor_tasks(self) -> None:
        p = self._params
        if p.gauss_filter_image:
            self.gauss_filter(p.use_hierarchical_parallelism, p.team_size)
        if p.compute_image_gradients:
            self.compute_gradients(p.use_hierarchical_parallelism, p.team_size)

    # ---------- geometry ----------

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def offset_x(self) -> int:
        return self._offset_x

    @property
    def offset_y(self) -> int:
        return self._offset_y

    @property
    def params(self) -> ImageParams:
        return self._params

    def num_pixels(self) -> int:
        return self._width * self._height

    def to_global(self, x: int, y: int) -> Tuple[int, int]:
        return x + self._offset_x, y + self._offset_y

    def _check_coords(self, x: int, y: int) -> None:
        if not (0 <= x < self._width and 0 <= y < self._height):
            raise AccessError(
                f"pixel ({x}, {y}) is outside the {self._width}x{self._height} image"
            )

    # ---------- intensities ----------

    def at(self, x: int, y: int) -> float:
        """
        Intensity at local column ``x``, row ``y``.

        Bounds are checked unless Python runs with -O, in which case the
        access is unchecked.
        """
        if __debug__:
            self._check_coords(x, y)
        return self._intensities.h_view[y, x]

    def intensities(self) -> np.ndarray:
        """Host intensity array of shape (height, width)."""
        return self._intensities.h_view

    # ---------- gradients ----------

    @property
    def has_gradients(self) -> bool:
        return self._has_gradients

    def _require_gradients(self) -> None:
        if not self._has_gradients:
            raise AccessError("gradients have not been computed for this image")

    def grad_x(self, x: int, y: int) -> float:
        self._require_gradients()
        if __debug__:
            self._check_coords(x, y)
        return self._grad_x.h_view[y, x]

    def grad_y(self, x: int, y: int) -> float:
        self._require_gradients()
        if __debug__:
            self._check_coords(x, y)
        return self._grad_y.h_view[y, x]

    def gradients(self) -> Tuple[np.ndarray, np.ndarray]:
        """Host (grad_x, grad_y) arrays of shape (height, width)."""
        self._require_gradients()
        return self._grad_x.h_view, self._grad_y.h_view

    def compute_gradients(
        self, use_hierarchical_parallelism: bool = False, team_size: int = DEFAULT_TEAM_SIZE
    ) -> None:
        strategy = select_strategy(use_hierarchical_parallelism, team_size)
        self._has_gradients = False
        self._intensities.modify_host()
        compute_gradients(
            self._intensities, self._grad_x, self._grad_y, strategy, self._stream
        )
        self._has_gradients = True

    # ---------- filtering ----------

    @property
    def gauss_mask_size(self) -> int:
        return self._params.gauss_mask_size

    @property
    def gauss_mask(self) -> np.ndarray:
        return self._gauss_mask.copy()

    def gauss_filter(
        self,
        use_hierarchical_parallelism: bool = False,
        team_size: int = DEFAULT_TEAM_SIZE,
        mask_size: Optional[int] = None,
        in_place: bool = True,
    ) -> "Image":
        """
        Smooth the intensities with the normalized Gaussian mask.

        Filters this image and returns it, or with ``in_place=False`` returns
        a filtered copy and leaves this image untouched. The filtered image
        never has gradients; recompute them if needed.
        """
        strategy = select_strategy(use_hierarchical_parallelism, team_size)
        if mask_size is not None:
            mask_size = validate_mask_size(mask_size)

        target = self if in_place else self.copy()
        if mask_size is None or mask_size == target.gauss_mask_size:
            mask_dev = target._gauss_mask_dev
            half_mask = target._params.half_mask
        else:
            mask_dev = cuda.to_device(gauss_mask(mask_size), stream=target._stream)
            half_mask = (mask_size - 1) // 2

        target._has_gradients = False
        target._intensities.modify_host()
        gauss_filter(
            target._intensities, target._work, mask_dev, half_mask, strategy, target._stream
        )
        return target

    # ---------- output ----------

    def write_tiff(self, path: PathLike) -> None:
        """Write an 8-bit TIFF; intensities are clipped to [0, 255] and truncated."""
        io.write_tiff(path, self._intensities.h_view)

    def write_rawi(self, path: PathLike) -> None:
        """Write the full-precision raw intensity format."""
        io.write_rawi(path, self._intensities.h_view)

    def __repr__(self) -> str:
        return (
            f"Image(width={self._width}, height={self._height}, "
            f"offset=({self._offset_x}, {self._offset_y}), "
            f"has_gradients={self._has_gradients})"
        )
