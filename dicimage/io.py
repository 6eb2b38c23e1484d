from __future__ import annotations

from pathlib import Path
from typing import Tuple, Union

import cv2
import numpy as np

from dicimage.config import INTENSITY_DTYPE
from dicimage.errors import FormatError
from dicimage.log import get_logger

logger = get_logger(__name__)

PathLike = Union[str, Path]

RAWI_SUFFIX = ".rawi"
RAWI_HEADER_DTYPE = np.dtype("<u4")  # width, height, bytes per value
RAWI_VALUE_DTYPE = np.dtype("<f8")
RAWI_HEADER_LEN = 3

W709_BGR = np.array(
    [0.072192315360734, 0.715168678767756, 0.212639005871510], dtype=INTENSITY_DTYPE
)


def read_image(path: PathLike) -> np.ndarray:
    """
    Decode an image file into a (height, width) float64 intensity array.

    ``.rawi`` files are read losslessly; anything else goes through OpenCV
    and colour input is reduced to BT.709 luminance.
    """
    path = Path(path)
    if path.suffix.lower() == RAWI_SUFFIX:
        return read_rawi(path)
    try:
        buf = np.fromfile(path, np.uint8)
    except OSError as e:
        raise FormatError(f"cannot read image file {path}: {e}") from e
    im = cv2.imdecode(buf, cv2.IMREAD_UNCHANGED) if buf.size else None
    if im is None:
        raise FormatError(f"cannot decode image file {path}")
    if im.ndim == 3:
        if im.shape[2] == 4:
            im = im[:, :, :3]
        im = (im.astype(INTENSITY_DTYPE) * W709_BGR).sum(axis=2)
    logger.info("decoded %s (%dx%d)", path, im.shape[1], im.shape[0])
    return np.ascontiguousarray(im, dtype=INTENSITY_DTYPE)


def write_tiff(path: PathLike, intensities: np.ndarray) -> None:
    """Write intensities as an 8-bit TIFF; values are clipped and truncated."""
    path = Path(path)
    img8 = np.clip(intensities, 0.0, 255.0).astype(np.uint8)
    try:
        ok, encoded = cv2.imencode(".tif", img8)
    except cv2.error as e:
        raise FormatError(f"cannot encode TIFF for {path}: {e}") from e
    if not ok:
        raise FormatError(f"cannot encode TIFF for {path}")
    try:
        encoded.tofile(path)
    except OSError as e:
        raise FormatError(f"cannot write {path}: {e}") from e
    logger.info("wrote %s (%dx%d, 8-bit)", path, img8.shape[1], img8.shape[0])


def write_rawi(path: PathLike, intensities: np.ndarray) -> None:
    """Write full-precision intensities: <u4 width, height, 8 then row-major <f8 values."""
    path = Path(path)
    h, w = intensities.shape
    header = np.array([w, h, RAWI_VALUE_DTYPE.itemsize], dtype=RAWI_HEADER_DTYPE)
    try:
        with open(path, "wb") as f:
            header.tofile(f)
            np.ascontiguousarray(intensities, dtype=RAWI_VALUE_DTYPE).tofile(f)
    except OSError as e:
        raise FormatError(f"cannot write {path}: {e}") from e
    logger.info("wrote %s (%dx%d, rawi)", path, w, h)


def _read_rawi_header(f, path: Path) -> Tuple[int, int]:
    header = np.fromfile(f, dtype=RAWI_HEADER_DTYPE, count=RAWI_HEADER_LEN)
    if header.size != RAWI_HEADER_LEN:
        raise FormatError(f"{path} is too short to be a rawi file")
    w, h, nbytes = (int(v) for v in header)
    if nbytes != RAWI_VALUE_DTYPE.itemsize:
        raise FormatError(
            f"{path} stores {nbytes}-byte values, expected {RAWI_VALUE_DTYPE.itemsize}"
        )
    if w == 0 or h == 0:
        raise FormatError(f"{path} has empty extents {w}x{h}")
    return w, h


def read_rawi_dimensions(path: PathLike) -> Tuple[int, int]:
    path = Path(path)
    try:
        with open(path, "rb") as f:
            return _read_rawi_header(f, path)
    except FormatError:
        raise
    except OSError as e:
        raise FormatError(f"cannot read {path}: {e}") from e


def read_rawi(path: PathLike) -> np.ndarray:
    path = Path(path)
    try:
        with open(path, "rb") as f:
            w, h = _read_rawi_header(f, path)
            values = np.fromfile(f, dtype=RAWI_VALUE_DTYPE, count=w * h)
    except FormatError:
        raise
    except OSError as e:
        raise FormatError(f"cannot read {path}: {e}") from e
    if values.size != w * h:
        raise FormatError(f"{path} holds {values.size} values, expected {w * h}")
    return values.astype(INTENSITY_DTYPE).reshape(h, w)
