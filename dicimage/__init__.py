from dicimage.config import ImageParams
from dicimage.dispatch import FlatDispatch, HierarchicalDispatch, select_strategy
from dicimage.errors import (
    AccessError,
    ConfigError,
    ConstructionError,
    FormatError,
    ImageError,
    SubRegionError,
)
from dicimage.image import Image

__all__ = [
    "Image",
    "ImageParams",
    "FlatDispatch",
    "HierarchicalDispatch",
    "select_strategy",
    "ImageError",
    "ConstructionError",
    "FormatError",
    "SubRegionError",
    "ConfigError",
    "AccessError",
]

__version__ = "0.1.0"
